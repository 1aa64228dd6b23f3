import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = os.getenv("APP_NAME", "University Library")
    debug: bool = _flag("DEBUG")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./library.db")
    db_retry_attempts: int = int(os.getenv("DB_RETRY_ATTEMPTS", "2"))
    db_retry_delay: float = float(os.getenv("DB_RETRY_DELAY", "0.25"))

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "change-me-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "10080"))  # 7 days

    # Borrowing rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    max_renewals: int = int(os.getenv("MAX_RENEWALS", "2"))
    due_soon_days: int = int(os.getenv("DUE_SOON_DAYS", "3"))
    default_daily_fine: Decimal = Decimal(os.getenv("DEFAULT_DAILY_FINE", "1.00"))

    # Reporting
    trend_days: int = int(os.getenv("TREND_DAYS", "14"))
    page_size: int = int(os.getenv("PAGE_SIZE", "12"))

    # E-mail
    smtp_host: Optional[str] = os.getenv("SMTP_HOST")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: Optional[str] = os.getenv("SMTP_USERNAME")
    smtp_password: Optional[str] = os.getenv("SMTP_PASSWORD")
    smtp_from_email: str = os.getenv("SMTP_FROM_EMAIL", "noreply@library.edu")


settings = Settings()
