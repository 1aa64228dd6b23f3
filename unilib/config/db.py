import logging
import re
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from unilib.config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


TRANSIENT_CODES = {
    "ETIMEDOUT",
    "ECONNRESET",
    "ENETUNREACH",
    "ECONNREFUSED",
    "57P01",
    "57P02",
}

_TRANSIENT_MESSAGE = re.compile(
    r"connection timeout|connection terminated|connection reset|terminat(ed|ion)|timeout|timed out",
    re.IGNORECASE,
)


def is_transient_db_error(error: BaseException) -> bool:
    """Return True for connectivity failures that are worth retrying."""
    if isinstance(error, (TimeoutError, ConnectionResetError, ConnectionRefusedError)):
        return True
    if isinstance(error, DBAPIError):
        if error.connection_invalidated:
            return True
        orig = error.orig
        code = getattr(orig, "pgcode", None) or getattr(orig, "code", None)
        if code in TRANSIENT_CODES:
            return True
        return bool(_TRANSIENT_MESSAGE.search(str(orig)))
    return False


def with_db_retry(
    operation: Callable[[], T],
    retries: Optional[int] = None,
    delay: Optional[float] = None,
    session: Optional[Session] = None,
) -> T:
    """
    Runs a database operation, retrying transient failures with linear backoff.

    Parameters:
        operation (Callable): Zero-argument callable doing the database work.
        retries (int): Extra attempts after the first one. Defaults to settings.
        delay (float): Base delay in seconds, multiplied by the attempt number.
        session (Session): Rolled back before each retry when given.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error, or the first non-transient one.
    """
    retries = settings.db_retry_attempts if retries is None else retries
    delay = settings.db_retry_delay if delay is None else delay

    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if attempt >= retries or not is_transient_db_error(exc):
                raise
            attempt += 1
            logger.warning(f"Transient database error, retry {attempt}/{retries}: {exc}")
            if session is not None:
                session.rollback()
            time.sleep(delay * attempt)
