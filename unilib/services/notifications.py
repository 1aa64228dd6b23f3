import logging
import smtplib
from email.message import EmailMessage

from unilib.config.settings import settings

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers a message to a user's e-mail address."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Used when no SMTP server is configured: the message only goes to the log."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info(f"[mail] to={recipient} subject={subject!r}")


class SmtpNotifier(Notifier):
    def __init__(self, host: str, port: int, username=None, password=None, sender=None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or settings.smtp_from_email

    def send(self, recipient: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


def get_notifier() -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_username,
            settings.smtp_password,
        )
    return LogNotifier()
