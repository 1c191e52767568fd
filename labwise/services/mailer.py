"""
Mail transport adapters.

Every transport sends to one recipient and reports the outcome as a
SendResult; failures never escape as exceptions.
"""
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import List, Optional, Protocol, Tuple

from ..config import Settings
from ..errors import TransportError
from ..logging import structlog


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: Optional[TransportError] = None

    @classmethod
    def success(cls) -> "SendResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, message: str, recipient: Optional[str] = None) -> "SendResult":
        return cls(ok=False, error=TransportError(message, recipient=recipient))


class MailTransport(Protocol):
    def send(self, to: str, subject: str, html: str) -> SendResult:
        ...


class SmtpTransport:
    """Sends HTML mail through an SMTP relay, one connection per message."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        mail_from: Optional[str] = None,
        timeout: float = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.mail_from = mail_from
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> SendResult:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to
        msg.set_content("Este mensaje requiere un cliente de correo con soporte HTML.")
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
                if self.use_tls:
                    s.starttls()
                if self.username and self.password:
                    s.login(self.username, self.password)
                s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            structlog.get_logger().warning("notification_send_failed", recipient=to, error=str(e))
            return SendResult.failure(str(e), recipient=to)
        return SendResult.success()


class LoggingTransport:
    """Used when SMTP is not configured or e-mail is disabled: logs instead of sending."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []

    def send(self, to: str, subject: str, html: str) -> SendResult:
        structlog.get_logger().info("notification_logged", recipient=to, subject=subject)
        self.sent.append((to, subject))
        return SendResult.success()


def build_transport(app_settings: Settings) -> MailTransport:
    if app_settings.enable_email and app_settings.smtp_host:
        return SmtpTransport(
            host=app_settings.smtp_host,
            port=app_settings.smtp_port,
            username=app_settings.smtp_username,
            password=app_settings.smtp_password,
            use_tls=app_settings.smtp_tls,
            mail_from=app_settings.mail_from,
            timeout=app_settings.smtp_timeout_seconds,
        )
    structlog.get_logger().info("mail_transport_logging_only")
    return LoggingTransport()
