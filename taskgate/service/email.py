from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import TYPE_CHECKING, Optional

from taskgate.logging import get_logger, hash_identifier

if TYPE_CHECKING:
    from taskgate.config import Settings

logger = get_logger(__name__)

SMTP_TIMEOUT_SECONDS = 30

RESET_SUBJECT = "Password reset token"
RESET_BODY = (
    "You are receiving this email because you (or someone else) has requested "
    "the reset of a password. Please make a PUT request to:\n\n{url}\n\n"
    "If you did not request this, you can ignore this email."
)


class EmailService:
    """Sends transactional mail over SMTP.

    Without an SMTP host the message is written to the log instead. Sending
    is blocking; async callers run it in a worker thread.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "TaskGate",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.sender = from_email or smtp_user
        self.sender_name = from_name

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.sender)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=SMTP_TIMEOUT_SECONDS)
            server.starttls(context=context)
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=SMTP_TIMEOUT_SECONDS
            )
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
        return server

    def send(self, to_email: str, subject: str, body: str) -> bool:
        """Deliver a plain-text message; False means the relay refused or was unreachable."""
        recipient_hash = hash_identifier(to_email)
        if not self.is_configured:
            logger.info(
                "email_logged_not_sent",
                recipient_hash=recipient_hash,
                subject=subject,
                body=body,
            )
            return True

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.sender_name, self.sender))
        message["To"] = to_email
        message.set_content(body)

        try:
            with self._connect() as server:
                server.send_message(message)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error(
                "email_auth_failed",
                recipient_hash=recipient_hash,
                host=self.smtp_host,
                smtp_code=exc.smtp_code,
            )
            return False
        except smtplib.SMTPException as exc:
            logger.error(
                "email_rejected",
                recipient_hash=recipient_hash,
                host=self.smtp_host,
                error_type=type(exc).__name__,
            )
            return False
        except OSError as exc:
            # ssl.SSLError, refused connections and socket timeouts
            logger.error(
                "email_relay_unreachable",
                recipient_hash=recipient_hash,
                host=self.smtp_host,
                port=self.smtp_port,
                error=str(exc),
            )
            return False

        logger.info("email_sent", recipient_hash=recipient_hash, subject=subject)
        return True

    def send_password_reset(self, to_email: str, reset_url: str) -> bool:
        return self.send(to_email, RESET_SUBJECT, RESET_BODY.format(url=reset_url))
