import logging
import smtplib
from collections.abc import Callable
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape

from blog_api.core.settings import Settings

logger = logging.getLogger(__name__)

ACTIVATION_SUBJECT = "Verify your account"


class MailerNotConfiguredError(RuntimeError):
    pass


@dataclass(frozen=True)
class ActivationMail:
    email: str
    activation_url: str
    subject: str = ACTIVATION_SUBJECT

    def to_payload(self) -> dict:
        return {"email": self.email, "activation_url": self.activation_url, "subject": self.subject}

    @classmethod
    def from_payload(cls, payload: dict) -> "ActivationMail":
        return cls(
            email=str(payload["email"]),
            activation_url=str(payload["activation_url"]),
            subject=str(payload.get("subject") or ACTIVATION_SUBJECT),
        )


def build_activation_url(client_url: str, token: str) -> str:
    return f"{client_url.rstrip('/')}/activate-account/{token}"


def render_activation_message(sender: str, mail: ActivationMail) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = mail.subject
    msg["From"] = sender
    msg["To"] = mail.email
    msg.set_content(
        "Welcome!\n\n"
        f"Activate your account by opening this link:\n{mail.activation_url}\n\n"
        "The link expires shortly and can only be used once."
    )
    url = escape(mail.activation_url, quote=True)
    msg.add_alternative(
        "<html><body>"
        "<p>Welcome!</p>"
        f'<p><a href="{url}">Activate your account</a></p>'
        "<p>The link expires shortly and can only be used once.</p>"
        "</body></html>",
        subtype="html",
    )
    return msg


class Mailer:
    def __init__(
        self,
        *,
        host: str | None,
        port: int,
        user: str | None,
        password: str | None,
        sender: str | None,
        use_tls: bool = True,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password and self.sender)

    def send_activation_email(self, mail: ActivationMail) -> None:
        if not self.is_configured:
            raise MailerNotConfiguredError("SMTP is not configured")
        msg = render_activation_message(self.sender, mail)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)


def send_with_retries(send: Callable[[], None], *, attempts: int = 3, label: str = "email") -> int:
    """Call ``send`` until it succeeds; return the attempt number that worked.

    Re-raises the last failure once ``attempts`` are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            send()
            return attempt
        except Exception as exc:
            last_exc = exc
            logger.warning("Failed to send %s attempt=%s error=%s", label, attempt, exc)
    raise last_exc
