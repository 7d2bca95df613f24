"""SMTP transport for reminder, release and owner emails."""

import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr

from deadswitch.core.errors import ConfigurationError
from deadswitch.models.settings import Settings

DEFAULT_FROM_NAME = "deadswitch"


@dataclass
class MailAttachment:
    filename: str
    mime_type: str
    data: bytes


@dataclass
class OutgoingMail:
    to: str
    subject: str
    body: str
    attachments: list[MailAttachment] = field(default_factory=list)


def sanitize_header(value: str) -> str:
    """Strip CR/LF to prevent header injection."""
    return value.replace("\r", "").replace("\n", "")


def build_message(config: Settings, mail: OutgoingMail) -> EmailMessage:
    sender = config.smtp_from or config.smtp_user
    if not sender:
        raise ConfigurationError("SMTP sender address is not configured")

    message = EmailMessage()
    message["From"] = formataddr(
        (sanitize_header(config.smtp_from_name or DEFAULT_FROM_NAME), sanitize_header(sender))
    )
    message["To"] = sanitize_header(mail.to)
    message["Subject"] = sanitize_header(mail.subject)
    message.set_content(mail.body)

    for attachment in mail.attachments:
        maintype, _, subtype = attachment.mime_type.partition("/")
        message.add_attachment(
            attachment.data,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return message


class SMTPMailer:
    """Sends one email per call; port 465 uses implicit TLS, others STARTTLS."""

    def __init__(self, timeout: float):
        self.timeout = timeout

    def send(self, config: Settings, mail: OutgoingMail) -> None:
        if not config.smtp_configured:
            raise ConfigurationError("SMTP host and port are not configured")

        message = build_message(config, mail)
        port = int(config.smtp_port)
        context = ssl.create_default_context()

        if port == 465:
            with smtplib.SMTP_SSL(
                config.smtp_host, port, timeout=self.timeout, context=context
            ) as client:
                self._deliver(client, config, message)
        else:
            with smtplib.SMTP(config.smtp_host, port, timeout=self.timeout) as client:
                client.ehlo()
                if client.has_extn("starttls"):
                    client.starttls(context=context)
                    client.ehlo()
                self._deliver(client, config, message)

    @staticmethod
    def _deliver(client: smtplib.SMTP, config: Settings, message: EmailMessage) -> None:
        if config.smtp_user and config.smtp_pass:
            client.login(config.smtp_user, config.smtp_pass)
        client.send_message(message)

    def test_connection(self, config: Settings) -> None:
        """Connect and authenticate without sending anything."""
        if not config.smtp_configured:
            raise ConfigurationError("SMTP host and port are required")
        if not config.smtp_user or not config.smtp_pass:
            raise ConfigurationError("SMTP username and password are required for test")

        port = int(config.smtp_port)
        context = ssl.create_default_context()
        if port == 465:
            with smtplib.SMTP_SSL(
                config.smtp_host, port, timeout=self.timeout, context=context
            ) as client:
                client.login(config.smtp_user, config.smtp_pass)
            return

        with smtplib.SMTP(config.smtp_host, port, timeout=self.timeout) as client:
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls(context=context)
                client.ehlo()
            elif port == 587:
                raise ConfigurationError("Server does not support STARTTLS on port 587")
            client.login(config.smtp_user, config.smtp_pass)
