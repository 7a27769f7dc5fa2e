# =============================================================================
# SMTP Client
# =============================================================================
# Sends mail through the account's SMTP server with aiosmtplib.
#
# Security:
#   - smtp_secure = True   implicit TLS (usually port 465)
#   - smtp_secure = False  plain connect, upgraded with STARTTLS when the
#                          server offers it (usually port 587)
#
# send() returns the Message-ID and the exact bytes that were sent, so the
# caller can file the same message into the Sent folder over IMAP.
# =============================================================================

import logging
from dataclasses import dataclass, field
from email.encoders import encode_base64
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid

import aiosmtplib

from kestrel_mail.core import Account
from kestrel_mail.errors import MailError

logger = logging.getLogger(__name__)


@dataclass
class EmailDraft:
    """
    An email being composed.

    Attributes:
        to: Recipient addresses.
        cc: CC recipients.
        bcc: BCC recipients (never written to the headers).
        subject: Subject line.
        body_text: Plain text body.
        body_html: HTML body (optional).
        attachments: (filename, content_type, data) tuples.
        in_reply_to: Message-ID being replied to (threading).
        references: References header entries (threading).
    """
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    subject: str = ""
    body_text: str = ""
    body_html: str = ""
    attachments: list[tuple[str, str, bytes]] = field(default_factory=list)
    in_reply_to: str = ""
    references: list[str] = field(default_factory=list)

    @property
    def recipients(self) -> list[str]:
        return self.to + self.cc + self.bcc


def build_message(account: Account, draft: EmailDraft) -> MIMEMultipart:
    """
    Build the MIME message for a draft.

    Structure:
        - text only               multipart/mixed(text)
        - text + html             multipart/alternative(text, html)
        - with attachments        multipart/mixed(body, attachment...)
    """
    body: list[MIMEText] = [MIMEText(draft.body_text, "plain", "utf-8")]
    if draft.body_html:
        body.append(MIMEText(draft.body_html, "html", "utf-8"))

    if len(body) > 1 and not draft.attachments:
        msg = MIMEMultipart("alternative", _subparts=body)
    else:
        msg = MIMEMultipart("mixed")
        msg.attach(MIMEMultipart("alternative", _subparts=body) if len(body) > 1 else body[0])
        for filename, content_type, data in draft.attachments:
            msg.attach(_attachment_part(filename, content_type, data))

    sender = account.smtp_login
    domain = sender.split("@", 1)[1] if "@" in sender else None

    headers = {
        "From": formataddr((account.name, sender)) if account.name else sender,
        "To": ", ".join(draft.to),
        "Cc": ", ".join(draft.cc),
        "Subject": draft.subject,
        "Date": formatdate(localtime=True),
        "Message-ID": make_msgid(domain=domain),
        "In-Reply-To": draft.in_reply_to,
        "References": " ".join(draft.references),
        "X-Mailer": "Kestrel Mail",
    }
    for name, value in headers.items():
        # Bcc never appears here; empty optional headers are left out
        if value or name == "Subject":
            msg[name] = value
    return msg


def _attachment_part(filename: str, content_type: str, data: bytes) -> MIMEBase:
    maintype, _, subtype = content_type.partition("/")
    part = MIMEBase(maintype or "application", subtype or "octet-stream")
    part.set_payload(data)
    encode_base64(part)
    part.add_header("Content-Disposition", "attachment", filename=filename)
    return part


class SMTPClient:
    """
    Async SMTP client for one account.

    Usage:
        >>> client = SMTPClient(account, password)
        >>> await client.connect()
        >>> message_id, raw = await client.send(draft)
        >>> await client.disconnect()
    """

    # Seconds before a stalled SMTP command gives up
    TIMEOUT = 30

    def __init__(self, account: Account, password: str) -> None:
        self.account = account
        self._password = password
        self._client: aiosmtplib.SMTP | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    async def connect(self) -> None:
        """
        Connect and log in.

        Raises:
            SMTPConnectionError: If unable to connect.
            SMTPAuthenticationError: If authentication fails.
        """
        host, port = self.account.smtp_host, self.account.smtp_port
        if not host:
            raise SMTPConnectionError(f"No SMTP host configured for {self.account.name}")

        logger.info(f"Connecting to SMTP {host}:{port}")
        client = aiosmtplib.SMTP(
            hostname=host,
            port=port,
            use_tls=self.account.smtp_secure,
            # None = upgrade if the server offers STARTTLS
            start_tls=False if self.account.smtp_secure else None,
            timeout=self.TIMEOUT,
        )

        try:
            await client.connect()
            await client.login(self.account.smtp_login, self._password)
        except aiosmtplib.SMTPAuthenticationError as e:
            raise SMTPAuthenticationError(
                f"SMTP authentication failed for {self.account.smtp_login}: {e}"
            ) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise SMTPConnectionError(f"Failed to connect to SMTP {host}:{port}: {e}") from e

        self._client = client
        logger.debug(f"SMTP connection to {host} established")

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None or not client.is_connected:
            return
        try:
            await client.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning(f"Error during SMTP disconnect: {e}")

    async def send(self, draft: EmailDraft) -> tuple[str, bytes]:
        """
        Send a draft.

        Returns:
            (Message-ID, raw message bytes as sent).

        Raises:
            SendError: If sending fails.
        """
        if self._client is None or not self.is_connected:
            raise SendError("Not connected to SMTP server")
        if not draft.to:
            raise SendError("No recipients specified")

        message = build_message(self.account, draft)
        logger.info(f"Sending email to {', '.join(draft.to)}")
        try:
            await self._client.send_message(message, recipients=draft.recipients)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            raise SendError(f"Failed to send email: {e}") from e

        message_id = str(message["Message-ID"])
        logger.info(f"Email sent: {message_id}")
        return message_id, message.as_bytes()

    @staticmethod
    async def test_connection(account: Account, password: str) -> None:
        """Connect, log in and quit. Raises like connect()."""
        client = SMTPClient(account, password)
        await client.connect()
        await client.disconnect()


# =============================================================================
# Exceptions
# =============================================================================

class SMTPError(MailError):
    """Sending mail failed."""
    pass


class SMTPConnectionError(SMTPError):
    """The SMTP server could not be reached or refused the session."""
    pass


class SMTPAuthenticationError(SMTPError):
    """The SMTP server rejected the login."""
    pass


class SendError(SMTPError):
    """The server did not accept the message."""
    pass
