# =============================================================================
# Message Models
# =============================================================================
# Two views of an email message:
#
#   - MessageSummary: what a folder listing shows (envelope, flags, size).
#     Produced per listing call and never persisted beyond the current page.
#   - MessageDetail: the summary plus decoded bodies and attachment metadata.
#     Fetched on demand, never cached across calls.
#
# Addresses are normalized to Address(name, address) no matter whether they
# came from an IMAP ENVELOPE or from the MIME parser.
# =============================================================================

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Address:
    """An email address with an optional display name."""
    address: str = "unknown"
    name: str | None = None

    @property
    def display(self) -> str:
        """Name if there is one, otherwise the bare address."""
        return self.name or self.address

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.address}>"
        return self.address


@dataclass
class AttachmentInfo:
    """
    Metadata of a message attachment.

    The payload itself is only fetched on request (Session.get_attachment).

    Attributes:
        filename: Original filename ("unnamed" if the part had none).
        content_type: MIME type, e.g. "application/pdf".
        size: Decoded size in bytes.
        disposition: "attachment" or "inline".
        content_id: Content-ID for inline parts referenced from HTML.
    """
    filename: str
    content_type: str
    size: int
    disposition: str | None = None
    content_id: str | None = None

    @property
    def human_size(self) -> str:
        """
        Human-readable file size.

        Examples:
            - 500 -> "500 B"
            - 1536 -> "1.5 KB"
        """
        size: float = self.size
        for unit in ("B", "KB", "MB", "GB"):
            if size < 1024:
                return f"{size:.1f} {unit}" if size != int(size) else f"{int(size)} {unit}"
            size /= 1024
        return f"{size:.1f} TB"


@dataclass
class MessageSummary:
    """
    A message as shown in a folder listing.

    Attributes:
        uid: IMAP UID, unique within the folder and stable for the session.
        date: Date from the envelope (None if the server sent none).
        subject: Subject line, "(no subject)" when empty.
        sender: First From address.
        to: To addresses.
        cc: CC addresses.
        has_attachments: True if any body part has attachment disposition.
        seen: True if the \\Seen flag is set.
        size: RFC822 size in bytes.
    """
    uid: int
    date: datetime | None = None
    subject: str = "(no subject)"
    sender: Address = field(default_factory=Address)
    to: list[Address] = field(default_factory=list)
    cc: list[Address] = field(default_factory=list)
    has_attachments: bool = False
    seen: bool = False
    size: int = 0

    @property
    def display_sender(self) -> str:
        return self.sender.display

    def __str__(self) -> str:
        marker = " " if self.seen else "*"
        return f"{marker} {self.display_sender}: {self.subject}"


@dataclass
class MessageDetail(MessageSummary):
    """
    A fully fetched message.

    Attributes:
        html: HTML body, if the message has one.
        text: Plain text body, if the message has one.
        attachments: Attachment metadata in MIME order.
        message_id: RFC 5322 Message-ID header.
        in_reply_to: Message-ID this message replies to.
        references: Message-IDs from the References header.
    """
    html: str | None = None
    text: str | None = None
    attachments: list[AttachmentInfo] = field(default_factory=list)
    message_id: str = ""
    in_reply_to: str = ""
    references: list[str] = field(default_factory=list)

    @property
    def has_html(self) -> bool:
        return bool(self.html and self.html.strip())
