# =============================================================================
# MIME Parsing
# =============================================================================
# Turns a raw RFC 822 message into a MessageDetail, using the standard
# library email package.
#
# Body selection:
#   - the first text/plain part that is not an attachment -> text
#   - the first text/html part that is not an attachment  -> html
#
# Attachments are every leaf part that has "attachment" disposition, a
# filename, or is an inline image with a Content-ID. Their index in that
# list is how they are requested later (Session.get_attachment).
# =============================================================================

import email
import email.utils
import logging
from datetime import datetime
from email.message import Message as EmailMessage
from typing import Iterator

from kestrel_mail.core import Address, AttachmentInfo, MessageDetail
from kestrel_mail.errors import NotFoundError
from kestrel_mail.imap.parser import decode_header, parse_date

logger = logging.getLogger(__name__)


def parse_message(uid: int, raw: bytes, flags: set[str] | None = None) -> MessageDetail:
    """
    Build a MessageDetail from the raw source of a message.

    Args:
        uid: IMAP UID of the message.
        raw: Full RFC 822 source.
        flags: Flags fetched separately; None means unknown (treated unseen).
    """
    msg = email.message_from_bytes(raw)

    senders = parse_addresses(msg.get_all("From", []))
    text, html = _bodies(msg)

    return MessageDetail(
        uid=uid,
        date=parse_date(str(msg.get("Date", ""))) or _fallback_date(msg),
        subject=decode_header(str(msg.get("Subject", ""))).strip() or "(no subject)",
        sender=senders[0] if senders else Address(),
        to=parse_addresses(msg.get_all("To", [])),
        cc=parse_addresses(msg.get_all("Cc", [])),
        has_attachments=any(True for _ in attachment_parts(msg)),
        seen="\\Seen" in (flags or set()),
        size=len(raw),
        html=html,
        text=text,
        attachments=[describe_attachment(part) for part in attachment_parts(msg)],
        message_id=str(msg.get("Message-ID", "")).strip(),
        in_reply_to=str(msg.get("In-Reply-To", "")).strip(),
        references=str(msg.get("References", "")).split(),
    )


def parse_addresses(values: list[str]) -> list[Address]:
    """
    Normalize header values into Address objects.

    Example:
        >>> parse_addresses(['"Ann" <ann@example.com>, bob@example.com'])
        [Address(address='ann@example.com', name='Ann'),
         Address(address='bob@example.com', name=None)]
    """
    addresses = []
    for name, addr in email.utils.getaddresses([str(v) for v in values]):
        if not addr:
            continue
        decoded = decode_header(name).strip()
        addresses.append(Address(address=addr, name=decoded or None))
    return addresses


def attachment_parts(msg: EmailMessage) -> Iterator[EmailMessage]:
    """Yield the attachment parts of a message in MIME order."""
    for part in msg.walk():
        if part.is_multipart():
            continue
        if _is_attachment(part):
            yield part


def describe_attachment(part: EmailMessage) -> AttachmentInfo:
    payload = part.get_payload(decode=True)
    disposition = part.get_content_disposition()
    content_id = part.get("Content-ID")
    return AttachmentInfo(
        filename=_filename(part),
        content_type=part.get_content_type(),
        size=len(payload) if isinstance(payload, bytes) else 0,
        disposition=disposition,
        content_id=str(content_id).strip("<> ") if content_id else None,
    )


def extract_attachment(raw: bytes, index: int) -> tuple[AttachmentInfo, bytes]:
    """
    The metadata and decoded bytes of the index-th attachment.

    Raises:
        NotFoundError: If the message has no attachment at that index.
    """
    msg = email.message_from_bytes(raw)
    for i, part in enumerate(attachment_parts(msg)):
        if i == index:
            payload = part.get_payload(decode=True)
            data = payload if isinstance(payload, bytes) else b""
            return describe_attachment(part), data
    raise NotFoundError(f"Attachment {index} not found")


# =============================================================================
# Internals
# =============================================================================

def _is_attachment(part: EmailMessage) -> bool:
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    content_type = part.get_content_type()
    if content_type in ("text/plain", "text/html") and disposition != "attachment":
        # Body text, even when it carries a name
        return False
    if part.get_filename():
        return True
    return content_type.startswith("image/") and part.get("Content-ID") is not None


def _bodies(msg: EmailMessage) -> tuple[str | None, str | None]:
    text = None
    html = None
    for part in msg.walk():
        if part.is_multipart() or part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and text is None:
            text = _decode_part(part)
        elif content_type == "text/html" and html is None:
            html = _decode_part(part)
    return text, html


def _decode_part(part: EmailMessage) -> str:
    """Decode a message part to string."""
    payload = part.get_payload(decode=True)
    if isinstance(payload, bytes):
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except (LookupError, UnicodeDecodeError):
            return payload.decode("utf-8", errors="replace")
    return str(payload) if payload else ""


def _filename(part: EmailMessage) -> str:
    filename = part.get_filename()
    if filename:
        return decode_header(filename)
    return "unnamed"


def _fallback_date(msg: EmailMessage) -> datetime | None:
    # Some mailers only leave a date in the Received trail
    received = msg.get("Received")
    if received and ";" in str(received):
        return parse_date(str(received).rsplit(";", 1)[1].strip())
    return None
