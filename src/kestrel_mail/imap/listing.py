# =============================================================================
# Message Listing
# =============================================================================
# Pagination against a sequence-numbered mailbox.
#
# IMAP numbers the messages of a selected folder 1..total. "Newest" usually
# means "highest sequence number", so page N counted from the newest end is:
#
#       total = 120, limit = 50
#
#       offset 0    ->  71..120
#       offset 50   ->  21..70
#       offset 100  ->   1..20
#       offset 150  ->   1..1    (clamped)
#
# Sequence order is NOT date order on every server, so each page is re-sorted
# by date after fetching.
# =============================================================================

from datetime import datetime, timezone

from kestrel_mail.core import Address, MessageSummary
from kestrel_mail.errors import ValidationError
from kestrel_mail.imap.parser import FetchRecord

# Sort key for messages without a date (oldest possible)
_NO_DATE = datetime.min.replace(tzinfo=timezone.utc)


def sequence_range(total: int, limit: int, offset: int) -> tuple[int, int] | None:
    """
    The inclusive sequence range for a page, or None for an empty mailbox.

    Args:
        total: Number of messages in the folder (EXISTS).
        limit: Page size.
        offset: How many messages to skip, counted from the newest.

    Raises:
        ValidationError: If limit or offset is negative.
    """
    if limit < 0 or offset < 0:
        raise ValidationError(f"limit and offset must not be negative (got {limit}, {offset})")
    if total <= 0:
        return None

    start = max(1, total - offset - limit + 1)
    end = max(1, total - offset)
    return start, end


def summary_from_record(record: FetchRecord) -> MessageSummary | None:
    """A MessageSummary for a fetched record; None if it had no envelope."""
    envelope = record.envelope
    if envelope is None:
        return None

    senders = envelope.get("from") or []
    return MessageSummary(
        uid=record.uid,
        date=envelope.get("date"),
        subject=envelope.get("subject") or "(no subject)",
        sender=senders[0] if senders else Address(),
        to=list(envelope.get("to") or []),
        cc=list(envelope.get("cc") or []),
        has_attachments=record.has_attachments,
        seen="\\Seen" in record.flags,
        size=record.size,
    )


def order_page(records: list[FetchRecord]) -> list[MessageSummary]:
    """
    Turn fetched records into a page: envelope-less records are dropped and
    the rest sorted newest first. Messages without a date go last.
    """
    summaries = [s for s in (summary_from_record(r) for r in records) if s is not None]
    summaries.sort(key=lambda s: s.date or _NO_DATE, reverse=True)
    return summaries
