# =============================================================================
# IMAP Response Parsing
# =============================================================================
# aioimaplib hands back raw response lines: a mix of text lines and byte
# literals. This module turns them into Python structures.
#
# IMAP data is an s-expression-like grammar:
#   - atoms:          UID  \Seen  BODY[]  123
#   - quoted strings: "Hello \"world\""
#   - NIL:            None
#   - lists:          (a b (c d))
#   - literals:       {N} followed by N raw bytes on the "next line"
#
# Literals are collected separately and referenced from the text by a
# "~{index}" marker, so binary message bodies never get decoded as text.
# =============================================================================

import codecs
import email.header
import email.utils
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from kestrel_mail.core import Address, FolderEntry
from kestrel_mail.core.folder import SPECIAL_USE_FLAGS

logger = logging.getLogger(__name__)

_FETCH_START = re.compile(rb"^\*?\s*(\d+)\s+FETCH\s*\(", re.IGNORECASE)
_LITERAL_MARKER = re.compile(r"\{(\d+)\}\s*$")
_EXISTS = re.compile(r"(\d+)\s+EXISTS", re.IGNORECASE)
_UTF7_RUN = re.compile(r"&([A-Za-z0-9+,]*)-")


@dataclass
class FetchChunk:
    """The text of one FETCH response plus the literals it referenced."""
    seq: int
    text: str
    literals: list[bytes] = field(default_factory=list)


@dataclass
class FetchRecord:
    """
    One message from a summary FETCH.

    Attributes:
        seq: Sequence number the server reported.
        uid: Message UID (0 if the server left it out).
        flags: Flags such as "\\Seen".
        envelope: Parsed ENVELOPE, or None if the server sent none.
        size: RFC822.SIZE in bytes.
        has_attachments: True if BODYSTRUCTURE contains an attachment part.
    """
    seq: int
    uid: int = 0
    flags: set[str] = field(default_factory=set)
    envelope: dict[str, Any] | None = None
    size: int = 0
    has_attachments: bool = False


class Literal:
    """Placeholder for a literal inside parsed data."""

    def __init__(self, data: bytes) -> None:
        self.data = data

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def __repr__(self) -> str:
        return f"Literal({len(self.data)} bytes)"


# =============================================================================
# Tokenizing
# =============================================================================

def to_text(item: bytes | bytearray | str) -> str:
    """Decode a response line to text."""
    if isinstance(item, (bytes, bytearray)):
        return bytes(item).decode("utf-8", errors="replace")
    return str(item)


def parse_data(text: str, literals: list[bytes] | None = None) -> list[Any]:
    """
    Parse IMAP data into nested Python lists.

    Atoms become strings, NIL becomes None, literal markers become Literal.

    Example:
        >>> parse_data('UID 5 FLAGS (\\\\Seen) X NIL')
        ['UID', '5', 'FLAGS', ['\\\\Seen'], 'X', None]
    """
    literals = literals or []
    stack: list[list[Any]] = [[]]
    pos = 0
    length = len(text)

    while pos < length:
        char = text[pos]

        if char in " \r\n":
            pos += 1
        elif char == "(":
            stack.append([])
            pos += 1
        elif char == ")":
            if len(stack) > 1:
                done = stack.pop()
                stack[-1].append(done)
            pos += 1
        elif char == '"':
            # Quoted string with backslash escapes
            pos += 1
            chars = []
            while pos < length and text[pos] != '"':
                if text[pos] == "\\" and pos + 1 < length:
                    pos += 1
                chars.append(text[pos])
                pos += 1
            pos += 1  # closing quote
            stack[-1].append("".join(chars))
        elif text.startswith("~{", pos):
            end = text.index("}", pos)
            index = int(text[pos + 2:end])
            data = literals[index] if index < len(literals) else b""
            stack[-1].append(Literal(data))
            pos = end + 1
        else:
            # Atom; brackets may contain spaces and parentheses
            start = pos
            depth = 0
            while pos < length:
                c = text[pos]
                if c == "[":
                    depth += 1
                elif c == "]":
                    depth -= 1
                elif depth <= 0 and c in ' ()"':
                    break
                pos += 1
            atom = text[start:pos]
            stack[-1].append(None if atom.upper() == "NIL" else atom)

    # Tolerate unbalanced input (truncated responses)
    while len(stack) > 1:
        done = stack.pop()
        stack[-1].append(done)

    return stack[0]


def as_str(value: Any) -> str:
    """Coerce a parsed value to a string ("" for NIL)."""
    if value is None:
        return ""
    if isinstance(value, Literal):
        return value.text()
    if isinstance(value, list):
        return ""
    return str(value)


def decode_header(value: str) -> str:
    """Decode an RFC 2047 encoded header value."""
    if not value:
        return ""
    try:
        decoded_parts = email.header.decode_header(value)
        result = ""
        for part, charset in decoded_parts:
            if isinstance(part, bytes):
                try:
                    result += part.decode(charset or "utf-8", errors="replace")
                except LookupError:
                    result += part.decode("utf-8", errors="replace")
            else:
                result += part
        return result
    except Exception:
        return value


def parse_date(value: str) -> datetime | None:
    """
    Parse an RFC 5322 date, normalized to UTC.

    Naive dates are assumed to be UTC so aware and naive values sort together.
    """
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparseable date: {value!r}")
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# FETCH Responses
# =============================================================================

def group_fetch_responses(lines: Iterable[bytes | bytearray | str]) -> list[FetchChunk]:
    """
    Group raw response lines into one chunk per "N FETCH (...)" response.

    A line ending in {N} announces a literal: the next item is the raw
    literal data. It is stored in the chunk's literal list and replaced in
    the text by a "~{index}" marker.
    """
    chunks: list[FetchChunk] = []
    current: FetchChunk | None = None
    expect_literal = False

    for item in lines:
        raw = bytes(item) if isinstance(item, (bytes, bytearray)) else str(item).encode("utf-8")

        if expect_literal and current is not None:
            current.text += f"~{{{len(current.literals)}}}"
            current.literals.append(raw)
            expect_literal = False
            continue

        match = _FETCH_START.match(raw)
        if match:
            current = FetchChunk(seq=int(match.group(1)), text="")
            chunks.append(current)
            # Keep only what follows "N FETCH "
            line = raw[match.end() - 1:].decode("utf-8", errors="replace")
        elif current is not None:
            line = raw.decode("utf-8", errors="replace")
        else:
            # Status lines before the first FETCH
            continue

        literal = _LITERAL_MARKER.search(line)
        if literal:
            line = line[:literal.start()]
            expect_literal = True

        current.text += line

    return chunks


def fetch_items(chunk: FetchChunk) -> dict[str, Any]:
    """
    Turn a FETCH chunk into a {ITEM: value} dict.

    Example:
        "(UID 5 FLAGS (\\Seen))" -> {"UID": "5", "FLAGS": ["\\Seen"]}
    """
    parsed = parse_data(chunk.text, chunk.literals)
    if not parsed or not isinstance(parsed[0], list):
        return {}

    items = parsed[0]
    result: dict[str, Any] = {}
    for i in range(0, len(items) - 1, 2):
        key = items[i]
        if isinstance(key, str):
            result[key.upper()] = items[i + 1]
    return result


def parse_fetch_record(chunk: FetchChunk) -> FetchRecord:
    """Build a FetchRecord from a summary FETCH chunk."""
    items = fetch_items(chunk)
    record = FetchRecord(seq=chunk.seq)

    uid = items.get("UID")
    if uid is not None:
        try:
            record.uid = int(as_str(uid))
        except ValueError:
            logger.warning(f"Bad UID in FETCH response: {uid!r}")

    flags = items.get("FLAGS")
    if isinstance(flags, list):
        record.flags = {as_str(f) for f in flags}

    size = items.get("RFC822.SIZE")
    if size is not None:
        try:
            record.size = int(as_str(size))
        except ValueError:
            pass

    envelope = items.get("ENVELOPE")
    if isinstance(envelope, list):
        record.envelope = parse_envelope(envelope)

    structure = items.get("BODYSTRUCTURE")
    if isinstance(structure, list):
        record.has_attachments = has_attachment_part(structure)

    return record


def parse_envelope(envelope: list[Any]) -> dict[str, Any]:
    """
    Parse an IMAP ENVELOPE structure.

    Format: (date subject from sender reply-to to cc bcc in-reply-to message-id)
    """
    fields = list(envelope) + [None] * (10 - len(envelope))
    return {
        "date": parse_date(as_str(fields[0])),
        "subject": decode_header(as_str(fields[1])),
        "from": parse_address_list(fields[2]),
        "to": parse_address_list(fields[5]),
        "cc": parse_address_list(fields[6]),
        "in_reply_to": as_str(fields[8]),
        "message_id": as_str(fields[9]),
    }


def parse_address_list(value: Any) -> list[Address]:
    """Parse an envelope address list: ((name adl mailbox host) ...)."""
    if not isinstance(value, list):
        return []

    addresses = []
    for entry in value:
        if not isinstance(entry, list) or len(entry) < 4:
            continue
        name = decode_header(as_str(entry[0]))
        mailbox = as_str(entry[2])
        host = as_str(entry[3])
        if not mailbox:
            # Group syntax markers carry no address
            continue
        address = f"{mailbox}@{host}" if host else mailbox
        addresses.append(Address(address=address, name=name or None))
    return addresses


def has_attachment_part(structure: list[Any]) -> bool:
    """True if any part of a BODYSTRUCTURE has "attachment" disposition."""
    for item in structure:
        if isinstance(item, list):
            if item and isinstance(item[0], str) and item[0].lower() == "attachment":
                return True
            if has_attachment_part(item):
                return True
    return False


def first_literal(chunks: list[FetchChunk]) -> bytes | None:
    """The first literal of the first chunk (e.g. a BODY[] download)."""
    for chunk in chunks:
        if chunk.literals:
            return chunk.literals[0]
    return None


# =============================================================================
# LIST / STATUS / SELECT Responses
# =============================================================================

def parse_list_lines(lines: Iterable[bytes | bytearray | str]) -> list[FolderEntry]:
    """
    Parse a whole LIST response.

    A mailbox name the server sent as a literal ({N} at the end of the line)
    arrives as the next item. It is kept aside and referenced from the line
    by a "~{0}" marker, as in FETCH responses.
    """
    entries = []
    pending: tuple[str, list[bytes]] | None = None

    for item in lines:
        if pending is not None:
            text, literals = pending
            raw = bytes(item) if isinstance(item, (bytes, bytearray)) else str(item).encode("utf-8")
            literals.append(raw)
            line, pending = text + f"~{{{len(literals) - 1}}}", None
        else:
            line, literals = to_text(item), []
            literal = _LITERAL_MARKER.search(line)
            if literal:
                pending = (line[:literal.start()], literals)
                continue

        entry = parse_list_line(line, literals)
        if entry is not None:
            entries.append(entry)

    return entries


def parse_list_line(line: bytes | bytearray | str, literals: list[bytes] | None = None) -> FolderEntry | None:
    """
    Parse a single LIST response line into a FolderEntry.

    LIST response format:
        (\\HasNoChildren) "/" "INBOX"
        (\\HasNoChildren \\Sent) "/" "Sent"
        (\\HasChildren) "." Work

    The path is kept as sent (it is what SELECT needs); the name is decoded
    from modified UTF-7.
    """
    text = to_text(line)
    if text.upper().startswith("LIST "):
        text = text[5:]

    parsed = parse_data(text, literals)
    if len(parsed) < 3 or not isinstance(parsed[0], list):
        return None

    flags = [as_str(f) for f in parsed[0]]
    delimiter = as_str(parsed[1])
    path = as_str(parsed[2])
    if not path:
        return None

    parent_path = None
    name = path
    if delimiter and delimiter in path:
        parent_path, name = path.rsplit(delimiter, 1)

    return FolderEntry(
        path=path,
        name=decode_mailbox_name(name),
        delimiter=delimiter,
        parent_path=parent_path,
        flags=flags,
        special_use=detect_special_use(path, flags),
    )


def detect_special_use(path: str, flags: list[str]) -> str | None:
    """
    The SPECIAL-USE attribute (RFC 6154) of a folder.

    INBOX has no attribute on the wire but is reported as "\\Inbox".
    """
    if path.upper() == "INBOX":
        return "\\Inbox"
    lowered = {f.lower(): f for f in flags}
    for special in SPECIAL_USE_FLAGS:
        if special.lower() in lowered:
            return special
    return None


def parse_status_lines(lines: Iterable[bytes | bytearray | str]) -> dict[str, int]:
    """
    Parse a STATUS response.

        STATUS INBOX (MESSAGES 12 UNSEEN 3) -> {"MESSAGES": 12, "UNSEEN": 3}
    """
    status: dict[str, int] = {}
    for line in lines:
        parsed = parse_data(to_text(line))
        values = next((p for p in reversed(parsed) if isinstance(p, list)), None)
        if values is None:
            continue
        for i in range(0, len(values) - 1, 2):
            try:
                status[as_str(values[i]).upper()] = int(as_str(values[i + 1]))
            except ValueError:
                pass
    return status


def parse_exists(lines: Iterable[bytes | bytearray | str]) -> int:
    """The EXISTS count from a SELECT/EXAMINE response."""
    exists = 0
    for line in lines:
        match = _EXISTS.search(to_text(line))
        if match:
            exists = int(match.group(1))
    return exists


def decode_mailbox_name(name: str) -> str:
    """
    Decode an RFC 3501 modified UTF-7 mailbox name.

        >>> decode_mailbox_name("Entw&APw-rfe")
        'Entwürfe'

    "&-" stands for "&". Runs that fail to decode are left as they are.
    """
    def decode_run(match: re.Match) -> str:
        run = match.group(1)
        if not run:
            return "&"
        try:
            return codecs.decode(f"+{run.replace(',', '/')}-".encode("ascii"), "utf-7")
        except UnicodeDecodeError:
            logger.debug(f"Cannot decode mailbox name run {match.group(0)!r}")
            return match.group(0)

    return _UTF7_RUN.sub(decode_run, name)
