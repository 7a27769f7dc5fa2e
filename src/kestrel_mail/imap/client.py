# =============================================================================
# IMAP Protocol Client
# =============================================================================
# The wire-level IMAP connection, wrapped around aioimaplib.
#
# MailProtocol describes what MailSession needs from a connection. The
# production implementation is ImapProtocolClient; tests plug in a fake.
#
# This layer knows nothing about locks, folder trees or pagination: it
# sends one command, checks the result and parses the response. Errors are
# translated into the kestrel_mail.errors taxonomy:
#   - timeouts         -> ConnectTimeoutError
#   - socket failures  -> NetworkError
#   - rejected login   -> AuthError
#   - non-OK results   -> ProtocolError
# =============================================================================

import asyncio
import logging
from typing import Any, Awaitable, Protocol

from aioimaplib import aioimaplib

from kestrel_mail.core import FolderEntry
from kestrel_mail.errors import (
    AuthError,
    ConnectTimeoutError,
    MailError,
    NetworkError,
    NotConnectedError,
    ProtocolError,
)
from kestrel_mail.imap.parser import (
    FetchRecord,
    first_literal,
    fetch_items,
    group_fetch_responses,
    parse_exists,
    parse_fetch_record,
    parse_list_lines,
    parse_status_lines,
)

logger = logging.getLogger(__name__)

SUMMARY_ITEMS = "(UID FLAGS ENVELOPE RFC822.SIZE BODYSTRUCTURE)"


def quote_mailbox(name: str) -> str:
    """
    Quote a mailbox name for use in an IMAP command.

    Names with spaces, quotes, backslashes or brackets must be quoted, with
    internal quotes and backslashes escaped.
    """
    if not name or any(c in name for c in ' "\\(){}[]%*'):
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return name


class MailProtocol(Protocol):
    """The commands MailSession issues over a connection."""

    async def connect(
        self, host: str, port: int, secure: bool, username: str, password: str
    ) -> None: ...

    async def logout(self) -> None: ...

    def has_capability(self, name: str) -> bool: ...

    async def list_folders(self, *, status: bool = True) -> list[FolderEntry]: ...

    async def select(self, path: str) -> int: ...

    async def fetch_summaries(self, start: int, end: int) -> list[FetchRecord]: ...

    async def fetch_raw(self, uid: int) -> bytes | None: ...

    async def fetch_flags(self, uid: int) -> set[str] | None: ...

    async def store_flags(self, uid: int, flags: list[str], *, add: bool = True) -> None: ...

    async def move(self, uid: int, destination: str) -> None: ...

    async def append(self, path: str, raw: bytes, flags: list[str]) -> None: ...


class ImapProtocolClient:
    """
    MailProtocol over aioimaplib.

    Usage:
        >>> client = ImapProtocolClient()
        >>> await client.connect("imap.example.com", 993, True, "me", "secret")
        >>> await client.select("INBOX")
        42
        >>> await client.logout()
    """

    # Timeout for IMAP operations (seconds)
    TIMEOUT = 30

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout if timeout is not None else self.TIMEOUT
        self._client: aioimaplib.IMAP4_SSL | aioimaplib.IMAP4 | None = None
        self._host = ""

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(
        self, host: str, port: int, secure: bool, username: str, password: str
    ) -> None:
        """
        Open the connection and log in.

        Raises:
            ConnectTimeoutError: The server did not answer in time.
            NetworkError: The server could not be reached.
            AuthError: The server rejected the credentials.
        """
        logger.info(f"Connecting to {host}:{port} ({'TLS' if secure else 'plain'})")
        self._host = host

        if secure:
            client = aioimaplib.IMAP4_SSL(host=host, port=port, timeout=self.timeout)
        else:
            client = aioimaplib.IMAP4(host=host, port=port, timeout=self.timeout)

        try:
            await client.wait_hello_from_server()
        except (asyncio.TimeoutError, aioimaplib.CommandTimeout) as e:
            raise ConnectTimeoutError(f"Connection timed out to {host}:{port}") from e
        except OSError as e:
            raise NetworkError(f"Failed to connect to {host}:{port}: {e}") from e

        self._client = client
        try:
            response = await self._guard(client.login(username, password))
            if response.result != "OK":
                raise AuthError(f"Authentication failed for {username}: {_describe(response)}")
        except MailError:
            await self._release()
            raise

        logger.debug(f"Logged in to {host} as {username}")

    async def logout(self) -> None:
        """Send LOGOUT and drop the connection."""
        client, self._client = self._client, None
        if client is None:
            return
        logger.debug(f"Sending LOGOUT to {self._host}")
        await self._guard(client.logout())

    def has_capability(self, name: str) -> bool:
        return self._client is not None and self._client.has_capability(name)

    # =========================================================================
    # Folders
    # =========================================================================

    async def list_folders(self, *, status: bool = True) -> list[FolderEntry]:
        """
        LIST all folders, optionally with MESSAGES/UNSEEN counts from STATUS.

        Folders flagged \\Noselect are listed but never STATUSed.
        """
        client = self._require()
        response = await self._checked(client.list('""', "*"), "LIST")

        entries = parse_list_lines(response.lines)

        if status:
            for entry in entries:
                if not entry.selectable:
                    continue
                result = await self._guard(
                    client.status(quote_mailbox(entry.path), "(MESSAGES UNSEEN)")
                )
                if result.result != "OK":
                    logger.warning(f"STATUS failed for {entry.path}: {_describe(result)}")
                    continue
                counts = parse_status_lines(result.lines)
                entry.messages = counts.get("MESSAGES", 0)
                entry.unseen = counts.get("UNSEEN", 0)

        logger.debug(f"Listed {len(entries)} folders")
        return entries

    async def select(self, path: str) -> int:
        """SELECT a folder. Returns its EXISTS count."""
        client = self._require()
        response = await self._checked(client.select(quote_mailbox(path)), f"SELECT {path}")
        return parse_exists(response.lines)

    # =========================================================================
    # Messages
    # =========================================================================

    async def fetch_summaries(self, start: int, end: int) -> list[FetchRecord]:
        """FETCH summary data for the sequence range start:end."""
        client = self._require()
        response = await self._checked(
            client.fetch(f"{start}:{end}", SUMMARY_ITEMS), "FETCH"
        )
        return [parse_fetch_record(chunk) for chunk in group_fetch_responses(response.lines)]

    async def fetch_raw(self, uid: int) -> bytes | None:
        """Download the full RFC 822 source of a message without setting \\Seen."""
        client = self._require()
        response = await self._checked(client.uid("FETCH", str(uid), "(BODY.PEEK[])"), "UID FETCH")
        return first_literal(group_fetch_responses(response.lines))

    async def fetch_flags(self, uid: int) -> set[str] | None:
        client = self._require()
        response = await self._checked(client.uid("FETCH", str(uid), "(FLAGS)"), "UID FETCH")
        for chunk in group_fetch_responses(response.lines):
            flags = fetch_items(chunk).get("FLAGS")
            if isinstance(flags, list):
                return {str(f) for f in flags if f is not None}
        return None

    async def store_flags(self, uid: int, flags: list[str], *, add: bool = True) -> None:
        client = self._require()
        command = f"{'+' if add else '-'}FLAGS ({' '.join(flags)})"
        logger.debug(f"Setting flags on {uid}: {command}")
        await self._checked(client.uid("STORE", str(uid), command), "UID STORE")

    async def move(self, uid: int, destination: str) -> None:
        """
        Move a message. Uses MOVE when the server has it, otherwise
        COPY followed by flagging the source \\Deleted.
        """
        client = self._require()
        quoted = quote_mailbox(destination)
        if self.has_capability("MOVE"):
            await self._checked(client.uid("MOVE", str(uid), quoted), "UID MOVE")
        else:
            await self._checked(client.uid("COPY", str(uid), quoted), "UID COPY")
            await self.store_flags(uid, ["\\Deleted"], add=True)

    async def append(self, path: str, raw: bytes, flags: list[str]) -> None:
        client = self._require()
        await self._checked(
            client.append(raw, mailbox=quote_mailbox(path), flags=" ".join(flags) or None),
            f"APPEND {path}",
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _release(self) -> None:
        """Close a connection whose login failed; errors are only logged."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await self._guard(client.logout())
        except MailError as e:
            logger.debug(f"Ignoring error while closing {self._host}: {e}")

    def _require(self) -> aioimaplib.IMAP4:
        if self._client is None:
            raise NotConnectedError()
        return self._client

    async def _guard(self, command: Awaitable[Any]) -> Any:
        """Await a command, translating transport failures."""
        try:
            return await command
        except (asyncio.TimeoutError, aioimaplib.CommandTimeout) as e:
            raise ConnectTimeoutError(f"IMAP command timed out on {self._host}") from e
        except aioimaplib.Abort as e:
            raise ProtocolError(f"IMAP command aborted: {e}") from e
        except OSError as e:
            raise NetworkError(f"Connection to {self._host} failed: {e}") from e

    async def _checked(self, command: Awaitable[Any], name: str) -> Any:
        response = await self._guard(command)
        if response.result != "OK":
            raise ProtocolError(f"{name} failed: {_describe(response)}")
        return response


def _describe(response: Any) -> str:
    """Short text form of a response for error messages."""
    lines = getattr(response, "lines", []) or []
    texts = []
    for line in lines[-2:]:
        if isinstance(line, (bytes, bytearray)):
            line = bytes(line).decode("utf-8", errors="replace")
        texts.append(str(line))
    return " ".join(texts) or str(getattr(response, "result", "?"))
