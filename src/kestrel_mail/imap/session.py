# =============================================================================
# Mail Session
# =============================================================================
# One MailSession per account. It owns the account's single IMAP connection
# and serializes everything that needs a selected folder.
#
# Folder lock:
#   IMAP has one "selected" folder per connection. Every folder-scoped
#   operation runs inside folder_lock(path), which holds the session mutex,
#   SELECTs the folder and releases on every exit path. Two operations on
#   different folders of the same account therefore queue up; different
#   accounts never share a lock.
#
# Connection state:
#   DISCONNECTED -> CONNECTING -> CONNECTED
#                            \-> ERROR (last_error holds the message)
#
#   has_connection_error is a separate flag owned by the explorer: it stays
#   set after a failed connect or listing until an explicit refresh clears it.
# =============================================================================

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Callable, Iterable

from kestrel_mail.core import Account, AttachmentInfo, FolderNode, MessageDetail, MessageSummary
from kestrel_mail.errors import (
    ConnectTimeoutError,
    MailError,
    NetworkError,
    NotConnectedError,
    NotFoundError,
    ValidationError,
)
from kestrel_mail.folders import build_folder_tree
from kestrel_mail.imap.client import ImapProtocolClient, MailProtocol
from kestrel_mail.imap.listing import order_page, sequence_range
from kestrel_mail.imap.mime import extract_attachment, parse_message

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], MailProtocol]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class MailSession:
    """
    The IMAP connection of one account.

    Usage:
        >>> session = MailSession(account.id)
        >>> await session.connect(account, password)
        >>> forest = await session.list_folders()
        >>> page = await session.get_messages("INBOX", limit=50)
        >>> detail = await session.get_message("INBOX", page[0].uid)
        >>> await session.disconnect()

    Attributes:
        account_id: Id of the account this session belongs to.
        state: Current ConnectionState.
        last_error: Message of the last connect/listing failure.
        has_connection_error: Set while the tree should show an error item.
    """

    def __init__(
        self,
        account_id: str,
        client_factory: ClientFactory = ImapProtocolClient,
    ) -> None:
        self.account_id = account_id
        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self.has_connection_error = False
        self._client_factory = client_factory
        self._client: MailProtocol | None = None
        self._lock = asyncio.Lock()
        self._selected: str | None = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._client is not None

    @property
    def selected_folder(self) -> str | None:
        """The folder currently SELECTed on the connection, if any."""
        return self._selected

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self, account: Account, password: str | None) -> None:
        """
        Open the account's connection.

        An existing connection is dropped first, so there is never more than
        one per account. Failures are not retried.

        Raises:
            ValidationError: Password or host missing.
            AuthError: Login rejected.
            NetworkError: Server unreachable.
            ConnectTimeoutError: Server did not answer in time.
        """
        _validate_credentials(account, password)

        if self._client is not None:
            await self.disconnect(best_effort=True)

        self.state = ConnectionState.CONNECTING
        client = self._client_factory()
        try:
            await _open(client, account, password)
        except MailError as e:
            self.state = ConnectionState.ERROR
            self.last_error = str(e)
            logger.warning(f"[{self.account_id}] Connect failed: {e}")
            raise

        self._client = client
        self._selected = None
        self.state = ConnectionState.CONNECTED
        self.last_error = None
        logger.info(f"[{self.account_id}] Connected to {account.host}")

    async def disconnect(self, *, best_effort: bool = False) -> None:
        """
        Log out and drop the connection.

        Does nothing without a connection. The session is DISCONNECTED
        afterwards even if logging out failed.

        Args:
            best_effort: Log and swallow logout failures (cleanup paths).
        """
        client, self._client = self._client, None
        if client is None:
            return

        self._selected = None
        self.state = ConnectionState.DISCONNECTED
        try:
            await client.logout()
        except Exception as e:
            if not best_effort:
                raise
            logger.debug(f"[{self.account_id}] Ignoring error during disconnect: {e}")

    def mark_connection_error(self, message: str) -> None:
        self.has_connection_error = True
        self.last_error = message

    def clear_connection_error(self) -> None:
        self.has_connection_error = False
        self.last_error = None

    @staticmethod
    async def test_connection(
        account: Account,
        password: str | None,
        client_factory: ClientFactory = ImapProtocolClient,
    ) -> None:
        """
        Verify that an account's settings work: connect, log in, log out.

        Uses a throwaway connection; no session is touched.

        Raises:
            The same errors as connect().
        """
        _validate_credentials(account, password)
        client = client_factory()
        await _open(client, account, password)
        try:
            await client.logout()
        except MailError as e:
            logger.debug(f"Logout after connection test failed: {e}")

    # =========================================================================
    # Folders
    # =========================================================================

    async def list_folders(self) -> list[FolderNode]:
        """
        The account's folder forest with MESSAGES/UNSEEN counts.

        Raises:
            NotConnectedError: If the session is not connected.
        """
        client = self._require()
        async with self._lock:
            entries = await client.list_folders(status=True)
        return build_folder_tree(entries)

    @asynccontextmanager
    async def folder_lock(self, path: str) -> AsyncIterator[int]:
        """
        Hold the session mutex with `path` selected.

        Yields the folder's message count (EXISTS). The mutex is released
        when the block exits, whether normally, by exception or by
        cancellation.
        """
        async with self._lock:
            client = self._require()
            try:
                total = await client.select(path)
            except BaseException:
                self._selected = None
                raise
            self._selected = path
            yield total

    # =========================================================================
    # Messages
    # =========================================================================

    async def get_messages(
        self, folder_path: str, limit: int = 50, offset: int = 0
    ) -> list[MessageSummary]:
        """
        One page of message summaries, newest first.

        Args:
            folder_path: Folder to list.
            limit: Page size.
            offset: Messages to skip from the newest end.
        """
        if limit < 0 or offset < 0:
            raise ValidationError(f"limit and offset must not be negative (got {limit}, {offset})")

        async with self.folder_lock(folder_path) as total:
            window = sequence_range(total, limit, offset)
            if window is None or limit == 0:
                return []
            records = await self._require().fetch_summaries(*window)

        page = order_page(records)
        logger.debug(
            f"[{self.account_id}] {folder_path}: {len(page)} messages "
            f"(seq {window[0]}:{window[1]} of {total})"
        )
        return page

    async def get_message(self, folder_path: str, uid: int) -> MessageDetail:
        """
        Download and decode a full message.

        The flags are fetched in a second command; the download uses
        BODY.PEEK so it never changes the seen state itself.

        Raises:
            NotFoundError: If the server returned no message for the UID.
        """
        async with self.folder_lock(folder_path):
            client = self._require()
            raw = await client.fetch_raw(uid)
            if not raw:
                raise NotFoundError(f"Message {uid} not found in {folder_path}")
            flags = await client.fetch_flags(uid)

        return parse_message(uid, raw, flags)

    async def mark_message_seen(self, folder_path: str, uid: int, seen: bool = True) -> None:
        async with self.folder_lock(folder_path):
            await self._require().store_flags(uid, ["\\Seen"], add=seen)

    async def delete_message(self, folder_path: str, uid: int) -> None:
        """Flag a message \\Deleted. Nothing is expunged."""
        async with self.folder_lock(folder_path):
            await self._require().store_flags(uid, ["\\Deleted"], add=True)

    async def move_message(self, folder_path: str, uid: int, destination: str) -> None:
        if not destination:
            raise ValidationError("Destination folder is required")
        if destination == folder_path:
            raise ValidationError(f"Message is already in {destination}")

        async with self.folder_lock(folder_path):
            await self._require().move(uid, destination)
        logger.info(f"[{self.account_id}] Moved {uid} from {folder_path} to {destination}")

    async def get_attachment(
        self, folder_path: str, uid: int, index: int
    ) -> tuple[AttachmentInfo, bytes]:
        """
        The index-th attachment of a message.

        Raises:
            NotFoundError: Unknown message or attachment index.
        """
        if index < 0:
            raise NotFoundError(f"Attachment {index} not found")

        async with self.folder_lock(folder_path):
            raw = await self._require().fetch_raw(uid)
        if not raw:
            raise NotFoundError(f"Message {uid} not found in {folder_path}")
        return extract_attachment(raw, index)

    async def append_message(
        self, folder_path: str, raw: bytes, flags: Iterable[str] = ()
    ) -> None:
        """Store a message in a folder (e.g. a sent copy)."""
        client = self._require()
        async with self._lock:
            await client.append(folder_path, raw, list(flags))

    # =========================================================================
    # Internals
    # =========================================================================

    def _require(self) -> MailProtocol:
        if not self.connected or self._client is None:
            raise NotConnectedError()
        return self._client

    def __repr__(self) -> str:
        return f"MailSession({self.account_id!r}, state={self.state.value})"


def _validate_credentials(account: Account, password: str | None) -> None:
    if not password:
        raise ValidationError(f"No password configured for {account.name}")
    if not account.host:
        raise ValidationError(f"No IMAP host configured for {account.name}")


async def _open(client: MailProtocol, account: Account, password: str) -> None:
    """Connect a protocol client, mapping stray transport errors."""
    try:
        await client.connect(
            account.host, account.port, account.secure, account.username, password
        )
    except asyncio.TimeoutError as e:
        raise ConnectTimeoutError(f"Connection timed out to {account.host}") from e
    except OSError as e:
        raise NetworkError(f"Failed to connect to {account.host}: {e}") from e
