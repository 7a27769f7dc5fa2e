# =============================================================================
# Mail Explorer
# =============================================================================
# Data provider behind the folder tree:
#
#   (root)
#   ├── Account "Work"                    TreeItemKind.ACCOUNT
#   │   ├── INBOX (3)                     TreeItemKind.FOLDER
#   │   └── Projects
#   │       └── Alpha (1)
#   └── Account "Home"
#       └── ⚠ Connection error            TreeItemKind.ERROR
#
# It owns the per-account MailSession registry (lookup-or-create) and the
# FolderCache, connects accounts on demand, turns connect/listing failures
# into a single error item per account and keeps the unread badge current.
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable

from kestrel_mail.accounts import AccountStore
from kestrel_mail.core import Account, FolderNode, FolderRole
from kestrel_mail.errors import MailError, NotFoundError
from kestrel_mail.events import Emitter
from kestrel_mail.folders import FolderCache
from kestrel_mail.imap.session import MailSession

logger = logging.getLogger(__name__)

CONNECTION_ERROR_LABEL = "⚠ Connection error"
NO_PASSWORD_LABEL = "⚠ No password configured"

SessionFactory = Callable[[str], MailSession]


class TreeItemKind(Enum):
    ACCOUNT = auto()
    FOLDER = auto()
    ERROR = auto()
    NOTICE = auto()


@dataclass
class TreeItem:
    """
    One row of the folder tree.

    Attributes:
        kind: What the row represents.
        account_id: Account the row belongs to.
        label: Text shown in the tree.
        folder_path: Folder path for FOLDER rows.
        folder: The cached FolderNode for FOLDER rows.
        description: Secondary text (the unread count for folders).
        tooltip: Hover/detail text (the error message for ERROR rows).
        collapsible: True if the row has children to expand.
    """
    kind: TreeItemKind
    account_id: str
    label: str
    folder_path: str | None = None
    folder: FolderNode | None = None
    description: str = ""
    tooltip: str = ""
    collapsible: bool = False

    @property
    def role(self) -> FolderRole | None:
        return self.folder.role if self.folder else None


class MailExplorer:
    """
    Folder tree provider, session registry and badge source.

    Usage:
        >>> explorer = MailExplorer(account_store)
        >>> accounts = await explorer.get_children()
        >>> folders = await explorer.get_children(accounts[0])
        >>> explorer.badge
        4
    """

    def __init__(
        self,
        accounts: AccountStore,
        session_factory: SessionFactory = MailSession,
    ) -> None:
        self.accounts = accounts
        self.cache = FolderCache()
        self._session_factory = session_factory
        self._sessions: dict[str, MailSession] = {}
        self._connecting: dict[str, asyncio.Task] = {}
        self._did_change = Emitter()
        self._badge_changed = Emitter()
        self._badge: int | None = None
        self._unsubscribe_accounts = accounts.on_accounts_changed(self._on_accounts_changed)

    # =========================================================================
    # Events
    # =========================================================================

    def on_did_change(self, listener: Callable[[TreeItem | None], Any]) -> Callable[[], None]:
        """Called with the changed item, or None when the whole tree changed."""
        return self._did_change.subscribe(listener)

    def on_badge_changed(self, listener: Callable[[int | None], Any]) -> Callable[[], None]:
        return self._badge_changed.subscribe(listener)

    @property
    def badge(self) -> int | None:
        """Unread messages over all cached accounts; None when there are none."""
        return self._badge

    # =========================================================================
    # Sessions
    # =========================================================================

    def get_session(self, account_id: str) -> MailSession:
        """The account's session, created on first use."""
        session = self._sessions.get(account_id)
        if session is None:
            session = self._session_factory(account_id)
            self._sessions[account_id] = session
        return session

    def sessions(self) -> list[MailSession]:
        return list(self._sessions.values())

    async def connect_account(self, account_id: str) -> MailSession:
        """
        Connect an account unless it already is, and return its session.

        Overlapping calls for the same account share one connect attempt.

        Raises:
            NotFoundError: Unknown account.
            ValidationError: No password stored.
            AuthError, NetworkError, ConnectTimeoutError: From the session.
        """
        account = self.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        session = self.get_session(account_id)
        if session.connected:
            return session

        task = self._connecting.get(account_id)
        if task is None:
            task = asyncio.ensure_future(self._connect(session, account))
            self._connecting[account_id] = task
            task.add_done_callback(
                lambda done: self._connecting.pop(account_id, None)
                if self._connecting.get(account_id) is done else None
            )
        return await task

    async def _connect(self, session: MailSession, account: Account) -> MailSession:
        await session.connect(account, self.accounts.get_password(account.id))
        session.clear_connection_error()
        return session

    async def auto_connect(self) -> list[str]:
        """
        Connect every account that has a stored password.

        Failures are recorded on the session (the tree shows them) and do not
        stop the other accounts. Returns the ids that connected.
        """
        connected = []
        for account in self.accounts.list_accounts():
            if not self.accounts.get_password(account.id):
                continue
            try:
                await self.connect_account(account.id)
            except MailError as e:
                logger.warning(f"Auto-connect failed for {account.id}: {e}")
                self.get_session(account.id).mark_connection_error(str(e))
                continue
            connected.append(account.id)
        return connected

    async def default_folder(self, account_id: str) -> TreeItem | None:
        """
        The folder to open first for an account: its inbox, otherwise the
        first selectable top-level folder.
        """
        items = await self._folder_items(account_id)
        folders = [
            item for item in items
            if item.kind is TreeItemKind.FOLDER and item.folder is not None and item.folder.selectable
        ]
        for item in folders:
            if item.role is FolderRole.INBOX:
                return item
        return folders[0] if folders else None

    # =========================================================================
    # Tree
    # =========================================================================

    async def get_children(self, item: TreeItem | None = None) -> list[TreeItem]:
        """
        Children of a tree row; accounts when called without one.

        Expanding an account connects it if needed and lists its folders.
        """
        if item is None:
            return [self._account_item(a.id) for a in self.accounts.list_accounts()]

        if item.kind is TreeItemKind.ACCOUNT:
            return await self._folder_items(item.account_id)

        if item.kind is TreeItemKind.FOLDER and item.folder and item.folder.children:
            return [self._folder_item(item.account_id, child) for child in item.folder.children]

        return []

    def get_parent(self, item: TreeItem) -> TreeItem | None:
        """The parent row; folders resolve through the cache's path index."""
        if item.kind is TreeItemKind.ACCOUNT:
            return None

        if item.kind is TreeItemKind.FOLDER and item.folder_path:
            parent = self.cache.parent_of(item.account_id, item.folder_path)
            if parent is not None:
                return self._folder_item(item.account_id, parent)

        if self.accounts.get_account(item.account_id) is None:
            return None
        return self._account_item(item.account_id)

    async def refresh(
        self,
        account_id: str | None = None,
        *,
        force_reconnect: bool = False,
    ) -> None:
        """
        Drop cached folders and tell the tree to reload.

        Args:
            account_id: Only this account; None for all of them.
            force_reconnect: Also clear error flags and disconnect the
                sessions (best effort, concurrently) so the reload reconnects.
        """
        if account_id is None:
            self.cache.clear()
        else:
            self.cache.invalidate(account_id)

        if force_reconnect:
            if account_id is None:
                targets = self.sessions()
            else:
                targets = [s for s in self.sessions() if s.account_id == account_id]
            for session in targets:
                session.clear_connection_error()
            await asyncio.gather(*(s.disconnect(best_effort=True) for s in targets))

        self._update_badge()
        self._did_change.fire(None)

    def invalidate_account(self, account_id: str) -> None:
        """
        Forget an account's folders after a mutation changed its counts.

        The tree reloads them on next expansion; the badge updates now.
        """
        self.cache.invalidate(account_id)
        self._update_badge()
        self._did_change.fire(None)

    async def remove_account(self, account_id: str) -> None:
        """Tear down an account's session and cache entry (store untouched)."""
        session = self._sessions.pop(account_id, None)
        if session is not None:
            await session.disconnect(best_effort=True)
        self.cache.invalidate(account_id)
        self._update_badge()
        self._did_change.fire(None)

    async def disconnect_all(self) -> None:
        """Best-effort disconnect of every session, then forget them all."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(s.disconnect(best_effort=True) for s in sessions))

    async def dispose(self) -> None:
        self._unsubscribe_accounts()
        self._did_change.clear()
        self._badge_changed.clear()
        await self.disconnect_all()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _folder_items(self, account_id: str) -> list[TreeItem]:
        forest = self.cache.get(account_id)
        if forest is not None:
            return [self._folder_item(account_id, node) for node in forest]

        session = self.get_session(account_id)
        if session.has_connection_error:
            return [self._error_item(account_id, session.last_error)]

        if not session.connected:
            account = self.accounts.get_account(account_id)
            if account is None:
                return []
            password = self.accounts.get_password(account_id)
            if not password:
                return [TreeItem(TreeItemKind.NOTICE, account_id, NO_PASSWORD_LABEL)]
            try:
                await session.connect(account, password)
            except MailError as e:
                session.mark_connection_error(str(e) or "Connection failed")
                return [self._error_item(account_id, session.last_error)]

        try:
            forest = await session.list_folders()
        except MailError as e:
            logger.warning(f"Listing folders failed for {account_id}: {e}")
            session.mark_connection_error(str(e) or "Failed to list folders")
            return [self._error_item(account_id, session.last_error)]

        self.cache.store(account_id, forest)
        self._update_badge()
        return [self._folder_item(account_id, node) for node in forest]

    def _account_item(self, account_id: str) -> TreeItem:
        account = self.accounts.get_account(account_id)
        label = account.name if account else account_id
        return TreeItem(TreeItemKind.ACCOUNT, account_id, label, collapsible=True)

    @staticmethod
    def _folder_item(account_id: str, node: FolderNode) -> TreeItem:
        return TreeItem(
            kind=TreeItemKind.FOLDER,
            account_id=account_id,
            label=node.display_name,
            folder_path=node.path,
            folder=node,
            description=str(node.unseen_messages) if node.unseen_messages else "",
            collapsible=node.has_children,
        )

    @staticmethod
    def _error_item(account_id: str, message: str | None) -> TreeItem:
        return TreeItem(
            TreeItemKind.ERROR,
            account_id,
            CONNECTION_ERROR_LABEL,
            tooltip=message or "Please refresh the connection manually",
        )

    def _update_badge(self) -> None:
        total = self.cache.unseen_total()
        badge = total if total > 0 else None
        if badge != self._badge:
            self._badge = badge
            self._badge_changed.fire(badge)

    def _on_accounts_changed(self) -> None:
        # Sessions of removed accounts are torn down by remove_account()
        self.cache.clear()
        self._update_badge()
        self._did_change.fire(None)
