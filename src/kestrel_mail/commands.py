# =============================================================================
# Commands
# =============================================================================
# Named user actions. The folder tree, the panels and key bindings all go
# through CommandRouter.execute(name, *args, **options):
#
#   openFolder(FolderRef)              openFolderInNewTab(FolderRef)
#   openMessage(MessageRef)            compose(FolderRef | None)
#   reply / replyAll / forward(MessageRef)
#   deleteMessage(MessageRef)          moveMessage(MessageRef, destination=)
#   markRead / markUnread(MessageRef)  downloadAttachment(MessageRef, index=)
#   refreshFolders()                   refreshAccount(FolderRef)
#   reconnect()                        removeAccount(FolderRef)
#   addAccount()                       editAccount(FolderRef)
#
# Failures are reported through the Notifier with the underlying message.
# Nothing is retried.
# =============================================================================

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from kestrel_mail.accounts import AccountStore
from kestrel_mail.compose import ComposeMode, prefill
from kestrel_mail.core import Account, MessageDetail
from kestrel_mail.errors import MailError, NotFoundError, ValidationError
from kestrel_mail.explorer import MailExplorer
from kestrel_mail.imap.client import ImapProtocolClient
from kestrel_mail.imap.session import ClientFactory, MailSession
from kestrel_mail.panels import FolderRef, MessageRef, PanelRegistry
from kestrel_mail.smtp import EmailDraft

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """How commands talk to the user."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    async def confirm(self, message: str) -> bool: ...


# Opens the compose UI with a prefilled draft
ComposeOpener = Callable[[ComposeMode, Account, EmailDraft, MessageDetail | None], Awaitable[Any]]


@dataclass
class AccountForm:
    """
    Contents of the account settings form.

    Attributes:
        account: The account as entered.
        password: IMAP password. Empty keeps the stored one when editing.
        smtp_password: SMTP password. Empty means none, or keep the stored one.
    """
    account: Account
    password: str = ""
    smtp_password: str = ""


# Shows the account form prefilled; resolves to None when cancelled
AccountFormOpener = Callable[[AccountForm], Awaitable[AccountForm | None]]

# Human-readable names for error messages
_LABELS = {
    "openFolder": "Open folder",
    "openFolderInNewTab": "Open folder",
    "openMessage": "Open message",
    "compose": "Compose",
    "reply": "Reply",
    "replyAll": "Reply all",
    "forward": "Forward",
    "deleteMessage": "Delete",
    "moveMessage": "Move",
    "markRead": "Mark as read",
    "markUnread": "Mark as unread",
    "downloadAttachment": "Download",
    "refreshFolders": "Refresh",
    "refreshAccount": "Refresh",
    "reconnect": "Reconnect",
    "removeAccount": "Remove account",
    "addAccount": "Add account",
    "editAccount": "Edit account",
}


class CommandRouter:
    """
    Runs named commands against the explorer and the panel registry.

    Usage:
        >>> router = CommandRouter(accounts, explorer, registry, notifier)
        >>> await router.execute("openFolder", FolderRef("work", "INBOX", "Inbox"))
        >>> await router.execute("moveMessage", MessageRef("work", "INBOX", 7),
        ...                      destination="Archive")
    """

    def __init__(
        self,
        accounts: AccountStore,
        explorer: MailExplorer,
        registry: PanelRegistry,
        notifier: Notifier,
        *,
        open_compose: ComposeOpener | None = None,
        open_account_form: AccountFormOpener | None = None,
        client_factory: ClientFactory = ImapProtocolClient,
        download_dir: Path | None = None,
        default_account: str = "",
    ) -> None:
        self.accounts = accounts
        self.explorer = explorer
        self.registry = registry
        self.notifier = notifier
        self.open_compose = open_compose
        self.open_account_form = open_account_form
        self.client_factory = client_factory
        self.download_dir = download_dir or Path.home() / "Downloads"
        self.default_account = default_account

        self._handlers: dict[str, Callable[..., Awaitable[Any]]] = {
            "openFolder": self.open_folder,
            "openFolderInNewTab": self.open_folder_in_new_tab,
            "openMessage": self.open_message,
            "compose": self.compose,
            "reply": self.reply,
            "replyAll": self.reply_all,
            "forward": self.forward,
            "deleteMessage": self.delete_message,
            "moveMessage": self.move_message,
            "markRead": self.mark_read,
            "markUnread": self.mark_unread,
            "downloadAttachment": self.download_attachment,
            "refreshFolders": self.refresh_folders,
            "refreshAccount": self.refresh_account,
            "reconnect": self.reconnect,
            "removeAccount": self.remove_account,
            "addAccount": self.add_account,
            "editAccount": self.edit_account,
        }
        registry.dispatch = self.execute

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    async def execute(self, name: str, *args: Any, **options: Any) -> Any:
        """
        Run a command. Errors are reported to the user, not raised.

        Returns:
            Whatever the command returned, or None if it failed.
        """
        handler = self._handlers.get(name)
        if handler is None:
            logger.error(f"Unknown command: {name}")
            self.notifier.error(f"Unknown command: {name}")
            return None

        logger.debug(f"Command {name} {args} {options}")
        try:
            return await handler(*args, **options)
        except (MailError, OSError) as e:
            label = _LABELS.get(name, name)
            logger.warning(f"{label} failed: {e}")
            self.notifier.error(f"{label} failed: {e}")
            return None

    # =========================================================================
    # Navigation
    # =========================================================================

    async def open_folder(self, ref: FolderRef) -> Any:
        path = _require_folder(ref)
        return await self.registry.show_list_in_active(ref.account_id, path, _title(ref, path))

    async def open_folder_in_new_tab(self, ref: FolderRef) -> Any:
        path = _require_folder(ref)
        return await self.registry.show_list(ref.account_id, path, _title(ref, path))

    async def open_message(self, ref: MessageRef) -> Any:
        return await self.registry.show_message(ref.account_id, ref.folder_path, ref.uid)

    # =========================================================================
    # Compose
    # =========================================================================

    async def compose(self, ref: FolderRef | None = None) -> None:
        account = self._compose_account(ref.account_id if ref else None)
        if account is None:
            return
        await self._open_compose(ComposeMode.COMPOSE, account, None)

    async def reply(self, ref: MessageRef) -> None:
        await self._respond(ComposeMode.REPLY, ref)

    async def reply_all(self, ref: MessageRef) -> None:
        await self._respond(ComposeMode.REPLY_ALL, ref)

    async def forward(self, ref: MessageRef) -> None:
        await self._respond(ComposeMode.FORWARD, ref)

    async def _respond(self, mode: ComposeMode, ref: MessageRef) -> None:
        account = self._account(ref.account_id)
        session = await self.explorer.connect_account(ref.account_id)
        original = await session.get_message(ref.folder_path, ref.uid)
        await self._open_compose(mode, account, original)

    async def _open_compose(
        self, mode: ComposeMode, account: Account, original: MessageDetail | None
    ) -> None:
        if self.open_compose is None:
            self.notifier.warning("Composing is not available")
            return
        await self.open_compose(mode, account, prefill(mode, account, original), original)

    def _compose_account(self, account_id: str | None) -> Account | None:
        if account_id:
            return self._account(account_id)
        accounts = self.accounts.list_accounts()
        if not accounts:
            self.notifier.warning("No mail accounts configured.")
            return None
        default = self.accounts.get_account(self.default_account) if self.default_account else None
        return default or accounts[0]

    # =========================================================================
    # Message Mutations
    # =========================================================================

    async def delete_message(self, ref: MessageRef, *, confirm: bool = True) -> None:
        if confirm and not await self.notifier.confirm("Are you sure you want to delete this message?"):
            return
        session = await self.explorer.connect_account(ref.account_id)
        await session.delete_message(ref.folder_path, ref.uid)
        await self.registry.message_removed(ref.account_id, ref.folder_path, ref.uid)
        self.notifier.info("Message deleted.")

    async def move_message(self, ref: MessageRef, destination: str | None = None) -> None:
        if not destination:
            raise ValidationError("Destination folder is required")
        session = await self.explorer.connect_account(ref.account_id)
        await session.move_message(ref.folder_path, ref.uid, destination)
        await self.registry.message_removed(ref.account_id, ref.folder_path, ref.uid)
        await self.registry.refresh_folder(ref.account_id, destination)
        self.notifier.info(f"Message moved to {destination}.")

    async def mark_read(self, ref: MessageRef) -> None:
        await self._set_seen(ref, True)

    async def mark_unread(self, ref: MessageRef) -> None:
        await self._set_seen(ref, False)

    async def _set_seen(self, ref: MessageRef, seen: bool) -> None:
        session = await self.explorer.connect_account(ref.account_id)
        await session.mark_message_seen(ref.folder_path, ref.uid, seen)
        await self.registry.message_changed(ref.account_id, ref.folder_path)

    async def download_attachment(self, ref: MessageRef, index: int | None = None) -> Path:
        """Save an attachment to the download directory. Never overwrites."""
        if not isinstance(index, int):
            raise ValidationError("Attachment index is required")
        session = await self.explorer.connect_account(ref.account_id)
        info, data = await session.get_attachment(ref.folder_path, ref.uid, index)

        self.download_dir.mkdir(parents=True, exist_ok=True)
        target = unique_path(self.download_dir / Path(info.filename).name)
        target.write_bytes(data)

        logger.info(f"Saved attachment {info.filename} to {target}")
        self.notifier.info(f"Saved {target.name} ({info.human_size}) to {target.parent}")
        return target

    # =========================================================================
    # Accounts & Refresh
    # =========================================================================

    async def refresh_folders(self) -> None:
        await self.explorer.refresh()

    async def reconnect(self) -> None:
        await self.explorer.refresh(force_reconnect=True)

    async def refresh_account(self, ref: FolderRef) -> None:
        """Drop and re-open one account's connection, then reload its tree."""
        account = self._account(ref.account_id)
        if not self.accounts.get_password(account.id):
            self.notifier.error("No password configured for this account.")
            return

        session = self.explorer.get_session(account.id)
        await session.disconnect()
        await self.explorer.connect_account(account.id)
        await self.explorer.refresh(account.id)
        self.notifier.info(f'Account "{account.name}" refreshed.')

    async def remove_account(self, ref: FolderRef) -> None:
        account = self._account(ref.account_id)
        if not await self.notifier.confirm(f'Remove account "{account.name}"?'):
            return

        for panel in self.registry.panels():
            if panel.key.account_id == account.id:
                panel.dispose()
        await self.explorer.remove_account(account.id)
        self.accounts.remove_account(account.id)
        self.notifier.info(f'Account "{account.name}" removed.')

    async def add_account(self) -> Account | None:
        """Ask for a new account, check that it can log in, then store it."""
        form = await self._ask_account(AccountForm(Account(id=self.accounts.generate_id())))
        if form is None:
            return None

        self.accounts.add_account(form.account, form.password, form.smtp_password or None)
        self.notifier.info(f'Account "{form.account.name}" added.')
        return form.account

    async def edit_account(self, ref: FolderRef) -> Account | None:
        """
        Change an account's settings. The old connection is dropped so the
        next use logs in with the new ones.
        """
        current = self._account(ref.account_id)
        form = await self._ask_account(AccountForm(dataclasses.replace(current)))
        if form is None:
            return None

        await self.explorer.remove_account(current.id)
        self.accounts.update_account(
            form.account, form.password or None, form.smtp_password or None
        )
        self.notifier.info(f'Account "{form.account.name}" saved.')
        return form.account

    async def check_account(self, account: Account, password: str = "") -> None:
        """
        Log in and out with a throwaway connection. An empty password means
        the one stored for the account.

        Raises:
            ValidationError, AuthError, NetworkError, ConnectTimeoutError
        """
        await MailSession.test_connection(
            account,
            password or self.accounts.get_password(account.id),
            client_factory=self.client_factory,
        )

    async def _ask_account(self, form: AccountForm) -> AccountForm | None:
        """Show the form until its settings log in or the user cancels."""
        if self.open_account_form is None:
            self.notifier.warning("Account settings are not available")
            return None

        while True:
            result = await self.open_account_form(form)
            if result is None:
                return None
            try:
                await self.check_account(result.account, result.password)
            except MailError as e:
                logger.warning(f"Account check failed for {result.account.id}: {e}")
                self.notifier.error(f"Connection failed: {e}")
                form = result
                continue
            return result

    # =========================================================================
    # Internals
    # =========================================================================

    def _account(self, account_id: str) -> Account:
        account = self.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account


def unique_path(path: Path) -> Path:
    """
    `path`, or `name (1).ext`, `name (2).ext`, ... if it already exists.
    """
    if not path.exists():
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def _require_folder(ref: FolderRef) -> str:
    if not ref.folder_path:
        raise ValidationError("Folder path is required")
    return ref.folder_path


def _title(ref: FolderRef, path: str) -> str:
    return ref.title or path
