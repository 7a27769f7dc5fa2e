# =============================================================================
# Folder Tree Widget
# =============================================================================
# The accounts and their folders, loaded lazily from the MailExplorer.
#
# Features:
#   - Accounts connect when expanded
#   - Unread counts, icons for special folders
#   - Connection error / missing password rows
#   - Unread total in the root label
#
# The widget keeps no folder state: every reload asks the explorer again,
# which answers from its cache.
# =============================================================================

import logging
from typing import TYPE_CHECKING

from textual.binding import Binding
from textual.widgets import Tree
from textual.widgets.tree import TreeNode

from kestrel_mail.core import FolderRole
from kestrel_mail.explorer import MailExplorer, TreeItem, TreeItemKind
from kestrel_mail.panels import FolderRef
from kestrel_mail.ui.dialogs import PromptScreen

if TYPE_CHECKING:
    from kestrel_mail.accounts import AccountStore
    from kestrel_mail.commands import CommandRouter

logger = logging.getLogger(__name__)


class FolderTree(Tree[TreeItem]):
    """
    A tree widget displaying accounts and their folders.

    Usage:
        >>> tree = FolderTree(explorer, router, accounts)
        >>> await tree.reload()
    """

    BINDINGS = [
        Binding("o", "open_in_new_tab", "New Tab"),
        Binding("e", "edit_account", "Edit Account", show=False),
        Binding("R", "refresh_account", "Refresh Account", show=False),
        Binding("X", "remove_account", "Remove Account", show=False),
        Binding("p", "set_password", "Password", show=False),
    ]

    # Note: Avoid emojis with variation selectors as they cause terminal width issues
    FOLDER_ICONS = {
        FolderRole.INBOX: "📥",
        FolderRole.SENT: "📤",
        FolderRole.DRAFTS: "📝",
        FolderRole.TRASH: "🗑",
        FolderRole.JUNK: "⛔",
        FolderRole.ARCHIVE: "📦",
        FolderRole.OTHER: "📁",
    }

    def __init__(
        self,
        explorer: MailExplorer,
        router: "CommandRouter",
        accounts: "AccountStore",
        label: str = "Mailboxes",
        **kwargs,
    ) -> None:
        super().__init__(label, **kwargs)
        self.explorer = explorer
        self.router = router
        self.accounts = accounts
        self._base_label = label
        self._unsubscribe = [
            explorer.on_did_change(self._on_tree_changed),
            explorer.on_badge_changed(self._on_badge_changed),
        ]

    def on_mount(self) -> None:
        self.root.expand()
        self._on_badge_changed(self.explorer.badge)

    def on_unmount(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    # =========================================================================
    # Loading
    # =========================================================================

    async def reload(self) -> None:
        """Rebuild the tree, keeping expanded accounts expanded."""
        expanded = {
            node.data.account_id
            for node in self.root.children
            if node.data is not None and node.is_expanded
        }

        self.clear()
        for item in await self.explorer.get_children():
            node = self.root.add(f"📧 {item.label}", data=item)
            if item.account_id in expanded:
                await self._load_children(node)
                node.expand()
        self.root.expand()

    async def _load_children(self, node: TreeNode[TreeItem]) -> None:
        node.remove_children()
        for item in await self.explorer.get_children(node.data):
            label = self._item_label(item)
            if item.collapsible:
                node.add(label, data=item)
            else:
                node.add_leaf(label, data=item)

    def _item_label(self, item: TreeItem) -> str:
        if item.kind is not TreeItemKind.FOLDER:
            return item.label

        icon = self.FOLDER_ICONS.get(item.role, "📁")
        if item.description:
            return f"{icon} {item.label} ({item.description})"
        return f"{icon} {item.label}"

    def on_tree_node_expanded(self, event: Tree.NodeExpanded[TreeItem]) -> None:
        node = event.node
        if node.data is None or node.children:
            return
        self.run_worker(self._load_children(node), group="folder-tree")

    def _on_tree_changed(self, item: TreeItem | None) -> None:
        self.run_worker(self.reload(), group="folder-tree", exclusive=True)

    def _on_badge_changed(self, badge: int | None) -> None:
        label = f"{self._base_label} ({badge})" if badge else self._base_label
        self.root.set_label(label)

    # =========================================================================
    # Actions
    # =========================================================================
    # Commands run in workers, off the message queue.

    def _cursor_item(self) -> TreeItem | None:
        node = self.cursor_node
        return node.data if node is not None else None

    def _run(self, name: str, *args) -> None:
        self.run_worker(self.router.execute(name, *args), group="commands")

    def on_tree_node_selected(self, event: Tree.NodeSelected[TreeItem]) -> None:
        item = event.node.data
        if item is None:
            return

        if item.kind is TreeItemKind.FOLDER:
            if item.folder is not None and not item.folder.selectable:
                return
            self._run("openFolder", self._folder_ref(item))
        elif item.kind is TreeItemKind.ERROR:
            self.notify(item.tooltip, severity="error")
            self._run("refreshAccount", FolderRef(item.account_id))
        elif item.kind is TreeItemKind.NOTICE:
            self.action_set_password()

    def action_open_in_new_tab(self) -> None:
        item = self._cursor_item()
        if item is not None and item.kind is TreeItemKind.FOLDER:
            self._run("openFolderInNewTab", self._folder_ref(item))

    def action_refresh_account(self) -> None:
        item = self._cursor_item()
        if item is not None:
            self._run("refreshAccount", FolderRef(item.account_id))

    def action_edit_account(self) -> None:
        item = self._cursor_item()
        if item is not None:
            self._run("editAccount", FolderRef(item.account_id))

    def action_remove_account(self) -> None:
        item = self._cursor_item()
        if item is not None:
            self._run("removeAccount", FolderRef(item.account_id))

    def action_set_password(self) -> None:
        """Ask for the IMAP password of the account under the cursor."""
        item = self._cursor_item()
        if item is None:
            return
        account = self.accounts.get_account(item.account_id)
        if account is None:
            return

        def store(password: str | None) -> None:
            if password:
                self.accounts.update_account(account, password=password)
                self._run("reconnect")

        self.app.push_screen(
            PromptScreen(f"Password for {account.username or account.name}", password=True),
            store,
        )

    @staticmethod
    def _folder_ref(item: TreeItem) -> FolderRef:
        return FolderRef(item.account_id, item.folder_path, item.label)
