# =============================================================================
# Panel Registry
# =============================================================================
# Owns every open panel, keyed by PanelKey, plus two reusable slots:
#
#   active_list    the list panel folder-tree clicks open into; navigating
#                  elsewhere retargets it instead of opening another panel
#   split_detail   the single detail panel of "split" display mode
#
# Panels opened "in a new tab" keep their key for life.
#
# Invariants:
#   - at most one live panel per key in each table
#   - retargeting removes the old key before inserting the new one
#   - a disposed panel's key is removed exactly once, and the active/split
#     slot is cleared if it pointed at that panel
#
# The registry is created by the application root and handed to whatever
# opens panels; there are no module-level singletons.
# =============================================================================

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from kestrel_mail.config import MessageDisplayMode, UIConfig
from kestrel_mail.explorer import MailExplorer
from kestrel_mail.panels.keys import PanelKey
from kestrel_mail.panels.message_detail import LOADING_TITLE, MessageDetailPanel
from kestrel_mail.panels.message_list import MessageListPanel
from kestrel_mail.panels.surface import PanelHost, PanelState

logger = logging.getLogger(__name__)

Dispatcher = Callable[..., Awaitable[Any]]
T = TypeVar("T")


class PanelRegistry:
    """
    Opens, reuses, retargets and forgets panels.

    Usage:
        >>> registry = PanelRegistry(explorer, host, config.ui)
        >>> panel = await registry.show_list_in_active("work", "INBOX", "Inbox")
        >>> await registry.show_message("work", "INBOX", 42)

    Attributes:
        list_panels: Live list panels by (account, folder) key.
        detail_panels: Live window/split detail panels by (account, folder, uid).
        active_list: The reusable list panel, if open.
        split_detail: The reusable split-mode detail panel, if open.
        dispatch: Command entry point panels use for user actions; set by the
                  CommandRouter.
    """

    def __init__(self, explorer: MailExplorer, host: PanelHost, ui: UIConfig) -> None:
        self.explorer = explorer
        self.host = host
        self.ui = ui
        self.list_panels: dict[PanelKey, MessageListPanel] = {}
        self.detail_panels: dict[PanelKey, MessageDetailPanel] = {}
        self.active_list: MessageListPanel | None = None
        self.split_detail: MessageDetailPanel | None = None
        self.dispatch: Dispatcher | None = None
        self._creating: dict[Any, asyncio.Task] = {}
        self._pending: set[PanelKey] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def page_size(self) -> int:
        return self.ui.page_size

    @property
    def locale(self) -> str | None:
        return self.ui.locale or None

    # =========================================================================
    # List Panels
    # =========================================================================

    async def show_list_in_active(
        self, account_id: str, folder_path: str, title: str
    ) -> MessageListPanel:
        """
        Open a folder in the reusable list panel.

        If another (new tab) panel already shows that folder, it is revealed
        instead, so the key stays unique.
        """
        key = PanelKey.for_list(account_id, folder_path)
        active = self.active_list

        if active is not None and active.alive:
            if active.key != key:
                holder = self.list_panels.get(key)
                if holder is not None and holder.alive:
                    holder.reveal()
                    await holder.load()
                    return holder
                self._retarget_list(active, key, title)
            active.reveal()
            await active.load()
            return active

        existing = self.list_panels.get(key)
        if existing is not None and existing.alive:
            existing.reveal()
            await existing.load()
            return existing

        panel = await self._create_once("active-list", lambda: self._create_list(key, title))
        if panel.key != key and key not in self.list_panels:
            # A concurrent open created the panel for another folder
            self._retarget_list(panel, key, title)
        self.active_list = panel
        await panel.load()
        return panel

    async def show_list(self, account_id: str, folder_path: str, title: str) -> MessageListPanel:
        """Open a folder in its own panel ("new tab"); reuse one if it exists."""
        key = PanelKey.for_list(account_id, folder_path)

        existing = self.list_panels.get(key)
        if existing is not None and existing.alive:
            existing.reveal()
            await existing.load()
            return existing

        panel = await self._create_once(key, lambda: self._create_list(key, title))
        await panel.load()
        return panel

    async def refresh_folder(self, account_id: str, folder_path: str) -> None:
        """Reload the list panel showing a folder, if there is one."""
        panel = self.list_panels.get(PanelKey.for_list(account_id, folder_path))
        if panel is not None and panel.alive:
            await panel.load()

    # =========================================================================
    # Detail Panels
    # =========================================================================

    async def show_message(
        self, account_id: str, folder_path: str, uid: int
    ) -> MessageListPanel | MessageDetailPanel:
        """
        Open a message according to ui.message_display_mode.

        Preview mode embeds the message in the folder's list panel and falls
        back to window mode when that folder has no list panel open.
        """
        key = PanelKey.for_detail(account_id, folder_path, uid)
        mode = self.ui.message_display_mode

        if mode is MessageDisplayMode.PREVIEW:
            list_panel = self.list_panels.get(key.list_key)
            if list_panel is not None and list_panel.alive:
                await list_panel.show_embedded(uid)
                return list_panel

        existing = self.detail_panels.get(key)
        if existing is not None and existing.alive:
            existing.reveal()
            return existing

        if mode is MessageDisplayMode.SPLIT:
            split = self.split_detail
            if split is not None and split.alive:
                self._retarget_detail(split, key)
                split.reveal()
                await split.load()
                return split
            panel = await self._create_once("split-detail", lambda: self._create_detail(key))
            self.split_detail = panel
        else:
            panel = await self._create_once(key, lambda: self._create_detail(key))

        await panel.load()
        return panel

    # =========================================================================
    # Cross-panel Updates
    # =========================================================================

    async def message_changed(self, account_id: str, folder_path: str) -> None:
        """A message's flags changed: reload its list and the tree counts."""
        self.explorer.invalidate_account(account_id)
        await self.refresh_folder(account_id, folder_path)

    async def message_removed(self, account_id: str, folder_path: str, uid: int) -> None:
        """
        A message left its folder (deleted or moved): close its views, then
        reload the list and the tree counts.
        """
        key = PanelKey.for_detail(account_id, folder_path, uid)

        detail = self.detail_panels.get(key)
        if detail is not None:
            detail.dispose()

        list_panel = self.list_panels.get(key.list_key)
        if list_panel is not None and list_panel.embedded is not None:
            if list_panel.embedded.key == key:
                await list_panel.back()
                self.explorer.invalidate_account(account_id)
                return

        await self.message_changed(account_id, folder_path)

    # =========================================================================
    # Commands & Tasks
    # =========================================================================

    async def run_command(self, name: str, *args: Any, **options: Any) -> None:
        if self.dispatch is None:
            logger.warning(f"No command dispatcher; dropping {name}")
            return
        await self.dispatch(name, *args, **options)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a panel action in the background, logging failures."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Panel action failed: {error!r}")

    # =========================================================================
    # Disposal
    # =========================================================================

    def panel_disposed(self, panel: MessageListPanel | MessageDetailPanel) -> None:
        """Forget a disposed panel. Called by the panel itself."""
        if isinstance(panel, MessageListPanel):
            if self.list_panels.get(panel.key) is panel:
                del self.list_panels[panel.key]
            if self.active_list is panel:
                self.active_list = None
        else:
            if self.detail_panels.get(panel.key) is panel:
                del self.detail_panels[panel.key]
            if self.split_detail is panel:
                self.split_detail = None
        logger.debug(f"Disposed {panel!r}")

    def dispose_all(self) -> None:
        for panel in [*self.list_panels.values(), *self.detail_panels.values()]:
            panel.dispose()
        for task in list(self._tasks):
            task.cancel()

    def panels(self) -> list[MessageListPanel | MessageDetailPanel]:
        return [*self.list_panels.values(), *self.detail_panels.values()]

    def state_of(self, key: PanelKey) -> PanelState:
        """Where the panel for a key is in its life cycle."""
        panels = self.detail_panels if key.is_detail else self.list_panels
        panel = panels.get(key)
        if panel is not None:
            return panel.state
        if key in self._pending:
            return PanelState.CREATING
        return PanelState.ABSENT

    # =========================================================================
    # Internals
    # =========================================================================

    def _retarget_list(self, panel: MessageListPanel, key: PanelKey, title: str) -> None:
        old = panel.key
        if self.list_panels.get(old) is panel:
            del self.list_panels[old]
        assert self.list_panels.get(old) is not panel
        assert key not in self.list_panels
        panel.retarget(key, title)
        self.list_panels[key] = panel
        logger.debug(f"Retargeted list panel {old} -> {key}")

    def _retarget_detail(self, panel: MessageDetailPanel, key: PanelKey) -> None:
        old = panel.key
        if self.detail_panels.get(old) is panel:
            del self.detail_panels[old]
        assert self.detail_panels.get(old) is not panel
        assert key not in self.detail_panels
        panel.retarget(key)
        self.detail_panels[key] = panel
        logger.debug(f"Retargeted detail panel {old} -> {key}")

    async def _create_once(self, slot: Any, create: Callable[[], Awaitable[T]]) -> T:
        """Run `create` once per slot, sharing the result with concurrent callers."""
        task = self._creating.get(slot)
        if task is None:
            task = asyncio.ensure_future(create())
            self._creating[slot] = task
            task.add_done_callback(
                lambda done: self._creating.pop(slot, None) if self._creating.get(slot) is done else None
            )
        return await task

    async def _create_list(self, key: PanelKey, title: str) -> MessageListPanel:
        surface = await self._new_surface(key, MessageListPanel.VIEW_TYPE, title)
        existing = self.list_panels.get(key)
        if existing is not None and existing.alive:
            # Someone else opened the key while the surface was being created
            surface.dispose()
            return existing
        panel = MessageListPanel(self, surface, key, title)
        self.list_panels[key] = panel
        return panel

    async def _create_detail(self, key: PanelKey) -> MessageDetailPanel:
        surface = await self._new_surface(key, MessageDetailPanel.VIEW_TYPE, LOADING_TITLE)
        existing = self.detail_panels.get(key)
        if existing is not None and existing.alive:
            surface.dispose()
            return existing
        panel = MessageDetailPanel(self, surface, key)
        self.detail_panels[key] = panel
        return panel

    async def _new_surface(self, key: PanelKey, view_type: str, title: str) -> Any:
        self._pending.add(key)
        try:
            return await self.host.create_surface(view_type, title)
        finally:
            self._pending.discard(key)
