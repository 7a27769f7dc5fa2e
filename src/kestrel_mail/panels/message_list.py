# =============================================================================
# Message List Panel
# =============================================================================
# Shows one page of a folder's messages and grows it with "load more".
#
# Payloads posted to the surface:
#   {"type": "loading"}
#   {"type": "messages", "folderPath", "messages": [...], "hasMore", "locale"}
#   {"type": "error", "message"}
#
# Actions received from the surface ({"type": ..., "uid": ...}):
#   openMessage, reply, replyAll, forward, refresh, compose, back, loadMore
#
# A list panel can be retargeted to another folder (the active panel) and
# can host an embedded detail view (preview mode). Each load() bumps a
# generation counter; a result that arrives after a newer load, a retarget
# or disposal is dropped.
# =============================================================================

import logging
from typing import TYPE_CHECKING, Any

from kestrel_mail.core import MessageSummary
from kestrel_mail.errors import MailError
from kestrel_mail.panels.keys import FolderRef, MessageRef, PanelKey
from kestrel_mail.panels.message_detail import MessageDetailPanel
from kestrel_mail.panels.surface import Payload, PanelState, PanelSurface

if TYPE_CHECKING:
    from kestrel_mail.panels.registry import PanelRegistry

logger = logging.getLogger(__name__)


def summary_payload(summary: MessageSummary) -> dict[str, Any]:
    """JSON-friendly form of a MessageSummary."""
    return {
        "uid": summary.uid,
        "date": summary.date.isoformat() if summary.date else None,
        "subject": summary.subject,
        "fromDisplay": summary.display_sender,
        "toDisplay": ", ".join(a.display for a in summary.to),
        "hasAttachments": summary.has_attachments,
        "seen": summary.seen,
        "size": summary.size,
    }


class MessageListPanel:
    """
    A folder listing rendered into a PanelSurface.

    Created by the PanelRegistry, which also owns its key.

    Attributes:
        key: Current (account_id, folder_path) key.
        title: Title shown on the surface (usually the folder name).
        messages: The messages loaded so far, newest first.
        embedded: Detail view currently shown in place of the list.
    """

    VIEW_TYPE = "kestrel.messageList"

    def __init__(
        self,
        registry: "PanelRegistry",
        surface: PanelSurface,
        key: PanelKey,
        title: str,
    ) -> None:
        self.registry = registry
        self.surface = surface
        self.key = key
        self.title = title
        self.state = PanelState.READY
        self.messages: list[MessageSummary] = []
        self.has_more = False
        self.embedded: MessageDetailPanel | None = None
        self._generation = 0
        self._subscriptions = [
            surface.on_did_dispose(self.dispose),
            surface.on_did_receive(self._on_receive),
        ]

    @property
    def account_id(self) -> str:
        return self.key.account_id

    @property
    def folder_path(self) -> str:
        return self.key.folder_path

    @property
    def alive(self) -> bool:
        return self.state is PanelState.READY and self.surface.alive

    def reveal(self) -> None:
        if self.alive:
            self.surface.reveal()

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self, *, more: bool = False) -> None:
        """
        Load the first page (or, with more=True, the next one).

        Failures are shown on the surface, not raised.
        """
        if not self.alive:
            return

        self._generation += 1
        generation = self._generation
        key = self.key
        offset = len(self.messages) if more else 0

        if not more and self.embedded is None:
            self.surface.post({"type": "loading"})

        try:
            session = await self.registry.explorer.connect_account(key.account_id)
            page = await session.get_messages(
                key.folder_path,
                limit=self.registry.page_size,
                offset=offset,
            )
        except MailError as e:
            if self._is_current(generation):
                logger.warning(f"Loading {key} failed: {e}")
                self.surface.post({"type": "error", "message": str(e) or "Failed to load messages"})
            return

        if not self._is_current(generation):
            logger.debug(f"Dropping stale listing for {key}")
            return

        if more:
            known = {m.uid for m in self.messages}
            fresh = [m for m in page if m.uid not in known]
            self.messages.extend(fresh)
            self.has_more = bool(fresh) and len(page) >= self.registry.page_size
        else:
            self.messages = page
            self.has_more = len(page) >= self.registry.page_size

        if self.embedded is None:
            self.surface.post(self.messages_payload())

    def messages_payload(self) -> Payload:
        return {
            "type": "messages",
            "folderPath": self.folder_path,
            "messages": [summary_payload(m) for m in self.messages],
            "hasMore": self.has_more,
            "locale": self.registry.locale,
        }

    def retarget(self, key: PanelKey, title: str) -> None:
        """
        Point the panel at another folder. Called by the registry, which
        moves the registry entry; the caller reloads afterwards.
        """
        self.key = key
        self.title = title
        self.surface.title = title
        self.messages = []
        self.has_more = False
        self._drop_embedded()
        # Anything still in flight belongs to the old folder
        self._generation += 1

    # =========================================================================
    # Embedded Detail
    # =========================================================================

    async def show_embedded(self, uid: int) -> MessageDetailPanel:
        """Replace the list with the detail view of one of its messages."""
        self._drop_embedded()
        detail = MessageDetailPanel(
            self.registry,
            self.surface,
            PanelKey.for_detail(self.account_id, self.folder_path, uid),
            embedded_in=self,
        )
        self.embedded = detail
        self.reveal()
        await detail.load()
        return detail

    async def back(self) -> None:
        """Leave the embedded detail: restore the list, then reload it."""
        if self.embedded is None:
            return
        self._drop_embedded()
        if self.alive:
            self.surface.post(self.messages_payload())
            await self.load()

    def _drop_embedded(self) -> None:
        if self.embedded is not None:
            self.embedded.detach()
            self.embedded = None

    # =========================================================================
    # Actions
    # =========================================================================

    async def handle(self, payload: Payload) -> None:
        """Act on a message from the surface."""
        action = payload.get("type")

        if action == "back":
            await self.back()
            return
        if self.embedded is not None and action in MessageDetailPanel.ACTIONS:
            await self.embedded.handle(payload)
            return

        if action == "refresh":
            await self.load()
        elif action == "loadMore":
            await self.load(more=True)
        elif action == "compose":
            await self.registry.run_command("compose", FolderRef(self.account_id))
        elif action in ("openMessage", "reply", "replyAll", "forward"):
            uid = payload.get("uid")
            if not isinstance(uid, int):
                logger.warning(f"{action} without a uid: {payload!r}")
                return
            await self.registry.run_command(
                action, MessageRef(self.account_id, self.folder_path, uid)
            )
        else:
            logger.debug(f"Ignoring unknown list action {action!r}")

    # =========================================================================
    # Disposal
    # =========================================================================

    def dispose(self) -> None:
        """Close the panel. Safe to call more than once."""
        if self.state is PanelState.DISPOSED:
            return
        self.state = PanelState.DISPOSED
        self._generation += 1
        self._drop_embedded()
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        self.registry.panel_disposed(self)
        if self.surface.alive:
            self.surface.dispose()

    def _is_current(self, generation: int) -> bool:
        return self.alive and generation == self._generation

    def _on_receive(self, payload: Payload) -> None:
        self.registry.spawn(self.handle(payload))

    def __repr__(self) -> str:
        return f"MessageListPanel({self.key}, state={self.state.name})"
