# =============================================================================
# Message Detail Panel
# =============================================================================
# Shows one full message. Three ways to exist:
#
#   - window:   its own surface, keyed (account, folder, uid)
#   - split:    the single reusable detail surface, retargeted per message
#   - embedded: borrowed surface of a MessageListPanel (preview mode); the
#               list panel routes actions to it and "back" returns to the list
#
# Payloads posted to the surface:
#   {"type": "loading"}
#   {"type": "message", "message": {...}, "embedded"}
#   {"type": "error", "message"}
#
# Opening an unread message marks it seen in a separate STORE, then reloads
# the folder's list panel and the account's tree counts.
# =============================================================================

import logging
from typing import TYPE_CHECKING, Any

from kestrel_mail.core import MessageDetail
from kestrel_mail.errors import MailError
from kestrel_mail.panels.keys import MessageRef, PanelKey
from kestrel_mail.panels.surface import Payload, PanelState, PanelSurface

if TYPE_CHECKING:
    from kestrel_mail.panels.message_list import MessageListPanel
    from kestrel_mail.panels.registry import PanelRegistry

logger = logging.getLogger(__name__)

LOADING_TITLE = "Loading..."

# Surface action -> command name
_COMMANDS = {
    "reply": "reply",
    "replyAll": "replyAll",
    "forward": "forward",
    "delete": "deleteMessage",
    "move": "moveMessage",
    "markUnread": "markUnread",
    "downloadAttachment": "downloadAttachment",
}


def detail_payload(detail: MessageDetail) -> dict[str, Any]:
    """JSON-friendly form of a MessageDetail."""
    return {
        "uid": detail.uid,
        "date": detail.date.isoformat() if detail.date else None,
        "subject": detail.subject,
        "fromDisplay": str(detail.sender),
        "toDisplay": ", ".join(str(a) for a in detail.to),
        "ccDisplay": ", ".join(str(a) for a in detail.cc),
        "html": detail.html,
        "text": detail.text,
        "seen": detail.seen,
        "attachments": [
            {
                "index": i,
                "filename": a.filename,
                "contentType": a.content_type,
                "size": a.size,
                "humanSize": a.human_size,
                "disposition": a.disposition,
            }
            for i, a in enumerate(detail.attachments)
        ],
    }


class MessageDetailPanel:
    """
    A single message rendered into a PanelSurface.

    Attributes:
        key: (account_id, folder_path, uid) of the message shown.
        detail: The loaded message, None until load() finished.
        embedded_in: The list panel whose surface this view borrows.
    """

    VIEW_TYPE = "kestrel.messageDetail"
    ACTIONS = frozenset(_COMMANDS)

    def __init__(
        self,
        registry: "PanelRegistry",
        surface: PanelSurface,
        key: PanelKey,
        *,
        embedded_in: "MessageListPanel | None" = None,
    ) -> None:
        self.registry = registry
        self.surface = surface
        self.key = key
        self.embedded_in = embedded_in
        self.state = PanelState.READY
        self.detail: MessageDetail | None = None
        self._generation = 0
        self._subscriptions = []
        if embedded_in is None:
            self._subscriptions = [
                surface.on_did_dispose(self.dispose),
                surface.on_did_receive(self._on_receive),
            ]

    @property
    def uid(self) -> int:
        return self.key.uid or 0

    @property
    def ref(self) -> MessageRef:
        return MessageRef(self.key.account_id, self.key.folder_path, self.uid)

    @property
    def alive(self) -> bool:
        return self.state is PanelState.READY and self.surface.alive

    def reveal(self) -> None:
        if self.alive:
            self.surface.reveal()

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self) -> None:
        """Fetch the message and show it; mark it seen if it was unread."""
        if not self.alive:
            return

        self._generation += 1
        generation = self._generation
        key = self.key
        self.surface.post({"type": "loading"})

        try:
            session = await self.registry.explorer.connect_account(key.account_id)
            detail = await session.get_message(key.folder_path, self.uid)
        except MailError as e:
            if self._is_current(generation):
                logger.warning(f"Loading {key} failed: {e}")
                self.surface.post({"type": "error", "message": str(e) or "Failed to load message"})
            return

        if not self._is_current(generation):
            logger.debug(f"Dropping stale message {key}")
            return

        self.detail = detail
        if self.embedded_in is None:
            self.surface.title = detail.subject
        self.surface.post({
            "type": "message",
            "message": detail_payload(detail),
            "embedded": self.embedded_in is not None,
        })

        if not detail.seen:
            try:
                await session.mark_message_seen(key.folder_path, self.uid, True)
            except MailError as e:
                logger.warning(f"Could not mark {key} as read: {e}")
                return
            detail.seen = True
            await self.registry.message_changed(key.account_id, key.folder_path)

    def retarget(self, key: PanelKey) -> None:
        """Show another message in this panel (split mode)."""
        self.key = key
        self.detail = None
        self._generation += 1
        if self.embedded_in is None:
            self.surface.title = LOADING_TITLE

    # =========================================================================
    # Actions
    # =========================================================================

    async def handle(self, payload: Payload) -> None:
        action = payload.get("type")
        command = _COMMANDS.get(str(action))
        if command is None:
            logger.debug(f"Ignoring unknown detail action {action!r}")
            return

        options: dict[str, Any] = {}
        if action == "move":
            options["destination"] = payload.get("destination")
        elif action == "downloadAttachment":
            options["index"] = payload.get("index")

        await self.registry.run_command(command, self.ref, **options)

    # =========================================================================
    # Disposal
    # =========================================================================

    def detach(self) -> None:
        """Stop an embedded view without touching the borrowed surface."""
        self.state = PanelState.DISPOSED
        self._generation += 1

    def dispose(self) -> None:
        """Close the panel. Embedded views hand the surface back to the list."""
        if self.state is PanelState.DISPOSED:
            return
        if self.embedded_in is not None:
            owner = self.embedded_in
            self.detach()
            if owner.embedded is self:
                self.registry.spawn(owner.back())
            return

        self.state = PanelState.DISPOSED
        self._generation += 1
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
        mode = "embedded" if self.embedded_in is not None else "window"
        return f"MessageDetailPanel({self.key}, {mode}, state={self.state.name})"
