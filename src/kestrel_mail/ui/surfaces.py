# =============================================================================
# Tab Surfaces
# =============================================================================
# The Textual side of the panels: every panel renders into a TabSurface, a
# pane of the main TabbedContent.
#
#   ┌ INBOX ┬ Projects ┬ Re: Lunch ┐
#   │ ●  Alice        Lunch?        12:04 │   list payloads -> DataTable
#   │    Bob          Invoice       Mon   │
#   └──────────────────────────────────────┘
#
# A surface keeps no mail state of its own. It renders the payloads a panel
# posts and turns key presses into action payloads for the panel.
# =============================================================================

import logging
from datetime import datetime
from itertools import count
from typing import Any, Callable

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import DataTable, Static, TabbedContent, TabPane

from kestrel_mail.events import Emitter
from kestrel_mail.panels.surface import Payload
from kestrel_mail.ui.dialogs import PromptScreen, ask

logger = logging.getLogger(__name__)


def format_date(value: str | None, *, now: datetime | None = None) -> str:
    """
    Short local date for the message list.

    Shows:
        - Time if today
        - Day name if this week
        - Date otherwise
    """
    if not value:
        return ""
    local = datetime.fromisoformat(value).astimezone().replace(tzinfo=None)
    now = now or datetime.now()

    if local.date() == now.date():
        return local.strftime("%H:%M")
    if (now.date() - local.date()).days < 7:
        return local.strftime("%a")
    return local.strftime("%x")


def escape(text: str) -> str:
    """Escape Textual markup in server-supplied text."""
    return text.replace("[", "\\[")


def render_message(message: dict[str, Any]) -> str:
    """Plain-text rendering of a "message" payload."""
    lines = [
        f"From:    {message['fromDisplay']}",
        f"To:      {message['toDisplay']}",
    ]
    if message.get("ccDisplay"):
        lines.append(f"Cc:      {message['ccDisplay']}")
    if message.get("date"):
        local = datetime.fromisoformat(message["date"]).astimezone()
        lines.append(f"Date:    {local.strftime('%c')}")
    lines.append(f"Subject: {message['subject'] or '(no subject)'}")

    for attachment in message.get("attachments", []):
        lines.append(
            f"[{attachment['index']}] {attachment['filename']} ({attachment['humanSize']})"
        )

    lines.append("")
    if message.get("text"):
        lines.append(message["text"])
    elif message.get("html"):
        lines.append("(This message only has an HTML part.)")
    return "\n".join(lines)


class TabSurface(TabPane):
    """
    A tab that panels render into. Implements PanelSurface.

    Attributes:
        view_type: Panel view type the surface was created for.
        title: Tab label.
    """

    BINDINGS = [
        Binding("r", "act('reply')", "Reply"),
        Binding("R", "act('replyAll')", "Reply All"),
        Binding("f", "act('forward')", "Forward"),
        Binding("d", "act('delete')", "Delete"),
        Binding("m", "move", "Move"),
        Binding("u", "act('markUnread')", "Unread", show=False),
        Binding("s", "save_attachment", "Save", show=False),
        Binding("n", "act('loadMore')", "More", show=False),
        Binding("g", "act('refresh')", "Reload", show=False),
        Binding("escape,backspace", "act('back')", "Back", show=False),
    ]

    DEFAULT_CSS = """
    TabSurface .surface-status {
        height: auto;
        color: $text-muted;
    }

    TabSurface .surface-status.error {
        color: $error;
    }
    """

    COLUMNS = [
        ("", 2),         # Unread indicator
        ("📎", 2),       # Attachment indicator
        ("From", 25),
        ("Subject", 0),  # Flexible width
        ("Date", 10),
    ]

    def __init__(self, host: "TextualPanelHost", view_type: str, title: str, pane_id: str) -> None:
        super().__init__(title, id=pane_id)
        self.view_type = view_type
        self._host = host
        self._label = title
        self._disposed = False
        self._mode = "loading"
        self._message: dict[str, Any] | None = None
        self._did_dispose = Emitter()
        self._did_receive = Emitter()

    def compose(self) -> ComposeResult:
        yield Static("Loading...", classes="surface-status")
        table = DataTable(cursor_type="row", zebra_stripes=True)
        for label, width in self.COLUMNS:
            table.add_column(label, width=width or None)
        yield table
        with VerticalScroll():
            yield Static("", markup=False, classes="surface-body")

    # =========================================================================
    # PanelSurface
    # =========================================================================

    @property
    def title(self) -> str:
        return self._label

    @title.setter
    def title(self, value: str) -> None:
        self._label = value
        if not self._disposed:
            self._host.set_title(self, value)

    @property
    def alive(self) -> bool:
        return not self._disposed

    def reveal(self) -> None:
        if not self._disposed:
            self._host.reveal(self)

    def post(self, payload: Payload) -> None:
        if self._disposed:
            return
        kind = payload.get("type")
        if kind == "loading":
            self._set_status("Loading...")
        elif kind == "error":
            self._set_status(f"⚠ {payload.get('message', 'Error')}", error=True)
        elif kind == "messages":
            self._show_messages(payload)
        elif kind == "message":
            self._show_message(payload["message"])
        else:
            logger.debug(f"Unknown payload type {kind!r}")

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._did_dispose.fire()
        self._did_dispose.clear()
        self._did_receive.clear()
        self._host.remove(self)

    def on_did_dispose(self, callback: Callable[[], Any]) -> Callable[[], None]:
        return self._did_dispose.subscribe(callback)

    def on_did_receive(self, callback: Callable[[Payload], Any]) -> Callable[[], None]:
        return self._did_receive.subscribe(callback)

    # =========================================================================
    # Rendering
    # =========================================================================

    def _set_status(self, text: str, *, error: bool = False) -> None:
        status = self.query_one(".surface-status", Static)
        status.update(escape(text))
        status.set_class(error, "error")

    def _show_messages(self, payload: Payload) -> None:
        table = self.query_one(DataTable)
        body = self.query_one(VerticalScroll)
        previous = self.selected_uid()

        self._mode = "messages"
        self._message = None
        table.display = True
        body.display = False

        table.clear()
        for message in payload["messages"]:
            sender = escape(message["fromDisplay"])
            subject = escape(message["subject"] or "(no subject)")
            if not message["seen"]:
                sender = f"[bold]{sender}[/]"
                subject = f"[bold]{subject}[/]"
            table.add_row(
                " " if message["seen"] else "●",
                "📎" if message["hasAttachments"] else " ",
                sender,
                subject,
                format_date(message["date"]),
                key=str(message["uid"]),
            )

        if previous is not None and str(previous) in table.rows:
            table.move_cursor(row=table.get_row_index(str(previous)))

        total = len(payload["messages"])
        more = "  (n: load more)" if payload.get("hasMore") else ""
        self._set_status(f"{payload['folderPath']}: {total} messages{more}")

    def _show_message(self, message: dict[str, Any]) -> None:
        self._mode = "message"
        self._message = message
        self.query_one(DataTable).display = False
        body = self.query_one(VerticalScroll)
        body.display = True
        body.scroll_home(animate=False)
        self.query_one(".surface-body", Static).update(render_message(message))
        hint = "  (esc: back)" if self.view_type.endswith("messageList") else ""
        self._set_status(f"{message['subject'] or '(no subject)'}{hint}")

    # =========================================================================
    # Actions
    # =========================================================================

    def selected_uid(self) -> int | None:
        """The message the user is looking at or has the cursor on."""
        if self._mode == "message" and self._message is not None:
            return self._message["uid"]
        if self._mode != "messages":
            return None
        table = self.query_one(DataTable)
        if table.row_count == 0:
            return None
        row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        return int(row_key.value) if row_key.value is not None else None

    def send(self, payload: Payload) -> None:
        if not self._disposed:
            self._did_receive.fire(payload)

    def action_act(self, action: str) -> None:
        payload: Payload = {"type": action}
        uid = self.selected_uid()
        if uid is not None:
            payload["uid"] = uid
        self.send(payload)

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        event.stop()
        if event.row_key.value is not None:
            self.send({"type": "openMessage", "uid": int(event.row_key.value)})

    async def action_move(self) -> None:
        if self._mode != "message":
            return
        destination = await ask(self.app, PromptScreen("Move to folder", placeholder="Archive"))
        if destination:
            self.send({"type": "move", "destination": destination})

    async def action_save_attachment(self) -> None:
        if self._mode != "message" or self._message is None:
            return
        attachments = self._message.get("attachments", [])
        if not attachments:
            self.notify("This message has no attachments")
            return
        if len(attachments) == 1:
            index = 0
        else:
            answer = await ask(self.app, PromptScreen("Attachment number", value="0"))
            if answer is None:
                return
            try:
                index = int(answer)
            except ValueError:
                self.notify(f"Not a number: {answer}", severity="error")
                return
        self.send({"type": "downloadAttachment", "index": index})


class TextualPanelHost:
    """
    Creates TabSurfaces inside the app's TabbedContent. Implements PanelHost.

    Usage:
        >>> host = TextualPanelHost(app, "#panels")
        >>> surface = await host.create_surface("kestrel.messageList", "INBOX")
    """

    def __init__(self, app: App, selector: str = "#panels") -> None:
        self.app = app
        self.selector = selector
        self._ids = count(1)

    @property
    def tabs(self) -> TabbedContent:
        return self.app.query_one(self.selector, TabbedContent)

    async def create_surface(self, view_type: str, title: str) -> TabSurface:
        surface = TabSurface(self, view_type, title, f"panel-{next(self._ids)}")
        await self.tabs.add_pane(surface)
        self.tabs.active = surface.id
        return surface

    def active_surface(self) -> TabSurface | None:
        pane = self.tabs.active_pane
        return pane if isinstance(pane, TabSurface) else None

    def reveal(self, surface: TabSurface) -> None:
        self.tabs.active = surface.id

    def set_title(self, surface: TabSurface, title: str) -> None:
        if surface.is_mounted:
            self.tabs.get_tab(surface.id).label = escape(title)

    def remove(self, surface: TabSurface) -> None:
        if surface.is_mounted:
            self.app.call_later(self._remove_pane, surface.id)

    async def _remove_pane(self, pane_id: str) -> None:
        await self.tabs.remove_pane(pane_id)
