# =============================================================================
# Compose Screen
# =============================================================================
# Screen for writing new messages, replies and forwards.
#
# Features:
#   - To/Cc/Bcc fields (comma-separated)
#   - Subject line and plain-text body, prefilled for reply/forward
#   - Attachments added from a file path
#   - Sending through compose.send_draft (SMTP, then a copy in Sent)
# =============================================================================

import logging
import mimetypes
import os
from pathlib import Path

from textual import work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Input, Static, TextArea

from kestrel_mail.accounts import AccountStore
from kestrel_mail.compose import ComposeMode, send_draft
from kestrel_mail.core import Account
from kestrel_mail.errors import MailError
from kestrel_mail.explorer import MailExplorer
from kestrel_mail.smtp import EmailDraft
from kestrel_mail.ui.dialogs import ConfirmScreen, PromptScreen

logger = logging.getLogger(__name__)

# Largest file accepted as an attachment (bytes)
MAX_ATTACHMENT_SIZE = 25 * 1024 * 1024

_TITLES = {
    ComposeMode.COMPOSE: "New Message",
    ComposeMode.REPLY: "Reply",
    ComposeMode.REPLY_ALL: "Reply All",
    ComposeMode.FORWARD: "Forward",
}


def split_addresses(value: str) -> list[str]:
    """Comma-separated input to a list of addresses."""
    return [addr.strip() for addr in value.split(",") if addr.strip()]


class ComposeScreen(Screen):
    """
    Screen for composing and sending a message.

    Keybindings:
        - Ctrl+S: Send
        - Ctrl+A: Add attachment
        - Escape: Cancel (asks first if anything was typed)
    """

    BINDINGS = [
        Binding("ctrl+s", "send", "Send"),
        Binding("ctrl+a", "add_attachment", "Attach", priority=True),
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    #compose-container {
        padding: 1;
    }

    #compose-headers {
        height: auto;
        margin-bottom: 1;
    }

    .compose-field {
        height: 3;
    }

    .field-label {
        width: 10;
        padding: 1 1 0 0;
        text-align: right;
    }

    .compose-field Input {
        width: 1fr;
    }

    #body-editor {
        height: 1fr;
        min-height: 10;
        border: tall $primary;
    }

    #attachments-display, #status-display {
        height: auto;
        margin-top: 1;
        color: $text-muted;
    }

    #compose-actions {
        height: auto;
        margin-top: 1;
        align: center middle;
    }

    #compose-actions Button {
        margin: 0 1;
    }
    """

    def __init__(
        self,
        accounts: AccountStore,
        explorer: MailExplorer,
        account: Account,
        draft: EmailDraft | None = None,
        mode: ComposeMode = ComposeMode.COMPOSE,
    ) -> None:
        """
        Args:
            accounts: Account store (passwords for sending).
            explorer: Explorer whose session files the sent copy.
            account: Account to send from.
            draft: Prefilled draft (for reply/forward).
            mode: What kind of message this is; only changes the title.
        """
        super().__init__()
        self._accounts = accounts
        self._explorer = explorer
        self._account = account
        self._draft = draft or EmailDraft()
        self._initial = self._draft.body_text
        self._mode = mode
        self._sending = False

    def compose(self) -> ComposeResult:
        yield Header()

        with Vertical(id="compose-container"):
            yield Static(f"{_TITLES[self._mode]} from {self._account.name}", id="compose-title")
            with Vertical(id="compose-headers"):
                for label, field_id, values, placeholder in (
                    ("To:", "to-input", self._draft.to, "recipient@example.com"),
                    ("Cc:", "cc-input", self._draft.cc, ""),
                    ("Bcc:", "bcc-input", self._draft.bcc, ""),
                ):
                    with Horizontal(classes="compose-field"):
                        yield Static(label, classes="field-label")
                        yield Input(value=", ".join(values), id=field_id, placeholder=placeholder)

                with Horizontal(classes="compose-field"):
                    yield Static("Subject:", classes="field-label")
                    yield Input(value=self._draft.subject, id="subject-input", placeholder="Subject")

            yield TextArea(self._draft.body_text, id="body-editor")
            yield Static(self._attachments_display(), id="attachments-display")
            yield Static("", id="status-display")

            with Horizontal(id="compose-actions"):
                yield Button("Send", id="send-btn", variant="primary")
                yield Button("Cancel", id="cancel-btn", variant="error")

        yield Footer()

    def on_mount(self) -> None:
        target = "#body-editor" if self._draft.to else "#to-input"
        self.query_one(target).focus()

    # =========================================================================
    # Draft
    # =========================================================================

    def _attachments_display(self) -> str:
        if self._draft.attachments:
            names = [att[0] for att in self._draft.attachments]
            return f"Attachments: {', '.join(names)}"
        return "Attachments: None"

    def _update_status(self, text: str) -> None:
        self.query_one("#status-display", Static).update(text)

    def current_draft(self) -> EmailDraft:
        """Build a draft from the current form values."""
        return EmailDraft(
            to=split_addresses(self.query_one("#to-input", Input).value),
            cc=split_addresses(self.query_one("#cc-input", Input).value),
            bcc=split_addresses(self.query_one("#bcc-input", Input).value),
            subject=self.query_one("#subject-input", Input).value,
            body_text=self.query_one("#body-editor", TextArea).text,
            attachments=self._draft.attachments,
            in_reply_to=self._draft.in_reply_to,
            references=self._draft.references,
        )

    def _modified(self) -> bool:
        draft = self.current_draft()
        return draft.body_text != self._initial or bool(draft.attachments)

    # =========================================================================
    # Actions
    # =========================================================================

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send-btn":
            self.action_send()
        elif event.button.id == "cancel-btn":
            self.action_cancel()

    def action_send(self) -> None:
        if self._sending:
            return

        draft = self.current_draft()
        if not draft.to:
            self.notify("Please enter at least one recipient", severity="error")
            return
        if not draft.subject.strip():
            self.notify("Please enter a subject", severity="error")
            return

        self._do_send(draft)

    @work(exclusive=True)
    async def _do_send(self, draft: EmailDraft) -> None:
        """Background worker that sends the draft."""
        self._sending = True
        send_btn = self.query_one("#send-btn", Button)
        send_btn.disabled = True
        self._update_status("Sending...")

        try:
            await send_draft(self._accounts, self._explorer, self._account.id, draft)
        except MailError as e:
            logger.warning(f"Send failed: {e}")
            self._update_status(f"Send failed: {e}")
            self.notify(f"Failed to send: {e}", severity="error")
            return
        finally:
            self._sending = False
            send_btn.disabled = False

        self.notify(f"Message sent to {', '.join(draft.to)}", timeout=3)
        self.dismiss()

    def action_cancel(self) -> None:
        if not self._modified():
            self.dismiss()
            return

        def leave(confirmed: bool | None) -> None:
            if confirmed:
                self.dismiss()

        self.app.push_screen(ConfirmScreen("Discard this message?"), leave)

    def action_add_attachment(self) -> None:
        def attach(path: str | None) -> None:
            if path:
                self.add_attachment(path)

        self.app.push_screen(PromptScreen("Attach file", placeholder="~/Documents/file.pdf"), attach)

    def add_attachment(self, path: str) -> None:
        """Read a file into the draft's attachments."""
        file_path = Path(os.path.expanduser(os.path.expandvars(path)))

        if not file_path.is_file():
            self.notify(f"Not a file: {path}", severity="error")
            return
        if file_path.stat().st_size > MAX_ATTACHMENT_SIZE:
            self.notify("File too large (max 25MB)", severity="error")
            return

        try:
            data = file_path.read_bytes()
        except OSError as e:
            self.notify(f"Error reading file: {e}", severity="error")
            return

        content_type, _ = mimetypes.guess_type(file_path.name)
        self._draft.attachments.append(
            (file_path.name, content_type or "application/octet-stream", data)
        )
        self.query_one("#attachments-display", Static).update(self._attachments_display())
        self.notify(f"Attached: {file_path.name}")
