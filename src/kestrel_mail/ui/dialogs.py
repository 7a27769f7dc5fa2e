# =============================================================================
# Dialogs & Notifier
# =============================================================================
# Small modal screens (yes/no, single line of text, account settings) and
# the Textual implementation of the commands' Notifier protocol.
#
# The dialogs are awaited through a future resolved by the dismiss callback,
# so they work from plain asyncio tasks as well as from Textual workers.
# =============================================================================

import asyncio
import dataclasses
from typing import Awaitable, Callable

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Checkbox, Input, Label, Static

from kestrel_mail.commands import AccountForm
from kestrel_mail.core import Account
from kestrel_mail.errors import MailError

DIALOG_CSS = """
#dialog {
    width: 60;
    height: auto;
    padding: 1 2;
    background: $surface;
    border: thick $primary;
}

#dialog-title {
    text-align: center;
    text-style: bold;
    margin-bottom: 1;
}

#dialog-input {
    margin-bottom: 1;
}

#dialog-buttons {
    align: center middle;
    height: auto;
}

#dialog-buttons Button {
    margin: 0 1;
}
"""


class ConfirmScreen(ModalScreen[bool]):
    """
    Yes/no question.

    Returns:
        True if confirmed, False otherwise.
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("y", "confirm", "Yes", show=False),
        Binding("n", "cancel", "No", show=False),
    ]

    DEFAULT_CSS = "ConfirmScreen { align: center middle; }" + DIALOG_CSS

    def __init__(self, message: str) -> None:
        super().__init__()
        self._message = message

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Static(self._message, id="dialog-title")
            with Horizontal(id="dialog-buttons"):
                yield Button("Yes", id="yes-btn", variant="error")
                yield Button("No", id="no-btn", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#no-btn", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "yes-btn":
            self.action_confirm()
        else:
            self.action_cancel()

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


class PromptScreen(ModalScreen[str | None]):
    """
    Asks for one line of text (a folder name, an attachment number, a
    password).

    Returns:
        The entered text, or None if cancelled.
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    DEFAULT_CSS = "PromptScreen { align: center middle; }" + DIALOG_CSS

    def __init__(
        self,
        title: str,
        *,
        placeholder: str = "",
        value: str = "",
        password: bool = False,
    ) -> None:
        super().__init__()
        self._title = title
        self._placeholder = placeholder
        self._value = value
        self._password = password

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Static(self._title, id="dialog-title")
            yield Input(
                value=self._value,
                placeholder=self._placeholder,
                password=self._password,
                id="dialog-input",
            )
            with Horizontal(id="dialog-buttons"):
                yield Button("OK", id="ok-btn", variant="primary")
                yield Button("Cancel", id="cancel-btn")

    def on_mount(self) -> None:
        self.query_one("#dialog-input", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "ok-btn":
            self.action_submit()
        else:
            self.action_cancel()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.action_submit()

    def action_submit(self) -> None:
        value = self.query_one("#dialog-input", Input).value.strip()
        if value:
            self.dismiss(value)
        else:
            self.notify("Please enter a value", severity="warning")

    def action_cancel(self) -> None:
        self.dismiss(None)


# Checks settings with a throwaway login (CommandRouter.check_account)
AccountTester = Callable[[Account, str], Awaitable[None]]


class AccountScreen(ModalScreen[AccountForm | None]):
    """
    Account settings form: IMAP and SMTP servers, logins and the Sent folder.

    "Test" logs in with the entered settings without saving anything.
    Password fields left empty keep the stored passwords of an existing
    account.

    Returns:
        The filled-in AccountForm, or None if cancelled.
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    DEFAULT_CSS = "AccountScreen { align: center middle; }" + DIALOG_CSS + """
    AccountScreen #dialog {
        width: 72;
        height: 90%;
    }

    AccountScreen #account-fields {
        height: 1fr;
    }

    AccountScreen #account-status {
        height: auto;
        margin-bottom: 1;
    }
    """

    def __init__(self, form: AccountForm, tester: AccountTester, *, new: bool = False) -> None:
        super().__init__()
        self._form = form
        self._tester = tester
        self._new = new

    def compose(self) -> ComposeResult:
        account = self._form.account
        title = "Add Account" if self._new else f"Edit {account.name}"
        with Vertical(id="dialog"):
            yield Static(title, id="dialog-title")
            with VerticalScroll(id="account-fields"):
                yield Label("Display name")
                yield Input(account.name, id="name-input")
                yield Label("IMAP server")
                yield Input(account.host, placeholder="imap.example.com", id="host-input")
                yield Input(str(account.port), id="port-input")
                yield Checkbox("Use TLS", account.secure, id="secure-check")
                yield Label("Username")
                yield Input(account.username, placeholder="me@example.com", id="username-input")
                yield Input(
                    self._form.password,
                    placeholder="Password" if self._new else "Password (unchanged)",
                    password=True,
                    id="password-input",
                )
                yield Label("SMTP server")
                yield Input(account.smtp_host, placeholder="smtp.example.com", id="smtp-host-input")
                yield Input(str(account.smtp_port), id="smtp-port-input")
                yield Checkbox("Use TLS", account.smtp_secure, id="smtp-secure-check")
                yield Input(account.smtp_username, placeholder="SMTP username (same as IMAP)",
                            id="smtp-username-input")
                yield Input(self._form.smtp_password, placeholder="SMTP password",
                            password=True, id="smtp-password-input")
                yield Label("Sent folder")
                yield Input(account.sent_folder, id="sent-folder-input")
            yield Static("", id="account-status")
            with Horizontal(id="dialog-buttons"):
                yield Button("Save", id="save-btn", variant="primary")
                yield Button("Test", id="test-btn")
                yield Button("Cancel", id="cancel-btn")

    def on_mount(self) -> None:
        self.query_one("#name-input", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "save-btn":
            self.action_submit()
        elif event.button.id == "test-btn":
            self.action_test()
        else:
            self.action_cancel()

    def action_submit(self) -> None:
        form = self._read_form()
        if form is not None:
            self.dismiss(form)

    def action_test(self) -> None:
        form = self._read_form()
        if form is not None:
            self._do_test(form)

    def action_cancel(self) -> None:
        self.dismiss(None)

    @work(exclusive=True)
    async def _do_test(self, form: AccountForm) -> None:
        status = self.query_one("#account-status", Static)
        status.update("Testing connection...")
        try:
            await self._tester(form.account, form.password)
        except MailError as e:
            status.update(f"Connection failed: {e}")
            return
        status.update("Connection successful!")

    def _value(self, selector: str) -> str:
        return self.query_one(selector, Input).value.strip()

    def _read_form(self) -> AccountForm | None:
        """The entered settings, or None (with a warning) if incomplete."""
        host = self._value("#host-input")
        username = self._value("#username-input")
        if not host or not username:
            self.notify("IMAP server and username are required", severity="warning")
            return None
        try:
            port = int(self._value("#port-input"))
            smtp_port = int(self._value("#smtp-port-input"))
        except ValueError:
            self.notify("Ports must be numbers", severity="warning")
            return None

        account = dataclasses.replace(
            self._form.account,
            name=self._value("#name-input") or username,
            host=host,
            port=port,
            secure=self.query_one("#secure-check", Checkbox).value,
            username=username,
            smtp_host=self._value("#smtp-host-input"),
            smtp_port=smtp_port,
            smtp_secure=self.query_one("#smtp-secure-check", Checkbox).value,
            smtp_username=self._value("#smtp-username-input"),
            sent_folder=self._value("#sent-folder-input") or "Sent",
        )
        return AccountForm(
            account,
            password=self.query_one("#password-input", Input).value,
            smtp_password=self.query_one("#smtp-password-input", Input).value,
        )


async def ask(app: App, screen: ModalScreen):
    """Push a modal screen and wait for its result."""
    future = asyncio.get_running_loop().create_future()

    def resolve(result) -> None:
        if not future.done():
            future.set_result(result)

    app.push_screen(screen, resolve)
    return await future


class TextualNotifier:
    """
    Notifier backed by Textual toasts and a confirm dialog.

    Usage:
        >>> notifier = TextualNotifier(app)
        >>> notifier.error("Move failed: no such folder")
        >>> if await notifier.confirm("Delete this message?"): ...
    """

    def __init__(self, app: App) -> None:
        self.app = app

    def info(self, message: str) -> None:
        self.app.notify(message, timeout=3)

    def warning(self, message: str) -> None:
        self.app.notify(message, severity="warning")

    def error(self, message: str) -> None:
        self.app.notify(message, severity="error", timeout=10)

    async def confirm(self, message: str) -> bool:
        return bool(await ask(self.app, ConfirmScreen(message)))
