"""Tests for the CommandRouter."""

import pytest

from kestrel_mail.commands import AccountForm, CommandRouter, unique_path
from kestrel_mail.compose import ComposeMode
from kestrel_mail.core import Account
from kestrel_mail.errors import AuthError
from kestrel_mail.panels import FolderRef, MessageRef, PanelKey

from conftest import FakeProtocolClient, make_raw


@pytest.fixture
def composed():
    return []


@pytest.fixture
def router(accounts, explorer, registry, notifier, composed, tmp_path):
    async def open_compose(mode, account, draft, original):
        composed.append((mode, account.id, draft, original))

    return CommandRouter(
        accounts,
        explorer,
        registry,
        notifier,
        open_compose=open_compose,
        download_dir=tmp_path / "downloads",
    )


MESSAGE = MessageRef("work", "INBOX", 7)


class TestExecute:
    @pytest.mark.asyncio
    async def test_unknown_command(self, router, notifier):
        assert await router.execute("frobnicate") is None
        assert notifier.errors == ["Unknown command: frobnicate"]

    @pytest.mark.asyncio
    async def test_failures_are_reported(self, router, notifier):
        assert await router.execute("openFolder", FolderRef("work")) is None
        assert notifier.errors == ["Open folder failed: Folder path is required"]

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(self, router, notifier, server):
        server.connect_error = AuthError("Invalid credentials")

        await router.execute("markRead", MESSAGE)

        assert notifier.errors == ["Mark as read failed: Invalid credentials"]

    @pytest.mark.asyncio
    async def test_router_becomes_registry_dispatcher(self, router, registry):
        assert registry.dispatch == router.execute
        assert "openFolder" in router.names


class TestNavigation:
    @pytest.mark.asyncio
    async def test_open_folder_uses_active_panel(self, router, registry):
        await router.execute("openFolder", FolderRef("work", "INBOX", "Inbox"))
        await router.execute("openFolder", FolderRef("work", "Sent"))

        assert list(registry.list_panels) == [PanelKey("work", "Sent")]
        assert registry.active_list.title == "Sent"

    @pytest.mark.asyncio
    async def test_open_in_new_tab(self, router, registry, host):
        await router.execute("openFolder", FolderRef("work", "INBOX", "Inbox"))
        await router.execute("openFolderInNewTab", FolderRef("work", "Sent", "Sent"))

        assert len(host.surfaces) == 2
        assert set(registry.list_panels) == {PanelKey("work", "INBOX"), PanelKey("work", "Sent")}

    @pytest.mark.asyncio
    async def test_open_message(self, router, registry, server):
        server.raw[7] = make_raw("Lunch?")

        await router.execute("openMessage", MESSAGE)

        assert PanelKey("work", "INBOX", 7) in registry.detail_panels


class TestCompose:
    @pytest.mark.asyncio
    async def test_compose_uses_first_account(self, router, composed):
        await router.execute("compose")

        (mode, account_id, draft, original), = composed
        assert mode is ComposeMode.COMPOSE
        assert account_id == "work"
        assert draft.to == []
        assert original is None

    @pytest.mark.asyncio
    async def test_reply_prefills_from_original(self, router, composed, server):
        server.raw[7] = make_raw("Lunch?")

        await router.execute("reply", MESSAGE)

        (mode, _, draft, original), = composed
        assert mode is ComposeMode.REPLY
        assert draft.to == ["alice@example.com"]
        assert draft.subject == "Re: Lunch?"
        assert draft.in_reply_to == "<orig@example.com>"
        assert original.subject == "Lunch?"

    @pytest.mark.asyncio
    async def test_forward(self, router, composed, server):
        server.raw[7] = make_raw("Lunch?")

        await router.execute("forward", MESSAGE)

        assert composed[0][2].subject == "Fwd: Lunch?"

    @pytest.mark.asyncio
    async def test_compose_without_opener(self, accounts, explorer, registry, notifier):
        router = CommandRouter(accounts, explorer, registry, notifier)

        await router.execute("compose")

        assert notifier.warnings == ["Composing is not available"]

    @pytest.mark.asyncio
    async def test_compose_without_accounts(self, router, notifier, composed, config):
        config.accounts.clear()

        await router.execute("compose")

        assert composed == []
        assert notifier.warnings == ["No mail accounts configured."]


class TestMessageCommands:
    @pytest.mark.asyncio
    async def test_delete_needs_confirmation(self, router, notifier, server):
        notifier.answer = False

        await router.execute("deleteMessage", MESSAGE)

        assert len(notifier.confirms) == 1
        assert server.count("store") == 0

    @pytest.mark.asyncio
    async def test_delete(self, router, registry, notifier, server):
        server.raw[7] = make_raw()
        server.flags[7] = {"\\Seen"}
        await registry.show_message("work", "INBOX", 7)

        await router.execute("deleteMessage", MESSAGE)

        assert ("store", "INBOX", 7, ("\\Deleted",), True) in server.calls
        assert registry.detail_panels == {}
        assert notifier.infos == ["Message deleted."]

    @pytest.mark.asyncio
    async def test_move_requires_destination(self, router, notifier, server):
        await router.execute("moveMessage", MESSAGE)

        assert notifier.errors == ["Move failed: Destination folder is required"]
        assert server.count("move") == 0

    @pytest.mark.asyncio
    async def test_move(self, router, notifier, server):
        await router.execute("moveMessage", MESSAGE, destination="Archive")

        assert ("move", "INBOX", 7, "Archive") in server.calls
        assert notifier.infos == ["Message moved to Archive."]

    @pytest.mark.asyncio
    async def test_mark_unread(self, router, explorer, server):
        changes = []
        explorer.on_did_change(changes.append)

        await router.execute("markUnread", MESSAGE)

        assert ("store", "INBOX", 7, ("\\Seen",), False) in server.calls
        assert changes == [None]


class TestDownloads:
    @pytest.mark.asyncio
    async def test_download_never_overwrites(self, router, notifier, server, tmp_path):
        server.raw[7] = make_raw(attachment=("a.pdf", b"PDF"))

        first = await router.execute("downloadAttachment", MESSAGE, index=0)
        second = await router.execute("downloadAttachment", MESSAGE, index=0)

        assert first == tmp_path / "downloads" / "a.pdf"
        assert second == tmp_path / "downloads" / "a (1).pdf"
        assert second.read_bytes() == b"PDF"
        assert len(notifier.infos) == 2

    @pytest.mark.asyncio
    async def test_missing_index(self, router, notifier):
        await router.execute("downloadAttachment", MESSAGE)
        assert notifier.errors == ["Download failed: Attachment index is required"]

    def test_unique_path(self, tmp_path):
        target = tmp_path / "report.txt"
        assert unique_path(target) == target

        target.write_text("x")
        (tmp_path / "report (1).txt").write_text("x")

        assert unique_path(target) == tmp_path / "report (2).txt"


class TestAccountCommands:
    @pytest.mark.asyncio
    async def test_refresh_account_reconnects(self, router, explorer, notifier, server):
        await explorer.connect_account("work")

        await router.execute("refreshAccount", FolderRef("work"))

        assert server.count("connect") == 2
        assert server.count("logout") == 1
        assert notifier.infos == ['Account "Work" refreshed.']

    @pytest.mark.asyncio
    async def test_refresh_account_without_password(self, router, notifier, fake_keyring, server):
        fake_keyring.secrets.clear()

        await router.execute("refreshAccount", FolderRef("work"))

        assert notifier.errors == ["No password configured for this account."]
        assert server.count("connect") == 0

    @pytest.mark.asyncio
    async def test_reconnect(self, router, explorer, server):
        await explorer.connect_account("work")

        await router.execute("reconnect")

        assert not explorer.get_session("work").connected

    @pytest.mark.asyncio
    async def test_remove_account(self, router, registry, accounts, fake_keyring, notifier):
        panel = await registry.show_list("work", "INBOX", "Inbox")

        await router.execute("removeAccount", FolderRef("work"))

        assert not panel.alive
        assert accounts.list_accounts() == []
        assert fake_keyring.secrets == {}
        assert notifier.infos == ['Account "Work" removed.']

    @pytest.mark.asyncio
    async def test_remove_account_cancelled(self, router, accounts, notifier):
        notifier.answer = False

        await router.execute("removeAccount", FolderRef("work"))

        assert [a.id for a in accounts.list_accounts()] == ["work"]


class FormAnswers:
    """Stands in for the account form: returns queued answers in order."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.shown: list[AccountForm] = []

    async def __call__(self, form):
        self.shown.append(form)
        answer = self.answers.pop(0)
        return answer(form) if callable(answer) else answer


def account_router(accounts, explorer, registry, notifier, server, form):
    return CommandRouter(
        accounts,
        explorer,
        registry,
        notifier,
        open_account_form=form,
        client_factory=lambda: FakeProtocolClient(server),
    )


class TestAccountForm:
    @pytest.mark.asyncio
    async def test_add_account(self, accounts, explorer, registry, notifier, server, fake_keyring):
        def fill(form):
            form.account.name = "Home"
            form.account.host = "imap.home.example"
            form.account.username = "me@home.example"
            return AccountForm(form.account, password="pw", smtp_password="smtp-pw")

        form = FormAnswers(fill)
        router = account_router(accounts, explorer, registry, notifier, server, form)

        added = await router.execute("addAccount")

        assert added.id.startswith("account-")
        assert form.shown[0].account.id == added.id
        assert accounts.get_account(added.id).host == "imap.home.example"
        assert accounts.get_password(added.id) == "pw"
        assert accounts.get_smtp_password(added.id) == "smtp-pw"
        assert server.calls[:2] == [("connect", "imap.home.example", "me@home.example"), ("logout",)]
        assert notifier.infos == ['Account "Home" added.']

    @pytest.mark.asyncio
    async def test_add_account_cancelled(self, accounts, explorer, registry, notifier, server):
        router = account_router(accounts, explorer, registry, notifier, server, FormAnswers(None))

        assert await router.execute("addAccount") is None
        assert [a.id for a in accounts.list_accounts()] == ["work"]
        assert server.count("connect") == 0

    @pytest.mark.asyncio
    async def test_failed_login_shows_form_again(self, accounts, explorer, registry, notifier, server):
        server.connect_error = AuthError("bad password")
        entered = AccountForm(Account(id="new", host="imap.example.com", username="a"), password="wrong")

        def fix_password(form):
            server.connect_error = None
            return AccountForm(form.account, password="right")

        form = FormAnswers(entered, fix_password)
        router = account_router(accounts, explorer, registry, notifier, server, form)

        added = await router.execute("addAccount")

        assert notifier.errors == ["Connection failed: bad password"]
        assert form.shown[1] is entered
        assert added.id == "new"
        assert accounts.get_password("new") == "right"

    @pytest.mark.asyncio
    async def test_add_account_without_password(self, accounts, explorer, registry, notifier, server):
        entered = AccountForm(Account(id="new", host="imap.example.com", username="a"))
        router = account_router(accounts, explorer, registry, notifier, server, FormAnswers(entered, None))

        assert await router.execute("addAccount") is None
        assert notifier.errors == ["Connection failed: No password configured for a"]
        assert accounts.get_account("new") is None

    @pytest.mark.asyncio
    async def test_edit_keeps_stored_password(self, accounts, explorer, registry, notifier, server):
        def rename(form):
            form.account.name = "Office"
            form.account.host = "imap2.example.com"
            return form

        form = FormAnswers(rename)
        router = account_router(accounts, explorer, registry, notifier, server, form)
        await explorer.connect_account("work")

        await router.execute("editAccount", FolderRef("work"))

        assert form.shown[0].account is not accounts.get_account("work")
        assert accounts.get_account("work").name == "Office"
        assert accounts.get_password("work") == "secret"
        assert ("connect", "imap2.example.com", "me@example.com") in server.calls
        assert explorer.sessions() == []
        assert notifier.infos == ['Account "Office" saved.']

    @pytest.mark.asyncio
    async def test_edit_unknown_account(self, accounts, explorer, registry, notifier, server):
        router = account_router(accounts, explorer, registry, notifier, server, FormAnswers())

        await router.execute("editAccount", FolderRef("ghost"))

        assert notifier.errors == ["Edit account failed: Account not found: ghost"]

    @pytest.mark.asyncio
    async def test_without_form(self, router, notifier):
        assert await router.execute("addAccount") is None
        assert notifier.warnings == ["Account settings are not available"]
