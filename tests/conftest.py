# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the Kestrel Mail test suite.
#
# Nothing here touches the network, the real keyring or the user's config:
#   - FakeServer / FakeProtocolClient stand in for aioimaplib
#   - FakeKeyring stands in for the keyring backend
#   - FakePanelHost / FakeSurface stand in for the Textual tabs
#   - FakeNotifier records what commands tell the user
# =============================================================================

import asyncio
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Any, Callable

import keyring.errors
import pytest

from kestrel_mail.accounts import AccountStore
from kestrel_mail.config import Config
from kestrel_mail.core import Account, Address, FolderEntry
from kestrel_mail.events import Emitter
from kestrel_mail.explorer import MailExplorer
from kestrel_mail.imap.parser import FetchRecord
from kestrel_mail.imap.session import MailSession
from kestrel_mail.panels import PanelRegistry

BASE_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Protocol Fakes
# =============================================================================

def make_records(count: int, *, subject: str = "Message", first_uid: int = 100) -> list[FetchRecord]:
    """`count` summary records with sequence numbers 1..count, oldest first."""
    return [
        FetchRecord(
            seq=seq,
            uid=first_uid + seq,
            flags={"\\Seen"} if seq % 2 else set(),
            envelope={
                "date": BASE_DATE + timedelta(hours=seq),
                "subject": f"{subject} {seq}",
                "from": [Address("sender@example.com", "Sender")],
                "to": [Address("me@example.com")],
                "cc": [],
                "in_reply_to": "",
                "message_id": f"<{seq}@example.com>",
            },
            size=1000 + seq,
        )
        for seq in range(1, count + 1)
    ]


def make_raw(
    subject: str = "Hello",
    *,
    sender: str = "Alice <alice@example.com>",
    to: str = "me@example.com",
    cc: str | None = None,
    body: str = "Hi there",
    attachment: tuple[str, bytes] | None = None,
) -> bytes:
    """Raw RFC 822 bytes of a small message."""
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    if cc:
        msg["Cc"] = cc
    msg["Subject"] = subject
    msg["Date"] = "Mon, 01 Jan 2024 10:00:00 +0000"
    msg["Message-ID"] = "<orig@example.com>"
    msg.set_content(body)
    if attachment is not None:
        filename, data = attachment
        msg.add_attachment(data, maintype="application", subtype="pdf", filename=filename)
    return msg.as_bytes()


class FakeServer:
    """
    Mailbox state shared by every FakeProtocolClient of one test.

    Attributes:
        folders: What LIST returns.
        mailboxes: Summary records per folder (EXISTS = len).
        raw: Message source by UID.
        flags: Flags by UID.
        calls: Every command, as (name, *args) tuples.
        gate: When set to an Event, fetch_summaries waits for it.
        connect_gate: When set to an Event, connect waits for it.
        fetch_started: Set when a fetch_summaries call begins.
    """

    def __init__(self) -> None:
        self.folders: list[FolderEntry] = [
            FolderEntry(path="INBOX", name="INBOX", parent_path=None, special_use="\\Inbox",
                        messages=3, unseen=2),
            FolderEntry(path="Work", name="Work", flags=["\\HasChildren"], messages=0, unseen=1),
            FolderEntry(path="Work/Alpha", name="Alpha", parent_path="Work", messages=4, unseen=3),
            FolderEntry(path="Sent", name="Sent", special_use="\\Sent", messages=0, unseen=0),
        ]
        self.mailboxes: dict[str, list[FetchRecord]] = {}
        self.raw: dict[int, bytes] = {}
        self.flags: dict[int, set[str]] = {}
        self.calls: list[tuple] = []
        self.connect_error: Exception | None = None
        self.logout_error: Exception | None = None
        self.list_error: Exception | None = None
        self.select_errors: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.connect_gate: asyncio.Event | None = None
        self.fetch_started = asyncio.Event()

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeProtocolClient:
    """In-memory MailProtocol implementation backed by a FakeServer."""

    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.selected: str | None = None

    async def connect(self, host, port, secure, username, password) -> None:
        self.server.calls.append(("connect", host, username))
        if self.server.connect_gate is not None:
            await self.server.connect_gate.wait()
        if self.server.connect_error is not None:
            raise self.server.connect_error

    async def logout(self) -> None:
        self.server.calls.append(("logout",))
        if self.server.logout_error is not None:
            raise self.server.logout_error

    def has_capability(self, name: str) -> bool:
        return name.upper() == "MOVE"

    async def list_folders(self, *, status: bool = True) -> list[FolderEntry]:
        self.server.calls.append(("list",))
        if self.server.list_error is not None:
            raise self.server.list_error
        return list(self.server.folders)

    async def select(self, path: str) -> int:
        self.server.calls.append(("select", path))
        error = self.server.select_errors.pop(path, None)
        if error is not None:
            raise error
        self.selected = path
        return len(self.server.mailboxes.get(path, []))

    async def fetch_summaries(self, start: int, end: int) -> list[FetchRecord]:
        self.server.calls.append(("fetch", self.selected, start, end))
        self.server.fetch_started.set()
        if self.server.gate is not None:
            await self.server.gate.wait()
        records = self.server.mailboxes.get(self.selected or "", [])
        return [r for r in records if start <= r.seq <= end]

    async def fetch_raw(self, uid: int) -> bytes | None:
        self.server.calls.append(("fetch_raw", uid))
        return self.server.raw.get(uid)

    async def fetch_flags(self, uid: int) -> set[str] | None:
        return set(self.server.flags.get(uid, set()))

    async def store_flags(self, uid: int, flags: list[str], *, add: bool = True) -> None:
        self.server.calls.append(("store", self.selected, uid, tuple(flags), add))
        current = self.server.flags.setdefault(uid, set())
        if add:
            current.update(flags)
        else:
            current.difference_update(flags)

    async def move(self, uid: int, destination: str) -> None:
        self.server.calls.append(("move", self.selected, uid, destination))

    async def append(self, path: str, raw: bytes, flags: list[str]) -> None:
        self.server.calls.append(("append", path, tuple(flags)))


# =============================================================================
# Keyring / Panel / Notifier Fakes
# =============================================================================

class FakeKeyring:
    """Dict-backed stand-in for the keyring module."""

    def __init__(self) -> None:
        self.secrets: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.secrets.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.secrets[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if (service, username) not in self.secrets:
            raise keyring.errors.PasswordDeleteError("not found")
        del self.secrets[(service, username)]


class FakeSurface:
    """PanelSurface that records what it was asked to show."""

    def __init__(self, view_type: str, title: str) -> None:
        self.view_type = view_type
        self.title = title
        self.posts: list[dict[str, Any]] = []
        self.revealed = 0
        self.dispose_count = 0
        self._alive = True
        self._did_dispose = Emitter()
        self._did_receive = Emitter()

    @property
    def alive(self) -> bool:
        return self._alive

    def reveal(self) -> None:
        self.revealed += 1

    def post(self, payload: dict[str, Any]) -> None:
        self.posts.append(payload)

    def dispose(self) -> None:
        if not self._alive:
            return
        self._alive = False
        self.dispose_count += 1
        self._did_dispose.fire()

    def on_did_dispose(self, callback: Callable[[], Any]) -> Callable[[], None]:
        return self._did_dispose.subscribe(callback)

    def on_did_receive(self, callback: Callable[[dict], Any]) -> Callable[[], None]:
        return self._did_receive.subscribe(callback)

    def send(self, payload: dict[str, Any]) -> None:
        """Simulate a user action."""
        self._did_receive.fire(payload)

    @property
    def last(self) -> dict[str, Any] | None:
        return self.posts[-1] if self.posts else None

    def posted(self, kind: str) -> list[dict[str, Any]]:
        return [p for p in self.posts if p.get("type") == kind]


class FakePanelHost:
    """PanelHost creating FakeSurfaces; `gate` delays creation."""

    def __init__(self) -> None:
        self.surfaces: list[FakeSurface] = []
        self.gate: asyncio.Event | None = None

    async def create_surface(self, view_type: str, title: str) -> FakeSurface:
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        surface = FakeSurface(view_type, title)
        self.surfaces.append(surface)
        return surface


class FakeNotifier:
    def __init__(self) -> None:
        self.infos: list[str] = []
        self.warnings: list[str] = []
        self.errors: list[str] = []
        self.confirms: list[str] = []
        self.answer = True

    def info(self, message: str) -> None:
        self.infos.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    async def confirm(self, message: str) -> bool:
        self.confirms.append(message)
        return self.answer


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def account():
    """A sample Account for testing."""
    return Account(
        id="work",
        name="Work",
        host="imap.example.com",
        username="me@example.com",
        smtp_host="smtp.example.com",
    )


@pytest.fixture
def config(tmp_path, account):
    config = Config(path=tmp_path / "config.toml")
    config.accounts[account.id] = account
    return config


@pytest.fixture
def fake_keyring():
    return FakeKeyring()


@pytest.fixture
def accounts(config, fake_keyring, account):
    """AccountStore with the sample account and its IMAP password."""
    fake_keyring.set_password(account.keyring_service, "imap", "secret")
    return AccountStore(config, secret_backend=fake_keyring, persist=False)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def session_factory(server):
    def factory(account_id: str) -> MailSession:
        return MailSession(account_id, client_factory=lambda: FakeProtocolClient(server))
    return factory


@pytest.fixture
def explorer(accounts, session_factory):
    return MailExplorer(accounts, session_factory=session_factory)


@pytest.fixture
def host():
    return FakePanelHost()


@pytest.fixture
def registry(explorer, host, config):
    return PanelRegistry(explorer, host, config.ui)


@pytest.fixture
def notifier():
    return FakeNotifier()
