"""Tests for MailSession: connection life cycle, folder lock, paging."""

import asyncio

import pytest

from kestrel_mail.errors import (
    AuthError,
    ConnectTimeoutError,
    NetworkError,
    NotConnectedError,
    NotFoundError,
    ProtocolError,
    ValidationError,
)
from kestrel_mail.imap.session import ConnectionState, MailSession

from conftest import FakeProtocolClient, make_raw, make_records


@pytest.fixture
def session(server):
    return MailSession("work", client_factory=lambda: FakeProtocolClient(server))


class TestConnection:
    @pytest.mark.asyncio
    async def test_connect(self, session, account, server):
        await session.connect(account, "secret")

        assert session.connected
        assert session.state is ConnectionState.CONNECTED
        assert server.calls[0] == ("connect", "imap.example.com", "me@example.com")

    @pytest.mark.asyncio
    async def test_missing_password(self, session, account, server):
        with pytest.raises(ValidationError):
            await session.connect(account, None)
        assert server.count("connect") == 0

    @pytest.mark.asyncio
    async def test_failed_connect_records_error(self, session, account, server):
        server.connect_error = AuthError("Invalid credentials")

        with pytest.raises(AuthError):
            await session.connect(account, "wrong")

        assert session.state is ConnectionState.ERROR
        assert session.last_error == "Invalid credentials"
        assert not session.connected

    @pytest.mark.asyncio
    async def test_transport_errors_are_mapped(self, session, account, server):
        server.connect_error = asyncio.TimeoutError()
        with pytest.raises(ConnectTimeoutError):
            await session.connect(account, "secret")

        server.connect_error = ConnectionRefusedError("refused")
        with pytest.raises(NetworkError):
            await session.connect(account, "secret")

    @pytest.mark.asyncio
    async def test_reconnect_drops_old_connection(self, session, account, server):
        await session.connect(account, "secret")
        await session.connect(account, "secret")

        assert server.count("connect") == 2
        assert server.count("logout") == 1

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, session, account, server):
        await session.connect(account, "secret")

        await session.disconnect()
        await session.disconnect()

        assert server.count("logout") == 1
        assert session.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_without_connect(self, session, server):
        await session.disconnect()
        assert server.count("logout") == 0

    @pytest.mark.asyncio
    async def test_failing_logout_still_disconnects(self, session, account, server):
        await session.connect(account, "secret")
        server.logout_error = OSError("connection reset")

        with pytest.raises(OSError):
            await session.disconnect()
        assert not session.connected

    @pytest.mark.asyncio
    async def test_best_effort_disconnect_swallows(self, session, account, server):
        await session.connect(account, "secret")
        server.logout_error = OSError("connection reset")

        await session.disconnect(best_effort=True)
        assert session.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_operations_require_connection(self, session):
        with pytest.raises(NotConnectedError):
            await session.get_messages("INBOX")
        with pytest.raises(NotConnectedError):
            await session.list_folders()

    @pytest.mark.asyncio
    async def test_connection_test_uses_throwaway_client(self, account, server):
        await MailSession.test_connection(
            account, "secret", client_factory=lambda: FakeProtocolClient(server)
        )
        assert server.count("connect") == 1
        assert server.count("logout") == 1


class TestListing:
    @pytest.mark.asyncio
    async def test_first_page(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(120)
        await session.connect(account, "secret")

        page = await session.get_messages("INBOX", limit=50, offset=0)

        assert ("fetch", "INBOX", 71, 120) in server.calls
        assert len(page) == 50
        assert page[0].uid == 220
        assert page[-1].uid == 171

    @pytest.mark.asyncio
    async def test_last_partial_page(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(120)
        await session.connect(account, "secret")

        page = await session.get_messages("INBOX", limit=50, offset=100)

        assert ("fetch", "INBOX", 1, 20) in server.calls
        assert [m.uid for m in page] == list(range(120, 100, -1))

    @pytest.mark.asyncio
    async def test_offset_past_end_is_clamped(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(120)
        await session.connect(account, "secret")

        page = await session.get_messages("INBOX", limit=50, offset=150)

        assert ("fetch", "INBOX", 1, 1) in server.calls
        assert [m.uid for m in page] == [101]

    @pytest.mark.asyncio
    async def test_empty_folder_does_not_fetch(self, session, account, server):
        await session.connect(account, "secret")

        assert await session.get_messages("INBOX") == []
        assert server.count("fetch") == 0

    @pytest.mark.asyncio
    async def test_zero_limit(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(5)
        await session.connect(account, "secret")

        assert await session.get_messages("INBOX", limit=0) == []
        assert server.count("fetch") == 0

    @pytest.mark.asyncio
    async def test_list_folders_builds_tree(self, session, account):
        await session.connect(account, "secret")

        forest = await session.list_folders()

        assert [n.path for n in forest] == ["INBOX", "Work", "Sent"]
        assert forest[1].children[0].path == "Work/Alpha"


class TestFolderLock:
    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(3)
        server.select_errors["INBOX"] = ProtocolError("SELECT failed")
        await session.connect(account, "secret")

        with pytest.raises(ProtocolError):
            await session.get_messages("INBOX")

        assert not session._lock.locked()
        assert session.selected_folder is None
        assert len(await session.get_messages("INBOX")) == 3

    @pytest.mark.asyncio
    async def test_lock_released_on_cancellation(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(3)
        server.gate = asyncio.Event()
        await session.connect(account, "secret")

        task = asyncio.create_task(session.get_messages("INBOX"))
        await server.fetch_started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not session._lock.locked()

    @pytest.mark.asyncio
    async def test_operations_serialize(self, session, account, server):
        server.mailboxes["A"] = make_records(2)
        server.mailboxes["B"] = make_records(2)
        server.gate = asyncio.Event()
        await session.connect(account, "secret")

        first = asyncio.create_task(session.get_messages("A"))
        await server.fetch_started.wait()
        second = asyncio.create_task(session.get_messages("B"))
        await asyncio.sleep(0)

        # B cannot be selected while A's fetch holds the lock
        assert ("select", "B") not in server.calls

        server.gate.set()
        await asyncio.gather(first, second)
        selects = [c for c in server.calls if c[0] in ("select", "fetch")]
        assert selects == [
            ("select", "A"), ("fetch", "A", 1, 2),
            ("select", "B"), ("fetch", "B", 1, 2),
        ]


class TestMessages:
    @pytest.mark.asyncio
    async def test_get_message(self, session, account, server):
        server.mailboxes["INBOX"] = make_records(1)
        server.raw[101] = make_raw("Lunch?")
        server.flags[101] = {"\\Seen"}
        await session.connect(account, "secret")

        detail = await session.get_message("INBOX", 101)

        assert detail.subject == "Lunch?"
        assert detail.seen is True

    @pytest.mark.asyncio
    async def test_missing_message(self, session, account):
        await session.connect(account, "secret")
        with pytest.raises(NotFoundError):
            await session.get_message("INBOX", 999)

    @pytest.mark.asyncio
    async def test_mark_seen_and_unseen(self, session, account, server):
        await session.connect(account, "secret")

        await session.mark_message_seen("INBOX", 5, True)
        await session.mark_message_seen("INBOX", 5, False)

        stores = [c for c in server.calls if c[0] == "store"]
        assert stores == [
            ("store", "INBOX", 5, ("\\Seen",), True),
            ("store", "INBOX", 5, ("\\Seen",), False),
        ]

    @pytest.mark.asyncio
    async def test_delete_only_flags(self, session, account, server):
        await session.connect(account, "secret")
        await session.delete_message("INBOX", 5)
        assert ("store", "INBOX", 5, ("\\Deleted",), True) in server.calls

    @pytest.mark.asyncio
    async def test_move(self, session, account, server):
        await session.connect(account, "secret")
        await session.move_message("INBOX", 5, "Archive")
        assert ("move", "INBOX", 5, "Archive") in server.calls

    @pytest.mark.asyncio
    async def test_move_to_same_folder(self, session, account):
        await session.connect(account, "secret")
        with pytest.raises(ValidationError):
            await session.move_message("INBOX", 5, "INBOX")

    @pytest.mark.asyncio
    async def test_get_attachment(self, session, account, server):
        server.raw[7] = make_raw(attachment=("a.pdf", b"PDF"))
        await session.connect(account, "secret")

        info, data = await session.get_attachment("INBOX", 7, 0)

        assert info.filename == "a.pdf"
        assert data == b"PDF"

    @pytest.mark.asyncio
    async def test_append(self, session, account, server):
        await session.connect(account, "secret")
        await session.append_message("Sent", b"raw", ["\\Seen"])
        assert ("append", "Sent", ("\\Seen",)) in server.calls
