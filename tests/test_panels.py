"""Tests for the PanelRegistry and the list/detail panels."""

import asyncio

import pytest

from kestrel_mail.config import MessageDisplayMode
from kestrel_mail.errors import AuthError
from kestrel_mail.panels import PanelKey, PanelState
from kestrel_mail.panels.keys import FolderRef, MessageRef

from conftest import make_raw, make_records


class TestListPanels:
    @pytest.mark.asyncio
    async def test_new_tab_is_reused(self, registry, host):
        first = await registry.show_list("work", "INBOX", "Inbox")
        second = await registry.show_list("work", "INBOX", "Inbox")

        assert first is second
        assert len(host.surfaces) == 1
        assert host.surfaces[0].revealed == 1

    @pytest.mark.asyncio
    async def test_listing_is_posted(self, registry, host, server):
        server.mailboxes["INBOX"] = make_records(3)

        panel = await registry.show_list("work", "INBOX", "Inbox")

        surface = host.surfaces[0]
        assert [p["type"] for p in surface.posts] == ["loading", "messages"]
        payload = surface.last
        assert payload["folderPath"] == "INBOX"
        assert [m["uid"] for m in payload["messages"]] == [103, 102, 101]
        assert payload["messages"][0]["fromDisplay"] == "Sender"
        assert payload["hasMore"] is False
        assert panel.messages[0].subject == "Message 3"

    @pytest.mark.asyncio
    async def test_load_failure_is_posted(self, registry, host, server):
        server.connect_error = AuthError("Invalid credentials")

        await registry.show_list("work", "INBOX", "Inbox")

        assert host.surfaces[0].last == {"type": "error", "message": "Invalid credentials"}

    @pytest.mark.asyncio
    async def test_closing_the_surface_forgets_the_panel(self, registry, host):
        panel = await registry.show_list("work", "INBOX", "Inbox")
        surface = host.surfaces[0]

        surface.dispose()
        panel.dispose()
        surface.dispose()

        assert registry.list_panels == {}
        assert surface.dispose_count == 1
        assert not panel.alive

    @pytest.mark.asyncio
    async def test_reopening_after_close_creates_new_panel(self, registry, host):
        first = await registry.show_list("work", "INBOX", "Inbox")
        first.dispose()

        second = await registry.show_list("work", "INBOX", "Inbox")

        assert second is not first
        assert len(host.surfaces) == 2

    @pytest.mark.asyncio
    async def test_concurrent_opens_create_one_surface(self, registry, host):
        host.gate = asyncio.Event()

        first = asyncio.create_task(registry.show_list("work", "INBOX", "Inbox"))
        second = asyncio.create_task(registry.show_list("work", "INBOX", "Inbox"))
        await asyncio.sleep(0)
        host.gate.set()
        panels = await asyncio.gather(first, second)

        assert panels[0] is panels[1]
        assert len(host.surfaces) == 1
        assert list(registry.list_panels) == [PanelKey("work", "INBOX")]

    @pytest.mark.asyncio
    async def test_life_cycle_states(self, registry, host):
        key = PanelKey("work", "INBOX")
        assert registry.state_of(key) is PanelState.ABSENT

        host.gate = asyncio.Event()
        opening = asyncio.create_task(registry.show_list("work", "INBOX", "Inbox"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert registry.state_of(key) is PanelState.CREATING

        host.gate.set()
        panel = await opening
        assert registry.state_of(key) is PanelState.READY
        assert registry.state_of(PanelKey.for_detail("work", "INBOX", 7)) is PanelState.ABSENT

        panel.dispose()
        assert panel.state is PanelState.DISPOSED
        assert registry.state_of(key) is PanelState.ABSENT

    @pytest.mark.asyncio
    async def test_load_more(self, registry, config, server):
        config.ui.page_size = 2
        server.mailboxes["INBOX"] = make_records(5)
        panel = await registry.show_list("work", "INBOX", "Inbox")
        assert [m.uid for m in panel.messages] == [105, 104]
        assert panel.has_more

        await panel.handle({"type": "loadMore"})
        assert [m.uid for m in panel.messages] == [105, 104, 103, 102]

        await panel.handle({"type": "loadMore"})
        assert [m.uid for m in panel.messages] == [105, 104, 103, 102, 101]
        assert not panel.has_more


class TestActiveList:
    @pytest.mark.asyncio
    async def test_retarget_keeps_one_panel(self, registry, host):
        first = await registry.show_list_in_active("work", "A", "A")
        second = await registry.show_list_in_active("work", "B", "B")

        assert first is second
        assert len(host.surfaces) == 1
        assert list(registry.list_panels) == [PanelKey("work", "B")]
        assert host.surfaces[0].title == "B"
        assert registry.active_list is first

    @pytest.mark.asyncio
    async def test_retarget_onto_open_tab_reveals_it(self, registry, host):
        tab = await registry.show_list("work", "B", "B")
        active = await registry.show_list_in_active("work", "A", "A")

        shown = await registry.show_list_in_active("work", "B", "B")

        assert shown is tab
        assert active.key == PanelKey("work", "A")
        assert set(registry.list_panels) == {PanelKey("work", "A"), PanelKey("work", "B")}

    @pytest.mark.asyncio
    async def test_late_result_for_old_folder_is_dropped(self, registry, host, server):
        server.mailboxes["A"] = make_records(2, subject="A")
        server.mailboxes["B"] = make_records(2, subject="B", first_uid=200)
        server.gate = asyncio.Event()

        load_a = asyncio.create_task(registry.show_list_in_active("work", "A", "A"))
        await server.fetch_started.wait()
        load_b = asyncio.create_task(registry.show_list_in_active("work", "B", "B"))
        while registry.active_list.key.folder_path != "B":
            await asyncio.sleep(0)
        server.gate.set()
        await asyncio.gather(load_a, load_b)

        listings = host.surfaces[0].posted("messages")
        assert [p["folderPath"] for p in listings] == ["B"]
        assert [m["subject"] for m in listings[0]["messages"]] == ["B 2", "B 1"]
        assert [m.uid for m in registry.active_list.messages] == [202, 201]

    @pytest.mark.asyncio
    async def test_closing_active_clears_slot(self, registry):
        panel = await registry.show_list_in_active("work", "A", "A")
        panel.dispose()

        assert registry.active_list is None
        assert registry.list_panels == {}


class TestMessages:
    @pytest.mark.asyncio
    async def test_window_mode(self, registry, host, server):
        server.raw[7] = make_raw("Lunch?")

        panel = await registry.show_message("work", "INBOX", 7)
        again = await registry.show_message("work", "INBOX", 7)

        assert panel is again
        assert len(host.surfaces) == 1
        surface = host.surfaces[0]
        assert surface.title == "Lunch?"
        message = surface.posted("message")[0]
        assert message["message"]["subject"] == "Lunch?"
        assert message["embedded"] is False

    @pytest.mark.asyncio
    async def test_opening_unread_message_marks_it_seen(self, registry, explorer, server):
        server.raw[7] = make_raw()
        changes = []
        explorer.on_did_change(changes.append)

        panel = await registry.show_message("work", "INBOX", 7)

        assert ("store", "INBOX", 7, ("\\Seen",), True) in server.calls
        assert panel.detail.seen
        assert changes == [None]

    @pytest.mark.asyncio
    async def test_read_message_is_not_stored_again(self, registry, server):
        server.raw[7] = make_raw()
        server.flags[7] = {"\\Seen"}

        await registry.show_message("work", "INBOX", 7)

        assert server.count("store") == 0

    @pytest.mark.asyncio
    async def test_split_mode_retargets(self, registry, host, config, server):
        config.ui.message_display_mode = MessageDisplayMode.SPLIT
        server.raw[7] = make_raw("First")
        server.raw[8] = make_raw("Second")

        first = await registry.show_message("work", "INBOX", 7)
        second = await registry.show_message("work", "INBOX", 8)

        assert first is second
        assert len(host.surfaces) == 1
        assert list(registry.detail_panels) == [PanelKey("work", "INBOX", 8)]
        assert host.surfaces[0].title == "Second"

    @pytest.mark.asyncio
    async def test_preview_embeds_and_goes_back(self, registry, host, config, server):
        config.ui.message_display_mode = MessageDisplayMode.PREVIEW
        server.mailboxes["INBOX"] = make_records(1)
        server.raw[101] = make_raw("Preview me")
        list_panel = await registry.show_list("work", "INBOX", "Inbox")

        shown = await registry.show_message("work", "INBOX", 101)

        assert shown is list_panel
        assert len(host.surfaces) == 1
        assert list_panel.embedded is not None
        surface = host.surfaces[0]
        assert surface.last["type"] == "message"
        assert surface.last["embedded"] is True

        await list_panel.handle({"type": "back"})

        assert list_panel.embedded is None
        assert surface.last["type"] == "messages"

    @pytest.mark.asyncio
    async def test_preview_without_list_falls_back_to_window(self, registry, host, config, server):
        config.ui.message_display_mode = MessageDisplayMode.PREVIEW
        server.raw[7] = make_raw()

        await registry.show_message("work", "INBOX", 7)

        assert list(registry.detail_panels) == [PanelKey("work", "INBOX", 7)]

    @pytest.mark.asyncio
    async def test_message_removed_closes_window(self, registry, host, server):
        server.raw[7] = make_raw()
        await registry.show_message("work", "INBOX", 7)

        await registry.message_removed("work", "INBOX", 7)

        assert registry.detail_panels == {}
        assert host.surfaces[0].dispose_count == 1

    @pytest.mark.asyncio
    async def test_message_removed_leaves_preview(self, registry, config, server):
        config.ui.message_display_mode = MessageDisplayMode.PREVIEW
        server.raw[7] = make_raw()
        list_panel = await registry.show_list("work", "INBOX", "Inbox")
        await registry.show_message("work", "INBOX", 7)

        await registry.message_removed("work", "INBOX", 7)

        assert list_panel.embedded is None
        assert list_panel.alive


class TestActions:
    @pytest.fixture
    def dispatched(self, registry):
        calls = []

        async def dispatch(name, *args, **options):
            calls.append((name, args, options))

        registry.dispatch = dispatch
        return calls

    @pytest.mark.asyncio
    async def test_list_actions(self, registry, dispatched):
        panel = await registry.show_list("work", "INBOX", "Inbox")

        await panel.handle({"type": "openMessage", "uid": 5})
        await panel.handle({"type": "compose"})
        await panel.handle({"type": "reply"})

        assert dispatched == [
            ("openMessage", (MessageRef("work", "INBOX", 5),), {}),
            ("compose", (FolderRef("work"),), {}),
        ]

    @pytest.mark.asyncio
    async def test_detail_actions(self, registry, dispatched, server):
        server.raw[7] = make_raw()
        panel = await registry.show_message("work", "INBOX", 7)

        await panel.handle({"type": "move", "destination": "Archive"})
        await panel.handle({"type": "downloadAttachment", "index": 0})
        await panel.handle({"type": "nonsense"})

        ref = MessageRef("work", "INBOX", 7)
        assert dispatched == [
            ("moveMessage", (ref,), {"destination": "Archive"}),
            ("downloadAttachment", (ref,), {"index": 0}),
        ]

    @pytest.mark.asyncio
    async def test_surface_messages_are_handled(self, registry, host, dispatched):
        await registry.show_list("work", "INBOX", "Inbox")

        host.surfaces[0].send({"type": "openMessage", "uid": 9})
        await asyncio.gather(*registry._tasks)

        assert dispatched[0][0] == "openMessage"

    @pytest.mark.asyncio
    async def test_no_dispatcher(self, registry):
        await registry.run_command("compose")
