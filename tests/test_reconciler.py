"""Tests for RoomViewStateReconciler: pending actions, room switches, persistence."""

import asyncio
import logging

import pytest

from flowchat.db.connection import DatabaseHandle, StorageUnavailableError
from flowchat.models import Message, RoomViewStatePatch, TextPart, ViewportSnapshot
from flowchat.rooms.repository import RoomRepository
from flowchat.viewstate.reconciler import (
    CENTER_OFFSET_X,
    CENTER_OFFSET_Y,
    PendingViewportAction,
    RoomViewStateReconciler,
)

from tests.fixtures import MODEL, PROVIDER, FakeRenderer

SAVED = ViewportSnapshot(x=-120.0, y=45.5, zoom=0.8)


class RecordingRooms(RoomRepository):
    """Room repository that records every view-state write."""

    def __init__(self, db) -> None:
        super().__init__(db)
        self.writes: list[tuple[str, RoomViewStatePatch]] = []

    async def update_view_state(self, room_id, patch):
        self.writes.append((room_id, patch))
        await super().update_view_state(room_id, patch)


class FailingViewStateWrites(RoomRepository):
    async def update_view_state(self, room_id, patch):
        raise StorageUnavailableError("disk unplugged")


async def _seed_chain(message_repo, room_id: str, length: int = 2) -> list[Message]:
    chain: list[Message] = []
    parent_id = None
    for i in range(length):
        message = await message_repo.create(
            room_id=room_id,
            role="user" if i % 2 == 0 else "assistant",
            provider=PROVIDER,
            model=MODEL,
            parent_id=parent_id,
        )
        await message_repo.append_content(message.id, TextPart(text=f"message {i}"))
        chain.append(message)
        parent_id = message.id
    return chain


def _center_of(renderer: FakeRenderer, node_id: str) -> tuple[float, float, float]:
    position = renderer.nodes[node_id].position
    return (position.x + CENTER_OFFSET_X, position.y + CENTER_OFFSET_Y, renderer.viewport.zoom)


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
async def recording_rooms(db):
    return RecordingRooms(db)


@pytest.fixture
async def reconciler(db_handle, recording_rooms, tree, renderer):
    reconciler = RoomViewStateReconciler(
        database=db_handle,
        rooms=recording_rooms,
        tree=tree,
        renderer=renderer,
        debounce_seconds=60,
    )
    yield reconciler
    await reconciler.aclose()


class TestViewportApplication:
    async def test_same_snapshot_applied_once(self, reconciler, renderer):
        target = ViewportSnapshot(x=10, y=20, zoom=1.5)
        assert await reconciler.apply_viewport(target) is True
        assert await reconciler.apply_viewport(target) is False
        assert renderer.viewport_calls == [target]

    async def test_camera_already_there(self, reconciler, renderer):
        assert await reconciler.apply_viewport(ViewportSnapshot(x=0, y=0, zoom=1)) is False
        assert renderer.viewport_calls == []

    async def test_reinit_does_not_replay_applied_viewport(self, reconciler, renderer, room_repo, room):
        await room_repo.update_view_state(room.id, RoomViewStatePatch(viewport=SAVED))
        await reconciler.handle_init()
        await reconciler.set_room(room.id)
        await reconciler.wait_idle()

        reconciler.handle_unmount()
        assert not reconciler.is_flow_ready
        await reconciler.handle_init()
        await reconciler.wait_idle()

        assert renderer.viewport_calls == [SAVED]


class TestRestore:
    async def test_saved_viewport_restored(self, reconciler, renderer, room_repo, room):
        await room_repo.update_view_state(room.id, RoomViewStatePatch(viewport=SAVED))
        await reconciler.handle_init()

        await reconciler.set_room(room.id)
        await reconciler.wait_idle()

        assert renderer.viewport_calls == [SAVED]
        assert reconciler.pending_viewport is None

    async def test_restore_waits_for_renderer(self, reconciler, renderer, room_repo, room):
        await room_repo.update_view_state(room.id, RoomViewStatePatch(viewport=SAVED))

        await reconciler.set_room(room.id)
        await reconciler.wait_idle()
        assert renderer.viewport_calls == []
        assert reconciler.pending_viewport is not None
        assert not reconciler.is_flow_ready

        await reconciler.handle_init()
        await reconciler.wait_idle()
        assert renderer.viewport_calls == [SAVED]

    async def test_focus_selected_and_centered_without_saved_viewport(
        self, reconciler, renderer, room_repo, message_repo, room,
    ):
        chain = await _seed_chain(message_repo, room.id)
        leaf = chain[-1]
        await room_repo.update_view_state(room.id, RoomViewStatePatch(focus_node_id=leaf.id))
        await reconciler.handle_init()

        await reconciler.set_room(room.id)
        await reconciler.wait_idle()

        assert reconciler.selected_message_id == leaf.id
        assert renderer.selected_ids == [leaf.id]
        assert renderer.center_calls
        assert renderer.center_calls[-1] == _center_of(renderer, leaf.id)
        assert renderer.viewport_calls == []

    async def test_focus_selected_without_centering_when_viewport_saved(
        self, reconciler, renderer, room_repo, message_repo, room,
    ):
        chain = await _seed_chain(message_repo, room.id)
        await room_repo.update_view_state(
            room.id, RoomViewStatePatch(focus_node_id=chain[0].id, viewport=SAVED)
        )

        await reconciler.set_room(room.id)
        assert renderer.selected_ids == []

        await reconciler.handle_init()
        await reconciler.wait_idle()

        assert renderer.selected_ids == [chain[0].id]
        assert renderer.center_calls == []
        assert renderer.viewport_calls == [SAVED]

    async def test_fallback_centers_first_visible_node(
        self, reconciler, renderer, message_repo, room,
    ):
        chain = await _seed_chain(message_repo, room.id)
        await reconciler.handle_init()

        await reconciler.set_room(room.id)
        await reconciler.wait_idle()

        assert renderer.center_calls == [_center_of(renderer, chain[0].id)]

    async def test_dangling_focus_is_cleared(self, reconciler, renderer, room_repo, room):
        await room_repo.update_view_state(
            room.id, RoomViewStatePatch(focus_node_id="deleted-message")
        )
        await reconciler.handle_init()

        await reconciler.set_room(room.id)
        await reconciler.wait_idle()

        assert reconciler.selected_message_id is None
        assert renderer.selected_ids == []
        assert (await room_repo.get_view_state(room.id)).focus_node_id is None

    async def test_failed_focus_reset_does_not_block_restore(
        self, db, db_handle, tree, renderer, room_repo, room, caplog,
    ):
        await room_repo.update_view_state(
            room.id, RoomViewStatePatch(focus_node_id="deleted-message", viewport=SAVED)
        )
        reconciler = RoomViewStateReconciler(
            database=db_handle,
            rooms=FailingViewStateWrites(db),
            tree=tree,
            renderer=renderer,
            debounce_seconds=60,
        )
        await reconciler.handle_init()

        with caplog.at_level(logging.ERROR, logger="flowchat.viewstate.reconciler"):
            await reconciler.set_room(room.id)
            await reconciler.wait_idle()

        assert "Failed to reset focus node" in caplog.text
        assert renderer.viewport_calls == [SAVED]
        await reconciler.aclose()

    async def test_remount_after_room_deleted(self, reconciler, renderer, room_repo, room, caplog):
        await room_repo.update_view_state(room.id, RoomViewStatePatch(viewport=SAVED))
        await reconciler.handle_init()
        await reconciler.set_room(room.id)
        await reconciler.wait_idle()
        reconciler.handle_unmount()
        await room_repo.destroy(room.id)

        with caplog.at_level(logging.WARNING, logger="flowchat.viewstate.reconciler"):
            await reconciler.handle_init()
            await reconciler.wait_idle()

        assert reconciler.is_flow_ready
        assert "is gone" in caplog.text
        assert renderer.viewport_calls == [SAVED]


class TestPendingActions:
    async def test_focus_waits_for_node(self, reconciler, renderer, tree, message_repo, room):
        [message] = await _seed_chain(message_repo, room.id, length=1)
        await reconciler.handle_init()
        await reconciler.set_room(room.id)

        tree.reset_state()
        reconciler.focus_flow_node(message.id)
        assert reconciler.pending_focus is not None
        assert renderer.selected_ids == []

        await tree.open_room(room.id)

        assert reconciler.pending_focus is None
        assert renderer.selected_ids == [message.id]

    async def test_focus_waits_for_renderer(self, reconciler, renderer, message_repo, room):
        [message] = await _seed_chain(message_repo, room.id, length=1)
        await reconciler.set_room(room.id)

        reconciler.focus_flow_node(message.id)
        assert renderer.selected_ids == []

        await reconciler.handle_init()
        assert renderer.selected_ids == [message.id]

    async def test_latest_focus_request_wins(self, reconciler, renderer, message_repo, room):
        first, second = await _seed_chain(message_repo, room.id)
        await reconciler.set_room(room.id)

        reconciler.focus_flow_node(first.id)
        reconciler.focus_flow_node(second.id)
        await reconciler.handle_init()

        assert renderer.selected_ids == [second.id]

    async def test_clearing_focus(self, reconciler, renderer, message_repo, room):
        [message] = await _seed_chain(message_repo, room.id, length=1)
        await reconciler.handle_init()
        await reconciler.set_room(room.id)
        reconciler.focus_flow_node(message.id)

        reconciler.focus_flow_node(None)

        assert renderer.selected_ids == []
        assert reconciler.pending_focus is None

    async def test_restore_for_other_room_discarded(self, reconciler, room):
        await reconciler.set_room(room.id)
        reconciler.queue_viewport_restore(
            PendingViewportAction(room_id="another-room", snapshot=SAVED)
        )
        assert reconciler.pending_viewport is None

    async def test_room_switch_before_restore_fires(self, reconciler, renderer, room_repo):
        first = await room_repo.create("First")
        second = await room_repo.create("Second")
        await room_repo.update_view_state(first.id, RoomViewStatePatch(viewport=SAVED))

        await reconciler.set_room(first.id)
        assert reconciler.pending_viewport is not None

        # Ready schedules the restore for the next frame; the switch lands first.
        await reconciler.handle_init()
        await reconciler.set_room(second.id)
        await reconciler.wait_idle()

        assert renderer.viewport_calls == []
        assert renderer.center_calls == []


class TestGraph:
    async def test_tree_changes_reach_renderer(self, reconciler, renderer, tree, room):
        await reconciler.set_room(room.id)

        message = await tree.new_message("Hi", "user", None, PROVIDER, MODEL)

        assert message.id in renderer.nodes
        assert renderer.nodes["root"].hidden
        assert [(e.source, e.target) for e in renderer.edges] == [("root", message.id)]

    async def test_room_exit_clears_graph_and_selection(
        self, reconciler, renderer, message_repo, room,
    ):
        [message] = await _seed_chain(message_repo, room.id, length=1)
        await reconciler.handle_init()
        await reconciler.set_room(room.id)
        reconciler.select_message(message.id)

        await reconciler.set_room(None)

        assert renderer.nodes == {}
        assert renderer.selected_ids == []
        assert reconciler.selected_message_id is None

    async def test_selection_marks_other_branches_inactive(
        self, reconciler, renderer, tree, room,
    ):
        await reconciler.set_room(room.id)
        root = await tree.new_message("Q", "user", None, PROVIDER, MODEL)
        left = await tree.new_message("A1", "assistant", root.id, PROVIDER, MODEL)
        right = await tree.new_message("A2", "assistant", root.id, PROVIDER, MODEL)

        reconciler.select_message(left.id)

        assert not renderer.nodes[left.id].data.inactive
        assert not renderer.nodes[root.id].data.inactive
        assert renderer.nodes[right.id].data.inactive


class TestPersistence:
    async def test_focus_and_viewport_merged_into_one_write(
        self, reconciler, recording_rooms, room_repo, message_repo, room,
    ):
        [message] = await _seed_chain(message_repo, room.id, length=1)
        await reconciler.handle_init()
        await reconciler.set_room(room.id)
        recording_rooms.writes.clear()

        reconciler.select_message(message.id)
        reconciler.on_viewport_change(ViewportSnapshot(x=1, y=1, zoom=1))
        reconciler.on_viewport_change(ViewportSnapshot(x=2, y=2, zoom=1))
        reconciler.on_viewport_change(SAVED)

        assert (await room_repo.get_view_state(room.id)).viewport is None

        await reconciler.flush()

        assert len(recording_rooms.writes) == 1
        state = await room_repo.get_view_state(room.id)
        assert state.focus_node_id == message.id
        assert state.viewport == SAVED

    async def test_viewport_changes_ignored_before_ready(
        self, reconciler, recording_rooms, room,
    ):
        await reconciler.set_room(room.id)
        reconciler.on_viewport_change(SAVED)
        await reconciler.flush()
        assert recording_rooms.writes == []

    async def test_room_switch_flushes_outgoing_room(self, reconciler, room_repo):
        first = await room_repo.create("First")
        second = await room_repo.create("Second")
        await reconciler.handle_init()
        await reconciler.set_room(first.id)

        reconciler.on_viewport_change(SAVED)
        await reconciler.set_room(second.id)

        assert (await room_repo.get_view_state(first.id)).viewport == SAVED
        assert (await room_repo.get_view_state(second.id)).viewport is None

    async def test_timer_fires_write(self, db_handle, room_repo, tree, renderer, room):
        reconciler = RoomViewStateReconciler(
            database=db_handle,
            rooms=room_repo,
            tree=tree,
            renderer=renderer,
            debounce_seconds=0.01,
        )
        await reconciler.handle_init()
        await reconciler.set_room(room.id)

        reconciler.on_viewport_change(SAVED)
        await asyncio.sleep(0.1)

        assert (await room_repo.get_view_state(room.id)).viewport == SAVED
        await reconciler.aclose()

    async def test_write_waits_for_storage(self, room_repo, tree, renderer, room):
        pending_handle = DatabaseHandle()
        reconciler = RoomViewStateReconciler(
            database=pending_handle,
            rooms=room_repo,
            tree=tree,
            renderer=renderer,
            debounce_seconds=60,
        )
        await reconciler.handle_init()
        switching = asyncio.create_task(reconciler.set_room(room.id))
        await asyncio.sleep(0)
        assert reconciler.room_id == room.id

        reconciler.on_viewport_change(SAVED)
        flushing = asyncio.create_task(reconciler.flush())
        await asyncio.sleep(0.01)
        assert not flushing.done()
        assert (await room_repo.get_view_state(room.id)).viewport is None

        await pending_handle.initialize(":memory:")
        await flushing
        await switching

        assert (await room_repo.get_view_state(room.id)).viewport == SAVED
        await reconciler.aclose()
        await pending_handle.close()
