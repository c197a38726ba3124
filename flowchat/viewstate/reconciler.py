"""Room view-state reconciler.

Keeps the canvas selection and camera in step with three signals that
arrive independently: the active room changing, the renderer becoming
ready, and the set of rendered nodes changing. Requests that cannot be
applied yet are held as one pending focus action and one pending viewport
action, and attempt() re-evaluates both whenever any signal fires.

User-driven selection and camera moves are written back to the room with
a debounce, once storage is ready.
"""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from flowchat.db.connection import DatabaseHandle, StorageError
from flowchat.messages.tree import Branch, ConversationTreeService
from flowchat.models import RoomViewStatePatch, ViewportSnapshot
from flowchat.rooms.repository import RoomNotFoundError, RoomRepository
from flowchat.viewstate.debounce import Debouncer
from flowchat.viewstate.graph import FlowEdge, FlowNode, LayoutFn, build_graph, tidy_layout
from flowchat.viewstate.renderer import SMOOTH_TRANSITION, FlowRenderer, TransitionOptions

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.2

# Where a centered node lands relative to the camera target.
CENTER_OFFSET_X = 100.0
CENTER_OFFSET_Y = 200.0


@dataclass(frozen=True)
class FocusAction:
    id: str | None
    center: bool = False


@dataclass(frozen=True, eq=False)
class PendingViewportAction:
    room_id: str
    snapshot: ViewportSnapshot | None
    prefer_focus: bool = True


def viewports_equal(a: ViewportSnapshot | None, b: ViewportSnapshot | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a.x == b.x and a.y == b.y and a.zoom == b.zoom


class RoomViewStateReconciler:
    def __init__(
        self,
        *,
        database: DatabaseHandle,
        rooms: RoomRepository,
        tree: ConversationTreeService,
        renderer: FlowRenderer,
        layout: LayoutFn = tidy_layout,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        transition: TransitionOptions = SMOOTH_TRANSITION,
    ) -> None:
        self._database = database
        self._rooms = rooms
        self._tree = tree
        self._renderer = renderer
        self._layout = layout
        self._transition = transition

        self._room_id: str | None = None
        self._selected_id: str | None = None
        self._is_flow_ready = False
        self._pending_focus: FocusAction | None = None
        self._pending_viewport: PendingViewportAction | None = None
        self._viewport_task: asyncio.Task | None = None

        self._nodes: list[FlowNode] = []
        self._edges: list[FlowEdge] = []
        self._node_ids: tuple[str, ...] = ()

        self._unsaved: dict[str, dict[str, Any]] = {}
        self._persist = Debouncer(debounce_seconds, self._write_view_state)
        self._tasks: set[asyncio.Task] = set()

        self._tree.subscribe(self.refresh_graph)

    # -- State --

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @property
    def selected_message_id(self) -> str | None:
        return self._selected_id

    @property
    def is_flow_ready(self) -> bool:
        return self._is_flow_ready

    @property
    def pending_focus(self) -> FocusAction | None:
        return self._pending_focus

    @property
    def pending_viewport(self) -> PendingViewportAction | None:
        return self._pending_viewport

    @property
    def nodes(self) -> list[FlowNode]:
        return list(self._nodes)

    @property
    def edges(self) -> list[FlowEdge]:
        return list(self._edges)

    @property
    def current_branch(self) -> Branch:
        if self._selected_id is None:
            return Branch()
        return self._tree.get_branch_by_id(self._selected_id)

    # -- Graph --

    def refresh_graph(self) -> None:
        """Rebuild, lay out and hand the graph to the renderer.

        Pending actions are re-attempted when the set of node ids changed.
        """
        branch = self.current_branch
        nodes, edges = build_graph(
            self._tree.messages, branch.ids, self._selected_id, self._tree.generating
        )
        self._nodes = self._layout(nodes, edges)
        self._edges = edges
        self._renderer.set_graph(self._nodes, self._edges)

        node_ids = tuple(n.id for n in self._nodes)
        if node_ids != self._node_ids:
            self._node_ids = node_ids
            self.attempt()

    # -- Pending actions --

    def attempt(self) -> None:
        """Apply whichever pending actions have their preconditions met."""
        self._attempt_pending_focus()
        self._attempt_pending_viewport()

    def focus_flow_node(self, node_id: str | None, *, center: bool = False) -> None:
        """Select node_id on the canvas (None clears). Replaces any pending focus."""
        self._pending_focus = FocusAction(id=node_id, center=center)
        self._attempt_pending_focus()

    def _attempt_pending_focus(self) -> None:
        action = self._pending_focus
        if action is None or not self._is_flow_ready:
            return

        if action.id is None:
            self._clear_flow_selection()
            self._pending_focus = None
            return

        if self._apply_flow_selection(action.id, action.center):
            self._pending_focus = None

    def _clear_flow_selection(self) -> None:
        selected = list(self._renderer.selected_nodes)
        if selected:
            self._renderer.remove_selected_nodes(selected)

    def _apply_flow_selection(self, node_id: str, center: bool) -> bool:
        node = self._renderer.find_node(node_id)
        if node is None:
            return False

        selected = list(self._renderer.selected_nodes)
        if not (len(selected) == 1 and selected[0].id == node_id):
            if selected:
                self._renderer.remove_selected_nodes(selected)
            self._renderer.add_selected_nodes([node])

        if center:
            self._spawn(self.set_center_to_node(node_id))
        return True

    def queue_viewport_restore(self, action: PendingViewportAction | None) -> None:
        self._pending_viewport = action
        if action is not None:
            self._attempt_pending_viewport()

    def _attempt_pending_viewport(self) -> None:
        action = self._pending_viewport
        if action is None:
            return
        if action.room_id != self._room_id:
            logger.debug("Dropping viewport restore for inactive room %s", action.room_id)
            self._pending_viewport = None
            return
        if not self._is_flow_ready:
            return
        if action.snapshot is None and not self._first_visible_node_id():
            return
        if self._viewport_task is not None:
            # The running task picks up a newer action when it finishes.
            return
        self._viewport_task = self._spawn(self._apply_pending_viewport(action))

    async def _apply_pending_viewport(self, action: PendingViewportAction) -> None:
        try:
            await self._renderer.next_frame()
            if self._pending_viewport is not action:
                return
            self._pending_viewport = None
            if action.room_id != self._room_id:
                logger.debug("Dropping viewport restore for inactive room %s", action.room_id)
                return

            if action.snapshot is not None:
                await self.apply_viewport(action.snapshot)
                return

            target = self._selected_id if action.prefer_focus else None
            if target is None or self._renderer.find_node(target) is None:
                target = self._first_visible_node_id()
            if target is not None:
                await self.set_center_to_node(target)
        finally:
            self._viewport_task = None
            if self._pending_viewport is not None and self._pending_viewport is not action:
                self._attempt_pending_viewport()

    def _first_visible_node_id(self) -> str | None:
        return next((n.id for n in self._nodes if not n.hidden), None)

    # -- Camera --

    async def apply_viewport(self, snapshot: ViewportSnapshot) -> bool:
        """Move the camera to snapshot. Returns False when it is already there."""
        if viewports_equal(snapshot, self._renderer.viewport):
            return False
        await self._renderer.set_viewport(snapshot, self._transition)
        return True

    async def set_center_to_node(self, node_id: str) -> None:
        node = self._renderer.find_node(node_id)
        if node is None:
            logger.warning("Node not found: %s", node_id)
            return
        await self._renderer.set_center(
            node.position.x + CENTER_OFFSET_X,
            node.position.y + CENTER_OFFSET_Y,
            self._renderer.viewport.zoom,
            self._transition,
        )

    # -- Signals --

    async def handle_init(self) -> None:
        """The renderer is mounted and ready."""
        self._is_flow_ready = True
        self.attempt()

        room_id = self._room_id
        if room_id is None or self._pending_viewport is not None:
            return
        await self._database.wait_until_ready()
        try:
            state = await self._rooms.get_view_state(room_id)
        except RoomNotFoundError:
            logger.warning("Room %s is gone; no view state to restore", room_id)
            return
        if self._room_id == room_id and self._pending_viewport is None:
            self.queue_viewport_restore(
                PendingViewportAction(room_id=room_id, snapshot=state.viewport)
            )

    def handle_unmount(self) -> None:
        self._is_flow_ready = False

    async def set_room(self, room_id: str | None) -> None:
        """Switch the active room and restore the incoming room's view state."""
        previous = self._room_id
        if room_id == previous:
            return

        self._room_id = room_id
        self._pending_viewport = None
        self._selected_id = None
        self.focus_flow_node(None)
        self._tree.reset_state()

        if previous is not None:
            await self._persist.flush()
        if room_id is None:
            return

        await self._database.wait_until_ready()
        await self._tree.open_room(room_id)
        if self._room_id != room_id:
            return
        await self._restore_room_view_state(room_id)

    async def _restore_room_view_state(self, room_id: str) -> None:
        state = await self._rooms.get_view_state(room_id)
        if self._room_id != room_id:
            return

        focus_id = state.focus_node_id
        if focus_id is not None and self._tree.get_message_by_id(focus_id) is not None:
            self._selected_id = focus_id
            self.refresh_graph()
            self.focus_flow_node(focus_id, center=state.viewport is None)
        else:
            self._selected_id = None
            self.focus_flow_node(None)
            if focus_id is not None:
                try:
                    await self._rooms.update_view_state(
                        room_id, RoomViewStatePatch(focus_node_id=None)
                    )
                except (StorageError, RoomNotFoundError):
                    logger.exception("Failed to reset focus node for room %s", room_id)
                if self._room_id != room_id:
                    return

        self.queue_viewport_restore(
            PendingViewportAction(room_id=room_id, snapshot=state.viewport, prefer_focus=True)
        )

    def select_message(self, message_id: str | None) -> None:
        """User selected a message (None clears). Focuses it and persists the choice."""
        if message_id == self._selected_id:
            return
        self._selected_id = message_id
        self.refresh_graph()
        self.focus_flow_node(message_id)
        if self._room_id is not None:
            self._persist_patch(self._room_id, focus_node_id=message_id)

    def on_viewport_change(self, snapshot: ViewportSnapshot | None = None) -> None:
        """The camera moved. Persists the renderer's viewport (or snapshot)."""
        if not self._is_flow_ready or self._room_id is None:
            return
        current = snapshot or self._renderer.viewport
        self._persist_patch(
            self._room_id,
            viewport=ViewportSnapshot(x=current.x, y=current.y, zoom=current.zoom),
        )

    # -- Persistence --

    def _persist_patch(self, room_id: str, **fields: Any) -> None:
        # Fields from one window are merged so a focus change and a pan both land.
        self._unsaved.setdefault(room_id, {}).update(fields)
        self._persist()

    async def _write_view_state(self) -> None:
        unsaved, self._unsaved = self._unsaved, {}
        if not unsaved:
            return
        await self._database.wait_until_ready()
        for room_id, fields in unsaved.items():
            await self._rooms.update_view_state(room_id, RoomViewStatePatch(**fields))

    async def flush(self) -> None:
        """Write any debounced view state now."""
        await self._persist.flush()

    # -- Background tasks --

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("View-state task failed", exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait until no camera or selection task is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._tree.unsubscribe(self.refresh_graph)
        await self.flush()
        await self.wait_idle()
