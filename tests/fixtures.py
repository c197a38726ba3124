"""Shared test helpers: tree builders and a fake rendering surface."""

import asyncio
from collections.abc import Sequence

from flowchat.messages.tree import ConversationTreeService
from flowchat.models import Message, ViewportSnapshot
from flowchat.viewstate.graph import FlowEdge, FlowNode
from flowchat.viewstate.renderer import TransitionOptions

PROVIDER = "openai"
MODEL = "gpt-4o"


async def add_message(
    tree: ConversationTreeService,
    parent: Message | None,
    content: str = "Hello",
    role: str = "user",
    room_id: str | None = None,
) -> Message:
    """Create a message under parent (None for a root) in the tree's room."""
    return await tree.new_message(
        content=content,
        role=role,
        parent_id=parent.id if parent else None,
        provider=PROVIDER,
        model=MODEL,
        room_id=room_id,
    )


async def build_linear_tree(
    tree: ConversationTreeService, length: int, room_id: str | None = None,
) -> list[Message]:
    """A single chain of alternating user/assistant messages, root first."""
    chain: list[Message] = []
    parent = None
    for i in range(length):
        role = "user" if i % 2 == 0 else "assistant"
        parent = await add_message(tree, parent, f"message {i}", role, room_id)
        chain.append(parent)
    return chain


async def build_branching_tree(tree: ConversationTreeService) -> dict[str, Message]:
    """
    root (user)
    └── a1 (assistant)
        ├── u2 (user)
        │   └── a2 (assistant)
        └── u3 (user)
            └── a3 (assistant)
    """
    root = await add_message(tree, None, "Hi there", "user")
    a1 = await add_message(tree, root, "Hello! How can I help?", "assistant")
    u2 = await add_message(tree, a1, "Tell me about tides", "user")
    a2 = await add_message(tree, u2, "Tides are caused by the moon.", "assistant")
    u3 = await add_message(tree, a1, "Tell me about volcanoes", "user")
    a3 = await add_message(tree, u3, "Volcanoes vent magma.", "assistant")
    return {"root": root, "a1": a1, "u2": u2, "a2": a2, "u3": u3, "a3": a3}


class FakeRenderer:
    """In-memory rendering surface that records camera moves."""

    def __init__(self, viewport: ViewportSnapshot | None = None) -> None:
        self._viewport = viewport or ViewportSnapshot(x=0, y=0, zoom=1)
        self.nodes: dict[str, FlowNode] = {}
        self.edges: list[FlowEdge] = []
        self.selected: list[FlowNode] = []
        self.viewport_calls: list[ViewportSnapshot] = []
        self.center_calls: list[tuple[float, float, float]] = []
        self.graph_updates = 0

    @property
    def viewport(self) -> ViewportSnapshot:
        return self._viewport

    @property
    def selected_nodes(self) -> list[FlowNode]:
        return list(self.selected)

    @property
    def selected_ids(self) -> list[str]:
        return [n.id for n in self.selected]

    def find_node(self, node_id: str) -> FlowNode | None:
        return self.nodes.get(node_id)

    def add_selected_nodes(self, nodes: Sequence[FlowNode]) -> None:
        for node in nodes:
            if node.id not in self.selected_ids:
                self.selected.append(node)

    def remove_selected_nodes(self, nodes: Sequence[FlowNode]) -> None:
        removed = {n.id for n in nodes}
        self.selected = [n for n in self.selected if n.id not in removed]

    def set_graph(self, nodes: list[FlowNode], edges: list[FlowEdge]) -> None:
        self.nodes = {n.id: n for n in nodes}
        self.edges = list(edges)
        self.graph_updates += 1

    async def set_viewport(
        self, snapshot: ViewportSnapshot, transition: TransitionOptions,
    ) -> None:
        self.viewport_calls.append(snapshot)
        self._viewport = snapshot

    async def set_center(
        self, x: float, y: float, zoom: float, transition: TransitionOptions,
    ) -> None:
        self.center_calls.append((x, y, zoom))

    async def next_frame(self) -> None:
        await asyncio.sleep(0)
