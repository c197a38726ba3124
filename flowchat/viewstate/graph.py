"""
Rendered graph for a room's conversation tree.

build_graph turns the cached messages into nodes and edges:
- One node per message, typed by role
- A hidden synthetic "root" node parenting every top-level message
- parent -> child edges, only when the source node exists

tidy_layout positions them deterministically:
- Leaves assigned to left-to-right slots
- Parents centered above their children
- Depth controls y position
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace

from flowchat.models import Message

ROOT_NODE_ID = "root"


@dataclass(frozen=True)
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class FlowNodeData:
    message: Message | None
    inactive: bool = False
    hidden: bool = False
    generating: bool = False


@dataclass(frozen=True)
class FlowNode:
    id: str
    type: str
    data: FlowNodeData
    position: Position = field(default_factory=Position)
    hidden: bool = False


@dataclass(frozen=True)
class FlowEdge:
    id: str
    source: str
    target: str
    # On the selected branch; renderers draw these emphasized.
    active: bool = False


LayoutFn = Callable[[list[FlowNode], list[FlowEdge]], list[FlowNode]]


def build_graph(
    messages: Sequence[Message],
    active_ids: Iterable[str] = (),
    selected_id: str | None = None,
    generating: Iterable[str] = (),
) -> tuple[list[FlowNode], list[FlowEdge]]:
    """Nodes and edges for messages, unpositioned.

    active_ids is the selected branch. With a selection, nodes off that
    branch are flagged inactive.
    """
    active = set(active_ids)
    generating = set(generating)
    message_ids = {m.id for m in messages}
    nodes: list[FlowNode] = []
    edges: list[FlowEdge] = []

    if any(m.parent_id is None for m in messages):
        nodes.append(
            FlowNode(
                id=ROOT_NODE_ID,
                type="system",
                data=FlowNodeData(message=messages[0], hidden=True),
                hidden=True,
            )
        )

    for message in messages:
        is_active = message.id in active
        nodes.append(
            FlowNode(
                id=message.id,
                type=message.role,
                data=FlowNodeData(
                    message=message,
                    inactive=selected_id is not None and not is_active,
                    generating=message.id in generating,
                ),
            )
        )

        source = message.parent_id or ROOT_NODE_ID
        if source == ROOT_NODE_ID or source in message_ids:
            edges.append(
                FlowEdge(
                    id=f"{source}-{message.id}",
                    source=source,
                    target=message.id,
                    active=is_active,
                )
            )

    return nodes, edges


@dataclass(frozen=True)
class LayoutConfig:
    # Fixed node box size in pixels.
    box_w: float = 325
    box_h: float = 200

    # Gap between sibling columns and between depth rows.
    x_gap: float = 40
    y_gap: float = 70


def tidy_layout(
    nodes: list[FlowNode],
    edges: list[FlowEdge],
    config: LayoutConfig | None = None,
) -> list[FlowNode]:
    """Position nodes as a tidy tree. Returns new nodes in the input order.

    Iterative: a pre-order walk assigns depths and leaf slots, then a
    reverse pass centers each parent over its children's slot span. Nodes
    not reachable from any tree root (edges pointing at missing sources)
    start trees of their own.
    The layout is the default LayoutFn; any other callable with the same
    shape can replace it.
    """
    cfg = config or LayoutConfig()
    node_ids = [n.id for n in nodes]
    known = set(node_ids)

    children: dict[str, list[str]] = {nid: [] for nid in node_ids}
    has_parent: set[str] = set()
    for edge in edges:
        if edge.source in known and edge.target in known and edge.target not in has_parent:
            children[edge.source].append(edge.target)
            has_parent.add(edge.target)

    roots = [nid for nid in node_ids if nid not in has_parent]

    depth: dict[str, int] = {}
    order: list[str] = []
    span: dict[str, tuple[float, float]] = {}
    next_slot = 0

    # Falling back to node_ids picks up cycles, which have no root.
    for root in [*roots, *node_ids]:
        if root in depth:
            continue
        stack = [(root, 0)]
        while stack:
            current, d = stack.pop()
            if current in depth:
                continue
            depth[current] = d
            order.append(current)
            kids = [k for k in children[current] if k not in depth]
            if not kids:
                span[current] = (next_slot, next_slot)
                next_slot += 1
            # Reversed so the first child is visited first.
            stack.extend((k, d + 1) for k in reversed(kids))

    center: dict[str, float] = {}
    for current in reversed(order):
        if current in span:
            lo, hi = span[current]
        else:
            kid_spans = [span[k] for k in children[current] if k in span]
            lo = min(s[0] for s in kid_spans)
            hi = max(s[1] for s in kid_spans)
            span[current] = (lo, hi)
        center[current] = (lo + hi) / 2.0

    step_x = cfg.box_w + cfg.x_gap
    step_y = cfg.box_h + cfg.y_gap
    return [
        replace(n, position=Position(x=center[n.id] * step_x, y=depth[n.id] * step_y))
        for n in nodes
    ]
