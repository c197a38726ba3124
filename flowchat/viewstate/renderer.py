"""Rendering-surface interface consumed by the view-state reconciler.

The canvas (nodes on screen, camera, selection) is owned by a UI. This module
only states what the reconciler needs from it.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from flowchat.models import ViewportSnapshot
from flowchat.viewstate.graph import FlowEdge, FlowNode


def ease_out_cubic(t: float) -> float:
    return 1 - (1 - t) ** 3


@dataclass(frozen=True)
class TransitionOptions:
    duration: float = 0.3
    ease: Callable[[float], float] = ease_out_cubic


SMOOTH_TRANSITION = TransitionOptions()


class FlowRenderer(Protocol):
    @property
    def viewport(self) -> ViewportSnapshot:
        """Current camera transform."""
        ...

    @property
    def selected_nodes(self) -> Sequence[FlowNode]: ...

    def find_node(self, node_id: str) -> FlowNode | None: ...

    def add_selected_nodes(self, nodes: Sequence[FlowNode]) -> None: ...

    def remove_selected_nodes(self, nodes: Sequence[FlowNode]) -> None: ...

    def set_graph(self, nodes: list[FlowNode], edges: list[FlowEdge]) -> None:
        """Replace the rendered nodes and edges."""
        ...

    async def set_viewport(
        self, snapshot: ViewportSnapshot, transition: TransitionOptions,
    ) -> None: ...

    async def set_center(
        self, x: float, y: float, zoom: float, transition: TransitionOptions,
    ) -> None: ...

    async def next_frame(self) -> None:
        """Resolve after the next layout/paint, once nodes have been measured."""
        ...
