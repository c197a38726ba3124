"""Canonical data structures for flowchat.

Defined once here, referenced everywhere else. Messages carry an ordered list
of content parts; memories are scoped facts; rooms hold the persisted view
state (focus node and camera viewport) that outlives a session.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

MessageRole = Literal["user", "assistant", "system"]
MemoryScope = Literal["global", "room"]

# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str
    detail: Literal["auto", "low", "high"] | None = None


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


class ToolResultPart(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    content: str


ContentPart = Annotated[
    TextPart | ImagePart | ToolResultPart,
    Field(discriminator="type"),
]

content_part_adapter: TypeAdapter[ContentPart] = TypeAdapter(ContentPart)


def part_text(part: TextPart | ImagePart | ToolResultPart) -> str:
    """Textual representation of a part, used for keyword search and embedding."""
    if isinstance(part, TextPart):
        return part.text
    if isinstance(part, ToolResultPart):
        return part.content
    return part.image_url.url


class MessagePart(BaseModel):
    """A stored content part row. Owned by exactly one message."""

    id: str
    message_id: str
    part_type: str
    content: ContentPart
    order: int


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Message(BaseModel):
    id: str
    role: MessageRole
    parent_id: str | None = None
    room_id: str
    provider: str
    model: str
    content: list[ContentPart] = Field(default_factory=list)
    summary: str | None = None
    show_summary: bool = False
    memory: list[str] = Field(default_factory=list)
    embedding: list[float] | None = None
    created_at: datetime
    updated_at: datetime


class ScoredMessage(Message):
    """A message returned by vector search, with its cosine similarity."""

    similarity: float


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class Memory(BaseModel):
    id: str
    content: str
    scope: MemoryScope
    room_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Rooms, templates and view state
# ---------------------------------------------------------------------------


class ViewportSnapshot(BaseModel):
    x: float
    y: float
    zoom: float


class Room(BaseModel):
    id: str
    name: str
    name_manually_set: bool = False
    template_id: str | None = None
    default_model: str | None = None
    focus_node_id: str | None = None
    viewport_x: float | None = None
    viewport_y: float | None = None
    viewport_zoom: float | None = None
    created_at: datetime
    updated_at: datetime


class Template(BaseModel):
    id: str
    name: str
    system_prompt: str
    created_at: datetime
    updated_at: datetime


class RoomViewState(BaseModel):
    """Persisted view state of a room. viewport is None unless fully saved."""

    focus_node_id: str | None = None
    viewport: ViewportSnapshot | None = None


class RoomViewStatePatch(BaseModel):
    """Fields to update on a room's view state. Only explicitly set fields are written."""

    focus_node_id: str | None = None
    viewport: ViewportSnapshot | None = None
