"""Request and response schemas for message endpoints."""

from pydantic import BaseModel, Field

from flowchat.models import ContentPart, Message, MessageRole

# -- Requests --


class CreateMessageRequest(BaseModel):
    content: str | list[ContentPart] = ""
    role: MessageRole = "user"
    parent_id: str | None = None
    provider: str
    model: str
    memory_ids: list[str] = Field(default_factory=list)


class AppendContentRequest(BaseModel):
    parts: list[ContentPart] = Field(min_length=1)


class ReplaceContentRequest(BaseModel):
    parts: list[ContentPart]


class SummaryRequest(BaseModel):
    """Set the summary, or append to it with append=true (used while streaming)."""

    text: str
    append: bool = False
    show_summary: bool | None = None


class MergeRequest(BaseModel):
    source_leaf_id: str


# -- Responses --


class BranchResponse(BaseModel):
    messages: list[Message]


class DeleteSubtreeResponse(BaseModel):
    deleted_ids: list[str]


class MergeResponse(BaseModel):
    leaf_id: str
