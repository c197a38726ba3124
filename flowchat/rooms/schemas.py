"""Request schemas for room endpoints."""

from pydantic import BaseModel


class CreateRoomRequest(BaseModel):
    name: str
    template_id: str | None = None
    default_model: str | None = "gpt-4o"


class PatchRoomRequest(BaseModel):
    """Fields to update on a room. Only fields present in the request body are changed."""

    name: str | None = None
    template_id: str | None = None
    default_model: str | None = None
