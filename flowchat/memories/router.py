"""FastAPI routes for memories."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from flowchat.db.connection import ConstraintViolationError
from flowchat.memories.repository import MemoryRepository
from flowchat.models import Memory, MemoryScope

router = APIRouter(prefix="/api/memories", tags=["memories"])


class UpsertMemoryRequest(BaseModel):
    content: str
    scope: MemoryScope = "global"
    tags: list[str] = Field(default_factory=list)
    room_id: str | None = None


def get_memory_repository() -> MemoryRepository:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("MemoryRepository not initialized")


@router.post("")
async def upsert_memory(
    request: UpsertMemoryRequest,
    memories: MemoryRepository = Depends(get_memory_repository),
) -> Memory:
    try:
        return await memories.upsert(
            request.content, request.scope, tags=request.tags, room_id=request.room_id
        )
    except ConstraintViolationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
async def list_memories(
    room_id: str | None = None,
    memories: MemoryRepository = Depends(get_memory_repository),
) -> list[Memory]:
    """Global memories, or one room's memories with ?room_id=."""
    return await memories.get_by_room_id(room_id)


@router.delete("/{memory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_memory(
    memory_id: str,
    memories: MemoryRepository = Depends(get_memory_repository),
) -> None:
    if await memories.delete_by_ids([memory_id]) == 0:
        raise HTTPException(status_code=404, detail=f"Memory not found: {memory_id}")
