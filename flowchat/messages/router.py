"""FastAPI routes for a room's conversation tree."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from flowchat.db.connection import ConstraintViolationError
from flowchat.messages.repository import MessageNotFoundError, MessageRepository
from flowchat.messages.schemas import (
    AppendContentRequest,
    BranchResponse,
    CreateMessageRequest,
    DeleteSubtreeResponse,
    MergeRequest,
    MergeResponse,
    ReplaceContentRequest,
    SummaryRequest,
)
from flowchat.messages.tree import ConversationTreeService
from flowchat.models import Message, MessagePart
from flowchat.rooms.repository import RoomNotFoundError, RoomRepository
from flowchat.rooms.router import get_room_repository

router = APIRouter(prefix="/api/rooms/{room_id}/messages", tags=["messages"])


def get_message_repository() -> MessageRepository:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("MessageRepository not initialized")


async def active_tree(
    room_id: str,
    rooms: RoomRepository = Depends(get_room_repository),
    messages: MessageRepository = Depends(get_message_repository),
) -> ConversationTreeService:
    """A tree service loaded with room_id's messages, owned by this request."""
    try:
        await rooms.get_by_id(room_id)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
    service = ConversationTreeService(messages)
    await service.open_room(room_id)
    return service


def _require_message(service: ConversationTreeService, message_id: str) -> Message:
    message = service.get_message_by_id(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail=f"Message not found: {message_id}")
    return message


@router.get("")
async def list_messages(
    service: ConversationTreeService = Depends(active_tree),
) -> list[Message]:
    return service.messages


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_message(
    room_id: str,
    request: CreateMessageRequest,
    service: ConversationTreeService = Depends(active_tree),
) -> Message:
    try:
        return await service.new_message(
            content=request.content,
            role=request.role,
            parent_id=request.parent_id,
            provider=request.provider,
            model=request.model,
            room_id=room_id,
            memory_ids=request.memory_ids,
        )
    except ConstraintViolationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/search")
async def search_messages(
    room_id: str,
    q: str = Query(min_length=1),
    rooms: RoomRepository = Depends(get_room_repository),
    messages: MessageRepository = Depends(get_message_repository),
) -> list[Message]:
    try:
        await rooms.get_by_id(room_id)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
    return await messages.search_by_content(q, room_id=room_id)


@router.get("/{message_id}")
async def get_message(
    message_id: str,
    service: ConversationTreeService = Depends(active_tree),
) -> Message:
    return _require_message(service, message_id)


@router.post("/{message_id}/content", status_code=status.HTTP_201_CREATED)
async def append_content(
    message_id: str,
    request: AppendContentRequest,
    service: ConversationTreeService = Depends(active_tree),
) -> list[MessagePart]:
    _require_message(service, message_id)
    return await service.append_content_batch(message_id, request.parts)


@router.put("/{message_id}/content")
async def replace_content(
    message_id: str,
    request: ReplaceContentRequest,
    service: ConversationTreeService = Depends(active_tree),
) -> list[MessagePart]:
    _require_message(service, message_id)
    return await service.update_content(message_id, request.parts)


@router.post("/{message_id}/summary")
async def update_summary(
    message_id: str,
    request: SummaryRequest,
    service: ConversationTreeService = Depends(active_tree),
) -> Message:
    _require_message(service, message_id)
    try:
        if request.append:
            await service.append_summary(message_id, request.text)
        else:
            await service.update_summary(message_id, request.text)
        if request.show_summary is not None:
            await service.update_show_summary(message_id, request.show_summary)
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail=f"Message not found: {message_id}")
    return _require_message(service, message_id)


@router.get("/{message_id}/branch")
async def get_branch(
    message_id: str,
    service: ConversationTreeService = Depends(active_tree),
) -> BranchResponse:
    _require_message(service, message_id)
    return BranchResponse(messages=service.get_branch_by_id(message_id).messages)


@router.delete("/{message_id}/subtree")
async def delete_subtree(
    message_id: str,
    service: ConversationTreeService = Depends(active_tree),
) -> DeleteSubtreeResponse:
    _require_message(service, message_id)
    return DeleteSubtreeResponse(deleted_ids=await service.delete_subtree(message_id))


@router.post("/{message_id}/merge")
async def merge_branch(
    message_id: str,
    request: MergeRequest,
    service: ConversationTreeService = Depends(active_tree),
) -> MergeResponse:
    try:
        leaf_id = await service.merge_branch(message_id, request.source_leaf_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Message not found: {e.message_id}")
    return MergeResponse(leaf_id=leaf_id)
