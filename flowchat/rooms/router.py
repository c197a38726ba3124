"""FastAPI routes for rooms and their persisted view state."""

from fastapi import APIRouter, Depends, HTTPException, status

from flowchat.db.connection import ConstraintViolationError
from flowchat.models import Room, RoomViewState, RoomViewStatePatch
from flowchat.rooms.repository import RoomNotFoundError, RoomRepository
from flowchat.rooms.schemas import CreateRoomRequest, PatchRoomRequest

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


def get_room_repository() -> RoomRepository:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("RoomRepository not initialized")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_room(
    request: CreateRoomRequest,
    rooms: RoomRepository = Depends(get_room_repository),
) -> Room:
    try:
        return await rooms.create(
            request.name,
            template_id=request.template_id,
            default_model=request.default_model,
            name_manually_set=True,
        )
    except ConstraintViolationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
async def list_rooms(rooms: RoomRepository = Depends(get_room_repository)) -> list[Room]:
    return await rooms.get_all()


@router.get("/{room_id}")
async def get_room(
    room_id: str,
    rooms: RoomRepository = Depends(get_room_repository),
) -> Room:
    try:
        return await rooms.get_by_id(room_id)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")


@router.patch("/{room_id}")
async def update_room(
    room_id: str,
    request: PatchRoomRequest,
    rooms: RoomRepository = Depends(get_room_repository),
) -> Room:
    fields = request.model_dump(exclude_unset=True)
    if "name" in fields:
        fields["name_manually_set"] = True
    try:
        return await rooms.update(room_id, **fields)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
    except ConstraintViolationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_room(
    room_id: str,
    rooms: RoomRepository = Depends(get_room_repository),
) -> None:
    try:
        await rooms.destroy(room_id)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")


@router.get("/{room_id}/view-state")
async def get_view_state(
    room_id: str,
    rooms: RoomRepository = Depends(get_room_repository),
) -> RoomViewState:
    try:
        return await rooms.get_view_state(room_id)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")


@router.patch("/{room_id}/view-state")
async def update_view_state(
    room_id: str,
    patch: RoomViewStatePatch,
    rooms: RoomRepository = Depends(get_room_repository),
) -> RoomViewState:
    try:
        await rooms.update_view_state(room_id, patch)
        return await rooms.get_view_state(room_id)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
