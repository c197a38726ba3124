"""Room repository: room metadata and the persisted per-room view state."""

from datetime import UTC, datetime
from uuid import uuid4

from flowchat.db.connection import Database
from flowchat.models import Room, RoomViewState, RoomViewStatePatch, ViewportSnapshot

_UPDATABLE_ROOM_FIELDS = {"name", "name_manually_set", "template_id", "default_model"}


def _row_to_room(row) -> Room:
    return Room(
        id=row["id"],
        name=row["name"],
        name_manually_set=bool(row["name_manually_set"]),
        template_id=row["template_id"],
        default_model=row["default_model"],
        focus_node_id=row["focus_node_id"],
        viewport_x=row["viewport_x"],
        viewport_y=row["viewport_y"],
        viewport_zoom=row["viewport_zoom"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class RoomRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(
        self,
        name: str,
        template_id: str | None = None,
        default_model: str | None = "gpt-4o",
        name_manually_set: bool = False,
    ) -> Room:
        room_id = str(uuid4())
        now = datetime.now(UTC).isoformat()
        async with self._db.transaction(checkpoint=True) as tx:
            await tx.execute(
                """
                INSERT INTO rooms
                    (id, name, name_manually_set, template_id, default_model, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (room_id, name, int(name_manually_set), template_id, default_model, now, now),
            )
        return Room(
            id=room_id,
            name=name,
            name_manually_set=name_manually_set,
            template_id=template_id,
            default_model=default_model,
            created_at=now,
            updated_at=now,
        )

    async def get_by_id(self, room_id: str) -> Room:
        row = await self._db.fetchone("SELECT * FROM rooms WHERE id = ?", (room_id,))
        if row is None:
            raise RoomNotFoundError(room_id)
        return _row_to_room(row)

    async def get_all(self) -> list[Room]:
        """All rooms, most recently updated first."""
        rows = await self._db.fetchall("SELECT * FROM rooms ORDER BY updated_at DESC, rowid")
        return [_row_to_room(r) for r in rows]

    async def update(self, room_id: str, **fields: object) -> Room:
        unknown = set(fields) - _UPDATABLE_ROOM_FIELDS
        if unknown:
            raise ValueError(f"Cannot update room fields: {sorted(unknown)}")
        if fields:
            values = [int(v) if k == "name_manually_set" else v for k, v in fields.items()]
            assignments = ", ".join(f"{name} = ?" for name in fields)
            async with self._db.transaction(checkpoint=True) as tx:
                cursor = await tx.execute(
                    f"UPDATE rooms SET {assignments}, updated_at = ? WHERE id = ?",
                    (*values, datetime.now(UTC).isoformat(), room_id),
                )
                if cursor.rowcount == 0:
                    raise RoomNotFoundError(room_id)
        return await self.get_by_id(room_id)

    async def destroy(self, room_id: str) -> None:
        """Delete a room. Its messages and room memories cascade with it."""
        async with self._db.transaction(checkpoint=True) as tx:
            cursor = await tx.execute("DELETE FROM rooms WHERE id = ?", (room_id,))
            if cursor.rowcount == 0:
                raise RoomNotFoundError(room_id)

    async def get_view_state(self, room_id: str) -> RoomViewState:
        """Persisted focus node and camera. viewport is None unless all three parts are saved."""
        row = await self._db.fetchone(
            "SELECT focus_node_id, viewport_x, viewport_y, viewport_zoom FROM rooms WHERE id = ?",
            (room_id,),
        )
        if row is None:
            raise RoomNotFoundError(room_id)

        viewport = None
        if None not in (row["viewport_x"], row["viewport_y"], row["viewport_zoom"]):
            viewport = ViewportSnapshot(
                x=row["viewport_x"], y=row["viewport_y"], zoom=row["viewport_zoom"]
            )
        return RoomViewState(focus_node_id=row["focus_node_id"], viewport=viewport)

    async def update_view_state(self, room_id: str, patch: RoomViewStatePatch) -> None:
        """Write the explicitly set fields of patch. A None viewport clears all three columns."""
        assignments: list[str] = []
        values: list[object] = []

        if "focus_node_id" in patch.model_fields_set:
            assignments.append("focus_node_id = ?")
            values.append(patch.focus_node_id)
        if "viewport" in patch.model_fields_set:
            vp = patch.viewport
            assignments.extend(["viewport_x = ?", "viewport_y = ?", "viewport_zoom = ?"])
            values.extend([vp.x, vp.y, vp.zoom] if vp is not None else [None, None, None])

        async with self._db.transaction(checkpoint=True) as tx:
            if not assignments:
                row = await tx.fetchone("SELECT 1 FROM rooms WHERE id = ?", (room_id,))
                if row is None:
                    raise RoomNotFoundError(room_id)
                return
            cursor = await tx.execute(
                f"UPDATE rooms SET {', '.join(assignments)} WHERE id = ?",
                (*values, room_id),
            )
            if cursor.rowcount == 0:
                raise RoomNotFoundError(room_id)


class RoomNotFoundError(Exception):
    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__(f"Room not found: {room_id}")
