"""Memory repository: deduplicated facts scoped globally or to one room."""

from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import uuid4

from flowchat.db.connection import ConstraintViolationError, Database
from flowchat.models import Memory, MemoryScope
from flowchat.utils.json import dump_json, parse_json_list

_SCOPES = ("global", "room")


def normalize_tags(tags: Sequence[str] | None) -> list[str]:
    """Strip, drop empties, dedupe and sort."""
    return sorted({t.strip() for t in tags or [] if t and t.strip()})


def _row_to_memory(row) -> Memory:
    return Memory(
        id=row["id"],
        content=row["content"],
        scope=row["scope"],
        room_id=row["room_id"],
        tags=parse_json_list(row["tags"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class MemoryRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert(
        self,
        content: str,
        scope: MemoryScope = "global",
        tags: Sequence[str] | None = None,
        room_id: str | None = None,
    ) -> Memory:
        """Insert a memory, or merge tags into the existing one with the same key.

        The key is (content, scope, room_id) after normalization: content is
        stripped and a global memory never carries a room_id. Lookup and write
        share one IMMEDIATE transaction, so concurrent upserts of one key
        leave a single row holding the union of their tags.
        """
        content = content.strip()
        if not content:
            raise ConstraintViolationError("memory content must not be empty")
        if scope not in _SCOPES:
            raise ConstraintViolationError(f"unknown memory scope: {scope!r}")
        if scope == "global":
            room_id = None
        new_tags = normalize_tags(tags)
        now = datetime.now(UTC).isoformat()

        async with self._db.transaction(checkpoint=True) as tx:
            if room_id is None:
                existing = await tx.fetchone(
                    "SELECT * FROM memories WHERE content = ? AND scope = ? AND room_id IS NULL",
                    (content, scope),
                )
            else:
                existing = await tx.fetchone(
                    "SELECT * FROM memories WHERE content = ? AND scope = ? AND room_id = ?",
                    (content, scope, room_id),
                )

            if existing is not None:
                merged = normalize_tags([*parse_json_list(existing["tags"]), *new_tags])
                await tx.execute(
                    "UPDATE memories SET tags = ?, updated_at = ? WHERE id = ?",
                    (dump_json(merged), now, existing["id"]),
                )
                return Memory(
                    id=existing["id"],
                    content=content,
                    scope=scope,
                    room_id=room_id,
                    tags=merged,
                    created_at=existing["created_at"],
                    updated_at=now,
                )

            memory_id = str(uuid4())
            await tx.execute(
                """
                INSERT INTO memories (id, content, scope, room_id, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (memory_id, content, scope, room_id, dump_json(new_tags), now, now),
            )
            return Memory(
                id=memory_id,
                content=content,
                scope=scope,
                room_id=room_id,
                tags=new_tags,
                created_at=now,
                updated_at=now,
            )

    async def get_by_room_id(self, room_id: str | None) -> list[Memory]:
        """Memories of one room, or the global memories when room_id is None.

        The global read filters on scope as well as room_id, so room-scoped
        rows that lost their room never show up as global facts.
        """
        if room_id is None:
            rows = await self._db.fetchall(
                "SELECT * FROM memories WHERE scope = 'global' AND room_id IS NULL "
                "ORDER BY created_at, rowid"
            )
        else:
            rows = await self._db.fetchall(
                "SELECT * FROM memories WHERE scope = 'room' AND room_id = ? "
                "ORDER BY created_at, rowid",
                (room_id,),
            )
        return [_row_to_memory(r) for r in rows]

    async def get_for_room(self, room_id: str) -> list[Memory]:
        """Global memories followed by the room's own, as sent to the model."""
        return [*await self.get_by_room_id(None), *await self.get_by_room_id(room_id)]

    async def get_by_ids(self, ids: Sequence[str]) -> list[Memory]:
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._db.fetchall(
            f"SELECT * FROM memories WHERE id IN ({placeholders}) ORDER BY created_at, rowid",
            tuple(ids),
        )
        return [_row_to_memory(r) for r in rows]

    async def delete_by_ids(self, ids: Sequence[str]) -> int:
        """Delete memories by id. Unknown ids are ignored."""
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        async with self._db.transaction(checkpoint=True) as tx:
            cursor = await tx.execute(
                f"DELETE FROM memories WHERE id IN ({placeholders})", tuple(ids)
            )
            return cursor.rowcount
