"""Message repository: messages, their ordered content parts, summaries and embeddings.

A message row holds metadata only; its content lives in message_parts rows
with a dense per-message sort_order. Reads join the two and assemble each
message's content in order. Every mutation runs as one transaction followed
by a checkpoint.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from uuid import uuid4

from flowchat.db.connection import ConstraintViolationError, Database
from flowchat.models import (
    ContentPart,
    Message,
    MessagePart,
    MessageRole,
    ScoredMessage,
    content_part_adapter,
    part_text,
)
from flowchat.utils.json import dump_json, parse_json_list, parse_json_or_none

DEFAULT_EMBEDDING_DIMENSIONS = 1024

# SQLite's default host parameter limit is well above this.
_IN_CHUNK = 500

_SELECT_WITH_PARTS = """
    SELECT m.*,
           p.id AS part_id,
           p.content AS part_content,
           p.sort_order AS part_order
    FROM messages m
    LEFT JOIN message_parts p ON p.message_id = m.id
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


def _chunks(values: Sequence[str]) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), _IN_CHUNK):
        yield values[start:start + _IN_CHUNK]


def combine_messages_and_parts(rows: Iterable[Mapping]) -> list[Message]:
    """Fold joined message/part rows into assembled messages.

    Rows must arrive ordered by message, then part order. A message with no
    parts (part_content is NULL from the LEFT JOIN) gets content == [].
    Message order follows first appearance.
    """
    assembled: dict[str, dict] = {}

    for row in rows:
        message_id = row["id"]
        if message_id not in assembled:
            assembled[message_id] = {
                "id": message_id,
                "role": row["role"],
                "parent_id": row["parent_id"],
                "room_id": row["room_id"],
                "provider": row["provider"],
                "model": row["model"],
                "content": [],
                "summary": row["summary"],
                "show_summary": bool(row["show_summary"]),
                "memory": parse_json_list(row["memory"]),
                "embedding": parse_json_or_none(row["embedding"]),
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
            }
        if row["part_content"] is not None:
            assembled[message_id]["content"].append(
                content_part_adapter.validate_json(row["part_content"])
            )

    return [Message.model_validate(data) for data in assembled.values()]


class MessageRepository:
    """CRUD, content-part, summary and embedding operations on messages."""

    def __init__(
        self, db: Database, *, embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
    ) -> None:
        self._db = db
        self._dimensions = embedding_dimensions

    @property
    def embedding_dimensions(self) -> int:
        return self._dimensions

    # -- Reads --

    async def get_all(self, room_id: str | None = None) -> list[Message]:
        """All messages (optionally of one room), ordered by creation then part order."""
        where = "WHERE m.room_id = ?" if room_id is not None else ""
        params = (room_id,) if room_id is not None else ()
        rows = await self._db.fetchall(
            f"{_SELECT_WITH_PARTS} {where} ORDER BY m.created_at, m.rowid, p.sort_order",
            params,
        )
        return combine_messages_and_parts(rows)

    async def get_by_room_id(self, room_id: str) -> list[Message]:
        return await self.get_all(room_id)

    async def get_by_id(self, message_id: str) -> Message:
        """Get one assembled message. Raises MessageNotFoundError."""
        rows = await self._db.fetchall(
            f"{_SELECT_WITH_PARTS} WHERE m.id = ? ORDER BY p.sort_order",
            (message_id,),
        )
        if not rows:
            raise MessageNotFoundError(message_id)
        return combine_messages_and_parts(rows)[0]

    async def get_by_ids(self, ids: Sequence[str]) -> list[Message]:
        if not ids:
            return []
        rows = await self._db.fetchall(
            f"{_SELECT_WITH_PARTS} WHERE m.id IN ({_placeholders(ids)}) "
            "ORDER BY m.created_at, m.rowid, p.sort_order",
            tuple(ids),
        )
        return combine_messages_and_parts(rows)

    # -- Create / update / delete --

    async def create(
        self,
        *,
        room_id: str,
        role: MessageRole,
        provider: str,
        model: str,
        parent_id: str | None = None,
        summary: str | None = None,
        memory: Sequence[str] | None = None,
    ) -> Message:
        """Insert a message with empty content and return it.

        A non-null parent_id must name an existing message in the same room.
        An unknown room_id is rejected by the foreign key.
        """
        message_id = str(uuid4())
        now = _now()

        async with self._db.transaction(checkpoint=True) as tx:
            if parent_id is not None:
                parent = await tx.fetchone(
                    "SELECT room_id FROM messages WHERE id = ?", (parent_id,)
                )
                if parent is None:
                    raise ConstraintViolationError(f"parent message not found: {parent_id}")
                if parent["room_id"] != room_id:
                    raise ConstraintViolationError(
                        f"parent message {parent_id} belongs to another room"
                    )

            await tx.execute(
                """
                INSERT INTO messages
                    (id, role, parent_id, room_id, provider, model, summary,
                     show_summary, memory, embedding, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, NULL, ?, ?)
                """,
                (
                    message_id, role, parent_id, room_id, provider, model, summary,
                    dump_json(list(memory or [])), now, now,
                ),
            )

        return Message(
            id=message_id,
            role=role,
            parent_id=parent_id,
            room_id=room_id,
            provider=provider,
            model=model,
            content=[],
            summary=summary,
            memory=list(memory or []),
            created_at=now,
            updated_at=now,
        )

    _UPDATABLE_FIELDS = {"role", "provider", "model", "memory"}

    async def update(self, message_id: str, **fields: object) -> None:
        """Update message metadata columns. Content has its own operations."""
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update message fields: {sorted(unknown)}")
        if not fields:
            return

        assignments = [f"{name} = ?" for name in fields]
        values = [
            dump_json(list(value)) if name == "memory" else value
            for name, value in fields.items()
        ]
        async with self._db.transaction(checkpoint=True) as tx:
            cursor = await tx.execute(
                f"UPDATE messages SET {', '.join(assignments)}, updated_at = ? WHERE id = ?",
                (*values, _now(), message_id),
            )
            if cursor.rowcount == 0:
                raise MessageNotFoundError(message_id)

    async def delete_by_ids(self, ids: Sequence[str]) -> int:
        """Delete messages in one transaction. Unknown ids are ignored.

        Descendants of a deleted message go with it (parent_id cascades), so
        no remaining row ever points at a deleted parent.
        """
        ids = list(dict.fromkeys(ids))
        if not ids:
            return 0
        deleted = 0
        async with self._db.transaction(checkpoint=True) as tx:
            for chunk in _chunks(ids):
                cursor = await tx.execute(
                    f"DELETE FROM messages WHERE id IN ({_placeholders(chunk)})",
                    tuple(chunk),
                )
                deleted += max(cursor.rowcount, 0)
        return deleted

    # -- Content parts --

    async def append_content(self, message_id: str, part: ContentPart) -> MessagePart:
        """Append one part after the current last part."""
        parts = await self.append_content_batch(message_id, [part])
        return parts[0]

    async def append_content_batch(
        self, message_id: str, parts: Sequence[ContentPart],
    ) -> list[MessagePart]:
        """Append parts with contiguous orders after the current maximum.

        The max-order read and the inserts share one transaction, so two
        concurrent appends to the same message never compute the same order.
        """
        if not parts:
            return []
        now = _now()

        async with self._db.transaction(checkpoint=True) as tx:
            row = await tx.fetchone(
                "SELECT COALESCE(MAX(sort_order), -1) AS max_order "
                "FROM message_parts WHERE message_id = ?",
                (message_id,),
            )
            start = row["max_order"] + 1
            stored = self._build_parts(message_id, parts, start)
            await self._insert_parts(tx, stored, now)
            await tx.execute(
                "UPDATE messages SET updated_at = ? WHERE id = ?", (now, message_id)
            )
        return stored

    async def update_content(
        self, message_id: str, parts: Sequence[ContentPart],
    ) -> list[MessagePart]:
        """Replace all parts. Delete and insert commit together."""
        now = _now()
        stored = self._build_parts(message_id, parts, 0)

        async with self._db.transaction(checkpoint=True) as tx:
            exists = await tx.fetchone("SELECT 1 FROM messages WHERE id = ?", (message_id,))
            if exists is None:
                raise MessageNotFoundError(message_id)
            await tx.execute("DELETE FROM message_parts WHERE message_id = ?", (message_id,))
            await self._insert_parts(tx, stored, now)
            await tx.execute(
                "UPDATE messages SET updated_at = ? WHERE id = ?", (now, message_id)
            )
        return stored

    async def delete_content(self, message_id: str) -> None:
        async with self._db.transaction(checkpoint=True) as tx:
            await tx.execute("DELETE FROM message_parts WHERE message_id = ?", (message_id,))
            await tx.execute(
                "UPDATE messages SET updated_at = ? WHERE id = ?", (_now(), message_id)
            )

    @staticmethod
    def _build_parts(
        message_id: str, parts: Sequence[ContentPart], start: int,
    ) -> list[MessagePart]:
        return [
            MessagePart(
                id=str(uuid4()),
                message_id=message_id,
                part_type=part.type,
                content=part,
                order=start + offset,
            )
            for offset, part in enumerate(parts)
        ]

    @staticmethod
    async def _insert_parts(tx, parts: list[MessagePart], now: str) -> None:
        await tx.executemany(
            """
            INSERT INTO message_parts
                (id, message_id, part_type, content, text, sort_order, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    p.id, p.message_id, p.part_type, p.content.model_dump_json(),
                    part_text(p.content), p.order, now, now,
                )
                for p in parts
            ],
        )

    # -- Summaries --

    async def append_summary(self, message_id: str, text: str) -> None:
        """Append to the summary; a NULL summary counts as empty."""
        await self._update_one(
            "UPDATE messages SET summary = COALESCE(summary, '') || ?, updated_at = ? WHERE id = ?",
            (text, _now(), message_id),
            message_id,
        )

    async def update_summary(self, message_id: str, text: str | None) -> None:
        await self._update_one(
            "UPDATE messages SET summary = ?, updated_at = ? WHERE id = ?",
            (text, _now(), message_id),
            message_id,
        )

    async def update_show_summary(self, message_id: str, show_summary: bool) -> None:
        await self._update_one(
            "UPDATE messages SET show_summary = ?, updated_at = ? WHERE id = ?",
            (int(show_summary), _now(), message_id),
            message_id,
        )

    async def _update_one(self, sql: str, params: tuple, message_id: str) -> None:
        async with self._db.transaction(checkpoint=True) as tx:
            cursor = await tx.execute(sql, params)
            if cursor.rowcount == 0:
                raise MessageNotFoundError(message_id)

    # -- Search --

    async def search_by_content(
        self, keyword: str, room_id: str | None = None,
    ) -> list[Message]:
        """Case-insensitive substring search over the parts' text.

        Returns each matching message once, with its full content.
        """
        keyword = keyword.strip()
        if not keyword:
            return []

        clauses = [
            "m.id IN (SELECT message_id FROM message_parts "
            "WHERE instr(lower(text), lower(?)) > 0)"
        ]
        params: list[str] = [keyword]
        if room_id is not None:
            clauses.append("m.room_id = ?")
            params.append(room_id)

        rows = await self._db.fetchall(
            f"{_SELECT_WITH_PARTS} WHERE {' AND '.join(clauses)} "
            "ORDER BY m.created_at, m.rowid, p.sort_order",
            tuple(params),
        )
        return combine_messages_and_parts(rows)

    # -- Embeddings --

    async def not_embedded_messages(self) -> list[Message]:
        """Messages still waiting for an embedding, oldest first."""
        rows = await self._db.fetchall(
            f"{_SELECT_WITH_PARTS} WHERE m.embedding IS NULL "
            "ORDER BY m.created_at, m.rowid, p.sort_order"
        )
        return combine_messages_and_parts(rows)

    async def update_embedding(self, message_id: str, embedding: Sequence[float]) -> int:
        """Store a message's embedding. Returns the number of affected rows."""
        vector = self._check_vector(embedding)
        async with self._db.transaction(checkpoint=True) as tx:
            cursor = await tx.execute(
                "UPDATE messages SET embedding = ? WHERE id = ?",
                (dump_json(vector), message_id),
            )
            return cursor.rowcount

    async def vector_similarity_search(
        self, embedding: Sequence[float], limit: int = 10, room_id: str | None = None,
    ) -> list[ScoredMessage]:
        """Rank embedded messages by cosine similarity to embedding, highest first.

        Ranking runs in SQL through sqlite-vec's vec_distance_cosine over the
        stored JSON vectors; content is assembled for the top `limit` rows
        alone. Rows whose stored vector has another dimension (written under
        a different embedding model) are skipped.
        """
        vector = self._check_vector(embedding)
        if limit <= 0:
            return []

        where = "WHERE embedding IS NOT NULL"
        params: list = [len(vector), dump_json(vector)]
        if room_id is not None:
            where += " AND room_id = ?"
            params.append(room_id)
        params.append(limit)

        ranked = await self._db.fetchall(
            f"""
            SELECT id, similarity FROM (
                SELECT id, rowid AS rid,
                    CASE
                        WHEN embedding IS NULL THEN NULL
                        WHEN vec_length(embedding) = ? THEN 1 - vec_distance_cosine(embedding, ?)
                    END AS similarity
                FROM messages
                {where}
            )
            WHERE similarity IS NOT NULL
            ORDER BY similarity DESC, rid
            LIMIT ?
            """,
            tuple(params),
        )
        if not ranked:
            return []

        similarity = {row["id"]: row["similarity"] for row in ranked}
        rank = {row["id"]: position for position, row in enumerate(ranked)}
        messages = await self.get_by_ids(list(similarity))

        scored = [
            ScoredMessage(**message.model_dump(), similarity=similarity[message.id])
            for message in messages
        ]
        scored.sort(key=lambda m: rank[m.id])
        return scored

    def _check_vector(self, embedding: Sequence[float]) -> list[float]:
        vector = [float(v) for v in embedding]
        if len(vector) != self._dimensions:
            raise InvalidEmbeddingError(self._dimensions, len(vector))
        return vector


class MessageNotFoundError(Exception):
    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class InvalidEmbeddingError(ConstraintViolationError):
    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"embedding has {actual} dimensions, expected {expected}")
