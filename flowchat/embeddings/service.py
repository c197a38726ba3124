"""Embedding indexer: fills in missing message embeddings and runs semantic search.

The embedding model itself is an injected async callable, so any provider
(or a test fake) can be plugged in.
"""

import logging
from collections.abc import Awaitable, Callable

from flowchat.messages.repository import MessageRepository
from flowchat.models import Message, ScoredMessage, part_text

logger = logging.getLogger(__name__)

Embedder = Callable[[list[str]], Awaitable[list[list[float]]]]
ProgressCallback = Callable[[float], None]


def embedding_text(message: Message) -> str:
    """Text of all parts, one per line, as fed to the embedding model."""
    return "\n".join(t for t in (part_text(p) for p in message.content) if t).strip()


class EmbeddingIndexer:
    def __init__(
        self,
        messages: MessageRepository,
        embed: Embedder,
        *,
        batch_size: int = 16,
        instruction: str | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._messages = messages
        self._embed = embed
        self._batch_size = batch_size
        self._instruction = instruction

    def _prepare(self, text: str) -> str:
        if self._instruction:
            return f"{self._instruction}: {text}"
        return text

    async def index_pending(self, progress: ProgressCallback | None = None) -> int:
        """Embed every message that has content but no embedding yet.

        Messages whose content is still empty (created, not yet streamed) are
        left for a later run. Returns the number of messages embedded.
        """
        pending = [
            (m.id, text)
            for m in await self._messages.not_embedded_messages()
            if (text := embedding_text(m))
        ]
        total = len(pending)
        if total == 0:
            if progress is not None:
                progress(1.0)
            return 0

        done = 0
        for start in range(0, total, self._batch_size):
            batch = pending[start:start + self._batch_size]
            vectors = await self._embed([self._prepare(text) for _, text in batch])
            if len(vectors) != len(batch):
                raise ValueError(
                    f"embedder returned {len(vectors)} vectors for {len(batch)} texts"
                )
            for (message_id, _), vector in zip(batch, vectors):
                await self._messages.update_embedding(message_id, vector)
            done += len(batch)
            logger.info("Embedded %d/%d messages", done, total)
            if progress is not None:
                progress(done / total)
        return done

    async def search(
        self, text: str, limit: int = 10, room_id: str | None = None,
    ) -> list[ScoredMessage]:
        """Messages most similar to text, best first."""
        [vector] = await self._embed([self._prepare(text)])
        return await self._messages.vector_similarity_search(vector, limit, room_id)
