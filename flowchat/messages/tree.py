"""Conversation tree service: the active room's messages as a parent-pointer tree.

Holds an id -> Message index and a parent -> children index for the room
that is currently open, rebuilt on room load and maintained on every
mutation. Storage goes through MessageRepository; errors from it propagate.
"""

import logging
from collections import defaultdict, deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from flowchat.messages.repository import MessageNotFoundError, MessageRepository
from flowchat.models import ContentPart, Message, MessagePart, MessageRole, TextPart

logger = logging.getLogger(__name__)

TreeListener = Callable[[], None]


@dataclass(frozen=True)
class Branch:
    """Root-to-leaf path ending at one message."""

    messages: list[Message] = field(default_factory=list)
    ids: frozenset[str] = field(default_factory=frozenset)


class ConversationTreeService:
    """Cache and tree operations over one room's messages."""

    def __init__(self, messages: MessageRepository) -> None:
        self._repo = messages
        self._room_id: str | None = None
        self._messages: dict[str, Message] = {}
        self._children: defaultdict[str | None, list[str]] = defaultdict(list)
        self._generating: set[str] = set()
        self._listeners: list[TreeListener] = []

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @property
    def messages(self) -> list[Message]:
        """Cached messages in load/creation order."""
        return list(self._messages.values())

    @property
    def generating(self) -> frozenset[str]:
        return frozenset(self._generating)

    # -- Room lifecycle --

    async def open_room(self, room_id: str | None) -> None:
        """Make room_id the active room. No-op if it already is."""
        if room_id == self._room_id:
            return
        self.reset_state()
        self._room_id = room_id
        if room_id is not None:
            await self.retrieve_messages()

    async def retrieve_messages(self) -> None:
        """Reload the cache for the active room from storage."""
        room_id = self._room_id
        if room_id is None:
            return
        loaded = await self._repo.get_by_room_id(room_id)
        if room_id != self._room_id:
            # The room changed while loading; the newer room owns the cache.
            logger.debug("Discarding messages loaded for inactive room %s", room_id)
            return
        self._rebuild(loaded)
        self._notify()

    def reset_state(self) -> None:
        """Forget the active room's cache and generating set."""
        had_state = bool(self._messages or self._generating)
        self._room_id = None
        self._messages = {}
        self._children = defaultdict(list)
        self._generating = set()
        if had_state:
            self._notify()

    def _rebuild(self, messages: Sequence[Message]) -> None:
        self._messages = {m.id: m for m in messages}
        self._children = defaultdict(list)
        for message in messages:
            self._children[message.parent_id].append(message.id)

    # -- Creation --

    async def new_message(
        self,
        content: str | Sequence[ContentPart],
        role: MessageRole,
        parent_id: str | None,
        provider: str,
        model: str,
        room_id: str | None = None,
        memory_ids: Sequence[str] | None = None,
    ) -> Message:
        """Create a message, append its initial content if any, and cache it."""
        room_id = room_id or self._room_id
        if room_id is None:
            raise ValueError("No active room to create a message in")

        if isinstance(content, str):
            parts: list[ContentPart] = [TextPart(text=content)] if content else []
        else:
            parts = list(content)

        message = await self._repo.create(
            room_id=room_id,
            role=role,
            provider=provider,
            model=model,
            parent_id=parent_id,
            memory=memory_ids,
        )
        if parts:
            await self._repo.append_content_batch(message.id, parts)
            message = message.model_copy(update={"content": parts})

        if room_id == self._room_id:
            self._messages[message.id] = message
            self._children[message.parent_id].append(message.id)
            self._notify()
        return message

    # -- Lookups --

    def get_message_by_id(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def get_parent_message(self, message: Message) -> Message | None:
        if message.parent_id is None:
            return None
        return self._messages.get(message.parent_id)

    def get_child_messages_by_id(self, message_id: str | None) -> list[Message]:
        """Children in creation order. None gives the root messages."""
        return [self._messages[i] for i in self._children.get(message_id, [])]

    def get_branch_by_id(self, message_id: str) -> Branch:
        """Walk parent pointers up to the root and return the path root-first.

        Unknown ids give an empty branch. A cycle in corrupt data ends the
        walk instead of looping.
        """
        path: list[Message] = []
        seen: set[str] = set()
        current = self._messages.get(message_id)
        while current is not None and current.id not in seen:
            path.append(current)
            seen.add(current.id)
            current = self._messages.get(current.parent_id) if current.parent_id else None
        path.reverse()
        return Branch(messages=path, ids=frozenset(seen))

    def get_subtree_by_id(self, message_id: str) -> list[str]:
        """message_id and all its transitive children, breadth-first."""
        if message_id not in self._messages:
            return []
        collected: list[str] = []
        seen: set[str] = set()
        queue = deque([message_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            collected.append(current)
            queue.extend(self._children.get(current, []))
        return collected

    # -- Deletion and merge --

    async def delete_subtree(self, message_id: str) -> list[str]:
        """Delete a message with all its descendants. Returns the deleted ids.

        One bulk delete in storage, then the cache drops every id at once and
        listeners are notified once.
        """
        ids = self.get_subtree_by_id(message_id)
        if not ids:
            return []
        await self._repo.delete_by_ids(ids)

        doomed = set(ids)
        self._rebuild([m for m in self._messages.values() if m.id not in doomed])
        self._generating -= doomed
        self._notify()
        return ids

    async def merge_branch(self, target_id: str, source_leaf_id: str) -> str:
        """Graft the source branch's messages that target lacks onto target.

        Existing messages are never changed; copies are chained under
        target_id. Returns the last copy's id, or target_id when nothing needs
        copying.
        """
        if target_id not in self._messages:
            raise MessageNotFoundError(target_id)
        if source_leaf_id not in self._messages:
            raise MessageNotFoundError(source_leaf_id)

        target_ids = self.get_branch_by_id(target_id).ids
        source = self.get_branch_by_id(source_leaf_id).messages

        start = next(
            (i for i, m in enumerate(source) if m.id not in target_ids), None
        )
        if start is None:
            return target_id

        parent_id = target_id
        for original in source[start:]:
            copy = await self.new_message(
                content=list(original.content),
                role=original.role,
                parent_id=parent_id,
                provider=original.provider,
                model=original.model,
                room_id=original.room_id,
                memory_ids=original.memory,
            )
            parent_id = copy.id
        return parent_id

    # -- Generating set --

    def is_generating(self, message_id: str) -> bool:
        return message_id in self._generating

    def start_generating(self, message_id: str) -> None:
        if message_id in self._generating:
            return
        self._generating.add(message_id)
        self._notify()

    def stop_generating(self, message_id: str) -> None:
        if message_id not in self._generating:
            return
        self._generating.discard(message_id)
        self._notify()

    # -- Content and summary, keeping the cache in step with storage --

    async def append_content(self, message_id: str, part: ContentPart) -> MessagePart:
        [stored] = await self.append_content_batch(message_id, [part])
        return stored

    async def append_content_batch(
        self, message_id: str, parts: Sequence[ContentPart],
    ) -> list[MessagePart]:
        stored = await self._repo.append_content_batch(message_id, parts)
        cached = self._messages.get(message_id)
        if cached is not None and stored:
            self._replace(cached.model_copy(update={"content": [*cached.content, *parts]}))
        return stored

    async def update_content(
        self, message_id: str, parts: Sequence[ContentPart],
    ) -> list[MessagePart]:
        stored = await self._repo.update_content(message_id, parts)
        cached = self._messages.get(message_id)
        if cached is not None:
            self._replace(cached.model_copy(update={"content": list(parts)}))
        return stored

    async def append_summary(self, message_id: str, text: str) -> None:
        await self._repo.append_summary(message_id, text)
        cached = self._messages.get(message_id)
        if cached is not None:
            self._replace(
                cached.model_copy(update={"summary": (cached.summary or "") + text})
            )

    async def update_summary(self, message_id: str, text: str | None) -> None:
        await self._repo.update_summary(message_id, text)
        cached = self._messages.get(message_id)
        if cached is not None:
            self._replace(cached.model_copy(update={"summary": text}))

    async def update_show_summary(self, message_id: str, show_summary: bool) -> None:
        await self._repo.update_show_summary(message_id, show_summary)
        cached = self._messages.get(message_id)
        if cached is not None:
            self._replace(cached.model_copy(update={"show_summary": show_summary}))

    def _replace(self, message: Message) -> None:
        self._messages[message.id] = message
        self._notify()

    # -- Change notifications --

    def subscribe(self, listener: TreeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: TreeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Tree listener %r failed", listener)
