"""Shared pytest fixtures for flowchat tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from flowchat.db.connection import DatabaseHandle
from flowchat.main import app
from flowchat.memories.repository import MemoryRepository
from flowchat.memories.router import get_memory_repository
from flowchat.messages.repository import MessageRepository
from flowchat.messages.router import get_message_repository
from flowchat.messages.tree import ConversationTreeService
from flowchat.rooms.repository import RoomRepository
from flowchat.rooms.router import get_room_repository
from flowchat.templates.repository import TemplateRepository
from flowchat.templates.router import get_template_repository


@pytest.fixture
async def db_handle():
    """Initialized handle over an in-memory database."""
    handle = DatabaseHandle()
    await handle.initialize(":memory:")
    yield handle
    await handle.close()


@pytest.fixture
async def db(db_handle):
    """In-memory database for tests."""
    return db_handle.get()


@pytest.fixture
async def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
async def memory_repo(db):
    return MemoryRepository(db)


@pytest.fixture
async def room_repo(db):
    return RoomRepository(db)


@pytest.fixture
async def template_repo(db):
    return TemplateRepository(db)


@pytest.fixture
async def tree(message_repo):
    """Conversation tree service backed by the in-memory database."""
    return ConversationTreeService(message_repo)


@pytest.fixture
async def room(room_repo):
    return await room_repo.create("Test Room")


@pytest.fixture
async def client(message_repo, memory_repo, room_repo, template_repo):
    """Async test client with in-memory DB wired into the app."""
    app.dependency_overrides[get_message_repository] = lambda: message_repo
    app.dependency_overrides[get_memory_repository] = lambda: memory_repo
    app.dependency_overrides[get_room_repository] = lambda: room_repo
    app.dependency_overrides[get_template_repository] = lambda: template_repo
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
