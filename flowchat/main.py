"""flowchat FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flowchat import __version__
from flowchat.config import load_settings
from flowchat.db.connection import DatabaseHandle, StorageUnavailableError
from flowchat.memories.repository import MemoryRepository
from flowchat.memories.router import get_memory_repository
from flowchat.memories.router import router as memories_router
from flowchat.messages.repository import MessageRepository
from flowchat.messages.router import get_message_repository
from flowchat.messages.router import router as messages_router
from flowchat.rooms.repository import RoomRepository
from flowchat.rooms.router import get_room_repository
from flowchat.rooms.router import router as rooms_router
from flowchat.templates.repository import TemplateRepository
from flowchat.templates.router import get_template_repository
from flowchat.templates.router import router as templates_router

logger = logging.getLogger(__name__)

settings = load_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage database lifecycle and repository wiring."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handle = DatabaseHandle()
    db = await handle.initialize(settings.db_path)

    messages = MessageRepository(db, embedding_dimensions=settings.embedding_dimensions)
    app.dependency_overrides[get_message_repository] = lambda: messages

    memories = MemoryRepository(db)
    app.dependency_overrides[get_memory_repository] = lambda: memories

    rooms = RoomRepository(db)
    app.dependency_overrides[get_room_repository] = lambda: rooms

    templates = TemplateRepository(db)
    app.dependency_overrides[get_template_repository] = lambda: templates

    app.state.db = handle
    yield

    await handle.close()


app = FastAPI(
    title="flowchat",
    description="Local-first assistant whose conversations form a branching tree",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)
app.include_router(templates_router)
app.include_router(messages_router)
app.include_router(memories_router)


@app.exception_handler(StorageUnavailableError)
async def storage_unavailable(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    logger.warning("Request to %s while storage unavailable: %s", request.url.path, exc.reason)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}
