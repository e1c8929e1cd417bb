"""Chatcore Backend Application.

Entry point of the real-time chat core: a REST API under ``/api`` and one
WebSocket channel at ``/ws``, sharing a single event loop and a single
embedded DuckDB store.

Modules:
    - store: Identity & Membership Store (DuckDB)
    - presence: Presence Registry (in-memory session <-> user map)
    - conversations: Conversation Membership Engine
    - messages: Message Delivery Pipeline, read receipts, history
    - gateway: Session hub and WebSocket gateway
    - auth: JWT tokens, signup and login
    - admin: User administration, moderation, activity log
    - files: Local blob storage for uploads
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatcore.admin.router import logs_router, moderation_router, users_router as admin_users_router
from chatcore.auth.router import admin_router as admin_auth_router
from chatcore.auth.router import router as auth_router
from chatcore.cleanup import RetentionSweeper
from chatcore.config import get_config
from chatcore.conversations.router import router as conversations_router
from chatcore.errors import ChatError, chat_error_handler
from chatcore.files import BlobStorage
from chatcore.files.router import router as files_router
from chatcore.gateway.router import router as ws_router
from chatcore.messages.router import router as messages_router
from chatcore.store import ChatStore
from chatcore.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "multipart",
    "passlib",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chatcore.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = ChatStore.get_instance(config.storage.db_path)
    BlobStorage.get_instance(config.uploads.upload_dir)
    logger.info(f"Store ready at {config.storage.db_path}, uploads in {config.uploads.upload_dir}")

    sweeper = None
    if config.retention.enabled:
        sweeper = RetentionSweeper(store, config.retention)
        await sweeper.start()
    else:
        logger.info("Retention sweep disabled in config.")

    logger.info(f"Server running on http://{config.server.host}:{config.server.port}")

    yield  # Application runs here

    # Shutdown
    if sweeper is not None:
        await sweeper.stop()
    ChatStore.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chatcore API",
    description="Real-time chat core: presence, conversations, message delivery and receipts",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ChatError, chat_error_handler)

# Register all routers
app.include_router(ws_router)
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(admin_auth_router)
app.include_router(admin_users_router)
app.include_router(moderation_router)
app.include_router(logs_router)
app.include_router(files_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    server = get_config().server
    uvicorn.run(app, host=server.host, port=server.port)
