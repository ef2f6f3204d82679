"""Duochat Backend Application.

This is the main entry point for the duochat backend service, a real-time
one-to-one chat server.

Modules:
    - chat: WebSocket sessions, room membership, presence, delivery, receipts
    - storage: DuckDB-backed participants, rooms and messages
    - auth: JWT access tokens
    - client: asyncio WebSocket client with pending-message tracking
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from duochat.chat.manager import manager
from duochat.chat.router import router as chat_router
from duochat.config import get_config
from duochat.storage.service import ChatStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in ("websockets", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in duochat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = ChatStore.get_instance(config.storage.db_path)
    logger.info(f"Chat storage ready at {store.db_path}")
    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port} "
        f"(send buffer={config.session.send_buffer_size})"
    )

    yield  # Application runs here

    # Shutdown
    await manager.shutdown()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Duochat API",
    description="Real-time one-to-one chat with presence and read receipts",
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

app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of connected participants.
    """
    return {"status": "ok", "online": len(manager.presence.online_ids())}


def run() -> None:
    """Run the server with uvicorn using the configured host and port."""
    config = get_config()
    uvicorn.run(
        "duochat.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    run()
