from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ai import Analyzer, GraniteClient
from config import Settings, get_settings
from connection_manager import Broadcaster, ConnectionRegistry
from protocol import SessionHandler
from room_store import RoomStore
from routes import rooms, ws

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def create_app(settings: Optional[Settings] = None, analyzer: Optional[Analyzer] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    store = RoomStore(eviction_seconds=settings.room_eviction_seconds)
    broadcaster = Broadcaster()
    registry = ConnectionRegistry(store, broadcaster)
    handler = SessionHandler(
        store=store,
        registry=registry,
        broadcaster=broadcaster,
        analyzer=analyzer or GraniteClient.from_settings(settings),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("IdeaSynergy server ready (websocket path /ws)")
        yield
        logger.info("Shutting down server...")
        await handler.close()
        store.close()

    app = FastAPI(title="IdeaSynergy API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.handler = handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request, call_next):
        # Simple request logging
        logger.info("Request: %s %s", request.method, request.url)
        return await call_next(request)

    # Include Routers
    app.include_router(rooms.status_router)
    app.include_router(rooms.router)
    app.include_router(ws.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        # Transport-level ping; a missed pong surfaces as a websocket disconnect
        ws_ping_interval=settings.heartbeat_interval,
        ws_ping_timeout=settings.heartbeat_timeout,
    )
