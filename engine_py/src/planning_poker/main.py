"""FastAPI main application for the planning poker backend"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, load_settings
from .connections import ConnectionTracker
from .constants import list_decks
from .registry import SessionRegistry
from .serialization import session_view
from .storage import JsonFileStore, MemoryStore
from .ws.server import RealtimeGateway, run_periodic

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> RealtimeGateway:
    if settings.persist:
        store = JsonFileStore(settings.sessions_file)
        store.ensure_writable()
    else:
        store = MemoryStore()
    registry = SessionRegistry(store, session_ttl=timedelta(hours=settings.session_ttl_hours))
    tracker = ConnectionTracker(stale_after=timedelta(seconds=settings.stale_connection_seconds))
    return RealtimeGateway(registry, tracker)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    gateway = build_gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Loading sessions from disk...")
        gateway.registry.load()
        tasks = [
            asyncio.create_task(run_periodic(
                settings.stale_sweep_seconds, gateway.sweep_stale_connections, "stale-connections")),
            asyncio.create_task(run_periodic(
                settings.expiry_sweep_seconds, gateway.sweep_expired_sessions, "expired-sessions")),
            asyncio.create_task(run_periodic(
                settings.save_interval_seconds, gateway.registry.save, "save-sessions")),
            asyncio.create_task(run_periodic(
                settings.save_interval_seconds, gateway.log_stats, "stats")),
        ]
        logger.info("Planning poker server is ready to accept connections")
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Server shutting down, saving sessions...")
            gateway.registry.save()

    app = FastAPI(title="Planning Poker API", version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "sessions": len(gateway.registry),
            "connections": len(gateway.tracker),
        }

    @app.get("/api/decks")
    async def get_decks():
        return {key: deck.to_dict() for key, deck in list_decks().items()}

    @app.get("/api/version")
    async def get_version():
        return {"version": settings.app_version}

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        session = gateway.registry.get(session_id)
        if not session:
            raise HTTPException(status_code=404, detail="Session not found.")
        return session_view(session)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        connection_id = str(uuid.uuid4())
        reason = None
        await websocket.accept()
        await gateway.connect(connection_id, websocket, websocket.headers.get("user-agent", ""))
        try:
            while True:
                raw_data = await websocket.receive_text()
                await gateway.handle_raw(connection_id, raw_data)
        except WebSocketDisconnect as e:
            reason = e.code
        except Exception as e:
            logger.error(f"WebSocket error for {connection_id}: {e}")
            reason = str(e)
        finally:
            await gateway.disconnect(connection_id, reason)

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = load_settings()
    logging.basicConfig(level=_settings.log_level.upper())
    uvicorn.run(create_app(_settings), host=_settings.host, port=_settings.port)
