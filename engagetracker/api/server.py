from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from engagetracker.api.routes import router
from engagetracker.config.settings import Settings, ensure_runtime_dirs, load_settings
from engagetracker.db.client import get_connection, init_schema
from engagetracker.engine.aggregator import refresh_all_engagement_scores
from engagetracker.engine.weights import load_weights
from engagetracker.errors import StorageUnavailable
from engagetracker.realtime import messages
from engagetracker.realtime.hub import BroadcastHub, encode_message
from engagetracker.utils.health import liveness, readiness
from engagetracker.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, conn: Any | None = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_connection = conn is None
        if owns_connection:
            ensure_runtime_dirs(settings)
            app.state.conn = get_connection(settings.sqlite_db_path)
            init_schema(app.state.conn)
        else:
            app.state.conn = conn
        app.state.weights = load_weights(settings.engagement_weights_path)
        refresh_all_engagement_scores(app.state.conn, app.state.weights)
        logger.info("EngageTracker API ready (weights=%s)", app.state.weights)
        yield
        if owns_connection:
            app.state.conn.close()

    app = FastAPI(title="EngageTracker API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.hub = BroadcastHub()

    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return liveness()

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        report = readiness(getattr(request.app.state, "conn", None), request.app.state.hub)
        return JSONResponse(status_code=200 if report["ok"] else 503, content=report)

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket) -> None:
        hub: BroadcastHub = websocket.app.state.hub
        await websocket.accept()
        hub.register(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                subscription = hub.handle_client_message(websocket, raw)
                if subscription is not None:
                    ack = messages.build_message(
                        messages.JOINED,
                        subscription.event_id,
                        participantId=subscription.participant_id,
                    )
                    await websocket.send_text(encode_message(ack))
        except WebSocketDisconnect:
            pass
        finally:
            hub.leave(websocket)

    app.include_router(router)
    return app


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    uvicorn.run(
        "engagetracker.api.server:create_app", factory=True, host=args.host, port=args.port
    )


if __name__ == "__main__":
    main()
