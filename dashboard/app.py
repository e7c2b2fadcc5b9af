"""
Dashboard server for one session.

create_app() builds the FastAPI app around a SessionContext. The worker runs it
in-process next to the LiveKit job with serve(); `python -m dashboard` runs it on
its own.
"""

from __future__ import annotations

from fastapi import FastAPI
import uvicorn

from logging_setup import get_logger, Component
from voice_bridge.session import SessionContext

from .api import router

logger = get_logger(Component.DASHBOARD)


def create_app(session: SessionContext) -> FastAPI:
    app = FastAPI(title="Call Director Dashboard")
    app.state.session = session
    app.include_router(router)
    return app


def build_server(session: SessionContext, host: str, port: int) -> uvicorn.Server:
    config = uvicorn.Config(
        create_app(session),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    return uvicorn.Server(config)


async def serve(session: SessionContext, host: str, port: int) -> None:
    """Serve until cancelled. A bind failure is logged, never raised."""
    server = build_server(session, host, port)
    logger.info("Dashboard starting", host=host, port=port, session_id=session.session_id)
    try:
        await server.serve()
    except (OSError, SystemExit) as e:
        # uvicorn exits the server with SystemExit when the port is taken
        logger.warning(
            "Dashboard unavailable; set DASHBOARD_PORT to a free port",
            host=host,
            port=port,
            error=str(e),
            error_type=type(e).__name__,
        )
