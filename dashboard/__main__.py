"""
Entry point for running the dashboard without a call.

Usage:
    python -m dashboard

Serves an idle session (nothing connected) on DASHBOARD_HOST:DASHBOARD_PORT.
"""
import asyncio
import os

from dotenv import load_dotenv

from logging_setup import setup_logging, get_logger, Component
from voice_bridge.config import BotConfig
from voice_bridge.session import SessionContext

from .app import serve


async def main() -> None:
    load_dotenv(".env_local", override=False)
    load_dotenv(".env", override=False)
    os.environ.setdefault("LIVEKIT_URL", "")
    os.environ.setdefault("LIVEKIT_API_KEY", "")
    os.environ.setdefault("LIVEKIT_API_SECRET", "")
    config = BotConfig.from_env()
    setup_logging(level=config.log_level, use_json=True)

    session = SessionContext.create(config, session_id="local")
    session.start()
    get_logger(Component.DASHBOARD).info("Idle session ready", session_id=session.session_id)
    try:
        await serve(session, config.dashboard_host, config.dashboard_port)
    finally:
        await session.aclose()


if __name__ == "__main__":
    asyncio.run(main())
