"""
Call director worker.

Joins a LiveKit room as a listener: transcribes every human participant's turns
into the session transcript, serves the operator dashboard and plays director
speech back into the room when nobody is talking.
"""
import asyncio
import os
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv
from livekit.agents import AutoSubscribe, JobContext, WorkerOptions, cli
from livekit.plugins import silero

from dashboard.app import serve as serve_dashboard
from logging_setup import get_logger, Component, setup_logging
from .config import get_config
from .context import build_dispatch_context
from .session import SessionContext
from .transport import LiveKitAudioSink, LiveKitVoiceTransport

# Load environment variables from .env_local / .env.local / .env (local dev convenience).
# Existing environment variables are never overridden.
root = Path(__file__).parent.parent
for name in (".env_local", ".env.local", ".env"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)

logger = get_logger(Component.SESSION)

# Prewarmed VAD (best-effort)
_VAD = None


def _load_vad():
    config = get_config()
    return silero.VAD.load(min_silence_duration=config.turn_silence_ms / 1000.0)


async def entrypoint(ctx: JobContext):
    """
    Called by the LiveKit Agents framework once per dispatched room.
    """
    await ctx.connect(auto_subscribe=AutoSubscribe.AUDIO_ONLY)

    config = get_config()
    dispatch_ctx = build_dispatch_context(
        room_name=ctx.room.name or "unknown",
        job_metadata=getattr(ctx.job, "metadata", None),
        default_host_identity=config.host_identity or None,
    )
    session_id = dispatch_ctx.session_id
    session_logger = logger.with_session(session_id)
    if dispatch_ctx.host_identity and dispatch_ctx.host_identity != config.host_identity:
        config = replace(config, host_identity=dispatch_ctx.host_identity)

    try:
        ctx.log_context_fields = {"room_name": ctx.room.name, "session_id": session_id}
    except AttributeError:
        session_logger.debug("Job log context not supported by this livekit-agents version")

    session_logger.debug(
        "Director bot starting",
        room=ctx.room.name,
        job_id=ctx.job.id,
        host_identity=config.host_identity or None,
    )

    session = SessionContext.create(config, session_id=session_id)
    session.start()
    session.receiver.ignore_identity(ctx.room.local_participant.identity)

    sink = await LiveKitAudioSink.publish(ctx.room, sample_rate=config.sample_rate, channels=config.channels)
    session.playback.attach(sink)

    vad = _VAD or _load_vad()
    transport = LiveKitVoiceTransport(
        ctx.room,
        session.receiver,
        vad,
        sample_rate=config.sample_rate,
        channels=config.channels,
        session_id=session_id,
    )
    transport.start()

    dashboard_task = asyncio.create_task(
        serve_dashboard(session, config.dashboard_host, config.dashboard_port)
    )

    def _on_disconnected(*_args) -> None:
        session_logger.info("Room disconnected; playback cleared")
        session.playback.detach()

    ctx.room.on("disconnected", _on_disconnected)

    async def _shutdown() -> None:
        dashboard_task.cancel()
        await transport.aclose()
        await session.aclose()
        session_logger.info("Director bot stopped", stats=session.stats.snapshot())

    ctx.add_shutdown_callback(_shutdown)
    session_logger.info(
        "Director bot ready",
        room=ctx.room.name,
        dashboard_port=config.dashboard_port,
        transcription=bool(config.deepgram_api_key),
        speech=bool(config.elevenlabs_api_key),
    )


def prewarm(_process):
    """
    Load the Silero model once per worker process.
    """
    global _VAD
    try:
        _VAD = _load_vad()
    except Exception as e:
        logger.warning("VAD prewarm failed; loading per job", error=str(e), error_type=type(e).__name__)
        _VAD = None


if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)

    cli.run_app(
        WorkerOptions(
            entrypoint_fnc=entrypoint,
            prewarm_fnc=prewarm,
            agent_name=os.getenv("LIVEKIT_AGENT_NAME", ""),
        )
    )
