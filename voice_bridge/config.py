"""
Bot configuration.

Loads platform credentials, external service settings and capture/playback timings
from environment variables.
"""
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _parse_int_env(key: str, default: int, min_value: Optional[int] = None) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.
    Values below `min_value` fall back to the default.

    Handles cases like:
    - "500  # comment" -> 500
    - "500" -> 500
    - None -> default
    """
    value = os.environ.get(key)
    if not value:
        return default

    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    if not value:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default
    if min_value is not None and parsed < min_value:
        return default
    return parsed


def _parse_bool_env(key: str, default: bool) -> bool:
    value = os.environ.get(key)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_list_env(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = os.environ.get(key)
    if value is None:
        return default
    items = tuple(part.strip() for part in value.split(",") if part.strip())
    return items or default


@dataclass
class BotConfig:
    """Call director bot configuration."""

    # LiveKit
    livekit_url: str
    livekit_api_key: str
    livekit_api_secret: str

    # Deepgram (transcription). Empty key disables transcription.
    deepgram_api_key: str = ""
    deepgram_model: str = "nova-2"
    min_audio_ms: int = 1500

    # ElevenLabs (speech synthesis). Empty key disables speech.
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    ffmpeg_path: str = "ffmpeg"

    # Moddit text services (director suggestions, fact-checks, claims)
    moddit_base_url: str = "https://api.moddit.io"
    moddit_session_id: str = "1234"
    moddit_api_key: str = ""
    context_messages: int = 20
    suggestion_interval_sec: int = 30
    speak_suggestions: bool = False
    claim_trigger_chars: int = 0

    # Host resolution and trigger phrases
    host_identity: str = ""
    host_label: str = "Host"
    trigger_phrases: Tuple[str, ...] = ("yeah",)

    # Audio format handed to transcription (16-bit PCM)
    sample_rate: int = 48000
    channels: int = 1
    frame_size: int = 960  # samples per channel, 20 ms at 48 kHz

    # Turn capture
    turn_silence_ms: int = 500
    max_turn_ms: int = 45000

    # Playback scheduling
    playback_poll_ms: int = 400
    playback_grace_ms: int = 500

    # Files
    session_log_dir: str = "logs"
    tts_audio_dir: str = "audio"
    clips_dir: str = "clips"

    # Dashboard
    dashboard_host: str = "0.0.0.0"
    dashboard_port: int = 3000

    log_level: str = field(default="INFO")

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        return cls(
            livekit_url=os.environ["LIVEKIT_URL"],
            livekit_api_key=os.environ["LIVEKIT_API_KEY"],
            livekit_api_secret=os.environ["LIVEKIT_API_SECRET"],
            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY", "").strip(),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", "nova-2"),
            min_audio_ms=_parse_int_env("DEEPGRAM_MIN_AUDIO_MS", default=1500),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY", "").strip(),
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID") or "21m00Tcm4TlvDq8ikWAM",
            ffmpeg_path=(os.environ.get("FFMPEG_PATH") or "ffmpeg").strip().strip('"').strip("'"),
            moddit_base_url=os.environ.get("MODDIT_API_URL", "https://api.moddit.io"),
            moddit_session_id=os.environ.get("MODDIT_SESSION_ID", "1234"),
            moddit_api_key=os.environ.get("MODDIT_API_KEY", ""),
            context_messages=_parse_int_env("MODDIT_CONTEXT_MESSAGES", default=20, min_value=1),
            suggestion_interval_sec=_parse_int_env("MODDIT_SUGGESTION_INTERVAL_SEC", default=30),
            speak_suggestions=_parse_bool_env("SPEAK_SUGGESTIONS", default=False),
            claim_trigger_chars=_parse_int_env("CLAIM_TRIGGER_CHARS", default=0),
            host_identity=os.environ.get("HOST_IDENTITY", "").strip(),
            host_label=os.environ.get("HOST_LABEL", "Host"),
            trigger_phrases=_parse_list_env("DIRECTOR_TRIGGER_PHRASES", default=("yeah",)),
            sample_rate=_parse_int_env("AUDIO_SAMPLE_RATE", default=48000),
            channels=_parse_int_env("AUDIO_CHANNELS", default=1),
            frame_size=_parse_int_env("AUDIO_FRAME_SIZE", default=960),
            turn_silence_ms=_parse_int_env("TURN_SILENCE_MS", default=500),
            max_turn_ms=_parse_int_env("TURN_MAX_DURATION_MS", default=45000),
            playback_poll_ms=_parse_int_env("PLAYBACK_POLL_MS", default=400),
            playback_grace_ms=_parse_int_env("PLAYBACK_GRACE_MS", default=500),
            session_log_dir=os.environ.get("SESSION_LOG_DIR", "logs"),
            tts_audio_dir=os.environ.get("TTS_AUDIO_DIR", "audio"),
            clips_dir=os.environ.get("CLIPS_DIR", "clips"),
            dashboard_host=os.environ.get("DASHBOARD_HOST", "0.0.0.0"),
            dashboard_port=_parse_int_env("DASHBOARD_PORT", default=3000),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


def get_config() -> BotConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = BotConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[BotConfig] = None
