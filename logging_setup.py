"""
Structured logging for the call director bot.

The voice bridge, the conversation services and the dashboard all log through
StructuredLogger: one JSON object per line on stdout, tagged with the component
and, when known, the session (room) ID. Keyword arguments become JSON fields.

Speaker labels and transcript text are the product of this system and may be
logged, but only through info_pii()/debug_pii(), which keep them in a separate
`pii` object so log shippers can drop or mask that one field.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class Component(str, Enum):
    """Log sources."""
    SESSION = "session"
    CAPTURE = "capture"
    TRANSCRIPT = "transcript"
    PLAYBACK = "playback"
    DIRECTOR = "director"
    CLAIMS = "claims"
    DASHBOARD = "dashboard"
    TRANSPORT = "transport"
    TEXT_SERVICES = "text_services"
    STT = "stt"
    TTS = "tts"


# LogRecord attributes that are never copied into the JSON payload.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
    "component", "session_id", "message",
})

# Chatty third-party loggers capped at WARNING by setup_logging().
QUIET_LOGGERS = ("livekit", "livekit.agents", "aiohttp.access", "uvicorn.access", "httpx")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:
    timestamp, severity, component, message, session_id (if bound), extra fields,
    and the formatted traceback under `exception`.

    Records from loggers that do not go through StructuredLogger (livekit, uvicorn)
    get component "unknown".
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        session_id = getattr(record, "session_id", None)
        if session_id:
            log_data["session_id"] = session_id

        log_data.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS
        )
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Component-tagged logger.

        logger = get_logger(Component.CAPTURE, session_id="room-1")
        logger.info("Turn started", participant_id="alice")
        logger.info_pii("Transcript appended", speaker="Alice", text="hello")
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(self, level: int, message: str, pii: Optional[Dict[str, Any]] = None, **fields):
        exc_info = fields.pop("exc_info", None)
        extra: Dict[str, Any] = {"component": self.component, **fields}
        if self.session_id:
            extra["session_id"] = self.session_id
        if pii:
            extra["pii"] = pii
        self.logger.log(level, message, exc_info=exc_info, stacklevel=3, extra=extra)

    def debug(self, message: str, **fields):
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self._log(logging.ERROR, message, **fields)

    def critical(self, message: str, **fields):
        self._log(logging.CRITICAL, message, **fields)

    def exception(self, message: str, **fields):
        """error() with the active exception's traceback attached."""
        fields.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **fields)

    def info_pii(self, message: str, **pii_fields):
        self._log(logging.INFO, message, pii=pii_fields)

    def debug_pii(self, message: str, **pii_fields):
        self._log(logging.DEBUG, message, pii=pii_fields)

    def with_session(self, session_id: str) -> "StructuredLogger":
        """Same component and underlying logger, bound to `session_id`."""
        return StructuredLogger(self.component, session_id=session_id, logger_name=self.logger.name)


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    include_timestamp: bool = True,
    quiet: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """
    Configure the root logger once at process start (worker or dashboard).

    Args:
        level: Root level name (DEBUG, INFO, ...); unknown names fall back to INFO
        use_json: JSONFormatter, or a plain text line for local debugging
        include_timestamp: Prefix plain-text lines with asctime
        quiet: Logger names capped at WARNING
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        format_str = "%(levelname)s - %(name)s - %(message)s"
        if include_timestamp:
            format_str = "%(asctime)s - " + format_str
        console_handler.setFormatter(logging.Formatter(format_str))
    root_logger.addHandler(console_handler)

    root_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(root_level)
    for name in quiet:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def get_logger(component: str | Component, session_id: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(component, session_id=session_id)
