"""
Structured JSON event emission shared by the voice bridge, conversation services
and dashboard.

Every event uses the same envelope (ts, session_id, component, event_type,
severity, correlation_id, pii) and is written as one JSON line to stdout and kept
in the in-memory event store for the dashboard read API.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import event_store


class Component(str, Enum):
    """Event sources."""

    CAPTURE = "capture"
    TRANSCRIPT = "transcript"
    PLAYBACK = "playback"
    DIRECTOR = "director"
    CLAIMS = "claims"
    DASHBOARD = "dashboard"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


def transcript_pii(*fields: str) -> Dict[str, Any]:
    """PII marker for events that carry speaker labels or transcript text."""
    return {"contains_pii": True, "fields": list(fields), "handling": "none"}


class EventEmitter:
    """Emits structured JSON events for one component."""

    def __init__(self, component: Component, *, stream=None):
        self.component = component
        self._stream = stream

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        out = self._stream or sys.stdout
        out.write(json.dumps(event, ensure_ascii=False, default=str))
        out.write("\n")
        out.flush()

        event_store.store(event)
