"""
Dispatch context extraction.

LiveKit job metadata is a freeform string and is commonly JSON. This module:
- Parses job metadata JSON safely
- Resolves the session_id (metadata, then room name)
- Resolves the host identity (metadata overrides configuration)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class DispatchContext:
    """Context derived from the LiveKit dispatch for one session."""

    session_id: str
    room_name: str
    host_identity: Optional[str] = None
    metadata_raw: Optional[str] = None


def parse_job_metadata(metadata: Optional[str]) -> dict[str, Any]:
    """
    Parse JobContext.job.metadata.

    Returns {} if metadata is missing, not valid JSON, or not a JSON object.
    """
    if not metadata:
        return {}
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_session_id(*, room_name: str, job_metadata: Optional[str]) -> str:
    """
    Resolve the session_id.

    Priority:
    1) job metadata JSON key "session_id"
    2) room name
    """
    md = parse_job_metadata(job_metadata)
    return _clean_str(md.get("session_id")) or room_name or "unknown"


def build_dispatch_context(
    *,
    room_name: str,
    job_metadata: Optional[str],
    default_host_identity: Optional[str] = None,
) -> DispatchContext:
    md = parse_job_metadata(job_metadata)
    host = _clean_str(md.get("host_identity")) or _clean_str(default_host_identity)
    return DispatchContext(
        session_id=resolve_session_id(room_name=room_name, job_metadata=job_metadata),
        room_name=room_name,
        host_identity=host,
        metadata_raw=job_metadata,
    )
