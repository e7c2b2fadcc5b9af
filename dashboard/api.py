"""
Dashboard HTTP API.

Operator surface for one live session:
- Feed: server-sent event stream of suggestion/factcheck/claim/topic/transcript cards
- Transcript: read and edit by position
- Director: suggestion, fact-check, claim extraction
- Playback: speak text, play a clip from the clips directory
- Session: stats, live-transcription toggle, topic, structured events

Text-service failures are reported in the response body (`error`, `category`),
not as HTTP errors, so the UI can show them next to the card.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from conversation.transcript import TranscriptEditError
from logging_setup import get_logger, Component
from observability.event_store import event_store
from voice_bridge.session import SessionContext

router = APIRouter(tags=["dashboard"])
logger = get_logger(Component.DASHBOARD)

KEEPALIVE_SECONDS = 15.0


def get_session(request: Request) -> SessionContext:
    return request.app.state.session


# --- Models ---


class TranscriptItem(BaseModel):
    index: int
    speaker: str
    text: str
    timestamp: int
    user_id: Optional[str] = None


class TranscriptResponse(BaseModel):
    entries: List[TranscriptItem]
    count: int


class TranscriptPatch(BaseModel):
    speaker: Optional[str] = Field(None, description="New speaker label")
    text: Optional[str] = Field(None, description="New text (must not be blank)")


class SuggestionResponse(BaseModel):
    suggestion: Optional[str] = None
    topic: Optional[str] = None
    error: Optional[str] = None
    category: Optional[str] = None


class FactCheckResponse(BaseModel):
    result: Optional[str] = None
    error: Optional[str] = None
    category: Optional[str] = None


class ClaimsResponse(BaseModel):
    claims: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    category: Optional[str] = None


class SpeakBody(BaseModel):
    text: str = Field(..., min_length=1, max_length=2500)
    voice_id: Optional[str] = None


class ClipBody(BaseModel):
    name: str = Field(..., min_length=1, description="File name inside the clips directory")


class QueuedResponse(BaseModel):
    queued: bool


class TranscriptionState(BaseModel):
    enabled: bool


class TopicBody(BaseModel):
    topic: str = Field(..., min_length=1)


class TopicResponse(BaseModel):
    topic: str
    history: List[Dict[str, Any]] = Field(default_factory=list)


def _topic_response(session: SessionContext) -> TopicResponse:
    return TopicResponse(
        topic=session.topics.current,
        history=[shift.to_dict() for shift in session.topics.history()],
    )


# --- Routes ---


@router.get("/health")
async def health(session: SessionContext = Depends(get_session)) -> dict:
    return {"status": "ok", "component": "dashboard", "session_id": session.session_id}


async def _card_stream(
    request: Request,
    session: SessionContext,
    follow: bool,
) -> AsyncIterator[str]:
    queue = session.feed.subscribe()
    try:
        while True:
            if not follow and queue.empty():
                break
            try:
                card = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(card, ensure_ascii=False)}\n\n"
    finally:
        session.feed.unsubscribe(queue)


@router.get("/events")
async def events(
    request: Request,
    follow: bool = Query(True, description="Keep the stream open for live cards"),
    session: SessionContext = Depends(get_session),
) -> StreamingResponse:
    """Server-sent events: recent cards first, then live ones."""
    return StreamingResponse(
        _card_stream(request, session, follow),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/transcript", response_model=TranscriptResponse)
async def get_transcript(session: SessionContext = Depends(get_session)) -> TranscriptResponse:
    entries = [
        TranscriptItem(index=i, **entry.to_dict())
        for i, entry in enumerate(session.transcript.get_full_log())
    ]
    return TranscriptResponse(entries=entries, count=len(entries))


@router.patch("/transcript/{index}", response_model=TranscriptItem)
async def edit_transcript(
    index: int,
    patch: TranscriptPatch,
    session: SessionContext = Depends(get_session),
) -> TranscriptItem:
    if patch.speaker is None and patch.text is None:
        raise HTTPException(status_code=400, detail="nothing to update")
    result = session.edit_transcript(index, speaker=patch.speaker, text=patch.text)
    if isinstance(result, TranscriptEditError):
        status = 404 if result.message == "index out of range" else 400
        raise HTTPException(status_code=status, detail=result.message)
    return TranscriptItem(index=index, **result.to_dict())


@router.post("/suggest", response_model=SuggestionResponse)
async def suggest(session: SessionContext = Depends(get_session)) -> SuggestionResponse:
    result = await session.director.request_suggestion()
    return SuggestionResponse(
        suggestion=result.text,
        topic=result.topic,
        error=result.error,
        category=result.category,
    )


@router.post("/fc", response_model=FactCheckResponse)
async def fact_check(session: SessionContext = Depends(get_session)) -> FactCheckResponse:
    result = await session.director.fact_check()
    return FactCheckResponse(result=result.text, error=result.error, category=result.category)


@router.post("/claims", response_model=ClaimsResponse)
async def extract_claims(session: SessionContext = Depends(get_session)) -> ClaimsResponse:
    result = await session.claims.extract()
    return ClaimsResponse(claims=result.claims, error=result.error, category=result.category)


@router.post("/speak", response_model=QueuedResponse)
async def speak(body: SpeakBody, session: SessionContext = Depends(get_session)) -> QueuedResponse:
    queued = session.director.speak_as_moderator(body.text, body.voice_id)
    if not queued:
        raise HTTPException(status_code=409, detail="not_connected")
    return QueuedResponse(queued=True)


@router.post("/clip", response_model=QueuedResponse)
async def play_clip(body: ClipBody, session: SessionContext = Depends(get_session)) -> QueuedResponse:
    path = session.resolve_clip(body.name)
    if path is None:
        raise HTTPException(status_code=400, detail="invalid_clip")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="clip_not_found")
    if not session.playback.play_clip(str(path)):
        raise HTTPException(status_code=409, detail="not_connected")
    logger.info("Clip queued", clip=body.name, session_id=session.session_id)
    return QueuedResponse(queued=True)


@router.get("/stats")
async def stats(session: SessionContext = Depends(get_session)) -> Dict[str, int]:
    return session.stats.snapshot()


@router.get("/transcription", response_model=TranscriptionState)
async def get_transcription(session: SessionContext = Depends(get_session)) -> TranscriptionState:
    return TranscriptionState(enabled=session.transcription_enabled)


@router.post("/transcription", response_model=TranscriptionState)
async def set_transcription(
    body: TranscriptionState,
    session: SessionContext = Depends(get_session),
) -> TranscriptionState:
    return TranscriptionState(enabled=session.set_transcription_enabled(body.enabled))


@router.get("/topic", response_model=TopicResponse)
async def get_topic(session: SessionContext = Depends(get_session)) -> TopicResponse:
    return _topic_response(session)


@router.post("/topic", response_model=TopicResponse)
async def set_topic(body: TopicBody, session: SessionContext = Depends(get_session)) -> TopicResponse:
    if not session.topics.set_topic(body.topic):
        raise HTTPException(status_code=400, detail="topic must not be blank")
    return _topic_response(session)


@router.get("/sessions/{session_id}/events")
async def get_session_events(
    session_id: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type; a trailing '.' matches a prefix"),
    component: Optional[str] = Query(None, description="Filter by component"),
    min_severity: Optional[str] = Query(None, pattern="^(debug|info|warn|error)$"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """Structured events emitted for a session, oldest first."""
    events = event_store.query(
        session_id=session_id,
        event_type=event_type,
        component=component,
        min_severity=min_severity,
        limit=limit,
    )
    return {"session_id": session_id, "events": events, "count": len(events)}
