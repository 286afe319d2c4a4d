"""Meetings API endpoints -- join, session view, artifact retrigger, webhook.

The join endpoint sends a Recall.ai bot into a call; the session endpoints
return the tracked session with its ordered transcript and post-call media
URLs; the webhook endpoint is Recall.ai's callback for real-time transcript
and bot lifecycle events.

The webhook always answers 200 so the vendor never retries a delivery
because of our own processing errors.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.meetbot.meetings.bot.recall_client import RecallAPIError
from src.meetbot.meetings.repository import PersistenceError
from src.meetbot.meetings.schemas import (
    JoinRequest,
    Meeting,
    TranscriptLine,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class JoinResponse(BaseModel):
    """Response for a join request."""

    external_id: str
    bot_id: str


class TranscriptLineResponse(BaseModel):
    """One transcript line."""

    text: str
    speaker: str
    timestamp: str | None = None
    is_partial: bool = False
    created_at: str


class MeetingResponse(BaseModel):
    """Session with its transcript and media URLs, datetimes as ISO strings."""

    external_id: str
    meeting_url: str | None = None
    bot_id: str | None = None
    status: str
    recording_id: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    transcript: list[TranscriptLineResponse] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


class RetriggerResponse(BaseModel):
    """Result of a manual artifact resolution run."""

    external_id: str
    status: str
    recording_id: str | None = None
    video_url: str | None = None
    audio_url: str | None = None


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_meeting_repository(request: Request) -> Any:
    """Retrieve MeetingRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "meeting_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting repository not initialized",
        )
    return repo


def _get_bot_manager(request: Request) -> Any:
    """Retrieve BotManager from app.state, 503 if not available."""
    bot_mgr = getattr(request.app.state, "bot_manager", None)
    if bot_mgr is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bot manager not initialized (RECALL_AI_API_KEY not set?)",
        )
    return bot_mgr


def _get_ingestor(request: Request) -> Any:
    """Retrieve EventIngestor from app.state, 503 if not available."""
    ingestor = getattr(request.app.state, "event_ingestor", None)
    if ingestor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event ingestor not initialized",
        )
    return ingestor


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _line_to_response(line: TranscriptLine) -> TranscriptLineResponse:
    return TranscriptLineResponse(
        text=line.text,
        speaker=line.speaker,
        timestamp=line.timestamp,
        is_partial=line.is_partial,
        created_at=line.created_at.isoformat(),
    )


def _meeting_to_response(m: Meeting, lines: list[TranscriptLine]) -> MeetingResponse:
    """Convert Meeting schema plus its lines to MeetingResponse."""
    return MeetingResponse(
        external_id=m.external_id,
        meeting_url=m.meeting_url,
        bot_id=m.bot_id,
        status=m.status.value if hasattr(m.status, "value") else str(m.status),
        recording_id=m.recording_id,
        video_url=m.video_url,
        audio_url=m.audio_url,
        transcript=[_line_to_response(line) for line in lines],
        created_at=m.created_at.isoformat() if m.created_at else None,
        updated_at=m.updated_at.isoformat() if m.updated_at else None,
    )


async def _session_view(repo: Any, meeting: Meeting) -> MeetingResponse:
    lines = await repo.list_transcript_lines(meeting.external_id)
    return _meeting_to_response(meeting, lines)


# ── REST Endpoints ───────────────────────────────────────────────────────────


@router.post("/join", response_model=JoinResponse)
async def join_meeting(body: JoinRequest, request: Request) -> JoinResponse:
    """Create a session and send a Recall.ai bot into the call."""
    bot_mgr = _get_bot_manager(request)
    try:
        external_id, bot_id = await bot_mgr.create_meeting_bot(
            body.meeting_url, bot_name=body.bot_name
        )
    except RecallAPIError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Recall.ai rejected the join request (status={exc.status_code})",
        ) from exc
    return JoinResponse(external_id=external_id, bot_id=bot_id)


@router.get("/latest", response_model=MeetingResponse)
async def get_latest_meeting(request: Request) -> MeetingResponse:
    """Most recent session with its transcript and media URLs."""
    repo = _get_meeting_repository(request)
    meeting = await repo.get_latest_meeting()
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No meetings yet",
        )
    return await _session_view(repo, meeting)


@router.get("/{external_id}", response_model=MeetingResponse)
async def get_meeting(external_id: str, request: Request) -> MeetingResponse:
    """Get a session by tracking id."""
    repo = _get_meeting_repository(request)
    meeting = await repo.get_meeting(external_id)
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {external_id}",
        )
    return await _session_view(repo, meeting)


@router.post("/{external_id}/artifacts/retrigger", response_model=RetriggerResponse)
async def retrigger_artifacts(external_id: str, request: Request) -> RetriggerResponse:
    """Re-run artifact resolution for a session and wait for the result.

    Same code path as the ``done`` webhook; results overwrite whatever a
    previous run stored.
    """
    repo = _get_meeting_repository(request)
    ingestor = _get_ingestor(request)

    meeting = await repo.get_meeting(external_id)
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {external_id}",
        )
    if not meeting.bot_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Meeting has no bot yet: {external_id}",
        )

    logger.info("meetings.retrigger", external_id=external_id, bot_id=meeting.bot_id)
    try:
        resolution = await ingestor.process_artifacts(meeting.bot_id, external_id)
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not store resolved artifacts",
        ) from exc
    return RetriggerResponse(
        external_id=external_id,
        status="ok" if resolution.ready else "not_ready",
        recording_id=resolution.recording_id,
        video_url=resolution.video_url,
        audio_url=resolution.audio_url,
    )


# ── Webhook ──────────────────────────────────────────────────────────────────


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    external_id: str | None = Query(default=None),
    token: str | None = Query(default=None),
) -> dict:
    """Recall.ai webhook receiver.

    Receives bot lifecycle events and real-time transcript data and routes
    them to EventIngestor.handle_event. Returns 200 OK always.

    When RECALL_AI_WEBHOOK_TOKEN is configured, the request must carry it
    as the X-Recall-Token header or the ``token`` query parameter.
    """
    try:
        payload = await request.json()
    except Exception:
        logger.warning("webhook.invalid_json")
        return {"status": "ok"}

    if not isinstance(payload, dict):
        logger.warning("webhook.invalid_payload")
        return {"status": "ok"}

    event_type = payload.get("event", payload.get("type", ""))

    webhook_token = getattr(
        getattr(request.app.state, "settings", None),
        "RECALL_AI_WEBHOOK_TOKEN",
        None,
    )
    if webhook_token:
        request_token = request.headers.get("X-Recall-Token") or token or ""
        if request_token != webhook_token:
            logger.warning("webhook.invalid_token", event_type=event_type)
            return {"status": "ok"}

    ingestor = getattr(request.app.state, "event_ingestor", None)
    if ingestor is None:
        logger.warning("webhook.no_ingestor", event_type=event_type)
        return {"status": "ok"}

    try:
        await ingestor.handle_event(payload, external_id=external_id)
    except Exception:
        logger.warning("webhook.handler_error", event_type=event_type, exc_info=True)

    return {"status": "ok"}
