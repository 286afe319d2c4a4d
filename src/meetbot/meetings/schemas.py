"""Pydantic v2 schemas for the meetings domain.

Defines the data contracts shared by the Recall.ai client, artifact
resolver, webhook ingestion, repository, and HTTP API.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

UNKNOWN_SPEAKER = "Unknown speaker"


def timestamp_seconds(timestamp: str | None) -> float | None:
    """Numeric ordering key for a transcript timestamp.

    Relative offsets ("12.5") map to seconds and ISO-8601 absolute stamps to
    epoch seconds. Anything else has no key and sorts after keyed lines.
    """
    if timestamp is None:
        return None
    try:
        value = float(timestamp)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        value = parsed.timestamp()
    return value if math.isfinite(value) else None


# ── Enums ────────────────────────────────────────────────────────────────────


class BotStatus(str, Enum):
    """Recall.ai bot lifecycle codes delivered by bot.status_change."""

    JOINING = "joining"
    IN_WAITING_ROOM = "in_waiting_room"
    IN_CALL_NOT_RECORDING = "in_call_not_recording"
    IN_CALL_RECORDING = "in_call_recording"
    CALL_ENDED = "call_ended"
    DONE = "done"
    FATAL = "fatal"

    @property
    def is_terminal(self) -> bool:
        return self in (BotStatus.DONE, BotStatus.FATAL)


class WebhookEventType(str, Enum):
    """Inbound event names handled by ingestion."""

    TRANSCRIPT_DATA = "transcript.data"
    TRANSCRIPT_PARTIAL_DATA = "transcript.partial_data"
    BOT_STATUS_CHANGE = "bot.status_change"


class MediaKind(str, Enum):
    """Downloadable artifact kinds and their Recall.ai media type names."""

    VIDEO = "video_mixed"
    AUDIO = "audio_mixed"


# ── Transcript Models ────────────────────────────────────────────────────────


class TranscriptFragment(BaseModel):
    """Normalised transcript webhook payload, also the relay broadcast body."""

    external_id: str | None = None
    text: str
    speaker: str = UNKNOWN_SPEAKER
    timestamp: str | None = None
    is_partial: bool = False


class TranscriptLine(BaseModel):
    """A persisted transcript line."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    meeting_id: uuid.UUID
    text: str
    speaker: str = UNKNOWN_SPEAKER
    timestamp: str | None = None
    is_partial: bool = False
    created_at: datetime


# ── Artifact Models ──────────────────────────────────────────────────────────


class ArtifactUrls(BaseModel):
    """Resolved download URLs; either may be absent."""

    video_url: str | None = None
    audio_url: str | None = None


class ArtifactResolution(ArtifactUrls):
    """Outcome of a full resolution run for one bot."""

    recording_id: str | None = None

    @property
    def ready(self) -> bool:
        return self.recording_id is not None


# ── Meeting Models ───────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """A tracked call/recording session."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    external_id: str
    meeting_url: str | None = None
    bot_id: str | None = None
    recording_id: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    status: BotStatus = BotStatus.JOINING
    created_at: datetime
    updated_at: datetime


# ── Request Models ───────────────────────────────────────────────────────────


class JoinRequest(BaseModel):
    """Request schema for sending a bot into a call."""

    meeting_url: str = Field(min_length=1)
    bot_name: str | None = None
