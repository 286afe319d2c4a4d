"""Shared test fixtures.

Provides:
- InMemoryMeetingRepository: dict-backed stand-in for MeetingRepository
  with the same async interface and upsert semantics
- Test settings (SimpleNamespace) with short poll budgets
- A FakeRecall vendor double driven by per-call scripts
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.schemas import (
    ArtifactUrls,
    BotStatus,
    Meeting,
    TranscriptFragment,
    TranscriptLine,
    timestamp_seconds,
)


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for tests.

    Writes keyed by external_id find-or-create, exactly like the SQL
    repository, so duplicate deliveries never create duplicate sessions.
    """

    def __init__(self) -> None:
        self.meetings: dict[str, Meeting] = {}
        self.lines: dict[str, list[TranscriptLine]] = {}
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        # Strictly increasing so "latest" and line ordering are deterministic
        self._clock += timedelta(milliseconds=1)
        return self._clock

    def _find_or_create(self, external_id: str) -> Meeting:
        meeting = self.meetings.get(external_id)
        if meeting is None:
            now = self._now()
            meeting = Meeting(external_id=external_id, created_at=now, updated_at=now)
            self.meetings[external_id] = meeting
        return meeting

    def _update(self, external_id: str, **fields) -> Meeting:
        meeting = self._find_or_create(external_id)
        updated = meeting.model_copy(update={**fields, "updated_at": self._now()})
        self.meetings[external_id] = updated
        return updated

    async def create_meeting(self, external_id: str, meeting_url: str | None = None) -> Meeting:
        now = self._now()
        meeting = Meeting(
            external_id=external_id,
            meeting_url=meeting_url,
            created_at=now,
            updated_at=now,
        )
        self.meetings[external_id] = meeting
        return meeting

    async def get_meeting(self, external_id: str) -> Meeting | None:
        return self.meetings.get(external_id)

    async def get_meeting_by_bot_id(self, bot_id: str) -> Meeting | None:
        matches = [m for m in self.meetings.values() if m.bot_id == bot_id]
        return max(matches, key=lambda m: m.created_at) if matches else None

    async def get_latest_meeting(self) -> Meeting | None:
        if not self.meetings:
            return None
        return max(self.meetings.values(), key=lambda m: m.created_at)

    async def set_bot_id(self, external_id: str, bot_id: str) -> Meeting:
        return self._update(external_id, bot_id=bot_id)

    async def update_status(self, external_id: str, status: BotStatus) -> Meeting:
        return self._update(external_id, status=status)

    async def save_artifacts(
        self, external_id: str, recording_id: str, urls: ArtifactUrls
    ) -> Meeting:
        return self._update(
            external_id,
            recording_id=recording_id,
            video_url=urls.video_url,
            audio_url=urls.audio_url,
        )

    async def add_transcript_line(
        self, external_id: str, fragment: TranscriptFragment
    ) -> TranscriptLine:
        meeting = self._find_or_create(external_id)
        line = TranscriptLine(
            meeting_id=meeting.id,
            text=fragment.text,
            speaker=fragment.speaker,
            timestamp=fragment.timestamp,
            is_partial=fragment.is_partial,
            created_at=self._now(),
        )
        self.lines.setdefault(external_id, []).append(line)
        return line

    async def list_transcript_lines(self, external_id: str) -> list[TranscriptLine]:
        lines = self.lines.get(external_id, [])
        # Same order as the SQL repository: numeric key, NULLs last, then arrival
        def key(line: TranscriptLine):
            seconds = timestamp_seconds(line.timestamp)
            return (seconds is None, seconds or 0.0, line.created_at)

        return sorted(lines, key=key)


class FakeRecall:
    """Scripted Recall.ai double.

    Args:
        recordings: Successive ``recordings`` lists returned by get_bot;
            the last entry repeats once the script runs out.
        shortcuts: Value returned by get_recording_shortcuts.
        media: Per media type, successive ``url`` values for
            get_media_by_type; the last entry repeats.
    """

    def __init__(
        self,
        recordings: list[list[dict]] | None = None,
        shortcuts: dict | None = None,
        media: dict[str, list[str | None]] | None = None,
    ) -> None:
        self._recordings = recordings or [[]]
        self._shortcuts = shortcuts if shortcuts is not None else {}
        self._media = media or {}
        self.get_bot_calls = 0
        self.shortcut_calls = 0
        self.media_calls: dict[str, int] = {"video_mixed": 0, "audio_mixed": 0}
        self.create_bot = AsyncMock(return_value={"id": "bot-1"})

    async def get_bot(self, bot_id: str) -> dict:
        idx = min(self.get_bot_calls, len(self._recordings) - 1)
        self.get_bot_calls += 1
        return {"id": bot_id, "recordings": self._recordings[idx]}

    async def get_recording_shortcuts(self, recording_id: str) -> dict:
        self.shortcut_calls += 1
        return {"video_url": None, "audio_url": None, **self._shortcuts}

    async def get_media_by_type(self, recording_id: str, media_type: str) -> dict:
        script = self._media.get(media_type) or [None]
        idx = min(self.media_calls[media_type], len(script) - 1)
        self.media_calls[media_type] += 1
        return {"url": script[idx]}


@pytest.fixture
def memory_repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def test_settings() -> SimpleNamespace:
    """Settings with small poll budgets and no webhook token."""
    return SimpleNamespace(
        MEETING_BOT_NAME="Test Notetaker",
        RECALL_AI_WEBHOOK_TOKEN="",
        webhook_url="https://api.example.com/api/v1/meetings/webhook",
        WEBHOOK_ACK_TIMEOUT_SECONDS=5.0,
        RECORDING_POLL_INTERVAL_SECONDS=3.0,
        RECORDING_POLL_MAX_ATTEMPTS=4,
        ARTIFACT_POLL_INTERVAL_SECONDS=5.0,
        ARTIFACT_POLL_MAX_ATTEMPTS=3,
    )


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Sleep replacement that returns immediately and records delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def make_recall():
    """Factory for scripted FakeRecall instances."""
    return FakeRecall
