"""Meeting repository -- async CRUD for meetings and transcript lines.

Provides MeetingRepository with the session_factory callable pattern:
every method opens its own short-lived AsyncSession, so the repository can
be shared between request handlers and background resolution tasks.

Writes that can be repeated by duplicate webhook deliveries are upserts
keyed by external_id (INSERT ... ON CONFLICT DO NOTHING, then overwrite), never blind inserts.
Database failures surface as PersistenceError.
"""

from __future__ import annotations

import functools
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbot.meetings.models import MeetingModel, TranscriptLineModel
from src.meetbot.meetings.schemas import (
    ArtifactUrls,
    BotStatus,
    Meeting,
    TranscriptFragment,
    TranscriptLine,
    timestamp_seconds,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PersistenceError(Exception):
    """A storage read or write failed."""


def _wrap_db_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("repository.db_error", operation=func.__name__, error=str(exc))
            raise PersistenceError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        external_id=model.external_id,
        meeting_url=model.meeting_url,
        bot_id=model.bot_id,
        recording_id=model.recording_id,
        video_url=model.video_url,
        audio_url=model.audio_url,
        status=BotStatus(model.status),
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_line(model: TranscriptLineModel) -> TranscriptLine:
    """Convert TranscriptLineModel to TranscriptLine schema."""
    return TranscriptLine(
        id=model.id,
        meeting_id=model.meeting_id,
        text=model.text,
        speaker=model.speaker,
        timestamp=model.timestamp,
        is_partial=model.is_partial,
        created_at=model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async persistence for meetings and their transcript lines.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def _find(self, session: AsyncSession, external_id: str) -> MeetingModel | None:
        stmt = select(MeetingModel).where(MeetingModel.external_id == external_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_or_create(
        self, session: AsyncSession, external_id: str
    ) -> MeetingModel:
        # Safe under concurrent first writes for the same external_id
        stmt = (
            pg_insert(MeetingModel)
            .values(external_id=external_id, status=BotStatus.JOINING.value)
            .on_conflict_do_nothing(index_elements=["external_id"])
        )
        result = await session.execute(stmt)
        if result.rowcount:
            logger.info("repository.meeting_created_on_upsert", external_id=external_id)
        model = await self._find(session, external_id)
        if model is None:
            raise PersistenceError(f"meeting {external_id} vanished during upsert")
        return model

    # ── Meetings ─────────────────────────────────────────────────────────

    @_wrap_db_errors
    async def create_meeting(
        self, external_id: str, meeting_url: str | None = None
    ) -> Meeting:
        """Create a meeting record for a new join request.

        Args:
            external_id: Caller-generated tracking id (unique).
            meeting_url: Call URL the bot is sent to.

        Returns:
            Meeting with all persisted fields.
        """
        async for session in self._session_factory():
            model = MeetingModel(
                external_id=external_id,
                meeting_url=meeting_url,
                status=BotStatus.JOINING.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    @_wrap_db_errors
    async def get_meeting(self, external_id: str) -> Meeting | None:
        """Get a meeting by its tracking id."""
        async for session in self._session_factory():
            model = await self._find(session, external_id)
            if model is None:
                return None
            return _model_to_meeting(model)

    @_wrap_db_errors
    async def get_meeting_by_bot_id(self, bot_id: str) -> Meeting | None:
        """Get a meeting by its Recall.ai bot id.

        Lifecycle webhooks only carry the bot id, so this is the lookup
        used before artifact resolution.
        """
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(MeetingModel.bot_id == bot_id)
                .order_by(MeetingModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    @_wrap_db_errors
    async def get_latest_meeting(self) -> Meeting | None:
        """Get the most recently created meeting."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .order_by(MeetingModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    @_wrap_db_errors
    async def set_bot_id(self, external_id: str, bot_id: str) -> Meeting:
        """Attach the vendor bot id to a meeting."""
        async for session in self._session_factory():
            model = await self._find_or_create(session, external_id)
            model.bot_id = bot_id
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    @_wrap_db_errors
    async def update_status(self, external_id: str, status: BotStatus) -> Meeting:
        """Record the latest bot lifecycle status."""
        async for session in self._session_factory():
            model = await self._find_or_create(session, external_id)
            model.status = status.value
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    @_wrap_db_errors
    async def save_artifacts(
        self, external_id: str, recording_id: str, urls: ArtifactUrls
    ) -> Meeting:
        """Upsert resolved recording id and media URLs (last write wins).

        Args:
            external_id: Meeting tracking id.
            recording_id: Vendor recording id.
            urls: Resolved video/audio URLs; absent values are written as NULL.

        Returns:
            Updated Meeting.
        """
        async for session in self._session_factory():
            model = await self._find_or_create(session, external_id)
            model.recording_id = recording_id
            model.video_url = urls.video_url
            model.audio_url = urls.audio_url
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    # ── Transcript Lines ─────────────────────────────────────────────────

    @_wrap_db_errors
    async def add_transcript_line(
        self, external_id: str, fragment: TranscriptFragment
    ) -> TranscriptLine:
        """Append one transcript line to a meeting."""
        async for session in self._session_factory():
            meeting = await self._find_or_create(session, external_id)
            model = TranscriptLineModel(
                meeting_id=meeting.id,
                text=fragment.text,
                speaker=fragment.speaker,
                timestamp=fragment.timestamp,
                timestamp_seconds=timestamp_seconds(fragment.timestamp),
                is_partial=fragment.is_partial,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_line(model)

    @_wrap_db_errors
    async def list_transcript_lines(self, external_id: str) -> list[TranscriptLine]:
        """Get a meeting's transcript lines in display order."""
        async for session in self._session_factory():
            stmt = (
                select(TranscriptLineModel)
                .join(MeetingModel, TranscriptLineModel.meeting_id == MeetingModel.id)
                .where(MeetingModel.external_id == external_id)
                .order_by(
                    TranscriptLineModel.timestamp_seconds.asc().nulls_last(),
                    TranscriptLineModel.created_at.asc(),
                )
            )
            result = await session.execute(stmt)
            return [_model_to_line(m) for m in result.scalars().all()]
        return []
