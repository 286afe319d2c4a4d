"""Meeting persistence models -- sessions and their transcript lines.

Two SQLAlchemy models:
- MeetingModel: one recorded call, keyed by a caller-generated external_id
- TranscriptLineModel: one transcript fragment owned by exactly one meeting

Transcript lines are removed with their meeting (ON DELETE CASCADE); the
application itself never deletes meetings.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy import text as sa_text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.meetbot.core.database import Base


class MeetingModel(Base):
    """A call the bot was sent into.

    external_id is unique and is the key for every upsert. Recording and
    media URLs stay NULL until post-call artifact resolution succeeds.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        UniqueConstraint("external_id", name="uq_meetings_external_id"),
        Index("idx_meetings_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa_text("gen_random_uuid()"),
    )
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)
    meeting_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    bot_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    recording_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        default="joining",
        server_default=sa_text("'joining'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    transcript_lines: Mapped[list[TranscriptLineModel]] = relationship(
        back_populates="meeting",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TranscriptLineModel(Base):
    """Immutable transcript fragment as delivered by the real-time webhook."""

    __tablename__ = "transcript_lines"
    __table_args__ = (
        Index("idx_transcript_lines_meeting_ts", "meeting_id", "timestamp_seconds"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa_text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    speaker: Mapped[str] = mapped_column(String(200), nullable=False)
    timestamp: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Numeric ordering key derived from timestamp; NULL sorts last
    timestamp_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_partial: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=sa_text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    meeting: Mapped[MeetingModel] = relationship(back_populates="transcript_lines")
