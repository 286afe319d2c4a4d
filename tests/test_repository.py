"""Unit tests for MeetingRepository with a mocked AsyncSession.

Covers model-to-schema conversion, the ON CONFLICT upsert used by every
external_id-keyed write, transcript line storage and ordering, and the
PersistenceError wrapping of SQLAlchemy errors. Statements are compiled
against the PostgreSQL dialect so the emitted SQL can be asserted.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from src.meetbot.meetings.models import MeetingModel, TranscriptLineModel
from src.meetbot.meetings.repository import (
    MeetingRepository,
    PersistenceError,
    _model_to_meeting,
)
from src.meetbot.meetings.schemas import (
    ArtifactUrls,
    BotStatus,
    TranscriptFragment,
    timestamp_seconds,
)


def _stored_model(**overrides) -> MeetingModel:
    model = MeetingModel(
        id=uuid.uuid4(),
        external_id="T1",
        meeting_url="https://zoom.us/j/123",
        bot_id="bot-1",
        status="joining",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    for key, value in overrides.items():
        setattr(model, key, value)
    return model


def _stored_line(meeting_id: uuid.UUID, text: str, timestamp: str | None) -> TranscriptLineModel:
    return TranscriptLineModel(
        id=uuid.uuid4(),
        meeting_id=meeting_id,
        text=text,
        speaker="Ada",
        timestamp=timestamp,
        timestamp_seconds=timestamp_seconds(timestamp),
        is_partial=False,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def _session(found: MeetingModel | None, inserted: int = 0) -> MagicMock:
    session = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = found
    result.rowcount = inserted
    session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock()
    session.flush = AsyncMock()

    async def refresh(model):
        if getattr(model, "id", None) is None:
            model.id = uuid.uuid4()
        if getattr(model, "created_at", None) is None:
            model.created_at = datetime(2026, 1, 2, tzinfo=timezone.utc)

    session.refresh = AsyncMock(side_effect=refresh)
    return session


def _factory(session):
    async def session_factory():
        yield session

    return session_factory


def _sql(session, call_index: int) -> str:
    stmt = session.execute.await_args_list[call_index].args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestConversion:
    def test_model_to_meeting(self):
        meeting = _model_to_meeting(_stored_model(status="call_ended"))

        assert meeting.external_id == "T1"
        assert meeting.status is BotStatus.CALL_ENDED
        # updated_at falls back to created_at before the first update
        assert meeting.updated_at == meeting.created_at


class TestTableSchema:
    def test_server_defaults(self):
        columns = TranscriptLineModel.__table__.c

        assert str(columns.is_partial.server_default.arg) == "false"
        assert str(columns.id.server_default.arg) == "gen_random_uuid()"

    def test_meetings_constraints_match_migration(self):
        table = MeetingModel.__table__

        constraint_names = {c.name for c in table.constraints}
        index_names = {i.name for i in table.indexes}
        assert "uq_meetings_external_id" in constraint_names
        assert {"idx_meetings_created_at", "ix_meetings_bot_id"} <= index_names


class TestTimestampKey:
    def test_numeric_stamps_order_by_value(self):
        stamps = ["10.5", "2.5", "9.0"]

        assert sorted(stamps, key=timestamp_seconds) == ["2.5", "9.0", "10.5"]

    def test_iso_stamps(self):
        assert timestamp_seconds("2026-01-01T00:00:01Z") - timestamp_seconds(
            "2026-01-01T00:00:00+00:00"
        ) == 1.0

    def test_unparseable_has_no_key(self):
        assert timestamp_seconds(None) is None
        assert timestamp_seconds("soon") is None
        assert timestamp_seconds("nan") is None


class TestArtifactsUpsert:
    async def test_overwrites_existing_meeting(self):
        model = _stored_model(video_url="old.mp4", audio_url="old.mp3")
        session = _session(model)
        repo = MeetingRepository(session_factory=_factory(session))

        meeting = await repo.save_artifacts("T1", "R1", ArtifactUrls(video_url="v.mp4"))

        assert meeting.recording_id == "R1"
        assert meeting.video_url == "v.mp4"
        assert meeting.audio_url is None
        session.add.assert_not_called()
        session.commit.assert_awaited_once()

    async def test_upsert_inserts_with_on_conflict(self):
        session = _session(_stored_model(external_id="T2", bot_id=None), inserted=1)
        repo = MeetingRepository(session_factory=_factory(session))

        meeting = await repo.save_artifacts("T2", "R2", ArtifactUrls(audio_url="a.mp3"))

        insert_sql = _sql(session, 0)
        assert insert_sql.startswith("INSERT INTO meetings")
        assert "ON CONFLICT (external_id) DO NOTHING" in insert_sql
        assert "FROM meetings" in _sql(session, 1)
        assert meeting.audio_url == "a.mp3"

    async def test_repeated_saves_never_add_rows(self):
        session = _session(_stored_model())
        repo = MeetingRepository(session_factory=_factory(session))

        await repo.save_artifacts("T1", "R1", ArtifactUrls(video_url="v1.mp4"))
        meeting = await repo.save_artifacts("T1", "R1", ArtifactUrls(video_url="v2.mp4"))

        session.add.assert_not_called()
        inserts = [
            _sql(session, i)
            for i in range(session.execute.await_count)
            if _sql(session, i).startswith("INSERT")
        ]
        assert len(inserts) == 2
        assert all("ON CONFLICT (external_id) DO NOTHING" in sql for sql in inserts)
        assert meeting.video_url == "v2.mp4"

    async def test_missing_row_after_upsert_raises(self):
        repo = MeetingRepository(session_factory=_factory(_session(None)))

        with pytest.raises(PersistenceError):
            await repo.save_artifacts("T1", "R1", ArtifactUrls())


class TestStatusAndBotId:
    async def test_update_status_upserts(self):
        model = _stored_model()
        session = _session(model)
        repo = MeetingRepository(session_factory=_factory(session))

        meeting = await repo.update_status("T1", BotStatus.DONE)

        assert meeting.status is BotStatus.DONE
        assert model.status == "done"
        assert "ON CONFLICT (external_id) DO NOTHING" in _sql(session, 0)
        session.commit.assert_awaited_once()

    async def test_set_bot_id(self):
        model = _stored_model(bot_id=None)
        session = _session(model)
        repo = MeetingRepository(session_factory=_factory(session))

        meeting = await repo.set_bot_id("T1", "bot-9")

        assert meeting.bot_id == "bot-9"
        assert model.updated_at is not None

    async def test_get_meeting_by_bot_id_picks_newest(self):
        session = _session(_stored_model())
        repo = MeetingRepository(session_factory=_factory(session))

        meeting = await repo.get_meeting_by_bot_id("bot-1")

        sql = _sql(session, 0)
        assert "WHERE meetings.bot_id = " in sql
        assert "ORDER BY meetings.created_at DESC" in sql
        assert "LIMIT" in sql
        assert meeting.external_id == "T1"


class TestTranscriptLines:
    async def test_add_stores_numeric_key(self):
        meeting = _stored_model()
        session = _session(meeting)
        repo = MeetingRepository(session_factory=_factory(session))

        line = await repo.add_transcript_line(
            "T1", TranscriptFragment(text="hello", speaker="Ada", timestamp="10.5")
        )

        stored = session.add.call_args.args[0]
        assert isinstance(stored, TranscriptLineModel)
        assert stored.meeting_id == meeting.id
        assert stored.timestamp == "10.5"
        assert stored.timestamp_seconds == 10.5
        assert line.text == "hello"
        assert line.timestamp == "10.5"

    async def test_list_orders_by_numeric_key(self):
        meeting_id = uuid.uuid4()
        session = _session(None)
        rows = [_stored_line(meeting_id, "a", "2.5"), _stored_line(meeting_id, "b", "10.5")]
        session.execute.return_value.scalars.return_value.all.return_value = rows
        repo = MeetingRepository(session_factory=_factory(session))

        lines = await repo.list_transcript_lines("T1")

        sql = _sql(session, 0)
        assert "JOIN meetings" in sql
        assert "WHERE meetings.external_id = " in sql
        order_by = sql.split("ORDER BY", 1)[1]
        assert order_by.strip().startswith("transcript_lines.timestamp_seconds ASC NULLS LAST")
        assert "transcript_lines.created_at ASC" in order_by
        assert [ln.text for ln in lines] == ["a", "b"]


class TestErrors:
    async def test_db_error_becomes_persistence_error(self):
        session = _session(None)
        session.execute = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("connection lost"))
        )
        repo = MeetingRepository(session_factory=_factory(session))

        with pytest.raises(PersistenceError):
            await repo.get_meeting("T1")

    async def test_missing_meeting_returns_none(self):
        repo = MeetingRepository(session_factory=_factory(_session(None)))

        assert await repo.get_meeting("nope") is None
