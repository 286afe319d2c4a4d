"""Create meetings and transcript_lines tables.

Revision ID: 001_initial_meetings
Revises:
Create Date: 2026-10-19

- meetings: one tracked call, unique on external_id, with bot/recording
  ids, post-call media URLs, and the last bot lifecycle status
- transcript_lines: transcript fragments owned by a meeting
  (ON DELETE CASCADE), indexed for ordered display
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial_meetings"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── meetings table ───────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("external_id", sa.String(100), nullable=False),
        sa.Column("meeting_url", sa.String(1000), nullable=True),
        sa.Column("bot_id", sa.String(200), nullable=True),
        sa.Column("recording_id", sa.String(200), nullable=True),
        sa.Column("video_url", sa.Text(), nullable=True),
        sa.Column("audio_url", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(50),
            server_default=sa.text("'joining'"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("external_id", name="uq_meetings_external_id"),
    )
    op.create_index("ix_meetings_bot_id", "meetings", ["bot_id"])
    op.create_index("idx_meetings_created_at", "meetings", ["created_at"])

    # ── transcript_lines table ───────────────────────────────────────────

    op.create_table(
        "transcript_lines",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "meeting_id",
            UUID(as_uuid=True),
            sa.ForeignKey("meetings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("speaker", sa.String(200), nullable=False),
        sa.Column("timestamp", sa.String(100), nullable=True),
        sa.Column("timestamp_seconds", sa.Float(), nullable=True),
        sa.Column(
            "is_partial",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_transcript_lines_meeting_ts",
        "transcript_lines",
        ["meeting_id", "timestamp_seconds"],
    )


def downgrade() -> None:
    op.drop_index("idx_transcript_lines_meeting_ts", table_name="transcript_lines")
    op.drop_table("transcript_lines")
    op.drop_index("idx_meetings_created_at", table_name="meetings")
    op.drop_index("ix_meetings_bot_id", table_name="meetings")
    op.drop_table("meetings")
