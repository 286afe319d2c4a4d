#!/usr/bin/env python3
"""CLI script to re-run post-call artifact resolution for a meeting.

Usage:
    uv run python scripts/retrigger_artifacts.py --external-id 3f1c...
    uv run python scripts/retrigger_artifacts.py --latest
    uv run python scripts/retrigger_artifacts.py --external-id 3f1c... --attempts 30

Connects directly to the database using DATABASE_URL from environment or .env file
and to Recall.ai using RECALL_AI_API_KEY. Waits for the result and stores it
on the meeting, overwriting any earlier URLs.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.meetbot
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def retrigger(external_id: str | None, latest: bool, attempts: int | None) -> int:
    """Resolve and store artifacts for one meeting. Returns a process exit code."""
    from src.meetbot.config import get_settings
    from src.meetbot.core.database import close_db, get_session
    from src.meetbot.meetings.bot.artifacts import ArtifactResolver, PollPolicy
    from src.meetbot.meetings.bot.recall_client import RecallClient
    from src.meetbot.meetings.ingestion import EventIngestor
    from src.meetbot.meetings.repository import MeetingRepository

    settings = get_settings()
    if not settings.RECALL_AI_API_KEY:
        print("RECALL_AI_API_KEY is not set", file=sys.stderr)
        return 2

    repo = MeetingRepository(session_factory=get_session)
    try:
        meeting = (
            await repo.get_latest_meeting() if latest else await repo.get_meeting(external_id)
        )
        if meeting is None:
            print(f"Meeting not found: {external_id or 'latest'}", file=sys.stderr)
            return 1
        if not meeting.bot_id:
            print(f"Meeting {meeting.external_id} has no bot id", file=sys.stderr)
            return 1

        recall = RecallClient(api_key=settings.RECALL_AI_API_KEY, region=settings.RECALL_AI_REGION)
        resolver = ArtifactResolver.from_settings(recall, settings)
        if attempts is not None:
            resolver = ArtifactResolver(
                recall,
                recording_policy=PollPolicy(settings.RECORDING_POLL_INTERVAL_SECONDS, attempts),
                artifact_policy=PollPolicy(settings.ARTIFACT_POLL_INTERVAL_SECONDS, attempts),
            )
        ingestor = EventIngestor(repository=repo, resolver=resolver)

        print(f"Resolving artifacts: external_id={meeting.external_id}, bot_id={meeting.bot_id}")
        result = await ingestor.process_artifacts(meeting.bot_id, meeting.external_id)
        if not result.ready:
            print("Recording not ready yet; nothing stored.")
            return 1

        print("Artifacts stored:")
        print(f"  Recording: {result.recording_id}")
        print(f"  Video:     {result.video_url or '-'}")
        print(f"  Audio:     {result.audio_url or '-'}")
        return 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-run artifact resolution for a meeting")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--external-id", help="Meeting tracking id")
    group.add_argument("--latest", action="store_true", help="Use the most recent meeting")
    parser.add_argument(
        "--attempts",
        type=int,
        default=None,
        help="Override the max poll attempts for both wait-loops",
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(retrigger(args.external_id, args.latest, args.attempts)))


if __name__ == "__main__":
    main()
