"""Meetings module -- sessions, transcript lines, and webhook ingestion.

Provides Pydantic schemas, SQLAlchemy models, MeetingRepository, and the
EventIngestor that turns Recall.ai webhooks into persisted transcript
lines, relay broadcasts, and post-call artifact resolution.
"""
