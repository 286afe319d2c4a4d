"""Webhook event ingestion for Recall.ai.

EventIngestor classifies inbound events and routes them:

- transcript.data / transcript.partial_data: normalise to a
  TranscriptFragment, persist a line, forward to the broadcast relay. The
  whole path is bounded by the webhook ack timeout and never raises.
- bot.status_change (or the bot.<code> shorthand): record the status; on
  ``done`` schedule artifact resolution as a background task and return
  immediately; on ``fatal`` log a terminal failure.

Resolution tasks are held by bot id so they stay referenced until they
finish, and a second ``done`` for a bot that is still resolving is
acknowledged without starting another run.
"""

from __future__ import annotations

import asyncio
import functools
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from src.meetbot.core.monitoring import webhook_events_total
from src.meetbot.meetings.repository import PersistenceError
from src.meetbot.meetings.schemas import (
    UNKNOWN_SPEAKER,
    ArtifactResolution,
    BotStatus,
    TranscriptFragment,
    WebhookEventType,
)

if TYPE_CHECKING:
    from src.meetbot.meetings.bot.artifacts import ArtifactResolver
    from src.meetbot.meetings.repository import MeetingRepository
    from src.meetbot.relay.client import RelayClient

logger = structlog.get_logger(__name__)

_TRANSCRIPT_EVENTS = {
    WebhookEventType.TRANSCRIPT_DATA.value,
    WebhookEventType.TRANSCRIPT_PARTIAL_DATA.value,
}


# ── Payload Helpers ──────────────────────────────────────────────────────────


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def extract_bot_id(payload: dict) -> str | None:
    """Find the bot id in either the flat or the nested Recall.ai shape."""
    data = _as_dict(payload.get("data"))
    bot_id = (
        data.get("bot_id")
        or _as_dict(data.get("bot")).get("id")
        or payload.get("bot_id")
    )
    return str(bot_id) if bot_id else None


def extract_external_id(payload: dict) -> str | None:
    """Find the tracking id carried inside the event body."""
    data = _as_dict(payload.get("data"))
    metadata = _as_dict(_as_dict(data.get("bot")).get("metadata"))
    external_id = data.get("external_id") or metadata.get("external_id")
    return str(external_id) if external_id else None


def extract_status_code(event: str, payload: dict) -> str | None:
    """Lifecycle code from ``data.status.code``, ``data.data.code`` or ``bot.<code>``."""
    data = _as_dict(payload.get("data"))
    status = data.get("status")
    if isinstance(status, dict):
        code = status.get("code")
    else:
        code = status
    if not code:
        code = _as_dict(data.get("data")).get("code")
    if not code and event.startswith("bot.") and event != WebhookEventType.BOT_STATUS_CHANGE.value:
        code = event.split(".", 1)[1]
    return code or None


def _word_timestamp(word: dict) -> str | None:
    stamp = word.get("start_timestamp")
    if isinstance(stamp, dict):
        stamp = stamp.get("absolute") or stamp.get("relative")
    return None if stamp is None else str(stamp)


def normalize_transcript(
    payload: dict, external_id: str | None = None
) -> TranscriptFragment | None:
    """Normalise a transcript event to a TranscriptFragment.

    Accepts both the flat shape (``data.text``/``data.speaker``/``data.timestamp``)
    and Recall.ai's native real-time shape (``data.data.words[]`` with
    ``data.data.participant.name``). Returns None when there is no text.
    """
    event = payload.get("event") or payload.get("type") or ""
    data = _as_dict(payload.get("data"))
    inner = _as_dict(data.get("data"))

    if "words" in inner:
        words = [w for w in inner.get("words") or [] if isinstance(w, dict)]
        text = " ".join(str(w.get("text", "")).strip() for w in words).strip()
        speaker = _as_dict(inner.get("participant")).get("name")
        timestamp = _word_timestamp(words[0]) if words else None
    else:
        text = str(data.get("text") or "").strip()
        speaker = data.get("speaker")
        raw_ts = data.get("timestamp")
        timestamp = None if raw_ts is None else str(raw_ts)

    if not text:
        return None

    return TranscriptFragment(
        external_id=external_id,
        text=text,
        speaker=speaker or UNKNOWN_SPEAKER,
        timestamp=timestamp,
        is_partial=event == WebhookEventType.TRANSCRIPT_PARTIAL_DATA.value,
    )


# ── Ingestor ─────────────────────────────────────────────────────────────────


class EventIngestor:
    """Routes Recall.ai webhook events to persistence, relay and resolution.

    Args:
        repository: MeetingRepository (or compatible) for sessions and lines.
        resolver: ArtifactResolver used for post-call resolution.
        relay_client: Optional RelayClient; when None, live fragments are
            persisted but not broadcast.
        ack_timeout: Upper bound in seconds on the synchronous part of
            handling one event.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        resolver: ArtifactResolver | None,
        relay_client: RelayClient | None = None,
        ack_timeout: float = 5.0,
    ) -> None:
        self._repository = repository
        self._resolver = resolver
        self._relay = relay_client
        self._ack_timeout = ack_timeout
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_tasks(self) -> dict[str, asyncio.Task]:
        """Resolution tasks still running, keyed by bot id."""
        return {k: t for k, t in self._tasks.items() if not t.done()}

    async def handle_event(self, payload: dict, external_id: str | None = None) -> None:
        """Handle one webhook delivery. Never raises for a malformed event.

        Args:
            payload: Parsed webhook JSON body.
            external_id: Tracking id from the callback URL query, if any.
        """
        event = str(payload.get("event") or payload.get("type") or "")
        label = event if event in _TRANSCRIPT_EVENTS or event.startswith("bot.") else "other"
        webhook_events_total.labels(event=label).inc()

        external_id = external_id or extract_external_id(payload)
        bot_id = extract_bot_id(payload)

        if event in _TRANSCRIPT_EVENTS:
            await self._with_ack_timeout(
                self._ingest_transcript(payload, external_id, bot_id),
                event_type=event,
                bot_id=bot_id,
            )
            return

        if event.startswith("bot."):
            await self._handle_lifecycle(event, payload, external_id, bot_id)
            return

        logger.debug("ingestion.event_ignored", event_type=event, bot_id=bot_id)

    async def _with_ack_timeout(self, coro: Any, **log_context: Any) -> None:
        try:
            await asyncio.wait_for(coro, timeout=self._ack_timeout)
        except asyncio.TimeoutError:
            logger.warning("ingestion.ack_timeout", timeout=self._ack_timeout, **log_context)
        except Exception:
            logger.warning("ingestion.handler_error", exc_info=True, **log_context)

    async def _lookup_external_id(self, bot_id: str | None) -> str | None:
        if not bot_id:
            return None
        try:
            meeting = await self._repository.get_meeting_by_bot_id(bot_id)
        except PersistenceError:
            logger.warning("ingestion.bot_lookup_failed", bot_id=bot_id, exc_info=True)
            return None
        return meeting.external_id if meeting is not None else None

    # ── Transcript Path ──────────────────────────────────────────────────

    async def _ingest_transcript(
        self, payload: dict, external_id: str | None, bot_id: str | None
    ) -> None:
        external_id = external_id or await self._lookup_external_id(bot_id)
        fragment = normalize_transcript(payload, external_id)
        if fragment is None:
            logger.debug("ingestion.empty_fragment", external_id=external_id)
            return

        if external_id is None:
            logger.warning("ingestion.untracked_fragment", bot_id=bot_id)
        else:
            try:
                await self._repository.add_transcript_line(external_id, fragment)
            except PersistenceError:
                logger.warning(
                    "ingestion.transcript_persist_failed",
                    external_id=external_id,
                    exc_info=True,
                )

        if self._relay is None:
            return
        try:
            await self._relay.broadcast(fragment.model_dump())
        except httpx.HTTPError:
            logger.warning("ingestion.relay_failed", external_id=external_id, exc_info=True)

    # ── Lifecycle Path ───────────────────────────────────────────────────

    async def _handle_lifecycle(
        self, event: str, payload: dict, external_id: str | None, bot_id: str | None
    ) -> None:
        code = extract_status_code(event, payload)
        try:
            status = BotStatus(code)
        except ValueError:
            logger.debug("ingestion.unknown_status", event_type=event, code=code, bot_id=bot_id)
            return

        logger.info("ingestion.bot_status", bot_id=bot_id, status=status.value)
        if not bot_id:
            logger.warning("ingestion.status_without_bot", status=status.value)
            return

        await self._with_ack_timeout(
            self._record_status(bot_id, external_id, status),
            event_type=event,
            bot_id=bot_id,
        )

        if status is BotStatus.DONE:
            self.schedule_artifacts(bot_id, external_id)
        elif status is BotStatus.FATAL:
            logger.error("ingestion.bot_fatal", bot_id=bot_id, external_id=external_id)

    async def _record_status(
        self, bot_id: str, external_id: str | None, status: BotStatus
    ) -> None:
        external_id = external_id or await self._lookup_external_id(bot_id)
        if external_id is None:
            logger.warning("ingestion.unknown_bot", bot_id=bot_id, status=status.value)
            return
        try:
            await self._repository.update_status(external_id, status)
        except PersistenceError:
            logger.warning("ingestion.status_persist_failed", bot_id=bot_id, exc_info=True)

    # ── Artifact Resolution ──────────────────────────────────────────────

    def schedule_artifacts(self, bot_id: str, external_id: str | None = None) -> asyncio.Task:
        """Start background resolution for a bot unless one is already running."""
        existing = self._tasks.get(bot_id)
        if existing is not None and not existing.done():
            logger.info("ingestion.resolution_in_flight", bot_id=bot_id)
            return existing

        task = asyncio.create_task(
            self._run_artifacts(bot_id, external_id), name=f"artifacts-{bot_id}"
        )
        self._tasks[bot_id] = task
        task.add_done_callback(functools.partial(self._forget_task, bot_id))
        logger.info("ingestion.resolution_scheduled", bot_id=bot_id)
        return task

    def _forget_task(self, bot_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(bot_id) is task:
            del self._tasks[bot_id]

    async def _run_artifacts(self, bot_id: str, external_id: str | None) -> None:
        try:
            external_id = external_id or await self._lookup_external_id(bot_id)
            if external_id is None:
                logger.warning("ingestion.unknown_bot", bot_id=bot_id)
                return
            await self.process_artifacts(bot_id, external_id)
        except asyncio.CancelledError:
            logger.info("ingestion.resolution_cancelled", bot_id=bot_id)
            raise
        except Exception:
            logger.error("ingestion.resolution_failed", bot_id=bot_id, exc_info=True)

    async def process_artifacts(self, bot_id: str, external_id: str) -> ArtifactResolution:
        """Resolve a bot's artifacts and upsert them onto the session.

        Nothing is written when the recording id never appeared.

        Raises:
            RuntimeError: If no resolver is configured.
            PersistenceError: If the upsert fails.
        """
        if self._resolver is None:
            raise RuntimeError("Artifact resolver not configured")

        resolution = await self._resolver.resolve(bot_id)
        if not resolution.ready:
            logger.warning("artifacts.not_ready", bot_id=bot_id, external_id=external_id)
            return resolution

        await self._repository.save_artifacts(
            external_id, resolution.recording_id, resolution
        )
        logger.info(
            "artifacts.saved",
            bot_id=bot_id,
            external_id=external_id,
            recording_id=resolution.recording_id,
        )
        return resolution

    async def shutdown(self) -> None:
        """Cancel outstanding resolution tasks."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("ingestion.shutdown", cancelled=len(tasks))
