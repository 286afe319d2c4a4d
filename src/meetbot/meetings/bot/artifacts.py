"""Post-call artifact resolution for Recall.ai bots.

Turns a bot id into durable video/audio download URLs while tolerating
the vendor's asynchronous post-processing. Two independent wait-loops:

1. Await recording id -- poll the bot until a recording entry appears.
2. Resolve artifact URLs -- take the recording's media shortcuts when
   present, otherwise poll the per-media-type endpoint until the artifact
   has finished encoding.

"Recording exists" and "artifact finished encoding" are separate vendor
events with different latencies, so each loop has its own PollPolicy.
Exhausting a loop is a soft outcome (None), never an exception. Nothing
here persists; the caller owns the write.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from src.meetbot.core.monitoring import artifact_resolutions_total
from src.meetbot.meetings.bot.recall_client import RecallAPIError, RecallClient
from src.meetbot.meetings.schemas import ArtifactResolution, ArtifactUrls, MediaKind

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class PollPolicy:
    """Fixed-interval retry budget for one wait-loop."""

    interval_seconds: float
    max_attempts: int

    @property
    def budget_seconds(self) -> float:
        """Total time spent sleeping if every attempt misses."""
        return self.interval_seconds * max(self.max_attempts - 1, 0)


DEFAULT_RECORDING_POLICY = PollPolicy(interval_seconds=3.0, max_attempts=20)
DEFAULT_ARTIFACT_POLICY = PollPolicy(interval_seconds=5.0, max_attempts=10)


async def poll_until(
    probe: Callable[[int], Awaitable[T | None]],
    policy: PollPolicy,
    sleep: SleepFn = asyncio.sleep,
) -> T | None:
    """Call ``probe(attempt)`` until it returns non-None or the budget runs out.

    Makes at most ``policy.max_attempts`` calls and suspends for
    ``policy.interval_seconds`` between them (not after the last one).
    """
    for attempt in range(1, policy.max_attempts + 1):
        result = await probe(attempt)
        if result is not None:
            return result
        if attempt < policy.max_attempts:
            await sleep(policy.interval_seconds)
    return None


class ArtifactResolver:
    """Resolve a bot's recording id and media download URLs.

    Args:
        recall_client: RecallClient (or compatible) for vendor calls.
        recording_policy: Budget for waiting on the recording id.
        artifact_policy: Budget for each media kind's fallback lookup.
        sleep: Awaitable delay, injectable for tests.
    """

    def __init__(
        self,
        recall_client: RecallClient,
        recording_policy: PollPolicy = DEFAULT_RECORDING_POLICY,
        artifact_policy: PollPolicy = DEFAULT_ARTIFACT_POLICY,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._recall = recall_client
        self._recording_policy = recording_policy
        self._artifact_policy = artifact_policy
        self._sleep = sleep

    @classmethod
    def from_settings(cls, recall_client: RecallClient, settings: Any) -> ArtifactResolver:
        """Build a resolver with poll budgets taken from Settings."""
        return cls(
            recall_client=recall_client,
            recording_policy=PollPolicy(
                interval_seconds=settings.RECORDING_POLL_INTERVAL_SECONDS,
                max_attempts=settings.RECORDING_POLL_MAX_ATTEMPTS,
            ),
            artifact_policy=PollPolicy(
                interval_seconds=settings.ARTIFACT_POLL_INTERVAL_SECONDS,
                max_attempts=settings.ARTIFACT_POLL_MAX_ATTEMPTS,
            ),
        )

    async def await_recording_id(self, bot_id: str) -> str | None:
        """Poll the bot until its first recording appears.

        Returns:
            The recording id, or None once the attempt budget is exhausted.
        """

        async def probe(attempt: int) -> str | None:
            try:
                bot = await self._recall.get_bot(bot_id)
            except RecallAPIError as exc:
                logger.warning(
                    "artifacts.bot_lookup_failed",
                    bot_id=bot_id,
                    attempt=attempt,
                    status_code=exc.status_code,
                )
                return None
            recordings = bot.get("recordings") or []
            if not recordings:
                logger.debug("artifacts.recording_pending", bot_id=bot_id, attempt=attempt)
                return None
            return recordings[0].get("id") or None

        recording_id = await poll_until(probe, self._recording_policy, self._sleep)
        if recording_id is None:
            logger.warning(
                "artifacts.recording_timeout",
                bot_id=bot_id,
                attempts=self._recording_policy.max_attempts,
            )
        else:
            logger.info("artifacts.recording_found", bot_id=bot_id, recording_id=recording_id)
        return recording_id

    async def resolve_artifact_urls(self, recording_id: str) -> ArtifactUrls:
        """Resolve video and audio URLs for a recording.

        Video and audio are resolved concurrently and independently: a
        missing audio artifact never holds back a ready video URL.
        """
        shortcuts = await self._fetch_shortcuts(recording_id)
        video_url, audio_url = await asyncio.gather(
            self._resolve_kind(recording_id, MediaKind.VIDEO, shortcuts.get("video_url")),
            self._resolve_kind(recording_id, MediaKind.AUDIO, shortcuts.get("audio_url")),
        )
        return ArtifactUrls(video_url=video_url, audio_url=audio_url)

    async def resolve(self, bot_id: str) -> ArtifactResolution:
        """Run both wait-loops for a bot.

        Returns:
            ArtifactResolution; ``recording_id`` is None (and both URLs absent)
            when the recording never appeared within budget.
        """
        recording_id = await self.await_recording_id(bot_id)
        if recording_id is None:
            artifact_resolutions_total.labels(outcome="not_ready").inc()
            return ArtifactResolution()

        urls = await self.resolve_artifact_urls(recording_id)
        outcome = "complete" if urls.video_url and urls.audio_url else "partial"
        artifact_resolutions_total.labels(outcome=outcome).inc()
        logger.info(
            "artifacts.resolved",
            bot_id=bot_id,
            recording_id=recording_id,
            has_video=urls.video_url is not None,
            has_audio=urls.audio_url is not None,
        )
        return ArtifactResolution(recording_id=recording_id, **urls.model_dump())

    async def _fetch_shortcuts(self, recording_id: str) -> dict[str, str | None]:
        try:
            return await self._recall.get_recording_shortcuts(recording_id)
        except RecallAPIError as exc:
            logger.warning(
                "artifacts.shortcuts_failed",
                recording_id=recording_id,
                status_code=exc.status_code,
            )
            return {}

    async def _resolve_kind(
        self, recording_id: str, kind: MediaKind, shortcut_url: str | None
    ) -> str | None:
        if shortcut_url:
            logger.debug("artifacts.shortcut_hit", recording_id=recording_id, media_type=kind.value)
            return shortcut_url

        async def probe(attempt: int) -> str | None:
            try:
                media = await self._recall.get_media_by_type(recording_id, kind.value)
            except RecallAPIError as exc:
                logger.warning(
                    "artifacts.media_lookup_failed",
                    recording_id=recording_id,
                    media_type=kind.value,
                    attempt=attempt,
                    status_code=exc.status_code,
                )
                return None
            return media.get("url") or None

        url = await poll_until(probe, self._artifact_policy, self._sleep)
        if url is None:
            logger.warning(
                "artifacts.media_timeout",
                recording_id=recording_id,
                media_type=kind.value,
                attempts=self._artifact_policy.max_attempts,
            )
        return url
