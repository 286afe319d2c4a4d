"""Tests for post-call artifact resolution.

Drives ArtifactResolver with a scripted FakeRecall and an injected sleep,
so every wait-loop is checked by call counts instead of wall time.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.bot.artifacts import (
    DEFAULT_ARTIFACT_POLICY,
    DEFAULT_RECORDING_POLICY,
    ArtifactResolver,
    PollPolicy,
    poll_until,
)
from src.meetbot.meetings.bot.recall_client import RecallAPIError


RECORDING = PollPolicy(interval_seconds=3.0, max_attempts=4)
ARTIFACT = PollPolicy(interval_seconds=5.0, max_attempts=3)


def _resolver(recall, sleep) -> ArtifactResolver:
    return ArtifactResolver(
        recall,
        recording_policy=RECORDING,
        artifact_policy=ARTIFACT,
        sleep=sleep,
    )


# ── poll_until ───────────────────────────────────────────────────────────────


class TestPollUntil:
    async def test_returns_first_hit(self, no_sleep):
        probe = AsyncMock(side_effect=[None, None, "found"])

        result = await poll_until(probe, PollPolicy(1.0, 5), sleep=no_sleep)

        assert result == "found"
        assert probe.await_count == 3
        assert no_sleep.await_count == 2

    async def test_exhaustion_returns_none_without_trailing_sleep(self, no_sleep):
        probe = AsyncMock(return_value=None)

        result = await poll_until(probe, PollPolicy(2.0, 4), sleep=no_sleep)

        assert result is None
        assert probe.await_count == 4
        assert no_sleep.await_count == 3
        no_sleep.assert_awaited_with(2.0)

    async def test_probe_receives_attempt_number(self, no_sleep):
        probe = AsyncMock(return_value=None)

        await poll_until(probe, PollPolicy(1.0, 3), sleep=no_sleep)

        assert [c.args[0] for c in probe.await_args_list] == [1, 2, 3]

    def test_default_budgets(self):
        assert DEFAULT_RECORDING_POLICY == PollPolicy(3.0, 20)
        assert DEFAULT_ARTIFACT_POLICY == PollPolicy(5.0, 10)
        assert DEFAULT_RECORDING_POLICY.budget_seconds == 57.0


# ── Await recording id ───────────────────────────────────────────────────────


class TestAwaitRecordingId:
    async def test_no_recording_within_budget(self, make_recall, no_sleep):
        recall = make_recall(recordings=[[]])

        result = await _resolver(recall, no_sleep).await_recording_id("bot-1")

        assert result is None
        assert recall.get_bot_calls == RECORDING.max_attempts

    async def test_recording_appears_later(self, make_recall, no_sleep):
        recall = make_recall(recordings=[[], [], [{"id": "R1"}]])

        result = await _resolver(recall, no_sleep).await_recording_id("bot-1")

        assert result == "R1"
        assert recall.get_bot_calls == 3

    async def test_first_recording_wins(self, make_recall, no_sleep):
        recall = make_recall(recordings=[[{"id": "R1"}, {"id": "R2"}]])

        result = await _resolver(recall, no_sleep).await_recording_id("bot-1")

        assert result == "R1"

    async def test_vendor_error_counts_as_miss(self, no_sleep):
        recall = AsyncMock()
        recall.get_bot = AsyncMock(
            side_effect=[RecallAPIError(502, "bad gateway"), {"recordings": [{"id": "R9"}]}]
        )

        result = await _resolver(recall, no_sleep).await_recording_id("bot-1")

        assert result == "R9"
        assert recall.get_bot.await_count == 2


# ── Resolve artifact URLs ────────────────────────────────────────────────────


class TestResolveArtifactUrls:
    async def test_shortcuts_skip_fallback(self, make_recall, no_sleep):
        recall = make_recall(
            shortcuts={"video_url": "https://cdn/v.mp4", "audio_url": "https://cdn/a.mp3"}
        )

        urls = await _resolver(recall, no_sleep).resolve_artifact_urls("R1")

        assert urls.video_url == "https://cdn/v.mp4"
        assert urls.audio_url == "https://cdn/a.mp3"
        assert recall.shortcut_calls == 1
        assert recall.media_calls == {"video_mixed": 0, "audio_mixed": 0}

    async def test_fallback_hit_on_attempt_k(self, make_recall, no_sleep):
        recall = make_recall(
            shortcuts={"video_url": "https://cdn/v.mp4"},
            media={"audio_mixed": [None, "https://cdn/a.mp3"]},
        )

        urls = await _resolver(recall, no_sleep).resolve_artifact_urls("R1")

        assert urls.audio_url == "https://cdn/a.mp3"
        assert recall.media_calls["audio_mixed"] == 2
        assert recall.media_calls["video_mixed"] == 0

    async def test_kinds_resolve_independently(self, make_recall, no_sleep):
        recall = make_recall(
            media={"video_mixed": ["https://cdn/v.mp4"], "audio_mixed": [None]},
        )

        urls = await _resolver(recall, no_sleep).resolve_artifact_urls("R1")

        assert urls.video_url == "https://cdn/v.mp4"
        assert urls.audio_url is None
        assert recall.media_calls["video_mixed"] == 1
        assert recall.media_calls["audio_mixed"] == ARTIFACT.max_attempts

    async def test_shortcut_error_falls_back(self, no_sleep):
        recall = AsyncMock()
        recall.get_recording_shortcuts = AsyncMock(side_effect=RecallAPIError(500, "boom"))
        recall.get_media_by_type = AsyncMock(return_value={"url": "https://cdn/x"})

        urls = await _resolver(recall, no_sleep).resolve_artifact_urls("R1")

        assert urls.video_url == "https://cdn/x"
        assert urls.audio_url == "https://cdn/x"
        assert recall.get_media_by_type.await_count == 2


# ── Full resolution ──────────────────────────────────────────────────────────


class TestResolve:
    async def test_not_ready_skips_url_lookup(self, make_recall, no_sleep):
        recall = make_recall(recordings=[[]])

        result = await _resolver(recall, no_sleep).resolve("bot-1")

        assert result.ready is False
        assert result.video_url is None and result.audio_url is None
        assert recall.shortcut_calls == 0

    async def test_partial_result(self, make_recall, no_sleep):
        recall = make_recall(
            recordings=[[{"id": "R1"}]],
            shortcuts={"video_url": "v.mp4"},
        )

        result = await _resolver(recall, no_sleep).resolve("bot-1")

        assert result.recording_id == "R1"
        assert result.video_url == "v.mp4"
        assert result.audio_url is None

    def test_from_settings_reads_budgets(self, make_recall, test_settings):
        resolver = ArtifactResolver.from_settings(make_recall(), test_settings)

        assert resolver._recording_policy == PollPolicy(3.0, 4)
        assert resolver._artifact_policy == PollPolicy(5.0, 3)
