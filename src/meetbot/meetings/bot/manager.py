"""BotManager for sending a Recall.ai bot into a call.

A join request creates the session first, so its tracking id exists before
any webhook can arrive, then creates the vendor bot with:

- meeting-captions transcription
- a real-time webhook endpoint carrying the tracking id in its query
- the tracking id echoed back in bot metadata

and finally attaches the returned bot id to the session.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import structlog

from src.meetbot.meetings.bot.recall_client import RecallAPIError, RecallClient
from src.meetbot.meetings.schemas import WebhookEventType

if TYPE_CHECKING:
    from src.meetbot.meetings.repository import MeetingRepository

logger = structlog.get_logger(__name__)


class BotManager:
    """Creates meeting bots and links them to tracked sessions.

    Args:
        recall_client: RecallClient for Recall.ai API calls.
        repository: MeetingRepository for persisting the session.
        settings: Application settings for bot name, webhook URL and token.
    """

    def __init__(
        self,
        recall_client: RecallClient,
        repository: MeetingRepository,
        settings: object,
    ) -> None:
        self._recall = recall_client
        self._repository = repository
        self._settings = settings

    def _build_callback_url(self, external_id: str) -> str:
        """Real-time webhook URL; Recall.ai cannot send custom headers there."""
        base = getattr(self._settings, "webhook_url")
        params = {"external_id": external_id}
        token = getattr(self._settings, "RECALL_AI_WEBHOOK_TOKEN", "")
        if token:
            params["token"] = token
        return f"{base}?{urlencode(params)}"

    def build_bot_config(self, external_id: str, bot_name: str | None = None) -> dict:
        """Bot creation config, without the meeting URL."""
        return {
            "bot_name": bot_name
            or getattr(self._settings, "MEETING_BOT_NAME", "Meeting Notetaker"),
            "recording_config": {
                "transcript": {
                    "provider": {"meeting_captions": {}},
                },
                "realtime_endpoints": [
                    {
                        "type": "webhook",
                        "url": self._build_callback_url(external_id),
                        "events": [
                            WebhookEventType.TRANSCRIPT_DATA.value,
                            WebhookEventType.TRANSCRIPT_PARTIAL_DATA.value,
                        ],
                    },
                ],
            },
            "metadata": {"external_id": external_id},
        }

    async def create_meeting_bot(
        self, meeting_url: str, bot_name: str | None = None
    ) -> tuple[str, str]:
        """Create a session and send a bot into the call.

        Args:
            meeting_url: Video call URL.
            bot_name: Display name override for the bot.

        Returns:
            Tuple of (external_id, bot_id).

        Raises:
            RecallAPIError: If the vendor rejects the join request. The
                session is kept without a bot id.
        """
        external_id = str(uuid.uuid4())
        await self._repository.create_meeting(external_id, meeting_url=meeting_url)

        try:
            bot = await self._recall.create_bot(
                meeting_url, self.build_bot_config(external_id, bot_name)
            )
        except RecallAPIError as exc:
            logger.error(
                "bot_manager.create_failed",
                external_id=external_id,
                status_code=exc.status_code,
            )
            raise

        if not bot.get("id"):
            raise RecallAPIError(None, f"bot creation response has no id: {bot}")
        bot_id = str(bot["id"])
        await self._repository.set_bot_id(external_id, bot_id)
        logger.info("bot_manager.bot_joined", external_id=external_id, bot_id=bot_id)
        return external_id, bot_id
