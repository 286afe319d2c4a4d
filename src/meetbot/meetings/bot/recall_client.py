"""Async HTTP client wrapper for Recall.ai REST API.

Provides RecallClient with transport-level retry (tenacity, 3 attempts,
exponential backoff 1-10s) for connect errors and timeouts. Non-success
HTTP responses are NOT retried here: they surface immediately as
RecallAPIError carrying status and body, and the caller decides whether a
retry makes sense. All methods are async and log with structlog.

Methods cover the bot lifecycle this service needs: create, bot detail and
status, recording media shortcuts, and per-media-type download lookup.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

_transport_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class RecallAPIError(Exception):
    """Recall.ai returned a non-success response or could not be reached.

    Attributes:
        status_code: HTTP status, or None for transport failures.
        body: Response body text (or the transport error message).
    """

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Recall.ai request failed (status={status_code}): {body[:500]}")


def _download_url(node: Any) -> str | None:
    """Pull data.download_url out of a media node, tolerating nulls."""
    if not isinstance(node, dict):
        return None
    data = node.get("data") or {}
    url = data.get("download_url") if isinstance(data, dict) else None
    return url or None


class RecallClient:
    """Async client for Recall.ai REST API.

    Args:
        api_key: Recall.ai API token, sent as ``Authorization: Token <key>``.
        region: Recall.ai region (default: us-west-2).
        base_url: Override for the API root (tests, self-hosted proxies).
    """

    # Timeouts per operation type
    TIMEOUT_MUTATE = 30.0  # create operations
    TIMEOUT_READ = 10.0    # get/status operations

    def __init__(
        self,
        api_key: str,
        region: str = "us-west-2",
        base_url: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = (base_url or f"https://{region}.recall.ai/api/v1").rstrip("/")
        self._headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=timeout,
        )

    @_transport_retry
    async def _send(
        self, method: str, path: str, timeout: float, **kwargs: Any
    ) -> httpx.Response:
        async with self._client(timeout) as client:
            send = getattr(client, method)
            return await send(f"{self._base_url}{path}", **kwargs)

    async def _request(
        self, method: str, path: str, timeout: float, **kwargs: Any
    ) -> Any:
        try:
            response = await self._send(method, path, timeout, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("recall.transport_error", method=method, path=path, error=str(exc))
            raise RecallAPIError(None, str(exc)) from exc

        if response.is_error:
            logger.warning(
                "recall.http_error",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise RecallAPIError(response.status_code, response.text)
        return response.json()

    async def create_bot(self, meeting_url: str, config: dict) -> dict:
        """Send a bot into a meeting.

        POST /bot/ with the meeting URL merged into the bot configuration
        (bot name, transcript provider, real-time webhook endpoints, metadata).

        Args:
            meeting_url: Video call URL to join.
            config: Remaining bot creation configuration.

        Returns:
            Bot creation response with bot ``id``.
        """
        payload = {**config, "meeting_url": meeting_url}
        data = await self._request("post", "/bot/", self.TIMEOUT_MUTATE, json=payload)
        logger.info("recall.bot_created", bot_id=data.get("id"))
        return data

    async def get_bot(self, bot_id: str) -> dict:
        """Get full bot details.

        GET /bot/{bot_id}/ returns status_changes, metadata and the
        ``recordings`` list that appears once the vendor starts producing
        a downloadable recording.
        """
        return await self._request("get", f"/bot/{bot_id}/", self.TIMEOUT_READ)

    async def get_bot_status(self, bot_id: str) -> str:
        """Get current bot status code from status_changes[-1].code."""
        bot_data = await self.get_bot(bot_id)
        status_changes = bot_data.get("status_changes") or []
        if not status_changes:
            return "unknown"
        current_status = status_changes[-1].get("code", "unknown")
        logger.debug("recall.bot_status", bot_id=bot_id, status=current_status)
        return current_status

    async def get_recording_shortcuts(self, recording_id: str) -> dict[str, str | None]:
        """Fast path: pre-signed media URLs embedded in the recording.

        GET /recording/{recording_id}/ and read
        media_shortcuts.{video_mixed,audio_mixed}.data.download_url.

        Returns:
            Dict with ``video_url`` and ``audio_url`` (either may be None).
        """
        data = await self._request("get", f"/recording/{recording_id}/", self.TIMEOUT_READ)
        shortcuts = data.get("media_shortcuts") or {}
        return {
            "video_url": _download_url(shortcuts.get("video_mixed")),
            "audio_url": _download_url(shortcuts.get("audio_mixed")),
        }

    async def get_media_by_type(self, recording_id: str, media_type: str) -> dict[str, str | None]:
        """Slow path: list media artifacts of one type for a recording.

        GET /{media_type}/?recording_id=... and return the first result that
        already carries a download URL.

        Args:
            recording_id: Recall.ai recording id.
            media_type: ``video_mixed`` or ``audio_mixed``.

        Returns:
            Dict with ``url`` (None while the artifact is still encoding).
        """
        data = await self._request(
            "get",
            f"/{media_type}/",
            self.TIMEOUT_READ,
            params={"recording_id": recording_id},
        )
        results = data.get("results") if isinstance(data, dict) else data
        for item in results or []:
            url = _download_url(item)
            if url:
                return {"url": url}
        return {"url": None}
