"""HTTP client the API process uses to push payloads to the relay."""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger(__name__)


class RelayClient:
    """Posts broadcast payloads to the relay's /broadcast endpoint.

    Args:
        base_url: Relay root URL, e.g. ``http://localhost:8001``.
        timeout: Per-request timeout in seconds; kept short because the
            caller sits on the webhook acknowledgement path.
    """

    def __init__(self, base_url: str, timeout: float = 2.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def broadcast(self, payload: dict) -> int:
        """Forward a payload; returns how many viewers received it.

        Raises:
            httpx.HTTPError: If the relay is unreachable or answers non-2xx.
        """
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(f"{self._base_url}/broadcast", json=payload)
            response.raise_for_status()
            delivered = response.json().get("delivered", 0)
        logger.debug("relay.forwarded", delivered=delivered)
        return delivered
