"""Connection registry for live-caption viewers.

Holds the set of open viewer WebSockets for one relay process. The relay
runs a single event loop, so add/remove/broadcast need no locking. The
registry hangs off app.state and reaches endpoints through Depends.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from src.meetbot.core.monitoring import relay_connected_viewers

logger = structlog.get_logger(__name__)


class ViewerConnection(Protocol):
    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class ConnectionRegistry:
    """Best-effort fan-out to every connected viewer.

    No buffering for disconnected viewers and no per-session filtering:
    every connected viewer receives every broadcast.
    """

    def __init__(self) -> None:
        self._connections: set[ViewerConnection] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections

    def add(self, connection: ViewerConnection) -> None:
        self._connections.add(connection)
        relay_connected_viewers.set(len(self._connections))
        logger.info("relay.viewer_connected", viewers=len(self._connections))

    def remove(self, connection: ViewerConnection) -> None:
        self._connections.discard(connection)
        relay_connected_viewers.set(len(self._connections))
        logger.info("relay.viewer_disconnected", viewers=len(self._connections))

    async def broadcast(self, payload: dict) -> int:
        """Send payload to all viewers.

        A viewer whose send fails is dropped from the registry; the failure
        never propagates to the caller.

        Returns:
            Number of viewers the payload was delivered to.
        """
        delivered = 0
        # Snapshot: remove() may run while sends are suspended
        for connection in list(self._connections):
            try:
                await connection.send_json(payload)
                delivered += 1
            except Exception:
                logger.warning("relay.send_failed", exc_info=True)
                self.remove(connection)
        logger.debug("relay.broadcast", delivered=delivered)
        return delivered
