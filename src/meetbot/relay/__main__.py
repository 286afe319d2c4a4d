"""Run the broadcast relay: ``python -m src.meetbot.relay``."""

from __future__ import annotations

import uvicorn

from src.meetbot.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "src.meetbot.relay.app:app",
        host=settings.RELAY_HOST,
        port=settings.RELAY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
