"""Entry point: python -m pressroom"""

from __future__ import annotations

import asyncio
import signal
import sys

from pressroom.infrastructure.config import COLLABORATORS_FACTORY
from pressroom.infrastructure.logger import logger


async def main() -> None:
    from pressroom.app import Orchestrator
    from pressroom.collaborators.registry import load_collaborators

    if not COLLABORATORS_FACTORY:
        logger.error("PRESSROOM_COLLABORATORS is not set (expected 'module:callable')")
        sys.exit(2)

    orchestrator = Orchestrator(load_collaborators(COLLABORATORS_FACTORY))

    # Handle graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await orchestrator.start()

        # Wait for shutdown signal
        await shutdown_event.wait()
    finally:
        await orchestrator.shutdown()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
