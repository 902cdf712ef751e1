"""
Worker Process Entry Point

Runs one or more job category pools outside the API process.

Usage:
    python -m app.worker                                  # every category
    python -m app.worker --category email --category sms  # selected pools
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from app.container import ServiceContainer
from app.core.config import RealtimeBackend, get_settings, setup_logging
from app.jobs.payloads import JobCategory

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run background job worker pools")
    parser.add_argument(
        "--category",
        action="append",
        choices=[c.value for c in JobCategory],
        help="Job category to serve (repeatable, default: all)",
    )
    parser.add_argument(
        "--drain-timeout",
        type=float,
        default=None,
        help="Seconds to wait for in-flight jobs on shutdown (default: wait for all)",
    )
    return parser.parse_args(argv)


async def run(categories: Optional[List[str]], drain_timeout: Optional[float]) -> None:
    settings = get_settings()

    if settings.realtime_backend == RealtimeBackend.MEMORY:
        logger.warning(
            "⚠️ REALTIME_BACKEND=memory in a standalone worker: events reach no WebSocket "
            "clients. Use REALTIME_BACKEND=redis to fan out through the API processes."
        )

    container = await ServiceContainer.build(settings, serve_hub=False)
    supervisor = container.start_workers(categories)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    names = ", ".join(pool.category.value for pool in supervisor.pools)
    logger.info(f"✅ Worker running: {names}")

    try:
        await stop.wait()
    finally:
        logger.info("🛑 Shutdown requested, draining pools...")
        await container.shutdown(drain_timeout)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    try:
        asyncio.run(run(args.category, args.drain_timeout))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
