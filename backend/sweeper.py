"""
Standalone delegation expiry sweeper.

Runs the same periodic pass the API process runs from its lifespan, for
deployments that set DELEGATION_SWEEP_ENABLED=false on the API replicas and
run exactly one of these instead. Overlapping sweepers are safe, only
wasteful.

Run with: python sweeper.py [--once]
"""

import argparse
import asyncio
import logging
import signal

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("sweeper")


async def main(once: bool = False):
    """Sweep on the configured interval until SIGINT / SIGTERM."""
    from debtdesk.config import settings
    from debtdesk.services.expiry_sweeper import ExpirySweeper

    engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
    SessionMaker = async_sessionmaker(engine, expire_on_commit=False)

    # No push connections live in this process; expiry events are only logged.
    sweeper = ExpirySweeper(session_factory=SessionMaker)

    try:
        if once:
            result = await sweeper.tick()
            if result is not None:
                logger.info("Expired %d delegations", result.affected_count)
            return

        loop = asyncio.get_running_loop()
        stopped = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stopped.set)

        sweeper.start()
        logger.info("Sweeper started, interval %ss", sweeper.interval_seconds)
        await stopped.wait()
        await sweeper.stop()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Expire overdue case delegations")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    args = parser.parse_args()
    asyncio.run(main(once=args.once))
