"""Console watcher for the AlgoHolics tracker.

Connects to the PostgreSQL gateway, keeps a synchronized snapshot of
members, problems and submissions, and logs the leaderboard every time a
change notification lands. Stops on SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from algoholics.config import get_settings
from algoholics.gateway import PostgresGateway
from algoholics.logging_config import setup_logging
from algoholics.models import Snapshot
from algoholics.session import session_store_from_settings
from algoholics.sync import SyncController
from algoholics.views import build_leaderboard

logger = structlog.get_logger()


async def main() -> None:
    """Entry point for the tracker watcher."""
    settings = get_settings()
    setup_logging(settings)

    gateway = PostgresGateway.from_settings(settings)
    await gateway.connect()
    if settings.apply_schema:
        await gateway.apply_schema()

    sessions = session_store_from_settings(settings)
    session = await sessions.load()
    controller = SyncController(gateway, atomic_upsert=settings.atomic_upsert)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    def on_snapshot(snapshot: Snapshot) -> None:
        if snapshot.loading:
            return
        session.reconcile(snapshot.members)
        board = build_leaderboard(snapshot)
        logger.info(
            "snapshot_updated",
            version=snapshot.version,
            members=len(snapshot.members),
            problems=len(snapshot.problems),
            submissions=len(snapshot.submissions),
            leader=board[0].member.name if board else None,
        )

    try:
        async with controller:
            if controller.error:
                logger.error("connection_error", error=controller.error)
            on_snapshot(controller.snapshot)
            controller.add_listener(on_snapshot)
            await stop.wait()
    finally:
        await sessions.save(session)
        await sessions.close()
        await gateway.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
