"""habitsync — standalone entry point.

Starts a sync session for OWNER_USER_ID against the configured remote store:
1. Remote client
2. Session (subscribe + load both mirrors)
3. Summary loop — logs today's progress every SUMMARY_INTERVAL_MINUTES
"""

import asyncio
import logging

from habitsync.config import LOG_LEVEL, OWNER_USER_ID, SUMMARY_INTERVAL_MINUTES
from habitsync.errors import SyncError
from habitsync.remote.http import HttpRemoteStore
from habitsync.session import StaticAuth, SyncSession

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s — %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("habitsync")


def _log_summary(session: SyncSession) -> None:
    summary = session.summary()
    if not summary:
        log.info("No active habits")
        return
    log.info("Today: %s", summary["summary"])
    if summary.get("due_today"):
        log.info("Still due: %s", ", ".join(summary["due_today"]))


async def summary_loop(session: SyncSession) -> None:
    """Log a progress summary on a fixed interval."""
    while True:
        await asyncio.sleep(SUMMARY_INTERVAL_MINUTES * 60)
        try:
            _log_summary(session)
        except Exception as e:
            log.error("Summary failed: %s", e, exc_info=True)


async def main():
    """Boot sequence."""
    if not OWNER_USER_ID:
        log.error("OWNER_USER_ID is not set, nothing to sync")
        return

    store = HttpRemoteStore()
    session = SyncSession(store, StaticAuth(OWNER_USER_ID))

    try:
        await session.start()
    except SyncError as e:
        log.error("Could not start sync session: %s", e)
        await store.aclose()
        return

    _log_summary(session)
    try:
        await summary_loop(session)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        log.info("Shutting down...")
    finally:
        session.stop()
        await store.aclose()


if __name__ == "__main__":
    asyncio.run(main())
