"""
Stale enrichment lock sweep.

A worker that dies mid-enrichment leaves enrichmentInProgress set on its
city. acquire() already takes over such leases on the next attempt; this
job clears them proactively so status reads stop reporting in_progress.

Usage:
    # As a standalone cron job (hourly):
    python -m services.api.enrichment.lock_sweep

    # Programmatic:
    pool = await asyncpg.create_pool(DATABASE_URL)
    result = await run_lock_sweep(pool)

    # In-process, started by the API lifespan:
    task = asyncio.create_task(periodic_lock_sweep(service, 3600))
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass

import asyncpg

from services.api.enrichment.freshness import LOCK_TIMEOUT_MS
from services.api.enrichment.lock import LockManager
from services.api.enrichment.store import EnrichmentStore

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_S = 60 * 60


@dataclass
class SweepResult:
    """Result of one lock sweep run."""
    cleared_count: int
    duration_s: float


async def run_lock_sweep(
    pool: asyncpg.Pool,
    *,
    lock_timeout_ms: int = LOCK_TIMEOUT_MS,
) -> SweepResult:
    start = time.monotonic()
    locks = LockManager(EnrichmentStore(pool), timeout_ms=lock_timeout_ms)
    cleared = await locks.sweep_stale_locks()
    duration = round(time.monotonic() - start, 3)

    logger.info("Lock sweep complete: %d stale locks cleared in %.3fs", cleared, duration)
    return SweepResult(cleared_count=cleared, duration_s=duration)


async def periodic_lock_sweep(service, interval_s: float = DEFAULT_SWEEP_INTERVAL_S) -> None:
    """Sweep every interval_s until cancelled. A failed run does not stop the loop."""
    while True:
        try:
            await asyncio.sleep(interval_s)
            await service.sweep_stale_locks()
        except asyncio.CancelledError:
            logger.info("Periodic lock sweep stopped")
            raise
        except Exception:
            logger.exception("Periodic lock sweep failed")


async def main() -> None:
    """CLI entry point for the lock sweep."""
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        description="Clear abandoned city enrichment locks"
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
    )
    parser.add_argument(
        "--lock-timeout-s",
        type=int,
        default=LOCK_TIMEOUT_MS // 1000,
        help=f"Lease age in seconds considered abandoned (default {LOCK_TIMEOUT_MS // 1000})",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.database_url:
        logger.error("DATABASE_URL not set")
        sys.exit(1)

    pool = await asyncpg.create_pool(args.database_url)
    try:
        result = await run_lock_sweep(pool, lock_timeout_ms=args.lock_timeout_s * 1000)
        logger.info("Sweep result: %s", result)
    finally:
        await pool.close()


def cli() -> None:
    """Console-script wrapper."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
