"""Freshness and lease-age predicates. Pure functions, no I/O."""

import time
from typing import Optional

STALE_AFTER_MS = 7 * 24 * 60 * 60 * 1000
LOCK_TIMEOUT_MS = 5 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_stale(
    last_enriched_at: Optional[int],
    now: Optional[int] = None,
    threshold_ms: int = STALE_AFTER_MS,
) -> bool:
    """True when content was never enriched or is older than the threshold."""
    if last_enriched_at is None:
        return True
    if now is None:
        now = now_ms()
    return (now - last_enriched_at) > threshold_ms


def is_lock_stale(
    lock_acquired_at: Optional[int],
    now: Optional[int] = None,
    timeout_ms: int = LOCK_TIMEOUT_MS,
) -> bool:
    """True when a lease is older than the timeout. An unset lease is not stale."""
    if lock_acquired_at is None:
        return False
    if now is None:
        now = now_ms()
    return (now - lock_acquired_at) > timeout_ms
