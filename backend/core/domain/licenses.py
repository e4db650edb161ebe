"""
License lock tracking for team subscriptions.

A seat freed within 48 hours of being assigned is locked for 48 hours from
the moment it was freed. Without this, one paid seat could be rotated through
any number of people in quick succession. Locks are stored on the owner as a
list of epoch-millisecond timestamps.
"""

from collections.abc import Iterable
from datetime import timedelta

LOCK_DURATION = timedelta(hours=48)
LOCK_DURATION_MS = int(LOCK_DURATION.total_seconds() * 1000)


def is_lock_active(locked_at: int, now_ms: int) -> bool:
    """A lock is active for exactly LOCK_DURATION after it was recorded."""
    return locked_at + LOCK_DURATION_MS > now_ms


def prune_expired_locks(locks: Iterable[int], now_ms: int) -> list[int]:
    """Drop locks that have expired, keeping the order of the rest."""
    return [lock for lock in locks if is_lock_active(lock, now_ms)]


def count_active_locks(locks: Iterable[int], now_ms: int) -> int:
    return len(prune_expired_locks(locks, now_ms))


def lock_expiries(locks: Iterable[int], now_ms: int) -> list[int]:
    """Expiry timestamps of the currently active locks."""
    return [lock + LOCK_DURATION_MS for lock in prune_expired_locks(locks, now_ms)]


def locks_on_removal(joined_team_at: int | None, now_ms: int) -> bool:
    """Whether removing a member who joined at ``joined_team_at`` locks their seat.

    Members without a join timestamp (old or manually created memberships)
    never lock a seat.
    """
    if joined_team_at is None:
        return False
    return now_ms - joined_team_at <= LOCK_DURATION_MS


def effective_capacity(quantity: int, locks: Iterable[int], now_ms: int) -> int:
    """Seats usable right now: purchased quantity minus active locks."""
    return quantity - count_active_locks(locks, now_ms)
