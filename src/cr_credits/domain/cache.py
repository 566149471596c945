"""Snapshot validity rules for the credits cold-start cache.

A snapshot is only adopted when it belongs to the requested user and was
captured within the expiry window. Anything else is treated as absent.
"""

from datetime import datetime, timedelta

from src.cr_credits.domain.models import CachedSnapshot


def is_snapshot_valid(
    snapshot: CachedSnapshot | None,
    user_id: str,
    now: datetime,
    expiry: timedelta,
) -> bool:
    if snapshot is None:
        return False
    if snapshot.user_id != user_id:
        return False
    if snapshot.value < 0:
        return False
    # Naive timestamps are not comparable with the aware clock
    if snapshot.captured_at.tzinfo is None:
        return False
    age = now - snapshot.captured_at
    # Future-dated snapshots are rejected, not treated as fresh
    return timedelta(0) <= age <= expiry
