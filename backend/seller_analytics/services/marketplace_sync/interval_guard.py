"""Minimum-interval check for manually triggered syncs.

Manual "refresh my data" requests hit the same rate-limited marketplace API as
the nightly runs, so a workspace may only be refreshed once every
``MANUAL_SYNC_MIN_INTERVAL_HOURS`` hours. The last action is whichever is
newer of the last successful sync and the last request.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from seller_analytics.config import settings
from seller_analytics.exceptions import ManualSyncRateLimitError

# one / few / many
HOUR_FORMS: Dict[str, Tuple[str, str, str]] = {
    "ru": ("час", "часа", "часов"),
    "en": ("hour", "hours", "hours"),
}


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; those are stored as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def plural_bucket(n: int) -> str:
    """Return ``"one"``, ``"few"`` or ``"many"`` for ``n``.

    1, 21, 31 -> one; 2-4, 22-24 -> few; 0, 5-20, 25-30 -> many.
    """
    n = abs(int(n))
    if n % 10 == 1 and n % 100 != 11:
        return "one"
    if 2 <= n % 10 <= 4 and not 12 <= n % 100 <= 14:
        return "few"
    return "many"


def hours_unit_label(n: int, locale: Optional[str] = None) -> str:
    forms = HOUR_FORMS.get((locale or settings.MESSAGES_LOCALE).lower(), HOUR_FORMS["en"])
    one, few, many = forms
    return {"one": one, "few": few, "many": many}[plural_bucket(n)]


def last_action_at(
    last_data_update_at: Optional[datetime],
    last_data_update_requested_at: Optional[datetime],
) -> Optional[datetime]:
    candidates = [
        dt
        for dt in (_to_utc(last_data_update_at), _to_utc(last_data_update_requested_at))
        if dt is not None
    ]
    return max(candidates) if candidates else None


def remaining_hours(
    last_data_update_at: Optional[datetime],
    last_data_update_requested_at: Optional[datetime],
    now: Optional[datetime] = None,
    min_interval_hours: Optional[int] = None,
) -> int:
    """Whole hours until a manual sync is allowed again; 0 means allowed now."""
    min_interval_hours = (
        settings.MANUAL_SYNC_MIN_INTERVAL_HOURS if min_interval_hours is None else min_interval_hours
    )
    last_action = last_action_at(last_data_update_at, last_data_update_requested_at)
    if last_action is None:
        return 0

    now = _to_utc(now) or datetime.now(timezone.utc)
    # Clock skew between app servers can put last_action slightly ahead of now.
    elapsed_hours = max(0, math.floor((now - last_action).total_seconds() / 3600))
    if elapsed_hours < min_interval_hours:
        return min_interval_hours - elapsed_hours
    return 0


def check_manual_sync_allowed(
    last_data_update_at: Optional[datetime],
    last_data_update_requested_at: Optional[datetime],
    now: Optional[datetime] = None,
    min_interval_hours: Optional[int] = None,
) -> None:
    """Raise :class:`ManualSyncRateLimitError` if the workspace synced too recently."""
    remaining = remaining_hours(
        last_data_update_at,
        last_data_update_requested_at,
        now=now,
        min_interval_hours=min_interval_hours,
    )
    if remaining > 0:
        raise ManualSyncRateLimitError(remaining, hours_unit_label(remaining))
