"""Window rules for ad-hoc reporting periods.

A reporting period is accepted iff ``date_from <= date_to <= today``,
``date_to - date_from <= 7`` days and ``today - date_from <= 7`` days.
Period ids in one request must be unique. Each rule raises its own
:class:`PeriodValidationError` so the caller can tell the user exactly what
to fix.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional, Sequence

from seller_analytics.config import settings
from seller_analytics.exceptions import PeriodValidationError
from seller_analytics.models.analytics import Period


def validate_period(
    date_from: date,
    date_to: date,
    *,
    today: Optional[date] = None,
    max_days: Optional[int] = None,
) -> None:
    today = today or date.today()
    max_days = settings.REPORT_MAX_PERIOD_DAYS if max_days is None else max_days

    _validate_order(date_from, date_to)
    _validate_date_to_not_in_future(date_to, today)
    _validate_length(date_from, date_to, max_days)
    _validate_date_from_not_too_old(date_from, today, max_days)


def validate_periods(
    periods: Sequence[Period],
    *,
    today: Optional[date] = None,
    max_periods: Optional[int] = None,
) -> None:
    """Validate a caller-ordered list of reporting periods."""
    max_periods = settings.REPORT_MAX_PERIODS if max_periods is None else max_periods
    count = len(periods or [])
    if count < 1 or count > max_periods:
        raise PeriodValidationError(
            "period_count",
            f"Between 1 and {max_periods} periods are required, got {count}",
            {"count": count, "max_periods": max_periods},
        )
    _validate_unique_ids(periods)
    for period in periods:
        validate_period(period.date_from, period.date_to, today=today)


def _validate_unique_ids(periods: Sequence[Period]) -> None:
    # Results are keyed by period id.
    seen = set()
    for period in periods:
        if period.id in seen:
            raise PeriodValidationError(
                "duplicate_period_id",
                f"Period id {period.id} is used more than once",
                {"period_id": period.id},
            )
        seen.add(period.id)


def _validate_order(date_from: date, date_to: date) -> None:
    if date_from > date_to:
        raise PeriodValidationError(
            "date_from_after_date_to",
            "Period start cannot be after period end",
            {"date_from": date_from, "date_to": date_to},
        )


def _validate_date_to_not_in_future(date_to: date, today: date) -> None:
    if date_to > today:
        raise PeriodValidationError(
            "date_to_in_future",
            "Period end cannot be in the future",
            {"date_to": date_to, "today": today},
        )


def _validate_length(date_from: date, date_to: date, max_days: int) -> None:
    days_between = (date_to - date_from).days
    if days_between > max_days:
        raise PeriodValidationError(
            "period_too_long",
            f"Period cannot exceed {max_days} days. Requested period: {days_between} days",
            {"max_days": max_days, "requested_days": days_between},
        )


def _validate_date_from_not_too_old(date_from: date, today: date, max_days: int) -> None:
    min_date = today - timedelta(days=max_days)
    if date_from < min_date:
        raise PeriodValidationError(
            "date_from_too_old",
            f"Period start cannot be earlier than {max_days} days ago. Earliest allowed date: {min_date}",
            {"max_days": max_days, "min_date": min_date},
        )
