"""Daily cron loop for the marketplace sync runs.

Started from ``seller_analytics.main.startup_event`` when
``SCHEDULER_ENABLED`` is true. Fires the warehouse sync at
``WAREHOUSE_SYNC_TIME`` and the analytics sync at ``ANALYTICS_SYNC_TIME``
(server-local time). Each run executes in a worker thread so the event loop
keeps serving requests; a failing run is logged and the loop carries on.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from seller_analytics.config import settings
from seller_analytics.utils.logger import logger


@dataclass(frozen=True)
class DailyJob:
    name: str
    at: time
    run: Callable[[], object]


def parse_hhmm(value: str) -> time:
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Expected HH:MM, got {value!r}") from exc


def next_fire_time(now: datetime, at: time) -> datetime:
    """First occurrence of ``at`` strictly after ``now``."""
    candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def next_due_jobs(jobs: Sequence[DailyJob], now: datetime) -> Tuple[datetime, List[DailyJob]]:
    """The earliest upcoming fire time and every job scheduled for it."""
    if not jobs:
        raise ValueError("No jobs to schedule")
    schedule = [(next_fire_time(now, job.at), job) for job in jobs]
    fire_at = min(when for when, _ in schedule)
    return fire_at, [job for when, job in schedule if when == fire_at]


def default_jobs() -> List[DailyJob]:
    from seller_analytics.services.marketplace_sync import sync_orchestrator

    return [
        DailyJob("warehouse_sync", parse_hhmm(settings.WAREHOUSE_SYNC_TIME), sync_orchestrator.run_scheduled_warehouse_sync),
        DailyJob("analytics_sync", parse_hhmm(settings.ANALYTICS_SYNC_TIME), sync_orchestrator.run_scheduled_analytics_sync),
    ]


async def run_job_once(job: DailyJob) -> bool:
    started = datetime.now()
    logger.info(f"Scheduler: starting {job.name}")
    try:
        await asyncio.to_thread(job.run)
    except Exception as exc:
        logger.error(f"Scheduler: {job.name} failed: {exc}", exc_info=True)
        return False
    logger.info(f"Scheduler: {job.name} finished in {(datetime.now() - started).total_seconds():.1f}s")
    return True


async def run_sync_scheduler_loop(
    jobs: Optional[Sequence[DailyJob]] = None,
    *,
    now_fn: Callable[[], datetime] = datetime.now,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    max_iterations: Optional[int] = None,
) -> None:
    jobs = list(jobs) if jobs is not None else default_jobs()
    logger.info(
        "Sync scheduler loop started: "
        + ", ".join(f"{job.name}@{job.at.strftime('%H:%M')}" for job in jobs)
    )

    last_fired: Optional[datetime] = None
    iterations = 0
    while max_iterations is None or iterations < max_iterations:
        now = now_fn()
        if last_fired is not None and now < last_fired:
            now = last_fired
        fire_at, due = next_due_jobs(jobs, now)
        await sleep(max(0.0, (fire_at - now_fn()).total_seconds()))

        for job in due:
            await run_job_once(job)
        last_fired = fire_at
        iterations += 1
