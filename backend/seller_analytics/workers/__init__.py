"""
Background workers for Seller Analytics

Workers:
- sync_scheduler_loop: fires the warehouse sync (00:00) and the analytics
  sync (01:30) once a day
"""

from seller_analytics.workers.sync_scheduler_loop import run_sync_scheduler_loop

__all__ = [
    "run_sync_scheduler_loop",
]
