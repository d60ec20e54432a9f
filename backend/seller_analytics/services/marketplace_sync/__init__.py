"""Marketplace data synchronization.

Nightly runs (analytics at 01:30, warehouses at 00:00) fan out across every
eligible seller workspace on bounded thread pools; see ``orchestrator``.
Sellers can also refresh one workspace on demand, at most once every
``MANUAL_SYNC_MIN_INTERVAL_HOURS`` hours (``interval_guard``).

Runs are started by ``seller_analytics.workers.sync_scheduler_loop`` and by the
endpoints in ``seller_analytics.routers.marketplace_sync``.
"""

from .orchestrator import RunSummary, SyncOrchestrator, WorkspaceSyncOutcome, sync_orchestrator
from .interval_guard import check_manual_sync_allowed, hours_unit_label, plural_bucket
from .executor import BoundedExecutor
