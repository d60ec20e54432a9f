"""Fan-out of marketplace syncs across seller workspaces.

Scheduled runs list every eligible workspace, submit one task per workspace to
a bounded pool and wait for all of them. A task never raises: it returns a
:class:`WorkspaceSyncOutcome` and the run summary is folded from those at the
join, so one workspace's failure cannot touch its siblings.

Manual triggers target a single workspace, are rate limited by the interval
guard and run on the calling thread; their errors reach the caller unchanged.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Iterable, List, Optional

from seller_analytics.config import settings
from seller_analytics.exceptions import (
    ManualSyncRateLimitError,
    MissingCredentialError,
    SellerAnalyticsError,
)
from seller_analytics.models.sync import DateRange, WorkspaceRef
from seller_analytics.models_sqlalchemy import SessionLocal
from seller_analytics.models_sqlalchemy.models import UserRole
from seller_analytics.services.analytics.period_validator import validate_period
from seller_analytics.services.marketplace_client import CredentialRejectedError, MarketplaceClient
from seller_analytics.utils.logger import logger

from .analytics_sync import sync_workspace_analytics
from .executor import BoundedExecutor
from .interval_guard import check_manual_sync_allowed, hours_unit_label
from .warehouses import upsert_warehouses, warehouse_write_lock
from .workspaces import (
    claim_manual_sync,
    get_default_workspace,
    get_workspace,
    list_eligible_workspaces,
    mark_credential_invalid,
    mark_requested,
)

ANALYTICS = "analytics"
WAREHOUSES = "warehouses"

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class WorkspaceSyncOutcome:
    workspace_id: int
    status: str
    error: Optional[str] = None


@dataclass(frozen=True)
class RunSummary:
    kind: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    window: Optional[DateRange] = None

    @classmethod
    def fold(
        cls,
        kind: str,
        outcomes: Iterable[WorkspaceSyncOutcome],
        window: Optional[DateRange] = None,
    ) -> "RunSummary":
        outcomes = list(outcomes)
        return cls(
            kind=kind,
            total=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.status == SUCCEEDED),
            failed=sum(1 for o in outcomes if o.status == FAILED),
            skipped=sum(1 for o in outcomes if o.status == SKIPPED),
            window=window,
        )


def _owner(ref: WorkspaceRef) -> str:
    return ref.owner_email or f"user {ref.user_id}"


class SyncOrchestrator:
    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        client_factory: Callable[[], MarketplaceClient] = MarketplaceClient,
        workspace_lister: Callable = list_eligible_workspaces,
        analytics_syncer: Callable = sync_workspace_analytics,
        warehouse_syncer: Callable = upsert_warehouses,
        analytics_executor: Optional[BoundedExecutor] = None,
        warehouse_executor: Optional[BoundedExecutor] = None,
        now_fn: Callable[[], datetime] = _now_utc,
        today_fn: Callable[[], date] = date.today,
        role: UserRole = UserRole.seller,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.workspace_lister = workspace_lister
        self.analytics_syncer = analytics_syncer
        self.warehouse_syncer = warehouse_syncer
        self.now_fn = now_fn
        self.today_fn = today_fn
        self.role = role
        self._analytics_executor = analytics_executor
        self._warehouse_executor = warehouse_executor
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    @property
    def analytics_executor(self) -> BoundedExecutor:
        with self._executor_lock:
            if self._analytics_executor is None:
                self._analytics_executor = BoundedExecutor(
                    settings.ANALYTICS_SYNC_POOL_SIZE,
                    settings.SYNC_QUEUE_CAPACITY,
                    thread_name_prefix="analytics-sync",
                )
            return self._analytics_executor

    @property
    def warehouse_executor(self) -> BoundedExecutor:
        with self._executor_lock:
            if self._warehouse_executor is None:
                self._warehouse_executor = BoundedExecutor(
                    settings.WAREHOUSE_SYNC_POOL_SIZE,
                    settings.SYNC_QUEUE_CAPACITY,
                    thread_name_prefix="warehouse-sync",
                )
            return self._warehouse_executor

    def shutdown(self) -> None:
        with self._executor_lock:
            for executor in (self._analytics_executor, self._warehouse_executor):
                if executor is not None:
                    executor.shutdown(wait=True)
            self._analytics_executor = None
            self._warehouse_executor = None

    # ------------------------------------------------------------------
    # Scheduled runs
    # ------------------------------------------------------------------

    def _list_workspaces(self) -> List[WorkspaceRef]:
        db = self.session_factory()
        try:
            return [WorkspaceRef.from_model(w) for w in self.workspace_lister(db, self.role)]
        finally:
            db.close()

    def _dispatch(
        self,
        kind: str,
        executor: BoundedExecutor,
        task: Callable[..., WorkspaceSyncOutcome],
        workspaces: List[WorkspaceRef],
        window: Optional[DateRange] = None,
    ) -> RunSummary:
        args = (window,) if window is not None else ()
        futures = [executor.submit(task, ref, *args) for ref in workspaces]
        outcomes = [future.result() for future in futures]
        summary = RunSummary.fold(kind, outcomes, window)
        logger.info(
            f"{kind} sync finished: total={summary.total} succeeded={summary.succeeded} "
            f"failed={summary.failed} skipped={summary.skipped}"
        )
        return summary

    def run_scheduled_analytics_sync(self) -> RunSummary:
        """Sync cards, campaigns and daily analytics for every eligible workspace
        over the trailing backfill window."""
        window = DateRange.trailing_days(self.today_fn(), settings.SYNC_BACKFILL_DAYS)
        workspaces = self._list_workspaces()
        if not workspaces:
            logger.info("No eligible workspaces for analytics sync")
            return RunSummary(kind=ANALYTICS, window=window)

        logger.info(
            f"Starting analytics sync for {len(workspaces)} workspaces, "
            f"window {window.date_from}..{window.date_to} ({window.days} days)"
        )
        return self._dispatch(ANALYTICS, self.analytics_executor, self._analytics_task, workspaces, window)

    def run_scheduled_warehouse_sync(self) -> RunSummary:
        workspaces = self._list_workspaces()
        if not workspaces:
            logger.info("No eligible workspaces for warehouse sync")
            return RunSummary(kind=WAREHOUSES)

        logger.info(f"Starting warehouse sync for {len(workspaces)} workspaces")
        return self._dispatch(WAREHOUSES, self.warehouse_executor, self._warehouse_task, workspaces)

    def run_full_sync_in_background(self) -> threading.Thread:
        """Start a full analytics run on a daemon thread and return immediately."""
        thread = threading.Thread(
            target=self._run_logged,
            args=(self.run_scheduled_analytics_sync,),
            name="full-analytics-sync",
            daemon=True,
        )
        thread.start()
        return thread

    @staticmethod
    def _run_logged(job: Callable[[], RunSummary]) -> None:
        try:
            job()
        except Exception as exc:
            logger.error(f"Background sync run failed: {exc}", exc_info=True)

    # ------------------------------------------------------------------
    # Per-workspace tasks (never raise)
    # ------------------------------------------------------------------

    def _isolate(self, ref: WorkspaceRef, kind: str, work: Callable[[], None]) -> WorkspaceSyncOutcome:
        try:
            work()
        except CredentialRejectedError as exc:
            logger.error(
                f"{kind} sync failed for workspace {ref.id} ({_owner(ref)}): API key rejected: {exc.message}"
            )
            try:
                self._invalidate_credential(ref, exc)
            except Exception as mark_exc:
                logger.warning(f"Could not mark API key invalid for workspace {ref.id}: {mark_exc}")
            return WorkspaceSyncOutcome(ref.id, FAILED, exc.message)
        except SellerAnalyticsError as exc:
            logger.error(f"{kind} sync failed for workspace {ref.id} ({_owner(ref)}): {exc.message}")
            return WorkspaceSyncOutcome(ref.id, FAILED, exc.message)
        except Exception as exc:
            logger.error(
                f"{kind} sync failed for workspace {ref.id} ({_owner(ref)}): {exc}",
                exc_info=True,
            )
            return WorkspaceSyncOutcome(ref.id, FAILED, str(exc))
        return WorkspaceSyncOutcome(ref.id, SUCCEEDED)

    def _analytics_task(self, ref: WorkspaceRef, window: DateRange) -> WorkspaceSyncOutcome:
        if not ref.has_credential:
            logger.error(f"analytics sync failed for workspace {ref.id} ({_owner(ref)}): API key is blank")
            return WorkspaceSyncOutcome(ref.id, FAILED, "API key is blank")

        def work() -> None:
            now = self.now_fn()
            db = self.session_factory()
            client = self.client_factory()
            try:
                mark_requested(db, ref.id, now)
                self.analytics_syncer(db, ref, window, client, now=now)
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                client.close()
                db.close()

        return self._isolate(ref, ANALYTICS, work)

    def _warehouse_task(self, ref: WorkspaceRef) -> WorkspaceSyncOutcome:
        if not ref.has_credential:
            logger.info(f"Workspace {ref.id} has no API key; warehouse sync skipped")
            return WorkspaceSyncOutcome(ref.id, SKIPPED)

        def work() -> None:
            client = self.client_factory()
            try:
                warehouses = client.fetch_warehouses(ref.api_key)
            finally:
                client.close()

            with warehouse_write_lock():
                db = self.session_factory()
                try:
                    created, updated = self.warehouse_syncer(db, warehouses)
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
                finally:
                    db.close()
            logger.info(f"Workspace {ref.id}: warehouses created={created} updated={updated}")

        return self._isolate(ref, WAREHOUSES, work)

    def _invalidate_credential(self, ref: WorkspaceRef, exc: CredentialRejectedError) -> None:
        db = self.session_factory()
        try:
            mark_credential_invalid(db, ref.id, exc.message, now=self.now_fn())
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Single-workspace entry points (errors propagate)
    # ------------------------------------------------------------------

    def trigger_manual_sync(
        self,
        account_id: Optional[int] = None,
        workspace_id: Optional[int] = None,
    ) -> WorkspaceSyncOutcome:
        """Refresh one workspace now.

        Exactly one of ``account_id`` (its default workspace) or
        ``workspace_id`` must be given. Raises ``NotFoundError``,
        ``MissingCredentialError``, ``ManualSyncRateLimitError`` or whatever
        the sync itself raised; the requested-at claim is rolled back with a
        failed sync.
        """
        if (account_id is None) == (workspace_id is None):
            raise ValueError("Pass exactly one of account_id or workspace_id")

        window = DateRange.trailing_days(self.today_fn(), settings.SYNC_BACKFILL_DAYS)
        db = self.session_factory()
        client = None
        ref = None
        try:
            if workspace_id is not None:
                workspace = get_workspace(db, workspace_id)
            else:
                workspace = get_default_workspace(db, account_id)
            ref = WorkspaceRef.from_model(workspace)
            if not ref.has_credential:
                raise MissingCredentialError(f"Workspace {ref.id} has no API key")

            now = self.now_fn()
            check_manual_sync_allowed(ref.last_data_update_at, ref.last_data_update_requested_at, now=now)
            if not claim_manual_sync(db, ref.id, ref.last_data_update_requested_at, now):
                self._raise_lost_claim(db, ref.id, now)

            client = self.client_factory()
            self.analytics_syncer(db, ref, window, client, now=now)
            db.commit()
            logger.info(f"Manual sync completed for workspace {ref.id}")
            return WorkspaceSyncOutcome(ref.id, SUCCEEDED)
        except CredentialRejectedError as exc:
            db.rollback()
            self._invalidate_credential(ref, exc)
            raise
        except Exception:
            db.rollback()
            raise
        finally:
            if client is not None:
                client.close()
            db.close()

    def _raise_lost_claim(self, db, workspace_id: int, now: datetime) -> None:
        db.rollback()
        db.expire_all()
        fresh = get_workspace(db, workspace_id)
        check_manual_sync_allowed(fresh.last_data_update_at, fresh.last_data_update_requested_at, now=now)
        # The timestamp moved but is still old enough; another request is
        # mid-flight, so report the full interval.
        hours = settings.MANUAL_SYNC_MIN_INTERVAL_HOURS
        raise ManualSyncRateLimitError(hours, hours_unit_label(hours))

    def load_workspace_analytics(self, workspace_id: int, date_from: date, date_to: date) -> WorkspaceSyncOutcome:
        """Ad-hoc load for a user-supplied window. Not rate limited."""
        validate_period(date_from, date_to, today=self.today_fn())
        window = DateRange(date_from, date_to)

        db = self.session_factory()
        client = None
        ref = None
        try:
            ref = WorkspaceRef.from_model(get_workspace(db, workspace_id))
            if not ref.has_credential:
                raise MissingCredentialError(f"Workspace {ref.id} has no API key")
            client = self.client_factory()
            self.analytics_syncer(db, ref, window, client, now=self.now_fn())
            db.commit()
            logger.info(f"Loaded analytics for workspace {ref.id}, {date_from}..{date_to}")
            return WorkspaceSyncOutcome(ref.id, SUCCEEDED)
        except CredentialRejectedError as exc:
            db.rollback()
            self._invalidate_credential(ref, exc)
            raise
        except Exception:
            db.rollback()
            raise
        finally:
            if client is not None:
                client.close()
            db.close()


sync_orchestrator = SyncOrchestrator()
