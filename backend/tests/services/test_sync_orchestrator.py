import logging
import re
import threading
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

from seller_analytics.models.sync import DateRange
from seller_analytics.services.marketplace_client import CredentialRejectedError, WarehouseSummary
from seller_analytics.services.marketplace_sync.executor import BoundedExecutor
from seller_analytics.services.marketplace_sync.orchestrator import RunSummary, SyncOrchestrator

NOW = datetime(2025, 3, 15, 1, 30, tzinfo=timezone.utc)
TODAY = date(2025, 3, 15)


def _workspace(workspace_id, api_key="key-abcdefghijk"):
    return SimpleNamespace(
        id=workspace_id,
        user_id=workspace_id * 10,
        user=SimpleNamespace(email=f"owner{workspace_id}@example.com"),
        api_key=api_key,
        last_data_update_at=None,
        last_data_update_requested_at=None,
    )


def _orchestrator(workspaces, analytics_syncer=None, warehouse_syncer=None, client=None):
    sessions = []

    def session_factory():
        session = MagicMock()
        sessions.append(session)
        return session

    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        client_factory=lambda: client or MagicMock(),
        workspace_lister=lambda db, role: list(workspaces),
        analytics_syncer=analytics_syncer or MagicMock(),
        warehouse_syncer=warehouse_syncer or MagicMock(return_value=(0, 0)),
        analytics_executor=BoundedExecutor(2, 100, thread_name_prefix="analytics-sync"),
        warehouse_executor=BoundedExecutor(2, 100, thread_name_prefix="warehouse-sync"),
        now_fn=lambda: NOW,
        today_fn=lambda: TODAY,
    )
    return orchestrator, sessions


def test_empty_workspace_list_is_a_noop():
    syncer = MagicMock()
    orchestrator, _ = _orchestrator([], analytics_syncer=syncer)

    summary = orchestrator.run_scheduled_analytics_sync()

    assert (summary.total, summary.succeeded, summary.failed) == (0, 0, 0)
    syncer.assert_not_called()
    orchestrator.shutdown()


def test_one_failure_is_isolated(caplog):
    caplog.set_level(logging.INFO, logger="seller_analytics")

    def syncer(db, ref, window, client, now=None):
        if ref.id == 2:
            raise RuntimeError("marketplace exploded")

    orchestrator, _ = _orchestrator([_workspace(1), _workspace(2), _workspace(3)], analytics_syncer=syncer)

    summary = orchestrator.run_scheduled_analytics_sync()
    orchestrator.shutdown()

    assert summary.succeeded == 2
    assert summary.failed == 1
    assert summary.succeeded + summary.failed == summary.total == 3
    mentions = [r for r in caplog.records if re.search(r"workspace 2\b", r.getMessage())]
    assert len(mentions) == 1
    assert mentions[0].levelno == logging.ERROR
    assert "owner2@example.com" in mentions[0].getMessage()


def test_window_is_trailing_fourteen_days_ending_yesterday():
    seen = []
    orchestrator, _ = _orchestrator(
        [_workspace(1)], analytics_syncer=lambda db, ref, window, client, now=None: seen.append(window)
    )

    summary = orchestrator.run_scheduled_analytics_sync()
    orchestrator.shutdown()

    assert seen == [DateRange(date(2025, 3, 1), date(2025, 3, 14))]
    assert summary.window == seen[0]


def test_each_task_commits_its_own_session():
    orchestrator, sessions = _orchestrator([_workspace(1), _workspace(2)])

    orchestrator.run_scheduled_analytics_sync()
    orchestrator.shutdown()

    # One listing session plus one per workspace.
    assert len(sessions) == 3
    for session in sessions[1:]:
        session.commit.assert_called_once()
        session.close.assert_called_once()


def test_failed_task_rolls_back():
    orchestrator, sessions = _orchestrator(
        [_workspace(1)], analytics_syncer=MagicMock(side_effect=ValueError("bad row"))
    )

    summary = orchestrator.run_scheduled_analytics_sync()
    orchestrator.shutdown()

    assert summary.failed == 1
    sessions[1].rollback.assert_called_once()
    sessions[1].commit.assert_not_called()


def test_blank_credential_counts_as_failed_analytics_but_skipped_warehouse():
    workspaces = [_workspace(1), _workspace(2, api_key="  ")]
    client = MagicMock()
    client.fetch_warehouses.return_value = [WarehouseSummary(id=1, name="Koledino")]
    orchestrator, _ = _orchestrator(workspaces, client=client)

    analytics = orchestrator.run_scheduled_analytics_sync()
    warehouses = orchestrator.run_scheduled_warehouse_sync()
    orchestrator.shutdown()

    assert (analytics.succeeded, analytics.failed, analytics.skipped) == (1, 1, 0)
    assert (warehouses.succeeded, warehouses.failed, warehouses.skipped) == (1, 0, 1)
    client.fetch_warehouses.assert_called_once_with("key-abcdefghijk")


def test_credential_rejected_marks_workspace_invalid():
    rejected = CredentialRejectedError("401", category="content", upstream_status=401)
    orchestrator, sessions = _orchestrator([_workspace(1)], analytics_syncer=MagicMock(side_effect=rejected))

    summary = orchestrator.run_scheduled_analytics_sync()
    orchestrator.shutdown()

    assert summary.failed == 1
    # listing, task, then the separate invalidation session
    assert len(sessions) == 3
    sessions[2].execute.assert_called_once()
    sessions[2].commit.assert_called_once()


def test_tasks_run_on_named_pool_threads():
    names = []
    lock = threading.Lock()

    def syncer(db, ref, window, client, now=None):
        with lock:
            names.append(threading.current_thread().name)

    orchestrator, _ = _orchestrator([_workspace(i) for i in range(1, 6)], analytics_syncer=syncer)
    orchestrator.run_scheduled_analytics_sync()
    orchestrator.shutdown()

    assert len(names) == 5
    assert all(name.startswith("analytics-sync") for name in names)


def test_run_summary_fold():
    from seller_analytics.services.marketplace_sync.orchestrator import WorkspaceSyncOutcome

    summary = RunSummary.fold(
        "warehouses",
        [
            WorkspaceSyncOutcome(1, "succeeded"),
            WorkspaceSyncOutcome(2, "failed", "x"),
            WorkspaceSyncOutcome(3, "skipped"),
        ],
    )
    assert (summary.total, summary.succeeded, summary.failed, summary.skipped) == (3, 1, 1, 1)


def test_full_sync_in_background_runs_on_daemon_thread():
    done = threading.Event()

    def syncer(db, ref, window, client, now=None):
        done.set()

    orchestrator, _ = _orchestrator([_workspace(1)], analytics_syncer=syncer)
    thread = orchestrator.run_full_sync_in_background()
    thread.join(timeout=5)
    orchestrator.shutdown()

    assert thread.daemon
    assert done.is_set()
