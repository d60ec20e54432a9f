from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel

from seller_analytics.config import settings
from seller_analytics.services.marketplace_sync import SyncOrchestrator, sync_orchestrator
from seller_analytics.utils.logger import logger


router = APIRouter(prefix="/sync", tags=["marketplace_sync"])


def get_sync_orchestrator() -> SyncOrchestrator:
    return sync_orchestrator


class SyncTriggerResponse(BaseModel):
    workspace_id: int
    status: str


class LoadAnalyticsRequest(BaseModel):
    date_from: date
    date_to: date


class RunAllResponse(BaseModel):
    status: str


@router.post("/accounts/{account_id}/trigger", response_model=SyncTriggerResponse)
def trigger_account_sync(
    account_id: int,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Refresh the account's default workspace now (at most once per interval)."""
    outcome = orchestrator.trigger_manual_sync(account_id=account_id)
    return SyncTriggerResponse(workspace_id=outcome.workspace_id, status=outcome.status)


@router.post("/workspaces/{workspace_id}/trigger", response_model=SyncTriggerResponse)
def trigger_workspace_sync(
    workspace_id: int,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    outcome = orchestrator.trigger_manual_sync(workspace_id=workspace_id)
    return SyncTriggerResponse(workspace_id=outcome.workspace_id, status=outcome.status)


@router.post("/workspaces/{workspace_id}/load-analytics", response_model=SyncTriggerResponse)
def load_workspace_analytics(
    workspace_id: int,
    payload: LoadAnalyticsRequest,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    outcome = orchestrator.load_workspace_analytics(workspace_id, payload.date_from, payload.date_to)
    return SyncTriggerResponse(workspace_id=outcome.workspace_id, status=outcome.status)


@router.post("/run-all", response_model=RunAllResponse, status_code=status.HTTP_202_ACCEPTED)
def run_full_sync(
    x_internal_api_key: Optional[str] = Header(default=None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Start a full analytics run for every workspace in the background.

    Authentication: requires the shared INTERNAL_API_KEY in ``X-Internal-Api-Key``.
    """
    expected_key = settings.INTERNAL_API_KEY or ""
    if not expected_key or x_internal_api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid_internal_api_key",
        )
    orchestrator.run_full_sync_in_background()
    logger.info("Full analytics sync started via internal endpoint")
    return RunAllResponse(status="started")
