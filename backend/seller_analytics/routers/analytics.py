from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from seller_analytics.models.analytics import (
    ArticleDetailResponse,
    CampaignMetricSeries,
    MetricGroupResponse,
    MetricSeriesRequest,
    Period,
    SummaryRequest,
    SummaryResponse,
)
from seller_analytics.models_sqlalchemy import get_db
from seller_analytics.services.analytics import metrics_aggregator, validate_period, validate_periods
from seller_analytics.services.analytics.metrics import METRICS
from seller_analytics.services.marketplace_sync.workspaces import get_workspace


router = APIRouter(prefix="/analytics", tags=["analytics"])


class MetricInfo(BaseModel):
    key: str
    label: str
    category: str
    is_percentage: bool


@router.get("/metrics", response_model=List[MetricInfo])
def list_metrics():
    return [
        MetricInfo(key=m.key, label=m.label, category=m.category, is_percentage=m.is_percentage)
        for m in METRICS.values()
    ]


@router.post("/workspaces/{workspace_id}/summary", response_model=SummaryResponse)
def get_summary(
    workspace_id: int,
    payload: SummaryRequest,
    db: Session = Depends(get_db),
):
    """Funnel and advertising totals for each requested period."""
    get_workspace(db, workspace_id)
    validate_periods(payload.periods)
    aggregated = metrics_aggregator.aggregate(
        db, workspace_id, payload.periods, excluded_nm_ids=payload.excluded_nm_ids
    )
    articles = metrics_aggregator.visible_articles(db, workspace_id, excluded_nm_ids=payload.excluded_nm_ids)
    return SummaryResponse(periods=payload.periods, articles=articles, aggregated_metrics=aggregated)


@router.post("/workspaces/{workspace_id}/metrics/{metric_key}", response_model=MetricGroupResponse)
def get_metric_series(
    workspace_id: int,
    metric_key: str,
    payload: MetricSeriesRequest,
    db: Session = Depends(get_db),
):
    """Per-article (and, for advertising metrics, per-campaign) series of one metric."""
    get_workspace(db, workspace_id)
    validate_periods(payload.periods)
    return metrics_aggregator.metric_series(
        db,
        workspace_id,
        metric_key,
        payload.periods,
        nm_ids=payload.nm_ids,
        excluded_nm_ids=payload.excluded_nm_ids,
    )


@router.post("/workspaces/{workspace_id}/campaigns/{metric_key}", response_model=List[CampaignMetricSeries])
def get_campaign_series(
    workspace_id: int,
    metric_key: str,
    payload: SummaryRequest,
    db: Session = Depends(get_db),
):
    """Per-campaign series of an advertising metric; empty for funnel metrics."""
    get_workspace(db, workspace_id)
    validate_periods(payload.periods)
    return metrics_aggregator.campaign_series(
        db, workspace_id, metric_key, payload.periods, excluded_nm_ids=payload.excluded_nm_ids
    )


@router.post("/workspaces/{workspace_id}/articles/{nm_id}", response_model=ArticleDetailResponse)
def get_article(
    workspace_id: int,
    nm_id: int,
    period: Period,
    db: Session = Depends(get_db),
):
    get_workspace(db, workspace_id)
    validate_period(period.date_from, period.date_to)
    return metrics_aggregator.article_daily(db, workspace_id, nm_id, period)
