"""Multi-period KPI rollups over stored funnel and advertising rows.

Periods are an opaque, caller-ordered list: they may overlap and need not be
chronological. "Previous" for change computation is always the prior entry
in the list. Callers validate periods with ``validate_periods`` first.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from seller_analytics.exceptions import NotFoundError, PeriodValidationError
from seller_analytics.models.analytics import (
    AggregatedMetrics,
    ArticleCampaign,
    ArticleDetailResponse,
    ArticleMetricSeries,
    ArticleSummary,
    CampaignMetricSeries,
    DailyMetrics,
    MetricGroupResponse,
    Period,
    StockInfo,
)
from seller_analytics.utils.logger import logger

from . import repository
from .metrics import (
    ADVERTISING,
    AdvertisingTotals,
    FunnelTotals,
    MetricDefinition,
    build_series,
    get_metric,
    metric_value,
    to_aggregated_metrics,
)


def _in_period(row, period: Period) -> bool:
    return period.date_from <= row.date <= period.date_to


def _span(periods: Sequence[Period]):
    return min(p.date_from for p in periods), max(p.date_to for p in periods)


def _group_by_nm(rows: Iterable) -> Dict[int, list]:
    grouped: Dict[int, list] = defaultdict(list)
    for row in rows:
        grouped[row.nm_id].append(row)
    return grouped


class MetricsAggregator:
    def __init__(self, repo=repository):
        self.repo = repo

    def _require_metric(self, metric_key: str) -> MetricDefinition:
        metric = get_metric(metric_key)
        if metric is None:
            raise PeriodValidationError(
                "unknown_metric",
                f"Unknown metric: {metric_key}",
                {"metric_key": metric_key},
            )
        return metric

    def aggregate(
        self,
        db: Session,
        workspace_id: int,
        periods: Sequence[Period],
        excluded_nm_ids: Optional[Sequence[int]] = None,
    ) -> Dict[int, AggregatedMetrics]:
        """Funnel and advertising totals per period id over visible articles."""
        if not periods:
            return {}
        excluded = set(excluded_nm_ids or [])
        date_from, date_to = _span(periods)

        funnel_rows = self.repo.load_funnel_rows(
            db, workspace_id, date_from, date_to, excluded_nm_ids=excluded
        )
        campaign_ids = [c.advert_id for c in self.repo.load_campaigns(db, workspace_id)]
        ad_rows = self.repo.load_advertising_rows(
            db, campaign_ids, date_from, date_to, excluded_nm_ids=excluded
        )

        result: Dict[int, AggregatedMetrics] = {}
        for period in periods:
            funnel = FunnelTotals.from_rows(r for r in funnel_rows if _in_period(r, period))
            advertising = AdvertisingTotals.from_rows(r for r in ad_rows if _in_period(r, period))
            result[period.id] = to_aggregated_metrics(funnel, advertising)

        logger.info(
            f"Aggregated workspace {workspace_id}: periods={len(periods)} "
            f"funnel_rows={len(funnel_rows)} ad_rows={len(ad_rows)} excluded={len(excluded)}"
        )
        return result

    def metric_series(
        self,
        db: Session,
        workspace_id: int,
        metric_key: str,
        periods: Sequence[Period],
        nm_ids: Optional[Sequence[int]] = None,
        excluded_nm_ids: Optional[Sequence[int]] = None,
    ) -> MetricGroupResponse:
        """One series per article for ``metric_key``; advertising metrics also
        get per-campaign series."""
        metric = self._require_metric(metric_key)
        response = MetricGroupResponse(
            metric_name=metric.key,
            metric_label=metric.label,
            category=metric.category,
        )
        if not periods:
            return response

        cards = self.repo.load_cards(db, workspace_id, nm_ids=nm_ids, excluded_nm_ids=excluded_nm_ids)
        if not cards:
            return response
        card_nm_ids = [card.nm_id for card in cards]
        date_from, date_to = _span(periods)

        funnel_by_nm = _group_by_nm(
            self.repo.load_funnel_rows(db, workspace_id, date_from, date_to, nm_ids=card_nm_ids)
        )
        campaigns = self.repo.load_campaigns(db, workspace_id)
        ad_by_nm = _group_by_nm(
            self.repo.load_advertising_rows(
                db, [c.advert_id for c in campaigns], date_from, date_to, nm_ids=card_nm_ids
            )
        )

        period_ids = [p.id for p in periods]
        for card in cards:
            values = []
            for period in periods:
                funnel = FunnelTotals.from_rows(
                    r for r in funnel_by_nm.get(card.nm_id, []) if _in_period(r, period)
                )
                advertising = AdvertisingTotals.from_rows(
                    r for r in ad_by_nm.get(card.nm_id, []) if _in_period(r, period)
                )
                values.append(metric_value(metric.key, funnel, advertising))
            response.articles.append(
                ArticleMetricSeries(
                    nm_id=card.nm_id,
                    vendor_code=card.vendor_code,
                    photo_tm=card.photo_tm,
                    periods=build_series(period_ids, values, metric.is_percentage),
                )
            )

        if metric.category == ADVERTISING:
            response.campaigns = self._campaign_series(
                db, metric, periods, campaigns, excluded_nm_ids=excluded_nm_ids
            )
        return response

    def campaign_series(
        self,
        db: Session,
        workspace_id: int,
        metric_key: str,
        periods: Sequence[Period],
        excluded_nm_ids: Optional[Sequence[int]] = None,
    ) -> List[CampaignMetricSeries]:
        """Per-campaign series for an advertising metric.

        Campaigns with no non-zero value in any period are left out.
        """
        metric = self._require_metric(metric_key)
        if metric.category != ADVERTISING or not periods:
            return []
        campaigns = self.repo.load_campaigns(db, workspace_id)
        return self._campaign_series(db, metric, periods, campaigns, excluded_nm_ids=excluded_nm_ids)

    def _campaign_series(
        self,
        db: Session,
        metric: MetricDefinition,
        periods: Sequence[Period],
        campaigns: Sequence,
        excluded_nm_ids: Optional[Sequence[int]] = None,
    ) -> List[CampaignMetricSeries]:
        if not campaigns:
            return []
        date_from, date_to = _span(periods)
        campaign_ids = [c.advert_id for c in campaigns]

        rows_by_campaign: Dict[int, list] = defaultdict(list)
        for row in self.repo.load_advertising_rows(
            db, campaign_ids, date_from, date_to, excluded_nm_ids=excluded_nm_ids
        ):
            rows_by_campaign[row.campaign_id].append(row)

        articles_by_campaign: Dict[int, List[int]] = defaultdict(list)
        for link in self.repo.load_campaign_articles(db, campaign_ids):
            articles_by_campaign[link.campaign_id].append(link.nm_id)

        empty_funnel = FunnelTotals()
        period_ids = [p.id for p in periods]
        series: List[CampaignMetricSeries] = []
        for campaign in campaigns:
            values = [
                metric_value(
                    metric.key,
                    empty_funnel,
                    AdvertisingTotals.from_rows(
                        r for r in rows_by_campaign.get(campaign.advert_id, []) if _in_period(r, period)
                    ),
                )
                for period in periods
            ]
            if not any(v for v in values if v is not None):
                continue
            series.append(
                CampaignMetricSeries(
                    campaign_id=campaign.advert_id,
                    campaign_name=campaign.name,
                    articles=articles_by_campaign.get(campaign.advert_id, []),
                    periods=build_series(period_ids, values, metric.is_percentage),
                )
            )
        return series

    def article_daily(
        self,
        db: Session,
        workspace_id: int,
        nm_id: int,
        period: Period,
    ) -> ArticleDetailResponse:
        """Detail view of one article: period totals, one row per day of
        ``period``, its running campaigns and current warehouse stocks."""
        card = self.repo.load_card(db, workspace_id, nm_id)
        if card is None:
            raise NotFoundError(f"Article {nm_id} not found in workspace {workspace_id}")

        funnel_rows = self.repo.load_funnel_rows(
            db, workspace_id, period.date_from, period.date_to, nm_ids=[nm_id]
        )
        campaign_ids = [c.advert_id for c in self.repo.load_campaigns(db, workspace_id)]
        ad_rows = self.repo.load_advertising_rows(
            db, campaign_ids, period.date_from, period.date_to, nm_ids=[nm_id]
        )
        funnel_by_day = defaultdict(list)
        for row in funnel_rows:
            funnel_by_day[row.date].append(row)
        ad_by_day = defaultdict(list)
        for row in ad_rows:
            ad_by_day[row.date].append(row)

        daily: List[DailyMetrics] = []
        day = period.date_from
        while day <= period.date_to:
            metrics = to_aggregated_metrics(
                FunnelTotals.from_rows(funnel_by_day.get(day, [])),
                AdvertisingTotals.from_rows(ad_by_day.get(day, [])),
            )
            daily.append(DailyMetrics(day=day, **metrics.model_dump()))
            day += timedelta(days=1)

        return ArticleDetailResponse(
            article=_article_summary(card),
            period=period,
            totals=to_aggregated_metrics(
                FunnelTotals.from_rows(funnel_rows), AdvertisingTotals.from_rows(ad_rows)
            ),
            daily=daily,
            campaigns=[
                ArticleCampaign(
                    campaign_id=c.advert_id,
                    name=c.name,
                    type=c.type.description,
                    status=c.status.description,
                )
                for c in self.repo.load_article_campaigns(db, workspace_id, nm_id)
            ],
            stocks=self._stocks(db, workspace_id, nm_id),
            bundle=[_article_summary(c) for c in self.repo.load_bundle_cards(db, workspace_id, card)],
        )

    def _stocks(self, db: Session, workspace_id: int, nm_id: int) -> List[StockInfo]:
        """Stock per warehouse summed over sizes, largest first."""
        amounts: Dict[int, int] = defaultdict(int)
        updated: Dict[int, datetime] = {}
        for stock in self.repo.load_stocks(db, workspace_id, nm_id):
            amounts[stock.warehouse_id] += stock.amount or 0
            latest = updated.get(stock.warehouse_id)
            if stock.updated_at is not None and (latest is None or stock.updated_at > latest):
                updated[stock.warehouse_id] = stock.updated_at
        names = self.repo.load_warehouse_names(db, list(amounts))
        stocks = [
            StockInfo(
                warehouse_id=warehouse_id,
                warehouse_name=names.get(warehouse_id) or f"Warehouse {warehouse_id}",
                amount=amount,
                updated_at=updated.get(warehouse_id),
            )
            for warehouse_id, amount in amounts.items()
        ]
        stocks.sort(key=lambda s: (-s.amount, s.warehouse_id))
        return stocks

    def visible_articles(
        self,
        db: Session,
        workspace_id: int,
        excluded_nm_ids: Optional[Sequence[int]] = None,
    ) -> List[ArticleSummary]:
        cards = self.repo.load_cards(db, workspace_id, excluded_nm_ids=excluded_nm_ids)
        return [_article_summary(card) for card in cards]


def _article_summary(card) -> ArticleSummary:
    return ArticleSummary(
        nm_id=card.nm_id,
        vendor_code=card.vendor_code,
        title=card.title,
        photo_tm=card.photo_tm,
    )


metrics_aggregator = MetricsAggregator()
