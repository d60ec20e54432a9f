from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Union
from datetime import date, datetime
from decimal import Decimal


MetricValue = Union[int, Decimal]


class Period(BaseModel):
    id: int
    label: str
    date_from: date
    date_to: date


class MetricPoint(BaseModel):
    period_id: int
    value: Optional[MetricValue] = None
    change_percent: Optional[Decimal] = None


class AggregatedMetrics(BaseModel):
    # Funnel
    transitions: int = 0
    cart: int = 0
    orders: int = 0
    orders_amount: Decimal = Decimal("0")
    cart_conversion: Optional[Decimal] = None
    order_conversion: Optional[Decimal] = None

    # Advertising
    views: int = 0
    clicks: int = 0
    costs: Decimal = Decimal("0")
    cpc: Optional[Decimal] = None
    ctr: Optional[Decimal] = None
    cpo: Optional[Decimal] = None
    drr: Optional[Decimal] = None


class ArticleMetricSeries(BaseModel):
    nm_id: int
    vendor_code: Optional[str] = None
    photo_tm: Optional[str] = None
    periods: List[MetricPoint]


class CampaignMetricSeries(BaseModel):
    campaign_id: int
    campaign_name: str
    articles: List[int]
    periods: List[MetricPoint]


class MetricGroupResponse(BaseModel):
    metric_name: str
    metric_label: str
    category: str
    articles: List[ArticleMetricSeries] = Field(default_factory=list)
    campaigns: List[CampaignMetricSeries] = Field(default_factory=list)


class SummaryRequest(BaseModel):
    periods: List[Period]
    excluded_nm_ids: List[int] = Field(default_factory=list)


class MetricSeriesRequest(BaseModel):
    periods: List[Period]
    # Empty means every article of the workspace.
    nm_ids: List[int] = Field(default_factory=list)
    excluded_nm_ids: List[int] = Field(default_factory=list)


class ArticleSummary(BaseModel):
    nm_id: int
    vendor_code: Optional[str] = None
    title: Optional[str] = None
    photo_tm: Optional[str] = None


class SummaryResponse(BaseModel):
    periods: List[Period]
    # Visible articles the totals were computed over.
    articles: List[ArticleSummary] = Field(default_factory=list)
    aggregated_metrics: Dict[int, AggregatedMetrics]


class DailyMetrics(AggregatedMetrics):
    day: date


class StockInfo(BaseModel):
    warehouse_id: int
    warehouse_name: str
    amount: int
    updated_at: Optional[datetime] = None


class ArticleCampaign(BaseModel):
    campaign_id: int
    name: str
    type: str
    status: str


class ArticleDetailResponse(BaseModel):
    article: ArticleSummary
    period: Period
    totals: AggregatedMetrics
    daily: List[DailyMetrics]
    campaigns: List[ArticleCampaign] = Field(default_factory=list)
    stocks: List[StockInfo] = Field(default_factory=list)
    # Other articles of the same merged card (same imt_id).
    bundle: List[ArticleSummary] = Field(default_factory=list)
