"""Metric catalog and the arithmetic behind derived KPIs.

Every ratio is computed with ``Decimal`` and rounded HALF_UP to two places.
A zero or missing denominator yields ``None``; nothing here ever raises on
empty data.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Union

from seller_analytics.models.analytics import AggregatedMetrics, MetricPoint

Number = Union[int, Decimal]

TWO_PLACES = Decimal("0.01")
FOUR_PLACES = Decimal("0.0001")
HUNDRED = Decimal("100")

FUNNEL = "funnel"
ADVERTISING = "advertising"


@dataclass(frozen=True)
class MetricDefinition:
    key: str
    label: str
    category: str
    is_percentage: bool = False


METRICS: Dict[str, MetricDefinition] = {
    m.key: m
    for m in (
        MetricDefinition("transitions", "Card transitions", FUNNEL),
        MetricDefinition("cart", "Added to cart, pcs", FUNNEL),
        MetricDefinition("orders", "Ordered items, pcs", FUNNEL),
        MetricDefinition("orders_amount", "Ordered amount, RUB", FUNNEL),
        MetricDefinition("cart_conversion", "Cart conversion, %", FUNNEL, is_percentage=True),
        MetricDefinition("order_conversion", "Order conversion, %", FUNNEL, is_percentage=True),
        MetricDefinition("views", "Views", ADVERTISING),
        MetricDefinition("clicks", "Clicks", ADVERTISING),
        MetricDefinition("costs", "Costs, RUB", ADVERTISING),
        MetricDefinition("cpc", "CPC, RUB", ADVERTISING),
        MetricDefinition("ctr", "CTR, %", ADVERTISING, is_percentage=True),
        MetricDefinition("cpo", "CPO, RUB", ADVERTISING),
        MetricDefinition("drr", "DRR, %", ADVERTISING, is_percentage=True),
    )
}


def get_metric(key: str) -> Optional[MetricDefinition]:
    return METRICS.get(key)


def round2(value: Optional[Number]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def safe_divide(numerator: Optional[Number], denominator: Optional[Number]) -> Optional[Decimal]:
    """``numerator / denominator`` at two places, or ``None`` for a zero denominator."""
    if numerator is None or denominator is None or Decimal(denominator) == 0:
        return None
    return (Decimal(numerator) / Decimal(denominator)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_percentage(numerator: Optional[Number], denominator: Optional[Number]) -> Optional[Decimal]:
    if numerator is None or denominator is None or Decimal(denominator) == 0:
        return None
    return (Decimal(numerator) * HUNDRED / Decimal(denominator)).quantize(
        TWO_PLACES, rounding=ROUND_HALF_UP
    )


def change_percent(
    previous: Optional[Number],
    current: Optional[Number],
    percentage_metric: bool = False,
) -> Optional[Decimal]:
    """Period-over-period change of ``current`` against ``previous``.

    Percentage metrics change by percentage points (``current - previous``);
    everything else by relative percent.
    """
    if previous is None or current is None:
        return None
    if percentage_metric:
        return round2(Decimal(current) - Decimal(previous))
    if Decimal(previous) == 0:
        return None
    ratio = ((Decimal(current) - Decimal(previous)) / Decimal(previous)).quantize(
        FOUR_PLACES, rounding=ROUND_HALF_UP
    )
    return round2(ratio * HUNDRED)


def build_series(
    period_ids: Sequence[int],
    values: Sequence[Optional[Number]],
    percentage_metric: bool = False,
) -> List[MetricPoint]:
    """Zip values into ``MetricPoint``s; "previous" is the prior list entry."""
    if len(period_ids) != len(values):
        raise ValueError("period_ids and values must have the same length")

    points: List[MetricPoint] = []
    previous: Optional[Number] = None
    for index, (period_id, value) in enumerate(zip(period_ids, values)):
        change = change_percent(previous, value, percentage_metric) if index > 0 else None
        points.append(MetricPoint(period_id=period_id, value=value, change_percent=change))
        previous = value
    return points


def _int(value) -> int:
    return int(value) if value is not None else 0


def _dec(value) -> Decimal:
    return Decimal(value) if value is not None else Decimal("0")


@dataclass
class FunnelTotals:
    transitions: int = 0
    cart: int = 0
    orders: int = 0
    orders_amount: Decimal = Decimal("0")

    @classmethod
    def from_rows(cls, rows: Iterable) -> "FunnelTotals":
        """Sum ``ProductCardAnalytics``-shaped rows; missing fields count as zero."""
        totals = cls()
        for row in rows:
            totals.transitions += _int(row.open_card)
            totals.cart += _int(row.add_to_cart)
            totals.orders += _int(row.orders)
            totals.orders_amount += _dec(row.orders_sum)
        return totals

    @property
    def cart_conversion(self) -> Optional[Decimal]:
        return calculate_percentage(self.cart, self.transitions)

    @property
    def order_conversion(self) -> Optional[Decimal]:
        return calculate_percentage(self.orders, self.cart)


@dataclass
class AdvertisingTotals:
    views: int = 0
    clicks: int = 0
    costs: Decimal = Decimal("0")
    orders: int = 0
    orders_sum: Decimal = Decimal("0")

    @classmethod
    def from_rows(cls, rows: Iterable) -> "AdvertisingTotals":
        """Sum ``CampaignStatistics``-shaped rows; missing fields count as zero."""
        totals = cls()
        for row in rows:
            totals.views += _int(row.views)
            totals.clicks += _int(row.clicks)
            totals.costs += _dec(row.spend)
            totals.orders += _int(row.orders)
            totals.orders_sum += _dec(row.orders_sum)
        return totals

    @property
    def cpc(self) -> Optional[Decimal]:
        return safe_divide(self.costs, self.clicks)

    @property
    def ctr(self) -> Optional[Decimal]:
        return calculate_percentage(self.clicks, self.views)

    @property
    def cpo(self) -> Optional[Decimal]:
        return safe_divide(self.costs, self.orders)

    @property
    def drr(self) -> Optional[Decimal]:
        if self.costs == 0 or self.orders_sum == 0:
            return None
        return calculate_percentage(self.costs, self.orders_sum)


def metric_value(
    key: str,
    funnel: FunnelTotals,
    advertising: AdvertisingTotals,
) -> Optional[Number]:
    """Value of catalog metric ``key`` for one set of totals."""
    values = {
        "transitions": lambda: funnel.transitions,
        "cart": lambda: funnel.cart,
        "orders": lambda: funnel.orders,
        "orders_amount": lambda: round2(funnel.orders_amount),
        "cart_conversion": lambda: funnel.cart_conversion,
        "order_conversion": lambda: funnel.order_conversion,
        "views": lambda: advertising.views,
        "clicks": lambda: advertising.clicks,
        "costs": lambda: round2(advertising.costs),
        "cpc": lambda: advertising.cpc,
        "ctr": lambda: advertising.ctr,
        "cpo": lambda: advertising.cpo,
        "drr": lambda: advertising.drr,
    }
    if key not in values:
        raise KeyError(key)
    return values[key]()


def to_aggregated_metrics(funnel: FunnelTotals, advertising: AdvertisingTotals) -> AggregatedMetrics:
    return AggregatedMetrics(
        transitions=funnel.transitions,
        cart=funnel.cart,
        orders=funnel.orders,
        orders_amount=round2(funnel.orders_amount),
        cart_conversion=funnel.cart_conversion,
        order_conversion=funnel.order_conversion,
        views=advertising.views,
        clicks=advertising.clicks,
        costs=round2(advertising.costs),
        cpc=advertising.cpc,
        ctr=advertising.ctr,
        cpo=advertising.cpo,
        drr=advertising.drr,
    )
