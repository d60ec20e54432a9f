"""Synchronous client for the marketplace seller APIs.

Each API family (content, analytics, advert, marketplace) lives on its own
host with its own rate limits. Responses are normalized into small
dataclasses so the sync code never touches raw JSON. Unknown or missing
fields are tolerated; rows without their natural key are dropped.

The client only retries HTTP 429. Every other failure is raised as a
:class:`MarketplaceApiError` and left to the caller.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import httpx

from seller_analytics.config import settings
from seller_analytics.exceptions import TransientSyncError
from seller_analytics.models.sync import DateRange
from seller_analytics.utils.logger import logger, mask_secret

CONTENT = "content"
ANALYTICS = "analytics"
ADVERT = "advert"
MARKETPLACE = "marketplace"

CARDS_PAGE_LIMIT = 100
ADVERTS_BATCH_SIZE = 50
FULLSTATS_BATCH_SIZE = 50
FUNNEL_NM_BATCH_SIZE = 20
# The sales-funnel history endpoint accepts at most 7 days (both ends included).
FUNNEL_MAX_DAYS = 7
STOCK_TYPE_MARKETPLACE = "wb"


class MarketplaceApiError(TransientSyncError):
    """Non-success response (or transport failure) from one API family."""

    def __init__(self, message: str, *, category: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.upstream_status = upstream_status


class CredentialRejectedError(MarketplaceApiError):
    """HTTP 401: the API key is invalid, expired or revoked."""


class ScopeDeniedError(MarketplaceApiError):
    """HTTP 403: the API key is valid but lacks the scope for this API family."""


@dataclass
class CardSize:
    chrt_id: int
    barcode: str
    tech_size: Optional[str] = None


@dataclass
class CardSummary:
    nm_id: int
    imt_id: Optional[int] = None
    vendor_code: Optional[str] = None
    title: Optional[str] = None
    photo_tm: Optional[str] = None
    sizes: List[CardSize] = field(default_factory=list)


@dataclass
class CampaignSummary:
    advert_id: int
    name: str
    type_code: Optional[int]
    status_code: Optional[int]
    bid_type_code: Optional[int] = None
    change_time: Optional[datetime] = None
    nm_ids: List[int] = field(default_factory=list)


@dataclass
class CampaignStatRow:
    advert_id: int
    nm_id: int
    date: date
    views: int = 0
    clicks: int = 0
    spend: Decimal = Decimal("0")
    orders: int = 0
    orders_sum: Decimal = Decimal("0")


@dataclass
class CardAnalyticsRow:
    nm_id: int
    date: date
    open_card: Optional[int] = None
    add_to_cart: Optional[int] = None
    orders: Optional[int] = None
    orders_sum: Optional[Decimal] = None


@dataclass
class StockRow:
    """Stock of one card size at one warehouse; ``chrt_id`` identifies the size."""

    nm_id: int
    chrt_id: int
    warehouse_id: int
    amount: int = 0
    warehouse_name: Optional[str] = None
    size_name: Optional[str] = None


@dataclass
class WarehouseSummary:
    id: Optional[int]
    name: Optional[str]
    address: Optional[str] = None
    city: Optional[str] = None
    longitude: Optional[Decimal] = None
    latitude: Optional[Decimal] = None
    cargo_type: Optional[int] = None
    delivery_type: Optional[int] = None
    federal_district: Optional[str] = None
    selected: Optional[bool] = None


def _chunks(items: Sequence, size: int) -> Iterator[list]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _split_range(date_range: DateRange, max_days: int) -> Iterator[DateRange]:
    start = date_range.date_from
    while start <= date_range.date_to:
        end = min(start + timedelta(days=max_days - 1), date_range.date_to)
        yield DateRange(start, end)
        start = end + timedelta(days=1)


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _as_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class MarketplaceClient:
    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        request_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = http_client or httpx.Client(
            timeout=timeout or settings.MARKETPLACE_HTTP_TIMEOUT_SECONDS
        )
        self._owns_client = http_client is None
        self.max_retries = max(1, max_retries if max_retries is not None else settings.MARKETPLACE_MAX_RETRIES)
        self.retry_delay_seconds = (
            settings.MARKETPLACE_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self.request_delay_seconds = (
            settings.MARKETPLACE_REQUEST_DELAY_SECONDS if request_delay_seconds is None else request_delay_seconds
        )
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "MarketplaceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        api_key: str,
        *,
        category: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        headers = {"Authorization": api_key, "Accept": "application/json"}
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._client.request(method, url, headers=headers, params=params, json=json)
            except httpx.HTTPError as exc:
                raise MarketplaceApiError(
                    f"{category} API request failed: {exc}", category=category
                ) from exc

            if response.status_code == 429:
                if attempt < self.max_retries:
                    logger.warning(
                        f"{category} API returned 429 for key {mask_secret(api_key)} "
                        f"(attempt {attempt}/{self.max_retries}); waiting {self.retry_delay_seconds}s"
                    )
                    self._sleep(self.retry_delay_seconds)
                    continue
                raise MarketplaceApiError(
                    f"{category} API rate limit exceeded after {self.max_retries} attempts",
                    category=category,
                    upstream_status=429,
                )
            self._raise_for_status(response, category)
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise MarketplaceApiError(
                    f"{category} API returned invalid JSON", category=category, upstream_status=response.status_code
                ) from exc
        return None

    @staticmethod
    def _raise_for_status(response: httpx.Response, category: str) -> None:
        status_code = response.status_code
        if 200 <= status_code < 300:
            return
        body = response.text or ""
        if len(body) > 500:
            body = body[:500] + "..."
        if status_code == 401:
            raise CredentialRejectedError(
                f"{category} API rejected the API key (401): {body}",
                category=category,
                upstream_status=status_code,
            )
        if status_code == 403:
            raise ScopeDeniedError(
                f"API key has no access to the {category} API (403): {body}",
                category=category,
                upstream_status=status_code,
            )
        raise MarketplaceApiError(
            f"{category} API error {status_code}: {body}",
            category=category,
            upstream_status=status_code,
        )

    def _pause(self) -> None:
        if self.request_delay_seconds > 0:
            self._sleep(self.request_delay_seconds)

    # ------------------------------------------------------------------
    # Content API
    # ------------------------------------------------------------------

    def fetch_cards(self, api_key: str) -> List[CardSummary]:
        """All product cards of the seller, following the cursor until exhausted."""
        url = f"{settings.MARKETPLACE_CONTENT_API_URL.rstrip('/')}/content/v2/get/cards/list"
        cursor: Dict[str, Any] = {"limit": CARDS_PAGE_LIMIT}
        cards: List[CardSummary] = []

        while True:
            body = {"settings": {"cursor": cursor, "filter": {"withPhoto": -1}}}
            payload = self._request("POST", url, api_key, category=CONTENT, json=body) or {}
            page = payload.get("cards") or []
            for raw in page:
                card = self._parse_card(raw)
                if card is not None:
                    cards.append(card)

            page_cursor = payload.get("cursor") or {}
            total = _as_int(page_cursor.get("total")) or 0
            if not page or total < CARDS_PAGE_LIMIT:
                break
            cursor = {
                "limit": CARDS_PAGE_LIMIT,
                "updatedAt": page_cursor.get("updatedAt"),
                "nmID": page_cursor.get("nmID"),
            }
            self._pause()

        logger.info(f"Fetched {len(cards)} cards for key {mask_secret(api_key)}")
        return cards

    @staticmethod
    def _parse_card(raw: Dict[str, Any]) -> Optional[CardSummary]:
        nm_id = _as_int(raw.get("nmID"))
        if nm_id is None:
            return None
        photos = raw.get("photos") or []
        photo_tm = None
        if photos and isinstance(photos[0], dict):
            photo_tm = photos[0].get("tm") or photos[0].get("big")
        sizes: List[CardSize] = []
        for size in raw.get("sizes") or []:
            chrt_id = _as_int(size.get("chrtID"))
            skus = size.get("skus") or []
            # Only the first barcode of a size is kept.
            if chrt_id is None or not skus:
                continue
            sizes.append(CardSize(chrt_id=chrt_id, barcode=str(skus[0]), tech_size=size.get("techSize")))
        return CardSummary(
            nm_id=nm_id,
            imt_id=_as_int(raw.get("imtID")),
            vendor_code=raw.get("vendorCode"),
            title=raw.get("title"),
            photo_tm=photo_tm,
            sizes=sizes,
        )

    # ------------------------------------------------------------------
    # Advert API
    # ------------------------------------------------------------------

    def fetch_campaigns(self, api_key: str) -> List[CampaignSummary]:
        """Campaign list with details. Codes are returned raw; mapping them to
        enums is the caller's job."""
        base = settings.MARKETPLACE_ADVERT_API_URL.rstrip("/")
        payload = self._request("GET", f"{base}/adv/v1/promotion/count", api_key, category=ADVERT) or {}

        advert_ids: List[int] = []
        for group in payload.get("adverts") or []:
            for item in group.get("advert_list") or []:
                advert_id = _as_int(item.get("advertId"))
                if advert_id is not None and advert_id not in advert_ids:
                    advert_ids.append(advert_id)
        if not advert_ids:
            return []

        campaigns: List[CampaignSummary] = []
        for batch in _chunks(advert_ids, ADVERTS_BATCH_SIZE):
            details = self._request(
                "POST", f"{base}/adv/v1/promotion/adverts", api_key, category=ADVERT, json=batch
            ) or []
            for raw in details:
                campaign = self._parse_campaign(raw)
                if campaign is not None:
                    campaigns.append(campaign)
            self._pause()

        logger.info(f"Fetched {len(campaigns)} campaigns for key {mask_secret(api_key)}")
        return campaigns

    @staticmethod
    def _parse_campaign(raw: Dict[str, Any]) -> Optional[CampaignSummary]:
        advert_id = _as_int(raw.get("advertId"))
        if advert_id is None:
            return None
        nm_ids: List[int] = []

        def _collect(values: Iterable[Any]) -> None:
            for value in values or []:
                nm_id = _as_int(value)
                if nm_id is not None and nm_id not in nm_ids:
                    nm_ids.append(nm_id)

        auto_params = raw.get("autoParams") or {}
        _collect(auto_params.get("nms"))
        for united in raw.get("unitedParams") or []:
            _collect(united.get("nms"))

        return CampaignSummary(
            advert_id=advert_id,
            name=raw.get("name") or f"Campaign {advert_id}",
            type_code=_as_int(raw.get("type")),
            status_code=_as_int(raw.get("status")),
            bid_type_code=_as_int(raw.get("bid_type", raw.get("bidType"))),
            change_time=_as_datetime(raw.get("changeTime")),
            nm_ids=nm_ids,
        )

    def fetch_campaign_statistics(
        self, api_key: str, advert_ids: Sequence[int], date_range: DateRange
    ) -> List[CampaignStatRow]:
        """Daily per-article statistics, summed across app platforms."""
        if not advert_ids:
            return []
        url = f"{settings.MARKETPLACE_ADVERT_API_URL.rstrip('/')}/adv/v3/fullstats"
        totals: Dict[tuple, CampaignStatRow] = {}

        for batch in _chunks(list(advert_ids), FULLSTATS_BATCH_SIZE):
            params = {
                "ids": ",".join(str(i) for i in batch),
                "beginDate": date_range.date_from.isoformat(),
                "endDate": date_range.date_to.isoformat(),
            }
            payload = self._request("GET", url, api_key, category=ADVERT, params=params) or []
            for campaign in payload:
                advert_id = _as_int(campaign.get("advertId"))
                if advert_id is None:
                    continue
                for day in campaign.get("days") or []:
                    day_date = _as_date(day.get("date"))
                    if day_date is None:
                        continue
                    for app in day.get("apps") or []:
                        for nm in app.get("nms") or app.get("nm") or []:
                            nm_id = _as_int(nm.get("nmId"))
                            if nm_id is None:
                                continue
                            key = (advert_id, nm_id, day_date)
                            row = totals.get(key)
                            if row is None:
                                row = totals[key] = CampaignStatRow(advert_id, nm_id, day_date)
                            row.views += _as_int(nm.get("views")) or 0
                            row.clicks += _as_int(nm.get("clicks")) or 0
                            row.spend += _as_decimal(nm.get("sum")) or Decimal("0")
                            row.orders += _as_int(nm.get("orders")) or 0
                            row.orders_sum += _as_decimal(nm.get("sum_price")) or Decimal("0")
            self._pause()

        return list(totals.values())

    # ------------------------------------------------------------------
    # Analytics API
    # ------------------------------------------------------------------

    def fetch_card_analytics(
        self, api_key: str, nm_ids: Sequence[int], date_range: DateRange
    ) -> List[CardAnalyticsRow]:
        """Daily sales funnel per article, batched by article and by week."""
        if not nm_ids:
            return []
        url = f"{settings.MARKETPLACE_ANALYTICS_API_URL.rstrip('/')}/api/analytics/v3/sales-funnel/products/history"
        rows: List[CardAnalyticsRow] = []

        for window in _split_range(date_range, FUNNEL_MAX_DAYS):
            for batch in _chunks(list(nm_ids), FUNNEL_NM_BATCH_SIZE):
                body = {
                    "selectedPeriod": {
                        "start": window.date_from.isoformat(),
                        "end": window.date_to.isoformat(),
                    },
                    "nmIds": batch,
                    "skipDeletedNm": False,
                    "aggregationLevel": "day",
                }
                payload = self._request("POST", url, api_key, category=ANALYTICS, json=body) or []
                for product in payload:
                    nm_id = _as_int((product.get("product") or {}).get("nmId"))
                    if nm_id is None:
                        continue
                    for day in product.get("history") or []:
                        day_date = _as_date(day.get("date"))
                        if day_date is None:
                            continue
                        rows.append(
                            CardAnalyticsRow(
                                nm_id=nm_id,
                                date=day_date,
                                open_card=_as_int(day.get("openCount")),
                                add_to_cart=_as_int(day.get("cartCount")),
                                orders=_as_int(day.get("orderCount")),
                                orders_sum=_as_decimal(day.get("orderSum")),
                            )
                        )
                self._pause()

        return rows

    def fetch_stocks(
        self, api_key: str, nm_ids: Sequence[int], day: Optional[date] = None
    ) -> List[StockRow]:
        """Per-size, per-warehouse stock of each article on ``day`` (default today).

        The report is requested one article at a time. A failure for one
        article is logged and that article skipped; 401 and 403 still
        propagate so the caller can drop the key or the section.
        """
        if not nm_ids:
            return []
        url = f"{settings.MARKETPLACE_ANALYTICS_API_URL.rstrip('/')}/api/v2/stocks-report/products/sizes"
        report_day = (day or date.today()).isoformat()
        rows: List[StockRow] = []

        for index, nm_id in enumerate(nm_ids):
            if index:
                self._pause()
            body = {
                "nmID": nm_id,
                "currentPeriod": {"start": report_day, "end": report_day},
                "stockType": STOCK_TYPE_MARKETPLACE,
                "orderBy": {"field": "stockCount", "mode": "asc"},
                "includeOffice": True,
            }
            try:
                payload = self._request("POST", url, api_key, category=ANALYTICS, json=body) or {}
            except (CredentialRejectedError, ScopeDeniedError):
                raise
            except MarketplaceApiError as exc:
                logger.warning(f"Stocks for article {nm_id} skipped: {exc}")
                continue

            for size in (payload.get("data") or {}).get("sizes") or []:
                chrt_id = _as_int(size.get("chrtID"))
                if chrt_id is None:
                    continue
                for office in size.get("offices") or []:
                    warehouse_id = _as_int(office.get("officeID"))
                    metrics = office.get("metrics")
                    if warehouse_id is None or not metrics:
                        continue
                    rows.append(
                        StockRow(
                            nm_id=nm_id,
                            chrt_id=chrt_id,
                            warehouse_id=warehouse_id,
                            amount=_as_int(metrics.get("stockCount")) or 0,
                            warehouse_name=office.get("officeName"),
                            size_name=size.get("name"),
                        )
                    )

        logger.info(f"Fetched {len(rows)} stock rows for {len(nm_ids)} articles, key {mask_secret(api_key)}")
        return rows

    # ------------------------------------------------------------------
    # Marketplace API
    # ------------------------------------------------------------------

    def fetch_warehouses(self, api_key: str) -> List[WarehouseSummary]:
        url = f"{settings.MARKETPLACE_MARKETPLACE_API_URL.rstrip('/')}/api/v1/warehouses"
        payload = self._request("GET", url, api_key, category=MARKETPLACE) or []
        return [
            WarehouseSummary(
                id=_as_int(raw.get("ID", raw.get("id"))),
                name=raw.get("name"),
                address=raw.get("address"),
                city=raw.get("city"),
                longitude=_as_decimal(raw.get("longitude")),
                latitude=_as_decimal(raw.get("latitude")),
                cargo_type=_as_int(raw.get("cargoType")),
                delivery_type=_as_int(raw.get("deliveryType")),
                federal_district=raw.get("federalDistrict"),
                selected=raw.get("selected"),
            )
            for raw in payload
        ]
