"""Fetch and persist one workspace's cards, stocks, campaigns and daily analytics.

Sections run in a fixed order: cards (with size barcodes), warehouse stocks,
campaigns (with their article links), statistics for campaigns that are not
finished, then the daily sales funnel.
A 403 on one section only skips that section. A 401 aborts the whole sync.

``sync_workspace_analytics`` flushes but never commits; the caller owns the
transaction so a failed sync leaves nothing behind.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, TypeVar

from sqlalchemy.orm import Session

from seller_analytics.exceptions import UnknownCodeError
from seller_analytics.models.campaigns import BidType, CampaignStatus, CampaignType
from seller_analytics.models.sync import DateRange, WorkspaceRef
from seller_analytics.models_sqlalchemy.models import (
    CampaignArticle,
    CampaignStatistics,
    ProductBarcode,
    ProductCard,
    ProductCardAnalytics,
    ProductStock,
    PromotionCampaign,
    Workspace,
)
from seller_analytics.services.marketplace_client import (
    CampaignStatRow,
    CampaignSummary,
    CardAnalyticsRow,
    CardSummary,
    MarketplaceClient,
    ScopeDeniedError,
    StockRow,
)
from seller_analytics.utils.logger import logger

T = TypeVar("T")


@dataclass
class AnalyticsSyncResult:
    cards: int = 0
    campaigns: int = 0
    skipped_campaigns: int = 0
    statistics_rows: int = 0
    analytics_rows: int = 0
    stock_rows: int = 0
    denied_sections: List[str] = field(default_factory=list)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _run_section(
    name: str,
    workspace: WorkspaceRef,
    result: AnalyticsSyncResult,
    fetch: Callable[[], T],
    default: T,
) -> T:
    try:
        return fetch()
    except ScopeDeniedError as exc:
        logger.warning(
            f"Workspace {workspace.id}: API key has no access to {name} ({exc.category}); section skipped"
        )
        result.denied_sections.append(name)
        return default


def upsert_cards(db: Session, workspace_id: int, cards: List[CardSummary]) -> int:
    existing: Dict[int, ProductCard] = {
        card.nm_id: card
        for card in db.query(ProductCard).filter(ProductCard.workspace_id == workspace_id).all()
    }
    for summary in cards:
        card = existing.get(summary.nm_id)
        if card is None:
            card = ProductCard(workspace_id=workspace_id, nm_id=summary.nm_id)
            db.add(card)
            existing[summary.nm_id] = card
        card.imt_id = summary.imt_id
        card.vendor_code = summary.vendor_code
        card.title = summary.title
        card.photo_tm = summary.photo_tm
    _upsert_barcodes(db, workspace_id, cards)
    db.flush()
    return len(cards)


def _upsert_barcodes(db: Session, workspace_id: int, cards: List[CardSummary]) -> None:
    existing: Dict[tuple, ProductBarcode] = {
        (item.nm_id, item.chrt_id): item
        for item in db.query(ProductBarcode).filter(ProductBarcode.workspace_id == workspace_id)
    }
    for summary in cards:
        for size in summary.sizes:
            key = (summary.nm_id, size.chrt_id)
            item = existing.get(key)
            if item is None:
                item = ProductBarcode(workspace_id=workspace_id, nm_id=summary.nm_id, chrt_id=size.chrt_id)
                db.add(item)
                existing[key] = item
            item.barcode = size.barcode
            item.tech_size = size.tech_size


def upsert_stocks(db: Session, workspace_id: int, rows: List[StockRow], day: date) -> int:
    """Store stock rows against the size barcode known for ``(nm_id, chrt_id)``.

    Rows whose size has no known barcode are skipped. An existing stock is
    updated even when it dropped to zero; a new one is only created for a
    positive amount. Returns the number of rows written.
    """
    if not rows:
        return 0
    barcodes = {
        (item.nm_id, item.chrt_id): item.barcode
        for item in db.query(ProductBarcode).filter(ProductBarcode.workspace_id == workspace_id)
    }
    existing = {
        (stock.nm_id, stock.warehouse_id, stock.barcode): stock
        for stock in db.query(ProductStock).filter(ProductStock.workspace_id == workspace_id)
    }
    written = unresolved = 0
    for row in rows:
        barcode = barcodes.get((row.nm_id, row.chrt_id))
        if barcode is None:
            unresolved += 1
            continue
        key = (row.nm_id, row.warehouse_id, barcode)
        stock = existing.get(key)
        if stock is None:
            if row.amount <= 0:
                continue
            stock = ProductStock(
                workspace_id=workspace_id, nm_id=row.nm_id, warehouse_id=row.warehouse_id, barcode=barcode
            )
            db.add(stock)
            existing[key] = stock
        stock.amount = row.amount
        stock.date = day
        written += 1
    if unresolved:
        logger.warning(f"Workspace {workspace_id}: {unresolved} stock rows without a known barcode skipped")
    db.flush()
    return written


def _sync_campaign_articles(db: Session, campaign: PromotionCampaign, nm_ids: List[int]) -> None:
    wanted = set(nm_ids)
    for link in list(campaign.articles):
        if link.nm_id not in wanted:
            campaign.articles.remove(link)
    present = {link.nm_id for link in campaign.articles}
    for nm_id in nm_ids:
        if nm_id not in present:
            campaign.articles.append(CampaignArticle(campaign_id=campaign.advert_id, nm_id=nm_id))
            present.add(nm_id)


def upsert_campaigns(
    db: Session, workspace_id: int, campaigns: List[CampaignSummary]
) -> tuple:
    """Returns ``(stored, skipped)``. Campaigns with an unknown status/type/bid
    code are skipped rather than stored with a guessed value."""
    stored = skipped = 0
    for summary in campaigns:
        try:
            status = CampaignStatus.from_code(summary.status_code)
            campaign_type = CampaignType.from_code(summary.type_code)
            bid_type = BidType.from_code(summary.bid_type_code)
        except UnknownCodeError as exc:
            logger.warning(f"Workspace {workspace_id}: campaign {summary.advert_id} skipped: {exc}")
            skipped += 1
            continue
        if status is None or campaign_type is None:
            logger.warning(
                f"Workspace {workspace_id}: campaign {summary.advert_id} skipped: missing status or type"
            )
            skipped += 1
            continue

        campaign = db.get(PromotionCampaign, summary.advert_id)
        if campaign is None:
            campaign = PromotionCampaign(advert_id=summary.advert_id)
            db.add(campaign)
        campaign.workspace_id = workspace_id
        campaign.name = summary.name
        campaign.type = campaign_type
        campaign.status = status
        campaign.bid_type = bid_type
        campaign.change_time = summary.change_time
        _sync_campaign_articles(db, campaign, summary.nm_ids)
        stored += 1
    db.flush()
    return stored, skipped


def upsert_campaign_statistics(db: Session, rows: List[CampaignStatRow], date_range: DateRange) -> int:
    if not rows:
        return 0
    campaign_ids = {row.advert_id for row in rows}
    existing = {
        (stat.campaign_id, stat.nm_id, stat.date): stat
        for stat in db.query(CampaignStatistics).filter(
            CampaignStatistics.campaign_id.in_(campaign_ids),
            CampaignStatistics.date >= date_range.date_from,
            CampaignStatistics.date <= date_range.date_to,
        )
    }
    for row in rows:
        key = (row.advert_id, row.nm_id, row.date)
        stat = existing.get(key)
        if stat is None:
            stat = CampaignStatistics(campaign_id=row.advert_id, nm_id=row.nm_id, date=row.date)
            db.add(stat)
            existing[key] = stat
        stat.views = row.views
        stat.clicks = row.clicks
        stat.spend = row.spend
        stat.orders = row.orders
        stat.orders_sum = row.orders_sum
    db.flush()
    return len(rows)


def upsert_card_analytics(
    db: Session, workspace_id: int, rows: List[CardAnalyticsRow], date_range: DateRange
) -> int:
    if not rows:
        return 0
    existing = {
        (item.nm_id, item.date): item
        for item in db.query(ProductCardAnalytics).filter(
            ProductCardAnalytics.workspace_id == workspace_id,
            ProductCardAnalytics.date >= date_range.date_from,
            ProductCardAnalytics.date <= date_range.date_to,
        )
    }
    for row in rows:
        key = (row.nm_id, row.date)
        item = existing.get(key)
        if item is None:
            item = ProductCardAnalytics(workspace_id=workspace_id, nm_id=row.nm_id, date=row.date)
            db.add(item)
            existing[key] = item
        item.open_card = row.open_card
        item.add_to_cart = row.add_to_cart
        item.orders = row.orders
        item.orders_sum = row.orders_sum
    db.flush()
    return len(rows)


def sync_workspace_analytics(
    db: Session,
    workspace: WorkspaceRef,
    date_range: DateRange,
    client: MarketplaceClient,
    now: Optional[datetime] = None,
) -> AnalyticsSyncResult:
    api_key = workspace.api_key
    result = AnalyticsSyncResult()

    cards = _run_section("cards", workspace, result, lambda: client.fetch_cards(api_key), [])
    result.cards = upsert_cards(db, workspace.id, cards)

    nm_ids = [
        nm_id
        for (nm_id,) in db.query(ProductCard.nm_id)
        .filter(ProductCard.workspace_id == workspace.id)
        .order_by(ProductCard.nm_id.asc())
    ]
    stock_day = date_range.date_to
    stocks = _run_section(
        "stocks", workspace, result, lambda: client.fetch_stocks(api_key, nm_ids, stock_day), []
    )
    result.stock_rows = upsert_stocks(db, workspace.id, stocks, stock_day)

    campaigns =_run_section("campaigns", workspace, result, lambda: client.fetch_campaigns(api_key), [])
    result.campaigns, result.skipped_campaigns = upsert_campaigns(db, workspace.id, campaigns)

    active_ids = [
        c.advert_id
        for c in db.query(PromotionCampaign).filter(
            PromotionCampaign.workspace_id == workspace.id,
            PromotionCampaign.status != CampaignStatus.FINISHED,
        )
    ]
    stats = _run_section(
        "campaign statistics",
        workspace,
        result,
        lambda: client.fetch_campaign_statistics(api_key, active_ids, date_range),
        [],
    )
    result.statistics_rows = upsert_campaign_statistics(db, stats, date_range)

    funnel = _run_section(
        "card analytics",
        workspace,
        result,
        lambda: client.fetch_card_analytics(api_key, nm_ids, date_range),
        [],
    )
    result.analytics_rows = upsert_card_analytics(db, workspace.id, funnel, date_range)

    row = db.get(Workspace, workspace.id)
    if row is not None:
        row.last_data_update_at = now or _now_utc()
        row.is_valid = True
        row.validation_error = None
    db.flush()

    logger.info(
        f"Workspace {workspace.id} synced {date_range.date_from}..{date_range.date_to}: "
        f"cards={result.cards} stocks={result.stock_rows} campaigns={result.campaigns} skipped_campaigns={result.skipped_campaigns} "
        f"stats={result.statistics_rows} funnel={result.analytics_rows} "
        f"denied={','.join(result.denied_sections) or '-'}"
    )
    return result
