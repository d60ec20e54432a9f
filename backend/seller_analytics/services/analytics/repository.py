"""Read-side queries over already-synchronized workspace data."""
from __future__ import annotations

from datetime import date
from typing import Collection, Dict, List, Optional

from sqlalchemy.orm import Session

from seller_analytics.models.campaigns import CampaignStatus
from seller_analytics.models_sqlalchemy.models import (
    CampaignArticle,
    CampaignStatistics,
    ProductCard,
    ProductCardAnalytics,
    ProductStock,
    PromotionCampaign,
    Warehouse,
)


def load_cards(
    db: Session,
    workspace_id: int,
    nm_ids: Optional[Collection[int]] = None,
    excluded_nm_ids: Optional[Collection[int]] = None,
) -> List[ProductCard]:
    query = db.query(ProductCard).filter(ProductCard.workspace_id == workspace_id)
    if nm_ids:
        query = query.filter(ProductCard.nm_id.in_(list(nm_ids)))
    if excluded_nm_ids:
        query = query.filter(ProductCard.nm_id.notin_(list(excluded_nm_ids)))
    return query.order_by(ProductCard.nm_id.asc()).all()


def load_funnel_rows(
    db: Session,
    workspace_id: int,
    date_from: date,
    date_to: date,
    nm_ids: Optional[Collection[int]] = None,
    excluded_nm_ids: Optional[Collection[int]] = None,
) -> List[ProductCardAnalytics]:
    query = db.query(ProductCardAnalytics).filter(
        ProductCardAnalytics.workspace_id == workspace_id,
        ProductCardAnalytics.date >= date_from,
        ProductCardAnalytics.date <= date_to,
    )
    if nm_ids:
        query = query.filter(ProductCardAnalytics.nm_id.in_(list(nm_ids)))
    if excluded_nm_ids:
        query = query.filter(ProductCardAnalytics.nm_id.notin_(list(excluded_nm_ids)))
    return query.all()


def load_campaigns(db: Session, workspace_id: int) -> List[PromotionCampaign]:
    return (
        db.query(PromotionCampaign)
        .filter(PromotionCampaign.workspace_id == workspace_id)
        .order_by(PromotionCampaign.advert_id.asc())
        .all()
    )


def load_campaign_articles(db: Session, campaign_ids: Collection[int]) -> List[CampaignArticle]:
    if not campaign_ids:
        return []
    return (
        db.query(CampaignArticle)
        .filter(CampaignArticle.campaign_id.in_(list(campaign_ids)))
        .order_by(CampaignArticle.campaign_id.asc(), CampaignArticle.nm_id.asc())
        .all()
    )


def load_advertising_rows(
    db: Session,
    campaign_ids: Collection[int],
    date_from: date,
    date_to: date,
    nm_ids: Optional[Collection[int]] = None,
    excluded_nm_ids: Optional[Collection[int]] = None,
) -> List[CampaignStatistics]:
    if not campaign_ids:
        return []
    query = db.query(CampaignStatistics).filter(
        CampaignStatistics.campaign_id.in_(list(campaign_ids)),
        CampaignStatistics.date >= date_from,
        CampaignStatistics.date <= date_to,
    )
    if nm_ids:
        query = query.filter(CampaignStatistics.nm_id.in_(list(nm_ids)))
    if excluded_nm_ids:
        query = query.filter(CampaignStatistics.nm_id.notin_(list(excluded_nm_ids)))
    return query.all()


def load_card(db: Session, workspace_id: int, nm_id: int) -> Optional[ProductCard]:
    return (
        db.query(ProductCard)
        .filter(ProductCard.workspace_id == workspace_id, ProductCard.nm_id == nm_id)
        .one_or_none()
    )


def load_bundle_cards(db: Session, workspace_id: int, card: ProductCard) -> List[ProductCard]:
    """Other articles sharing ``card``'s imt_id."""
    if card.imt_id is None:
        return []
    return (
        db.query(ProductCard)
        .filter(
            ProductCard.workspace_id == workspace_id,
            ProductCard.imt_id == card.imt_id,
            ProductCard.nm_id != card.nm_id,
        )
        .order_by(ProductCard.nm_id.asc())
        .all()
    )


def load_article_campaigns(db: Session, workspace_id: int, nm_id: int) -> List[PromotionCampaign]:
    """Unfinished campaigns that advertise ``nm_id``."""
    return (
        db.query(PromotionCampaign)
        .join(CampaignArticle, CampaignArticle.campaign_id == PromotionCampaign.advert_id)
        .filter(
            PromotionCampaign.workspace_id == workspace_id,
            PromotionCampaign.status != CampaignStatus.FINISHED,
            CampaignArticle.nm_id == nm_id,
        )
        .order_by(PromotionCampaign.advert_id.asc())
        .all()
    )


def load_stocks(db: Session, workspace_id: int, nm_id: int) -> List[ProductStock]:
    return (
        db.query(ProductStock)
        .filter(ProductStock.workspace_id == workspace_id, ProductStock.nm_id == nm_id)
        .all()
    )


def load_warehouse_names(db: Session, warehouse_ids: Collection[int]) -> Dict[int, str]:
    if not warehouse_ids:
        return {}
    return {
        warehouse.id: warehouse.name
        for warehouse in db.query(Warehouse).filter(Warehouse.id.in_(list(warehouse_ids)))
    }
