from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    Date,
    Text,
    ForeignKey,
    Enum,
    Boolean,
    Index,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
import enum

from seller_analytics.models.campaigns import BidType, CampaignStatus, CampaignType

from . import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    seller = "seller"


class CodedEnumType(TypeDecorator):
    """Stores a :class:`CodedEnum` member as its external integer code.

    Reading an unknown code raises ``UnknownCodeError``; nothing is defaulted.
    """

    impl = Integer
    cache_ok = True

    def __init__(self, enum_cls, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_cls = enum_cls

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, self.enum_cls):
            return value.code
        return self.enum_cls.from_code(value).code

    def process_result_value(self, value, dialect):
        return self.enum_cls.from_code(value)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.seller)
    # Inactive users are excluded from scheduled syncs.
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    workspaces = relationship("Workspace", back_populates="user", order_by="Workspace.id")

    __table_args__ = (
        Index('idx_user_role_active', 'role', 'is_active'),
    )


class Workspace(Base):
    """A seller's connected marketplace credential and its synchronized data.

    ``last_data_update_at`` and ``last_data_update_requested_at`` are written
    only by the sync orchestrator.
    """

    __tablename__ = "workspaces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)

    api_key = Column(Text, nullable=True)
    is_valid = Column(Boolean, nullable=True)
    last_validated_at = Column(DateTime(timezone=True), nullable=True)
    validation_error = Column(Text, nullable=True)

    # Last successful sync completion.
    last_data_update_at = Column(DateTime(timezone=True), nullable=True)
    # Last time a sync was requested, whether or not it succeeded.
    last_data_update_requested_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    user = relationship("User", back_populates="workspaces")


class ProductCard(Base):
    __tablename__ = "product_cards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    nm_id = Column(BigInteger, nullable=False)
    imt_id = Column(BigInteger, nullable=True)
    vendor_code = Column(String(255), nullable=True)
    title = Column(String(500), nullable=True)
    photo_tm = Column(String(1000), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        UniqueConstraint('workspace_id', 'nm_id', name='uq_product_card_workspace_nm'),
    )


class ProductBarcode(Base):
    """Size-level barcode of a card; stock rows reference sizes by ``chrt_id``."""

    __tablename__ = "product_barcodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    nm_id = Column(BigInteger, nullable=False)
    chrt_id = Column(BigInteger, nullable=False)
    barcode = Column(String(64), nullable=False)
    tech_size = Column(String(64), nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        UniqueConstraint('workspace_id', 'nm_id', 'chrt_id', name='uq_product_barcode_size'),
    )


class ProductStock(Base):
    """Latest known stock of one barcode at one warehouse."""

    __tablename__ = "product_stocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    nm_id = Column(BigInteger, nullable=False)
    warehouse_id = Column(Integer, nullable=False)
    barcode = Column(String(64), nullable=False)
    amount = Column(Integer, nullable=False, default=0)
    # Report day the amount was taken from.
    date = Column(Date, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        UniqueConstraint('workspace_id', 'nm_id', 'warehouse_id', 'barcode', name='uq_product_stock'),
        Index('idx_product_stock_nm', 'workspace_id', 'nm_id'),
    )


class ProductCardAnalytics(Base):
    """Daily sales funnel for one article."""

    __tablename__ = "product_card_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    nm_id = Column(BigInteger, nullable=False)
    date = Column(Date, nullable=False)

    open_card = Column(Integer, nullable=True)
    add_to_cart = Column(Integer, nullable=True)
    orders = Column(Integer, nullable=True)
    orders_sum = Column(Numeric(19, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        UniqueConstraint('workspace_id', 'nm_id', 'date', name='uq_card_analytics_day'),
        Index('idx_card_analytics_nm_date', 'nm_id', 'date'),
    )


class PromotionCampaign(Base):
    __tablename__ = "promotion_campaigns"

    advert_id = Column(BigInteger, primary_key=True, autoincrement=False)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    type = Column(CodedEnumType(CampaignType), nullable=False)
    status = Column(CodedEnumType(CampaignStatus), nullable=False)
    bid_type = Column(CodedEnumType(BidType), nullable=True)
    change_time = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    articles = relationship("CampaignArticle", cascade="all, delete-orphan")


class CampaignArticle(Base):
    __tablename__ = "campaign_articles"

    campaign_id = Column(BigInteger, ForeignKey("promotion_campaigns.advert_id", ondelete="CASCADE"), primary_key=True)
    nm_id = Column(BigInteger, primary_key=True)


class CampaignStatistics(Base):
    """Daily advertising statistics for one article inside one campaign."""

    __tablename__ = "campaign_statistics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(BigInteger, ForeignKey("promotion_campaigns.advert_id", ondelete="CASCADE"), nullable=False)
    nm_id = Column(BigInteger, nullable=False)
    date = Column(Date, nullable=False)

    views = Column(Integer, nullable=True)
    clicks = Column(Integer, nullable=True)
    spend = Column(Numeric(12, 2), nullable=True)
    orders = Column(Integer, nullable=True)
    orders_sum = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        UniqueConstraint('campaign_id', 'nm_id', 'date', name='uq_campaign_stats_day'),
        Index('idx_campaign_stats_date', 'date'),
    )


class Warehouse(Base):
    """Marketplace warehouse/office directory (shared by all workspaces)."""

    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    city = Column(String(255), nullable=True)
    longitude = Column(Numeric(10, 6), nullable=True)
    latitude = Column(Numeric(10, 6), nullable=True)
    cargo_type = Column(Integer, nullable=True)
    delivery_type = Column(Integer, nullable=True)
    federal_district = Column(String(255), nullable=True)
    selected = Column(Boolean, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)
