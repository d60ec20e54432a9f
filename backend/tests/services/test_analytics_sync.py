from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from seller_analytics.models.campaigns import CampaignStatus
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
    CardSize,
    CardSummary,
    CredentialRejectedError,
    ScopeDeniedError,
    StockRow,
)
from seller_analytics.services.marketplace_sync.analytics_sync import sync_workspace_analytics

NOW = datetime(2025, 3, 15, 2, 0, tzinfo=timezone.utc)
WINDOW = DateRange(date(2025, 3, 1), date(2025, 3, 14))


def _client():
    client = MagicMock()
    client.fetch_cards.return_value = [
        CardSummary(nm_id=101, vendor_code="A-1", title="Mug", sizes=[CardSize(501, "2000000000011", "0")]),
        CardSummary(nm_id=102, vendor_code="A-2", title="Cup"),
    ]
    client.fetch_stocks.return_value = [
        StockRow(nm_id=101, chrt_id=501, warehouse_id=507, amount=12),
        StockRow(nm_id=101, chrt_id=501, warehouse_id=686, amount=0),
        StockRow(nm_id=102, chrt_id=999, warehouse_id=507, amount=3),
    ]
    client.fetch_campaigns.return_value = [
        CampaignSummary(advert_id=1, name="Active", type_code=9, status_code=9, bid_type_code=1, nm_ids=[101]),
        CampaignSummary(advert_id=2, name="Done", type_code=8, status_code=7, nm_ids=[102]),
        CampaignSummary(advert_id=3, name="Weird", type_code=9, status_code=42),
    ]
    client.fetch_campaign_statistics.return_value = [
        CampaignStatRow(1, 101, date(2025, 3, 10), views=100, clicks=5, spend=Decimal("50")),
    ]
    client.fetch_card_analytics.return_value = [
        CardAnalyticsRow(101, date(2025, 3, 10), open_card=40, add_to_cart=8, orders=2, orders_sum=Decimal("900")),
    ]
    return client


def _ref(workspace):
    return WorkspaceRef.from_model(workspace)


def test_sync_persists_all_sections(db, make_user, make_workspace):
    workspace = make_workspace(make_user())
    db.commit()
    client = _client()

    result = sync_workspace_analytics(db, _ref(workspace), WINDOW, client, now=NOW)
    db.commit()

    assert result.cards == 2
    assert result.campaigns == 2
    assert result.skipped_campaigns == 1
    assert db.query(ProductCard).count() == 2
    assert db.get(PromotionCampaign, 3) is None
    assert db.get(PromotionCampaign, 1).status is CampaignStatus.ACTIVE
    assert [a.nm_id for a in db.query(CampaignArticle).filter_by(campaign_id=1)] == [101]
    assert db.query(CampaignStatistics).count() == 1
    assert db.query(ProductCardAnalytics).one().orders_sum == Decimal("900")

    # Finished campaigns get no statistics refresh.
    advert_ids = client.fetch_campaign_statistics.call_args[0][1]
    assert advert_ids == [1]
    assert client.fetch_card_analytics.call_args[0][1] == [101, 102]

    db.expire_all()
    assert db.get(Workspace, workspace.id).last_data_update_at is not None


def test_sync_is_idempotent(db, make_user, make_workspace):
    workspace = make_workspace(make_user())
    db.commit()

    sync_workspace_analytics(db, _ref(workspace), WINDOW, _client(), now=NOW)
    db.commit()
    sync_workspace_analytics(db, _ref(workspace), WINDOW, _client(), now=NOW)
    db.commit()

    assert db.query(ProductCard).count() == 2
    assert db.query(CampaignArticle).count() == 2
    assert db.query(CampaignStatistics).count() == 1
    assert db.query(ProductCardAnalytics).count() == 1


def test_scope_denied_section_is_skipped(db, make_user, make_workspace, caplog):
    workspace = make_workspace(make_user())
    db.commit()
    client = _client()
    client.fetch_campaigns.side_effect = ScopeDeniedError("denied", category="advert", upstream_status=403)

    result = sync_workspace_analytics(db, _ref(workspace), WINDOW, client, now=NOW)

    assert result.denied_sections == ["campaigns"]
    assert result.cards == 2
    assert result.analytics_rows == 1
    assert db.query(PromotionCampaign).count() == 0
    assert "section skipped" in caplog.text


def test_credential_rejected_propagates_and_nothing_is_committed(db, make_user, make_workspace):
    workspace = make_workspace(make_user())
    db.commit()
    client = _client()
    client.fetch_card_analytics.side_effect = CredentialRejectedError(
        "bad key", category="analytics", upstream_status=401
    )

    with pytest.raises(CredentialRejectedError):
        sync_workspace_analytics(db, _ref(workspace), WINDOW, client, now=NOW)
    db.rollback()

    assert db.query(ProductCard).count() == 0
    assert db.get(Workspace, workspace.id).last_data_update_at is None


def test_stocks_are_stored_by_size_barcode(db, make_user, make_workspace):
    workspace = make_workspace(make_user())
    db.commit()
    client = _client()

    result = sync_workspace_analytics(db, _ref(workspace), WINDOW, client, now=NOW)
    db.commit()

    assert db.query(ProductBarcode).one().barcode == "2000000000011"
    # Zero amount for an unknown stock and an unresolvable size are both dropped.
    stock = db.query(ProductStock).one()
    assert (stock.nm_id, stock.warehouse_id, stock.barcode, stock.amount) == (101, 507, "2000000000011", 12)
    assert stock.date == WINDOW.date_to
    assert result.stock_rows == 1
    assert client.fetch_stocks.call_args[0][1:] == ([101, 102], WINDOW.date_to)


def test_stock_dropping_to_zero_updates_existing_row(db, make_user, make_workspace):
    workspace = make_workspace(make_user())
    db.commit()
    sync_workspace_analytics(db, _ref(workspace), WINDOW, _client(), now=NOW)
    db.commit()

    client = _client()
    client.fetch_stocks.return_value = [StockRow(nm_id=101, chrt_id=501, warehouse_id=507, amount=0)]
    sync_workspace_analytics(db, _ref(workspace), WINDOW, client, now=NOW)
    db.commit()

    assert db.query(ProductStock).one().amount == 0


def test_stocks_scope_denied_skips_only_stocks(db, make_user, make_workspace):
    workspace = make_workspace(make_user())
    db.commit()
    client = _client()
    client.fetch_stocks.side_effect = ScopeDeniedError("denied", category="analytics", upstream_status=403)

    result = sync_workspace_analytics(db, _ref(workspace), WINDOW, client, now=NOW)

    assert result.denied_sections == ["stocks"]
    assert result.stock_rows == 0
    assert result.campaigns == 2
    assert result.analytics_rows == 1
    assert db.query(ProductStock).count() == 0
    client.fetch_card_analytics.assert_called_once()
