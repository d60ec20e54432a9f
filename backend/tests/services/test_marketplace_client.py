import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from seller_analytics.models.sync import DateRange
from seller_analytics.services.marketplace_client import (
    CredentialRejectedError,
    MarketplaceApiError,
    MarketplaceClient,
    ScopeDeniedError,
)

API_KEY = "test-api-key-123456"


def _client(handler, sleeps=None, **kwargs):
    transport = httpx.MockTransport(handler)
    http_client = httpx.Client(transport=transport)
    recorded = sleeps if sleeps is not None else []
    return MarketplaceClient(
        http_client=http_client,
        max_retries=kwargs.pop("max_retries", 3),
        retry_delay_seconds=kwargs.pop("retry_delay_seconds", 20.0),
        request_delay_seconds=0,
        sleep=recorded.append,
    )


def test_sends_raw_api_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=[])

    _client(handler).fetch_warehouses(API_KEY)
    assert seen["auth"] == API_KEY


@pytest.mark.parametrize(
    "status, error_cls",
    [(401, CredentialRejectedError), (403, ScopeDeniedError), (500, MarketplaceApiError)],
)
def test_error_statuses(status, error_cls):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="nope")

    with pytest.raises(error_cls) as exc_info:
        _client(handler).fetch_warehouses(API_KEY)

    assert exc_info.value.upstream_status == status
    assert exc_info.value.category == "marketplace"


def test_429_is_retried_with_delay():
    responses = iter([httpx.Response(429), httpx.Response(200, json=[{"ID": 7, "name": "Tula"}])])
    sleeps = []

    client = _client(lambda request: next(responses), sleeps=sleeps)
    warehouses = client.fetch_warehouses(API_KEY)

    assert [w.id for w in warehouses] == [7]
    assert sleeps == [20.0]


def test_429_gives_up_after_max_retries():
    sleeps = []
    client = _client(lambda request: httpx.Response(429), sleeps=sleeps, max_retries=2)

    with pytest.raises(MarketplaceApiError) as exc_info:
        client.fetch_warehouses(API_KEY)

    assert exc_info.value.upstream_status == 429
    assert len(sleeps) == 1


def test_transport_failure_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(MarketplaceApiError) as exc_info:
        _client(handler).fetch_cards(API_KEY)
    assert exc_info.value.upstream_status is None
    assert exc_info.value.category == "content"


def test_fetch_cards_follows_cursor():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if len(bodies) == 1:
            cards = [{"nmID": i, "vendorCode": f"V{i}"} for i in range(100)]
            return httpx.Response(
                200, json={"cards": cards, "cursor": {"total": 100, "updatedAt": "2025-03-01T00:00:00Z", "nmID": 99}}
            )
        return httpx.Response(
            200, json={"cards": [{"nmID": 500, "photos": [{"tm": "https://img/500.jpg"}]}], "cursor": {"total": 1}}
        )

    cards = _client(handler).fetch_cards(API_KEY)

    assert len(cards) == 101
    assert cards[-1].photo_tm == "https://img/500.jpg"
    assert bodies[1]["settings"]["cursor"]["nmID"] == 99
    assert bodies[1]["settings"]["cursor"]["updatedAt"] == "2025-03-01T00:00:00Z"


def test_fetch_campaigns_collects_articles():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/promotion/count"):
            return httpx.Response(
                200,
                json={"adverts": [{"type": 9, "status": 9, "advert_list": [{"advertId": 1}, {"advertId": 2}]}]},
            )
        assert json.loads(request.content) == [1, 2]
        return httpx.Response(
            200,
            json=[
                {"advertId": 1, "name": "Search", "type": 9, "status": 9, "bid_type": 1,
                 "unitedParams": [{"nms": [101, 102]}, {"nms": [102]}]},
                {"advertId": 2, "type": 8, "status": 11, "autoParams": {"nms": [103]},
                 "changeTime": "2025-03-01T10:00:00Z"},
            ],
        )

    campaigns = _client(handler).fetch_campaigns(API_KEY)

    assert [c.advert_id for c in campaigns] == [1, 2]
    assert campaigns[0].nm_ids == [101, 102]
    assert campaigns[0].bid_type_code == 1
    assert campaigns[1].name == "Campaign 2"
    assert campaigns[1].nm_ids == [103]
    assert campaigns[1].change_time.year == 2025


def test_fetch_campaigns_without_adverts():
    client = _client(lambda request: httpx.Response(200, json={"adverts": None}))
    assert client.fetch_campaigns(API_KEY) == []


def test_fullstats_sums_across_apps():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json=[
                {
                    "advertId": 1,
                    "days": [
                        {
                            "date": "2025-03-10T00:00:00+03:00",
                            "apps": [
                                {"nms": [{"nmId": 101, "views": 10, "clicks": 1, "sum": 5.5, "orders": 1, "sum_price": 900}]},
                                {"nms": [{"nmId": 101, "views": 5, "clicks": 2, "sum": 4.5}]},
                            ],
                        }
                    ],
                }
            ],
        )

    rows = _client(handler).fetch_campaign_statistics(
        API_KEY, [1], DateRange(date(2025, 3, 10), date(2025, 3, 10))
    )

    assert seen["params"] == {"ids": "1", "beginDate": "2025-03-10", "endDate": "2025-03-10"}
    assert len(rows) == 1
    row = rows[0]
    assert (row.advert_id, row.nm_id, row.date) == (1, 101, date(2025, 3, 10))
    assert (row.views, row.clicks, row.orders) == (15, 3, 1)
    assert row.spend == Decimal("10.0")
    assert row.orders_sum == Decimal("900")


def test_card_analytics_split_into_week_windows():
    windows = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        windows.append((body["selectedPeriod"]["start"], body["selectedPeriod"]["end"]))
        return httpx.Response(
            200,
            json=[
                {
                    "product": {"nmId": 101},
                    "history": [
                        {"date": body["selectedPeriod"]["start"], "openCount": 10, "cartCount": 2,
                         "orderCount": 1, "orderSum": 450},
                    ],
                }
            ],
        )

    rows = _client(handler).fetch_card_analytics(
        API_KEY, [101], DateRange(date(2025, 3, 1), date(2025, 3, 14))
    )

    assert windows == [("2025-03-01", "2025-03-07"), ("2025-03-08", "2025-03-14")]
    assert [r.date for r in rows] == [date(2025, 3, 1), date(2025, 3, 8)]
    assert rows[0].orders_sum == Decimal("450")


def test_card_analytics_batches_articles():
    batches = []

    def handler(request: httpx.Request) -> httpx.Response:
        batches.append(json.loads(request.content)["nmIds"])
        return httpx.Response(200, json=[])

    _client(handler).fetch_card_analytics(
        API_KEY, list(range(1, 46)), DateRange(date(2025, 3, 1), date(2025, 3, 2))
    )
    assert [len(b) for b in batches] == [20, 20, 5]


def test_warehouse_parsing():
    payload = [
        {"ID": 1, "name": "Koledino", "city": "Moscow", "longitude": 37.5, "latitude": "55.1",
         "cargoType": 1, "deliveryType": 2, "selected": True},
        {"id": 2, "name": "Kazan"},
    ]
    warehouses = _client(lambda request: httpx.Response(200, json=payload)).fetch_warehouses(API_KEY)

    assert [w.id for w in warehouses] == [1, 2]
    assert warehouses[0].latitude == Decimal("55.1")
    assert warehouses[0].cargo_type == 1
    assert warehouses[0].selected is True
    assert warehouses[1].city is None


def test_card_sizes_keep_first_barcode():
    payload = {
        "cards": [
            {"nmID": 101, "sizes": [
                {"chrtID": 501, "techSize": "M", "skus": ["200001", "200002"]},
                {"chrtID": 502, "skus": []},
                {"techSize": "L", "skus": ["200003"]},
            ]},
        ],
        "cursor": {"total": 1},
    }
    cards = _client(lambda request: httpx.Response(200, json=payload)).fetch_cards(API_KEY)

    assert [(s.chrt_id, s.barcode, s.tech_size) for s in cards[0].sizes] == [(501, "200001", "M")]


def test_fetch_stocks_one_request_per_article():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if body["nmID"] == 102:
            return httpx.Response(500, text="boom")
        return httpx.Response(
            200,
            json={"data": {"sizes": [
                {"chrtID": 501, "name": "M", "offices": [
                    {"officeID": 507, "officeName": "Koledino", "metrics": {"stockCount": 12}},
                    {"officeID": 686, "metrics": {}},
                    {"officeName": "No id", "metrics": {"stockCount": 4}},
                    {"officeID": 1733, "metrics": {"ordersCount": 1}},
                ]},
            ]}},
        )

    rows = _client(handler).fetch_stocks(API_KEY, [101, 102], date(2025, 3, 14))

    assert [b["nmID"] for b in bodies] == [101, 102]
    assert bodies[0]["currentPeriod"] == {"start": "2025-03-14", "end": "2025-03-14"}
    assert bodies[0]["stockType"] == "wb"
    assert bodies[0]["includeOffice"] is True
    assert [(r.nm_id, r.chrt_id, r.warehouse_id, r.amount) for r in rows] == [
        (101, 501, 507, 12),
        (101, 501, 1733, 0),
    ]
    assert rows[0].warehouse_name == "Koledino"


def test_fetch_stocks_scope_denied_propagates():
    client = _client(lambda request: httpx.Response(403, text="no scope"))
    with pytest.raises(ScopeDeniedError):
        client.fetch_stocks(API_KEY, [101], date(2025, 3, 14))
