# tests/test_routes/test_ml_routes.py
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from marketsync.core.config import get_settings
from marketsync.main import create_app
from marketsync.schemas.marketplace import RemoteOrder
from marketsync.services.analytics import AnalyticsService
from marketsync.services.monitoring import MonitoringService
from marketsync.services.replenishment import ReplenishmentService

from tests.mocks.mock_gateway import auth_failure, make_listing
from tests.mocks.mock_store import BASE_TIME

AUTH = ("tenant-a", "secret")


@pytest.fixture
def app(settings, store, cache, gateway, clock, sync_service):
    app = create_app(settings=settings, store=store)
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.cache = cache
    app.state.sync_service = sync_service
    app.state.monitoring_service = MonitoringService(store, cache, clock=clock)
    app.state.replenishment_service = ReplenishmentService(store, gateway)
    app.state.analytics_service = AnalyticsService(store, gateway, cache, clock=clock)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def other_tenant_account(store):
    return store.add_account(account_id=2, tenant_id="tenant-b", ml_user_id=2002)


"""
1. Auth Tests
"""


def test_health_check_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_missing_credentials(client):
    assert client.post("/api/ml/sync", json={"account_id": 1}).status_code == 401


def test_wrong_password(client):
    response = client.get("/api/ml/sync/status", params={"account_id": 1}, auth=("tenant-a", "nope"))
    assert response.status_code == 401


def test_unconfigured_credentials(app, client, settings):
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"BASIC_AUTH_PASSWORD": ""})
    response = client.get("/api/ml/sync/status", params={"account_id": 1}, auth=AUTH)
    assert response.status_code == 500


"""
2. Sync Route Tests
"""


def test_run_sync(client, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 50})
    store.add_link("MLB1", product_id=1, available_quantity=0, last_synced_at=BASE_TIME)
    gateway.put(make_listing("MLB1", quantity=0, sku="SKU-1"))

    response = client.post("/api/ml/sync", json={"account_id": 1, "strategy": "critical"}, auth=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["updated"] == 1
    assert body["success"] is True
    assert body["strategies"] == ["critical"]


def test_sync_of_other_tenants_account_is_404(client, other_tenant_account):
    response = client.post("/api/ml/sync", json={"account_id": 2}, auth=AUTH)
    assert response.status_code == 404


def test_sync_of_unknown_account_is_404(client):
    assert client.post("/api/ml/sync", json={"account_id": 77}, auth=AUTH).status_code == 404


def test_sync_with_invalid_strategy_is_422(client):
    response = client.post("/api/ml/sync", json={"account_id": 1, "strategy": "everything"}, auth=AUTH)
    assert response.status_code == 422


def test_sync_without_token_is_502(client, gateway):
    gateway.token_error = auth_failure()
    response = client.post("/api/ml/sync", json={"account_id": 1}, auth=AUTH)
    assert response.status_code == 502


def test_sync_history_and_status(client, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 50})
    store.add_link("MLB1", product_id=1, available_quantity=0)
    gateway.put(make_listing("MLB1", quantity=0, sku="SKU-1"))
    client.post("/api/ml/sync", json={"account_id": 1, "strategy": "critical"}, auth=AUTH)

    history = client.get("/api/ml/sync/history", params={"account_id": 1, "limit": 5}, auth=AUTH)
    status = client.get("/api/ml/sync/status", params={"account_id": 1}, auth=AUTH)

    assert history.status_code == 200
    assert history.json()[0]["strategy"] == "critical"
    assert status.status_code == 200
    assert status.json()["total_listings"] == 1
    assert status.json()["last_sync"]["updated"] == 1


def test_history_limit_is_bounded(client):
    response = client.get("/api/ml/sync/history", params={"account_id": 1, "limit": 500}, auth=AUTH)
    assert response.status_code == 422


def test_price_refresh(client, store, gateway):
    store.add_link("MLB1", product_id=1, price_cents=10000, last_synced_at=BASE_TIME - timedelta(hours=2))
    gateway.put(make_listing("MLB1", price_cents=9000))

    response = client.post("/api/ml/prices/refresh", json={"account_id": 1}, auth=AUTH)

    assert response.status_code == 200
    assert response.json()["updated"] == 1


"""
3. Monitoring Route Tests
"""


def test_alerts_filters(client, store):
    store.add_link("MLB-OUT", product_id=1, available_quantity=0, last_synced_at=BASE_TIME)
    store.add_link("MLB-LOW", product_id=1, available_quantity=2, last_synced_at=BASE_TIME)

    everything = client.get("/api/ml/alerts", params={"account_id": 1}, auth=AUTH)
    critical = client.get("/api/ml/alerts", params={"account_id": 1, "severity": "critical"}, auth=AUTH)

    assert everything.status_code == 200
    assert everything.json()["summary"]["total"] == 2
    assert [a["id"] for a in critical.json()["alerts"]] == ["stock_out_MLB-OUT"]


def test_alerts_bad_filter_is_400(client):
    response = client.get("/api/ml/alerts", params={"account_id": 1, "type": "weather"}, auth=AUTH)
    assert response.status_code == 400


def test_alerts_for_other_tenant_is_404(client, other_tenant_account):
    response = client.get("/api/ml/alerts", params={"account_id": 2}, auth=AUTH)
    assert response.status_code == 404


def test_dismiss_alert(client, store):
    store.add_link("MLB-OUT", product_id=1, available_quantity=0, last_synced_at=BASE_TIME)

    response = client.post(
        "/api/ml/alerts/dismiss", json={"account_id": 1, "alert_id": "stock_out_MLB-OUT"}, auth=AUTH
    )
    alerts = client.get("/api/ml/alerts", params={"account_id": 1}, auth=AUTH)

    assert response.status_code == 200
    assert store.dismissed[1] == {"stock_out_MLB-OUT"}
    assert alerts.json()["alerts"] == []


def test_account_health(client):
    response = client.get("/api/ml/health", params={"account_id": 1, "period": "7d"}, auth=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["period"] == "7d"
    assert set(body["breakdown"]) == {"sync", "api", "cache", "errors"}


def test_account_health_bad_period_is_422(client):
    response = client.get("/api/ml/health", params={"account_id": 1, "period": "2y"}, auth=AUTH)
    assert response.status_code == 422


def test_cache_stats(client, cache):
    cache.set_for_user("tenant-a", "dashboard", {"x": 1})

    response = client.get("/api/ml/cache/stats", auth=AUTH)

    assert response.status_code == 200
    assert response.json()["user_entries"] == 1
    assert response.json()["size"] == 1


def test_scheduler_status_when_not_started(client):
    response = client.get("/api/ml/scheduler/status", auth=AUTH)
    assert response.json() == {"status": "not_initialized", "jobs": []}


"""
4. Replenishment Route Tests
"""


def test_restock_suggestion(client, store):
    store.add_product(1, "SKU-1", stock={"main": 50})

    response = client.get("/api/ml/replenishment/1", auth=AUTH)

    assert response.status_code == 200
    assert response.json()["listing_type"] == "local"


def test_restock_for_other_tenants_product_is_404(client, store):
    store.add_product(1, "SKU-1", tenant_id="tenant-b")
    assert client.get("/api/ml/replenishment/1", auth=AUTH).status_code == 404


def test_restock_batch(client, store):
    store.add_product(1, "SKU-1", stock={"main": 0}, cost_cents=100)
    store.add_link("MLB1", product_id=1, sold_last_90d=90)
    store.add_product(2, "SKU-2", stock={"main": 50})

    response = client.get("/api/ml/replenishment", auth=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert [s["product_id"] for s in body["suggestions"]] == [1]
    assert body["suggestions"][0]["urgency"] == "critical"
    assert body["summary"]["analyzed"] == 2
    assert body["summary"]["estimated_cost_cents"] == 3000


def test_restock_batch_for_chosen_products(client, store):
    store.add_product(2, "SKU-2", stock={"main": 50})

    response = client.get("/api/ml/replenishment", params={"product_ids": [2, 404]}, auth=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["ok"] == 1
    assert list(body["errors"]) == ["404"]


"""
5. Analytics Route Tests
"""


def test_sales_metrics(client, gateway):
    gateway.orders["1"] = RemoteOrder.from_api({
        "id": 1,
        "status": "paid",
        "date_created": (BASE_TIME - timedelta(days=1)).isoformat(),
        "order_items": [{"item": {"id": "MLB1", "title": "Guitar"}, "quantity": 2, "unit_price": 15.0}],
    })

    response = client.get("/api/ml/analytics/sales", params={"account_id": 1, "days": 7}, auth=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["revenue_cents"] == 3000
    assert body["units"] == 2
    assert body["average_ticket_cents"] == 1500
    assert body["top_sellers"][0]["title"] == "Guitar"


def test_sales_metrics_window_is_bounded(client):
    response = client.get("/api/ml/analytics/sales", params={"account_id": 1, "days": 0}, auth=AUTH)
    assert response.status_code == 422


def test_sales_metrics_for_other_tenant_is_404(client, other_tenant_account):
    response = client.get("/api/ml/analytics/sales", params={"account_id": 2}, auth=AUTH)
    assert response.status_code == 404


"""
6. Webhook Route Tests
"""


def test_webhook_needs_no_auth(client, store, gateway):
    store.add_link("MLB1", product_id=1, available_quantity=3)
    gateway.put(make_listing("MLB1", quantity=9))

    response = client.post(
        "/api/ml/webhook", json={"resource": "/items/MLB1", "user_id": 1001, "topic": "items"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "processed"
    assert store.link_for("MLB1").available_quantity == 9


def test_webhook_failure_still_answers_200(client, gateway):
    gateway.fetch_exceptions["MLB1"] = auth_failure()

    response = client.post(
        "/api/ml/webhook", json={"resource": "/items/MLB1", "user_id": 1001, "topic": "items"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "error"


def test_webhook_challenge(client):
    assert client.get("/api/ml/webhook", params={"challenge": "abc"}).json() == {"challenge": "abc"}
    assert client.get("/api/ml/webhook").json()["status"] == "active"
