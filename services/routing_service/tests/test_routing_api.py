# CREATE FILE: services/routing_service/tests/test_routing_api.py

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

import services.routing_service.app as routing_app
from services.common.domain import Pharmacy, Product
from services.common.errors import StoreError
from services.common.store import InMemoryPortalStore
from services.routing_service.routing import RoutingEngine


class FailingAuditStore(InMemoryPortalStore):
    async def record_routing_decision(self, entry):
        raise StoreError("insert_routing_log", "connection reset")


def seed(store):
    store.add_pharmacy(Pharmacy(id="ph-a", name="Alpha Compounding", states_serviced=frozenset({"CA", "FL"}),
                                priority_map={"FL": 1}))
    store.add_pharmacy(Pharmacy(id="ph-b", name="Bravo Rx", states_serviced=frozenset({"FL", "NY"}),
                                priority_map={"FL": 2}))
    store.add_product(Product(id="prod-1", name="Semaglutide", base_price=Decimal('50.00')), ["ph-a", "ph-b"])
    return store


class TestRoutingApi:

    @pytest.fixture
    def store(self):
        return seed(InMemoryPortalStore())

    @pytest.fixture
    def client(self, store, monkeypatch):
        monkeypatch.setattr(routing_app, "routing_engine", RoutingEngine(store))
        return TestClient(routing_app.app)

    def test_openapi_version(self, client):
        response = client.get("/openapi.json")
        assert response.json()["info"]["version"] == "1.0.0"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_route_order(self, client, store):
        response = client.post("/route-order", json={"product_id": "prod-1", "destination_state": "FL"})

        assert response.status_code == 200
        body = response.json()
        assert body["pharmacy_id"] == "ph-a"
        assert body["pharmacy_name"] == "Alpha Compounding"
        assert body["priority"] == 1
        assert body["failure_code"] is None
        assert len(store.routing_log) == 1

    def test_blocked_route_is_not_an_error(self, client, store):
        response = client.post("/route-order", json={"product_id": "prod-1", "destination_state": "TX"})

        assert response.status_code == 200
        body = response.json()
        assert body["pharmacy_id"] is None
        assert body["reason"] == "no pharmacy serves TX for this product"
        assert body["failure_code"] == "no_eligible_pharmacy"
        assert body["diagnostics"]["total_assignments"] == 2
        assert store.routing_log[0].selected_pharmacy_id is None

    def test_invalid_state(self, client):
        response = client.post("/route-order", json={"product_id": "prod-1", "destination_state": "ZZ"})

        assert response.status_code == 200
        assert response.json()["failure_code"] == "invalid_state"

    def test_audit_log_disabled(self, client, store, monkeypatch):
        monkeypatch.setitem(routing_app.routing_config, "audit_log_enabled", False)

        client.post("/route-order", json={"product_id": "prod-1", "destination_state": "FL"})

        assert store.routing_log == []

    def test_audit_failure_does_not_fail_route(self, monkeypatch):
        monkeypatch.setattr(routing_app, "routing_engine", RoutingEngine(seed(FailingAuditStore())))
        client = TestClient(routing_app.app)

        response = client.post("/route-order", json={"product_id": "prod-1", "destination_state": "FL"})

        assert response.status_code == 200
        assert response.json()["pharmacy_id"] == "ph-a"

    def test_eligible_pharmacies(self, client):
        response = client.get("/eligible-pharmacies", params={"product_id": "prod-1", "destination_state": "FL"})

        assert response.status_code == 200
        assert [p["pharmacy_id"] for p in response.json()] == ["ph-a", "ph-b"]

    def test_eligible_pharmacies_invalid_state(self, client):
        response = client.get("/eligible-pharmacies", params={"product_id": "prod-1", "destination_state": "fl"})
        assert response.status_code == 400
