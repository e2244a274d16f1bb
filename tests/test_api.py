import httpx
import pytest
from fastapi.testclient import TestClient

from tradeloop.api.app import app, get_client, get_resolver
from tradeloop.domain.orders import OrderStatus
from tradeloop.geocoding.resolver import AddressResolver

REVERSE = {
    "display_name": "Kothrud, Pune, Maharashtra, India",
    "address": {"road": "Paud Road", "suburb": "Kothrud", "city": "Pune", "state": "Maharashtra", "postcode": "411038"},
}


class FakeWorkflowHandle:
    def __init__(self, order):
        self.order = order
        self.signals = []

    async def query(self, query, *args):
        name = query.__name__
        if name == "get_order":
            if self.order is None:
                raise RuntimeError("workflow not found")
            return self.order.model_dump(mode="json")
        if name == "get_last_error":
            return None
        raise AssertionError(f"unexpected query {name}")

    async def signal(self, signal, arg):
        self.signals.append((signal.__name__, arg))


class FakeTemporalClient:
    def __init__(self, order=None):
        self.handle = FakeWorkflowHandle(order)
        self.started = []

    def get_workflow_handle(self, workflow_id):
        return self.handle

    async def start_workflow(self, run, arg, id, task_queue):
        self.started.append((arg, id, task_queue))
        self.handle.id = id
        self.handle.result_run_id = "run-1"
        return self.handle


@pytest.fixture
def api():
    def install(order=None):
        temporal = FakeTemporalClient(order)
        upstream_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=REVERSE)),
            base_url="https://geo.test",
        )
        app.dependency_overrides[get_client] = lambda: temporal
        app.dependency_overrides[get_resolver] = lambda: AddressResolver(upstream_client, max_attempts=1, retry_wait=0)
        return TestClient(app), temporal

    yield install
    app.dependency_overrides.clear()


def test_start_order(api):
    client, temporal = api()
    response = client.post("/orders/ord-9/start", json={
        "product": "Turmeric",
        "quantity": "10 kg",
        "total_price": 900,
        "delivery_type": "delivery",
        "delivery_address": "Market Yard, Pune",
    })
    assert response.status_code == 200
    payload, workflow_id, _ = temporal.started[0]
    assert workflow_id == "ord-9"
    assert payload["status"] == "pending"
    assert payload["exchange_code"] is None


def test_start_delivery_without_address_is_rejected(api):
    client, _ = api()
    response = client.post("/orders/ord-9/start", json={
        "product": "Turmeric", "quantity": "10 kg", "total_price": 900, "delivery_type": "delivery",
    })
    assert response.status_code == 422


def test_seller_view_hides_code(api, make_order):
    client, _ = api(make_order(status=OrderStatus.SHIPPED, exchange_code="QW12ER"))
    response = client.get("/orders/ord-1", params={"role": "seller"})
    body = response.json()
    assert response.status_code == 200
    assert body["order"]["exchange_code"] is None
    assert body["next_action"]["kind"] == "complete_with_handshake"


def test_buyer_reads_exchange_code(api, make_order):
    client, _ = api(make_order(status=OrderStatus.PROCESSING, exchange_code="QW12ER"))
    assert client.get("/orders/ord-1/exchange-code", params={"role": "buyer"}).json()["exchange_code"] == "QW12ER"
    assert client.get("/orders/ord-1/exchange-code", params={"role": "seller"}).status_code == 403


def test_advance_signals_valid_transition(api, make_order):
    client, temporal = api(make_order(status=OrderStatus.CONFIRMED))
    response = client.post("/orders/ord-1/advance", json={"target": "processing"})
    assert response.status_code == 200
    assert temporal.handle.signals == [("advance_order", "processing")]


def test_advance_rejects_skip(api, make_order):
    client, temporal = api(make_order())
    response = client.post("/orders/ord-1/advance", json={"target": "shipped"})
    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "invalid transition"
    assert temporal.handle.signals == []


def test_complete_with_wrong_code_is_distinct_error(api, make_order):
    client, temporal = api(make_order(status=OrderStatus.SHIPPED, exchange_code="QW12ER"))
    response = client.post("/orders/ord-1/complete", json={"exchange_code": "qw12er"})
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "code mismatch"
    assert temporal.handle.signals == []

    ok = client.post("/orders/ord-1/complete", json={"exchange_code": "QW12ER"})
    assert ok.status_code == 200
    assert temporal.handle.signals == [("complete_with_handshake", "QW12ER")]


def test_unknown_order(api):
    client, _ = api(None)
    response = client.post("/orders/missing/advance", json={"target": "confirmed"})
    assert response.status_code == 404


def test_validate_city_endpoint(api):
    client, _ = api()
    body = client.get("/locations/validate-city", params={"name": "M"}).json()
    assert body == {"valid": False, "error": "City name must be at least 2 characters long"}


def test_forward_rejects_invalid_city_before_lookup(api):
    client, _ = api()
    body = client.get("/locations/forward", params={"city": "Pune42"}).json()
    assert body["success"] is False
    assert body["error"] == "City name contains invalid characters"


def test_reverse_endpoint(api):
    client, _ = api()
    body = client.get("/locations/reverse", params={"lat": 18.5, "lng": 73.8}).json()
    assert body["success"] is True
    assert body["city"] == "Pune"
    assert body["street"] == "Paud Road, Kothrud"


def test_device_endpoint_with_fix_and_with_error(api):
    client, _ = api()
    body = client.post("/locations/device", json={"latitude": 18.5, "longitude": 73.8, "accuracy": 20}).json()
    assert body["success"] is True
    assert body["pincode"] == "411038"
    assert body["accuracy"] == 20

    denied = client.post("/locations/device", json={"error_code": 1}).json()
    assert denied["success"] is False
    assert denied["error"] == "Location access denied by user"


def test_profile_endpoints(api):
    client, _ = api()
    profile = {
        "fullname": "Asha Patil",
        "name": "Asha",
        "phone": "9800000001",
        "address": {"street": "Paud Road", "city": "Pune", "state": "Maharashtra", "pincode": ""},
    }
    completeness = client.post("/profiles/completeness", json=profile).json()
    assert completeness == {"complete": False, "percentage": 86}

    decision = client.post("/profiles/guard", json={"view": "notifications", "profile": profile}).json()
    assert decision["granted"] is False
    assert decision["view"] == "profile"

    password = client.post("/profiles/password/validate", json={"new_password": "abc", "confirm_password": "abc"}).json()
    assert password["success"] is False
