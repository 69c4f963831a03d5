import pytest
import requests

from orders.errors import Conflict, Forbidden, InvalidTransition, NetworkFailure, NotFound, RequestTimeout
from orders.models import Actor, OrderFilter, OrderStatus
from sync.api_client import OrdersApiClient

BASE_URL = "http://orders.test/api/v1"


class MockResponse:
    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class MockHttp:
    """
    Stands in for requests.Session: records every call and replays queued
    responses (or raises queued exceptions) in order.
    """
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def wire_order(order_factory):
    return order_factory("ORD-1", status=OrderStatus.CONFIRMED, rider_id="7").to_dict()


def client_with(*responses):
    http = MockHttp(*responses)
    return OrdersApiClient(Actor.rider("7"), auth_token="tok", base_url=BASE_URL, http=http), http


def test_fetch_order_sends_token_and_parses_the_body(wire_order):
    client, http = client_with(MockResponse(200, {"order": wire_order}, {"ETag": wire_order["freshnessToken"]}))

    result = client.fetch_order("ORD-1", freshness_token='W/"old"')

    method, url, kwargs = http.calls[0]
    assert method == "GET"
    assert url == f"{BASE_URL}/orders/ORD-1/"
    assert kwargs["headers"]["If-None-Match"] == 'W/"old"'
    assert kwargs["headers"]["Authorization"] == "Token tok"
    assert result.order.id == "ORD-1"
    assert result.order.status == OrderStatus.CONFIRMED
    assert result.freshness_token == wire_order["freshnessToken"]


def test_304_is_not_modified():
    client, _ = client_with(MockResponse(304))
    result = client.fetch_order("ORD-1", freshness_token='W/"same"')
    assert result.not_modified
    assert result.freshness_token == 'W/"same"'


def test_fetch_orders_passes_filter_and_limit(wire_order):
    client, http = client_with(MockResponse(200, {"orders": [wire_order], "freshnessToken": 'W/"list"'}))

    result = client.fetch_orders(OrderFilter(assigned_rider_id="7", status=OrderStatus.CONFIRMED), limit=50)

    _, url, kwargs = http.calls[0]
    assert url == f"{BASE_URL}/orders/"
    assert kwargs["params"] == {"assigned_rider_id": "7", "status": "confirmed", "limit": "50"}
    assert "If-None-Match" not in kwargs["headers"]
    assert result.freshness_token == 'W/"list"'
    assert [o.id for o in result.orders] == ["ORD-1"]


def test_request_transition_body_and_if_match(wire_order):
    client, http = client_with(MockResponse(200, {"order": wire_order}))

    client.request_transition("ORD-1", OrderStatus.DELIVERED, expected_token='W/"t"',
                              payment_collected_method="cash")

    method, url, kwargs = http.calls[0]
    assert method == "PATCH"
    assert kwargs["json"] == {"status": "delivered", "paymentCollectedMethod": "cash"}
    assert kwargs["headers"]["If-Match"] == 'W/"t"'


def test_swap_demotion_names_its_swap(wire_order):
    client, http = client_with(MockResponse(200, {"order": wire_order}))
    client.request_transition("ORD-1", OrderStatus.CONFIRMED, swap_id="SWP-0123456789AB")
    assert http.calls[0][2]["json"] == {"status": "confirmed", "swapId": "SWP-0123456789AB"}


@pytest.mark.parametrize("status_code,body,expected", [
    (400, {"error": "Order ORD-1 cannot move from delivered to confirmed.", "code": "invalid_transition"},
     InvalidTransition),
    (403, {"error": "This order is not assigned to you.", "code": "forbidden"}, Forbidden),
    (404, {"error": "Order not found.", "code": "not_found"}, NotFound),
    (409, {"error": "Changed elsewhere.", "code": "conflict"}, Conflict),
    (502, None, NetworkFailure),
])
def test_error_bodies_map_to_typed_errors(status_code, body, expected):
    client, _ = client_with(MockResponse(status_code, body))
    with pytest.raises(expected) as excinfo:
        client.request_transition("ORD-1", "confirmed")
    if body:
        assert excinfo.value.message == body["error"]


def test_conflict_carries_the_current_token():
    client, _ = client_with(MockResponse(409, {"error": "Changed.", "code": "conflict"}, {"ETag": 'W/"now"'}))
    with pytest.raises(Conflict) as excinfo:
        client.request_transition("ORD-1", "confirmed", expected_token='W/"then"')
    assert excinfo.value.current_token == 'W/"now"'


def test_transport_failures():
    client, _ = client_with(requests.Timeout(), requests.ConnectionError())
    with pytest.raises(RequestTimeout):
        client.fetch_order("ORD-1")
    with pytest.raises(NetworkFailure):
        client.fetch_order("ORD-1")


def test_missing_base_url_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr("sync.api_client.DEFAULT_API_URL", None)
    with pytest.raises(ValueError):
        OrdersApiClient(Actor.admin(), http=MockHttp())
