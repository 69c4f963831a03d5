#Purpose: The order API "adapter/client".
#Sole responsibility: talk to the ordering backend via HTTP and return the same
#shapes the in-process LocalOrderSession returns (Order, FetchResult).
#Encapsulates HTTP-specific details:
#URL construction (/api/v1/orders/...)
#conditional headers (If-None-Match on reads, If-Match on writes, ETag back)
#timeouts and error bodies {"error", "code"} -> typed OrderLifecycleError
#It should not contain transition rules or retry policy.


from dotenv import load_dotenv
import os
from typing import Any, Dict, Optional

import requests

from orders.errors import Conflict, NetworkFailure, OrderLifecycleError, RequestTimeout, error_from_payload
from orders.models import Actor, Order, OrderFilter
from orders.policy import LifecyclePolicy, default_lifecycle_policy
from orders.store import FetchResult

# Read the API base URL from environment
# Example in .env:
# GROCER_API_URL=http://localhost:8000/api/v1
load_dotenv()
DEFAULT_API_URL = os.getenv("GROCER_API_URL")


class OrdersApiClient:
    """
    Orders API Adapter / Client

    Sole responsibility:
    - Talk to the ordering backend via HTTP as one actor
    - Translate freshness tokens to and from ETag headers
    - Return normalized outputs (Order / FetchResult) or raise typed errors

    http: anything with .request(method, url, **kwargs) -> response, a
    requests.Session by default. Tests pass a fake.
    """
    def __init__(self, actor: Actor, auth_token: Optional[str] = None, base_url: Optional[str] = None,
                 policy: Optional[LifecyclePolicy] = None, http=None):
        self.actor = actor
        self.base_url = (base_url or DEFAULT_API_URL or "").rstrip("/")
        self.policy = policy or default_lifecycle_policy()
        self.timeout = self.policy.request_timeout_seconds
        self.http = http or requests.Session()
        self.auth_token = auth_token

        if not self.base_url:
            raise ValueError("Orders API URL not set. Please set GROCER_API_URL in the .env file.")

    #----------------
    # reads
    #----------------
    def fetch_order(self, order_id: str, freshness_token: Optional[str] = None) -> FetchResult:
        headers = {"If-None-Match": freshness_token} if freshness_token else {}
        response = self._send("GET", f"/orders/{order_id}/", headers=headers)

        if response.status_code == 304:
            return FetchResult.unchanged(freshness_token)

        order = Order.from_dict(response.json()["order"])
        return FetchResult(freshness_token=response.headers.get("ETag", order.freshness_token), orders=[order])

    def fetch_orders(self, order_filter: Optional[OrderFilter] = None, freshness_token: Optional[str] = None,
                     limit: Optional[int] = None) -> FetchResult:
        params = (order_filter or OrderFilter()).to_params()
        if limit is not None:
            params["limit"] = str(limit)
        headers = {"If-None-Match": freshness_token} if freshness_token else {}
        response = self._send("GET", "/orders/", params=params, headers=headers)

        if response.status_code == 304:
            return FetchResult.unchanged(freshness_token)

        data = response.json()
        orders = [Order.from_dict(item) for item in data.get("orders", [])]
        token = response.headers.get("ETag") or data.get("freshnessToken")
        return FetchResult(freshness_token=token, orders=orders)

    #----------------
    # writes
    #----------------
    def request_transition(self, order_id: str, next_status: Any, *, expected_token: Optional[str] = None,
                           payment_collected_method: Any = None, swap_id: Optional[str] = None) -> Order:
        body: Dict[str, Any] = {"status": _wire_value(next_status)}
        if payment_collected_method is not None:
            body["paymentCollectedMethod"] = _wire_value(payment_collected_method)
        if swap_id:
            body["swapId"] = swap_id
        return self._patch(order_id, body, expected_token)

    def assign_rider(self, order_id: str, rider_id: str, *, expected_token: Optional[str] = None) -> Order:
        return self._patch(order_id, {"riderId": rider_id}, expected_token)

    def record_swap(self, entry: Dict[str, Any]) -> None:
        self._send("POST", "/orders/swaps/", json=entry)

    def place_order(self, payload: Dict[str, Any]) -> Order:
        response = self._send("POST", "/orders/", json=payload)
        return Order.from_dict(response.json()["order"])

    #----------------
    # internal helpers
    #----------------
    def _patch(self, order_id: str, body: Dict[str, Any], expected_token: Optional[str]) -> Order:
        headers = {"If-Match": expected_token} if expected_token else {}
        response = self._send("PATCH", f"/orders/{order_id}/", json=body, headers=headers)
        return Order.from_dict(response.json()["order"])

    def _send(self, method: str, path: str, *, headers: Optional[Dict[str, str]] = None, **kwargs):
        headers = dict(headers or {})
        if self.auth_token:
            headers["Authorization"] = f"Token {self.auth_token}"

        try:
            response = self.http.request(method, f"{self.base_url}{path}", headers=headers,
                                         timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise RequestTimeout() from exc
        except requests.RequestException as exc:
            raise NetworkFailure() from exc

        if response.status_code >= 400:
            raise self._error_for(response)
        return response

    def _error_for(self, response) -> OrderLifecycleError:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        error = error_from_payload(payload, response.status_code)
        if isinstance(error, Conflict) and error.current_token is None:
            error.current_token = response.headers.get("ETag")
        return error


def _wire_value(value: Any) -> Any:
    # enums go over the wire as their string value
    return getattr(value, "value", value)
