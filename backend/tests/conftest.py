from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import pytest
import requests

from backend.cache import ResponseCache
from backend.client import ApexClient
from backend.config import Settings

_NO_JSON = object()


class FakeClock:
    """Manually advanced stand-in for ``time.monotonic``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, reason: str = "OK", text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._payload is _NO_JSON:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeOrderApi:
    """In-memory ``requests.Session`` replacement serving ``/shipping-orders``.

    Pages are cut from ``orders`` using the requested ``per_page``. Summary
    requests (``with_items=false``) get orders without their items.
    """

    def __init__(self, orders: Iterable[Dict[str, Any]] = ()) -> None:
        self.orders: List[Dict[str, Any]] = list(orders)
        self.calls: List[Dict[str, Any]] = []
        self.failing_pages: Set[int] = set()
        self.timeout_pages: Set[int] = set()
        self.failing_ids: Set[int] = set()
        self.status_code: Optional[int] = None
        self.raw_payload: Any = None
        self.closed = False

    def get(self, url: str, params: Any = None, headers: Optional[dict] = None, timeout: Any = None) -> FakeResponse:
        pairs = list(params.items()) if isinstance(params, dict) else list(params or [])
        self.calls.append({"url": url, "params": pairs, "headers": headers or {}, "timeout": timeout})

        if self.status_code is not None:
            return FakeResponse(self.status_code, {"message": "upstream failure"}, reason="Server Error", text="upstream failure")
        if self.raw_payload is not None:
            return FakeResponse(200, self.raw_payload)

        query: Dict[str, Any] = {}
        ids: List[int] = []
        for key, value in pairs:
            if key == "ids[]":
                ids.append(int(value))
            else:
                query[key] = value

        if ids:
            if self.failing_ids.intersection(ids):
                return FakeResponse(500, {"message": "batch failed"}, reason="Server Error")
            found = [order for order in self.orders if order["id"] in ids]
            return FakeResponse(200, {"orders": found, "links": {}, "meta": _meta(1, 1, len(found), len(found))})

        if "invoice_number" in query:
            found = [order for order in self.orders if order["invoice_number"] == query["invoice_number"]]
            return FakeResponse(200, {"orders": found, "links": {}, "meta": _meta(1, 1, len(found), len(found))})

        page = int(query.get("page", 1))
        per_page = int(query.get("per_page", 500))
        if page in self.timeout_pages:
            raise requests.exceptions.Timeout("read timed out")
        if page in self.failing_pages:
            raise requests.exceptions.ConnectionError("connection reset")

        last_page = max(1, math.ceil(len(self.orders) / per_page))
        chunk = self.orders[(page - 1) * per_page: page * per_page]
        if query.get("with_items") == "false":
            chunk = [{key: value for key, value in order.items() if key != "items"} for order in chunk]
        return FakeResponse(200, {"orders": chunk, "links": {}, "meta": _meta(page, last_page, len(self.orders), per_page)})

    def list_calls(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if not any(key == "ids[]" for key, _ in call["params"])]

    def batch_calls(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if any(key == "ids[]" for key, _ in call["params"])]

    def close(self) -> None:
        self.closed = True


def _meta(current_page: int, last_page: int, total: int, per_page: int) -> Dict[str, int]:
    return {"current_page": current_page, "last_page": last_page, "total": total, "per_page": per_page}


def make_item(
    product_id: int,
    name: str = "Blue Dream 3.5g",
    price: str = "10.00",
    quantity: int = 1,
    category: str = "Flower",
    brand: str = "Acme",
    sku: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": product_id * 100,
        "product_id": product_id,
        "product_name": name,
        "product_sku": sku or f"SKU-{product_id}",
        "order_quantity": quantity,
        "order_price": price,
        "product_category": {"id": 1, "name": category},
        "brand": {"id": 1, "name": brand},
        "images": [],
    }


def make_order(
    order_id: int,
    total: str = "100.00",
    cancelled: bool = False,
    buyer_id: int = 7,
    buyer_name: str = "Green Leaf",
    status: str = "Processing",
    order_date: str = "2024-01-05",
    created_at: str = "2024-01-05T10:00:00Z",
    updated_at: str = "2024-01-06T10:00:00Z",
    ship_name: str = "Green Leaf Downtown",
    items: Optional[List[Dict[str, Any]]] = None,
    payment_status: str = "unpaid",
    shipping_method: Optional[str] = "Delivery",
) -> Dict[str, Any]:
    return {
        "id": order_id,
        "invoice_number": f"INV-{order_id:04d}",
        "subtotal": total,
        "total": total,
        "excise_tax": "0.00",
        "additional_discount": "0.00",
        "delivery_cost": "0.00",
        "order_date": order_date,
        "cancelled": cancelled,
        "order_status": {"id": 1, "name": status, "archived": False},
        "payment_status": payment_status,
        "shipping_method": shipping_method,
        "buyer_id": buyer_id,
        "buyer": {"id": buyer_id, "name": buyer_name},
        "buyer_state_license": f"LIC-{buyer_id}",
        "ship_name": ship_name,
        "ship_line_one": "1 Main St",
        "ship_line_two": None,
        "ship_city": "Denver",
        "ship_state": "CO",
        "ship_zip": "80202",
        "created_at": created_at,
        "updated_at": updated_at,
        "items": items if items is not None else [make_item(order_id)],
    }


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_url="https://orders.test/api/v1",
        api_token="test-token",
        per_page=10,
        detail_batch_size=2,
        preload_details=0,
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> ResponseCache:
    return ResponseCache(default_ttl=300, clock=clock)


@pytest.fixture()
def fake_api() -> FakeOrderApi:
    return FakeOrderApi([make_order(order_id) for order_id in range(1, 21)])


@pytest.fixture()
def client(settings: Settings, cache: ResponseCache, fake_api: FakeOrderApi) -> ApexClient:
    return ApexClient(settings, cache, session=fake_api)
