from __future__ import annotations

from typing import Generator

import pytest
from fastapi.testclient import TestClient

import main
from backend.config import Settings, get_settings
from conftest import FakeOrderApi, make_order


@pytest.fixture()
def upstream() -> FakeOrderApi:
    return FakeOrderApi([make_order(order_id) for order_id in range(1, 4)])


@pytest.fixture()
def proxy(settings: Settings, upstream: FakeOrderApi) -> Generator[TestClient, None, None]:
    main.app.dependency_overrides[main.get_http_session] = lambda: upstream
    main.app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


def test_proxy_health(proxy: TestClient) -> None:
    assert proxy.get("/api/health").json() == {"status": "running"}


def test_proxy_forwards_query_and_token(proxy: TestClient, upstream: FakeOrderApi) -> None:
    response = proxy.get("/api/shipping-orders", params={"page": 1, "per_page": 2, "with_items": "false"})

    assert response.status_code == 200
    body = response.json()
    assert [order["id"] for order in body["orders"]] == [1, 2]
    assert body["meta"]["last_page"] == 2

    call = upstream.calls[0]
    assert call["url"] == "https://orders.test/api/v1/shipping-orders"
    assert call["headers"]["Authorization"] == "Bearer test-token"
    assert ("with_items", "false") in call["params"]


def test_proxy_keeps_repeated_ids(proxy: TestClient, upstream: FakeOrderApi) -> None:
    response = proxy.get("/api/shipping-orders?ids[]=1&ids[]=3&with_items=true")

    assert response.status_code == 200
    assert [order["id"] for order in response.json()["orders"]] == [1, 3]
    assert [value for key, value in upstream.calls[0]["params"] if key == "ids[]"] == ["1", "3"]


def test_proxy_relays_upstream_error_status(proxy: TestClient, upstream: FakeOrderApi) -> None:
    upstream.status_code = 422

    response = proxy.get("/api/shipping-orders")

    assert response.status_code == 422
    assert response.json() == {
        "error": "Request failed with status code 422",
        "details": {"message": "upstream failure"},
    }


def test_proxy_network_error_returns_502(proxy: TestClient, upstream: FakeOrderApi) -> None:
    upstream.failing_pages = {1}

    response = proxy.get("/api/shipping-orders")

    assert response.status_code == 502
    assert "connection reset" in response.json()["error"]


def test_proxy_without_token_returns_503(proxy: TestClient, settings: Settings, upstream: FakeOrderApi) -> None:
    main.app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"api_token": None})

    response = proxy.get("/api/shipping-orders")

    assert response.status_code == 503
    assert upstream.calls == []


def test_each_request_gets_a_fresh_session() -> None:
    first_dependency = main.get_http_session()
    first = next(first_dependency)
    second_dependency = main.get_http_session()
    second = next(second_dependency)

    assert first is not second
    first_dependency.close()
    second_dependency.close()
