"""
Client for the upstream shipping-orders API.

Every read goes through the shared cache (see :class:`backend.cache.CacheBackend`):

- single pages and the combined "all pages" result for summary loads
- batches of orders fetched with their line items (cached twice as long)
- orders looked up by invoice number

Blocking calls run in worker threads. A ``requests.Session`` is not
guaranteed to be thread-safe, so unless one is injected each thread gets its
own session.

Failures surface as :class:`TransportError` (network, timeouts, non-2xx) or
:class:`ParseError` (body is not the expected ``{orders, meta}`` payload).
"""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError

from backend.cache import CacheBackend, make_cache_key
from backend.config import MAX_PER_PAGE, PAGINATION_STRATEGIES, Settings
from backend.errors import (
    ConfigurationError,
    FetchTimeoutError,
    OrdersError,
    ParseError,
    TransportError,
)
from backend.logger import get_logger
from backend.schemas import CacheStats, Order, OrdersPage, PageMeta, TimeWindow

logger = get_logger("client")

ORDERS_ENDPOINT = "/shipping-orders"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ApexClient:
    """Paginated, cached access to ``/shipping-orders``.

    Usage:
        client = ApexClient(settings, ResponseCache())
        page = client.fetch_page(page=1)
        everything = client.fetch_all()
        detailed = await client.fetch_orders_with_items([101, 102])
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheBackend,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        # An injected session is shared by every thread as-is.
        self._shared_session = session
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _headers(self) -> Dict[str, str]:
        if not self.settings.api_token:
            raise ConfigurationError("APEX_API_TOKEN is not configured")
        return {
            "Authorization": f"Bearer {self.settings.api_token}",
            "Accept": "application/json",
        }

    def _request(self, params: Any, timeout: float) -> Dict[str, Any]:
        """GET the orders endpoint and return the decoded JSON body."""
        url = f"{self.settings.api_url}{ORDERS_ENDPOINT}"
        headers = self._headers()

        try:
            response = self.session.get(url, params=params, headers=headers, timeout=timeout)
        except requests.exceptions.Timeout as exc:
            logger.error("Order API timeout after %ss", timeout)
            raise FetchTimeoutError(f"Order API timed out after {timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            logger.error("Order API connection error: %s", exc)
            raise TransportError(f"Unable to reach order API: {exc}", code="CONNECTION_ERROR") from exc

        if not response.ok:
            logger.error("Order API error: %s %s", response.status_code, response.reason)
            raise TransportError(
                f"API error: {response.status_code} {response.reason}",
                code="API_ERROR",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ParseError("Order API returned a non-JSON body") from exc

        if not isinstance(data, dict):
            raise ParseError("Order API returned an unexpected payload", details={"type": type(data).__name__})
        return data

    @staticmethod
    def _parse_page(data: Dict[str, Any]) -> OrdersPage:
        try:
            return OrdersPage.model_validate(data)
        except ValidationError as exc:
            raise ParseError("Malformed orders page", details={"errors": exc.errors(include_url=False)}) from exc

    @staticmethod
    def _parse_orders(data: Dict[str, Any]) -> List[Order]:
        raw = data.get("orders")
        if not isinstance(raw, list):
            raise ParseError("Order API response has no 'orders' list")
        try:
            return [Order.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise ParseError("Malformed order record", details={"errors": exc.errors(include_url=False)}) from exc

    def default_window(self) -> TimeWindow:
        return TimeWindow(updated_at_from=self.settings.updated_at_from, updated_at_to=_utc_now_iso())

    def _resolve_window(self, window: Optional[TimeWindow]) -> Tuple[TimeWindow, Dict[str, Any]]:
        """Return the window to send and the one to key the cache by.

        An open-ended window ends at "now", which changes every call, so it is
        keyed with no upper bound and repeated calls hit the cache.
        """
        if window is None:
            return self.default_window(), {"updated_at_from": self.settings.updated_at_from, "updated_at_to": None}
        return window, window.as_params()

    def fetch_page(
        self,
        window: Optional[TimeWindow] = None,
        include_items: bool = False,
        per_page: Optional[int] = None,
        page: int = 1,
    ) -> OrdersPage:
        per_page = per_page or self.settings.per_page
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise ValueError(f"per_page must be between 1 and {MAX_PER_PAGE}")
        if page < 1:
            raise ValueError("page must be >= 1")

        window, key_window = self._resolve_window(window)
        return self._fetch_page(window, key_window, include_items, per_page, page)

    def _fetch_page(
        self,
        window: TimeWindow,
        key_window: Dict[str, Any],
        include_items: bool,
        per_page: int,
        page: int,
    ) -> OrdersPage:
        query = {
            "with_items": "true" if include_items else "false",
            "per_page": per_page,
            "page": page,
        }
        params = {**window.as_params(), **query}
        cache_key = make_cache_key("orders-page", {**key_window, **query})
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        timeout = self.settings.detail_timeout if include_items else self.settings.summary_timeout
        result = self._parse_page(self._request(params, timeout))
        ttl = self.settings.detail_ttl_seconds if include_items else self.settings.cache_ttl_seconds
        self.cache.set(cache_key, result, ttl)
        return result

    def fetch_all(
        self,
        window: Optional[TimeWindow] = None,
        include_items: bool = False,
        strategy: Optional[str] = None,
    ) -> OrdersPage:
        """Walk every page of ``window`` and return the orders as one page.

        ``best_effort`` stops at the first failing page after page one and
        returns what was gathered so far, flagged ``partial``. ``fail_fast``
        raises instead. A failure on page one always raises since there is
        nothing to return.
        """
        strategy = strategy or self.settings.pagination
        if strategy not in PAGINATION_STRATEGIES:
            raise ValueError(f"Unknown pagination strategy '{strategy}'")

        window, key_window = self._resolve_window(window)
        cache_key = make_cache_key("all-orders", {**key_window, "with_items": include_items})
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        orders: List[Order] = []
        page = 1
        partial = False

        while True:
            try:
                result = self._fetch_page(window, key_window, include_items, self.settings.per_page, page)
            except OrdersError as exc:
                if strategy == "fail_fast" or page == 1:
                    raise
                logger.warning(
                    "Stopped at page %d after error (%s); returning %d orders", page, exc.message, len(orders)
                )
                partial = True
                break

            orders.extend(result.orders)
            logger.info(
                "Fetched page %d of %d (%d total orders)",
                result.meta.current_page,
                result.meta.last_page,
                len(orders),
            )
            if result.meta.current_page >= result.meta.last_page:
                break
            page += 1

        combined = OrdersPage(
            orders=orders,
            meta=PageMeta(current_page=1, last_page=1, total=len(orders), per_page=len(orders)),
            partial=partial,
        )
        if not partial:
            self.cache.set(cache_key, combined, self.settings.detail_ttl_seconds)
        return combined

    def fetch_batch(self, order_ids: Sequence[int]) -> List[Order]:
        """Fetch the given orders with their line items in one request."""
        ids = list(order_ids)
        cache_key = make_cache_key("orders-batch", {"ids": ids})
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        params: List[Tuple[str, Any]] = [("ids[]", order_id) for order_id in ids]
        params.append(("with_items", "true"))
        orders = self._parse_orders(self._request(params, self.settings.detail_timeout))
        self.cache.set(cache_key, orders, self.settings.detail_ttl_seconds)
        return orders

    def _batches(self, order_ids: Sequence[int]) -> List[List[int]]:
        size = self.settings.detail_batch_size
        ids = list(order_ids)
        return [ids[start:start + size] for start in range(0, len(ids), size)]

    async def fetch_orders_with_items_report(self, order_ids: Sequence[int]) -> Tuple[List[Order], List[int]]:
        """Fetch all batches concurrently; return the orders and the ids whose batch failed."""
        batches = self._batches(order_ids)
        if not batches:
            return [], []

        results = await asyncio.gather(
            *(asyncio.to_thread(self.fetch_batch, batch) for batch in batches),
            return_exceptions=True,
        )

        orders: List[Order] = []
        failed: List[int] = []
        for batch, result in zip(batches, results):
            if isinstance(result, Exception):
                logger.warning("Detail batch of %d orders failed: %s", len(batch), result)
                failed.extend(batch)
            elif isinstance(result, BaseException):
                raise result
            else:
                orders.extend(result)
        return orders, failed

    async def fetch_orders_with_items(self, order_ids: Sequence[int]) -> List[Order]:
        orders, _ = await self.fetch_orders_with_items_report(order_ids)
        return orders

    def fetch_orders_by_invoice_number(self, invoice_number: str) -> List[Order]:
        """Orders (with items) carrying ``invoice_number``; usually zero or one."""
        params = {"invoice_number": invoice_number, "with_items": "true"}
        cache_key = make_cache_key("orders-invoice", params)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        orders = self._parse_orders(self._request(params, self.settings.detail_timeout))
        self.cache.set(cache_key, orders, self.settings.detail_ttl_seconds)
        return orders

    def clear_cache(self) -> None:
        self.cache.invalidate_all()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def close(self) -> None:
        if self._shared_session is not None:
            self._shared_session.close()
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()

    def __enter__(self) -> "ApexClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


__all__ = ["ApexClient", "ORDERS_ENDPOINT"]
