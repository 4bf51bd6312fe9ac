"""In-memory order state shared by the dashboard endpoints."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from backend.aggregation import order_metrics
from backend.client import ApexClient
from backend.errors import OrdersError
from backend.logger import get_logger
from backend.schemas import CacheStats, Order, StoreStatus

logger = get_logger("store")


class OrderStore:
    """Summary orders plus the detailed versions loaded so far.

    ``summaries`` decides which orders exist; ``details`` only upgrades the
    orders already listed there. Details for ids outside the summary set are
    kept but never returned from :attr:`orders`.
    """

    def __init__(self, client: ApexClient, preload_details: int = 0) -> None:
        self.client = client
        self.preload_details = preload_details
        self.summaries: Dict[int, Order] = {}
        self.details: Dict[int, Order] = {}
        self.failed_detail_ids: Set[int] = set()
        self.loading = False
        self.partial = False
        self.error: Optional[str] = None
        self.last_refreshed_at: Optional[datetime] = None
        self._detail_loads = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_invalidates = False

    @property
    def orders(self) -> List[Order]:
        return [self.details.get(order_id, summary) for order_id, summary in self.summaries.items()]

    @property
    def summary_orders(self) -> List[Order]:
        return list(self.summaries.values())

    @property
    def loading_details(self) -> bool:
        return self._detail_loads > 0

    @property
    def total_orders(self) -> int:
        return len(self.summaries)

    @property
    def total_revenue(self) -> Decimal:
        return order_metrics(self.orders).total_revenue

    @property
    def active_orders(self) -> int:
        return sum(1 for order in self.orders if not order.cancelled)

    @property
    def cancelled_orders(self) -> int:
        return sum(1 for order in self.orders if order.cancelled)

    async def load(self) -> None:
        """Initial load; reuses anything still cached."""
        await self._run_refresh(invalidate=False)

    async def refresh(self) -> None:
        """Drop cached responses and details, then reload every summary.

        Concurrent calls share one in-flight reload. On failure the previous
        orders stay in place, :attr:`error` is set and the error is re-raised.
        """
        await self._run_refresh(invalidate=True)

    async def _run_refresh(self, invalidate: bool) -> None:
        while True:
            task = self._refresh_task
            if task is None or task.done():
                task = asyncio.ensure_future(self._refresh(invalidate))
                self._refresh_task = task
                self._refresh_invalidates = invalidate
                break
            if self._refresh_invalidates or not invalidate:
                break
            # A load that may be served from cache is in flight; a refresh waits
            # for it to settle and then starts its own.
            await asyncio.wait({task})
        await asyncio.shield(task)

    async def _refresh(self, invalidate: bool) -> None:
        self.loading = True
        self.error = None
        try:
            if invalidate:
                self.client.clear_cache()
            result = await asyncio.to_thread(self.client.fetch_all, None, False)
        except OrdersError as exc:
            self.error = exc.message
            logger.error("Failed to load orders: %s", exc.message)
            raise
        finally:
            self.loading = False

        self.summaries = {order.id: order for order in result.orders}
        if invalidate:
            self.details = {}
            self.failed_detail_ids = set()
        self.partial = result.partial
        self.last_refreshed_at = datetime.now(timezone.utc)
        if result.partial:
            logger.warning("Loaded a partial order list (%d orders)", len(self.summaries))
        else:
            logger.info("Loaded %d orders", len(self.summaries))

        if self.preload_details:
            await self.load_details(list(self.summaries)[: self.preload_details])

    async def load_details(self, order_ids: Iterable[int]) -> Tuple[List[int], List[int]]:
        """Fetch items for ids that have no detail yet.

        Returns ``(loaded, failed)``. Failed ids are remembered in
        :attr:`failed_detail_ids` and retried by the next call that asks for
        them; batch failures are logged, never raised.
        """
        missing = [order_id for order_id in dict.fromkeys(order_ids) if order_id not in self.details]
        if not missing:
            return [], []

        self._detail_loads += 1
        try:
            orders, failed = await self.client.fetch_orders_with_items_report(missing)
        finally:
            self._detail_loads -= 1

        loaded: List[int] = []
        for order in orders:
            self.details[order.id] = order
            self.failed_detail_ids.discard(order.id)
            loaded.append(order.id)

        unresolved = [order_id for order_id in missing if order_id not in self.details]
        self.failed_detail_ids.update(unresolved)
        if unresolved:
            logger.warning(
                "%d orders left at summary level (%d in failed batches)", len(unresolved), len(failed)
            )
        return loaded, unresolved

    async def get_order(self, order_id: int) -> Optional[Order]:
        """The fullest known version of a visible order, loading items on demand."""
        summary = self.summaries.get(order_id)
        if summary is None:
            return None
        if order_id not in self.details:
            await self.load_details([order_id])
        return self.details.get(order_id, summary)

    async def find_by_invoice(self, invoice_number: str) -> List[Order]:
        """Visible orders carrying ``invoice_number``; their items are kept as details."""
        found = await asyncio.to_thread(self.client.fetch_orders_by_invoice_number, invoice_number)
        visible: List[Order] = []
        for order in found:
            if order.id not in self.summaries:
                continue
            self.details[order.id] = order
            self.failed_detail_ids.discard(order.id)
            visible.append(order)
        return visible

    def cache_stats(self) -> CacheStats:
        return self.client.cache_stats()

    def status(self) -> StoreStatus:
        visible_details = sum(1 for order_id in self.summaries if order_id in self.details)
        return StoreStatus(
            loading=self.loading,
            loading_details=self.loading_details,
            error=self.error,
            partial=self.partial,
            total_orders=self.total_orders,
            detailed_orders=visible_details,
            failed_detail_ids=sorted(self.failed_detail_ids),
            last_refreshed_at=self.last_refreshed_at,
            cache=self.cache_stats(),
        )


__all__ = ["OrderStore"]
