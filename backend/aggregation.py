"""Report views derived from an in-memory order collection.

All functions are pure: they read the orders they are given, never mutate
them, and return the same result for the same input. Cancelled orders are
left out of every money and quantity total; the status distribution is the
one view that counts them, under their own "Cancelled" bucket.
"""

from __future__ import annotations

import calendar
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from backend.schemas import (
    CategorySummary,
    CustomerRecord,
    CustomerSummary,
    Order,
    OrderMetrics,
    PeriodBucket,
    ProductAllocation,
    ProductSummary,
    StatusShare,
    StoreAllocation,
    StoreProductAllocation,
    StoreSummary,
    UpdatedOrder,
)
from backend.utils import (
    calculate_percentage,
    parse_timestamp,
    quantize_money,
    store_address,
    time_since_update,
    to_decimal,
)

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ALLOCATION_SORT_KEYS = ("product", "value", "quantity", "stores")
CUSTOMER_SORT_KEYS = ("name", "license", "total_orders", "total_revenue")
DATE_RANGES = ("7d", "14d", "30d", "90d", "6m", "weekly")

# Sales weeks run Tuesday to Monday (datetime.weekday numbering).
WEEK_START_WEEKDAY = 1

# Status names that suggest an order moved forward in fulfilment.
STATUS_PROGRESS_KEYWORDS = ("process", "ship", "complete")
# Updates this soon after creation are treated as part of creating the order.
UPDATE_GRACE = timedelta(minutes=1)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)
ZERO = Decimal("0")


def _active(orders: Iterable[Order]) -> List[Order]:
    return [order for order in orders if not order.cancelled]


def _line_total(price: str, quantity: int) -> Decimal:
    return to_decimal(price) * quantity


def revenue_by_period(orders: Iterable[Order]) -> List[PeriodBucket]:
    """Monthly revenue and order counts, oldest month first.

    Orders whose ``order_date`` cannot be parsed are skipped.
    """
    buckets: Dict[Tuple[int, int], Tuple[Decimal, int]] = {}
    for order in _active(orders):
        placed = parse_timestamp(order.order_date)
        if placed is None:
            continue
        key = (placed.year, placed.month)
        revenue, count = buckets.get(key, (ZERO, 0))
        buckets[key] = (revenue + to_decimal(order.total), count + 1)

    result: List[PeriodBucket] = []
    for (year, month), (revenue, count) in sorted(buckets.items()):
        result.append(
            PeriodBucket(
                period=f"{year:04d}-{month:02d}",
                label=f"{MONTH_LABELS[month - 1]} {year}",
                revenue=quantize_money(revenue),
                order_count=count,
                average_order_value=quantize_money(revenue / count),
            )
        )
    return result


def status_distribution(orders: Iterable[Order]) -> List[StatusShare]:
    """Order counts per display status, in order of first appearance."""
    counts = Counter(order.display_status for order in orders)
    total = sum(counts.values())
    return [
        StatusShare(
            name=name,
            count=count,
            proportion=count / total,
            percentage=round(calculate_percentage(count, total), 1),
        )
        for name, count in counts.items()
    ]


def top_customers(orders: Iterable[Order], limit: int = 5) -> List[CustomerSummary]:
    customers: Dict[int, CustomerSummary] = {}
    for order in _active(orders):
        summary = customers.get(order.buyer_id)
        if summary is None:
            summary = CustomerSummary(id=order.buyer_id, name=order.buyer_name, revenue=ZERO, order_count=0)
            customers[order.buyer_id] = summary
        summary.revenue += to_decimal(order.total)
        summary.order_count += 1

    ranked = sorted(customers.values(), key=lambda item: item.revenue, reverse=True)[:limit]
    for summary in ranked:
        summary.revenue = quantize_money(summary.revenue)
    return ranked


def customer_directory(
    orders: Iterable[Order],
    search: Optional[str] = None,
    sort_by: str = "name",
    descending: bool = False,
) -> List[CustomerRecord]:
    """Every buyer seen in ``orders`` with contact details and order totals.

    Cancelled orders are counted separately and add nothing to revenue.
    """
    if sort_by not in CUSTOMER_SORT_KEYS:
        raise ValueError(f"Unknown sort key '{sort_by}'")

    records: Dict[int, CustomerRecord] = {}
    for order in orders:
        record = records.get(order.buyer_id)
        if record is None:
            record = CustomerRecord(
                id=order.buyer_id,
                name=order.buyer_name,
                license=order.buyer_state_license,
                contact_name=order.buyer_contact_name,
                contact_phone=order.buyer_contact_phone,
                contact_email=order.buyer_contact_email,
                total_orders=0,
                total_revenue=ZERO,
            )
            records[order.buyer_id] = record
        if order.cancelled:
            record.cancelled_orders += 1
            continue
        record.total_orders += 1
        record.total_revenue += to_decimal(order.total)

    result = list(records.values())
    for record in result:
        record.total_revenue = quantize_money(record.total_revenue)

    if search:
        term = search.casefold()
        result = [
            record
            for record in result
            if term in record.name.casefold()
            or term in record.license.casefold()
            or term in (record.contact_name or "").casefold()
            or term in (record.contact_email or "").casefold()
        ]

    def sort_key(record: CustomerRecord):
        value = getattr(record, sort_by)
        return value.casefold() if isinstance(value, str) else value

    return sorted(result, key=sort_key, reverse=descending)


def top_products(orders: Iterable[Order], limit: int = 5) -> List[ProductSummary]:
    products: Dict[int, ProductSummary] = {}
    for order in _active(orders):
        for item in order.items:
            summary = products.get(item.product_id)
            if summary is None:
                summary = ProductSummary(product_id=item.product_id, name=item.product_name, revenue=ZERO, quantity=0)
                products[item.product_id] = summary
            summary.revenue += _line_total(item.order_price, item.order_quantity)
            summary.quantity += item.order_quantity

    ranked = sorted(products.values(), key=lambda item: item.revenue, reverse=True)[:limit]
    for summary in ranked:
        summary.revenue = quantize_money(summary.revenue)
    return ranked


def category_breakdown(orders: Iterable[Order]) -> List[CategorySummary]:
    categories: Dict[str, CategorySummary] = {}
    for order in _active(orders):
        for item in order.items:
            name = item.category or "Uncategorized"
            summary = categories.setdefault(name, CategorySummary(category=name, revenue=ZERO, quantity=0))
            summary.revenue += _line_total(item.order_price, item.order_quantity)
            summary.quantity += item.order_quantity

    ranked = sorted(categories.values(), key=lambda item: item.revenue, reverse=True)
    for summary in ranked:
        summary.revenue = quantize_money(summary.revenue)
    return ranked


def _allocation_row(order: Order, quantity: int, price: str) -> StoreAllocation:
    return StoreAllocation(
        store_name=order.ship_name,
        store_address=store_address(
            order.ship_line_one, order.ship_line_two, order.ship_city, order.ship_state, order.ship_zip
        ),
        invoice_number=order.invoice_number,
        order_id=order.id,
        quantity=quantity,
        unit_price=price,
        total_price=quantize_money(_line_total(price, quantity)),
        order_date=order.order_date or "",
    )


def _sort_allocations(rows: List[StoreAllocation]) -> None:
    # Newest first within a store, stores alphabetical.
    rows.sort(key=lambda row: parse_timestamp(row.order_date) or _OLDEST, reverse=True)
    rows.sort(key=lambda row: row.store_name.casefold())


def product_allocation(
    orders: Iterable[Order],
    sort_by: str = "product",
    search: Optional[str] = None,
) -> List[ProductAllocation]:
    """Per-product quantities and values broken down by destination store.

    ``sort_by`` is one of ``product`` (name, A-Z), ``value``, ``quantity`` or
    ``stores`` (largest first). Ties keep the order products were first seen.
    """
    if sort_by not in ALLOCATION_SORT_KEYS:
        raise ValueError(f"Unknown sort key '{sort_by}'")

    products: Dict[int, ProductAllocation] = {}
    for order in _active(orders):
        for item in order.items:
            product = products.get(item.product_id)
            if product is None:
                product = ProductAllocation(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_sku=item.product_sku,
                    brand=item.brand_name,
                    category=item.category,
                )
                products[item.product_id] = product
            row = _allocation_row(order, item.order_quantity, item.order_price)
            product.allocations.append(row)
            product.total_quantity += row.quantity
            product.total_value += row.total_price

    result = list(products.values())
    for product in result:
        product.total_stores = len({row.store_name for row in product.allocations})
        product.total_invoices = len({row.invoice_number for row in product.allocations})
        product.total_value = quantize_money(product.total_value)
        _sort_allocations(product.allocations)

    if search:
        term = search.casefold()
        result = [
            product
            for product in result
            if term in product.product_name.casefold()
            or term in product.product_sku.casefold()
            or term in product.brand.casefold()
            or term in product.category.casefold()
            or any(
                term in row.store_name.casefold() or term in row.invoice_number.casefold()
                for row in product.allocations
            )
        ]

    if sort_by == "product":
        return sorted(result, key=lambda product: product.product_name.casefold())
    if sort_by == "value":
        return sorted(result, key=lambda product: product.total_value, reverse=True)
    if sort_by == "quantity":
        return sorted(result, key=lambda product: product.total_quantity, reverse=True)
    return sorted(result, key=lambda product: product.total_stores, reverse=True)


def store_allocation(orders: Iterable[Order], search: Optional[str] = None) -> List[StoreSummary]:
    """Per-store view of the same allocation data, stores in first-seen order."""
    stores: Dict[Tuple[str, str, str], StoreSummary] = {}
    store_products: Dict[Tuple[str, str, str], Dict[int, StoreProductAllocation]] = {}

    for order in _active(orders):
        key = (order.ship_name, order.ship_city, order.ship_state)
        store = stores.get(key)
        if store is None:
            store = StoreSummary(
                store_name=order.ship_name,
                store_address=store_address(
                    order.ship_line_one, order.ship_line_two, order.ship_city, order.ship_state, order.ship_zip
                ),
            )
            stores[key] = store
            store_products[key] = {}
        store.total_invoices += 1

        products = store_products[key]
        for item in order.items:
            product = products.get(item.product_id)
            if product is None:
                product = StoreProductAllocation(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_sku=item.product_sku,
                    brand=item.brand_name,
                    category=item.category,
                )
                products[item.product_id] = product
                store.products.append(product)
            row = _allocation_row(order, item.order_quantity, item.order_price)
            product.allocations.append(row)
            product.total_quantity += row.quantity
            product.total_value += row.total_price
            store.total_quantity += row.quantity
            store.total_value += row.total_price
        store.total_products = len(store.products)

    result = list(stores.values())
    for store in result:
        store.total_value = quantize_money(store.total_value)
        for product in store.products:
            product.total_value = quantize_money(product.total_value)

    if search:
        term = search.casefold()
        result = [
            store
            for store in result
            if term in store.store_name.casefold()
            or term in store.store_address.casefold()
            or any(
                term in product.product_name.casefold() or term in product.product_sku.casefold()
                for product in store.products
            )
        ]
    return result


def classify_update(order: Order) -> str:
    """Best-effort guess at what changed in a recently updated order.

    The API keeps no change log, so this only looks at how long after
    creation the update happened, the current status name and whether the
    order carries items. Treat the answer as a hint, not an audit trail.
    """
    created = parse_timestamp(order.created_at)
    updated = parse_timestamp(order.updated_at)
    if created is None or updated is None or updated - created <= UPDATE_GRACE:
        return "general"

    status = order.order_status.name.lower()
    if any(keyword in status for keyword in STATUS_PROGRESS_KEYWORDS):
        return "status"
    if order.items:
        return "items"
    return "general"


def recently_updated(
    orders: Iterable[Order],
    now: datetime,
    days: int = 7,
    limit: int = 10,
) -> List[UpdatedOrder]:
    """Orders updated within ``days`` of ``now``, most recent first."""
    now = now if now.tzinfo else now.replace(tzinfo=timezone.utc)
    cutoff = now - timedelta(days=days)

    recent: List[Tuple[datetime, Order]] = []
    for order in orders:
        updated = parse_timestamp(order.updated_at)
        if updated is not None and updated >= cutoff:
            recent.append((updated, order))
    recent.sort(key=lambda pair: pair[0], reverse=True)

    return [
        UpdatedOrder(
            id=order.id,
            invoice_number=order.invoice_number,
            status=order.display_status,
            buyer_name=order.buyer_name,
            total=order.total,
            updated_at=updated,
            update_type=classify_update(order),
            time_since_update=time_since_update(updated, now),
        )
        for updated, order in recent[:limit]
    ]


def _months_back(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + moment.month - 1 - months
    year, month = divmod(month_index, 12)
    day = min(moment.day, calendar.monthrange(year, month + 1)[1])
    return moment.replace(year=year, month=month + 1, day=day)


def _day_start(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _day_end(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def date_range_bounds(date_range: str, now: datetime) -> Tuple[datetime, datetime]:
    """Inclusive ``(start, end)`` of a dashboard date range, in UTC.

    Rolling ranges run from the start of the day N days (or six months) back
    to the end of today. ``weekly`` is the last complete Tuesday to Monday
    week; on a Tuesday that is the week which ended yesterday.
    """
    if date_range not in DATE_RANGES:
        raise ValueError(f"Unknown date range '{date_range}'")
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)

    if date_range == "weekly":
        this_tuesday = now - timedelta(days=(now.weekday() - WEEK_START_WEEKDAY) % 7)
        start = this_tuesday - timedelta(days=7)
        end = this_tuesday - timedelta(days=1)
    elif date_range == "6m":
        start, end = _months_back(now, 6), now
    else:
        start, end = now - timedelta(days=int(date_range[:-1])), now
    return _day_start(start), _day_end(end)


def _placed_between(orders: Iterable[Order], start: datetime, end: datetime) -> List[Order]:
    selected: List[Order] = []
    for order in orders:
        placed = parse_timestamp(order.order_date)
        if placed is not None and start <= placed <= end:
            selected.append(order)
    return selected


def order_metrics(
    orders: Sequence[Order],
    date_range: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OrderMetrics:
    """Headline numbers for the dashboard.

    With ``date_range`` the counts cover only orders whose ``order_date``
    falls inside :func:`date_range_bounds`; orders without a readable date
    are left out. ``weekly_sales`` always covers the last Tuesday to Monday
    week over every order given, whatever the range.
    """
    now = now or datetime.now(timezone.utc)
    week_start, week_end = date_range_bounds("weekly", now)
    weekly_revenue = sum(
        (to_decimal(order.total) for order in _active(_placed_between(orders, week_start, week_end))),
        ZERO,
    )

    range_start = range_end = None
    if date_range is not None:
        range_start, range_end = date_range_bounds(date_range, now)
        orders = _placed_between(orders, range_start, range_end)

    active = _active(orders)
    revenue = sum((to_decimal(order.total) for order in active), ZERO)
    average = revenue / len(active) if active else ZERO
    return OrderMetrics(
        total_orders=len(orders),
        total_revenue=quantize_money(revenue),
        active_orders=len(active),
        cancelled_orders=len(orders) - len(active),
        average_order_value=quantize_money(average),
        unique_customers=len({order.buyer_id for order in orders}),
        unique_products=len({item.product_id for order in active for item in order.items}),
        date_range=date_range,
        range_start=range_start,
        range_end=range_end,
        weekly_sales=quantize_money(weekly_revenue),
        week_start=week_start,
        week_end=week_end,
    )


def _payment_label(value: str) -> str:
    return value[:1].upper() + value[1:]


def filter_orders(
    orders: Iterable[Order],
    statuses: Optional[Sequence[str]] = None,
    payment_statuses: Optional[Sequence[str]] = None,
    shipping_methods: Optional[Sequence[str]] = None,
) -> List[Order]:
    """Orders matching every non-empty filter; an empty filter matches all."""
    return [
        order
        for order in orders
        if (not statuses or order.display_status in statuses)
        and (not payment_statuses or _payment_label(order.payment_status) in payment_statuses)
        and (not shipping_methods or (order.shipping_method is not None and order.shipping_method in shipping_methods))
    ]


__all__ = [
    "ALLOCATION_SORT_KEYS",
    "CUSTOMER_SORT_KEYS",
    "DATE_RANGES",
    "category_breakdown",
    "classify_update",
    "customer_directory",
    "date_range_bounds",
    "filter_orders",
    "order_metrics",
    "product_allocation",
    "recently_updated",
    "revenue_by_period",
    "status_distribution",
    "store_allocation",
    "top_customers",
    "top_products",
]
