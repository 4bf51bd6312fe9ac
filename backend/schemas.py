from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MONEY_FIELDS = (
    "subtotal",
    "total",
    "excise_tax",
    "additional_discount",
    "delivery_cost",
    "total_payments",
)


def _money_to_str(value: Any) -> Any:
    # Upstream money is a decimal string; tolerate bare numbers and nulls.
    if value is None:
        return "0"
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


class UpstreamModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class NamedRef(UpstreamModel):
    id: Optional[int] = None
    name: str = ""


class Buyer(UpstreamModel):
    id: int
    name: str = ""


class OrderStatus(UpstreamModel):
    id: int = 0
    name: str = ""
    archived: bool = False
    position: Optional[int] = None
    payment_percentage: Optional[float] = None


class ItemImage(UpstreamModel):
    id: Optional[int] = None
    sort_order: Optional[int] = None
    link: str


class OrderItem(UpstreamModel):
    id: Optional[int] = None
    order_id: Optional[int] = None
    product_id: int
    product_name: str = ""
    product_sku: str = ""
    order_quantity: int = Field(0, ge=0)
    order_price: str = "0"
    product_category: Optional[NamedRef] = None
    brand: Optional[NamedRef] = None
    images: List[ItemImage] = Field(default_factory=list)

    @field_validator("order_price", mode="before")
    @classmethod
    def _price_as_string(cls, value: Any) -> Any:
        return _money_to_str(value)

    @field_validator("product_name", "product_sku", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("order_quantity", mode="before")
    @classmethod
    def _null_quantity(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def category(self) -> str:
        return self.product_category.name if self.product_category else ""

    @property
    def brand_name(self) -> str:
        return self.brand.name if self.brand else ""


class Order(UpstreamModel):
    """A shipping order as served by the upstream API.

    Summary payloads carry no ``items``; detail payloads carry the full list.
    Money stays a decimal string and is only parsed when aggregated.
    """

    id: int
    uuid: Optional[str] = None
    invoice_number: str = ""
    subtotal: str = "0"
    total: str = "0"
    excise_tax: str = "0"
    additional_discount: str = "0"
    delivery_cost: str = "0"
    total_payments: str = "0"
    order_date: Optional[str] = None
    cancelled: bool = False
    order_status: OrderStatus = Field(default_factory=OrderStatus)
    payment_status: str = ""
    shipping_method: Optional[str] = None
    buyer_id: int = 0
    buyer: Optional[Buyer] = None
    buyer_state_license: str = ""
    buyer_contact_name: Optional[str] = None
    buyer_contact_phone: Optional[str] = None
    buyer_contact_email: Optional[str] = None
    ship_name: str = ""
    ship_line_one: str = ""
    ship_line_two: Optional[str] = None
    ship_city: str = ""
    ship_state: str = ""
    ship_zip: str = ""
    ship_country: str = ""
    ship_from_name: str = ""
    ship_from_line_one: str = ""
    ship_from_line_two: Optional[str] = None
    ship_from_city: str = ""
    ship_from_state: str = ""
    ship_from_zip: str = ""
    ship_from_country: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)

    @field_validator(*MONEY_FIELDS, mode="before")
    @classmethod
    def _money_as_string(cls, value: Any) -> Any:
        return _money_to_str(value)

    @field_validator(
        "invoice_number",
        "payment_status",
        "buyer_state_license",
        "ship_name",
        "ship_line_one",
        "ship_city",
        "ship_state",
        "ship_zip",
        "ship_country",
        "ship_from_name",
        "ship_from_line_one",
        "ship_from_city",
        "ship_from_state",
        "ship_from_zip",
        "ship_from_country",
        mode="before",
    )
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("items", mode="before")
    @classmethod
    def _null_items(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def display_status(self) -> str:
        return "Cancelled" if self.cancelled else self.order_status.name

    @property
    def buyer_name(self) -> str:
        return self.buyer.name if self.buyer else ""

    @property
    def has_items(self) -> bool:
        return bool(self.items)


class PageMeta(UpstreamModel):
    current_page: int = Field(..., ge=1)
    last_page: int = Field(..., ge=1)
    total: int = Field(0, ge=0)
    per_page: Optional[int] = None


class OrdersPage(UpstreamModel):
    orders: List[Order]
    meta: PageMeta
    links: Dict[str, Any] = Field(default_factory=dict)
    # Only set on combined results whose pagination stopped on an error.
    partial: bool = False


class TimeWindow(BaseModel):
    """Bounds on ``updated_at``; both ends are sent to the API as given."""

    updated_at_from: str
    updated_at_to: str

    def as_params(self) -> Dict[str, str]:
        return {"updated_at_from": self.updated_at_from, "updated_at_to": self.updated_at_to}


class PeriodBucket(BaseModel):
    period: str
    label: str
    revenue: Decimal
    order_count: int
    average_order_value: Decimal


class StatusShare(BaseModel):
    name: str
    count: int
    proportion: float
    percentage: float


class CustomerSummary(BaseModel):
    id: int
    name: str
    revenue: Decimal
    order_count: int


class CustomerRecord(BaseModel):
    id: int
    name: str
    license: str = ""
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    total_orders: int
    cancelled_orders: int = 0
    total_revenue: Decimal


class ProductSummary(BaseModel):
    product_id: int
    name: str
    revenue: Decimal
    quantity: int


class CategorySummary(BaseModel):
    category: str
    revenue: Decimal
    quantity: int


class StoreAllocation(BaseModel):
    store_name: str
    store_address: str
    invoice_number: str
    order_id: int
    quantity: int
    unit_price: str
    total_price: Decimal
    order_date: str = ""


class ProductAllocation(BaseModel):
    product_id: int
    product_name: str
    product_sku: str
    brand: str
    category: str
    total_quantity: int = 0
    total_value: Decimal = Decimal("0")
    total_stores: int = 0
    total_invoices: int = 0
    allocations: List[StoreAllocation] = Field(default_factory=list)


class StoreProductAllocation(BaseModel):
    product_id: int
    product_name: str
    product_sku: str
    brand: str
    category: str
    total_quantity: int = 0
    total_value: Decimal = Decimal("0")
    allocations: List[StoreAllocation] = Field(default_factory=list)


class StoreSummary(BaseModel):
    store_name: str
    store_address: str
    total_invoices: int = 0
    total_products: int = 0
    total_quantity: int = 0
    total_value: Decimal = Decimal("0")
    products: List[StoreProductAllocation] = Field(default_factory=list)


UpdateType = Literal["status", "items", "general"]


class UpdatedOrder(BaseModel):
    id: int
    invoice_number: str
    status: str
    buyer_name: str
    total: str
    updated_at: datetime
    update_type: UpdateType
    time_since_update: str


class OrderMetrics(BaseModel):
    total_orders: int
    total_revenue: Decimal
    active_orders: int
    cancelled_orders: int
    average_order_value: Decimal
    unique_customers: int
    unique_products: int = 0
    date_range: Optional[str] = None
    range_start: Optional[datetime] = None
    range_end: Optional[datetime] = None
    weekly_sales: Decimal = Decimal("0.00")
    week_start: Optional[datetime] = None
    week_end: Optional[datetime] = None


class CacheStats(BaseModel):
    size: int
    keys: List[str]


class StoreStatus(BaseModel):
    loading: bool
    loading_details: bool
    error: Optional[str] = None
    partial: bool = False
    total_orders: int
    detailed_orders: int
    failed_detail_ids: List[int] = Field(default_factory=list)
    last_refreshed_at: Optional[datetime] = None
    cache: CacheStats


class DetailRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class DetailLoadResult(BaseModel):
    loaded: List[int]
    failed: List[int]
