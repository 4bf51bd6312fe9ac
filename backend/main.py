from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional

import requests
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import aggregation
from backend.cache import ResponseCache
from backend.client import ApexClient
from backend.config import Settings, get_settings
from backend.errors import ConfigurationError, OrdersError
from backend.logger import get_logger, setup_logger
from backend.schemas import (
    CacheStats,
    CategorySummary,
    CustomerRecord,
    CustomerSummary,
    DetailLoadResult,
    DetailRequest,
    Order,
    OrderMetrics,
    PeriodBucket,
    ProductAllocation,
    ProductSummary,
    StatusShare,
    StoreStatus,
    StoreSummary,
    UpdatedOrder,
)
from backend.store import OrderStore

logger = get_logger("api")


def create_app(
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Build the dashboard app; ``session`` and ``clock`` are swapped out in tests."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logger(settings.log_dir, settings.log_level)
        cache_options = {"clock": clock} if clock else {}
        cache = ResponseCache(
            default_ttl=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            **cache_options,
        )
        client = ApexClient(settings, cache, session=session)
        store = OrderStore(client, preload_details=settings.preload_details)
        app.state.store = store
        try:
            await store.load()
        except OrdersError as exc:
            # Keep serving; the error is reported through /api/orders/status.
            logger.error("Initial order load failed: %s", exc.message)
        try:
            yield
        finally:
            client.close()

    app = FastAPI(
        title="Shipping Orders Dashboard API",
        description="Cached order data and reports for the shipping orders dashboard.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrdersError)
    async def orders_error_handler(request: Request, exc: OrdersError) -> JSONResponse:
        status_code = 503 if isinstance(exc, ConfigurationError) else 502
        return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})

    app.include_router(router)
    return app


def get_store(request: Request) -> OrderStore:
    return request.app.state.store


router = APIRouter(prefix="/api")


@router.get("/health")
def health_check():
    return {"status": "running"}


@router.get("/orders", response_model=List[Order])
def list_orders(
    status: Optional[List[str]] = Query(default=None),
    payment_status: Optional[List[str]] = Query(default=None),
    shipping_method: Optional[List[str]] = Query(default=None),
    store: OrderStore = Depends(get_store),
) -> List[Order]:
    return aggregation.filter_orders(store.orders, status, payment_status, shipping_method)


@router.get("/orders/status", response_model=StoreStatus)
def order_status(store: OrderStore = Depends(get_store)) -> StoreStatus:
    return store.status()


@router.post("/orders/refresh", response_model=StoreStatus)
async def refresh_orders(store: OrderStore = Depends(get_store)) -> StoreStatus:
    await store.refresh()
    return store.status()


@router.post("/orders/details", response_model=DetailLoadResult)
async def load_order_details(
    payload: DetailRequest,
    store: OrderStore = Depends(get_store),
) -> DetailLoadResult:
    loaded, failed = await store.load_details(payload.ids)
    return DetailLoadResult(loaded=loaded, failed=failed)


@router.get("/orders/invoice/{invoice_number}", response_model=List[Order])
async def orders_by_invoice(invoice_number: str, store: OrderStore = Depends(get_store)) -> List[Order]:
    return await store.find_by_invoice(invoice_number)


@router.get("/orders/{order_id}", response_model=Order)
async def get_order(order_id: int, store: OrderStore = Depends(get_store)) -> Order:
    order = await store.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/metrics", response_model=OrderMetrics)
def get_metrics(
    date_range: Optional[str] = Query(None, alias="range", pattern="^(7d|14d|30d|90d|6m|weekly)$"),
    store: OrderStore = Depends(get_store),
) -> OrderMetrics:
    return aggregation.order_metrics(store.orders, date_range=date_range, now=datetime.now(timezone.utc))


@router.get("/reports/revenue", response_model=List[PeriodBucket])
def revenue_report(store: OrderStore = Depends(get_store)) -> List[PeriodBucket]:
    return aggregation.revenue_by_period(store.orders)


@router.get("/reports/status", response_model=List[StatusShare])
def status_report(store: OrderStore = Depends(get_store)) -> List[StatusShare]:
    return aggregation.status_distribution(store.orders)


@router.get("/reports/categories", response_model=List[CategorySummary])
def category_report(store: OrderStore = Depends(get_store)) -> List[CategorySummary]:
    return aggregation.category_breakdown(store.orders)


@router.get("/reports/recent", response_model=List[UpdatedOrder])
def recent_report(
    days: int = Query(7, ge=1),
    limit: int = Query(10, ge=1),
    store: OrderStore = Depends(get_store),
) -> List[UpdatedOrder]:
    return aggregation.recently_updated(store.orders, datetime.now(timezone.utc), days=days, limit=limit)


@router.get("/customers/top", response_model=List[CustomerSummary])
def customers_top(
    limit: int = Query(5, ge=1),
    store: OrderStore = Depends(get_store),
) -> List[CustomerSummary]:
    return aggregation.top_customers(store.orders, limit=limit)


@router.get("/customers", response_model=List[CustomerRecord])
def customers(
    search: Optional[str] = None,
    sort_by: str = Query("name", pattern="^(name|license|total_orders|total_revenue)$"),
    descending: bool = False,
    store: OrderStore = Depends(get_store),
) -> List[CustomerRecord]:
    return aggregation.customer_directory(store.orders, search=search, sort_by=sort_by, descending=descending)


@router.get("/products/top", response_model=List[ProductSummary])
def products_top(
    limit: int = Query(5, ge=1),
    store: OrderStore = Depends(get_store),
) -> List[ProductSummary]:
    return aggregation.top_products(store.orders, limit=limit)


@router.get("/allocation/products", response_model=List[ProductAllocation])
def allocation_by_product(
    sort_by: str = Query("product", pattern="^(product|value|quantity|stores)$"),
    search: Optional[str] = None,
    store: OrderStore = Depends(get_store),
) -> List[ProductAllocation]:
    return aggregation.product_allocation(store.orders, sort_by=sort_by, search=search)


@router.get("/allocation/stores", response_model=List[StoreSummary])
def allocation_by_store(
    search: Optional[str] = None,
    store: OrderStore = Depends(get_store),
) -> List[StoreSummary]:
    return aggregation.store_allocation(store.orders, search=search)


@router.get("/cache", response_model=CacheStats)
def cache_stats(store: OrderStore = Depends(get_store)) -> CacheStats:
    return store.cache_stats()


@router.delete("/cache", status_code=204)
def clear_cache(store: OrderStore = Depends(get_store)) -> Response:
    store.client.clear_cache()
    return Response(status_code=204)


app = create_app()
