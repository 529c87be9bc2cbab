from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from storefront_orders.infrastructure.db import get_db
from storefront_orders.application.identifiers import OrderNumberGenerator
from storefront_orders.application.queries import OrderQueries
from storefront_orders.application.schemas import (
    CheckoutRequest,
    OrderPage,
    OrderRead,
    OrderStatsRead,
    StatusUpdate,
    StockCheckRequest,
    StockValidationRead,
    TrackedOrderRead,
)
from storefront_orders.application.service import OrderService
from storefront_orders.application.stock import StockRequest
from .auth import TenantAccess, require_tenant

router = APIRouter(tags=["orders"])


def order_service(request: Request, db: Session = Depends(get_db)) -> OrderService:
    settings = request.app.state.settings
    generator = OrderNumberGenerator(
        prefix=settings.ORDER_NUMBER_PREFIX,
        max_attempts=settings.ORDER_NUMBER_MAX_ATTEMPTS,
    )
    return OrderService(db, number_generator=generator, stock_policy=settings.STOCK_POLICY)


def order_queries(request: Request, db: Session = Depends(get_db)) -> OrderQueries:
    settings = request.app.state.settings
    return OrderQueries(db, page_size=settings.ORDERS_PAGE_SIZE, max_page_size=settings.ORDERS_MAX_PAGE_SIZE)


# -- public buyer endpoints ------------------------------------------------

@router.post("/shops/{tenant_id}/stock/validate", response_model=StockValidationRead)
def validate_stock(tenant_id: int, payload: StockCheckRequest, service: OrderService = Depends(order_service)):
    """Advisory stock pre-check for the cart view."""
    requests = [StockRequest(i.variant_id, i.product_name, i.quantity) for i in payload.items]
    return service.check_stock(tenant_id, requests)


@router.post("/shops/{tenant_id}/checkout", response_model=OrderRead, status_code=201)
def checkout(
    tenant_id: int,
    payload: CheckoutRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    service: OrderService = Depends(order_service),
):
    result = service.checkout(tenant_id, payload)
    # Runs after the response is sent; failures never reach the buyer
    background_tasks.add_task(request.app.state.dispatcher.dispatch, result.events)
    return result.order


@router.get("/track/{order_number}", response_model=TrackedOrderRead)
def track_order(order_number: str, queries: OrderQueries = Depends(order_queries)):
    tracked = queries.get_order_by_number(order_number)
    if tracked is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return tracked


# -- seller endpoints ------------------------------------------------------

@router.get("/orders", response_model=OrderPage)
def list_orders(
    status: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    access: TenantAccess = Depends(require_tenant),
    queries: OrderQueries = Depends(order_queries),
):
    """List the caller's orders, newest first."""
    page = queries.list_orders(access.tenant_id, status=status, cursor=cursor, limit=limit)
    return OrderPage(
        items=[OrderRead.model_validate(order) for order in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/orders/stats", response_model=OrderStatsRead)
def order_stats(access: TenantAccess = Depends(require_tenant), queries: OrderQueries = Depends(order_queries)):
    return queries.order_stats(access.tenant_id)


@router.get("/orders/{order_id}", response_model=OrderRead)
def get_order(order_id: int, access: TenantAccess = Depends(require_tenant), queries: OrderQueries = Depends(order_queries)):
    return queries.get_order(order_id, access.tenant_id)


@router.patch("/orders/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int,
    payload: StatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    access: TenantAccess = Depends(require_tenant),
    service: OrderService = Depends(order_service),
):
    result = service.transition(order_id, access.tenant_id, payload.status)
    background_tasks.add_task(request.app.state.dispatcher.dispatch, result.events)
    return result.order
