import re
from typing import NamedTuple, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, selectinload

from storefront_orders.domain.models import Order, OrderStatus
from .errors import NotFound, StoreUnavailable, ValidationFailed
from .schemas import OrderStatsRead, TrackedOrderRead
from .status import parse_status

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MASK_VISIBLE_DIGITS = 4


class OrderListPage(NamedTuple):
    items: list[Order]
    next_cursor: Optional[str]


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """Keep only the last four digits: '+27 61 234 1234' -> '***1234'.

    Numbers too short to hide anything are masked completely.
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= MASK_VISIBLE_DIGITS:
        return "***"
    return f"***{digits[-MASK_VISIBLE_DIGITS:]}"


def normalize_order_number(order_number: str) -> str:
    return order_number.strip().upper()


class OrderQueries:
    def __init__(self, db: Session, page_size: int = DEFAULT_PAGE_SIZE, max_page_size: int = MAX_PAGE_SIZE):
        self.db = db
        self.page_size = page_size
        self.max_page_size = max_page_size

    def list_orders(
        self,
        tenant_id: int,
        status=None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> OrderListPage:
        """Newest first, keyset-paginated on (created_at, id)."""
        limit = max(1, min(limit or self.page_size, self.max_page_size))
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.tenant_id == tenant_id)
        )
        if status is not None:
            stmt = stmt.where(Order.status == parse_status(status).value)
        try:
            if cursor is not None:
                anchor = self._cursor_anchor(tenant_id, cursor)
                stmt = stmt.where(
                    or_(
                        Order.created_at < anchor.created_at,
                        and_(Order.created_at == anchor.created_at, Order.id < anchor.id),
                    )
                )
            stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit + 1)
            rows = list(self.db.scalars(stmt).all())
        except DBAPIError as exc:
            raise StoreUnavailable(f"Order listing failed: {exc.orig}") from exc
        next_cursor = str(rows[limit - 1].id) if len(rows) > limit else None
        return OrderListPage(rows[:limit], next_cursor)

    def _cursor_anchor(self, tenant_id: int, cursor: str):
        try:
            cursor_id = int(cursor)
        except (TypeError, ValueError):
            raise ValidationFailed(f"Malformed cursor {cursor!r}")
        anchor = self.db.execute(
            select(Order.created_at, Order.id).where(Order.id == cursor_id, Order.tenant_id == tenant_id)
        ).first()
        if anchor is None:
            raise NotFound(f"Cursor {cursor} does not match an order")
        return anchor

    def get_order(self, order_id: int, tenant_id: int) -> Order:
        # Another tenant's order is reported exactly like a missing one
        try:
            order = self.db.scalar(
                select(Order)
                .options(selectinload(Order.items))
                .where(Order.id == order_id, Order.tenant_id == tenant_id)
            )
        except DBAPIError as exc:
            raise StoreUnavailable(f"Order lookup failed: {exc.orig}") from exc
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def get_order_by_number(self, order_number: str) -> Optional[TrackedOrderRead]:
        """Public tracking lookup; any tenant, buyer phone masked."""
        try:
            order = self.db.scalar(
                select(Order)
                .options(selectinload(Order.items))
                .where(Order.order_number == normalize_order_number(order_number))
            )
        except DBAPIError as exc:
            raise StoreUnavailable(f"Order lookup failed: {exc.orig}") from exc
        if order is None:
            return None
        tracked = TrackedOrderRead.model_validate(order)
        return tracked.model_copy(update={"buyer_phone": mask_phone(order.buyer_phone)})

    def order_stats(self, tenant_id: int) -> OrderStatsRead:
        try:
            counts = dict(
                self.db.execute(
                    select(Order.status, func.count(Order.id))
                    .where(Order.tenant_id == tenant_id)
                    .group_by(Order.status)
                ).all()
            )
            revenue = self.db.scalar(
                select(func.coalesce(func.sum(Order.total_cents), 0)).where(
                    Order.tenant_id == tenant_id,
                    Order.status != OrderStatus.CANCELLED.value,
                )
            )
        except DBAPIError as exc:
            raise StoreUnavailable(f"Order statistics failed: {exc.orig}") from exc
        return OrderStatsRead(
            total=sum(counts.values()),
            pending=counts.get(OrderStatus.PENDING.value, 0),
            confirmed=counts.get(OrderStatus.CONFIRMED.value, 0),
            shipped=counts.get(OrderStatus.SHIPPED.value, 0),
            delivered=counts.get(OrderStatus.DELIVERED.value, 0),
            cancelled=counts.get(OrderStatus.CANCELLED.value, 0),
            revenue_cents=int(revenue or 0),
        )
