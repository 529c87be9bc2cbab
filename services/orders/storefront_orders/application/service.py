from datetime import datetime
from typing import Callable, NamedTuple, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, selectinload

from shared.core import get_logger
from storefront_orders.core_settings import StockPolicy
from storefront_orders.domain.models import Order, OrderItem, Product, ProductVariant, utcnow
from .errors import IllegalTransition, InsufficientStock, NotFound, StoreUnavailable, ValidationFailed
from .events import OrderPlaced, OrderStatusChanged
from .identifiers import OrderNumberGenerator
from .schemas import CheckoutItem, CheckoutRequest
from .status import INITIAL_STATUS, check_transition, parse_status
from .stock import StockRequest, StockValidation, StockValidator

logger = get_logger(__name__)

TRANSITION_ATTEMPTS = 3


class OrderResult(NamedTuple):
    order: Order
    events: list


def validate_cart(data: CheckoutRequest) -> None:
    """Reject malformed carts before the store is touched."""
    errors = []
    if not data.items:
        errors.append("Cart is empty")
    seen = set()
    for index, item in enumerate(data.items):
        for name in ("price_cents", "quantity", "variant_id", "product_id"):
            value = getattr(item, name)
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"items[{index}].{name} must be an integer")
        if isinstance(item.quantity, int) and item.quantity < 1:
            errors.append(f"items[{index}].quantity must be at least 1")
        if isinstance(item.price_cents, int) and item.price_cents < 0:
            errors.append(f"items[{index}].price_cents must not be negative")
        if not item.product_name or not item.product_name.strip():
            errors.append(f"items[{index}].product_name is required")
        if item.variant_id in seen:
            errors.append(f"items[{index}] repeats variant {item.variant_id}")
        seen.add(item.variant_id)
    if errors:
        raise ValidationFailed("Invalid cart", errors)


def validate_stock_request(items: list[StockRequest]) -> None:
    errors = []
    if not items:
        errors.append("No items to check")
    for index, item in enumerate(items):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            errors.append(f"items[{index}].quantity must be at least 1")
    if errors:
        raise ValidationFailed("Invalid stock check", errors)


def stock_requests(items: list[CheckoutItem]) -> list[StockRequest]:
    return [StockRequest(i.variant_id, i.product_name, i.quantity) for i in items]


class OrderService:
    def __init__(
        self,
        db: Session,
        number_generator: Optional[OrderNumberGenerator] = None,
        stock_policy: StockPolicy = StockPolicy.STRICT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.number_generator = number_generator or OrderNumberGenerator()
        self.stock_policy = StockPolicy(stock_policy)
        self.clock = clock

    # -- checkout ---------------------------------------------------------

    def check_stock(self, tenant_id: int, items: list[StockRequest]) -> StockValidation:
        items = list(items)
        validate_stock_request(items)
        try:
            return StockValidator(self.db).validate(items, tenant_id)
        except DBAPIError as exc:
            raise StoreUnavailable(f"Stock lookup failed: {exc.orig}") from exc
        finally:
            # Close the read snapshot; the write transaction starts fresh
            self.db.rollback()

    def checkout(self, tenant_id: int, data: CheckoutRequest) -> OrderResult:
        """Validate the cart, pre-check stock, then place the order."""
        validate_cart(data)
        verdict = self.check_stock(tenant_id, stock_requests(data.items))
        if not verdict.valid:
            logger.info(
                f"Checkout rejected for tenant {tenant_id}: insufficient stock",
                extra={'extra_fields': {
                    'tenant_id': tenant_id,
                    'shortfalls': [s.as_dict() for s in verdict.shortfalls],
                }},
            )
            raise InsufficientStock(verdict.shortfalls)
        return self.create_order(tenant_id, data)

    def create_order(self, tenant_id: int, data: CheckoutRequest) -> OrderResult:
        """Insert the order with its items and decrement stock atomically.

        Totals are always recomputed from the lines. Under STRICT policy a
        line that stock no longer covers aborts the whole transaction.
        """
        validate_cart(data)
        total_cents = sum(i.price_cents * i.quantity for i in data.items)
        item_count = sum(i.quantity for i in data.items)

        try:
            self._check_product_ids(tenant_id, data.items)
            order_number = self.number_generator.generate(self._order_number_taken)
            now = self.clock()
            order = Order(
                order_number=order_number,
                tenant_id=tenant_id,
                buyer_name=data.buyer_name,
                buyer_phone=data.buyer_phone,
                buyer_note=data.buyer_note,
                delivery_address=data.delivery_address,
                delivery_city=data.delivery_city,
                delivery_province=data.delivery_province,
                delivery_postal_code=data.delivery_postal_code,
                total_cents=total_cents,
                item_count=item_count,
                chat_message=data.chat_message,
                status=INITIAL_STATUS.value,
                created_at=now,
                updated_at=now,
                items=[
                    OrderItem(
                        product_id=i.product_id,
                        variant_id=i.variant_id,
                        product_name=i.product_name,
                        option1_label=i.option1_label,
                        option1_value=i.option1_value,
                        option2_label=i.option2_label,
                        option2_value=i.option2_value,
                        price_cents=i.price_cents,
                        quantity=i.quantity,
                    )
                    for i in data.items
                ],
            )
            self.db.add(order)
            self.db.flush()

            failed = [item for item in data.items if not self._decrement(tenant_id, item)]
            if failed:
                self.db.rollback()
                shortfalls = StockValidator(self.db).validate(stock_requests(failed), tenant_id).shortfalls
                logger.warning(
                    f"Stock decrement refused for tenant {tenant_id}; order rolled back",
                    extra={'extra_fields': {
                        'tenant_id': tenant_id,
                        'shortfalls': [s.as_dict() for s in shortfalls],
                    }},
                )
                raise InsufficientStock(shortfalls)

            self.db.commit()
        except DBAPIError as exc:
            self.db.rollback()
            raise StoreUnavailable(f"Order could not be stored: {exc.orig}") from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Order {order.order_number} placed",
            extra={'extra_fields': {
                'tenant_id': tenant_id,
                'order_id': order.id,
                'total_cents': total_cents,
                'item_count': item_count,
                'stock_policy': self.stock_policy.value,
            }},
        )
        return OrderResult(order, [OrderPlaced.from_order(order)])

    def _check_product_ids(self, tenant_id: int, items: list[CheckoutItem]) -> None:
        # Unknown variants are left to the decrement, which reports them as shortfalls
        owners = StockValidator(self.db).product_ids((i.variant_id for i in items), tenant_id)
        errors = [
            f"items[{index}].product_id {item.product_id} does not match variant {item.variant_id}"
            for index, item in enumerate(items)
            if item.variant_id in owners and owners[item.variant_id] != item.product_id
        ]
        if errors:
            raise ValidationFailed("Invalid cart", errors)

    def _order_number_taken(self, number: str) -> bool:
        return self.db.scalar(select(Order.id).where(Order.order_number == number)) is not None

    def _decrement(self, tenant_id: int, item: CheckoutItem) -> bool:
        """The single write path for variant stock."""
        tenant_products = select(Product.id).where(Product.tenant_id == tenant_id)
        stmt = update(ProductVariant).where(
            ProductVariant.id == item.variant_id,
            ProductVariant.product_id.in_(tenant_products),
        )
        if self.stock_policy is StockPolicy.STRICT:
            stmt = stmt.where(
                ProductVariant.stock >= item.quantity,
                ProductVariant.is_active.is_(True),
                ProductVariant.product_id.in_(tenant_products.where(Product.is_active.is_(True))),
            )
        stmt = stmt.values(stock=ProductVariant.stock - item.quantity)
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount == 1

    # -- lifecycle --------------------------------------------------------

    def get_owned(self, order_id: int, tenant_id: int) -> Order:
        order = self.db.scalar(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id, Order.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def transition(self, order_id: int, tenant_id: int, target) -> OrderResult:
        """Move an order to ``target`` if the lifecycle table allows it."""
        target_status = parse_status(target)
        try:
            for _ in range(TRANSITION_ATTEMPTS):
                order = self.get_owned(order_id, tenant_id)
                current = order.status
                try:
                    check_transition(current, target_status)
                except IllegalTransition:
                    logger.info(
                        f"Refused transition {current} -> {target_status.value} for order {order.order_number}",
                        extra={'extra_fields': {'tenant_id': tenant_id, 'order_id': order_id}},
                    )
                    raise
                now = self.clock()
                result = self.db.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.tenant_id == tenant_id, Order.status == current)
                    .values(status=target_status.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    self.db.commit()
                    order = self.get_owned(order_id, tenant_id)
                    event = OrderStatusChanged(
                        order_id=order.id,
                        order_number=order.order_number,
                        tenant_id=tenant_id,
                        previous_status=current,
                        status=target_status.value,
                        changed_at=now,
                    )
                    return OrderResult(order, [event])
                # Someone else moved the order first; re-read and re-check
                self.db.rollback()
        except DBAPIError as exc:
            self.db.rollback()
            raise StoreUnavailable(f"Status update failed: {exc.orig}") from exc
        except Exception:
            self.db.rollback()
            raise
        raise StoreUnavailable(f"Order {order_id} kept changing during the status update")
