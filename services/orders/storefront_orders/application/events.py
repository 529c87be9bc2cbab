"""Post-commit handoff to the messaging and notification collaborators.

The order core only records what happened; subscribers run after the
transaction has committed (in a FastAPI background task) and their failures
never reach the checkout caller.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from shared.core import get_logger
from storefront_orders.domain.models import Order

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlacedLine:
    product_name: str
    option1_label: str
    option1_value: str
    option2_label: str
    option2_value: Optional[str]
    price_cents: int
    quantity: int


@dataclass(frozen=True)
class OrderPlaced:
    order_id: int
    order_number: str
    tenant_id: int
    total_cents: int
    item_count: int
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None
    buyer_note: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_province: Optional[str] = None
    delivery_postal_code: Optional[str] = None
    chat_message: Optional[str] = None
    lines: tuple[PlacedLine, ...] = field(default_factory=tuple)

    @classmethod
    def from_order(cls, order: Order) -> "OrderPlaced":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            tenant_id=order.tenant_id,
            total_cents=order.total_cents,
            item_count=order.item_count,
            buyer_name=order.buyer_name,
            buyer_phone=order.buyer_phone,
            buyer_note=order.buyer_note,
            delivery_address=order.delivery_address,
            delivery_city=order.delivery_city,
            delivery_province=order.delivery_province,
            delivery_postal_code=order.delivery_postal_code,
            chat_message=order.chat_message,
            lines=tuple(
                PlacedLine(
                    product_name=i.product_name,
                    option1_label=i.option1_label,
                    option1_value=i.option1_value,
                    option2_label=i.option2_label,
                    option2_value=i.option2_value,
                    price_cents=i.price_cents,
                    quantity=i.quantity,
                )
                for i in order.items
            ),
        )


@dataclass(frozen=True)
class OrderStatusChanged:
    order_id: int
    order_number: str
    tenant_id: int
    previous_status: str
    status: str
    changed_at: datetime


Subscriber = Callable[[object], None]


class EventDispatcher:
    def __init__(self):
        self._subscribers: dict[type, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Subscriber) -> None:
        self._subscribers[event_type].append(handler)

    def subscribers(self, event_type: type) -> list[Subscriber]:
        return list(self._subscribers.get(event_type, []))

    def dispatch(self, events) -> int:
        """Deliver each event to its subscribers; returns how many succeeded."""
        delivered = 0
        for event in events:
            for handler in self.subscribers(type(event)):
                try:
                    handler(event)
                    delivered += 1
                except Exception:
                    logger.exception(
                        f"Subscriber {getattr(handler, '__name__', handler)!s} failed for {type(event).__name__}",
                        extra={'extra_fields': {'order_number': getattr(event, 'order_number', None)}},
                    )
        return delivered


def format_cents(cents: int) -> str:
    return f"R {cents // 100:,}.{cents % 100:02d}"


def compose_chat_message(event: OrderPlaced) -> str:
    """Plain-text order block for the seller's chat thread."""
    lines = [f"*New Order #{event.order_number}*", ""]
    for line in event.lines:
        details = f"{line.option1_label}: {line.option1_value}"
        if line.option2_value:
            details += f" | {line.option2_label}: {line.option2_value}"
        line_total = format_cents(line.price_cents * line.quantity)
        if line.quantity > 1:
            price = f"{format_cents(line.price_cents)} x {line.quantity} = {line_total}"
        else:
            price = line_total
        lines += [f"{line.quantity}x *{line.product_name}*", f"   {details}", f"   {price}", ""]
    lines.append(f"*Total: {format_cents(event.total_cents)}*")
    lines.append(f"Items: {event.item_count}")
    if event.delivery_address:
        lines += [
            "",
            "*Deliver to:*",
            f"   {event.delivery_address}",
            f"   {event.delivery_city or ''}, {event.delivery_province or ''} {event.delivery_postal_code or ''}".rstrip(),
        ]
    return "\n".join(lines)


def send_chat_message(event: OrderPlaced) -> None:
    message = compose_chat_message(event)
    logger.info(
        f"Chat message ready for order {event.order_number}",
        extra={'extra_fields': {'tenant_id': event.tenant_id, 'length': len(message)}},
    )


def notify_new_order(event: OrderPlaced) -> None:
    logger.info(
        f"New order notification queued for {event.order_number}",
        extra={'extra_fields': {
            'tenant_id': event.tenant_id,
            'total_cents': event.total_cents,
            'item_count': event.item_count,
        }},
    )


def notify_status_change(event: OrderStatusChanged) -> None:
    logger.info(
        f"Order {event.order_number} moved {event.previous_status} -> {event.status}",
        extra={'extra_fields': {'tenant_id': event.tenant_id}},
    )


def default_dispatcher() -> EventDispatcher:
    dispatcher = EventDispatcher()
    dispatcher.subscribe(OrderPlaced, send_chat_message)
    dispatcher.subscribe(OrderPlaced, notify_new_order)
    dispatcher.subscribe(OrderStatusChanged, notify_status_change)
    return dispatcher
