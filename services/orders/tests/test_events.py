from datetime import datetime, timezone

from storefront_orders.application.events import (
    EventDispatcher,
    OrderPlaced,
    OrderStatusChanged,
    PlacedLine,
    compose_chat_message,
    default_dispatcher,
    format_cents,
    notify_new_order,
    notify_status_change,
    send_chat_message,
)


def placed(**overrides):
    fields = dict(
        order_id=7,
        order_number="TF-20260224-AB3K",
        tenant_id=1,
        total_cents=59800,
        item_count=3,
        lines=(
            PlacedLine("Linen Shirt", "Size", "M", "Color", "White", 25000, 2),
            PlacedLine("Bucket Hat", "Size", "One", "Color", None, 9800, 1),
        ),
    )
    fields.update(overrides)
    return OrderPlaced(**fields)


def test_failing_subscriber_does_not_stop_others():
    received = []

    def broken(event):
        raise RuntimeError("chat provider down")

    dispatcher = EventDispatcher()
    dispatcher.subscribe(OrderPlaced, broken)
    dispatcher.subscribe(OrderPlaced, received.append)
    assert dispatcher.dispatch([placed()]) == 1
    assert [e.order_number for e in received] == ["TF-20260224-AB3K"]


def test_dispatch_routes_by_event_type():
    placed_seen, changed_seen = [], []
    dispatcher = EventDispatcher()
    dispatcher.subscribe(OrderPlaced, placed_seen.append)
    dispatcher.subscribe(OrderStatusChanged, changed_seen.append)
    changed = OrderStatusChanged(7, "TF-20260224-AB3K", 1, "PENDING", "CONFIRMED", datetime.now(timezone.utc))
    assert dispatcher.dispatch([placed(), changed]) == 2
    assert len(placed_seen) == 1
    assert changed_seen == [changed]


def test_dispatch_without_subscribers():
    assert EventDispatcher().dispatch([placed()]) == 0


def test_format_cents():
    assert format_cents(0) == "R 0.00"
    assert format_cents(5) == "R 0.05"
    assert format_cents(123456) == "R 1,234.56"


def test_chat_message_lists_lines_and_total():
    message = compose_chat_message(placed())
    assert message.startswith("*New Order #TF-20260224-AB3K*")
    assert "2x *Linen Shirt*" in message
    assert "Size: M | Color: White" in message
    assert "R 250.00 x 2 = R 500.00" in message
    assert "   Size: One\n" in message
    assert "*Total: R 598.00*" in message
    assert "Items: 3" in message
    assert "Deliver to" not in message


def test_chat_message_includes_delivery_block():
    message = compose_chat_message(
        placed(
            delivery_address="12 Long Street",
            delivery_city="Cape Town",
            delivery_province="Western Cape",
            delivery_postal_code="8001",
        )
    )
    assert message.endswith("*Deliver to:*\n   12 Long Street\n   Cape Town, Western Cape 8001")


def test_default_dispatcher_wiring():
    dispatcher = default_dispatcher()
    assert dispatcher.subscribers(OrderPlaced) == [send_chat_message, notify_new_order]
    assert dispatcher.subscribers(OrderStatusChanged) == [notify_status_change]
    assert dispatcher.dispatch([placed()]) == 2
