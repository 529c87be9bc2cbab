from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import OTHER_TENANT, TENANT, cart, line, order_count, stock_of

from storefront_orders.application.errors import (
    IdentifierExhausted,
    InsufficientStock,
    Shortfall,
    StoreUnavailable,
    ValidationFailed,
)
from storefront_orders.application.events import OrderPlaced
from storefront_orders.application.identifiers import OrderNumberGenerator
from storefront_orders.application.schemas import CheckoutItem
from storefront_orders.application.service import OrderService, stock_requests
from storefront_orders.core_settings import StockPolicy
from storefront_orders.domain.models import ImmutableRecordError, Order, OrderItem, OrderStatus


def test_totals_computed_from_lines(db, make_variant):
    shirt = make_variant(price_cents=25000, stock=5)
    result = OrderService(db).checkout(TENANT, cart(line(shirt, 2)))
    order = result.order
    assert order.total_cents == 50000
    assert order.item_count == 2
    assert order.status == OrderStatus.PENDING.value
    assert order.tenant_id == TENANT
    assert len(order.items) == 1
    assert order.items[0].price_cents == 25000


def test_stock_decremented_exactly_and_nothing_else(db, make_variant):
    shirt = make_variant(stock=5)
    hat = make_variant(name="Bucket Hat", stock=4, price_cents=9900)
    bystander = make_variant(name="Scarf", stock=7)
    OrderService(db).checkout(TENANT, cart(line(shirt, 2), line(hat, 3)))
    assert stock_of(db, shirt.id) == 3
    assert stock_of(db, hat.id) == 1
    assert stock_of(db, bystander.id) == 7


def test_buyer_and_delivery_fields_persisted(db, make_variant):
    shirt = make_variant()
    order = OrderService(db).checkout(
        TENANT,
        cart(
            line(shirt, 1),
            buyer_name="Thandi",
            buyer_phone="+27 61 555 1234",
            buyer_note="Gift wrap",
            delivery_address="12 Long Street",
            delivery_city="Cape Town",
            delivery_province="Western Cape",
            delivery_postal_code="8001",
            chat_message="Hi, I'd like to order",
        ),
    ).order
    stored = db.scalar(select(Order).where(Order.id == order.id))
    assert stored.buyer_phone == "+27 61 555 1234"
    assert stored.delivery_city == "Cape Town"
    assert stored.chat_message == "Hi, I'd like to order"


def test_checkout_emits_order_placed(db, make_variant):
    shirt = make_variant()
    result = OrderService(db).checkout(TENANT, cart(line(shirt, 2)))
    [event] = result.events
    assert isinstance(event, OrderPlaced)
    assert event.order_number == result.order.order_number
    assert event.total_cents == 50000
    assert event.lines[0].product_name == "Linen Shirt"


def test_insufficient_stock_rejected_before_any_write(db, make_variant):
    shirt = make_variant(stock=1)
    hat = make_variant(name="Bucket Hat", stock=5)
    with pytest.raises(InsufficientStock) as exc:
        OrderService(db).checkout(TENANT, cart(line(shirt, 2), line(hat, 1)))
    assert exc.value.shortfalls == [
        Shortfall(variant_id=shirt.id, product_name="Linen Shirt", requested=2, available=1)
    ]
    assert order_count(db) == 0
    assert stock_of(db, shirt.id) == 1
    assert stock_of(db, hat.id) == 5


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"quantity": 0}, "quantity must be at least 1"),
        ({"quantity": -2}, "quantity must be at least 1"),
        ({"price_cents": -1}, "price_cents must not be negative"),
        ({"product_name": "  "}, "product_name is required"),
    ],
)
def test_malformed_lines_rejected(db, make_variant, overrides, message):
    shirt = make_variant()
    overrides = dict(overrides)
    quantity = overrides.pop("quantity", 1)
    with pytest.raises(ValidationFailed) as exc:
        OrderService(db).checkout(TENANT, cart(line(shirt, quantity, **overrides)))
    assert any(message in e for e in exc.value.errors)
    assert order_count(db) == 0
    assert stock_of(db, shirt.id) == 5


def test_empty_cart_rejected(db):
    with pytest.raises(ValidationFailed):
        OrderService(db).checkout(TENANT, cart())


def test_repeated_variant_rejected(db, make_variant):
    shirt = make_variant()
    with pytest.raises(ValidationFailed):
        OrderService(db).checkout(TENANT, cart(line(shirt, 1), line(shirt, 2)))


def test_product_id_must_own_variant(db, make_variant):
    shirt = make_variant(stock=5)
    hat = make_variant(name="Bucket Hat", stock=5)
    with pytest.raises(ValidationFailed) as exc:
        OrderService(db).checkout(TENANT, cart(line(shirt, 1, product_id=hat.product_id)))
    assert any("does not match variant" in e for e in exc.value.errors)
    assert order_count(db) == 0
    assert stock_of(db, shirt.id) == 5


def test_float_amount_rejected(db, make_variant):
    shirt = make_variant()
    item = CheckoutItem.model_construct(**{**line(shirt, 1).model_dump(), "price_cents": 250.0})
    with pytest.raises(ValidationFailed):
        OrderService(db).create_order(TENANT, cart().model_copy(update={"items": [item]}))
    assert order_count(db) == 0


def test_strict_policy_aborts_whole_order_when_any_line_is_short(db, make_variant):
    shirt = make_variant(stock=5)
    hat = make_variant(name="Bucket Hat", stock=1)
    # Skip the advisory check to reach the transactional decrement directly
    with pytest.raises(InsufficientStock) as exc:
        OrderService(db).create_order(TENANT, cart(line(shirt, 2), line(hat, 3)))
    assert exc.value.shortfalls == [
        Shortfall(variant_id=hat.id, product_name="Bucket Hat", requested=3, available=1)
    ]
    assert order_count(db) == 0
    assert db.scalar(select(OrderItem.id)) is None
    assert stock_of(db, shirt.id) == 5
    assert stock_of(db, hat.id) == 1


def test_strict_policy_last_unit_race_has_one_winner(database, make_variant):
    shirt = make_variant(stock=1)
    buyer_a = OrderService(database.session(), stock_policy=StockPolicy.STRICT)
    buyer_b = OrderService(database.session(), stock_policy=StockPolicy.STRICT)
    request = cart(line(shirt, 1))

    # Both pass the advisory check before either commits
    assert buyer_a.check_stock(TENANT, stock_requests(request.items)).valid
    assert buyer_b.check_stock(TENANT, stock_requests(request.items)).valid

    buyer_a.create_order(TENANT, request)
    with pytest.raises(InsufficientStock) as exc:
        buyer_b.create_order(TENANT, request)

    assert exc.value.shortfalls[0].available == 0
    session = database.session()
    assert stock_of(session, shirt.id) == 0
    assert order_count(session) == 1


def test_allow_oversell_policy_last_unit_race_goes_negative(database, make_variant):
    # Unconditional decrement lets both racers through
    shirt = make_variant(stock=1)
    buyer_a = OrderService(database.session(), stock_policy=StockPolicy.ALLOW_OVERSELL)
    buyer_b = OrderService(database.session(), stock_policy=StockPolicy.ALLOW_OVERSELL)
    request = cart(line(shirt, 1))

    assert buyer_a.check_stock(TENANT, stock_requests(request.items)).valid
    assert buyer_b.check_stock(TENANT, stock_requests(request.items)).valid

    buyer_a.create_order(TENANT, request)
    buyer_b.create_order(TENANT, request)

    session = database.session()
    assert stock_of(session, shirt.id) == -1
    assert order_count(session) == 2


def test_allow_oversell_still_rejects_unknown_variant(db, make_variant):
    shirt = make_variant()
    ghost = line(shirt, 1, variant_id=9999, product_name="Ghost Tee")
    service = OrderService(db, stock_policy=StockPolicy.ALLOW_OVERSELL)
    with pytest.raises(InsufficientStock):
        service.create_order(TENANT, cart(line(shirt, 1), ghost))
    assert order_count(db) == 0
    assert stock_of(db, shirt.id) == 5


def test_other_tenants_variant_cannot_be_decremented(db, make_variant):
    foreign = make_variant(stock=3, tenant_id=OTHER_TENANT)
    with pytest.raises(InsufficientStock):
        OrderService(db).create_order(TENANT, cart(line(foreign, 1)))
    assert stock_of(db, foreign.id) == 3


def test_identifier_exhaustion_leaves_no_trace(db, make_variant):
    shirt = make_variant(stock=5)
    fixed = OrderNumberGenerator(clock=lambda: datetime(2026, 2, 24, tzinfo=timezone.utc), token_source=lambda: "AAAA")
    OrderService(db, number_generator=fixed).checkout(TENANT, cart(line(shirt, 1)))

    with pytest.raises(IdentifierExhausted):
        OrderService(db, number_generator=fixed).checkout(TENANT, cart(line(shirt, 1)))
    assert order_count(db) == 1
    assert stock_of(db, shirt.id) == 4


def test_store_failure_surfaces_as_transient(db, make_variant):
    shirt = make_variant(stock=5)

    def lost_connection():
        raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    broken = OrderNumberGenerator(token_source=lost_connection)
    with pytest.raises(StoreUnavailable) as exc:
        OrderService(db, number_generator=broken).checkout(TENANT, cart(line(shirt, 1)))
    assert exc.value.retryable
    assert stock_of(db, shirt.id) == 5


def test_order_number_date_fixed_at_generation(db, make_variant):
    shirt = make_variant()
    generated = OrderNumberGenerator(clock=lambda: datetime(2026, 3, 1, 23, 59, 59, tzinfo=timezone.utc))
    committed_at = datetime(2026, 3, 2, 0, 0, 1, tzinfo=timezone.utc)
    order = OrderService(db, number_generator=generated, clock=lambda: committed_at).checkout(
        TENANT, cart(line(shirt, 1))
    ).order
    assert order.order_number.startswith("TF-20260301-")
    assert order.created_at.date() == committed_at.date()


def test_line_items_are_immutable(db, make_variant):
    shirt = make_variant()
    order = OrderService(db).checkout(TENANT, cart(line(shirt, 1))).order
    order.items[0].product_name = "Renamed"
    with pytest.raises(ImmutableRecordError):
        db.flush()
    db.rollback()


def test_order_totals_are_immutable(db, make_variant):
    shirt = make_variant()
    order = OrderService(db).checkout(TENANT, cart(line(shirt, 1))).order
    order.total_cents = 1
    with pytest.raises(ImmutableRecordError):
        db.flush()
    db.rollback()


def test_snapshot_survives_catalog_changes(db, make_variant):
    shirt = make_variant()
    order = OrderService(db).checkout(TENANT, cart(line(shirt, 1))).order
    db.delete(shirt.product)
    db.commit()
    item = db.scalar(select(OrderItem).where(OrderItem.order_id == order.id))
    assert item.product_name == "Linen Shirt"
    assert item.option1_value == "M"
