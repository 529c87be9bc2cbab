from itertools import product

import pytest
from sqlalchemy import select, update

from conftest import OTHER_TENANT, TENANT, cart, line, ticking_clock

from storefront_orders.application.errors import IllegalTransition, NotFound, ValidationFailed
from storefront_orders.application.events import OrderStatusChanged
from storefront_orders.application.service import OrderService
from storefront_orders.application.status import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, allowed_targets
from storefront_orders.domain.models import Order, OrderStatus

ALLOWED = {(current, target) for current, targets in ALLOWED_TRANSITIONS.items() for target in targets}
DISALLOWED = sorted(
    (pair for pair in product(OrderStatus, OrderStatus) if pair not in ALLOWED),
    key=lambda pair: (pair[0].value, pair[1].value),
)


@pytest.fixture
def placed_order(db, make_variant):
    def _place(status=OrderStatus.PENDING):
        shirt = make_variant()
        order = OrderService(db).checkout(TENANT, cart(line(shirt, 1))).order
        if status is not OrderStatus.PENDING:
            db.execute(update(Order).where(Order.id == order.id).values(status=status.value))
            db.commit()
        return order.id
    return _place


def stored_status(db, order_id):
    return db.scalar(select(Order.status).where(Order.id == order_id))


def test_transition_table():
    assert allowed_targets("PENDING") == {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    assert allowed_targets("CONFIRMED") == {OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    assert allowed_targets("SHIPPED") == {OrderStatus.DELIVERED}
    assert TERMINAL_STATUSES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


@pytest.mark.parametrize("current, target", DISALLOWED, ids=lambda s: s.value)
def test_illegal_transitions_leave_status_unchanged(db, placed_order, current, target):
    order_id = placed_order(current)
    with pytest.raises(IllegalTransition) as exc:
        OrderService(db).transition(order_id, TENANT, target)
    assert exc.value.current == current.value
    assert exc.value.attempted == target.value
    assert stored_status(db, order_id) == current.value


@pytest.mark.parametrize("current, target", sorted(ALLOWED), ids=lambda s: s.value)
def test_allowed_transitions(db, placed_order, current, target):
    order_id = placed_order(current)
    result = OrderService(db).transition(order_id, TENANT, target.value)
    assert result.order.status == target.value
    assert stored_status(db, order_id) == target.value
    [event] = result.events
    assert isinstance(event, OrderStatusChanged)
    assert (event.previous_status, event.status) == (current.value, target.value)


def test_full_lifecycle(db, placed_order):
    order_id = placed_order()
    service = OrderService(db, clock=ticking_clock())
    for target in ("CONFIRMED", "SHIPPED", "DELIVERED"):
        service.transition(order_id, TENANT, target)
    assert stored_status(db, order_id) == "DELIVERED"
    with pytest.raises(IllegalTransition):
        service.transition(order_id, TENANT, "CANCELLED")


def test_transition_stamps_updated_at(db, placed_order):
    order_id = placed_order()
    clock = ticking_clock()
    result = OrderService(db, clock=clock).transition(order_id, TENANT, "CONFIRMED")
    assert result.events[0].changed_at.minute == 0
    assert result.order.updated_at.replace(tzinfo=None) == result.events[0].changed_at.replace(tzinfo=None)


def test_other_tenant_gets_not_found(db, placed_order):
    order_id = placed_order()
    with pytest.raises(NotFound):
        OrderService(db).transition(order_id, OTHER_TENANT, "CONFIRMED")
    assert stored_status(db, order_id) == "PENDING"


def test_missing_order_not_found(db):
    with pytest.raises(NotFound):
        OrderService(db).transition(424242, TENANT, "CONFIRMED")


@pytest.mark.parametrize("value", ["confirmed", "REFUNDED", ""])
def test_unknown_status_names_rejected(db, placed_order, value):
    order_id = placed_order()
    with pytest.raises(ValidationFailed):
        OrderService(db).transition(order_id, TENANT, value)
    assert stored_status(db, order_id) == "PENDING"
