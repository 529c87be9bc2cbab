from storefront_orders.domain.models import OrderStatus

from .errors import IllegalTransition, ValidationFailed

INITIAL_STATUS = OrderStatus.PENDING

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def parse_status(value) -> OrderStatus:
    """Case-sensitive: only the five upper-case names are accepted."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValidationFailed(f"Unknown order status {value!r}; expected one of {allowed}")


def allowed_targets(current) -> frozenset[OrderStatus]:
    return ALLOWED_TRANSITIONS[parse_status(current)]


def check_transition(current, target) -> OrderStatus:
    current_status = parse_status(current)
    target_status = parse_status(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise IllegalTransition(current_status.value, target_status.value)
    return target_status
