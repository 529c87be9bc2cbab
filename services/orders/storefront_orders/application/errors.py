"""Business-rule and store failures raised by the order core.

Callers can tell "fix the input" (ValidationFailed, InsufficientStock,
IllegalTransition, NotFound) from "retry safely" (IdentifierExhausted,
StoreUnavailable).
"""

from dataclasses import asdict, dataclass
from typing import Optional


@dataclass(frozen=True)
class Shortfall:
    variant_id: int
    product_name: str
    requested: int
    available: int

    def as_dict(self) -> dict:
        return asdict(self)


class OrderCoreError(Exception):
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(OrderCoreError):
    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class InsufficientStock(OrderCoreError):
    def __init__(self, shortfalls: list[Shortfall]):
        summary = "; ".join(
            f"{s.product_name}: only {s.available} left (requested {s.requested})"
            for s in shortfalls
        )
        super().__init__(f"Some items are out of stock: {summary}")
        self.shortfalls = shortfalls


class IdentifierExhausted(OrderCoreError):
    retryable = True

    def __init__(self, attempts: int):
        super().__init__(f"Could not allocate a unique order number after {attempts} attempts")
        self.attempts = attempts


class IllegalTransition(OrderCoreError):
    def __init__(self, current: str, attempted: str):
        super().__init__(f"Cannot change from {current} to {attempted}")
        self.current = current
        self.attempted = attempted


class NotFound(OrderCoreError):
    pass


class StoreUnavailable(OrderCoreError):
    """Connection loss, timeout or conflicting write in the data store."""
    retryable = True
