from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront_orders.domain.models import Product, ProductVariant
from .errors import Shortfall


class StockRequest(NamedTuple):
    variant_id: int
    product_name: str
    quantity: int


@dataclass
class StockValidation:
    valid: bool
    shortfalls: list[Shortfall] = field(default_factory=list)


class StockValidator:
    """Advisory, read-only comparison of requested quantities with stock.

    Stock can still move between this check and the checkout transaction;
    the transaction's decrement is what actually guards the floor.
    """

    def __init__(self, db: Session):
        self.db = db

    def available(self, variant_ids: Iterable[int], tenant_id: Optional[int] = None) -> dict[int, int]:
        """Current stock of active variants; missing ids are simply absent."""
        ids = set(variant_ids)
        if not ids:
            return {}
        stmt = (
            select(ProductVariant.id, ProductVariant.stock)
            .join(Product, Product.id == ProductVariant.product_id)
            .where(
                ProductVariant.id.in_(ids),
                ProductVariant.is_active.is_(True),
                Product.is_active.is_(True),
            )
        )
        if tenant_id is not None:
            stmt = stmt.where(Product.tenant_id == tenant_id)
        return {variant_id: stock for variant_id, stock in self.db.execute(stmt)}

    def product_ids(self, variant_ids: Iterable[int], tenant_id: int) -> dict[int, int]:
        """Owning product of each of the tenant's variants, active or not."""
        ids = set(variant_ids)
        if not ids:
            return {}
        stmt = (
            select(ProductVariant.id, ProductVariant.product_id)
            .join(Product, Product.id == ProductVariant.product_id)
            .where(ProductVariant.id.in_(ids), Product.tenant_id == tenant_id)
        )
        return {variant_id: product_id for variant_id, product_id in self.db.execute(stmt)}

    def validate(self, items: Iterable[StockRequest], tenant_id: Optional[int] = None) -> StockValidation:
        items = [StockRequest(*item) for item in items]
        stock = self.available((i.variant_id for i in items), tenant_id)
        shortfalls = []
        for item in items:
            available = stock.get(item.variant_id, 0)
            if available < item.quantity:
                shortfalls.append(
                    Shortfall(
                        variant_id=item.variant_id,
                        product_name=item.product_name,
                        requested=item.quantity,
                        available=max(available, 0),
                    )
                )
        return StockValidation(valid=not shortfalls, shortfalls=shortfalls)
