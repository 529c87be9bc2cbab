from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, event, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Catalog-owned tables. The order core reads stock from them and is the only
# writer of ProductVariant.stock.
class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"
    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    option1_label: Mapped[str] = mapped_column(String(50), default="Size")
    option1_value: Mapped[str] = mapped_column(String(100))
    option2_label: Mapped[str] = mapped_column(String(50), default="Color")
    option2_value: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    product: Mapped[Product] = relationship("Product", back_populates="variants")


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, index=True)
    # Buyers are unauthenticated, so every buyer field is optional
    buyer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    buyer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    buyer_note: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    delivery_address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    delivery_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delivery_province: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delivery_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    total_cents: Mapped[int] = mapped_column(Integer)
    item_count: Mapped[int] = mapped_column(Integer)
    chat_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    # Weak references: the catalog may delete or deactivate these later
    product_id: Mapped[int] = mapped_column(Integer)
    variant_id: Mapped[int] = mapped_column(Integer, index=True)
    # Purchase-time snapshot
    product_name: Mapped[str] = mapped_column(String(200))
    option1_label: Mapped[str] = mapped_column(String(50))
    option1_value: Mapped[str] = mapped_column(String(100))
    option2_label: Mapped[str] = mapped_column(String(50))
    option2_value: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer)
    quantity: Mapped[int] = mapped_column(Integer)
    order: Mapped[Order] = relationship("Order", back_populates="items")


MUTABLE_ORDER_COLUMNS = frozenset({"status", "updated_at"})


class ImmutableRecordError(Exception):
    """Raised when a flush would rewrite a purchase-time field."""


@event.listens_for(OrderItem, "before_update")
def _reject_item_update(mapper, connection, target):
    raise ImmutableRecordError(f"order item {target.id} is a purchase receipt and cannot change")


@event.listens_for(Order, "before_update")
def _reject_order_field_update(mapper, connection, target):
    state = inspect(target)
    columns = {prop.key for prop in mapper.column_attrs}
    changed = [
        attr.key
        for attr in state.attrs
        if attr.key in columns and attr.history.has_changes()
    ]
    frozen = [key for key in changed if key not in MUTABLE_ORDER_COLUMNS]
    if frozen:
        raise ImmutableRecordError(
            f"order {target.order_number} fields {sorted(frozen)} are fixed at creation"
        )
