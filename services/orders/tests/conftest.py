from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.pool import StaticPool

from storefront_orders.application.schemas import CheckoutItem, CheckoutRequest
from storefront_orders.domain.models import Base, Order, Product, ProductVariant
from storefront_orders.infrastructure.db import Database

TENANT = 1
OTHER_TENANT = 2


@pytest.fixture
def database():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine)
    Base.metadata.create_all(engine)
    yield db
    db.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def make_variant(db):
    """Create a committed product with one variant and return the variant."""
    def _make(
        name="Linen Shirt",
        stock=5,
        price_cents=25000,
        tenant_id=TENANT,
        size="M",
        color="White",
        is_active=True,
        product_active=True,
    ):
        product = Product(tenant_id=tenant_id, name=name, is_active=product_active)
        variant = ProductVariant(
            option1_label="Size",
            option1_value=size,
            option2_label="Color",
            option2_value=color,
            price_cents=price_cents,
            stock=stock,
            is_active=is_active,
        )
        product.variants.append(variant)
        db.add(product)
        db.commit()
        return variant
    return _make


def line(variant, quantity, **overrides) -> CheckoutItem:
    fields = dict(
        product_id=variant.product_id,
        variant_id=variant.id,
        product_name=variant.product.name,
        option1_label=variant.option1_label,
        option1_value=variant.option1_value,
        option2_label=variant.option2_label,
        option2_value=variant.option2_value,
        price_cents=variant.price_cents,
        quantity=quantity,
    )
    fields.update(overrides)
    return CheckoutItem(**fields)


def cart(*items, **buyer) -> CheckoutRequest:
    return CheckoutRequest(items=list(items), **buyer)


def stock_of(db, variant_id) -> int:
    return db.scalar(select(ProductVariant.stock).where(ProductVariant.id == variant_id))


def order_count(db) -> int:
    return db.scalar(select(func.count(Order.id)))


def ticking_clock(start=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc), step=timedelta(minutes=1)):
    """A clock that advances by ``step`` on every call."""
    ticks = count()
    return lambda: start + step * next(ticks)
