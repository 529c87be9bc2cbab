from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, StrictInt

from storefront_orders.domain.models import OrderStatus


class CheckoutItem(BaseModel):
    product_id: StrictInt
    variant_id: StrictInt
    product_name: str
    option1_label: str = "Size"
    option1_value: str
    option2_label: str = "Color"
    option2_value: Optional[str] = None
    # Minor currency units; floats are rejected outright
    price_cents: StrictInt
    quantity: StrictInt


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem]
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None
    buyer_note: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_province: Optional[str] = None
    delivery_postal_code: Optional[str] = None
    chat_message: Optional[str] = None


class StockCheckItem(BaseModel):
    variant_id: StrictInt
    product_name: str
    quantity: StrictInt


class StockCheckRequest(BaseModel):
    items: list[StockCheckItem]


class ShortfallRead(BaseModel):
    variant_id: int
    product_name: str
    requested: int
    available: int
    model_config = ConfigDict(from_attributes=True)


class StockValidationRead(BaseModel):
    valid: bool
    shortfalls: list[ShortfallRead]
    model_config = ConfigDict(from_attributes=True)


class StatusUpdate(BaseModel):
    status: str


class OrderItemRead(BaseModel):
    id: int
    product_id: int
    variant_id: int
    product_name: str
    option1_label: str
    option1_value: str
    option2_label: str
    option2_value: Optional[str] = None
    price_cents: int
    quantity: int
    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: int
    order_number: str
    tenant_id: int
    status: OrderStatus
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None
    buyer_note: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_province: Optional[str] = None
    delivery_postal_code: Optional[str] = None
    total_cents: int
    item_count: int
    chat_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead]
    model_config = ConfigDict(from_attributes=True)


class OrderPage(BaseModel):
    items: list[OrderRead]
    next_cursor: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class TrackedItemRead(BaseModel):
    id: int
    product_name: str
    option1_label: str
    option1_value: str
    option2_label: str
    option2_value: Optional[str] = None
    price_cents: int
    quantity: int
    model_config = ConfigDict(from_attributes=True)


class TrackedOrderRead(BaseModel):
    """Public tracking view: no tenant scoping, buyer phone masked."""
    id: int
    order_number: str
    status: OrderStatus
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None
    buyer_note: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_province: Optional[str] = None
    delivery_postal_code: Optional[str] = None
    total_cents: int
    item_count: int
    created_at: datetime
    updated_at: datetime
    items: list[TrackedItemRead]
    model_config = ConfigDict(from_attributes=True)


class OrderStatsRead(BaseModel):
    total: int
    pending: int
    confirmed: int
    shipped: int
    delivered: int
    cancelled: int
    revenue_cents: int
    model_config = ConfigDict(from_attributes=True)
