from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ShippingInfo(BaseModel):
    """Shipping and contact details captured at checkout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    shipping_address: str = Field(min_length=1, max_length=200)
    shipping_city: str = Field(min_length=1, max_length=50)
    shipping_postal_code: str = Field(min_length=1, max_length=20)
    shipping_country: str = Field(min_length=1, max_length=50)
    customer_email: str = Field(max_length=100, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    customer_name: str = Field(min_length=1, max_length=100)


class OrderSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    total_amount: Decimal
    status: str
    created_at: Optional[datetime] = None
    item_count: int = 0


class OrderPage(BaseModel):
    items: List[OrderSummary]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool


class TopProduct(BaseModel):
    product_id: int
    product_name: str
    category: str = ""
    price: Decimal
    total_quantity_sold: int
    total_orders: int
