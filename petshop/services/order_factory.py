import logging
import secrets
import string
from typing import List, Optional, Sequence, Tuple

from flask import current_app

from models import utcnow
from models.cart import CartItem
from models.order import Order, OrderItem, OrderStatus
from petshop.exceptions import Conflict, StateError, ValidationError
from petshop.schemas import ShippingInfo
from petshop.services.catalog import lock_products
from petshop.utils import to_money, ZERO

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_TOKEN_LENGTH = 8

# Forward-only; cancellation is only possible while pending.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: set(),
    OrderStatus.CANCELLED: set(),
}


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"unknown order status: {value}")


def ensure_transition(current, new) -> None:
    current, new = OrderStatus(current), OrderStatus(new)
    if new not in ORDER_TRANSITIONS[current]:
        raise StateError(f"cannot change order status from {current.value} to {new.value}")


class OrderFactory:
    """Turns cart lines into an unsaved Order with its OrderItems."""

    def __init__(self, prefix: Optional[str] = None):
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix or current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")

    def generate_order_number(self, now=None) -> str:
        now = now or utcnow()
        token = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_TOKEN_LENGTH))
        return f"{self.prefix}-{now:%Y%m%d}-{token}"

    def build(
        self,
        lines: Sequence[CartItem],
        shipping: ShippingInfo,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Tuple[Order, List[OrderItem]]:
        if not lines:
            raise ValidationError("cart empty")

        # Stock may have moved since the lines were added; check again against
        # locked rows.
        products = lock_products(line.product_id for line in lines)
        for line in lines:
            product = products.get(line.product_id)
            if product is None or not product.is_active:
                logger.info({"event": "checkout_rejected", "product_id": line.product_id, "reason": "unavailable"})
                raise Conflict("product unavailable")
            if product.stock_quantity < line.quantity:
                logger.info({"event": "checkout_rejected", "product_id": line.product_id, "reason": "stock"})
                raise Conflict("insufficient stock")

        items = [
            OrderItem(
                product_id=line.product_id,
                product_name=products[line.product_id].name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=to_money(line.unit_price * line.quantity),
            )
            for line in lines
        ]

        now = utcnow()
        order = Order(
            order_number=self.generate_order_number(now),
            user_id=user_id,
            session_id=session_id,
            status=OrderStatus.PENDING.value,
            total_amount=sum((item.total_price for item in items), ZERO),
            created_at=now,
            updated_at=now,
            **shipping.model_dump(),
        )
        return order, items
