import logging
import math
from typing import List, Optional, Union

from flask import current_app
from opentelemetry import trace
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import func

from models import db
from models.order import Order, OrderItem, OrderStatus
from models.product import Product
from petshop.exceptions import NotFound, ValidationError
from petshop.schemas import OrderPage, OrderSummary, ShippingInfo, TopProduct
from petshop.services.cart import CartStore
from petshop.services.checkout import CheckoutTransaction
from petshop.services.notifications import NotificationDispatcher
from petshop.services.order_factory import OrderFactory, parse_status
from petshop.services.stock import StockLedger

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def parse_shipping(shipping: Union[ShippingInfo, dict]) -> ShippingInfo:
    if isinstance(shipping, ShippingInfo):
        return shipping
    try:
        return ShippingInfo.model_validate(shipping or {})
    except SchemaValidationError as ve:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in ve.errors())
        raise ValidationError(f"invalid shipping info: {fields}") from ve


class OrderService:
    """Checkout and order queries on top of the cart store."""

    def __init__(
        self,
        carts: Optional[CartStore] = None,
        ledger: Optional[StockLedger] = None,
        factory: Optional[OrderFactory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        timeout=None,
    ):
        self.carts = carts or CartStore(timeout=timeout)
        self.ledger = ledger or StockLedger()
        self.factory = factory or OrderFactory()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.checkout = CheckoutTransaction(self.carts, self.factory, self.ledger, timeout=timeout)

    # =====================================================
    # COMMANDS
    # =====================================================
    def create_order(self, user_id: Optional[str], session_id: str,
                     shipping: Union[ShippingInfo, dict]) -> Order:
        with tracer.start_as_current_span("orders.create_order") as span:
            info = parse_shipping(shipping)
            cart = self.carts.get_or_create_cart(user_id, session_id)
            order, items = self.checkout.place(cart, info, user_id=user_id, session_id=session_id)
            span.set_attribute("order.number", order.order_number)

        # Post-commit and best effort: a failed confirmation never undoes the order.
        self.dispatcher.send_order_confirmation(
            order.customer_email,
            order.customer_name,
            order.order_number,
            order.total_amount,
            [f"{item.product_name} x{item.quantity}" for item in items],
        )
        return order

    def cancel_order(self, order_id, user_id: Optional[str] = None) -> bool:
        with tracer.start_as_current_span("orders.cancel_order"):
            return self.checkout.cancel(order_id, user_id=user_id)

    def update_status(self, order_id, new_status) -> bool:
        status = parse_status(new_status)
        return self.checkout.transition(order_id, status)

    # =====================================================
    # QUERIES
    # =====================================================
    def get_order(self, order_id, user_id: Optional[str] = None) -> Order:
        query = Order.query.filter_by(id=order_id)
        if user_id:
            query = query.filter_by(user_id=user_id)
        order = query.first()
        if order is None:
            raise NotFound("order not found")
        return order

    @staticmethod
    def get_order_items(order: Order) -> List[OrderItem]:
        return OrderItem.query.filter_by(order_id=order.id).order_by(OrderItem.id).all()

    def list_orders(self, user_id: Optional[str] = None, page: int = 1,
                    page_size: Optional[int] = None) -> OrderPage:
        if page_size is None:
            page_size = current_app.config.get("DEFAULT_PAGE_SIZE", 10)
        if page < 1 or page_size < 1:
            raise ValidationError("page and page size must be at least 1")
        page_size = min(page_size, current_app.config.get("MAX_PAGE_SIZE", 100))

        query = Order.query
        if user_id:
            query = query.filter_by(user_id=user_id)

        total_count = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        counts = {}
        if orders:
            counts = dict(
                db.session.query(OrderItem.order_id, func.count(OrderItem.id))
                .filter(OrderItem.order_id.in_([o.id for o in orders]))
                .group_by(OrderItem.order_id)
                .all()
            )

        total_pages = math.ceil(total_count / page_size)
        return OrderPage(
            items=[
                OrderSummary(
                    id=o.id,
                    order_number=o.order_number,
                    total_amount=o.total_amount,
                    status=o.status,
                    created_at=o.created_at,
                    item_count=counts.get(o.id, 0),
                )
                for o in orders
            ],
            total_count=total_count,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_previous_page=page > 1,
            has_next_page=page < total_pages,
        )

    def list_user_orders(self, user_id: str) -> List[Order]:
        return (
            Order.query.filter_by(user_id=user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def top_products(self, count: int = 10) -> List[TopProduct]:
        """Best sellers by units sold; cancelled orders do not count."""
        if count < 1:
            raise ValidationError("count must be at least 1")

        quantity_sold = func.sum(OrderItem.quantity).label("total_quantity_sold")
        rows = (
            db.session.query(
                OrderItem.product_id,
                Product.name,
                Product.category,
                Product.price,
                quantity_sold,
                func.count(func.distinct(OrderItem.order_id)).label("total_orders"),
            )
            .join(Order, Order.id == OrderItem.order_id)
            .join(Product, Product.id == OrderItem.product_id)
            .filter(Order.status != OrderStatus.CANCELLED.value)
            .group_by(OrderItem.product_id, Product.name, Product.category, Product.price)
            .order_by(quantity_sold.desc(), OrderItem.product_id)
            .limit(count)
            .all()
        )
        return [
            TopProduct(
                product_id=row.product_id,
                product_name=row.name,
                category=row.category or "",
                price=row.price,
                total_quantity_sold=int(row.total_quantity_sold),
                total_orders=int(row.total_orders),
            )
            for row in rows
        ]
