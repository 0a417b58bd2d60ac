"""Units of work that move stock.

``CheckoutTransaction`` enumerates every write it performs. Placing an order
decrements stock, inserts the order and its lines and empties the cart; a
cancellation restores stock and flips the status. Either all writes of a unit
are committed or none are.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import update

from models import db, utcnow
from models.cart import Cart
from models.order import Order, OrderItem, OrderStatus
from petshop.exceptions import NotFound, StateError
from petshop.logging import bind_log_context
from petshop.schemas import ShippingInfo
from petshop.services.cart import CartStore
from petshop.services.order_factory import OrderFactory, ensure_transition
from petshop.services.stock import StockLedger
from petshop.utils import transactional

logger = logging.getLogger(__name__)


class CheckoutTransaction:
    def __init__(
        self,
        carts: Optional[CartStore] = None,
        factory: Optional[OrderFactory] = None,
        ledger: Optional[StockLedger] = None,
        timeout=None,
    ):
        self.carts = carts or CartStore(timeout=timeout)
        self.factory = factory or OrderFactory()
        self.ledger = ledger or StockLedger()
        self.timeout = timeout

    def place(
        self,
        cart: Cart,
        shipping: ShippingInfo,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Tuple[Order, List[OrderItem]]:
        with bind_log_context(cart_id=cart.id), \
                transactional("Failed to place order", timeout=self.timeout) as deadline:
            if not self.carts.lock(cart):
                raise NotFound("cart not found")
            lines = self.carts.lines(cart)
            order, items = self.factory.build(lines, shipping, user_id=user_id, session_id=session_id)

            deadline.check("stock decrement")
            for item in sorted(items, key=lambda i: i.product_id):
                self.ledger.decrement(item.product_id, item.quantity)

            db.session.add(order)
            db.session.flush()
            for item in items:
                item.order_id = order.id
                db.session.add(item)

            self.carts.delete_lines(cart.id)

        logger.info({
            "event": "order_placed",
            "order_id": order.id,
            "order_number": order.order_number,
            "cart_id": cart.id,
            "lines": len(items),
            "total_amount": order.total_amount,
        })
        return order, items

    def cancel(self, order_id, user_id: Optional[str] = None) -> bool:
        with bind_log_context(order_id=order_id), \
                transactional("Failed to cancel order", timeout=self.timeout):
            query = Order.query.filter_by(id=order_id)
            if user_id:
                query = query.filter_by(user_id=user_id)
            order = query.with_for_update().populate_existing().first()
            if order is None:
                return False

            ensure_transition(order.status, OrderStatus.CANCELLED)
            self._set_status(order, OrderStatus.PENDING, OrderStatus.CANCELLED)

            items = OrderItem.query.filter_by(order_id=order.id).order_by(OrderItem.product_id).all()
            for item in items:
                self.ledger.restore(item.product_id, item.quantity)

        logger.info({"event": "order_cancelled", "order_id": order_id, "lines": len(items)})
        return True

    def transition(self, order_id, new_status: OrderStatus) -> bool:
        if new_status is OrderStatus.CANCELLED:
            return self.cancel(order_id)
        with transactional("Failed to update order status", timeout=self.timeout):
            order = Order.query.filter_by(id=order_id).with_for_update().populate_existing().first()
            if order is None:
                return False
            current = OrderStatus(order.status)
            ensure_transition(current, new_status)
            self._set_status(order, current, new_status)

        logger.info({"event": "order_status_changed", "order_id": order_id, "status": new_status.value})
        return True

    @staticmethod
    def _set_status(order, expected: OrderStatus, new: OrderStatus):
        # Guarded on the expected status so a concurrent transition cannot be
        # applied twice.
        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == expected.value)
            .values(status=new.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateError("order status changed concurrently")
        db.session.expire(order, ["status", "updated_at"])
