import logging
from decimal import Decimal
from typing import List, Optional

from opentelemetry import trace
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from models import db, utcnow
from models.cart import Cart, CartItem
from petshop.exceptions import Conflict, NotFound, TransientStorageError, ValidationError
from petshop.services.catalog import require_active_product
from petshop.utils import transactional, to_money, ZERO

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _validate_quantity(quantity):
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be at least 1")


class CartStore:
    """Carts keyed by user id or anonymous session id.

    Every mutation first touches the cart row, which holds the row write lock
    until commit; concurrent mutations of one cart therefore run one after the
    other while different carts proceed independently. Stock checks made here
    are advisory; checkout re-validates.
    """

    def __init__(self, timeout=None):
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    @staticmethod
    def _find_user_cart(user_id) -> Optional[Cart]:
        return Cart.query.filter_by(user_id=user_id).first()

    @staticmethod
    def _find_session_cart(session_id) -> Optional[Cart]:
        return Cart.query.filter(Cart.session_id == session_id, Cart.user_id.is_(None)).first()

    def _resolve(self, user_id, session_id) -> Optional[Cart]:
        cart = self._find_user_cart(user_id) if user_id else None
        if cart is None:
            cart = self._find_session_cart(session_id)
        return cart

    def get_or_create_cart(self, user_id: Optional[str], session_id: str) -> Cart:
        if not session_id:
            raise ValidationError("session id is required")

        cart = self._resolve(user_id, session_id)
        if cart is not None:
            return cart

        return self._create_cart(user_id, session_id)

    get_cart = get_or_create_cart

    def _create_cart(self, user_id, session_id) -> Cart:
        cart = Cart(user_id=user_id or None, session_id=session_id)
        try:
            with transactional("Failed to create cart", timeout=self.timeout):
                db.session.add(cart)
        except TransientStorageError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # Another request created the cart for this identity first.
            cart = self._resolve(user_id, session_id)
            if cart is None:
                raise TransientStorageError("cart could not be created") from e
            return cart

        logger.info({"event": "cart_created", "cart_id": cart.id, "user_id": user_id})
        return cart

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @staticmethod
    def lines(cart: Cart) -> List[CartItem]:
        return CartItem.query.filter_by(cart_id=cart.id).order_by(CartItem.id).all()

    def cart_total(self, cart: Cart) -> Decimal:
        return to_money(sum((line.total_price for line in self.lines(cart)), ZERO))

    @staticmethod
    def get_item_count(cart: Cart) -> int:
        count = (
            db.session.query(func.coalesce(func.sum(CartItem.quantity), 0))
            .filter(CartItem.cart_id == cart.id)
            .scalar()
        )
        return int(count)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    @staticmethod
    def lock(cart: Cart) -> bool:
        """Bump ``updated_at``; the row stays locked until commit or rollback."""
        result = db.session.execute(
            update(Cart)
            .where(Cart.id == cart.id)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        locked = result.rowcount > 0
        if locked:
            db.session.expire(cart, ["updated_at"])
        return locked

    def _lock_or_fail(self, cart):
        if not self.lock(cart):
            raise NotFound("cart not found")

    def add_item(self, cart: Cart, product_id, quantity: int) -> CartItem:
        _validate_quantity(quantity)
        with transactional("Failed to add item to cart", timeout=self.timeout):
            self._lock_or_fail(cart)
            product = require_active_product(product_id)
            line = CartItem.query.filter_by(cart_id=cart.id, product_id=product.id).first()

            requested = quantity + (line.quantity if line else 0)
            if product.stock_quantity < requested:
                raise Conflict("insufficient stock")

            now = utcnow()
            if line:
                line.quantity = requested
                line.unit_price = product.price
                line.updated_at = now
            else:
                line = CartItem(
                    cart_id=cart.id,
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=product.price,
                    created_at=now,
                    updated_at=now,
                )
                db.session.add(line)

        logger.info({"event": "cart_item_added", "cart_id": cart.id, "product_id": product_id, "quantity": quantity})
        return line

    def update_item(self, cart: Cart, line_id, quantity: int) -> CartItem:
        _validate_quantity(quantity)
        with transactional("Failed to update cart item", timeout=self.timeout):
            self._lock_or_fail(cart)
            line = CartItem.query.filter_by(id=line_id, cart_id=cart.id).first()
            if line is None:
                raise NotFound("cart item not found")

            product = require_active_product(line.product_id)
            if product.stock_quantity < quantity:
                raise Conflict("insufficient stock")

            line.quantity = quantity
            line.updated_at = utcnow()
        return line

    def remove_item(self, cart: Cart, line_id) -> bool:
        with transactional("Failed to remove cart item", timeout=self.timeout):
            removed = self.lock(cart) and (
                CartItem.query.filter_by(id=line_id, cart_id=cart.id).delete(synchronize_session=False) > 0
            )
            if not removed:
                db.session.rollback()
        return removed

    def clear_cart(self, cart: Cart) -> bool:
        with transactional("Failed to clear cart", timeout=self.timeout):
            cleared = self.lock(cart) and self.delete_lines(cart.id) > 0
            if not cleared:
                db.session.rollback()
        return cleared

    @staticmethod
    def delete_lines(cart_id) -> int:
        return CartItem.query.filter_by(cart_id=cart_id).delete(synchronize_session=False)

    def merge_carts(self, user_id: str, session_id: str) -> Cart:
        """Fold the anonymous cart of ``session_id`` into the cart of ``user_id``.

        Quantities of products present in both carts are summed; lines only in
        the session cart keep their own price snapshot. Running it again once
        the session cart is gone changes nothing.
        """
        if not user_id:
            raise ValidationError("user id is required to merge carts")

        with tracer.start_as_current_span("cart.merge_carts"):
            with transactional("Failed to merge carts", timeout=self.timeout):
                session_cart = self._find_session_cart(session_id) if session_id else None
                if session_cart is not None and not self.lock(session_cart):
                    session_cart = None
                user_cart = self._find_user_cart(user_id)
                session_lines = self.lines(session_cart) if session_cart is not None else []

                if not session_lines:
                    result = user_cart
                elif user_cart is None:
                    # Claim the anonymous cart; no lines move.
                    session_cart.user_id = user_id
                    result = session_cart
                else:
                    self._lock_or_fail(user_cart)
                    self._absorb(user_cart, session_lines)
                    self.delete_lines(session_cart.id)
                    db.session.delete(session_cart)
                    result = user_cart
                merged = len(session_lines)

            if result is None:
                # An empty anonymous cart stays as it is; the user gets a cart of their own.
                return self._create_cart(user_id, session_id or user_id)

        logger.info({"event": "carts_merged", "user_id": user_id, "cart_id": result.id, "lines": merged})
        return result

    def _absorb(self, user_cart, session_lines):
        existing = {line.product_id: line for line in self.lines(user_cart)}
        now = utcnow()
        for source in session_lines:
            target = existing.get(source.product_id)
            if target is not None:
                target.quantity += source.quantity
                target.updated_at = now
            else:
                db.session.add(CartItem(
                    cart_id=user_cart.id,
                    product_id=source.product_id,
                    quantity=source.quantity,
                    unit_price=source.unit_price,
                    created_at=now,
                    updated_at=now,
                ))
