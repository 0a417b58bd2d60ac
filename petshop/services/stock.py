import logging

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm.util import identity_key

from models import db, utcnow
from models.product import Product
from petshop.exceptions import Conflict, ValidationError

logger = logging.getLogger(__name__)


class StockLedger:
    """Authoritative stock counter per product.

    ``decrement`` and ``restore`` never commit. They must run inside the unit
    of work of the order they belong to (see ``petshop.services.checkout``).
    """

    def check_available(self, product_id, quantity: int) -> bool:
        stmt = select(Product.stock_quantity).where(
            Product.id == product_id,
            Product.is_active.is_(True),
        )
        stock = db.session.execute(stmt).scalar_one_or_none()
        return stock is not None and stock >= quantity

    def decrement(self, product_id, quantity: int) -> None:
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")

        # Check and decrement in one statement so two writers can never both
        # observe the same last unit.
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.is_active.is_(True),
                Product.stock_quantity >= quantity,
            )
            .values(stock_quantity=Product.stock_quantity - quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        self._expire_cached(product_id)

        if result.rowcount != 1:
            product = db.session.get(Product, product_id)
            if product is None or not product.is_active:
                raise Conflict("product unavailable")
            logger.info({
                "event": "stock_conflict",
                "product_id": product_id,
                "requested": quantity,
                "available": product.stock_quantity,
            })
            raise Conflict("insufficient stock")

        logger.debug({"event": "stock_decremented", "product_id": product_id, "quantity": quantity})

    def restore(self, product_id, quantity: int) -> None:
        # TODO: cap against the product's initial stock once the catalog records it
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        self._expire_cached(product_id)

        if result.rowcount == 0:
            logger.warning({"event": "stock_restore_skipped", "product_id": product_id, "quantity": quantity})
            return

        threshold = current_app.config.get("STOCK_RESTORE_WARN_THRESHOLD")
        if threshold:
            stock = db.session.execute(
                select(Product.stock_quantity).where(Product.id == product_id)
            ).scalar_one()
            if stock > threshold:
                logger.warning({
                    "event": "stock_restore_above_threshold",
                    "product_id": product_id,
                    "stock_quantity": stock,
                    "threshold": threshold,
                })

    @staticmethod
    def _expire_cached(product_id):
        cached = db.session.identity_map.get(identity_key(Product, product_id))
        if cached is not None:
            db.session.expire(cached)
