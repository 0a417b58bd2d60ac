"""Read access to the product catalog.

The catalog owns product identity and pricing; the order core only reads it
here and mutates ``stock_quantity`` through :class:`petshop.services.stock.StockLedger`.
"""
from typing import Dict, Iterable, Optional

from sqlalchemy import select

from models import db
from models.product import Product
from petshop.exceptions import Conflict, NotFound


def get_product(product_id) -> Optional[Product]:
    return db.session.get(Product, product_id, populate_existing=True)


def require_active_product(product_id) -> Product:
    product = get_product(product_id)
    if product is None:
        raise NotFound("product not found")
    if not product.is_active:
        raise Conflict("product unavailable")
    return product


def lock_products(product_ids: Iterable) -> Dict[int, Product]:
    """Load products ``FOR UPDATE`` in ascending id order, keyed by id."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    stmt = (
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {p.id: p for p in db.session.execute(stmt).scalars()}
