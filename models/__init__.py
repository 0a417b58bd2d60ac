from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import BigInteger, Integer

# Use BigInteger in production but fall back to Integer for SQLite
BIGINT = BigInteger().with_variant(Integer, "sqlite")

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Re-export common models for convenience
from .product import Product  # noqa: E402,F401
from .cart import Cart, CartItem  # noqa: E402,F401
from .order import Order, OrderItem, OrderStatus  # noqa: E402,F401
