from enum import Enum

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey

from models import db, BIGINT, utcnow


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
    )

    id = Column(BIGINT, primary_key=True)
    order_number = Column(String(32), nullable=False, unique=True)
    user_id = Column(String(64), nullable=True)
    session_id = Column(String(128), nullable=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    total_amount = Column(Numeric(10, 2), nullable=False)

    # Shipping
    shipping_address = Column(String(200), nullable=False)
    shipping_city = Column(String(50), nullable=False)
    shipping_postal_code = Column(String(20), nullable=False)
    shipping_country = Column(String(50), nullable=False)

    # Customer contact
    customer_email = Column(String(100), nullable=False)
    customer_name = Column(String(100), nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)


class OrderItem(db.Model):
    __tablename__ = "order_item"
    id = db.Column(BIGINT, primary_key=True)
    order_id = db.Column(BIGINT, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(BIGINT, ForeignKey("product.id"), nullable=False, index=True)
    product_name = db.Column(db.String(100))
    quantity = db.Column(Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
