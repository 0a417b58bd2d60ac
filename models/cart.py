from sqlalchemy import text

from models import db, BIGINT, utcnow


class Cart(db.Model):
    __tablename__ = "cart"
    __table_args__ = (
        # One cart per user, one anonymous cart per session.
        db.Index("uq_cart_user", "user_id", unique=True),
        db.Index(
            "uq_cart_anonymous_session",
            "session_id",
            unique=True,
            sqlite_where=text("user_id IS NULL"),
            postgresql_where=text("user_id IS NULL"),
        ),
    )

    id = db.Column(BIGINT, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)


class CartItem(db.Model):
    __tablename__ = "cart_item"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_item_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_item_quantity_positive"),
    )

    id = db.Column(BIGINT, primary_key=True)
    cart_id = db.Column(BIGINT, db.ForeignKey("cart.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(BIGINT, db.ForeignKey("product.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)  # snapshot at add time
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    @property
    def total_price(self):
        return self.unit_price * self.quantity
