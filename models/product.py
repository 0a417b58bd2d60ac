from models import db, BIGINT, utcnow


class Product(db.Model):
    """Catalog product. Only ``stock_quantity`` is written by the order core."""

    __tablename__ = "product"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
    )

    id = db.Column(BIGINT, primary_key=True)

    # Core details
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(50), nullable=False, default="")
    description = db.Column(db.String(500), nullable=True)
    image_url = db.Column(db.String(200), nullable=True)

    # Pricing & inventory
    price = db.Column(db.Numeric(10, 2), nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Soft delete
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
