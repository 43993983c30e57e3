# storefront/models/__init__.py
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Product(db.Model):
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name_en = db.Column(db.String(200), nullable=False)
    name_ar = db.Column(db.String(200), nullable=False, default="")
    image_url = db.Column(db.String(500), default="")
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # only StockLedger writes this column
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    @property
    def in_stock(self) -> bool:
        return (self.stock or 0) > 0

    def display_name(self, lang: str = "en") -> str:
        if lang == "ar" and self.name_ar:
            return self.name_ar
        return self.name_en

    def __repr__(self):
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"


from .counter import SequenceCounter  # noqa: E402
from .customer import Customer  # noqa: E402
from .order import Order, OrderItem  # noqa: E402
from .payment import Payment, PaymentAttempt, PaymentRefund  # noqa: E402
from .payment_method import PaymentMethod  # noqa: E402

__all__ = [
    "db",
    "Product",
    "SequenceCounter",
    "Customer",
    "Order",
    "OrderItem",
    "Payment",
    "PaymentAttempt",
    "PaymentRefund",
    "PaymentMethod",
]
