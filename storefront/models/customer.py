# storefront/models/customer.py
from decimal import Decimal

from . import db

TIER_THRESHOLDS = (
    ("platinum", Decimal("10000")),
    ("gold", Decimal("5000")),
    ("silver", Decimal("1000")),
)


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    phone = db.Column(db.String(30), default="")
    preferred_language = db.Column(db.String(2), nullable=False, default="ar")

    # lifetime counters, bumped once per delivered order
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    last_order_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    orders = db.relationship("Order", back_populates="customer", lazy="dynamic")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def tier(self) -> str:
        spent = Decimal(str(self.total_spent or 0))
        for name, threshold in TIER_THRESHOLDS:
            if spent >= threshold:
                return name
        return "bronze"

    def __repr__(self):
        return f"<Customer id={self.id} email={self.email!r}>"
