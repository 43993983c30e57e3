# storefront/models/order.py
from . import db

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
ORDER_PAYMENT_STATUSES = ("pending", "paid", "failed", "cancelled", "refunded", "partially_refunded")
PAYMENT_METHODS = ("visa", "mastercard", "vodafone_cash", "cash_on_delivery", "bank_transfer")

CANCELLABLE_STATUSES = ("pending", "confirmed")
# fulfilment stages that imply the money has been taken
REFUNDABLE_STATUSES = ("processing", "shipped", "delivered")
CAPTURED_PAYMENT_STATUSES = ("paid", "partially_refunded")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), index=True)

    # shipping snapshot
    first_name = db.Column(db.String(50), nullable=False, default="")
    last_name = db.Column(db.String(50), nullable=False, default="")
    email = db.Column(db.String(255), nullable=False, default="")
    phone = db.Column(db.String(30), default="")
    address = db.Column(db.String(500), default="")
    city = db.Column(db.String(100), default="")
    postal_code = db.Column(db.String(20), default="")
    country = db.Column(db.String(2), default="EG")
    customer_notes = db.Column(db.Text, default="")

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EGP")

    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    tracking_number = db.Column(db.String(100))
    admin_notes = db.Column(db.Text, default="")
    # set once, by the single conditional update that gives the stock back
    stock_released = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())
    confirmed_at = db.Column(db.DateTime)
    processing_at = db.Column(db.DateTime)
    shipped_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    refunded_at = db.Column(db.DateTime)

    customer = db.relationship("Customer", back_populates="orders")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "Payment",
        back_populates="order",
        order_by="Payment.id",
        lazy="select",
    )

    @property
    def customer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES and not self.stock_released

    def can_be_refunded(self) -> bool:
        return (
            self.status in REFUNDABLE_STATUSES
            and not self.stock_released
            and self.payment_status in CAPTURED_PAYMENT_STATUSES
        )

    def __repr__(self):
        return f"<Order {self.order_number} status={self.status} payment={self.payment_status}>"


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # snapshot at checkout; later catalogue edits don't touch placed orders
    product_name = db.Column(db.String(200), nullable=False)
    product_name_ar = db.Column(db.String(200), default="")
    product_image = db.Column(db.String(500), default="")
    price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    order = db.relationship("Order", back_populates="items")
