# storefront/models/payment.py
from . import db

PAYMENT_STATUSES = (
    "pending",
    "processing",
    "completed",
    "failed",
    "cancelled",
    "refunded",
    "partially_refunded",
)
REFUND_STATUSES = ("pending", "processing", "completed", "failed")
GATEWAY_PROVIDERS = ("paymob", "fawry", "paypal", "stripe", "internal")


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(40), unique=True, nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EGP")
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)

    gateway_provider = db.Column(db.String(32), nullable=False, default="internal")
    gateway_transaction_id = db.Column(db.String(100))
    gateway_response = db.Column(db.JSON)

    # method specific details, never the full card number
    card_last4 = db.Column(db.String(4))
    card_type = db.Column(db.String(20))
    wallet_number = db.Column(db.String(20))
    bank_reference = db.Column(db.String(50))

    gateway_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    processing_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_fees = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # running sum of non-failed refunds, kept in step with the refund ledger
    amount_refunded = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))

    initiated_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", back_populates="payments")
    refunds = db.relationship(
        "PaymentRefund",
        back_populates="payment",
        order_by="PaymentRefund.id",
        cascade="all, delete-orphan",
    )
    attempts = db.relationship(
        "PaymentAttempt",
        back_populates="payment",
        order_by="PaymentAttempt.attempt_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Payment {self.payment_id} {self.status} {self.amount} {self.currency}>"


class PaymentRefund(db.Model):
    __tablename__ = "payment_refunds"

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    refund_id = db.Column(db.String(40), unique=True, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reason = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    gateway_refund_id = db.Column(db.String(100))
    processed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    payment = db.relationship("Payment", back_populates="refunds")


class PaymentAttempt(db.Model):
    __tablename__ = "payment_attempts"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "attempt_number", name="uq_payment_attempt_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    attempt_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(32), nullable=False)
    error_code = db.Column(db.String(50))
    error_message = db.Column(db.String(500))
    gateway_response = db.Column(db.JSON)
    attempted_at = db.Column(db.DateTime, nullable=False)

    payment = db.relationship("Payment", back_populates="attempts")
