# storefront/models/payment_method.py
from . import db

METHOD_TYPES = ("card", "mobile_wallet", "cash", "bank_transfer")


class PaymentMethod(db.Model):
    __tablename__ = "payment_methods"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), unique=True, nullable=False)
    display_name_en = db.Column(db.String(100), nullable=False)
    display_name_ar = db.Column(db.String(100), nullable=False, default="")
    description_en = db.Column(db.String(300), default="")
    description_ar = db.Column(db.String(300), default="")
    instructions_en = db.Column(db.Text, default="")
    instructions_ar = db.Column(db.Text, default="")

    type = db.Column(db.String(20), nullable=False)
    provider = db.Column(db.String(32), nullable=False, default="internal")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    supported_currencies = db.Column(db.JSON, nullable=False, default=lambda: ["EGP"])

    min_amount = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    max_amount = db.Column(db.Numeric(12, 2), nullable=False, default=100000)

    fixed_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    fee_currency = db.Column(db.String(3), nullable=False, default="EGP")
    percentage_fee = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    timeout_minutes = db.Column(db.Integer, nullable=False, default=30)
    max_retries = db.Column(db.Integer, nullable=False, default=3)
    supports_refunds = db.Column(db.Boolean, nullable=False, default=True)
    supports_partial_refunds = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    total_transactions = db.Column(db.Integer, nullable=False, default=0)
    successful_transactions = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    last_used = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    def display_name(self, lang: str = "en") -> str:
        if lang == "ar" and self.display_name_ar:
            return self.display_name_ar
        return self.display_name_en

    def description(self, lang: str = "en") -> str:
        if lang == "ar" and self.description_ar:
            return self.description_ar
        return self.description_en or ""

    def instructions(self, lang: str = "en") -> str:
        if lang == "ar" and self.instructions_ar:
            return self.instructions_ar
        return self.instructions_en or ""

    def supports_currency(self, currency: str) -> bool:
        return (currency or "").upper() in [c.upper() for c in (self.supported_currencies or [])]

    @property
    def success_rate(self) -> float:
        if not self.total_transactions:
            return 0.0
        return round(self.successful_transactions / self.total_transactions * 100, 2)

    def __repr__(self):
        return f"<PaymentMethod {self.name} active={self.is_active}>"
