# storefront/services/payment_methods.py
import logging
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..errors import ValidationError
from ..models import db, PaymentMethod
from ..utils.clock import utcnow
from ..utils.money import quantize

logger = logging.getLogger(__name__)

DEFAULT_METHODS = [
    {
        "name": "visa",
        "display_name_en": "Visa",
        "display_name_ar": "فيزا",
        "description_en": "Pay securely with your Visa card",
        "description_ar": "ادفع بأمان باستخدام بطاقة الفيزا الخاصة بك",
        "instructions_en": "Enter your Visa card details to complete the payment",
        "instructions_ar": "أدخل بيانات بطاقة الفيزا الخاصة بك لإتمام عملية الدفع",
        "type": "card",
        "provider": "paymob",
        "supported_currencies": ["EGP", "USD"],
        "min_amount": Decimal("10"),
        "max_amount": Decimal("50000"),
        "fixed_fee": Decimal("5"),
        "percentage_fee": Decimal("2.5"),
        "timeout_minutes": 30,
        "max_retries": 3,
        "supports_refunds": True,
        "supports_partial_refunds": True,
        "sort_order": 1,
    },
    {
        "name": "mastercard",
        "display_name_en": "Mastercard",
        "display_name_ar": "ماستركارد",
        "description_en": "Pay securely with your Mastercard",
        "description_ar": "ادفع بأمان باستخدام بطاقة الماستركارد الخاصة بك",
        "instructions_en": "Enter your Mastercard details to complete the payment",
        "instructions_ar": "أدخل بيانات بطاقة الماستركارد الخاصة بك لإتمام عملية الدفع",
        "type": "card",
        "provider": "paymob",
        "supported_currencies": ["EGP", "USD"],
        "min_amount": Decimal("10"),
        "max_amount": Decimal("50000"),
        "fixed_fee": Decimal("5"),
        "percentage_fee": Decimal("2.5"),
        "timeout_minutes": 30,
        "max_retries": 3,
        "supports_refunds": True,
        "supports_partial_refunds": True,
        "sort_order": 2,
    },
    {
        "name": "vodafone_cash",
        "display_name_en": "Vodafone Cash",
        "display_name_ar": "فودافون كاش",
        "description_en": "Pay easily with Vodafone Cash wallet",
        "description_ar": "ادفع بسهولة باستخدام محفظة فودافون كاش",
        "instructions_en": "Enter your Vodafone Cash number to complete the payment",
        "instructions_ar": "أدخل رقم فودافون كاش الخاص بك لإتمام عملية الدفع",
        "type": "mobile_wallet",
        "provider": "fawry",
        "supported_currencies": ["EGP"],
        "min_amount": Decimal("5"),
        "max_amount": Decimal("30000"),
        "fixed_fee": Decimal("2"),
        "percentage_fee": Decimal("1.5"),
        "timeout_minutes": 15,
        "max_retries": 2,
        "supports_refunds": True,
        "supports_partial_refunds": False,
        "sort_order": 3,
    },
    {
        "name": "cash_on_delivery",
        "display_name_en": "Cash on Delivery",
        "display_name_ar": "الدفع عند الاستلام",
        "description_en": "Pay cash when you receive your order",
        "description_ar": "ادفع نقداً عند استلام طلبك",
        "instructions_en": "Payment will be collected in cash upon delivery",
        "instructions_ar": "سيتم تحصيل المبلغ نقداً عند تسليم الطلب",
        "type": "cash",
        "provider": "internal",
        "supported_currencies": ["EGP"],
        "min_amount": Decimal("50"),
        "max_amount": Decimal("10000"),
        "fixed_fee": Decimal("15"),
        "percentage_fee": Decimal("0"),
        "timeout_minutes": 1440,
        "max_retries": 0,
        "supports_refunds": True,
        "supports_partial_refunds": True,
        "sort_order": 4,
    },
    {
        "name": "bank_transfer",
        "display_name_en": "Bank Transfer",
        "display_name_ar": "تحويل بنكي",
        "description_en": "Transfer the amount to our bank account",
        "description_ar": "حول المبلغ إلى حسابنا البنكي",
        "instructions_en": "Transfer to the specified bank account and send the transfer receipt",
        "instructions_ar": "قم بالتحويل إلى الحساب البنكي المحدد وأرسل إيصال التحويل",
        "type": "bank_transfer",
        "provider": "internal",
        "supported_currencies": ["EGP"],
        "min_amount": Decimal("100"),
        "max_amount": Decimal("100000"),
        "fixed_fee": Decimal("0"),
        "percentage_fee": Decimal("0"),
        "timeout_minutes": 4320,
        "max_retries": 0,
        "supports_refunds": True,
        "supports_partial_refunds": True,
        "sort_order": 5,
    },
]

COD_MESSAGE = {
    "en": "Payment will be collected on delivery",
    "ar": "سيتم تحصيل المبلغ عند التسليم",
}


class PaymentMethodService:

    @staticmethod
    def get_by_name(name: str) -> PaymentMethod:
        """Active method by name, ValidationError when unknown or switched off."""
        method = PaymentMethod.query.filter_by(name=(name or "").strip().lower()).first()
        if method is None or not method.is_active:
            raise ValidationError(f"Payment method not available: {name}", field="payment_method")
        return method

    @staticmethod
    def get_active(currency: str | None = None) -> list[PaymentMethod]:
        methods = (
            PaymentMethod.query.filter_by(is_active=True)
            .order_by(PaymentMethod.sort_order, PaymentMethod.name)
            .all()
        )
        if currency:
            methods = [m for m in methods if m.supports_currency(currency)]
        return methods

    @staticmethod
    def seed_defaults() -> int:
        """Inserts the built-in methods that are missing. Returns how many were created."""
        created = 0
        try:
            for data in DEFAULT_METHODS:
                if PaymentMethod.query.filter_by(name=data["name"]).first():
                    continue
                db.session.add(PaymentMethod(fee_currency="EGP", **data))
                created += 1
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error("Failed to seed payment methods: %s", e)
            raise
        if created:
            logger.info("Seeded %s payment methods", created)
        return created

    @staticmethod
    def record_usage(method_name: str, amount, success: bool) -> None:
        """
        Usage counters. Called once at initialisation (success=False) and once more
        when the payment completes (success=True); the second call only bumps
        ``successful_transactions``.
        """
        values = {"last_used": utcnow()}
        if success:
            values["successful_transactions"] = PaymentMethod.successful_transactions + 1
        else:
            values["total_transactions"] = PaymentMethod.total_transactions + 1
            values["total_amount"] = PaymentMethod.total_amount + quantize(amount)
        db.session.execute(
            update(PaymentMethod)
            .where(PaymentMethod.name == method_name)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def bank_transfer_details() -> dict:
        return dict(current_app.config.get("BANK_TRANSFER_DETAILS") or {})

    @staticmethod
    def next_step(payment, lang: str = "en") -> dict:
        """What the client should show after a payment has been initialised."""
        method = payment.payment_method
        if method in ("visa", "mastercard"):
            return {
                "type": "card_form",
                "action": "collect_card_details",
                "payment_id": payment.payment_id,
                "required_fields": ["card_number", "expiry_date", "cvv", "cardholder_name"],
            }
        if method == "vodafone_cash":
            return {
                "type": "mobile_wallet",
                "action": "collect_phone_number",
                "payment_id": payment.payment_id,
                "required_fields": ["phone_number"],
            }
        if method == "cash_on_delivery":
            return {
                "type": "confirmation",
                "action": "confirm_order",
                "payment_id": payment.payment_id,
                "message": COD_MESSAGE.get(lang, COD_MESSAGE["en"]),
            }
        if method == "bank_transfer":
            return {
                "type": "bank_details",
                "action": "show_bank_details",
                "payment_id": payment.payment_id,
                "bank_details": PaymentMethodService.bank_transfer_details(),
                "required_fields": ["bank_reference"],
            }
        return {"type": "error", "message": "Unsupported payment method"}
