# storefront/services/payment_service.py
"""
Payment lifecycle.

    pending -> processing -> completed -> partially_refunded -> refunded
    pending | processing -> failed | cancelled

failed, cancelled and refunded are terminal. Refund statuses are only ever
reached through the refund ledger (``refund``), never through an attempt.
Every status change is a conditional UPDATE against the status read, so two
callbacks racing on the same payment can't both apply.
"""
import logging
import re
from datetime import timedelta
from decimal import Decimal

import requests
from flask import current_app
from sqlalchemy import select

from ..errors import (
    InvalidTransition,
    NotFound,
    PaymentExpired,
    RefundExceedsBalance,
    ValidationError,
)
from ..gateways import GatewayResult, get_registry
from ..models import db, Order, Payment, PaymentAttempt, PaymentMethod, PaymentRefund
from ..utils.clock import utcnow
from ..utils.identifiers import generate_payment_id, generate_refund_id
from ..utils.money import ZERO, quantize, to_money
from .fees import FeeCalculator
from .payment_methods import PaymentMethodService
from .transitions import atomic, compare_and_set

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"processing", "failed", "cancelled"},
    "processing": {"completed", "failed", "cancelled"},
    "completed": {"refunded", "partially_refunded"},
    "partially_refunded": {"partially_refunded", "refunded"},
    "failed": set(),
    "cancelled": set(),
    "refunded": set(),
}
LEDGER_STATUSES = ("refunded", "partially_refunded")
REFUNDABLE_STATUSES = ("completed", "partially_refunded")
ACTIVE_STATUSES = ("pending", "processing", "completed", "partially_refunded")
OPEN_REFUND_STATUSES = ("pending", "processing")

CARD_METHODS = ("visa", "mastercard")
VODAFONE_RE = re.compile(r"^01[0-9]{9}$")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/?([0-9]{2})$")
MAX_EXTENSION_MINUTES = 7 * 24 * 60


def _require_text(value, field: str, max_length: int) -> str:
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    if len(text) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters", field=field)
    return text


def detect_card_type(number: str) -> str:
    if number.startswith("4"):
        return "visa"
    if re.match(r"^(5[1-5]|2[2-7])", number):
        return "mastercard"
    if re.match(r"^3[47]", number):
        return "amex"
    return "unknown"


def validate_card_details(details: dict) -> dict:
    """Returns the parts worth keeping; raises ValidationError on bad input."""
    number = re.sub(r"[\s-]", "", str(details.get("card_number") or ""))
    if not re.fullmatch(r"[0-9]{13,19}", number):
        raise ValidationError("Invalid card number", field="card_number")

    match = EXPIRY_RE.match(str(details.get("expiry_date") or "").strip())
    if not match:
        raise ValidationError("Expiry date must be MM/YY", field="expiry_date")
    month, year = int(match.group(1)), 2000 + int(match.group(2))
    now = utcnow()
    if (year, month) < (now.year, now.month):
        raise ValidationError("Card has expired", field="expiry_date")

    if not re.fullmatch(r"[0-9]{3,4}", str(details.get("cvv") or "")):
        raise ValidationError("Invalid CVV", field="cvv")

    holder = str(details.get("cardholder_name") or "").strip()
    if len(holder) < 2:
        raise ValidationError("Cardholder name is required", field="cardholder_name")

    return {"card_number": number, "card_last4": number[-4:], "card_type": detect_card_type(number)}


class PaymentService:

    # =========================================================
    # Pure helpers
    # =========================================================
    @staticmethod
    def is_expired(payment: Payment, now=None) -> bool:
        if payment.status != "pending" or payment.expires_at is None:
            return False
        return (now or utcnow()) > payment.expires_at

    @staticmethod
    def effective_status(payment: Payment) -> str:
        """Expired pending payments read as failed; nothing is written."""
        return "failed" if PaymentService.is_expired(payment) else payment.status

    @staticmethod
    def net_amount(payment: Payment) -> Decimal:
        return quantize(Decimal(str(payment.amount)) - Decimal(str(payment.total_fees or 0)))

    @staticmethod
    def refunded_amount(payment: Payment, include_open: bool = True) -> Decimal:
        """Sum of completed refunds, plus the ones still in flight unless ``include_open`` is off."""
        statuses = ("completed",) + (OPEN_REFUND_STATUSES if include_open else ())
        total = sum((Decimal(str(r.amount)) for r in payment.refunds if r.status in statuses), ZERO)
        return quantize(total)

    @staticmethod
    def refundable_amount(payment: Payment) -> Decimal:
        if payment.status not in REFUNDABLE_STATUSES:
            return ZERO
        remaining = Decimal(str(payment.amount)) - PaymentService.refunded_amount(payment)
        return quantize(max(remaining, ZERO))

    # =========================================================
    # Lookups
    # =========================================================
    @staticmethod
    def get_payment(payment_id) -> Payment:
        if isinstance(payment_id, Payment):
            return payment_id
        payment = Payment.query.filter_by(payment_id=str(payment_id)).first()
        if payment is None:
            raise NotFound("payment", payment_id)
        return payment

    @staticmethod
    def payments_for_order(order_id: int) -> list[Payment]:
        return Payment.query.filter_by(order_id=order_id).order_by(Payment.id).all()

    @staticmethod
    def list_payments(filters: dict | None = None, page: int = 1, per_page: int = 20):
        filters = filters or {}
        q = Payment.query
        if filters.get("status"):
            q = q.filter(Payment.status == filters["status"])
        if filters.get("payment_method"):
            q = q.filter(Payment.payment_method == filters["payment_method"])
        if filters.get("customer_id"):
            q = q.filter(Payment.customer_id == filters["customer_id"])
        if filters.get("order_id"):
            q = q.filter(Payment.order_id == filters["order_id"])
        if filters.get("start_date"):
            q = q.filter(Payment.created_at >= filters["start_date"])
        if filters.get("end_date"):
            q = q.filter(Payment.created_at <= filters["end_date"])
        if filters.get("min_amount") is not None:
            q = q.filter(Payment.amount >= to_money(filters["min_amount"], "min_amount"))
        if filters.get("max_amount") is not None:
            q = q.filter(Payment.amount <= to_money(filters["max_amount"], "max_amount"))
        q = q.order_by(Payment.created_at.desc(), Payment.id.desc())
        return q.paginate(page=page, per_page=per_page, error_out=False)

    # =========================================================
    # Initialisation
    # =========================================================
    @staticmethod
    def initialize(order_id, method_name: str, amount=None, currency: str | None = None,
                   ip_address: str | None = None, user_agent: str | None = None) -> Payment:
        with atomic(f"initialising payment for order {order_id}"):
            order = db.session.get(Order, order_id)
            if order is None:
                raise NotFound("order", order_id)
            if order.status == "cancelled":
                raise InvalidTransition("order", order.status, "payment", "order is cancelled")

            for existing in order.payments:
                if existing.status in ACTIVE_STATUSES and not PaymentService.is_expired(existing):
                    raise InvalidTransition(
                        "order", order.payment_status, "payment",
                        f"order already has an active payment {existing.payment_id}",
                    )

            method = PaymentMethodService.get_by_name(method_name)

            currency = (currency or order.currency or current_app.config["DEFAULT_CURRENCY"]).upper()
            if currency not in current_app.config["ALLOWED_CURRENCIES"]:
                raise ValidationError(f"Unsupported currency: {currency}", field="currency")
            if not method.supports_currency(currency):
                raise ValidationError(
                    f"{method.display_name_en} does not accept {currency}", field="currency"
                )

            amount = to_money(order.total if amount is None else amount)
            if amount <= ZERO:
                raise ValidationError("Amount must be greater than zero", field="amount")
            if amount > quantize(order.total):
                raise ValidationError("Amount cannot exceed the order total", field="amount")
            FeeCalculator.validate_amount(method, amount, currency)
            fees = FeeCalculator.fee_breakdown(method, amount, currency)

            now = utcnow()
            timeout = method.timeout_minutes or current_app.config["PAYMENT_TIMEOUT_MINUTES"]
            payment = Payment(
                payment_id=generate_payment_id(),
                order_id=order.id,
                customer_id=order.customer_id,
                amount=amount,
                currency=currency,
                payment_method=method.name,
                status="pending",
                gateway_provider=method.provider,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:255] or None,
                initiated_at=now,
                expires_at=now + timedelta(minutes=timeout),
                **fees,
            )
            db.session.add(payment)
            order.payment_method = method.name
            PaymentMethodService.record_usage(method.name, amount, success=False)

        logger.info(
            "Payment %s initialised for order %s: %s %s via %s",
            payment.payment_id, order.order_number, amount, currency, method.name,
        )
        return payment

    # =========================================================
    # Attempts / status transitions
    # =========================================================
    @staticmethod
    def _transition(payment: Payment, target: str, error_code=None, error_message=None,
                    gateway_response=None, transaction_id=None, sync_order: bool = True) -> Payment:
        current = payment.status
        if target not in TRANSITIONS:
            raise ValidationError(f"Unknown payment status: {target}", field="status")
        if target in LEDGER_STATUSES:
            raise InvalidTransition("payment", current, target, "refund statuses are set by the refund ledger")
        if target not in TRANSITIONS[current]:
            raise InvalidTransition("payment", current, target)
        if target in ("processing", "completed") and PaymentService.is_expired(payment):
            raise PaymentExpired(payment.payment_id, target)

        now = utcnow()
        values = {"updated_at": now}
        if target == "completed":
            values["completed_at"] = now
        if transaction_id:
            values["gateway_transaction_id"] = transaction_id
        if gateway_response is not None:
            values["gateway_response"] = gateway_response

        attempt_number = len(payment.attempts) + 1
        if not compare_and_set(Payment, payment, [current], target=target, **values):
            raise InvalidTransition("payment", current, target, "payment was modified concurrently")

        db.session.add(PaymentAttempt(
            payment_id=payment.id,
            attempt_number=attempt_number,
            status=target,
            error_code=error_code,
            error_message=str(error_message)[:500] if error_message else None,
            gateway_response=gateway_response,
            attempted_at=now,
        ))

        if target == "completed":
            PaymentMethodService.record_usage(payment.payment_method, payment.amount, success=True)

        log = logger.warning if target == "failed" else logger.info
        log("Payment %s: %s -> %s%s", payment.payment_id, current, target,
            f" ({error_code}: {error_message})" if error_code or error_message else "")

        if sync_order:
            from .order_service import OrderService
            OrderService._on_payment_status(payment.order, payment, target)
        return payment

    @staticmethod
    def record_attempt(payment_id, status: str, error_code=None, error_message=None,
                       gateway_response=None, transaction_id=None) -> Payment:
        """Gateway callback / admin entry point: appends an attempt and moves the payment."""
        with atomic(f"recording attempt for payment {payment_id}"):
            payment = PaymentService.get_payment(payment_id)
            PaymentService._transition(
                payment, status,
                error_code=error_code,
                error_message=error_message,
                gateway_response=gateway_response,
                transaction_id=transaction_id,
            )
        return payment

    @staticmethod
    def _apply_gateway_result(payment: Payment, result: GatewayResult) -> Payment:
        if result.status == "completed":
            return PaymentService._transition(
                payment, "completed",
                transaction_id=result.transaction_id,
                gateway_response=result.response,
            )
        if result.status == "processing":
            if result.transaction_id:
                payment.gateway_transaction_id = result.transaction_id
            payment.gateway_response = result.response
            return payment
        return PaymentService._transition(
            payment, "failed",
            error_code=result.error_code or "DECLINED",
            error_message=result.error_message,
            gateway_response=result.response,
        )

    @staticmethod
    def _charge(payment: Payment, details: dict, gateway=None) -> Payment:
        gateway = gateway or get_registry().get(payment.gateway_provider)
        try:
            result = gateway.charge(payment, details)
        except requests.RequestException as e:
            logger.warning("Gateway transport error for payment %s: %s", payment.payment_id, e)
            result = GatewayResult(
                status="failed",
                error_code="GATEWAY_ERROR",
                error_message=str(e),
                response={"provider": payment.gateway_provider},
            )
        return PaymentService._apply_gateway_result(payment, result)

    @staticmethod
    def process(payment_id, details: dict | None = None, gateway=None) -> Payment:
        """
        Drives a pending payment with the details the customer submitted.

        - cash_on_delivery: processing then completed in one call (collected on delivery)
        - bank_transfer: stays processing until ``verify_bank_transfer``
        - cards / vodafone_cash: processing, then the gateway's answer
        """
        details = details or {}
        with atomic(f"processing payment {payment_id}"):
            payment = PaymentService.get_payment(payment_id)
            if payment.status != "pending":
                raise InvalidTransition("payment", payment.status, "processing", "payment is not pending")
            if PaymentService.is_expired(payment):
                raise PaymentExpired(payment.payment_id, "processing")

            method = payment.payment_method
            if method == "cash_on_delivery":
                PaymentService._transition(payment, "processing", gateway_response={"method": "cash_on_delivery"})
                PaymentService._transition(
                    payment, "completed",
                    transaction_id=f"COD_{payment.payment_id}",
                    gateway_response={"method": "cash_on_delivery"},
                )

            elif method == "bank_transfer":
                reference = _require_text(details.get("bank_reference"), "bank_reference", 50)
                payment.bank_reference = reference
                PaymentService._transition(
                    payment, "processing", gateway_response={"bank_reference": reference},
                )

            elif method in CARD_METHODS:
                card = validate_card_details(details)
                payment.card_last4 = card["card_last4"]
                payment.card_type = card["card_type"]
                PaymentService._transition(payment, "processing")
                PaymentService._charge(payment, dict(details, card_number=card["card_number"]), gateway)

            elif method == "vodafone_cash":
                phone = re.sub(r"\s", "", str(details.get("phone_number") or ""))
                if not VODAFONE_RE.match(phone):
                    raise ValidationError("Invalid Vodafone Cash number", field="phone_number")
                payment.wallet_number = f"{phone[:3]}****{phone[-4:]}"
                PaymentService._transition(payment, "processing")
                PaymentService._charge(payment, {"phone_number": phone}, gateway)

            else:
                raise ValidationError(f"Unsupported payment method: {method}", field="payment_method")
        return payment

    @staticmethod
    def verify_bank_transfer(payment_id, verified: bool, admin_notes: str | None = None) -> Payment:
        with atomic(f"verifying bank transfer {payment_id}"):
            payment = PaymentService.get_payment(payment_id)
            if payment.payment_method != "bank_transfer":
                raise ValidationError("Payment is not a bank transfer", field="payment_method")
            if payment.status != "processing":
                raise InvalidTransition(
                    "payment", payment.status, "completed" if verified else "failed",
                    "transfer has not been submitted",
                )
            if verified:
                PaymentService._transition(
                    payment, "completed",
                    transaction_id=f"BANK_{payment.bank_reference}",
                    gateway_response={"verified": True, "notes": admin_notes or ""},
                )
            else:
                PaymentService._transition(
                    payment, "failed",
                    error_code="BANK_TRANSFER_REJECTED",
                    error_message=admin_notes or "Bank transfer could not be verified",
                    gateway_response={"verified": False, "notes": admin_notes or ""},
                )
        return payment

    @staticmethod
    def cancel(payment_id, reason: str | None = None) -> Payment:
        with atomic(f"cancelling payment {payment_id}"):
            payment = PaymentService.get_payment(payment_id)
            PaymentService._transition(
                payment, "cancelled", error_code="CANCELLED", error_message=reason or "Cancelled",
            )
        return payment

    @staticmethod
    def _void_uncollected(payment: Payment, reason: str | None = None) -> Payment:
        """
        Cash on delivery completes before any money moves. When its order is
        cancelled before delivery there is nothing to refund, so the payment is
        voided instead. Not reachable through ``record_attempt``.
        """
        if payment.payment_method != "cash_on_delivery":
            raise InvalidTransition("payment", payment.status, "cancelled", "only cash on delivery can be voided")
        now = utcnow()
        attempt_number = len(payment.attempts) + 1
        if not compare_and_set(Payment, payment, ["completed"], target="cancelled",
                               criteria=(Payment.amount_refunded == 0,), updated_at=now):
            raise InvalidTransition("payment", payment.status, "cancelled", "payment was modified concurrently")
        db.session.add(PaymentAttempt(
            payment_id=payment.id,
            attempt_number=attempt_number,
            status="cancelled",
            error_code="ORDER_CANCELLED",
            error_message=(reason or "Order cancelled before collection")[:500],
            attempted_at=now,
        ))
        logger.info("Payment %s: uncollected cash on delivery voided", payment.payment_id)
        return payment

    @staticmethod
    def extend_expiration(payment_id, minutes: int) -> Payment:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or not 1 <= minutes <= MAX_EXTENSION_MINUTES:
            raise ValidationError(
                f"minutes must be an integer between 1 and {MAX_EXTENSION_MINUTES}", field="minutes"
            )
        with atomic(f"extending payment {payment_id}"):
            payment = PaymentService.get_payment(payment_id)
            if payment.status != "pending":
                raise InvalidTransition("payment", payment.status, "pending", "only pending payments can be extended")
            now = utcnow()
            base = max(payment.expires_at or now, now)
            if not compare_and_set(Payment, payment, ["pending"], expires_at=base + timedelta(minutes=minutes),
                                   updated_at=now):
                raise InvalidTransition("payment", "pending", "pending", "payment was modified concurrently")
        logger.info("Payment %s expiration extended by %s minutes", payment.payment_id, minutes)
        return payment

    # =========================================================
    # Refund ledger
    # =========================================================
    @staticmethod
    def _ledger_status(payment: Payment, refunded: Decimal) -> str:
        if refunded <= ZERO:
            return "completed"
        if refunded >= quantize(payment.amount):
            return "refunded"
        return "partially_refunded"

    @staticmethod
    def _mirror_to_order(payment: Payment) -> None:
        order = payment.order
        if order is not None and order.payment_status in ("paid", "partially_refunded", "refunded"):
            order.payment_status = "paid" if payment.status == "completed" else payment.status

    @staticmethod
    def _refund(payment: Payment, amount, reason: str, gateway_refund_id: str | None = None,
                ceiling=None, gateway=None) -> PaymentRefund:
        if payment.status not in REFUNDABLE_STATUSES:
            raise InvalidTransition("payment", payment.status, "refunded", "only completed payments can be refunded")

        method = PaymentMethod.query.filter_by(name=payment.payment_method).first()
        if method is not None and not method.supports_refunds:
            raise ValidationError(f"{method.display_name_en} does not support refunds", field="payment_method")

        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Refund amount must be greater than zero", field="amount")
        reason = _require_text(reason, "reason", 200)

        payment_amount = quantize(payment.amount)
        committed = quantize(payment.amount_refunded or 0)
        limit = payment_amount if ceiling is None else min(payment_amount, quantize(ceiling))
        if committed + amount > limit:
            raise RefundExceedsBalance(amount, quantize(max(limit - committed, ZERO)))

        new_total = committed + amount
        if new_total < payment_amount and method is not None and not method.supports_partial_refunds:
            raise ValidationError(
                f"{method.display_name_en} only supports full refunds", field="amount"
            )

        current = payment.status
        target = PaymentService._ledger_status(payment, new_total)
        now = utcnow()
        won = compare_and_set(
            Payment, payment, [current], target=target,
            criteria=(Payment.amount_refunded == committed,),
            amount_refunded=new_total,
            updated_at=now,
        )
        if not won:
            raise InvalidTransition("payment", current, target, "payment was modified concurrently")

        refund = PaymentRefund(
            payment_id=payment.id,
            refund_id=generate_refund_id(),
            amount=amount,
            reason=reason,
            status="pending",
        )
        db.session.add(refund)
        db.session.flush()
        logger.info("Refund %s of %s opened on payment %s (%s -> %s)",
                    refund.refund_id, amount, payment.payment_id, current, target)

        if gateway_refund_id:
            refund.status = "completed"
            refund.gateway_refund_id = gateway_refund_id
            refund.processed_at = now
        else:
            gateway = gateway or get_registry().get(payment.gateway_provider)
            try:
                result = gateway.refund(payment, refund)
            except requests.RequestException as e:
                result = GatewayResult(status="failed", error_code="GATEWAY_ERROR", error_message=str(e))
            PaymentService._settle_refund(payment, refund, result.status, result.transaction_id)
            if result.status == "failed":
                logger.warning("Gateway declined refund %s: %s %s",
                               refund.refund_id, result.error_code or "", result.error_message or "")

        PaymentService._mirror_to_order(payment)
        return refund

    @staticmethod
    def _settle_refund(payment: Payment, refund: PaymentRefund, status: str,
                       gateway_refund_id: str | None = None) -> None:
        if status not in ("processing", "completed", "failed"):
            raise ValidationError(f"Unknown refund status: {status}", field="status")
        if refund.status not in OPEN_REFUND_STATUSES:
            raise InvalidTransition("refund", refund.status, status, "refund is already settled")

        if gateway_refund_id:
            refund.gateway_refund_id = gateway_refund_id
        if status == "processing":
            refund.status = "processing"
            return

        refund.processed_at = utcnow()
        if status == "completed":
            refund.status = "completed"
            logger.info("Refund %s completed", refund.refund_id)
            return

        # failed: give the amount back to the refundable balance
        refund.status = "failed"
        current = payment.status
        committed = quantize(payment.amount_refunded or 0)
        remaining = quantize(committed - Decimal(str(refund.amount)))
        target = PaymentService._ledger_status(payment, remaining)
        won = compare_and_set(
            Payment, payment, [current], target=target,
            criteria=(Payment.amount_refunded == committed,),
            amount_refunded=remaining,
            updated_at=utcnow(),
        )
        if not won:
            raise InvalidTransition("payment", current, target, "payment was modified concurrently")
        logger.warning("Refund %s failed; payment %s back to %s", refund.refund_id, payment.payment_id, target)

    @staticmethod
    def refund(payment_id, amount, reason: str, gateway_refund_id: str | None = None) -> PaymentRefund:
        with atomic(f"refunding payment {payment_id}"):
            payment = PaymentService.get_payment(payment_id)
            refund = PaymentService._refund(payment, amount, reason, gateway_refund_id=gateway_refund_id)
        return refund

    @staticmethod
    def record_refund_result(payment_id, refund_id: str, status: str,
                             gateway_refund_id: str | None = None) -> PaymentRefund:
        """Gateway webhook for refunds that settle asynchronously."""
        with atomic(f"settling refund {refund_id}"):
            payment = PaymentService.get_payment(payment_id)
            refund = db.session.execute(
                select(PaymentRefund).where(
                    PaymentRefund.payment_id == payment.id,
                    PaymentRefund.refund_id == refund_id,
                )
            ).scalar_one_or_none()
            if refund is None:
                raise NotFound("refund", refund_id)
            PaymentService._settle_refund(payment, refund, status, gateway_refund_id)
            PaymentService._mirror_to_order(payment)
        return refund
