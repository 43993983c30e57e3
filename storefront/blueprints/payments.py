# storefront/blueprints/payments.py
from flask import Blueprint, jsonify, request

from ..errors import ValidationError
from ..services import PaymentMethodService, PaymentService
from ._helpers import date_arg, json_body, page_payload, pagination_args
from .serializers import serialize_payment, serialize_refund

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("/")
def list_payments():
    page, per_page = pagination_args()
    filters = {
        "status": request.args.get("status"),
        "payment_method": request.args.get("payment_method"),
        "customer_id": request.args.get("customer_id", type=int),
        "order_id": request.args.get("order_id", type=int),
        "start_date": date_arg("start_date"),
        "end_date": date_arg("end_date"),
        "min_amount": request.args.get("min_amount"),
        "max_amount": request.args.get("max_amount"),
    }
    result = PaymentService.list_payments(filters, page=page, per_page=per_page)
    return jsonify(page_payload(result, [serialize_payment(p, with_history=False) for p in result.items]))


@payments_bp.post("/initialize")
def initialize_payment():
    data = json_body()
    order_id = data.get("order_id")
    if isinstance(order_id, bool) or not isinstance(order_id, int):
        raise ValidationError("order_id must be an integer", field="order_id")
    payment = PaymentService.initialize(
        order_id,
        (data.get("payment_method") or "").strip(),
        amount=data.get("amount"),
        currency=data.get("currency"),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    lang = request.args.get("lang", "en")
    return jsonify({
        "payment": serialize_payment(payment),
        "next_step": PaymentMethodService.next_step(payment, lang),
    }), 201


@payments_bp.get("/<payment_id>")
def get_payment(payment_id):
    return jsonify(serialize_payment(PaymentService.get_payment(payment_id)))


@payments_bp.post("/<payment_id>/process")
def process_payment(payment_id):
    payment = PaymentService.process(payment_id, json_body())
    return jsonify(serialize_payment(payment))


@payments_bp.post("/<payment_id>/attempts")
def record_attempt(payment_id):
    """Gateway callback."""
    data = json_body()
    payment = PaymentService.record_attempt(
        payment_id,
        (data.get("status") or "").strip(),
        error_code=data.get("error_code"),
        error_message=data.get("error_message"),
        gateway_response=data.get("gateway_response"),
        transaction_id=data.get("transaction_id"),
    )
    return jsonify(serialize_payment(payment))


@payments_bp.post("/<payment_id>/cancel")
def cancel_payment(payment_id):
    data = json_body()
    return jsonify(serialize_payment(PaymentService.cancel(payment_id, data.get("reason"))))


@payments_bp.post("/<payment_id>/refunds")
def refund_payment(payment_id):
    data = json_body()
    if data.get("amount") is None:
        raise ValidationError("amount is required", field="amount")
    refund = PaymentService.refund(
        payment_id,
        data.get("amount"),
        data.get("reason"),
        gateway_refund_id=data.get("gateway_refund_id"),
    )
    payment = PaymentService.get_payment(payment_id)
    return jsonify({"refund": serialize_refund(refund), "payment": serialize_payment(payment)}), 201


@payments_bp.post("/<payment_id>/refunds/<refund_id>")
def refund_result(payment_id, refund_id):
    """Gateway callback for refunds settled later."""
    data = json_body()
    refund = PaymentService.record_refund_result(
        payment_id, refund_id, (data.get("status") or "").strip(),
        gateway_refund_id=data.get("gateway_refund_id"),
    )
    return jsonify(serialize_refund(refund))


@payments_bp.post("/<payment_id>/extend")
def extend_payment(payment_id):
    data = json_body()
    payment = PaymentService.extend_expiration(payment_id, data.get("minutes", 30))
    return jsonify(serialize_payment(payment))


@payments_bp.post("/<payment_id>/verify-transfer")
def verify_transfer(payment_id):
    data = json_body()
    verified = data.get("verified")
    if not isinstance(verified, bool):
        raise ValidationError("verified must be true or false", field="verified")
    payment = PaymentService.verify_bank_transfer(payment_id, verified, data.get("admin_notes"))
    return jsonify(serialize_payment(payment))
