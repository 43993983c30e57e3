# storefront/blueprints/payment_methods.py
from flask import Blueprint, jsonify, request

from ..services import FeeCalculator, PaymentMethodService
from ._helpers import json_body
from .serializers import serialize_method

payment_methods_bp = Blueprint("payment_methods", __name__, url_prefix="/api/payment-methods")


@payment_methods_bp.get("/")
def list_methods():
    lang = request.args.get("lang", "en")
    currency = request.args.get("currency")
    methods = PaymentMethodService.get_active(currency.upper() if currency else None)
    return jsonify({"items": [serialize_method(m, lang) for m in methods]})


@payment_methods_bp.get("/<name>")
def get_method(name):
    lang = request.args.get("lang", "en")
    return jsonify(serialize_method(PaymentMethodService.get_by_name(name), lang))


@payment_methods_bp.post("/<name>/fees")
def quote_fees(name):
    """Fee quote for an amount, before the payment is created."""
    data = json_body()
    method = PaymentMethodService.get_by_name(name)
    currency = (data.get("currency") or method.fee_currency).upper()
    amount = FeeCalculator.validate_amount(method, data.get("amount"), currency)
    fees = FeeCalculator.fee_breakdown(method, amount, currency)
    return jsonify({
        "payment_method": method.name,
        "amount": float(amount),
        "currency": currency,
        "gateway_fee": float(fees["gateway_fee"]),
        "processing_fee": float(fees["processing_fee"]),
        "total_fees": float(fees["total_fees"]),
        "total_with_fees": float(amount + fees["total_fees"]),
    })
