# storefront/blueprints/orders.py
from flask import Blueprint, jsonify, request

from ..services import OrderService, PaymentService
from ..services.payment_service import REFUNDABLE_STATUSES
from ._helpers import date_arg, json_body, page_payload, pagination_args
from .serializers import serialize_order, serialize_payment

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/")
def list_orders():
    page, per_page = pagination_args()
    filters = {
        "status": request.args.get("status"),
        "payment_status": request.args.get("payment_status"),
        "payment_method": request.args.get("payment_method"),
        "customer_id": request.args.get("customer_id", type=int),
        "search": request.args.get("q") or request.args.get("search"),
        "start_date": date_arg("start_date"),
        "end_date": date_arg("end_date"),
    }
    result = OrderService.list_orders(filters, page=page, per_page=per_page)
    return jsonify(page_payload(result, [serialize_order(o, with_items=False) for o in result.items]))


@orders_bp.post("/")
def create_order():
    data = json_body()
    order = OrderService.create_order(
        customer_id=data.get("customer_id"),
        items=data.get("items"),
        payment_method=(data.get("payment_method") or "").strip(),
        shipping=data.get("shipping") if isinstance(data.get("shipping"), dict) else None,
        currency=data.get("currency"),
        notes=data.get("notes"),
    )
    return jsonify(serialize_order(order)), 201


@orders_bp.get("/<order_ref>")
def get_order(order_ref):
    return jsonify(serialize_order(OrderService.get_order(order_ref)))


@orders_bp.post("/<order_ref>/confirm")
def confirm_order(order_ref):
    return jsonify(serialize_order(OrderService.confirm(order_ref)))


@orders_bp.route("/<order_ref>/status", methods=["PUT", "PATCH"])
def update_status(order_ref):
    data = json_body()
    order = OrderService.update_status(
        order_ref,
        (data.get("status") or "").strip(),
        tracking_number=data.get("tracking_number"),
        reason=data.get("reason"),
    )
    return jsonify(serialize_order(order))


@orders_bp.post("/<order_ref>/cancel")
def cancel_order(order_ref):
    data = json_body()
    return jsonify(serialize_order(OrderService.cancel(order_ref, data.get("reason"))))


@orders_bp.post("/<order_ref>/refund")
def refund_order(order_ref):
    data = json_body()
    order = OrderService.refund(order_ref, data.get("reason"), amount=data.get("amount"))
    return jsonify(serialize_order(order))


@orders_bp.get("/<order_ref>/refund-eligibility")
def refund_eligibility(order_ref):
    order = OrderService.get_order(order_ref)
    captured = [p for p in order.payments if p.status in REFUNDABLE_STATUSES]
    refundable = sum(PaymentService.refundable_amount(p) for p in captured)
    return jsonify({
        "order_number": order.order_number,
        "can_be_cancelled": OrderService.can_be_cancelled(order),
        "can_be_refunded": OrderService.can_be_refunded(order),
        "refundable_amount": float(refundable),
    })


@orders_bp.post("/<order_ref>/notes")
def add_note(order_ref):
    data = json_body()
    order = OrderService.add_admin_note(order_ref, data.get("note"))
    return jsonify(serialize_order(order))


@orders_bp.get("/<order_ref>/payments")
def order_payments(order_ref):
    order = OrderService.get_order(order_ref)
    return jsonify({"items": [serialize_payment(p) for p in PaymentService.payments_for_order(order.id)]})
