# storefront/blueprints/serializers.py
from ..services.payment_service import PaymentService


def _money(value):
    return float(value) if value is not None else 0.0


def _dt(value):
    return value.isoformat() if value else None


def serialize_item(i):
    return {
        "id": i.id,
        "product_id": i.product_id,
        "product_name": i.product_name,
        "product_name_ar": i.product_name_ar,
        "product_image": i.product_image,
        "price": _money(i.price),
        "quantity": i.quantity,
        "subtotal": _money(i.subtotal),
    }


def serialize_order(o, with_items: bool = True):
    data = {
        "id": o.id,
        "order_number": o.order_number,
        "customer_id": o.customer_id,
        "customer_name": o.customer_name,
        "email": o.email,
        "status": o.status,
        "payment_status": o.payment_status,
        "payment_method": o.payment_method,
        "subtotal": _money(o.subtotal),
        "shipping_cost": _money(o.shipping_cost),
        "tax": _money(o.tax),
        "total": _money(o.total),
        "currency": o.currency,
        "tracking_number": o.tracking_number,
        "can_be_cancelled": o.can_be_cancelled(),
        "can_be_refunded": o.can_be_refunded(),
        "created_at": _dt(o.created_at),
        "confirmed_at": _dt(o.confirmed_at),
        "shipped_at": _dt(o.shipped_at),
        "delivered_at": _dt(o.delivered_at),
        "cancelled_at": _dt(o.cancelled_at),
        "refunded_at": _dt(o.refunded_at),
    }
    if with_items:
        data["items"] = [serialize_item(i) for i in o.items]
        data["shipping"] = {
            "address": o.address,
            "city": o.city,
            "postal_code": o.postal_code,
            "country": o.country,
            "phone": o.phone,
        }
        data["admin_notes"] = o.admin_notes or ""
    return data


def serialize_refund(r):
    return {
        "refund_id": r.refund_id,
        "amount": _money(r.amount),
        "reason": r.reason,
        "status": r.status,
        "gateway_refund_id": r.gateway_refund_id,
        "processed_at": _dt(r.processed_at),
        "created_at": _dt(r.created_at),
    }


def serialize_attempt(a):
    return {
        "attempt_number": a.attempt_number,
        "status": a.status,
        "error_code": a.error_code,
        "error_message": a.error_message,
        "attempted_at": _dt(a.attempted_at),
    }


def serialize_payment(p, with_history: bool = True):
    data = {
        "payment_id": p.payment_id,
        "order_id": p.order_id,
        "customer_id": p.customer_id,
        "amount": _money(p.amount),
        "currency": p.currency,
        "payment_method": p.payment_method,
        "status": p.status,
        "effective_status": PaymentService.effective_status(p),
        "is_expired": PaymentService.is_expired(p),
        "gateway_provider": p.gateway_provider,
        "gateway_transaction_id": p.gateway_transaction_id,
        "card_last4": p.card_last4,
        "card_type": p.card_type,
        "wallet_number": p.wallet_number,
        "bank_reference": p.bank_reference,
        "fees": {
            "gateway_fee": _money(p.gateway_fee),
            "processing_fee": _money(p.processing_fee),
            "total_fees": _money(p.total_fees),
        },
        "net_amount": _money(PaymentService.net_amount(p)),
        "refundable_amount": _money(PaymentService.refundable_amount(p)),
        "initiated_at": _dt(p.initiated_at),
        "completed_at": _dt(p.completed_at),
        "expires_at": _dt(p.expires_at),
    }
    if with_history:
        data["refunds"] = [serialize_refund(r) for r in p.refunds]
        data["attempts"] = [serialize_attempt(a) for a in p.attempts]
    return data


def serialize_method(m, lang: str = "en"):
    return {
        "name": m.name,
        "display_name": m.display_name(lang),
        "description": m.description(lang),
        "instructions": m.instructions(lang),
        "type": m.type,
        "provider": m.provider,
        "supported_currencies": list(m.supported_currencies or []),
        "min_amount": _money(m.min_amount),
        "max_amount": _money(m.max_amount),
        "fees": {
            "fixed_fee": _money(m.fixed_fee),
            "fee_currency": m.fee_currency,
            "percentage_fee": _money(m.percentage_fee),
        },
        "supports_refunds": m.supports_refunds,
        "supports_partial_refunds": m.supports_partial_refunds,
        "timeout_minutes": m.timeout_minutes,
    }


def serialize_money_dict(data: dict) -> dict:
    """Decimals to floats, recursively."""
    out = {}
    for key, value in data.items():
        if isinstance(value, dict):
            out[key] = serialize_money_dict(value)
        elif hasattr(value, "quantize"):
            out[key] = float(value)
        else:
            out[key] = value
    return out
