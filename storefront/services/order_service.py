# storefront/services/order_service.py
"""
Order lifecycle.

    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed -> cancelled

Cancel vs refund:
- ``cancel`` is pre-fulfilment. Status becomes ``cancelled``, stock goes
  back, open payments are cancelled, a captured one is refunded in full and
  an uncollected cash on delivery payment is voided.
- ``refund`` is post-fulfilment (processing or later). Status stays at its
  fulfilment stage; stock goes back, the linked payment carries the refund
  and ``payment_status`` becomes refunded / partially_refunded.

Either way stock is released once: the ``stock_released`` flag is flipped by
the same conditional UPDATE that authorises the release.
If the gateway declines the refund, RefundFailed rolls the whole operation
back, stock release included.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_, select

from ..errors import InvalidTransition, ItemUnavailable, NotFound, RefundFailed, ValidationError
from ..models import db, Customer, Order, OrderItem, Product
from ..models.order import CANCELLABLE_STATUSES, ORDER_STATUSES, PAYMENT_METHODS, REFUNDABLE_STATUSES
from ..utils.clock import utcnow
from ..utils.identifiers import generate_order_number
from ..utils.money import ZERO, quantize
from .customer_ledger import CustomerLedger
from .payment_methods import PaymentMethodService
from .payment_service import PaymentService, REFUNDABLE_STATUSES as CAPTURED_PAYMENT_STATUSES
from .stock_ledger import StockLedger
from .transitions import atomic, compare_and_set

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}
TIMESTAMP_FIELDS = {
    "confirmed": "confirmed_at",
    "processing": "processing_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
}
SHIPPING_FIELDS = ("first_name", "last_name", "email", "phone", "address", "city", "postal_code", "country")
MAX_LINES = 50


# =========================================================
# Pricing
# =========================================================
@dataclass
class PricingPolicy:
    shipping_flat_rate: Decimal = Decimal("0")
    free_shipping_threshold: Decimal | None = None
    tax_rate: Decimal = Decimal("0")  # percent

    @classmethod
    def from_config(cls, config) -> "PricingPolicy":
        threshold = config.get("FREE_SHIPPING_THRESHOLD")
        return cls(
            shipping_flat_rate=quantize(config.get("SHIPPING_FLAT_RATE") or 0),
            free_shipping_threshold=quantize(threshold) if threshold is not None else None,
            tax_rate=Decimal(str(config.get("TAX_RATE") or 0)),
        )


def derive_totals(lines, policy: PricingPolicy) -> dict:
    """``lines`` are ``(price, quantity)`` pairs. Returns subtotal, shipping_cost, tax and total."""
    subtotal = quantize(sum((quantize(price) * qty for price, qty in lines), ZERO))
    if policy.free_shipping_threshold is not None and subtotal >= policy.free_shipping_threshold:
        shipping = ZERO
    else:
        shipping = quantize(policy.shipping_flat_rate)
    tax = quantize(subtotal * policy.tax_rate / Decimal("100"))
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping,
        "tax": tax,
        "total": quantize(subtotal + shipping + tax),
    }


def check_order_invariants(order: Order) -> None:
    """Raises ValidationError when line items and totals don't add up."""
    if not order.items:
        raise ValidationError("Order must contain at least one item", field="items")
    subtotal = ZERO
    for item in order.items:
        if item.quantity is None or item.quantity < 1:
            raise ValidationError("Item quantity must be at least 1", field="quantity")
        line = quantize(quantize(item.price) * item.quantity)
        if quantize(item.subtotal) != line:
            raise ValidationError(f"Line subtotal mismatch for product {item.product_id}", field="items")
        subtotal += line
    if quantize(order.subtotal) != quantize(subtotal):
        raise ValidationError("Order subtotal does not match its items", field="subtotal")
    expected_total = quantize(order.subtotal) + quantize(order.shipping_cost) + quantize(order.tax)
    if quantize(order.total) != expected_total:
        raise ValidationError("Order total does not match subtotal + shipping + tax", field="total")


def _merge_items(items) -> "OrderedDict[int, int]":
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Order must contain at least one item", field="items")
    if len(items) > MAX_LINES:
        raise ValidationError(f"Order cannot contain more than {MAX_LINES} lines", field="items")

    merged: "OrderedDict[int, int]" = OrderedDict()
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", field="items")
        product_id = raw.get("product_id")
        quantity = raw.get("quantity", 1)
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer", field="product_id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity must be a positive integer", field="quantity")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


class OrderService:

    # =========================================================
    # Predicates / lookups
    # =========================================================
    @staticmethod
    def can_be_cancelled(order: Order) -> bool:
        return order.can_be_cancelled()

    @staticmethod
    def can_be_refunded(order: Order) -> bool:
        return order.can_be_refunded()

    @staticmethod
    def get_order(order_ref) -> Order:
        if isinstance(order_ref, Order):
            return order_ref
        if isinstance(order_ref, int) or str(order_ref).isdigit():
            order = db.session.get(Order, int(order_ref))
        else:
            order = Order.query.filter_by(order_number=str(order_ref)).first()
        if order is None:
            raise NotFound("order", order_ref)
        return order

    @staticmethod
    def list_orders(filters: dict | None = None, page: int = 1, per_page: int = 20):
        filters = filters or {}
        q = Order.query
        if filters.get("status"):
            q = q.filter(Order.status == filters["status"])
        if filters.get("payment_status"):
            q = q.filter(Order.payment_status == filters["payment_status"])
        if filters.get("payment_method"):
            q = q.filter(Order.payment_method == filters["payment_method"])
        if filters.get("customer_id"):
            q = q.filter(Order.customer_id == filters["customer_id"])
        if filters.get("search"):
            term = f"%{filters['search'].strip()}%"
            q = q.filter(or_(Order.order_number.ilike(term), Order.email.ilike(term)))
        if filters.get("start_date"):
            q = q.filter(Order.created_at >= filters["start_date"])
        if filters.get("end_date"):
            q = q.filter(Order.created_at <= filters["end_date"])
        q = q.order_by(Order.created_at.desc(), Order.id.desc())
        return q.paginate(page=page, per_page=per_page, error_out=False)

    # =========================================================
    # Checkout
    # =========================================================
    @staticmethod
    def create_order(customer_id: int, items, payment_method: str, shipping: dict | None = None,
                     currency: str | None = None, notes: str | None = None) -> Order:
        """
        Turns a cart into a pending order.

        Availability is checked first (ItemUnavailable); the stock is then taken
        with conditional decrements (InsufficientStock if another checkout got
        there first). Everything happens in one transaction.
        """
        if isinstance(customer_id, bool) or not isinstance(customer_id, int):
            raise ValidationError("customer_id must be an integer", field="customer_id")
        lines = _merge_items(items)

        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method}", field="payment_method")
        PaymentMethodService.get_by_name(payment_method)

        currency = (currency or current_app.config["DEFAULT_CURRENCY"]).upper()
        if currency not in current_app.config["ALLOWED_CURRENCIES"]:
            raise ValidationError(f"Unsupported currency: {currency}", field="currency")

        with atomic(f"creating order for customer {customer_id}"):
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise NotFound("customer", customer_id)

            products = {
                p.id: p for p in db.session.execute(
                    select(Product).where(Product.id.in_(list(lines)))
                ).scalars()
            }
            order_items = []
            for product_id, quantity in lines.items():
                product = products.get(product_id)
                if product is None:
                    raise NotFound("product", product_id)
                if not product.is_active:
                    raise ValidationError(f"Product {product_id} is not available for sale", field="product_id")
                if product.stock < quantity:
                    raise ItemUnavailable(product_id, quantity, product.stock)
                price = quantize(product.price)
                order_items.append(OrderItem(
                    product_id=product.id,
                    product_name=product.name_en,
                    product_name_ar=product.name_ar,
                    product_image=product.image_url,
                    price=price,
                    quantity=quantity,
                    subtotal=quantize(price * quantity),
                ))

            totals = derive_totals(
                [(i.price, i.quantity) for i in order_items],
                PricingPolicy.from_config(current_app.config),
            )

            StockLedger.reserve_many(lines.items())

            shipping = shipping or {}
            contact = {
                "first_name": customer.first_name,
                "last_name": customer.last_name,
                "email": customer.email,
                "phone": customer.phone or "",
            }
            order = Order(
                order_number=generate_order_number(),
                customer_id=customer.id,
                currency=currency,
                payment_method=payment_method,
                payment_status="pending",
                status="pending",
                customer_notes=(notes or "").strip()[:1000],
                items=order_items,
                **totals,
            )
            for field in SHIPPING_FIELDS:
                value = shipping.get(field) or contact.get(field)
                if value:
                    setattr(order, field, str(value).strip())
            check_order_invariants(order)
            db.session.add(order)

        logger.info("Order %s created: %s items, total %s %s",
                    order.order_number, order.item_count, order.total, order.currency)
        return order

    # =========================================================
    # Fulfilment transitions
    # =========================================================
    @staticmethod
    def _transition(order: Order, target: str, **values) -> Order:
        current = order.status
        if target not in TRANSITIONS:
            raise ValidationError(f"Unknown order status: {target}", field="status")
        if target not in TRANSITIONS[current]:
            raise InvalidTransition("order", current, target)
        now = utcnow()
        if target in TIMESTAMP_FIELDS:
            values.setdefault(TIMESTAMP_FIELDS[target], now)
        values["updated_at"] = now
        if not compare_and_set(Order, order, [current], target=target, **values):
            raise InvalidTransition("order", current, target, "order was modified concurrently")
        logger.info("Order %s: %s -> %s", order.order_number, current, target)
        return order

    @staticmethod
    def confirm(order_ref) -> Order:
        with atomic(f"confirming order {order_ref}"):
            order = OrderService._transition(OrderService.get_order(order_ref), "confirmed")
        return order

    @staticmethod
    def mark_processing(order_ref) -> Order:
        with atomic(f"processing order {order_ref}"):
            order = OrderService._transition(OrderService.get_order(order_ref), "processing")
        return order

    @staticmethod
    def ship(order_ref, tracking_number: str) -> Order:
        tracking = (tracking_number or "").strip() if isinstance(tracking_number, str) else ""
        if not tracking or len(tracking) > 100:
            raise ValidationError("tracking_number is required (max 100 characters)", field="tracking_number")
        with atomic(f"shipping order {order_ref}"):
            order = OrderService._transition(
                OrderService.get_order(order_ref), "shipped", tracking_number=tracking,
            )
        return order

    @staticmethod
    def deliver(order_ref) -> Order:
        """Delivered is the completed state: the customer ledger is credited here, once."""
        with atomic(f"delivering order {order_ref}"):
            order = OrderService._transition(OrderService.get_order(order_ref), "delivered")
            if order.payment_method == "cash_on_delivery" and order.payment_status == "pending":
                order.payment_status = "paid"
            if order.customer_id:
                CustomerLedger.record_completed_order(order.customer_id, order.total)
        return order

    @staticmethod
    def update_status(order_ref, status: str, tracking_number: str | None = None,
                      reason: str | None = None) -> Order:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status: {status}", field="status")
        if status == "pending":
            order = OrderService.get_order(order_ref)
            raise InvalidTransition("order", order.status, status)
        handlers = {
            "confirmed": lambda: OrderService.confirm(order_ref),
            "processing": lambda: OrderService.mark_processing(order_ref),
            "shipped": lambda: OrderService.ship(order_ref, tracking_number),
            "delivered": lambda: OrderService.deliver(order_ref),
            "cancelled": lambda: OrderService.cancel(order_ref, reason),
        }
        return handlers[status]()

    # =========================================================
    # Cancel / refund
    # =========================================================
    @staticmethod
    def _append_note(order: Order, note: str) -> None:
        stamp = utcnow().strftime("%Y-%m-%d %H:%M")
        line = f"[{stamp}] {note}"
        order.admin_notes = f"{order.admin_notes}\n{line}" if order.admin_notes else line

    @staticmethod
    def _release_stock(order: Order) -> None:
        StockLedger.release_many((i.product_id, i.quantity) for i in order.items)

    @staticmethod
    def _refund_payment(order: Order, payment, amount, reason: str):
        """Refunds against the order total; a declined refund aborts the whole order operation."""
        refund = PaymentService._refund(payment, amount, reason, ceiling=order.total)
        if refund.status == "failed":
            raise RefundFailed(payment.payment_id)
        return refund

    @staticmethod
    def _cancel(order: Order, reason: str | None = None) -> Order:
        current = order.status
        now = utcnow()
        won = compare_and_set(
            Order, order, CANCELLABLE_STATUSES, target="cancelled",
            criteria=(Order.stock_released.is_(False),),
            stock_released=True,
            cancelled_at=now,
            updated_at=now,
        )
        if not won:
            raise InvalidTransition(
                "order", order.status, "cancelled",
                "stock already released" if order.stock_released else None,
            )

        OrderService._release_stock(order)
        OrderService._append_note(order, f"Cancelled: {reason}" if reason else "Order cancelled")

        refunded = False
        for payment in order.payments:
            if payment.status in ("pending", "processing"):
                PaymentService._transition(
                    payment, "cancelled",
                    error_code="ORDER_CANCELLED",
                    error_message=reason or "Order cancelled",
                    sync_order=False,
                )
            elif payment.status in CAPTURED_PAYMENT_STATUSES and order.payment_status in ("paid", "partially_refunded"):
                remaining = PaymentService.refundable_amount(payment)
                if remaining > ZERO:
                    OrderService._refund_payment(order, payment, remaining, reason or "Order cancelled")
                    refunded = True
            elif payment.status == "completed" and payment.payment_method == "cash_on_delivery":
                # nothing was collected yet
                PaymentService._void_uncollected(payment, reason)

        if not refunded and order.payment_status == "pending":
            order.payment_status = "cancelled"
        logger.info("Order %s cancelled (was %s)", order.order_number, current)
        return order

    @staticmethod
    def cancel(order_ref, reason: str | None = None) -> Order:
        with atomic(f"cancelling order {order_ref}"):
            order = OrderService._cancel(OrderService.get_order(order_ref), reason)
        return order

    @staticmethod
    def refund(order_ref, reason: str, amount=None) -> Order:
        """
        Post-fulfilment refund. Order status is left where it is; the money
        side lives on the payment's refund ledger, with ``order.total`` as the
        ceiling. Stock is released exactly as a cancel would.
        """
        with atomic(f"refunding order {order_ref}"):
            order = OrderService.get_order(order_ref)
            if not order.can_be_refunded():
                raise InvalidTransition(
                    "order", order.status, "refunded",
                    "only processing, shipped or delivered orders with a captured payment can be refunded",
                )
            payment = next(
                (p for p in reversed(order.payments) if p.status in CAPTURED_PAYMENT_STATUSES),
                None,
            )
            if payment is None:
                raise InvalidTransition("order", order.status, "refunded", "order has no captured payment")
            refund_amount = PaymentService.refundable_amount(payment) if amount is None else amount

            current = order.status
            now = utcnow()
            won = compare_and_set(
                Order, order, REFUNDABLE_STATUSES,
                criteria=(Order.stock_released.is_(False),),
                stock_released=True,
                refunded_at=now,
                updated_at=now,
            )
            if not won:
                raise InvalidTransition("order", order.status, "refunded", "order was already refunded or changed")

            OrderService._release_stock(order)
            OrderService._refund_payment(order, payment, refund_amount, reason)
            OrderService._append_note(order, f"Refunded: {reason}")

        logger.info("Order %s refunded at stage %s; payment status %s",
                    order.order_number, current, order.payment_status)
        return order

    @staticmethod
    def add_admin_note(order_ref, note: str) -> Order:
        text = (note or "").strip() if isinstance(note, str) else ""
        if not text:
            raise ValidationError("note is required", field="note")
        with atomic(f"adding note to order {order_ref}"):
            order = OrderService.get_order(order_ref)
            OrderService._append_note(order, text[:1000])
        return order

    # =========================================================
    # Payment side effects
    # =========================================================
    @staticmethod
    def _on_payment_status(order: Order, payment, status: str) -> None:
        """Called inside the payment's transaction whenever an attempt moves it."""
        if order is None:
            return
        if status == "completed":
            if order.status == "pending":
                OrderService._transition(order, "confirmed")
            # cash on delivery is only paid once it is collected
            if payment.payment_method != "cash_on_delivery" and order.payment_status in ("pending", "failed"):
                order.payment_status = "paid"
        elif status in ("failed", "cancelled"):
            if order.can_be_cancelled():
                OrderService._cancel(order, f"payment {payment.payment_id} {status}")
            if order.payment_status in ("pending", "cancelled"):
                order.payment_status = status
