# storefront/services/statistics_service.py
"""Read-only rollups over payments and orders. Nothing here writes."""
import logging

from sqlalchemy import and_, func, or_, select

from ..models import db, Order, Payment, PaymentRefund
from ..models.order import ORDER_STATUSES
from ..utils.clock import utcnow
from ..utils.money import ZERO, quantize

logger = logging.getLogger(__name__)

CAPTURED_PAYMENT_STATUSES = ("completed", "partially_refunded", "refunded")
PAID_ORDER_STATUSES = ("paid", "partially_refunded", "refunded")


def _in_range(column, start=None, end=None):
    clauses = []
    if start is not None:
        clauses.append(column >= start)
    if end is not None:
        clauses.append(column <= end)
    return clauses


def _money(value):
    return quantize(value if value is not None else 0)


class StatisticsService:

    @staticmethod
    def payment_stats(start=None, end=None) -> dict:
        where = _in_range(Payment.created_at, start, end)

        count, total = db.session.execute(
            select(func.count(Payment.id), func.sum(Payment.amount)).where(*where)
        ).one()
        completed_count, completed_amount = db.session.execute(
            select(func.count(Payment.id), func.sum(Payment.amount))
            .where(Payment.status.in_(CAPTURED_PAYMENT_STATUSES), *where)
        ).one()
        # expired pending payments read as failed
        failed = or_(
            Payment.status == "failed",
            and_(Payment.status == "pending", Payment.expires_at < utcnow()),
        )
        failed_count = db.session.execute(
            select(func.count(Payment.id)).where(failed, *where)
        ).scalar_one()
        refunded_amount = db.session.execute(
            select(func.sum(PaymentRefund.amount))
            .join(Payment, PaymentRefund.payment_id == Payment.id)
            .where(PaymentRefund.status == "completed", *where)
        ).scalar_one()

        by_method = {}
        rows = db.session.execute(
            select(Payment.payment_method, func.count(Payment.id), func.sum(Payment.amount))
            .where(*where)
            .group_by(Payment.payment_method)
        ).all()
        for method, method_count, method_total in rows:
            by_method[method] = {"count": method_count, "amount": _money(method_total)}

        total = _money(total)
        return {
            "total_payments": count,
            "total_amount": total,
            "completed_payments": completed_count,
            "completed_amount": _money(completed_amount),
            "failed_payments": failed_count,
            "refunded_amount": _money(refunded_amount),
            "average_amount": quantize(total / count) if count else ZERO,
            "success_rate": round(completed_count / count * 100, 2) if count else 0.0,
            "by_method": by_method,
        }

    @staticmethod
    def order_stats(start=None, end=None) -> dict:
        where = _in_range(Order.created_at, start, end)

        by_status = {status: 0 for status in ORDER_STATUSES}
        for status, status_count in db.session.execute(
            select(Order.status, func.count(Order.id)).where(*where).group_by(Order.status)
        ).all():
            by_status[status] = status_count

        paid_count, revenue = db.session.execute(
            select(func.count(Order.id), func.sum(Order.total))
            .where(Order.payment_status.in_(PAID_ORDER_STATUSES), *where)
        ).one()
        revenue = _money(revenue)

        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "paid_orders": paid_count,
            "revenue": revenue,
            "average_order_value": quantize(revenue / paid_count) if paid_count else ZERO,
        }
