from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.models import db, Payment
from storefront.services import OrderService, PaymentService, StatisticsService
from storefront.utils.clock import utcnow

from tests.helpers import DECLINED_CARD


@pytest.fixture
def activity(paid_order, place_order):
    """One partially refunded card payment, one open COD payment, one declined card."""
    _, paid = paid_order
    PaymentService.refund(paid.payment_id, "100", "missing tester")

    cod_order = place_order([("rose", 1)], method="cash_on_delivery")
    PaymentService.initialize(cod_order.id, "cash_on_delivery")

    declined_order = place_order([("amber", 1)])
    declined = PaymentService.initialize(declined_order.id, "visa")
    PaymentService.process(declined.payment_id, DECLINED_CARD)


class TestPaymentStats:
    def test_rollup(self, activity):
        stats = StatisticsService.payment_stats()

        assert stats["total_payments"] == 3
        assert stats["total_amount"] == Decimal("900.00")
        assert stats["completed_payments"] == 1
        assert stats["completed_amount"] == Decimal("500.00")
        assert stats["failed_payments"] == 1
        assert stats["refunded_amount"] == Decimal("100.00")
        assert stats["average_amount"] == Decimal("300.00")
        assert stats["success_rate"] == 33.33
        assert stats["by_method"] == {
            "visa": {"count": 2, "amount": Decimal("750.00")},
            "cash_on_delivery": {"count": 1, "amount": Decimal("150.00")},
        }

    def test_empty_range(self, activity):
        stats = StatisticsService.payment_stats(start=utcnow() + timedelta(days=1))
        assert stats["total_payments"] == 0
        assert stats["total_amount"] == Decimal("0.00")
        assert stats["average_amount"] == Decimal("0.00")
        assert stats["success_rate"] == 0.0
        assert stats["by_method"] == {}

    def test_expired_pending_counts_as_failed(self, activity):
        cod = Payment.query.filter_by(payment_method="cash_on_delivery").one()
        cod.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        stats = StatisticsService.payment_stats()
        assert stats["failed_payments"] == 2
        assert stats["completed_payments"] == 1

    def test_voided_cash_on_delivery_is_not_captured(self, place_order):
        order = place_order([("rose", 1)], method="cash_on_delivery")
        payment = PaymentService.initialize(order.id, "cash_on_delivery")
        PaymentService.process(payment.payment_id)
        OrderService.cancel(order.id, "customer unreachable")

        stats = StatisticsService.payment_stats()
        assert stats["completed_payments"] == 0
        assert stats["completed_amount"] == Decimal("0.00")


class TestOrderStats:
    def test_rollup(self, activity):
        stats = StatisticsService.order_stats()

        assert stats["total_orders"] == 3
        assert stats["by_status"]["confirmed"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["cancelled"] == 1
        assert stats["by_status"]["shipped"] == 0
        assert stats["paid_orders"] == 1
        assert stats["revenue"] == Decimal("500.00")
        assert stats["average_order_value"] == Decimal("500.00")
