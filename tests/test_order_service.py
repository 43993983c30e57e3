"""Tests for the order lifecycle: checkout, fulfilment, cancel and refund."""

import re
from decimal import Decimal

import pytest

from storefront.errors import InvalidTransition, ItemUnavailable, NotFound, RefundFailed, ValidationError
from storefront.gateways import SimulatedGateway
from storefront.models import db, Customer, Order, OrderItem
from storefront.services import OrderService, PaymentService
from storefront.services.order_service import PricingPolicy, check_order_invariants, derive_totals

from tests.helpers import DECLINING_REFUNDS, stock_of


class TestPricing:
    def test_derive_totals(self):
        policy = PricingPolicy(shipping_flat_rate=Decimal("50"), tax_rate=Decimal("0"))
        totals = derive_totals([(Decimal("100.00"), 2), (Decimal("200.00"), 1)], policy)
        assert totals == {
            "subtotal": Decimal("400.00"),
            "shipping_cost": Decimal("50.00"),
            "tax": Decimal("0.00"),
            "total": Decimal("450.00"),
        }

    def test_free_shipping_and_tax(self):
        policy = PricingPolicy(
            shipping_flat_rate=Decimal("50"),
            free_shipping_threshold=Decimal("300"),
            tax_rate=Decimal("14"),
        )
        totals = derive_totals([(Decimal("100.00"), 4)], policy)
        assert totals["shipping_cost"] == Decimal("0.00")
        assert totals["tax"] == Decimal("56.00")
        assert totals["total"] == Decimal("456.00")

    def test_invariant_check_catches_bad_total(self):
        order = Order(
            subtotal=Decimal("100.00"), shipping_cost=Decimal("50.00"), tax=Decimal("0.00"),
            total=Decimal("140.00"),
            items=[OrderItem(product_id=1, product_name="x", price=Decimal("100.00"),
                             quantity=1, subtotal=Decimal("100.00"))],
        )
        with pytest.raises(ValidationError):
            check_order_invariants(order)


class TestCreateOrder:
    def test_totals_and_stock(self, place_order, products):
        order = place_order([("rose", 2), ("amber", 1)])

        assert order.subtotal == Decimal("400.00")
        assert order.shipping_cost == Decimal("50.00")
        assert order.tax == Decimal("0.00")
        assert order.total == Decimal("450.00")
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert re.fullmatch(r"MD-\d{8}-\d{3}", order.order_number)
        assert [(i.product_name, i.quantity, i.subtotal) for i in order.items] == [
            ("Rose Absolue", 2, Decimal("200.00")),
            ("Amber Nights", 1, Decimal("200.00")),
        ]
        assert stock_of(products["rose"]) == 8
        assert stock_of(products["amber"]) == 4

    def test_shipping_defaults_to_customer_contact(self, place_order):
        order = place_order([("rose", 1)], shipping={"address": "12 Tahrir St", "city": "Cairo"})
        assert order.email == "layla@example.com"
        assert order.customer_name == "Layla Hassan"
        assert order.city == "Cairo"

    def test_duplicate_lines_are_merged(self, place_order, products):
        order = place_order([("rose", 1), ("rose", 2)])
        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert stock_of(products["rose"]) == 7

    def test_tax_and_free_shipping_from_config(self, app, place_order):
        app.config["TAX_RATE"] = Decimal("14")
        app.config["FREE_SHIPPING_THRESHOLD"] = Decimal("300")

        order = place_order([("rose", 2), ("amber", 1)])
        assert order.shipping_cost == Decimal("0.00")
        assert order.tax == Decimal("56.00")
        assert order.total == Decimal("456.00")

    def test_item_unavailable_leaves_stock_untouched(self, place_order, products):
        with pytest.raises(ItemUnavailable) as exc:
            place_order([("rose", 1), ("last", 2)])
        assert exc.value.available == 1
        assert stock_of(products["rose"]) == 10
        assert Order.query.count() == 0

    @pytest.mark.parametrize("items", [[], None, [{"product_id": 1, "quantity": 0}], [{"quantity": 1}]])
    def test_malformed_items(self, customer, products, items):
        with pytest.raises(ValidationError):
            OrderService.create_order(customer, items, "visa")

    def test_unknown_payment_method(self, place_order):
        with pytest.raises(ValidationError):
            place_order([("rose", 1)], method="bitcoin")

    def test_unsupported_currency(self, place_order):
        with pytest.raises(ValidationError):
            place_order([("rose", 1)], currency="GBP")

    def test_unknown_product_and_customer(self, customer, products):
        with pytest.raises(NotFound):
            OrderService.create_order(customer, [{"product_id": 999_999, "quantity": 1}], "visa")
        with pytest.raises(NotFound):
            OrderService.create_order(999_999, [{"product_id": products["rose"], "quantity": 1}], "visa")


class TestFulfilment:
    def test_happy_path_credits_customer_once(self, place_order, customer):
        order = place_order([("rose", 2), ("amber", 1)], method="cash_on_delivery")

        OrderService.confirm(order.id)
        OrderService.mark_processing(order.id)
        OrderService.ship(order.id, "EG123456789")
        OrderService.deliver(order.id)

        assert order.status == "delivered"
        assert order.tracking_number == "EG123456789"
        assert order.delivered_at is not None
        assert order.payment_status == "paid"

        c = db.session.get(Customer, customer)
        assert c.total_orders == 1
        assert c.total_spent == Decimal("450.00")
        assert c.loyalty_points == 450

        with pytest.raises(InvalidTransition):
            OrderService.deliver(order.id)
        db.session.expire_all()
        assert db.session.get(Customer, customer).total_orders == 1

    def test_confirm_twice_is_rejected(self, place_order):
        order = place_order([("rose", 1)])
        OrderService.confirm(order.id)
        with pytest.raises(InvalidTransition):
            OrderService.confirm(order.id)

    def test_cannot_skip_stages(self, place_order):
        order = place_order([("rose", 1)])
        with pytest.raises(InvalidTransition):
            OrderService.ship(order.id, "TRK")

    def test_ship_requires_tracking_number(self, place_order):
        order = place_order([("rose", 1)])
        OrderService.confirm(order.id)
        OrderService.mark_processing(order.id)
        with pytest.raises(ValidationError):
            OrderService.ship(order.id, "  ")

    def test_update_status_dispatch(self, place_order):
        order = place_order([("rose", 1)])
        OrderService.update_status(order.order_number, "confirmed")
        assert order.status == "confirmed"

        with pytest.raises(InvalidTransition):
            OrderService.update_status(order.id, "pending")
        with pytest.raises(ValidationError):
            OrderService.update_status(order.id, "lost")

    def test_get_order_by_number(self, place_order):
        order = place_order([("rose", 1)])
        assert OrderService.get_order(order.order_number).id == order.id
        with pytest.raises(NotFound):
            OrderService.get_order("MD-19990101-001")


class TestCancel:
    def test_cancel_releases_stock_once(self, place_order, products):
        order = place_order([("rose", 2), ("last", 1)])
        assert stock_of(products["last"]) == 0

        OrderService.cancel(order.id, "changed mind")
        assert order.status == "cancelled"
        assert order.stock_released is True
        assert "Cancelled: changed mind" in order.admin_notes
        assert stock_of(products["rose"]) == 10
        assert stock_of(products["last"]) == 1

        with pytest.raises(InvalidTransition):
            OrderService.cancel(order.id, "again")
        assert stock_of(products["rose"]) == 10
        assert stock_of(products["last"]) == 1

    def test_cannot_cancel_after_shipping(self, place_order):
        order = place_order([("rose", 1)])
        OrderService.confirm(order.id)
        OrderService.mark_processing(order.id)
        OrderService.ship(order.id, "TRK1")

        assert OrderService.can_be_cancelled(order) is False
        with pytest.raises(InvalidTransition):
            OrderService.cancel(order.id, "too late")

    def test_cancel_voids_open_payment(self, place_order):
        order = place_order([("rose", 1)])
        payment = PaymentService.initialize(order.id, "visa")

        OrderService.cancel(order.id, "duplicate")
        assert payment.status == "cancelled"
        assert order.payment_status == "cancelled"

    def test_cancel_prepaid_order_refunds_payment(self, paid_order):
        order, payment = paid_order
        assert order.status == "confirmed"
        assert order.payment_status == "paid"

        OrderService.cancel(order.id, "customer request")
        assert order.status == "cancelled"
        assert payment.status == "refunded"
        assert order.payment_status == "refunded"
        assert PaymentService.refundable_amount(payment) == Decimal("0.00")

    def test_declined_refund_keeps_order_open(self, app, paid_order, products):
        order, payment = paid_order
        app.extensions["payment_gateways"].register("paymob", DECLINING_REFUNDS)

        with pytest.raises(RefundFailed):
            OrderService.cancel(order.id, "customer request")

        db.session.expire_all()
        assert order.status == "confirmed"
        assert order.stock_released is False
        assert order.payment_status == "paid"
        assert payment.status == "completed"
        assert stock_of(products["oud"]) == 4

    def test_cancel_voids_uncollected_cash_on_delivery(self, place_order, products):
        order = place_order([("oud", 1)], method="cash_on_delivery")
        payment = PaymentService.initialize(order.id, "cash_on_delivery")
        PaymentService.process(payment.payment_id)
        assert order.status == "confirmed"
        assert payment.status == "completed"

        OrderService.cancel(order.id, "customer unreachable")

        assert order.status == "cancelled"
        assert order.payment_status == "cancelled"
        assert payment.status == "cancelled"
        assert [a.status for a in payment.attempts] == ["processing", "completed", "cancelled"]
        assert payment.refunds == []
        assert PaymentService.refundable_amount(payment) == Decimal("0.00")
        assert stock_of(products["oud"]) == 5


class TestRefund:
    def _ship(self, order):
        OrderService.mark_processing(order.id)
        OrderService.ship(order.id, "EG000111")

    def test_refund_after_shipping(self, paid_order, products):
        order, payment = paid_order
        self._ship(order)
        assert stock_of(products["oud"]) == 4
        assert OrderService.can_be_refunded(order) is True

        OrderService.refund(order.id, "defective")

        assert order.status == "shipped"
        assert order.payment_status == "refunded"
        assert order.stock_released is True
        assert order.refunded_at is not None
        assert "Refunded: defective" in order.admin_notes
        assert payment.status == "refunded"
        assert stock_of(products["oud"]) == 5

    def test_second_refund_rejected_and_stock_released_once(self, paid_order, products):
        order, _ = paid_order
        self._ship(order)
        OrderService.refund(order.id, "defective", amount=Decimal("100"))
        assert order.payment_status == "partially_refunded"

        with pytest.raises(InvalidTransition):
            OrderService.refund(order.id, "again")
        assert stock_of(products["oud"]) == 5

    def test_declined_refund_rolls_back_stock_release(self, app, paid_order, products):
        order, payment = paid_order
        self._ship(order)
        registry = app.extensions["payment_gateways"]
        registry.register("paymob", DECLINING_REFUNDS)

        with pytest.raises(RefundFailed):
            OrderService.refund(order.id, "defective")

        db.session.expire_all()
        assert stock_of(products["oud"]) == 4
        assert order.stock_released is False
        assert order.refunded_at is None
        assert order.payment_status == "paid"
        assert payment.status == "completed"
        assert payment.refunds == []
        assert OrderService.can_be_refunded(order) is True

        registry.register("paymob", SimulatedGateway())
        OrderService.refund(order.id, "defective")
        assert order.payment_status == "refunded"
        assert stock_of(products["oud"]) == 5

    def test_refund_requires_fulfilment_stage(self, paid_order):
        order, _ = paid_order
        assert OrderService.can_be_refunded(order) is False
        with pytest.raises(InvalidTransition):
            OrderService.refund(order.id, "not yet")

    def test_refund_requires_captured_payment(self, place_order):
        order = place_order([("rose", 1)], method="cash_on_delivery")
        OrderService.confirm(order.id)
        OrderService.mark_processing(order.id)
        with pytest.raises(InvalidTransition):
            OrderService.refund(order.id, "nothing collected")


class TestListing:
    def test_filters_and_pagination(self, place_order):
        first = place_order([("rose", 1)])
        place_order([("rose", 1)])
        OrderService.cancel(first.id, "test")

        page = OrderService.list_orders({"status": "cancelled"})
        assert [o.id for o in page.items] == [first.id]

        page = OrderService.list_orders({"search": "layla@"}, page=1, per_page=1)
        assert page.total == 2
        assert len(page.items) == 1

    def test_admin_note(self, place_order):
        order = place_order([("rose", 1)])
        OrderService.add_admin_note(order.id, "gift wrap")
        assert "gift wrap" in order.admin_notes
        with pytest.raises(ValidationError):
            OrderService.add_admin_note(order.id, "")
