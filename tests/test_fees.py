"""Tests for fee calculation and amount bounds."""

from decimal import Decimal

import pytest

from storefront.errors import AmountOutOfRange, ValidationError
from storefront.models import PaymentMethod
from storefront.services import FeeCalculator


@pytest.fixture
def visa(app):
    # fixed 5 EGP + 2.5%, bounds 10..50000
    return PaymentMethod.query.filter_by(name="visa").one()


class TestFeeCalculator:
    def test_fixed_plus_percentage(self, visa):
        assert FeeCalculator.calculate_fees(visa, Decimal("1000"), "EGP") == Decimal("30.00")

    def test_rounds_half_up_to_cents(self, visa):
        # 5 + 99.99 * 2.5% = 7.49975
        assert FeeCalculator.calculate_fees(visa, "99.99", "EGP") == Decimal("7.50")

    def test_fixed_fee_taken_at_face_value_on_currency_mismatch(self, visa):
        assert FeeCalculator.calculate_fees(visa, Decimal("1000"), "USD") == Decimal("30.00")

    def test_method_without_fees(self, app):
        bank = PaymentMethod.query.filter_by(name="bank_transfer").one()
        assert FeeCalculator.calculate_fees(bank, Decimal("2500"), "EGP") == Decimal("0.00")

    def test_breakdown_total_is_sum_of_parts(self, visa):
        fees = FeeCalculator.fee_breakdown(visa, Decimal("500"), "EGP")
        assert fees["gateway_fee"] == Decimal("17.50")
        assert fees["processing_fee"] == Decimal("0.00")
        assert fees["total_fees"] == fees["gateway_fee"] + fees["processing_fee"]

    def test_validate_amount_within_bounds(self, visa):
        assert FeeCalculator.validate_amount(visa, "10") == Decimal("10.00")
        assert FeeCalculator.validate_amount(visa, 50000) == Decimal("50000.00")

    @pytest.mark.parametrize("amount", ["9.99", "50000.01"])
    def test_validate_amount_out_of_range(self, visa, amount):
        with pytest.raises(AmountOutOfRange):
            FeeCalculator.validate_amount(visa, amount, "EGP")

    @pytest.mark.parametrize("amount", [0, "-5", "abc", None, "NaN"])
    def test_validate_amount_malformed(self, visa, amount):
        with pytest.raises(ValidationError):
            FeeCalculator.validate_amount(visa, amount)
