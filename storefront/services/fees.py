# storefront/services/fees.py
import logging
from decimal import Decimal

from ..errors import AmountOutOfRange, ValidationError
from ..utils.money import ZERO, quantize, to_money

logger = logging.getLogger(__name__)


class FeeCalculator:
    """Fixed + percentage fees per payment method, and amount bounds."""

    @staticmethod
    def calculate_fees(method, amount, currency: str) -> Decimal:
        """
        ``fixed_fee + amount * percentage_fee / 100``, rounded to 2 places.

        No FX conversion is done: when the fee currency differs from the
        payment currency the fixed fee is taken at face value.
        """
        amount = to_money(amount)
        fixed = quantize(method.fixed_fee or 0)
        percentage = Decimal(str(method.percentage_fee or 0))

        if fixed and (method.fee_currency or "").upper() != (currency or "").upper():
            logger.warning(
                "Fixed fee for %s is in %s but payment is in %s; applying face value",
                method.name, method.fee_currency, currency,
            )

        fee = fixed + amount * percentage / Decimal("100")
        return quantize(fee)

    @staticmethod
    def validate_amount(method, amount, currency: str = "") -> Decimal:
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Amount must be greater than zero", field="amount")
        min_amount = quantize(method.min_amount or 0)
        max_amount = quantize(method.max_amount or 0)
        if amount < min_amount or amount > max_amount:
            raise AmountOutOfRange(amount, min_amount, max_amount, currency)
        return amount

    @staticmethod
    def fee_breakdown(method, amount, currency: str) -> dict:
        """What gets stored on the payment; total_fees is always the sum of the parts."""
        gateway_fee = FeeCalculator.calculate_fees(method, amount, currency)
        processing_fee = ZERO
        return {
            "gateway_fee": gateway_fee,
            "processing_fee": processing_fee,
            "total_fees": quantize(gateway_fee + processing_fee),
        }
