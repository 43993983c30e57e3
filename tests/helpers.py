"""Shared test data and small helpers."""

from storefront.gateways import GatewayResult, PaymentGateway
from storefront.models import db, Product

CARD = {
    "card_number": "4111111111111111",
    "expiry_date": "12/35",
    "cvv": "123",
    "cardholder_name": "Layla Hassan",
}
DECLINED_CARD = dict(CARD, card_number="4000000000000002")


def stock_of(product_id: int) -> int:
    """Stock as stored, bypassing anything cached in the session."""
    db.session.expire_all()
    return db.session.get(Product, product_id).stock


class StubGateway(PaymentGateway):
    """Gateway answering every call with fixed results, or raising ``error``."""

    name = "stub"

    def __init__(self, charge=None, refund=None, error=None):
        self.charge_result = charge or GatewayResult(status="completed", transaction_id="STUB_TX")
        self.refund_result = refund or GatewayResult(status="completed", transaction_id="STUB_REF")
        self.error = error

    def charge(self, payment, details):
        if self.error:
            raise self.error
        return self.charge_result

    def refund(self, payment, refund):
        if self.error:
            raise self.error
        return self.refund_result


DECLINING_REFUNDS = StubGateway(refund=GatewayResult(
    status="failed", error_code="REFUND_DECLINED", error_message="Issuer refused the refund",
))
