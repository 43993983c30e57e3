"""
In-process gateway used for the internal provider and whenever no HTTP
gateway is configured. Deterministic: approves everything except card
numbers ending in one of ``decline_suffixes``.
"""

import logging
import time
from typing import Any, Dict, Iterable

from .base import GatewayResult, PaymentGateway

logger = logging.getLogger(__name__)


class SimulatedGateway(PaymentGateway):
    name = "simulated"

    def __init__(self, decline_suffixes: Iterable[str] = ("0002",)):
        self.decline_suffixes = tuple(decline_suffixes)

    def charge(self, payment, details: Dict[str, Any]) -> GatewayResult:
        number = str(details.get("card_number") or "").replace(" ", "")
        if number and number.endswith(self.decline_suffixes):
            logger.info("Simulated decline for payment %s", payment.payment_id)
            return GatewayResult(
                status="failed",
                error_code="CARD_DECLINED",
                error_message="Card was declined",
                response={"approved": False, "provider": self.name},
            )

        transaction_id = f"SIM_{int(time.time() * 1000)}_{payment.payment_id}"
        return GatewayResult(
            status="completed",
            transaction_id=transaction_id,
            response={"approved": True, "provider": self.name, "transaction_id": transaction_id},
        )

    def refund(self, payment, refund) -> GatewayResult:
        gateway_refund_id = f"REF_{int(time.time() * 1000)}_{refund.refund_id}"
        return GatewayResult(
            status="completed",
            transaction_id=gateway_refund_id,
            response={"refunded": True, "provider": self.name, "amount": str(refund.amount)},
        )
