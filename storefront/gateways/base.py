"""
Gateway contract.

A gateway answers one call with a single terminal result: the core never
depends on how the provider talks on the wire.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class GatewayResult:
    """Outcome of one gateway interaction"""
    status: str  # completed | processing | failed
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    response: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


class PaymentGateway(ABC):
    """Base class for payment providers"""

    name = "base"

    @abstractmethod
    def charge(self, payment, details: Dict[str, Any]) -> GatewayResult:
        """
        Charges ``payment.amount`` using the method details the customer sent.

        Returns:
            GatewayResult: completed / processing / failed
        """
        pass

    @abstractmethod
    def refund(self, payment, refund) -> GatewayResult:
        """
        Refunds ``refund.amount`` of a captured payment.

        Returns:
            GatewayResult: completed / processing / failed
        """
        pass
