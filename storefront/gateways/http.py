"""
JSON over HTTP gateway (Paymob/Fawry style hosted API behind one endpoint).

Transport failures are turned into a failed GatewayResult so the payment
keeps its history; they never escape as exceptions.
"""

import logging
from typing import Any, Dict

import requests

from .base import GatewayResult, PaymentGateway

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "approved": "completed",
    "succeeded": "completed",
    "success": "completed",
    "completed": "completed",
    "pending": "processing",
    "processing": "processing",
}


class HttpGateway(PaymentGateway):

    def __init__(self, name: str, base_url: str, token: str = "", timeout: int = 30):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self._setup_session(token)

    def _setup_session(self, token: str):
        """Default headers for every call"""
        self.session.headers.update({
            "User-Agent": f"MaisonDarin-Gateway/{self.name}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _post(self, path: str, payload: Dict[str, Any]) -> GatewayResult:
        try:
            response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.warning("Gateway %s call to %s failed: %s", self.name, path, e)
            return GatewayResult(
                status="failed",
                error_code="GATEWAY_ERROR",
                error_message=str(e),
                response={"provider": self.name},
            )
        except ValueError:
            logger.warning("Gateway %s returned a non JSON body for %s", self.name, path)
            return GatewayResult(
                status="failed",
                error_code="GATEWAY_BAD_RESPONSE",
                error_message="Gateway returned an invalid response",
                response={"provider": self.name},
            )

        status = STATUS_MAP.get(str(data.get("status", "")).lower(), "failed")
        return GatewayResult(
            status=status,
            transaction_id=data.get("transaction_id") or data.get("id"),
            error_code=None if status != "failed" else (data.get("error_code") or "DECLINED"),
            error_message=None if status != "failed" else (data.get("message") or "Payment declined"),
            response=data,
        )

    def charge(self, payment, details: Dict[str, Any]) -> GatewayResult:
        payload = {
            "reference": payment.payment_id,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "method": payment.payment_method,
            "source": dict(details),
        }
        return self._post("/charges", payload)

    def refund(self, payment, refund) -> GatewayResult:
        payload = {
            "transaction_id": payment.gateway_transaction_id,
            "reference": refund.refund_id,
            "amount": str(refund.amount),
            "currency": payment.currency,
            "reason": refund.reason,
        }
        return self._post("/refunds", payload)
