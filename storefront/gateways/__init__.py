# storefront/gateways/__init__.py
import logging

from flask import current_app

from .base import GatewayResult, PaymentGateway
from .http import HttpGateway
from .simulated import SimulatedGateway

logger = logging.getLogger(__name__)

EXTENSION_KEY = "payment_gateways"


class GatewayRegistry:
    """Resolves a provider name (paymob, fawry, internal...) to a gateway adapter."""

    def __init__(self, default: PaymentGateway | None = None):
        self._gateways: dict[str, PaymentGateway] = {}
        self.default = default or SimulatedGateway()

    def register(self, provider: str, gateway: PaymentGateway) -> None:
        self._gateways[provider] = gateway

    def get(self, provider: str) -> PaymentGateway:
        return self._gateways.get(provider, self.default)

    def providers(self) -> list[str]:
        return sorted(self._gateways)

    @classmethod
    def from_config(cls, config) -> "GatewayRegistry":
        registry = cls()
        base_url = config.get("PAYMENT_GATEWAY_URL")
        if base_url:
            for provider in config.get("HTTP_GATEWAY_PROVIDERS", []):
                registry.register(provider, HttpGateway(
                    name=provider,
                    base_url=base_url,
                    token=config.get("PAYMENT_GATEWAY_TOKEN", ""),
                    timeout=config.get("GATEWAY_TIMEOUT", 30),
                ))
            logger.info("HTTP gateway enabled for %s", ", ".join(registry.providers()))
        return registry


def get_registry() -> GatewayRegistry:
    registry = current_app.extensions.get(EXTENSION_KEY)
    if registry is None:
        registry = current_app.extensions[EXTENSION_KEY] = GatewayRegistry()
    return registry


__all__ = [
    "GatewayResult",
    "PaymentGateway",
    "HttpGateway",
    "SimulatedGateway",
    "GatewayRegistry",
    "get_registry",
]
