# storefront/services/__init__.py
from .stock_ledger import StockLedger
from .customer_ledger import CustomerLedger
from .fees import FeeCalculator
from .payment_methods import PaymentMethodService
from .payment_service import PaymentService
from .order_service import OrderService
from .statistics_service import StatisticsService

__all__ = [
    "StockLedger",
    "CustomerLedger",
    "FeeCalculator",
    "PaymentMethodService",
    "PaymentService",
    "OrderService",
    "StatisticsService",
]
