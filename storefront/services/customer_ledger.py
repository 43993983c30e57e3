# storefront/services/customer_ledger.py
import logging
from decimal import Decimal, ROUND_FLOOR

from sqlalchemy import update
from sqlalchemy.orm.util import identity_key

from ..errors import NotFound
from ..models import db, Customer
from ..utils.clock import utcnow
from ..utils.money import quantize

logger = logging.getLogger(__name__)


def loyalty_points_for(total) -> int:
    """1 point per whole currency unit spent."""
    return int(Decimal(str(total)).to_integral_value(rounding=ROUND_FLOOR))


class CustomerLedger:

    @staticmethod
    def record_completed_order(customer_id: int, order_total) -> None:
        """Bumps lifetime counters. The caller guarantees this runs once per order."""
        total = quantize(order_total)
        result = db.session.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(
                total_orders=Customer.total_orders + 1,
                total_spent=Customer.total_spent + total,
                loyalty_points=Customer.loyalty_points + loyalty_points_for(total),
                last_order_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        cached = db.session.identity_map.get(identity_key(Customer, customer_id))
        if cached is not None:
            db.session.expire(cached)
        if result.rowcount != 1:
            raise NotFound("customer", customer_id)
        logger.info("Customer %s credited with completed order total=%s", customer_id, total)
