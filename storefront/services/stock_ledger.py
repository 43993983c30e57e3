# storefront/services/stock_ledger.py
"""
Stock ledger: the only code path allowed to change ``Product.stock``.

Reservations are a conditional decrement (``stock >= qty``) executed as a
single UPDATE, so two checkouts racing for the last unit can't both win.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.orm.util import identity_key

from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import db, Product

logger = logging.getLogger(__name__)


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer", field="quantity")
    return quantity


def _expire_cached(product_id: int) -> None:
    # the UPDATE bypasses the identity map; drop any stale copy
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock"])


class StockLedger:
    """Atomic reserve/release of product stock. Runs inside the caller's transaction."""

    @staticmethod
    def available(product_id: int) -> int:
        stock = db.session.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            raise NotFound("product", product_id)
        return stock

    @staticmethod
    def reserve(product_id: int, quantity: int) -> None:
        quantity = _check_quantity(quantity)
        result = db.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        _expire_cached(product_id)
        if result.rowcount != 1:
            logger.warning("Stock reservation refused: product=%s qty=%s", product_id, quantity)
            raise InsufficientStock(product_id, quantity)
        logger.info("Stock reserved: product=%s qty=%s", product_id, quantity)

    @staticmethod
    def release(product_id: int, quantity: int) -> None:
        quantity = _check_quantity(quantity)
        result = db.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        _expire_cached(product_id)
        if result.rowcount != 1:
            raise NotFound("product", product_id)
        logger.info("Stock released: product=%s qty=%s", product_id, quantity)

    @staticmethod
    def reserve_many(lines) -> None:
        """
        ``lines`` is an iterable of ``(product_id, quantity)``.
        All or nothing: when one line fails the lines already taken in this call
        are given back before the error surfaces.
        """
        taken = []
        try:
            for product_id, quantity in lines:
                StockLedger.reserve(product_id, quantity)
                taken.append((product_id, quantity))
        except Exception:
            for product_id, quantity in reversed(taken):
                StockLedger.release(product_id, quantity)
            raise

    @staticmethod
    def release_many(lines) -> None:
        for product_id, quantity in lines:
            StockLedger.release(product_id, quantity)
