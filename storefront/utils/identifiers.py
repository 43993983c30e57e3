# storefront/utils/identifiers.py
"""
Human readable identifiers.

- Order numbers: ``MD-20250114-007``. The per-day sequence comes from an
  atomic increment on a ``sequence_counters`` row, so concurrent checkouts
  on the same day never compute the same number.
- Payment / refund ids: ``PAY`` + last 8 digits of the epoch millis + 4 random
  digits, with a two digit suffix appended on collision.

Both retry against an existence check and give up with IdentifierExhausted.
"""
import logging
import random
import time
from datetime import date
from typing import Callable

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import IdentifierExhausted
from ..models import db, Order, Payment, PaymentRefund, SequenceCounter
from .clock import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 99


def _max_attempts() -> int:
    return int(current_app.config.get("IDENTIFIER_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))


def _ensure_counter_row(scope: str) -> None:
    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        insert = None

    if insert is not None:
        stmt = insert(SequenceCounter).values(scope=scope, value=0)
        db.session.execute(stmt.on_conflict_do_nothing(index_elements=["scope"]))
        return

    # other backends: plain insert inside a savepoint, a duplicate means another writer won
    if db.session.get(SequenceCounter, scope) is None:
        try:
            with db.session.begin_nested():
                db.session.add(SequenceCounter(scope=scope, value=0))
        except IntegrityError:
            logger.debug("Counter row for %s created by a concurrent writer", scope)


def next_sequence_value(scope: str) -> int:
    """Increments the counter for ``scope`` and returns the new value (first call -> 1).

    Runs inside the caller's transaction; the row stays locked until commit.
    """
    _ensure_counter_row(scope)
    db.session.execute(
        update(SequenceCounter)
        .where(SequenceCounter.scope == scope)
        .values(value=SequenceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(
        select(SequenceCounter.value).where(SequenceCounter.scope == scope)
    ).scalar_one()


def format_order_number(prefix: str, day: date, sequence: int) -> str:
    return f"{prefix}-{day:%Y%m%d}-{sequence:03d}"


def generate_order_number(prefix: str | None = None, today: date | None = None) -> str:
    prefix = prefix or current_app.config.get("ORDER_NUMBER_PREFIX", "MD")
    today = today or utcnow().date()
    scope = f"order:{prefix}:{today:%Y%m%d}"
    attempts = _max_attempts()

    for _ in range(attempts):
        candidate = format_order_number(prefix, today, next_sequence_value(scope))
        taken = db.session.execute(
            select(Order.id).where(Order.order_number == candidate)
        ).first()
        if taken is None:
            return candidate
        logger.warning("Order number %s already taken, advancing counter", candidate)

    raise IdentifierExhausted(scope, attempts)


def generate_timestamped_id(prefix: str, exists: Callable[[str], bool], max_attempts: int | None = None) -> str:
    """``exists(candidate)`` answers whether the id is already stored."""
    if max_attempts is None:
        max_attempts = _max_attempts()

    millis = str(int(time.time() * 1000))[-8:]
    base = f"{prefix}{millis}{random.randint(0, 9999):04d}"
    if not exists(base):
        return base

    for counter in range(1, max_attempts + 1):
        candidate = f"{base}{counter:02d}"
        if not exists(candidate):
            return candidate

    raise IdentifierExhausted(prefix, max_attempts)


def generate_payment_id() -> str:
    def exists(candidate: str) -> bool:
        return db.session.execute(
            select(Payment.id).where(Payment.payment_id == candidate)
        ).first() is not None

    return generate_timestamped_id("PAY", exists)


def generate_refund_id() -> str:
    def exists(candidate: str) -> bool:
        return db.session.execute(
            select(PaymentRefund.id).where(PaymentRefund.refund_id == candidate)
        ).first() is not None

    return generate_timestamped_id("REF", exists)
