# storefront/utils/clock.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the same representation the database hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
