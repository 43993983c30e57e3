# storefront/services/transitions.py
import logging
from contextlib import contextmanager

from sqlalchemy import update

from ..errors import StorefrontError
from ..models import db

logger = logging.getLogger(__name__)


def compare_and_set(model, obj, allowed_from, target=None, criteria=(), **values) -> bool:
    """
    Single conditional UPDATE: only moves ``obj`` when its stored status is
    still one of ``allowed_from`` (plus any extra ``criteria``).

    Returns True when this call won the row. ``obj`` is expired afterwards so
    the next attribute access reloads what the database holds.
    """
    if target is not None:
        values["status"] = target
    # pending attribute changes would be thrown away by the expire below
    db.session.flush()
    stmt = (
        update(model)
        .where(model.id == obj.id, model.status.in_(tuple(allowed_from)), *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.expire(obj)
    return result.rowcount == 1


@contextmanager
def atomic(action: str):
    """Commit on success; roll back and re-raise on any error."""
    try:
        yield
        db.session.commit()
    except StorefrontError as e:
        db.session.rollback()
        logger.info("%s rejected: %s", action, e.message)
        raise
    except Exception as e:
        db.session.rollback()
        logger.error("Error while %s: %s", action, str(e))
        raise
