# storefront/models/counter.py
from . import db


class SequenceCounter(db.Model):
    """One row per scope (e.g. ``order:MD:20250101``); ``value`` is the last number handed out."""

    __tablename__ = "sequence_counters"

    scope = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<SequenceCounter {self.scope}={self.value}>"
