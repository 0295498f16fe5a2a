from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


class SequenceCounter(db.Model):
    """
    Atomic per-(transaction type, day) counters.

    Transaction ids (S2405170007) never repeat, even with concurrent
    writers: the counter is bumped with a single
    UPDATE ... SET value = value + 1, never read-then-write.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("transaction_type", "date_key", name="uq_sequence_counters_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_type = db.Column(db.String(32), nullable=False)
    date_key = db.Column(db.String(6), nullable=False)
    value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_type": self.transaction_type,
            "date_key": self.date_key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
