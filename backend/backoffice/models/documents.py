from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class InvoiceSequence(db.Model):
    """
    Atomic per-prefix invoice counter.

    WHY: Deriving the next number by scanning sales for the current max is
    racy and slow. The counter row is advanced with a single
    UPDATE ... SET last_number = last_number + 1 inside the sale transaction.

    prefix is the scope code ("WH01") or scope code plus salesperson
    segment ("WH01-AHM").
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_invoice_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(64), nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
