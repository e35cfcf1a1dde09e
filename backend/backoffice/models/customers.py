from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class CustomerBalance(db.Model):
    """
    Current running balance for one (customer, scope) pair.

    Positive = customer owes; negative = advance credit held.

    CONCURRENCY: this row is the serialization point for balance updates.
    Writers select it FOR UPDATE before reading the prior balance, so two
    concurrent sales for the same customer cannot both chain off a stale
    value.
    """
    __tablename__ = "customer_balances"
    __table_args__ = (
        db.UniqueConstraint("customer_key", "scope_type", "scope_id", name="uq_customer_balances_key_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_key = db.Column(db.String(128), nullable=False, index=True)
    scope_type = db.Column(db.String(16), nullable=False)
    scope_id = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    last_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_key": self.customer_key,
            "scope_type": self.scope_type,
            "scope_id": self.scope_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "balance_cents": self.balance_cents,
            "last_sale_id": self.last_sale_id,
            "updated_at": to_utc_z(self.updated_at),
        }
