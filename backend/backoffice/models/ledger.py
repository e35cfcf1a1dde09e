from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ACCOUNT_KIND_ASSET = "asset"
ACCOUNT_KIND_LIABILITY = "liability"
ACCOUNT_KIND_REVENUE = "revenue"
ACCOUNT_KIND_EXPENSE = "expense"

ACCOUNT_KINDS = (
    ACCOUNT_KIND_ASSET,
    ACCOUNT_KIND_LIABILITY,
    ACCOUNT_KIND_REVENUE,
    ACCOUNT_KIND_EXPENSE,
)

DIRECTION_DEBIT = "DEBIT"
DIRECTION_CREDIT = "CREDIT"


class Account(db.Model):
    """
    Chart-of-accounts row, one per (scope, name).

    INVARIANT: balance_cents == sum(DEBIT entries) - sum(CREDIT entries).
    The balance is only ever changed by account_service.post_entry, with an
    atomic SQL increment, in the same transaction as the entry insert.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("scope_type", "scope_id", "name", name="uq_accounts_scope_name"),
        db.Index("ix_accounts_scope", "scope_type", "scope_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_type = db.Column(db.String(16), nullable=False)
    scope_id = db.Column(db.Integer, nullable=False)

    name = db.Column(db.String(128), nullable=False)
    kind = db.Column(db.String(16), nullable=False)  # asset, liability, revenue, expense
    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Account id={self.id} {self.scope_type}:{self.scope_id} {self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope_type": self.scope_type,
            "scope_id": self.scope_id,
            "name": self.name,
            "kind": self.kind,
            "balance_cents": self.balance_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    Immutable double-entry line.

    Append-only: corrections are compensating entries, never updates.
    reference_type tells which flow produced it (SALE, PAYMENT, ADVANCE).
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_account_created", "account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    direction = db.Column(db.String(8), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    reference_type = db.Column(db.String(32), nullable=False, index=True)
    reference_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reference_payment_id = db.Column(db.Integer, db.ForeignKey("customer_payments.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    account = db.relationship("Account", backref=db.backref("entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_sale_id": self.reference_sale_id,
            "reference_payment_id": self.reference_payment_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
