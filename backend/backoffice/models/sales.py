from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_COMPLETED = "COMPLETED"

OPEN_PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PARTIAL)


class Sale(db.Model):
    """
    Completed sale with its payment/credit split.

    INVARIANTS:
    - payment_amount_cents + credit_amount_cents == total_cents, always.
    - tendered_cents is what was paid at the counter; it never changes.
    - running_balance_cents is the customer's balance right after this sale;
      it never changes either.
    - Only payment_service.apply_payment moves payment/credit/status, and
      only in the "shrinking" direction (credit toward zero).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.Index("ix_sales_customer_scope_created", "customer_key", "scope_type", "scope_id", "created_at"),
        db.Index("ix_sales_scope_status", "scope_type", "scope_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_type = db.Column(db.String(16), nullable=False)
    scope_id = db.Column(db.Integer, nullable=False)

    # Human-readable invoice number (e.g., "WH01-000123")
    invoice_number = db.Column(db.String(64), nullable=False)

    # Opaque customer partition key plus display fields
    customer_key = db.Column(db.String(128), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    # Amounts (all in cents)
    total_cents = db.Column(db.BigInteger, nullable=False)
    tendered_cents = db.Column(db.BigInteger, nullable=False, default=0)
    payment_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    credit_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)  # negative = overpaid
    running_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_outstanding(self) -> bool:
        return self.payment_status in OPEN_PAYMENT_STATUSES and self.credit_amount_cents > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope_type": self.scope_type,
            "scope_id": self.scope_id,
            "invoice_number": self.invoice_number,
            "customer_key": self.customer_key,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_cents": self.total_cents,
            "tendered_cents": self.tendered_cents,
            "payment_amount_cents": self.payment_amount_cents,
            "credit_amount_cents": self.credit_amount_cents,
            "running_balance_cents": self.running_balance_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class SaleLine(db.Model):
    """
    Item line on a sale.

    unit_cost_cents comes from the inventory service and is only used for
    the COGS/Inventory entries; stock levels are not touched here.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    item_ref = db.Column(db.String(128), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    unit_cost_cents = db.Column(db.BigInteger, nullable=True)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))

    @property
    def line_cost_cents(self) -> int:
        if self.unit_cost_cents is None:
            return 0
        return self.unit_cost_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_ref": self.item_ref,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }


class CustomerPayment(db.Model):
    """
    Money received from a customer outside of a sale.

    One row per clear-outstanding request, direct settlement or deposit.
    amount_cents = applied_cents + remainder_cents. running_balance_cents is
    the customer's balance after this receipt.
    """
    __tablename__ = "customer_payments"
    __table_args__ = (
        db.Index("ix_customer_payments_customer_scope", "customer_key", "scope_type", "scope_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_type = db.Column(db.String(16), nullable=False)
    scope_id = db.Column(db.Integer, nullable=False)
    customer_key = db.Column(db.String(128), nullable=False)

    method = db.Column(db.String(32), nullable=False)
    kind = db.Column(db.String(16), nullable=False)  # ALLOCATION, SETTLEMENT, DEPOSIT
    amount_cents = db.Column(db.BigInteger, nullable=False)
    applied_cents = db.Column(db.BigInteger, nullable=False, default=0)
    remainder_cents = db.Column(db.BigInteger, nullable=False, default=0)
    remainder_kept_as_credit = db.Column(db.Boolean, nullable=False, default=False)
    running_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def recorded_cents(self) -> int:
        """Amount that reduced the customer's balance."""
        if self.remainder_kept_as_credit:
            return self.amount_cents
        return self.applied_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope_type": self.scope_type,
            "scope_id": self.scope_id,
            "customer_key": self.customer_key,
            "method": self.method,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "applied_cents": self.applied_cents,
            "remainder_cents": self.remainder_cents,
            "remainder_kept_as_credit": self.remainder_kept_as_credit,
            "running_balance_cents": self.running_balance_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentApplication(db.Model):
    """One application of money (or existing advance credit) to one sale."""
    __tablename__ = "payment_applications"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("customer_payments.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    source = db.Column(db.String(16), nullable=False)  # ALLOCATION, SETTLEMENT, ADVANCE_CREDIT
    amount_cents = db.Column(db.BigInteger, nullable=False)
    credit_after_cents = db.Column(db.BigInteger, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("applications", lazy=True))
    payment = db.relationship("CustomerPayment", backref=db.backref("applications", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "sale_id": self.sale_id,
            "source": self.source,
            "amount_cents": self.amount_cents,
            "credit_after_cents": self.credit_after_cents,
            "created_at": to_utc_z(self.created_at),
        }
