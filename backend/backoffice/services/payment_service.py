# Overview: Unified payment path; FIFO allocation of customer payments against open sales.

"""
Payment Allocation Service

Every movement of a sale toward COMPLETED goes through apply_payment():
clearing outstanding balances, settling one sale directly, and consuming
advance credit all build an ApplyPayment and hand it over. apply_payment
updates the sale's payment/credit split and status, records a
PaymentApplication, and (for money actually received) posts the
Cash / Accounts Receivable pair and lowers the customer's balance.

ALLOCATION ORDER:
Open sales (PENDING or PARTIAL with credit > 0) for the customer within
the scope, oldest first (created_at, then id). Each gets
min(remaining, credit) until the money runs out.

ADVANCE CREDIT:
Money received without a sale to apply it to (deposits, kept remainders)
is posted to the ledger and reduces the customer's balance immediately.
Applying that credit to a later sale later moves no money: it only
updates the sale, so it posts nothing and leaves the balance unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import CustomerPayment, PaymentApplication, Sale
from ..models.sales import (
    OPEN_PAYMENT_STATUSES,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PARTIAL,
)
from ..time_utils import utcnow
from .balance_service import apply_receipt, lock_balance_row, prior_balance
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import REFERENCE_ADVANCE, REFERENCE_PAYMENT, record_payment
from .scope_service import Scope

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Raised for invalid payment input or state."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFound(PaymentError):
    """Raised when the sale to settle does not exist."""


class AllocationFailure(Exception):
    """Raised when an allocation pass fails; none of its writes survive."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# CONSTANTS
# =============================================================================

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_CHECK = "CHECK"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_MOBILE = "MOBILE"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_CHECK,
    METHOD_BANK_TRANSFER,
    METHOD_MOBILE,
]

SOURCE_ALLOCATION = "ALLOCATION"
SOURCE_SETTLEMENT = "SETTLEMENT"
SOURCE_ADVANCE_CREDIT = "ADVANCE_CREDIT"

VALID_SOURCES = (SOURCE_ALLOCATION, SOURCE_SETTLEMENT, SOURCE_ADVANCE_CREDIT)

# Sources that represent money received now (posted to the ledger)
CASH_SOURCES = (SOURCE_ALLOCATION, SOURCE_SETTLEMENT)

PAYMENT_KIND_ALLOCATION = "ALLOCATION"
PAYMENT_KIND_SETTLEMENT = "SETTLEMENT"
PAYMENT_KIND_DEPOSIT = "DEPOSIT"


@dataclass(frozen=True)
class ApplyPayment:
    """One amount applied to one sale from one source."""
    sale: Sale
    amount_cents: int
    source: str
    method: str | None = None


@dataclass
class AllocationResult:
    processed_sales: list[Sale]
    remainder_cents: int
    payment: CustomerPayment | None = None
    applications: list[PaymentApplication] = field(default_factory=list)

    @property
    def applied_cents(self) -> int:
        return sum(a.amount_cents for a in self.applications)

    def to_dict(self) -> dict:
        applied_by_sale = {a.sale_id: a.amount_cents for a in self.applications}
        return {
            "processed_sales": [
                {**sale.to_dict(), "applied_cents": applied_by_sale.get(sale.id, 0)}
                for sale in self.processed_sales
            ],
            "remainder_cents": self.remainder_cents,
            "applied_cents": self.applied_cents,
            "payment": self.payment.to_dict() if self.payment else None,
        }


def validate_method(method: str) -> str:
    method = (method or "").upper()
    if method not in VALID_PAYMENT_METHODS:
        raise PaymentError(
            f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}",
            details={"method": method},
        )
    return method


def _validate_amount(amount_cents) -> None:
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise PaymentError("Payment amount must be a positive integer (cents)",
                           details={"amount_cents": amount_cents})


# =============================================================================
# UNIFIED PAYMENT PATH
# =============================================================================

def apply_payment(
    session: Session,
    op: ApplyPayment,
    *,
    payment: CustomerPayment | None = None,
    user_id: int | None = None,
) -> PaymentApplication:
    """
    Apply op.amount_cents to op.sale.

    payment + credit == total holds before and after: the amount moves from
    the credit column to the payment column. Status becomes COMPLETED once
    credit reaches zero, PARTIAL otherwise. Cash sources also post the
    Cash/AR pair and lower the customer's balance row by the same amount,
    so receivables and balances move together.
    """
    sale = op.sale
    _validate_amount(op.amount_cents)
    if op.source not in VALID_SOURCES:
        raise PaymentError(f"Invalid payment source: {op.source}", details={"source": op.source})
    if not sale.is_outstanding:
        raise PaymentError(
            f"Sale {sale.invoice_number} has no outstanding credit",
            details={"sale_id": sale.id, "payment_status": sale.payment_status},
        )
    if op.amount_cents > sale.credit_amount_cents:
        raise PaymentError(
            f"Payment exceeds outstanding credit on sale {sale.invoice_number}",
            details={
                "sale_id": sale.id,
                "amount_cents": op.amount_cents,
                "credit_amount_cents": sale.credit_amount_cents,
            },
        )

    sale.payment_amount_cents = sale.payment_amount_cents + op.amount_cents
    sale.credit_amount_cents = sale.credit_amount_cents - op.amount_cents
    sale.payment_status = PAYMENT_STATUS_COMPLETED if sale.credit_amount_cents <= 0 else PAYMENT_STATUS_PARTIAL

    application = PaymentApplication(
        payment_id=payment.id if payment else None,
        sale_id=sale.id,
        source=op.source,
        amount_cents=op.amount_cents,
        credit_after_cents=sale.credit_amount_cents,
        created_at=utcnow(),
    )
    session.add(application)
    session.flush()

    if op.source in CASH_SOURCES:
        record_payment(
            session,
            Scope.of(sale),
            op.amount_cents,
            description=f"Payment for {sale.invoice_number} ({op.method or 'UNKNOWN'})",
            reference_type=REFERENCE_PAYMENT,
            sale_id=sale.id,
            payment_id=payment.id if payment else None,
            user_id=user_id,
        )
        if sale.customer_key:
            row = lock_balance_row(session, sale.customer_key, Scope.of(sale))
            apply_receipt(row, op.amount_cents)
    return application


def open_sales_for_update(session: Session, customer_key: str, scope: Scope) -> list[Sale]:
    query = (
        session.query(Sale)
        .filter(
            Sale.customer_key == customer_key,
            Sale.scope_type == scope.kind,
            Sale.scope_id == scope.id,
            Sale.payment_status.in_(OPEN_PAYMENT_STATUSES),
            Sale.credit_amount_cents > 0,
        )
        .order_by(Sale.created_at.asc(), Sale.id.asc())
    )
    return lock_for_update(query).all()


def allocate(
    session: Session,
    customer_key: str,
    scope: Scope,
    payment_cents: int,
    method: str | None = None,
    *,
    source: str = SOURCE_ALLOCATION,
    payment: CustomerPayment | None = None,
    user_id: int | None = None,
) -> AllocationResult:
    """
    Apply payment_cents to the customer's open sales, oldest first.

    Runs inside a savepoint: if any step fails, every sale update and
    posting made by this pass is undone and AllocationFailure is raised.
    Lock and stale-row errors propagate unchanged so the enclosing unit of
    work can be retried.
    """
    _validate_amount(payment_cents)

    processed: list[Sale] = []
    applications: list[PaymentApplication] = []
    remaining = payment_cents
    try:
        with session.begin_nested():
            if source in CASH_SOURCES:
                # Balance row before sale rows
                lock_balance_row(session, customer_key, scope)
            for sale in open_sales_for_update(session, customer_key, scope):
                if remaining <= 0:
                    break
                amount = min(remaining, sale.credit_amount_cents)
                applications.append(apply_payment(
                    session,
                    ApplyPayment(sale, amount, source, method),
                    payment=payment,
                    user_id=user_id,
                ))
                processed.append(sale)
                remaining -= amount
    except (OperationalError, StaleDataError):
        raise
    except Exception as exc:
        logger.error("Allocation failed for %s in %s: %s", customer_key, scope, exc)
        raise AllocationFailure(
            f"Payment allocation failed: {exc}",
            details={"customer_key": customer_key, "scope": str(scope), "payment_cents": payment_cents},
        ) from exc

    logger.info(
        "Allocated %d of %d cents across %d sale(s) for %s in %s",
        payment_cents - remaining, payment_cents, len(processed), customer_key, scope,
    )
    return AllocationResult(
        processed_sales=processed,
        remainder_cents=remaining,
        payment=payment,
        applications=applications,
    )


def available_advance_credit(session: Session, customer_key: str, scope: Scope) -> int:
    """
    Advance credit held but not yet applied to any sale.

    The balance already nets deposits against open credit, so whatever
    open credit exceeds the balance is unapplied advance credit.
    """
    balance = prior_balance(session, customer_key, scope, lock=False)
    open_credit = sum(
        sale.credit_amount_cents for sale in open_sales_for_update(session, customer_key, scope)
    )
    return max(open_credit - balance, 0)


def apply_advance_credit(
    session: Session,
    customer_key: str,
    scope: Scope,
    *,
    user_id: int | None = None,
) -> AllocationResult:
    """Consume held advance credit against open sales, oldest first."""
    available = available_advance_credit(session, customer_key, scope)
    if available <= 0:
        return AllocationResult(processed_sales=[], remainder_cents=0)
    return allocate(
        session,
        customer_key,
        scope,
        available,
        method=None,
        source=SOURCE_ADVANCE_CREDIT,
        user_id=user_id,
    )


# =============================================================================
# REQUEST-LEVEL WORKFLOWS (commit)
# =============================================================================

def _new_receipt(scope: Scope, customer_key: str, method: str, kind: str,
                 amount_cents: int, user_id: int | None) -> CustomerPayment:
    return CustomerPayment(
        scope_type=scope.kind,
        scope_id=scope.id,
        customer_key=customer_key,
        method=method,
        kind=kind,
        amount_cents=amount_cents,
        applied_cents=0,
        remainder_cents=0,
        remainder_kept_as_credit=False,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )


def clear_outstanding(
    customer_key: str,
    scope: Scope,
    payment_cents: int,
    method: str,
    *,
    keep_remainder_as_credit: bool = False,
    user_id: int | None = None,
) -> AllocationResult:
    """
    Receive a payment from a customer and clear their open sales FIFO.

    The remainder is returned to the caller (change) unless
    keep_remainder_as_credit is set, in which case it is recorded as
    advance credit.
    """
    if not customer_key:
        raise PaymentError("customer_key required")
    _validate_amount(payment_cents)
    method = validate_method(method)

    def _op():
        session = db.session
        begin_write(session)

        row = lock_balance_row(session, customer_key, scope)
        receipt = _new_receipt(scope, customer_key, method, PAYMENT_KIND_ALLOCATION, payment_cents, user_id)
        session.add(receipt)
        session.flush()

        result = allocate(session, customer_key, scope, payment_cents, method,
                          payment=receipt, user_id=user_id)

        receipt.applied_cents = payment_cents - result.remainder_cents
        receipt.remainder_cents = result.remainder_cents
        receipt.remainder_kept_as_credit = keep_remainder_as_credit and result.remainder_cents > 0
        if receipt.remainder_kept_as_credit:
            record_payment(
                session,
                scope,
                result.remainder_cents,
                description=f"Advance credit from {customer_key} ({method})",
                reference_type=REFERENCE_ADVANCE,
                payment_id=receipt.id,
                user_id=user_id,
            )
            apply_receipt(row, result.remainder_cents)
        # Applied amounts already came off the row inside allocate()
        receipt.running_balance_cents = row.balance_cents

        session.commit()
        return result

    return run_with_retry(_op)


def settle_sale(
    sale_id: int,
    amount_cents: int,
    method: str,
    *,
    user_id: int | None = None,
) -> PaymentApplication:
    """Pay down one specific sale."""
    _validate_amount(amount_cents)
    method = validate_method(method)

    def _op():
        session = db.session
        begin_write(session)

        target = session.get(Sale, sale_id)
        if not target:
            raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        if not target.customer_key:
            raise PaymentError("Sale has no customer to settle against", details={"sale_id": sale_id})

        scope = Scope.of(target)
        # Balance row before sale rows, same order as clear_outstanding
        row = lock_balance_row(session, target.customer_key, scope)
        sale = lock_for_update(session.query(Sale).filter_by(id=sale_id)).populate_existing().first()

        receipt = _new_receipt(scope, sale.customer_key, method, PAYMENT_KIND_SETTLEMENT, amount_cents, user_id)
        receipt.applied_cents = amount_cents
        session.add(receipt)
        session.flush()

        application = apply_payment(
            session,
            ApplyPayment(sale, amount_cents, SOURCE_SETTLEMENT, method),
            payment=receipt,
            user_id=user_id,
        )
        receipt.running_balance_cents = row.balance_cents

        session.commit()
        logger.info("Settled %d cents on sale %s", amount_cents, sale.invoice_number)
        return application

    return run_with_retry(_op)


def record_advance_credit(
    customer_key: str,
    scope: Scope,
    amount_cents: int,
    method: str,
    *,
    user_id: int | None = None,
) -> CustomerPayment:
    """Take a deposit with no sale to apply it to."""
    if not customer_key:
        raise PaymentError("customer_key required")
    _validate_amount(amount_cents)
    method = validate_method(method)

    def _op():
        session = db.session
        begin_write(session)

        row = lock_balance_row(session, customer_key, scope)
        receipt = _new_receipt(scope, customer_key, method, PAYMENT_KIND_DEPOSIT, amount_cents, user_id)
        receipt.remainder_cents = amount_cents
        receipt.remainder_kept_as_credit = True
        session.add(receipt)
        session.flush()

        record_payment(
            session,
            scope,
            amount_cents,
            description=f"Advance credit from {customer_key} ({method})",
            reference_type=REFERENCE_ADVANCE,
            payment_id=receipt.id,
            user_id=user_id,
        )
        receipt.running_balance_cents = apply_receipt(row, amount_cents)

        session.commit()
        return receipt

    return run_with_retry(_op)


def get_sale_applications(session: Session, sale_id: int) -> list[PaymentApplication]:
    return (
        session.query(PaymentApplication)
        .filter_by(sale_id=sale_id)
        .order_by(PaymentApplication.id)
        .all()
    )
