# Overview: Double-entry recorder for sales and customer payments; ledger read models.

"""
Double-Entry Recorder

Every financial event is posted as a set of legs that must balance
(sum of debits == sum of credits) before anything is written. A set that
does not balance raises LedgerImbalance and the caller's transaction is
rolled back, so no half-posted sale ever reaches the books.

SALE LEGS:
    DEBIT  Cash                 payment taken at the counter   (if > 0)
    DEBIT  Accounts Receivable  amount left on credit          (if > 0)
    CREDIT Accounts Receivable  overpayment kept as advance    (if credit < 0)
    CREDIT Sales Revenue        sale total                     (always)
    DEBIT  Cost of Goods Sold   sum(unit_cost * qty)           (if cost data)
    CREDIT Inventory            same amount                    (if cost data)

PAYMENT LEGS:
    DEBIT  Cash / CREDIT Accounts Receivable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ..models import Account, LedgerEntry, Sale, SaleLine
from ..models.ledger import DIRECTION_CREDIT, DIRECTION_DEBIT
from .account_service import (
    ACCOUNT_CASH,
    ACCOUNT_COGS,
    ACCOUNT_INVENTORY,
    ACCOUNT_RECEIVABLE,
    ACCOUNT_SALES_REVENUE,
    get_or_create_account,
    normal_balance,
    post_entry,
)
from .scope_service import Scope

logger = logging.getLogger(__name__)

REFERENCE_SALE = "SALE"
REFERENCE_PAYMENT = "PAYMENT"
REFERENCE_ADVANCE = "ADVANCE"


class LedgerImbalance(Exception):
    """Raised when a set of postings does not balance; fatal for the transaction."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class Leg:
    account_name: str
    direction: str
    amount_cents: int
    description: str


def _assert_balanced(legs: list[Leg], context: str) -> None:
    debits = sum(leg.amount_cents for leg in legs if leg.direction == DIRECTION_DEBIT)
    credits = sum(leg.amount_cents for leg in legs if leg.direction == DIRECTION_CREDIT)
    if debits != credits:
        logger.error("Ledger imbalance for %s: debits=%d credits=%d", context, debits, credits)
        raise LedgerImbalance(
            f"Debits ({debits}) do not equal credits ({credits}) for {context}",
            details={"debits_cents": debits, "credits_cents": credits, "context": context},
        )


def _post_legs(
    session: Session,
    scope: Scope,
    legs: list[Leg],
    *,
    context: str,
    reference_type: str,
    sale_id: int | None = None,
    payment_id: int | None = None,
    user_id: int | None = None,
) -> list[LedgerEntry]:
    _assert_balanced(legs, context)

    entries = []
    for leg in legs:
        account = get_or_create_account(session, scope, leg.account_name)
        entries.append(post_entry(
            session,
            account,
            leg.direction,
            leg.amount_cents,
            leg.description,
            reference_type=reference_type,
            sale_id=sale_id,
            payment_id=payment_id,
            user_id=user_id,
        ))
    return entries


def sale_cost_cents(lines: list[SaleLine]) -> int:
    return sum(line.line_cost_cents for line in lines)


def sale_legs(sale: Sale, lines: list[SaleLine]) -> list[Leg]:
    invoice = sale.invoice_number
    customer = sale.customer_name or "Customer"
    legs: list[Leg] = []

    if sale.payment_amount_cents > 0:
        legs.append(Leg(ACCOUNT_CASH, DIRECTION_DEBIT, sale.payment_amount_cents,
                        f"Sale {invoice} - Cash Payment"))
    if sale.credit_amount_cents > 0:
        legs.append(Leg(ACCOUNT_RECEIVABLE, DIRECTION_DEBIT, sale.credit_amount_cents,
                        f"Sale {invoice} - Credit to {customer}"))
    elif sale.credit_amount_cents < 0:
        legs.append(Leg(ACCOUNT_RECEIVABLE, DIRECTION_CREDIT, -sale.credit_amount_cents,
                        f"Sale {invoice} - Advance from {customer}"))

    legs.append(Leg(ACCOUNT_SALES_REVENUE, DIRECTION_CREDIT, sale.total_cents,
                    f"Sale {invoice} - Revenue"))

    cost = sale_cost_cents(lines)
    if cost > 0:
        legs.append(Leg(ACCOUNT_COGS, DIRECTION_DEBIT, cost, f"Sale {invoice} - Cost of Goods Sold"))
        legs.append(Leg(ACCOUNT_INVENTORY, DIRECTION_CREDIT, cost, f"Sale {invoice} - Inventory Reduction"))
    return legs


def record_sale(
    session: Session,
    sale: Sale,
    lines: list[SaleLine] | None = None,
    *,
    user_id: int | None = None,
) -> list[LedgerEntry]:
    """
    Post the sale's ledger entries in the caller's transaction.

    Must be called with the amounts as they were at creation time
    (before any later payment allocation).
    """
    if lines is None:
        lines = session.query(SaleLine).filter_by(sale_id=sale.id).all()

    entries = _post_legs(
        session,
        Scope.of(sale),
        sale_legs(sale, lines),
        context=f"sale {sale.invoice_number}",
        reference_type=REFERENCE_SALE,
        sale_id=sale.id,
        user_id=user_id or sale.created_by_user_id,
    )
    logger.info("Recorded %d ledger entries for sale %s", len(entries), sale.invoice_number)
    return entries


def record_payment(
    session: Session,
    scope: Scope,
    amount_cents: int,
    *,
    description: str,
    reference_type: str = REFERENCE_PAYMENT,
    sale_id: int | None = None,
    payment_id: int | None = None,
    user_id: int | None = None,
) -> list[LedgerEntry]:
    """Cash received against receivables: DEBIT Cash / CREDIT Accounts Receivable."""
    legs = [
        Leg(ACCOUNT_CASH, DIRECTION_DEBIT, amount_cents, description),
        Leg(ACCOUNT_RECEIVABLE, DIRECTION_CREDIT, amount_cents, description),
    ]
    return _post_legs(
        session,
        scope,
        legs,
        context=description,
        reference_type=reference_type,
        sale_id=sale_id,
        payment_id=payment_id,
        user_id=user_id,
    )


# =============================================================================
# READ SIDE
# =============================================================================

def list_accounts(session: Session, scope: Scope) -> list[Account]:
    return (
        session.query(Account)
        .filter_by(**scope.filter_kwargs())
        .order_by(Account.kind, Account.name)
        .all()
    )


def get_account_entries(
    session: Session,
    account_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 500,
) -> list[LedgerEntry]:
    """Entries for one account, newest first. start/end are inclusive."""
    query = session.query(LedgerEntry).filter(LedgerEntry.account_id == account_id)
    if start:
        query = query.filter(LedgerEntry.created_at >= start)
    if end:
        query = query.filter(LedgerEntry.created_at <= end)
    return query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).limit(limit).all()


def get_account_balance(session: Session, account_id: int) -> int:
    account = session.get(Account, account_id)
    return account.balance_cents if account else 0


def entries_for_sale(session: Session, sale_id: int) -> list[LedgerEntry]:
    return (
        session.query(LedgerEntry)
        .filter(LedgerEntry.reference_sale_id == sale_id)
        .order_by(LedgerEntry.id)
        .all()
    )


def get_trial_balance(session: Session, scope: Scope) -> dict:
    accounts = [a for a in list_accounts(session, scope) if a.status == "ACTIVE"]

    rows = []
    total_debits = 0
    total_credits = 0
    for account in accounts:
        debit_side, credit_side = normal_balance(account)
        total_debits += debit_side
        total_credits += credit_side
        rows.append({
            **account.to_dict(),
            "debit_balance_cents": debit_side,
            "credit_balance_cents": credit_side,
        })

    return {
        "scope_type": scope.kind,
        "scope_id": scope.id,
        "accounts": rows,
        "total_debits_cents": total_debits,
        "total_credits_cents": total_credits,
        "is_balanced": total_debits == total_credits,
    }
