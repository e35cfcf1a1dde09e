# Overview: Running customer balances per scope; statements and chain verification.

"""
Running Balance Tracker

A customer's balance within a scope moves with every sale and receipt:

    sale:     balance = prior + (total - paid_at_counter)
    receipt:  balance = prior - amount_recorded

Positive balance = customer owes. Negative = advance credit held.

The current value lives on the customer_balances row, which writers lock
before reading, so two concurrent sales for the same customer serialize
instead of both chaining off the same stale prior. Each sale and receipt
also stores the balance right after it, which is the customer's
statement of account.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import CustomerBalance, CustomerPayment, Sale
from ..models.sales import OPEN_PAYMENT_STATUSES
from .concurrency import lock_for_update
from .scope_service import Scope


def next_balance(prior_cents: int, total_cents: int, payment_cents: int) -> int:
    """prior + (total - payment); equivalently prior + credit."""
    return prior_cents + (total_cents - payment_cents)


def _balance_query(session: Session, customer_key: str, scope: Scope):
    return session.query(CustomerBalance).filter_by(customer_key=customer_key, **scope.filter_kwargs())


def _latest_sale(session: Session, customer_key: str, scope: Scope) -> Sale | None:
    return (
        session.query(Sale)
        .filter_by(customer_key=customer_key, **scope.filter_kwargs())
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .first()
    )


def prior_balance(session: Session, customer_key: str | None, scope: Scope, *, lock: bool = True) -> int:
    """
    Current balance for (customer, scope): the balance row if present,
    else the most recent sale's stored running balance, else 0.
    """
    if not customer_key:
        return 0

    query = _balance_query(session, customer_key, scope)
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if row is not None:
        return row.balance_cents

    latest = _latest_sale(session, customer_key, scope)
    return latest.running_balance_cents if latest else 0


def lock_balance_row(
    session: Session,
    customer_key: str,
    scope: Scope,
    *,
    customer_name: str | None = None,
    customer_phone: str | None = None,
) -> CustomerBalance:
    """
    Return the (customer, scope) balance row locked for update, creating it
    (seeded from the latest sale) on first use.
    """
    row = lock_for_update(_balance_query(session, customer_key, scope)).first()
    if row is None:
        seed = prior_balance(session, customer_key, scope, lock=False)
        row = CustomerBalance(
            customer_key=customer_key,
            scope_type=scope.kind,
            scope_id=scope.id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            balance_cents=seed,
        )
        try:
            with session.begin_nested():
                session.add(row)
        except IntegrityError:
            row = lock_for_update(_balance_query(session, customer_key, scope)).first()
            if row is None:
                raise

    if customer_name:
        row.customer_name = customer_name
    if customer_phone:
        row.customer_phone = customer_phone
    return row


def apply_sale(row: CustomerBalance, sale: Sale) -> None:
    row.balance_cents = sale.running_balance_cents
    row.last_sale_id = sale.id


def apply_receipt(row: CustomerBalance, amount_cents: int) -> int:
    row.balance_cents = row.balance_cents - amount_cents
    return row.balance_cents


# =============================================================================
# READ SIDE
# =============================================================================

def open_sales(session: Session, customer_key: str, scope: Scope) -> list[Sale]:
    """Outstanding sales, oldest first."""
    return (
        session.query(Sale)
        .filter(
            Sale.customer_key == customer_key,
            Sale.scope_type == scope.kind,
            Sale.scope_id == scope.id,
            Sale.payment_status.in_(OPEN_PAYMENT_STATUSES),
            Sale.credit_amount_cents > 0,
        )
        .order_by(Sale.created_at.asc(), Sale.id.asc())
        .all()
    )


def customer_statement(session: Session, customer_key: str, scope: Scope) -> list[dict]:
    """
    Sales and receipts for (customer, scope) in creation order, each with
    the running balance right after it.
    """
    sales = (
        session.query(Sale)
        .filter_by(customer_key=customer_key, **scope.filter_kwargs())
        .all()
    )
    receipts = (
        session.query(CustomerPayment)
        .filter_by(customer_key=customer_key, **scope.filter_kwargs())
        .all()
    )

    lines = []
    for sale in sales:
        lines.append({
            "type": "SALE",
            "id": sale.id,
            "reference": sale.invoice_number,
            "created_at": sale.created_at,
            "charge_cents": sale.total_cents,
            "paid_cents": sale.tendered_cents,
            "running_balance_cents": sale.running_balance_cents,
            "payment_status": sale.payment_status,
        })
    for receipt in receipts:
        lines.append({
            "type": "RECEIPT",
            "id": receipt.id,
            "reference": f"{receipt.kind}/{receipt.method}",
            "created_at": receipt.created_at,
            "charge_cents": 0,
            "paid_cents": receipt.recorded_cents,
            "running_balance_cents": receipt.running_balance_cents,
            "payment_status": None,
        })

    # Sales sort before receipts created in the same instant
    lines.sort(key=lambda line: (line["created_at"], 0 if line["type"] == "SALE" else 1, line["id"]))
    return lines


def verify_balance_chain(session: Session, customer_key: str, scope: Scope) -> list[dict]:
    """
    Walk the statement and report every line whose stored running balance
    does not follow from the previous one. An empty list means the chain
    holds.
    """
    breaks = []
    previous = 0
    for line in customer_statement(session, customer_key, scope):
        expected = previous + line["charge_cents"] - line["paid_cents"]
        if line["running_balance_cents"] != expected:
            breaks.append({
                "type": line["type"],
                "id": line["id"],
                "reference": line["reference"],
                "expected_cents": expected,
                "stored_cents": line["running_balance_cents"],
            })
        previous = line["running_balance_cents"]
    return breaks


def outstanding_summary(session: Session, customer_key: str, scope: Scope) -> dict:
    balance = prior_balance(session, customer_key, scope, lock=False)
    pending = open_sales(session, customer_key, scope)
    latest = _latest_sale(session, customer_key, scope)

    return {
        "customer_key": customer_key,
        "scope_type": scope.kind,
        "scope_id": scope.id,
        "balance_cents": balance,
        "outstanding_cents": max(balance, 0),
        "advance_credit_cents": max(-balance, 0),
        "is_credit": balance < 0,
        "open_sales_count": len(pending),
        "open_sales_credit_cents": sum(s.credit_amount_cents for s in pending),
        "latest_invoice": latest.invoice_number if latest else None,
    }


def total_customer_balance(session: Session, scope: Scope) -> int:
    rows = session.query(CustomerBalance.balance_cents).filter_by(**scope.filter_kwargs()).all()
    return sum(balance for (balance,) in rows)
