"""
Sales Service - sale creation with invoice numbering, running balance and
double-entry posting in one unit of work.

WHY: A sale, its invoice number, the customer's new balance and its ledger
entries must land together or not at all. A failure anywhere (bad scope,
unbalanced postings, lock timeout) rolls the whole sale back.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Sale, SaleLine
from ..models.sales import (
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
)
from ..time_utils import utcnow
from .balance_service import apply_sale, lock_balance_row, next_balance
from .concurrency import begin_write, run_with_retry
from .invoice_service import next_invoice_number, next_salesperson_invoice_number
from .ledger_service import record_sale
from .payment_service import apply_advance_credit as consume_advance_credit
from .payment_service import validate_method
from .scope_service import Scope, customer_key_for, get_scope_record

logger = logging.getLogger(__name__)


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PaymentMismatch(SaleError):
    """Raised when payment + credit does not equal the sale total."""


def _is_cents(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_lines(lines: list[dict]) -> None:
    if not lines:
        raise SaleError("Sale requires at least one line")

    problems = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            problems.append({"line": index, "field": None, "value": line})
            continue
        quantity = line.get("quantity")
        price = line.get("unit_price_cents")
        cost = line.get("unit_cost_cents")
        if not _is_cents(quantity) or quantity <= 0:
            problems.append({"line": index, "field": "quantity", "value": quantity})
        if not _is_cents(price) or price < 0:
            problems.append({"line": index, "field": "unit_price_cents", "value": price})
        if cost is not None and (not _is_cents(cost) or cost < 0):
            problems.append({"line": index, "field": "unit_cost_cents", "value": cost})

    if problems:
        raise SaleError("Invalid sale lines", details={"lines": problems})


def sale_total_cents(lines: list[dict]) -> int:
    return sum(line["quantity"] * line["unit_price_cents"] for line in lines)


def resolve_payment_split(
    total_cents: int,
    payment_amount_cents: int | None = None,
    credit_amount_cents: int | None = None,
) -> tuple[int, int]:
    """
    Return (payment, credit) with payment + credit == total.

    Amounts the caller supplies are authoritative: with both given they must
    add up; with one given the other is derived; with neither the sale is
    paid in full. A negative credit means the customer overpaid.
    """
    for name, value in (("payment_amount_cents", payment_amount_cents),
                        ("credit_amount_cents", credit_amount_cents)):
        if value is not None and not _is_cents(value):
            raise SaleError(f"{name} must be an integer (cents)", details={name: value})

    if payment_amount_cents is None and credit_amount_cents is None:
        payment, credit = total_cents, 0
    elif credit_amount_cents is None:
        payment, credit = payment_amount_cents, total_cents - payment_amount_cents
    elif payment_amount_cents is None:
        payment, credit = total_cents - credit_amount_cents, credit_amount_cents
    else:
        payment, credit = payment_amount_cents, credit_amount_cents

    if payment < 0:
        raise SaleError("Payment amount cannot be negative", details={"payment_amount_cents": payment})
    if payment + credit != total_cents:
        raise PaymentMismatch(
            "Payment and credit do not add up to the sale total",
            details={
                "total_cents": total_cents,
                "payment_amount_cents": payment,
                "credit_amount_cents": credit,
            },
        )
    return payment, credit


def initial_payment_status(payment_cents: int, credit_cents: int) -> str:
    if credit_cents <= 0:
        return PAYMENT_STATUS_COMPLETED
    if payment_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


def create_sale(
    scope: Scope,
    lines: list[dict],
    *,
    customer_key: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    payment_amount_cents: int | None = None,
    credit_amount_cents: int | None = None,
    payment_method: str = "CASH",
    user_id: int | None = None,
    salesperson_numbering: bool = False,
    apply_advance_credit: bool = False,
) -> Sale:
    """
    Create a completed sale.

    In one transaction: allocate the invoice number, read and lock the
    customer's prior balance, persist the sale and lines, advance the
    running balance and post the ledger entries. Optionally consume held
    advance credit against the customer's open sales afterwards.
    """
    _validate_lines(lines)
    total = sale_total_cents(lines)
    payment, credit = resolve_payment_split(total, payment_amount_cents, credit_amount_cents)
    method = validate_method(payment_method)

    customer_key = customer_key or customer_key_for(customer_name, customer_phone)
    if credit != 0 and not customer_key:
        raise SaleError(
            "A customer is required when part of the sale is on credit",
            details={"credit_amount_cents": credit},
        )
    if salesperson_numbering and not user_id:
        raise SaleError("Salesperson numbering requires user_id")

    def _op():
        session = db.session
        begin_write(session)

        get_scope_record(session, scope)
        if salesperson_numbering:
            invoice_number = next_salesperson_invoice_number(session, scope, user_id)
        else:
            invoice_number = next_invoice_number(session, scope)

        balance_row = None
        prior = 0
        if customer_key:
            balance_row = lock_balance_row(
                session, customer_key, scope,
                customer_name=customer_name, customer_phone=customer_phone,
            )
            prior = balance_row.balance_cents

        now = utcnow()
        sale = Sale(
            scope_type=scope.kind,
            scope_id=scope.id,
            invoice_number=invoice_number,
            customer_key=customer_key,
            customer_name=customer_name,
            customer_phone=customer_phone,
            total_cents=total,
            tendered_cents=payment,
            payment_amount_cents=payment,
            credit_amount_cents=credit,
            running_balance_cents=next_balance(prior, total, payment),
            payment_method=method,
            payment_status=initial_payment_status(payment, credit),
            created_by_user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        session.add(sale)
        session.flush()

        sale_lines = []
        for line in lines:
            sale_line = SaleLine(
                sale_id=sale.id,
                item_ref=line.get("item_ref"),
                description=line.get("description"),
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                unit_cost_cents=line.get("unit_cost_cents"),
                line_total_cents=line["quantity"] * line["unit_price_cents"],
            )
            session.add(sale_line)
            sale_lines.append(sale_line)
        session.flush()

        if balance_row is not None:
            apply_sale(balance_row, sale)

        record_sale(session, sale, sale_lines, user_id=user_id)

        if apply_advance_credit and customer_key and sale.is_outstanding:
            consume_advance_credit(session, customer_key, scope, user_id=user_id)

        session.commit()
        logger.info(
            "Created sale %s: total=%d payment=%d credit=%d balance=%d",
            sale.invoice_number, total, payment, credit, sale.running_balance_cents,
        )
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def list_sales(
    scope: Scope,
    customer_key: str | None = None,
    payment_status: str | None = None,
    limit: int = 100,
) -> list[Sale]:
    query = db.session.query(Sale).filter_by(**scope.filter_kwargs())
    if customer_key:
        query = query.filter(Sale.customer_key == customer_key)
    if payment_status:
        query = query.filter(Sale.payment_status == payment_status.upper())
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
