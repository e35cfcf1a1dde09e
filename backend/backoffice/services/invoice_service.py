# Overview: Invoice numbering; atomic per-prefix counters with a one-shot collision retry.

"""
Invoice Sequencer

FORMATS:
- {SCOPE_CODE}-{000001}                      branch / warehouse invoices
- {SCOPE_CODE}-{SALESPERSON_CODE}-{000001}   warehouse invoices attributed to staff
- {PREFIX}-{000001}                          caller-supplied prefix

The counter lives in invoice_sequences (one row per prefix) and is advanced
with a single atomic UPDATE in the caller's transaction. Nothing here
commits: the number is only "used" once the enclosing sale commits, and a
rolled-back sale rolls the counter back with it, so numbers stay contiguous.
"""

from __future__ import annotations

import logging
import re

from flask import current_app, has_app_context
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import InvoiceSequence, Sale, User
from ..time_utils import utcnow
from .scope_service import (
    SCOPE_WAREHOUSE,
    Scope,
    available_scope_code,
    get_scope_record,
    resolve_scope_code,
)

logger = logging.getLogger(__name__)

_INVOICE_RE = re.compile(r"^(?P<prefix>[A-Z0-9]+(?:-[A-Z0-9]+)?)-(?P<number>\d+)$")


class InvoiceNumberError(Exception):
    """Raised for invoice numbering failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvoiceCollision(InvoiceNumberError):
    """Raised when the candidate number is still taken after the retry."""


def _pad() -> int:
    if has_app_context():
        return current_app.config.get("INVOICE_NUMBER_PAD", 6)
    return 6


def format_invoice_number(prefix: str, number: int) -> str:
    return f"{prefix}-{number:0{_pad()}d}"


def parse_invoice_number(invoice_number: str) -> tuple[str, int]:
    """
    Split "WH01-000042" into ("WH01", 42) and "WH01-AHM-000007" into
    ("WH01-AHM", 7).
    """
    match = _INVOICE_RE.match(invoice_number or "")
    if not match:
        raise InvoiceNumberError(
            f"Invalid invoice number format: {invoice_number}",
            details={"invoice_number": invoice_number},
        )
    return match.group("prefix"), int(match.group("number"))


def validate_invoice_number(invoice_number: str) -> bool:
    match = _INVOICE_RE.match(invoice_number or "")
    return bool(match) and len(match.group("number")) == _pad()


def _max_existing_number(session: Session, prefix: str) -> int:
    """
    Highest number already used for prefix by sales rows.

    Only consulted when the counter row is first created, so invoices
    numbered before counters existed are continued, not reissued.
    """
    rows = (
        session.query(Sale.invoice_number)
        .filter(Sale.invoice_number.like(f"{prefix}-%"))
        .order_by(Sale.invoice_number.desc())
    )
    highest = 0
    for (invoice_number,) in rows:
        try:
            found_prefix, number = parse_invoice_number(invoice_number)
        except InvoiceNumberError:
            continue
        if found_prefix == prefix:
            highest = max(highest, number)
    return highest


def _current_number(session: Session, prefix: str) -> int | None:
    return (
        session.query(InvoiceSequence.last_number)
        .filter_by(prefix=prefix)
        .scalar()
    )


def _advance(session: Session, prefix: str) -> int:
    """Atomically increment the counter for prefix and return the new value."""
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.prefix == prefix)
        .values(last_number=InvoiceSequence.last_number + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    result = session.execute(stmt)
    if result.rowcount:
        return _current_number(session, prefix)

    first = _max_existing_number(session, prefix) + 1
    try:
        with session.begin_nested():
            session.add(InvoiceSequence(prefix=prefix, last_number=first))
        return first
    except IntegrityError:
        # Another writer created the row first; its savepoint is gone, ours
        # was rolled back. Take the normal increment path.
        result = session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_number(session, prefix)


def _invoice_exists(session: Session, invoice_number: str) -> bool:
    return session.query(Sale.id).filter_by(invoice_number=invoice_number).first() is not None


def next_prefixed_invoice_number(session: Session, prefix: str) -> str:
    """
    Allocate the next invoice number for prefix.

    If the candidate is already on a sale (a number issued outside this
    counter), advance exactly once more. A second collision is an error.
    """
    if not prefix:
        raise InvoiceNumberError("prefix is required")

    candidate = format_invoice_number(prefix, _advance(session, prefix))
    if not _invoice_exists(session, candidate):
        return candidate

    logger.warning("Invoice number %s already in use, advancing once", candidate)
    retry = format_invoice_number(prefix, _advance(session, prefix))
    if _invoice_exists(session, retry):
        raise InvoiceCollision(
            f"Invoice number {retry} already in use",
            details={"prefix": prefix, "candidates": [candidate, retry]},
        )
    return retry


def next_invoice_number(session: Session, scope: Scope) -> str:
    """Allocate {SCOPE_CODE}-{NNNNNN} for a branch or warehouse."""
    code = resolve_scope_code(session, scope)
    invoice_number = next_prefixed_invoice_number(session, code)
    logger.debug("Allocated invoice number %s for %s", invoice_number, scope)
    return invoice_number


def salesperson_code(username: str) -> str:
    code = re.sub(r"[^A-Z0-9]", "", (username or "").upper())[:3]
    if not code:
        raise InvoiceNumberError(f"Cannot derive salesperson code from {username!r}")
    return code


def next_salesperson_invoice_number(session: Session, scope: Scope, user_id: int) -> str:
    """
    Allocate {WAREHOUSE_CODE}-{SALESPERSON_CODE}-{NNNNNN}.

    Each warehouse/salesperson pair has its own counter.
    """
    if scope.kind != SCOPE_WAREHOUSE:
        raise InvoiceNumberError(
            "Salesperson-specific numbering only supported for warehouses",
            details={"scope_type": scope.kind},
        )

    user = session.get(User, user_id)
    if not user:
        raise InvoiceNumberError(f"User not found: {user_id}", details={"user_id": user_id})

    code = resolve_scope_code(session, scope)
    return next_prefixed_invoice_number(session, f"{code}-{salesperson_code(user.username)}")


def _peek_scope_code(session: Session, scope: Scope) -> str:
    record = get_scope_record(session, scope)
    return record.code or available_scope_code(session, scope, record)


def preview_next_invoice_number(session: Session, scope: Scope) -> str:
    """What next_invoice_number would return now; writes nothing."""
    prefix = _peek_scope_code(session, scope)
    current = _current_number(session, prefix)
    if current is None:
        current = _max_existing_number(session, prefix)
    return format_invoice_number(prefix, current + 1)


def invoice_stats(session: Session, scope: Scope) -> dict:
    prefix = _peek_scope_code(session, scope)
    like = f"{prefix}-%"

    total, first_invoice, last_invoice, first_date, last_date = (
        session.query(
            func.count(Sale.id),
            func.min(Sale.invoice_number),
            func.max(Sale.invoice_number),
            func.min(Sale.created_at),
            func.max(Sale.created_at),
        )
        .filter(
            Sale.invoice_number.like(like),
            ~Sale.invoice_number.like(f"{prefix}-%-%"),
            Sale.scope_type == scope.kind,
            Sale.scope_id == scope.id,
        )
        .one()
    )

    return {
        "code": prefix,
        "total_invoices": total or 0,
        "first_invoice": first_invoice,
        "last_invoice": last_invoice,
        "first_date": first_date,
        "last_date": last_date,
        "next_invoice_number": preview_next_invoice_number(session, scope),
    }
