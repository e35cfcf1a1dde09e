# Overview: Chart of accounts per scope; entry posting with atomic balance updates.

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Account, LedgerEntry
from ..models.ledger import (
    ACCOUNT_KIND_ASSET,
    ACCOUNT_KIND_EXPENSE,
    ACCOUNT_KIND_REVENUE,
    ACCOUNT_KINDS,
    DIRECTION_CREDIT,
    DIRECTION_DEBIT,
)
from ..time_utils import utcnow
from .scope_service import Scope

logger = logging.getLogger(__name__)


# =============================================================================
# STANDARD ACCOUNTS (created lazily per scope)
# =============================================================================

ACCOUNT_CASH = "Cash"
ACCOUNT_RECEIVABLE = "Accounts Receivable"
ACCOUNT_SALES_REVENUE = "Sales Revenue"
ACCOUNT_INVENTORY = "Inventory"
ACCOUNT_COGS = "Cost of Goods Sold"

STANDARD_ACCOUNTS = {
    ACCOUNT_CASH: ACCOUNT_KIND_ASSET,
    ACCOUNT_RECEIVABLE: ACCOUNT_KIND_ASSET,
    ACCOUNT_SALES_REVENUE: ACCOUNT_KIND_REVENUE,
    ACCOUNT_INVENTORY: ACCOUNT_KIND_ASSET,
    ACCOUNT_COGS: ACCOUNT_KIND_EXPENSE,
}


class AccountError(Exception):
    """Raised for invalid account or entry operations."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def find_account(session: Session, scope: Scope, name: str) -> Account | None:
    return session.query(Account).filter_by(name=name, **scope.filter_kwargs()).first()


def get_or_create_account(session: Session, scope: Scope, name: str, kind: str | None = None) -> Account:
    """
    Return the (scope, name) account, creating it on first use.

    Safe to call repeatedly (idempotent) and from concurrent writers: a
    lost insert race falls back to reading the winner's row.
    """
    kind = kind or STANDARD_ACCOUNTS.get(name)
    if kind not in ACCOUNT_KINDS:
        raise AccountError(f"Invalid account kind: {kind}", details={"name": name})

    account = find_account(session, scope, name)
    if account:
        return account

    account = Account(
        scope_type=scope.kind,
        scope_id=scope.id,
        name=name,
        kind=kind,
        balance_cents=0,
        status="ACTIVE",
    )
    try:
        with session.begin_nested():
            session.add(account)
    except IntegrityError:
        account = find_account(session, scope, name)
        if account is None:
            raise
        return account

    logger.info("Created account %r (%s) for %s", name, kind, scope)
    return account


def post_entry(
    session: Session,
    account: Account,
    direction: str,
    amount_cents: int,
    description: str | None = None,
    *,
    reference_type: str,
    sale_id: int | None = None,
    payment_id: int | None = None,
    user_id: int | None = None,
) -> LedgerEntry:
    """
    Append an entry and move the account balance.

    Sign convention: DEBIT adds to the balance, CREDIT subtracts from it,
    for every account kind. The balance update is a single SQL increment so
    concurrent posters to the same account never lose an update.
    """
    if direction not in (DIRECTION_DEBIT, DIRECTION_CREDIT):
        raise AccountError(f"Invalid entry direction: {direction}")
    if amount_cents is None or amount_cents < 0:
        raise AccountError("Entry amount must be zero or positive", details={"amount_cents": amount_cents})

    entry = LedgerEntry(
        account_id=account.id,
        direction=direction,
        amount_cents=amount_cents,
        description=description,
        reference_type=reference_type,
        reference_sale_id=sale_id,
        reference_payment_id=payment_id,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    session.add(entry)

    delta = amount_cents if direction == DIRECTION_DEBIT else -amount_cents
    session.execute(
        update(Account)
        .where(Account.id == account.id)
        .values(balance_cents=Account.balance_cents + delta, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    return entry


def normal_balance(account: Account) -> tuple[int, int]:
    """
    Kind-aware presentation of a balance as (debit_side, credit_side).

    Asset and expense accounts are reported on the debit side; liability
    and revenue accounts carry negative stored balances under the single
    sign convention and are reported (negated) on the credit side.
    """
    if account.kind in (ACCOUNT_KIND_ASSET, ACCOUNT_KIND_EXPENSE):
        return account.balance_cents, 0
    return 0, -account.balance_cents
