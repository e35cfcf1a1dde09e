# Overview: Pytest coverage for FIFO allocation, settlement and advance credit.

import pytest

from backoffice.extensions import db
from backoffice.models import CustomerPayment, LedgerEntry, PaymentApplication, Sale
from backoffice.models.sales import PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_PARTIAL
from backoffice.services import account_service, balance_service, payment_service, sales_service
from backoffice.services.account_service import ACCOUNT_CASH, ACCOUNT_RECEIVABLE
from backoffice.services.ledger_service import REFERENCE_ADVANCE, REFERENCE_PAYMENT
from backoffice.services.payment_service import AllocationFailure, ApplyPayment, PaymentError, SaleNotFound
from conftest import line

CUSTOMER = "tel:5550100"


def _credit_sale(scope, total_cents, customer_key=CUSTOMER):
    return sales_service.create_sale(
        scope, [line(total_cents)], customer_key=customer_key, payment_amount_cents=0,
    )


def _account_balance(session, scope, name):
    account = account_service.find_account(session, scope, name)
    return account.balance_cents if account else 0


class TestClearOutstanding:

    def test_oldest_sales_first(self, db_session, warehouse_scope):
        older = _credit_sale(warehouse_scope, 500)
        newer = _credit_sale(warehouse_scope, 300)

        result = payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 700, "CASH")

        assert result.remainder_cents == 0
        assert [s.id for s in result.processed_sales] == [older.id, newer.id]

        older = db_session.get(Sale, older.id)
        newer = db_session.get(Sale, newer.id)
        assert (older.credit_amount_cents, older.payment_status) == (0, PAYMENT_STATUS_COMPLETED)
        assert (newer.credit_amount_cents, newer.payment_status) == (100, PAYMENT_STATUS_PARTIAL)
        for sale in (older, newer):
            assert sale.payment_amount_cents + sale.credit_amount_cents == sale.total_cents

        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 100

    def test_applied_plus_remainder_equals_payment(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 500)
        _credit_sale(warehouse_scope, 300)

        result = payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 1000, "CARD")

        assert result.remainder_cents == 200
        assert result.applied_cents + result.remainder_cents == 1000

        receipt = db_session.query(CustomerPayment).one()
        assert receipt.applied_cents == 800
        assert receipt.remainder_cents == 200
        assert receipt.remainder_kept_as_credit is False
        assert receipt.running_balance_cents == 0

    def test_remainder_kept_as_credit(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 500)

        result = payment_service.clear_outstanding(
            CUSTOMER, warehouse_scope, 800, "CASH", keep_remainder_as_credit=True,
        )

        assert result.remainder_cents == 300
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == -300
        advance = db_session.query(LedgerEntry).filter_by(reference_type=REFERENCE_ADVANCE).all()
        assert sorted(e.amount_cents for e in advance) == [300, 300]

    def test_no_open_sales(self, db_session, warehouse_scope):
        result = payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 700, "CASH")

        assert result.processed_sales == []
        assert result.remainder_cents == 700
        assert db_session.query(PaymentApplication).count() == 0

    def test_only_customer_and_scope_sales(self, db_session, warehouse_scope, branch_scope):
        mine = _credit_sale(warehouse_scope, 500)
        _credit_sale(warehouse_scope, 500, customer_key="tel:5550199")
        _credit_sale(branch_scope, 500)

        result = payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 2000, "CASH")

        assert [s.id for s in result.processed_sales] == [mine.id]
        assert result.remainder_cents == 1500

    def test_posts_cash_against_receivable(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 500)
        _credit_sale(warehouse_scope, 300)

        payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 700, "CASH")

        payments = db_session.query(LedgerEntry).filter_by(reference_type=REFERENCE_PAYMENT).all()
        assert sum(e.amount_cents for e in payments if e.direction == "DEBIT") == 700
        assert sum(e.amount_cents for e in payments if e.direction == "CREDIT") == 700
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_CASH) == 700
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_RECEIVABLE) == 100

    def test_receivable_matches_customer_balances(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 500)
        _credit_sale(warehouse_scope, 900, customer_key="tel:5550199")
        sales_service.create_sale(warehouse_scope, [line(200)], customer_key="tel:5550123",
                                  payment_amount_cents=500)
        payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 800, "CASH", keep_remainder_as_credit=True)
        payment_service.record_advance_credit("tel:5550199", warehouse_scope, 50, "CASH")

        receivable = _account_balance(db_session, warehouse_scope, ACCOUNT_RECEIVABLE)
        assert receivable == balance_service.total_customer_balance(db_session, warehouse_scope)
        assert receivable == -300 + 850 - 300

    def test_allocation_failure_rolls_back(self, db_session, warehouse_scope, monkeypatch):
        older = _credit_sale(warehouse_scope, 500)
        newer = _credit_sale(warehouse_scope, 300)

        original = payment_service.apply_payment
        calls = []

        def flaky(session, op, **kwargs):
            calls.append(op.sale.id)
            if len(calls) == 2:
                raise RuntimeError("card terminal offline")
            return original(session, op, **kwargs)

        monkeypatch.setattr(payment_service, "apply_payment", flaky)

        with pytest.raises(AllocationFailure):
            payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 700, "CASH")

        db.session.expire_all()
        assert db_session.get(Sale, older.id).credit_amount_cents == 500
        assert db_session.get(Sale, newer.id).credit_amount_cents == 300
        assert db_session.query(CustomerPayment).count() == 0
        assert db_session.query(PaymentApplication).count() == 0
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 800

    def test_rejects_bad_input(self, db_session, warehouse_scope):
        with pytest.raises(PaymentError):
            payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 0, "CASH")
        with pytest.raises(PaymentError):
            payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 100, "IOU")
        with pytest.raises(PaymentError):
            payment_service.clear_outstanding("", warehouse_scope, 100, "CASH")


class TestSettleSale:

    def test_partial_then_full(self, db_session, warehouse_scope):
        sale = _credit_sale(warehouse_scope, 1000)

        first = payment_service.settle_sale(sale.id, 400, "CARD")
        assert first.credit_after_cents == 600
        assert db_session.get(Sale, sale.id).payment_status == PAYMENT_STATUS_PARTIAL

        payment_service.settle_sale(sale.id, 600, "CASH")
        settled = db_session.get(Sale, sale.id)
        assert settled.credit_amount_cents == 0
        assert settled.payment_status == PAYMENT_STATUS_COMPLETED
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 0
        assert balance_service.verify_balance_chain(db_session, CUSTOMER, warehouse_scope) == []

    def test_cannot_exceed_credit(self, db_session, warehouse_scope):
        sale = _credit_sale(warehouse_scope, 1000)
        with pytest.raises(PaymentError):
            payment_service.settle_sale(sale.id, 1001, "CASH")
        assert db_session.query(CustomerPayment).count() == 0

    def test_completed_sale_rejected(self, db_session, warehouse_scope):
        sale = sales_service.create_sale(warehouse_scope, [line(1000)], customer_key=CUSTOMER)
        with pytest.raises(PaymentError):
            payment_service.settle_sale(sale.id, 100, "CASH")

    def test_unknown_sale(self, db_session):
        with pytest.raises(SaleNotFound):
            payment_service.settle_sale(424242, 100, "CASH")


class TestAdvanceCredit:

    def test_deposit_reduces_balance_and_posts(self, db_session, warehouse_scope):
        receipt = payment_service.record_advance_credit(CUSTOMER, warehouse_scope, 400, "CASH")

        assert receipt.running_balance_cents == -400
        assert receipt.remainder_kept_as_credit is True
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_CASH) == 400
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_RECEIVABLE) == -400

        summary = balance_service.outstanding_summary(db_session, CUSTOMER, warehouse_scope)
        assert summary["is_credit"] is True
        assert summary["advance_credit_cents"] == 400

    def test_apply_advance_credit_moves_no_money(self, db_session, warehouse_scope):
        older = _credit_sale(warehouse_scope, 300)
        newer = _credit_sale(warehouse_scope, 500)
        payment_service.record_advance_credit(CUSTOMER, warehouse_scope, 400, "CASH")
        cash_before = _account_balance(db_session, warehouse_scope, ACCOUNT_CASH)

        result = payment_service.apply_advance_credit(db_session, CUSTOMER, warehouse_scope)
        db_session.commit()

        assert result.applied_cents == 400
        assert result.remainder_cents == 0
        assert db_session.get(Sale, older.id).payment_status == PAYMENT_STATUS_COMPLETED
        assert db_session.get(Sale, newer.id).credit_amount_cents == 400
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_CASH) == cash_before
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 400

    def test_nothing_to_apply(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 300)
        result = payment_service.apply_advance_credit(db_session, CUSTOMER, warehouse_scope)
        assert result.processed_sales == []
        assert result.remainder_cents == 0


class TestAllocateInTransaction:
    """allocate() and apply_payment() called inside a caller-owned transaction."""

    def test_allocate_keeps_receivable_and_balances_together(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 500)

        result = payment_service.allocate(db_session, CUSTOMER, warehouse_scope, 500, "CASH")
        db_session.commit()

        assert result.applied_cents == 500
        receivable = _account_balance(db_session, warehouse_scope, ACCOUNT_RECEIVABLE)
        assert receivable == 0
        assert receivable == balance_service.total_customer_balance(db_session, warehouse_scope)
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 0

    def test_partial_allocation_lowers_balance_by_applied_amount(self, db_session, warehouse_scope):
        _credit_sale(warehouse_scope, 500)
        _credit_sale(warehouse_scope, 300)

        result = payment_service.allocate(db_session, CUSTOMER, warehouse_scope, 1000, "CARD")
        db_session.commit()

        assert result.remainder_cents == 200
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 0
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_RECEIVABLE) == 0

    def test_apply_payment_moves_balance_with_the_sale(self, db_session, warehouse_scope):
        sale = _credit_sale(warehouse_scope, 800)

        payment_service.apply_payment(
            db_session,
            ApplyPayment(db_session.get(Sale, sale.id), 300, payment_service.SOURCE_SETTLEMENT, "CASH"),
        )
        db_session.commit()

        assert db_session.get(Sale, sale.id).credit_amount_cents == 500
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 500
        assert _account_balance(db_session, warehouse_scope, ACCOUNT_RECEIVABLE) == 500

    def test_receipt_balance_after_settlement(self, db_session, warehouse_scope):
        sale = _credit_sale(warehouse_scope, 1000)

        payment_service.settle_sale(sale.id, 250, "CASH")

        receipt = db_session.query(CustomerPayment).one()
        assert receipt.running_balance_cents == 750
        assert balance_service.verify_balance_chain(db_session, CUSTOMER, warehouse_scope) == []
