# Overview: Pytest coverage for sale creation, payment splits and running balances.

import pytest

from backoffice.models import CustomerBalance, PaymentApplication, Sale, SaleLine
from backoffice.models.sales import (
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
)
from backoffice.services import balance_service, payment_service, sales_service
from backoffice.services.payment_service import SOURCE_ADVANCE_CREDIT
from backoffice.services.sales_service import PaymentMismatch, SaleError
from backoffice.services.scope_service import ScopeNotFound, customer_key_for
from conftest import line

CUSTOMER = "tel:5550100"


class TestPaymentSplit:

    def test_neither_amount_means_paid_in_full(self):
        assert sales_service.resolve_payment_split(1000) == (1000, 0)

    def test_payment_only_derives_credit(self):
        assert sales_service.resolve_payment_split(1000, payment_amount_cents=250) == (250, 750)

    def test_credit_only_derives_payment(self):
        assert sales_service.resolve_payment_split(1000, credit_amount_cents=1000) == (0, 1000)

    def test_overpayment_gives_negative_credit(self):
        assert sales_service.resolve_payment_split(600, payment_amount_cents=1000) == (1000, -400)

    def test_mismatch_raises(self):
        with pytest.raises(PaymentMismatch) as exc:
            sales_service.resolve_payment_split(1000, 300, 300)
        assert exc.value.details["total_cents"] == 1000

    def test_negative_payment_rejected(self):
        with pytest.raises(SaleError):
            sales_service.resolve_payment_split(1000, payment_amount_cents=-5)

    def test_initial_status(self):
        assert sales_service.initial_payment_status(1000, 0) == PAYMENT_STATUS_COMPLETED
        assert sales_service.initial_payment_status(1000, -200) == PAYMENT_STATUS_COMPLETED
        assert sales_service.initial_payment_status(400, 600) == PAYMENT_STATUS_PARTIAL
        assert sales_service.initial_payment_status(0, 1000) == PAYMENT_STATUS_PENDING


class TestCreateSale:

    def test_sale_persists_lines_and_invoice(self, db_session, warehouse_scope):
        sale = sales_service.create_sale(
            warehouse_scope,
            [line(500, quantity=2), line(250, item_ref="ITEM-2")],
            customer_key=CUSTOMER,
            payment_amount_cents=1250,
        )

        assert sale.invoice_number == "WH1-000001"
        assert sale.total_cents == 1250
        assert sale.payment_status == PAYMENT_STATUS_COMPLETED
        assert db_session.query(SaleLine).filter_by(sale_id=sale.id).count() == 2

    def test_payment_plus_credit_equals_total(self, db_session, warehouse_scope):
        sale = sales_service.create_sale(
            warehouse_scope, [line(999, quantity=3)],
            customer_key=CUSTOMER, credit_amount_cents=1000,
        )
        assert sale.payment_amount_cents + sale.credit_amount_cents == sale.total_cents
        assert sale.payment_amount_cents == 1997
        assert sale.tendered_cents == 1997

    def test_mismatch_writes_nothing(self, db_session, warehouse_scope):
        with pytest.raises(PaymentMismatch):
            sales_service.create_sale(
                warehouse_scope, [line(1000)],
                customer_key=CUSTOMER, payment_amount_cents=300, credit_amount_cents=300,
            )
        assert db_session.query(Sale).count() == 0

    def test_credit_requires_customer(self, db_session, warehouse_scope):
        with pytest.raises(SaleError):
            sales_service.create_sale(warehouse_scope, [line(1000)], payment_amount_cents=0)

    def test_walk_in_cash_sale(self, db_session, warehouse_scope):
        sale = sales_service.create_sale(warehouse_scope, [line(1000)])
        assert sale.customer_key is None
        assert sale.running_balance_cents == 0
        assert db_session.query(CustomerBalance).count() == 0

    def test_invalid_lines(self, db_session, warehouse_scope):
        with pytest.raises(SaleError):
            sales_service.create_sale(warehouse_scope, [])
        with pytest.raises(SaleError) as exc:
            sales_service.create_sale(warehouse_scope, [line(100, quantity=0)])
        assert exc.value.details["lines"][0]["field"] == "quantity"

    def test_invalid_method(self, db_session, warehouse_scope):
        with pytest.raises(payment_service.PaymentError):
            sales_service.create_sale(warehouse_scope, [line(100)], payment_method="BITCOIN")

    def test_unknown_scope_rolls_back(self, db_session, warehouse_scope):
        from backoffice.services.scope_service import Scope
        with pytest.raises(ScopeNotFound):
            sales_service.create_sale(Scope("BRANCH", 4242), [line(100)])
        assert db_session.query(Sale).count() == 0

    def test_salesperson_invoice(self, db_session, warehouse_scope, salesperson):
        sale = sales_service.create_sale(
            warehouse_scope, [line(100)], user_id=salesperson.id, salesperson_numbering=True,
        )
        assert sale.invoice_number == "WH1-AHM-000001"
        assert sale.created_by_user_id == salesperson.id

    def test_customer_key_derived_from_phone(self, db_session, warehouse_scope):
        sale = sales_service.create_sale(
            warehouse_scope, [line(100)],
            customer_name="Jane", customer_phone="(555) 0100", payment_amount_cents=0,
        )
        assert sale.customer_key == "tel:5550100"
        assert customer_key_for(name="  Jane   DOE ") == "name:jane doe"
        assert customer_key_for() is None


class TestRunningBalance:

    def test_balance_chain_across_sales(self, db_session, warehouse_scope):
        first = sales_service.create_sale(warehouse_scope, [line(1000)], customer_key=CUSTOMER,
                                          payment_amount_cents=300)
        second = sales_service.create_sale(warehouse_scope, [line(500)], customer_key=CUSTOMER,
                                           payment_amount_cents=0)
        third = sales_service.create_sale(warehouse_scope, [line(200)], customer_key=CUSTOMER,
                                          payment_amount_cents=600)

        assert first.running_balance_cents == 700
        assert second.running_balance_cents == 1200
        assert third.running_balance_cents == 800
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 800
        assert balance_service.verify_balance_chain(db_session, CUSTOMER, warehouse_scope) == []

    def test_balances_are_per_scope(self, db_session, warehouse_scope, branch_scope):
        sales_service.create_sale(warehouse_scope, [line(1000)], customer_key=CUSTOMER, payment_amount_cents=0)
        sales_service.create_sale(branch_scope, [line(300)], customer_key=CUSTOMER, payment_amount_cents=0)

        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 1000
        assert balance_service.prior_balance(db_session, CUSTOMER, branch_scope, lock=False) == 300

    def test_sale_against_advance_credit(self, db_session, warehouse_scope):
        payment_service.record_advance_credit(CUSTOMER, warehouse_scope, 400, "CASH")

        sale = sales_service.create_sale(
            warehouse_scope, [line(1000)], customer_key=CUSTOMER, payment_amount_cents=0,
        )

        assert sale.credit_amount_cents == 1000
        assert sale.running_balance_cents == 600

    def test_apply_advance_credit_on_request(self, db_session, warehouse_scope):
        payment_service.record_advance_credit(CUSTOMER, warehouse_scope, 400, "CASH")

        sale = sales_service.create_sale(
            warehouse_scope, [line(1000)], customer_key=CUSTOMER,
            payment_amount_cents=0, apply_advance_credit=True,
        )

        assert sale.payment_amount_cents == 400
        assert sale.credit_amount_cents == 600
        assert sale.payment_status == PAYMENT_STATUS_PARTIAL
        assert sale.tendered_cents == 0
        assert sale.running_balance_cents == 600
        assert balance_service.prior_balance(db_session, CUSTOMER, warehouse_scope, lock=False) == 600

        application = db_session.query(PaymentApplication).filter_by(sale_id=sale.id).one()
        assert application.source == SOURCE_ADVANCE_CREDIT
        assert application.payment_id is None

    def test_statement_and_summary(self, db_session, warehouse_scope):
        sales_service.create_sale(warehouse_scope, [line(500)], customer_key=CUSTOMER, payment_amount_cents=0)
        sales_service.create_sale(warehouse_scope, [line(300)], customer_key=CUSTOMER, payment_amount_cents=0)
        payment_service.clear_outstanding(CUSTOMER, warehouse_scope, 600, "CASH")

        statement = balance_service.customer_statement(db_session, CUSTOMER, warehouse_scope)
        assert [s["type"] for s in statement] == ["SALE", "SALE", "RECEIPT"]
        assert [s["running_balance_cents"] for s in statement] == [500, 800, 200]

        summary = balance_service.outstanding_summary(db_session, CUSTOMER, warehouse_scope)
        assert summary["balance_cents"] == 200
        assert summary["open_sales_count"] == 1
        assert summary["open_sales_credit_cents"] == 200
        assert summary["is_credit"] is False
        assert summary["latest_invoice"] == "WH1-000002"

    def test_chain_break_detected(self, db_session, warehouse_scope):
        sale = sales_service.create_sale(warehouse_scope, [line(500)], customer_key=CUSTOMER,
                                         payment_amount_cents=0)
        db_session.query(Sale).filter_by(id=sale.id).update({"running_balance_cents": 999})
        db_session.commit()

        breaks = balance_service.verify_balance_chain(db_session, CUSTOMER, warehouse_scope)
        assert len(breaks) == 1
        assert breaks[0]["expected_cents"] == 500
        assert breaks[0]["stored_cents"] == 999

    def test_next_balance(self):
        assert balance_service.next_balance(-400, 1000, 0) == 600
        assert balance_service.next_balance(0, 600, 1000) == -400
