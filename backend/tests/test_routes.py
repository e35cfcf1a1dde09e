# Overview: Pytest coverage for the HTTP surface.

from backoffice.models import Sale


def _sale_payload(warehouse, **overrides):
    payload = {
        "scope_type": "WAREHOUSE",
        "scope_id": warehouse.id,
        "customer_name": "Jane Doe",
        "customer_phone": "555-0100",
        "lines": [{"item_ref": "SKU-1", "quantity": 1, "unit_price_cents": 1000, "unit_cost_cents": 600}],
    }
    payload.update(overrides)
    return payload


class TestSalesRoutes:

    def test_create_and_fetch_sale(self, client, db_session, warehouse):
        response = client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=400))
        assert response.status_code == 201

        sale = response.json["sale"]
        assert sale["invoice_number"] == "WH1-000001"
        assert sale["credit_amount_cents"] == 600
        assert sale["payment_status"] == "PARTIAL"
        assert sale["customer_key"] == "tel:5550100"

        detail = client.get(f"/api/sales/{sale['id']}")
        assert detail.status_code == 200
        assert len(detail.json["lines"]) == 1
        assert len(detail.json["ledger_entries"]) == 5

    def test_mismatch_is_400(self, client, db_session, warehouse):
        response = client.post(
            "/api/sales",
            json=_sale_payload(warehouse, payment_amount_cents=300, credit_amount_cents=300),
        )
        assert response.status_code == 400
        assert response.json["details"]["total_cents"] == 1000
        assert db_session.query(Sale).count() == 0

    def test_unknown_scope_type_is_400(self, client, db_session, warehouse):
        response = client.post("/api/sales", json=_sale_payload(warehouse, scope_type="STORE"))
        assert response.status_code == 400

    def test_missing_sale_is_404(self, client, db_session):
        assert client.get("/api/sales/999").status_code == 404

    def test_list_sales(self, client, db_session, warehouse):
        client.post("/api/sales", json=_sale_payload(warehouse))
        client.post("/api/sales", json=_sale_payload(warehouse))

        response = client.get(f"/api/sales?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert response.status_code == 200
        assert [s["invoice_number"] for s in response.json["sales"]] == ["WH1-000002", "WH1-000001"]


class TestPaymentRoutes:

    def test_clear_outstanding(self, client, db_session, warehouse):
        client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=500))
        client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=700))

        response = client.post("/api/payments/clear-outstanding", json={
            "customer_key": "tel:5550100",
            "scope_type": "WAREHOUSE",
            "scope_id": warehouse.id,
            "payment_amount_cents": 700,
            "method": "CASH",
        })

        assert response.status_code == 200
        processed = response.json["processed_sales"]
        assert [(s["credit_amount_cents"], s["payment_status"]) for s in processed] == [
            (0, "COMPLETED"), (100, "PARTIAL"),
        ]
        assert [s["applied_cents"] for s in processed] == [500, 200]
        assert response.json["remainder_cents"] == 0

    def test_clear_outstanding_requires_fields(self, client, db_session, warehouse):
        response = client.post("/api/payments/clear-outstanding", json={
            "scope_type": "WAREHOUSE", "scope_id": warehouse.id,
        })
        assert response.status_code == 400

    def test_settle_and_advance_credit(self, client, db_session, warehouse):
        created = client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=0))
        sale_id = created.json["sale"]["id"]

        settle = client.post(f"/api/payments/sales/{sale_id}/settle", json={"amount_cents": 1000, "method": "CARD"})
        assert settle.status_code == 200
        assert settle.json["sale"]["payment_status"] == "COMPLETED"

        again = client.post(f"/api/payments/sales/{sale_id}/settle", json={"amount_cents": 1, "method": "CARD"})
        assert again.status_code == 400

        deposit = client.post("/api/payments/advance-credit", json={
            "customer_key": "tel:5550100",
            "scope_type": "WAREHOUSE",
            "scope_id": warehouse.id,
            "amount_cents": 250,
            "method": "CASH",
        })
        assert deposit.status_code == 201
        assert deposit.json["payment"]["running_balance_cents"] == -250

    def test_settle_missing_sale_is_404(self, client, db_session):
        response = client.post("/api/payments/sales/424242/settle", json={"amount_cents": 100, "method": "CASH"})
        assert response.status_code == 404
        assert response.json["details"] == {"sale_id": 424242}


class TestReadRoutes:

    def test_customer_balance_and_statement(self, client, db_session, warehouse):
        client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=0))

        balance = client.get(f"/api/customers/tel:5550100/balance?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert balance.status_code == 200
        assert balance.json["balance_cents"] == 1000
        assert balance.json["open_sales_count"] == 1

        statement = client.get(f"/api/customers/tel:5550100/statement?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert statement.status_code == 200
        assert len(statement.json["lines"]) == 1
        assert statement.json["chain_breaks"] == []

    def test_ledger_routes(self, client, db_session, warehouse):
        client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=400))

        accounts = client.get(f"/api/ledger/accounts?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert accounts.status_code == 200
        assert len(accounts.json["accounts"]) == 5

        cash = next(a for a in accounts.json["accounts"] if a["name"] == "Cash")
        entries = client.get(f"/api/ledger/accounts/{cash['id']}/entries")
        assert entries.status_code == 200
        assert entries.json["balance_cents"] == 400

        trial = client.get(f"/api/ledger/trial-balance?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert trial.status_code == 200
        assert trial.json["is_balanced"] is True

    def test_bad_date_filter_is_400(self, client, db_session, warehouse):
        client.post("/api/sales", json=_sale_payload(warehouse))
        accounts = client.get(f"/api/ledger/accounts?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        account_id = accounts.json["accounts"][0]["id"]

        response = client.get(f"/api/ledger/accounts/{account_id}/entries?start_date=yesterday")
        assert response.status_code == 400

    def test_invoice_routes(self, client, db_session, warehouse):
        preview = client.get(f"/api/invoices/next?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert preview.status_code == 200
        assert preview.json["next_invoice_number"] == "WH1-000001"

        client.post("/api/sales", json=_sale_payload(warehouse))

        stats = client.get(f"/api/invoices/stats?scope_type=WAREHOUSE&scope_id={warehouse.id}")
        assert stats.status_code == 200
        assert stats.json["total_invoices"] == 1
        assert stats.json["next_invoice_number"] == "WH1-000002"

        missing = client.get("/api/invoices/next?scope_type=BRANCH&scope_id=999")
        assert missing.status_code == 404

    def test_health(self, client, db_session, warehouse):
        client.post("/api/sales", json=_sale_payload(warehouse, payment_amount_cents=0))

        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["checks"]["ledger"]["status"] == "healthy"
