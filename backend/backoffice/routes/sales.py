# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API Routes

POST /api/sales creates a completed sale in one unit of work: invoice
number, customer running balance and ledger entries. Amounts are integer
cents.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import sales_service
from ..services.invoice_service import InvoiceNumberError
from ..services.ledger_service import LedgerImbalance, entries_for_sale
from ..services.payment_service import AllocationFailure, PaymentError, get_sale_applications
from ..services.sales_service import SaleError
from ..services.scope_service import Scope, ScopeNotFound


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Create a sale.

    Request body:
    {
        "scope_type": "WAREHOUSE",
        "scope_id": 1,
        "customer_key": "tel:5550100",          (optional)
        "customer_name": "Jane Doe",            (optional)
        "customer_phone": "555-0100",           (optional)
        "lines": [
            {"item_ref": "SKU-1", "quantity": 2, "unit_price_cents": 500, "unit_cost_cents": 300}
        ],
        "payment_amount_cents": 400,            (optional)
        "credit_amount_cents": 600,             (optional)
        "payment_method": "CASH",               (optional)
        "user_id": 3,                           (optional)
        "salesperson_numbering": false,         (optional, warehouses only)
        "apply_advance_credit": false           (optional)
    }

    Returns:
        201: Sale created
        400: Invalid input, unknown scope or payment/credit mismatch
        500: Server error
    """
    try:
        data = request.get_json(silent=True) or {}
        scope = Scope.parse(data.get("scope_type"), data.get("scope_id"))

        sale = sales_service.create_sale(
            scope,
            data.get("lines") or [],
            customer_key=data.get("customer_key"),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            payment_amount_cents=data.get("payment_amount_cents"),
            credit_amount_cents=data.get("credit_amount_cents"),
            payment_method=data.get("payment_method") or "CASH",
            user_id=data.get("user_id"),
            salesperson_numbering=bool(data.get("salesperson_numbering")),
            apply_advance_credit=bool(data.get("apply_advance_credit")),
        )

        return jsonify({
            "sale": sale.to_dict(),
            "lines": [line.to_dict() for line in sale.lines],
        }), 201

    except (SaleError, ScopeNotFound, InvoiceNumberError, PaymentError,
            AllocationFailure, LedgerImbalance) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    try:
        scope = Scope.parse(request.args.get("scope_type"), request.args.get("scope_id"))
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    sales = sales_service.list_sales(
        scope,
        customer_key=request.args.get("customer_key"),
        payment_status=request.args.get("payment_status"),
        limit=limit,
    )
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Sale with its lines, payment applications and ledger entries."""
    sale = sales_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404

    return jsonify({
        "sale": sale.to_dict(),
        "lines": [line.to_dict() for line in sale.lines],
        "applications": [a.to_dict() for a in get_sale_applications(db.session, sale_id)],
        "ledger_entries": [e.to_dict() for e in entries_for_sale(db.session, sale_id)],
    }), 200
