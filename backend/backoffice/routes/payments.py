# Overview: Flask API routes for customer payments; parses input and returns JSON responses.

"""
Payment API Routes

- clear-outstanding: one payment spread over a customer's open sales, oldest first
- settle: pay down one specific sale
- advance-credit: deposit held against future sales
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service
from ..services.ledger_service import LedgerImbalance
from ..services.payment_service import AllocationFailure, PaymentError, SaleNotFound
from ..services.scope_service import Scope, ScopeNotFound


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/clear-outstanding")
def clear_outstanding_route():
    """
    Apply a customer payment to open sales, oldest first.

    Request body:
    {
        "customer_key": "tel:5550100",
        "scope_type": "WAREHOUSE",
        "scope_id": 1,
        "payment_amount_cents": 70000,
        "method": "CASH",
        "keep_remainder_as_credit": false   (optional)
    }

    Returns:
        200: {"processed_sales": [...], "remainder_cents": 0, ...}
        400: Invalid input
        500: Server error
    """
    try:
        data = request.get_json(silent=True) or {}
        scope = Scope.parse(data.get("scope_type"), data.get("scope_id"))

        customer_key = data.get("customer_key")
        payment_amount_cents = data.get("payment_amount_cents")
        method = data.get("method")
        if not all([customer_key, payment_amount_cents, method]):
            return jsonify({"error": "customer_key, payment_amount_cents, and method required"}), 400

        result = payment_service.clear_outstanding(
            customer_key,
            scope,
            payment_amount_cents,
            method,
            keep_remainder_as_credit=bool(data.get("keep_remainder_as_credit")),
            user_id=data.get("user_id"),
        )
        return jsonify(result.to_dict()), 200

    except (PaymentError, AllocationFailure, ScopeNotFound, LedgerImbalance) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to clear outstanding balance")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/sales/<int:sale_id>/settle")
def settle_sale_route(sale_id: int):
    """
    Request body:
    {"amount_cents": 10000, "method": "CARD"}
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = data.get("amount_cents")
        method = data.get("method")
        if not all([amount_cents, method]):
            return jsonify({"error": "amount_cents and method required"}), 400

        application = payment_service.settle_sale(
            sale_id, amount_cents, method, user_id=data.get("user_id"),
        )
        return jsonify({
            "application": application.to_dict(),
            "sale": application.sale.to_dict(),
        }), 200

    except SaleNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except (PaymentError, LedgerImbalance) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to settle sale")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/advance-credit")
def advance_credit_route():
    """
    Request body:
    {"customer_key": "...", "scope_type": "BRANCH", "scope_id": 2, "amount_cents": 5000, "method": "CASH"}
    """
    try:
        data = request.get_json(silent=True) or {}
        scope = Scope.parse(data.get("scope_type"), data.get("scope_id"))

        customer_key = data.get("customer_key")
        amount_cents = data.get("amount_cents")
        method = data.get("method")
        if not all([customer_key, amount_cents, method]):
            return jsonify({"error": "customer_key, amount_cents, and method required"}), 400

        receipt = payment_service.record_advance_credit(
            customer_key, scope, amount_cents, method, user_id=data.get("user_id"),
        )
        return jsonify({"payment": receipt.to_dict()}), 201

    except (PaymentError, ScopeNotFound, LedgerImbalance) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to record advance credit")
        return jsonify({"error": "Internal server error"}), 500
