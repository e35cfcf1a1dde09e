# Overview: Flask API routes for customer balances and statements.

from flask import Blueprint, request, jsonify

from ..extensions import db
from ..services import balance_service
from ..services.scope_service import Scope, ScopeNotFound
from ..time_utils import to_utc_z


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _scope_from_args():
    return Scope.parse(request.args.get("scope_type"), request.args.get("scope_id"))


@customers_bp.get("/<path:customer_key>/balance")
def customer_balance_route(customer_key: str):
    """Current balance, open sales and advance-credit flag for one customer in one scope."""
    try:
        scope = _scope_from_args()
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    return jsonify(balance_service.outstanding_summary(db.session, customer_key, scope)), 200


@customers_bp.get("/<path:customer_key>/statement")
def customer_statement_route(customer_key: str):
    """Sales and receipts in order with the running balance after each."""
    try:
        scope = _scope_from_args()
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    lines = balance_service.customer_statement(db.session, customer_key, scope)
    for line in lines:
        line["created_at"] = to_utc_z(line["created_at"])

    return jsonify({
        "customer_key": customer_key,
        "scope_type": scope.kind,
        "scope_id": scope.id,
        "lines": lines,
        "chain_breaks": balance_service.verify_balance_chain(db.session, customer_key, scope),
    }), 200
