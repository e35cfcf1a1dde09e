# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..extensions import db
from ..models import Account
from ..services import ledger_service
from ..services.scope_service import Scope, ScopeNotFound
from ..time_utils import parse_iso_datetime

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _scope_from_args():
    return Scope.parse(request.args.get("scope_type"), request.args.get("scope_id"))


@ledger_bp.get("/accounts")
def list_accounts_route():
    try:
        scope = _scope_from_args()
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    accounts = ledger_service.list_accounts(db.session, scope)
    return jsonify({"accounts": [a.to_dict() for a in accounts]}), 200


@ledger_bp.get("/accounts/<int:account_id>/entries")
def account_entries_route(account_id: int):
    account = db.session.get(Account, account_id)
    if not account:
        return jsonify({"error": "Account not found"}), 404

    try:
        start_dt = parse_iso_datetime(request.args.get("start_date"))
        end_dt = parse_iso_datetime(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes"}), 400

    limit = request.args.get("limit", default=500, type=int)
    limit = max(1, min(limit, 500))

    entries = ledger_service.get_account_entries(db.session, account_id, start_dt, end_dt, limit=limit)
    return jsonify({
        "account": account.to_dict(),
        "balance_cents": ledger_service.get_account_balance(db.session, account_id),
        "entries": [e.to_dict() for e in entries],
    }), 200


@ledger_bp.get("/trial-balance")
def trial_balance_route():
    try:
        scope = _scope_from_args()
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    return jsonify(ledger_service.get_trial_balance(db.session, scope)), 200
