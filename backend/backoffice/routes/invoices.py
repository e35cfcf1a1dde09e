# Overview: Flask API routes for invoice numbering previews and statistics.

from flask import Blueprint, request, jsonify

from ..extensions import db
from ..services import invoice_service
from ..services.scope_service import Scope, ScopeNotFound
from ..time_utils import to_utc_z


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("/next")
def next_invoice_route():
    """Preview the next invoice number for a scope. Allocates nothing."""
    try:
        scope = Scope.parse(request.args.get("scope_type"), request.args.get("scope_id"))
        preview = invoice_service.preview_next_invoice_number(db.session, scope)
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404

    return jsonify({"scope_type": scope.kind, "scope_id": scope.id, "next_invoice_number": preview}), 200


@invoices_bp.get("/stats")
def invoice_stats_route():
    try:
        scope = Scope.parse(request.args.get("scope_type"), request.args.get("scope_id"))
        stats = invoice_service.invoice_stats(db.session, scope)
    except ScopeNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404

    stats["first_date"] = to_utc_z(stats["first_date"])
    stats["last_date"] = to_utc_z(stats["last_date"])
    return jsonify(stats), 200
