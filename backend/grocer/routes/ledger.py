# Overview: Flask API routes for the audit ledger and settled invoices.

from flask import Blueprint, g, jsonify, request

from ..decorators import error_response, require_context
from ..errors import ForbiddenError, LedgerError
from ..permissions import Role, has_role
from ..services import invoice_service, ledger_service


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
@require_context
def list_ledger_events_route():
    """
    Audit events, newest first.

    Requires: manager role
    Query: category, entity_type, entity_id, session_id, limit (1-500)
    """
    if not has_role(g.ctx.role, Role.MANAGER):
        return error_response(ForbiddenError("Manager role required"))

    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))
    events = ledger_service.list_ledger_events(
        event_category=request.args.get("category"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        register_session_id=request.args.get("session_id", type=int),
        limit=limit,
    )
    return jsonify({"events": [e.to_dict() for e in events]})


@ledger_bp.get("/invoices/<int:invoice_id>")
@require_context
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_lines=True)})
    except LedgerError as e:
        return error_response(e)


@ledger_bp.get("/receipts/<receipt_no>")
@require_context
def get_receipt_route(receipt_no: str):
    try:
        invoice = invoice_service.get_invoice_by_receipt(receipt_no)
        return jsonify({"invoice": invoice.to_dict(include_lines=True)})
    except LedgerError as e:
        return error_response(e)
