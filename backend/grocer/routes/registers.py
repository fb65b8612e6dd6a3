# Overview: Flask API routes for quick-sale register sessions; parses input and returns JSON responses.

# backend/grocer/routes/registers.py
"""
Quick Sales API Routes

WHY: A cashier rings up lines against a day session and settles it once,
with a manager PIN, into a single invoice.

SECURITY:
- Every route needs X-User-Id (require_context)
- Line removal and close additionally need a manager PIN in the body
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_context
from ..errors import LedgerError
from ..services import register_service


registers_bp = Blueprint("registers", __name__, url_prefix="/api/quick-sales")


@registers_bp.post("/ensure-open")
@require_context
def ensure_open_route():
    """
    Open (or return) today's session for the acting cashier.

    Request body:
    {
        "terminal": "T1",             (optional, DEFAULT_TERMINAL)
        "opening_float_cents": 5000   (optional, only used on creation)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        session = register_service.ensure_open(
            g.ctx.user_id,
            data.get("terminal"),
            data.get("opening_float_cents", 0),
            ctx=g.ctx,
        )
        return jsonify({"session": session.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/session")
@require_context
def get_session_route():
    """Today's open session for the acting cashier, or null."""
    try:
        session = register_service.get_open_session(g.ctx.user_id, request.args.get("terminal"))
        return jsonify({"session": session.to_dict() if session else None})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load open session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/sessions/<int:session_id>")
@require_context
def session_summary_route(session_id: int):
    try:
        return jsonify(register_service.get_session_summary(session_id))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load session summary")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/lines")
@require_context
def list_lines_route():
    """
    Page through session lines.

    Query: session_id (optional), limit (1-500, default 200), cursor (last line id)
    """
    try:
        result = register_service.list_lines(
            request.args.get("session_id", type=int),
            request.args.get("limit", register_service.DEFAULT_LIST_LIMIT),
            g.request_id,
            cursor=request.args.get("cursor"),
            ctx=g.ctx,
            terminal=request.args.get("terminal"),
        )
        return jsonify(result)
    except LedgerError as e:
        return error_response(e)


@registers_bp.post("/lines")
@require_context
def add_line_route():
    """
    Add a line to the acting cashier's session.

    Request body:
    {
        "product_id": 1,
        "qty": "1.250",
        "discount_cents": 100,   (optional manual discount)
        "unit": "kg",            (optional, must match product)
        "terminal": "T1"         (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    if data.get("product_id") is None or data.get("qty") is None:
        return jsonify({"error": "product_id and qty required", "code": "VALIDATION"}), 400
    try:
        line = register_service.add_line(
            data["product_id"],
            data["qty"],
            data.get("discount_cents"),
            data.get("unit"),
            g.request_id,
            g.ctx,
            terminal=data.get("terminal"),
            discount_reason=data.get("discount_reason"),
        )
        return jsonify({"line": line.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add line")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.delete("/lines/<int:line_id>")
@require_context
def remove_line_route(line_id: int):
    """
    Remove a line with manager approval.

    Request body: {"pin": "1234", "reason": "Customer changed mind"}
    """
    data = request.get_json(silent=True) or {}
    try:
        removed = register_service.remove_line(
            line_id, g.request_id, g.ctx, data.get("pin"), data.get("reason")
        )
        if not removed:
            return jsonify({"removed": False, "error": "Session is not open", "code": "CONFLICT"}), 409
        return jsonify({"removed": True})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove line")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/close")
@require_context
def close_route():
    """
    Close a session with manager approval.

    Request body:
    {
        "pin": "1234",
        "reason": "End of day",
        "session_id": 1,                    (optional, default: today's session)
        "terminal": "T1",                   (optional)
        "tenders": {"cash": 1000, "card": 500},   (optional, default all cash)
        "closing_cash_cents": 6000          (optional cash count)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("session_id") is not None:
            result = register_service.close_session(
                data["session_id"],
                data.get("reason"),
                g.ctx,
                data.get("pin"),
                tenders=data.get("tenders"),
                closing_cash_cents=data.get("closing_cash_cents"),
                request_id=g.request_id,
            )
        else:
            result = register_service.close_session_for_cashier(
                g.ctx.user_id,
                data.get("reason"),
                g.request_id,
                g.ctx,
                data.get("pin"),
                terminal=data.get("terminal"),
                tenders=data.get("tenders"),
                closing_cash_cents=data.get("closing_cash_cents"),
            )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close session")
        return jsonify({"error": "Internal server error"}), 500
