# Overview: Flask API routes for stock, receiving, adjustments, and stocktake.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_context
from ..errors import LedgerError, ValidationError
from ..services import inventory_service, stocktake_service
from ..time_utils import parse_iso_datetime


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/stock")
@require_context
def stock_route():
    """
    Ledger-derived stock.

    Query: product_id (repeatable). Without it every product is reported.
    """
    ids = request.args.getlist("product_id", type=int)
    stock = inventory_service.get_current_stock(ids or None)
    return jsonify({"stock": {str(pid): str(qty) for pid, qty in stock.items()}})


@inventory_bp.post("/receive")
@require_context
def receive_route():
    """
    Post goods received.

    Request body:
    {
        "lines": [{"sku": "APL-1", "qty": 10, "cost_cents": 45}],
        "update_cost": false,
        "terminal": "BACK"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = inventory_service.post_receive(
            data.get("lines"),
            ctx=g.ctx,
            update_cost=bool(data.get("update_cost", False)),
            terminal=data.get("terminal"),
        )
        return jsonify(result), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post receive")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust")
@require_context
def adjust_route():
    """
    Post manual adjustments or waste.

    Requires: manager role

    Request body:
    {
        "mode": "ADJUST" | "WASTE",
        "reason": "Damaged",
        "lines": [{"sku": "APL-1", "qty": -2}]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = inventory_service.post_adjust(
            data.get("lines"),
            mode=data.get("mode"),
            reason=data.get("reason"),
            ctx=g.ctx,
            terminal=data.get("terminal"),
        )
        return jsonify(result), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/stocktake/preview")
@require_context
def stocktake_preview_route():
    """Differences only; nothing is written. Body: {"rows": [[sku, counted_qty, note?], ...]}"""
    data = request.get_json(silent=True) or {}
    try:
        diffs = stocktake_service.calculate_differences(data.get("rows") or [])
        return jsonify({"differences": [d.to_dict() for d in diffs]})
    except LedgerError as e:
        return error_response(e)


@inventory_bp.post("/stocktake")
@require_context
def stocktake_route():
    """
    Apply a stocktake.

    Requires: manager role

    Request body: {"rows": [...]} or {"csv": "sku,counted_qty,note\\n..."}
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("csv"):
            rows = stocktake_service.parse_count_csv(data["csv"])
        else:
            rows = data.get("rows") or []
        result = stocktake_service.reconcile_stocktake(rows, ctx=g.ctx, terminal=data.get("terminal"))
        return jsonify(result), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply stocktake")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_context
def movements_route():
    """
    Movement log, newest first.

    Query: product_id, sku, type, reason, from, to (ISO-8601), limit, offset
    """
    try:
        date_from = parse_iso_datetime(request.args.get("from"))
        date_to = parse_iso_datetime(request.args.get("to"))
    except ValueError:
        return error_response(ValidationError("from/to must be ISO-8601 datetimes"))
    try:
        movements = inventory_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            sku=request.args.get("sku"),
            type=request.args.get("type"),
            reason=request.args.get("reason"),
            date_from=date_from,
            date_to=date_to,
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]})
    except LedgerError as e:
        return error_response(e)
