# Overview: Flask API routes for carts; lines, discounts, holds, and direct sale.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_context
from ..errors import LedgerError
from ..services import cart_service


carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


@carts_bp.post("")
@require_context
def create_cart_route():
    """Request body: {"terminal": "T1"}"""
    data = request.get_json(silent=True) or {}
    try:
        cart = cart_service.create_cart(
            data.get("terminal") or current_app.config.get("DEFAULT_TERMINAL", "T1"),
            g.ctx.user_id,
        )
        return jsonify({"cart": cart.to_dict(include_lines=True)}), 201
    except LedgerError as e:
        return error_response(e)


@carts_bp.get("/<int:cart_id>")
@require_context
def get_cart_route(cart_id: int):
    try:
        cart = cart_service.get_cart(cart_id)
        return jsonify({"cart": cart.to_dict(include_lines=True), "totals": cart_service.get_totals(cart_id)})
    except LedgerError as e:
        return error_response(e)


@carts_bp.post("/<int:cart_id>/lines")
@require_context
def add_line_route(cart_id: int):
    """
    Add a line by product or by scanner payload.

    Request body: {"product_id": 1, "qty": 2} or {"barcode": "2000000000017001250"}
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("barcode"):
            line = cart_service.add_scanned_line(cart_id, data["barcode"], ctx=g.ctx)
        else:
            line = cart_service.add_line(
                cart_id,
                data.get("product_id"),
                data.get("qty"),
                manual_discount_cents=data.get("discount_cents"),
                unit=data.get("unit"),
                ctx=g.ctx,
                request_id=g.request_id,
            )
        return jsonify({"line": line.to_dict(), "totals": cart_service.get_totals(cart_id)}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.patch("/lines/<int:line_id>")
@require_context
def update_line_route(line_id: int):
    """Request body: {"qty": 3}; qty <= 0 removes the line."""
    data = request.get_json(silent=True) or {}
    try:
        line = cart_service.update_line_qty(line_id, data.get("qty"))
        return jsonify({"line": line.to_dict() if line else None, "removed": line is None})
    except LedgerError as e:
        return error_response(e)


@carts_bp.delete("/lines/<int:line_id>")
@require_context
def remove_line_route(line_id: int):
    try:
        return jsonify({"removed": cart_service.remove_line(line_id)})
    except LedgerError as e:
        return error_response(e)


@carts_bp.post("/lines/<int:line_id>/discount")
@require_context
def line_discount_route(line_id: int):
    """Request body: {"amount_cents": 50} or {"percent": 10} or {} to clear; optional "reason"."""
    data = request.get_json(silent=True) or {}
    try:
        line = cart_service.apply_line_discount(
            line_id,
            amount_cents=data.get("amount_cents"),
            percent=data.get("percent"),
            reason=data.get("reason"),
            ctx=g.ctx,
        )
        return jsonify({"line": line.to_dict()})
    except LedgerError as e:
        return error_response(e)


@carts_bp.get("/<int:cart_id>/totals")
@require_context
def totals_route(cart_id: int):
    try:
        return jsonify({"totals": cart_service.get_totals(cart_id)})
    except LedgerError as e:
        return error_response(e)


@carts_bp.post("/<int:cart_id>/hold")
@require_context
def hold_route(cart_id: int):
    """Request body: {"hold_name": "Mrs Perera"}"""
    data = request.get_json(silent=True) or {}
    try:
        cart = cart_service.hold_cart(cart_id, data.get("hold_name"))
        return jsonify({"cart": cart.to_dict()})
    except LedgerError as e:
        return error_response(e)


@carts_bp.get("/holds")
@require_context
def list_holds_route():
    holds = cart_service.list_holds(request.args.get("terminal"))
    return jsonify({"holds": [c.to_dict() for c in holds]})


@carts_bp.post("/holds/resume")
@require_context
def resume_route():
    """Request body: {"terminal": "T1", "hold_name": "Mrs Perera"}"""
    data = request.get_json(silent=True) or {}
    try:
        cart = cart_service.resume_hold(data.get("terminal"), data.get("hold_name"))
        return jsonify({"cart": cart.to_dict(include_lines=True)})
    except LedgerError as e:
        return error_response(e)


@carts_bp.post("/<int:cart_id>/discard")
@require_context
def discard_route(cart_id: int):
    try:
        cart = cart_service.discard_cart(cart_id)
        return jsonify({"cart": cart.to_dict()})
    except LedgerError as e:
        return error_response(e)


@carts_bp.post("/<int:cart_id>/finalize")
@require_context
def finalize_route(cart_id: int):
    """Request body: {"tenders": {"cash": 1000}} (optional, default all cash)"""
    data = request.get_json(silent=True) or {}
    try:
        result = cart_service.finalize_cart(
            cart_id, ctx=g.ctx, tenders=data.get("tenders"), request_id=g.request_id
        )
        return jsonify(result), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize cart")
        return jsonify({"error": "Internal server error"}), 500
