# Overview: Flask API routes for reading effective discount rules and previewing them.

from flask import Blueprint, jsonify, request

from ..decorators import error_response, require_context
from ..errors import LedgerError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from ..services import discount_service
from ..time_utils import parse_iso_datetime
from ..validation import to_decimal


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.get("/effective")
@require_context
def effective_rules_route():
    """Rules in effect now (or at ?at=ISO-8601), in evaluation order."""
    try:
        at = parse_iso_datetime(request.args.get("at"))
    except ValueError:
        return error_response(ValidationError("at must be an ISO-8601 datetime"))
    rules = discount_service.get_effective_rules(at)
    return jsonify({"rules": [r.to_dict() for r in rules]})


@discounts_bp.post("/preview")
@require_context
def preview_route():
    """
    Evaluate effective rules over ad-hoc lines without touching any cart.

    Request body: {"lines": [{"product_id": 1, "qty": "4"}]}
    """
    data = request.get_json(silent=True) or {}
    try:
        lines = []
        for raw in data.get("lines") or []:
            product = db.session.get(Product, raw.get("product_id"))
            if product is None:
                raise NotFoundError("Unknown product", {"product_id": raw.get("product_id")})
            lines.append(
                discount_service.PricedLine(
                    product_id=product.id,
                    category_id=product.category_id,
                    qty=to_decimal(raw.get("qty", 1)),
                    unit_price_cents=product.price_cents,
                    discount_reason=raw.get("reason"),
                )
            )
        return jsonify(discount_service.evaluate_with_config(lines).to_dict())
    except LedgerError as e:
        return error_response(e)
