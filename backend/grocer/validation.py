# Overview: Input coercion for quantities, money, and scanned barcodes.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import PrecisionError, ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

UNITS = ("pc", "kg")
DEFAULT_KG_DECIMALS = 3

# Below this the rounded and raw kg value are considered equal
_KG_EPSILON = Decimal("0.0001")

# EAN-13 product code followed by scale data
SCALE_BARCODE_CODE_LEN = 13


def to_decimal(value: Any, field: str = "qty") -> Decimal:
    """
    Coerce JSON/CSV input to Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans are rejected even
    though they are ints.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", {"field": field})
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number", {"field": field, "value": str(value)})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", {"field": field})
    return result


def to_cents(value: Any, field: str = "amount_cents", *, allow_negative: bool = False) -> int:
    """Strict integer cents; rejects floats with a fractional part and strings like '1e3'."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        cents = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
        cents = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", {"field": field})
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", {"field": field})

    if not allow_negative and cents < 0:
        raise ValidationError(f"{field} cannot be negative", {"field": field})
    if abs(cents) > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum", {"field": field, "max": MAX_PRICE_CENTS})
    return cents


def validate_quantity(qty: Any, unit: str, kg_decimals: int = DEFAULT_KG_DECIMALS) -> Decimal:
    """
    Enforce the per-unit precision policy and return the quantity as Decimal.

    - pc: integers only; corrected_qty is the nearest integer
    - kg: at most ``kg_decimals`` places; corrected_qty is rounded half-up.
      Float noise below 0.0001 is absorbed into the rounded value.

    Sign is not checked here. Callers decide whether negatives are legal.
    """
    value = to_decimal(qty)
    if unit == "pc":
        if value != value.to_integral_value():
            corrected = value.to_integral_value(rounding=ROUND_HALF_UP)
            raise PrecisionError(
                f"Quantity for piece items must be a whole number (got {value})",
                corrected,
                {"unit": unit, "qty": str(value)},
            )
        return value.quantize(Decimal(1))
    if unit == "kg":
        step = Decimal(1).scaleb(-kg_decimals)
        rounded = value.quantize(step, rounding=ROUND_HALF_UP)
        if abs(value - rounded) > _KG_EPSILON:
            raise PrecisionError(
                f"Quantity for weighed items allows at most {kg_decimals} decimals (got {value})",
                rounded,
                {"unit": unit, "qty": str(value), "kg_decimals": kg_decimals},
            )
        return rounded
    raise ValidationError(f"Unknown unit {unit!r}", {"unit": unit, "allowed": list(UNITS)})


@dataclass(frozen=True)
class ScannedCode:
    """Result of parsing a scanner payload."""
    barcode: str
    weight_kg: Decimal | None = None
    price_override_cents: int | None = None

    @property
    def is_scale(self) -> bool:
        return self.weight_kg is not None or self.price_override_cents is not None


def parse_scale_barcode(raw: str) -> ScannedCode:
    """
    Split a scanner payload into product code and embedded scale data.

    Layout: 13-char product code, then either grams ("01250" -> 1.25 kg) or
    "P" + price in cents ("P0399" -> 399). Anything 13 chars or shorter is a
    plain barcode.
    """
    if raw is None:
        raise ValidationError("barcode is required")
    code = str(raw).strip()
    if not code:
        raise ValidationError("barcode is required")
    if len(code) <= SCALE_BARCODE_CODE_LEN:
        return ScannedCode(barcode=code)

    barcode, data = code[:SCALE_BARCODE_CODE_LEN], code[SCALE_BARCODE_CODE_LEN:]
    if data[0] in ("P", "p"):
        digits = data[1:]
        if not digits.isdigit():
            raise ValidationError("Invalid price data in scale barcode", {"barcode": code})
        return ScannedCode(barcode=barcode, price_override_cents=int(digits))

    if not data.isdigit():
        raise ValidationError("Invalid weight data in scale barcode", {"barcode": code})
    grams = int(data)
    if grams <= 0:
        raise ValidationError("Scale weight must be positive", {"barcode": code})
    return ScannedCode(barcode=barcode, weight_kg=Decimal(grams) / Decimal(1000))
