# Overview: Domain error taxonomy shared by services, routes, and the CLI.
"""
Ledger error types.

Every failure a caller can act on carries a stable machine code, a human
message, and a details dict. Routes map ``http_status`` straight onto the
response; services never catch these to retry.

CODES:
- VALIDATION    malformed input, empty cart, tender mismatch
- PRECISION     quantity has more decimals than its unit allows
- NOT_FOUND     unknown SKU, product, session, line
- CONFLICT      session already closed, duplicate hold name
- PIN_REQUIRED  manager PIN missing for a gated action
- FORBIDDEN     PIN wrong, or role too low
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all domain errors."""

    code = "ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(LedgerError):
    code = "VALIDATION"
    http_status = 400


class PrecisionError(ValidationError):
    """Quantity precision violation; ``corrected_qty`` is the nearest allowed value."""

    code = "PRECISION"
    http_status = 422

    def __init__(self, message: str, corrected_qty, details: dict[str, Any] | None = None):
        details = dict(details or {})
        details.setdefault("corrected_qty", str(corrected_qty))
        super().__init__(message, details)
        self.corrected_qty = corrected_qty


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(LedgerError):
    code = "CONFLICT"
    http_status = 409


class PinRequiredError(LedgerError):
    code = "PIN_REQUIRED"
    http_status = 401


class ForbiddenError(LedgerError):
    code = "FORBIDDEN"
    http_status = 403
