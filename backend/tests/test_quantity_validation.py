"""
Quantity, money and barcode parsing tests.

Verifies:
- Piece quantities must be whole numbers
- Weighed quantities allow at most KG_DECIMALS decimals
- PRECISION errors carry the corrected quantity
- Scale barcodes split into product code and weight or price
"""

from decimal import Decimal

import pytest

from grocer.errors import PrecisionError, ValidationError
from grocer.validation import parse_scale_barcode, to_cents, validate_quantity


class TestPieceQuantities:

    def test_whole_number_accepted(self):
        assert validate_quantity(3, "pc") == Decimal(3)
        assert validate_quantity("2", "pc") == Decimal(2)
        assert validate_quantity(4.0, "pc") == Decimal(4)

    def test_fraction_rejected_with_correction(self):
        with pytest.raises(PrecisionError) as exc:
            validate_quantity("2.5", "pc")
        assert exc.value.code == "PRECISION"
        assert exc.value.corrected_qty == Decimal(3)
        assert exc.value.details["corrected_qty"] == "3"

    def test_fraction_below_half_rounds_down(self):
        with pytest.raises(PrecisionError) as exc:
            validate_quantity(1.2, "pc")
        assert exc.value.corrected_qty == Decimal(1)


class TestWeighedQuantities:

    def test_three_decimals_accepted(self):
        assert validate_quantity("1.235", "kg") == Decimal("1.235")

    def test_float_noise_absorbed(self):
        assert validate_quantity(0.1 + 0.2, "kg") == Decimal("0.300")

    def test_four_decimals_rejected(self):
        with pytest.raises(PrecisionError) as exc:
            validate_quantity("1.2345", "kg")
        assert exc.value.corrected_qty == Decimal("1.235")

    def test_configurable_decimals(self):
        with pytest.raises(PrecisionError) as exc:
            validate_quantity("1.25", "kg", kg_decimals=1)
        assert exc.value.corrected_qty == Decimal("1.3")


class TestMalformedInput:

    @pytest.mark.parametrize("value", [None, "abc", "", True, "NaN", "Infinity"])
    def test_non_numbers_rejected(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_quantity(value, "pc")
        assert exc.value.code == "VALIDATION"

    def test_unknown_unit(self):
        with pytest.raises(ValidationError):
            validate_quantity(1, "box")

    def test_precision_error_is_a_validation_error(self):
        assert issubclass(PrecisionError, ValidationError)
        assert PrecisionError.http_status == 422


class TestCents:

    def test_integer_strings_and_whole_floats(self):
        assert to_cents("250") == 250
        assert to_cents(100.0) == 100

    @pytest.mark.parametrize("value", ["1.5", 2.5, "1e3", None, -1])
    def test_rejected(self, value):
        with pytest.raises(ValidationError):
            to_cents(value)

    def test_negative_allowed_when_asked(self):
        assert to_cents(-5, allow_negative=True) == -5


class TestScaleBarcode:

    def test_plain_barcode(self):
        scanned = parse_scale_barcode("2000000000011")
        assert scanned.barcode == "2000000000011"
        assert not scanned.is_scale

    def test_weight_in_grams(self):
        scanned = parse_scale_barcode("210000000001701250")
        assert scanned.barcode == "2100000000017"
        assert scanned.weight_kg == Decimal("1.25")
        assert scanned.price_override_cents is None

    def test_price_override(self):
        scanned = parse_scale_barcode("2100000000017P0399")
        assert scanned.barcode == "2100000000017"
        assert scanned.price_override_cents == 399
        assert scanned.weight_kg is None

    @pytest.mark.parametrize("raw", ["", "   ", "2100000000017PXX", "2100000000017abc", "210000000001700000"])
    def test_malformed(self, raw):
        with pytest.raises(ValidationError):
            parse_scale_barcode(raw)
