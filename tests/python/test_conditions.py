"""Tests for threshold condition evaluation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pgstat_alert.conditions import (
    ScalarKind,
    evaluate,
    normalize,
    parse_number,
    render,
)

# =============================================================================
# Normalization Tests
# =============================================================================


class TestParseNumber:
    """Tests for the permissive number parser."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("42", 42.0),
            ("  3.5  ", 3.5),
            ("-7", -7.0),
            ("1e3", 1000.0),
            ("12abc", 12.0),
            (".5", 0.5),
        ],
    )
    def test_numeric_prefix(self, text: str, expected: float) -> None:
        """Test leading numbers are parsed."""
        assert parse_number(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "active", "information", "nan", "inf"])
    def test_non_numeric(self, text: str) -> None:
        """Test text without a leading number is rejected."""
        assert parse_number(text) is None


class TestNormalize:
    """Tests for Scalar normalization."""

    def test_int_and_float(self) -> None:
        assert normalize(5).kind is ScalarKind.NUMBER
        assert normalize(2.5).number == 2.5

    def test_decimal(self) -> None:
        """Test NUMERIC columns compare as numbers."""
        scalar = normalize(Decimal("99.95"))
        assert scalar.is_number
        assert scalar.number == pytest.approx(99.95)

    def test_numeric_bytes(self) -> None:
        scalar = normalize(b"150")
        assert scalar.is_number
        assert scalar.number == 150.0

    def test_bool_is_text(self) -> None:
        """Test booleans are not treated as numbers."""
        scalar = normalize(True)
        assert scalar.kind is ScalarKind.TEXT
        assert scalar.text == "true"

    def test_none_is_null(self) -> None:
        scalar = normalize(None)
        assert scalar.kind is ScalarKind.NULL
        assert scalar.text == "None"

    def test_render(self) -> None:
        assert render(False) == "false"
        assert render(memoryview(b"abc")) == "abc"
        assert render(Decimal("1.50")) == "1.50"


# =============================================================================
# Evaluation Tests
# =============================================================================


class TestEvaluate:
    """Tests for evaluate()."""

    @pytest.mark.parametrize(
        ("actual", "condition", "expected", "result"),
        [
            (150, "gt", 100, True),
            (100, "gt", 100, False),
            (100, "gte", 100, True),
            (99, "lt", 100, True),
            (100, "lte", 100, True),
            (101, "lte", 100, False),
            (100, "eq", 100.0, True),
            (100, "ne", 100, False),
            ("150", "gt", 100, True),
            (Decimal("0.95"), "gt", "0.9", True),
        ],
    )
    def test_numeric(self, actual: object, condition: str, expected: object, result: bool) -> None:
        assert evaluate(actual, condition, expected) is result

    def test_reference_examples(self) -> None:
        assert evaluate(105, "gt", 100) is True
        assert evaluate("5", "gt", 3) is True
        assert evaluate(b"5", "gt", 3) is True
        assert evaluate("abc", "eq", "abc") is True
        assert evaluate("abc", "gt", "abd") is False

    def test_string_equality(self) -> None:
        """Test text values fall back to string comparison."""
        assert evaluate("active", "eq", "active") is True
        assert evaluate("idle", "ne", "active") is True
        assert evaluate("idle", "eq", "active") is False

    def test_string_ordering_is_false(self) -> None:
        """Test ordering operators never hold for text operands."""
        assert evaluate("b", "gt", "a") is False
        assert evaluate("a", "lt", "b") is False

    def test_mixed_number_and_text(self) -> None:
        assert evaluate(5, "gt", "abc") is False
        assert evaluate(5, "ne", "abc") is True

    def test_bool_compares_as_text(self) -> None:
        assert evaluate(True, "eq", "true") is True
        assert evaluate(False, "eq", True) is False
        assert evaluate(True, "gt", 0) is False

    def test_null(self) -> None:
        assert evaluate(None, "eq", None) is True
        assert evaluate(None, "gt", 0) is False

    def test_unknown_operator(self) -> None:
        assert evaluate(5, "between", 1) is False
        assert evaluate("a", "between", "a") is False
