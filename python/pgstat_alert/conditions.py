"""
Threshold comparison between probe values and configured rule values.

Values coming back from PostgreSQL (int, float, Decimal, text, bytes, NULL)
and thresholds coming from YAML (int, float, str) are normalized into a
tagged Scalar before comparison.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

# Leading decimal number, as accepted by a scanf-style "%f"
_NUMBER_PREFIX = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

_NUMERIC_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "gt": operator.gt,
    "lt": operator.lt,
    "gte": operator.ge,
    "lte": operator.le,
    "eq": operator.eq,
    "ne": operator.ne,
}


class ScalarKind(str, Enum):
    NUMBER = "number"
    TEXT = "text"
    NULL = "null"


@dataclass(frozen=True)
class Scalar:
    """A probe or threshold value tagged with its comparable kind."""

    kind: ScalarKind
    number: float = 0.0
    text: str = ""

    @property
    def is_number(self) -> bool:
        return self.kind is ScalarKind.NUMBER


def parse_number(text: str) -> float | None:
    """Parse the leading number of ``text``; None when there is none."""
    match = _NUMBER_PREFIX.match(text.strip())
    if match is None:
        return None
    return float(match.group(0))


def render(value: Any) -> str:
    """Default string rendering used for text comparison and alert context."""
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def normalize(value: Any) -> Scalar:
    """Normalize an arbitrary value into a Scalar."""
    if value is None:
        return Scalar(ScalarKind.NULL, text=render(value))
    if isinstance(value, bool):
        return Scalar(ScalarKind.TEXT, text=render(value))
    if isinstance(value, (int, float, Decimal)):
        return Scalar(ScalarKind.NUMBER, number=float(value), text=render(value))

    text = render(value)
    number = parse_number(text)
    if number is not None:
        return Scalar(ScalarKind.NUMBER, number=number, text=text)
    return Scalar(ScalarKind.TEXT, text=text)


def evaluate(actual: Any, condition: str, expected: Any) -> bool:
    """
    Check whether ``actual <condition> expected`` holds.

    Numeric comparison is used when both sides are numbers; otherwise only
    ``eq`` and ``ne`` are supported, as string comparisons. Any other
    combination evaluates False.

    Args:
        actual: Value from the probe result.
        condition: One of gt, lt, gte, lte, eq, ne.
        expected: Threshold from the rule.

    Returns:
        True if the condition is met.
    """
    left = normalize(actual)
    right = normalize(expected)

    if left.is_number and right.is_number:
        compare = _NUMERIC_OPERATORS.get(condition)
        return bool(compare(left.number, right.number)) if compare else False

    if condition == "eq":
        return left.text == right.text
    if condition == "ne":
        return left.text != right.text
    return False
