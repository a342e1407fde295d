"""
Condition evaluation against a patient context.

Comparison rules:
- A field missing from the context evaluates as None.
- eq/ne are strict: both sides must be the same kind of value. Booleans
  never equal numbers, and numbers never equal strings.
- gt/gte/lt/lte are False unless both sides are numbers or both are strings.
- in/nin require a list, tuple or set literal. Any other literal makes both
  of them False.
"""

import operator
from typing import Any, Callable, Dict, Mapping
import logging

from ..models import Condition, ConditionOperator
from ..utils.errors import InvalidOperatorError

logger = logging.getLogger(__name__)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


def strict_equals(left: Any, right: Any) -> bool:
    """Equality that never coerces between kinds of value."""
    return _kind(left) == _kind(right) and left == right


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        kind = _kind(actual)
        if kind not in ("number", "string") or kind != _kind(expected):
            return False
        return compare(actual, expected)
    return check


def _member(actual: Any, expected: Any) -> bool:
    return any(strict_equals(actual, item) for item in expected)


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, _SEQUENCE_TYPES) and _member(actual, expected)


def _not_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, _SEQUENCE_TYPES) and not _member(actual, expected)


_OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQ: strict_equals,
    ConditionOperator.NE: lambda actual, expected: not strict_equals(actual, expected),
    ConditionOperator.GT: _ordered(operator.gt),
    ConditionOperator.GTE: _ordered(operator.ge),
    ConditionOperator.LT: _ordered(operator.lt),
    ConditionOperator.LTE: _ordered(operator.le),
    ConditionOperator.IN: _in,
    ConditionOperator.NIN: _not_in,
}


def evaluate(condition: Condition, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition against a patient context.

    Args:
        condition: Field, operator and literal to compare
        context: Patient context keyed by field name

    Returns:
        Result of the comparison

    Raises:
        InvalidOperatorError: If the operator is not one of the supported set
    """
    try:
        op = ConditionOperator(condition.operator)
    except ValueError:
        raise InvalidOperatorError(condition.operator) from None

    actual = context.get(condition.field)
    result = _OPERATORS[op](actual, condition.value)

    logger.debug(
        f"Evaluated {condition.field} {op.value} {condition.value!r} "
        f"(patient value: {actual!r}) -> {result}"
    )
    return result
