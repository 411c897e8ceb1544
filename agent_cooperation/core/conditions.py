"""Condition evaluator used by conditional nodes.

Conditions form a deliberately tiny language::

    <path> > <path>
    <path> < <path>
    <path> == <path>
    <path>

The operators are looked for in that fixed order and the condition is split on
the first occurrence of the first operator found. Both operands are dotted
paths into the data (``"result.price"``). There are no literals: ``"5"`` is
looked up as the key ``"5"`` and normally resolves to ``None``, so
``"price > 5"`` is false unless the data carries a ``"5"`` key. An empty
condition is always true; anything that cannot be evaluated is false.

A bare path holds unless its value is None, False, zero, NaN or the empty
string. Empty lists and dicts hold, unlike Python truthiness.
"""

import math
import operator
from functools import lru_cache
from typing import Any, Optional

from .exceptions import ConditionEvaluationError
from .logging import get_logger

logger = get_logger(__name__)

_OPERATORS = (
    (">", operator.gt),
    ("<", operator.lt),
    ("==", operator.eq),
)


def is_truthy(value: Any) -> bool:
    """JSON-style truthiness: only None, False, 0, NaN and "" are false."""
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def resolve_path(path: str, data: Any) -> Any:
    """Walk a dotted path through nested mappings and sequences.

    Returns None as soon as a segment cannot be resolved.
    """
    value = data
    for key in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(key)
        elif isinstance(value, (list, tuple)) and key.isdigit():
            index = int(key)
            value = value[index] if index < len(value) else None
        else:
            return None
    return value


class PathRef:
    """Reference to a value inside the evaluated data."""

    __slots__ = ("path",)

    def __init__(self, path: str):
        self.path = path

    def resolve(self, data: Any) -> Any:
        return resolve_path(self.path, data)

    def __repr__(self):
        return f"PathRef({self.path!r})"


class Always:
    """Condition that holds for any data (empty condition)."""

    def evaluate(self, data: Any) -> bool:
        return True

    def __repr__(self):
        return "Always()"


class Comparison:
    """Binary comparison between two path references."""

    __slots__ = ("left", "symbol", "right", "_compare")

    def __init__(self, left: PathRef, symbol: str, right: PathRef):
        self.left = left
        self.symbol = symbol
        self.right = right
        self._compare = dict(_OPERATORS)[symbol]

    def evaluate(self, data: Any) -> bool:
        left_value = self.left.resolve(data)
        right_value = self.right.resolve(data)

        if self.symbol == "==":
            return bool(left_value == right_value)

        # Ordering against an unresolved operand never holds.
        if left_value is None or right_value is None:
            return False

        try:
            return bool(self._compare(left_value, right_value))
        except TypeError as e:
            raise ConditionEvaluationError(
                f"Cannot compare {type(left_value).__name__} {self.symbol} {type(right_value).__name__}",
                condition=f"{self.left.path} {self.symbol} {self.right.path}"
            ) from e

    def __repr__(self):
        return f"Comparison({self.left!r}, {self.symbol!r}, {self.right!r})"


class Truthiness:
    """Condition that holds when the referenced value is truthy (see is_truthy)."""

    __slots__ = ("ref",)

    def __init__(self, ref: PathRef):
        self.ref = ref

    def evaluate(self, data: Any) -> bool:
        return is_truthy(self.ref.resolve(data))

    def __repr__(self):
        return f"Truthiness({self.ref!r})"


@lru_cache(maxsize=256)
def parse_condition(condition: Optional[str]):
    """Parse a condition string into its typed representation."""
    if not condition:
        return Always()

    for symbol, _ in _OPERATORS:
        if symbol in condition:
            left, _, right = condition.partition(symbol)
            return Comparison(PathRef(left.strip()), symbol, PathRef(right.strip()))

    return Truthiness(PathRef(condition))


def evaluate_condition(condition: Optional[str], data: Any) -> bool:
    """
    Evaluate a condition against data.

    Args:
        condition: Condition string, or None/empty for an unconditional branch
        data: Value the operand paths are resolved against

    Returns:
        True if the condition holds; False if it does not or cannot be evaluated
    """
    try:
        return parse_condition(condition).evaluate(data)
    except ConditionEvaluationError as e:
        logger.debug(f"Condition '{condition}' evaluated to False: {e.message}")
        return False
    except Exception as e:
        logger.warning(f"Failed to evaluate condition '{condition}': {str(e)}")
        return False
