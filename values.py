"""
values.py — Tagged aggregation results and kind-aware equality.

Every scalar the harness reads back from an accumulator is wrapped in a
ResultValue tagged by the *declared* output kind of the function that
produced it.  Equality is then looked up in COMPARATORS by tag:

  INTEGER, BOOLEAN, STRING  exact equality
  FLOATING                  |actual − expected| ≤ tolerance   (default 1e-10)
                            NaN expected → actual must be NaN
                            identical values (±inf, -0.0 vs 0.0) → equal
  NULL                      equal only to NULL

Public API
----------
  ResultKind, ResultValue
  ResultValue.tag(value_kind, value)     → ResultValue
  results_equal(actual, expected, tol)   → bool
  assert_result_equal(actual, expected, label, tol)   raises EquivalenceError
  EquivalenceError                        (an AssertionError)
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Callable, NamedTuple

from block import ValueKind

FLOAT_TOLERANCE: float = 1e-10


class ResultKind(Enum):
    INTEGER  = "integer"
    FLOATING = "floating"
    BOOLEAN  = "boolean"
    STRING   = "string"
    NULL     = "null"


_RESULT_KINDS: dict[ValueKind, ResultKind] = {
    ValueKind.BIGINT:  ResultKind.INTEGER,
    ValueKind.DOUBLE:  ResultKind.FLOATING,
    ValueKind.REAL:    ResultKind.FLOATING,
    ValueKind.BOOLEAN: ResultKind.BOOLEAN,
    ValueKind.VARCHAR: ResultKind.STRING,
}


class ResultValue(NamedTuple):
    """One aggregation output, tagged with the kind of comparison it needs."""
    kind:  ResultKind
    value: Any

    @classmethod
    def tag(cls, value_kind: ValueKind, value: Any) -> ResultValue:
        """
        Tag *value* using the column kind it was declared with.

        Raises
        ------
        ValueError
            If *value_kind* has no scalar result form (e.g. ROW).
        """
        if value is None:
            return cls(ResultKind.NULL, None)
        try:
            kind = _RESULT_KINDS[value_kind]
        except KeyError:
            raise ValueError(f"{value_kind.label} is not a scalar result kind") from None
        return cls(kind, value)

    def __str__(self) -> str:
        return "NULL" if self.kind is ResultKind.NULL else repr(self.value)


# ── Comparison table ──────────────────────────────────────────────────────────

def _exact(actual: Any, expected: Any, tolerance: float) -> bool:
    return actual == expected


def _floating(actual: float, expected: float, tolerance: float) -> bool:
    if math.isnan(expected):
        return math.isnan(actual)
    if actual == expected:
        return True
    return abs(actual - expected) <= tolerance


COMPARATORS: dict[ResultKind, Callable[[Any, Any, float], bool]] = {
    ResultKind.INTEGER:  _exact,
    ResultKind.FLOATING: _floating,
    ResultKind.BOOLEAN:  _exact,
    ResultKind.STRING:   _exact,
}


def results_equal(actual: ResultValue, expected: ResultValue,
                  tolerance: float = FLOAT_TOLERANCE) -> bool:
    if actual.kind is ResultKind.NULL or expected.kind is ResultKind.NULL:
        return actual.kind is expected.kind
    if actual.kind is not expected.kind:
        return False
    return COMPARATORS[expected.kind](actual.value, expected.value, tolerance)


# ── Failure reporting ─────────────────────────────────────────────────────────

class EquivalenceError(AssertionError):
    """
    Two execution strategies (or binding variants) disagreed on a result.

    Attributes
    ----------
    label : str
        Which check failed, e.g. "Inconsistent results with channel offset".
    actual, expected : ResultValue
        The disagreeing values.
    """

    def __init__(self, label: str, actual: ResultValue, expected: ResultValue) -> None:
        super().__init__(f"{label}: expected {expected} but got {actual}")
        self.label    = label
        self.actual   = actual
        self.expected = expected


def assert_result_equal(actual: ResultValue, expected: ResultValue, label: str,
                        tolerance: float = FLOAT_TOLERANCE) -> None:
    if not results_equal(actual, expected, tolerance):
        raise EquivalenceError(label, actual, expected)
