"""
functions.py — Reference aggregation functions for exercising the harness.

═══════════════════════════════════════════════════════════════════════════════
  NULL SEMANTICS
═══════════════════════════════════════════════════════════════════════════════

  COUNT(*) counts every participating row; COUNT(x) counts non-null x.
  Every other aggregate ignores null arguments and returns NULL when no row
  participated.  Intermediate states are immutable values, so an empty
  intermediate block can be merged any number of times.

═══════════════════════════════════════════════════════════════════════════════
  AVG / VARIANCE: Welford state with Chan's parallel merge
═══════════════════════════════════════════════════════════════════════════════

  state = (count, mean, M2)

  One page is folded in by computing its own (n, mean, M2) with numpy and
  merging it into the running state:

    δ  = μb − μa
    μ  = (na·μa + nb·μb) / n
    M2 = M2a + M2b + δ²·na·nb / n

  The same merge serves as the intermediate combine, so direct and
  partial/intermediate execution share one code path up to float rounding.

Public API
----------
  count_star(), count(kind)
  sum_bigint(), sum_double()
  avg(), variance(), stddev()
  min_value(kind), max_value(kind)
  max_by(value_kind, key_kind)
  count_distinct(kind)
  bool_and()
  FUNCTIONS                               → name → AggregationFunction
"""

from __future__ import annotations

import math
from typing import Any, NamedTuple, Optional

import numpy as np

from accumulator import AggregationFunction, StateAggregation
from block import ValueKind

BIGINT  = ValueKind.BIGINT
DOUBLE  = ValueKind.DOUBLE
BOOLEAN = ValueKind.BOOLEAN
VARCHAR = ValueKind.VARCHAR
ROW     = ValueKind.ROW


def _native(value: Any) -> Any:
    """Unwrap numpy scalars so states compare and serialize as plain Python."""
    return value.item() if isinstance(value, np.generic) else value


def _add_nullable(a: Optional[Any], b: Optional[Any]) -> Optional[Any]:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


# ═══════════════════════════════════════════════════════════════════════════════
# §1  Counting and summing
# ═══════════════════════════════════════════════════════════════════════════════

def _count_rows(state: int, rows: int, *columns: np.ndarray) -> int:
    return state + rows


def count_star() -> StateAggregation:
    return StateAggregation(
        "count_star", (), BIGINT, BIGINT,
        init=lambda: 0, update=_count_rows, combine=lambda a, b: a + b,
    )


def count(kind: ValueKind = BIGINT) -> StateAggregation:
    return StateAggregation(
        "count", (kind,), BIGINT, BIGINT,
        init=lambda: 0, update=_count_rows, combine=lambda a, b: a + b,
    )


def sum_bigint() -> StateAggregation:
    return StateAggregation(
        "sum", (BIGINT,), BIGINT, BIGINT,
        init=lambda: None,
        update=lambda state, rows, values: _add_nullable(state, int(values.sum())),
        combine=_add_nullable,
    )


def sum_double() -> StateAggregation:
    return StateAggregation(
        "sum", (DOUBLE,), DOUBLE, DOUBLE,
        init=lambda: None,
        update=lambda state, rows, values: _add_nullable(state, float(values.sum())),
        combine=_add_nullable,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# §2  Welford moments
# ═══════════════════════════════════════════════════════════════════════════════

class MomentState(NamedTuple):
    """
    Immutable snapshot of a Welford running aggregate.

    Fields
    ------
    count : int
        Number of values absorbed so far.
    mean  : float
        Running mean.
    M2    : float
        Running sum of squared deviations from the mean.
        Divide by (count-1) to get sample variance.
    """
    count: int
    mean:  float
    M2:    float


def moments_init() -> MomentState:
    return MomentState(count=0, mean=0.0, M2=0.0)


def moments_merge(state_a: MomentState, state_b: MomentState) -> MomentState:
    """Combine two independent moment states (Chan, Golub & LeVeque 1979)."""
    na, μa, M2a = state_a
    nb, μb, M2b = state_b
    n   = na + nb
    if n == 0:
        return moments_init()
    if na == 0:
        return MomentState(*state_b)
    if nb == 0:
        return MomentState(*state_a)
    δ   = μb - μa
    μ   = (na * μa + nb * μb) / n          # weighted mean
    M2  = M2a + M2b + δ ** 2 * na * nb / n # Chan's correction term
    return MomentState(n, μ, M2)


def moments_update(state: MomentState, rows: int, values: np.ndarray) -> MomentState:
    """Fold one page of values in: batch moments via numpy, then merge."""
    values  = values.astype(np.float64)
    μb      = float(values.mean())
    M2b     = float(np.sum((values - μb) ** 2))
    return moments_merge(state, MomentState(rows, μb, M2b))


def _moments_deserialize(value: tuple) -> MomentState:
    return MomentState(int(value[0]), float(value[1]), float(value[2]))


def _mean(state: MomentState) -> Optional[float]:
    return state.mean if state.count else None


def _sample_variance(state: MomentState) -> Optional[float]:
    if state.count < 2:
        return None
    return state.M2 / (state.count - 1)


def _sample_stddev(state: MomentState) -> Optional[float]:
    var = _sample_variance(state)
    return None if var is None else math.sqrt(var)


def _moments(name: str, output) -> StateAggregation:
    return StateAggregation(
        name, (DOUBLE,), ROW, DOUBLE,
        init=moments_init, update=moments_update, combine=moments_merge,
        output=output, serialize=tuple, deserialize=_moments_deserialize,
    )


def avg() -> StateAggregation:
    return _moments("avg", _mean)


def variance() -> StateAggregation:
    """Sample variance (Bessel-corrected); NULL below two values."""
    return _moments("variance", _sample_variance)


def stddev() -> StateAggregation:
    return _moments("stddev", _sample_stddev)


# ═══════════════════════════════════════════════════════════════════════════════
# §3  Extremes
# ═══════════════════════════════════════════════════════════════════════════════

# NaN inputs are not ordered; min/max over DOUBLE assume NaN-free data.

def _extreme(pick):
    def update(state, rows, values):
        best = pick(values.tolist())
        return best if state is None else pick([state, best])

    def combine(a, b):
        if a is None:
            return b
        if b is None:
            return a
        return pick([a, b])

    return update, combine


def min_value(kind: ValueKind = BIGINT) -> StateAggregation:
    update, combine = _extreme(min)
    return StateAggregation("min", (kind,), kind, kind,
                            init=lambda: None, update=update, combine=combine)


def max_value(kind: ValueKind = BIGINT) -> StateAggregation:
    update, combine = _extreme(max)
    return StateAggregation("max", (kind,), kind, kind,
                            init=lambda: None, update=update, combine=combine)


def _max_by_update(state, rows, values, keys):
    # first maximal key wins, matching the left-to-right merge order
    idx       = max(range(rows), key=keys.__getitem__)
    candidate = (_native(keys[idx]), _native(values[idx]))
    return _max_by_combine(state, candidate)


def _max_by_combine(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return b if b[0] > a[0] else a


def _max_by_output(state):
    return None if state is None else state[1]


def max_by(value_kind: ValueKind = VARCHAR, key_kind: ValueKind = BIGINT) -> StateAggregation:
    """
    Value of the first argument on the row with the largest second argument.

    Only null keys drop a row; a null value on the winning row yields NULL.
    """
    return StateAggregation(
        "max_by", (value_kind, key_kind), ROW, value_kind,
        init=lambda: None, update=_max_by_update, combine=_max_by_combine,
        output=_max_by_output, deserialize=tuple, nullable_arguments=(0,),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# §4  Distinct counting and boolean folds
# ═══════════════════════════════════════════════════════════════════════════════

def count_distinct(kind: ValueKind = BIGINT) -> StateAggregation:
    """Exact distinct count; the state is a frozenset of seen values."""
    return StateAggregation(
        "count_distinct", (kind,), ROW, BIGINT,
        init=frozenset,
        update=lambda state, rows, values: state | frozenset(_native(v) for v in values),
        combine=lambda a, b: a | b,
        output=len,
        serialize=lambda state: tuple(sorted(state)),
        deserialize=frozenset,
    )


def _and_nullable(a: Optional[bool], b: Optional[bool]) -> Optional[bool]:
    if a is None:
        return b
    if b is None:
        return a
    return a and b


def bool_and() -> StateAggregation:
    return StateAggregation(
        "bool_and", (BOOLEAN,), BOOLEAN, BOOLEAN,
        init=lambda: None,
        update=lambda state, rows, values: _and_nullable(state, bool(values.all())),
        combine=_and_nullable,
    )


FUNCTIONS: dict[str, AggregationFunction] = {
    "count_star":     count_star(),
    "count":          count(),
    "sum_bigint":     sum_bigint(),
    "sum_double":     sum_double(),
    "avg":            avg(),
    "variance":       variance(),
    "stddev":         stddev(),
    "min":            min_value(),
    "max":            max_value(),
    "max_varchar":    max_value(VARCHAR),
    "max_by":         max_by(),
    "count_distinct": count_distinct(),
    "bool_and":       bool_and(),
}
