"""
test_functions.py — Reference aggregations checked against numpy / scipy.

Every reference function is pushed through the full oracle, so these tests
double as a regression gate for the strategies themselves: the expected
value comes from an independent implementation, and every strategy and
binding variant must reproduce it.

Run with:
    pytest test_functions.py -v
"""

from __future__ import annotations

import numpy as np
import pytest
import scipy.stats

from block import ValueKind, create_block
from functions import (
    FUNCTIONS,
    MomentState,
    avg,
    bool_and,
    count,
    count_distinct,
    count_star,
    max_by,
    max_value,
    min_value,
    moments_init,
    moments_merge,
    moments_update,
    stddev,
    sum_bigint,
    sum_double,
    variance,
)
from oracle import assert_aggregation
from strategies import HarnessConfig

SEED   = 42
DOUBLE = ValueKind.DOUBLE
BIGINT = ValueKind.BIGINT


@pytest.fixture(scope="module")
def samples() -> np.ndarray:
    """101 fixed-seed standard-normal doubles."""
    return np.random.default_rng(SEED).standard_normal(101)


# ═══════════════════════════════════════════════════════════════════════════════
# §1  Welford moments
# ═══════════════════════════════════════════════════════════════════════════════

class TestMoments:

    def test_merge_with_empty_is_identity(self) -> None:
        state = moments_update(moments_init(), 3, np.array([1.0, 2.0, 4.0]))
        assert moments_merge(state, moments_init()) == state
        assert moments_merge(moments_init(), state) == state
        assert moments_merge(moments_init(), moments_init()) == moments_init()

    def test_merge_matches_single_pass(self, samples: np.ndarray) -> None:
        whole  = moments_update(moments_init(), len(samples), samples)
        left   = moments_update(moments_init(), 40, samples[:40])
        right  = moments_update(moments_init(), 61, samples[40:])
        merged = moments_merge(left, right)
        assert merged.count == whole.count == 101
        assert merged.mean == pytest.approx(whole.mean, abs=1e-12)
        assert merged.M2   == pytest.approx(whole.M2,   abs=1e-10)

    def test_state_is_immutable_tuple(self) -> None:
        state = moments_update(moments_init(), 2, np.array([1.0, 3.0]))
        assert isinstance(state, MomentState)
        assert state == MomentState(2, 2.0, 2.0)


# ═══════════════════════════════════════════════════════════════════════════════
# §2  Through the oracle
# ═══════════════════════════════════════════════════════════════════════════════

class TestAgainstReferenceImplementations:

    def test_avg(self, samples: np.ndarray) -> None:
        assert_aggregation(avg(), float(scipy.stats.tmean(samples)),
                           create_block(DOUBLE, samples.tolist()))

    def test_variance(self, samples: np.ndarray) -> None:
        assert_aggregation(variance(), float(scipy.stats.tvar(samples)),
                           create_block(DOUBLE, samples.tolist()))

    def test_stddev(self, samples: np.ndarray) -> None:
        assert_aggregation(stddev(), float(scipy.stats.tstd(samples)),
                           create_block(DOUBLE, samples.tolist()))

    def test_sum_double(self, samples: np.ndarray) -> None:
        assert_aggregation(sum_double(), float(np.sum(samples)),
                           create_block(DOUBLE, samples.tolist()))

    def test_min_max(self, samples: np.ndarray) -> None:
        block = create_block(DOUBLE, samples.tolist())
        assert_aggregation(min_value(DOUBLE), float(samples.min()), block)
        assert_aggregation(max_value(DOUBLE), float(samples.max()), block)

    def test_sum_bigint_large(self) -> None:
        values = list(range(-500, 1001))
        assert_aggregation(sum_bigint(), sum(values), create_block(BIGINT, values))

    def test_count_distinct(self) -> None:
        values = np.random.default_rng(SEED).integers(0, 20, size=200).tolist()
        assert_aggregation(count_distinct(), len(set(values)), create_block(BIGINT, values))

    def test_three_way_split(self, samples: np.ndarray) -> None:
        config = HarnessConfig(split_count=3)
        assert_aggregation(variance(), float(scipy.stats.tvar(samples)),
                           create_block(DOUBLE, samples.tolist()), config=config)


# ═══════════════════════════════════════════════════════════════════════════════
# §3  Null semantics
# ═══════════════════════════════════════════════════════════════════════════════

class TestNullSemantics:

    def test_count_skips_nulls_count_star_does_not(self) -> None:
        block = create_block(BIGINT, [1, None, None, 4])
        assert_aggregation(count(), 2, block)
        assert_aggregation(count_star(), 4, block)

    def test_all_null_input(self) -> None:
        block = create_block(DOUBLE, [None, None, None])
        assert_aggregation(sum_double(), None, block)
        assert_aggregation(avg(), None, block)
        assert_aggregation(count(DOUBLE), 0, block)

    def test_variance_needs_two_values(self) -> None:
        assert_aggregation(variance(), None, create_block(DOUBLE, [3.0]))
        assert_aggregation(variance(), 0.0, create_block(DOUBLE, [3.0, 3.0]))

    def test_empty_input(self) -> None:
        empty = create_block(BIGINT, [])
        assert_aggregation(count_star(), 0, empty)
        assert_aggregation(sum_bigint(), None, empty)
        assert_aggregation(count_distinct(), 0, empty)

    def test_bool_and(self) -> None:
        assert_aggregation(bool_and(), True,
                           create_block(ValueKind.BOOLEAN, [True, None, True]))
        assert_aggregation(bool_and(), False,
                           create_block(ValueKind.BOOLEAN, [True, True, False, True]))


# ═══════════════════════════════════════════════════════════════════════════════
# §4  Two-argument and string functions
# ═══════════════════════════════════════════════════════════════════════════════

class TestMultiArgument:

    def test_max_by(self) -> None:
        assert_aggregation(
            max_by(),
            "peak",
            create_block(ValueKind.VARCHAR, ["low", "peak", "mid", "dip"]),
            create_block(BIGINT, [1, 40, 7, -3]),
        )

    def test_max_by_first_of_ties_wins(self) -> None:
        assert_aggregation(
            max_by(),
            "first",
            create_block(ValueKind.VARCHAR, ["first", "x", "second"]),
            create_block(BIGINT, [9, 2, 9]),
        )

    def test_max_by_null_keys_ignored(self) -> None:
        assert_aggregation(
            max_by(),
            "b",
            create_block(ValueKind.VARCHAR, ["a", "b", "c"]),
            create_block(BIGINT, [None, 5, None]),
        )

    def test_max_by_null_value_still_competes(self) -> None:
        """Only a null key drops a row; a null value can win."""
        assert_aggregation(
            max_by(),
            None,
            create_block(ValueKind.VARCHAR, ["a", None, "c"]),
            create_block(BIGINT, [1, 9, 2]),
        )
        assert_aggregation(
            max_by(),
            "c",
            create_block(ValueKind.VARCHAR, [None, "a", "c"]),
            create_block(BIGINT, [7, 1, 8]),
        )

    def test_max_by_bigint_values(self) -> None:
        assert_aggregation(max_by(BIGINT, DOUBLE), None,
                           create_block(BIGINT, [4, None]),
                           create_block(DOUBLE, [0.5, 2.5]))

    def test_max_varchar(self) -> None:
        assert_aggregation(max_value(ValueKind.VARCHAR), "zebra",
                           create_block(ValueKind.VARCHAR, ["ant", "zebra", None, "moth"]))


def test_registry_entries_are_distinct_instances() -> None:
    assert len({id(f) for f in FUNCTIONS.values()}) == len(FUNCTIONS)
    assert FUNCTIONS["max_by"].argument_count == 2
    assert FUNCTIONS["count_star"].argument_count == 0
