"""
oracle.py — The aggregation equivalence oracle.

═══════════════════════════════════════════════════════════════════════════════
  CONTRACT
═══════════════════════════════════════════════════════════════════════════════

  assert_aggregation(function, expected, *blocks)

    1. Build one page from the argument blocks (equal position counts or
       ValueError).  0 positions → run with no pages; 1 position → one
       page; more → split into HarnessConfig.split_count pages (midpoint by
       default) so merge paths always run.
    2. direct is the reference result.
    3. partial must match it.
    4. With at least one page: grouped, grouped_partial and distinct must
       match it too.
    5. Every strategy also checks its own reversed/offset binding variants.
    6. Every result must also match *expected*.
    7. When the input was split, direct over the unsplit page must match
       direct over the split pages.

  The first mismatch raises EquivalenceError naming the failing check.  No
  retries: the computation is deterministic.

Public API
----------
  assert_aggregation(function, expected, *blocks, config=None)   → EquivalenceReport
  assert_aggregation_pages(function, expected, *pages, config=None)
  pages_from_blocks(blocks, split_count)                         → list[Page]

Run with:
    python oracle.py                     # self-check every reference function
    python oracle.py --function avg -v
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from accumulator import AggregationFunction
from block import Block, Page, ValueKind, create_block, create_double_sequence_block
from functions import FUNCTIONS
from strategies import DEFAULT_CONFIG, STRATEGIES, HarnessConfig, aggregation
from transform import check_pages, split_page
from values import EquivalenceError, ResultValue, assert_result_equal

logger = logging.getLogger(__name__)


@dataclass
class EquivalenceReport:
    """The verdict of one passing oracle call: every strategy's result."""
    function:   str
    page_count: int
    results:    dict[str, ResultValue] = field(default_factory=dict)

    def summary(self) -> str:
        parts = [f"{name}={value}" for name, value in self.results.items()]
        return f"{self.function} over {self.page_count} page(s): " + "  ".join(parts)


def pages_from_blocks(blocks: Sequence[Block], split_count: int = 2) -> list[Page]:
    """Assemble argument blocks into pages, splitting multi-position input."""
    if not blocks:
        raise ValueError("at least one block is required")
    page = Page(*blocks)
    if page.position_count == 0:
        return []
    return split_page(page, split_count)


def assert_aggregation(function: AggregationFunction, expected_value: Any,
                       *blocks: Block,
                       config: Optional[HarnessConfig] = None) -> EquivalenceReport:
    """
    Assert that *function* aggregates *blocks* to *expected_value* under
    every execution strategy and channel binding.

    Parameters
    ----------
    function : AggregationFunction
        The aggregate under test.
    expected_value : Any
        Native Python value (None for NULL).  Compared with the rules of the
        function's final kind.
    *blocks : Block
        One block per argument channel, all with the same position count.
    config : HarnessConfig, optional

    Returns
    -------
    EquivalenceReport

    Raises
    ------
    ValueError
        Malformed input (unequal position counts, no blocks).
    EquivalenceError
        Any strategy, variant or split disagreed.
    """
    config = config or DEFAULT_CONFIG
    pages  = pages_from_blocks(blocks, config.split_count)
    report = assert_aggregation_pages(function, expected_value, *pages, config=config)

    if len(pages) > 1:
        whole = aggregation(function, Page(*blocks), config=config)
        assert_result_equal(report.results["direct"], whole,
                            "split: Inconsistent results with split pages",
                            config.tolerance)
    return report


def assert_aggregation_pages(function: AggregationFunction, expected_value: Any,
                             *pages: Page,
                             config: Optional[HarnessConfig] = None) -> EquivalenceReport:
    """Run every strategy over already-built *pages*; see assert_aggregation."""
    config = config or DEFAULT_CONFIG
    check_pages(pages)
    expected = ResultValue.tag(function.final_kind, expected_value)
    report   = EquivalenceReport(function.name, len(pages))

    reference: Optional[ResultValue] = None
    for strategy in STRATEGIES:
        if strategy.needs_input and not pages:
            continue
        result = strategy.run(function, *pages, config=config)
        if reference is None:
            reference = result
        else:
            assert_result_equal(result, reference,
                                f"{strategy.name}: Inconsistent results with direct",
                                config.tolerance)
        assert_result_equal(result, expected, f"{strategy.name}: Unexpected result",
                            config.tolerance)
        report.results[strategy.name] = result

    logger.info("PASS %s", report.summary())
    return report


# ═══════════════════════════════════════════════════════════════════════════════
# Standalone self-check
# ═══════════════════════════════════════════════════════════════════════════════

def _self_checks() -> list[tuple[str, Any, list[Block]]]:
    BIGINT, DOUBLE = ValueKind.BIGINT, ValueKind.DOUBLE
    return [
        ("count_star",     5,        [create_block(BIGINT, [1, 2, 3, 4, 5])]),
        ("count",          3,        [create_block(BIGINT, [1, None, 3, None, 5])]),
        ("sum_bigint",     15,       [create_block(BIGINT, [1, 2, 3, 4, 5])]),
        ("sum_double",     4.5,      [create_block(DOUBLE, [1.5, 3.0])]),
        ("avg",            2.0,      [create_block(DOUBLE, [1.0, 2.0, 3.0])]),
        ("variance",       55 / 6,   [create_double_sequence_block(0, 10)]),
        ("stddev",         None,     [create_block(DOUBLE, [4.0])]),
        ("min",            -7,       [create_block(BIGINT, [3, -7, 12, None])]),
        ("max",            12,       [create_block(BIGINT, [3, -7, 12, None])]),
        ("max_varchar",    "pear",   [create_block(ValueKind.VARCHAR, ["apple", "pear", "fig"])]),
        ("max_by",         "b",      [create_block(ValueKind.VARCHAR, ["a", "b", "c"]),
                                      create_block(BIGINT, [3, 9, 1])]),
        ("count_distinct", 2,        [create_block(BIGINT, [7, 7, 8])]),
        ("bool_and",       False,    [create_block(ValueKind.BOOLEAN, [True, True, False])]),
        ("sum_bigint",     None,     [create_block(BIGINT, [])]),
    ]


def _run_standalone(only: Optional[str], split_count: int) -> int:
    config   = HarnessConfig(split_count=split_count)
    failures = 0

    print("=" * 60)
    print(" Aggregation equivalence oracle — standalone self-check")
    print("=" * 60)

    for name, expected, blocks in _self_checks():
        if only and name != only:
            continue
        function = FUNCTIONS[name]
        try:
            report = assert_aggregation(function, expected, *blocks, config=config)
            print(f"  PASS  {report.summary()}")
        except EquivalenceError as exc:
            failures += 1
            print(f"  FAIL  {name}: {exc}")

    print("=" * 60)
    print(f"  Done.  {failures} failure(s)")
    print("=" * 60)
    return 1 if failures else 0


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        description="Check reference aggregations agree under every execution strategy."
    )
    parser.add_argument("--function",    default=None, choices=sorted(FUNCTIONS),
                        help="Only check this reference function (see functions.FUNCTIONS)")
    parser.add_argument("--split-count", type=int, default=2,
                        help="Pages a multi-row input is split into (default 2)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(message)s")

    sys.exit(_run_standalone(args.function, args.split_count))
