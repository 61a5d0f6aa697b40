"""
strategies.py — The five execution strategies an aggregation must agree under.

═══════════════════════════════════════════════════════════════════════════════
  PROTOCOLS
═══════════════════════════════════════════════════════════════════════════════

  direct           one accumulator; add_input every non-empty page;
                   evaluate_final once.

  partial          one intermediate-mode accumulator.  Merge an empty
                   intermediate (from a never-fed accumulator), then for each
                   page: fresh accumulator → add_input → evaluate_intermediate
                   → merge.  Merge the empty intermediate again, then
                   evaluate_final.

  grouped          one grouped accumulator.  Feed all pages at group 0 and
                   read group 0; feed the same pages again at the large group
                   id (4000) and read it.  The two values must agree.

  grouped_partial  per-page grouped accumulators (group 0) emit intermediates
                   merged, between two empty intermediates, into one grouped
                   intermediate-mode accumulator; read group 0.

  distinct         identity binding with a BOOLEAN mask appended as the last
                   channel.  Run over the mask=true pages, then over the
                   interleaved true/false duplicates.  Masked-out rows must
                   have no effect.

  Every strategy but distinct is additionally re-run under the reversed
  (argument count > 1) and offset channel bindings; each variant must agree
  with the identity run of the same strategy.

Public API
----------
  HarnessConfig
  aggregation / partial_aggregation / grouped_aggregation /
  grouped_partial_aggregation / distinct_aggregation      → ResultValue
  *_with_args(function, args, *pages)                     → ResultValue
  get_intermediate_block / get_final_block / get_group_value
  STRATEGIES                                              → ordered registry
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Sequence

from accumulator import Accumulator, AggregationFunction, GroupedAccumulator
from bindings import CHANNEL_OFFSET, binding_variants, create_args
from block import Block, BlockBuilder, Page, create_group_by_id_block, get_only_value
from transform import check_pages, interleave, mask_pages, transform_pages
from values import FLOAT_TOLERANCE, ResultValue, assert_result_equal

logger = logging.getLogger(__name__)

LARGE_GROUP_ID: int = 4000
SPLIT_COUNT:    int = 2


# ═══════════════════════════════════════════════════════════════════════════════
# §1  Configuration
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class HarnessConfig:
    """
    Knobs shared by every strategy of one harness run.

    Attributes
    ----------
    channel_offset : int
        Number of null decoy channels placed ahead of the real ones.
    large_group_id : int
        Group id compared against group 0 by the grouped strategy.
    tolerance : float
        Absolute tolerance for floating-point results.
    split_count : int
        Number of pages a multi-position input is split into.
    """
    channel_offset: int   = CHANNEL_OFFSET
    large_group_id: int   = LARGE_GROUP_ID
    tolerance:      float = FLOAT_TOLERANCE
    split_count:    int   = SPLIT_COUNT

    def __post_init__(self) -> None:
        if self.channel_offset < 0:
            raise ValueError(f"channel_offset must be >= 0, got {self.channel_offset}")
        if self.large_group_id <= 0:
            raise ValueError(f"large_group_id must be > 0, got {self.large_group_id}")
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {self.tolerance}")
        if self.split_count < 1:
            raise ValueError(f"split_count must be >= 1, got {self.split_count}")


DEFAULT_CONFIG = HarnessConfig()


# ═══════════════════════════════════════════════════════════════════════════════
# §2  Reading accumulators back
# ═══════════════════════════════════════════════════════════════════════════════

def get_intermediate_block(accumulator: Accumulator) -> Block:
    builder = BlockBuilder(accumulator.intermediate_kind)
    accumulator.evaluate_intermediate(builder)
    return builder.build()


def get_final_block(accumulator: Accumulator) -> Block:
    builder = BlockBuilder(accumulator.final_kind)
    accumulator.evaluate_final(builder)
    return builder.build()


def get_grouped_intermediate_block(accumulator: GroupedAccumulator,
                                   group_id: int = 0) -> Block:
    builder = BlockBuilder(accumulator.intermediate_kind)
    accumulator.evaluate_intermediate(group_id, builder)
    return builder.build()


def get_grouped_final_block(accumulator: GroupedAccumulator, group_id: int = 0) -> Block:
    builder = BlockBuilder(accumulator.final_kind)
    accumulator.evaluate_final(group_id, builder)
    return builder.build()


def get_final_value(accumulator: Accumulator) -> ResultValue:
    return ResultValue.tag(accumulator.final_kind, get_only_value(get_final_block(accumulator)))


def get_group_value(accumulator: GroupedAccumulator, group_id: int) -> ResultValue:
    block = get_grouped_final_block(accumulator, group_id)
    return ResultValue.tag(accumulator.final_kind, get_only_value(block))


# ═══════════════════════════════════════════════════════════════════════════════
# §3  Strategies under one explicit binding
# ═══════════════════════════════════════════════════════════════════════════════

def aggregation_with_args(function: AggregationFunction, args: Sequence[int],
                          *pages: Page, mask_channel: Optional[int] = None,
                          config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    accumulator = function.bind(args, mask_channel).create_accumulator()
    for page in pages:
        if page.position_count > 0:
            accumulator.add_input(page)
    return get_final_value(accumulator)


def partial_aggregation_with_args(function: AggregationFunction, args: Sequence[int],
                                  *pages: Page,
                                  config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    factory = function.bind(args)
    final   = factory.create_intermediate_accumulator()

    empty_block = get_intermediate_block(factory.create_accumulator())
    final.add_intermediate(empty_block)

    for page in pages:
        partial = factory.create_accumulator()
        if page.position_count > 0:
            partial.add_input(page)
        final.add_intermediate(get_intermediate_block(partial))

    final.add_intermediate(empty_block)
    return get_final_value(final)


def grouped_aggregation_with_args(function: AggregationFunction, args: Sequence[int],
                                  *pages: Page,
                                  config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    large_id = config.large_group_id
    grouped  = function.bind(args).create_grouped_accumulator()

    for page in pages:
        grouped.add_input(create_group_by_id_block(0, page.position_count), page)
    group_value = get_group_value(grouped, 0)

    for page in pages:
        grouped.add_input(create_group_by_id_block(large_id, page.position_count), page)
    large_group_value = get_group_value(grouped, large_id)

    assert_result_equal(large_group_value, group_value,
                        "grouped: Inconsistent results with large group id",
                        config.tolerance)
    return group_value


def grouped_partial_aggregation_with_args(function: AggregationFunction,
                                          args: Sequence[int], *pages: Page,
                                          config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    factory = function.bind(args)
    final   = factory.create_grouped_intermediate_accumulator()

    empty_block = get_grouped_intermediate_block(factory.create_grouped_accumulator())
    empty_ids   = create_group_by_id_block(0, empty_block.position_count)
    final.add_intermediate(empty_ids, empty_block)

    for page in pages:
        partial = factory.create_grouped_accumulator()
        partial.add_input(create_group_by_id_block(0, page.position_count), page)
        partial_block = get_grouped_intermediate_block(partial)
        final.add_intermediate(create_group_by_id_block(0, partial_block.position_count),
                               partial_block)

    final.add_intermediate(empty_ids, empty_block)
    return get_group_value(final, 0)


# ═══════════════════════════════════════════════════════════════════════════════
# §4  Binding-variant checked strategies
# ═══════════════════════════════════════════════════════════════════════════════

# runner(function, args, *pages, config=...) → ResultValue.  Every runner
# accepts config whether or not it reads it.
Runner = Callable[..., ResultValue]


def _run_binding_variants(strategy: str, function: AggregationFunction, runner: Runner,
                          pages: Sequence[Page], config: HarnessConfig) -> ResultValue:
    """
    Run *runner* under every binding variant; return the identity result.

    Raises
    ------
    EquivalenceError
        If a reversed or offset run disagrees with the identity run.
    """
    check_pages(pages)
    reference: Optional[ResultValue] = None
    for variant, args in binding_variants(function.argument_count, config.channel_offset):
        variant_pages = transform_pages(variant, pages, config.channel_offset)
        result = runner(function, args, *variant_pages, config=config)
        logger.debug("%s %-15s %-8s args=%s → %s",
                     function.name, strategy, variant.label, args, result)
        if reference is None:
            reference = result
        else:
            assert_result_equal(result, reference,
                                f"{strategy}: {variant.failure_label}", config.tolerance)
    return reference


def aggregation(function: AggregationFunction, *pages: Page,
                config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    return _run_binding_variants("direct", function, aggregation_with_args, pages, config)


def partial_aggregation(function: AggregationFunction, *pages: Page,
                        config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    return _run_binding_variants("partial", function, partial_aggregation_with_args,
                                 pages, config)


def grouped_aggregation(function: AggregationFunction, *pages: Page,
                        config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    return _run_binding_variants("grouped", function, grouped_aggregation_with_args,
                                 pages, config)


def grouped_partial_aggregation(function: AggregationFunction, *pages: Page,
                                config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    return _run_binding_variants("grouped_partial", function,
                                 grouped_partial_aggregation_with_args, pages, config)


def distinct_aggregation(function: AggregationFunction, *pages: Page,
                         config: HarnessConfig = DEFAULT_CONFIG) -> ResultValue:
    """
    Masked execution: true-masked duplicates of every page interleaved with
    false-masked ones must aggregate exactly like the true-masked pages alone.
    """
    if not pages:
        raise ValueError("distinct aggregation needs at least one page")
    check_pages(pages)
    mask_channel = pages[0].channel_count
    args         = create_args(function.argument_count)

    real_pages = mask_pages(True, pages)
    result = aggregation_with_args(function, args, *real_pages,
                                   mask_channel=mask_channel, config=config)

    duplicated = interleave(real_pages, mask_pages(False, pages))
    result_with_dupes = aggregation_with_args(function, args, *duplicated,
                                              mask_channel=mask_channel, config=config)
    logger.debug("%s %-15s mask=%d → %s / with dupes → %s",
                 function.name, "distinct", mask_channel, result, result_with_dupes)

    assert_result_equal(result_with_dupes, result,
                        "distinct: Inconsistent results with mask", config.tolerance)
    return result


class Strategy(NamedTuple):
    name:        str
    run:         Runner
    needs_input: bool   # skipped when the input has no pages


STRATEGIES: tuple[Strategy, ...] = (
    Strategy("direct",          aggregation,                 False),
    Strategy("partial",         partial_aggregation,         False),
    Strategy("grouped",         grouped_aggregation,         True),
    Strategy("grouped_partial", grouped_partial_aggregation, True),
    Strategy("distinct",        distinct_aggregation,        True),
)
