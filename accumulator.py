"""
accumulator.py — Aggregation function contracts and a generic implementation.

═══════════════════════════════════════════════════════════════════════════════
  LIFECYCLE
═══════════════════════════════════════════════════════════════════════════════

  An accumulator moves through three states:

    fresh        created by an AccumulatorFactory, nothing consumed
    accumulating add_input / add_intermediate called zero or more times
    finalized    evaluate_intermediate or evaluate_final has produced output

  A finalized accumulator rejects further mutation and a second evaluation.
  Grouped accumulators track this per group id: group 0 can be finalized
  while group 4000 is still being fed.

  Intermediate-mode accumulators only merge intermediate states; raw pages
  are rejected.

═══════════════════════════════════════════════════════════════════════════════
  STATE AGGREGATIONS
═══════════════════════════════════════════════════════════════════════════════

  StateAggregation describes a function through six callables:

    init()                         → fresh state
    update(state, rows, *columns)  → state   columns are numpy arrays holding
                                             only the participating rows of
                                             one page (rows = their length)
    combine(state_a, state_b)      → state   must be associative; must not
                                             mutate either argument
    output(state)                  → final value | None (null)
    serialize(state)               → intermediate value | None
    deserialize(value)             → state

  A row participates when the mask channel (if bound) is true and, for
  functions with ignore_nulls=True, every argument channel not listed in
  nullable_arguments is non-null.  Nullable argument columns reach update
  as object arrays holding None at null positions.

Public API
----------
  AggregationFunction.bind(channels, mask_channel) → AccumulatorFactory
  AccumulatorFactory.create_accumulator() / create_intermediate_accumulator()
                    .create_grouped_accumulator() / create_grouped_intermediate_accumulator()
  StateAggregation(name, parameter_kinds, intermediate_kind, final_kind, …)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence

import numpy as np

from block import Block, BlockBuilder, GroupByIdBlock, Page, ValueKind


# ═══════════════════════════════════════════════════════════════════════════════
# §1  Contracts
# ═══════════════════════════════════════════════════════════════════════════════

class Accumulator(ABC):
    intermediate_kind: ValueKind
    final_kind:        ValueKind

    @abstractmethod
    def add_input(self, page: Page) -> None: ...

    @abstractmethod
    def add_intermediate(self, block: Block) -> None: ...

    @abstractmethod
    def evaluate_intermediate(self, builder: BlockBuilder) -> None: ...

    @abstractmethod
    def evaluate_final(self, builder: BlockBuilder) -> None: ...


class GroupedAccumulator(ABC):
    intermediate_kind: ValueKind
    final_kind:        ValueKind

    @abstractmethod
    def add_input(self, group_ids: GroupByIdBlock, page: Page) -> None: ...

    @abstractmethod
    def add_intermediate(self, group_ids: GroupByIdBlock, block: Block) -> None: ...

    @abstractmethod
    def evaluate_intermediate(self, group_id: int, builder: BlockBuilder) -> None: ...

    @abstractmethod
    def evaluate_final(self, group_id: int, builder: BlockBuilder) -> None: ...


class AccumulatorFactory(ABC):

    @abstractmethod
    def create_accumulator(self) -> Accumulator: ...

    @abstractmethod
    def create_intermediate_accumulator(self) -> Accumulator: ...

    @abstractmethod
    def create_grouped_accumulator(self) -> GroupedAccumulator: ...

    @abstractmethod
    def create_grouped_intermediate_accumulator(self) -> GroupedAccumulator: ...


class AggregationFunction(ABC):
    """An aggregate the harness can bind to channels and run."""

    name:              str
    parameter_kinds:   tuple[ValueKind, ...]
    intermediate_kind: ValueKind
    final_kind:        ValueKind

    @property
    def argument_count(self) -> int:
        return len(self.parameter_kinds)

    @abstractmethod
    def bind(self, channels: Sequence[int],
             mask_channel: Optional[int] = None) -> AccumulatorFactory:
        """
        Bind argument slots to page channels.

        Parameters
        ----------
        channels : sequence of int
            channels[i] is the page channel supplying argument i.
        mask_channel : int, optional
            BOOLEAN channel gating row participation.
        """


def check_binding(function: AggregationFunction, channels: Sequence[int],
                  mask_channel: Optional[int]) -> tuple[int, ...]:
    """Validate a channel binding against *function*; return it as a tuple."""
    channels = tuple(int(c) for c in channels)
    if len(channels) != function.argument_count:
        raise ValueError(
            f"{function.name}: binding {list(channels)} has {len(channels)} channel(s), "
            f"function takes {function.argument_count}"
        )
    if any(c < 0 for c in channels):
        raise ValueError(f"{function.name}: negative channel in binding {list(channels)}")
    if mask_channel is not None and mask_channel < 0:
        raise ValueError(f"{function.name}: negative mask channel {mask_channel}")
    return channels


def _participating_rows(page: Page, channels: tuple[int, ...],
                        mask_channel: Optional[int],
                        null_checked: tuple[int, ...]) -> tuple[np.ndarray, list[Block]]:
    blocks = [page.get_block(channel) for channel in channels]
    keep   = np.ones(page.position_count, dtype=bool)
    if mask_channel is not None:
        mask  = page.get_block(mask_channel)
        keep &= mask.values().astype(bool) & ~mask.nulls()
    for argument in null_checked:
        keep &= ~blocks[argument].nulls()
    return keep, blocks


def _selected_columns(function: StateAggregation, blocks: list[Block],
                      selected: np.ndarray) -> list[np.ndarray]:
    columns = []
    for argument, block in enumerate(blocks):
        column = block.values()[selected]
        if argument in function.nullable_arguments:
            column = column.astype(object)
            column[block.nulls()[selected]] = None
        columns.append(column)
    return columns


# ═══════════════════════════════════════════════════════════════════════════════
# §2  State-function accumulators
# ═══════════════════════════════════════════════════════════════════════════════

class StateAccumulator(Accumulator):
    """Single-group accumulator driven by a StateAggregation's callables."""

    def __init__(self, function: StateAggregation, channels: tuple[int, ...],
                 mask_channel: Optional[int], intermediate_only: bool = False) -> None:
        self.intermediate_kind  = function.intermediate_kind
        self.final_kind         = function.final_kind
        self._function          = function
        self._channels          = channels
        self._mask_channel      = mask_channel
        self._intermediate_only = intermediate_only
        self._state             = function.init()
        self._finalized         = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError(f"{self._function.name}: accumulator already finalized")

    def add_input(self, page: Page) -> None:
        self._check_open()
        if self._intermediate_only:
            raise RuntimeError(
                f"{self._function.name}: intermediate-mode accumulator does not accept raw input"
            )
        fn = self._function
        keep, blocks = _participating_rows(page, self._channels, self._mask_channel,
                                           fn.null_checked_arguments)
        rows = int(keep.sum())
        if rows:
            self._state = fn.update(self._state, rows, *_selected_columns(fn, blocks, keep))

    def add_intermediate(self, block: Block) -> None:
        self._check_open()
        fn = self._function
        for position in range(block.position_count):
            if block.is_null(position):
                continue
            self._state = fn.combine(self._state, fn.deserialize(block.get(position)))

    def evaluate_intermediate(self, builder: BlockBuilder) -> None:
        self._check_open()
        self._finalized = True
        builder.append(self._function.serialize(self._state))

    def evaluate_final(self, builder: BlockBuilder) -> None:
        self._check_open()
        self._finalized = True
        builder.append(self._function.output(self._state))


class StateGroupedAccumulator(GroupedAccumulator):
    """
    Grouped accumulator holding one state per group id.

    Storage is a list indexed by group id, grown to the group count carried
    by each GroupByIdBlock.  Growing must never disturb existing groups.
    """

    def __init__(self, function: StateAggregation, channels: tuple[int, ...],
                 mask_channel: Optional[int], intermediate_only: bool = False) -> None:
        self.intermediate_kind  = function.intermediate_kind
        self.final_kind         = function.final_kind
        self._function          = function
        self._channels          = channels
        self._mask_channel      = mask_channel
        self._intermediate_only = intermediate_only
        self._states: list[Any] = []
        self._finalized_groups: set[int] = set()

    @property
    def group_capacity(self) -> int:
        return len(self._states)

    def _ensure_capacity(self, group_count: int) -> None:
        while len(self._states) < group_count:
            self._states.append(self._function.init())

    def _check_open(self, group_id: int) -> None:
        if group_id in self._finalized_groups:
            raise RuntimeError(
                f"{self._function.name}: group {group_id} already finalized"
            )

    def _group_ids(self, group_ids: GroupByIdBlock, position_count: int) -> np.ndarray:
        if group_ids.position_count != position_count:
            raise ValueError(
                f"group id block has {group_ids.position_count} positions, "
                f"input has {position_count}"
            )
        ids = group_ids.group_ids()
        if len(ids) and (ids.min() < 0 or ids.max() >= group_ids.group_count):
            raise ValueError(
                f"group ids must lie in [0, {group_ids.group_count}), "
                f"got [{ids.min()}, {ids.max()}]"
            )
        self._ensure_capacity(group_ids.group_count)
        return ids

    def _state_for(self, group_id: int) -> Any:
        if group_id < len(self._states):
            return self._states[group_id]
        return self._function.init()

    def add_input(self, group_ids: GroupByIdBlock, page: Page) -> None:
        if self._intermediate_only:
            raise RuntimeError(
                f"{self._function.name}: intermediate-mode accumulator does not accept raw input"
            )
        fn   = self._function
        ids  = self._group_ids(group_ids, page.position_count)
        for group_id in np.unique(ids):
            self._check_open(int(group_id))
        keep, blocks = _participating_rows(page, self._channels, self._mask_channel,
                                           fn.null_checked_arguments)
        for group_id in np.unique(ids[keep]):
            gid      = int(group_id)
            selected = keep & (ids == group_id)
            self._states[gid] = fn.update(self._states[gid], int(selected.sum()),
                                          *_selected_columns(fn, blocks, selected))

    def add_intermediate(self, group_ids: GroupByIdBlock, block: Block) -> None:
        fn  = self._function
        ids = self._group_ids(group_ids, block.position_count)
        for position in range(block.position_count):
            if block.is_null(position):
                continue
            gid = int(ids[position])
            self._check_open(gid)
            self._states[gid] = fn.combine(self._states[gid],
                                           fn.deserialize(block.get(position)))

    def evaluate_intermediate(self, group_id: int, builder: BlockBuilder) -> None:
        self._check_open(group_id)
        self._finalized_groups.add(group_id)
        builder.append(self._function.serialize(self._state_for(group_id)))

    def evaluate_final(self, group_id: int, builder: BlockBuilder) -> None:
        self._check_open(group_id)
        self._finalized_groups.add(group_id)
        builder.append(self._function.output(self._state_for(group_id)))


class StateAccumulatorFactory(AccumulatorFactory):
    """Creates the four accumulator flavours for one bound StateAggregation."""

    accumulator_class         = StateAccumulator
    grouped_accumulator_class = StateGroupedAccumulator

    def __init__(self, function: StateAggregation, channels: tuple[int, ...],
                 mask_channel: Optional[int]) -> None:
        self.function     = function
        self.channels     = channels
        self.mask_channel = mask_channel

    def create_accumulator(self) -> Accumulator:
        return self.accumulator_class(self.function, self.channels, self.mask_channel)

    def create_intermediate_accumulator(self) -> Accumulator:
        return self.accumulator_class(self.function, self.channels, self.mask_channel,
                                      intermediate_only=True)

    def create_grouped_accumulator(self) -> GroupedAccumulator:
        return self.grouped_accumulator_class(self.function, self.channels, self.mask_channel)

    def create_grouped_intermediate_accumulator(self) -> GroupedAccumulator:
        return self.grouped_accumulator_class(self.function, self.channels, self.mask_channel,
                                              intermediate_only=True)


# ═══════════════════════════════════════════════════════════════════════════════
# §3  StateAggregation
# ═══════════════════════════════════════════════════════════════════════════════

def _identity(value: Any) -> Any:
    return value


class StateAggregation(AggregationFunction):
    """
    An AggregationFunction defined by init/update/combine/output callables.

    Parameters
    ----------
    name : str
        Display name, used in log lines and failure messages.
    parameter_kinds : tuple of ValueKind
        One entry per argument; its length is the argument count.
    intermediate_kind, final_kind : ValueKind
        Column kinds of the serialized state and of the final value.
    init, update, combine, output, serialize, deserialize : callable
        See the module docstring.
    ignore_nulls : bool
        Drop rows where any argument is null before calling update.
    nullable_arguments : sequence of int
        Argument positions exempt from ignore_nulls; update sees None there.
    """

    factory_class = StateAccumulatorFactory

    def __init__(
        self,
        name:              str,
        parameter_kinds:   Sequence[ValueKind],
        intermediate_kind: ValueKind,
        final_kind:        ValueKind,
        *,
        init:        Callable[[], Any],
        update:      Callable[..., Any],
        combine:     Callable[[Any, Any], Any],
        output:      Callable[[Any], Any]      = _identity,
        serialize:   Callable[[Any], Any]      = _identity,
        deserialize: Callable[[Any], Any]      = _identity,
        ignore_nulls: bool = True,
        nullable_arguments: Sequence[int] = (),
    ) -> None:
        self.name              = name
        self.parameter_kinds   = tuple(parameter_kinds)
        self.intermediate_kind = intermediate_kind
        self.final_kind        = final_kind
        self.init              = init
        self.update            = update
        self.combine           = combine
        self.output            = output
        self.serialize         = serialize
        self.deserialize       = deserialize
        self.ignore_nulls      = ignore_nulls
        self.nullable_arguments = tuple(nullable_arguments)
        if any(not 0 <= a < self.argument_count for a in self.nullable_arguments):
            raise ValueError(
                f"{name}: nullable_arguments {list(self.nullable_arguments)} out of range "
                f"for {self.argument_count} argument(s)"
            )

    @property
    def null_checked_arguments(self) -> tuple[int, ...]:
        """Argument positions whose nulls exclude a row from update."""
        if not self.ignore_nulls:
            return ()
        return tuple(a for a in range(self.argument_count)
                     if a not in self.nullable_arguments)

    def bind(self, channels: Sequence[int],
             mask_channel: Optional[int] = None) -> AccumulatorFactory:
        return self.factory_class(self, check_binding(self, channels, mask_channel),
                                  mask_channel)

    def __repr__(self) -> str:
        args = ", ".join(k.label for k in self.parameter_kinds)
        return f"{self.name}({args}) -> {self.final_kind.label}"
