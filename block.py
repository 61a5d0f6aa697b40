"""
block.py — Columnar blocks and pages consumed by the aggregation harness.

═══════════════════════════════════════════════════════════════════════════════
  DATA MODEL
═══════════════════════════════════════════════════════════════════════════════

  Block  : one typed column.  A numpy value array plus a parallel boolean
           null array, both read-only once built.
  Page   : an ordered tuple of blocks ("channels") sharing one position
           count.  Pages are never mutated; slicing and channel
           rearrangement always produce a new Page.

  RunLengthEncodedBlock is the constant-column variant: a single-position
  value block repeated N times.  The harness uses it for the all-null decoy
  channels that push real data to higher channel indices.

  GroupByIdBlock pairs a BIGINT block of group ids with the number of
  groups the receiving grouped accumulator must be able to address.

Public API
----------
  ValueKind                               → column type (dtype + null placeholder)
  ArrayBlock(kind, values, nulls)         → Block
  RunLengthEncodedBlock(value, positions) → Block
  BlockBuilder(kind).append(v).build()    → ArrayBlock
  Page(*blocks, position_count=None)
  GroupByIdBlock(group_count, block)

  create_block(kind, values)              → ArrayBlock   (None → null)
  create_null_rle_block(positions)        → RunLengthEncodedBlock
  create_group_by_id_block(gid, positions)→ GroupByIdBlock
  create_double_sequence_block(start, n)  → ArrayBlock
  double_range(start, n)                  → np.ndarray
  get_only_value(block)                   → native Python value | None
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Iterable, Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════════════
# §1  Value kinds
# ═══════════════════════════════════════════════════════════════════════════════

class ValueKind(Enum):
    """Column type: SQL-ish label, numpy storage dtype, placeholder under nulls."""

    BIGINT  = ("bigint",  np.int64,   0)
    DOUBLE  = ("double",  np.float64, 0.0)
    REAL    = ("real",    np.float32, 0.0)
    BOOLEAN = ("boolean", np.bool_,   False)
    VARCHAR = ("varchar", object,     None)
    ROW     = ("row",     object,     None)

    def __init__(self, label: str, dtype: Any, placeholder: Any) -> None:
        self.label       = label
        self.dtype       = np.dtype(dtype)
        self.placeholder = placeholder

    @property
    def is_object(self) -> bool:
        return self.dtype == np.dtype(object)

    def __repr__(self) -> str:
        return f"ValueKind.{self.name}"


def _to_native(kind: ValueKind, raw: Any) -> Any:
    """Convert one stored element to the plain Python value callers see."""
    if kind.is_object:
        return raw
    return raw.item()


def _object_array(items: list) -> np.ndarray:
    # np.array() would turn a list of equal-length tuples into a 2-D array
    arr = np.empty(len(items), dtype=object)
    for i, item in enumerate(items):
        arr[i] = item
    return arr


# ═══════════════════════════════════════════════════════════════════════════════
# §2  Blocks
# ═══════════════════════════════════════════════════════════════════════════════

class Block(ABC):
    """A single typed column, positionally indexed from 0."""

    @property
    @abstractmethod
    def kind(self) -> ValueKind: ...

    @property
    @abstractmethod
    def position_count(self) -> int: ...

    @abstractmethod
    def values(self) -> np.ndarray:
        """Stored values, one per position.  Null positions hold the placeholder."""

    @abstractmethod
    def nulls(self) -> np.ndarray:
        """Boolean array, True where the position is null."""

    @abstractmethod
    def get_region(self, offset: int, length: int) -> "Block": ...

    def is_null(self, position: int) -> bool:
        self._check_position(position)
        return bool(self.nulls()[position])

    def get(self, position: int) -> Any:
        """Native Python value at *position*, or None when null."""
        if self.is_null(position):
            return None
        return _to_native(self.kind, self.values()[position])

    def to_list(self) -> list:
        return [self.get(i) for i in range(self.position_count)]

    def __len__(self) -> int:
        return self.position_count

    def _check_position(self, position: int) -> None:
        if not 0 <= position < self.position_count:
            raise ValueError(
                f"position {position} out of range for block of {self.position_count}"
            )

    def _check_region(self, offset: int, length: int) -> None:
        if offset < 0 or length < 0 or offset + length > self.position_count:
            raise ValueError(
                f"region [{offset}, {offset + length}) out of range for "
                f"block of {self.position_count} positions"
            )


class ArrayBlock(Block):
    """Flat column backed by a value array and a null array of equal length."""

    def __init__(self, kind: ValueKind, values: np.ndarray,
                 nulls: Optional[np.ndarray] = None) -> None:
        values = np.array(values, dtype=kind.dtype)
        if values.ndim != 1:
            raise ValueError(f"block values must be 1-D, got shape {values.shape}")
        if nulls is None:
            nulls = np.zeros(len(values), dtype=bool)
        nulls = np.array(nulls, dtype=bool)
        if nulls.shape != values.shape:
            raise ValueError(
                f"null array length {len(nulls)} != value array length {len(values)}"
            )
        values.setflags(write=False)
        nulls.setflags(write=False)
        self._kind   = kind
        self._values = values
        self._nulls  = nulls

    @property
    def kind(self) -> ValueKind:
        return self._kind

    @property
    def position_count(self) -> int:
        return len(self._values)

    def values(self) -> np.ndarray:
        return self._values

    def nulls(self) -> np.ndarray:
        return self._nulls

    def get_region(self, offset: int, length: int) -> ArrayBlock:
        self._check_region(offset, length)
        end = offset + length
        return ArrayBlock(self._kind, self._values[offset:end], self._nulls[offset:end])

    def __repr__(self) -> str:
        return f"ArrayBlock({self._kind.label}, {self.to_list()!r})"


class RunLengthEncodedBlock(Block):
    """
    Constant column: *value* (a single-position block) repeated
    *position_count* times.  Storage is O(1) regardless of length; the
    expanded arrays are only materialised when values()/nulls() are read.
    """

    def __init__(self, value: Block, position_count: int) -> None:
        if value.position_count != 1:
            raise ValueError(
                f"run-length value must have exactly 1 position, got {value.position_count}"
            )
        if position_count < 0:
            raise ValueError(f"position count must be non-negative, got {position_count}")
        self._value          = value
        self._position_count = position_count

    @property
    def value(self) -> Block:
        return self._value

    @property
    def kind(self) -> ValueKind:
        return self._value.kind

    @property
    def position_count(self) -> int:
        return self._position_count

    def values(self) -> np.ndarray:
        return np.repeat(self._value.values(), self._position_count)

    def nulls(self) -> np.ndarray:
        return np.repeat(self._value.nulls(), self._position_count)

    def is_null(self, position: int) -> bool:
        self._check_position(position)
        return self._value.is_null(0)

    def get(self, position: int) -> Any:
        self._check_position(position)
        return self._value.get(0)

    def get_region(self, offset: int, length: int) -> RunLengthEncodedBlock:
        self._check_region(offset, length)
        return RunLengthEncodedBlock(self._value, length)

    def __repr__(self) -> str:
        return f"RunLengthEncodedBlock({self._value.get(0)!r} x {self._position_count})"


class BlockBuilder:
    """Append-only builder producing an ArrayBlock of one ValueKind."""

    def __init__(self, kind: ValueKind) -> None:
        self.kind     = kind
        self._values: list = []
        self._nulls:  list[bool] = []

    @property
    def position_count(self) -> int:
        return len(self._values)

    def append(self, value: Any) -> BlockBuilder:
        if value is None:
            return self.append_null()
        self._values.append(value)
        self._nulls.append(False)
        return self

    def append_null(self) -> BlockBuilder:
        self._values.append(self.kind.placeholder)
        self._nulls.append(True)
        return self

    def build(self) -> ArrayBlock:
        if self.kind.is_object:
            values = _object_array(self._values)
        else:
            values = np.array(self._values, dtype=self.kind.dtype)
        return ArrayBlock(self.kind, values, np.array(self._nulls, dtype=bool))


# ═══════════════════════════════════════════════════════════════════════════════
# §3  Pages
# ═══════════════════════════════════════════════════════════════════════════════

class Page:
    """
    An immutable row-set: ordered channels sharing one position count.

    Parameters
    ----------
    *blocks : Block
        The channels, in channel-index order.
    position_count : int, optional
        Required only when *blocks* is empty; otherwise it must agree with
        every block.

    Raises
    ------
    ValueError
        If the blocks do not all have the same position count.
    """

    def __init__(self, *blocks: Block, position_count: Optional[int] = None) -> None:
        if position_count is None:
            position_count = blocks[0].position_count if blocks else 0
        for block in blocks:
            if block.position_count != position_count:
                raise ValueError(
                    "input blocks provided are not equal in position count: "
                    f"{[b.position_count for b in blocks]} (page has {position_count})"
                )
        self._blocks         = tuple(blocks)
        self._position_count = position_count

    @property
    def position_count(self) -> int:
        return self._position_count

    @property
    def channel_count(self) -> int:
        return len(self._blocks)

    @property
    def blocks(self) -> tuple[Block, ...]:
        return self._blocks

    def get_block(self, channel: int) -> Block:
        if not 0 <= channel < len(self._blocks):
            raise ValueError(
                f"channel {channel} out of range for page with {len(self._blocks)} channels"
            )
        return self._blocks[channel]

    def get_region(self, offset: int, length: int) -> Page:
        """Positions [offset, offset+length) of every channel, still aligned."""
        if offset < 0 or length < 0 or offset + length > self._position_count:
            raise ValueError(
                f"region [{offset}, {offset + length}) out of range for "
                f"page of {self._position_count} positions"
            )
        return Page(*(b.get_region(offset, length) for b in self._blocks),
                    position_count=length)

    def append_column(self, block: Block) -> Page:
        return Page(*self._blocks, block, position_count=self._position_count)

    def __repr__(self) -> str:
        return f"Page(positions={self._position_count}, channels={list(self._blocks)!r})"


class GroupByIdBlock:
    """Per-position group ids plus the number of groups they may address."""

    def __init__(self, group_count: int, block: Block) -> None:
        if block.kind is not ValueKind.BIGINT:
            raise ValueError(f"group ids must be BIGINT, got {block.kind.label}")
        self.group_count = group_count
        self.block       = block

    @property
    def position_count(self) -> int:
        return self.block.position_count

    def group_ids(self) -> np.ndarray:
        return self.block.values()

    def get_group_id(self, position: int) -> int:
        return int(self.block.get(position))


# ═══════════════════════════════════════════════════════════════════════════════
# §4  Construction helpers
# ═══════════════════════════════════════════════════════════════════════════════

def create_block(kind: ValueKind, values: Iterable[Any]) -> ArrayBlock:
    """Build a block from an iterable of Python values; None becomes null."""
    builder = BlockBuilder(kind)
    for value in values:
        builder.append(value)
    return builder.build()


_NULL_BOOLEAN_VALUE = BlockBuilder(ValueKind.BOOLEAN).append_null().build()


def create_null_rle_block(position_count: int) -> RunLengthEncodedBlock:
    """An all-null constant column of *position_count* positions."""
    return RunLengthEncodedBlock(_NULL_BOOLEAN_VALUE, position_count)


def create_group_by_id_block(group_id: int, position_count: int) -> GroupByIdBlock:
    """Tag *position_count* rows with the single group *group_id*."""
    ids = np.full(position_count, group_id, dtype=np.int64)
    return GroupByIdBlock(group_id + 1, ArrayBlock(ValueKind.BIGINT, ids))


def double_range(start: int, length: int) -> np.ndarray:
    """float64 array [start, start+1, …, start+length-1]."""
    return np.arange(start, start + length, dtype=np.float64)


def create_double_sequence_block(start: int, length: int) -> ArrayBlock:
    return ArrayBlock(ValueKind.DOUBLE, double_range(start, length))


def get_only_value(block: Block) -> Any:
    """The single value of a one-position block (None when null)."""
    if block.position_count != 1:
        raise ValueError(f"expected a single-position block, got {block.position_count}")
    return block.get(0)
