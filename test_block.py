"""
test_block.py — Columnar block and page behaviour the harness relies on.

Run with:
    pytest test_block.py -v
"""

from __future__ import annotations

import numpy as np
import pytest

from block import (
    ArrayBlock,
    BlockBuilder,
    GroupByIdBlock,
    Page,
    RunLengthEncodedBlock,
    ValueKind,
    create_block,
    create_double_sequence_block,
    create_group_by_id_block,
    create_null_rle_block,
    double_range,
    get_only_value,
)


# ═══════════════════════════════════════════════════════════════════════════════
# §1  Blocks and builders
# ═══════════════════════════════════════════════════════════════════════════════

class TestBlockBuilder:

    def test_values_and_nulls(self) -> None:
        block = BlockBuilder(ValueKind.BIGINT).append(4).append_null().append(6).build()
        assert block.position_count == 3
        assert block.to_list() == [4, None, 6]
        assert block.nulls().tolist() == [False, True, False]

    def test_append_none_is_null(self) -> None:
        block = BlockBuilder(ValueKind.DOUBLE).append(None).build()
        assert block.is_null(0)
        assert block.get(0) is None

    def test_native_python_values(self) -> None:
        """get() hands back plain Python scalars, never numpy ones."""
        assert type(create_block(ValueKind.BIGINT, [1]).get(0)) is int
        assert type(create_block(ValueKind.DOUBLE, [1.5]).get(0)) is float
        assert type(create_block(ValueKind.BOOLEAN, [True]).get(0)) is bool
        assert create_block(ValueKind.VARCHAR, ["x"]).get(0) == "x"

    def test_row_values_stay_one_dimensional(self) -> None:
        """Equal-length tuples must not be spread into a 2-D array."""
        block = create_block(ValueKind.ROW, [(1, 2.0, 3.0), None, (4, 5.0, 6.0)])
        assert block.position_count == 3
        assert block.get(0) == (1, 2.0, 3.0)
        assert block.get(1) is None
        assert block.get(2) == (4, 5.0, 6.0)

    def test_empty_builder(self) -> None:
        block = BlockBuilder(ValueKind.BIGINT).build()
        assert block.position_count == 0
        assert block.to_list() == []


class TestArrayBlock:

    def test_read_only(self) -> None:
        block = create_block(ValueKind.BIGINT, [1, 2, 3])
        with pytest.raises(ValueError):
            block.values()[0] = 99

    def test_construction_copies_input(self) -> None:
        raw   = np.array([1.0, 2.0])
        block = ArrayBlock(ValueKind.DOUBLE, raw)
        raw[0] = 42.0
        assert block.get(0) == 1.0, "block aliases the caller's array"

    def test_region(self) -> None:
        block  = create_block(ValueKind.BIGINT, [1, None, 3, 4, 5])
        region = block.get_region(1, 3)
        assert region.to_list() == [None, 3, 4]

    def test_region_out_of_range(self) -> None:
        block = create_block(ValueKind.BIGINT, [1, 2])
        with pytest.raises(ValueError, match="out of range"):
            block.get_region(1, 5)

    def test_null_length_mismatch(self) -> None:
        with pytest.raises(ValueError, match="null array length"):
            ArrayBlock(ValueKind.BIGINT, np.array([1, 2]), np.array([False]))

    def test_position_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            create_block(ValueKind.BIGINT, [1]).get(1)


class TestRunLengthEncodedBlock:

    def test_null_rle_block(self) -> None:
        block = create_null_rle_block(4)
        assert block.position_count == 4
        assert block.kind is ValueKind.BOOLEAN
        assert all(block.is_null(i) for i in range(4))
        assert block.nulls().tolist() == [True] * 4

    def test_value_block_is_shared(self) -> None:
        """Decoy columns reuse one cached single-value block."""
        a, b = create_null_rle_block(2), create_null_rle_block(7)
        assert a.value is b.value

    def test_constant_value(self) -> None:
        block = RunLengthEncodedBlock(create_block(ValueKind.BIGINT, [9]), 3)
        assert block.to_list() == [9, 9, 9]
        assert block.values().tolist() == [9, 9, 9]
        assert block.get_region(1, 2).position_count == 2

    def test_value_must_be_single_position(self) -> None:
        with pytest.raises(ValueError, match="exactly 1 position"):
            RunLengthEncodedBlock(create_block(ValueKind.BIGINT, [1, 2]), 3)

    def test_zero_positions(self) -> None:
        block = create_null_rle_block(0)
        assert block.position_count == 0
        assert block.values().shape == (0,)


# ═══════════════════════════════════════════════════════════════════════════════
# §2  Pages
# ═══════════════════════════════════════════════════════════════════════════════

class TestPage:

    def test_unequal_position_counts_fail_fast(self) -> None:
        with pytest.raises(ValueError, match="not equal in position count"):
            Page(create_block(ValueKind.BIGINT, [1, 2, 3]),
                 create_block(ValueKind.BIGINT, [1, 2]))

    def test_explicit_position_count_must_agree(self) -> None:
        with pytest.raises(ValueError, match="not equal in position count"):
            Page(create_block(ValueKind.BIGINT, [1, 2]), position_count=3)

    def test_channels(self) -> None:
        a = create_block(ValueKind.BIGINT, [1, 2])
        b = create_block(ValueKind.VARCHAR, ["x", "y"])
        page = Page(a, b)
        assert page.channel_count == 2
        assert page.position_count == 2
        assert page.get_block(1) is b

    def test_channel_out_of_range(self) -> None:
        page = Page(create_block(ValueKind.BIGINT, [1]))
        with pytest.raises(ValueError, match="channel 3 out of range"):
            page.get_block(3)

    def test_region_keeps_channels_aligned(self) -> None:
        page = Page(create_block(ValueKind.BIGINT, [1, 2, 3, 4]),
                    create_block(ValueKind.VARCHAR, ["a", "b", "c", "d"]))
        region = page.get_region(1, 2)
        assert region.position_count == 2
        assert region.get_block(0).to_list() == [2, 3]
        assert region.get_block(1).to_list() == ["b", "c"]

    def test_append_column_returns_new_page(self) -> None:
        page  = Page(create_block(ValueKind.BIGINT, [1, 2]))
        wider = page.append_column(create_block(ValueKind.BOOLEAN, [True, False]))
        assert page.channel_count == 1
        assert wider.channel_count == 2

    def test_empty_page(self) -> None:
        page = Page()
        assert page.position_count == 0
        assert page.channel_count == 0


# ═══════════════════════════════════════════════════════════════════════════════
# §3  Helpers
# ═══════════════════════════════════════════════════════════════════════════════

class TestHelpers:

    def test_group_by_id_block(self) -> None:
        ids = create_group_by_id_block(4000, 3)
        assert ids.position_count == 3
        assert ids.group_count == 4001
        assert ids.group_ids().tolist() == [4000, 4000, 4000]
        assert ids.get_group_id(2) == 4000

    def test_group_ids_must_be_bigint(self) -> None:
        with pytest.raises(ValueError, match="BIGINT"):
            GroupByIdBlock(1, create_block(ValueKind.DOUBLE, [0.0]))

    def test_double_range(self) -> None:
        assert double_range(2, 3).tolist() == [2.0, 3.0, 4.0]
        assert create_double_sequence_block(0, 4).to_list() == [0.0, 1.0, 2.0, 3.0]

    def test_get_only_value(self) -> None:
        assert get_only_value(create_block(ValueKind.BIGINT, [7])) == 7
        assert get_only_value(create_block(ValueKind.BIGINT, [None])) is None

    def test_get_only_value_requires_one_position(self) -> None:
        with pytest.raises(ValueError, match="single-position"):
            get_only_value(create_block(ValueKind.BIGINT, [1, 2]))
