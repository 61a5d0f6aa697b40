"""
transform.py — Derived page sets for the binding and distinct checks.

Every transformation keeps each page's position count and returns new
pages; the inputs are never modified.

Public API
----------
  check_pages(pages)                    raises ValueError on mixed channel counts
  reverse_columns(pages)                → list[Page]   channel order reversed
  offset_columns(pages, offset)         → list[Page]   null decoys prepended
  transform_pages(variant, pages, k)    → list[Page]   per BindingVariant
  mask_pages(mask_value, pages)         → list[Page]   constant BOOLEAN appended
  interleave(first, second)             → list[Page]   f0, s0, f1, s1, …
  split_page(page, parts)               → list[Page]   contiguous regions
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from bindings import BindingVariant
from block import ArrayBlock, Page, ValueKind, create_null_rle_block


def check_pages(pages: Sequence[Page]) -> None:
    """All pages of one input set must expose the same channels."""
    counts = {page.channel_count for page in pages}
    if len(counts) > 1:
        raise ValueError(
            f"pages have inconsistent channel counts: {[p.channel_count for p in pages]}"
        )


def reverse_columns(pages: Sequence[Page]) -> list[Page]:
    """Reverse the channel order of every non-empty page."""
    reversed_pages = []
    for page in pages:
        if page.position_count == 0:
            reversed_pages.append(page)
        else:
            reversed_pages.append(Page(*page.blocks[::-1],
                                       position_count=page.position_count))
    return reversed_pages


def offset_columns(pages: Sequence[Page], offset: int) -> list[Page]:
    """Prepend *offset* all-null constant channels to every page."""
    shifted = []
    for page in pages:
        decoys = [create_null_rle_block(page.position_count) for _ in range(offset)]
        shifted.append(Page(*decoys, *page.blocks, position_count=page.position_count))
    return shifted


_VARIANT_TRANSFORMS = {
    BindingVariant.IDENTITY: lambda pages, offset: list(pages),
    BindingVariant.REVERSED: lambda pages, offset: reverse_columns(pages),
    BindingVariant.OFFSET:   offset_columns,
}


def transform_pages(variant: BindingVariant, pages: Sequence[Page],
                    offset: int) -> list[Page]:
    """Rearrange *pages* so that *variant*'s binding reads the same arguments."""
    return _VARIANT_TRANSFORMS[variant](pages, offset)


def mask_pages(mask_value: bool, pages: Sequence[Page]) -> list[Page]:
    """Append one BOOLEAN channel holding *mask_value* on every position."""
    masked = []
    for page in pages:
        mask = ArrayBlock(ValueKind.BOOLEAN,
                          np.full(page.position_count, mask_value, dtype=bool))
        masked.append(page.append_column(mask))
    return masked


def interleave(first: Sequence[Page], second: Sequence[Page]) -> list[Page]:
    if len(first) != len(second):
        raise ValueError(f"cannot interleave {len(first)} pages with {len(second)}")
    return [page for pair in zip(first, second) for page in pair]


def split_page(page: Page, parts: int = 2) -> list[Page]:
    """
    Split *page* into *parts* contiguous regions.

    Region i covers [⌊n·i/parts⌋, ⌊n·(i+1)/parts⌋), so two parts split at
    the midpoint n // 2 and three parts give uneven regions when n is not
    divisible by three.  Never yields more regions than positions.
    """
    if parts < 1:
        raise ValueError(f"parts must be at least 1, got {parts}")
    n     = page.position_count
    parts = min(parts, n)
    if parts <= 1:
        return [page]
    bounds = [n * i // parts for i in range(parts + 1)]
    return [page.get_region(start, end - start) for start, end in zip(bounds, bounds[1:])]
