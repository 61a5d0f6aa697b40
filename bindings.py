"""
bindings.py — Channel bindings used to prove binding independence.

A binding maps argument slot i to the page channel that supplies it.  Every
strategy is re-run under three variants and must give the same answer:

  identity   [0, 1, …, n-1]
  reversed   [n-1, …, 1, 0]        only when n > 1; pages get their
                                   channels reversed to match
  offset(k)  [k, k+1, …, k+n-1]    pages get k all-null decoy channels
                                   prepended (k = CHANNEL_OFFSET)
"""

from __future__ import annotations

from enum import Enum

CHANNEL_OFFSET: int = 3


class BindingVariant(Enum):
    IDENTITY = ("identity", "")
    REVERSED = ("reversed", "Inconsistent results with reversed channels")
    OFFSET   = ("offset",   "Inconsistent results with channel offset")

    def __init__(self, label: str, failure_label: str) -> None:
        self.label         = label
        self.failure_label = failure_label


def create_args(argument_count: int) -> list[int]:
    return list(range(argument_count))


def reverse_args(argument_count: int) -> list[int]:
    return create_args(argument_count)[::-1]


def offset_args(argument_count: int, offset: int = CHANNEL_OFFSET) -> list[int]:
    return [channel + offset for channel in create_args(argument_count)]


def binding_variants(argument_count: int,
                     offset: int = CHANNEL_OFFSET) -> list[tuple[BindingVariant, list[int]]]:
    """Identity first (the reference), then reversed when n > 1, then offset."""
    variants = [(BindingVariant.IDENTITY, create_args(argument_count))]
    if argument_count > 1:
        variants.append((BindingVariant.REVERSED, reverse_args(argument_count)))
    variants.append((BindingVariant.OFFSET, offset_args(argument_count, offset)))
    return variants
