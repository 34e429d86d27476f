"""Slice the two fetched pages into display subsets and average their prices."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence, Tuple

from .feeds import Listing

PRIMARY_PAGE2_COUNT = 5
SECONDARY_START = 4
SECONDARY_STOP = 10

_CENTS = Decimal("0.01")


def parse_price(listing: Listing) -> Optional[float]:
    text = listing.price
    if "_" in text:  # float() accepts digit separators, upstream never sends them
        return None
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def round_price(value: float) -> float:
    """Round half-up to cents on the exact binary value of ``value``."""
    return float(Decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP))


def calculate_average(listings: Iterable[Listing]) -> Optional[float]:
    values = [value for value in map(parse_price, listings) if value is not None]
    if not values:
        return None
    return round_price(sum(values) / len(values))


def select_primary(page1: Sequence[Listing], page2: Sequence[Listing]) -> Tuple[Listing, ...]:
    """Last listing of page 1 followed by the first five of page 2."""
    head: Tuple[Listing, ...] = (page1[-1],) if page1 else ()
    return head + tuple(page2[:PRIMARY_PAGE2_COUNT])


def select_secondary(page2: Sequence[Listing]) -> Tuple[Listing, ...]:
    # Indices 4..9 of page 2; page2[4] is shared with the primary subset.
    return tuple(page2[SECONDARY_START:SECONDARY_STOP])


def derive_subsets(
    page1: Sequence[Listing], page2: Sequence[Listing]
) -> Tuple[Tuple[Listing, ...], Tuple[Listing, ...]]:
    return select_primary(page1, page2), select_secondary(page2)


__all__ = [
    "calculate_average",
    "derive_subsets",
    "parse_price",
    "round_price",
    "select_primary",
    "select_secondary",
]
