"""Terminal rendering of published snapshots."""

from __future__ import annotations

import math
from datetime import datetime
from typing import List, Optional, Sequence

from .feeds import Listing
from .pricing import parse_price, round_price
from .state import Snapshot

PLACEHOLDER = "-"
CURRENCY_SUFFIX = " ₽"
GROUP_SEPARATOR = "\u00a0"

PRIMARY_TITLE = "Last offer of page 1 + first 5 of page 2"
SECONDARY_TITLE = "Positions 15-20 (page 2)"
SECONDARY_FIRST_POSITION = 15


def format_price(value: Optional[float]) -> str:
    """Render a rouble amount ru-RU style, e.g. ``95 123,50 ₽``."""
    if value is None or math.isnan(value):
        return PLACEHOLDER
    text = f"{round_price(value):,.2f}"
    text = text.replace(",", GROUP_SEPARATOR).replace(".", ",")
    return f"{text}{CURRENCY_SUFFIX}"


def format_updated_at(moment: Optional[datetime]) -> str:
    if moment is None:
        return PLACEHOLDER
    return moment.astimezone().strftime("%H:%M:%S")


def _render_section(
    title: str,
    average: Optional[float],
    listings: Sequence[Listing],
    first_position: int,
    empty_text: str,
) -> List[str]:
    lines = [
        title,
        f"  Average: {format_price(average)} across {len(listings)} offers",
    ]
    if not listings:
        lines.append(f"  {empty_text}")
        return lines
    for offset, listing in enumerate(listings):
        position = f"№ {first_position + offset}"
        lines.append(
            f"  {position:<6} {listing.nick_name:<24.24} {format_price(parse_price(listing)):>14}"
        )
    return lines


def render_snapshot(snapshot: Snapshot) -> str:
    lines = ["Bybit P2P rate (USDT/RUB, from 10 000 ₽, refreshed every 10 seconds)", ""]

    if snapshot.loading:
        lines.append("Loading current rates...")
        return "\n".join(lines)

    if snapshot.error:
        lines.append("Could not fetch data")
        lines.append(f"  {snapshot.error}")
        lines.append("  Send SIGUSR1 to retry now.")
        if not snapshot.has_data:
            return "\n".join(lines)
        lines.append("")

    lines.extend(
        _render_section(
            PRIMARY_TITLE,
            snapshot.primary_average,
            snapshot.primary,
            1,
            "No data to average.",
        )
    )
    lines.append("")
    lines.extend(
        _render_section(
            SECONDARY_TITLE,
            snapshot.secondary_average,
            snapshot.secondary,
            SECONDARY_FIRST_POSITION,
            "Not enough offers on page 2.",
        )
    )
    lines.append("")
    lines.append(f"Last update: {format_updated_at(snapshot.last_updated)}")
    return "\n".join(lines)


__all__ = ["format_price", "format_updated_at", "render_snapshot"]
