"""Display helpers shared by automation emails."""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

TIER_NAMES: dict[str, str] = {
    "free": "Free",
    "lite": "Lite",
    "pro": "Pro",
    "champ": "Champion",
}

# Prize (USD) when an automation does not set monthlyDrawingSettings.prizeAmount
DEFAULT_PRIZES: dict[str, int] = {"lite": 25, "pro": 50, "champ": 100}

_ORDINAL_SUFFIXES = {1: "st", 2: "nd", 3: "rd"}


def get_ordinal(num: int) -> str:
    """1 -> '1st', 2 -> '2nd', 11 -> '11th', 21 -> '21st', 112 -> '112th'."""
    if 11 <= num % 100 <= 13:
        return f"{num}th"
    return f"{num}{_ORDINAL_SUFFIXES.get(num % 10, 'th')}"


def format_amount(amount: float | int) -> str:
    """25.0 -> '25', 12.5 -> '12.50'."""
    value = float(amount)
    return f"{value:.0f}" if value.is_integer() else f"{value:.2f}"


def format_date(dt: datetime | None) -> str:
    """'March 5, 2026'. None renders as an empty string."""
    if dt is None:
        return ""
    return f"{dt:%B} {dt.day}, {dt.year}"


def month_year_label(month: int, year: int) -> str:
    """(3, 2026) -> 'March 2026'."""
    return f"{datetime(year, month, 1):%B} {year}"


def week_range_label(start: datetime, end: datetime) -> str:
    return f"{format_date(start)} - {format_date(end)}"


def resolve_timezone(name: str | None, fallback: str) -> tzinfo:
    """ZoneInfo for name, falling back when unset or unknown."""
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r", candidate)
    return ZoneInfo("UTC")
