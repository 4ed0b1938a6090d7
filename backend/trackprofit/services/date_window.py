"""
Date Window Resolver — turns a dashboard preset into an inclusive [since, until] pair.

The ads provider refuses ``since`` values older than 37 complete months, so every
window is clamped to the first day of the month 37 months back.
"""

import calendar
from datetime import date, timedelta
from typing import Optional

from trackprofit.errors import invalid_input
from trackprofit.schemas import Window

HISTORY_MONTHS = 37

PRESETS = (
    "today", "yesterday", "last_7_days", "last_30_days", "this_month", "last_month",
    "last_3_months", "last_6_months", "this_year", "last_year", "lifetime", "custom",
)
PRESET_ALIASES = {"max_range": "lifetime", "last_90_days": "last_3_months"}


def shift_months(day: date, months: int) -> date:
    """Move ``day`` by ``months`` (may be negative), clamping to the month's last day."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def earliest_allowed(today: date) -> date:
    return shift_months(today.replace(day=1), -HISTORY_MONTHS)


def _parse_day(value, field: str) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise invalid_input(f"'{field}' is required for a custom window", reason="missing_date")
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise invalid_input(f"'{field}' must be a YYYY-MM-DD date, got {value!r}", reason="invalid_date")


def resolve(
    preset: Optional[str],
    custom_start=None,
    custom_end=None,
    today: Optional[date] = None,
) -> Window:
    """Resolve ``preset`` (plus custom bounds) into a clamped Window."""
    today = today or date.today()
    preset = (preset or "last_30_days").strip().lower()
    preset = PRESET_ALIASES.get(preset, preset)
    floor = earliest_allowed(today)

    if preset == "today":
        since, until = today, today
    elif preset == "yesterday":
        since = until = today - timedelta(days=1)
    elif preset == "last_7_days":
        since, until = today - timedelta(days=6), today
    elif preset == "last_30_days":
        since, until = today - timedelta(days=29), today
    elif preset == "this_month":
        since, until = today.replace(day=1), today
    elif preset == "last_month":
        until = today.replace(day=1) - timedelta(days=1)
        since = until.replace(day=1)
    elif preset == "last_3_months":
        since, until = shift_months(today, -3), today
    elif preset == "last_6_months":
        since, until = shift_months(today, -6), today
    elif preset == "this_year":
        since, until = today.replace(month=1, day=1), today
    elif preset == "last_year":
        since, until = date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    elif preset == "lifetime":
        since, until = floor, today
    elif preset == "custom":
        since = _parse_day(custom_start, "since")
        until = _parse_day(custom_end, "until")
        if since > until:
            raise invalid_input("Window start is after its end", reason="inverted_window")
        until = min(until, today)
    else:
        raise invalid_input(f"Unknown date preset '{preset}'", reason="unknown_preset")

    since = max(since, floor)
    if since > until:
        raise invalid_input(
            f"Window ends before the earliest allowed date {floor.isoformat()}",
            reason="window_out_of_range",
        )
    return Window(since=since, until=until)
