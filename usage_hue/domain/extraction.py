"""Pull usage fractions out of the (unofficial, undocumented) usage documents.

The remote API has renamed its fields before, so every lookup goes through an
ordered list of candidate keys. Nothing here knows about transports.
"""
from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from .color import clamp
from .models import UsageLimit, UsageReport

PERCENT_KEYS = ("utilization", "percentUsed", "percent_used", "percentage", "usage_percentage")
TYPE_KEYS = ("type", "name", "limit_type")
RESET_KEYS = ("resetAt", "reset_at", "resets_at", "resetsAt", "expires_at")

# Substring matches against the category name, most preferred first
PRIMARY_CATEGORIES = (("five_hour", "five hour"), ("seven_day", "seven day"))
EXCLUDED_CATEGORY = "extra"


def to_number(val: Any) -> Optional[float]:
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        try:
            n = float(val)
        except OverflowError:
            return None
        return n if math.isfinite(n) else None
    if isinstance(val, str):
        try:
            n = float(val.strip())
        except ValueError:
            return None
        return n if math.isfinite(n) else None
    return None


def normalize_percent(raw: float) -> float:
    """Values above 1 are 0-100 percentages, anything else is already a fraction.

    The result is clamped to 0..1.
    """
    return clamp(raw / 100.0 if raw > 1 else raw)


def _first(entry: Mapping[str, Any], keys: tuple[str, ...], convert=None):
    for key in keys:
        val = entry.get(key)
        if convert is not None:
            val = convert(val)
        if val is not None:
            return val
    return None


def parse_usage_entry(entry: Mapping[str, Any], fallback_type: Optional[str] = None) -> Optional[UsageLimit]:
    raw = _first(entry, PERCENT_KEYS, to_number)
    if raw is None:
        return None

    type_ = _first(entry, TYPE_KEYS, lambda v: v if isinstance(v, str) else None)
    reset = _first(entry, RESET_KEYS, lambda v: v if isinstance(v, str) else None)
    return UsageLimit(
        type=type_ or fallback_type or "unknown",
        percent_used=normalize_percent(raw),
        reset_at=reset,
    )


def _collect(raw: Any) -> list[UsageLimit]:
    limits: list[UsageLimit] = []

    if isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, Mapping):
                limit = parse_usage_entry(entry)
                if limit:
                    limits.append(limit)
        return limits

    if not isinstance(raw, Mapping):
        return limits

    for key, val in raw.items():
        if isinstance(val, Mapping):
            limit = parse_usage_entry(val, fallback_type=str(key))
            if limit:
                limits.append(limit)

    # Flat document: the top level is itself a single limit entry
    if not limits and any(k in raw for k in PERCENT_KEYS):
        limit = parse_usage_entry(raw)
        if limit:
            limits.append(limit)

    return limits


def select_driving_limit(limits: list[UsageLimit]) -> float:
    """Pick the fraction the light should show.

    The short rolling window resets often and keeps the light meaningful, so it
    wins over the long window; failing both, the highest non-"extra" category.
    """
    for needles in PRIMARY_CATEGORIES:
        for limit in limits:
            name = limit.type.lower()
            if any(n in name for n in needles):
                return limit.percent_used

    candidates = [l.percent_used for l in limits if EXCLUDED_CATEGORY not in l.type.lower()]
    return max(candidates) if candidates else 0.0


def parse_usage_response(raw: Any) -> UsageReport:
    limits = _collect(raw)
    return UsageReport(limits=limits, highest_percent=select_driving_limit(limits))


def format_details(limits: list[UsageLimit]) -> str:
    parts = []
    for l in limits:
        reset = f", resets {l.reset_at}" if l.reset_at else ""
        parts.append(f"{l.type}: {round(l.percent_used * 100)}%{reset}")
    return " | ".join(parts)
