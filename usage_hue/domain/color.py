from __future__ import annotations

from ..core.config import CieXY


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def lerp(start: float, end: float, t: float) -> float:
    t = clamp(t)
    # Weighted form is exact at both endpoints
    return start * (1 - t) + end * t


def interpolate_color(start: CieXY, end: CieXY, t: float) -> tuple[float, float]:
    """Linear interpolation between two CIE xy points. t=0 is start, t=1 is end."""
    return (lerp(start.x, end.x, t), lerp(start.y, end.y, t))


def interpolate_brightness(start: float, end: float, t: float) -> int:
    """Linear interpolation between two brightness values (0-100)."""
    return int(round(clamp(lerp(start, end, t), 0, 100)))
