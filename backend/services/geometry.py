"""
Small geometry helpers shared by the layout, fitting and crop services.
"""
import math
from typing import Tuple


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 always rounding up (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def clamp(n: float, low: float, high: float) -> float:
    return max(low, min(high, n))


def clamp_int(n: float, low: int, high: int) -> int:
    """Truncate toward zero, then clamp."""
    return int(max(low, min(high, int(n))))


def approx_eq(a: float, b: float, eps: float = 1e-3) -> bool:
    return abs(a - b) <= eps


def fit_inside(width: int, height: int, max_w: int, max_h: int) -> Tuple[int, int]:
    """
    Size of (width, height) scaled to fit inside (max_w, max_h), keeping the
    aspect ratio and never enlarging.
    """
    if width <= 0 or height <= 0:
        return max(0, width), max(0, height)
    if width <= max_w and height <= max_h:
        return width, height
    scale = min(max_w / width, max_h / height)
    new_w = min(max_w, max(1, round_half_up(width * scale)))
    new_h = min(max_h, max(1, round_half_up(height * scale)))
    return new_w, new_h


def centered_left(outer_w: int, inner_w: int) -> int:
    """Horizontal offset centering inner_w within outer_w, clamped to the canvas."""
    return int(clamp(round_half_up((outer_w - inner_w) / 2), 0, max(0, outer_w - inner_w)))


def clamp_top(top: float, outer_h: int, inner_h: int) -> int:
    return int(clamp(round_half_up(top), 0, max(0, outer_h - inner_h)))
