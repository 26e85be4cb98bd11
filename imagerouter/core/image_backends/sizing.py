"""Width/height to backend-specific aspect-ratio labels."""
from __future__ import annotations

from math import gcd
from typing import Optional, Sequence, Tuple

COMMON_RATIOS: Tuple[Tuple[str, float], ...] = (
    ("1:1", 1.0),
    ("16:9", 16 / 9),
    ("9:16", 9 / 16),
    ("21:9", 21 / 9),
    ("9:21", 9 / 21),
    ("4:3", 4 / 3),
    ("3:4", 3 / 4),
    ("3:2", 3 / 2),
    ("2:3", 2 / 3),
)


def aspect_ratio(width: Optional[int], height: Optional[int]) -> float:
    w = int(width or 1024)
    h = int(height or 1024)
    return w / h if h else 1.0


def is_near_square(width: int, height: int, tolerance: float = 0.05) -> bool:
    return abs(aspect_ratio(width, height) - 1.0) <= tolerance


def ratio_label(
    width: Optional[int],
    height: Optional[int],
    *,
    ratios: Sequence[Tuple[str, float]] = COMMON_RATIOS,
    tolerance: float = 0.1,
) -> str:
    """
    First label within `tolerance` of the requested ratio; otherwise
    16:9 for wide, 9:16 for tall and 1:1 in between.
    """
    r = aspect_ratio(width, height)
    for label, value in ratios:
        if abs(r - value) < tolerance:
            return label
    if r > 1.5:
        return "16:9"
    if r < 0.7:
        return "9:16"
    return "1:1"


def closest_label(width: Optional[int], height: Optional[int], ratios: Sequence[Tuple[str, float]]) -> str:
    if not width or not height:
        return ratios[0][0]
    r = aspect_ratio(width, height)
    return min(ratios, key=lambda item: abs(r - item[1]))[0]


def clamped_ratio_label(width: int, height: int, *, lo: float = 3 / 7, hi: float = 7 / 3) -> str:
    """Exact reduced ratio, clamped to the [3:7, 7:3] range."""
    known = ratio_label(width, height, ratios=COMMON_RATIOS, tolerance=0.05)
    r = aspect_ratio(width, height)
    if abs(r - dict(COMMON_RATIOS)[known]) < 0.05:
        return known
    if r < lo:
        return "3:7"
    if r > hi:
        return "7:3"
    d = gcd(int(width), int(height)) or 1
    return f"{int(width) // d}:{int(height) // d}"
