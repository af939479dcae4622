"""
Color and rounding helpers.
"""

from __future__ import annotations

import math
from typing import Tuple, Union

from .errors import ConfigurationError


RGB = Tuple[int, int, int]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def parse_hex_color(value: str) -> RGB:
    """
    Parse a CSS-style hex color.

    Accepts ``#rrggbb``, ``rrggbb`` and the short ``#rgb`` form.

    Raises:
        ConfigurationError: If the string is not a valid hex color
    """
    text = value.strip().lstrip("#")

    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)

    if len(text) != 6:
        raise ConfigurationError(f"Invalid hex color: {value!r}")

    try:
        return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
    except ValueError as e:
        raise ConfigurationError(f"Invalid hex color: {value!r}") from e


def to_rgb(value: Union[str, RGB, list]) -> RGB:
    """Normalize a hex string or an RGB sequence into an (R, G, B) tuple."""
    if isinstance(value, str):
        return parse_hex_color(value)

    channels = tuple(int(c) for c in value)
    if len(channels) != 3 or any(c < 0 or c > 255 for c in channels):
        raise ConfigurationError(f"Invalid RGB color: {value!r}")

    return channels  # type: ignore[return-value]
