"""Color conversions between user-facing color spaces and the bridge's native scale.

User-facing spaces: RGB (0-255), HSV (degrees, percent, percent), CMYK (percent),
XYZ (0-100 scale) and HEX. The bridge speaks hue 0-65535, sat/bri 0-254 and CIE xy.
"""

from __future__ import annotations

import colorsys
import math
from typing import Sequence


HUE_MAX = 65535
SAT_MAX = 254
BRI_MAX = 254

COLOR_FIELDS = ("_rgb", "_hsv", "_cmyk", "_xyz", "_hex")

RGB = tuple[int, int, int]
HSV = tuple[float, float, float]


class ColorError(ValueError):
    pass


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# Bridge scale <-> human readable scale.

def hue_to_degrees(hue: float) -> int:
    return round_half_up(hue / HUE_MAX * 360)


def degrees_to_hue(degrees: float) -> int:
    return int(clamp(round_half_up(degrees / 360 * HUE_MAX), 0, HUE_MAX))


def bri_to_level(bri: float) -> int:
    if bri <= 0:
        return 0
    return int(clamp(round_half_up(bri / 2.54), 0, 100))


def level_to_bri(level: float) -> int:
    return int(clamp(round_half_up(level * 2.54), 0, BRI_MAX))


def bridge_to_hsv(hue: float, sat: float, bri: float) -> HSV:
    """Bridge hue/sat/bri to HSV (degrees, percent, percent), unrounded."""
    return (
        clamp(hue, 0, HUE_MAX) / HUE_MAX * 360,
        clamp(sat, 0, SAT_MAX) / 2.54,
        clamp(bri, 0, BRI_MAX) / 2.54,
    )


def hsv_to_bridge(h: float, s: float, v: float) -> tuple[int, int, int]:
    return (
        degrees_to_hue(h),
        int(clamp(round_half_up(s * 2.54), 0, SAT_MAX)),
        int(clamp(round_half_up(v * 2.54), 0, BRI_MAX)),
    )


# Color spaces.

def hsv_to_rgb(h: float, s: float, v: float) -> RGB:
    r, g, b = colorsys.hsv_to_rgb((h % 360) / 360, clamp(s, 0, 100) / 100, clamp(v, 0, 100) / 100)
    return (round_half_up(r * 255), round_half_up(g * 255), round_half_up(b * 255))


def rgb_to_hsv(r: float, g: float, b: float) -> HSV:
    h, s, v = colorsys.rgb_to_hsv(*(clamp(c, 0, 255) / 255 for c in (r, g, b)))
    return (round_half_up(h * 360) % 360, round_half_up(s * 100), round_half_up(v * 100))


def rgb_to_cmyk(r: float, g: float, b: float) -> tuple[int, int, int, int]:
    r, g, b = (clamp(c, 0, 255) / 255 for c in (r, g, b))
    k = min(1 - r, 1 - g, 1 - b)
    if k >= 1:
        return (0, 0, 0, 100)
    c = (1 - r - k) / (1 - k)
    m = (1 - g - k) / (1 - k)
    y = (1 - b - k) / (1 - k)
    return (round_half_up(c * 100), round_half_up(m * 100), round_half_up(y * 100), round_half_up(k * 100))


def cmyk_to_rgb(c: float, m: float, y: float, k: float) -> RGB:
    c, m, y, k = (clamp(v, 0, 100) / 100 for v in (c, m, y, k))
    return (
        round_half_up(255 * (1 - min(1, c * (1 - k) + k))),
        round_half_up(255 * (1 - min(1, m * (1 - k) + k))),
        round_half_up(255 * (1 - min(1, y * (1 - k) + k))),
    )


def _linearize(channel: float) -> float:
    channel = clamp(channel, 0, 255) / 255
    if channel > 0.04045:
        return ((channel + 0.055) / 1.055) ** 2.4
    return channel / 12.92


def _compand(channel: float) -> float:
    if channel > 0.0031308:
        channel = 1.055 * channel ** (1 / 2.4) - 0.055
    else:
        channel = channel * 12.92
    return clamp(channel, 0, 1)


def rgb_to_xyz(r: float, g: float, b: float) -> tuple[int, int, int]:
    r, g, b = _linearize(r), _linearize(g), _linearize(b)
    x = r * 0.4124 + g * 0.3576 + b * 0.1805
    y = r * 0.2126 + g * 0.7152 + b * 0.0722
    z = r * 0.0193 + g * 0.1192 + b * 0.9505
    return (round_half_up(x * 100), round_half_up(y * 100), round_half_up(z * 100))


def xyz_to_rgb(x: float, y: float, z: float) -> RGB:
    x, y, z = x / 100, y / 100, z / 100
    r = x * 3.2406 + y * -1.5372 + z * -0.4986
    g = x * -0.9689 + y * 1.8758 + z * 0.0415
    b = x * 0.0557 + y * -0.2040 + z * 1.0570
    return (round_half_up(_compand(r) * 255), round_half_up(_compand(g) * 255), round_half_up(_compand(b) * 255))


def rgb_to_hex(r: float, g: float, b: float) -> str:
    return "%02X%02X%02X" % tuple(int(clamp(round_half_up(c), 0, 255)) for c in (r, g, b))


def hex_to_rgb(value: str) -> RGB:
    value = value.strip().lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    if len(value) != 6:
        raise ColorError(f"Invalid HEX color: {value!r}")
    try:
        return (int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))
    except ValueError as exc:
        raise ColorError(f"Invalid HEX color: {value!r}") from exc


def rgb_to_xy(r: float, g: float, b: float) -> list[float]:
    """RGB to CIE xy using the bridge's wide gamut conversion."""
    r, g, b = _linearize(r), _linearize(g), _linearize(b)
    x = r * 0.649926 + g * 0.103455 + b * 0.197109
    y = r * 0.234327 + g * 0.743075 + b * 0.022598
    z = g * 0.053077 + b * 1.035763
    total = x + y + z
    if not total:
        return [0.0, 0.0]
    return [round(x / total, 4), round(y / total, 4)]


# Parsing of user input.

def parse_components(value: str | Sequence[float], count: int) -> tuple[float, ...]:
    if isinstance(value, str):
        parts = [part.strip() for part in value.strip().strip("[]").split(",")]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise ColorError(f"Invalid color value {value!r}")
    if len(parts) != count:
        raise ColorError(f"Expected {count} comma-separated values, got {value!r}")
    try:
        return tuple(float(part) for part in parts)
    except (TypeError, ValueError) as exc:
        raise ColorError(f"Invalid color value {value!r}") from exc


def parse_color(field: str, value: str) -> tuple[RGB | None, HSV]:
    """Parse a color-space field (``_rgb``, ``_hsv``, ...) into RGB and HSV."""
    if field == "_hsv":
        h, s, v = parse_components(value, 3)
        return None, (h, s, v)
    if field == "_rgb":
        rgb = parse_components(value, 3)
    elif field == "_cmyk":
        rgb = cmyk_to_rgb(*parse_components(value, 4))
    elif field == "_xyz":
        rgb = xyz_to_rgb(*parse_components(value, 3))
    elif field == "_hex":
        rgb = hex_to_rgb(str(value))
    else:
        raise ColorError(f"Unknown color space {field!r}")
    rgb = tuple(int(clamp(round_half_up(c), 0, 255)) for c in rgb)
    return rgb, rgb_to_hsv(*rgb)


def color_spaces(hue_degrees: int, sat_percent: int, level: int) -> dict[str, str]:
    """Display strings for every color space, derived from HSV."""
    rgb = hsv_to_rgb(hue_degrees, sat_percent, level)
    return {
        "_hsv": f"{hue_degrees},{sat_percent},{level}",
        "_rgb": ",".join(str(c) for c in rgb),
        "_cmyk": ",".join(str(c) for c in rgb_to_cmyk(*rgb)),
        "_xyz": ",".join(str(c) for c in rgb_to_xyz(*rgb)),
        "_hex": rgb_to_hex(*rgb),
    }
