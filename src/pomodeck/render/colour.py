"""Colour helpers: hex parsing, greyscale, and the HSL hue shift behind ripen mode.

All pixel functions take and return ``uint8`` arrays whose last axis is RGB,
and are vectorised over any leading shape.
"""

from __future__ import annotations

import numpy as np

from pomodeck.core.errors import ConfigError

Rgb = tuple[int, int, int]

GREEN_HUE = 120.0


def parse_colour(value: str) -> Rgb:
    """Parse ``#rrggbb``, ``rrggbb``, ``#rgb`` or ``rgb`` into an RGB tuple."""
    text = str(value).strip()
    digits = text[1:] if text.startswith("#") else text
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    if len(digits) != 6:
        raise ConfigError(f"invalid colour {value!r}, expected '#rrggbb' or '#rgb'")
    try:
        return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
    except ValueError:
        raise ConfigError(f"invalid colour {value!r}, expected '#rrggbb' or '#rgb'") from None


def to_greyscale(pixels: np.ndarray) -> np.ndarray:
    """Rec.601 luma, computed in integers so output is exact and repeatable."""
    p = pixels.astype(np.uint32)
    luma = (299 * p[..., 0] + 587 * p[..., 1] + 114 * p[..., 2] + 500) // 1000
    return np.repeat(luma[..., np.newaxis], 3, axis=-1).astype(np.uint8)


def rgb_to_hsl(pixels: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return ``(hue in degrees, saturation, lightness)`` arrays."""
    rgb = pixels.astype(np.float64) / 255.0
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    maxc = rgb.max(axis=-1)
    minc = rgb.min(axis=-1)
    delta = maxc - minc
    lightness = (maxc + minc) / 2.0
    chromatic = delta > 0.0

    denom = np.where(lightness > 0.5, 2.0 - maxc - minc, maxc + minc)
    saturation = np.zeros_like(lightness)
    np.divide(delta, denom, out=saturation, where=chromatic)

    safe_delta = np.where(chromatic, delta, 1.0)
    hue_r = np.mod((g - b) / safe_delta, 6.0)
    hue_g = (b - r) / safe_delta + 2.0
    hue_b = (r - g) / safe_delta + 4.0
    hue = np.select([maxc == r, maxc == g], [hue_r, hue_g], default=hue_b) * 60.0
    hue = np.where(chromatic, hue, 0.0)
    return hue, saturation, lightness


def hsl_to_rgb(hue: np.ndarray, saturation: np.ndarray, lightness: np.ndarray) -> np.ndarray:
    """Inverse of :func:`rgb_to_hsl`, rounded to the nearest ``uint8``."""
    chroma = (1.0 - np.abs(2.0 * lightness - 1.0)) * saturation
    h_prime = np.mod(hue, 360.0) / 60.0
    x = chroma * (1.0 - np.abs(np.mod(h_prime, 2.0) - 1.0))
    m = lightness - chroma / 2.0
    sector = np.floor(h_prime).astype(np.int64) % 6
    zero = np.zeros_like(chroma)

    r1 = np.choose(sector, [chroma, x, zero, zero, x, chroma])
    g1 = np.choose(sector, [x, chroma, chroma, x, zero, zero])
    b1 = np.choose(sector, [zero, zero, x, chroma, chroma, x])
    rgb = np.stack([r1 + m, g1 + m, b1 + m], axis=-1)
    return np.clip(np.floor(rgb * 255.0 + 0.5), 0, 255).astype(np.uint8)


def hue_offset_towards_green(hue: np.ndarray) -> np.ndarray:
    """Signed shortest arc, in degrees, from *hue* to green."""
    arc = GREEN_HUE - hue
    return arc - 360.0 * np.floor(arc / 360.0 + 0.5)


def shift_hue_towards_green(pixels: np.ndarray, factor: float) -> np.ndarray:
    """Rotate each pixel's hue *factor* of the way towards green.

    ``factor`` 0 leaves the pixels untouched, 1 moves every chromatic pixel
    all the way to green.  Saturation and lightness are preserved.
    """
    if factor == 0.0:
        return pixels.copy()
    hue, saturation, lightness = rgb_to_hsl(pixels)
    return hsl_to_rgb(hue + hue_offset_towards_green(hue) * factor, saturation, lightness)
