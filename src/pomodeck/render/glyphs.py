"""A tiny bitmap font for the countdown, phase letters and button labels.

Proper font rendering belongs to the host; this covers the handful of
characters a button face needs and keeps output byte-for-byte stable.
Lowercase letters are drawn as uppercase.
"""

from __future__ import annotations

from typing import Protocol

import numpy as np

from pomodeck.render.colour import Rgb

GLYPH_HEIGHT = 5
_SPACING = 1

_GLYPHS: dict[str, tuple[str, ...]] = {
    "0": ("111", "101", "101", "101", "111"),
    "1": ("010", "110", "010", "010", "111"),
    "2": ("111", "001", "111", "100", "111"),
    "3": ("111", "001", "111", "001", "111"),
    "4": ("101", "101", "111", "001", "001"),
    "5": ("111", "100", "111", "001", "111"),
    "6": ("111", "100", "111", "101", "111"),
    "7": ("111", "001", "010", "010", "010"),
    "8": ("111", "101", "111", "101", "111"),
    "9": ("111", "101", "111", "001", "111"),
    ":": ("0", "1", "0", "1", "0"),
    ".": ("0", "0", "0", "0", "1"),
    "|": ("1", "1", "1", "1", "1"),
    "-": ("000", "000", "111", "000", "000"),
    " ": ("000", "000", "000", "000", "000"),
    "A": ("010", "101", "111", "101", "101"),
    "B": ("110", "101", "110", "101", "110"),
    "C": ("011", "100", "100", "100", "011"),
    "D": ("110", "101", "101", "101", "110"),
    "E": ("111", "100", "110", "100", "111"),
    "F": ("111", "100", "110", "100", "100"),
    "G": ("011", "100", "101", "101", "011"),
    "H": ("101", "101", "111", "101", "101"),
    "I": ("111", "010", "010", "010", "111"),
    "J": ("001", "001", "001", "101", "010"),
    "K": ("101", "101", "110", "101", "101"),
    "L": ("100", "100", "100", "100", "111"),
    "M": ("101", "111", "111", "101", "101"),
    "N": ("110", "101", "101", "101", "101"),
    "O": ("010", "101", "101", "101", "010"),
    "P": ("110", "101", "110", "100", "100"),
    "Q": ("010", "101", "101", "110", "011"),
    "R": ("110", "101", "110", "101", "101"),
    "S": ("011", "100", "010", "001", "110"),
    "T": ("111", "010", "010", "010", "010"),
    "U": ("101", "101", "101", "101", "111"),
    "V": ("101", "101", "101", "101", "010"),
    "W": ("101", "101", "101", "111", "101"),
    "X": ("101", "101", "010", "101", "101"),
    "Y": ("101", "101", "010", "010", "010"),
    "Z": ("111", "001", "010", "100", "111"),
}


class TextPainter(Protocol):
    """Anything that can measure and draw a short string onto a frame."""

    def measure(self, text: str, scale: int) -> tuple[int, int]: ...

    def draw(self, frame: np.ndarray, text: str, x: int, y: int, scale: int, color: Rgb) -> None: ...


def _rows(char: str) -> tuple[str, ...]:
    # No glyph: leave a blank cell.
    return _GLYPHS.get(char.upper(), _GLYPHS[" "])


def _mask(char: str) -> np.ndarray:
    return np.array([[cell == "1" for cell in row] for row in _rows(char)], dtype=bool)


class BitmapFont:
    """Fixed 5-pixel-high bitmap font, scaled by whole pixels."""

    def measure(self, text: str, scale: int) -> tuple[int, int]:
        if not text:
            return 0, 0
        columns = sum(len(_rows(c)[0]) for c in text)
        columns += _SPACING * (len(text) - 1)
        return columns * scale, GLYPH_HEIGHT * scale

    def draw(self, frame: np.ndarray, text: str, x: int, y: int, scale: int, color: Rgb) -> None:
        height, width = frame.shape[:2]
        cursor = x
        for char in text:
            glyph = np.kron(_mask(char), np.ones((scale, scale), dtype=bool))
            gh, gw = glyph.shape
            # Clip against the frame edges.
            top, left = max(y, 0), max(cursor, 0)
            bottom, right = min(y + gh, height), min(cursor + gw, width)
            if bottom > top and right > left:
                window = glyph[top - y : bottom - y, left - cursor : right - cursor]
                frame[top:bottom, left:right][window] = color
            cursor += gw + _SPACING * scale
