"""
Text Metrics
============
Text measurement capability used for word-wrap simulation.

Two implementations:
    - AverageCharMetrics: deterministic per-character approximation
    - PillowTextMetrics: real glyph advances from a TrueType font
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from PIL import ImageFont

logger = logging.getLogger(__name__)

POINTS_TO_PIXELS = 4 / 3


@dataclass(frozen=True)
class FontSpec:
    """Font a cell is rendered with."""
    name: str = "Calibri"
    size: float = 11.0  # points
    bold: bool = False

    @property
    def size_px(self) -> float:
        return self.size * POINTS_TO_PIXELS


class TextMetrics(Protocol):
    def measure(self, text: str, font: FontSpec) -> float:
        """Width of `text` in pixels."""

    def line_height(self, font: FontSpec) -> float:
        """Height of one wrapped line in pixels."""


class AverageCharMetrics:
    """
    Approximates widths as `len(text) * average glyph width`.

    The average glyph width of Calibri 11pt is ~7px; other sizes scale
    linearly. Bold adds 10%.
    """

    def __init__(self, char_width: float = 7.0, line_height_px: float = 20.0,
                 reference_size: float = 11.0):
        self.char_width = char_width
        self.line_height_px = line_height_px
        self.reference_size = reference_size

    def _scale(self, font: FontSpec) -> float:
        scale = font.size / self.reference_size
        return scale * 1.1 if font.bold else scale

    def measure(self, text: str, font: FontSpec) -> float:
        return len(text) * self.char_width * self._scale(font)

    def line_height(self, font: FontSpec) -> float:
        return self.line_height_px * font.size / self.reference_size


class PillowTextMetrics:
    """
    Measures text with a TrueType font through Pillow.

    Without `font_path`, Pillow's bundled default font is used at the
    requested size. Line height is ascent + descent plus `leading`.
    """

    def __init__(self, font_path: Optional[str] = None, leading: float = 1.2):
        self.font_path = font_path
        self.leading = leading
        self._fonts: dict[tuple[float, bool], ImageFont.FreeTypeFont] = {}

    def _font(self, font: FontSpec):
        key = (font.size_px, font.bold)
        if key not in self._fonts:
            size = max(1, round(font.size_px))
            if self.font_path:
                self._fonts[key] = ImageFont.truetype(self.font_path, size)
            else:
                self._fonts[key] = ImageFont.load_default(size=size)
            logger.debug(f"Loaded font {self.font_path or 'default'} at {size}px")
        return self._fonts[key]

    def measure(self, text: str, font: FontSpec) -> float:
        return float(self._font(font).getlength(text))

    def line_height(self, font: FontSpec) -> float:
        ascent, descent = self._font(font).getmetrics()
        return (ascent + descent) * self.leading
