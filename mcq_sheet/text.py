"""
Text Normalization
==================
Whitespace collapsing, control-character stripping and glyph substitution
applied to every text block before segmentation.
"""

from __future__ import annotations

import re

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

_WHITESPACE_RE = re.compile(r"\s+")
_DEGREE_PLACEHOLDER_RE = re.compile(r"\[deg\]", re.IGNORECASE)

SUPERSCRIPTS = str.maketrans({
    "0": "⁰", "1": "¹", "2": "²", "3": "³", "4": "⁴",
    "5": "⁵", "6": "⁶", "7": "⁷", "8": "⁸", "9": "⁹",
    "+": "⁺", "-": "⁻", "−": "⁻", "=": "⁼", "(": "⁽", ")": "⁾",
    "n": "ⁿ", "i": "ⁱ",
})

SUBSCRIPTS = str.maketrans({
    "0": "₀", "1": "₁", "2": "₂", "3": "₃", "4": "₄",
    "5": "₅", "6": "₆", "7": "₇", "8": "₈", "9": "₉",
    "+": "₊", "-": "₋", "−": "₋", "=": "₌", "(": "₍", ")": "₎",
})

# Superscript runs that stand in for a degree sign ("30<sup>o</sup>C")
DEGREE_MARKS = {"o", "O", "º"}


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace (incl. NBSP) to one space and strip."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def superscript(text: str) -> str:
    """
    Render a superscript run with Unicode glyphs.

    A lone `o`/`O`/`º` is read as a degree sign. Runs with any character
    lacking a superscript form ("nd", "th") are kept as plain text.
    """
    stripped = text.strip()
    if stripped in DEGREE_MARKS:
        return "°"
    if not all(ord(c) in SUPERSCRIPTS for c in stripped):
        return text
    return text.translate(SUPERSCRIPTS)


def subscript(text: str) -> str:
    return text.translate(SUBSCRIPTS)


def substitute_placeholders(text: str) -> str:
    return _DEGREE_PLACEHOLDER_RE.sub("°", text)


def strip_control_characters(text: str) -> str:
    """Drop C0 control characters that spreadsheet cells cannot hold."""
    return ILLEGAL_CHARACTERS_RE.sub("", text)


def normalize_text(text: str) -> str:
    """Full normalization for a text run that has already been flattened."""
    # Whitespace first: vertical tab and form feed are also illegal in cells
    text = collapse_whitespace(substitute_placeholders(text))
    return collapse_whitespace(strip_control_characters(text))
