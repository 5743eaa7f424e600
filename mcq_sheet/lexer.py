"""
Marker Lexer
============
Classifies text blocks into tagged tokens for the segmenter:

    QuestionStart(number, remainder)   "1. What is...", "Q2) ...", "Question 3."
    OptionMarker(letter, text)         "(A) Paris", "(b) Lyon"
    PlainText(text)                    anything else

A single line may hold several option markers ("(A) Red (B) Blue"); it is
split at every marker, with any text before the first marker kept as a
leading PlainText token.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

# Optional "Q"/"Question", digits, "." or ")" terminator; "2.5" is not a start
QUESTION_PATTERN = re.compile(
    r"^\s*(?:Question|Q)?\s*(\d+)[.)](?!\d)\s*", re.IGNORECASE
)

# Same marker without the decimal guard: "2.5 kg" starts question 2
LENIENT_QUESTION_PATTERN = re.compile(
    r"^\s*(?:Question|Q)?\s*(\d+)[.)]\s*", re.IGNORECASE
)

# "(A)".."(D)" in either case
OPTION_MARKER_PATTERN = re.compile(r"\(([A-D])\)", re.IGNORECASE)

# One marker and everything up to the next marker (or end of line)
OPTION_FRAGMENT_PATTERN = re.compile(
    r"\(([A-D])\)\s*(.*?)\s*(?=\([A-D]\)|$)", re.IGNORECASE | re.DOTALL
)


@dataclass(frozen=True)
class QuestionStart:
    number: int
    remainder: str


@dataclass(frozen=True)
class OptionMarker:
    letter: str
    text: str


@dataclass(frozen=True)
class PlainText:
    text: str


Token = Union[QuestionStart, OptionMarker, PlainText]


def match_question_start(
    text: str, allow_decimals: bool = False
) -> Optional[QuestionStart]:
    pattern = LENIENT_QUESTION_PATTERN if allow_decimals else QUESTION_PATTERN
    match = pattern.match(text)
    if not match:
        return None
    return QuestionStart(
        number=int(match.group(1)),
        remainder=text[match.end():].strip(),
    )


def split_options(text: str) -> list[Token]:
    """
    Split a line at every option marker.

    Returns a leading PlainText for content before the first marker (if
    any), then one OptionMarker per marker with its trailing text stripped
    of the marker itself. Letters are upper-cased.
    """
    first = OPTION_MARKER_PATTERN.search(text)
    if first is None:
        stripped = text.strip()
        return [PlainText(stripped)] if stripped else []

    tokens: list[Token] = []
    prefix = text[:first.start()].strip()
    if prefix:
        tokens.append(PlainText(prefix))

    for match in OPTION_FRAGMENT_PATTERN.finditer(text, first.start()):
        tokens.append(OptionMarker(
            letter=match.group(1).upper(),
            text=match.group(2).strip(),
        ))
    return tokens


def tokenize(
    text: str, at_line_start: bool = True, allow_decimals: bool = False
) -> list[Token]:
    """
    Classify one text block.

    A question start is only recognized at the start of a line; the rest of
    that line belongs to the question body as a single QuestionStart token.
    With `allow_decimals`, a line such as "2.5 kg" also starts question 2.
    """
    if at_line_start:
        start = match_question_start(text, allow_decimals)
        if start is not None:
            return [start]
    return split_options(text)
