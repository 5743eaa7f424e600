"""
Errors
======
Failure taxonomy of the conversion pipeline.

Only `ImageDecodeFailure` is recovered locally (the image is dropped);
every other error aborts the conversion.
"""

from __future__ import annotations

from typing import Optional


EXPECTED_FORMAT_HINT = (
    "Questions should be numbered (e.g., '1.') and options labeled "
    "(e.g., '(A)')."
)


class ConversionError(Exception):
    """Base class for all conversion failures."""


class UnsupportedInputFormat(ConversionError):
    """Input is neither a DOCX nor a PDF document."""

    def __init__(self, source: str, detail: Optional[str] = None):
        message = f"Unsupported input format: {source}. Expected a .docx or .pdf file"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.source = source


class ExtractionEmpty(ConversionError):
    """Segmentation produced zero questions."""

    def __init__(self, source: Optional[str] = None):
        where = f" in {source}" if source else ""
        super().__init__(
            f"No questions found{where}. Check document format. "
            f"{EXPECTED_FORMAT_HINT}"
        )
        self.source = source


class ImageDecodeFailure(ConversionError):
    """A single image could not be decoded or measured."""

    def __init__(self, digest: str, reason: str):
        super().__init__(f"Could not decode image {digest[:12]}: {reason}")
        self.digest = digest
        self.reason = reason


class EmissionFailure(ConversionError):
    """The spreadsheet could not be written."""
