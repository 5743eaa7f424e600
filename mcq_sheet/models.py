"""
Data Models
===========
Pydantic models shared by the extraction and layout pipeline.

Blocks are frozen once produced; Questions are frozen once the segmenter
finalizes them. Layout models are ephemeral and only feed the emitter.
"""

from __future__ import annotations

import hashlib
from functools import cached_property
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


OPTION_LETTERS: tuple[str, ...] = ("A", "B", "C", "D")


# ─── Enums ────────────────────────────────────────────────────────────────────


class BlockType(str, Enum):
    """Type of normalized content block."""
    TEXT = "text"
    IMAGE = "image"


class Target(str, Enum):
    """Field of a question that content or an image attaches to."""
    QUESTION = "question"
    OPTION_A = "optionA"
    OPTION_B = "optionB"
    OPTION_C = "optionC"
    OPTION_D = "optionD"

    @classmethod
    def for_letter(cls, letter: Optional[str]) -> "Target":
        if not letter:
            return cls.QUESTION
        return cls(f"option{letter.upper()}")

    @property
    def letter(self) -> Optional[str]:
        if self is Target.QUESTION:
            return None
        return self.value[-1]


class OptionlessPolicy(str, Enum):
    """What to do with a question that has no options at all."""
    KEEP = "keep"
    DISCARD = "discard"
    KEEP_WITH_IMAGES = "keep_with_images"


class AnomalyType(str, Enum):
    """Structural issues flagged by the validator."""
    MISSING_QUESTION_TEXT = "missing_question_text"
    MISSING_OPTIONS = "missing_options"
    INCOMPLETE_OPTIONS = "incomplete_options"
    DUPLICATE_QUESTION_NUMBER = "duplicate_question_number"
    ORPHAN_IMAGE = "orphan_image"
    UNDECODABLE_IMAGE = "undecodable_image"


# ─── Block Models ─────────────────────────────────────────────────────────────


class Position(BaseModel):
    """Reading-order anchor of page-sourced content (y grows upwards)."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class ImageRef(BaseModel):
    """
    Opaque handle to an embedded image.

    `width`/`height` are the dimensions declared by the source document, when
    it declares any. The layout engine always probes the bytes itself.
    """
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    content_type: str = "image/png"
    width: Optional[int] = None
    height: Optional[int] = None

    @computed_field
    @cached_property
    def digest(self) -> str:
        """Content identity used for de-duplication."""
        return hashlib.sha256(self.data).hexdigest()


class Block(BaseModel):
    """
    One unit of normalized content in canonical reading order.

    `group_index` identifies the paragraph (markup) or line (page stream) the
    block was cut from; consecutive blocks with the same group are fragments
    of one line.
    """
    model_config = ConfigDict(frozen=True)

    type: BlockType
    sequence_index: int = Field(ge=0)
    group_index: int = Field(default=0, ge=0)
    text: Optional[str] = None
    image: Optional[ImageRef] = None
    position: Optional[Position] = None
    page_number: Optional[int] = None

    @classmethod
    def text_block(cls, text: str, sequence_index: int, group_index: int = 0,
                   **kwargs) -> "Block":
        return cls(type=BlockType.TEXT, text=text,
                   sequence_index=sequence_index, group_index=group_index,
                   **kwargs)

    @classmethod
    def image_block(cls, image: ImageRef, sequence_index: int,
                    group_index: int = 0, **kwargs) -> "Block":
        return cls(type=BlockType.IMAGE, image=image,
                   sequence_index=sequence_index, group_index=group_index,
                   **kwargs)

    @model_validator(mode="after")
    def _check_payload(self) -> "Block":
        if self.type == BlockType.TEXT and self.text is None:
            raise ValueError("text block requires text")
        if self.type == BlockType.IMAGE and self.image is None:
            raise ValueError("image block requires an image")
        return self


# ─── Question Model ──────────────────────────────────────────────────────────


class QuestionImage(BaseModel):
    """An image and the question field it belongs to."""
    model_config = ConfigDict(frozen=True)

    image: ImageRef
    target: Target


class Question(BaseModel):
    """A finalized multiple-choice question."""
    model_config = ConfigDict(frozen=True)

    number: Optional[int] = None
    text: tuple[str, ...] = ()
    options: dict[str, str] = Field(default_factory=dict)
    images: tuple[QuestionImage, ...] = ()

    @property
    def question_text(self) -> str:
        return "\n".join(self.text)

    @property
    def has_text(self) -> bool:
        return any(line.strip() for line in self.text)

    @property
    def is_empty(self) -> bool:
        return not self.has_text and not self.options and not self.images

    def option_text(self, letter: str) -> str:
        return self.options.get(letter, "")

    def images_for(self, target: Target) -> list[ImageRef]:
        return [qi.image for qi in self.images if qi.target == target]

    def without_images(self, digests: set[str]) -> "Question":
        """Copy of this question minus the images with the given digests."""
        kept = tuple(qi for qi in self.images if qi.image.digest not in digests)
        if len(kept) == len(self.images):
            return self
        return self.model_copy(update={"images": kept})

    def summary(self) -> dict:
        """JSON-friendly view with image digests in place of bytes."""
        return {
            "number": self.number,
            "text": self.question_text,
            "options": {k: self.options[k] for k in sorted(self.options)},
            "images": [
                {"digest": qi.image.digest, "target": qi.target.value}
                for qi in self.images
            ],
        }


# ─── Layout Models ────────────────────────────────────────────────────────────


class ImagePlacement(BaseModel):
    """Pixel geometry of one image inside its cell."""
    image: ImageRef
    top_offset: float
    left_offset: float
    width: float
    height: float

    @property
    def bottom(self) -> float:
        return self.top_offset + self.height


class LayoutCell(BaseModel):
    """Per (question, column) computation unit."""
    column: int
    text: str = ""
    images: list[ImageRef] = Field(default_factory=list)
    text_height: float = 0.0
    placements: list[ImagePlacement] = Field(default_factory=list)
    skipped_images: list[str] = Field(default_factory=list)

    @property
    def content_height(self) -> float:
        """Height in pixels of text plus the stacked images below it."""
        if not self.placements:
            return self.text_height
        return max(p.bottom for p in self.placements)


class RowLayout(BaseModel):
    """Computed geometry for one spreadsheet data row."""
    row_index: int
    cells: list[LayoutCell]
    height_points: float

    @property
    def placements(self) -> list[tuple[int, ImagePlacement]]:
        return [(c.column, p) for c in self.cells for p in c.placements]

    @property
    def skipped_images(self) -> list[str]:
        return [d for c in self.cells for d in c.skipped_images]


class SheetLayout(BaseModel):
    """All data rows of the output sheet."""
    rows: list[RowLayout] = Field(default_factory=list)

    @property
    def skipped_images(self) -> list[str]:
        return [d for r in self.rows for c in r.cells for d in c.skipped_images]


# ─── Report Models ────────────────────────────────────────────────────────────


class Anomaly(BaseModel):
    """A structural issue detected on one question."""
    type: AnomalyType
    question_index: Optional[int] = None
    message: str
    context: Optional[dict] = None


class ExtractionReport(BaseModel):
    """Post-extraction validation report."""
    total_questions: int = 0
    complete_questions: int = 0
    missing_question_numbers: list[int] = Field(default_factory=list)
    duplicate_question_numbers: list[int] = Field(default_factory=list)
    questions_missing_text: list[int] = Field(default_factory=list)
    questions_with_incomplete_options: list[int] = Field(default_factory=list)
    orphan_images: int = 0
    skipped_images: list[str] = Field(default_factory=list)
    images_by_target: dict[str, int] = Field(default_factory=dict)
    anomalies: list[Anomaly] = Field(default_factory=list)

    @computed_field
    @property
    def anomaly_breakdown(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for anomaly in self.anomalies:
            counts[anomaly.type.value] = counts.get(anomaly.type.value, 0) + 1
        return counts

    @computed_field
    @property
    def completeness_rate(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return round(self.complete_questions / self.total_questions * 100, 2)


class ConversionResult(BaseModel):
    """Top-level outcome of converting one document."""
    source: str
    source_format: str
    block_count: int = 0
    questions: list[Question] = Field(default_factory=list)
    report: ExtractionReport = Field(default_factory=ExtractionReport)
    output_path: Optional[str] = None

    def summary(self) -> dict:
        return {
            "source": self.source,
            "source_format": self.source_format,
            "block_count": self.block_count,
            "output_path": self.output_path,
            "questions": [q.summary() for q in self.questions],
            "report": self.report.model_dump(mode="json"),
        }
