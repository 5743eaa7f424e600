"""
Layout Engine
=============
Computes spreadsheet row geometry so that cell text and embedded images
never overlap.

Per question:
    1. Probe native image sizes (sequentially, in association order)
    2. Simulate greedy word-wrap per cell → text height
    3. Stack images below the text, centered, separated by a margin
    4. Row height = max(default minimum, tallest cell)

Probing different questions runs in a thread pool; the computed rows are
returned in question order and written by a single emitter afterwards.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Union

from .errors import ImageDecodeFailure
from .images import PillowImageProbe
from .metrics import POINTS_TO_PIXELS, AverageCharMetrics, FontSpec, TextMetrics
from .models import (
    ImagePlacement,
    ImageRef,
    LayoutCell,
    Question,
    RowLayout,
    SheetLayout,
    Target,
)

logger = logging.getLogger(__name__)

ProbeResult = Union[tuple[int, int], ImageDecodeFailure]


# ─── Column Model ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ColumnSpec:
    """One fixed output column; `field` is None for the serial number."""
    header: str
    key: str
    width_chars: float
    field: Optional[Target] = None


COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec("Sr. No", "sr", 5.43),
    ColumnSpec("Question content", "question", 110.57, Target.QUESTION),
    ColumnSpec("Alternative1", "alt1", 35.71, Target.OPTION_A),
    ColumnSpec("Alternative2", "alt2", 35.71, Target.OPTION_B),
    ColumnSpec("Alternative3", "alt3", 35.71, Target.OPTION_C),
    ColumnSpec("Alternative4", "alt4", 35.71, Target.OPTION_D),
)


@dataclass
class LayoutConfig:
    """Geometry constants. Heights of rows are in points, the rest in pixels."""
    char_width_px: float = 7.5
    default_row_height: float = 21.75
    header_row_height: float = 43.5
    image_margin: float = 15.0
    line_height: Optional[float] = None
    question_image_width: float = 200.0
    option_image_width: float = 120.0
    font: FontSpec = field(default_factory=FontSpec)
    header_font: FontSpec = field(
        default_factory=lambda: FontSpec(size=12.0, bold=True)
    )
    workers: int = 4

    def column_width_px(self, column: ColumnSpec) -> float:
        return column.width_chars * self.char_width_px

    def image_width_for(self, target: Target) -> float:
        if target is Target.QUESTION:
            return self.question_image_width
        return self.option_image_width


# ─── Geometry Helpers ─────────────────────────────────────────────────────────


def count_wrapped_lines(
    text: str,
    available_width: float,
    metrics: TextMetrics,
    font: FontSpec,
) -> int:
    """
    Greedy word-wrap: a word joins the current line unless the line would
    exceed `available_width`, in which case it starts a new line. Explicit
    newlines always start a new line. A single over-long word occupies one
    line on its own.
    """
    if not text:
        return 0

    count = 0
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split(" "):
            if not word:
                continue
            candidate = f"{current} {word}" if current else word
            if current and metrics.measure(candidate, font) > available_width:
                count += 1
                current = word
            else:
                current = candidate
        count += 1
    return count


def scale_to_width(
    native_width: int, native_height: int, target_width: float
) -> tuple[float, float]:
    """Scale to `target_width` keeping the aspect ratio."""
    return target_width, native_height / native_width * target_width


def stack_images(
    images: list[tuple[ImageRef, float, float]],
    text_height: float,
    column_width: float,
    margin: float,
) -> list[ImagePlacement]:
    """
    Place pre-scaled `(image, width, height)` below the text, top to bottom.

    The first image starts one margin below the text; each next one a margin
    below the previous image. Each image is centered in the column.
    """
    placements: list[ImagePlacement] = []
    top = text_height + margin
    for image, width, height in images:
        placements.append(ImagePlacement(
            image=image,
            top_offset=top,
            left_offset=max(0.0, (column_width - width) / 2),
            width=width,
            height=height,
        ))
        top += height + margin
    return placements


def row_height_points(cells: list[LayoutCell], default_row_height: float) -> float:
    tallest_px = max((c.content_height for c in cells), default=0.0)
    return max(default_row_height, tallest_px / POINTS_TO_PIXELS)


# ─── Engine ───────────────────────────────────────────────────────────────────


class LayoutEngine:
    """
    Computes per-row heights and per-image placements.

    Args:
        config: Geometry constants.
        metrics: Text measurement capability.
        probe: Image dimension capability (`dimensions(ImageRef) -> (w, h)`).
    """

    def __init__(
        self,
        config: Optional[LayoutConfig] = None,
        metrics: Optional[TextMetrics] = None,
        probe: Optional[PillowImageProbe] = None,
    ):
        self.config = config or LayoutConfig()
        self.metrics = metrics or AverageCharMetrics()
        self.probe = probe or PillowImageProbe()

    @property
    def line_height(self) -> float:
        if self.config.line_height is not None:
            return self.config.line_height
        return self.metrics.line_height(self.config.font)

    def layout(self, questions: list[Question]) -> SheetLayout:
        """Lay out every question as one data row (rows start at 2)."""
        workers = max(1, self.config.workers)
        if workers == 1 or len(questions) < 2:
            probed = [self.probe_question(q) for q in questions]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                probed = list(pool.map(self.probe_question, questions))

        rows = [
            self.layout_question(q, index, dims)
            for index, (q, dims) in enumerate(zip(questions, probed))
        ]
        sheet = SheetLayout(rows=rows)

        skipped = sheet.skipped_images
        logger.info(
            f"Laid out {len(rows)} rows, "
            f"{sum(len(r.placements) for r in rows)} images placed, "
            f"{len(skipped)} skipped"
        )
        return sheet

    def probe_question(self, question: Question) -> dict[str, ProbeResult]:
        """Probe a question's images one after another, in association order."""
        results: dict[str, ProbeResult] = {}
        for qi in question.images:
            digest = qi.image.digest
            if digest in results:
                continue
            try:
                results[digest] = self.probe.dimensions(qi.image)
            except ImageDecodeFailure as e:
                logger.warning(f"Skipping image in question {question.number}: {e}")
                results[digest] = e
        return results

    def layout_question(
        self,
        question: Question,
        index: int,
        dimensions: Optional[dict[str, ProbeResult]] = None,
    ) -> RowLayout:
        """Compute the row for `question`, the `index`-th data row (0-based)."""
        if dimensions is None:
            dimensions = self.probe_question(question)

        cells = [
            self.layout_cell(column, col_idx, question, index, dimensions)
            for col_idx, column in enumerate(COLUMNS)
        ]
        return RowLayout(
            row_index=index,
            cells=cells,
            height_points=row_height_points(cells, self.config.default_row_height),
        )

    def layout_cell(
        self,
        column: ColumnSpec,
        col_idx: int,
        question: Question,
        index: int,
        dimensions: dict[str, ProbeResult],
    ) -> LayoutCell:
        cfg = self.config
        column_width = cfg.column_width_px(column)

        if column.field is None:
            return LayoutCell(
                column=col_idx,
                text=str(index + 1),
                text_height=self.text_height(str(index + 1), column_width),
            )

        if column.field is Target.QUESTION:
            text = question.question_text
        else:
            text = question.option_text(column.field.letter)
        images = question.images_for(column.field)

        cell = LayoutCell(
            column=col_idx,
            text=text,
            images=images,
            text_height=self.text_height(text, column_width),
        )

        target_width = min(cfg.image_width_for(column.field), column_width)
        scaled: list[tuple[ImageRef, float, float]] = []
        for image in images:
            dims = dimensions.get(image.digest)
            if dims is None or isinstance(dims, ImageDecodeFailure):
                cell.skipped_images.append(image.digest)
                continue
            width, height = scale_to_width(dims[0], dims[1], target_width)
            scaled.append((image, width, height))

        cell.placements = stack_images(
            scaled, cell.text_height, column_width, cfg.image_margin
        )
        return cell

    def text_height(self, text: str, column_width: float) -> float:
        lines = count_wrapped_lines(text, column_width, self.metrics, self.config.font)
        return lines * self.line_height
