"""
Converter Engine
================
Main orchestrator that combines block extraction, segmentation, validation,
layout and spreadsheet emission into one conversion pipeline.

Usage:
    engine = ConverterEngine(config)
    result = engine.convert("path/to/questions.docx")
    # result.output_path points at the written .xlsx

Architecture:
    DOCX/PDF → BlockExtractor → Blocks → StateMachineParser → Questions →
    LayoutEngine → SheetLayout → ValidationEngine → XlsxWriter (.xlsx)
"""

from __future__ import annotations

import io
import json
import logging
import os
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from . import __version__
from .block_extractor import MarkupBlockExtractor, PdfBlockExtractor
from .errors import ExtractionEmpty, UnsupportedInputFormat
from .layout import LayoutConfig, LayoutEngine
from .metrics import AverageCharMetrics, FontSpec, PillowTextMetrics, TextMetrics
from .models import Block, ConversionResult, OptionlessPolicy, Question
from .state_machine import StateMachineParser
from .validator import ValidationEngine
from .xlsx_writer import XlsxWriter

logger = logging.getLogger(__name__)

FORMAT_PDF = "pdf"
FORMAT_DOCX = "docx"
SUPPORTED_SUFFIXES = {".pdf": FORMAT_PDF, ".docx": FORMAT_DOCX}


@dataclass
class ConverterConfig:
    """Configuration for the converter engine."""

    # Output settings
    output_dir: str = "output"
    sheet_name: str = "Questions"
    save_snapshot: bool = True

    # Segmentation
    optionless_policy: OptionlessPolicy = OptionlessPolicy.KEEP
    allow_decimal_starts: bool = False

    # Extraction
    min_image_size: int = 8
    page_range: Optional[tuple[int, int]] = None

    # Layout
    font_path: Optional[str] = None
    font_size: float = 11.0
    layout_workers: int = 4
    layout: LayoutConfig = field(default_factory=LayoutConfig)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


def detect_format(data: bytes, source: str = "<bytes>") -> str:
    """
    Identify the document kind from its content.

    Raises:
        UnsupportedInputFormat: if the bytes are neither PDF nor DOCX.
    """
    if data[:1024].lstrip().startswith(b"%PDF"):
        return FORMAT_PDF

    if data[:4] == b"PK\x03\x04":
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                if "word/document.xml" in archive.namelist():
                    return FORMAT_DOCX
        except zipfile.BadZipFile as e:
            raise UnsupportedInputFormat(source, f"corrupt archive: {e}") from e
        raise UnsupportedInputFormat(source, "archive is not a Word document")

    raise UnsupportedInputFormat(source)


class ConverterEngine:
    """
    Main conversion engine.

    Orchestrates the full pipeline:
        1. Format detection and block extraction (text + images)
        2. State machine segmentation
        3. Layout (row heights, image placement)
        4. Validation
        5. Spreadsheet emission

    Any failure other than a single undecodable image aborts the run.
    """

    def __init__(
        self,
        config: Optional[ConverterConfig] = None,
        metrics: Optional[TextMetrics] = None,
    ):
        self.config = config or ConverterConfig()
        self._setup_logging()
        self.config.layout.workers = self.config.layout_workers
        self.config.layout.font = FontSpec(
            name=self.config.layout.font.name, size=self.config.font_size
        )
        self.metrics = metrics or self._default_metrics()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("mcq_sheet")
        package_logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(formatter)
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.config.log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            package_logger.addHandler(file_handler)

    def _default_metrics(self) -> TextMetrics:
        if self.config.font_path:
            return PillowTextMetrics(self.config.font_path)
        return AverageCharMetrics()

    # ─── Pipeline Phases ──────────────────────────────────────────────────

    def extract_blocks(
        self,
        data: bytes,
        source: str = "<bytes>",
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> tuple[str, list[Block]]:
        """Detect the format and normalize the document into Blocks."""
        fmt = detect_format(data, source)
        logger.info(f"Phase 1: Block extraction ({fmt})")

        if fmt == FORMAT_PDF:
            extractor = PdfBlockExtractor(min_image_size=self.config.min_image_size)
            blocks = extractor.extract(
                data,
                page_range=self.config.page_range,
                progress_callback=progress_callback,
            )
        else:
            blocks = MarkupBlockExtractor().extract(data)
        return fmt, blocks

    def extract_questions(
        self, blocks: list[Block]
    ) -> tuple[list[Question], int]:
        """Segment blocks; returns the questions and the orphan image count."""
        logger.info("Phase 2: Segmentation")
        parser = StateMachineParser(
            self.config.optionless_policy, self.config.allow_decimal_starts
        )
        questions = parser.parse(blocks)
        return questions, parser.last_state.orphan_images

    def convert_bytes(
        self,
        data: bytes,
        source: str = "<bytes>",
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> tuple[bytes, ConversionResult]:
        """
        Convert an in-memory document into spreadsheet bytes.

        Raises:
            UnsupportedInputFormat: input is neither DOCX nor PDF.
            ExtractionEmpty: no question could be segmented.
            EmissionFailure: the workbook could not be written.
        """
        result, layout = self._run(data, source, progress_callback)

        logger.info("Phase 5: Emission")
        writer = XlsxWriter(self.config.layout, self.config.sheet_name)
        return writer.to_bytes(layout), result

    def convert(
        self,
        input_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ConversionResult:
        """
        Convert a DOCX or PDF file into an .xlsx question sheet.

        Args:
            input_path: Source document.
            output_path: Target workbook; defaults to
                `<output_dir>/<input stem>.xlsx`.
            progress_callback: Callback(page_num, total_pages) for PDFs.

        Returns:
            ConversionResult with the questions, report and output path.

        Raises:
            FileNotFoundError: If the input doesn't exist.
            UnsupportedInputFormat, ExtractionEmpty, EmissionFailure
        """
        input_path = os.path.abspath(input_path)
        if not os.path.exists(input_path):
            raise FileNotFoundError(f"Input not found: {input_path}")

        start_time = time.time()
        logger.info(f"Starting conversion of: {input_path}")

        with open(input_path, "rb") as f:
            data = f.read()

        result, layout = self._run(data, os.path.basename(input_path), progress_callback)

        output_dir = Path(self.config.output_dir)
        if output_path is None:
            output_path = output_dir / f"{Path(input_path).stem or 'download'}.xlsx"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Phase 5: Emission")
        XlsxWriter(self.config.layout, self.config.sheet_name).write(layout, output_path)
        result.output_path = str(output_path)

        if self.config.save_snapshot:
            output_dir.mkdir(parents=True, exist_ok=True)
            self._save_snapshot(result, output_dir / f"{Path(input_path).stem}_questions.json")

        elapsed = time.time() - start_time
        logger.info(
            f"Conversion complete in {elapsed:.2f}s: "
            f"{len(result.questions)} questions written to {output_path}"
        )
        return result

    def _run(self, data: bytes, source: str, progress_callback):
        fmt, blocks = self.extract_blocks(data, source, progress_callback)
        questions, orphan_images = self.extract_questions(blocks)

        if not questions:
            raise ExtractionEmpty(source)

        logger.info("Phase 3: Layout")
        layout = LayoutEngine(self.config.layout, self.metrics).layout(questions)

        # Undecodable images never reach the sheet
        questions = [
            q.without_images(set(row.skipped_images))
            for q, row in zip(questions, layout.rows)
        ]

        logger.info("Phase 4: Validation")
        report = ValidationEngine().validate(questions, orphan_images, layout)

        result = ConversionResult(
            source=source,
            source_format=fmt,
            block_count=len(blocks),
            questions=questions,
            report=report,
        )
        return result, layout

    def _save_snapshot(self, result: ConversionResult, filepath: Path):
        """Save questions (image digests only) and the report as JSON."""
        data = result.summary()
        data["converter_version"] = __version__
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        logger.info(f"Saved snapshot: {filepath}")
