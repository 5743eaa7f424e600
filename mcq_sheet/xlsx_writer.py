"""
Spreadsheet Writer
==================
Serializes a computed SheetLayout into an .xlsx workbook with openpyxl.

Layout:
    - Row 1: styled header (bold white Calibri 12 on blue, centered)
    - One data row per question: serial number, question text, options A-D
    - Images anchored to their cell with pixel offsets
    - Thin border on every cell

This writer is the only owner of the workbook's image list; callers hand it
a finished layout and nothing else touches the sheet.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Optional, Union

from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.drawing.spreadsheet_drawing import AnchorMarker, OneCellAnchor
from openpyxl.drawing.xdr import XDRPositiveSize2D
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.utils.units import pixels_to_EMU

from .errors import EmissionFailure
from .layout import COLUMNS, LayoutConfig
from .models import ImagePlacement, SheetLayout

logger = logging.getLogger(__name__)

HEADER_FILL = "FF4F81BD"
HEADER_FONT_COLOR = "FFFFFFFF"

THIN = Side(style="thin")
CELL_BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)


class XlsxWriter:
    """Builds the question workbook from a finished layout."""

    def __init__(self, config: Optional[LayoutConfig] = None, sheet_name: str = "Questions"):
        self.config = config or LayoutConfig()
        self.sheet_name = sheet_name

    def build(self, layout: SheetLayout) -> Workbook:
        cfg = self.config
        wb = Workbook()
        ws = wb.active
        ws.title = self.sheet_name

        for col_idx, column in enumerate(COLUMNS, start=1):
            ws.column_dimensions[get_column_letter(col_idx)].width = column.width_chars

        self._write_header(ws)

        body_font = Font(name=cfg.font.name, size=cfg.font.size)
        body_alignment = Alignment(vertical="top", horizontal="left", wrap_text=True)

        for row in layout.rows:
            excel_row = row.row_index + 2
            for cell in row.cells:
                target = ws.cell(row=excel_row, column=cell.column + 1)
                target.value = int(cell.text) if cell.column == 0 else cell.text
                target.font = body_font
                target.alignment = body_alignment
                target.border = CELL_BORDER
            ws.row_dimensions[excel_row].height = row.height_points

            for col_idx, placement in row.placements:
                self._add_image(ws, placement, excel_row - 1, col_idx)

        return wb

    def write(self, layout: SheetLayout, destination: Union[str, Path, io.BytesIO]) -> None:
        """
        Build and save the workbook.

        Raises:
            EmissionFailure: if the workbook cannot be built or saved.
        """
        try:
            wb = self.build(layout)
            wb.save(destination)
        except (OSError, ValueError, TypeError, KeyError,
                IllegalCharacterError) as e:
            raise EmissionFailure(f"Failed to write spreadsheet: {e}") from e
        logger.info(f"Wrote {len(layout.rows)} question rows to {destination}")

    def to_bytes(self, layout: SheetLayout) -> bytes:
        buf = io.BytesIO()
        self.write(layout, buf)
        return buf.getvalue()

    def _write_header(self, ws):
        cfg = self.config
        font = Font(
            name=cfg.header_font.name,
            size=cfg.header_font.size,
            bold=cfg.header_font.bold,
            color=HEADER_FONT_COLOR,
        )
        fill = PatternFill("solid", fgColor=HEADER_FILL)
        alignment = Alignment(vertical="center", horizontal="center")

        for col_idx, column in enumerate(COLUMNS, start=1):
            cell = ws.cell(row=1, column=col_idx, value=column.header)
            cell.font = font
            cell.fill = fill
            cell.alignment = alignment
            cell.border = CELL_BORDER
        ws.row_dimensions[1].height = cfg.header_row_height

    def _add_image(self, ws, placement: ImagePlacement, row0: int, col0: int):
        """Anchor an image at (row0, col0), zero-based, plus pixel offsets."""
        img = XLImage(io.BytesIO(placement.image.data))
        img.width = placement.width
        img.height = placement.height

        marker = AnchorMarker(
            col=col0,
            colOff=pixels_to_EMU(placement.left_offset),
            row=row0,
            rowOff=pixels_to_EMU(placement.top_offset),
        )
        size = XDRPositiveSize2D(
            pixels_to_EMU(placement.width), pixels_to_EMU(placement.height)
        )
        img.anchor = OneCellAnchor(_from=marker, ext=size)
        ws.add_image(img)
