"""
Test Suite for Layout and Emission
==================================
Word-wrap simulation, image stacking, row heights and the XLSX writer.
"""

from __future__ import annotations

import io

import pytest
from openpyxl import load_workbook
from openpyxl.utils.units import pixels_to_EMU
from PIL import Image

from documents import placeable_wmf

from mcq_sheet.block_extractor import PositionedItem, blocks_from_lines
from mcq_sheet.errors import EmissionFailure
from mcq_sheet.layout import (
    COLUMNS,
    LayoutConfig,
    LayoutEngine,
    count_wrapped_lines,
    row_height_points,
    scale_to_width,
    stack_images,
)
from mcq_sheet.metrics import AverageCharMetrics, FontSpec, PillowTextMetrics
from mcq_sheet.models import (
    ImageRef,
    LayoutCell,
    Question,
    QuestionImage,
    RowLayout,
    SheetLayout,
    Target,
)
from mcq_sheet.state_machine import segment
from mcq_sheet.xlsx_writer import HEADER_FILL, XlsxWriter

FONT = FontSpec()
METRICS = AverageCharMetrics()  # 7px per char, 20px per line at 11pt


def _png(color: str = "red", size: tuple[int, int] = (40, 20)) -> ImageRef:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return ImageRef(data=buf.getvalue(), content_type="image/png")


def _engine(**overrides) -> LayoutEngine:
    return LayoutEngine(LayoutConfig(**overrides), METRICS)


def _question(images=(), **kwargs) -> Question:
    defaults = dict(
        number=1,
        text=("What is 2+2?",),
        options={"A": "3", "B": "4", "C": "5", "D": "6"},
    )
    defaults.update(kwargs)
    return Question(
        images=tuple(QuestionImage(image=img, target=t) for img, t in images),
        **defaults,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# GEOMETRY HELPER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestWordWrap:
    """Greedy word-wrap line counting."""

    def test_empty_text(self):
        assert count_wrapped_lines("", 100, METRICS, FONT) == 0

    def test_fits_on_one_line(self):
        assert count_wrapped_lines("hello world", 1000, METRICS, FONT) == 1

    def test_wraps(self):
        # "hello" = 35px, "hello world" = 77px
        assert count_wrapped_lines("hello world", 50, METRICS, FONT) == 2

    def test_explicit_newlines(self):
        assert count_wrapped_lines("a\nb\nc", 1000, METRICS, FONT) == 3

    def test_overlong_word_takes_one_line(self):
        assert count_wrapped_lines("abcdefghijklmnop", 50, METRICS, FONT) == 1
        assert count_wrapped_lines("ab abcdefghijklmnop", 50, METRICS, FONT) == 2

    def test_more_text_never_fewer_lines(self):
        text = "the quick brown fox jumps over the lazy dog"
        counts = [
            count_wrapped_lines(" ".join(text.split()[:n]), 80, METRICS, FONT)
            for n in range(1, 10)
        ]
        assert counts == sorted(counts)


class TestImageGeometry:
    def test_scale_to_width(self):
        assert scale_to_width(40, 20, 120) == (120, 60)
        assert scale_to_width(100, 300, 50) == (50, 150)

    def test_stack_images(self):
        a, b = _png("red"), _png("blue")
        placements = stack_images([(a, 120, 60), (b, 100, 30)], 40, 300, 15)

        assert placements[0].top_offset == 55
        assert placements[0].left_offset == 90
        assert placements[1].top_offset == 55 + 60 + 15
        assert placements[1].left_offset == 100

    def test_wide_image_not_offset_negative(self):
        placements = stack_images([(_png(), 400, 100)], 0, 300, 15)
        assert placements[0].left_offset == 0

    def test_row_height_points(self):
        short = LayoutCell(column=1, text_height=20)
        tall = LayoutCell(column=2, text_height=200)
        assert row_height_points([short], 21.75) == 21.75
        assert row_height_points([short, tall], 21.75) == pytest.approx(150)


class TestTextMetrics:
    def test_average_metrics_scale_with_font(self):
        assert METRICS.measure("abcd", FONT) == 28
        assert METRICS.measure("abcd", FontSpec(size=22)) == 56
        assert METRICS.line_height(FONT) == 20

    def test_pillow_metrics(self):
        metrics = PillowTextMetrics()
        assert metrics.measure("abcdef", FONT) > metrics.measure("abc", FONT)
        assert metrics.line_height(FONT) > 0


# ═══════════════════════════════════════════════════════════════════════════════
# LAYOUT ENGINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLayoutEngine:
    """Row and placement computation."""

    def test_text_only_row_uses_default_height(self):
        row = _engine().layout_question(_question(), 0)
        assert row.height_points == 21.75
        assert [c.text for c in row.cells] == ["1", "What is 2+2?", "3", "4", "5", "6"]
        assert row.placements == []

    def test_option_image_placement(self):
        x = _png(size=(40, 20))
        row = _engine().layout_question(_question(images=[(x, Target.OPTION_A)]), 0)

        cell = row.cells[2]
        assert len(cell.placements) == 1
        placement = cell.placements[0]
        assert (placement.width, placement.height) == (120, 60)
        assert placement.top_offset == 20 + 15
        column_width = 35.71 * 7.5
        assert placement.left_offset == pytest.approx((column_width - 120) / 2)
        # (20 + 15 + 60) px = 71.25 pt
        assert row.height_points == pytest.approx(71.25)

    def test_question_image_width(self):
        x = _png(size=(40, 20))
        row = _engine().layout_question(_question(images=[(x, Target.QUESTION)]), 0)
        placement = row.cells[1].placements[0]
        assert (placement.width, placement.height) == (200, 100)

    def test_image_width_clamped_to_column(self):
        x = _png(size=(40, 20))
        row = _engine(option_image_width=1000).layout_question(
            _question(images=[(x, Target.OPTION_B)]), 0
        )
        assert row.cells[3].placements[0].width == pytest.approx(35.71 * 7.5)

    def test_images_stack_without_overlap(self):
        images = [(_png(c), Target.OPTION_C) for c in ("red", "green", "blue")]
        row = _engine().layout_question(_question(images=images), 0)
        placements = row.cells[4].placements
        assert len(placements) == 3
        for upper, lower in zip(placements, placements[1:]):
            assert lower.top_offset >= upper.bottom + 15
        assert placements[0].top_offset >= row.cells[4].text_height

    def test_row_fits_tallest_cell(self):
        images = [(_png(c), Target.OPTION_D) for c in ("red", "green")]
        row = _engine().layout_question(_question(images=images), 0)
        tallest = max(c.content_height for c in row.cells)
        assert row.height_points * 4 / 3 >= tallest - 1e-9

    def test_adding_an_image_never_shrinks_row(self):
        engine = _engine()
        images = []
        last = engine.layout_question(_question(), 0).height_points
        for color, target in [("red", Target.QUESTION), ("blue", Target.OPTION_A),
                              ("green", Target.QUESTION)]:
            images.append((_png(color), target))
            height = engine.layout_question(_question(images=images), 0).height_points
            assert height >= last
            last = height

    def test_removing_images_restores_default_height(self):
        engine = _engine()
        with_image = engine.layout_question(
            _question(images=[(_png(size=(40, 80)), Target.OPTION_B)]), 0
        )
        assert with_image.height_points > 21.75
        assert engine.layout_question(_question(), 0).height_points == 21.75

    def test_long_text_grows_row(self):
        long_text = " ".join(["word"] * 200)
        row = _engine().layout_question(_question(text=(long_text,)), 0)
        assert row.height_points > 21.75

    def test_undecodable_image_skipped(self):
        bad = ImageRef(data=b"not an image")
        good = _png()
        row = _engine().layout_question(
            _question(images=[(bad, Target.OPTION_A), (good, Target.OPTION_A)]), 0
        )
        cell = row.cells[2]
        assert cell.skipped_images == [bad.digest]
        assert len(cell.placements) == 1
        assert cell.placements[0].top_offset == 20 + 15

    def test_metafile_image_skipped(self):
        wmf = ImageRef(data=placeable_wmf(), content_type="image/x-wmf")
        layout = _engine().layout([
            _question(images=[(wmf, Target.QUESTION), (_png(), Target.QUESTION)])
        ])
        cell = layout.rows[0].cells[1]
        assert cell.skipped_images == [wmf.digest]
        assert len(cell.placements) == 1

        ws = load_workbook(io.BytesIO(XlsxWriter().to_bytes(layout)))["Questions"]
        assert ws["B2"].value == "What is 2+2?"
        assert len(ws._images) == 1

    def test_serial_numbers_follow_row_order(self):
        questions = [_question(number=n) for n in (5, 9, 2)]
        sheet = _engine().layout(questions)
        assert [r.cells[0].text for r in sheet.rows] == ["1", "2", "3"]
        assert [r.row_index for r in sheet.rows] == [0, 1, 2]

    def test_parallel_probing_matches_sequential(self):
        questions = [
            _question(number=n, images=[(_png(c), Target.QUESTION)])
            for n, c in enumerate(("red", "green", "blue", "black"), start=1)
        ]
        sequential = _engine(workers=1).layout(questions)
        parallel = _engine(workers=4).layout(questions)
        assert [r.height_points for r in sequential.rows] == [
            r.height_points for r in parallel.rows
        ]
        assert [
            [(c, p.top_offset, p.image.digest) for c, p in r.placements]
            for r in sequential.rows
        ] == [
            [(c, p.top_offset, p.image.digest) for c, p in r.placements]
            for r in parallel.rows
        ]


# ═══════════════════════════════════════════════════════════════════════════════
# XLSX WRITER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestXlsxWriter:
    """Workbook emission."""

    def _layout(self) -> SheetLayout:
        questions = [
            _question(images=[(_png(size=(40, 20)), Target.OPTION_A)]),
            _question(number=2, text=("Second",), options={"B": "only b"}),
        ]
        return _engine().layout(questions)

    def test_header_row(self):
        ws = XlsxWriter().build(SheetLayout()).active
        assert [ws.cell(row=1, column=i).value for i in range(1, 7)] == [
            "Sr. No", "Question content", "Alternative1",
            "Alternative2", "Alternative3", "Alternative4",
        ]
        header = ws["A1"]
        assert header.font.bold
        assert header.font.size == 12
        assert header.font.color.rgb == "FFFFFFFF"
        assert header.fill.fgColor.rgb == HEADER_FILL
        assert header.alignment.horizontal == "center"
        assert ws.row_dimensions[1].height == 43.5

    def test_column_widths(self):
        ws = XlsxWriter().build(SheetLayout()).active
        assert [ws.column_dimensions[c].width for c in "ABCDEF"] == [
            column.width_chars for column in COLUMNS
        ]

    def test_data_rows(self):
        ws = XlsxWriter().build(self._layout()).active
        assert ws.title == "Questions"
        assert ws["A2"].value == 1
        assert ws["B2"].value == "What is 2+2?"
        assert ws["C2"].value == "3"
        assert ws["A3"].value == 2
        assert ws["D3"].value == "only b"
        assert ws["B2"].alignment.wrap_text
        assert ws["B2"].alignment.vertical == "top"
        assert ws["C3"].border.left.style == "thin"
        assert ws.row_dimensions[2].height == pytest.approx(71.25)
        assert ws.row_dimensions[3].height == 21.75

    def test_image_anchor(self):
        layout = self._layout()
        ws = XlsxWriter().build(layout).active
        assert len(ws._images) == 1

        placement = layout.rows[0].cells[2].placements[0]
        anchor = ws._images[0].anchor
        assert anchor._from.col == 2
        assert anchor._from.row == 1
        assert anchor._from.rowOff == pixels_to_EMU(placement.top_offset)
        assert anchor._from.colOff == pixels_to_EMU(placement.left_offset)
        assert anchor.ext.cx == pixels_to_EMU(120)
        assert anchor.ext.cy == pixels_to_EMU(60)

    def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "out.xlsx"
        XlsxWriter().write(self._layout(), path)

        wb = load_workbook(path)
        ws = wb["Questions"]
        assert ws.max_row == 3
        assert ws["B1"].value == "Question content"
        assert ws["B3"].value == "Second"
        assert ws.row_dimensions[2].height == pytest.approx(71.25)
        assert len(ws._images) == 1

    def test_to_bytes(self):
        data = XlsxWriter().to_bytes(self._layout())
        assert data[:2] == b"PK"

    def test_write_failure(self, tmp_path):
        with pytest.raises(EmissionFailure):
            XlsxWriter().write(self._layout(), tmp_path / "missing" / "out.xlsx")

    def test_illegal_character_is_emission_failure(self):
        layout = SheetLayout(rows=[RowLayout(
            row_index=0,
            cells=[LayoutCell(column=0, text="1"), LayoutCell(column=1, text="bad\x03")],
            height_points=21.75,
        )])
        with pytest.raises(EmissionFailure):
            XlsxWriter().to_bytes(layout)

    def test_control_characters_in_page_text(self):
        lines = [
            [PositionedItem(x=0, y=700, text="1. Which\x03 is right?")],
            [PositionedItem(x=0, y=680, text="(A) yes\x01 (B) no")],
        ]
        questions = segment(blocks_from_lines(lines))
        data = XlsxWriter().to_bytes(_engine().layout(questions))

        ws = load_workbook(io.BytesIO(data))["Questions"]
        assert ws["B2"].value == "Which is right?"
        assert ws["C2"].value == "yes"
        assert ws["D2"].value == "no"
