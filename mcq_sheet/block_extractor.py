"""
Block Extractor
===============
Turns a source document into one ordered sequence of Blocks.

    - MarkupBlockExtractor: DOCX → HTML (mammoth) → block-level node walk
      (BeautifulSoup), inline images split out as Image blocks.
    - PdfBlockExtractor: positioned text spans and raster images per page
      (PyMuPDF), page-offset y, banded sort, regrouped into lines.

The ordering helpers `order_positioned_items` and `group_into_lines` are
pure and work on any positioned stream.
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, replace
from functools import cmp_to_key
from typing import Callable, Iterator, Optional

import fitz  # PyMuPDF
import mammoth
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment

from .errors import UnsupportedInputFormat
from .images import decode_data_uri, decode_raw_samples, image_to_png, make_image_ref
from .models import Block, ImageRef, Position
from .text import normalize_text, subscript, superscript

logger = logging.getLogger(__name__)

# ─── Ordering Constants ───────────────────────────────────────────────────────

# Added per remaining page so page N always sorts above page N+1
PAGE_OFFSET = 10000.0
# Items closer than this in y are on the same band; ordered by x
LINE_EPSILON = 5.0
# A y gap larger than this starts a new line
LINE_BREAK_EPSILON = 10.0

# PyMuPDF span flag bit for superscripted text
SPAN_SUPERSCRIPT = 1

BLOCK_TAGS = {
    "p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "td", "th", "pre",
    "caption", "dt", "dd",
}
CONTAINER_TAGS = {
    "ol", "ul", "dl", "table", "thead", "tbody", "tfoot", "tr", "div",
    "blockquote", "section", "article", "body", "html",
}


# ─── Block Assembly ───────────────────────────────────────────────────────────


class _BlockBuilder:
    """
    Accumulates inline content of one group (paragraph or line) and cuts it
    into Text and Image blocks, preserving order.
    """

    def __init__(self):
        self.blocks: list[Block] = []
        self._group = 0
        self._group_emitted = False
        self._parts: list[str] = []
        self._text_page: Optional[int] = None
        self._text_position: Optional[Position] = None

    def start_group(self):
        self._flush_text()
        if self._group_emitted:
            self._group += 1
        self._group_emitted = False

    def end_group(self):
        self.start_group()

    def add_text(
        self,
        text: str,
        position: Optional[Position] = None,
        page_number: Optional[int] = None,
    ):
        if not self._parts:
            self._text_position = position
            self._text_page = page_number
        self._parts.append(text)

    def add_image(
        self,
        image: ImageRef,
        position: Optional[Position] = None,
        page_number: Optional[int] = None,
    ):
        self._flush_text()
        self.blocks.append(Block.image_block(
            image,
            sequence_index=len(self.blocks),
            group_index=self._group,
            position=position,
            page_number=page_number,
        ))
        self._group_emitted = True

    def _flush_text(self):
        if not self._parts:
            return
        text = normalize_text("".join(self._parts))
        if text:
            self.blocks.append(Block.text_block(
                text,
                sequence_index=len(self.blocks),
                group_index=self._group,
                position=self._text_position,
                page_number=self._text_page,
            ))
            self._group_emitted = True
        self._parts = []
        self._text_position = None
        self._text_page = None


# ─── Markup (DOCX) ────────────────────────────────────────────────────────────


class MarkupBlockExtractor:
    """
    Block normalizer for word-processor documents.

    Every block-level node becomes one group. Text between inline images
    becomes a Text block; each `<img>` becomes an Image block right where it
    occurs in the node.
    """

    def extract(self, data: bytes) -> list[Block]:
        """Convert DOCX bytes to Blocks."""
        try:
            result = mammoth.convert_to_html(io.BytesIO(data))
        except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
            raise UnsupportedInputFormat("docx", f"unreadable document: {e}") from e

        for message in result.messages:
            logger.debug(f"mammoth: {message.type}: {message.message}")

        return self.extract_html(result.value)

    def extract_html(self, html: str) -> list[Block]:
        """Convert block-level HTML markup to Blocks."""
        soup = BeautifulSoup(html, "html.parser")
        builder = _BlockBuilder()

        for node in self._iter_blocks(soup):
            self._emit_node(node, builder)

        builder.end_group()
        logger.info(f"Normalized markup into {len(builder.blocks)} blocks")
        return builder.blocks

    def _iter_blocks(self, parent: Tag) -> Iterator:
        """Yield block-level nodes in document order."""
        for child in parent.children:
            if isinstance(child, Comment):
                continue
            if isinstance(child, Tag) and child.name in CONTAINER_TAGS:
                yield from self._iter_blocks(child)
            elif isinstance(child, NavigableString) and not child.strip():
                continue
            else:
                # Block tags, and stray inline content at container level
                yield child

    def _emit_node(self, node, builder: _BlockBuilder):
        builder.start_group()
        nested: list[Tag] = []
        self._walk_inline(node, builder, nested)
        builder.end_group()

        for child in nested:
            if child.name in CONTAINER_TAGS:
                for block_node in self._iter_blocks(child):
                    self._emit_node(block_node, builder)
            else:
                self._emit_node(child, builder)

    def _walk_inline(self, node, builder: _BlockBuilder, nested: list[Tag]):
        if isinstance(node, Comment):
            return
        if isinstance(node, NavigableString):
            builder.add_text(str(node))
            return

        name = node.name
        if name == "img":
            self._add_img(node, builder)
        elif name == "br":
            builder.add_text(" ")
        elif name == "sup":
            builder.add_text(superscript(node.get_text()))
            for img in node.find_all("img"):
                self._add_img(img, builder)
        elif name == "sub":
            builder.add_text(subscript(node.get_text()))
            for img in node.find_all("img"):
                self._add_img(img, builder)
        else:
            for child in node.children:
                if isinstance(child, Tag) and (
                    child.name in BLOCK_TAGS or child.name in CONTAINER_TAGS
                ):
                    nested.append(child)
                else:
                    self._walk_inline(child, builder, nested)

    def _add_img(self, img: Tag, builder: _BlockBuilder):
        src = img.get("src") or ""
        image = decode_data_uri(src)
        if image is None:
            logger.warning(f"Skipping image with unsupported source: {src[:40]!r}")
            return
        builder.add_image(image)


# ─── Positioned Streams (PDF) ─────────────────────────────────────────────────


@dataclass(frozen=True)
class PositionedItem:
    """A text run or image anchored at (x, y), y growing upwards."""
    x: float
    y: float
    page_number: int = 1
    text: Optional[str] = None
    image: Optional[ImageRef] = None

    @property
    def is_image(self) -> bool:
        return self.image is not None


def apply_page_offset(
    items: list[PositionedItem],
    page_number: int,
    total_pages: int,
    page_offset: float = PAGE_OFFSET,
) -> list[PositionedItem]:
    """Shift a page's items so earlier pages sort above later ones."""
    offset = (total_pages - page_number) * page_offset
    return [replace(item, y=item.y + offset) for item in items]


def order_positioned_items(
    items: list[PositionedItem],
    line_epsilon: float = LINE_EPSILON,
) -> list[PositionedItem]:
    """Sort by descending y; items within `line_epsilon` in y sort by x."""

    def compare(a: PositionedItem, b: PositionedItem) -> int:
        if abs(b.y - a.y) < line_epsilon:
            return (a.x > b.x) - (a.x < b.x)
        return (b.y > a.y) - (b.y < a.y)

    return sorted(items, key=cmp_to_key(compare))


def group_into_lines(
    items: list[PositionedItem],
    line_break_epsilon: float = LINE_BREAK_EPSILON,
) -> list[list[PositionedItem]]:
    """Split an ordered stream into lines at y gaps above the threshold."""
    lines: list[list[PositionedItem]] = []
    current: list[PositionedItem] = []
    last_y: Optional[float] = None

    for item in items:
        if last_y is not None and abs(item.y - last_y) > line_break_epsilon:
            lines.append(current)
            current = []
        current.append(item)
        last_y = item.y

    if current:
        lines.append(current)
    return lines


def blocks_from_lines(lines: list[list[PositionedItem]]) -> list[Block]:
    """One group per line; images split the line's text where they occur."""
    builder = _BlockBuilder()
    for line in lines:
        builder.start_group()
        for item in line:
            position = Position(x=item.x, y=item.y)
            if item.is_image:
                builder.add_image(item.image, position, item.page_number)
            elif item.text:
                builder.add_text(f" {item.text} ", position, item.page_number)
        builder.end_group()
    return builder.blocks


class PdfBlockExtractor:
    """
    Block normalizer for page-description documents.

    Extracts:
        - Text spans anchored at their baseline origin
        - Raster images anchored at their bottom-left corner, decoded to
          embeddable bitmaps
    """

    def __init__(
        self,
        min_image_size: int = 8,
        page_offset: float = PAGE_OFFSET,
        line_epsilon: float = LINE_EPSILON,
        line_break_epsilon: float = LINE_BREAK_EPSILON,
    ):
        self.min_image_size = min_image_size
        self.page_offset = page_offset
        self.line_epsilon = line_epsilon
        self.line_break_epsilon = line_break_epsilon
        self._image_cache: dict[int, Optional[ImageRef]] = {}

    def get_page_count(self, data: bytes) -> int:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return doc.page_count

    def extract(
        self,
        data: bytes,
        page_range: Optional[tuple[int, int]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> list[Block]:
        """
        Extract all content blocks from the PDF.

        Args:
            data: Raw PDF bytes.
            page_range: Optional (start, end) range (1-indexed, inclusive).
            progress_callback: Optional callable(current, total).

        Returns:
            Flat list of Blocks in reading order.
        """
        self._image_cache = {}
        all_items: list[PositionedItem] = []

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as e:
            raise UnsupportedInputFormat("pdf", f"unreadable document: {e}") from e

        with doc:
            total_pages = doc.page_count

            start_page = 1
            end_page = total_pages
            if page_range:
                start_page = max(1, page_range[0])
                end_page = min(total_pages, page_range[1])

            logger.info(f"Extracting pages {start_page} to {end_page} of {total_pages}")

            for page_idx in range(start_page - 1, end_page):
                page = doc[page_idx]
                page_num = page_idx + 1

                page_items = self._text_items(page, page_num)
                page_items.extend(self._image_items(page, page_num))
                all_items.extend(apply_page_offset(
                    page_items, page_num, total_pages, self.page_offset
                ))

                if progress_callback:
                    progress_callback(page_num - start_page + 1,
                                      end_page - start_page + 1)

        ordered = order_positioned_items(all_items, self.line_epsilon)
        lines = group_into_lines(ordered, self.line_break_epsilon)
        blocks = blocks_from_lines(lines)
        logger.info(
            f"Normalized {len(all_items)} positioned items into "
            f"{len(lines)} lines / {len(blocks)} blocks"
        )
        return blocks

    def _text_items(self, page: fitz.Page, page_num: int) -> list[PositionedItem]:
        height = page.rect.height
        items: list[PositionedItem] = []
        page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)

        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    text = span.get("text", "")
                    if not text.strip():
                        continue
                    if span.get("flags", 0) & SPAN_SUPERSCRIPT:
                        text = superscript(text)
                    x, y = span["origin"]
                    items.append(PositionedItem(
                        x=x, y=height - y, page_number=page_num, text=text
                    ))
        return items

    def _image_items(self, page: fitz.Page, page_num: int) -> list[PositionedItem]:
        height = page.rect.height
        items: list[PositionedItem] = []

        for img in page.get_images(full=True):
            xref = img[0]
            image = self._decode_image(page.parent, xref, page_num)
            if image is None:
                continue

            for rect in page.get_image_rects(xref):
                if rect.width < 1 or rect.height < 1:
                    continue
                items.append(PositionedItem(
                    x=rect.x0, y=height - rect.y1, page_number=page_num,
                    image=image,
                ))
        return items

    def _decode_image(
        self, doc: fitz.Document, xref: int, page_num: int
    ) -> Optional[ImageRef]:
        """Decode an image XObject once per document; None if unusable."""
        if xref in self._image_cache:
            return self._image_cache[xref]

        image: Optional[ImageRef] = None
        try:
            base = doc.extract_image(xref)
            if base and base.get("image"):
                image = make_image_ref(
                    base["image"], f"image/{base.get('ext', 'png')}",
                    base.get("width"), base.get("height"),
                )
            else:
                image = self._decode_raw_stream(doc, xref)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Failed extracting image {xref} on page {page_num}: {e}")

        if image is not None and image.width and image.height and (
            image.width < self.min_image_size or image.height < self.min_image_size
        ):
            logger.debug(f"Skipping decoration image {xref} ({image.width}x{image.height})")
            image = None

        self._image_cache[xref] = image
        return image

    def _decode_raw_stream(self, doc: fitz.Document, xref: int) -> ImageRef:
        """Decode an uncompressed sample stream (1-bit, gray, RGB, CMYK)."""
        width = _int_key(doc, xref, "Width")
        height = _int_key(doc, xref, "Height")
        is_mask = doc.xref_get_key(xref, "ImageMask")[1] == "true"
        bpc = 1 if is_mask else _int_key(doc, xref, "BitsPerComponent", 8)
        colorspace = doc.xref_get_key(xref, "ColorSpace")[1]
        components = {
            "/DeviceRGB": 3, "/CalRGB": 3, "/DeviceCMYK": 4,
        }.get(colorspace, 1)

        raw = doc.xref_stream(xref)
        if not raw:
            raise ValueError(f"empty image stream for xref {xref}")

        img = decode_raw_samples(raw, width, height, bpc, components)
        return make_image_ref(image_to_png(img), "image/png", width, height)


def _int_key(doc: fitz.Document, xref: int, key: str, default: Optional[int] = None) -> int:
    kind, value = doc.xref_get_key(xref, key)
    if kind == "int":
        return int(value)
    if default is None:
        raise ValueError(f"image xref {xref} has no {key}")
    return default
