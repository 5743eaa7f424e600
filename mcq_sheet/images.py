"""
Image Decoding
==============
Pillow-backed image capability used by both block extraction and layout.

    - PillowImageProbe: native pixel size of encoded image bytes
    - decode_raw_samples(): raw PDF sample streams (1-bit gray, 8-bit gray,
      24-bit RGB) to a PIL image
    - to_png(): normalize any decodable image to PNG bytes
    - decode_data_uri(): `data:` URIs emitted by the DOCX converter
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeFailure
from .models import ImageRef

logger = logging.getLogger(__name__)

# Encodings openpyxl can embed without re-encoding
EMBEDDABLE_TYPES = {"image/png", "image/jpeg", "image/gif"}

_DECODE_ERRORS = (OSError, ValueError, UnidentifiedImageError,
                  Image.DecompressionBombError)


class PillowImageProbe:
    """Image dimension capability backed by Pillow."""

    def dimensions(self, image: ImageRef) -> tuple[int, int]:
        """
        Return the native `(width, height)` of an image.

        Only encodings the workbook can embed are measured, and the pixel
        data is decoded in full: header-only formats (WMF, EMF) and
        truncated streams fail here rather than when the workbook is saved.

        Raises:
            ImageDecodeFailure: if the bytes are not an embeddable, decodable
                raster or report a zero dimension.
        """
        if image.content_type not in EMBEDDABLE_TYPES:
            raise ImageDecodeFailure(
                image.digest, f"cannot embed {image.content_type}"
            )
        try:
            with Image.open(io.BytesIO(image.data)) as img:
                img.load()
                width, height = img.size
        except _DECODE_ERRORS as e:
            raise ImageDecodeFailure(image.digest, str(e)) from e

        if width <= 0 or height <= 0:
            raise ImageDecodeFailure(
                image.digest, f"invalid dimensions {width}x{height}"
            )
        return width, height


def unpack_1bpp(data: bytes, width: int, height: int) -> bytes:
    """
    Unpack a 1-bit-per-pixel bitmap into one 8-bit sample per pixel.

    Rows are padded to whole bytes. A set bit renders black (0), a clear
    bit white (255).
    """
    row_bytes = (width + 7) >> 3
    needed = row_bytes * height
    if len(data) < needed:
        raise ValueError(
            f"1-bit bitmap needs {needed} bytes for {width}x{height}, "
            f"got {len(data)}"
        )

    out = bytearray(width * height)
    k = 0
    for row in range(height):
        base = row * row_bytes
        for col in range(width):
            bit = (data[base + (col >> 3)] >> (7 - (col & 7))) & 1
            out[k] = 0 if bit else 255
            k += 1
    return bytes(out)


def decode_raw_samples(
    data: bytes,
    width: int,
    height: int,
    bits_per_component: int,
    components: int,
) -> Image.Image:
    """Build a PIL image from an uncompressed PDF sample stream."""
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid dimensions {width}x{height}")

    if bits_per_component == 1 and components == 1:
        return Image.frombytes("L", (width, height),
                               unpack_1bpp(data, width, height))

    if bits_per_component != 8:
        raise ValueError(
            f"unsupported sample depth: {bits_per_component} bits x "
            f"{components} components"
        )

    if components == 1:
        mode = "L"
    elif components == 3:
        mode = "RGB"
    elif components == 4:
        mode = "CMYK"
    else:
        raise ValueError(f"unsupported component count: {components}")

    expected = width * height * components
    if len(data) < expected:
        raise ValueError(
            f"{mode} image needs {expected} bytes, got {len(data)}"
        )
    img = Image.frombytes(mode, (width, height), data[:expected])
    return img.convert("RGB") if mode == "CMYK" else img


def image_to_png(img: Image.Image) -> bytes:
    if img.mode not in ("RGB", "RGBA", "L", "LA", "P", "1"):
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_png(data: bytes) -> bytes:
    """Re-encode encoded image bytes as PNG."""
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return image_to_png(img)


def make_image_ref(
    data: bytes,
    content_type: str,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> ImageRef:
    """
    Build an ImageRef, converting non-embeddable encodings to PNG when
    Pillow can read them. Undecodable data is kept untouched so the layout
    phase can report it.
    """
    content_type = content_type.lower()
    if content_type == "image/jpg":
        content_type = "image/jpeg"

    if content_type not in EMBEDDABLE_TYPES:
        try:
            data = to_png(data)
            content_type = "image/png"
        except _DECODE_ERRORS as e:
            logger.debug(f"Keeping {content_type} image as-is: {e}")

    return ImageRef(data=data, content_type=content_type,
                    width=width, height=height)


def decode_data_uri(uri: str) -> Optional[ImageRef]:
    """Decode a base64 `data:` URI; returns None for anything else."""
    if not uri.startswith("data:") or "," not in uri:
        return None

    header, payload = uri[5:].split(",", 1)
    parts = header.split(";")
    content_type = parts[0] or "application/octet-stream"
    if "base64" not in parts[1:]:
        logger.debug(f"Skipping non-base64 data URI ({content_type})")
        return None

    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Malformed image data URI: {e}")
        return None

    return make_image_ref(data, content_type)
