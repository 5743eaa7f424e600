"""
Document Builders
=================
Generate small DOCX and PDF inputs for the test suite.
"""

from __future__ import annotations

import io
import struct
import zipfile

import fitz
from PIL import Image


def png_bytes(color: str = "red", size: tuple[int, int] = (40, 20)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


WMF_KEY = b"\xd7\xcd\xc6\x9a"


def placeable_wmf(width: int = 1440, height: int = 720) -> bytes:
    """
    Header-only placeable metafile. Pillow reads its size (72 dpi units)
    but has no raster data to decode.
    """
    header = WMF_KEY + struct.pack("<HhhhhHIH", 0, 0, 0, width, height, 1440, 0, 0)
    return header + b"\x01\x00\x09\x00" + b"\x00" * 14


W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_RELS_NS = "http://schemas.openxmlformats.org/package/2006/relationships"

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Default Extension="png" ContentType="image/png"/>'
    '<Default Extension="wmf" ContentType="image/x-wmf"/>'
    '<Override PartName="/word/document.xml" ContentType="application/'
    'vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    '</Types>'
)

PACKAGE_RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    f'<Relationships xmlns="{PKG_RELS_NS}">'
    '<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/'
    '2006/relationships/officeDocument" Target="word/document.xml"/>'
    '</Relationships>'
)


def docx_run(text: str, vert_align: str | None = None) -> str:
    props = f'<w:rPr><w:vertAlign w:val="{vert_align}"/></w:rPr>' if vert_align else ""
    return f'<w:r>{props}<w:t xml:space="preserve">{text}</w:t></w:r>'


def docx_picture(rel_id: str) -> str:
    return (
        '<w:r><w:drawing>'
        '<wp:inline xmlns:wp="http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing">'
        '<wp:extent cx="381000" cy="190500"/>'
        '<wp:docPr id="1" name="Picture 1"/>'
        '<a:graphic xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main">'
        '<a:graphicData uri="http://schemas.openxmlformats.org/drawingml/2006/picture">'
        '<pic:pic xmlns:pic="http://schemas.openxmlformats.org/drawingml/2006/picture">'
        f'<pic:blipFill><a:blip r:embed="{rel_id}"/></pic:blipFill>'
        '</pic:pic></a:graphicData></a:graphic></wp:inline>'
        '</w:drawing></w:r>'
    )


def make_docx(paragraphs: list[str], media: dict[str, bytes] | None = None) -> bytes:
    """
    Build a minimal .docx. Each paragraph is a run string (see `docx_run`)
    or plain text; `media` maps relationship ids to PNG or WMF bytes.
    """
    media = media or {}
    names = {
        rel_id: f"{rel_id}.{'wmf' if data.startswith(WMF_KEY) else 'png'}"
        for rel_id, data in media.items()
    }
    body = "".join(
        f"<w:p>{p if p.startswith('<w:r>') else docx_run(p)}</w:p>"
        for p in paragraphs
    )
    document = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{W_NS}" xmlns:r="{R_NS}"><w:body>{body}</w:body></w:document>'
    )
    doc_rels = "".join(
        f'<Relationship Id="{rel_id}" Type="{R_NS}/image" Target="media/{names[rel_id]}"/>'
        for rel_id in media
    )

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("[Content_Types].xml", CONTENT_TYPES)
        archive.writestr("_rels/.rels", PACKAGE_RELS)
        archive.writestr("word/document.xml", document)
        archive.writestr(
            "word/_rels/document.xml.rels",
            f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            f'<Relationships xmlns="{PKG_RELS_NS}">{doc_rels}</Relationships>',
        )
        for rel_id, data in media.items():
            archive.writestr(f"word/media/{names[rel_id]}", data)
    return buf.getvalue()


def make_pdf(pages: list[list[tuple]]) -> bytes:
    """
    Build a PDF. Each page is a list of `("text", x, y, str)` or
    `("image", x0, y0, x1, y1, png_bytes)` entries in top-down coordinates.
    """
    doc = fitz.open()
    for entries in pages:
        page = doc.new_page()
        for entry in entries:
            if entry[0] == "text":
                _, x, y, text = entry
                page.insert_text((x, y), text, fontsize=11)
            else:
                _, x0, y0, x1, y1, data = entry
                page.insert_image(fitz.Rect(x0, y0, x1, y1), stream=data)
    data = doc.tobytes()
    doc.close()
    return data
