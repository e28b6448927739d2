"""Thin accessor around PyMuPDF for the parts of a PDF the pipeline needs.

Content space is the PDF page's native coordinate system (origin bottom-left).
Display space is what the editor draws on: MuPDF page space (origin top-left)
scaled by the page's render scale.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import fitz  # PyMuPDF

from .fields import PageMeta

logger = logging.getLogger(__name__)

Transform = Tuple[float, float, float, float, float, float]


@dataclass(frozen=True)
class TextItem:
    """One run of text as laid out on the page"""

    text: str
    transform: Transform  # glyph space -> content space
    width: float  # advance of the whole item in content units
    direction: str = "ltr"  # "ltr" or "rtl"
    font_name: str = ""


@dataclass(frozen=True)
class GlyphSegment:
    start: int
    end: int
    width: float


@dataclass(frozen=True)
class GlyphMetrics:
    """Per-glyph advances of a text item in font units"""

    total_units: float
    segments: Tuple[GlyphSegment, ...]


@dataclass(frozen=True)
class Unavailable:
    """Glyph metrics could not be built for a text item"""

    reason: str


GlyphMeasurement = Union[GlyphMetrics, Unavailable]


def open_pdf(data: bytes) -> fitz.Document:
    return fitz.open(stream=data, filetype="pdf")


def page_metas(doc: fitz.Document, scale: float) -> List[PageMeta]:
    metas = []
    for page in doc:
        rect = page.rect
        metas.append(
            PageMeta.from_original(page.number, rect.width, rect.height, scale)
        )
    return metas


def content_to_display(page: fitz.Page, scale: float) -> fitz.Matrix:
    """Matrix mapping PDF content coordinates to display coordinates"""
    return page.transformation_matrix * fitz.Matrix(scale, scale)


def convert_to_rectangle(
    matrix: fitz.Matrix, rect: Tuple[float, float, float, float]
) -> Tuple[float, float, float, float]:
    """Map the two corners of a rectangle, like a viewport does"""
    x0, y0, x1, y1 = rect
    p0 = fitz.Point(x0, y0) * matrix
    p1 = fitz.Point(x1, y1) * matrix
    return p0.x, p0.y, p1.x, p1.y


def read_text_items(page: fitz.Page) -> List[TextItem]:
    """Collect the page's text spans as content-space text items"""
    to_content = ~page.transformation_matrix
    raw = page.get_text("rawdict")
    items = []

    for block in raw.get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            cos, sin = line.get("dir", (1.0, 0.0))
            for span in line.get("spans", []):
                chars = span.get("chars", [])
                text = "".join(ch["c"] for ch in chars)
                if not text:
                    continue

                size = float(span.get("size", 0.0))
                origin = fitz.Point(span["origin"]) * to_content
                bbox = fitz.Rect(span["bbox"])
                # MuPDF's y axis points down, content space points up
                transform = (
                    size * cos,
                    -size * sin,
                    size * sin,
                    size * cos,
                    origin.x,
                    origin.y,
                )
                width = abs(bbox.width * cos) + abs(bbox.height * sin)
                direction = "rtl" if span.get("bidi", 0) % 2 else "ltr"

                items.append(
                    TextItem(
                        text=text,
                        transform=transform,
                        width=width,
                        direction=direction,
                        font_name=span.get("font", ""),
                    )
                )

    return items


def _strip_subset_prefix(name: str) -> str:
    # "ABCDEF+Helvetica" -> "Helvetica"
    if len(name) > 7 and name[6] == "+":
        return name[7:]
    return name


class FontResolver:
    """Resolves span font names to PyMuPDF fonts for glyph measurement.

    Fonts are cached per resolver; a resolver is bound to one open document.
    """

    def __init__(self, doc: fitz.Document):
        self.doc = doc
        self._xrefs: Dict[str, Tuple[int, str]] = {}
        self._cache: Dict[str, Optional[fitz.Font]] = {}

    def register_page(self, page: fitz.Page) -> None:
        for entry in page.get_fonts(full=True):
            xref, ext, basefont = entry[0], entry[1], entry[3]
            name = _strip_subset_prefix(basefont)
            self._xrefs.setdefault(name, (xref, ext))

    def font(self, name: str) -> Optional[fitz.Font]:
        name = _strip_subset_prefix(name)
        if name not in self._cache:
            self._cache[name] = self._load(name)
        return self._cache[name]

    def _load(self, name: str) -> Optional[fitz.Font]:
        if not name:
            return None
        try:
            xref, ext = self._xrefs.get(name, (0, "n/a"))
            if xref and ext != "n/a":
                buffer = self.doc.extract_font(xref)[3]
                if buffer:
                    return fitz.Font(fontbuffer=buffer)
            # Not embedded: standard 14 fonts are built into MuPDF
            return fitz.Font(fontname=name)
        except Exception as e:  # noqa: BLE001
            logger.debug("Font %s unavailable: %s", name, e)
            return None

    def measure(self, item: TextItem) -> GlyphMeasurement:
        font = self.font(item.font_name)
        if font is None:
            return Unavailable(f"font {item.font_name!r} not resolvable")
        try:
            return glyph_metrics(font, item.text)
        except Exception as e:  # noqa: BLE001
            return Unavailable(f"glyph lookup failed: {e}")


def glyph_metrics(font: fitz.Font, text: str) -> GlyphMeasurement:
    """Build running glyph segments for text using font advances"""
    if not text:
        return Unavailable("empty text")

    segments = []
    total = 0.0
    for cursor, ch in enumerate(text):
        code = ord(ch)
        width = font.glyph_advance(code) if font.has_glyph(code) else 0.0
        if not math.isfinite(width):
            width = 0.0
        segments.append(GlyphSegment(cursor, cursor + 1, width))
        total += width

    if not math.isfinite(total) or total == 0:
        return Unavailable("no glyph advances")
    return GlyphMetrics(total_units=total, segments=tuple(segments))


def render_page_ppm(page: fitz.Page, scale: float) -> bytes:
    """Render a page to PPM bytes for display"""
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale))
    return pix.tobytes("ppm")
