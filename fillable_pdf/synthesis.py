import logging
from typing import Dict, Iterable, Optional, Set, Tuple

import fitz  # PyMuPDF

from .errors import ExportFailure
from .fields import Box, Field, PageMeta
from .pdf_access import content_to_display, open_pdf
from .settings import Settings

logger = logging.getLogger(__name__)


def display_to_pdf_rect(field: Field, page: PageMeta) -> Tuple[float, float, float, float]:
    """Map a display-space field to (x, y, width, height) measured from the
    bottom-left corner of the page box.

    Add the page box origin to get user-space content coordinates.
    """
    scale = page.scale
    width = field.width / scale
    height = field.height / scale
    x = field.x / scale
    y = page.original_height - field.y / scale - height
    return x, y, width, height


def pdf_to_display_box(
    x: float, y: float, width: float, height: float, page: PageMeta
) -> Box:
    """Inverse of display_to_pdf_rect"""
    scale = page.scale
    return Box(
        x * scale,
        (page.original_height - y - height) * scale,
        width * scale,
        height * scale,
    )


def page_box_origin(pdf_page: fitz.Page) -> fitz.Point:
    """User-space position of the page box's bottom-left corner"""
    return fitz.Point(0, pdf_page.rect.height) * ~pdf_page.transformation_matrix


def display_to_content_rect(
    field: Field, pdf_page: fitz.Page, page: PageMeta
) -> fitz.Rect:
    """Content-space rectangle of a field, in the page's own user space"""
    x, y, width, height = display_to_pdf_rect(field, page)
    origin = page_box_origin(pdf_page)
    return fitz.Rect(
        origin.x + x, origin.y + y, origin.x + x + width, origin.y + y + height
    )


def measure_widget_rect(rect: fitz.Rect, pdf_page: fitz.Page, page: PageMeta) -> Box:
    """Display-space box of a widget placed on pdf_page"""
    display = fitz.Rect(rect) * ~pdf_page.transformation_matrix
    display = display * content_to_display(pdf_page, page.scale)
    return Box(display.x0, display.y0, display.width, display.height)


class NameRegistry:
    """Hands out widget names that are unique within one form"""

    def __init__(self, taken: Iterable[str] = ()):
        self._taken: Set[str] = set(taken)

    def unique(self, name: Optional[str]) -> str:
        base = name or "field"
        candidate = base
        suffix = 1
        while candidate in self._taken:
            suffix += 1
            candidate = f"{base}_{suffix}"
        self._taken.add(candidate)
        return candidate


def existing_field_names(doc: fitz.Document) -> Set[str]:
    names = set()
    for page in doc:
        for widget in page.widgets():
            if widget.field_name:
                names.add(widget.field_name)
    return names


def _make_widget(field: Field, name: str, rect: fitz.Rect, settings: Settings) -> fitz.Widget:
    widget = fitz.Widget()
    widget.field_name = name
    widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
    widget.rect = rect
    widget.field_value = field.placeholder or ""
    widget.text_font = settings.text_font
    widget.text_fontsize = settings.font_size
    widget.text_color = settings.text_color
    widget.fill_color = settings.fill_color
    widget.border_width = settings.border_width
    widget.border_color = None
    widget.text_maxlen = 0
    if field.multiline:
        widget.field_flags |= fitz.PDF_TX_FIELD_IS_MULTILINE
    return widget


def build_fillable_pdf(
    data: bytes,
    pages,
    fields,
    settings: Optional[Settings] = None,
    file_name: str = "document",
) -> bytes:
    """Return a copy of the PDF with one text widget per field"""
    settings = settings or Settings()
    try:
        output_doc = open_pdf(data)
    except Exception as e:
        raise ExportFailure(file_name, f"could not load PDF: {e}") from e

    metas = {meta.index: meta for meta in pages}
    placed: Dict[int, set] = {}

    with output_doc:
        try:
            names = NameRegistry(existing_field_names(output_doc))
            for field in fields:
                meta = metas.get(field.page_index)
                if meta is None or field.page_index >= output_doc.page_count:
                    logger.warning(
                        "Skipping field %s: no page %d in %s",
                        field.name,
                        field.page_index + 1,
                        file_name,
                    )
                    continue

                page = output_doc[field.page_index]
                content = display_to_content_rect(field, page, meta)
                rect = content * page.transformation_matrix
                widget = page.add_widget(
                    _make_widget(field, names.unique(field.name), rect, settings)
                )
                placed.setdefault(page.number, set()).add(widget.xref)

            # Regenerate appearance streams so viewers show the field state as is
            for page_number, xrefs in placed.items():
                for widget in output_doc[page_number].widgets():
                    if widget.xref in xrefs:
                        widget.update()

            result = output_doc.tobytes(garbage=3, deflate=True)
        except Exception as e:
            raise ExportFailure(file_name, str(e)) from e

    count = sum(len(xrefs) for xrefs in placed.values())
    logger.info("Added %d form field(s) to %s", count, file_name)
    return result
