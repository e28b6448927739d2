"""Find underscore fill-in lines in a page's text layout.

Each run of underscores inside a text item is measured with the item's glyph
advances when the font can be resolved, and with a uniform per-character
width otherwise. The resulting content-space band is mapped through the
page's render matrix into a display-space field rectangle.
"""

import logging
import math
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from .errors import DetectionFailure
from .fields import Field, PageMeta, clamp, new_field_id
from .pdf_access import (
    FontResolver,
    GlyphMeasurement,
    GlyphMetrics,
    TextItem,
    Unavailable,
    content_to_display,
    convert_to_rectangle,
    open_pdf,
    read_text_items,
)
from .settings import Settings

logger = logging.getLogger(__name__)

UNDERSCORE_RUN = re.compile(r"_{3,}")

Measure = Callable[[TextItem], GlyphMeasurement]


def _no_glyphs(item: TextItem) -> GlyphMeasurement:
    return Unavailable("no font resolver")


def find_underscore_runs(text: str, min_length: int) -> Iterator[Tuple[int, int]]:
    """Yield (start, length) of underscore runs at least min_length long"""
    if "_" not in text:
        return
    for match in UNDERSCORE_RUN.finditer(text):
        length = match.end() - match.start()
        if length >= min_length:
            yield match.start(), length


def measure_run(metrics: GlyphMetrics, start: int, length: int) -> Tuple[float, float]:
    """Return (prefix, run) widths in font units.

    A glyph split by a run boundary contributes proportionally to the share of
    its characters that fall on each side.
    """
    end = start + length
    prefix = 0.0
    run = 0.0

    for segment in metrics.segments:
        if segment.end <= start:
            prefix += segment.width
            continue
        if segment.start >= end:
            break

        span = max(segment.end - segment.start, 1)
        if segment.start < start:
            prefix += segment.width * (start - segment.start) / span

        overlap = min(segment.end, end) - max(segment.start, start)
        if overlap > 0:
            run += segment.width * overlap / span

    return prefix, run


def clamp_size(value: float, minimum: float, available: float) -> float:
    if not (math.isfinite(available) and available > 0):
        available = minimum
    return min(max(value, min(minimum, available)), available)


def font_height(transform: Sequence[float]) -> float:
    height = math.hypot(transform[2], transform[3])
    return height if math.isfinite(height) and height > 0 else 10.0


def _run_geometry(
    item: TextItem,
    start: int,
    length: int,
    measurement: GlyphMeasurement,
) -> Tuple[float, float]:
    """Return the run's (offset, width) along the baseline in content units"""
    char_width = item.width / max(1, len(item.text)) if math.isfinite(item.width) else 0.0
    offset = char_width * start
    width = char_width * length

    if isinstance(measurement, GlyphMetrics):
        prefix, run = measure_run(measurement, start, length)
        ratio = item.width / measurement.total_units
        if math.isfinite(ratio) and ratio > 0 and run > 0:
            offset = prefix * ratio
            width = run * ratio
    return offset, width


def iter_page_candidates(
    items: Iterable[TextItem],
    page: PageMeta,
    matrix: fitz.Matrix,
    measure: Measure = _no_glyphs,
    settings: Optional[Settings] = None,
) -> Iterator[Field]:
    """Lazily yield detected fields for one page, in text order"""
    settings = settings or Settings()
    min_width = settings.detect_min_width
    min_height = settings.detect_min_height
    count = 0

    for item in items:
        runs = list(find_underscore_runs(item.text, settings.min_run_length))
        if not runs:
            continue

        measurement = measure(item)
        if isinstance(measurement, Unavailable):
            logger.debug("Uniform widths for %r: %s", item.text, measurement.reason)

        base_x, base_y = item.transform[4], item.transform[5]
        height_units = font_height(item.transform)

        for start, length in runs:
            offset, line_width = _run_geometry(item, start, length, measurement)
            if not line_width > 0:
                continue

            if item.direction == "rtl":
                source_x = base_x - (offset + line_width)
            else:
                source_x = base_x + offset

            x1, y1, x2, y2 = convert_to_rectangle(
                matrix,
                (
                    source_x,
                    base_y - height_units * 0.6,
                    source_x + line_width,
                    base_y + height_units * 0.2,
                ),
            )

            x = max(min(x1, x2), 0.0)
            raw_width = abs(x2 - x1)
            raw_height = abs(y2 - y1) or height_units * page.scale * 0.4

            width = min(max(min_width, raw_width), page.width - x)
            if width < min(min_width, page.width):
                width = min(min_width, page.width)
            x = clamp(x, 0, page.width - width)

            height = min(clamp_size(raw_height, min_height, page.height), min_height + 16)
            max_y = max(page.height - height, 0)
            y = clamp((y1 + y2) / 2 - height, 0, max_y)
            if settings.vertical_offset:
                y = clamp(y + settings.vertical_offset, 0, max_y)

            count += 1
            yield Field(
                id=new_field_id(),
                page_index=page.index,
                x=x,
                y=y,
                width=width,
                height=height,
                name=f"page{page.index + 1}_field_{count}",
                confidence=settings.detected_confidence,
            )


def detect_fields_for_page(
    items: Iterable[TextItem],
    page: PageMeta,
    matrix: fitz.Matrix,
    measure: Measure = _no_glyphs,
    settings: Optional[Settings] = None,
) -> List[Field]:
    return list(iter_page_candidates(items, page, matrix, measure, settings))


def detect_fields(
    data: bytes,
    pages: Sequence[PageMeta],
    settings: Optional[Settings] = None,
    file_name: str = "document",
) -> List[Field]:
    """Detect fields on every page of a PDF, aggregated in page order"""
    settings = settings or Settings()
    try:
        doc = open_pdf(data)
    except Exception as e:
        raise DetectionFailure(file_name, str(e)) from e

    aggregated: List[Field] = []
    with doc:
        resolver = FontResolver(doc)
        for meta in pages:
            try:
                page = doc[meta.index]
                resolver.register_page(page)
                items = read_text_items(page)
                matrix = content_to_display(page, meta.scale)
            except Exception as e:
                raise DetectionFailure(file_name, f"page {meta.index + 1}: {e}") from e
            aggregated.extend(
                detect_fields_for_page(items, meta, matrix, resolver.measure, settings)
            )

    logger.info("Detected %d field(s) in %s", len(aggregated), file_name)
    return aggregated


@dataclass
class DetectionReport:
    detected: Dict[str, int] = field(default_factory=dict)
    added: Dict[str, int] = field(default_factory=dict)
    failures: List[DetectionFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total_added(self) -> int:
        return sum(self.added.values())

    @property
    def warning(self) -> Optional[str]:
        if not self.failures:
            return None
        return (
            "Auto-detect failed on one or more documents. "
            "You can still add fields manually."
        )


class DetectionTask:
    """Runs detection over the store's documents, one document at a time.

    Candidates are merged only after a whole document has been scanned.
    After cancel() no further document is started and nothing more is merged.
    """

    def __init__(self, store, document_ids: Optional[Sequence[str]] = None, settings=None):
        self.store = store
        self.settings = settings or store.settings
        self.document_ids = list(document_ids) if document_ids is not None else None
        self.report = DetectionReport()
        self._cancelled = threading.Event()
        # Reentrant so a store subscriber may cancel during a merge
        self._merge_lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def done(self) -> bool:
        return self._thread is not None and not self._thread.is_alive()

    def cancel(self) -> None:
        with self._merge_lock:
            self._cancelled.set()

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()
        return self._thread

    def run(self) -> DetectionReport:
        documents = self.store.snapshot.documents
        if self.document_ids is not None:
            documents = [d for d in documents if d.id in self.document_ids]

        for document in documents:
            if self.cancelled:
                break
            try:
                candidates = detect_fields(
                    document.data, document.pages, self.settings, document.file_name
                )
            except DetectionFailure as e:
                logger.warning("%s", e)
                self.report.failures.append(e)
                continue

            with self._merge_lock:
                if self.cancelled:
                    break
                added = self.store.merge_fields(document.id, candidates)
            self.report.detected[document.id] = len(candidates)
            self.report.added[document.id] = len(added)

        self.report.cancelled = self.cancelled
        if self.report.warning:
            logger.warning(
                "%s (%d failure(s))", self.report.warning, len(self.report.failures)
            )
        return self.report
