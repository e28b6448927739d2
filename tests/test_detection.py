from __future__ import annotations

import fitz
import pytest

from conftest import make_field
from fillable_pdf.detection import (
    DetectionTask,
    detect_fields,
    detect_fields_for_page,
    find_underscore_runs,
    measure_run,
)
from fillable_pdf.errors import DetectionFailure
from fillable_pdf.fields import PageMeta, field_fits_page
from fillable_pdf.ingest import ingest_bytes
from fillable_pdf.pdf_access import (
    FontResolver,
    GlyphMetrics,
    GlyphSegment,
    TextItem,
    Unavailable,
    glyph_metrics,
)
from fillable_pdf.store import DocumentRecord, DocumentStore

# Letter page at 1.25: content y-up to display y-down
LETTER_MATRIX = fitz.Matrix(1.25, 0, 0, -1.25, 0, 990)


def item(text, x=72.0, y=700.0, width=None, size=12.0, **kwargs):
    if width is None:
        width = 6.0 * len(text)
    return TextItem(text, (size, 0.0, 0.0, size, x, y), width, **kwargs)


class TestUnderscoreRuns:
    def test_finds_long_runs_only(self):
        runs = list(find_underscore_runs("Name: __________ Date: ____", 8))
        assert runs == [(6, 10)]

    def test_no_underscores(self):
        assert list(find_underscore_runs("Plain text", 3)) == []

    def test_several_runs(self):
        assert list(find_underscore_runs("___ a ________", 3)) == [(0, 3), (6, 8)]


class TestMeasureRun:
    def test_split_glyph_is_interpolated(self):
        metrics = GlyphMetrics(
            total_units=4.0,
            segments=(
                GlyphSegment(0, 2, 2.0),
                GlyphSegment(2, 3, 1.0),
                GlyphSegment(3, 4, 1.0),
            ),
        )
        assert measure_run(metrics, 1, 2) == (1.0, 2.0)

    def test_whole_glyphs(self):
        metrics = GlyphMetrics(
            total_units=3.0,
            segments=tuple(GlyphSegment(i, i + 1, 1.0) for i in range(3)),
        )
        assert measure_run(metrics, 1, 2) == (1.0, 2.0)


class TestPageCandidates:
    def test_name_line(self, letter_page):
        fields = detect_fields_for_page(
            [item("Name: __________ Date: ____", width=162.0)],
            letter_page,
            LETTER_MATRIX,
        )
        assert len(fields) == 1
        field = fields[0]
        assert field.name == "page1_field_1"
        assert field.page_index == 0
        assert field.x == pytest.approx(135.0)
        assert field.width == pytest.approx(75.0)
        assert field.height == pytest.approx(14.0)
        assert field.y == pytest.approx(102.0)
        assert field.confidence == pytest.approx(0.6)

    def test_names_count_up_per_page(self):
        page = PageMeta.from_original(2, 612, 792, 1.25)
        fields = detect_fields_for_page(
            [item("__________", y=700.0), item("__________", y=600.0)],
            page,
            LETTER_MATRIX,
        )
        assert [f.name for f in fields] == ["page3_field_1", "page3_field_2"]
        assert all(f.page_index == 2 for f in fields)

    def test_right_to_left(self, letter_page):
        fields = detect_fields_for_page(
            [item("__________", x=300.0, direction="rtl")],
            letter_page,
            LETTER_MATRIX,
        )
        assert len(fields) == 1
        assert fields[0].x == pytest.approx(300.0)
        assert fields[0].width == pytest.approx(75.0)

    def test_glyph_widths_replace_uniform_widths(self, letter_page):
        text = "ab__________"
        metrics = GlyphMetrics(
            total_units=7000.0,
            segments=(GlyphSegment(0, 1, 1000.0), GlyphSegment(1, 2, 1000.0))
            + tuple(GlyphSegment(i, i + 1, 500.0) for i in range(2, 12)),
        )
        fields = detect_fields_for_page(
            [item(text, width=70.0)],
            letter_page,
            LETTER_MATRIX,
            measure=lambda _item: metrics,
        )
        assert fields[0].x == pytest.approx((72.0 + 20.0) * 1.25)
        assert fields[0].width == pytest.approx(50.0 * 1.25)

    def test_unavailable_glyphs_fall_back(self, letter_page):
        fields = detect_fields_for_page(
            [item("Name: __________ Date: ____", width=162.0)],
            letter_page,
            LETTER_MATRIX,
            measure=lambda _item: Unavailable("missing font"),
        )
        assert fields[0].x == pytest.approx(135.0)

    def test_zero_width_item_is_skipped(self, letter_page):
        fields = detect_fields_for_page(
            [item("__________", width=0.0)], letter_page, LETTER_MATRIX
        )
        assert fields == []

    def test_degenerate_transform_uses_default_height(self, letter_page):
        degenerate = TextItem("__________", (0.0, 0.0, 0.0, 0.0, 72.0, 700.0), 60.0)
        fields = detect_fields_for_page([degenerate], letter_page, LETTER_MATRIX)
        assert len(fields) == 1
        assert fields[0].height == pytest.approx(14.0)

    def test_right_edge_is_clamped(self, letter_page):
        fields = detect_fields_for_page(
            [item("__________", x=600.0)], letter_page, LETTER_MATRIX
        )
        field = fields[0]
        assert field.width == pytest.approx(20.0)
        assert field.x + field.width == pytest.approx(letter_page.width)

    @pytest.mark.parametrize(
        "x, y", [(0.0, 0.0), (72.0, 700.0), (-50.0, 800.0), (590.0, 5.0)]
    )
    def test_fields_fit_page(self, letter_page, x, y):
        fields = detect_fields_for_page(
            [item("________________", x=x, y=y)], letter_page, LETTER_MATRIX
        )
        for field in fields:
            assert field_fits_page(field, letter_page, min_width=20, min_height=14)

    def test_short_runs_ignored(self, letter_page):
        assert detect_fields_for_page(
            [item("Date: ____")], letter_page, LETTER_MATRIX
        ) == []


class TestGlyphs:
    def test_builtin_font_metrics(self):
        metrics = glyph_metrics(fitz.Font("helv"), "a__")
        assert isinstance(metrics, GlyphMetrics)
        assert len(metrics.segments) == 3
        assert metrics.total_units == pytest.approx(
            sum(s.width for s in metrics.segments)
        )

    def test_empty_text_unavailable(self):
        assert isinstance(glyph_metrics(fitz.Font("helv"), ""), Unavailable)

    def test_resolver_without_font_name(self, plain_pdf):
        with fitz.open(stream=plain_pdf, filetype="pdf") as doc:
            resolver = FontResolver(doc)
            assert isinstance(resolver.measure(item("____")), Unavailable)


class TestDetectFields:
    def test_blank_form(self, blank_form_record):
        fields = detect_fields(blank_form_record.data, blank_form_record.pages)
        names = [(f.page_index, f.name) for f in fields]
        assert names == [
            (0, "page1_field_1"),
            (0, "page1_field_2"),
            (1, "page2_field_1"),
        ]
        assert fields[0].x == pytest.approx(90.0, abs=1.0)
        for f in fields:
            page = blank_form_record.page(f.page_index)
            assert field_fits_page(f, page, min_width=20, min_height=14)

    def test_plain_document(self, plain_record):
        assert detect_fields(plain_record.data, plain_record.pages) == []

    def test_garbage_bytes(self, letter_page):
        with pytest.raises(DetectionFailure):
            detect_fields(b"not a pdf", [letter_page], file_name="bad.pdf")


def broken_record(letter_page) -> DocumentRecord:
    return DocumentRecord(
        id="broken", file_name="broken.pdf", data=b"not a pdf", pages=(letter_page,)
    )


class TestDetectionTask:
    def test_merges_into_store(self, blank_form_record, plain_record):
        store = DocumentStore()
        store.add_document(blank_form_record)
        store.add_document(plain_record)

        report = DetectionTask(store).run()

        assert report.added == {blank_form_record.id: 3, plain_record.id: 0}
        assert report.total_added == 3
        assert report.warning is None
        assert len(store.snapshot.get(blank_form_record.id).fields) == 3

    def test_second_run_adds_nothing(self, blank_form_record):
        store = DocumentStore()
        store.add_document(blank_form_record)
        DetectionTask(store).run()
        report = DetectionTask(store).run()
        assert report.total_added == 0
        assert len(store.snapshot.get(blank_form_record.id).fields) == 3

    def test_keeps_manual_fields(self, blank_form_record):
        store = DocumentStore()
        store.add_document(blank_form_record)
        manual = make_field(x=400, y=600)
        store.add_field(blank_form_record.id, manual)
        DetectionTask(store).run()
        assert store.snapshot.get(blank_form_record.id).fields[0] == manual

    def test_cancel_before_run(self, blank_form_record):
        store = DocumentStore()
        store.add_document(blank_form_record)
        version = store.snapshot.version

        task = DetectionTask(store)
        task.cancel()
        report = task.run()

        assert report.cancelled
        assert store.snapshot.version == version
        assert store.snapshot.get(blank_form_record.id).fields == ()

    def test_cancel_between_documents(self, blank_form_record, blank_form_pdf):
        second = ingest_bytes("second.pdf", blank_form_pdf)
        store = DocumentStore()
        store.add_document(blank_form_record)
        store.add_document(second)
        task = DetectionTask(store)

        def cancel_after_first_merge(snapshot):
            if snapshot.get(blank_form_record.id).fields:
                task.cancel()

        store.subscribe(cancel_after_first_merge)
        report = task.run()

        assert report.cancelled
        assert report.added == {blank_form_record.id: 3}
        assert len(store.snapshot.get(blank_form_record.id).fields) == 3
        assert store.snapshot.get(second.id).fields == ()

    def test_failure_is_isolated(self, blank_form_record, letter_page):
        store = DocumentStore()
        store.add_document(broken_record(letter_page))
        store.add_document(blank_form_record)

        report = DetectionTask(store).run()

        assert [f.file_name for f in report.failures] == ["broken.pdf"]
        assert report.warning is not None
        assert report.added == {blank_form_record.id: 3}

    def test_selected_documents_only(self, blank_form_record, plain_record):
        store = DocumentStore()
        store.add_document(blank_form_record)
        store.add_document(plain_record)
        report = DetectionTask(store, document_ids=[plain_record.id]).run()
        assert report.added == {plain_record.id: 0}
        assert store.snapshot.get(blank_form_record.id).fields == ()

    def test_background_thread(self, blank_form_record):
        store = DocumentStore()
        store.add_document(blank_form_record)
        task = DetectionTask(store)
        task.start().join(timeout=30)
        assert task.done
        assert task.report.total_added == 3
