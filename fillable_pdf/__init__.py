"""Detect underscore blanks in PDFs and export them as fillable form fields."""

from .archive import ArchiveEntry, compute_crc32, create_zip
from .detection import DetectionTask, detect_fields, detect_fields_for_page
from .errors import (
    DetectionFailure,
    EmptyExportFailure,
    ExportFailure,
    FillablePdfError,
    IngestFailure,
)
from .export import BatchExport, export_all, export_name, export_one
from .fields import Field, FieldPatch, PageMeta, drag_rect
from .ingest import ingest_bytes, ingest_files
from .settings import Settings, load_settings
from .store import DocumentRecord, DocumentStore, StoreSnapshot
from .synthesis import build_fillable_pdf

__version__ = "0.1.0"

__all__ = [
    "ArchiveEntry",
    "BatchExport",
    "DetectionFailure",
    "DetectionTask",
    "DocumentRecord",
    "DocumentStore",
    "EmptyExportFailure",
    "ExportFailure",
    "Field",
    "FieldPatch",
    "FillablePdfError",
    "IngestFailure",
    "PageMeta",
    "Settings",
    "StoreSnapshot",
    "build_fillable_pdf",
    "compute_crc32",
    "create_zip",
    "detect_fields",
    "detect_fields_for_page",
    "drag_rect",
    "export_all",
    "export_name",
    "export_one",
    "ingest_bytes",
    "ingest_files",
    "load_settings",
]
