import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from .archive import ArchiveEntry, create_zip
from .errors import EmptyExportFailure, ExportFailure
from .settings import Settings
from .store import DocumentRecord
from .synthesis import build_fillable_pdf

logger = logging.getLogger(__name__)

PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def export_name(file_name: str) -> str:
    """'Form.PDF' -> 'Form-fillable.pdf'"""
    return PDF_SUFFIX.sub("", file_name) + "-fillable.pdf"


def export_one(record: DocumentRecord, settings: Optional[Settings] = None) -> bytes:
    if not record.fields:
        raise EmptyExportFailure("Nothing to export yet. Add fields first.")
    return build_fillable_pdf(
        record.data, record.pages, record.fields, settings, record.file_name
    )


@dataclass
class BatchExport:
    data: bytes
    names: List[str] = field(default_factory=list)
    failures: List[ExportFailure] = field(default_factory=list)


def export_all(
    records: Sequence[DocumentRecord],
    settings: Optional[Settings] = None,
    timestamp: Optional[datetime] = None,
) -> BatchExport:
    """Export every document that has fields into one ZIP archive.

    A document that fails to export is reported in the result and left out of
    the archive; the others are still exported.
    """
    timestamp = timestamp or datetime.now()
    entries: List[ArchiveEntry] = []
    failures: List[ExportFailure] = []

    for record in records:
        if not record.fields:
            continue
        try:
            data = export_one(record, settings)
        except ExportFailure as e:
            logger.error("%s", e)
            failures.append(e)
            continue
        entries.append(ArchiveEntry(export_name(record.file_name), data, timestamp))

    if not entries:
        if failures:
            raise ExportFailure(
                ", ".join(f.file_name for f in failures),
                "Failed to export all documents.",
            )
        raise EmptyExportFailure(
            "No fields found to export. Add fields before exporting."
        )

    return BatchExport(
        data=create_zip(entries),
        names=[entry.name for entry in entries],
        failures=failures,
    )
