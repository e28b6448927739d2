import logging
import os
import uuid
from typing import Iterable, List, Tuple

from .errors import IngestFailure
from .pdf_access import open_pdf, page_metas
from .settings import Settings
from .store import DocumentRecord

logger = logging.getLogger(__name__)

DEFAULT_SCALE = Settings.render_scale


def ingest_bytes(
    file_name: str,
    data: bytes,
    scale: float = DEFAULT_SCALE,
    keep_open: bool = False,
) -> DocumentRecord:
    """Build a document record from raw PDF bytes.

    With keep_open the PyMuPDF document stays open on the record for
    rendering; the store closes it when the record is removed.
    """
    if not file_name.lower().endswith(".pdf"):
        raise IngestFailure(file_name, "Please upload PDF documents (.pdf).")

    data = bytes(data)
    try:
        doc = open_pdf(data)
    except Exception as e:
        raise IngestFailure(file_name, "Make sure the file is not corrupted.") from e

    try:
        if doc.needs_pass:
            raise IngestFailure(file_name, "Encrypted PDF not supported")
        if doc.page_count == 0:
            raise IngestFailure(file_name, "PDF has no pages")
        pages = tuple(page_metas(doc, scale))
    except IngestFailure:
        doc.close()
        raise
    except Exception as e:
        doc.close()
        raise IngestFailure(file_name, "Make sure the file is not corrupted.") from e

    handle = doc
    if not keep_open:
        doc.close()
        handle = None

    logger.info("Loaded %s (%d page(s))", file_name, len(pages))
    return DocumentRecord(
        id=uuid.uuid4().hex,
        file_name=file_name,
        data=data,
        pages=pages,
        handle=handle,
    )


def ingest_files(
    paths: Iterable[str],
    scale: float = DEFAULT_SCALE,
    keep_open: bool = False,
) -> Tuple[List[DocumentRecord], List[IngestFailure]]:
    """Read every file; a failing file is reported and the rest still load"""
    records: List[DocumentRecord] = []
    failures: List[IngestFailure] = []

    for path in paths:
        file_name = os.path.basename(path)
        try:
            if not file_name.lower().endswith(".pdf"):
                raise IngestFailure(file_name, "Please upload PDF documents (.pdf).")
            with open(path, "rb") as f:
                data = f.read()
            records.append(ingest_bytes(file_name, data, scale, keep_open))
        except OSError as e:
            failure = IngestFailure(file_name, str(e))
            logger.error("%s", failure)
            failures.append(failure)
        except IngestFailure as e:
            logger.error("%s", e)
            failures.append(e)

    return records, failures
