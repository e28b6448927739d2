from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from .detection import DetectionTask
from .errors import EmptyExportFailure, ExportFailure
from .export import export_all, export_name, export_one
from .fields import Field
from .ingest import ingest_files
from .settings import configure_logging, load_settings
from .store import DocumentStore


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fillable-pdf")
    p.add_argument("--config", default=None, help="Settings JSON path")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="Print detected blank fields as JSON")
    detect.add_argument("files", nargs="+", help="PDF files")

    export = sub.add_parser("export", help="Write fillable PDF(s)")
    export.add_argument("files", nargs="+", help="PDF files")
    export.add_argument("-o", "--out", required=True, help="Output .pdf or .zip path")
    export.add_argument(
        "--fields",
        default=None,
        help="JSON of edited fields keyed by file name (as printed by 'detect')",
    )
    export.add_argument(
        "--no-detect", action="store_true", help="Only use fields from --fields"
    )

    return p


def _load_store(args: argparse.Namespace) -> Optional[DocumentStore]:
    settings = load_settings(args.config)
    store = DocumentStore(settings)
    records, failures = ingest_files(args.files, settings.render_scale)
    for failure in failures:
        print(str(failure), file=sys.stderr)
    if not records:
        return None
    for record in records:
        store.add_document(record)
    return store


def _run_detection(store: DocumentStore) -> None:
    report = DetectionTask(store).run()
    if report.warning:
        print(report.warning, file=sys.stderr)


def cmd_detect(args: argparse.Namespace) -> int:
    store = _load_store(args)
    if store is None:
        return 1
    _run_detection(store)

    out = {
        document.file_name: [f.to_dict() for f in document.fields]
        for document in store.snapshot.documents
    }
    print(json.dumps(out, indent=2))
    return 0


def _apply_edited_fields(store: DocumentStore, path: str) -> None:
    """Replace detected fields with the ones in an edited JSON file.

    Raises OSError when the file cannot be read, ValueError when it is not
    valid JSON, and KeyError, TypeError or ValueError for malformed entries.
    """
    with open(path, "r") as f:
        edited = json.load(f)
    if not isinstance(edited, dict):
        raise ValueError("expected an object keyed by file name")
    parsed = {}
    for document in store.snapshot.documents:
        entries = edited.get(document.file_name)
        if entries is None:
            continue
        fields = [Field.from_dict(entry) for entry in entries]
        parsed[document.id] = [
            f for f in fields if document.page(f.page_index) is not None
        ]

    for document_id, fields in parsed.items():
        store.set_fields(document_id, fields)


def cmd_export(args: argparse.Namespace) -> int:
    store = _load_store(args)
    if store is None:
        return 1
    if not args.no_detect:
        _run_detection(store)
    if args.fields:
        try:
            _apply_edited_fields(store, args.fields)
        except (OSError, KeyError, TypeError, ValueError) as e:
            print(
                f"Cannot use edited fields from {args.fields}: {e!r}", file=sys.stderr
            )
            return 1

    documents = store.snapshot.documents
    try:
        if len(documents) == 1:
            data = export_one(documents[0], store.settings)
            out = args.out
            if os.path.isdir(out):
                out = os.path.join(out, export_name(documents[0].file_name))
        else:
            batch = export_all(documents, store.settings)
            for failure in batch.failures:
                print(str(failure), file=sys.stderr)
            data = batch.data
            out = args.out
            if os.path.isdir(out):
                out = os.path.join(out, store.settings.archive_name)
    except (EmptyExportFailure, ExportFailure) as e:
        print(str(e), file=sys.stderr)
        return 1

    with open(out, "wb") as f:
        f.write(data)
    print(out)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if args.command == "detect":
        return cmd_detect(args)
    if args.command == "export":
        return cmd_export(args)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
