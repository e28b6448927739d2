"""Versioned in-memory state for open documents and their fields.

Every mutation builds a new immutable snapshot under a single lock, so a
reader holding a snapshot never sees a half-applied change. Subscribers are
called on the mutating thread once the lock is released.
"""

import functools
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Tuple

from .fields import Field, FieldPatch, PageMeta, normalize_field_name
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentRecord:
    """One opened PDF with its page geometry and fields"""

    id: str
    file_name: str
    data: bytes
    pages: Tuple[PageMeta, ...]
    fields: Tuple[Field, ...] = ()
    selected_field_id: Optional[str] = None
    # Open PyMuPDF document used for rendering, closed on removal
    handle: object = field(default=None, compare=False, repr=False)

    def page(self, index: int) -> Optional[PageMeta]:
        if 0 <= index < len(self.pages) and self.pages[index].index == index:
            return self.pages[index]
        for meta in self.pages:
            if meta.index == index:
                return meta
        return None

    def get_field(self, field_id: Optional[str]) -> Optional[Field]:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None

    def fields_on_page(self, index: int) -> List[Field]:
        return [f for f in self.fields if f.page_index == index]

    @property
    def selected_field(self) -> Optional[Field]:
        return self.get_field(self.selected_field_id)


@dataclass(frozen=True)
class StoreSnapshot:
    version: int = 0
    documents: Tuple[DocumentRecord, ...] = ()
    active_document_id: Optional[str] = None

    def get(self, document_id: Optional[str]) -> Optional[DocumentRecord]:
        for document in self.documents:
            if document.id == document_id:
                return document
        return None

    @property
    def active_document(self) -> Optional[DocumentRecord]:
        return self.get(self.active_document_id)


def _close_handle(document: DocumentRecord) -> None:
    if document.handle is None:
        return
    try:
        document.handle.close()
    except (RuntimeError, ValueError) as e:
        logger.debug("Closing %s failed: %s", document.file_name, e)


def _mutation(method):
    """Run a store mutation under the lock and notify subscribers afterwards.

    Nested mutations on the same thread notify once, for the outermost call.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        depth = getattr(self._local, "depth", 0)
        self._local.depth = depth + 1
        try:
            with self._lock:
                before = self._snapshot
                result = method(self, *args, **kwargs)
                after = self._snapshot
        finally:
            self._local.depth = depth
        if depth == 0 and after is not before:
            for callback in list(self._subscribers):
                callback(after)
        return result

    return wrapper


def is_duplicate(
    candidate: Field, existing: Sequence[Field], settings: Settings
) -> bool:
    return any(
        other.page_index == candidate.page_index
        and abs(other.x - candidate.x) < settings.merge_max_dx
        and abs(other.y - candidate.y) < settings.merge_max_dy
        and abs(other.width - candidate.width) < settings.merge_max_dwidth
        for other in existing
    )


class DocumentStore:
    """Owns the document collection and applies named mutations to it"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._snapshot = StoreSnapshot()
        self._lock = threading.RLock()
        self._local = threading.local()
        self._subscribers: List[Callable[[StoreSnapshot], None]] = []

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    def subscribe(self, callback: Callable[[StoreSnapshot], None]) -> Callable[[], None]:
        """Register a callback for new snapshots; returns an unsubscribe function"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _commit(self, **changes) -> StoreSnapshot:
        snapshot = replace(
            self._snapshot, version=self._snapshot.version + 1, **changes
        )
        self._snapshot = snapshot
        return snapshot

    def _update_document(self, document_id: str, updater) -> StoreSnapshot:
        with self._lock:
            documents = self._snapshot.documents
            if not any(d.id == document_id for d in documents):
                return self._snapshot
            updated = tuple(
                updater(d) if d.id == document_id else d for d in documents
            )
            if all(new is old for new, old in zip(updated, documents)):
                return self._snapshot
            return self._commit(documents=updated)

    # Documents

    @_mutation
    def add_document(self, record: DocumentRecord) -> StoreSnapshot:
        with self._lock:
            if self._snapshot.get(record.id) is not None:
                raise ValueError(f"duplicate document id {record.id}")
            return self._commit(
                documents=self._snapshot.documents + (record,),
                active_document_id=record.id,
            )

    @_mutation
    def remove_document(self, document_id: str) -> StoreSnapshot:
        with self._lock:
            target = self._snapshot.get(document_id)
            if target is None:
                return self._snapshot
            remaining = tuple(
                d for d in self._snapshot.documents if d.id != document_id
            )
            active = self._snapshot.active_document_id
            if active == document_id:
                active = remaining[0].id if remaining else None
            snapshot = self._commit(documents=remaining, active_document_id=active)
        _close_handle(target)
        return snapshot

    @_mutation
    def clear(self) -> StoreSnapshot:
        with self._lock:
            removed = self._snapshot.documents
            snapshot = self._commit(documents=(), active_document_id=None)
        for document in removed:
            _close_handle(document)
        return snapshot

    @_mutation
    def set_active_document(self, document_id: str) -> StoreSnapshot:
        with self._lock:
            if self._snapshot.get(document_id) is None:
                return self._snapshot
            return self._commit(active_document_id=document_id)

    # Fields

    @_mutation
    def add_field(self, document_id: str, new_field: Field) -> StoreSnapshot:
        with self._lock:
            document = self._snapshot.get(document_id)
            if document is not None and document.page(new_field.page_index) is None:
                raise ValueError(
                    f"field {new_field.id} references unknown page "
                    f"{new_field.page_index}"
                )
            return self._update_document(
                document_id,
                lambda d: replace(
                    d, fields=d.fields + (new_field,), selected_field_id=new_field.id
                ),
            )

    @_mutation
    def update_field(
        self, document_id: str, field_id: str, patch: FieldPatch
    ) -> StoreSnapshot:
        def updater(document: DocumentRecord) -> DocumentRecord:
            if document.get_field(field_id) is None:
                return document
            return replace(
                document,
                fields=tuple(
                    f.apply(patch) if f.id == field_id else f for f in document.fields
                ),
            )

        return self._update_document(document_id, updater)

    @_mutation
    def rename_field(self, document_id: str, field_id: str, name: str) -> StoreSnapshot:
        """Commit an edited name, replacing a blank one with a generated name"""
        document = self._snapshot.get(document_id)
        target = document.get_field(field_id) if document else None
        if target is None:
            return self._snapshot
        return self.update_field(
            document_id, field_id, FieldPatch(name=normalize_field_name(target, name))
        )

    @_mutation
    def remove_field(self, document_id: str, field_id: str) -> StoreSnapshot:
        return self._update_document(
            document_id,
            lambda d: replace(
                d,
                fields=tuple(f for f in d.fields if f.id != field_id),
                selected_field_id=(
                    None if d.selected_field_id == field_id else d.selected_field_id
                ),
            ),
        )

    @_mutation
    def set_fields(self, document_id: str, fields: Sequence[Field]) -> StoreSnapshot:
        fields = tuple(fields)
        return self._update_document(
            document_id,
            lambda d: replace(
                d,
                fields=fields,
                selected_field_id=fields[-1].id if fields else None,
            ),
        )

    @_mutation
    def merge_fields(self, document_id: str, candidates: Sequence[Field]) -> List[Field]:
        """Append candidates that do not duplicate a field already present.

        Candidates are compared against existing fields and against candidates
        accepted earlier in the same call, in the order given. Returns the
        accepted candidates.
        """
        accepted: List[Field] = []

        def updater(document: DocumentRecord) -> DocumentRecord:
            combined = list(document.fields)
            for candidate in candidates:
                if document.page(candidate.page_index) is None:
                    continue
                if not is_duplicate(candidate, combined, self.settings):
                    combined.append(candidate)
                    accepted.append(candidate)
            return replace(
                document,
                fields=tuple(combined),
                selected_field_id=combined[-1].id if combined else None,
            )

        self._update_document(document_id, updater)
        logger.debug(
            "Merged %d of %d candidate(s) into %s",
            len(accepted),
            len(candidates),
            document_id,
        )
        return accepted

    @_mutation
    def select_field(self, document_id: str, field_id: Optional[str]) -> StoreSnapshot:
        document = self._snapshot.get(document_id)
        if document is None:
            return self._snapshot
        if field_id is not None and document.get_field(field_id) is None:
            return self._snapshot
        return self._update_document(
            document_id, lambda d: replace(d, selected_field_id=field_id)
        )

