from __future__ import annotations

import dataclasses
import threading

import pytest

from conftest import make_field
from fillable_pdf.fields import FieldPatch, PageMeta
from fillable_pdf.store import DocumentRecord, DocumentStore


class FakeHandle:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def record(doc_id="doc", pages=2, **kwargs) -> DocumentRecord:
    metas = tuple(PageMeta.from_original(i, 612, 792, 1.25) for i in range(pages))
    return DocumentRecord(
        id=doc_id, file_name=f"{doc_id}.pdf", data=b"%PDF", pages=metas, **kwargs
    )


@pytest.fixture
def store() -> DocumentStore:
    store = DocumentStore()
    store.add_document(record())
    return store


class TestDocuments:
    def test_added_document_becomes_active(self):
        store = DocumentStore()
        store.add_document(record("a"))
        store.add_document(record("b"))
        assert store.snapshot.active_document_id == "b"
        assert [d.id for d in store.snapshot.documents] == ["a", "b"]

    def test_duplicate_id_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_document(record())

    def test_remove_active_moves_to_first(self):
        store = DocumentStore()
        for doc_id in ("a", "b", "c"):
            store.add_document(record(doc_id))
        store.remove_document("c")
        assert store.snapshot.active_document_id == "a"
        store.remove_document("a")
        store.remove_document("b")
        assert store.snapshot.active_document_id is None

    def test_remove_closes_handle(self):
        handle = FakeHandle()
        store = DocumentStore()
        store.add_document(record(handle=handle))
        store.remove_document("doc")
        assert handle.closed

    def test_clear(self):
        handles = [FakeHandle(), FakeHandle()]
        store = DocumentStore()
        store.add_document(record("a", handle=handles[0]))
        store.add_document(record("b", handle=handles[1]))
        store.clear()
        assert store.snapshot.documents == ()
        assert all(h.closed for h in handles)

    def test_set_active_ignores_unknown(self, store):
        version = store.snapshot.version
        store.set_active_document("missing")
        assert store.snapshot.version == version


class TestFields:
    def test_add_selects_field(self, store):
        field = make_field()
        store.add_field("doc", field)
        document = store.snapshot.get("doc")
        assert document.fields == (field,)
        assert document.selected_field == field

    def test_add_on_unknown_page(self, store):
        with pytest.raises(ValueError):
            store.add_field("doc", make_field(page_index=5))

    def test_update(self, store):
        field = make_field()
        store.add_field("doc", field)
        store.update_field("doc", field.id, FieldPatch(x=10.0, multiline=True))
        updated = store.snapshot.get("doc").get_field(field.id)
        assert (updated.x, updated.multiline, updated.y) == (10.0, True, field.y)

    def test_update_unknown_field_is_noop(self, store):
        version = store.snapshot.version
        store.update_field("doc", "missing", FieldPatch(x=1.0))
        assert store.snapshot.get("doc").fields == ()
        assert store.snapshot.version == version

    def test_rename_blank_uses_fallback(self, store):
        field = make_field(id="abcdef0123456789")
        store.add_field("doc", field)
        store.rename_field("doc", field.id, "  ")
        assert store.snapshot.get("doc").get_field(field.id).name == "page1_field_6789"

    def test_remove_clears_selection(self, store):
        first, second = make_field(), make_field(x=300)
        store.add_field("doc", first)
        store.add_field("doc", second)
        store.remove_field("doc", second.id)
        document = store.snapshot.get("doc")
        assert document.fields == (first,)
        assert document.selected_field_id is None

    def test_select(self, store):
        first, second = make_field(), make_field(x=300)
        store.set_fields("doc", [first, second])
        assert store.snapshot.get("doc").selected_field_id == second.id
        store.select_field("doc", first.id)
        assert store.snapshot.get("doc").selected_field_id == first.id
        store.select_field("doc", "missing")
        assert store.snapshot.get("doc").selected_field_id == first.id
        store.select_field("doc", None)
        assert store.snapshot.get("doc").selected_field_id is None


class TestMerge:
    def test_near_duplicate_discarded(self, store):
        existing = make_field(x=100, y=100)
        store.add_field("doc", existing)
        near = make_field(x=105, y=103)
        far = make_field(x=300, y=100)

        accepted = store.merge_fields("doc", [near, far])

        assert accepted == [far]
        assert store.snapshot.get("doc").fields == (existing, far)

    def test_other_page_is_not_duplicate(self, store):
        store.add_field("doc", make_field(page_index=0))
        accepted = store.merge_fields("doc", [make_field(page_index=1)])
        assert len(accepted) == 1

    def test_idempotent(self, store):
        candidates = [make_field(x=100), make_field(x=400)]
        store.merge_fields("doc", candidates)
        assert store.merge_fields("doc", candidates) == []
        assert len(store.snapshot.get("doc").fields) == 2

    def test_order_decides_which_candidate_wins(self, store):
        a, b = make_field(x=100, name="a"), make_field(x=105, name="b")
        assert store.merge_fields("doc", [a, b]) == [a]

        other = DocumentStore()
        other.add_document(record())
        assert other.merge_fields("doc", [b, a]) == [b]

    def test_unknown_page_skipped(self, store):
        assert store.merge_fields("doc", [make_field(page_index=9)]) == []

    def test_last_field_selected(self, store):
        candidates = [make_field(x=100), make_field(x=400)]
        store.merge_fields("doc", candidates)
        assert store.snapshot.get("doc").selected_field_id == candidates[-1].id


class TestSnapshots:
    def test_old_snapshot_unchanged(self, store):
        before = store.snapshot
        store.add_field("doc", make_field())
        assert before.get("doc").fields == ()
        assert store.snapshot.version == before.version + 1

    def test_snapshot_is_frozen(self, store):
        with pytest.raises(dataclasses.FrozenInstanceError):
            store.snapshot.version = 99

    def test_subscriber(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.add_field("doc", make_field())
        unsubscribe()
        store.add_field("doc", make_field(x=300))
        assert len(seen) == 1
        assert len(seen[0].get("doc").fields) == 1

    def test_nested_mutation_notifies_once(self, store):
        field = make_field()
        store.add_field("doc", field)
        seen = []
        store.subscribe(seen.append)
        store.rename_field("doc", field.id, "renamed")
        assert len(seen) == 1
        assert seen[0].get("doc").get_field(field.id).name == "renamed"

    def test_unchanged_snapshot_not_published(self, store):
        seen = []
        store.subscribe(seen.append)
        store.update_field("doc", "missing", FieldPatch(x=1.0))
        assert seen == []

    def test_subscriber_runs_after_lock_is_released(self, store):
        field = make_field()
        store.add_field("doc", field)
        started = []
        finished = []

        def on_change(snapshot):
            if started:
                return
            started.append(True)
            other = threading.Thread(target=store.select_field, args=("doc", None))
            other.start()
            other.join(timeout=5)
            finished.append(not other.is_alive())

        store.subscribe(on_change)
        store.update_field("doc", field.id, FieldPatch(x=1.0))

        assert finished == [True]
        assert store.snapshot.get("doc").selected_field_id is None
