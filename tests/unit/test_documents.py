from __future__ import annotations

from pathlib import Path

import pytest

from workflow_hub.errors import ConflictError, StorageError
from workflow_hub.store.documents import Document, JsonCollection


class Note(Document):
    text: str = ""


def _collection(tmp_path: Path) -> JsonCollection[Note]:
    return JsonCollection(tmp_path / "notes.json", Note, name="notes")


def test_missing_file_is_empty(tmp_path: Path) -> None:
    assert _collection(tmp_path).find(lambda doc: True) == []


def test_insert_get_roundtrip(tmp_path: Path) -> None:
    notes = _collection(tmp_path)
    notes.insert(Note(id="n1", text="hello"))

    reopened = _collection(tmp_path)
    assert reopened.get("n1") == Note(id="n1", version=1, text="hello")
    assert reopened.get("missing") is None


def test_insert_rejects_existing_id(tmp_path: Path) -> None:
    notes = _collection(tmp_path)
    notes.insert(Note(id="n1"))
    with pytest.raises(StorageError):
        notes.insert(Note(id="n1"))


def test_replace_is_compare_and_swap(tmp_path: Path) -> None:
    notes = _collection(tmp_path)
    original = notes.insert(Note(id="n1", text="a"))

    stored = notes.replace(original.model_copy(update={"text": "b"}), expected_version=1)
    assert stored.version == 2

    with pytest.raises(ConflictError) as excinfo:
        notes.replace(original.model_copy(update={"text": "stale"}), expected_version=1)
    assert excinfo.value.details["actual_version"] == 2
    assert notes.get("n1").text == "b"


def test_update_retries_after_a_conflict(tmp_path: Path) -> None:
    notes = _collection(tmp_path)
    notes.insert(Note(id="n1", text=""))
    interfered = []

    def mutate(note: Note) -> Note:
        if not interfered:
            # Simulate a concurrent writer between read and write.
            interfered.append(True)
            notes.replace(note.model_copy(update={"text": "other"}), expected_version=note.version)
        return note.model_copy(update={"text": note.text + "+mine"})

    stored = notes.update("n1", mutate, attempts=2)
    assert stored.text == "other+mine"
    assert stored.version == 3


def test_update_gives_up_after_attempts(tmp_path: Path) -> None:
    notes = _collection(tmp_path)
    notes.insert(Note(id="n1"))

    def always_conflicting(note: Note) -> Note:
        notes.replace(note, expected_version=note.version)
        return note

    with pytest.raises(ConflictError):
        notes.update("n1", always_conflicting, attempts=3)


def test_delete_checks_version(tmp_path: Path) -> None:
    notes = _collection(tmp_path)
    notes.insert(Note(id="n1"))
    with pytest.raises(ConflictError):
        notes.delete("n1", expected_version=5)
    notes.delete("n1", expected_version=1)
    assert notes.get("n1") is None


@pytest.mark.parametrize("content", ["{not json", '{"id": "n1"}', '[{"version": 1}]'])
def test_corrupt_file_raises_storage_error(tmp_path: Path, content: str) -> None:
    (tmp_path / "notes.json").write_text(content, encoding="utf-8")
    with pytest.raises(StorageError):
        _collection(tmp_path).get("n1")
