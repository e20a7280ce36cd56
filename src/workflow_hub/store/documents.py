"""JSON-file backed document collections.

Each collection is one JSON list on disk. Reads and read-modify-write cycles
are serialized per collection with a lock, and every replace/delete is a
compare-and-swap on the document ``version``: the write only happens when the
stored version equals the expected one, and a successful replace increments it.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from workflow_hub.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Document(BaseModel):
    """Base for persisted documents."""

    id: str
    version: int = Field(default=1, ge=1)


DocT = TypeVar("DocT", bound=Document)


class JsonCollection(Generic[DocT]):
    """A collection of ``model`` documents persisted to ``path``."""

    def __init__(self, path: Path, model: type[DocT], *, name: str | None = None) -> None:
        self._path = path
        self._model = model
        self._lock = threading.Lock()
        self.name = name or model.__name__

    # ------------------------------------------------------------------
    def _load_unlocked(self) -> list[DocT]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StorageError(
                f"{self.name} collection file is not valid JSON", path=str(self._path)
            ) from e
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise StorageError(
                f"{self.name} collection file has unexpected shape", path=str(self._path)
            )
        try:
            return [self._model.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            raise StorageError(
                f"{self.name} collection contains an invalid document", path=str(self._path)
            ) from e

    def _save_unlocked(self, docs: Iterable[DocT]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [d.model_dump(mode="json") for d in docs]
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self._path)

    # ------------------------------------------------------------------
    # Queries
    def find(self, predicate: Callable[[DocT], bool]) -> list[DocT]:
        with self._lock:
            return [d for d in self._load_unlocked() if predicate(d)]

    def count(self, predicate: Callable[[DocT], bool]) -> int:
        return len(self.find(predicate))

    def get(self, doc_id: str) -> DocT | None:
        with self._lock:
            for doc in self._load_unlocked():
                if doc.id == doc_id:
                    return doc
            return None

    # ------------------------------------------------------------------
    # Writes
    def insert(self, doc: DocT) -> DocT:
        with self._lock:
            docs = self._load_unlocked()
            if any(d.id == doc.id for d in docs):
                raise StorageError(f"{self.name} document {doc.id!r} already exists", doc_id=doc.id)
            docs.append(doc)
            self._save_unlocked(docs)
            return doc

    def replace(self, doc: DocT, *, expected_version: int) -> DocT:
        """Replace the stored document if it is still at ``expected_version``."""

        with self._lock:
            docs = self._load_unlocked()
            for idx, existing in enumerate(docs):
                if existing.id != doc.id:
                    continue
                if existing.version != expected_version:
                    raise ConflictError(self.name, doc.id, expected_version, existing.version)
                stored = doc.model_copy(update={"version": expected_version + 1})
                docs[idx] = stored
                self._save_unlocked(docs)
                return stored
            raise StorageError(f"{self.name} document {doc.id!r} vanished", doc_id=doc.id)

    def update(
        self, doc_id: str, mutate: Callable[[DocT], DocT], *, attempts: int = 1
    ) -> DocT:
        """Read-modify-write ``doc_id`` through ``mutate``, retrying on conflicts.

        ``mutate`` may run more than once and must not have side effects.
        """

        for attempt in range(1, attempts + 1):
            current = self.get(doc_id)
            if current is None:
                raise StorageError(f"{self.name} document {doc_id!r} vanished", doc_id=doc_id)
            try:
                return self.replace(mutate(current), expected_version=current.version)
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.debug(
                    "Version conflict, retrying",
                    extra={"collection": self.name, "doc_id": doc_id, "attempt": attempt},
                )
        raise AssertionError("unreachable")

    def delete(self, doc_id: str, *, expected_version: int) -> None:
        with self._lock:
            docs = self._load_unlocked()
            for idx, existing in enumerate(docs):
                if existing.id != doc_id:
                    continue
                if existing.version != expected_version:
                    raise ConflictError(self.name, doc_id, expected_version, existing.version)
                del docs[idx]
                self._save_unlocked(docs)
                return
            raise StorageError(f"{self.name} document {doc_id!r} vanished", doc_id=doc_id)
