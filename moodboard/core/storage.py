"""JSON-backed implementation of :class:`~moodboard.adapters.base.DocumentStore`."""

from __future__ import annotations

import asyncio
import copy
import datetime
import json
import logging
import os
import uuid
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from typing import Any

from ..adapters.base import (
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    Document,
    DocumentStore,
    Increment,
    Unsubscribe,
)
from .errors import ConflictError, NotFoundError
from .timestamps import now_millis, to_millis

log = logging.getLogger(__name__)

_Listener = tuple[Callable[[list[Document]], None], str | None, bool]


class JSONDocumentStore(DocumentStore):
    """Keep collections in memory and mirror them to a JSON file.

    The storage is intentionally lightweight. When ``path`` is given the
    whole database is written atomically after every mutation, which keeps
    the implementation simple while providing durability across process
    restarts.  Without a path the store lives purely in memory.

    Each document carries a version counter that is bumped on every write;
    transactions compare it to detect concurrent modification.
    """

    def __init__(self, path: Path | str | None = None, max_attempts: int = 5) -> None:
        """Initialise storage, loading ``path`` if it already exists."""
        self.path = Path(path) if path is not None else None
        self.max_attempts = max_attempts
        self._collections: dict[str, dict[str, Document]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._listeners: dict[str, list[_Listener]] = {}
        if self.path is not None:
            if self.path.exists():
                self._load()
            else:
                self._save()

    # ------------------------------------------------------------------
    # Internal helpers
    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        self._collections = {
            name: dict(docs) for name, docs in data.get("collections", {}).items()
        }

    def _save(self) -> None:
        if self.path is None:
            return
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(
            json.dumps({"collections": self._collections}, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp, self.path)

    def _docs(self, collection: str) -> dict[str, Document]:
        return self._collections.setdefault(collection, {})

    def _bump(self, collection: str, doc_id: str) -> None:
        key = (collection, doc_id)
        self._versions[key] = self._versions.get(key, 0) + 1

    def version(self, collection: str, doc_id: str) -> int:
        """Current write counter of a document (0 if never written)."""
        return self._versions.get((collection, doc_id), 0)

    def _committed(self, collection: str) -> None:
        self._save()
        self._notify(collection)

    def _notify(self, collection: str) -> None:
        for callback, order_by, descending in list(self._listeners.get(collection, [])):
            try:
                callback(self._select(collection, (), order_by, descending))
            except Exception:
                log.exception("Listener on %s failed", collection)

    def _select(
        self,
        collection: str,
        where: Sequence[tuple[str, Any]],
        order_by: str | None,
        descending: bool,
        limit: int | None = None,
        start_at: Any = None,
        end_at: Any = None,
    ) -> list[Document]:
        rows = [
            _with_id(doc_id, doc)
            for doc_id, doc in self._docs(collection).items()
            if all(doc.get(field) == _plain(value) for field, value in where)
        ]
        if order_by is not None:
            # documents lacking the ordering field are left out
            rows = [r for r in rows if r.get(order_by) is not None]
            if start_at is not None:
                rows = [r for r in rows if r[order_by] >= start_at]
            if end_at is not None:
                rows = [r for r in rows if r[order_by] <= end_at]
            rows.sort(key=lambda r: r[order_by], reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    # ------------------------------------------------------------------
    # DocumentStore API
    async def get(self, collection: str, doc_id: str) -> Document | None:
        doc = self._docs(collection).get(doc_id)
        return _with_id(doc_id, doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._docs(collection)[doc_id] = _apply({}, data)
        self._bump(collection, doc_id)
        self._committed(collection)

    async def add(self, collection: str, data: Document) -> str:
        doc_id = uuid.uuid4().hex[:20]
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, updates: Document) -> None:
        docs = self._docs(collection)
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        docs[doc_id] = _apply(docs[doc_id], updates)
        self._bump(collection, doc_id)
        self._committed(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        if self._docs(collection).pop(doc_id, None) is None:
            return
        self._bump(collection, doc_id)
        self._committed(collection)

    async def query(
        self,
        collection: str,
        where: Sequence[tuple[str, Any]] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        start_at: Any = None,
        end_at: Any = None,
    ) -> list[Document]:
        return self._select(collection, where, order_by, descending, limit, start_at, end_at)

    async def run_transaction(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document],
    ) -> Document:
        docs = self._docs(collection)
        for attempt in range(1, self.max_attempts + 1):
            current = docs.get(doc_id)
            if current is None:
                raise NotFoundError(collection, doc_id)
            seen = self.version(collection, doc_id)
            updates = fn(_with_id(doc_id, current))
            # let other writers run between the read and the commit
            await asyncio.sleep(0)
            if doc_id not in docs or self.version(collection, doc_id) != seen:
                log.debug(
                    "Transaction on %s/%s collided (attempt %d)", collection, doc_id, attempt
                )
                continue
            docs[doc_id] = _apply(docs[doc_id], updates)
            self._bump(collection, doc_id)
            self._committed(collection)
            return _with_id(doc_id, docs[doc_id])
        raise ConflictError(
            f"{collection}/{doc_id} kept changing after {self.max_attempts} attempts"
        )

    def subscribe(
        self,
        collection: str,
        callback: Callable[[list[Document]], None],
        order_by: str | None = None,
        descending: bool = False,
    ) -> Unsubscribe:
        listener: _Listener = (callback, order_by, descending)
        self._listeners.setdefault(collection, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

        callback(self._select(collection, (), order_by, descending))
        return unsubscribe

    def listener_count(self, collection: str) -> int:
        return len(self._listeners.get(collection, []))

    async def delete_where(self, collection: str, field: str, value: Any) -> int:
        docs = self._docs(collection)
        doomed = [doc_id for doc_id, doc in docs.items() if doc.get(field) == _plain(value)]
        if not doomed:
            return 0
        for doc_id in doomed:
            del docs[doc_id]
            self._bump(collection, doc_id)
        self._committed(collection)
        return len(doomed)


def _with_id(doc_id: str, doc: Document) -> Document:
    row = copy.deepcopy(doc)
    row["id"] = doc_id
    return row


def _plain(value: Any) -> Any:
    """Convert a Python value to its stored JSON form."""
    if isinstance(value, datetime.datetime):
        return to_millis(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return value


def _apply(current: Document, updates: Document) -> Document:
    result = copy.deepcopy(current)
    for field, value in updates.items():
        if field == "id":
            continue
        existing = result.get(field)
        if isinstance(value, ArrayUnion):
            items = list(existing or [])
            for item in _plain(list(value.values)):
                if item not in items:
                    items.append(item)
            result[field] = items
        elif isinstance(value, ArrayRemove):
            removed = _plain(list(value.values))
            result[field] = [i for i in (existing or []) if i not in removed]
        elif isinstance(value, Increment):
            result[field] = (existing or 0) + value.amount
        elif value is SERVER_TIMESTAMP:
            result[field] = now_millis()
        else:
            result[field] = _plain(value)
    return result
