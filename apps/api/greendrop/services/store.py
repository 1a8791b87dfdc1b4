import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Literal, Protocol
from uuid import uuid4

from greendrop.models.domain import Snapshot, as_utc

FilterOp = Literal["==", "in", ">="]


class StoreError(Exception):
    """A store read or write could not be completed."""

    retryable = True


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class PreconditionFailedError(StoreError):
    def __init__(self, collection: str, doc_id: str, reason: str) -> None:
        super().__init__(f"{collection}/{doc_id} precondition failed: {reason}")
        self.collection = collection
        self.doc_id = doc_id
        self.reason = reason


@dataclass(frozen=True)
class Filter:
    field: str
    op: FilterOp
    value: Any


def _coerce_for_compare(stored: Any, expected: Any) -> Any:
    if isinstance(expected, datetime) and isinstance(stored, str):
        try:
            return as_utc(datetime.fromisoformat(stored))
        except ValueError:
            return None
    return stored


def matches(data: Mapping[str, Any], filters: Iterable[Filter]) -> bool:
    for item in filters:
        value = data.get(item.field)
        if item.op == "==":
            if value != item.value:
                return False
        elif item.op == "in":
            if value not in item.value:
                return False
        elif item.op == ">=":
            value = _coerce_for_compare(value, item.value)
            if value is None or value < item.value:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {item.op}")
    return True


def check_expected(
    collection: str,
    doc_id: str,
    data: Mapping[str, Any],
    expected: Mapping[str, Any] | None,
) -> None:
    for key, value in (expected or {}).items():
        if data.get(key) != value:
            raise PreconditionFailedError(
                collection, doc_id, f"{key}={data.get(key)!r}, expected {value!r}"
            )


@dataclass
class WriteOp:
    kind: Literal["set", "update"]
    collection: str
    doc_id: str
    data: dict[str, Any]
    expected: dict[str, Any] | None = None


class WriteBatch(Protocol):
    def set(self, collection: str, doc_id: str | None, data: Mapping[str, Any]) -> str: ...

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None: ...

    def commit(self) -> None: ...


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def query(self, collection: str, *filters: Filter) -> list[Snapshot]: ...

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None: ...

    def create(self, collection: str, data: Mapping[str, Any]) -> str: ...

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None: ...

    def batch(self) -> WriteBatch: ...


class BatchTarget(Protocol):
    def apply_batch(self, ops: list[WriteOp]) -> None: ...


@dataclass
class PendingBatch:
    """Collects writes; the owning store applies them all-or-nothing on commit."""

    store: BatchTarget
    ops: list[WriteOp] = field(default_factory=list)
    committed: bool = False

    def set(self, collection: str, doc_id: str | None, data: Mapping[str, Any]) -> str:
        resolved_id = doc_id or uuid4().hex
        self.ops.append(WriteOp("set", collection, resolved_id, copy.deepcopy(dict(data))))
        return resolved_id

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        self.ops.append(
            WriteOp(
                "update",
                collection,
                doc_id,
                copy.deepcopy(dict(patch)),
                dict(expected) if expected is not None else None,
            )
        )

    def commit(self) -> None:
        if self.committed:
            raise StoreError("Batch already committed")
        self.store.apply_batch(self.ops)
        self.committed = True


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._collections: dict[str, dict[str, tuple[dict[str, Any], int]]] = {}

    def reset(self) -> None:
        with self._lock:
            self._collections.clear()

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(entry[0]) if entry else None

    def query(self, collection: str, *filters: Filter) -> list[Snapshot]:
        with self._lock:
            docs = list(self._collections.get(collection, {}).items())
        return [
            Snapshot(id=doc_id, data=copy.deepcopy(data))
            for doc_id, (data, _version) in docs
            if matches(data, filters)
        ]

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self.apply_batch([WriteOp("set", collection, doc_id, copy.deepcopy(dict(data)))])

    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        self.apply_batch(
            [
                WriteOp(
                    "update",
                    collection,
                    doc_id,
                    copy.deepcopy(dict(patch)),
                    dict(expected) if expected is not None else None,
                )
            ]
        )

    def batch(self) -> PendingBatch:
        return PendingBatch(store=self)

    def apply_batch(self, ops: list[WriteOp]) -> None:
        with self._lock:
            staged = {name: dict(docs) for name, docs in self._collections.items()}
            for op in ops:
                docs = staged.setdefault(op.collection, {})
                current = docs.get(op.doc_id)
                if op.kind == "set":
                    version = current[1] + 1 if current else 1
                    docs[op.doc_id] = (copy.deepcopy(op.data), version)
                    continue

                if current is None:
                    raise DocumentNotFoundError(op.collection, op.doc_id)
                check_expected(op.collection, op.doc_id, current[0], op.expected)
                docs[op.doc_id] = ({**current[0], **copy.deepcopy(op.data)}, current[1] + 1)
            self._collections = staged
