import copy
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from greendrop.models.document import Document
from greendrop.models.domain import Snapshot
from greendrop.services.store import (
    DocumentNotFoundError,
    Filter,
    PendingBatch,
    PreconditionFailedError,
    StoreError,
    WriteOp,
    check_expected,
    matches,
)


class SqlDocumentStore:
    """Document store over a single SQL table with optimistic versioning.

    Every update is issued as ``UPDATE ... WHERE version = :seen``; losing that race
    surfaces as ``PreconditionFailedError`` so callers can treat it exactly like a
    failed conditional write.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _row(self, collection: str, doc_id: str) -> Document | None:
        return self.db.scalar(
            select(Document)
            .where(Document.collection == collection, Document.doc_id == doc_id)
            .execution_options(populate_existing=True)
        )

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            row = self._row(collection, doc_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {collection}/{doc_id}") from exc
        return copy.deepcopy(row.data) if row else None

    def query(self, collection: str, *filters: Filter) -> list[Snapshot]:
        try:
            rows = self.db.scalars(
                select(Document).where(Document.collection == collection).order_by(Document.id.asc())
            )
            return [
                Snapshot(id=row.doc_id, data=copy.deepcopy(row.data))
                for row in rows
                if matches(row.data, filters)
            ]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to query {collection}") from exc

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

    def _apply_set(self, op: WriteOp) -> None:
        row = self._row(op.collection, op.doc_id)
        if row is None:
            self.db.add(Document(collection=op.collection, doc_id=op.doc_id, data=op.data, version=1))
            self.db.flush()
            return
        self._guarded_write(row, op.data)

    def _apply_update(self, op: WriteOp) -> None:
        row = self._row(op.collection, op.doc_id)
        if row is None:
            raise DocumentNotFoundError(op.collection, op.doc_id)
        check_expected(op.collection, op.doc_id, row.data, op.expected)
        self._guarded_write(row, {**row.data, **op.data})

    def _guarded_write(self, row: Document, data: dict[str, Any]) -> None:
        result = self.db.execute(
            update(Document)
            .where(Document.id == row.id, Document.version == row.version)
            .values(data=data, version=row.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PreconditionFailedError(row.collection, row.doc_id, "concurrent modification")

    def apply_batch(self, ops: list[WriteOp]) -> None:
        try:
            for op in ops:
                if op.kind == "set":
                    self._apply_set(op)
                else:
                    self._apply_update(op)
            self.db.commit()
        except StoreError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("Batch commit failed") from exc
