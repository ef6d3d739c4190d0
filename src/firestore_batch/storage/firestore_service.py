from __future__ import annotations

from copy import deepcopy
from typing import Any, Iterator, Sequence
import logging

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from firestore_batch.convert import Precondition, Write, WriteKind
from firestore_batch.field_path import FieldPath, set_nested
from firestore_batch.paths import join_path, relative_path
from firestore_batch.query import StructuredQuery
from firestore_batch.service import CommitResponse, ReadResult


LOGGER = logging.getLogger(__name__)

OPERATOR_STRINGS = {
    "LESS_THAN": "<",
    "LESS_THAN_OR_EQUAL": "<=",
    "GREATER_THAN": ">",
    "GREATER_THAN_OR_EQUAL": ">=",
    "EQUAL": "==",
    "NOT_EQUAL": "!=",
    "ARRAY_CONTAINS": "array_contains",
    "IN": "in",
    "ARRAY_CONTAINS_ANY": "array_contains_any",
    "NOT_IN": "not-in",
}


class GoogleFirestoreService:
    """Service implementation backed by ``google.cloud.firestore.Client``."""

    def __init__(self, client: Any, documents_root: str) -> None:
        self._client = client
        self._documents_root = documents_root

    def _relative(self, path: str) -> str:
        return relative_path(path, self._documents_root)

    def _full(self, relative: str) -> str:
        return f"{self._documents_root}/{relative}"

    def _read_result(self, snapshot: Any) -> ReadResult:
        return ReadResult(
            path=self._full(snapshot.reference.path),
            data=(snapshot.to_dict() or {}) if snapshot.exists else None,
            create_time=snapshot.create_time,
            update_time=snapshot.update_time,
            read_time=snapshot.read_time,
        )

    def list_collections(self, parent_path: str) -> list[str]:
        relative = self._relative(parent_path)
        parent = self._client if relative == "" else self._client.document(relative)
        try:
            return [collection.id for collection in parent.collections()]
        except Exception:
            LOGGER.exception("collection一覧取得失敗: parent=%s", parent_path)
            raise

    def get_documents(self, paths: Sequence[str], mask: Sequence[str] | None = None) -> list[ReadResult]:
        refs = [self._client.document(self._relative(path)) for path in paths]
        try:
            snapshots = list(self._client.get_all(refs, field_paths=list(mask) if mask is not None else None))
        except Exception:
            LOGGER.exception("document一括取得失敗: count=%s", len(refs))
            raise

        # The server answers in arbitrary order.
        by_path = {}
        for snapshot in snapshots:
            result = self._read_result(snapshot)
            by_path[result.path] = result
        return [by_path.get(path, ReadResult(path=path)) for path in paths]

    def run_query(self, parent_path: str, query: StructuredQuery) -> Iterator[ReadResult]:
        target = self._build_query(parent_path, query)
        try:
            snapshots = list(target.stream())
        except Exception:
            LOGGER.exception("query実行失敗: parent=%s", parent_path)
            raise
        for snapshot in snapshots:
            yield self._read_result(snapshot)

    def _build_query(self, parent_path: str, query: StructuredQuery) -> Any:
        if len(query.from_) != 1:
            raise ValueError("query must select exactly one collection (use from_).")
        selector = query.from_[0]
        relative_parent = self._relative(parent_path)
        if selector.all_descendants:
            if relative_parent:
                raise ValueError("all_descendants queries must start at the database root.")
            target = self._client.collection_group(selector.collection_id)
        else:
            target = self._client.collection(join_path(relative_parent, selector.collection_id))

        if query.select is not None:
            target = target.select([str(field) for field in query.select])
        for condition in query.where:
            target = target.where(
                filter=FieldFilter(str(condition.field), OPERATOR_STRINGS[condition.op], condition.value)
            )
        for order in query.order_by:
            target = target.order_by(str(order.field), direction=order.direction)
        if query.offset is not None:
            target = target.offset(query.offset)
        if query.limit is not None:
            target = target.limit(query.limit)
        if query.start_at is not None:
            values = list(query.start_at.values)
            target = target.start_at(values) if query.start_at.before else target.start_after(values)
        if query.end_at is not None:
            values = list(query.end_at.values)
            target = target.end_before(values) if query.end_at.before else target.end_at(values)
        return target

    def commit(self, writes: Sequence[Write]) -> CommitResponse:
        batch = self._client.batch()
        for write in writes:
            self._apply(batch, write)
        try:
            results = batch.commit()
        except Exception:
            LOGGER.exception("Firestore commit失敗: writes=%s", len(writes))
            raise
        return CommitResponse(commit_time=batch.commit_time, write_results=list(results or []))

    def _apply(self, batch: Any, write: Write) -> None:
        ref = self._client.document(self._relative(write.path))
        if write.kind == WriteKind.CREATE:
            batch.create(ref, self._document_data(write))
        elif write.kind == WriteKind.SET:
            if write.merge is True:
                batch.set(ref, self._document_data(write), merge=True)
            elif write.is_merge:
                batch.set(ref, self._document_data(write), merge=[str(field) for field in write.merge])
            else:
                batch.set(ref, self._document_data(write))
        elif write.kind == WriteKind.UPDATE:
            batch.update(ref, self._field_updates(write), option=self._update_option(write.precondition))
        elif write.kind == WriteKind.DELETE:
            batch.delete(ref, option=self._write_option(write.precondition))
        else:
            raise ValueError(f"Unsupported write kind: {write.kind}")

    def _document_data(self, write: Write) -> dict[str, Any]:
        data = deepcopy(write.data or {})
        for field in write.update_mask or ():
            try:
                field.lookup(data)
            except KeyError:
                set_nested(data, field, firestore.DELETE_FIELD)
        for field in write.transforms:
            set_nested(data, field, firestore.SERVER_TIMESTAMP)
        return data

    def _field_updates(self, write: Write) -> dict[str, Any]:
        data = write.data or {}
        mask = list(write.update_mask or ())
        updates: dict[str, Any] = {}
        for field in mask:
            try:
                updates[str(field)] = deepcopy(field.lookup(data))
            except KeyError:
                updates[str(field)] = firestore.DELETE_FIELD
        for field in write.transforms:
            owner = next((path for path in mask if path != field and path.is_prefix_of(field)), None)
            if owner is None:
                updates[str(field)] = firestore.SERVER_TIMESTAMP
                continue
            remainder = FieldPath(field.segments[len(owner.segments):])
            set_nested(updates[str(owner)], remainder, firestore.SERVER_TIMESTAMP)
        return updates

    def _update_option(self, precondition: Precondition | None) -> Any:
        # update already implies exists=True.
        if precondition is None or precondition.update_time is None:
            return None
        return self._client.write_option(last_update_time=precondition.update_time)

    def _write_option(self, precondition: Precondition | None) -> Any:
        if precondition is None:
            return None
        if precondition.update_time is not None:
            return self._client.write_option(last_update_time=precondition.update_time)
        if precondition.exists is not None:
            return self._client.write_option(exists=precondition.exists)
        return None
