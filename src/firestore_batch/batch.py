from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Union
import logging

from firestore_batch import convert
from firestore_batch.convert import Write
from firestore_batch.errors import BatchClosedError, ServiceUnavailableError
from firestore_batch.field_path import FieldPath, FieldPathLike
from firestore_batch.paths import ensure_collection_path, ensure_document_path, is_document_path
from firestore_batch.query import Query
from firestore_batch.references import CollectionReference, DocumentReference, DocumentSnapshot

if TYPE_CHECKING:
    from firestore_batch.database import Database
    from firestore_batch.service import FirestoreService


LOGGER = logging.getLogger(__name__)

DocumentTarget = Union[str, DocumentReference, DocumentSnapshot]
GetTarget = Union[str, DocumentReference, CollectionReference, DocumentSnapshot, Query]


def _flatten(values: Iterable[Any]) -> list[Any]:
    flat: list[Any] = []
    for value in values:
        if isinstance(value, (list, tuple)):
            flat.extend(_flatten(value))
        else:
            flat.append(value)
    return flat


class Batch:
    """A set of writes committed atomically in one request.

    Writes are accumulated in memory in call order and sent by ``commit``.
    A batch is committed at most once and is never retried; after ``commit``
    every further mutation raises ``BatchClosedError``.

    Used as a context manager, the batch commits when the block exits
    normally and is discarded when the block raises.
    """

    def __init__(self, database: Database | None = None) -> None:
        self._database = database
        self._writes: list[Write] = []
        self._closed = False
        self.commit_time = None

    @classmethod
    def from_database(cls, database: Database) -> Batch:
        return cls(database)

    def __enter__(self) -> Batch:
        self._ensure_not_closed()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        if exc_type is not None:
            if not self._closed:
                LOGGER.warning("batch破棄: writes=%s error=%s", len(self._writes), exc)
            self._closed = True
            return False
        if not self._closed:
            self.commit()
        return False

    @property
    def database(self) -> Database | None:
        return self._database

    @property
    def project_id(self) -> str:
        return self._require_database().project_id

    @property
    def database_id(self) -> str:
        return self._require_database().database_id

    @property
    def path(self) -> str:
        return self._require_database().path

    @property
    def documents_path(self) -> str:
        return self._require_database().documents_path

    @property
    def service(self) -> FirestoreService:
        service = self._require_database().service
        if service is None:
            raise ServiceUnavailableError("Must have active connection to service")
        return service

    @property
    def writes(self) -> tuple[Write, ...]:
        return tuple(self._writes)

    @property
    def closed(self) -> bool:
        return self._closed

    # Paths and references

    def cols(self) -> Iterator[CollectionReference]:
        """Lazily yield the root collections of the database."""

        service = self.service
        return self._iter_collections(service)

    collections = cols

    def _iter_collections(self, service: FirestoreService) -> Iterator[CollectionReference]:
        for collection_id in service.list_collections(self.documents_path):
            yield self.col(collection_id)

    def col(self, collection_path: str) -> CollectionReference:
        normalized = ensure_collection_path(collection_path)
        return CollectionReference.from_path(f"{self.documents_path}/{normalized}", self)

    collection = col

    def doc(self, document_path: str) -> DocumentReference:
        normalized = ensure_document_path(document_path)
        return DocumentReference.from_path(f"{self.documents_path}/{normalized}", self)

    document = doc

    def docs(self, collection_path: str) -> Iterator[DocumentReference]:
        """Lazily yield references to the documents of a collection."""

        snapshots = self.get(self.col(collection_path))
        return (snapshot.ref for snapshot in snapshots)

    documents = docs

    # Reads

    def get_all(self, *docs: Any, mask: Iterable[FieldPathLike] | None = None) -> Iterator[DocumentSnapshot]:
        """Read documents in one request.

        Documents that do not exist are skipped; the others keep the order of
        ``docs``.
        """

        service = self.service
        doc_paths = [self._coalesce_doc_path(doc) for doc in _flatten(docs)]
        field_mask = [str(FieldPath.parse(field)) for field in mask] if mask is not None else None
        return self._iter_get_all(service, doc_paths, field_mask)

    get_docs = get_all
    get_documents = get_all
    find = get_all

    def _iter_get_all(
        self,
        service: FirestoreService,
        doc_paths: list[str],
        mask: list[str] | None,
    ) -> Iterator[DocumentSnapshot]:
        for result in service.get_documents(doc_paths, mask=mask):
            if not result.found:
                continue
            yield DocumentSnapshot.from_read_result(result, self)

    def get(self, target: GetTarget) -> DocumentSnapshot | Iterator[DocumentSnapshot] | None:
        """Fetch a document or run a query.

        Document-shaped targets return a snapshot (None when missing); collection
        paths, collection references and queries return an iterator of snapshots.
        """

        self._ensure_not_closed()
        service = self.service
        resolved = self._coalesce_get_target(target)
        if isinstance(resolved, DocumentReference):
            return next(self._iter_get_all(service, [resolved.path], None), None)
        return self._iter_query(service, resolved)

    run = get

    def _iter_query(self, service: FirestoreService, query: Query) -> Iterator[DocumentSnapshot]:
        for result in service.run_query(query.parent_path, query.structured):
            if not result.found:
                continue
            yield DocumentSnapshot.from_read_result(result, self)

    # Queries

    def query(self) -> Query:
        return Query.start(self.documents_path, client=self)

    q = query

    def select(self, *fields: Any) -> Query:
        return self.query().select(*fields)

    def from_(self, collection_id: str, *, all_descendants: bool = False) -> Query:
        return self.query().from_(collection_id, all_descendants=all_descendants)

    def where(self, field_path: FieldPathLike, operator: str, value: Any) -> Query:
        return self.query().where(field_path, operator, value)

    def order(self, field_path: FieldPathLike, direction: str = "asc") -> Query:
        return self.query().order(field_path, direction)

    def offset(self, num: int) -> Query:
        return self.query().offset(num)

    def limit(self, num: int) -> Query:
        return self.query().limit(num)

    def start_at(self, *values: Any) -> Query:
        return self.query().start_at(*values)

    def start_after(self, *values: Any) -> Query:
        return self.query().start_after(*values)

    def end_before(self, *values: Any) -> Query:
        return self.query().end_before(*values)

    def end_at(self, *values: Any) -> Query:
        return self.query().end_at(*values)

    # Writes

    def create(self, doc: DocumentTarget, data: dict[str, Any]) -> None:
        """Create a document; the commit fails if it already exists."""

        self._ensure_not_closed()
        doc_path = self._coalesce_doc_path(doc)
        self._writes.extend(convert.create_writes(doc_path, data))

    def set(self, doc: DocumentTarget, data: dict[str, Any], *, merge: Any = None) -> None:
        """Write a document, overwriting it unless ``merge`` is given.

        ``merge=True`` merges every field in ``data``; a list of field paths
        merges only those fields.
        """

        self._ensure_not_closed()
        doc_path = self._coalesce_doc_path(doc)
        self._writes.extend(convert.set_writes(doc_path, data, merge=merge))

    def update(self, doc: DocumentTarget, data: dict[str, Any], *, update_time: Any = None) -> None:
        """Update fields of an existing document.

        With ``update_time``, the commit fails unless the document was last
        updated at exactly that time.
        """

        self._ensure_not_closed()
        doc_path = self._coalesce_doc_path(doc)
        self._writes.extend(convert.update_writes(doc_path, data, update_time=update_time))

    def delete(self, doc: DocumentTarget, *, exists: bool | None = None, update_time: Any = None) -> None:
        self._ensure_not_closed()
        doc_path = self._coalesce_doc_path(doc)
        self._writes.append(convert.delete_write(doc_path, exists=exists, update_time=update_time))

    def commit(self) -> datetime | None:
        """Send all writes in one request and return the commit time.

        Returns None without contacting the service when there are no writes.
        """

        self._ensure_not_closed()
        self._closed = True
        if not self._writes:
            return None

        writes = list(self._writes)
        try:
            response = self.service.commit(writes)
        except Exception:
            LOGGER.exception("batch commit失敗: writes=%s", len(writes))
            raise
        self.commit_time = convert.timestamp_to_time(response.commit_time)
        LOGGER.debug("batch commit完了: writes=%s commit_time=%s", len(writes), self.commit_time)
        return self.commit_time

    # Argument coalescing

    def _coalesce_get_target(self, target: GetTarget) -> DocumentReference | Query:
        if isinstance(target, str):
            if is_document_path(target):
                return self.doc(target)
            return self.col(target).query
        if isinstance(target, DocumentReference):
            return target
        if isinstance(target, DocumentSnapshot):
            return target.ref
        if isinstance(target, CollectionReference):
            return target.query
        if isinstance(target, Query):
            return target
        raise TypeError(f"Cannot get {type(target).__name__}; expected a path, reference, snapshot or query.")

    def _coalesce_doc_path(self, doc: DocumentTarget) -> str:
        if isinstance(doc, str):
            return self.doc(doc).path
        if isinstance(doc, DocumentReference):
            return doc.path
        if isinstance(doc, DocumentSnapshot):
            return doc.ref.path
        raise TypeError(f"Expected a document path or reference, got {type(doc).__name__}.")

    def _require_database(self) -> Database:
        if self._database is None:
            raise ServiceUnavailableError("Must have active connection to service")
        return self._database

    def _ensure_not_closed(self) -> None:
        if self._closed:
            raise BatchClosedError("batch is closed")
