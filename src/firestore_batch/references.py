from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from firestore_batch.convert import timestamp_to_time
from firestore_batch.errors import PathError
from firestore_batch.field_path import FieldPath, FieldPathLike
from firestore_batch.paths import (
    is_collection_path,
    is_document_path,
    split_path,
    split_resource_path,
)

if TYPE_CHECKING:
    from firestore_batch.query import Query
    from firestore_batch.service import ReadResult


@dataclass(frozen=True)
class CollectionReference:
    """Identity of a collection, addressed by its full resource path."""

    path: str
    client: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def from_path(cls, path: str, client: Any = None) -> CollectionReference:
        _, relative = split_resource_path(path)
        if not relative or not is_collection_path(relative):
            raise PathError("collection_path must refer to a collection.")
        return cls(path="/".join(split_path(path)), client=client)

    @property
    def documents_root(self) -> str:
        return split_resource_path(self.path)[0]

    @property
    def collection_path(self) -> str:
        return split_resource_path(self.path)[1]

    @property
    def collection_id(self) -> str:
        return split_path(self.path)[-1]

    @property
    def parent(self) -> DocumentReference | None:
        relative_parts = split_path(self.collection_path)
        if len(relative_parts) == 1:
            return None
        parent_path = self.path.rsplit("/", 1)[0]
        return DocumentReference(path=parent_path, client=self.client)

    @property
    def parent_path(self) -> str:
        return self.path.rsplit("/", 1)[0]

    def doc(self, document_id: str) -> DocumentReference:
        parts = split_path(document_id)
        if len(parts) % 2 != 1:
            raise PathError("document_path must refer to a document.")
        return DocumentReference.from_path(f"{self.path}/{'/'.join(parts)}", self.client)

    document = doc

    @property
    def query(self) -> Query:
        from firestore_batch.query import Query

        return Query.start(self.parent_path, client=self.client).from_(self.collection_id)


@dataclass(frozen=True)
class DocumentReference:
    """Identity of a document, addressed by its full resource path."""

    path: str
    client: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def from_path(cls, path: str, client: Any = None) -> DocumentReference:
        _, relative = split_resource_path(path)
        if not relative or not is_document_path(relative):
            raise PathError("document_path must refer to a document.")
        return cls(path="/".join(split_path(path)), client=client)

    @property
    def documents_root(self) -> str:
        return split_resource_path(self.path)[0]

    @property
    def document_path(self) -> str:
        return split_resource_path(self.path)[1]

    @property
    def document_id(self) -> str:
        return split_path(self.path)[-1]

    @property
    def parent(self) -> CollectionReference:
        return CollectionReference(path=self.path.rsplit("/", 1)[0], client=self.client)

    def col(self, collection_id: str) -> CollectionReference:
        parts = split_path(collection_id)
        if len(parts) % 2 != 1:
            raise PathError("collection_path must refer to a collection.")
        return CollectionReference.from_path(f"{self.path}/{'/'.join(parts)}", self.client)

    collection = col


@dataclass(frozen=True)
class DocumentSnapshot:
    ref: DocumentReference
    data: dict[str, Any] | None = None
    create_time: Any = None
    update_time: Any = None
    read_time: Any = None

    @classmethod
    def from_read_result(cls, result: ReadResult, client: Any = None) -> DocumentSnapshot:
        return cls(
            ref=DocumentReference.from_path(result.path, client),
            data=dict(result.data) if result.data is not None else None,
            create_time=timestamp_to_time(result.create_time),
            update_time=timestamp_to_time(result.update_time),
            read_time=timestamp_to_time(result.read_time),
        )

    @property
    def exists(self) -> bool:
        return self.data is not None

    @property
    def document_id(self) -> str:
        return self.ref.document_id

    @property
    def document_path(self) -> str:
        return self.ref.document_path

    def get(self, field_path: FieldPathLike) -> Any:
        """Return a (nested) field value, or None when it is missing."""

        if self.data is None:
            return None
        try:
            return FieldPath.parse(field_path).lookup(self.data)
        except KeyError:
            return None

    def __getitem__(self, field_path: FieldPathLike) -> Any:
        return self.get(field_path)

    def to_dict(self) -> dict[str, Any] | None:
        if self.data is None:
            return None
        return deepcopy(self.data)
