from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol, Sequence

if TYPE_CHECKING:
    from firestore_batch.convert import Write
    from firestore_batch.query import StructuredQuery


@dataclass(frozen=True)
class ReadResult:
    """One document returned by a batched read or a query.

    ``data`` is None when the requested document does not exist.
    """

    path: str
    data: dict[str, Any] | None = None
    create_time: Any = None
    update_time: Any = None
    read_time: Any = None

    @property
    def found(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class CommitResponse:
    commit_time: Any
    write_results: list[Any] = field(default_factory=list)


class FirestoreService(Protocol):
    def list_collections(self, parent_path: str) -> Iterable[str]:
        """Return collection ids directly under a documents root or document path."""

    def get_documents(self, paths: Sequence[str], mask: Sequence[str] | None = None) -> Iterable[ReadResult]:
        """Read documents by full resource path, in input order."""

    def run_query(self, parent_path: str, query: StructuredQuery) -> Iterable[ReadResult]:
        """Run a structured query under parent_path."""

    def commit(self, writes: Sequence[Write]) -> CommitResponse:
        """Apply all writes atomically."""
