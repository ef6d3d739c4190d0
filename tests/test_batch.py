from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import unittest

from firestore_batch.batch import Batch
from firestore_batch.convert import Precondition, Write, WriteKind
from firestore_batch.database import Database
from firestore_batch.errors import BatchClosedError, PathError, ServiceUnavailableError
from firestore_batch.field_path import FieldPath
from firestore_batch.query import Query, StructuredQuery
from firestore_batch.references import CollectionReference, DocumentReference, DocumentSnapshot
from firestore_batch.service import CommitResponse, ReadResult


ROOT = "projects/demo-project/databases/(default)/documents"
COMMIT_TIME = datetime(2026, 2, 12, 9, 0, tzinfo=timezone.utc)


@dataclass
class FakeService:
    docs: dict[str, dict] = field(default_factory=dict)
    collection_ids: list[str] = field(default_factory=list)
    query_results: list[ReadResult] = field(default_factory=list)
    commit_error: Exception | None = None
    commits: list[list[Write]] = field(default_factory=list)
    get_calls: list[tuple[list[str], list[str] | None]] = field(default_factory=list)
    query_calls: list[tuple[str, StructuredQuery]] = field(default_factory=list)
    list_calls: list[str] = field(default_factory=list)

    @property
    def call_count(self) -> int:
        return len(self.commits) + len(self.get_calls) + len(self.query_calls) + len(self.list_calls)

    def list_collections(self, parent_path: str) -> list[str]:
        self.list_calls.append(parent_path)
        return list(self.collection_ids)

    def get_documents(self, paths, mask=None) -> list[ReadResult]:
        self.get_calls.append((list(paths), mask))
        return [ReadResult(path=path, data=self.docs.get(path)) for path in paths]

    def run_query(self, parent_path: str, query: StructuredQuery) -> list[ReadResult]:
        self.query_calls.append((parent_path, query))
        return list(self.query_results)

    def commit(self, writes) -> CommitResponse:
        if self.commit_error is not None:
            raise self.commit_error
        self.commits.append(list(writes))
        return CommitResponse(commit_time=COMMIT_TIME)


def _database(service: FakeService | None = None) -> tuple[Database, FakeService]:
    service = service or FakeService()
    return Database(service, project_id="demo-project"), service


class BatchPathTest(unittest.TestCase):
    def test_doc_builds_reference_for_even_segments(self) -> None:
        database, _ = _database()
        batch = database.batch()

        ref = batch.doc("cities/NYC")

        self.assertEqual(ref.path, f"{ROOT}/cities/NYC")
        self.assertEqual(ref.document_id, "NYC")
        self.assertEqual(ref.document_path, "cities/NYC")
        self.assertIs(ref.client, batch)

    def test_doc_rejects_odd_segments_without_network(self) -> None:
        database, service = _database()
        batch = database.batch()

        for path in ("cities", "cities/NYC/neighborhoods"):
            with self.assertRaises(PathError):
                batch.doc(path)
        self.assertEqual(service.call_count, 0)

    def test_col_rejects_even_segments_without_network(self) -> None:
        database, service = _database()
        batch = database.batch()

        with self.assertRaisesRegex(PathError, "collection_path must refer to a collection"):
            batch.col("cities/NYC")
        self.assertEqual(service.call_count, 0)

    def test_col_builds_nested_collection(self) -> None:
        database, _ = _database()

        ref = database.batch().col("cities/NYC/neighborhoods")

        self.assertEqual(ref.collection_id, "neighborhoods")
        self.assertEqual(ref.parent, DocumentReference(path=f"{ROOT}/cities/NYC"))

    def test_writes_reject_collection_paths(self) -> None:
        database, service = _database()
        batch = database.batch()

        with self.assertRaises(PathError):
            batch.set("cities", {"name": "New York City"})
        with self.assertRaises(PathError):
            batch.delete("cities")
        self.assertEqual(batch.writes, ())
        self.assertEqual(service.call_count, 0)

    def test_batch_exposes_database_identity(self) -> None:
        database, _ = _database()
        batch = database.batch()

        self.assertIs(batch.database, database)
        self.assertEqual(batch.project_id, "demo-project")
        self.assertEqual(batch.database_id, "(default)")
        self.assertEqual(batch.path, "projects/demo-project/databases/(default)")
        self.assertEqual(batch.documents_path, ROOT)


class BatchCommitTest(unittest.TestCase):
    def test_set_then_delete_commits_once_in_order(self) -> None:
        database, service = _database()
        batch = database.batch()

        batch.set("cities/NYC", {"name": "New York City"})
        batch.delete("cities/SF", exists=True)
        commit_time = batch.commit()

        self.assertEqual(commit_time, COMMIT_TIME)
        self.assertEqual(batch.commit_time, COMMIT_TIME)
        self.assertEqual(len(service.commits), 1)
        first, second = service.commits[0]
        self.assertEqual(first.kind, WriteKind.SET)
        self.assertEqual(first.path, f"{ROOT}/cities/NYC")
        self.assertEqual(first.data, {"name": "New York City"})
        self.assertEqual(second.kind, WriteKind.DELETE)
        self.assertEqual(second.path, f"{ROOT}/cities/SF")
        self.assertEqual(second.precondition, Precondition(exists=True))

    def test_commit_without_writes_returns_none_and_sends_nothing(self) -> None:
        database, service = _database()
        batch = database.batch()

        self.assertIsNone(batch.commit())
        self.assertTrue(batch.closed)
        self.assertEqual(service.commits, [])

    def test_commit_twice_raises(self) -> None:
        database, service = _database()
        batch = database.batch()
        batch.create("cities/LA", {"name": "Los Angeles"})
        batch.commit()

        with self.assertRaises(BatchClosedError):
            batch.commit()
        self.assertEqual(len(service.commits), 1)

    def test_mutations_after_commit_raise(self) -> None:
        for has_writes in (False, True):
            database, _ = _database()
            batch = database.batch()
            if has_writes:
                batch.set("cities/NYC", {"name": "New York City"})
            batch.commit()

            with self.assertRaises(BatchClosedError):
                batch.create("cities/LA", {"name": "Los Angeles"})
            with self.assertRaises(BatchClosedError):
                batch.set("cities/LA", {"name": "Los Angeles"})
            with self.assertRaises(BatchClosedError):
                batch.update("cities/LA", {"population": 1})
            with self.assertRaises(BatchClosedError):
                batch.delete("cities/LA")
            with self.assertRaises(BatchClosedError):
                batch.get("cities/LA")

    def test_writes_keep_insertion_order_without_dedup(self) -> None:
        database, service = _database()
        batch = database.batch()

        batch.set("cities/NYC", {"name": "NYC"})
        batch.update("cities/NYC", {"population": 8_000_000})
        batch.set("cities/NYC", {"name": "NYC"})
        batch.commit()

        kinds = [write.kind for write in service.commits[0]]
        self.assertEqual(kinds, [WriteKind.SET, WriteKind.UPDATE, WriteKind.SET])

    def test_set_merge_options_reach_write_records(self) -> None:
        database, _ = _database()
        batch = database.batch()

        batch.set("cities/NYC", {"name": "NYC", "population": 1})
        batch.set("cities/NYC", {"name": "NYC", "population": 1}, merge=True)
        batch.set("cities/NYC", {"name": "NYC", "population": 1}, merge=["name"])

        overwrite, full_merge, partial_merge = batch.writes
        self.assertFalse(overwrite.is_merge)
        self.assertIsNone(overwrite.update_mask)
        self.assertIs(full_merge.merge, True)
        self.assertEqual(
            full_merge.update_mask,
            (FieldPath(("name",)), FieldPath(("population",))),
        )
        self.assertEqual(partial_merge.merge, (FieldPath(("name",)),))
        self.assertEqual(partial_merge.update_mask, (FieldPath(("name",)),))
        self.assertEqual(partial_merge.data, {"name": "NYC"})

    def test_update_with_update_time_sets_precondition(self) -> None:
        database, _ = _database()
        batch = database.batch()
        last_update = datetime(2026, 2, 1, tzinfo=timezone.utc)

        batch.update("cities/NYC", {"population": 1}, update_time=last_update)
        batch.update("cities/SF", {"population": 2})

        self.assertEqual(batch.writes[0].precondition, Precondition(update_time=last_update))
        self.assertEqual(batch.writes[1].precondition, Precondition(exists=True))

    def test_writes_accept_references_and_snapshots(self) -> None:
        database, service = _database()
        batch = database.batch()
        ref = batch.doc("cities/NYC")
        snapshot = DocumentSnapshot(ref=batch.doc("cities/SF"), data={"name": "SF"})

        batch.create(ref, {"name": "NYC"})
        batch.delete(snapshot)
        batch.commit()

        paths = [write.path for write in service.commits[0]]
        self.assertEqual(paths, [f"{ROOT}/cities/NYC", f"{ROOT}/cities/SF"])

    def test_remote_commit_error_propagates_unchanged(self) -> None:
        error = RuntimeError("ABORTED: too much contention")
        database, service = _database(FakeService(commit_error=error))
        batch = database.batch()
        batch.set("cities/NYC", {"name": "NYC"})

        with self.assertLogs("firestore_batch.batch", level="ERROR"):
            with self.assertRaises(RuntimeError) as ctx:
                batch.commit()

        self.assertIs(ctx.exception, error)
        self.assertTrue(batch.closed)
        with self.assertRaises(BatchClosedError):
            batch.commit()


class BatchContextManagerTest(unittest.TestCase):
    def test_with_block_commits_on_exit(self) -> None:
        database, service = _database()

        with database.batch() as batch:
            batch.set("cities/NYC", {"name": "New York City"})

        self.assertTrue(batch.closed)
        self.assertEqual(len(service.commits), 1)
        self.assertEqual(batch.commit_time, COMMIT_TIME)

    def test_with_block_error_closes_without_commit(self) -> None:
        database, service = _database()

        with self.assertRaises(KeyError):
            with database.batch() as batch:
                batch.set("cities/NYC", {"name": "New York City"})
                raise KeyError("boom")

        self.assertTrue(batch.closed)
        self.assertEqual(service.commits, [])

    def test_explicit_commit_inside_with_block_is_not_repeated(self) -> None:
        database, service = _database()

        with database.batch() as batch:
            batch.set("cities/NYC", {"name": "New York City"})
            batch.commit()

        self.assertEqual(len(service.commits), 1)


class BatchConnectionTest(unittest.TestCase):
    def test_unbound_batch_raises_state_error(self) -> None:
        batch = Batch()

        with self.assertRaises(ServiceUnavailableError):
            batch.doc("cities/NYC")
        with self.assertRaises(ServiceUnavailableError):
            batch.get_all("cities/NYC")

    def test_closed_database_raises_state_error(self) -> None:
        database, service = _database()
        batch = database.batch()
        batch.set("cities/NYC", {"name": "NYC"})
        database.close()

        with self.assertRaises(ServiceUnavailableError):
            batch.get_all("cities/NYC")
        with self.assertRaises(ServiceUnavailableError):
            batch.commit()
        self.assertEqual(service.call_count, 0)


class BatchReadTest(unittest.TestCase):
    def test_get_all_skips_missing_and_keeps_order(self) -> None:
        database, service = _database(
            FakeService(
                docs={
                    f"{ROOT}/cities/NYC": {"name": "New York City"},
                    f"{ROOT}/cities/LA": {"name": "Los Angeles"},
                }
            )
        )
        batch = database.batch()

        snapshots = list(batch.get_all("cities/LA", "cities/SF", "cities/NYC"))

        self.assertEqual([snapshot.document_id for snapshot in snapshots], ["LA", "NYC"])
        self.assertEqual(snapshots[1].get("name"), "New York City")
        self.assertEqual(len(service.get_calls), 1)
        self.assertEqual(
            service.get_calls[0][0],
            [f"{ROOT}/cities/LA", f"{ROOT}/cities/SF", f"{ROOT}/cities/NYC"],
        )

    def test_get_all_accepts_mixed_arguments_and_mask(self) -> None:
        database, service = _database(FakeService(docs={f"{ROOT}/cities/NYC": {"name": "NYC"}}))
        batch = database.batch()
        ref = batch.doc("cities/NYC")

        list(batch.get_all([ref, ["cities/SF"]], mask=["name", ("geo", "lat")]))

        paths, mask = service.get_calls[0]
        self.assertEqual(paths, [f"{ROOT}/cities/NYC", f"{ROOT}/cities/SF"])
        self.assertEqual(mask, ["name", "geo.lat"])

    def test_get_all_validates_paths_before_network(self) -> None:
        database, service = _database()
        batch = database.batch()

        with self.assertRaises(PathError):
            batch.get_all("cities/NYC", "cities")
        self.assertEqual(service.call_count, 0)

    def test_get_all_aliases(self) -> None:
        self.assertIs(Batch.find, Batch.get_all)
        self.assertIs(Batch.get_docs, Batch.get_all)
        self.assertIs(Batch.get_documents, Batch.get_all)

    def test_get_document_path_returns_snapshot(self) -> None:
        database, _ = _database(FakeService(docs={f"{ROOT}/cities/NYC": {"name": "NYC"}}))
        batch = database.batch()

        snapshot = batch.get("cities/NYC")

        self.assertIsInstance(snapshot, DocumentSnapshot)
        self.assertTrue(snapshot.exists)
        self.assertEqual(snapshot.to_dict(), {"name": "NYC"})

    def test_get_missing_document_returns_none(self) -> None:
        database, _ = _database()

        self.assertIsNone(database.batch().get("cities/SF"))

    def test_get_snapshot_refetches_its_document(self) -> None:
        database, service = _database(FakeService(docs={f"{ROOT}/cities/NYC": {"name": "NYC v2"}}))
        batch = database.batch()
        stale = DocumentSnapshot(ref=batch.doc("cities/NYC"), data={"name": "NYC v1"})

        fresh = batch.get(stale)

        self.assertEqual(fresh.get("name"), "NYC v2")
        self.assertEqual(service.get_calls[0][0], [f"{ROOT}/cities/NYC"])

    def test_get_collection_path_runs_query(self) -> None:
        service = FakeService(
            query_results=[
                ReadResult(path=f"{ROOT}/cities/NYC", data={"name": "NYC"}),
                ReadResult(path=f"{ROOT}/cities/GONE"),
                ReadResult(path=f"{ROOT}/cities/SF", data={"name": "SF"}),
            ]
        )
        database, _ = _database(service)
        batch = database.batch()

        snapshots = list(batch.get("cities"))

        self.assertEqual([snapshot.document_id for snapshot in snapshots], ["NYC", "SF"])
        parent_path, query = service.query_calls[0]
        self.assertEqual(parent_path, ROOT)
        self.assertEqual(query.from_[0].collection_id, "cities")

    def test_get_collection_reference_and_query(self) -> None:
        service = FakeService(query_results=[ReadResult(path=f"{ROOT}/cities/NYC", data={"population": 8})])
        database, _ = _database(service)
        batch = database.batch()

        by_ref = list(batch.get(batch.col("cities/NYC/neighborhoods")))
        query = batch.where("population", ">=", 1).from_("cities").limit(5)
        by_query = list(batch.run(query))

        self.assertEqual(len(by_ref), 1)
        self.assertEqual(len(by_query), 1)
        nested_parent, nested_query = service.query_calls[0]
        self.assertEqual(nested_parent, f"{ROOT}/cities/NYC")
        self.assertEqual(nested_query.from_[0].collection_id, "neighborhoods")
        self.assertEqual(service.query_calls[1], (ROOT, query.structured))

    def test_get_rejects_unknown_argument_types(self) -> None:
        database, _ = _database()

        with self.assertRaises(TypeError):
            database.batch().get(42)

    def test_query_shortcuts_are_bound_to_batch(self) -> None:
        service = FakeService(query_results=[ReadResult(path=f"{ROOT}/cities/NYC", data={"name": "NYC"})])
        database, _ = _database(service)
        batch = database.batch()

        query = batch.select("population").from_("cities").order("name", "desc").offset(10)

        self.assertIsInstance(query, Query)
        self.assertEqual(query.parent_path, ROOT)
        self.assertIs(query.client, batch)
        self.assertEqual([snapshot.document_id for snapshot in query.get()], ["NYC"])
        self.assertEqual(batch.q().parent_path, ROOT)
        self.assertEqual(batch.start_at("NYC").structured.start_at.values, ("NYC",))
        self.assertEqual(batch.end_before("SF").structured.end_at.before, True)

    def test_cols_yields_root_collections(self) -> None:
        database, service = _database(FakeService(collection_ids=["cities", "users"]))

        collections = list(database.batch().cols())

        self.assertEqual(
            collections,
            [CollectionReference(path=f"{ROOT}/cities"), CollectionReference(path=f"{ROOT}/users")],
        )
        self.assertEqual(service.list_calls, [ROOT])

    def test_docs_yields_references(self) -> None:
        service = FakeService(
            query_results=[
                ReadResult(path=f"{ROOT}/cities/NYC", data={}),
                ReadResult(path=f"{ROOT}/cities/SF", data={}),
            ]
        )
        database, _ = _database(service)

        refs = list(database.batch().docs("cities"))

        self.assertEqual([ref.document_id for ref in refs], ["NYC", "SF"])


if __name__ == "__main__":
    unittest.main()
