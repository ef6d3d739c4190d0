from __future__ import annotations

from typing import Any
import logging
import os

from firestore_batch.batch import Batch
from firestore_batch.paths import DEFAULT_DATABASE_ID, database_path, documents_path
from firestore_batch.service import FirestoreService
from firestore_batch.settings import AppSettings


LOGGER = logging.getLogger(__name__)


class Database:
    """Connection to one Firestore database; hands out batches bound to it."""

    def __init__(
        self,
        service: FirestoreService | None,
        *,
        project_id: str,
        database_id: str = DEFAULT_DATABASE_ID,
    ) -> None:
        self.project_id = project_id.strip()
        self.database_id = (database_id or DEFAULT_DATABASE_ID).strip()
        self.path = database_path(self.project_id, self.database_id)
        self._service = service

    @property
    def documents_path(self) -> str:
        return documents_path(self.path)

    @property
    def service(self) -> FirestoreService | None:
        return self._service

    def batch(self) -> Batch:
        return Batch.from_database(self)

    def close(self) -> None:
        self._service = None


EMULATOR_HOST_ENV = "FIRESTORE_EMULATOR_HOST"


def _create_firestore_client(*, project_id: str, database_id: str, emulator_host: str = "") -> Any:
    try:
        from google.cloud import firestore
    except ModuleNotFoundError as exc:
        raise RuntimeError(
            "google-cloud-firestore が未インストールです。`pip install -e .` を実行してください。"
        ) from exc
    if emulator_host:
        # The client only reads the emulator host from the process environment.
        os.environ.setdefault(EMULATOR_HOST_ENV, emulator_host)
        LOGGER.info("Firestore emulator使用: host=%s", os.environ[EMULATOR_HOST_ENV])
    return firestore.Client(project=project_id or None, database=database_id)


def create_database(settings: AppSettings, *, client: Any = None) -> Database:
    """Build a Database backed by google-cloud-firestore from settings."""

    from firestore_batch.storage.firestore_service import GoogleFirestoreService

    if client is None:
        client = _create_firestore_client(
            project_id=settings.firestore_project_id,
            database_id=settings.firestore_database_id,
            emulator_host=settings.firestore_emulator_host,
        )
    project_id = settings.firestore_project_id or str(client.project)
    db_path = database_path(project_id, settings.firestore_database_id)
    service = GoogleFirestoreService(client, documents_path(db_path))
    return Database(service, project_id=project_id, database_id=settings.firestore_database_id)
