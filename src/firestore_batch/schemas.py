from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from firestore_batch.batch import Batch
from firestore_batch.field_path import DELETE_FIELD, SERVER_TIMESTAMP


DELETE_FIELD_TOKEN = "$delete"
SERVER_TIMESTAMP_TOKEN = "$serverTimestamp"


class WriteOp(str, Enum):
    CREATE = "create"
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


def decode_sentinels(value: Any) -> Any:
    """Replace the JSON tokens for field deletes and server timestamps with sentinels."""

    if value == DELETE_FIELD_TOKEN:
        return DELETE_FIELD
    if value == SERVER_TIMESTAMP_TOKEN:
        return SERVER_TIMESTAMP
    if isinstance(value, dict):
        return {key: decode_sentinels(item) for key, item in value.items()}
    return value


class WriteRequest(BaseModel):
    op: WriteOp
    path: str = Field(min_length=1)
    data: dict[str, Any] | None = None
    merge: bool | list[str] | None = None
    exists: bool | None = None
    update_time: datetime | None = None

    @model_validator(mode="after")
    def _check_options(self) -> "WriteRequest":
        if self.op != WriteOp.DELETE and self.data is None:
            raise ValueError(f"data is required for {self.op.value}.")
        if self.op == WriteOp.DELETE and self.data is not None:
            raise ValueError("data must not be given for delete.")
        if self.merge is not None and self.op != WriteOp.SET:
            raise ValueError("merge is only allowed for set.")
        if self.exists is not None and self.op != WriteOp.DELETE:
            raise ValueError("exists is only allowed for delete.")
        if self.update_time is not None and self.op not in (WriteOp.UPDATE, WriteOp.DELETE):
            raise ValueError("update_time is only allowed for update and delete.")
        return self

    def apply_to(self, batch: Batch) -> None:
        data = decode_sentinels(self.data) if self.data is not None else None
        if self.op == WriteOp.CREATE:
            batch.create(self.path, data)
        elif self.op == WriteOp.SET:
            batch.set(self.path, data, merge=self.merge)
        elif self.op == WriteOp.UPDATE:
            batch.update(self.path, data, update_time=self.update_time)
        else:
            batch.delete(self.path, exists=self.exists, update_time=self.update_time)


class WritePlan(BaseModel):
    writes: list[WriteRequest] = Field(min_length=1)

    @classmethod
    def load(cls, path: str | Path) -> "WritePlan":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def apply_to(self, batch: Batch) -> None:
        for request in self.writes:
            request.apply_to(batch)
