from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

from firestore_batch.errors import ConvertError
from firestore_batch.field_path import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    FieldPath,
    FieldPathLike,
    leaf_paths,
    set_nested,
)


class WriteKind(str, Enum):
    CREATE = "CREATE"
    SET = "SET"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class Precondition:
    exists: bool | None = None
    update_time: datetime | None = None

    def __post_init__(self) -> None:
        if self.exists is not None and self.update_time is not None:
            raise ConvertError("cannot specify both exists and update_time.")


@dataclass(frozen=True)
class Write:
    """A single create/set/update/delete instruction for one document."""

    path: str
    kind: WriteKind
    data: dict[str, Any] | None = None
    update_mask: tuple[FieldPath, ...] | None = None
    transforms: tuple[FieldPath, ...] = ()
    precondition: Precondition | None = None
    merge: bool | tuple[FieldPath, ...] = False

    @property
    def is_merge(self) -> bool:
        return self.merge is True or (isinstance(self.merge, tuple) and len(self.merge) > 0)


def _check_no_sentinels(value: Any) -> None:
    if value is DELETE_FIELD or value is SERVER_TIMESTAMP:
        raise ConvertError(f"{value!r} cannot be used inside an array.")
    if isinstance(value, (list, tuple)):
        for item in value:
            _check_no_sentinels(item)
    elif isinstance(value, Mapping):
        for item in value.values():
            _check_no_sentinels(item)


def _split_sentinels(
    data: Mapping[str, Any],
    prefix: FieldPath | None = None,
) -> tuple[dict[str, Any], list[FieldPath], list[FieldPath]]:
    """Separate sentinel values from plain field values.

    Returns (plain nested data, DELETE_FIELD paths, SERVER_TIMESTAMP paths).
    Maps left empty only because all of their values were sentinels are dropped.
    """

    clean: dict[str, Any] = {}
    deletes: list[FieldPath] = []
    transforms: list[FieldPath] = []
    for key, value in data.items():
        path = prefix.child(str(key)) if prefix is not None else FieldPath((str(key),))
        if value is DELETE_FIELD:
            deletes.append(path)
        elif value is SERVER_TIMESTAMP:
            transforms.append(path)
        elif isinstance(value, Mapping):
            nested, nested_deletes, nested_transforms = _split_sentinels(value, path)
            deletes.extend(nested_deletes)
            transforms.extend(nested_transforms)
            if nested or len(value) == 0:
                clean[str(key)] = nested
        else:
            if isinstance(value, (list, tuple)):
                for item in value:
                    _check_no_sentinels(item)
            clean[str(key)] = value
    return clean, deletes, transforms


def _ensure_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ConvertError(f"data must be a mapping: {type(data).__name__}")
    return data


def _normalize_merge_paths(merge: Any) -> list[FieldPath]:
    raw: Iterable[FieldPathLike]
    if isinstance(merge, (str, FieldPath)):
        raw = [merge]
    else:
        raw = merge
    paths: list[FieldPath] = []
    for value in raw:
        try:
            path = FieldPath.parse(value)
        except ValueError as exc:
            raise ConvertError(f"Invalid merge field path: {value!r}") from exc
        if path not in paths:
            paths.append(path)
    if not paths:
        raise ConvertError("merge must name at least one field path.")
    return paths


def create_writes(path: str, data: Mapping[str, Any]) -> list[Write]:
    clean, deletes, transforms = _split_sentinels(_ensure_mapping(data))
    if deletes:
        raise ConvertError("DELETE_FIELD cannot be used in create.")
    return [
        Write(
            path=path,
            kind=WriteKind.CREATE,
            data=clean,
            transforms=tuple(transforms),
            precondition=Precondition(exists=False),
        )
    ]


def set_writes(path: str, data: Mapping[str, Any], *, merge: Any = None) -> list[Write]:
    """Build the write for a set.

    ``merge`` is None/False for a full overwrite, True to merge every field in
    ``data``, or a list of field paths to merge only those fields.
    """

    source = _ensure_mapping(data)
    clean, deletes, transforms = _split_sentinels(source)

    if merge is None or merge is False:
        if deletes:
            raise ConvertError("DELETE_FIELD cannot be used in set without merge.")
        return [Write(path=path, kind=WriteKind.SET, data=clean, transforms=tuple(transforms))]

    if merge is True:
        mask = [field for field, _ in leaf_paths(clean)] + deletes
        return [
            Write(
                path=path,
                kind=WriteKind.SET,
                data=clean,
                update_mask=tuple(sorted(mask)),
                transforms=tuple(transforms),
                merge=True,
            )
        ]

    merge_paths = _normalize_merge_paths(merge)
    for merge_path in merge_paths:
        try:
            merge_path.lookup(source)
        except KeyError as exc:
            raise ConvertError(f"Merge field {merge_path} is not present in data.") from exc

    for delete_path in deletes:
        if not any(merge_path.is_prefix_of(delete_path) for merge_path in merge_paths):
            raise ConvertError(f"DELETE_FIELD used on {delete_path}, which is not a merge field.")

    restricted: dict[str, Any] = {}
    for merge_path in merge_paths:
        try:
            value = merge_path.lookup(clean)
        except KeyError:
            # Only sentinels under this path.
            continue
        set_nested(restricted, merge_path, value)

    merged_transforms = [
        field for field in transforms if any(merge_path.is_prefix_of(field) for merge_path in merge_paths)
    ]
    mask = [merge_path for merge_path in merge_paths if merge_path not in transforms]
    return [
        Write(
            path=path,
            kind=WriteKind.SET,
            data=restricted,
            update_mask=tuple(mask),
            transforms=tuple(merged_transforms),
            merge=tuple(merge_paths),
        )
    ]


def _check_conflicting_paths(paths: list[FieldPath]) -> None:
    ordered = sorted(paths)
    for index in range(1, len(ordered)):
        previous = ordered[index - 1]
        current = ordered[index]
        if previous == current:
            raise ConvertError(f"Field path {current} is given more than once.")
        if previous.is_prefix_of(current):
            raise ConvertError(f"Field paths {previous} and {current} conflict.")


def update_writes(
    path: str,
    data: Mapping[str, Any],
    *,
    update_time: datetime | None = None,
) -> list[Write]:
    """Build the write for an update.

    Keys of ``data`` are field paths, so ``{"a.b": 1}`` only touches ``b``
    inside ``a``.
    """

    source = _ensure_mapping(data)
    if len(source) == 0:
        raise ConvertError("data is required for update.")

    fields: list[tuple[FieldPath, Any]] = []
    for key, value in source.items():
        try:
            fields.append((FieldPath.parse(key), value))
        except ValueError as exc:
            raise ConvertError(f"Invalid field path: {key!r}") from exc
    _check_conflicting_paths([field for field, _ in fields])

    clean: dict[str, Any] = {}
    mask: list[FieldPath] = []
    transforms: list[FieldPath] = []
    for field, value in fields:
        if value is DELETE_FIELD:
            mask.append(field)
        elif value is SERVER_TIMESTAMP:
            transforms.append(field)
        elif isinstance(value, Mapping):
            nested, nested_deletes, nested_transforms = _split_sentinels(value, field)
            if nested_deletes:
                raise ConvertError("DELETE_FIELD can only be used at the top level of update data.")
            transforms.extend(nested_transforms)
            if nested or len(value) == 0:
                set_nested(clean, field, nested)
                mask.append(field)
        else:
            if isinstance(value, (list, tuple)):
                _check_no_sentinels(value)
            set_nested(clean, field, value)
            mask.append(field)

    if update_time is not None:
        precondition = Precondition(update_time=update_time)
    else:
        precondition = Precondition(exists=True)
    return [
        Write(
            path=path,
            kind=WriteKind.UPDATE,
            data=clean,
            update_mask=tuple(mask),
            transforms=tuple(transforms),
            precondition=precondition,
        )
    ]


def delete_write(
    path: str,
    *,
    exists: bool | None = None,
    update_time: datetime | None = None,
) -> Write:
    precondition = None
    if exists is not None or update_time is not None:
        precondition = Precondition(exists=exists, update_time=update_time)
    return Write(path=path, kind=WriteKind.DELETE, precondition=precondition)


def timestamp_to_time(value: Any) -> datetime | None:
    """Convert a server timestamp into an aware UTC datetime."""

    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if hasattr(value, "ToDatetime"):
        return value.ToDatetime(tzinfo=timezone.utc)
    if isinstance(value, Mapping) and "seconds" in value:
        seconds = int(value["seconds"])
        nanos = int(value.get("nanos", 0))
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=nanos // 1000)
    raise ConvertError(f"Unsupported timestamp value: {value!r}")
