from __future__ import annotations

from firestore_batch.errors import PathError


DEFAULT_DATABASE_ID = "(default)"
DOCUMENTS_SEGMENT = "documents"


def split_path(path: str) -> tuple[str, ...]:
    """Split a slash separated path, rejecting empty segments."""

    parts = tuple(str(path).split("/"))
    if parts == ("",):
        raise PathError(f"Path must not be empty: {path!r}")
    if "" in parts:
        raise PathError(f"Path must not contain empty segments: {path!r}")
    return parts


def _segment_count(path: str) -> int:
    parts = str(path).split("/")
    if "" in parts:
        return 0
    return len(parts)


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part.strip("/"))


def is_document_path(path: str) -> bool:
    count = _segment_count(path)
    return count > 0 and count % 2 == 0


def is_collection_path(path: str) -> bool:
    return _segment_count(path) % 2 == 1


def ensure_document_path(path: str) -> str:
    if not is_document_path(path):
        raise PathError("document_path must refer to a document.")
    return "/".join(split_path(path))


def ensure_collection_path(path: str) -> str:
    if not is_collection_path(path):
        raise PathError("collection_path must refer to a collection.")
    return "/".join(split_path(path))


def database_path(project_id: str, database_id: str = DEFAULT_DATABASE_ID) -> str:
    project = project_id.strip()
    database = (database_id or DEFAULT_DATABASE_ID).strip()
    if not project:
        raise PathError("project_id must not be empty.")
    if "/" in project or "/" in database:
        raise PathError(f"Invalid project/database id: {project_id}/{database_id}")
    return f"projects/{project}/databases/{database}"


def documents_path(db_path: str) -> str:
    return f"{db_path}/{DOCUMENTS_SEGMENT}"


def split_resource_path(full_path: str) -> tuple[str, str]:
    """Split ``projects/{p}/databases/{d}/documents/...`` into (documents root, relative path)."""

    parts = split_path(full_path)
    if len(parts) < 5 or parts[0] != "projects" or parts[2] != "databases" or parts[4] != DOCUMENTS_SEGMENT:
        raise PathError(f"Not a document resource path: {full_path}")
    return "/".join(parts[:5]), "/".join(parts[5:])


def relative_path(full_path: str, documents_root: str) -> str:
    """Strip the documents root from a resource path.

    Returns an empty string for the documents root itself.
    """

    if full_path == documents_root:
        return ""
    prefix = f"{documents_root}/"
    if not full_path.startswith(prefix):
        raise PathError(f"Path is outside of {documents_root}: {full_path}")
    return full_path[len(prefix):]
