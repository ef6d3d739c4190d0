#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import replace
import argparse
import json
import logging
import sys

from pydantic import ValidationError

from firestore_batch.convert import Write
from firestore_batch.database import Database, create_database
from firestore_batch.schemas import WritePlan
from firestore_batch.settings import load_settings


LOGGER = logging.getLogger(__name__)
DRY_RUN_PROJECT_ID = "dry-run"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply a JSON write plan to Firestore as one atomic batch.")
    parser.add_argument("--plan", required=True, help="Path to the JSON write plan.")
    parser.add_argument(
        "--project-id",
        default=None,
        help="Firestore project id. If omitted, FIRESTORE_PROJECT_ID from settings is used.",
    )
    parser.add_argument(
        "--database-id",
        default=None,
        help="Firestore database id. If omitted, FIRESTORE_DATABASE_ID from settings is used.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the write records without committing.")
    return parser.parse_args(argv)


def _write_payload(write: Write) -> dict[str, object]:
    payload: dict[str, object] = {"kind": write.kind.value, "path": write.path}
    if write.data is not None:
        payload["data"] = write.data
    if write.update_mask is not None:
        payload["update_mask"] = [str(field) for field in write.update_mask]
    if write.transforms:
        payload["server_timestamps"] = [str(field) for field in write.transforms]
    if write.precondition is not None:
        if write.precondition.exists is not None:
            payload["exists"] = write.precondition.exists
        if write.precondition.update_time is not None:
            payload["update_time"] = write.precondition.update_time.isoformat()
    return payload


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    logging.basicConfig(level=settings.log_level_number, format="%(message)s")

    try:
        plan = WritePlan.load(args.plan)
    except (OSError, ValidationError) as exc:
        print(f"Write plan を読み込めません: {exc}", file=sys.stderr)
        return 2

    project_id = (args.project_id or settings.firestore_project_id).strip()
    database_id = (args.database_id or settings.firestore_database_id).strip()

    if args.dry_run:
        database = Database(None, project_id=project_id or DRY_RUN_PROJECT_ID, database_id=database_id)
    else:
        if not project_id:
            print(
                "Firestore project id is required. Set --project-id or FIRESTORE_PROJECT_ID.",
                file=sys.stderr,
            )
            return 2
        settings = replace(settings, firestore_project_id=project_id, firestore_database_id=database_id)
        database = create_database(settings)

    batch = database.batch()
    try:
        plan.apply_to(batch)
    except (ValueError, TypeError) as exc:
        print(f"Write plan が不正です: {exc}", file=sys.stderr)
        return 2

    if args.dry_run:
        LOGGER.info("dry-run: writes=%s", len(batch.writes))
        for write in batch.writes:
            print(json.dumps(_write_payload(write), ensure_ascii=False, default=str))
        return 0

    try:
        commit_time = batch.commit()
    except Exception:
        LOGGER.exception("write plan適用失敗: plan=%s", args.plan)
        return 1

    print(
        json.dumps(
            {
                "writes": len(batch.writes),
                "commit_time": commit_time.isoformat() if commit_time is not None else None,
            }
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
