import datetime
import json
import sqlite3
import sys

from db import Database, WorkoutRecordRepository
from models import WorkoutRecord
from tools import WorkoutKey


def merge_records(records: list[WorkoutRecord]) -> list[WorkoutRecord]:
    """Collapse records sharing a workout key.

    The first record keeps its id and position, the last one's content wins.
    """
    merged: list[WorkoutRecord] = []
    positions: dict[str, int] = {}
    seen_ids: set[str] = set()
    for record in records:
        key = WorkoutKey.of(record)
        if key in positions:
            pos = positions[key]
            merged[pos] = merged[pos].model_copy(
                update={
                    "data": record.data,
                    "insights": record.insights,
                    "created_at": record.created_at or merged[pos].created_at,
                }
            )
            continue
        if record.id is None or record.id in seen_ids:
            record = record.model_copy(update={"id": WorkoutRecordRepository.mint_id()})
        seen_ids.add(record.id)
        positions[key] = len(merged)
        merged.append(record)
    return merged


def import_legacy(
    json_path: str, db_path: str = "workouts.db", slot: str = "fitnessWorkouts"
) -> int:
    """Import a JSON export of the browser workout list into ``slot``."""
    with open(json_path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, list):
        raise ValueError(f"{json_path} must contain a JSON list")
    incoming = [WorkoutRecord.model_validate(item) for item in payload]

    Database(db_path)
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT value FROM storage_slots WHERE key = ?;", (slot,)
        ).fetchone()
        current = []
        if row and row[0].strip():
            current = [WorkoutRecord.model_validate(item) for item in json.loads(row[0])]
        merged = merge_records(current + incoming)
        conn.execute(
            "INSERT INTO storage_slots (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at;",
            (
                slot,
                json.dumps([r.to_json_dict() for r in merged]),
                datetime.datetime.now(datetime.timezone.utc).isoformat(),
            ),
        )
        conn.commit()
    finally:
        conn.close()
    return len(merged)


if __name__ == '__main__':
    if len(sys.argv) < 2:
        sys.exit("usage: migrate.py EXPORT_JSON [DB_PATH]")
    path = sys.argv[2] if len(sys.argv) > 2 else 'workouts.db'
    count = import_legacy(sys.argv[1], path)
    print(f"{count} workouts stored")
