import json
import os
import sqlite3
import sys
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Database
from migrate import import_legacy, merge_records
from models import WorkoutRecord


def legacy_entry(wid, date, duration="45:30", heart_rate=140):
    return {
        "id": wid,
        "timestamp": f"{date}T10:00:00.000Z",
        "data": {
            "date": date,
            "workoutType": "Functional Strength Training",
            "duration": duration,
            "avgHeartRate": heart_rate,
        },
        "insights": {"trends": []},
    }


class TestSchemaMigration:
    def test_adds_missing_column(self, tmp_path):
        db_file = tmp_path / "test.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute("CREATE TABLE storage_slots (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO storage_slots (key, value) VALUES ('fitnessWorkouts', '[]')")
        conn.execute("CREATE TABLE storage_slots_old (id INTEGER)")
        conn.commit()
        conn.close()

        Database(str(db_file))

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='storage_slots_old'"
        )
        assert cur.fetchone() is None
        cols = [row[1] for row in conn.execute("PRAGMA table_info(storage_slots)")]
        assert cols == ["key", "value", "updated_at"]
        assert conn.execute("SELECT value FROM storage_slots").fetchone() == ("[]",)
        conn.close()


class TestLegacyImport:
    def test_merge_records(self):
        records = [
            WorkoutRecord.model_validate(legacy_entry(1, "2024-01-01", heart_rate=130)),
            WorkoutRecord.model_validate(legacy_entry(2, "2024-01-02")),
            WorkoutRecord.model_validate(legacy_entry(3, "2024-01-01", heart_rate=150)),
            WorkoutRecord(data={"date": "2024-01-03"}),
        ]
        merged = merge_records(records)
        assert [r.id for r in merged][:2] == ["1", "2"]
        assert merged[0].data["avgHeartRate"] == 150
        assert merged[2].id is not None

    def test_merge_keeps_timestamp_when_duplicate_has_none(self):
        first = WorkoutRecord.model_validate(legacy_entry(1, "2024-01-01", heart_rate=130))
        second = WorkoutRecord(id="9", data=dict(first.data, avgHeartRate=150))
        merged = merge_records([first, second])
        assert len(merged) == 1
        assert merged[0].id == "1"
        assert merged[0].data["avgHeartRate"] == 150
        assert merged[0].created_at == "2024-01-01T10:00:00.000Z"

    def test_import_into_slot(self, tmp_path):
        export = tmp_path / "export.json"
        export.write_text(
            json.dumps(
                [
                    legacy_entry(1705312345678, "2024-01-15"),
                    legacy_entry(1705398745678, "2024-01-16", duration="30:00"),
                ]
            ),
            encoding="utf-8",
        )
        db_file = str(tmp_path / "workouts.db")
        assert import_legacy(str(export), db_file) == 2
        assert import_legacy(str(export), db_file) == 2

        conn = sqlite3.connect(db_file)
        raw = conn.execute(
            "SELECT value FROM storage_slots WHERE key = 'fitnessWorkouts'"
        ).fetchone()[0]
        conn.close()
        stored = json.loads(raw)
        assert [r["id"] for r in stored] == ["1705312345678", "1705398745678"]
        assert stored[0]["createdAt"] == "2024-01-15T10:00:00.000Z"
        assert "timestamp" not in stored[0]

    def test_rejects_non_list(self, tmp_path):
        export = tmp_path / "export.json"
        export.write_text('{"id": 1}', encoding="utf-8")
        with pytest.raises(ValueError, match="JSON list"):
            import_legacy(str(export), str(tmp_path / "workouts.db"))
