import json
import os
import sqlite3
import sys
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cli import main, format_workout
from config import APP_VERSION
from models import WorkoutRecord


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("ENCRYPT_SETTINGS", raising=False)
    path = tmp_path / "settings.yaml"
    path.write_text(
        f"db_path: {tmp_path / 'workouts.db'}\nimages_db_path: {tmp_path / 'images.db'}\n",
        encoding="utf-8",
    )
    return str(path)


def write_json(path, payload) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_format_workout():
    record = WorkoutRecord(id="7", data={"date": "2024-01-15", "workoutType": "Run"})
    assert format_workout(record) == "7  2024-01-15  Run  --"


def test_save_history_show_delete(tmp_path, config, capsys):
    data = write_json(
        tmp_path / "data.json",
        {"date": "2024-01-15", "workoutType": "Strength", "duration": "45:30", "avgHeartRate": 142},
    )
    insights = write_json(tmp_path / "insights.json", {"trends": ["steady"]})
    image = tmp_path / "summary.png"
    image.write_bytes(b"\x89PNG")

    assert main(["--config", config, "history"]) == 0
    assert "No workouts saved yet" in capsys.readouterr().out

    assert main(["--config", config, "save", "--data", data, "--insights", insights, "--image1", str(image)]) == 0
    out = capsys.readouterr().out
    assert "Saved new workout" in out
    workout_id = out.strip().split()[-1]

    assert main(["--config", config, "save", "--data", data]) == 0
    assert "Updated existing workout from 2024-01-15" in capsys.readouterr().out

    assert main(["--config", config, "history"]) == 0
    out = capsys.readouterr().out
    assert out.strip() == f"{workout_id}  2024-01-15  Strength  45:30"

    assert main(["--config", config, "show", workout_id]) == 0
    out = capsys.readouterr().out
    assert '"avgHeartRate": 142' in out
    assert "No screenshots available" in out

    assert main(["--config", config, "delete", workout_id]) == 0
    assert "Workout deleted successfully" in capsys.readouterr().out
    assert main(["--config", config, "delete", workout_id]) == 1
    assert main(["--config", config, "show", workout_id]) == 1


def test_usage_prune_clear(tmp_path, config, capsys):
    data = write_json(tmp_path / "data.json", {"date": "2024-01-15", "workoutType": "Run", "duration": "20:00"})
    image = tmp_path / "hr.jpg"
    image.write_bytes(b"abc")
    assert main(["--config", config, "save", "--data", data, "--image1", str(image), "--image2", str(image)]) == 0
    capsys.readouterr()

    assert main(["--config", config, "usage"]) == 0
    assert "1 screenshot pairs" in capsys.readouterr().out

    assert main(["--config", config, "prune"]) == 0
    assert "0 orphaned" in capsys.readouterr().out

    assert main(["--config", config, "clear-images"]) == 0
    assert "1 screenshot pairs removed" in capsys.readouterr().out


def test_fatal_save_reports_nothing_saved(tmp_path, config, capsys):
    data = write_json(tmp_path / "data.json", {"date": "2024-01-15", "workoutType": "Run"})
    db_file = tmp_path / "workouts.db"
    main(["--config", config, "history"])
    conn = sqlite3.connect(str(db_file))
    conn.execute("INSERT INTO storage_slots (key, value) VALUES ('fitnessWorkouts', 'oops')")
    conn.commit()
    conn.close()
    capsys.readouterr()

    assert main(["--config", config, "save", "--data", data]) == 1
    assert "Nothing was saved" in capsys.readouterr().err


def test_import_legacy_and_set_key(tmp_path, config, capsys):
    export = write_json(
        tmp_path / "export.json",
        [
            {
                "id": 1705312345678,
                "timestamp": "2024-01-15T10:00:00.000Z",
                "data": {"date": "2024-01-15", "workoutType": "Run", "duration": "20:00"},
                "insights": {},
            }
        ],
    )
    assert main(["--config", config, "import-legacy", "--json", export]) == 0
    assert "1 workouts stored" in capsys.readouterr().out
    assert main(["--config", config, "history"]) == 0
    assert capsys.readouterr().out.startswith("1705312345678  2024-01-15  Run  20:00")

    assert main(["--config", config, "set-key", "sk-test"]) == 0
    with open(config, encoding="utf-8") as f:
        assert "api_key: sk-test" in f.read()


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert APP_VERSION in capsys.readouterr().out
