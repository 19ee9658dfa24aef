import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from config import APP_VERSION, YamlConfig
from errors import ImageStoreError, RecordStoreError
from migrate import import_legacy
from models import SaveResult, WorkoutRecord
from tools import StorageTools
from workout_app import WorkoutApp


def format_workout(record: WorkoutRecord) -> str:
    data = record.data
    fields = [data.get("date"), data.get("workoutType"), data.get("duration")]
    return "  ".join([str(record.id)] + [str(f) if f else "--" for f in fields])


def print_history(app: WorkoutApp, limit: Optional[int] = None) -> None:
    workouts = app.history.recent(limit)
    if not workouts:
        print("No workouts saved yet")
        return
    for record in workouts:
        print(format_workout(record))


async def show_workout(app: WorkoutApp, workout_id: str) -> bool:
    detail = await app.history.select(workout_id)
    if detail is None:
        print(f"Workout {workout_id} not found", file=sys.stderr)
        return False
    print(json.dumps(detail.record.to_json_dict(), indent=2))
    if not detail.has_images:
        print("No screenshots available")
        return True
    for name in ("image1", "image2"):
        payload = getattr(detail.images, name)
        if payload is None:
            print(f"{name}: missing")
        else:
            print(f"{name}: {len(payload)} characters")
    return True


def _read_json(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def save_workout(
    app: WorkoutApp,
    data_path: str,
    insights_path: Optional[str] = None,
    image1_path: Optional[str] = None,
    image2_path: Optional[str] = None,
) -> SaveResult:
    data = _read_json(data_path)
    insights = _read_json(insights_path) if insights_path else {}
    image1 = StorageTools.encode_image(image1_path) if image1_path else None
    image2 = StorageTools.encode_image(image2_path) if image2_path else None
    result = await app.save(data, insights, image1, image2)
    if result.updated:
        print(f"Updated existing workout from {data.get('date')}")
    else:
        print(f"Saved new workout {result.record_id}")
    if result.warning:
        print(result.warning)
    return result


async def delete_workout(app: WorkoutApp, workout_id: str) -> bool:
    if await app.history.delete(workout_id):
        print("Workout deleted successfully")
        return True
    print(f"Workout {workout_id} not found", file=sys.stderr)
    return False


async def print_usage(app: WorkoutApp) -> None:
    usage = await app.history.usage()
    print(
        f"{usage.pair_count} screenshot pairs, {usage.total_mb} MB ({usage.total_bytes} bytes)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Workout history storage")
    parser.add_argument("--config", default="settings.yaml")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    hist = sub.add_parser("history")
    hist.add_argument("--limit", type=int)

    show = sub.add_parser("show")
    show.add_argument("workout_id")

    save = sub.add_parser("save")
    save.add_argument("--data", required=True)
    save.add_argument("--insights")
    save.add_argument("--image1")
    save.add_argument("--image2")

    delete = sub.add_parser("delete")
    delete.add_argument("workout_id")

    sub.add_parser("usage")
    sub.add_parser("prune")
    sub.add_parser("clear-images")

    imp = sub.add_parser("import-legacy")
    imp.add_argument("--json", required=True)

    key = sub.add_parser("set-key")
    key.add_argument("key")
    return parser


async def run(args: argparse.Namespace) -> int:
    if args.cmd == "import-legacy":
        settings = YamlConfig(args.config).settings()
        count = import_legacy(args.json, settings.db_path, settings.record_slot)
        print(f"{count} workouts stored")
        return 0
    if args.cmd == "set-key":
        WorkoutApp(yaml_path=args.config).set_api_key(args.key)
        print("API key saved")
        return 0

    try:
        async with WorkoutApp(yaml_path=args.config) as app:
            if args.cmd == "history":
                print_history(app, args.limit)
            elif args.cmd == "show":
                return 0 if await show_workout(app, args.workout_id) else 1
            elif args.cmd == "save":
                await save_workout(app, args.data, args.insights, args.image1, args.image2)
            elif args.cmd == "delete":
                return 0 if await delete_workout(app, args.workout_id) else 1
            elif args.cmd == "usage":
                await print_usage(app)
            elif args.cmd == "prune":
                print(f"{await app.history.prune_orphans()} orphaned screenshot pairs removed")
            elif args.cmd == "clear-images":
                print(f"{await app.history.clear_images()} screenshot pairs removed")
    except RecordStoreError as exc:
        if args.cmd == "save":
            print(f"Nothing was saved: {exc}", file=sys.stderr)
        else:
            print(f"Workout history unavailable: {exc}", file=sys.stderr)
        return 1
    except ImageStoreError as exc:
        print(f"Screenshot storage unavailable: {exc}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
