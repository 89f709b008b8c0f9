import argparse
import datetime
import json
import shutil
import time
from typing import Optional

import requests

from config import load_app_settings
from db import ExerciseCatalogRepository, RoutineRepository, WorkoutSessionRepository
from logging_utils import setup_logging
from stats_service import StatisticsService, parse_timestamp


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def _session_repo(db_path: str) -> WorkoutSessionRepository:
    return WorkoutSessionRepository(
        db_path, ExerciseCatalogRepository(db_path), RoutineRepository(db_path)
    )


def dashboard_stats(
    db_path: str, user_id: str, now: Optional[str] = None
) -> dict:
    """Compute the dashboard for ``user_id`` straight from the database."""
    ref = parse_timestamp(now) if now else None
    if now and ref is None:
        raise ValueError(f"invalid timestamp: {now}")
    service = StatisticsService(_session_repo(db_path))
    return service.dashboard(user_id, ref)


def demo_data(db_path: str, user_id: str) -> int:
    """Populate the database with a week of demo sessions if the user has none."""
    sessions = _session_repo(db_path)
    if sessions.count(user_id):
        print("Database already contains workouts")
        return 0
    catalog = ExerciseCatalogRepository(db_path)
    bench = catalog.add("Bench Press", "barbell", "chest", "pectorals", ["triceps"])
    run = catalog.add("Treadmill Run", "machine", "cardio", "cardiovascular system", exercise_type=3)
    routines = RoutineRepository(db_path)
    routine_id = routines.create(
        user_id,
        "Push Day",
        [
            {
                "exerciseId": bench,
                "name": "Bench Press",
                "order": 0,
                "exerciseType": 1,
                "sets": [{"reps": 8, "weight": 60, "type": "normal", "rest": 90}],
            }
        ],
    )
    now = datetime.datetime.now(datetime.timezone.utc)
    for days_ago in range(7):
        sessions.create(
            user_id,
            [
                {
                    "exerciseId": bench,
                    "order": 0,
                    "exerciseType": 1,
                    "sets": [
                        {"reps": 8, "weight": 60 + days_ago * 2.5, "done": True},
                        {"reps": 6, "weight": 65 + days_ago * 2.5, "done": True},
                    ],
                },
                {
                    "exerciseId": run,
                    "order": 1,
                    "exerciseType": 3,
                    "sets": [{"time": 20, "distance": 3.5, "done": True}],
                },
            ],
            routine_id=routine_id,
            calories=350,
            total_duration=2700,
            created_at=now - datetime.timedelta(days=days_ago),
        )
    print("Demo data inserted")
    return 7


def import_catalog(csv_path: str, db_path: str) -> int:
    count = ExerciseCatalogRepository(db_path).import_csv(csv_path)
    print(f"Imported {count} exercises")
    return count


def benchmark(url: str, token: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(
            f"{url}/api/dashboard/dashboard-stats",
            headers={"Authorization": f"Bearer {token}"},
            timeout=5,
        )
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average dashboard-stats response time over {runs} runs: {avg:.4f}s")


def serve(yaml_path: str, host: str, port: int) -> None:
    import uvicorn

    from rest_api import FitTrackAPI

    config = load_app_settings(yaml_path)
    setup_logging(config.log_format, config.log_level)
    uvicorn.run(FitTrackAPI(yaml_path=yaml_path).app, host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="FitTrack utility commands")
    sub = parser.add_subparsers(dest="cmd", required=True)

    srv = sub.add_parser("serve")
    srv.add_argument("--yaml", default="settings.yaml")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    stats = sub.add_parser("stats")
    stats.add_argument("--db", default="fittrack.db")
    stats.add_argument("--user", required=True)
    stats.add_argument("--now", help="ISO-8601 reference instant")

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="fittrack.db")
    demo.add_argument("--user", required=True)

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="fittrack.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="fittrack.db")

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--token", required=True)
    bench.add_argument("--runs", type=int, default=10)

    imp = sub.add_parser("import-catalog")
    imp.add_argument("--csv", required=True)
    imp.add_argument("--db", default="fittrack.db")

    args = parser.parse_args()

    if args.cmd == "serve":
        serve(args.yaml, args.host, args.port)
    elif args.cmd == "stats":
        try:
            result = dashboard_stats(args.db, args.user, args.now)
        except ValueError as e:
            parser.error(str(e))
        print(json.dumps(result, indent=2, default=str))
    elif args.cmd == "demo":
        demo_data(args.db, args.user)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.token, args.runs)
    elif args.cmd == "import-catalog":
        import_catalog(args.csv, args.db)


if __name__ == "__main__":
    main()
