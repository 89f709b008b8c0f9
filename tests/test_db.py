import os
import sys
import json
import sqlite3
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    Database,
    ExerciseCatalogRepository,
    RoutineRepository,
    UserRepository,
    UserSettingsRepository,
    WorkoutSessionRepository,
)


class RepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_repos.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.catalog = ExerciseCatalogRepository(self.db_path)
        self.routines = RoutineRepository(self.db_path)
        self.sessions = WorkoutSessionRepository(self.db_path, self.catalog, self.routines)
        self.users = UserRepository(self.db_path)
        self.settings = UserSettingsRepository(self.db_path)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_catalog_paging_and_filters(self) -> None:
        for i in range(15):
            self.catalog.add(f"Curl {i:02d}", equipment="dumbbell", target="biceps")
        self.catalog.add("Squat", equipment="barbell", target="quads")
        self.catalog.add("100%_Effort", equipment="body weight", target="abs")

        page, total = self.catalog.fetch_page(page=2, limit=12, name="curl")
        self.assertEqual(total, 15)
        self.assertEqual(len(page), 3)
        self.assertEqual(page[0]["name"], "Curl 12")

        page, total = self.catalog.fetch_page(muscle="quads", equipment="barbell")
        self.assertEqual(total, 1)
        self.assertEqual(page[0]["name"], "Squat")

        _, total = self.catalog.fetch_page(name="%_")
        self.assertEqual(total, 1)

    def test_catalog_rejects_duplicates(self) -> None:
        self.catalog.add("Row", exercise_id="row-1")
        with self.assertRaises(ValueError):
            self.catalog.add("Row again", exercise_id="row-1")
        with self.assertRaises(ValueError):
            self.catalog.add("")

    def test_catalog_import_csv_upserts(self) -> None:
        csv_path = "test_catalog.csv"
        with open(csv_path, "w", encoding="utf-8", newline="") as f:
            f.write("exercise_id,name,equipment,bodypart,target,secondary,gifurl,img,type\n")
            f.write("0001,Push Up,body weight,chest,pectorals,triceps|delts,,,2\n")
            f.write("0002,Rowing,machine,cardio,cardiovascular system,,,,3\n")
        try:
            self.assertEqual(self.catalog.import_csv(csv_path), 2)
            self.assertEqual(self.catalog.import_csv(csv_path), 2)
        finally:
            os.remove(csv_path)
        page, total = self.catalog.fetch_page(name="push")
        self.assertEqual(total, 1)
        self.assertEqual(page[0]["secondary"], ["triceps", "delts"])
        self.assertEqual(page[0]["type"], 2)

    def test_routine_crud_is_owner_scoped(self) -> None:
        rid = self.routines.create("u1", "  Push  ", [{"exerciseId": "e1", "sets": []}])
        self.routines.create("u1", "Pull", [], created_at="2030-01-01T00:00:00Z")
        self.assertEqual([r["name"] for r in self.routines.fetch_for_user("u1")], ["Pull", "Push"])
        self.assertIsNone(self.routines.update("u2", rid, "Hijack", []))
        updated = self.routines.update("u1", rid, "Push B", [])
        self.assertEqual(updated["name"], "Push B")
        self.assertFalse(self.routines.delete("u2", rid))
        self.assertTrue(self.routines.delete("u1", rid))
        self.assertIsNone(self.routines.fetch("u1", rid))

    def test_sessions_newest_first_and_populated(self) -> None:
        ex_id = self.catalog.add("Bench Press", target="pectorals", secondary=["triceps"])
        rid = self.routines.create("u1", "Push", [])
        older = self.sessions.create(
            "u1",
            [{"exerciseId": ex_id, "order": 0, "exerciseType": 1, "sets": []}],
            routine_id=rid,
            calories=120,
            created_at="2024-05-13T08:00:00+02:00",
        )
        newer = self.sessions.create(
            "u1",
            [{"exerciseId": "missing", "order": 0, "exerciseType": 3, "sets": []}],
            created_at="2024-05-14T08:00:00Z",
        )
        self.sessions.create("u2", [], created_at="2024-05-15T08:00:00Z")

        rows = self.sessions.fetch_for_user("u1", populate=True)
        self.assertEqual([r["id"] for r in rows], [newer, older])
        self.assertEqual(rows[1]["createdAt"], "2024-05-13T06:00:00+00:00")
        self.assertEqual(rows[1]["calories"], 120)
        self.assertEqual(rows[1]["routineId"]["name"], "Push")
        self.assertEqual(
            rows[1]["exercises"][0]["exerciseId"],
            {
                "id": ex_id,
                "name": "Bench Press",
                "target": "pectorals",
                "secondary": ["triceps"],
                "img": "",
                "type": 1,
            },
        )
        self.assertEqual(rows[0]["exercises"][0]["exerciseId"], "missing")
        self.assertNotIn("routineId", rows[0])

        raw = self.sessions.fetch_for_user("u1")
        self.assertEqual(raw[1]["routineId"], rid)

    def test_session_update_and_delete(self) -> None:
        sid = self.sessions.create("u1", [])
        self.assertIsNone(self.sessions.update("u2", sid, []))
        updated = self.sessions.update("u1", sid, [{"exerciseId": "x", "sets": []}], calories=10)
        self.assertEqual(updated["calories"], 10)
        self.assertEqual(self.sessions.count("u1"), 1)
        self.assertFalse(self.sessions.delete("u2", sid))
        self.assertTrue(self.sessions.delete("u1", sid))
        self.assertEqual(self.sessions.count(), 0)

    def test_insert_document_keeps_legacy_shape(self) -> None:
        sid = self.sessions.insert_document(
            "u1",
            {
                "_id": "legacy-1",
                "routineId": {"id": "r9"},
                "createdAt": "2023-01-01T10:00:00Z",
                "exercises": [{"exercise_type": 2, "sets": [{"reps": 4}]}],
            },
        )
        self.assertEqual(sid, "legacy-1")
        doc = self.sessions.fetch("u1", sid)
        self.assertEqual(doc["routineId"], "r9")
        self.assertEqual(doc["exercises"][0]["sets"], [{"reps": 4}])
        self.assertEqual(doc["updatedAt"], doc["createdAt"])

    def test_unreadable_document_yields_empty_body(self) -> None:
        sid = self.sessions.create("u1", [])
        self.sessions.execute(
            "UPDATE workout_sessions SET document = ? WHERE id = ?;", ("{not json", sid)
        )
        doc = self.sessions.fetch("u1", sid)
        self.assertNotIn("exercises", doc)
        self.assertEqual(doc["id"], sid)

    def test_user_upsert_and_settings(self) -> None:
        user = self.users.upsert("fb-1", " Ada ", "ADA@Example.com")
        self.assertEqual(user["email"], "ada@example.com")
        self.assertEqual(user["name"], "Ada")
        again = self.users.upsert("fb-1", "Ada L", "ada@example.com", "http://img")
        self.assertEqual(again["id"], user["id"])
        self.assertEqual(again["img"], "http://img")

        self.assertIsNone(self.settings.update("fb-1", weight_unit="lbs"))
        defaults = self.settings.ensure_defaults("fb-1", user["id"])
        self.assertEqual(
            defaults,
            {
                "measurements": {"weightUnit": "kg", "distanceUnit": "km"},
                "dailyGoals": {"dailySetsGoal": 20, "dailyCaloriesGoal": 500},
            },
        )
        updated = self.settings.update("fb-1", weight_unit="lbs", daily_calories_goal=800)
        self.assertEqual(updated["measurements"]["weightUnit"], "lbs")
        self.assertEqual(updated["dailyGoals"]["dailyCaloriesGoal"], 800)
        self.assertEqual(self.settings.ensure_defaults("fb-1", user["id"]), updated)


class SchemaMigrationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_migration.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_old_routines_table_is_rebuilt(self) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute("CREATE TABLE routines (id TEXT PRIMARY KEY, user_id TEXT, name TEXT);")
        conn.commit()
        conn.close()

        Database(self.db_path)
        conn = sqlite3.connect(self.db_path)
        cols = [row[1] for row in conn.execute("PRAGMA table_info(routines);")]
        conn.close()
        self.assertIn("exercises", cols)
        self.assertIn("created_at", cols)

    def test_routine_rows_survive_migration(self) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "CREATE TABLE routines (id TEXT PRIMARY KEY, user_id TEXT NOT NULL, name TEXT NOT NULL, "
            "exercises TEXT NOT NULL DEFAULT '[]', created_at TEXT NOT NULL, updated_at TEXT NOT NULL, "
            "notes TEXT);"
        )
        conn.execute(
            "INSERT INTO routines VALUES ('r1', 'u1', 'Legacy', ?, '2024-01-01', '2024-01-01', 'x');",
            (json.dumps([{"exerciseId": "e"}]),),
        )
        conn.commit()
        conn.close()

        routines = RoutineRepository(self.db_path)
        self.assertEqual(routines.fetch("u1", "r1")["exercises"], [{"exerciseId": "e"}])


if __name__ == "__main__":
    unittest.main()
