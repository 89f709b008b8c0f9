import os
import asyncio
import sys
import datetime
import sqlite3
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from auth import AuthError
from rest_api import FitTrackAPI, RateLimiter

NOW = datetime.datetime(2024, 5, 15, 12, 0, tzinfo=datetime.timezone.utc)


class FakeVerifier:
    def __init__(self, tokens: dict) -> None:
        self.tokens = tokens

    def verify_token(self, token: str) -> dict:
        if token not in self.tokens:
            raise AuthError("invalid token")
        return self.tokens[token]


def auth(token: str = "token-u1") -> dict:
    return {"Authorization": f"Bearer {token}"}


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_fittrack.db"
        self.yaml_path = "test_settings.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        verifier = FakeVerifier(
            {"token-u1": {"uid": "u1"}, "token-u2": {"user_id": "u2"}}
        )
        self.api = FitTrackAPI(
            db_path=self.db_path,
            yaml_path=self.yaml_path,
            verifier=verifier,
            clock=lambda: NOW,
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_auth_required(self) -> None:
        resp = self.client.get("/api/dashboard/dashboard-stats")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["detail"], "Unauthorized")

        resp = self.client.get("/api/dashboard/dashboard-stats", headers=auth("nope"))
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["detail"], "Unauthorized: Invalid or expired token")

        resp = self.client.get(
            "/api/workout", headers={"Authorization": "Basic abc"}
        )
        self.assertEqual(resp.status_code, 401)

    def test_dashboard_empty(self) -> None:
        resp = self.client.get("/api/dashboard/dashboard-stats", headers=auth())
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(body["data"]["totalWorkouts"], 0)
        self.assertEqual(body["data"]["recentWorkouts"], [])
        self.assertEqual(len(body["data"]["dailyData"]), 7)

    def test_dashboard_scenario(self) -> None:
        ex_id = self.api.exercise_catalog.add("Bench Press", target="pectorals")
        rid = self.api.routines.create("u1", "Push", [])
        self.api.workouts.create(
            "u1",
            [
                {
                    "exerciseId": ex_id,
                    "order": 0,
                    "exerciseType": 1,
                    "sets": [{"reps": 10, "weight": 50, "done": True}],
                }
            ],
            routine_id=rid,
            calories=300,
            created_at=NOW - datetime.timedelta(hours=2),
        )
        self.api.workouts.create(
            "u2",
            [{"exerciseId": ex_id, "exerciseType": 2, "sets": [{"reps": 99, "done": True}]}],
            created_at=NOW,
        )

        resp = self.client.get("/api/dashboard/dashboard-stats", headers=auth())
        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertEqual(data["totalWorkouts"], 1)
        self.assertEqual(data["totalSets"], 1)
        self.assertEqual(data["totalReps"], 10)
        self.assertEqual(data["totalVolume"], 500)
        self.assertEqual(data["totalWeight"], 500)
        self.assertEqual(data["todaySets"], 1)
        self.assertEqual(data["todayCalories"], 300)
        self.assertEqual(data["weeklyWorkouts"], 1)
        self.assertEqual(data["weeklyVolume"], 0)
        recent = data["recentWorkouts"][0]
        self.assertEqual(recent["routine"]["name"], "Push")
        self.assertNotIn("routineId", recent)
        self.assertEqual(recent["exercises"][0]["exerciseId"]["name"], "Bench Press")

    def test_dashboard_store_failure(self) -> None:
        with patch.object(
            self.api.async_workouts,
            "fetch_for_user",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            resp = self.client.get("/api/dashboard/dashboard-stats", headers=auth())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["detail"], "database is locked")

    def test_workout_crud(self) -> None:
        resp = self.client.post("/api/workout", json={"exercises": []}, headers=auth())
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            resp.json()["detail"], "Workout must include at least one exercise"
        )

        rid = self.api.routines.create("u1", "Legs", [])
        payload = {
            "routineId": rid,
            "calories": 250,
            "totalDurationSeconds": 1800,
            "exercises": [
                {
                    "exerciseId": "squat",
                    "exerciseType": 1,
                    "sets": [
                        {"reps": 5, "weight": 100, "setType": "normal", "done": True},
                        {"reps": 5, "weight": 100},
                    ],
                }
            ],
        }
        resp = self.client.post("/api/workout", json=payload, headers=auth())
        self.assertEqual(resp.status_code, 201)
        created = resp.json()["data"]
        self.assertNotIn("userId", created)
        self.assertEqual(created["routineId"], rid)
        self.assertEqual(created["totalDurationSeconds"], 1800)
        sets = created["exercises"][0]["sets"]
        self.assertEqual(sets[0]["setType"], "normal")
        self.assertTrue(sets[0]["done"])
        self.assertFalse(sets[1]["done"])
        self.assertEqual(created["exercises"][0]["order"], 0)

        resp = self.client.get("/api/workout", headers=auth())
        listed = resp.json()["data"]
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0]["routine"]["name"], "Legs")
        self.assertNotIn("routineId", listed[0])
        self.assertEqual(self.client.get("/api/workout", headers=auth("token-u2")).json()["data"], [])

        wid = created["id"]
        payload["calories"] = 400
        resp = self.client.put(f"/api/workout/{wid}", json=payload, headers=auth("token-u2"))
        self.assertEqual(resp.status_code, 404)
        resp = self.client.put(f"/api/workout/{wid}", json=payload, headers=auth())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["calories"], 400)

        resp = self.client.delete(f"/api/workout/{wid}", headers=auth("token-u2"))
        self.assertEqual(resp.status_code, 404)
        resp = self.client.delete(f"/api/workout/{wid}", headers=auth())
        self.assertEqual(resp.json(), {"status": "success", "message": "Workout deleted"})

    def test_foreign_routine_is_not_resolved(self) -> None:
        body = {"name": "Secret plan", "exercises": [{"exerciseId": "e1", "exerciseType": 1, "sets": []}]}
        self.client.post("/api/routines", json=body, headers=auth())
        rid = self.client.get("/api/routines", headers=auth()).json()[0]["id"]
        payload = {
            "routineId": rid,
            "exercises": [{"exerciseId": "e1", "exerciseType": 1, "sets": []}],
        }

        resp = self.client.post("/api/workout", json=payload, headers=auth("token-u2"))
        self.assertEqual(resp.status_code, 201)
        listed = self.client.get("/api/workout", headers=auth("token-u2")).json()["data"]
        self.assertNotIn("routine", listed[0])
        self.assertNotIn("routineId", listed[0])
        stats = self.client.get("/api/dashboard/dashboard-stats", headers=auth("token-u2")).json()["data"]
        self.assertNotIn("routine", stats["recentWorkouts"][0])

        self.client.post("/api/workout", json=payload, headers=auth())
        own = self.client.get("/api/workout", headers=auth()).json()["data"][0]
        recent = self.client.get("/api/dashboard/dashboard-stats", headers=auth()).json()["data"]["recentWorkouts"][0]
        self.assertEqual(own["routine"]["name"], "Secret plan")
        self.assertEqual(own["routine"], recent["routine"])

    def test_workout_rejects_unknown_exercise_type(self) -> None:
        payload = {"exercises": [{"exerciseId": "x", "exerciseType": 7, "sets": []}]}
        resp = self.client.post("/api/workout", json=payload, headers=auth())
        self.assertEqual(resp.status_code, 422)

    def test_routine_crud(self) -> None:
        body = {
            "name": "Push",
            "exercises": [
                {
                    "exerciseId": "bench",
                    "name": "Bench Press",
                    "exerciseType": 1,
                    "sets": [{"targetReps": 8, "targetWeight": 60}, {"reps": 12, "type": "warmup", "rest": 30}],
                }
            ],
        }
        resp = self.client.post("/api/routines", json=body, headers=auth())
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json(), {"status": "success"})

        routines = self.client.get("/api/routines", headers=auth()).json()
        self.assertEqual(len(routines), 1)
        sets = routines[0]["exercises"][0]["sets"]
        self.assertEqual(sets[0], {"reps": 8, "weight": 60, "type": "normal", "rest": 60})
        self.assertEqual(sets[1], {"reps": 12, "type": "warmup", "rest": 30})
        rid = routines[0]["id"]

        body["name"] = "Push B"
        resp = self.client.put(f"/api/routines/{rid}", json=body, headers=auth("token-u2"))
        self.assertEqual(resp.status_code, 404)
        resp = self.client.put(f"/api/routines/{rid}", json=body, headers=auth())
        self.assertEqual(resp.json()["data"]["name"], "Push B")

        resp = self.client.delete(f"/api/routines/{rid}", headers=auth())
        self.assertEqual(
            resp.json(), {"message": "Routine deleted successfully", "routineId": rid}
        )
        self.assertEqual(self.client.get("/api/routines", headers=auth()).json(), [])

    def test_exercise_paging(self) -> None:
        for i in range(60):
            self.api.exercise_catalog.add(f"Move {i:02d}", equipment="cable", target="lats")
        resp = self.client.get("/api/exercises", params={"limit": 100, "page": 0}, headers=auth())
        body = resp.json()
        self.assertEqual(body["page"], 1)
        self.assertEqual(len(body["data"]), 50)
        self.assertEqual(body["totalPages"], 2)
        self.assertEqual(body["totalItems"], 60)

        resp = self.client.get(
            "/api/exercises/search",
            params={"muscle": "lats", "equipment": "cable", "name": "move 5"},
            headers=auth(),
        )
        body = resp.json()
        self.assertEqual(body["totalItems"], 10)
        self.assertEqual(len(body["data"]), 10)

        resp = self.client.get("/api/exercises/search", params={"muscle": "calves"}, headers=auth())
        self.assertEqual(resp.json()["totalPages"], 0)

    def test_user_and_settings(self) -> None:
        resp = self.client.get("/api/settings", headers=auth())
        self.assertEqual(resp.status_code, 404)

        resp = self.client.post(
            "/api/user",
            json={"email": "Ada@Example.com", "displayName": "Ada"},
            headers=auth(),
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["email"], "ada@example.com")
        self.assertEqual(resp.json()["firebaseUserId"], "u1")

        resp = self.client.get("/api/settings", headers=auth())
        self.assertEqual(
            resp.json(),
            {
                "success": True,
                "data": {
                    "measurements": {"weightUnit": "kg", "distanceUnit": "km"},
                    "dailyGoals": {"dailySetsGoal": 20, "dailyCaloriesGoal": 500},
                },
            },
        )

        resp = self.client.put(
            "/api/settings/measurements", json={"weightUnit": "stone"}, headers=auth()
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], 'Invalid weight unit. Must be "kg" or "lbs"')

        resp = self.client.put(
            "/api/settings/measurements", json={"weightUnit": "lbs"}, headers=auth()
        )
        self.assertEqual(resp.json()["data"]["measurements"], {"weightUnit": "lbs", "distanceUnit": "km"})

        resp = self.client.put(
            "/api/settings/daily-goals", json={"dailySetsGoal": 101}, headers=auth()
        )
        self.assertEqual(resp.status_code, 400)

        resp = self.client.put("/api/settings", json={}, headers=auth())
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "No valid settings provided to update")

        resp = self.client.put(
            "/api/settings",
            json={"measurements": {"distanceUnit": "miles"}, "dailyGoals": {"dailyCaloriesGoal": 750}},
            headers=auth(),
        )
        self.assertEqual(
            resp.json()["data"],
            {
                "measurements": {"weightUnit": "lbs", "distanceUnit": "miles"},
                "dailyGoals": {"dailySetsGoal": 20, "dailyCaloriesGoal": 750},
            },
        )

    def test_settings_update_without_profile(self) -> None:
        resp = self.client.put(
            "/api/settings/daily-goals", json={"dailySetsGoal": 10}, headers=auth("token-u2")
        )
        self.assertEqual(resp.status_code, 404)


class RateLimitTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_ratelimit.db"
        self.yaml_path = "test_ratelimit.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.api = FitTrackAPI(
            db_path=self.db_path,
            yaml_path=self.yaml_path,
            verifier=FakeVerifier({}),
            rate_limit=2,
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_limit_exceeded(self) -> None:
        self.assertEqual(self.client.get("/health").status_code, 200)
        self.assertEqual(self.client.get("/health").status_code, 200)
        self.assertEqual(self.client.get("/health").status_code, 429)

    def test_idle_clients_are_forgotten(self) -> None:
        limiter = RateLimiter(limit=1, window=60)

        async def call_next(request):
            return "ok"

        def request(host):
            return SimpleNamespace(client=SimpleNamespace(host=host))

        with patch("rest_api.time.time", return_value=1000.0):
            self.assertEqual(asyncio.run(limiter(request("10.0.0.1"), call_next)), "ok")
            self.assertEqual(asyncio.run(limiter(request("10.0.0.1"), call_next)).status_code, 429)
        self.assertIn("10.0.0.1", limiter.history)
        with patch("rest_api.time.time", return_value=1061.0):
            self.assertEqual(asyncio.run(limiter(request("10.0.0.2"), call_next)), "ok")
        self.assertEqual(list(limiter.history), ["10.0.0.2"])


if __name__ == "__main__":
    unittest.main()
