import requests
from typing import Optional


class FitTrackClient:
    """Simple REST client for the FitTrack API."""

    def __init__(
        self, base_url: str = "http://localhost:8000", token: Optional[str] = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _request(self, method: str, path: str, **kwargs):
        resp = requests.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=10,
            **kwargs,
        )
        resp.raise_for_status()
        return resp.json()

    def dashboard_stats(self) -> dict:
        return self._request("GET", "/api/dashboard/dashboard-stats")["data"]

    def list_workouts(self) -> list:
        return self._request("GET", "/api/workout")["data"]

    def log_workout(
        self,
        exercises: list[dict],
        routine_id: Optional[str] = None,
        calories: Optional[float] = None,
        duration: Optional[float] = None,
    ) -> dict:
        body: dict = {"exercises": exercises}
        if routine_id:
            body["routineId"] = routine_id
        if calories is not None:
            body["calories"] = calories
        if duration is not None:
            body["totalDurationSeconds"] = duration
        return self._request("POST", "/api/workout", json=body)["data"]

    def delete_workout(self, workout_id: str) -> None:
        self._request("DELETE", f"/api/workout/{workout_id}")

    def list_routines(self) -> list:
        return self._request("GET", "/api/routines")

    def create_routine(self, name: str, exercises: list[dict]) -> None:
        self._request("POST", "/api/routines", json={"name": name, "exercises": exercises})

    def search_exercises(self, **params) -> dict:
        return self._request("GET", "/api/exercises/search", params=params)

    def settings(self) -> dict:
        return self._request("GET", "/api/settings")["data"]
