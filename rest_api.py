import datetime
import logging
import math
import sqlite3
import time
from typing import Callable

from fastapi import (
    FastAPI,
    HTTPException,
    Response,
    APIRouter,
    Request,
    Header,
    Depends,
)
from fastapi.middleware.cors import CORSMiddleware

from auth import AuthError, FirebaseTokenVerifier, TokenVerifier, extract_user_id
from config import APP_VERSION, load_app_settings
from db import (
    AsyncWorkoutSessionRepository,
    ExerciseCatalogRepository,
    RoutineRepository,
    UserRepository,
    UserSettingsRepository,
    WorkoutSessionRepository,
)
from models import (
    DailyGoalSettingsIn,
    MeasurementSettingsIn,
    RoutineIn,
    UserProfileIn,
    UserSettingsIn,
    WorkoutSessionIn,
    validate_daily_goals,
    validate_measurements,
)
from stats_service import StatisticsService, lift_routine

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 50


class RateLimiter:
    """Sliding-window request limit per client address, kept in memory."""

    def __init__(self, limit: int = 60, window: int = 60) -> None:
        self.limit = limit
        self.window = window
        self.history: dict[str, list[float]] = {}

    def _prune(self, now: float) -> None:
        for client, stamps in list(self.history.items()):
            fresh = [t for t in stamps if now - t < self.window]
            if fresh:
                self.history[client] = fresh
            else:
                del self.history[client]

    async def __call__(self, request: Request, call_next):
        client = request.client.host if request.client else "anon"
        now = time.time()
        self._prune(now)
        stamps = self.history.setdefault(client, [])
        if len(stamps) >= self.limit:
            return Response("rate limit exceeded", status_code=429)
        stamps.append(now)
        return await call_next(request)


def _page_params(page: int | None, limit: int | None) -> tuple[int, int]:
    page = max(page or 1, 1)
    limit = min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)
    return page, max(limit, 1)


def _workout_record(session: dict) -> dict:
    record = lift_routine(session)
    record.pop("userId", None)
    return record


class FitTrackAPI:
    """Provides REST endpoints for routines, workout logging and the dashboard."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
        *,
        verifier: TokenVerifier | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
        rate_limit: int | None = None,
        rate_window: int | None = None,
    ) -> None:
        self.config = load_app_settings(yaml_path)
        self.db_path = db_path or self.config.db_path
        self.users = UserRepository(self.db_path)
        self.user_settings = UserSettingsRepository(self.db_path)
        self.exercise_catalog = ExerciseCatalogRepository(self.db_path)
        self.routines = RoutineRepository(self.db_path)
        self.workouts = WorkoutSessionRepository(
            self.db_path, self.exercise_catalog, self.routines
        )
        self.async_workouts = AsyncWorkoutSessionRepository(self.db_path)
        self.verifier = verifier or FirebaseTokenVerifier(
            self.config.firebase_credentials, self.config.firebase_project_id
        )
        zone = self.config.zone()
        self.clock = clock or (lambda: datetime.datetime.now(zone))
        self.statistics = StatisticsService(
            self.workouts, self.async_workouts, clock=self.clock
        )
        self.app = FastAPI(
            title="FitTrack API",
            description="REST API for routines, workout logging and dashboard statistics",
            version=APP_VERSION,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )
        limit = rate_limit if rate_limit is not None else self.config.rate_limit
        if limit is not None:
            limiter = RateLimiter(
                limit=limit, window=rate_window or self.config.rate_window
            )
            self.app.middleware("http")(limiter)
        self._setup_routes()

    def current_user(self, authorization: str | None = Header(None)) -> str:
        """FastAPI dependency returning the verified uid of the caller."""
        try:
            uid = extract_user_id(authorization, self.verifier)
        except AuthError:
            raise HTTPException(
                status_code=401, detail="Unauthorized: Invalid or expired token"
            )
        if not uid:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return uid

    def _setup_routes(self) -> None:
        exercises_router = APIRouter(prefix="/api/exercises", tags=["Exercises"])
        routines_router = APIRouter(prefix="/api/routines", tags=["Routines"])
        workout_router = APIRouter(prefix="/api/workout", tags=["Workouts"])
        dashboard_router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])
        settings_router = APIRouter(prefix="/api/settings", tags=["Settings"])
        user_router = APIRouter(prefix="/api/user", tags=["User"])
        current_user = self.current_user

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.workouts.count()
                return {"status": "ok"}
            except sqlite3.Error as e:  # pragma: no cover - connectivity failure
                logger.exception("health check failed")
                raise HTTPException(status_code=500, detail=str(e))

        def _catalog_page(page, limit, **filters):
            page, limit = _page_params(page, limit)
            data, total = self.exercise_catalog.fetch_page(page, limit, **filters)
            return {
                "data": data,
                "page": page,
                "totalPages": math.ceil(total / limit),
                "totalItems": total,
            }

        @exercises_router.get("")
        def list_exercises(
            page: int | None = None,
            limit: int | None = None,
            name: str | None = None,
            user_id: str = Depends(current_user),
        ):
            return _catalog_page(page, limit, name=name)

        @exercises_router.get("/search")
        def search_exercises(
            muscle: str | None = None,
            equipment: str | None = None,
            name: str | None = None,
            page: int | None = None,
            limit: int | None = None,
            user_id: str = Depends(current_user),
        ):
            return _catalog_page(
                page, limit, name=name, muscle=muscle, equipment=equipment
            )

        @routines_router.post("", status_code=201)
        def create_routine(body: RoutineIn, user_id: str = Depends(current_user)):
            self.routines.create(user_id, body.name, body.exercise_documents())
            return {"status": "success"}

        @routines_router.get("")
        def list_routines(user_id: str = Depends(current_user)):
            return self.routines.fetch_for_user(user_id)

        @routines_router.put("/{routine_id}")
        def update_routine(
            routine_id: str, body: RoutineIn, user_id: str = Depends(current_user)
        ):
            routine = self.routines.update(
                user_id, routine_id, body.name, body.exercise_documents()
            )
            if routine is None:
                raise HTTPException(
                    status_code=404, detail="Routine not found or access denied"
                )
            return {"status": "success", "data": routine}

        @routines_router.delete("/{routine_id}")
        def delete_routine(routine_id: str, user_id: str = Depends(current_user)):
            if not self.routines.delete(user_id, routine_id):
                raise HTTPException(
                    status_code=404, detail="Routine not found or access denied"
                )
            return {"message": "Routine deleted successfully", "routineId": routine_id}

        @workout_router.post("", status_code=201)
        def create_workout(
            body: WorkoutSessionIn, user_id: str = Depends(current_user)
        ):
            if not body.exercises:
                raise HTTPException(
                    status_code=400,
                    detail="Workout must include at least one exercise",
                )
            sid = self.workouts.create(
                user_id,
                body.exercise_documents(),
                routine_id=body.routine_id,
                calories=body.calories,
                total_duration=body.total_duration,
            )
            session = self.workouts.fetch(user_id, sid)
            session.pop("userId", None)
            return {"status": "success", "data": session}

        @workout_router.get("")
        def list_workouts(user_id: str = Depends(current_user)):
            sessions = self.workouts.fetch_for_user(user_id, populate=True)
            return {"status": "success", "data": [_workout_record(s) for s in sessions]}

        @workout_router.put("/{workout_id}")
        def update_workout(
            workout_id: str,
            body: WorkoutSessionIn,
            user_id: str = Depends(current_user),
        ):
            if not body.exercises:
                raise HTTPException(
                    status_code=400,
                    detail="Workout must include at least one exercise",
                )
            session = self.workouts.update(
                user_id,
                workout_id,
                body.exercise_documents(),
                routine_id=body.routine_id,
                calories=body.calories,
                total_duration=body.total_duration,
            )
            if session is None:
                raise HTTPException(status_code=404, detail="Workout not found")
            return {"status": "success", "data": session}

        @workout_router.delete("/{workout_id}")
        def delete_workout(workout_id: str, user_id: str = Depends(current_user)):
            if not self.workouts.delete(user_id, workout_id):
                raise HTTPException(status_code=404, detail="Workout not found")
            return {"status": "success", "message": "Workout deleted"}

        @dashboard_router.get("/dashboard-stats")
        async def dashboard_stats(user_id: str = Depends(current_user)):
            try:
                stats = await self.statistics.dashboard_async(user_id)
            except sqlite3.Error as e:
                logger.exception(
                    "Failed to fetch dashboard stats",
                    extra={"fittrack_user_id": user_id},
                )
                raise HTTPException(
                    status_code=500,
                    detail=str(e) or "Failed to fetch dashboard stats",
                )
            return {"status": "success", "data": stats}

        @user_router.post("")
        def upsert_user(body: UserProfileIn, user_id: str = Depends(current_user)):
            user = self.users.upsert(
                user_id, body.display_name, body.email, body.photo_url
            )
            self.user_settings.ensure_defaults(user_id, user["id"])
            return user

        def _settings_response(settings: dict | None):
            if settings is None:
                raise HTTPException(status_code=404, detail="User settings not found")
            return {"success": True, "data": settings}

        @settings_router.get("")
        def get_settings(user_id: str = Depends(current_user)):
            settings = self.user_settings.fetch(user_id)
            if settings is None:
                user = self.users.fetch(user_id)
                if user is None:
                    raise HTTPException(status_code=404, detail="User not found")
                settings = self.user_settings.ensure_defaults(user_id, user["id"])
            return _settings_response(settings)

        @settings_router.put("/measurements")
        def update_measurements(
            body: MeasurementSettingsIn, user_id: str = Depends(current_user)
        ):
            try:
                validate_measurements(body.weight_unit, body.distance_unit)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return _settings_response(
                self.user_settings.update(
                    user_id,
                    weight_unit=body.weight_unit or None,
                    distance_unit=body.distance_unit or None,
                )
            )

        @settings_router.put("/daily-goals")
        def update_daily_goals(
            body: DailyGoalSettingsIn, user_id: str = Depends(current_user)
        ):
            try:
                validate_daily_goals(body.daily_sets_goal, body.daily_calories_goal)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return _settings_response(
                self.user_settings.update(
                    user_id,
                    daily_sets_goal=body.daily_sets_goal,
                    daily_calories_goal=body.daily_calories_goal,
                )
            )

        @settings_router.put("")
        def update_all_settings(
            body: UserSettingsIn, user_id: str = Depends(current_user)
        ):
            fields: dict = {}
            try:
                if body.measurements is not None:
                    m = body.measurements
                    validate_measurements(m.weight_unit, m.distance_unit)
                    fields["weight_unit"] = m.weight_unit or None
                    fields["distance_unit"] = m.distance_unit or None
                if body.daily_goals is not None:
                    g = body.daily_goals
                    validate_daily_goals(g.daily_sets_goal, g.daily_calories_goal)
                    fields["daily_sets_goal"] = g.daily_sets_goal
                    fields["daily_calories_goal"] = g.daily_calories_goal
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            if not any(v is not None for v in fields.values()):
                raise HTTPException(
                    status_code=400, detail="No valid settings provided to update"
                )
            return _settings_response(self.user_settings.update(user_id, **fields))

        self.app.include_router(exercises_router)
        self.app.include_router(routines_router)
        self.app.include_router(workout_router)
        self.app.include_router(dashboard_router)
        self.app.include_router(settings_router)
        self.app.include_router(user_router)


api = FitTrackAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    from logging_utils import setup_logging

    setup_logging(api.config.log_format, api.config.log_level)
    uvicorn.run(app)
