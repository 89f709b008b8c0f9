from __future__ import annotations
import copy
import datetime
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from db import AsyncWorkoutSessionRepository, WorkoutSessionRepository
from models import STRENGTH, is_resolved, parse_iso

logger = logging.getLogger(__name__)

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
RECENT_WORKOUT_LIMIT = 5
DAILY_VALUE_SCALE = 100
WEEK_WINDOW = datetime.timedelta(days=7)

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def _number(value: Any) -> float | int:
    """Return ``value`` as a number; missing or non-numeric values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
        if value.is_integer():
            value = int(value)
    if not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return value


def _items(value: Any) -> List[Mapping]:
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, Mapping)]


def _exercise_type(exercise: Mapping) -> Any:
    if "exerciseType" in exercise:
        return exercise["exerciseType"]
    return exercise.get("exercise_type")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Return ``value`` as a timezone-aware datetime, or ``None`` if unusable.

    Naive values are taken to be UTC, matching how the repository stores them.
    """
    if isinstance(value, datetime.datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = parse_iso(value)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def is_set_done(workout_set: Mapping) -> bool:
    """Lifetime completion rule.

    An explicit ``done`` of ``True`` or ``False`` is authoritative. Any other
    value (usually a missing flag from an older write path) falls back to
    whether the set recorded reps, time or distance.
    """
    done = workout_set.get("done")
    if done is True:
        return True
    if done is False:
        return False
    return (
        _number(workout_set.get("reps")) > 0
        or _number(workout_set.get("time")) > 0
        or _number(workout_set.get("distance")) > 0
    )


def is_set_marked_done(workout_set: Mapping) -> bool:
    """Completion rule for the today/week/daily buckets: the flag alone."""
    return bool(workout_set.get("done"))


def lifetime_totals(sessions: Iterable[Mapping]) -> Dict[str, float | int]:
    """Sum lifetime counters, inferring cardio/strength from each set's own fields.

    A set with both cardio and strength fields contributes to both groups but
    is counted once in ``totalSets``.
    """
    totals: Dict[str, float | int] = {
        "totalWorkouts": 0,
        "totalVolume": 0,
        "totalWeight": 0,
        "totalSets": 0,
        "totalReps": 0,
        "totalCardioMinutes": 0,
        "totalCardioDistance": 0,
        "totalCaloriesBurned": 0,
    }
    for session in sessions:
        totals["totalWorkouts"] += 1
        totals["totalCaloriesBurned"] += _number(session.get("calories"))
        for exercise in _items(session.get("exercises")):
            for workout_set in _items(exercise.get("sets")):
                if not is_set_done(workout_set):
                    continue
                totals["totalSets"] += 1
                reps = _number(workout_set.get("reps"))
                weight = _number(workout_set.get("weight"))
                minutes = _number(workout_set.get("time"))
                distance = _number(workout_set.get("distance"))
                if minutes > 0 or distance > 0:
                    totals["totalCardioMinutes"] += minutes
                    totals["totalCardioDistance"] += distance
                if reps > 0 or weight > 0:
                    volume = reps * weight
                    totals["totalVolume"] += volume
                    totals["totalWeight"] += volume
                    totals["totalReps"] += reps
    return totals


def non_strength_volume(sessions: Iterable[Mapping]) -> float | int:
    """Sum reps x weight of flagged sets on exercises whose type is not 1.

    Unlike :func:`lifetime_totals` this trusts the exercise-level type and
    skips type 1 (strength). The guard is kept exactly as the dashboard has
    always computed it; whether it should be ``== 1`` is an open product
    question, so do not merge it with the lifetime rule.
    """
    volume: float | int = 0
    for session in sessions:
        for exercise in _items(session.get("exercises")):
            if _exercise_type(exercise) == STRENGTH:
                continue
            for workout_set in _items(exercise.get("sets")):
                if is_set_marked_done(workout_set):
                    volume += _number(workout_set.get("reps")) * _number(
                        workout_set.get("weight")
                    )
    return volume


def _day_bounds(
    day: datetime.date, tz: datetime.tzinfo
) -> tuple[datetime.datetime, datetime.datetime]:
    start = datetime.datetime.combine(day, datetime.time.min, tzinfo=tz)
    end = datetime.datetime.combine(
        day + datetime.timedelta(days=1), datetime.time.min, tzinfo=tz
    )
    return start, end


def _sessions_between(
    dated: List[tuple[datetime.datetime, Mapping]],
    start: datetime.datetime,
    end: datetime.datetime | None = None,
) -> List[Mapping]:
    return [s for ts, s in dated if ts >= start and (end is None or ts < end)]


def today_totals(
    dated: List[tuple[datetime.datetime, Mapping]], now: datetime.datetime
) -> Dict[str, float | int]:
    start, end = _day_bounds(now.date(), now.tzinfo)
    calories: float | int = 0
    sets = 0
    for session in _sessions_between(dated, start, end):
        calories += _number(session.get("calories"))
        for exercise in _items(session.get("exercises")):
            sets += sum(1 for s in _items(exercise.get("sets")) if is_set_marked_done(s))
    return {"todayCalories": calories, "todaySets": sets}


def weekly_totals(
    dated: List[tuple[datetime.datetime, Mapping]], now: datetime.datetime
) -> Dict[str, float | int]:
    """Rolling seven day window ending at ``now``, not a calendar week."""
    recent = _sessions_between(dated, now - WEEK_WINDOW)
    return {
        "weeklyWorkouts": len(recent),
        "weeklyVolume": non_strength_volume(recent),
    }


def daily_series(
    dated: List[tuple[datetime.datetime, Mapping]], now: datetime.datetime
) -> List[Dict[str, Any]]:
    """Return one entry per day of the current Monday-first calendar week."""
    monday = now.date() - datetime.timedelta(days=now.weekday())
    series = []
    for offset, name in enumerate(DAY_NAMES):
        start, end = _day_bounds(monday + datetime.timedelta(days=offset), now.tzinfo)
        day_sessions = _sessions_between(dated, start, end)
        volume = non_strength_volume(day_sessions)
        series.append(
            {
                "day": name,
                "value": _round_half_up(volume / DAILY_VALUE_SCALE),
                "workouts": len(day_sessions),
                "volume": volume,
            }
        )
    return series


def lift_routine(session: Mapping) -> Dict[str, Any]:
    """Copy ``session`` without ``routineId``, exposing a populated routine as ``routine``."""
    record = {k: copy.deepcopy(v) for k, v in session.items() if k != "routineId"}
    routine = session.get("routineId")
    if is_resolved(routine):
        record["routine"] = copy.deepcopy(dict(routine))
    return record


def recent_workouts(
    sessions: Iterable[Mapping], limit: int = RECENT_WORKOUT_LIMIT
) -> List[Dict[str, Any]]:
    """Newest sessions first, with a populated ``routineId`` exposed as ``routine``."""

    def sort_key(session: Mapping) -> tuple[bool, datetime.datetime]:
        ts = parse_timestamp(session.get("createdAt"))
        return ts is not None, ts or _EPOCH

    ordered = sorted(sessions, key=sort_key, reverse=True)[:limit]
    return [lift_routine(session) for session in ordered]


def compute_dashboard_stats(
    sessions: Iterable[Mapping], now: datetime.datetime
) -> Dict[str, Any]:
    """Aggregate a user's full session history into the dashboard payload.

    ``now`` is the reference instant; day boundaries are taken in its time
    zone (a naive ``now`` is treated as UTC). The function reads nothing else
    and never mutates ``sessions``. Sessions without a usable ``createdAt``
    still count toward lifetime totals but fall outside every time bucket.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    sessions = [s for s in sessions if isinstance(s, Mapping)]
    dated = []
    for session in sessions:
        ts = parse_timestamp(session.get("createdAt"))
        if ts is not None:
            dated.append((ts, session))

    stats: Dict[str, Any] = {}
    stats.update(lifetime_totals(sessions))
    stats.update(today_totals(dated, now))
    stats.update(weekly_totals(dated, now))
    stats["dailyData"] = daily_series(dated, now)
    stats["recentWorkouts"] = recent_workouts(sessions)
    return stats


class StatisticsService:
    """Compute dashboard statistics for a user's workout history."""

    def __init__(
        self,
        session_repo: WorkoutSessionRepository,
        async_session_repo: AsyncWorkoutSessionRepository | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.sessions = session_repo
        self.async_sessions = async_session_repo
        self.clock = clock or (
            lambda: datetime.datetime.now(datetime.timezone.utc)
        )

    def dashboard(
        self, user_id: str, now: datetime.datetime | None = None
    ) -> Dict[str, Any]:
        sessions = self.sessions.fetch_for_user(user_id, populate=True)
        return self._compute(user_id, sessions, now)

    async def dashboard_async(
        self, user_id: str, now: datetime.datetime | None = None
    ) -> Dict[str, Any]:
        if self.async_sessions is None:
            return self.dashboard(user_id, now)
        sessions = await self.async_sessions.fetch_for_user(user_id, populate=True)
        return self._compute(user_id, sessions, now)

    def _compute(
        self, user_id: str, sessions: List[Mapping], now: datetime.datetime | None
    ) -> Dict[str, Any]:
        ref = now or self.clock()
        stats = compute_dashboard_stats(sessions, ref)
        logger.debug(
            "dashboard stats computed",
            extra={
                "fittrack_user_id": user_id,
                "fittrack_sessions": len(sessions),
                "fittrack_reference": ref.isoformat(),
            },
        )
        return stats
