"""Request bodies and document helpers for the FitTrack API.

Stored documents are plain JSON-compatible dicts with camelCase keys. The
models below validate what clients send before it is turned into a document.
"""
from __future__ import annotations

import datetime
import re
from typing import Any, List, Literal, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

SetType = Literal["warmup", "normal", "dropset", "failure"]

# exerciseType discriminant; 2 is bodyweight
STRENGTH = 1
CARDIO = 3

WEIGHT_UNITS = ("kg", "lbs")
DISTANCE_UNITS = ("km", "miles")
DEFAULT_REST_SECONDS = 60

_FRACTION = re.compile(r"(?<=\d\d:\d\d:\d\d)\.(\d+)")


# Either the raw id or the populated object.
Reference = Union[str, Mapping[str, Any]]


def reference_id(value: Reference | None) -> Optional[str]:
    """Return the identifier behind a raw or populated reference."""
    if isinstance(value, Mapping):
        ref = value.get("id", value.get("_id"))
        return str(ref) if ref is not None else None
    if isinstance(value, str) and value:
        return value
    return None


def is_resolved(value: Any) -> bool:
    return isinstance(value, Mapping)


def parse_iso(value: str) -> datetime.datetime:
    """``datetime.fromisoformat`` that also accepts ``Z`` and any fraction length.

    Raises ``ValueError`` for text that is not an ISO-8601 timestamp.
    """
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.datetime.fromisoformat(text)


class SessionSetIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reps: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    time: Optional[float] = Field(None, ge=0, description="Minutes")
    distance: Optional[float] = Field(None, ge=0)
    rest: Optional[float] = Field(None, description="Seconds")
    set_type: Optional[SetType] = Field(
        None,
        validation_alias=AliasChoices("setType", "type"),
        serialization_alias="setType",
    )
    done: Optional[bool] = None

    def to_document(self) -> dict:
        doc = self.model_dump(by_alias=True, exclude_none=True)
        doc["done"] = bool(self.done) if self.done is not None else False
        return doc


class SessionExerciseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exercise_id: str = Field(..., min_length=1, alias="exerciseId")
    order: Optional[int] = None
    exercise_type: int = Field(
        ...,
        validation_alias=AliasChoices("exerciseType", "exercise_type"),
        ge=STRENGTH,
        le=CARDIO,
    )
    sets: List[SessionSetIn] = Field(default_factory=list)

    def to_document(self, index: int) -> dict:
        return {
            "exerciseId": self.exercise_id,
            "order": self.order if self.order is not None else index,
            "exerciseType": self.exercise_type,
            "sets": [s.to_document() for s in self.sets],
        }


class WorkoutSessionIn(BaseModel):
    """Body of ``POST /api/workout`` and ``PUT /api/workout/{id}``."""

    model_config = ConfigDict(populate_by_name=True)

    routine_id: Optional[str] = Field(None, alias="routineId")
    total_duration: Optional[float] = Field(
        None,
        ge=0,
        validation_alias=AliasChoices("totalDurationSeconds", "duration"),
    )
    calories: Optional[float] = Field(None, ge=0)
    exercises: List[SessionExerciseIn] = Field(default_factory=list)

    def exercise_documents(self) -> list[dict]:
        return [ex.to_document(i) for i, ex in enumerate(self.exercises)]


class RoutineSetIn(BaseModel):
    """Planned set; the builder sends ``target*`` names, older clients the plain ones."""

    target_reps: Optional[int] = Field(None, alias="targetReps", ge=0)
    reps: Optional[int] = Field(None, ge=0)
    target_weight: Optional[float] = Field(None, alias="targetWeight", ge=0)
    weight: Optional[float] = Field(None, ge=0)
    target_duration: Optional[float] = Field(None, alias="targetDuration", ge=0)
    time: Optional[float] = Field(None, ge=0)
    target_distance: Optional[float] = Field(None, alias="targetDistance", ge=0)
    distance: Optional[float] = Field(None, ge=0)
    set_type: Optional[SetType] = Field(None, alias="setType")
    type: Optional[SetType] = None
    rest_seconds: Optional[float] = Field(None, alias="restSeconds")
    rest: Optional[float] = None

    def normalized(self) -> dict:
        """Collapse the alternative field names, keeping only provided values."""
        pairs = {
            "reps": (self.target_reps, self.reps),
            "weight": (self.target_weight, self.weight),
            "time": (self.target_duration, self.time),
            "distance": (self.target_distance, self.distance),
            "type": (self.set_type, self.type),
            "rest": (self.rest_seconds, self.rest),
        }
        out: dict[str, Any] = {}
        for key, (preferred, fallback) in pairs.items():
            value = preferred if preferred is not None else fallback
            if value is not None:
                out[key] = value
        return out

    def to_document(self) -> dict:
        doc = self.normalized()
        doc.setdefault("type", "normal")
        doc.setdefault("rest", DEFAULT_REST_SECONDS)
        return doc


class RoutineExerciseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exercise_id: str = Field(..., min_length=1, alias="exerciseId")
    name: str = ""
    order: Optional[int] = None
    target: str = ""
    secondary: List[str] = Field(default_factory=list)
    equipment: str = ""
    img: str = ""
    gif: str = ""
    exercise_type: int = Field(
        ...,
        validation_alias=AliasChoices("exerciseType", "exercise_type"),
        ge=STRENGTH,
        le=CARDIO,
    )
    sets: List[RoutineSetIn] = Field(default_factory=list)

    def to_document(self, index: int) -> dict:
        return {
            "exerciseId": self.exercise_id,
            "name": self.name,
            "order": self.order if self.order is not None else index,
            "target": self.target,
            "secondary": list(self.secondary),
            "equipment": self.equipment,
            "img": self.img,
            "gif": self.gif,
            "exerciseType": self.exercise_type,
            "sets": [s.to_document() for s in self.sets],
        }


class RoutineIn(BaseModel):
    name: str = Field(..., min_length=1)
    exercises: List[RoutineExerciseIn] = Field(default_factory=list)

    def exercise_documents(self) -> list[dict]:
        return [ex.to_document(i) for i, ex in enumerate(self.exercises)]


class UserProfileIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=3)
    display_name: str = Field("", alias="displayName")
    photo_url: Optional[str] = Field(None, alias="photoURL")


class MeasurementSettingsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    weight_unit: Optional[str] = Field(None, alias="weightUnit")
    distance_unit: Optional[str] = Field(None, alias="distanceUnit")


class DailyGoalSettingsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    daily_sets_goal: Optional[int] = Field(None, alias="dailySetsGoal")
    daily_calories_goal: Optional[int] = Field(None, alias="dailyCaloriesGoal")


class UserSettingsIn(BaseModel):
    measurements: Optional[MeasurementSettingsIn] = None
    daily_goals: Optional[DailyGoalSettingsIn] = Field(None, alias="dailyGoals")


def validate_measurements(weight_unit: str | None, distance_unit: str | None) -> None:
    if weight_unit and weight_unit not in WEIGHT_UNITS:
        raise ValueError('Invalid weight unit. Must be "kg" or "lbs"')
    if distance_unit and distance_unit not in DISTANCE_UNITS:
        raise ValueError('Invalid distance unit. Must be "km" or "miles"')


def validate_daily_goals(sets_goal: int | None, calories_goal: int | None) -> None:
    if sets_goal is not None and not 1 <= sets_goal <= 100:
        raise ValueError("Daily sets goal must be between 1 and 100")
    if calories_goal is not None and not 50 <= calories_goal <= 2000:
        raise ValueError("Daily calories goal must be between 50 and 2000")
