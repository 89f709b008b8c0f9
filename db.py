import sqlite3
import aiosqlite
import csv
import os
import datetime
import json
import logging
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import Iterable, List, Optional, Tuple

from models import parse_iso, reference_id

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _to_utc_iso(value: datetime.datetime | str | None) -> str:
    """Normalize a timestamp to an ISO string in UTC so rows sort lexically."""
    if value is None:
        return _utcnow()
    if isinstance(value, str):
        value = parse_iso(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _split(value: str | None) -> list[str]:
    return [v for v in value.split("|") if v] if value else []


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    firebase_user_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL,
                    img TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "firebase_user_id",
                "name",
                "email",
                "img",
                "created_at",
                "updated_at",
            ],
        ),
        "user_settings": (
            """CREATE TABLE user_settings (
                    firebase_user_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    weight_unit TEXT NOT NULL DEFAULT 'kg',
                    distance_unit TEXT NOT NULL DEFAULT 'km',
                    daily_sets_goal INTEGER NOT NULL DEFAULT 20,
                    daily_calories_goal INTEGER NOT NULL DEFAULT 500,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "firebase_user_id",
                "user_id",
                "weight_unit",
                "distance_unit",
                "daily_sets_goal",
                "daily_calories_goal",
                "created_at",
                "updated_at",
            ],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    equipment TEXT NOT NULL DEFAULT '',
                    bodypart TEXT NOT NULL DEFAULT '',
                    target TEXT NOT NULL DEFAULT '',
                    secondary TEXT NOT NULL DEFAULT '',
                    gifurl TEXT,
                    img TEXT,
                    type INTEGER NOT NULL DEFAULT 1,
                    exercise_id TEXT UNIQUE
                );""",
            [
                "id",
                "name",
                "equipment",
                "bodypart",
                "target",
                "secondary",
                "gifurl",
                "img",
                "type",
                "exercise_id",
            ],
        ),
        "routines": (
            """CREATE TABLE routines (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    exercises TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            ["id", "user_id", "name", "exercises", "created_at", "updated_at"],
        ),
        "workout_sessions": (
            """CREATE TABLE workout_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    routine_id TEXT,
                    document TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "routine_id",
                "document",
                "created_at",
                "updated_at",
            ],
        ),
    }

    _INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sessions_user ON workout_sessions(user_id, created_at);",
        "CREATE INDEX IF NOT EXISTS idx_routines_user ON routines(user_id, created_at);",
    ]

    def __init__(self, db_path: str = "fittrack.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._import_exercise_catalog_data()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for stmt in self._INDEXES:
                conn.execute(stmt)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        # Rebuild the table, carrying over the columns both layouts share.
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;")
        conn.execute(f"DROP TABLE {table}_old;")

    def _import_exercise_catalog_data(self) -> None:
        csv_path = os.path.join(os.path.dirname(__file__), "exercise_catalog.csv")
        if not os.path.exists(csv_path):
            return
        with self._connection() as conn:
            _upsert_catalog_rows(conn, _read_catalog_csv(csv_path))


def _read_catalog_csv(csv_path: str) -> list[tuple]:
    with open(csv_path, newline="", encoding="utf-8") as csvfile:
        reader = csv.DictReader(csvfile)
        return [
            (
                row.get("exercise_id") or row["name"],
                row["name"],
                row.get("equipment", ""),
                row.get("bodypart", ""),
                row.get("target", ""),
                row.get("secondary", ""),
                row.get("gifurl", ""),
                row.get("img", ""),
                int(row.get("type") or 1),
            )
            for row in reader
            if row.get("name")
        ]


def _upsert_catalog_rows(conn: sqlite3.Connection, records: Iterable[tuple]) -> int:
    count = 0
    for exercise_id, name, equipment, bodypart, target, secondary, gifurl, img, ex_type in records:
        conn.execute(
            "INSERT INTO exercises (id, name, equipment, bodypart, target, secondary, gifurl, img, type, exercise_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(exercise_id) DO UPDATE SET name=excluded.name, equipment=excluded.equipment, "
            "bodypart=excluded.bodypart, target=excluded.target, secondary=excluded.secondary, "
            "gifurl=excluded.gifurl, img=excluded.img, type=excluded.type;",
            (
                _new_id(),
                name,
                equipment,
                bodypart,
                target,
                secondary,
                gifurl,
                img,
                ex_type,
                exercise_id,
            ),
        )
        count += 1
    return count


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.rowcount

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)


_EXERCISE_COLUMNS = "id, name, equipment, bodypart, target, secondary, gifurl, img, type, exercise_id"
_ROUTINE_COLUMNS = "id, name, exercises, created_at, updated_at"
_SESSION_COLUMNS = "id, user_id, routine_id, document, created_at, updated_at"


def _exercise_from_row(row: Tuple) -> dict:
    ex_id, name, equipment, bodypart, target, secondary, gifurl, img, ex_type, ext_id = row
    return {
        "id": ex_id,
        "name": name,
        "equipment": equipment,
        "bodypart": bodypart,
        "target": target,
        "secondary": _split(secondary),
        "gifurl": gifurl,
        "img": img,
        "type": int(ex_type),
        "exerciseId": ext_id,
    }


def _exercise_summary(row: Tuple) -> dict:
    full = _exercise_from_row(row)
    return {k: full[k] for k in ("id", "name", "target", "secondary", "img", "type")}


def _routine_from_row(row: Tuple) -> dict:
    rid, name, exercises, created_at, updated_at = row
    return {
        "id": rid,
        "name": name,
        "exercises": json.loads(exercises) if exercises else [],
        "createdAt": created_at,
        "updatedAt": updated_at,
    }


def _session_from_row(row: Tuple) -> dict:
    sid, user_id, routine_id, document, created_at, updated_at = row
    try:
        body = json.loads(document) if document else {}
    except ValueError:
        logger.warning("workout session %s has an unreadable document", sid)
        body = {}
    if not isinstance(body, dict):
        body = {}
    session = {"id": sid, "userId": user_id}
    if routine_id:
        session["routineId"] = routine_id
    session.update(body)
    session["createdAt"] = created_at
    session["updatedAt"] = updated_at
    return session


def _session_document(
    exercises: list[dict],
    calories: float | None,
    total_duration: float | None,
) -> str:
    body: dict = {"exercises": exercises}
    if calories is not None:
        body["calories"] = calories
    if total_duration is not None:
        body["totalDurationSeconds"] = total_duration
    return json.dumps(body)


def _placeholders(items: list) -> str:
    return ", ".join("?" for _ in items)


def _populate_sessions(
    sessions: list[dict],
    exercises_by_id: dict[str, dict],
    routines_by_owner: dict[str, dict[str, dict]],
) -> list[dict]:
    """Replace resolvable ``exerciseId``/``routineId`` values with their objects.

    A routine is only resolved for the user who owns it.
    """
    for session in sessions:
        rid = reference_id(session.get("routineId"))
        owned = routines_by_owner.get(session.get("userId"), {})
        if rid and rid in owned:
            session["routineId"] = owned[rid]
        exercises = session.get("exercises")
        if not isinstance(exercises, list):
            continue
        for exercise in exercises:
            if not isinstance(exercise, dict):
                continue
            eid = reference_id(exercise.get("exerciseId"))
            if eid and eid in exercises_by_id:
                exercise["exerciseId"] = exercises_by_id[eid]
    return sessions


def _referenced_ids(
    sessions: list[dict],
) -> tuple[list[str], dict[str, list[str]]]:
    """Return referenced exercise ids and routine ids grouped by session owner."""
    exercise_ids: set[str] = set()
    routine_ids: dict[str, set[str]] = {}
    for session in sessions:
        rid = reference_id(session.get("routineId"))
        if rid:
            routine_ids.setdefault(session.get("userId"), set()).add(rid)
        exercises = session.get("exercises")
        if not isinstance(exercises, list):
            continue
        for exercise in exercises:
            if isinstance(exercise, dict):
                eid = reference_id(exercise.get("exerciseId"))
                if eid:
                    exercise_ids.add(eid)
    return sorted(exercise_ids), {
        owner: sorted(ids) for owner, ids in routine_ids.items()
    }


class ExerciseCatalogRepository(BaseRepository):
    """Repository for the shared exercise catalog."""

    def add(
        self,
        name: str,
        equipment: str = "",
        bodypart: str = "",
        target: str = "",
        secondary: Iterable[str] = (),
        gifurl: str = "",
        img: str = "",
        exercise_type: int = 1,
        exercise_id: str | None = None,
    ) -> str:
        if not name:
            raise ValueError("name required")
        new_id = _new_id()
        try:
            self.execute(
                f"INSERT INTO exercises ({_EXERCISE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    new_id,
                    name,
                    equipment,
                    bodypart,
                    target,
                    "|".join(secondary),
                    gifurl,
                    img,
                    int(exercise_type),
                    exercise_id or new_id,
                ),
            )
        except sqlite3.IntegrityError:
            raise ValueError("exercise already exists")
        return new_id

    def import_csv(self, csv_path: str) -> int:
        records = _read_catalog_csv(csv_path)
        with self._connection() as conn:
            return _upsert_catalog_rows(conn, records)

    def fetch_page(
        self,
        page: int = 1,
        limit: int = 12,
        name: str | None = None,
        muscle: str | None = None,
        equipment: str | None = None,
    ) -> tuple[list[dict], int]:
        """Return one page of exercises matching the filters and the total match count."""
        where: list[str] = []
        params: list[str | int] = []
        if name:
            escaped = name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            where.append("name LIKE ? ESCAPE '\\'")
            params.append(f"%{escaped}%")
        if muscle:
            where.append("target = ?")
            params.append(muscle)
        if equipment:
            where.append("equipment = ?")
            params.append(equipment)
        clause = f" WHERE {' AND '.join(where)}" if where else ""
        total = self.fetch_all(f"SELECT COUNT(*) FROM exercises{clause};", tuple(params))[0][0]
        rows = self.fetch_all(
            f"SELECT {_EXERCISE_COLUMNS} FROM exercises{clause} ORDER BY name, id LIMIT ? OFFSET ?;",
            tuple(params) + (limit, (page - 1) * limit),
        )
        return [_exercise_from_row(r) for r in rows], int(total)

    def fetch_summaries(self, ids: list[str]) -> dict[str, dict]:
        if not ids:
            return {}
        rows = self.fetch_all(
            f"SELECT {_EXERCISE_COLUMNS} FROM exercises WHERE id IN ({_placeholders(ids)});",
            tuple(ids),
        )
        return {r[0]: _exercise_summary(r) for r in rows}


class RoutineRepository(BaseRepository):
    """Repository for user routines stored as JSON documents."""

    def create(
        self,
        user_id: str,
        name: str,
        exercises: list[dict],
        created_at: datetime.datetime | str | None = None,
    ) -> str:
        rid = _new_id()
        ts = _to_utc_iso(created_at)
        self.execute(
            "INSERT INTO routines (id, user_id, name, exercises, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?);",
            (rid, user_id, name.strip(), json.dumps(exercises), ts, ts),
        )
        return rid

    def fetch_for_user(self, user_id: str) -> list[dict]:
        rows = self.fetch_all(
            f"SELECT {_ROUTINE_COLUMNS} FROM routines WHERE user_id = ? ORDER BY created_at DESC, rowid DESC;",
            (user_id,),
        )
        return [_routine_from_row(r) for r in rows]

    def fetch(self, user_id: str, routine_id: str) -> Optional[dict]:
        rows = self.fetch_all(
            f"SELECT {_ROUTINE_COLUMNS} FROM routines WHERE id = ? AND user_id = ?;",
            (routine_id, user_id),
        )
        return _routine_from_row(rows[0]) if rows else None

    def update(
        self, user_id: str, routine_id: str, name: str, exercises: list[dict]
    ) -> Optional[dict]:
        changed = self.execute(
            "UPDATE routines SET name = ?, exercises = ?, updated_at = ? WHERE id = ? AND user_id = ?;",
            (name.strip(), json.dumps(exercises), _utcnow(), routine_id, user_id),
        )
        if not changed:
            return None
        return self.fetch(user_id, routine_id)

    def delete(self, user_id: str, routine_id: str) -> bool:
        return (
            self.execute(
                "DELETE FROM routines WHERE id = ? AND user_id = ?;",
                (routine_id, user_id),
            )
            > 0
        )

    def fetch_summaries(self, user_id: str, ids: list[str]) -> dict[str, dict]:
        if not ids:
            return {}
        rows = self.fetch_all(
            f"SELECT id, name, exercises FROM routines WHERE user_id = ? AND id IN ({_placeholders(ids)});",
            (user_id, *ids),
        )
        return {
            rid: {"id": rid, "name": name, "exercises": json.loads(exercises or "[]")}
            for rid, name, exercises in rows
        }


class WorkoutSessionRepository(BaseRepository):
    """Repository for logged workout sessions."""

    def __init__(
        self,
        db_path: str = "fittrack.db",
        catalog_repo: ExerciseCatalogRepository | None = None,
        routine_repo: RoutineRepository | None = None,
    ) -> None:
        super().__init__(db_path)
        self.catalog = catalog_repo
        self.routines = routine_repo

    def create(
        self,
        user_id: str,
        exercises: list[dict],
        routine_id: str | None = None,
        calories: float | None = None,
        total_duration: float | None = None,
        created_at: datetime.datetime | str | None = None,
    ) -> str:
        sid = _new_id()
        ts = _to_utc_iso(created_at)
        self.execute(
            f"INSERT INTO workout_sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?);",
            (
                sid,
                user_id,
                routine_id,
                _session_document(exercises, calories, total_duration),
                ts,
                ts,
            ),
        )
        return sid

    def insert_document(self, user_id: str, document: dict) -> str:
        """Store a raw session document as-is, e.g. one exported by an older client."""
        body = {
            k: v
            for k, v in document.items()
            if k not in ("id", "_id", "userId", "routineId", "createdAt", "updatedAt")
        }
        sid = str(document.get("id") or document.get("_id") or _new_id())
        created = _to_utc_iso(document.get("createdAt"))
        self.execute(
            f"INSERT INTO workout_sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?);",
            (
                sid,
                user_id,
                reference_id(document.get("routineId")),
                json.dumps(body),
                created,
                _to_utc_iso(document.get("updatedAt") or created),
            ),
        )
        return sid

    def fetch_for_user(self, user_id: str, populate: bool = False) -> list[dict]:
        """Return all sessions of ``user_id``, newest first."""
        rows = self.fetch_all(
            f"SELECT {_SESSION_COLUMNS} FROM workout_sessions WHERE user_id = ? "
            "ORDER BY created_at DESC, rowid DESC;",
            (user_id,),
        )
        sessions = [_session_from_row(r) for r in rows]
        if populate:
            self.populate(sessions)
        return sessions

    def fetch(self, user_id: str, session_id: str, populate: bool = False) -> Optional[dict]:
        rows = self.fetch_all(
            f"SELECT {_SESSION_COLUMNS} FROM workout_sessions WHERE id = ? AND user_id = ?;",
            (session_id, user_id),
        )
        if not rows:
            return None
        session = _session_from_row(rows[0])
        if populate:
            self.populate([session])
        return session

    def populate(self, sessions: list[dict]) -> list[dict]:
        exercise_ids, routine_ids = _referenced_ids(sessions)
        exercises = self.catalog.fetch_summaries(exercise_ids) if self.catalog else {}
        routines = {}
        if self.routines:
            routines = {
                owner: self.routines.fetch_summaries(owner, ids)
                for owner, ids in routine_ids.items()
            }
        return _populate_sessions(sessions, exercises, routines)

    def update(
        self,
        user_id: str,
        session_id: str,
        exercises: list[dict],
        routine_id: str | None = None,
        calories: float | None = None,
        total_duration: float | None = None,
    ) -> Optional[dict]:
        changed = self.execute(
            "UPDATE workout_sessions SET routine_id = ?, document = ?, updated_at = ? "
            "WHERE id = ? AND user_id = ?;",
            (
                routine_id,
                _session_document(exercises, calories, total_duration),
                _utcnow(),
                session_id,
                user_id,
            ),
        )
        if not changed:
            return None
        return self.fetch(user_id, session_id, populate=True)

    def delete(self, user_id: str, session_id: str) -> bool:
        return (
            self.execute(
                "DELETE FROM workout_sessions WHERE id = ? AND user_id = ?;",
                (session_id, user_id),
            )
            > 0
        )

    def count(self, user_id: str | None = None) -> int:
        if user_id is None:
            rows = self.fetch_all("SELECT COUNT(*) FROM workout_sessions;")
        else:
            rows = self.fetch_all(
                "SELECT COUNT(*) FROM workout_sessions WHERE user_id = ?;", (user_id,)
            )
        return int(rows[0][0])


class AsyncWorkoutSessionRepository(AsyncBaseRepository):
    """Async read path for workout sessions."""

    async def fetch_for_user(self, user_id: str, populate: bool = True) -> list[dict]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM workout_sessions WHERE user_id = ? "
                "ORDER BY created_at DESC, rowid DESC;",
                (user_id,),
            )
            sessions = [_session_from_row(r) for r in await cursor.fetchall()]
            if not populate or not sessions:
                return sessions
            exercise_ids, routine_ids = _referenced_ids(sessions)
            exercises: dict[str, dict] = {}
            routines: dict[str, dict[str, dict]] = {}
            if exercise_ids:
                cursor = await conn.execute(
                    f"SELECT {_EXERCISE_COLUMNS} FROM exercises WHERE id IN ({_placeholders(exercise_ids)});",
                    tuple(exercise_ids),
                )
                exercises = {r[0]: _exercise_summary(r) for r in await cursor.fetchall()}
            owned_ids = routine_ids.get(user_id, [])
            if owned_ids:
                cursor = await conn.execute(
                    f"SELECT id, name, exercises FROM routines WHERE user_id = ? AND id IN ({_placeholders(owned_ids)});",
                    (user_id, *owned_ids),
                )
                routines[user_id] = {
                    rid: {"id": rid, "name": name, "exercises": json.loads(body or "[]")}
                    for rid, name, body in await cursor.fetchall()
                }
        return _populate_sessions(sessions, exercises, routines)


class UserRepository(BaseRepository):
    """Repository for user profiles keyed by the identity provider's uid."""

    def upsert(
        self, firebase_user_id: str, name: str, email: str, img: str | None = None
    ) -> dict:
        now = _utcnow()
        self.execute(
            "INSERT INTO users (id, firebase_user_id, name, email, img, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(firebase_user_id) DO UPDATE SET name=excluded.name, email=excluded.email, "
            "img=excluded.img, updated_at=excluded.updated_at;",
            (_new_id(), firebase_user_id, name.strip(), email.strip().lower(), img, now, now),
        )
        return self.fetch(firebase_user_id)

    def fetch(self, firebase_user_id: str) -> Optional[dict]:
        rows = self.fetch_all(
            "SELECT id, firebase_user_id, name, email, img, created_at, updated_at "
            "FROM users WHERE firebase_user_id = ?;",
            (firebase_user_id,),
        )
        if not rows:
            return None
        uid, fuid, name, email, img, created_at, updated_at = rows[0]
        return {
            "id": uid,
            "firebaseUserId": fuid,
            "name": name,
            "email": email,
            "img": img,
            "createdAt": created_at,
            "updatedAt": updated_at,
        }


class UserSettingsRepository(BaseRepository):
    """Repository for per-user measurement units and daily goals."""

    def ensure_defaults(self, firebase_user_id: str, user_id: str) -> dict:
        now = _utcnow()
        self.execute(
            "INSERT OR IGNORE INTO user_settings (firebase_user_id, user_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?);",
            (firebase_user_id, user_id, now, now),
        )
        return self.fetch(firebase_user_id)

    def fetch(self, firebase_user_id: str) -> Optional[dict]:
        rows = self.fetch_all(
            "SELECT weight_unit, distance_unit, daily_sets_goal, daily_calories_goal "
            "FROM user_settings WHERE firebase_user_id = ?;",
            (firebase_user_id,),
        )
        if not rows:
            return None
        weight_unit, distance_unit, sets_goal, calories_goal = rows[0]
        return {
            "measurements": {"weightUnit": weight_unit, "distanceUnit": distance_unit},
            "dailyGoals": {
                "dailySetsGoal": int(sets_goal),
                "dailyCaloriesGoal": int(calories_goal),
            },
        }

    def update(
        self,
        firebase_user_id: str,
        weight_unit: str | None = None,
        distance_unit: str | None = None,
        daily_sets_goal: int | None = None,
        daily_calories_goal: int | None = None,
    ) -> Optional[dict]:
        """Apply the given fields; returns ``None`` when the user has no settings row."""
        fields = {
            "weight_unit": weight_unit,
            "distance_unit": distance_unit,
            "daily_sets_goal": daily_sets_goal,
            "daily_calories_goal": daily_calories_goal,
        }
        updates = {k: v for k, v in fields.items() if v is not None}
        if not updates:
            return self.fetch(firebase_user_id)
        assignments = ", ".join(f"{col} = ?" for col in updates)
        changed = self.execute(
            f"UPDATE user_settings SET {assignments}, updated_at = ? WHERE firebase_user_id = ?;",
            tuple(updates.values()) + (_utcnow(), firebase_user_id),
        )
        if not changed:
            return None
        return self.fetch(firebase_user_id)
