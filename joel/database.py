"""SQLite storage for users, follow lists, people and pending notifications."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .migrations import USER_SCHEMA_VERSION, migrate_user_row
from .models import (
    FollowedFunction,
    FollowedOrganisation,
    FollowedPerson,
    MessageApp,
    NotificationType,
    PendingNotification,
    Person,
    User,
    UserStatus,
)
from .query_guard import (
    QueryGuardError,
    UnsupportedQueryError,
    guard_filter,
    guard_update,
)
from .utils import clean_people_name, person_name_key, to_utc, utcnow

logger = logging.getLogger(__name__)

# SQLite default limit on bound parameters is 999 on older builds
PARAMETER_CHUNK = 500

# Watermarked follow lists: category -> (table, key column)
FOLLOW_TABLES: Dict[NotificationType, Tuple[str, str]] = {
    NotificationType.PEOPLE: ("followed_people", "person_id"),
    NotificationType.FUNCTION: ("followed_functions", "function_tag"),
    NotificationType.ORGANISATION: ("followed_organisations", "organisation_id"),
}

# Filterable user fields -> users column
USER_FIELDS: Dict[str, str] = {
    "_id": "id",
    "id": "id",
    "message_app": "message_app",
    "chat_id": "chat_id",
    "language_code": "language_code",
    "status": "status",
    "schema_version": "schema_version",
    "waiting_reengagement": "waiting_reengagement",
    "last_engagement_at": "last_engagement_at",
    "last_message_received_at": "last_message_received_at",
}

# Filterable follow-list paths -> (table, column)
ARRAY_FIELDS: Dict[str, Tuple[str, str]] = {
    "followed_people": ("followed_people", "person_id"),
    "followed_people.person_id": ("followed_people", "person_id"),
    "followed_functions": ("followed_functions", "function_tag"),
    "followed_functions.function_tag": ("followed_functions", "function_tag"),
    "followed_organisations": ("followed_organisations", "organisation_id"),
    "followed_organisations.organisation_id": (
        "followed_organisations",
        "organisation_id",
    ),
    "followed_names": ("followed_names", "name"),
}

# Columns a raw $set update may touch
SETTABLE_USER_FIELDS = frozenset(
    {
        "chat_id",
        "language_code",
        "status",
        "waiting_reengagement",
        "last_engagement_at",
        "last_message_received_at",
    }
)

COMPARISON_OPERATORS = {"$eq": "=", "$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}


def _ts(value: datetime) -> str:
    """Serialize a timestamp so that string order matches time order."""
    return to_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value))


def _sql_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return _ts(value)
    return value


def _chunks(values: Sequence[Any], size: int = PARAMETER_CHUNK) -> Iterator[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class DatabaseManager:
    """Manages the JOEL database schema and operations."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Connection committed on success, rolled back on error, always closed."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database lock from its first statement."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def ensure_schema(self) -> None:
        """Ensure all tables and indexes exist."""
        with self.connection() as conn:
            conn.executescript(
                """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_app TEXT,
                chat_id TEXT NOT NULL,
                language_code TEXT,
                status TEXT,
                schema_version INTEGER,
                last_engagement_at TEXT,
                waiting_reengagement INTEGER DEFAULT 0,
                last_message_received_at TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(message_app, chat_id)
            );

            CREATE TABLE IF NOT EXISTS people (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                surname TEXT NOT NULL,
                given_name TEXT NOT NULL,
                name_key TEXT NOT NULL UNIQUE,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            );

            -- Organisations keyed by Wikidata id
            CREATE TABLE IF NOT EXISTS organisations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS followed_people (
                user_id INTEGER NOT NULL,
                person_id INTEGER NOT NULL,
                last_update TEXT NOT NULL,
                PRIMARY KEY (user_id, person_id),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY (person_id) REFERENCES people(id)
            );

            CREATE TABLE IF NOT EXISTS followed_functions (
                user_id INTEGER NOT NULL,
                function_tag TEXT NOT NULL,
                last_update TEXT NOT NULL,
                PRIMARY KEY (user_id, function_tag),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS followed_organisations (
                user_id INTEGER NOT NULL,
                organisation_id TEXT NOT NULL,
                last_update TEXT NOT NULL,
                PRIMARY KEY (user_id, organisation_id),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS followed_names (
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                name_key TEXT NOT NULL,  -- case and accent insensitive
                PRIMARY KEY (user_id, name_key),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS pending_notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                message_app TEXT NOT NULL,
                notification_type TEXT NOT NULL,
                source_ids TEXT NOT NULL,  -- JSON object: source id -> record count
                item_count INTEGER NOT NULL,
                inserted_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            -- A source id is pending at most once per user
            CREATE TABLE IF NOT EXISTS pending_notification_sources (
                user_id INTEGER NOT NULL,
                source_id TEXT NOT NULL,
                notification_id INTEGER NOT NULL,
                PRIMARY KEY (user_id, source_id),
                FOREIGN KEY (notification_id) REFERENCES pending_notifications(id)
                    ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_followed_people_person ON followed_people(person_id);
            CREATE INDEX IF NOT EXISTS idx_followed_functions_tag ON followed_functions(function_tag);
            CREATE INDEX IF NOT EXISTS idx_followed_orgs_org ON followed_organisations(organisation_id);
            CREATE INDEX IF NOT EXISTS idx_pending_user ON pending_notifications(user_id);
            CREATE INDEX IF NOT EXISTS idx_users_app_status ON users(message_app, status);
            """
            )

            logger.info("Database schema ensured")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(
        self,
        message_app: Optional[MessageApp],
        chat_id: Any,
        language_code: Optional[str] = "fr",
        status: Optional[UserStatus] = UserStatus.ACTIVE,
        last_engagement_at: Optional[datetime] = None,
        waiting_reengagement: bool = False,
        last_message_received_at: Optional[datetime] = None,
        schema_version: Optional[int] = USER_SCHEMA_VERSION,
    ) -> int:
        """Insert a user row and return its id."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users
                (message_app, chat_id, language_code, status, schema_version,
                 last_engagement_at, waiting_reengagement, last_message_received_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _sql_value(message_app),
                    chat_id,
                    language_code,
                    _sql_value(status),
                    schema_version,
                    _sql_value(last_engagement_at),
                    int(waiting_reengagement),
                    _sql_value(last_message_received_at),
                ),
            )
            return cursor.lastrowid

    def get_user(self, user_id: int) -> Optional[User]:
        users = self.find_users({"_id": user_id})
        return users[0] if users else None

    def find_users(self, query_filter: Mapping[str, Any]) -> List[User]:
        """Load users matching a Mongo-shaped filter, migrated and hydrated."""
        sanitized = guard_filter(dict(query_filter))
        where_sql, params = self._compile_filter(sanitized)

        with self.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM users WHERE {where_sql} ORDER BY id", params
            ).fetchall()
            user_rows = [self._migrated_row(conn, dict(row)) for row in rows]
            return self._hydrate_users(conn, user_rows)

    def update_user(self, user_id: int, update: Mapping[str, Any]) -> bool:
        """Apply a raw $set/$unset update to one user row."""
        sanitized = guard_update(dict(update))
        assignments: List[str] = []
        params: List[Any] = []

        for operator, fields in sanitized.items():
            if operator not in ("$set", "$unset"):
                raise UnsupportedQueryError(f"Unsupported update operator {operator}")
            if not isinstance(fields, dict):
                raise QueryGuardError(f"{operator} expects an object")
            for field_name, value in fields.items():
                if field_name not in SETTABLE_USER_FIELDS:
                    raise QueryGuardError(f"Field {field_name} cannot be updated")
                assignments.append(f"{field_name} = ?")
                params.append(_sql_value(value) if operator == "$set" else None)

        if not assignments:
            return False

        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE id = ?",
                params + [user_id],
            )
            return cursor.rowcount > 0

    def record_successful_delivery(self, user_id: int, timestamp: datetime) -> None:
        """Stamp a confirmed delivery and reactivate the user."""
        self.update_user(
            user_id,
            {
                "$set": {
                    "last_message_received_at": timestamp,
                    "status": UserStatus.ACTIVE,
                }
            },
        )

    def record_engagement(self, user_id: int, timestamp: datetime) -> None:
        """Stamp an inbound interaction; the reengagement wait is over."""
        self.update_user(
            user_id,
            {
                "$set": {
                    "last_engagement_at": timestamp,
                    "waiting_reengagement": False,
                    "status": UserStatus.ACTIVE,
                }
            },
        )

    def set_waiting_reengagement(self, user_id: int, waiting: bool) -> None:
        self.update_user(user_id, {"$set": {"waiting_reengagement": waiting}})

    def mark_user_blocked(self, user_id: int) -> None:
        self.update_user(user_id, {"$set": {"status": UserStatus.BLOCKED}})
        logger.info(f"User {user_id} marked as blocked")

    def _migrated_row(self, conn: sqlite3.Connection, row: Dict[str, Any]) -> Dict[str, Any]:
        upgraded, changed = migrate_user_row(row)
        if changed:
            conn.execute(
                """
                UPDATE users SET message_app = ?, chat_id = ?, language_code = ?,
                    status = ?, schema_version = ?, last_engagement_at = ?,
                    waiting_reengagement = ?
                WHERE id = ?
                """,
                (
                    upgraded["message_app"],
                    upgraded["chat_id"],
                    upgraded["language_code"],
                    upgraded["status"],
                    upgraded["schema_version"],
                    upgraded["last_engagement_at"],
                    int(upgraded["waiting_reengagement"]),
                    upgraded["id"],
                ),
            )
        return upgraded

    def _hydrate_users(
        self, conn: sqlite3.Connection, rows: List[Dict[str, Any]]
    ) -> List[User]:
        users: Dict[int, User] = {}
        for row in rows:
            users[row["id"]] = User(
                id=row["id"],
                message_app=MessageApp(row["message_app"]),
                chat_id=str(row["chat_id"]),
                language_code=row["language_code"] or "fr",
                status=UserStatus(row["status"] or UserStatus.ACTIVE.value),
                schema_version=row["schema_version"],
                last_engagement_at=_parse_ts(row["last_engagement_at"]),
                waiting_reengagement=bool(row["waiting_reengagement"]),
                last_message_received_at=_parse_ts(row["last_message_received_at"]),
            )

        ids = list(users)
        for chunk in _chunks(ids):
            marks = _placeholders(len(chunk))
            for row in conn.execute(
                f"SELECT * FROM followed_people WHERE user_id IN ({marks}) ORDER BY rowid",
                chunk,
            ):
                users[row["user_id"]].followed_people.append(
                    FollowedPerson(row["person_id"], _parse_ts(row["last_update"]))
                )
            for row in conn.execute(
                f"SELECT * FROM followed_functions WHERE user_id IN ({marks}) ORDER BY rowid",
                chunk,
            ):
                users[row["user_id"]].followed_functions.append(
                    FollowedFunction(row["function_tag"], _parse_ts(row["last_update"]))
                )
            for row in conn.execute(
                f"SELECT * FROM followed_organisations WHERE user_id IN ({marks}) "
                "ORDER BY rowid",
                chunk,
            ):
                users[row["user_id"]].followed_organisations.append(
                    FollowedOrganisation(
                        row["organisation_id"], _parse_ts(row["last_update"])
                    )
                )
            for row in conn.execute(
                f"SELECT * FROM followed_names WHERE user_id IN ({marks}) ORDER BY rowid",
                chunk,
            ):
                users[row["user_id"]].followed_names.append(row["name"])

        return list(users.values())

    # ------------------------------------------------------------------
    # Filter compilation
    # ------------------------------------------------------------------

    def _compile_filter(self, query_filter: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []

        for key, condition in query_filter.items():
            if key in ("$and", "$or"):
                if not isinstance(condition, list) or not condition:
                    raise QueryGuardError(f"{key} expects a non-empty list")
                compiled = [self._compile_filter(sub) for sub in condition]
                joiner = " AND " if key == "$and" else " OR "
                clauses.append("(" + joiner.join(sql for sql, _ in compiled) + ")")
                for _, sub_params in compiled:
                    params.extend(sub_params)
            elif key.startswith("$"):
                raise UnsupportedQueryError(f"Unsupported filter operator {key}")
            elif key in USER_FIELDS:
                sql, sub_params = self._compile_condition(
                    f"users.{USER_FIELDS[key]}", condition
                )
                clauses.append(sql)
                params.extend(sub_params)
            elif key in ARRAY_FIELDS:
                sql, sub_params = self._compile_array_condition(
                    *ARRAY_FIELDS[key], condition
                )
                clauses.append(sql)
                params.extend(sub_params)
            else:
                raise QueryGuardError(f"Unknown user field {key}")

        return (" AND ".join(clauses) if clauses else "1 = 1"), params

    def _compile_condition(self, column: str, condition: Any) -> Tuple[str, List[Any]]:
        if not (isinstance(condition, dict) and any(k.startswith("$") for k in condition)):
            if condition is None:
                return f"{column} IS NULL", []
            return f"{column} = ?", [_sql_value(condition)]

        clauses: List[str] = []
        params: List[Any] = []
        for operator, value in condition.items():
            if operator in COMPARISON_OPERATORS:
                if value is None and operator == "$eq":
                    clauses.append(f"{column} IS NULL")
                    continue
                clauses.append(f"{column} {COMPARISON_OPERATORS[operator]} ?")
                params.append(_sql_value(value))
            elif operator == "$ne":
                if value is None:
                    clauses.append(f"{column} IS NOT NULL")
                else:
                    clauses.append(f"({column} IS NULL OR {column} != ?)")
                    params.append(_sql_value(value))
            elif operator in ("$in", "$nin"):
                values = [_sql_value(item) for item in (value or [])]
                if not values:
                    clauses.append("0" if operator == "$in" else "1")
                    continue
                negation = "NOT " if operator == "$nin" else ""
                clauses.append(f"{column} {negation}IN ({_placeholders(len(values))})")
                params.extend(values)
            elif operator == "$exists":
                clauses.append(f"{column} IS {'NOT ' if value else ''}NULL")
            else:
                raise UnsupportedQueryError(f"Unsupported filter operator {operator}")
        return "(" + " AND ".join(clauses) + ")", params

    def _compile_array_condition(
        self, table: str, column: str, condition: Any
    ) -> Tuple[str, List[Any]]:
        membership = f"SELECT 1 FROM {table} f WHERE f.user_id = users.id"

        if isinstance(condition, dict) and set(condition) == {"$exists"}:
            return f"{'' if condition['$exists'] else 'NOT '}EXISTS ({membership})", []

        if isinstance(condition, dict) and set(condition) & {"$ne", "$nin"}:
            if len(condition) != 1:
                raise UnsupportedQueryError(
                    f"Cannot combine negations with other operators on {table}"
                )
            operator, value = next(iter(condition.items()))
            positive = {"$eq" if operator == "$ne" else "$in": value}
            sql, params = self._compile_condition(f"f.{column}", positive)
            return f"NOT EXISTS ({membership} AND {sql})", params

        sql, params = self._compile_condition(f"f.{column}", condition)
        return f"EXISTS ({membership} AND {sql})", params

    # ------------------------------------------------------------------
    # Follows
    # ------------------------------------------------------------------

    def follow_person(
        self, user_id: int, person_id: int, last_update: Optional[datetime] = None
    ) -> bool:
        return self._insert_follow(
            NotificationType.PEOPLE, user_id, person_id, last_update
        )

    def follow_function(
        self, user_id: int, function_tag: str, last_update: Optional[datetime] = None
    ) -> bool:
        return self._insert_follow(
            NotificationType.FUNCTION, user_id, function_tag, last_update
        )

    def follow_organisation(
        self, user_id: int, organisation_id: str, last_update: Optional[datetime] = None
    ) -> bool:
        return self._insert_follow(
            NotificationType.ORGANISATION, user_id, organisation_id, last_update
        )

    def _insert_follow(
        self,
        notification_type: NotificationType,
        user_id: int,
        follow_key: Any,
        last_update: Optional[datetime],
    ) -> bool:
        table, column = FOLLOW_TABLES[notification_type]
        with self.connection() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO {table} (user_id, {column}, last_update) "
                "VALUES (?, ?, ?)",
                (user_id, follow_key, _ts(last_update or utcnow())),
            )
            return cursor.rowcount > 0

    def follow_name(self, user_id: int, name: str) -> bool:
        """Add a manual name follow; duplicates ignoring case and accents are dropped."""
        name_key = clean_people_name(name)
        if not name_key:
            return False
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO followed_names (user_id, name, name_key) "
                "VALUES (?, ?, ?)",
                (user_id, name.strip(), name_key),
            )
            return cursor.rowcount > 0

    def promote_followed_names(
        self,
        user_id: int,
        names: Iterable[str],
        person_ids: Iterable[int],
        timestamp: datetime,
    ) -> None:
        """Replace manual name follows by person follows in one transaction."""
        name_keys = [clean_people_name(name) for name in names]
        with self.transaction() as conn:
            for person_id in person_ids:
                conn.execute(
                    "INSERT OR IGNORE INTO followed_people (user_id, person_id, last_update) "
                    "VALUES (?, ?, ?)",
                    (user_id, person_id, _ts(timestamp)),
                )
            if name_keys:
                conn.execute(
                    f"DELETE FROM followed_names WHERE user_id = ? "
                    f"AND name_key IN ({_placeholders(len(name_keys))})",
                    [user_id] + name_keys,
                )

    def advance_follow_watermark(
        self,
        user_id: int,
        notification_type: NotificationType,
        follow_key: Any,
        timestamp: datetime,
    ) -> bool:
        """Move one follow's lastUpdate forward; never moves it backwards.

        Returns True when the stored watermark changed.
        """
        if notification_type not in FOLLOW_TABLES:
            raise ValueError(f"No watermark for {notification_type.value} follows")
        table, column = FOLLOW_TABLES[notification_type]
        value = _ts(timestamp)
        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET last_update = ? "
                f"WHERE user_id = ? AND {column} = ? AND last_update < ?",
                (value, user_id, follow_key, value),
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # People and organisations
    # ------------------------------------------------------------------

    def find_or_create_person(self, surname: str, given_name: str) -> Person:
        name_key = person_name_key(surname, given_name)
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO people (surname, given_name, name_key) "
                "VALUES (?, ?, ?)",
                (surname.strip(), given_name.strip(), name_key),
            )
            row = conn.execute(
                "SELECT id, surname, given_name FROM people WHERE name_key = ?",
                (name_key,),
            ).fetchone()
        return Person(row["id"], row["surname"], row["given_name"])

    def find_people_by_name_keys(self, name_keys: Iterable[str]) -> Dict[str, Person]:
        """Canonical people indexed by name key."""
        keys = sorted(set(name_keys))
        people: Dict[str, Person] = {}
        with self.connection() as conn:
            for chunk in _chunks(keys):
                for row in conn.execute(
                    "SELECT id, surname, given_name, name_key FROM people "
                    f"WHERE name_key IN ({_placeholders(len(chunk))})",
                    chunk,
                ):
                    people[row["name_key"]] = Person(
                        row["id"], row["surname"], row["given_name"]
                    )
        return people

    def upsert_organisation(self, organisation_id: str, name: str) -> None:
        with self.connection() as conn:
            conn.execute(
                "INSERT INTO organisations (id, name) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name",
                (organisation_id, name),
            )

    def list_organisations(self) -> Dict[str, str]:
        """Known organisations as {wikidata id: name}."""
        with self.connection() as conn:
            rows = conn.execute("SELECT id, name FROM organisations").fetchall()
        return {row["id"]: row["name"] for row in rows}

    # ------------------------------------------------------------------
    # Pending notifications
    # ------------------------------------------------------------------

    def insert_pending_notifications(
        self,
        user_id: int,
        message_app: MessageApp,
        notification_type: NotificationType,
        source_counts: Mapping[str, int],
        inserted_at: Optional[datetime] = None,
    ) -> Optional[int]:
        """Store references held back for a user, skipping those already pending.

        Returns the new entry id, or None when nothing was left to store.
        """
        with self.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            if not exists:
                logger.warning(
                    f"Cannot store pending notifications: user {user_id} not found"
                )
                return None

            pending = {
                row["source_id"]
                for row in conn.execute(
                    "SELECT source_id FROM pending_notification_sources WHERE user_id = ?",
                    (user_id,),
                )
            }
            fresh = {
                source_id: count
                for source_id, count in source_counts.items()
                if source_id not in pending
            }
            if not fresh:
                return None

            cursor = conn.execute(
                """
                INSERT INTO pending_notifications
                (user_id, message_app, notification_type, source_ids, item_count, inserted_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    _sql_value(message_app),
                    notification_type.value,
                    json.dumps(fresh),
                    sum(fresh.values()),
                    _ts(inserted_at or utcnow()),
                ),
            )
            notification_id = cursor.lastrowid
            conn.executemany(
                "INSERT INTO pending_notification_sources (user_id, source_id, notification_id) "
                "VALUES (?, ?, ?)",
                [(user_id, source_id, notification_id) for source_id in fresh],
            )
            return notification_id

    def get_pending_notifications(self, user_id: int) -> List[PendingNotification]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM pending_notifications WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        return [
            PendingNotification(
                id=row["id"],
                user_id=row["user_id"],
                notification_type=NotificationType(row["notification_type"]),
                source_ids=json.loads(row["source_ids"]),
                item_count=row["item_count"],
                inserted_at=_parse_ts(row["inserted_at"]),
            )
            for row in rows
        ]

    def clear_pending_notifications(
        self,
        user_id: int,
        notification_types: Optional[Iterable[NotificationType]] = None,
    ) -> int:
        """Delete pending entries of a user, optionally only some categories."""
        sql = "DELETE FROM pending_notifications WHERE user_id = ?"
        params: List[Any] = [user_id]
        if notification_types is not None:
            types = [t.value for t in notification_types]
            if not types:
                return 0
            sql += f" AND notification_type IN ({_placeholders(len(types))})"
            params.extend(types)
        with self.connection() as conn:
            return conn.execute(sql, params).rowcount
