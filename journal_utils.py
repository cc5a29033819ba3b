import json
import logging
import math
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from numbers import Real
from pathlib import Path
from typing import Iterator, Optional

from errors import DuplicateUserError, StorageError, ValidationError
from timeutil import format_timestamp, parse_timestamp


logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = Path(__file__).parent / "conscious_consumption.db"
SCHEMA_VERSION = 4


def db_path() -> Path:
    return Path(os.getenv("DB_PATH", str(DEFAULT_DB_FILE)))


@contextmanager
def _connect(failure_message: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    try:
        conn = sqlite3.connect(db_path())
    except sqlite3.Error as exc:
        logger.exception("Error opening database %s", db_path())
        raise StorageError(failure_message) from exc
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.exception("Database error: %s", exc)
        raise StorageError(failure_message) from exc
    finally:
        conn.close()


def init_db() -> None:
    with _connect() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER,
                apps TEXT NOT NULL,
                screen_time INTEGER NOT NULL,
                reflection TEXT NOT NULL,
                tags TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
            """
        )
        _migrate_schema(conn)


# --- Credential store ---


def create_user(name: str, email: str, password_hash: str) -> int:
    init_db()
    normalized_email = email.strip().lower()
    with _connect("Failed to create user account. Please try again.") as conn:
        try:
            cursor = conn.execute(
                """
                INSERT INTO users (name, email, password_hash, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (name.strip(), normalized_email, password_hash, format_timestamp()),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateUserError() from exc
        return cursor.lastrowid


def get_user_by_email(email: str) -> Optional[dict]:
    init_db()
    with _connect() as conn:
        row = conn.execute(
            "SELECT id, name, email, password_hash, created_at FROM users WHERE email = ?",
            (email.strip().lower(),),
        ).fetchone()
    return dict(row) if row else None


def get_user_by_id(user_id: int) -> Optional[dict]:
    init_db()
    with _connect() as conn:
        row = conn.execute(
            "SELECT id, name, email, password_hash, created_at FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
    return dict(row) if row else None


# --- Entry service ---


def validate_entry(apps, screen_time, reflection, tags) -> None:
    """Raise ValidationError naming the first rule the entry breaks."""
    if apps is None or screen_time is None or reflection is None or tags is None:
        raise ValidationError("All fields are required")
    if not isinstance(apps, list) or not apps or not _all_strings(apps):
        raise ValidationError("Please select at least one app")
    if (
        isinstance(screen_time, bool)
        or not isinstance(screen_time, Real)
        or not math.isfinite(screen_time)
        or screen_time < 0
    ):
        raise ValidationError("Invalid screen time value")
    if not isinstance(reflection, str) or not reflection.strip():
        raise ValidationError("Reflection is required")
    if not isinstance(tags, list) or not _all_strings(tags):
        raise ValidationError("Tags must be an array")


def _all_strings(values: list) -> bool:
    return all(isinstance(value, str) for value in values)


def resolve_owner(session_user_id: Optional[int], body_user_id: Optional[int]) -> Optional[int]:
    return session_user_id or body_user_id or None


def create_entry(
    apps: list,
    screen_time: float,
    reflection: str,
    tags: list,
    session_user_id: Optional[int] = None,
    body_user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    validate_entry(apps, screen_time, reflection, tags)
    owner = resolve_owner(session_user_id, body_user_id)
    init_db()
    with _connect("Failed to save entry. Please try again.") as conn:
        cursor = conn.execute(
            """
            INSERT INTO entries (user_id, apps, screen_time, reflection, tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                owner,
                json.dumps(apps),
                int(round(screen_time)),
                reflection.strip(),
                json.dumps(tags),
                format_timestamp(now),
            ),
        )
        entry_id = cursor.lastrowid
    logger.info("Entry saved (id=%s, user_id=%s)", entry_id, owner)
    return entry_id


def list_entries(session_user_id: Optional[int] = None) -> list[dict]:
    """Newest first. Without a user id every entry in the store is returned."""
    init_db()
    failure = "Failed to fetch entries. Please try again."
    with _connect(failure) as conn:
        if session_user_id:
            rows = conn.execute(
                """
                SELECT id, user_id, apps, screen_time, reflection, tags, created_at
                FROM entries
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (session_user_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                """
                SELECT id, user_id, apps, screen_time, reflection, tags, created_at
                FROM entries
                ORDER BY created_at DESC, id DESC
                """
            ).fetchall()
    return [_row_to_entry(row, failure) for row in rows]


def _row_to_entry(row: sqlite3.Row, failure: str) -> dict:
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "apps": _decode_list(row["apps"], row["id"], failure),
        "screen_time": row["screen_time"] or 0,
        "reflection": row["reflection"],
        "tags": _decode_list(row["tags"], row["id"], failure),
        "created_at": row["created_at"],
    }


def _decode_list(raw: Optional[str], entry_id: int, failure: str) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("Entry %s has an undecodable list column: %r", entry_id, raw)
        raise StorageError(failure) from exc
    return value if isinstance(value, list) else [value]


# --- Migrations ---


def _migrate_schema(conn: sqlite3.Connection) -> None:
    current_version = _get_schema_version(conn)
    if current_version >= SCHEMA_VERSION:
        return

    if current_version < 2:
        # Journals created before accounts existed have no owner column.
        cols = {row["name"] for row in conn.execute("PRAGMA table_info(entries)").fetchall()}
        if "user_id" not in cols:
            conn.execute("ALTER TABLE entries ADD COLUMN user_id INTEGER")
            logger.info("Added user_id column to entries table")
        _set_schema_version(conn, 2)

    if current_version < 3:
        user_cols = {row["name"] for row in conn.execute("PRAGMA table_info(users)").fetchall()}
        if "password" in user_cols and "password_hash" not in user_cols:
            conn.execute("ALTER TABLE users RENAME COLUMN password TO password_hash")
            logger.info("Renamed users.password to users.password_hash")
        _set_schema_version(conn, 3)

    if current_version < 4:
        _normalize_entry_timestamps(conn)
        _set_schema_version(conn, 4)


def _normalize_entry_timestamps(conn: sqlite3.Connection) -> None:
    # created_at is ordered as text, so every row must share one format.
    rows = conn.execute("SELECT id, created_at FROM entries").fetchall()
    updated = 0
    for row in rows:
        moment = parse_timestamp(row["created_at"] or "")
        if moment is None:
            continue
        normalized = format_timestamp(moment)
        if normalized != row["created_at"]:
            conn.execute("UPDATE entries SET created_at = ? WHERE id = ?", (normalized, row["id"]))
            updated += 1
    if updated:
        logger.info("Normalized created_at on %s legacy entries", updated)


def _get_schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
    if not row:
        return 1
    try:
        return int(row["value"])
    except (TypeError, ValueError):
        return 1


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        """
        INSERT INTO meta (key, value) VALUES ('schema_version', ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (str(version),),
    )
