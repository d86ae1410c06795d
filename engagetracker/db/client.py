from __future__ import annotations

import json
import os
import sqlite3
from contextlib import suppress
from decimal import Decimal
from pathlib import Path
from typing import Any

from engagetracker.errors import StorageUnavailable

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    first_name TEXT,
    last_name TEXT,
    profile_image_url TEXT,
    role TEXT NOT NULL DEFAULT 'participant' CHECK(role IN ('organizer', 'participant')),
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    organizer_id INTEGER NOT NULL REFERENCES users(id),
    is_active INTEGER NOT NULL DEFAULT 0 CHECK(is_active IN (0,1)),
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS active_event (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    speaker TEXT,
    room TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    max_capacity INTEGER,
    is_active INTEGER NOT NULL DEFAULT 0 CHECK(is_active IN (0,1)),
    qr_code TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_sessions_event ON sessions(event_id);

CREATE TABLE IF NOT EXISTS participants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    registered_at TEXT NOT NULL DEFAULT (datetime('now')),
    engagement_score TEXT NOT NULL DEFAULT '0',
    UNIQUE(user_id, event_id)
);

CREATE INDEX IF NOT EXISTS idx_participants_event ON participants(event_id);

CREATE TABLE IF NOT EXISTS session_checkins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    participant_id INTEGER NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
    session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    checkin_time TEXT NOT NULL DEFAULT (datetime('now')),
    checkout_time TEXT,
    UNIQUE(participant_id, session_id)
);

CREATE TABLE IF NOT EXISTS polls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    question TEXT NOT NULL,
    options TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1 CHECK(is_active IN (0,1)),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    ended_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_polls_session ON polls(session_id);

CREATE TABLE IF NOT EXISTS poll_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    poll_id INTEGER NOT NULL REFERENCES polls(id) ON DELETE CASCADE,
    participant_id INTEGER NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
    selected_option INTEGER NOT NULL CHECK(selected_option >= 0),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(poll_id, participant_id)
);

CREATE TABLE IF NOT EXISTS questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    participant_id INTEGER NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
    question TEXT NOT NULL,
    answer TEXT,
    upvotes INTEGER NOT NULL DEFAULT 0,
    is_answered INTEGER NOT NULL DEFAULT 0 CHECK(is_answered IN (0,1)),
    is_anonymous INTEGER NOT NULL DEFAULT 0 CHECK(is_anonymous IN (0,1)),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    answered_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_questions_session ON questions(session_id);

CREATE TABLE IF NOT EXISTS resources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK(type IN ('file', 'link', 'video')),
    url TEXT NOT NULL,
    file_size TEXT,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS resource_downloads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    resource_id INTEGER NOT NULL REFERENCES resources(id) ON DELETE CASCADE,
    participant_id INTEGER NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
    downloaded_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_resource_downloads_resource ON resource_downloads(resource_id);

CREATE TABLE IF NOT EXISTS question_upvotes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    question_id INTEGER NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
    participant_id INTEGER NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(question_id, participant_id)
);
"""

POSTGRES_SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        first_name TEXT,
        last_name TEXT,
        profile_image_url TEXT,
        role TEXT NOT NULL DEFAULT 'participant' CHECK(role IN ('organizer', 'participant')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        start_date TIMESTAMPTZ NOT NULL,
        end_date TIMESTAMPTZ NOT NULL,
        organizer_id BIGINT NOT NULL REFERENCES users(id),
        is_active INTEGER NOT NULL DEFAULT 0 CHECK(is_active IN (0,1)),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS active_event (
        id INTEGER PRIMARY KEY CHECK(id = 1),
        event_id BIGINT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id BIGSERIAL PRIMARY KEY,
        event_id BIGINT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        speaker TEXT,
        room TEXT,
        start_time TIMESTAMPTZ NOT NULL,
        end_time TIMESTAMPTZ NOT NULL,
        max_capacity INTEGER,
        is_active INTEGER NOT NULL DEFAULT 0 CHECK(is_active IN (0,1)),
        qr_code TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_event ON sessions(event_id)",
    """
    CREATE TABLE IF NOT EXISTS participants (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        event_id BIGINT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        registered_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        engagement_score NUMERIC(12, 2) NOT NULL DEFAULT 0,
        UNIQUE(user_id, event_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_participants_event ON participants(event_id)",
    """
    CREATE TABLE IF NOT EXISTS session_checkins (
        id BIGSERIAL PRIMARY KEY,
        participant_id BIGINT NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
        session_id BIGINT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        checkin_time TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        checkout_time TIMESTAMPTZ,
        UNIQUE(participant_id, session_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS polls (
        id BIGSERIAL PRIMARY KEY,
        session_id BIGINT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        question TEXT NOT NULL,
        options TEXT NOT NULL DEFAULT '[]',
        is_active INTEGER NOT NULL DEFAULT 1 CHECK(is_active IN (0,1)),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        ended_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_polls_session ON polls(session_id)",
    """
    CREATE TABLE IF NOT EXISTS poll_responses (
        id BIGSERIAL PRIMARY KEY,
        poll_id BIGINT NOT NULL REFERENCES polls(id) ON DELETE CASCADE,
        participant_id BIGINT NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
        selected_option INTEGER NOT NULL CHECK(selected_option >= 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(poll_id, participant_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id BIGSERIAL PRIMARY KEY,
        session_id BIGINT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        participant_id BIGINT NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
        question TEXT NOT NULL,
        answer TEXT,
        upvotes INTEGER NOT NULL DEFAULT 0,
        is_answered INTEGER NOT NULL DEFAULT 0 CHECK(is_answered IN (0,1)),
        is_anonymous INTEGER NOT NULL DEFAULT 0 CHECK(is_anonymous IN (0,1)),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        answered_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_questions_session ON questions(session_id)",
    """
    CREATE TABLE IF NOT EXISTS resources (
        id BIGSERIAL PRIMARY KEY,
        session_id BIGINT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        type TEXT NOT NULL CHECK(type IN ('file', 'link', 'video')),
        url TEXT NOT NULL,
        file_size TEXT,
        description TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resource_downloads (
        id BIGSERIAL PRIMARY KEY,
        resource_id BIGINT NOT NULL REFERENCES resources(id) ON DELETE CASCADE,
        participant_id BIGINT NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
        downloaded_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_resource_downloads_resource ON resource_downloads(resource_id)",
    """
    CREATE TABLE IF NOT EXISTS question_upvotes (
        id BIGSERIAL PRIMARY KEY,
        question_id BIGINT NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
        participant_id BIGINT NOT NULL REFERENCES participants(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(question_id, participant_id)
    )
    """,
]

_BOOL_COLUMNS = ("is_active", "is_answered", "is_anonymous")

SESSION_UPDATABLE_COLUMNS = (
    "title",
    "description",
    "speaker",
    "room",
    "start_time",
    "end_time",
    "max_capacity",
    "is_active",
    "qr_code",
)


def _is_postgres(conn: Any) -> bool:
    return conn.__class__.__module__.startswith("psycopg")


def _now_expr(conn: Any) -> str:
    return "CURRENT_TIMESTAMP" if _is_postgres(conn) else "datetime('now')"


def _adapt_sql(conn: Any, sql: str) -> str:
    return sql.replace("?", "%s") if _is_postgres(conn) else sql


def _is_unavailable_error(exc: Exception) -> bool:
    if isinstance(exc, (sqlite3.OperationalError, sqlite3.InterfaceError)):
        return True
    if isinstance(exc, sqlite3.ProgrammingError) and "closed" in str(exc).lower():
        return True
    if exc.__class__.__module__.startswith("psycopg"):
        import psycopg

        return isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError))
    return False


def execute(conn: Any, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Any:
    """Run one statement, translating driver I/O failures into StorageUnavailable."""
    try:
        if _is_postgres(conn):
            cur = conn.cursor()
            cur.execute(_adapt_sql(conn, sql), tuple(params))
            return cur
        return conn.execute(_adapt_sql(conn, sql), tuple(params))
    except Exception as exc:
        if _is_unavailable_error(exc):
            raise StorageUnavailable(str(exc)) from exc
        raise


def _commit(conn: Any) -> None:
    try:
        conn.commit()
    except Exception as exc:
        if _is_unavailable_error(exc):
            raise StorageUnavailable(str(exc)) from exc
        raise


def _safe_rollback(conn: Any) -> None:
    """Reset a failed transaction without masking the error being raised."""
    with suppress(Exception):
        conn.rollback()


def _insert_returning_id(conn: Any, sql: str, params: tuple[Any, ...] | list[Any]) -> int:
    if _is_postgres(conn):
        row = execute(conn, f"{sql} RETURNING id", params).fetchone()
        return int(row_to_dict(row)["id"])
    cur = execute(conn, sql, params)
    return int(cur.lastrowid)


def _decimal_param(conn: Any, value: Decimal) -> Any:
    return value if _is_postgres(conn) else str(value)


def row_to_dict(row: Any) -> dict[str, Any]:
    data = dict(row)
    for column in _BOOL_COLUMNS:
        if column in data and data[column] is not None:
            data[column] = bool(data[column])
    return data


def get_connection(db_path: str) -> Any:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        from psycopg import connect
        from psycopg.rows import dict_row

        return connect(database_url, row_factory=dict_row, autocommit=False)

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_schema(conn: Any) -> None:
    if _is_postgres(conn):
        cur = conn.cursor()
        for statement in POSTGRES_SCHEMA_STATEMENTS:
            cur.execute(statement)
    else:
        conn.executescript(SQLITE_SCHEMA)
    conn.commit()


# Users


def create_user(
    conn: Any,
    username: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    profile_image_url: str | None = None,
    role: str = "participant",
) -> int:
    try:
        user_id = _insert_returning_id(
            conn,
            """
            INSERT INTO users (username, email, first_name, last_name, profile_image_url, role)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                username.strip(),
                email.strip().lower(),
                first_name,
                last_name,
                profile_image_url,
                role,
            ],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return user_id


def get_user(conn: Any, user_id: int) -> dict[str, Any] | None:
    row = execute(conn, "SELECT * FROM users WHERE id = ?", [user_id]).fetchone()
    return row_to_dict(row) if row else None


def get_user_by_email(conn: Any, email: str) -> dict[str, Any] | None:
    row = execute(
        conn, "SELECT * FROM users WHERE email = ?", [email.strip().lower()]
    ).fetchone()
    return row_to_dict(row) if row else None


# Events


def create_event(
    conn: Any,
    name: str,
    start_date: str,
    end_date: str,
    organizer_id: int,
    description: str = "",
    is_active: bool = True,
) -> int:
    try:
        event_id = _insert_returning_id(
            conn,
            """
            INSERT INTO events (name, description, start_date, end_date, organizer_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            [name.strip(), description, start_date, end_date, organizer_id],
        )
        if is_active:
            _point_active_event(conn, event_id)
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return event_id


def get_events(conn: Any) -> list[dict[str, Any]]:
    rows = execute(conn, "SELECT * FROM events ORDER BY created_at DESC, id DESC").fetchall()
    return [row_to_dict(row) for row in rows]


def get_event(conn: Any, event_id: int) -> dict[str, Any] | None:
    row = execute(conn, "SELECT * FROM events WHERE id = ?", [event_id]).fetchone()
    return row_to_dict(row) if row else None


def get_active_event(conn: Any) -> dict[str, Any] | None:
    row = execute(
        conn,
        """
        SELECT e.*
        FROM active_event a
        JOIN events e ON e.id = a.event_id
        WHERE a.id = 1
        """,
    ).fetchone()
    return row_to_dict(row) if row else None


def _point_active_event(conn: Any, event_id: int) -> None:
    now_sql = _now_expr(conn)
    execute(conn, "UPDATE events SET is_active = 0 WHERE is_active = 1 AND id <> ?", [event_id])
    execute(conn, "UPDATE events SET is_active = 1 WHERE id = ?", [event_id])
    execute(
        conn,
        f"""
        INSERT INTO active_event (id, event_id, updated_at) VALUES (1, ?, {now_sql})
        ON CONFLICT(id) DO UPDATE SET event_id = excluded.event_id, updated_at = {now_sql}
        """,
        [event_id],
    )


def set_active_event(conn: Any, event_id: int) -> bool:
    """Make ``event_id`` the only active event. Returns False when it does not exist."""
    if get_event(conn, event_id) is None:
        return False
    try:
        _point_active_event(conn, event_id)
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return True


def clear_active_event(conn: Any, event_id: int) -> bool:
    try:
        cur = execute(
            conn, "UPDATE events SET is_active = 0 WHERE id = ? AND is_active = 1", [event_id]
        )
        execute(conn, "DELETE FROM active_event WHERE id = 1 AND event_id = ?", [event_id])
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return cur.rowcount > 0


# Sessions


def create_session(
    conn: Any,
    event_id: int,
    title: str,
    start_time: str,
    end_time: str,
    description: str = "",
    speaker: str | None = None,
    room: str | None = None,
    max_capacity: int | None = None,
    is_active: bool = False,
    qr_code: str | None = None,
) -> int:
    try:
        session_id = _insert_returning_id(
            conn,
            """
            INSERT INTO sessions (
                event_id, title, description, speaker, room, start_time, end_time,
                max_capacity, is_active, qr_code
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                event_id,
                title.strip(),
                description,
                speaker,
                room,
                start_time,
                end_time,
                max_capacity,
                1 if is_active else 0,
                qr_code,
            ],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return session_id


def get_sessions(conn: Any, event_id: int) -> list[dict[str, Any]]:
    rows = execute(
        conn,
        "SELECT * FROM sessions WHERE event_id = ? ORDER BY start_time ASC, id ASC",
        [event_id],
    ).fetchall()
    return [row_to_dict(row) for row in rows]


def get_session(conn: Any, session_id: int) -> dict[str, Any] | None:
    row = execute(conn, "SELECT * FROM sessions WHERE id = ?", [session_id]).fetchone()
    return row_to_dict(row) if row else None


def get_active_sessions(conn: Any, event_id: int) -> list[dict[str, Any]]:
    rows = execute(
        conn,
        """
        SELECT * FROM sessions
        WHERE event_id = ? AND is_active = 1
        ORDER BY start_time ASC, id ASC
        """,
        [event_id],
    ).fetchall()
    return [row_to_dict(row) for row in rows]


def update_session(conn: Any, session_id: int, updates: dict[str, Any]) -> dict[str, Any] | None:
    columns = [key for key in updates if key in SESSION_UPDATABLE_COLUMNS]
    if columns:
        params: list[Any] = []
        for column in columns:
            value = updates[column]
            if column == "is_active":
                value = 1 if value else 0
            params.append(value)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        try:
            execute(conn, f"UPDATE sessions SET {assignments} WHERE id = ?", [*params, session_id])
            _commit(conn)
        except Exception:
            _safe_rollback(conn)
            raise
    return get_session(conn, session_id)


# Participants


def create_or_get_participant(conn: Any, user_id: int, event_id: int) -> int:
    row = execute(
        conn,
        "SELECT id FROM participants WHERE user_id = ? AND event_id = ?",
        [user_id, event_id],
    ).fetchone()
    if row:
        return int(row_to_dict(row)["id"])
    try:
        participant_id = _insert_returning_id(
            conn,
            "INSERT INTO participants (user_id, event_id) VALUES (?, ?)",
            [user_id, event_id],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return participant_id


def _participant_with_user(row: Any) -> dict[str, Any]:
    data = row_to_dict(row)
    user = {
        "id": data.pop("u_id"),
        "username": data.pop("u_username"),
        "email": data.pop("u_email"),
        "first_name": data.pop("u_first_name"),
        "last_name": data.pop("u_last_name"),
        "profile_image_url": data.pop("u_profile_image_url"),
        "role": data.pop("u_role"),
    }
    data["engagement_score"] = Decimal(str(data["engagement_score"]))
    data["user"] = user
    return data


_PARTICIPANT_WITH_USER_SQL = """
    SELECT p.*,
           u.id AS u_id, u.username AS u_username, u.email AS u_email,
           u.first_name AS u_first_name, u.last_name AS u_last_name,
           u.profile_image_url AS u_profile_image_url, u.role AS u_role
    FROM participants p
    JOIN users u ON u.id = p.user_id
"""


def get_participants(conn: Any, event_id: int) -> list[dict[str, Any]]:
    rows = execute(
        conn,
        f"{_PARTICIPANT_WITH_USER_SQL} WHERE p.event_id = ? ORDER BY p.registered_at ASC, p.id ASC",
        [event_id],
    ).fetchall()
    return [_participant_with_user(row) for row in rows]


def get_participant(conn: Any, participant_id: int) -> dict[str, Any] | None:
    row = execute(
        conn, f"{_PARTICIPANT_WITH_USER_SQL} WHERE p.id = ?", [participant_id]
    ).fetchone()
    return _participant_with_user(row) if row else None


def get_participant_ids(conn: Any) -> list[int]:
    rows = execute(conn, "SELECT id FROM participants ORDER BY id ASC").fetchall()
    return [int(row_to_dict(row)["id"]) for row in rows]


def update_engagement_score(conn: Any, participant_id: int, score: Decimal) -> None:
    update_engagement_scores(conn, {participant_id: score})


def update_engagement_scores(conn: Any, scores: dict[int, Decimal]) -> None:
    """Write cached scores for several participants in one transaction."""
    try:
        for participant_id, score in scores.items():
            execute(
                conn,
                "UPDATE participants SET engagement_score = ? WHERE id = ?",
                [_decimal_param(conn, score), participant_id],
            )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise


# Check-ins


def check_in(conn: Any, participant_id: int, session_id: int) -> tuple[int, bool]:
    """Record a check-in once per participant and session. Returns (checkin id, created)."""
    try:
        cur = execute(
            conn,
            """
            INSERT INTO session_checkins (participant_id, session_id) VALUES (?, ?)
            ON CONFLICT(participant_id, session_id) DO NOTHING
            """,
            [participant_id, session_id],
        )
        created = cur.rowcount > 0
        row = execute(
            conn,
            "SELECT id FROM session_checkins WHERE participant_id = ? AND session_id = ?",
            [participant_id, session_id],
        ).fetchone()
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return int(row_to_dict(row)["id"]), created


def check_out(conn: Any, participant_id: int, session_id: int) -> bool:
    """Stamp the open check-in's checkout time. Returns False when none is open."""
    now_sql = _now_expr(conn)
    try:
        cur = execute(
            conn,
            f"""
            UPDATE session_checkins SET checkout_time = {now_sql}
            WHERE participant_id = ? AND session_id = ? AND checkout_time IS NULL
            """,
            [participant_id, session_id],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return cur.rowcount > 0


def count_session_checkins(conn: Any, session_id: int) -> int:
    row = execute(
        conn, "SELECT COUNT(*) AS c FROM session_checkins WHERE session_id = ?", [session_id]
    ).fetchone()
    return int(row_to_dict(row)["c"])


# Polls


def _poll_from_row(row: Any) -> dict[str, Any]:
    data = row_to_dict(row)
    data["options"] = json.loads(data.get("options") or "[]")
    return data


def create_poll(conn: Any, session_id: int, question: str, options: list[str]) -> int:
    """Create the session's active poll, ending any poll still open in that session."""
    now_sql = _now_expr(conn)
    try:
        execute(
            conn,
            f"""
            UPDATE polls SET is_active = 0, ended_at = {now_sql}
            WHERE session_id = ? AND is_active = 1
            """,
            [session_id],
        )
        poll_id = _insert_returning_id(
            conn,
            "INSERT INTO polls (session_id, question, options) VALUES (?, ?, ?)",
            [session_id, question.strip(), json.dumps(options)],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return poll_id


def get_poll(conn: Any, poll_id: int) -> dict[str, Any] | None:
    row = execute(
        conn,
        """
        SELECT p.*, s.event_id
        FROM polls p
        JOIN sessions s ON s.id = p.session_id
        WHERE p.id = ?
        """,
        [poll_id],
    ).fetchone()
    return _poll_from_row(row) if row else None


def get_polls(conn: Any, session_id: int) -> list[dict[str, Any]]:
    rows = execute(
        conn,
        "SELECT * FROM polls WHERE session_id = ? ORDER BY created_at DESC, id DESC",
        [session_id],
    ).fetchall()
    return [_poll_from_row(row) for row in rows]


def get_active_poll(conn: Any, session_id: int) -> dict[str, Any] | None:
    row = execute(
        conn,
        """
        SELECT * FROM polls
        WHERE session_id = ? AND is_active = 1
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        [session_id],
    ).fetchone()
    return _poll_from_row(row) if row else None


def end_poll(conn: Any, poll_id: int) -> bool:
    now_sql = _now_expr(conn)
    try:
        cur = execute(
            conn,
            f"UPDATE polls SET is_active = 0, ended_at = {now_sql} WHERE id = ? AND is_active = 1",
            [poll_id],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return cur.rowcount > 0


def submit_poll_response(
    conn: Any, poll_id: int, participant_id: int, selected_option: int
) -> None:
    """Store one vote per participant and poll; a later vote replaces the earlier one."""
    now_sql = _now_expr(conn)
    try:
        execute(
            conn,
            f"""
            INSERT INTO poll_responses (poll_id, participant_id, selected_option)
            VALUES (?, ?, ?)
            ON CONFLICT(poll_id, participant_id)
            DO UPDATE SET selected_option = excluded.selected_option, created_at = {now_sql}
            """,
            [poll_id, participant_id, selected_option],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise


def get_poll_option_counts(conn: Any, poll_id: int) -> dict[int, int]:
    rows = execute(
        conn,
        """
        SELECT selected_option, COUNT(*) AS votes
        FROM poll_responses
        WHERE poll_id = ?
        GROUP BY selected_option
        """,
        [poll_id],
    ).fetchall()
    return {
        int(row_to_dict(row)["selected_option"]): int(row_to_dict(row)["votes"]) for row in rows
    }


# Questions


def create_question(
    conn: Any,
    session_id: int,
    participant_id: int,
    question: str,
    is_anonymous: bool = False,
) -> int:
    try:
        question_id = _insert_returning_id(
            conn,
            """
            INSERT INTO questions (session_id, participant_id, question, is_anonymous)
            VALUES (?, ?, ?, ?)
            """,
            [session_id, participant_id, question.strip(), 1 if is_anonymous else 0],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return question_id


def get_question(conn: Any, question_id: int) -> dict[str, Any] | None:
    row = execute(
        conn,
        """
        SELECT q.*, s.event_id
        FROM questions q
        JOIN sessions s ON s.id = q.session_id
        WHERE q.id = ?
        """,
        [question_id],
    ).fetchone()
    return row_to_dict(row) if row else None


def get_questions(conn: Any, session_id: int) -> list[dict[str, Any]]:
    rows = execute(
        conn,
        """
        SELECT * FROM questions
        WHERE session_id = ?
        ORDER BY upvotes DESC, created_at ASC, id ASC
        """,
        [session_id],
    ).fetchall()
    return [row_to_dict(row) for row in rows]


def answer_question(conn: Any, question_id: int, answer: str) -> bool:
    now_sql = _now_expr(conn)
    try:
        cur = execute(
            conn,
            f"""
            UPDATE questions SET answer = ?, is_answered = 1, answered_at = {now_sql}
            WHERE id = ?
            """,
            [answer.strip(), question_id],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return cur.rowcount > 0


def upvote_question(conn: Any, question_id: int, participant_id: int) -> bool:
    """Record one upvote per participant. Returns False when it was already recorded."""
    try:
        cur = execute(
            conn,
            """
            INSERT INTO question_upvotes (question_id, participant_id) VALUES (?, ?)
            ON CONFLICT(question_id, participant_id) DO NOTHING
            """,
            [question_id, participant_id],
        )
        created = cur.rowcount > 0
        execute(
            conn,
            """
            UPDATE questions
            SET upvotes = (SELECT COUNT(*) FROM question_upvotes WHERE question_id = ?)
            WHERE id = ?
            """,
            [question_id, question_id],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return created


# Resources


def create_resource(
    conn: Any,
    session_id: int,
    name: str,
    resource_type: str,
    url: str,
    file_size: str | None = None,
    description: str | None = None,
) -> int:
    try:
        resource_id = _insert_returning_id(
            conn,
            """
            INSERT INTO resources (session_id, name, type, url, file_size, description)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [session_id, name.strip(), resource_type, url.strip(), file_size, description],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return resource_id


def get_resource(conn: Any, resource_id: int) -> dict[str, Any] | None:
    row = execute(
        conn,
        """
        SELECT r.*, s.event_id
        FROM resources r
        JOIN sessions s ON s.id = r.session_id
        WHERE r.id = ?
        """,
        [resource_id],
    ).fetchone()
    return row_to_dict(row) if row else None


def get_resources(conn: Any, session_id: int) -> list[dict[str, Any]]:
    rows = execute(
        conn,
        "SELECT * FROM resources WHERE session_id = ? ORDER BY created_at ASC, id ASC",
        [session_id],
    ).fetchall()
    return [row_to_dict(row) for row in rows]


def record_download(conn: Any, resource_id: int, participant_id: int) -> int:
    try:
        download_id = _insert_returning_id(
            conn,
            "INSERT INTO resource_downloads (resource_id, participant_id) VALUES (?, ?)",
            [resource_id, participant_id],
        )
        _commit(conn)
    except Exception:
        _safe_rollback(conn)
        raise
    return download_id


def count_resource_downloads(conn: Any, resource_id: int) -> int:
    row = execute(
        conn,
        "SELECT COUNT(*) AS c FROM resource_downloads WHERE resource_id = ?",
        [resource_id],
    ).fetchone()
    return int(row_to_dict(row)["c"])


def is_integrity_error(exc: Exception) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    if exc.__class__.__module__.startswith("psycopg"):
        import psycopg

        return isinstance(exc, psycopg.IntegrityError)
    return False
