from __future__ import annotations

import os
import sqlite3
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from engagetracker.config.settings import Settings
from engagetracker.db.client import (
    create_event,
    create_or_get_participant,
    create_session,
    create_user,
    get_connection,
    init_schema,
)


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Generator[sqlite3.Connection, None, None]:
    os.environ.pop("DATABASE_URL", None)
    db_path = str(tmp_path / "test.db")
    conn = get_connection(db_path)
    init_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def api_settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url="",
        sqlite_db_path=str(tmp_path / "api.db"),
        log_level="INFO",
        api_base_url="http://testserver",
        engagement_weights_path=str(tmp_path / "missing_weights.yaml"),
        top_engagers_default_limit=10,
        cors_origins="",
        dashboard_refresh_seconds=5,
    )


@pytest.fixture
def seeded_event(sqlite_db) -> dict[str, Any]:
    """An active event with one active session and two registered participants."""
    organizer_id = create_user(sqlite_db, "organizer", "org@example.com", role="organizer")
    alice_id = create_user(sqlite_db, "alice", "alice@example.com", first_name="Alice")
    bob_id = create_user(sqlite_db, "bob", "bob@example.com", first_name="Bob")
    event_id = create_event(
        sqlite_db,
        name="DevConf",
        start_date="2026-05-01T09:00:00+00:00",
        end_date="2026-05-02T18:00:00+00:00",
        organizer_id=organizer_id,
        description="Two days of talks",
    )
    session_id = create_session(
        sqlite_db,
        event_id=event_id,
        title="Keynote",
        start_time="2026-05-01T09:00:00+00:00",
        end_time="2026-05-01T10:00:00+00:00",
        is_active=True,
    )
    return {
        "organizer_id": organizer_id,
        "event_id": event_id,
        "session_id": session_id,
        "alice_user_id": alice_id,
        "bob_user_id": bob_id,
        "alice": create_or_get_participant(sqlite_db, alice_id, event_id),
        "bob": create_or_get_participant(sqlite_db, bob_id, event_id),
    }
