from __future__ import annotations

import sqlite3


def up(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
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
        """
    )
    conn.commit()


def down(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DROP TABLE IF EXISTS poll_responses;
        DROP TABLE IF EXISTS polls;
        """
    )
    conn.commit()
