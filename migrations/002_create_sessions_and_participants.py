from __future__ import annotations

import sqlite3


def up(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
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
        """
    )
    conn.commit()


def down(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DROP TABLE IF EXISTS session_checkins;
        DROP TABLE IF EXISTS participants;
        DROP TABLE IF EXISTS sessions;
        """
    )
    conn.commit()
