from __future__ import annotations

import sqlite3


def up(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
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
        """
    )
    conn.commit()


def down(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DROP TABLE IF EXISTS active_event;
        DROP TABLE IF EXISTS events;
        DROP TABLE IF EXISTS users;
        """
    )
    conn.commit()
