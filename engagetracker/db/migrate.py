from __future__ import annotations

import argparse
import importlib
import logging
import pkgutil
from typing import Any

from engagetracker.db.client import _is_postgres, execute, get_connection, init_schema

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "migrations"


def ensure_migrations_table(conn: Any) -> None:
    if _is_postgres(conn):
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS _migrations (
                id BIGSERIAL PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
    else:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS _migrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                applied_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
    conn.commit()


def applied_migration_names(conn: Any) -> set[str]:
    rows = execute(conn, "SELECT name FROM _migrations").fetchall()
    return {row["name"] for row in rows}


def discover_migrations() -> list[str]:
    package = importlib.import_module(MIGRATIONS_PACKAGE)
    modules = [
        name for _, name, _ in pkgutil.iter_modules(list(package.__path__)) if name[0:3].isdigit()
    ]
    return sorted(modules)


def _record(conn: Any, module_name: str) -> None:
    if _is_postgres(conn):
        conn.cursor().execute("INSERT INTO _migrations(name) VALUES (%s)", (module_name,))
    else:
        conn.execute("INSERT INTO _migrations(name) VALUES (?)", (module_name,))
    conn.commit()


def apply_all(db_path: str) -> list[str]:
    """Apply pending migrations in order and return the names applied.

    Migration modules carry SQLite DDL. On Postgres the full schema is created
    by ``init_schema`` and every migration is recorded as applied.
    """
    conn = get_connection(db_path)
    try:
        ensure_migrations_table(conn)
        already = applied_migration_names(conn)
        pending = [name for name in discover_migrations() if name not in already]
        if _is_postgres(conn) and pending:
            init_schema(conn)
        for module_name in pending:
            if not _is_postgres(conn):
                mod = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{module_name}")
                mod.up(conn)
            _record(conn, module_name)
            logger.info("Applied migration %s", module_name)
        return pending
    finally:
        conn.close()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db-path", default="data/engagetracker.db")
    args = parser.parse_args()
    apply_all(args.db_path)


if __name__ == "__main__":
    main()
