from __future__ import annotations

from typing import Any


def liveness() -> dict[str, Any]:
    return {"ok": True}


def _database_ready(conn: Any) -> str:
    try:
        if hasattr(conn, "execute"):
            conn.execute("SELECT 1").fetchone()
        else:
            cur = conn.cursor()
            cur.execute("SELECT 1")
            cur.fetchone()
        return "ready"
    except Exception as exc:
        return f"error: {exc}"


def readiness(conn: Any | None, hub: Any | None = None) -> dict[str, Any]:
    dependencies: dict[str, Any] = {}
    if conn is None:
        dependencies["database"] = "error: unavailable"
    else:
        dependencies["database"] = _database_ready(conn)

    if hub is not None:
        dependencies["realtime"] = f"ready: {hub.connection_count()} connections"

    ok = dependencies["database"] == "ready"
    return {"ok": ok, "dependencies": dependencies}
