from __future__ import annotations

from engagetracker.realtime.hub import BroadcastHub
from engagetracker.utils.health import liveness, readiness


class _Socket:
    async def send_text(self, data: str) -> None:
        return None


def test_liveness_is_always_ok():
    assert liveness() == {"ok": True}


def test_readiness_ok_with_sqlite_and_hub(sqlite_db):
    hub = BroadcastHub()
    hub.register(_Socket())
    status = readiness(sqlite_db, hub)
    assert status["ok"] is True
    assert status["dependencies"]["database"] == "ready"
    assert status["dependencies"]["realtime"] == "ready: 1 connections"


def test_readiness_fails_without_connection():
    status = readiness(None)
    assert status["ok"] is False
    assert "error" in status["dependencies"]["database"]


def test_readiness_fails_on_closed_connection(sqlite_db):
    sqlite_db.close()
    status = readiness(sqlite_db)
    assert status["ok"] is False
    assert status["dependencies"]["database"].startswith("error:")
