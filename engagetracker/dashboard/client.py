from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests


@dataclass
class DashboardSnapshot:
    event: dict[str, Any] | None = None
    stats: dict[str, Any] = field(default_factory=dict)
    top_engagers: list[dict[str, Any]] = field(default_factory=list)


def _get_json(
    base_url: str, path: str, params: dict[str, Any] | None = None, timeout_seconds: int = 10
) -> Any:
    resp = requests.get(f"{base_url.rstrip('/')}{path}", params=params, timeout=timeout_seconds)
    resp.raise_for_status()
    return resp.json()


def fetch_active_event(base_url: str, timeout_seconds: int = 10) -> dict[str, Any] | None:
    resp = requests.get(f"{base_url.rstrip('/')}/api/events/active", timeout=timeout_seconds)
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    payload = resp.json()
    return payload if isinstance(payload, dict) else None


def fetch_dashboard_snapshot(base_url: str, limit: int = 10) -> DashboardSnapshot:
    """Collect what the dashboard shows for the currently active event."""
    event = fetch_active_event(base_url)
    if event is None:
        return DashboardSnapshot()
    event_id = int(event["id"])
    stats = _get_json(base_url, f"/api/events/{event_id}/stats")
    top = _get_json(base_url, f"/api/events/{event_id}/top-engagers", params={"limit": limit})
    return DashboardSnapshot(
        event=event,
        stats=stats if isinstance(stats, dict) else {},
        top_engagers=top if isinstance(top, list) else [],
    )
