from __future__ import annotations

from typing import Any

import requests
import streamlit as st

from engagetracker.config.settings import Settings, load_settings, validate_settings
from engagetracker.dashboard.client import fetch_dashboard_snapshot


@st.cache_resource
def get_runtime() -> dict[str, Any]:
    settings = load_settings()
    return {"settings": settings, "errors": validate_settings(settings)}


def _display_name(participant: dict[str, Any]) -> str:
    user = participant.get("user") or {}
    full = " ".join(part for part in (user.get("firstName"), user.get("lastName")) if part)
    return full or str(user.get("username") or f"Participant {participant.get('id')}")


def render_stats(stats: dict[str, Any]) -> None:
    col_a, col_b, col_c, col_d = st.columns(4)
    col_a.metric("Participants", int(stats.get("totalParticipants", 0)))
    col_b.metric("Avg engagement", f"{float(stats.get('avgEngagement', 0)):.2f}")
    col_c.metric("Active sessions", int(stats.get("activeSessions", 0)))
    col_d.metric("Downloads", int(stats.get("totalDownloads", 0)))


def render_top_engagers(top_engagers: list[dict[str, Any]]) -> None:
    st.subheader("Top engagers")
    if not top_engagers:
        st.info("No participants yet.")
        return
    rows = [
        {
            "Rank": rank,
            "Participant": _display_name(participant),
            "Score": float(participant.get("engagementScore", 0)),
        }
        for rank, participant in enumerate(top_engagers, start=1)
    ]
    st.dataframe(rows, hide_index=True, use_container_width=True)


def render_live(settings: Settings) -> None:
    try:
        snapshot = fetch_dashboard_snapshot(
            settings.api_base_url, limit=settings.top_engagers_default_limit
        )
    except requests.RequestException as exc:
        st.error(f"Could not reach the EngageTracker API: {exc}")
        return
    if snapshot.event is None:
        st.title("EngageTracker")
        st.info("No active event found.")
        return
    st.title(snapshot.event.get("name", "Active event"))
    if snapshot.event.get("description"):
        st.caption(snapshot.event["description"])
    render_stats(snapshot.stats)
    render_top_engagers(snapshot.top_engagers)


def main() -> None:
    st.set_page_config(
        page_title="EngageTracker",
        page_icon=":bar_chart:",
        layout="wide",
        initial_sidebar_state="collapsed",
    )
    runtime = get_runtime()
    if runtime["errors"]:
        st.error("Startup validation failed.")
        for error in runtime["errors"]:
            st.write(f"- {error}")
        return
    settings = runtime["settings"]
    live = st.fragment(run_every=settings.dashboard_refresh_seconds)(render_live)
    live(settings)


if __name__ == "__main__":
    main()
