from __future__ import annotations

import pytest
import requests

from engagetracker.dashboard.client import fetch_dashboard_snapshot


def _response(mocker, status_code: int = 200, payload: object = None):
    resp = mocker.Mock()
    resp.status_code = status_code
    resp.json.return_value = payload
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    else:
        resp.raise_for_status.return_value = None
    return resp


def test_snapshot_without_active_event(mocker):
    get = mocker.patch(
        "engagetracker.dashboard.client.requests.get",
        return_value=_response(mocker, 404, {"detail": "No active event found"}),
    )
    snapshot = fetch_dashboard_snapshot("http://api.test")
    assert snapshot.event is None
    assert snapshot.stats == {}
    assert snapshot.top_engagers == []
    assert get.call_count == 1


def test_snapshot_collects_stats_and_top_engagers(mocker):
    stats = {"totalParticipants": 2, "avgEngagement": 7.5, "activeSessions": 1, "totalDownloads": 0}
    top = [{"id": 2, "engagementScore": 10.0, "user": {"username": "bob"}}]
    get = mocker.patch(
        "engagetracker.dashboard.client.requests.get",
        side_effect=[
            _response(mocker, 200, {"id": 7, "name": "DevConf"}),
            _response(mocker, 200, stats),
            _response(mocker, 200, top),
        ],
    )
    snapshot = fetch_dashboard_snapshot("http://api.test/", limit=3)
    assert snapshot.event["name"] == "DevConf"
    assert snapshot.stats == stats
    assert snapshot.top_engagers == top
    urls = [call.args[0] for call in get.call_args_list]
    assert urls == [
        "http://api.test/api/events/active",
        "http://api.test/api/events/7/stats",
        "http://api.test/api/events/7/top-engagers",
    ]
    assert get.call_args_list[2].kwargs["params"] == {"limit": 3}


def test_snapshot_propagates_server_errors(mocker):
    mocker.patch(
        "engagetracker.dashboard.client.requests.get",
        return_value=_response(mocker, 503, {"detail": "Storage unavailable"}),
    )
    with pytest.raises(requests.HTTPError):
        fetch_dashboard_snapshot("http://api.test")
