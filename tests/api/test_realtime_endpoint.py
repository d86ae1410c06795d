from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from engagetracker.api.server import create_app
from engagetracker.db.client import create_poll


@pytest.fixture
def live_api(sqlite_db, api_settings) -> Generator[TestClient, None, None]:
    app = create_app(settings=api_settings, conn=sqlite_db)
    with TestClient(app) as client:
        yield client


def _join(ws, event_id: int, participant_id: int | None = None) -> dict:
    ws.send_json({"type": "join_event", "eventId": event_id, "participantId": participant_id})
    return ws.receive_json()


@pytest.mark.integration
def test_join_event_is_acknowledged(live_api, seeded_event):
    with live_api.websocket_connect("/ws") as ws:
        ack = _join(ws, seeded_event["event_id"], seeded_event["alice"])
    assert ack == {
        "type": "joined",
        "eventId": seeded_event["event_id"],
        "participantId": seeded_event["alice"],
    }


@pytest.mark.integration
def test_checkin_is_broadcast_with_fresh_stats(live_api, seeded_event):
    with live_api.websocket_connect("/ws") as ws:
        _join(ws, seeded_event["event_id"])
        resp = live_api.post(
            f"/api/sessions/{seeded_event['session_id']}/checkins",
            json={"participantId": seeded_event["alice"]},
        )
        assert resp.json()["created"] is True
        message = ws.receive_json()
    assert message["type"] == "checkin"
    assert message["eventId"] == seeded_event["event_id"]
    assert message["participantId"] == seeded_event["alice"]
    assert message["engagementScore"] == 5.0
    assert message["sessionCheckins"] == 1
    assert message["stats"]["avgEngagement"] == 2.5


@pytest.mark.integration
def test_poll_flow_broadcasts_responses_and_end(live_api, sqlite_db, seeded_event):
    poll_id = create_poll(sqlite_db, seeded_event["session_id"], "Pick", ["A", "B"])
    with live_api.websocket_connect("/ws") as ws:
        _join(ws, seeded_event["event_id"])
        live_api.post(
            f"/api/polls/{poll_id}/responses",
            json={"participantId": seeded_event["bob"], "selectedOption": 1},
        )
        response_message = ws.receive_json()
        live_api.post(f"/api/polls/{poll_id}/end")
        ended_message = ws.receive_json()
    assert response_message["type"] == "poll_response"
    assert response_message["results"]["totalResponses"] == 1
    assert ended_message["type"] == "poll_ended"
    assert ended_message["results"]["options"][1]["percentage"] == 100.0


@pytest.mark.integration
def test_anonymous_question_hides_author_in_broadcast(live_api, seeded_event):
    with live_api.websocket_connect("/ws") as ws:
        _join(ws, seeded_event["event_id"])
        live_api.post(
            f"/api/sessions/{seeded_event['session_id']}/questions",
            json={
                "participantId": seeded_event["alice"],
                "question": "Is this recorded?",
                "isAnonymous": True,
            },
        )
        message = ws.receive_json()
    assert message["type"] == "question_created"
    assert message["question"]["participantId"] is None
    assert message["question"]["question"] == "Is this recorded?"


@pytest.mark.integration
def test_unknown_client_messages_do_not_close_the_socket(live_api, seeded_event):
    with live_api.websocket_connect("/ws") as ws:
        ws.send_text("{not json")
        ws.send_json({"type": "ping"})
        ack = _join(ws, seeded_event["event_id"])
    assert ack["type"] == "joined"


@pytest.mark.integration
def test_deactivation_is_broadcast_once(live_api, seeded_event):
    event_id = seeded_event["event_id"]
    with live_api.websocket_connect("/ws") as ws:
        _join(ws, event_id)
        resp = live_api.post(f"/api/events/{event_id}/deactivate")
        assert resp.json()["isActive"] is False
        message = ws.receive_json()
        # Already inactive: nothing is sent, so the next message is the rejoin ack.
        live_api.post(f"/api/events/{event_id}/deactivate")
        ack = _join(ws, event_id)
    assert message["type"] == "event_deactivated"
    assert message["eventId"] == event_id
    assert message["event"]["isActive"] is False
    assert ack["type"] == "joined"
