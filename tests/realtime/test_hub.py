from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import pytest

from engagetracker.realtime.hub import BroadcastHub, Subscription, encode_message
from engagetracker.realtime.messages import CHECKIN, build_message


class FakeConnection:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))


class ClosedConnection:
    async def send_text(self, data: str) -> None:
        raise RuntimeError("socket already closed")


def test_registered_connection_receives_nothing_until_joined():
    hub = BroadcastHub()
    conn = FakeConnection()
    hub.register(conn)
    assert hub.subscription(conn) == Subscription()
    delivered = asyncio.run(hub.broadcast(1, {"type": "checkin"}))
    assert delivered == 0
    assert conn.sent == []


def test_broadcast_reaches_exactly_the_joined_connections():
    hub = BroadcastHub()
    a, b, other = FakeConnection(), FakeConnection(), FakeConnection()
    hub.join(a, 1)
    hub.join(b, 1, participant_id=7)
    hub.join(other, 2)

    delivered = asyncio.run(hub.broadcast(1, build_message(CHECKIN, 1, sessionId=3)))
    assert delivered == 2
    assert a.sent == [{"type": "checkin", "eventId": 1, "sessionId": 3}]
    assert b.sent == a.sent
    assert other.sent == []


def test_second_join_replaces_the_first():
    hub = BroadcastHub()
    conn = FakeConnection()
    hub.join(conn, 1)
    hub.join(conn, 2)
    assert hub.connection_count() == 1
    assert hub.subscription(conn).event_id == 2
    assert asyncio.run(hub.broadcast(1, {"type": "checkin"})) == 0
    assert asyncio.run(hub.broadcast(2, {"type": "checkin"})) == 1


def test_closed_connection_does_not_block_other_deliveries():
    hub = BroadcastHub()
    healthy, closed = FakeConnection(), ClosedConnection()
    hub.join(closed, 5)
    hub.join(healthy, 5)

    delivered = asyncio.run(hub.broadcast(5, {"type": "poll_created"}))
    assert delivered == 1
    assert healthy.sent == [{"type": "poll_created"}]
    assert hub.delivery_failures == 1
    assert hub.subscription(closed) is None
    assert hub.subscribers(5) == [healthy]


def test_leave_is_safe_to_repeat():
    hub = BroadcastHub()
    conn = FakeConnection()
    hub.join(conn, 1)
    assert hub.leave(conn) is True
    assert hub.leave(conn) is False
    assert hub.connection_count() == 0


def test_encode_message_handles_decimals():
    encoded = encode_message({"type": "checkin", "engagementScore": Decimal("12.50")})
    assert json.loads(encoded) == {"type": "checkin", "engagementScore": 12.5}


def test_join_event_message_scopes_the_connection():
    hub = BroadcastHub()
    conn = FakeConnection()
    hub.register(conn)
    subscription = hub.handle_client_message(
        conn, json.dumps({"type": "join_event", "eventId": 4, "participantId": 9})
    )
    assert subscription == Subscription(event_id=4, participant_id=9)
    assert subscription.joined is True


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"type": "ping"}),
        json.dumps({"type": "join_event"}),
        json.dumps({"type": "join_event", "eventId": "4"}),
        json.dumps({"type": "join_event", "eventId": True}),
    ],
)
def test_invalid_client_messages_are_ignored(raw):
    hub = BroadcastHub()
    conn = FakeConnection()
    hub.register(conn)
    assert hub.handle_client_message(conn, raw) is None
    assert hub.subscription(conn) == Subscription()


def test_build_message_rejects_unknown_type():
    with pytest.raises(ValueError):
        build_message("party", 1)
