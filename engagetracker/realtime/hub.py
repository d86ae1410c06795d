"""In-process registry of live connections and event-scoped fan-out.

The registry lives on the single asyncio loop that serves the API, so
add/remove/iterate never race with each other. Scaling past one process
needs an external pub/sub layer in front of this hub.

Connection lifecycle:
- ``register``: connected, not scoped to any event, receives nothing
- ``join``: scoped to one event (and optionally a participant)
- ``leave``: closed and forgotten
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from engagetracker.errors import DeliveryFailure
from engagetracker.realtime.messages import JOIN_EVENT

logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...


@dataclass(frozen=True)
class Subscription:
    event_id: int | None = None
    participant_id: int | None = None

    @property
    def joined(self) -> bool:
        return self.event_id is not None


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_message(payload: dict[str, Any]) -> str:
    return json.dumps(payload, default=_json_default)


def _optional_id(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("ids must be integers")
    return value


class BroadcastHub:
    def __init__(self) -> None:
        # Keyed by id(): starlette WebSocket objects are not hashable.
        self._connections: dict[int, tuple[Connection, Subscription]] = {}
        self.delivery_failures = 0

    def register(self, connection: Connection) -> None:
        self._connections.setdefault(id(connection), (connection, Subscription()))

    def join(
        self, connection: Connection, event_id: int, participant_id: int | None = None
    ) -> Subscription:
        """Scope a connection to one event, replacing any earlier scope."""
        subscription = Subscription(event_id=event_id, participant_id=participant_id)
        self._connections[id(connection)] = (connection, subscription)
        logger.info(
            "Connection %s joined event %s (participant=%s)",
            id(connection),
            event_id,
            participant_id,
        )
        return subscription

    def leave(self, connection: Connection) -> bool:
        entry = self._connections.pop(id(connection), None)
        if entry is None:
            return False
        logger.info("Connection %s left (event=%s)", id(connection), entry[1].event_id)
        return True

    def subscription(self, connection: Connection) -> Subscription | None:
        entry = self._connections.get(id(connection))
        return entry[1] if entry else None

    def connection_count(self) -> int:
        return len(self._connections)

    def subscribers(self, event_id: int) -> list[Connection]:
        return [
            connection
            for connection, subscription in list(self._connections.values())
            if subscription.event_id == event_id
        ]

    async def _send(self, connection: Connection, text: str) -> None:
        try:
            await connection.send_text(text)
        except Exception as exc:
            raise DeliveryFailure(str(exc), connection_id=id(connection)) from exc

    async def _deliver(self, connection: Connection, text: str) -> bool:
        try:
            await self._send(connection, text)
        except DeliveryFailure as failure:
            self.delivery_failures += 1
            logger.warning(
                "Realtime delivery to connection %s failed: %s", failure.connection_id, failure
            )
            self.leave(connection)
            return False
        return True

    async def broadcast(self, event_id: int, payload: dict[str, Any]) -> int:
        """Send ``payload`` to every connection joined to ``event_id``.

        Returns the number of successful deliveries. Failed sends are logged
        and drop the connection; they never reach the caller.
        """
        targets = self.subscribers(event_id)
        if not targets:
            return 0
        text = encode_message(payload)
        results = await asyncio.gather(*(self._deliver(conn, text) for conn in targets))
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            "Broadcast %s to event %s: %s/%s delivered",
            payload.get("type"),
            event_id,
            delivered,
            len(targets),
        )
        return delivered

    def handle_client_message(self, connection: Connection, raw: str) -> Subscription | None:
        """Apply one inbound client message. Unknown or malformed input is ignored."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed realtime message from %s", id(connection))
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object realtime message from %s", id(connection))
            return None
        if data.get("type") != JOIN_EVENT:
            logger.info("Ignoring realtime message of type %r", data.get("type"))
            return None
        try:
            event_id = _optional_id(data.get("eventId"))
            participant_id = _optional_id(data.get("participantId"))
        except ValueError:
            logger.warning("Ignoring join_event with non-integer ids from %s", id(connection))
            return None
        if event_id is None:
            logger.warning("Ignoring join_event without eventId from %s", id(connection))
            return None
        return self.join(connection, event_id, participant_id)
