"""Typed realtime messages pushed to dashboards and participants.

Every message is a flat JSON object carrying ``type`` and ``eventId``.
"""

from __future__ import annotations

from typing import Any

POLL_CREATED = "poll_created"
POLL_ENDED = "poll_ended"
POLL_RESPONSE = "poll_response"
QUESTION_CREATED = "question_created"
QUESTION_ANSWERED = "question_answered"
QUESTION_UPVOTED = "question_upvoted"
CHECKIN = "checkin"
RESOURCE_DOWNLOADED = "resource_downloaded"
SESSION_UPDATED = "session_updated"
EVENT_ACTIVATED = "event_activated"
EVENT_DEACTIVATED = "event_deactivated"
JOINED = "joined"

MESSAGE_TYPES = frozenset(
    {
        POLL_CREATED,
        POLL_ENDED,
        POLL_RESPONSE,
        QUESTION_CREATED,
        QUESTION_ANSWERED,
        QUESTION_UPVOTED,
        CHECKIN,
        RESOURCE_DOWNLOADED,
        SESSION_UPDATED,
        EVENT_ACTIVATED,
        EVENT_DEACTIVATED,
        JOINED,
    }
)

JOIN_EVENT = "join_event"


def build_message(message_type: str, event_id: int, **payload: Any) -> dict[str, Any]:
    if message_type not in MESSAGE_TYPES:
        raise ValueError(f"Unknown realtime message type: {message_type}")
    return {"type": message_type, "eventId": int(event_id), **payload}
