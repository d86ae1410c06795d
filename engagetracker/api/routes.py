"""REST surface over the store, the aggregator and the broadcast hub.

Mutating routes write through the store first; the realtime message goes out
only after the write has committed.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from engagetracker.api.schemas import (
    EventCreate,
    ParticipantAction,
    ParticipantRegister,
    PollCreate,
    PollResponseCreate,
    QuestionAnswer,
    QuestionCreate,
    ResourceCreate,
    SessionCreate,
    SessionUpdate,
    UserCreate,
    camelize,
    parse_timestamp,
    to_utc_iso,
)
from engagetracker.db import client as store
from engagetracker.engine.aggregator import (
    EventStats,
    PollTally,
    compute_event_stats,
    rank_top_engagers,
    refresh_engagement_score,
    tally_poll_results,
)
from engagetracker.engine.weights import EngagementWeights
from engagetracker.realtime import messages
from engagetracker.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


async def get_conn(request: Request) -> Any:
    return request.app.state.conn


async def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


async def get_weights(request: Request) -> EngagementWeights:
    return request.app.state.weights


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


def _require(row: dict[str, Any] | None, what: str) -> dict[str, Any]:
    if row is None:
        raise _not_found(what)
    return row


def _require_participant(conn: Any, participant_id: int, event_id: int) -> dict[str, Any]:
    participant = store.get_participant(conn, participant_id)
    if participant is None or int(participant["event_id"]) != int(event_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Participant is not registered for this event",
        )
    return participant


def _stats_payload(conn: Any, event_id: int) -> dict[str, Any]:
    stats = compute_event_stats(conn, event_id) or EventStats.zero()
    return stats.to_payload()


async def _publish(hub: BroadcastHub, message_type: str, event_id: int, **payload: Any) -> None:
    delivered = await hub.broadcast(
        event_id, messages.build_message(message_type, event_id, **payload)
    )
    logger.debug("%s for event %s reached %s connections", message_type, event_id, delivered)


# Users


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, conn: Any = Depends(get_conn)) -> dict[str, Any]:
    if store.get_user_by_email(conn, body.email) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    try:
        user_id = store.create_user(
            conn,
            username=body.username,
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            profile_image_url=body.profile_image_url,
            role=body.role,
        )
    except Exception as exc:
        if store.is_integrity_error(exc):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail="Username already taken"
            ) from exc
        raise
    return camelize(store.get_user(conn, user_id))


# Events


@router.get("/events")
async def list_events(conn: Any = Depends(get_conn)) -> list[dict[str, Any]]:
    return camelize(store.get_events(conn))


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def create_event(
    body: EventCreate,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    if store.get_user(conn, body.organizer_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown organizer")
    event_id = store.create_event(
        conn,
        name=body.name,
        description=body.description,
        start_date=to_utc_iso(body.start_date),
        end_date=to_utc_iso(body.end_date),
        organizer_id=body.organizer_id,
        is_active=body.is_active,
    )
    event = _require(store.get_event(conn, event_id), "Event")
    if event["is_active"]:
        await _publish(hub, messages.EVENT_ACTIVATED, event_id, event=camelize(event))
    return camelize(event)


@router.get("/events/active")
async def get_active_event(conn: Any = Depends(get_conn)) -> dict[str, Any]:
    event = store.get_active_event(conn)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active event found")
    return camelize(event)


@router.get("/events/{event_id}")
async def get_event(event_id: int, conn: Any = Depends(get_conn)) -> dict[str, Any]:
    return camelize(_require(store.get_event(conn, event_id), "Event"))


@router.post("/events/{event_id}/activate")
async def activate_event(
    event_id: int,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    if not store.set_active_event(conn, event_id):
        raise _not_found("Event")
    event = _require(store.get_event(conn, event_id), "Event")
    await _publish(hub, messages.EVENT_ACTIVATED, event_id, event=camelize(event))
    return camelize(event)


@router.post("/events/{event_id}/deactivate")
async def deactivate_event(
    event_id: int,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    _require(store.get_event(conn, event_id), "Event")
    cleared = store.clear_active_event(conn, event_id)
    event = camelize(store.get_event(conn, event_id))
    if cleared:
        await _publish(hub, messages.EVENT_DEACTIVATED, event_id, event=event)
    return event


@router.get("/events/{event_id}/stats")
async def get_event_stats(event_id: int, conn: Any = Depends(get_conn)) -> dict[str, Any]:
    stats = compute_event_stats(conn, event_id)
    if stats is None:
        raise _not_found("Event")
    return stats.to_payload()


@router.get("/events/{event_id}/top-engagers")
async def get_top_engagers(
    request: Request,
    event_id: int,
    limit: int | None = Query(default=None, ge=1, le=100),
    conn: Any = Depends(get_conn),
) -> list[dict[str, Any]]:
    effective_limit = limit or request.app.state.settings.top_engagers_default_limit
    ranked = rank_top_engagers(conn, event_id, effective_limit)
    if ranked is None:
        raise _not_found("Event")
    return camelize(ranked)


# Sessions


@router.get("/events/{event_id}/sessions")
async def list_sessions(event_id: int, conn: Any = Depends(get_conn)) -> list[dict[str, Any]]:
    _require(store.get_event(conn, event_id), "Event")
    return camelize(store.get_sessions(conn, event_id))


@router.get("/events/{event_id}/sessions/active")
async def list_active_sessions(
    event_id: int, conn: Any = Depends(get_conn)
) -> list[dict[str, Any]]:
    _require(store.get_event(conn, event_id), "Event")
    return camelize(store.get_active_sessions(conn, event_id))


@router.post("/events/{event_id}/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(
    event_id: int,
    body: SessionCreate,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    _require(store.get_event(conn, event_id), "Event")
    session_id = store.create_session(
        conn,
        event_id=event_id,
        title=body.title,
        description=body.description,
        speaker=body.speaker,
        room=body.room,
        start_time=to_utc_iso(body.start_time),
        end_time=to_utc_iso(body.end_time),
        max_capacity=body.max_capacity,
        is_active=body.is_active,
        qr_code=body.qr_code,
    )
    session = _require(store.get_session(conn, session_id), "Session")
    if session["is_active"]:
        await _publish(
            hub,
            messages.SESSION_UPDATED,
            event_id,
            session=camelize(session),
            stats=_stats_payload(conn, event_id),
        )
    return camelize(session)


@router.patch("/sessions/{session_id}")
async def update_session(
    session_id: int,
    body: SessionUpdate,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    current = _require(store.get_session(conn, session_id), "Session")
    updates = body.to_updates()
    start_time = updates.get("start_time", current["start_time"])
    end_time = updates.get("end_time", current["end_time"])
    if parse_timestamp(end_time) < parse_timestamp(start_time):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="endTime must not be before startTime",
        )
    session = _require(store.update_session(conn, session_id, updates), "Session")
    event_id = int(session["event_id"])
    await _publish(
        hub,
        messages.SESSION_UPDATED,
        event_id,
        session=camelize(session),
        stats=_stats_payload(conn, event_id),
    )
    return camelize(session)


# Participants


@router.get("/events/{event_id}/participants")
async def list_participants(event_id: int, conn: Any = Depends(get_conn)) -> list[dict[str, Any]]:
    _require(store.get_event(conn, event_id), "Event")
    return camelize(store.get_participants(conn, event_id))


@router.post("/events/{event_id}/participants", status_code=status.HTTP_201_CREATED)
async def register_participant(
    event_id: int, body: ParticipantRegister, conn: Any = Depends(get_conn)
) -> dict[str, Any]:
    _require(store.get_event(conn, event_id), "Event")
    if store.get_user(conn, body.user_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown user")
    participant_id = store.create_or_get_participant(conn, body.user_id, event_id)
    return camelize(store.get_participant(conn, participant_id))


@router.post("/sessions/{session_id}/checkins", status_code=status.HTTP_201_CREATED)
async def check_in(
    session_id: int,
    body: ParticipantAction,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
    weights: EngagementWeights = Depends(get_weights),
) -> dict[str, Any]:
    session = _require(store.get_session(conn, session_id), "Session")
    event_id = int(session["event_id"])
    _require_participant(conn, body.participant_id, event_id)
    checkin_id, created = store.check_in(conn, body.participant_id, session_id)
    if created:
        score = refresh_engagement_score(conn, body.participant_id, weights)
        await _publish(
            hub,
            messages.CHECKIN,
            event_id,
            sessionId=session_id,
            participantId=body.participant_id,
            engagementScore=score,
            sessionCheckins=store.count_session_checkins(conn, session_id),
            stats=_stats_payload(conn, event_id),
        )
    return {"id": checkin_id, "created": created}


@router.post("/sessions/{session_id}/checkout")
async def check_out(
    session_id: int, body: ParticipantAction, conn: Any = Depends(get_conn)
) -> dict[str, Any]:
    session = _require(store.get_session(conn, session_id), "Session")
    _require_participant(conn, body.participant_id, int(session["event_id"]))
    checked_out = store.check_out(conn, body.participant_id, session_id)
    return {
        "sessionId": session_id,
        "participantId": body.participant_id,
        "checkedOut": checked_out,
    }


# Polls


@router.get("/sessions/{session_id}/polls")
async def list_polls(session_id: int, conn: Any = Depends(get_conn)) -> list[dict[str, Any]]:
    _require(store.get_session(conn, session_id), "Session")
    return camelize(store.get_polls(conn, session_id))


@router.get("/sessions/{session_id}/polls/active")
async def get_active_poll(session_id: int, conn: Any = Depends(get_conn)) -> dict[str, Any]:
    _require(store.get_session(conn, session_id), "Session")
    poll = store.get_active_poll(conn, session_id)
    if poll is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active poll found")
    return camelize(poll)


@router.post("/sessions/{session_id}/polls", status_code=status.HTTP_201_CREATED)
async def create_poll(
    session_id: int,
    body: PollCreate,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    session = _require(store.get_session(conn, session_id), "Session")
    poll_id = store.create_poll(conn, session_id, body.question, body.options)
    poll = _require(store.get_poll(conn, poll_id), "Poll")
    await _publish(hub, messages.POLL_CREATED, int(session["event_id"]), poll=camelize(poll))
    return camelize(poll)


def _require_tally(conn: Any, poll_id: int) -> PollTally:
    tally = tally_poll_results(conn, poll_id)
    if tally is None:
        raise _not_found("Poll")
    return tally


@router.post("/polls/{poll_id}/end")
async def end_poll(
    poll_id: int,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    poll = _require(store.get_poll(conn, poll_id), "Poll")
    ended = store.end_poll(conn, poll_id)
    tally = _require_tally(conn, poll_id)
    if ended:
        await _publish(
            hub,
            messages.POLL_ENDED,
            int(poll["event_id"]),
            pollId=poll_id,
            sessionId=int(poll["session_id"]),
            results=tally.to_payload(),
        )
    return {"pollId": poll_id, "ended": ended, "results": tally.to_payload()}


@router.get("/polls/{poll_id}/results")
async def get_poll_results(poll_id: int, conn: Any = Depends(get_conn)) -> dict[str, Any]:
    return _require_tally(conn, poll_id).to_payload()


@router.post("/polls/{poll_id}/responses", status_code=status.HTTP_201_CREATED)
async def submit_poll_response(
    poll_id: int,
    body: PollResponseCreate,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
    weights: EngagementWeights = Depends(get_weights),
) -> dict[str, Any]:
    poll = _require(store.get_poll(conn, poll_id), "Poll")
    event_id = int(poll["event_id"])
    if not poll["is_active"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Poll is not active")
    if body.selected_option >= len(poll["options"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Selected option does not exist"
        )
    _require_participant(conn, body.participant_id, event_id)
    store.submit_poll_response(conn, poll_id, body.participant_id, body.selected_option)
    refresh_engagement_score(conn, body.participant_id, weights)
    tally = _require_tally(conn, poll_id)
    await _publish(
        hub,
        messages.POLL_RESPONSE,
        event_id,
        pollId=poll_id,
        sessionId=int(poll["session_id"]),
        results=tally.to_payload(),
    )
    return tally.to_payload()


# Questions


def _public_question(question: dict[str, Any]) -> dict[str, Any]:
    data = dict(question)
    if data.get("is_anonymous"):
        data["participant_id"] = None
    return camelize(data)


@router.get("/sessions/{session_id}/questions")
async def list_questions(session_id: int, conn: Any = Depends(get_conn)) -> list[dict[str, Any]]:
    _require(store.get_session(conn, session_id), "Session")
    return [_public_question(q) for q in store.get_questions(conn, session_id)]


@router.post("/sessions/{session_id}/questions", status_code=status.HTTP_201_CREATED)
async def ask_question(
    session_id: int,
    body: QuestionCreate,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
    weights: EngagementWeights = Depends(get_weights),
) -> dict[str, Any]:
    session = _require(store.get_session(conn, session_id), "Session")
    event_id = int(session["event_id"])
    _require_participant(conn, body.participant_id, event_id)
    question_id = store.create_question(
        conn, session_id, body.participant_id, body.question, body.is_anonymous
    )
    refresh_engagement_score(conn, body.participant_id, weights)
    question = _public_question(_require(store.get_question(conn, question_id), "Question"))
    await _publish(hub, messages.QUESTION_CREATED, event_id, question=question)
    return question


@router.post("/questions/{question_id}/answer")
async def answer_question(
    question_id: int,
    body: QuestionAnswer,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, Any]:
    _require(store.get_question(conn, question_id), "Question")
    store.answer_question(conn, question_id, body.answer)
    question = _require(store.get_question(conn, question_id), "Question")
    payload = _public_question(question)
    await _publish(hub, messages.QUESTION_ANSWERED, int(question["event_id"]), question=payload)
    return payload


@router.post("/questions/{question_id}/upvotes", status_code=status.HTTP_201_CREATED)
async def upvote_question(
    question_id: int,
    body: ParticipantAction,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
    weights: EngagementWeights = Depends(get_weights),
) -> dict[str, Any]:
    question = _require(store.get_question(conn, question_id), "Question")
    event_id = int(question["event_id"])
    _require_participant(conn, body.participant_id, event_id)
    created = store.upvote_question(conn, question_id, body.participant_id)
    question = _require(store.get_question(conn, question_id), "Question")
    if created:
        refresh_engagement_score(conn, body.participant_id, weights)
        await _publish(
            hub,
            messages.QUESTION_UPVOTED,
            event_id,
            questionId=question_id,
            sessionId=int(question["session_id"]),
            upvotes=int(question["upvotes"]),
        )
    return {"questionId": question_id, "upvotes": int(question["upvotes"]), "created": created}


# Resources


@router.get("/sessions/{session_id}/resources")
async def list_resources(session_id: int, conn: Any = Depends(get_conn)) -> list[dict[str, Any]]:
    _require(store.get_session(conn, session_id), "Session")
    return camelize(store.get_resources(conn, session_id))


@router.post("/sessions/{session_id}/resources", status_code=status.HTTP_201_CREATED)
async def create_resource(
    session_id: int, body: ResourceCreate, conn: Any = Depends(get_conn)
) -> dict[str, Any]:
    _require(store.get_session(conn, session_id), "Session")
    resource_id = store.create_resource(
        conn,
        session_id=session_id,
        name=body.name,
        resource_type=body.type,
        url=body.url,
        file_size=body.file_size,
        description=body.description,
    )
    return camelize(store.get_resource(conn, resource_id))


@router.post("/resources/{resource_id}/downloads", status_code=status.HTTP_201_CREATED)
async def record_download(
    resource_id: int,
    body: ParticipantAction,
    conn: Any = Depends(get_conn),
    hub: BroadcastHub = Depends(get_hub),
    weights: EngagementWeights = Depends(get_weights),
) -> dict[str, Any]:
    resource = _require(store.get_resource(conn, resource_id), "Resource")
    event_id = int(resource["event_id"])
    _require_participant(conn, body.participant_id, event_id)
    download_id = store.record_download(conn, resource_id, body.participant_id)
    refresh_engagement_score(conn, body.participant_id, weights)
    downloads = store.count_resource_downloads(conn, resource_id)
    await _publish(
        hub,
        messages.RESOURCE_DOWNLOADED,
        event_id,
        resourceId=resource_id,
        sessionId=int(resource["session_id"]),
        participantId=body.participant_id,
        downloads=downloads,
        stats=_stats_payload(conn, event_id),
    )
    return {"id": download_id, "url": resource["url"], "downloads": downloads}
