"""Engagement metrics derived from the persisted interaction log.

Every read returns ``None`` when the referenced event, poll or participant
does not exist; callers decide whether that is a 404 or a zero-value default.
Driver failures surface as ``StorageUnavailable`` from the store layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from engagetracker.db.client import (
    execute,
    get_event,
    get_participant_ids,
    get_participants,
    get_poll,
    get_poll_option_counts,
    row_to_dict,
    update_engagement_score,
    update_engagement_scores,
)
from engagetracker.engine.weights import EngagementWeights

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class EventStats:
    total_participants: int
    avg_engagement: Decimal
    active_sessions: int
    total_downloads: int

    @classmethod
    def zero(cls) -> EventStats:
        return cls(
            total_participants=0,
            avg_engagement=Decimal("0.00"),
            active_sessions=0,
            total_downloads=0,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalParticipants": self.total_participants,
            "avgEngagement": float(self.avg_engagement),
            "activeSessions": self.active_sessions,
            "totalDownloads": self.total_downloads,
        }


@dataclass(frozen=True)
class PollOptionResult:
    option: int
    label: str
    count: int
    percentage: float


@dataclass(frozen=True)
class PollTally:
    poll_id: int
    total_responses: int
    options: list[PollOptionResult]

    def to_payload(self) -> dict[str, Any]:
        return {
            "pollId": self.poll_id,
            "totalResponses": self.total_responses,
            "options": [
                {
                    "option": item.option,
                    "label": item.label,
                    "count": item.count,
                    "percentage": item.percentage,
                }
                for item in self.options
            ],
        }


@dataclass(frozen=True)
class InteractionCounts:
    checkins: int = 0
    poll_votes: int = 0
    questions: int = 0
    upvotes: int = 0
    downloads: int = 0


def _scalar(conn: Any, sql: str, params: tuple[Any, ...]) -> Any:
    row = execute(conn, sql, params).fetchone()
    return row_to_dict(row)["value"] if row else None


def _count_participants(conn: Any, event_id: int) -> int:
    value = _scalar(
        conn, "SELECT COUNT(*) AS value FROM participants WHERE event_id = ?", (event_id,)
    )
    return int(value or 0)


def _average_engagement(conn: Any, event_id: int) -> Decimal:
    rows = execute(
        conn, "SELECT engagement_score FROM participants WHERE event_id = ?", (event_id,)
    ).fetchall()
    scores = [Decimal(str(row_to_dict(row)["engagement_score"] or 0)) for row in rows]
    if not scores:
        return Decimal("0.00")
    return _quantize(sum(scores, Decimal("0")) / len(scores))


def _count_active_sessions(conn: Any, event_id: int) -> int:
    value = _scalar(
        conn,
        "SELECT COUNT(*) AS value FROM sessions WHERE event_id = ? AND is_active = 1",
        (event_id,),
    )
    return int(value or 0)


def _count_downloads(conn: Any, event_id: int) -> int:
    value = _scalar(
        conn,
        """
        SELECT COUNT(*) AS value
        FROM resource_downloads d
        JOIN resources r ON r.id = d.resource_id
        JOIN sessions s ON s.id = r.session_id
        WHERE s.event_id = ?
        """,
        (event_id,),
    )
    return int(value or 0)


def compute_event_stats(conn: Any, event_id: int) -> EventStats | None:
    """Summarize an event for the dashboard.

    The four figures come from independent queries and may show read skew
    under concurrent writes. An event removed after the existence check
    simply yields zero counts.
    """
    if get_event(conn, event_id) is None:
        return None
    return EventStats(
        total_participants=_count_participants(conn, event_id),
        avg_engagement=_average_engagement(conn, event_id),
        active_sessions=_count_active_sessions(conn, event_id),
        total_downloads=_count_downloads(conn, event_id),
    )


def get_interaction_counts(conn: Any, participant_id: int) -> InteractionCounts | None:
    row = execute(
        conn,
        """
        SELECT
            (SELECT COUNT(*) FROM session_checkins WHERE participant_id = p.id) AS checkins,
            (SELECT COUNT(DISTINCT poll_id) FROM poll_responses
                WHERE participant_id = p.id) AS poll_votes,
            (SELECT COUNT(*) FROM questions WHERE participant_id = p.id) AS questions,
            (SELECT COUNT(DISTINCT question_id) FROM question_upvotes
                WHERE participant_id = p.id) AS upvotes,
            (SELECT COUNT(DISTINCT resource_id) FROM resource_downloads
                WHERE participant_id = p.id) AS downloads
        FROM participants p
        WHERE p.id = ?
        """,
        (participant_id,),
    ).fetchone()
    if row is None:
        return None
    data = row_to_dict(row)
    return InteractionCounts(
        checkins=int(data["checkins"]),
        poll_votes=int(data["poll_votes"]),
        questions=int(data["questions"]),
        upvotes=int(data["upvotes"]),
        downloads=int(data["downloads"]),
    )


def score_from_counts(counts: InteractionCounts, weights: EngagementWeights) -> Decimal:
    total = (
        weights.checkin * counts.checkins
        + weights.poll_vote * counts.poll_votes
        + weights.question * counts.questions
        + weights.upvote * counts.upvotes
        + weights.download * counts.downloads
    )
    return _quantize(total)


def compute_engagement_score(
    conn: Any, participant_id: int, weights: EngagementWeights | None = None
) -> Decimal | None:
    counts = get_interaction_counts(conn, participant_id)
    if counts is None:
        return None
    return score_from_counts(counts, weights or EngagementWeights())


def refresh_engagement_score(
    conn: Any, participant_id: int, weights: EngagementWeights | None = None
) -> Decimal | None:
    """Recompute the participant's score from the log and store it in the cached column."""
    score = compute_engagement_score(conn, participant_id, weights)
    if score is None:
        return None
    update_engagement_score(conn, participant_id, score)
    logger.debug("Engagement score for participant %s refreshed to %s", participant_id, score)
    return score


def refresh_all_engagement_scores(
    conn: Any, weights: EngagementWeights | None = None
) -> dict[int, Decimal]:
    """Recompute every cached score, e.g. after the weights changed between runs."""
    weights = weights or EngagementWeights()
    scores: dict[int, Decimal] = {}
    for participant_id in get_participant_ids(conn):
        counts = get_interaction_counts(conn, participant_id)
        if counts is not None:
            scores[participant_id] = score_from_counts(counts, weights)
    update_engagement_scores(conn, scores)
    logger.info("Refreshed engagement scores for %d participants", len(scores))
    return scores


def tally_poll_results(conn: Any, poll_id: int) -> PollTally | None:
    poll = get_poll(conn, poll_id)
    if poll is None:
        return None
    counts = get_poll_option_counts(conn, poll_id)
    labels = [str(label) for label in poll["options"]]
    # Responses pointing outside the option list are not part of the tally.
    total = sum(counts.get(index, 0) for index in range(len(labels)))
    options = []
    for index, label in enumerate(labels):
        count = counts.get(index, 0)
        percentage = round(count / total * 100, 2) if total > 0 else 0.0
        options.append(
            PollOptionResult(option=index, label=label, count=count, percentage=percentage)
        )
    return PollTally(poll_id=poll_id, total_responses=total, options=options)


def rank_top_engagers(conn: Any, event_id: int, limit: int = 10) -> list[dict[str, Any]] | None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError("limit must be a positive integer")
    if get_event(conn, event_id) is None:
        return None
    participants = get_participants(conn, event_id)
    participants.sort(key=lambda p: (-p["engagement_score"], int(p["id"])))
    return participants[:limit]
