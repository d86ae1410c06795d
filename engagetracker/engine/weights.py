from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

DEFAULT_WEIGHTS = {
    "checkin": "5",
    "poll_vote": "2",
    "question": "3",
    "upvote": "1",
    "download": "1",
}


@dataclass(frozen=True)
class EngagementWeights:
    checkin: Decimal = Decimal("5")
    poll_vote: Decimal = Decimal("2")
    question: Decimal = Decimal("3")
    upvote: Decimal = Decimal("1")
    download: Decimal = Decimal("1")


def _coerce_weight(name: str, value: Any) -> Decimal:
    try:
        weight = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Engagement weight '{name}' must be a number") from exc
    if not weight.is_finite() or weight < 0:
        raise ValueError(f"Engagement weight '{name}' must be >= 0")
    return weight


def parse_weights(payload: dict[str, Any] | None) -> EngagementWeights:
    payload = payload or {}
    merged = {**DEFAULT_WEIGHTS, **{k: v for k, v in payload.items() if k in DEFAULT_WEIGHTS}}
    return EngagementWeights(**{name: _coerce_weight(name, val) for name, val in merged.items()})


def load_weights(config_path: str) -> EngagementWeights:
    path = Path(config_path)
    if not path.exists():
        return EngagementWeights()
    payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    raw = payload.get("weights", {}) if isinstance(payload, dict) else {}
    return parse_weights(raw if isinstance(raw, dict) else {})
