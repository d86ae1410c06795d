from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from engagetracker.engine.weights import EngagementWeights, load_weights, parse_weights


def test_missing_weights_file_falls_back_to_defaults(tmp_path: Path):
    weights = load_weights(str(tmp_path / "nope.yaml"))
    assert weights == EngagementWeights()
    assert weights.checkin == Decimal("5")


def test_load_weights_overrides_known_keys_only(tmp_path: Path):
    path = tmp_path / "weights.yaml"
    path.write_text("weights:\n  checkin: 10\n  upvote: 0.5\n  unknown: 99\n", encoding="utf-8")
    weights = load_weights(str(path))
    assert weights.checkin == Decimal("10")
    assert weights.upvote == Decimal("0.5")
    assert weights.poll_vote == Decimal("2")


def test_repo_weights_file_matches_defaults():
    config_path = Path(__file__).resolve().parents[2] / "config" / "engagement_weights.yaml"
    assert load_weights(str(config_path)) == EngagementWeights()


def test_negative_weight_is_rejected():
    with pytest.raises(ValueError, match="question"):
        parse_weights({"question": -1})


def test_non_numeric_weight_is_rejected():
    with pytest.raises(ValueError, match="must be a number"):
        parse_weights({"download": "lots"})
