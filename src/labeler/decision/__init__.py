"""Label decisions from classifier scores."""

from src.labeler.decision.engine import (
    TOP_CANDIDATES,
    decide,
    find_applicable_label,
    rank_candidates,
    select_label,
)
from src.labeler.decision.models import ActionKind, Decision, LabelAction, LabelScore

__all__ = [
    "ActionKind",
    "Decision",
    "LabelAction",
    "LabelScore",
    "TOP_CANDIDATES",
    "decide",
    "find_applicable_label",
    "rank_candidates",
    "select_label",
]
