"""Evaluation of classifier predictions against existing labels.

Each evaluated record compares the label the classifier would apply with
the applicable label the record already carries. Outcomes are reduced into
an immutable EvaluationSummary, so results from concurrent streams can be
combined without shared mutable counters.
"""

from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from src.labeler.decision.engine import rank_candidates, select_label
from src.labeler.decision.models import LabelScore


class EvaluationOutcome(str, Enum):
    """Result of comparing one prediction with the existing label.

    Attributes:
        MATCH: Predicted and existing labels agree (case-insensitively).
        MISMATCH: Both labels are present and differ.
        NO_PREDICTION: The record has a label but nothing met the threshold.
        NO_EXISTING: A label was predicted for an unlabeled record.
    """

    MATCH = "match"
    MISMATCH = "mismatch"
    NO_PREDICTION = "no_prediction"
    NO_EXISTING = "no_existing"


def predicted_label(scores: Sequence[LabelScore], threshold: float) -> Optional[str]:
    """The label the decision engine would add for these scores, if any."""
    best = select_label(rank_candidates(scores), threshold)
    return best.label if best is not None else None


def evaluate_prediction(
    predicted: Optional[str],
    existing: Optional[str],
) -> EvaluationOutcome:
    """Classify a prediction against the existing label.

    Two missing labels count as a match: the classifier agreed that the
    record has no applicable label.
    """
    if predicted is None and existing is not None:
        return EvaluationOutcome.NO_PREDICTION
    if predicted is not None and existing is None:
        return EvaluationOutcome.NO_EXISTING
    if (predicted or "").lower() == (existing or "").lower():
        return EvaluationOutcome.MATCH
    return EvaluationOutcome.MISMATCH


class EvaluationSummary(BaseModel):
    """Running totals of evaluation outcomes.

    Summaries are immutable; add() and merge() return new instances.

    Example:
        >>> summary = EvaluationSummary()
        >>> summary = summary.add(EvaluationOutcome.MATCH)
        >>> summary.percentage(EvaluationOutcome.MATCH)
        100.0
    """

    model_config = ConfigDict(frozen=True)

    matches: int = Field(default=0, ge=0)
    mismatches: int = Field(default=0, ge=0)
    no_prediction: int = Field(default=0, ge=0)
    no_existing: int = Field(default=0, ge=0)
    skipped: int = Field(
        default=0,
        ge=0,
        description="Records not evaluated (incomplete labels or no scores)",
    )

    @property
    def total(self) -> int:
        return self.matches + self.mismatches + self.no_prediction + self.no_existing

    def count(self, outcome: EvaluationOutcome) -> int:
        return {
            EvaluationOutcome.MATCH: self.matches,
            EvaluationOutcome.MISMATCH: self.mismatches,
            EvaluationOutcome.NO_PREDICTION: self.no_prediction,
            EvaluationOutcome.NO_EXISTING: self.no_existing,
        }[outcome]

    def percentage(self, outcome: EvaluationOutcome) -> float:
        """Share of evaluated records with this outcome, 0-100."""
        if self.total == 0:
            return 0.0
        return 100.0 * self.count(outcome) / self.total

    def add(self, outcome: EvaluationOutcome) -> "EvaluationSummary":
        field = {
            EvaluationOutcome.MATCH: "matches",
            EvaluationOutcome.MISMATCH: "mismatches",
            EvaluationOutcome.NO_PREDICTION: "no_prediction",
            EvaluationOutcome.NO_EXISTING: "no_existing",
        }[outcome]
        return self.model_copy(update={field: getattr(self, field) + 1})

    def add_skipped(self) -> "EvaluationSummary":
        return self.model_copy(update={"skipped": self.skipped + 1})

    def merge(self, other: "EvaluationSummary") -> "EvaluationSummary":
        return EvaluationSummary(
            matches=self.matches + other.matches,
            mismatches=self.mismatches + other.mismatches,
            no_prediction=self.no_prediction + other.no_prediction,
            no_existing=self.no_existing + other.no_existing,
            skipped=self.skipped + other.skipped,
        )

    def format_report(self) -> str:
        lines = []
        for title, outcome in (
            ("Matches", EvaluationOutcome.MATCH),
            ("Mismatches", EvaluationOutcome.MISMATCH),
            ("No Prediction", EvaluationOutcome.NO_PREDICTION),
            ("No Existing", EvaluationOutcome.NO_EXISTING),
        ):
            lines.append(
                f"  {title:<13}: {self.count(outcome)} ({self.percentage(outcome):.2f}%)"
            )
        return "\n".join(lines)
