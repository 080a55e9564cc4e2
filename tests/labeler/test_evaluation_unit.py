"""Unit tests for prediction evaluation."""

import pytest

from src.labeler.decision.models import LabelScore
from src.labeler.evaluation import (
    EvaluationOutcome,
    EvaluationSummary,
    evaluate_prediction,
    predicted_label,
)


class TestEvaluatePrediction:
    @pytest.mark.parametrize(
        "predicted,existing,expected",
        [
            ("area-net", "area-net", EvaluationOutcome.MATCH),
            ("Area-Net", "area-net", EvaluationOutcome.MATCH),
            (None, None, EvaluationOutcome.MATCH),
            ("area-net", "area-io", EvaluationOutcome.MISMATCH),
            (None, "area-io", EvaluationOutcome.NO_PREDICTION),
            ("area-net", None, EvaluationOutcome.NO_EXISTING),
        ],
    )
    def test_outcomes(self, predicted, existing, expected):
        assert evaluate_prediction(predicted, existing) == expected


class TestPredictedLabel:
    def test_uses_threshold(self):
        scores = [LabelScore(label="area-a", score=0.3), LabelScore(label="area-b", score=0.6)]

        assert predicted_label(scores, 0.5) == "area-b"
        assert predicted_label(scores, 0.7) is None

    def test_no_scores(self):
        assert predicted_label([], 0.0) is None


class TestEvaluationSummary:
    def test_add_returns_new_summary(self):
        empty = EvaluationSummary()

        updated = empty.add(EvaluationOutcome.MATCH)

        assert empty.total == 0
        assert updated.matches == 1

    def test_percentages(self):
        summary = EvaluationSummary(matches=3, mismatches=1)

        assert summary.percentage(EvaluationOutcome.MATCH) == 75.0
        assert summary.percentage(EvaluationOutcome.NO_EXISTING) == 0.0

    def test_empty_percentage_is_zero(self):
        assert EvaluationSummary().percentage(EvaluationOutcome.MATCH) == 0.0

    def test_skipped_not_in_total(self):
        summary = EvaluationSummary().add_skipped().add(EvaluationOutcome.MISMATCH)

        assert summary.total == 1
        assert summary.skipped == 1

    def test_merge(self):
        merged = EvaluationSummary(matches=1, skipped=2).merge(
            EvaluationSummary(matches=2, no_prediction=1)
        )

        assert merged == EvaluationSummary(matches=3, no_prediction=1, skipped=2)

    def test_format_report(self):
        report = EvaluationSummary(matches=1, mismatches=1).format_report()

        assert "Matches      : 1 (50.00%)" in report
        assert "No Existing  : 0 (0.00%)" in report
