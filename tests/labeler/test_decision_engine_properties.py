"""Property-based tests for the label decision engine."""

from hypothesis import assume, given, settings, strategies as st

from src.labeler.decision.engine import decide, rank_candidates
from src.labeler.decision.models import ActionKind, LabelScore
from src.labeler.github.models import Issue
from src.labeler.paging.eligibility import prefix_predicate


AREA = prefix_predicate("area-")
DEFAULT = "needs-area-label"


@st.composite
def label_scores(draw: st.DrawFn):
    names = draw(
        st.lists(
            st.sampled_from(["area-net", "area-io", "area-gc", "area-jit", "area-meta"]),
            unique=True,
            max_size=5,
        )
    )
    return [
        LabelScore(label=name, score=draw(st.floats(min_value=0, max_value=1)))
        for name in names
    ]


@st.composite
def unlabeled_issue(draw: st.DrawFn) -> Issue:
    labels = draw(st.lists(st.sampled_from(["bug", "enhancement", DEFAULT]), unique=True))
    return Issue(number=draw(st.integers(min_value=1, max_value=10000)), labels=tuple(labels))


class TestDecisionProperties:
    @settings(max_examples=200)
    @given(unlabeled_issue(), label_scores(), st.floats(min_value=-1, max_value=2))
    def test_never_adds_below_threshold(self, issue, scores, threshold):
        decision = decide(issue, scores, threshold, AREA, DEFAULT)

        by_label = {s.label: s.score for s in scores}
        added = decision.added_label
        if added is not None and added != DEFAULT:
            assert by_label[added] >= threshold

    @settings(max_examples=200)
    @given(unlabeled_issue(), label_scores(), st.floats(min_value=-1, max_value=2))
    def test_adds_best_qualifying_top_candidate(self, issue, scores, threshold):
        top = rank_candidates(scores)
        qualifying = [s for s in top if s.score >= threshold]
        assume(qualifying)

        decision = decide(issue, scores, threshold, AREA, DEFAULT)

        assert decision.added_label == qualifying[0].label
        assert qualifying[0].score == max(s.score for s in scores)

    @settings(max_examples=200)
    @given(label_scores(), st.floats(min_value=-1, max_value=2), st.booleans())
    def test_incomplete_label_set_never_decides(self, scores, threshold, with_area):
        labels = ("area-net",) if with_area else ()
        issue = Issue(number=1, labels=labels, has_more_labels=True)

        assert decide(issue, scores, threshold, AREA, DEFAULT).is_no_action

    @settings(max_examples=200)
    @given(unlabeled_issue(), label_scores(), st.floats(min_value=-1, max_value=2))
    def test_idempotent(self, issue, scores, threshold):
        assert decide(issue, scores, threshold, AREA, DEFAULT) == decide(
            issue, scores, threshold, AREA, DEFAULT
        )

    @settings(max_examples=200)
    @given(unlabeled_issue(), label_scores(), st.floats(min_value=-1, max_value=2))
    def test_at_most_one_add_and_default_never_duplicated(self, issue, scores, threshold):
        decision = decide(issue, scores, threshold, AREA, DEFAULT)

        adds = [a for a in decision.actions if a.kind is ActionKind.ADD]
        assert len(adds) <= 1
        if DEFAULT in issue.labels:
            assert all(a.label != DEFAULT for a in adds)
