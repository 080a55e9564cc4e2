"""Label decision engine.

Turns a record's current labels and the classifier's scores into the label
mutations to perform. The engine is a pure function: it performs no I/O and
returns the same Decision for the same inputs, so applying (or skipping, in
a dry run) the actions is entirely up to the caller.

Decision rules:
- A record with an incomplete label set gets no decision.
- A record that already carries an applicable label keeps it; a leftover
  default label is removed.
- Otherwise the best of the top three scores at or above the threshold is
  added, replacing the default label if it was applied.
- With no confident candidate the default label is added, once.

Source:
- src/labeler/decision/models.py (Decision, LabelAction, LabelScore)
- src/labeler/paging/eligibility.py (LabelPredicate)
"""

import logging
import math
from typing import Iterable, List, Optional, Sequence, Union

from src.labeler.decision.models import ActionKind, Decision, LabelAction, LabelScore
from src.labeler.github.models import Issue, PullRequest
from src.labeler.paging.eligibility import LabelPredicate


logger = logging.getLogger(__name__)


TOP_CANDIDATES = 3


def rank_candidates(
    scores: Iterable[LabelScore],
    top: int = TOP_CANDIDATES,
) -> List[LabelScore]:
    """Return the highest scores, best first.

    The sort is stable, so equal scores keep their input order. NaN
    scores are dropped since they cannot be ranked.

    Args:
        scores: Classifier scores in classifier order.
        top: How many candidates to keep.
    """
    ranked = sorted(
        (score for score in scores if not math.isnan(score.score)),
        key=lambda s: s.score,
        reverse=True,
    )
    return ranked[:top]


def select_label(
    candidates: Sequence[LabelScore],
    threshold: float,
) -> Optional[LabelScore]:
    """Return the first candidate scoring at or above the threshold."""
    for candidate in candidates:
        if candidate.score >= threshold:
            return candidate
    return None


def _contains_label(labels: Iterable[str], label: str) -> bool:
    lowered = label.lower()
    return any(existing.lower() == lowered for existing in labels)


def find_applicable_label(
    record: Union[Issue, PullRequest],
    label_predicate: LabelPredicate,
    default_label: Optional[str] = None,
) -> Optional[str]:
    """Return the first label on the record that satisfies the predicate.

    The default label is a placeholder and never counts as applicable, even
    when it shares the predicate's namespace.
    """
    for label in record.labels:
        if default_label is not None and label.lower() == default_label.lower():
            continue
        if label_predicate(label):
            return label
    return None


def decide(
    record: Union[Issue, PullRequest],
    scores: Sequence[LabelScore],
    threshold: float,
    label_predicate: LabelPredicate,
    default_label: Optional[str] = None,
) -> Decision:
    """Decide which label mutations to perform on a record.

    Args:
        record: The issue or pull request, as fetched.
        scores: Classifier scores in any order. Empty means no prediction.
        threshold: Minimum score (inclusive) to accept a prediction. Any
            value is accepted; 0 is always met and values above the maximum
            score are never met.
        label_predicate: Selects labels from the configured namespace.
        default_label: Optional placeholder label applied when no
            prediction is confident enough.

    Returns:
        The Decision. Its actions are empty when nothing should change.
    """
    if record.has_more_labels:
        logger.warning(
            "%s has too many labels applied to be sure no applicable label is "
            "present, skipping",
            record.item_id,
            extra={"number": record.number},
        )
        return Decision.no_action(
            "Label set is incomplete; cannot tell whether an applicable label "
            "is already applied"
        )

    if default_label is not None and not default_label.strip():
        default_label = None

    existing = find_applicable_label(record, label_predicate, default_label)
    has_default = default_label is not None and _contains_label(
        record.labels, default_label
    )

    if existing is not None:
        if has_default:
            return Decision(
                actions=(LabelAction(kind=ActionKind.REMOVE, label=default_label),),
                reason=(
                    f"Already labeled '{existing}'; removing default label "
                    f"'{default_label}'"
                ),
            )
        return Decision.no_action(f"Already has applicable label '{existing}'")

    candidates = tuple(rank_candidates(scores))
    best = select_label(candidates, threshold)

    if best is not None and has_default and best.label.lower() == default_label.lower():
        return Decision.no_action(
            f"Predicted default label '{best.label}' is already applied",
            candidates=candidates,
        )

    if best is not None:
        actions = [LabelAction(kind=ActionKind.ADD, label=best.label)]
        if has_default:
            actions.append(LabelAction(kind=ActionKind.REMOVE, label=default_label))
        return Decision(
            actions=tuple(actions),
            reason=f"Predicted '{best.label}' with score {best.score}",
            candidates=candidates,
        )

    if not candidates:
        reason = "No prediction was made"
    else:
        reason = f"No label score met the threshold of {threshold}"

    if default_label is not None and not has_default:
        return Decision(
            actions=(LabelAction(kind=ActionKind.ADD, label=default_label),),
            reason=f"{reason}; using default label '{default_label}'",
            candidates=candidates,
        )

    return Decision.no_action(reason, candidates=candidates)
