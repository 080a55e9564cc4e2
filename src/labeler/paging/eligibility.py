"""Eligibility of records for training export and prediction gating.

A record is usable only when its label set is complete and carries exactly
one label from the configured label namespace; that label becomes the
record's ground truth.
"""

from typing import Callable, List, Optional, Union

from src.labeler.github.models import Issue, PullRequest


LabelPredicate = Callable[[str], bool]


def prefix_predicate(prefix: str) -> LabelPredicate:
    """Build a case-insensitive label prefix predicate.

    Args:
        prefix: Label namespace, e.g. "area-".

    Raises:
        ValueError: If the prefix is empty or whitespace.
    """
    if not prefix or not prefix.strip():
        raise ValueError("Label prefix cannot be empty")

    lowered = prefix.lower()

    def matches(label: str) -> bool:
        return label.lower().startswith(lowered)

    return matches


def any_label(label: str) -> bool:
    return True


def matching_labels(
    record: Union[Issue, PullRequest],
    label_predicate: LabelPredicate,
) -> List[str]:
    return [label for label in record.labels if label_predicate(label)]


def eligible(
    record: Union[Issue, PullRequest],
    label_predicate: LabelPredicate,
) -> Optional[str]:
    """Return the record's single applicable label, or None.

    Rules, in order:
    1. A record whose label set is incomplete is never eligible.
    2. Otherwise the labels satisfying the predicate are collected.
    3. Exactly one match makes the record eligible; zero or several
       matches leave the ground truth absent or ambiguous.

    Args:
        record: The issue or pull request.
        label_predicate: Selects labels from the configured namespace.

    Returns:
        The matched label, or None when the record is not eligible.
    """
    if record.has_more_labels:
        return None

    labels = matching_labels(record, label_predicate)
    if len(labels) != 1:
        return None

    return labels[0]
