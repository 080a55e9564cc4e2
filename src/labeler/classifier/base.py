"""Classifier contract.

A classifier scores one record against the labels it knows. The labeler
treats it as a black box: an empty result means "no prediction", which the
decision engine handles like a prediction below the threshold.

Implementations shared across concurrent tasks must be safe for concurrent
read-only use.
"""

from abc import ABC, abstractmethod
from typing import List, Union

from src.labeler.decision.models import LabelScore
from src.labeler.github.models import Issue, PullRequest


class LabelClassifier(ABC):
    """Abstract base class for label classifiers."""

    @abstractmethod
    async def predict(self, record: Union[Issue, PullRequest]) -> List[LabelScore]:
        """Score a record against the known labels.

        Args:
            record: The issue or pull request to score.

        Returns:
            Scores in any order, or an empty list when no prediction can
            be made. Implementations should not raise for a bad prediction.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the classifier."""
        pass
