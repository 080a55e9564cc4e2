"""Label classifiers.

A classifier scores an issue or pull request against known labels. The
decision engine consumes the scores; the classifier itself never mutates
anything.
"""

from src.labeler.classifier.agent import ClassificationError, LLMLabelClassifier
from src.labeler.classifier.base import LabelClassifier

__all__ = [
    "ClassificationError",
    "LLMLabelClassifier",
    "LabelClassifier",
]
