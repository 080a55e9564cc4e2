"""Label decision models.

This module defines the data models exchanged between the classifier, the
decision engine and the orchestrator:

- LabelScore: one classifier score for one candidate label
- ActionKind / LabelAction: a single add or remove mutation
- Decision: everything the engine decided for one record

A Decision with no actions is the "no action" outcome. A decision may carry
two actions when a confident prediction replaces the default label.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LabelScore(BaseModel):
    """Classifier score for a single label.

    Attributes:
        label: The candidate label name.
        score: Classifier confidence, higher is better. Usually in [0, 1]
            but not bounded.
    """

    model_config = ConfigDict(frozen=True)

    label: str = Field(
        ...,
        min_length=1,
        description="The candidate label name",
    )

    score: float = Field(
        ...,
        description="Classifier confidence, higher is better",
    )


class ActionKind(str, Enum):
    """Label mutations the engine can request.

    Attributes:
        ADD: Apply a label to the item.
        REMOVE: Remove a label from the item.
    """

    ADD = "add"
    REMOVE = "remove"


class LabelAction(BaseModel):
    """A single label mutation."""

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    label: str = Field(..., min_length=1)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.label}"


class Decision(BaseModel):
    """The outcome of the decision engine for one record.

    Attributes:
        actions: Mutations to perform, in order. Empty means no action.
        reason: Diagnostic explaining how the decision was reached.
        candidates: The top-ranked scores the engine considered.
    """

    model_config = ConfigDict(frozen=True)

    actions: tuple[LabelAction, ...] = Field(
        default=(),
        description="Mutations to perform, in order",
    )

    reason: str = Field(
        default="",
        description="Diagnostic explaining how the decision was reached",
    )

    candidates: tuple[LabelScore, ...] = Field(
        default=(),
        description="Top-ranked scores considered by the engine",
    )

    @classmethod
    def no_action(
        cls,
        reason: str,
        candidates: tuple[LabelScore, ...] = (),
    ) -> "Decision":
        return cls(actions=(), reason=reason, candidates=candidates)

    @property
    def is_no_action(self) -> bool:
        return not self.actions

    @property
    def added_label(self) -> Optional[str]:
        """The label to add, if any."""
        for action in self.actions:
            if action.kind == ActionKind.ADD:
                return action.label
        return None

    @property
    def removed_labels(self) -> List[str]:
        return [
            action.label for action in self.actions if action.kind == ActionKind.REMOVE
        ]

    def describe(self) -> List[str]:
        """Render the actions as "add:label" / "remove:label" strings."""
        return [str(action) for action in self.actions]
