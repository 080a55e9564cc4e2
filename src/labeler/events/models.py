"""Labeler event models for observability.

This module defines the data models for labeler events, including:
- EventType: Enum of all event types emitted during a run
- LabelerEvent: Structured event with all required metadata

Events are emitted for monitoring, alerting, and debugging purposes.
They provide visibility into download progress, retries, label decisions
and failed mutations.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the labeler.

    Attributes:
        PAGE_FETCHED: A page of a paged download was received.
        FETCH_RETRY: A page request failed transiently and will be retried.
        FETCH_ABORTED: A paged download stopped on a fatal fault.
        LABEL_DECISION: The decision engine produced a decision for an item.
        LABEL_APPLIED: A label mutation succeeded.
        MUTATION_FAILED: A label mutation failed.
        ITEM_FAILED: A targeted item could not be processed.
        STREAM_COMPLETED: A download or evaluation stream finished.
    """

    PAGE_FETCHED = "page_fetched"
    FETCH_RETRY = "fetch_retry"
    FETCH_ABORTED = "fetch_aborted"
    LABEL_DECISION = "label_decision"
    LABEL_APPLIED = "label_applied"
    MUTATION_FAILED = "mutation_failed"
    ITEM_FAILED = "item_failed"
    STREAM_COMPLETED = "stream_completed"


class LabelerEvent(BaseModel):
    """Structured event emitted by the labeler.

    Attributes:
        event_type: The category of event.
        item_id: Identifier of the item or stream, e.g. "org/repo#123"
            or "org/repo issues".
        repository: Full repository path in format "{owner}/{repo}".
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        PAGE_FETCHED: kind, page_number, loaded_count, total_count, cursor
        FETCH_RETRY: kind, page_number, attempt, max_retries, delay
        FETCH_ABORTED: kind, page_number, cursor, error_type, error_message
        LABEL_DECISION: kind, actions, reason
        LABEL_APPLIED: kind, action, label
        MUTATION_FAILED: kind, action, label, status_code, error_message
        ITEM_FAILED: kind, stage, error_type, error_message
        STREAM_COMPLETED: kind, count
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    item_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the item or stream the event concerns",
    )

    repository: str = Field(
        ...,
        min_length=1,
        description='Full repository path in format "{owner}/{repo}"',
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary suitable for structured logging."""
        return {
            "event_type": self.event_type.value,
            "item_id": self.item_id,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
