"""Event emitter implementations for labeler observability.

This module provides the event emission infrastructure for the labeler.
It defines an abstract EventEmitter interface and concrete implementations
for different event sinks:

- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- NullEventEmitter: Discards events

The emitter abstraction allows the fetcher and orchestrator to emit events
without coupling to specific monitoring infrastructure.

Source:
- src/labeler/events/models.py (LabelerEvent, EventType)
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from src.labeler.events.models import EventType, LabelerEvent


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Types of event sinks supported by the labeler.

    Attributes:
        LOGGING: Emit events as structured log entries.
        METRICS: Emit events as Prometheus metrics (counters).
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Abstract base class for labeler event emitters.

    Implementations should be:
    - Async-safe: emit() is called from concurrent tasks
    - Non-blocking: emit() should not block download or labeling work
    - Fault-tolerant: emit() failures should not abort a run
    """

    @abstractmethod
    async def emit(self, event: LabelerEvent) -> None:
        """Emit a labeler event.

        Args:
            event: The event to emit.
        """
        pass

    async def close(self) -> None:
        """Close the emitter and release resources."""
        pass


class LoggingEventEmitter(EventEmitter):
    """Event emitter that logs events using structured logging.

    Events are logged at different levels based on event type:

    - PAGE_FETCHED, LABEL_DECISION, LABEL_APPLIED, STREAM_COMPLETED: DEBUG
    - FETCH_RETRY: WARNING
    - FETCH_ABORTED, MUTATION_FAILED, ITEM_FAILED: ERROR

    The human-readable progress lines are written by the components
    themselves at INFO; this emitter adds the machine-readable trail.

    Example:
        >>> emitter = LoggingEventEmitter()
        >>> event = LabelerEvent(
        ...     event_type=EventType.FETCH_RETRY,
        ...     item_id="org/repo issues",
        ...     repository="org/repo",
        ...     details={"page_number": 3, "attempt": 1, "delay": 30},
        ... )
        >>> await emitter.emit(event)
        # Logs: WARNING - Labeler event: fetch_retry for org/repo issues
    """

    def __init__(self, logger_name: Optional[str] = None):
        """Initialize the logging event emitter.

        Args:
            logger_name: Optional logger name. If not provided, uses
                         the module logger.
        """
        self._logger = (
            logging.getLogger(logger_name)
            if logger_name
            else logger
        )
        self._log_level_map = {
            EventType.PAGE_FETCHED: logging.DEBUG,
            EventType.FETCH_RETRY: logging.WARNING,
            EventType.FETCH_ABORTED: logging.ERROR,
            EventType.LABEL_DECISION: logging.DEBUG,
            EventType.LABEL_APPLIED: logging.DEBUG,
            EventType.MUTATION_FAILED: logging.ERROR,
            EventType.ITEM_FAILED: logging.ERROR,
            EventType.STREAM_COMPLETED: logging.DEBUG,
        }

    async def emit(self, event: LabelerEvent) -> None:
        log_level = self._log_level_map.get(event.event_type, logging.INFO)

        self._logger.log(
            log_level,
            "Labeler event: %s for %s",
            event.event_type.value,
            event.item_id,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Event emitter that delegates to multiple child emitters.

    Failures in one emitter do not affect others - each emitter is called
    independently and errors are logged but not propagated.

    Example:
        >>> composite = CompositeEventEmitter(
        ...     [LoggingEventEmitter(), MetricsEventEmitter()]
        ... )
        >>> await composite.emit(event)  # Emits to both sinks
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    @property
    def emitters(self) -> List[EventEmitter]:
        """Get the list of child emitters (read-only copy)."""
        return list(self._emitters)

    async def emit(self, event: LabelerEvent) -> None:
        """Emit event to all child emitters.

        Args:
            event: The event to emit.
        """
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event to %s: %s",
                    type(emitter).__name__,
                    str(e),
                    extra={
                        "emitter_type": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "item_id": event.item_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error(
                    "Failed to close emitter %s: %s",
                    type(emitter).__name__,
                    str(e),
                )


class NullEventEmitter(EventEmitter):
    """Event emitter that discards all events."""

    async def emit(self, event: LabelerEvent) -> None:
        pass


async def safe_emit(emitter: Optional[EventEmitter], event: LabelerEvent) -> None:
    """Emit an event, swallowing exceptions so observability never aborts work."""
    if emitter is None:
        return
    try:
        await emitter.emit(event)
    except Exception:
        logger.exception(
            "Failed to emit labeler event",
            extra={
                "event_type": event.event_type.value,
                "item_id": event.item_id,
            },
        )


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Factory function to create event emitters based on configuration.

    Args:
        sink_types: List of event sink types to enable. If None or empty,
                    returns a LoggingEventEmitter as the default.
        logger_name: Optional logger name for the LoggingEventEmitter.

    Returns:
        An EventEmitter configured for the requested sinks. Several sinks
        are combined in a CompositeEventEmitter.

    Example:
        >>> emitter = create_event_emitter([
        ...     EventSinkType.LOGGING,
        ...     EventSinkType.METRICS
        ... ])
        >>> isinstance(emitter, CompositeEventEmitter)
        True
    """
    if not sink_types:
        return LoggingEventEmitter(logger_name=logger_name)

    emitters: List[EventEmitter] = []

    for sink_type in sink_types:
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            # Imported here because metrics.py imports this module
            from src.labeler.events.metrics import MetricsEventEmitter
            emitters.append(MetricsEventEmitter())
        else:
            logger.warning(
                "Unknown event sink type: %s, skipping",
                sink_type,
            )

    if len(emitters) == 1:
        return emitters[0]

    return CompositeEventEmitter(emitters)
