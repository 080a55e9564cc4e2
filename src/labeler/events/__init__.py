"""Event emission and metrics for the labeler."""

from src.labeler.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
    safe_emit,
)
from src.labeler.events.metrics import (
    LabelerMetrics,
    MetricsEventEmitter,
    generate_metrics_output,
    get_metrics,
    push_metrics,
)
from src.labeler.events.models import EventType, LabelerEvent

__all__ = [
    "CompositeEventEmitter",
    "EventEmitter",
    "EventSinkType",
    "EventType",
    "LabelerEvent",
    "LabelerMetrics",
    "LoggingEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    "create_event_emitter",
    "generate_metrics_output",
    "get_metrics",
    "push_metrics",
    "safe_emit",
]
