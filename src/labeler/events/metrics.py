"""Prometheus metrics for labeler observability.

This module provides Prometheus counters for downloads and labeling runs.
Batch runs are short-lived, so metrics are pushed to a Pushgateway at the
end of a run rather than scraped.

Metrics Defined:
- labeler_pages_fetched_total: Counter of pages received
- labeler_fetch_retries_total: Counter of transient page failures retried
- labeler_fetch_aborted_total: Counter of downloads stopped by a fatal fault
- labeler_decisions_total: Counter of decisions by outcome
- labeler_mutations_total: Counter of label mutations by action and result
- labeler_items_failed_total: Counter of items that could not be processed

The MetricsEventEmitter integrates with the event emission system to
update metrics from labeler events.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    generate_latest,
    push_to_gateway,
)

from src.labeler.events.emitter import EventEmitter
from src.labeler.events.models import EventType, LabelerEvent


logger = logging.getLogger(__name__)


PUSHGATEWAY_JOB = "github-ml-labeler"


class LabelerMetrics:
    """Container for all labeler Prometheus metrics.

    Supports custom registries for testing.

    Metrics:
        pages_fetched_total: Labels: repository, kind
        fetch_retries_total: Labels: repository, kind
        fetch_aborted_total: Labels: repository, kind, error_type
        decisions_total: Labels: repository, outcome (add/remove/none)
        mutations_total: Labels: repository, action, result (success/failure)
        items_failed_total: Labels: repository, stage
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.pages_fetched_total = Counter(
            "labeler_pages_fetched_total",
            "Total number of pages received from GitHub",
            labelnames=["repository", "kind"],
            registry=self.registry,
        )

        self.fetch_retries_total = Counter(
            "labeler_fetch_retries_total",
            "Total number of page requests retried after a transient failure",
            labelnames=["repository", "kind"],
            registry=self.registry,
        )

        self.fetch_aborted_total = Counter(
            "labeler_fetch_aborted_total",
            "Total number of paged downloads stopped by a fatal fault",
            labelnames=["repository", "kind", "error_type"],
            registry=self.registry,
        )

        self.decisions_total = Counter(
            "labeler_decisions_total",
            "Total number of label decisions by outcome",
            labelnames=["repository", "outcome"],
            registry=self.registry,
        )

        self.mutations_total = Counter(
            "labeler_mutations_total",
            "Total number of label mutations attempted",
            labelnames=["repository", "action", "result"],
            registry=self.registry,
        )

        self.items_failed_total = Counter(
            "labeler_items_failed_total",
            "Total number of items that could not be processed",
            labelnames=["repository", "stage"],
            registry=self.registry,
        )

    def record_page(self, repository: str, kind: str) -> None:
        self.pages_fetched_total.labels(repository=repository, kind=kind).inc()

    def record_retry(self, repository: str, kind: str) -> None:
        self.fetch_retries_total.labels(repository=repository, kind=kind).inc()

    def record_abort(self, repository: str, kind: str, error_type: str) -> None:
        self.fetch_aborted_total.labels(
            repository=repository,
            kind=kind,
            error_type=error_type,
        ).inc()

    def record_decision(self, repository: str, outcome: str) -> None:
        """Record a decision outcome.

        Args:
            repository: The repository in format "{owner}/{repo}".
            outcome: "add", "remove", "replace" or "none".
        """
        self.decisions_total.labels(repository=repository, outcome=outcome).inc()

    def record_mutation(
        self,
        repository: str,
        action: str,
        success: bool,
    ) -> None:
        result = "success" if success else "failure"
        self.mutations_total.labels(
            repository=repository,
            action=action,
            result=result,
        ).inc()

    def record_item_failed(self, repository: str, stage: str) -> None:
        self.items_failed_total.labels(repository=repository, stage=stage).inc()


_default_metrics: Optional[LabelerMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> LabelerMetrics:
    """Get or create the labeler metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.
    """
    global _default_metrics

    if registry is not None:
        return LabelerMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = LabelerMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output in text exposition format."""
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)


def push_metrics(
    gateway_url: str,
    registry: Optional[CollectorRegistry] = None,
    job: str = PUSHGATEWAY_JOB,
) -> bool:
    """Push collected metrics to a Prometheus Pushgateway.

    Failures are logged and reported through the return value; a metrics
    outage must not fail a labeling run.

    Returns:
        True if the push succeeded.
    """
    try:
        push_to_gateway(gateway_url, job=job, registry=registry or REGISTRY)
        logger.debug(
            "Metrics pushed to gateway",
            extra={"gateway_url": gateway_url, "job": job},
        )
        return True
    except Exception as e:
        logger.warning(
            "Failed to push metrics: %s",
            str(e),
            extra={"gateway_url": gateway_url, "error": str(e)},
        )
        return False


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    Handles:
    - PAGE_FETCHED: Increments pages_fetched_total
    - FETCH_RETRY: Increments fetch_retries_total
    - FETCH_ABORTED: Increments fetch_aborted_total
    - LABEL_DECISION: Increments decisions_total by outcome
    - LABEL_APPLIED / MUTATION_FAILED: Increments mutations_total
    - ITEM_FAILED: Increments items_failed_total

    Example:
        >>> emitter = MetricsEventEmitter(registry=CollectorRegistry())
        >>> event = LabelerEvent(
        ...     event_type=EventType.PAGE_FETCHED,
        ...     item_id="org/repo issues",
        ...     repository="org/repo",
        ...     details={"kind": "issue", "page_number": 1},
        ... )
        >>> await emitter.emit(event)
    """

    def __init__(
        self,
        metrics: Optional[LabelerMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> LabelerMetrics:
        return self._metrics

    async def emit(self, event: LabelerEvent) -> None:
        try:
            self._dispatch(event)
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "item_id": event.item_id,
                    "error": str(e),
                },
            )

    def _dispatch(self, event: LabelerEvent) -> None:
        details = event.details
        kind = str(details.get("kind", "unknown"))

        if event.event_type == EventType.PAGE_FETCHED:
            self._metrics.record_page(event.repository, kind)
        elif event.event_type == EventType.FETCH_RETRY:
            self._metrics.record_retry(event.repository, kind)
        elif event.event_type == EventType.FETCH_ABORTED:
            self._metrics.record_abort(
                event.repository,
                kind,
                str(details.get("error_type", "unknown")),
            )
        elif event.event_type == EventType.LABEL_DECISION:
            self._metrics.record_decision(
                event.repository,
                _decision_outcome(details.get("actions") or []),
            )
        elif event.event_type == EventType.LABEL_APPLIED:
            self._metrics.record_mutation(
                event.repository,
                str(details.get("action", "unknown")),
                success=True,
            )
        elif event.event_type == EventType.MUTATION_FAILED:
            self._metrics.record_mutation(
                event.repository,
                str(details.get("action", "unknown")),
                success=False,
            )
        elif event.event_type == EventType.ITEM_FAILED:
            self._metrics.record_item_failed(
                event.repository,
                str(details.get("stage", "unknown")),
            )


def _decision_outcome(actions: list) -> str:
    """Collapse a decision's action list into a single outcome label.

    Actions are rendered as strings like "add:area-foo" or "remove:area-bar".
    """
    kinds = {str(action).split(":", 1)[0] for action in actions}
    if not kinds:
        return "none"
    if kinds == {"add"}:
        return "add"
    if kinds == {"remove"}:
        return "remove"
    return "replace"
