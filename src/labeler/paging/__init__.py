"""Paged retrieval of issues and pull requests.

This module provides:
- RetryPolicy: bounded wait schedule for transient failures
- CancellationToken: cooperative cancellation shared by a run
- Eligibility helpers selecting records with exactly one namespaced label
- PagedFetcher: lazy, sequential walk over cursor pages
"""

from src.labeler.paging.cancellation import (
    CancellationToken,
    OperationCancelledError,
)
from src.labeler.paging.eligibility import (
    LabelPredicate,
    any_label,
    eligible,
    matching_labels,
    prefix_predicate,
)
from src.labeler.paging.fetcher import (
    FetchError,
    PagedFetcher,
    PagingStalledError,
    RetryExhaustedError,
)
from src.labeler.paging.retry import DEFAULT_RETRY_SCHEDULE, RetryPolicy

__all__ = [
    "CancellationToken",
    "DEFAULT_RETRY_SCHEDULE",
    "FetchError",
    "LabelPredicate",
    "OperationCancelledError",
    "PagedFetcher",
    "PagingStalledError",
    "RetryExhaustedError",
    "RetryPolicy",
    "any_label",
    "eligible",
    "matching_labels",
    "prefix_predicate",
]
