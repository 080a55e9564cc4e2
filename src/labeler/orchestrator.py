"""Labeling orchestrator running downloads, predictions and evaluations.

The orchestrator fans work out as asyncio tasks and joins them:

- predict_items: one task per explicit issue or pull request number
  (fetch → eligibility gate → classify → decide → apply)
- download: one stream per kind, exporting eligible records to TSV
- evaluate: one stream comparing predictions with existing labels

Concurrency is bounded by a semaphore. Tasks are independent: a failure is
logged and reported on that task's result and never cancels its siblings.
Dry runs are handled here, by skipping the mutation calls; the decision
engine is unaware of them.

Source:
- src/labeler/paging/fetcher.py (PagedFetcher)
- src/labeler/github/client.py (GitHubClient)
- src/labeler/classifier/base.py (LabelClassifier)
- src/labeler/decision/engine.py (decide)
- src/labeler/training_data.py (TrainingDataWriter, read_training_data)
- src/labeler/evaluation.py (EvaluationSummary)
- src/labeler/events/emitter.py (EventEmitter)
"""

import asyncio
import logging
import math
from enum import Enum
from pathlib import Path
from typing import (
    AsyncIterator,
    Awaitable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from pydantic import BaseModel, Field

from src.labeler.classifier.base import LabelClassifier
from src.labeler.decision.engine import decide, find_applicable_label
from src.labeler.decision.models import ActionKind, Decision, LabelAction, LabelScore
from src.labeler.evaluation import (
    EvaluationSummary,
    evaluate_prediction,
    predicted_label,
)
from src.labeler.events.emitter import EventEmitter, safe_emit
from src.labeler.events.models import EventType, LabelerEvent
from src.labeler.github.client import GitHubAPIError, GitHubClient, ItemNotFoundError
from src.labeler.github.models import Issue, ItemKind, PullRequest
from src.labeler.paging.cancellation import CancellationToken, OperationCancelledError
from src.labeler.paging.eligibility import LabelPredicate
from src.labeler.paging.fetcher import FetchError, PagedFetcher
from src.labeler.training_data import TrainingDataWriter, read_training_data


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 8


class ItemStatus(str, Enum):
    """Outcome of processing one targeted item.

    Attributes:
        APPLIED: Every decided mutation succeeded.
        DRY_RUN: Mutations were decided but deliberately not sent.
        NO_ACTION: The decision was to leave the labels alone.
        SKIPPED: The item's label set is incomplete; nothing was decided.
        NOT_FOUND: The item does not exist.
        FAILED: Fetching, classifying or a mutation failed.
        CANCELLED: The run was cancelled before the item finished.
    """

    APPLIED = "applied"
    DRY_RUN = "dry_run"
    NO_ACTION = "no_action"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemResult(BaseModel):
    """Result of one predict_items task."""

    kind: ItemKind
    number: int
    status: ItemStatus
    decision: Optional[Decision] = None
    applied: List[str] = Field(
        default_factory=list,
        description='Mutations that succeeded, as "add:label" / "remove:label"',
    )
    failed: List[str] = Field(
        default_factory=list,
        description="Mutations that failed",
    )
    error: Optional[str] = None


class StreamResult(BaseModel):
    """Result of one download or evaluation stream.

    Attributes:
        kind: Issues or pull requests.
        completed: False when the stream ended on a fault or cancellation.
        count: Records written (download) or evaluated (evaluate).
        path: The TSV file written or read, if any.
        summary: Evaluation totals, for evaluation streams.
        error: Description of the fault that ended the stream.
    """

    kind: ItemKind
    completed: bool
    count: int = 0
    path: Optional[Path] = None
    summary: Optional[EvaluationSummary] = None
    error: Optional[str] = None


class LabelingOrchestrator:
    """Runs labeling work as bounded concurrent tasks.

    Attributes:
        github_client: Client for single-item reads and label mutations.
        fetcher: Paged fetcher for bulk downloads and evaluations.
        classifier: Scores records; shared read-only across tasks.
        label_predicate: Selects labels from the configured namespace.
        threshold: Minimum score to accept a prediction.
        default_label: Optional placeholder for unconfident predictions.
        dry_run: When True, decisions are logged but never applied.
        event_emitter: Sink for labeler events.
        cancellation: Token shared by every task of the run.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        fetcher: PagedFetcher,
        label_predicate: LabelPredicate,
        classifier: Optional[LabelClassifier] = None,
        threshold: float = 0.4,
        default_label: Optional[str] = None,
        dry_run: bool = False,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        event_emitter: Optional[EventEmitter] = None,
        cancellation: Optional[CancellationToken] = None,
    ):
        """Initialize the orchestrator.

        Raises:
            ValueError: If threshold is not a finite number or
                max_concurrency is below 1.
        """
        if not math.isfinite(threshold):
            raise ValueError(f"threshold must be a finite number, got {threshold}")
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

        self.github_client = github_client
        self.fetcher = fetcher
        self.label_predicate = label_predicate
        self.classifier = classifier
        self.threshold = threshold
        self.default_label = default_label or None
        self.dry_run = dry_run
        self.max_concurrency = max_concurrency
        self.event_emitter = event_emitter
        self.cancellation = cancellation or CancellationToken()
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def _bounded(self, work: Awaitable[T]) -> T:
        async with self._semaphore:
            return await work

    def _require_classifier(self) -> LabelClassifier:
        if self.classifier is None:
            raise ValueError("A classifier is required for this operation")
        return self.classifier

    # ------------------------------------------------------------------
    # Targeted prediction
    # ------------------------------------------------------------------

    async def predict_items(
        self,
        owner: str,
        repo: str,
        numbers: Mapping[ItemKind, Sequence[int]],
    ) -> List[ItemResult]:
        """Predict and apply labels for explicit item numbers.

        Args:
            owner: Repository owner.
            repo: Repository name.
            numbers: Item numbers to process, per kind.

        Returns:
            One ItemResult per requested item, in request order.
        """
        self._require_classifier()

        tasks = [
            self._bounded(self._predict_item(owner, repo, kind, number))
            for kind, kind_numbers in numbers.items()
            for number in kind_numbers
        ]

        logger.info(
            "Predicting labels for %d item(s) in %s/%s%s",
            len(tasks),
            owner,
            repo,
            " (dry run)" if self.dry_run else "",
            extra={
                "repository": f"{owner}/{repo}",
                "item_count": len(tasks),
                "dry_run": self.dry_run,
            },
        )

        return list(await asyncio.gather(*tasks))

    async def _predict_item(
        self,
        owner: str,
        repo: str,
        kind: ItemKind,
        number: int,
    ) -> ItemResult:
        repository = f"{owner}/{repo}"
        item_id = f"{repository}#{number}"

        try:
            self.cancellation.raise_if_cancelled()
            record = await self.github_client.get_item(kind, owner, repo, number)
        except OperationCancelledError as exc:
            return ItemResult(
                kind=kind, number=number, status=ItemStatus.CANCELLED, error=str(exc)
            )
        except ItemNotFoundError as exc:
            logger.warning(
                "%s %s not found",
                kind.display_name,
                item_id,
                extra={"item_id": item_id, "error": str(exc)},
            )
            await self._emit_item_failed(item_id, repository, kind, "fetch", exc)
            return ItemResult(
                kind=kind, number=number, status=ItemStatus.NOT_FOUND, error=str(exc)
            )
        except Exception as exc:
            logger.exception(
                "Failed to fetch %s %s",
                kind.display_name,
                item_id,
                extra={"item_id": item_id},
            )
            await self._emit_item_failed(item_id, repository, kind, "fetch", exc)
            return ItemResult(
                kind=kind, number=number, status=ItemStatus.FAILED, error=str(exc)
            )

        # decide() logs the skip and returns no action
        if record.has_more_labels:
            return ItemResult(
                kind=kind,
                number=number,
                status=ItemStatus.SKIPPED,
                decision=decide(
                    record, [], self.threshold, self.label_predicate, self.default_label
                ),
            )

        try:
            scores = await self._scores_for(record, item_id)
            decision = decide(
                record,
                scores,
                self.threshold,
                self.label_predicate,
                self.default_label,
            )
        except Exception as exc:
            logger.exception(
                "Failed to decide labels for %s",
                item_id,
                extra={"item_id": item_id},
            )
            await self._emit_item_failed(item_id, repository, kind, "decide", exc)
            return ItemResult(
                kind=kind, number=number, status=ItemStatus.FAILED, error=str(exc)
            )

        self._log_decision(kind, item_id, decision)
        await safe_emit(
            self.event_emitter,
            LabelerEvent(
                event_type=EventType.LABEL_DECISION,
                item_id=item_id,
                repository=repository,
                details={
                    "kind": kind.value,
                    "actions": decision.describe(),
                    "reason": decision.reason,
                },
            ),
        )

        if decision.is_no_action:
            return ItemResult(
                kind=kind, number=number, status=ItemStatus.NO_ACTION, decision=decision
            )

        if self.dry_run:
            logger.info(
                "Dry run: not applying %s to %s",
                ", ".join(decision.describe()),
                item_id,
                extra={"item_id": item_id, "actions": decision.describe()},
            )
            return ItemResult(
                kind=kind, number=number, status=ItemStatus.DRY_RUN, decision=decision
            )

        return await self._apply(owner, repo, kind, number, decision)

    async def _scores_for(
        self,
        record: Union[Issue, PullRequest],
        item_id: str,
    ) -> List[LabelScore]:
        # A record that already has an applicable label is decided without scores
        if find_applicable_label(record, self.label_predicate, self.default_label):
            return []

        try:
            return await self._require_classifier().predict(record)
        except Exception:
            logger.exception(
                "Classifier failed for %s; treating as no prediction",
                item_id,
                extra={"item_id": item_id},
            )
            return []

    def _log_decision(self, kind: ItemKind, item_id: str, decision: Decision) -> None:
        if decision.candidates:
            logger.info(
                "Label predictions for %s %s: %s",
                kind.display_name,
                item_id,
                ", ".join(f"{c.label} ({c.score:.4f})" for c in decision.candidates),
                extra={
                    "item_id": item_id,
                    "candidates": [
                        {"label": c.label, "score": c.score} for c in decision.candidates
                    ],
                },
            )

        logger.info(
            "Decision for %s %s: %s. %s",
            kind.display_name,
            item_id,
            ", ".join(decision.describe()) or "no action",
            decision.reason,
            extra={
                "item_id": item_id,
                "actions": decision.describe(),
                "reason": decision.reason,
            },
        )

    async def _apply(
        self,
        owner: str,
        repo: str,
        kind: ItemKind,
        number: int,
        decision: Decision,
    ) -> ItemResult:
        """Send the decision's mutations in order, stopping at the first failure.

        Mutations are never retried.
        """
        repository = f"{owner}/{repo}"
        item_id = f"{repository}#{number}"
        applied: List[str] = []

        for action in decision.actions:
            try:
                self.cancellation.raise_if_cancelled()
                await self._mutate(owner, repo, number, action)
            except OperationCancelledError as exc:
                return ItemResult(
                    kind=kind,
                    number=number,
                    status=ItemStatus.CANCELLED,
                    decision=decision,
                    applied=applied,
                    error=str(exc),
                )
            except GitHubAPIError as exc:
                logger.error(
                    "Failed to %s label '%s' on %s: %s %s",
                    action.kind.value,
                    action.label,
                    item_id,
                    exc.status_code,
                    (exc.response_body or "")[:500],
                    extra={
                        "item_id": item_id,
                        "action": action.kind.value,
                        "label": action.label,
                        "status_code": exc.status_code,
                        "response_body": (exc.response_body or "")[:500],
                    },
                )
                return await self._mutation_failed(
                    repository, kind, number, decision, applied, action, exc
                )
            except Exception as exc:
                logger.exception(
                    "Failed to %s label '%s' on %s",
                    action.kind.value,
                    action.label,
                    item_id,
                    extra={
                        "item_id": item_id,
                        "action": action.kind.value,
                        "label": action.label,
                    },
                )
                return await self._mutation_failed(
                    repository, kind, number, decision, applied, action, exc
                )

            applied.append(str(action))
            await safe_emit(
                self.event_emitter,
                LabelerEvent(
                    event_type=EventType.LABEL_APPLIED,
                    item_id=item_id,
                    repository=repository,
                    details={
                        "kind": kind.value,
                        "action": action.kind.value,
                        "label": action.label,
                    },
                ),
            )

        return ItemResult(
            kind=kind,
            number=number,
            status=ItemStatus.APPLIED,
            decision=decision,
            applied=applied,
        )

    async def _mutation_failed(
        self,
        repository: str,
        kind: ItemKind,
        number: int,
        decision: Decision,
        applied: List[str],
        action: LabelAction,
        exc: Exception,
    ) -> ItemResult:
        await safe_emit(
            self.event_emitter,
            LabelerEvent(
                event_type=EventType.MUTATION_FAILED,
                item_id=f"{repository}#{number}",
                repository=repository,
                details={
                    "kind": kind.value,
                    "action": action.kind.value,
                    "label": action.label,
                    "status_code": getattr(exc, "status_code", None),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            ),
        )
        return ItemResult(
            kind=kind,
            number=number,
            status=ItemStatus.FAILED,
            decision=decision,
            applied=applied,
            failed=[str(action)],
            error=str(exc) or type(exc).__name__,
        )

    async def _mutate(
        self,
        owner: str,
        repo: str,
        number: int,
        action: LabelAction,
    ) -> None:
        if action.kind == ActionKind.ADD:
            await self.github_client.add_label(owner, repo, number, action.label)
        else:
            await self.github_client.remove_label(owner, repo, number, action.label)

    # ------------------------------------------------------------------
    # Bulk download
    # ------------------------------------------------------------------

    async def download(
        self,
        owner: str,
        repo: str,
        outputs: Mapping[ItemKind, Path],
    ) -> List[StreamResult]:
        """Export eligible records to TSV files, one concurrent stream per kind.

        Args:
            owner: Repository owner.
            repo: Repository name.
            outputs: Destination file per kind.

        Returns:
            One StreamResult per requested kind.
        """
        tasks = [
            self._bounded(self._download_stream(owner, repo, kind, Path(path)))
            for kind, path in outputs.items()
        ]
        return list(await asyncio.gather(*tasks))

    async def _download_stream(
        self,
        owner: str,
        repo: str,
        kind: ItemKind,
        path: Path,
    ) -> StreamResult:
        writer = TrainingDataWriter(path, kind)
        error: Optional[str] = None
        log_extra = {"kind": kind.value, "path": str(path)}

        try:
            with writer:
                async for record, label in self.fetcher.fetch(
                    kind, owner, repo, self.label_predicate
                ):
                    writer.write(record, label)
        except (FetchError, GitHubAPIError, OperationCancelledError) as exc:
            error = str(exc)
            logger.error(
                "Download of %s from %s/%s stopped: %s",
                kind.collection_name,
                owner,
                repo,
                error,
                extra={
                    **log_extra,
                    "rows_written": writer.rows_written,
                    "error_type": type(exc).__name__,
                },
            )
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "Download of %s from %s/%s failed",
                kind.collection_name,
                owner,
                repo,
                extra={
                    **log_extra,
                    "rows_written": writer.rows_written,
                    "error_type": type(exc).__name__,
                },
            )

        await self._emit_stream_completed(
            f"{owner}/{repo}", kind, writer.rows_written, error
        )

        return StreamResult(
            kind=kind,
            completed=error is None,
            count=writer.rows_written,
            path=path,
            error=error,
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(
        self,
        owner: str,
        repo: str,
        kind: ItemKind,
        data_path: Optional[Path] = None,
        limit: Optional[int] = None,
    ) -> StreamResult:
        """Compare classifier predictions with existing labels.

        Records come from a training data file when data_path is given,
        otherwise they are downloaded. No labels are changed.

        Args:
            owner: Repository owner (used when downloading).
            repo: Repository name (used when downloading).
            kind: Issues or pull requests.
            data_path: Optional TSV file to read instead of downloading.
            limit: Maximum rows to read, or pages to fetch.

        Returns:
            A StreamResult whose summary holds the outcome totals.
        """
        classifier = self._require_classifier()
        summary = EvaluationSummary()
        error: Optional[str] = None
        # Records read from a file are reported under that file, not a repository
        source = str(data_path) if data_path is not None else f"{owner}/{repo}"

        async with self._semaphore:
            try:
                async for row_id, record in self._evaluation_records(
                    owner, repo, kind, data_path, limit
                ):
                    summary = await self._evaluate_record(
                        classifier, kind, row_id, record, summary
                    )
            except (
                FetchError,
                GitHubAPIError,
                OperationCancelledError,
                OSError,
                ValueError,
            ) as exc:
                error = str(exc)
                logger.error(
                    "Evaluation of %s stopped: %s",
                    kind.collection_name,
                    error,
                    extra={"kind": kind.value, "error_type": type(exc).__name__},
                )
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                logger.exception(
                    "Evaluation of %s from %s failed",
                    kind.collection_name,
                    source,
                    extra={"kind": kind.value, "error_type": type(exc).__name__},
                )

        logger.info(
            "%s test complete\n%s",
            kind.display_name,
            summary.format_report(),
            extra={"kind": kind.value, **summary.model_dump()},
        )
        await self._emit_stream_completed(source, kind, summary.total, error)

        return StreamResult(
            kind=kind,
            completed=error is None,
            count=summary.total,
            path=data_path,
            summary=summary,
            error=error,
        )

    async def _evaluation_records(
        self,
        owner: str,
        repo: str,
        kind: ItemKind,
        data_path: Optional[Path],
        limit: Optional[int],
    ) -> AsyncIterator[Tuple[int, Union[Issue, PullRequest]]]:
        if data_path is not None:
            for row_number, record in read_training_data(data_path, kind, limit):
                self.cancellation.raise_if_cancelled()
                yield row_number, record
            return

        fetcher = self.fetcher if limit is None else self.fetcher.with_page_limit(limit)
        async for record, _label in fetcher.fetch(kind, owner, repo, self.label_predicate):
            yield record.number, record

    async def _evaluate_record(
        self,
        classifier: LabelClassifier,
        kind: ItemKind,
        row_id: int,
        record: Union[Issue, PullRequest],
        summary: EvaluationSummary,
    ) -> EvaluationSummary:
        existing = find_applicable_label(record, self.label_predicate)

        if existing is None and record.has_more_labels:
            logger.info(
                "%s #%d has too many labels. Cannot be sure no applicable label "
                "is already applied. Skipping.",
                kind.display_name,
                row_id,
            )
            return summary.add_skipped()

        try:
            scores = await classifier.predict(record)
        except Exception:
            logger.exception(
                "Classifier failed for %s #%d", kind.display_name, row_id
            )
            scores = []

        if not scores:
            logger.info("No prediction was made for %s #%d", kind.display_name, row_id)
            return summary.add_skipped()

        predicted = predicted_label(scores, self.threshold)
        summary = summary.add(evaluate_prediction(predicted, existing))

        logger.info(
            "%s #%d - Predicted: %s - Existing: %s\n%s",
            kind.display_name,
            row_id,
            predicted or "<NONE>",
            existing or "<NONE>",
            summary.format_report(),
            extra={
                "kind": kind.value,
                "row_id": row_id,
                "predicted": predicted,
                "existing": existing,
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit_item_failed(
        self,
        item_id: str,
        repository: str,
        kind: ItemKind,
        stage: str,
        exc: Exception,
    ) -> None:
        await safe_emit(
            self.event_emitter,
            LabelerEvent(
                event_type=EventType.ITEM_FAILED,
                item_id=item_id,
                repository=repository,
                details={
                    "kind": kind.value,
                    "stage": stage,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            ),
        )

    async def _emit_stream_completed(
        self,
        repository: str,
        kind: ItemKind,
        count: int,
        error: Optional[str],
    ) -> None:
        await safe_emit(
            self.event_emitter,
            LabelerEvent(
                event_type=EventType.STREAM_COMPLETED,
                item_id=f"{repository} {kind.collection_name}",
                repository=repository,
                details={
                    "kind": kind.value,
                    "count": count,
                    "completed": error is None,
                },
            ),
        )
