"""Unit tests for LabelingOrchestrator.

Tests cover:
- Targeted prediction: apply, dry run, no action, skip and failures
- Mutation ordering and stop-at-first-failure
- Independence of sibling tasks
- Bounded concurrency
- Download and evaluation streams
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from src.labeler.decision.models import LabelScore
from src.labeler.events.models import EventType
from src.labeler.github.client import GitHubAPIError, ItemNotFoundError, TransientGitHubError
from src.labeler.github.models import Issue, ItemKind, Page, PullRequest
from src.labeler.orchestrator import ItemStatus, LabelingOrchestrator
from src.labeler.paging.cancellation import CancellationToken
from src.labeler.paging.eligibility import prefix_predicate
from src.labeler.paging.fetcher import PagedFetcher
from src.labeler.paging.retry import RetryPolicy
from src.labeler.training_data import TrainingDataWriter


def run_async(coro):
    return asyncio.run(coro)


DEFAULT = "needs-area-label"


def _scores(*pairs):
    return [LabelScore(label=label, score=score) for label, score in pairs]


def _make_orchestrator(records=None, scores=None, pages=None, **kwargs):
    """Build an orchestrator over mocked GitHub client and classifier.

    records maps item number to a record, or to an exception to raise.
    """
    records = records or {}

    async def get_item(kind, owner, repo, number):
        value = records[number]
        if isinstance(value, Exception):
            raise value
        return value

    client = AsyncMock()
    client.get_item = AsyncMock(side_effect=get_item)
    client.add_label = AsyncMock(return_value=[])
    client.remove_label = AsyncMock(return_value=None)
    client.get_items_page = AsyncMock(side_effect=list(pages or []))

    classifier = AsyncMock()
    classifier.predict = AsyncMock(return_value=scores if scores is not None else [])

    async def no_sleep(delay):
        return None

    fetcher = PagedFetcher(
        client,
        retry_policy=RetryPolicy.from_delays([1]),
        sleep=no_sleep,
    )
    orchestrator = LabelingOrchestrator(
        github_client=client,
        fetcher=fetcher,
        label_predicate=prefix_predicate("area-"),
        classifier=classifier,
        threshold=0.5,
        **kwargs,
    )
    return orchestrator, client, classifier


class TestPredictItems:
    def test_applies_best_prediction(self):
        orchestrator, client, _ = _make_orchestrator(
            records={5: Issue(number=5, title="Socket hang")},
            scores=_scores(("area-System.Net", 0.9), ("area-System.IO", 0.2)),
        )

        results = run_async(orchestrator.predict_items("dotnet", "runtime", {ItemKind.ISSUE: [5]}))

        assert results[0].status == ItemStatus.APPLIED
        assert results[0].applied == ["add:area-System.Net"]
        client.add_label.assert_awaited_once_with("dotnet", "runtime", 5, "area-System.Net")
        client.remove_label.assert_not_awaited()

    def test_replaces_default_label_in_order(self):
        orchestrator, client, _ = _make_orchestrator(
            records={5: Issue(number=5, labels=(DEFAULT,))},
            scores=_scores(("area-System.Net", 0.9)),
            default_label=DEFAULT,
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        assert results[0].applied == ["add:area-System.Net", f"remove:{DEFAULT}"]
        client.add_label.assert_awaited_once_with("o", "r", 5, "area-System.Net")
        client.remove_label.assert_awaited_once_with("o", "r", 5, DEFAULT)

    def test_dry_run_never_mutates(self):
        orchestrator, client, _ = _make_orchestrator(
            records={5: Issue(number=5)},
            scores=_scores(("area-System.Net", 0.9)),
            dry_run=True,
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        assert results[0].status == ItemStatus.DRY_RUN
        assert results[0].decision.added_label == "area-System.Net"
        client.add_label.assert_not_awaited()
        client.remove_label.assert_not_awaited()

    def test_existing_label_skips_classifier(self):
        orchestrator, client, classifier = _make_orchestrator(
            records={5: Issue(number=5, labels=("area-System.Net",))},
            scores=_scores(("area-System.IO", 0.9)),
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        assert results[0].status == ItemStatus.NO_ACTION
        classifier.predict.assert_not_awaited()
        client.add_label.assert_not_awaited()

    def test_incomplete_labels_are_skipped(self):
        orchestrator, client, classifier = _make_orchestrator(
            records={5: PullRequest(number=5, has_more_labels=True)},
            scores=_scores(("area-System.Net", 0.9)),
            default_label=DEFAULT,
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.PULL_REQUEST: [5]}))

        assert results[0].status == ItemStatus.SKIPPED
        assert results[0].decision.is_no_action
        classifier.predict.assert_not_awaited()
        client.add_label.assert_not_awaited()

    def test_classifier_failure_falls_back_to_default(self):
        orchestrator, client, classifier = _make_orchestrator(
            records={5: Issue(number=5)},
            default_label=DEFAULT,
        )
        classifier.predict.side_effect = RuntimeError("model unavailable")

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        assert results[0].status == ItemStatus.APPLIED
        client.add_label.assert_awaited_once_with("o", "r", 5, DEFAULT)

    def test_not_found_does_not_affect_siblings(self):
        orchestrator, client, _ = _make_orchestrator(
            records={
                1: ItemNotFoundError("Issue o/r#1 not found"),
                2: Issue(number=2),
                3: TransientGitHubError("GitHub API error: 502", status_code=502),
            },
            scores=_scores(("area-System.Net", 0.9)),
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [1, 2, 3]}))

        assert [r.number for r in results] == [1, 2, 3]
        assert [r.status for r in results] == [
            ItemStatus.NOT_FOUND,
            ItemStatus.APPLIED,
            ItemStatus.FAILED,
        ]
        client.add_label.assert_awaited_once_with("o", "r", 2, "area-System.Net")

    def test_mutation_failure_stops_remaining_actions(self):
        orchestrator, client, _ = _make_orchestrator(
            records={5: Issue(number=5, labels=(DEFAULT,))},
            scores=_scores(("area-System.Net", 0.9)),
            default_label=DEFAULT,
        )
        client.add_label.side_effect = GitHubAPIError(
            "GitHub API error: 422", status_code=422, response_body="Validation Failed"
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        assert results[0].status == ItemStatus.FAILED
        assert results[0].failed == ["add:area-System.Net"]
        assert results[0].applied == []
        assert client.add_label.await_count == 1
        client.remove_label.assert_not_awaited()

    def test_unexpected_mutation_error_is_isolated_to_its_item(self):
        orchestrator, client, _ = _make_orchestrator(
            records={1: Issue(number=1), 2: Issue(number=2)},
            scores=_scores(("area-System.Net", 0.9)),
        )

        async def add_label(owner, repo, number, label):
            if number == 1:
                raise ValueError("Expecting value: line 1 column 1 (char 0)")
            return []

        client.add_label.side_effect = add_label

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [1, 2]}))

        assert [r.status for r in results] == [ItemStatus.FAILED, ItemStatus.APPLIED]
        assert results[0].failed == ["add:area-System.Net"]
        assert "Expecting value" in results[0].error
        assert results[1].applied == ["add:area-System.Net"]

    def test_cancelled_before_fetch(self):
        token = CancellationToken()
        token.cancel("stop")
        orchestrator, client, _ = _make_orchestrator(
            records={5: Issue(number=5)},
            cancellation=token,
        )

        results = run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        assert results[0].status == ItemStatus.CANCELLED
        client.get_item.assert_not_awaited()

    def test_emits_decision_and_applied_events(self):
        emitter = AsyncMock()
        orchestrator, _, _ = _make_orchestrator(
            records={5: Issue(number=5)},
            scores=_scores(("area-System.Net", 0.9)),
            event_emitter=emitter,
        )

        run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [5]}))

        events = [call.args[0] for call in emitter.emit.call_args_list]
        assert [e.event_type for e in events] == [
            EventType.LABEL_DECISION,
            EventType.LABEL_APPLIED,
        ]
        assert events[0].item_id == "o/r#5"
        assert events[0].details["actions"] == ["add:area-System.Net"]

    def test_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        async def slow_get_item(kind, owner, repo, number):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return Issue(number=number, labels=("area-System.Net",))

        orchestrator, client, _ = _make_orchestrator(max_concurrency=2)
        client.get_item.side_effect = slow_get_item

        results = run_async(
            orchestrator.predict_items("o", "r", {ItemKind.ISSUE: list(range(1, 7))})
        )

        assert len(results) == 6
        assert peak <= 2

    def test_requires_classifier(self):
        orchestrator, _, _ = _make_orchestrator()
        orchestrator.classifier = None

        with pytest.raises(ValueError):
            run_async(orchestrator.predict_items("o", "r", {ItemKind.ISSUE: [1]}))


class TestConstruction:
    @pytest.mark.parametrize(
        "kwargs",
        [{"threshold": float("nan")}, {"threshold": float("inf")}, {"max_concurrency": 0}],
    )
    def test_rejects_invalid_configuration(self, kwargs):
        params = {
            "github_client": AsyncMock(),
            "fetcher": AsyncMock(),
            "label_predicate": prefix_predicate("area-"),
            **kwargs,
        }
        with pytest.raises(ValueError):
            LabelingOrchestrator(**params)


class TestDownload:
    def test_writes_eligible_records(self, tmp_path: Path):
        page = Page(
            nodes=[
                Issue(number=3, title="Tab\there", labels=("area-System.Net",)),
                Issue(number=2, labels=("bug",)),
            ],
            has_next_page=False,
            end_cursor="c1",
        )
        orchestrator, _, _ = _make_orchestrator(pages=[page])
        output = tmp_path / "out" / "issues.tsv"

        results = run_async(orchestrator.download("o", "r", {ItemKind.ISSUE: output}))

        assert results[0].completed is True
        assert results[0].count == 1
        lines = output.read_text(encoding="utf-8").splitlines()
        assert lines == ["Number\tLabel\tTitle\tBody", "3\tarea-System.Net\tTab here\t"]

    def test_fault_keeps_rows_already_written(self, tmp_path: Path):
        pages = [
            Page(
                nodes=[Issue(number=3, labels=("area-System.Net",))],
                has_next_page=True,
                end_cursor="c1",
            ),
            TransientGitHubError("down", status_code=503),
            TransientGitHubError("down", status_code=503),
        ]
        emitter = AsyncMock()
        orchestrator, _, _ = _make_orchestrator(pages=pages, event_emitter=emitter)
        output = tmp_path / "issues.tsv"

        results = run_async(orchestrator.download("o", "r", {ItemKind.ISSUE: output}))

        assert results[0].completed is False
        assert results[0].count == 1
        assert "Retry limit" in results[0].error
        assert len(output.read_text(encoding="utf-8").splitlines()) == 2
        last_event = emitter.emit.call_args_list[-1].args[0]
        assert last_event.event_type == EventType.STREAM_COMPLETED
        assert last_event.details["completed"] is False

    def test_stream_fault_does_not_affect_sibling_stream(self, tmp_path: Path):
        pull_page = Page(
            nodes=[
                PullRequest(number=8, labels=("area-Infra",), file_paths=("eng/ci.yml",)),
                PullRequest(number=7, labels=("area-GC",)),
            ],
            has_next_page=False,
            end_cursor="c1",
        )

        async def get_items_page(kind, owner, repo, after=None, page_size=100):
            if kind is ItemKind.ISSUE:
                raise KeyError("number")
            return pull_page

        orchestrator, client, _ = _make_orchestrator()
        client.get_items_page.side_effect = get_items_page
        outputs = {
            ItemKind.ISSUE: tmp_path / "issues.tsv",
            ItemKind.PULL_REQUEST: tmp_path / "pulls.tsv",
        }

        results = run_async(orchestrator.download("o", "r", outputs))

        issues, pulls = results
        assert issues.completed is False
        assert "KeyError" in issues.error
        assert pulls.completed is True
        assert pulls.count == 2
        assert len((tmp_path / "pulls.tsv").read_text(encoding="utf-8").splitlines()) == 3

    def test_unwritable_output_fails_only_its_stream(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        page = Page(
            nodes=[PullRequest(number=8, labels=("area-Infra",))],
            has_next_page=False,
            end_cursor="c1",
        )
        orchestrator, _, _ = _make_orchestrator(pages=[page])
        outputs = {
            ItemKind.ISSUE: blocker / "issues.tsv",
            ItemKind.PULL_REQUEST: tmp_path / "pulls.tsv",
        }

        issues, pulls = run_async(orchestrator.download("o", "r", outputs))

        assert issues.completed is False
        assert issues.count == 0
        assert pulls.completed is True
        assert pulls.count == 1


class TestEvaluate:
    def test_evaluates_training_data_file(self, tmp_path: Path):
        path = tmp_path / "issues.tsv"
        with TrainingDataWriter(path, ItemKind.ISSUE) as writer:
            writer.write(Issue(number=1, title="a"), "area-System.Net")
            writer.write(Issue(number=2, title="b"), "area-System.IO")
            writer.write(Issue(number=3, title="c"), "area-GC")

        orchestrator, _, classifier = _make_orchestrator()
        classifier.predict.side_effect = [
            _scores(("area-System.Net", 0.9)),
            _scores(("area-System.Net", 0.9)),
            _scores(("area-GC", 0.1)),
        ]

        result = run_async(orchestrator.evaluate("o", "r", ItemKind.ISSUE, data_path=path))

        assert result.completed is True
        assert result.summary.matches == 1
        assert result.summary.mismatches == 1
        assert result.summary.no_prediction == 1
        assert result.count == 3

    def test_limit_restricts_rows(self, tmp_path: Path):
        path = tmp_path / "issues.tsv"
        with TrainingDataWriter(path, ItemKind.ISSUE) as writer:
            for number in range(5):
                writer.write(Issue(number=number), "area-X")

        orchestrator, _, classifier = _make_orchestrator(scores=_scores(("area-X", 0.9)))

        result = run_async(
            orchestrator.evaluate("o", "r", ItemKind.ISSUE, data_path=path, limit=2)
        )

        assert result.summary.matches == 2
        assert classifier.predict.await_count == 2

    def test_empty_scores_are_skipped(self, tmp_path: Path):
        path = tmp_path / "issues.tsv"
        with TrainingDataWriter(path, ItemKind.ISSUE) as writer:
            writer.write(Issue(number=1), "area-X")

        orchestrator, _, _ = _make_orchestrator(scores=[])

        result = run_async(orchestrator.evaluate("o", "r", ItemKind.ISSUE, data_path=path))

        assert result.summary.total == 0
        assert result.summary.skipped == 1

    def test_missing_file_reports_error(self, tmp_path: Path):
        orchestrator, _, _ = _make_orchestrator()

        result = run_async(
            orchestrator.evaluate("o", "r", ItemKind.ISSUE, data_path=tmp_path / "missing.tsv")
        )

        assert result.completed is False
        assert result.error

    def test_evaluates_downloaded_records(self):
        page = Page(
            nodes=[
                PullRequest(number=9, labels=("area-Infra",), file_paths=("eng/ci.yml",)),
                PullRequest(number=8, labels=("bug",)),
            ],
            has_next_page=False,
            end_cursor="c1",
        )
        orchestrator, _, classifier = _make_orchestrator(
            pages=[page], scores=_scores(("area-Infra", 0.8))
        )

        result = run_async(orchestrator.evaluate("o", "r", ItemKind.PULL_REQUEST))

        assert result.summary.matches == 1
        assert classifier.predict.await_count == 1

    def test_file_stream_reported_under_its_path(self, tmp_path: Path):
        path = tmp_path / "issues.tsv"
        with TrainingDataWriter(path, ItemKind.ISSUE) as writer:
            writer.write(Issue(number=1), "area-X")
        emitter = AsyncMock()
        orchestrator, _, _ = _make_orchestrator(
            scores=_scores(("area-X", 0.9)), event_emitter=emitter
        )

        run_async(orchestrator.evaluate("", "", ItemKind.ISSUE, data_path=path))

        event = emitter.emit.call_args_list[-1].args[0]
        assert event.event_type == EventType.STREAM_COMPLETED
        assert event.repository == str(path)

    def test_malformed_page_ends_stream_with_error(self):
        orchestrator, client, _ = _make_orchestrator()
        client.get_items_page.side_effect = KeyError("number")

        result = run_async(orchestrator.evaluate("o", "r", ItemKind.ISSUE))

        assert result.completed is False
        assert "KeyError" in result.error
