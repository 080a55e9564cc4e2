"""
GitHub ML Labeler CLI - Main entry point

Usage:
    labeler download  - Download labeled issues/pull requests as training data
    labeler predict   - Predict and apply labels to specific issues/pull requests
    labeler test      - Compare predictions with existing labels

Every option can also be set through LABELER_* environment variables
(for example LABELER_GITHUB_TOKEN); options take precedence.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from pydantic import ValidationError

from src.labeler.classifier.agent import LLMLabelClassifier
from src.labeler.config import LabelerSettings, get_settings
from src.labeler.evaluation import EvaluationSummary
from src.labeler.events.emitter import EventSinkType, create_event_emitter
from src.labeler.events.metrics import push_metrics
from src.labeler.github.client import GitHubClient
from src.labeler.github.models import ItemKind
from src.labeler.logging_config import configure_logging, redact_secret
from src.labeler.orchestrator import (
    ItemResult,
    ItemStatus,
    LabelingOrchestrator,
    StreamResult,
)
from src.labeler.paging.cancellation import CancellationToken
from src.labeler.paging.eligibility import prefix_predicate
from src.labeler.paging.fetcher import PagedFetcher


logger = logging.getLogger(__name__)


FAILED_ITEM_STATUSES = {ItemStatus.FAILED, ItemStatus.NOT_FOUND, ItemStatus.CANCELLED}


# ============================================================================
# Argument parsing helpers
# ============================================================================


def parse_repo(value: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split "owner/repo" into its parts.

    Raises:
        click.BadParameter: If the value is not in owner/repo form.
    """
    if value is None:
        return None
    parts = value.split("/")
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise click.BadParameter(
            f"'{value}' is not in the format of 'owner/repo'", param_hint="--repo"
        )
    return parts[0].strip(), parts[1].strip()


def parse_numbers(value: Optional[str]) -> List[int]:
    """Parse a comma-separated list of item numbers and ranges.

    Example:
        >>> parse_numbers("1,5-7")
        [1, 5, 6, 7]

    Raises:
        click.BadParameter: If an entry is not a number or a valid range.
    """
    if not value:
        return []

    numbers: List[int] = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            if "-" in entry:
                start_text, end_text = entry.split("-", 1)
                start, end = int(start_text), int(end_text)
                if start > end or start < 0:
                    raise ValueError(entry)
                numbers.extend(range(start, end + 1))
            else:
                number = int(entry)
                if number < 0:
                    raise ValueError(entry)
                numbers.append(number)
        except ValueError:
            raise click.BadParameter(f"Invalid item number or range: '{entry}'")

    # Keep first occurrence order
    return list(dict.fromkeys(numbers))


def _load_settings(**overrides) -> LabelerSettings:
    try:
        return get_settings(**overrides)
    except ValidationError as e:
        raise click.UsageError(f"Invalid configuration:\n{e}")


def _log_configuration(settings: LabelerSettings) -> None:
    logger.info("Labeler configuration:")
    logger.info("  GitHub Base URL: %s", settings.github_base_url)
    logger.info("  GitHub Token: %s", redact_secret(settings.github_token))
    logger.info("  Label Prefix: %s", settings.label_prefix)
    logger.info("  Page Size: %s, Page Limit: %s", settings.page_size, settings.page_limit)
    logger.info("  Retries: %s", settings.retries)
    logger.info("  Threshold: %s", settings.threshold)
    logger.info("  Default Label: %s", settings.default_label or "<none>")
    logger.info("  Max Concurrency: %s", settings.max_concurrency)
    logger.info("  Dry Run: %s", settings.dry_run)
    logger.info("  LLM URL: %s", settings.llm_url or "<unset>")


def _build_classifier(settings: LabelerSettings) -> LLMLabelClassifier:
    if not settings.llm_url:
        raise click.UsageError("An LLM endpoint is required (--llm-url or LABELER_LLM_URL)")
    if not settings.candidate_label_list:
        raise click.UsageError(
            "Candidate labels are required (--candidate-labels or LABELER_CANDIDATE_LABELS)"
        )
    return LLMLabelClassifier(
        llm_url=settings.llm_url,
        model_name=settings.llm_model,
        candidate_labels=settings.candidate_label_list,
        api_key=settings.llm_api_key,
    )


async def _run(
    settings: LabelerSettings,
    work,
    classifier: Optional[LLMLabelClassifier] = None,
    timeout: Optional[float] = None,
):
    """Build the GitHub client and orchestrator, then await work(orchestrator)."""
    sinks = [EventSinkType.LOGGING]
    if settings.metrics_pushgateway_url:
        sinks.append(EventSinkType.METRICS)
    event_emitter = create_event_emitter(sinks)

    cancellation = CancellationToken()
    if timeout:
        cancellation.cancel_after(timeout)

    async with GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
        graphql_url=settings.github_graphql_url,
        timeout=settings.request_timeout,
    ) as github_client:
        fetcher = PagedFetcher(
            github_client,
            page_limit=settings.page_limit,
            page_size=settings.page_size,
            retry_policy=settings.retry_policy,
            event_emitter=event_emitter,
            cancellation=cancellation,
        )
        orchestrator = LabelingOrchestrator(
            github_client=github_client,
            fetcher=fetcher,
            label_predicate=prefix_predicate(settings.label_prefix),
            classifier=classifier,
            threshold=settings.threshold,
            default_label=settings.default_label,
            dry_run=settings.dry_run,
            max_concurrency=settings.max_concurrency,
            event_emitter=event_emitter,
            cancellation=cancellation,
        )
        try:
            return await work(orchestrator)
        finally:
            await event_emitter.close()
            if classifier is not None:
                await classifier.close()
            if settings.metrics_pushgateway_url:
                push_metrics(settings.metrics_pushgateway_url)


def _echo_stream(result: StreamResult, verb: str) -> None:
    status = "complete" if result.completed else f"stopped: {result.error}"
    location = f" ({result.path})" if result.path else ""
    click.echo(
        f"{result.kind.display_name}s {verb}: {result.count}{location} - {status}"
    )


def _echo_item(result: ItemResult) -> None:
    actions = ", ".join(result.decision.describe()) if result.decision else ""
    detail = actions or (result.decision.reason if result.decision else "")
    if result.error:
        detail = result.error
    click.echo(f"{result.kind.display_name} #{result.number}: {result.status.value} {detail}".rstrip())


# ============================================================================
# Commands
# ============================================================================


common_options = [
    click.option("--token", envvar="LABELER_GITHUB_TOKEN", help="GitHub API token."),
    click.option("--label-prefix", help="Label namespace, e.g. 'area-'."),
    click.option("--page-size", type=int, help="Records per page (1-100)."),
    click.option("--page-limit", type=int, help="Maximum pages to fetch per stream."),
    click.option("--retries", help="Comma-separated retry waits in seconds."),
    click.option("--timeout", type=float, help="Cancel the run after this many seconds."),
    click.option("--log-json", is_flag=True, help="Emit JSON log lines."),
    click.option("--verbose", "-v", is_flag=True, help="Enable debug logging."),
]


def with_common_options(func):
    for option in reversed(common_options):
        func = option(func)
    return func


llm_options = [
    click.option("--threshold", type=float, help="Minimum score to accept a prediction."),
    click.option("--llm-url", help="OpenAI-compatible endpoint URL."),
    click.option("--llm-model", help="Model name."),
    click.option("--candidate-labels", help="Comma-separated labels to choose from."),
]


def with_llm_options(func):
    for option in reversed(llm_options):
        func = option(func)
    return func


def _prepare(verbose: bool, **overrides) -> LabelerSettings:
    settings = _load_settings(**overrides)
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_output=settings.log_json,
    )
    _log_configuration(settings)
    return settings


@click.group()
@click.version_option(version="0.1.0", prog_name="github-ml-labeler")
def cli():
    """GitHub ML Labeler - Download training data, predict and test area labels"""
    pass


@cli.command("download")
@click.option("--repo", "repo_arg", required=True, help="Repository as owner/repo.")
@click.option("--issue-data", type=click.Path(dir_okay=False, path_type=Path),
              help="Output TSV for issues.")
@click.option("--pull-data", type=click.Path(dir_okay=False, path_type=Path),
              help="Output TSV for pull requests.")
@with_common_options
def download_command(repo_arg, issue_data, pull_data, token, label_prefix, page_size,
                     page_limit, retries, timeout, log_json, verbose):
    """Download issues and pull requests with exactly one matching label."""
    owner, repo = parse_repo(repo_arg)
    if issue_data is None and pull_data is None:
        raise click.UsageError("At least one of --issue-data or --pull-data is required")

    settings = _prepare(
        verbose,
        github_token=token,
        label_prefix=label_prefix,
        page_size=page_size,
        page_limit=page_limit,
        retries=retries,
        log_json=log_json or None,
    )

    outputs: Dict[ItemKind, Path] = {}
    if issue_data is not None:
        outputs[ItemKind.ISSUE] = issue_data
    if pull_data is not None:
        outputs[ItemKind.PULL_REQUEST] = pull_data

    results = asyncio.run(
        _run(
            settings,
            lambda orchestrator: orchestrator.download(owner, repo, outputs),
            timeout=timeout,
        )
    )

    for result in results:
        _echo_stream(result, "written")

    if not all(result.completed for result in results):
        raise SystemExit(1)


@cli.command("predict")
@click.option("--repo", "repo_arg", required=True, help="Repository as owner/repo.")
@click.option("--issue-numbers", help="Issue numbers, e.g. '1,5-7'.")
@click.option("--pull-numbers", help="Pull request numbers, e.g. '12,40'.")
@click.option("--default-label", help="Label to apply when no prediction is confident.")
@click.option("--dry-run", "--test", "dry_run", is_flag=True,
              help="Decide and log, but do not change labels.")
@with_llm_options
@with_common_options
def predict_command(repo_arg, issue_numbers, pull_numbers, default_label, dry_run,
                    threshold, llm_url, llm_model, candidate_labels, token,
                    label_prefix, page_size, page_limit, retries, timeout,
                    log_json, verbose):
    """Predict labels for specific issues/pull requests and apply them."""
    owner, repo = parse_repo(repo_arg)
    numbers = {
        ItemKind.ISSUE: parse_numbers(issue_numbers),
        ItemKind.PULL_REQUEST: parse_numbers(pull_numbers),
    }
    numbers = {kind: values for kind, values in numbers.items() if values}
    if not numbers:
        raise click.UsageError("At least one of --issue-numbers or --pull-numbers is required")

    settings = _prepare(
        verbose,
        github_token=token,
        label_prefix=label_prefix,
        page_size=page_size,
        page_limit=page_limit,
        retries=retries,
        threshold=threshold,
        default_label=default_label,
        dry_run=dry_run or None,
        llm_url=llm_url,
        llm_model=llm_model,
        candidate_labels=candidate_labels,
        log_json=log_json or None,
    )
    classifier = _build_classifier(settings)

    results = asyncio.run(
        _run(
            settings,
            lambda orchestrator: orchestrator.predict_items(owner, repo, numbers),
            classifier=classifier,
            timeout=timeout,
        )
    )

    for result in results:
        _echo_item(result)

    if any(result.status in FAILED_ITEM_STATUSES for result in results):
        raise SystemExit(1)


@cli.command("test")
@click.option("--repo", "repo_arg", help="Repository as owner/repo, to download items.")
@click.option("--issue-data", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Read issues from this TSV instead of downloading.")
@click.option("--pull-data", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Read pull requests from this TSV instead of downloading.")
@click.option("--issues/--no-issues", default=True, help="Evaluate issues.")
@click.option("--pulls/--no-pulls", default=True, help="Evaluate pull requests.")
@click.option("--issue-limit", type=click.IntRange(min=0),
              help="Maximum issue rows (TSV) or pages (download).")
@click.option("--pull-limit", type=click.IntRange(min=0),
              help="Maximum pull request rows (TSV) or pages (download).")
@with_llm_options
@with_common_options
def evaluate_command(repo_arg, issue_data, pull_data, issues, pulls, issue_limit,
                     pull_limit, threshold, llm_url, llm_model, candidate_labels,
                     token, label_prefix, page_size, page_limit, retries, timeout,
                     log_json, verbose):
    """Compare predicted labels with the labels items already carry."""
    owner, repo = parse_repo(repo_arg) or ("", "")

    plans = []
    if issues:
        plans.append((ItemKind.ISSUE, issue_data, issue_limit))
    if pulls:
        plans.append((ItemKind.PULL_REQUEST, pull_data, pull_limit))

    for kind, data_path, _limit in plans:
        if data_path is None and not owner:
            raise click.UsageError(
                f"--repo is required to download {kind.collection_name} "
                "when no data file is given"
            )
    if not plans:
        raise click.UsageError("Nothing to test")

    settings = _prepare(
        verbose,
        github_token=token,
        label_prefix=label_prefix,
        page_size=page_size,
        page_limit=page_limit,
        retries=retries,
        threshold=threshold,
        llm_url=llm_url,
        llm_model=llm_model,
        candidate_labels=candidate_labels,
        log_json=log_json or None,
    )
    classifier = _build_classifier(settings)

    async def evaluate_all(orchestrator: LabelingOrchestrator) -> List[StreamResult]:
        return list(
            await asyncio.gather(
                *(
                    orchestrator.evaluate(owner, repo, kind, data_path, limit)
                    for kind, data_path, limit in plans
                )
            )
        )

    results = asyncio.run(_run(settings, evaluate_all, classifier=classifier, timeout=timeout))

    for result in results:
        _echo_stream(result, "evaluated")
        if result.summary is not None:
            click.echo(result.summary.format_report())

    summaries = [result.summary for result in results if result.summary is not None]
    if len(summaries) > 1:
        overall = EvaluationSummary()
        for summary in summaries:
            overall = overall.merge(summary)
        click.echo(f"Overall evaluated: {overall.total}")
        click.echo(overall.format_report())

    if not all(result.completed for result in results):
        raise SystemExit(1)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
