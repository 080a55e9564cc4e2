"""Paged download of issues and pull requests.

The PagedFetcher walks a repository's issues or pull requests one cursor
page at a time, newest first, and yields the records that carry exactly one
label from the configured namespace together with that label.

Pages are strictly sequential within one fetch. Transient failures are
retried against the same cursor following a RetryPolicy; the failure
counter resets after every successful page. A page that comes back with the
cursor it was requested with means the server made no progress, and the
fetch stops immediately without consulting the retry schedule.

Source:
- src/labeler/github/client.py (GitHubClient.get_items_page)
- src/labeler/paging/retry.py (RetryPolicy)
- src/labeler/paging/eligibility.py (eligible)
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple, Union

from src.labeler.events.emitter import EventEmitter, safe_emit
from src.labeler.events.models import EventType, LabelerEvent
from src.labeler.github.client import GitHubClient, TransientGitHubError
from src.labeler.github.models import Issue, ItemKind, Page, PullRequest
from src.labeler.github.queries import MAX_PAGE_SIZE
from src.labeler.paging.cancellation import CancellationToken
from src.labeler.paging.eligibility import LabelPredicate, any_label, eligible
from src.labeler.paging.retry import RetryPolicy


logger = logging.getLogger(__name__)


DEFAULT_PAGE_LIMIT = 1000


class FetchError(Exception):
    """Base class for faults that end a paged download.

    Attributes:
        message: Human-readable error description.
        kind: The kind of collection being fetched.
        page_number: The 1-based page being requested when the fault occurred.
        cursor: The cursor the failing request was made with.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[ItemKind] = None,
        page_number: Optional[int] = None,
        cursor: Optional[str] = None,
    ):
        self.message = message
        self.kind = kind
        self.page_number = page_number
        self.cursor = cursor
        super().__init__(message)


class RetryExhaustedError(FetchError):
    """Raised when a page keeps failing after every scheduled retry.

    Attributes:
        attempts: Total requests made for the failing page.
        last_error: The transient error from the final attempt.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class PagingStalledError(FetchError):
    """Raised when a successful page does not advance the cursor."""


class PagedFetcher:
    """Walks cursor pages of issues or pull requests with bounded retries.

    Attributes:
        page_limit: Maximum number of pages to request per fetch.
        page_size: Records requested per page (capped at 100 by the server).
        retry_policy: Wait schedule for consecutive transient failures.

    Example:
        >>> fetcher = PagedFetcher(client, page_limit=10)
        >>> async for record, label in fetcher.fetch(
        ...     ItemKind.ISSUE, "dotnet", "runtime", prefix_predicate("area-")
        ... ):
        ...     print(record.number, label)
    """

    def __init__(
        self,
        github_client: GitHubClient,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        page_size: int = MAX_PAGE_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        event_emitter: Optional[EventEmitter] = None,
        cancellation: Optional[CancellationToken] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the fetcher.

        Args:
            github_client: Client used to request pages.
            page_limit: Maximum pages per fetch. Zero fetches nothing.
            page_size: Records per page.
            retry_policy: Retry schedule. Defaults to RetryPolicy().
            event_emitter: Optional sink for progress and retry events.
            cancellation: Optional token checked before each request and
                each backoff sleep.
            sleep: Coroutine used for backoff waits, injectable for tests.

        Raises:
            ValueError: If page_limit is negative or page_size is not positive.
        """
        if page_limit < 0:
            raise ValueError(f"page_limit must be >= 0, got {page_limit}")
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")

        self.github_client = github_client
        self.page_limit = page_limit
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.event_emitter = event_emitter
        self.cancellation = cancellation
        self._sleep = sleep

    def with_page_limit(self, page_limit: int) -> "PagedFetcher":
        """Return a fetcher identical to this one but with another page limit."""
        return PagedFetcher(
            self.github_client,
            page_limit=page_limit,
            page_size=self.page_size,
            retry_policy=self.retry_policy,
            event_emitter=self.event_emitter,
            cancellation=self.cancellation,
            sleep=self._sleep,
        )

    def _check_cancelled(self) -> None:
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled()

    async def _emit(
        self,
        event_type: EventType,
        kind: ItemKind,
        owner: str,
        repo: str,
        **details,
    ) -> None:
        repository = f"{owner}/{repo}"
        await safe_emit(
            self.event_emitter,
            LabelerEvent(
                event_type=event_type,
                item_id=f"{repository} {kind.collection_name}",
                repository=repository,
                details={"kind": kind.value, **details},
            ),
        )

    async def fetch(
        self,
        kind: ItemKind,
        owner: str,
        repo: str,
        label_predicate: LabelPredicate = any_label,
    ) -> AsyncIterator[Tuple[Union[Issue, PullRequest], str]]:
        """Yield eligible records and their matched label, newest first.

        Args:
            kind: Issues or pull requests.
            owner: Repository owner.
            repo: Repository name.
            label_predicate: Selects labels from the configured namespace.

        Yields:
            (record, matched_label) for every eligible record.

        Raises:
            RetryExhaustedError: If a page fails more times than the
                retry schedule allows.
            PagingStalledError: If a page does not advance the cursor.
            OperationCancelledError: If the cancellation token fires.
            GitHubAPIError: On a permanent API error, without retrying.
        """
        cursor: Optional[str] = None
        page_number = 1
        consecutive_failures = 0
        has_next_page = True
        total_count: Optional[int] = None
        loaded_count = 0
        yielded_count = 0

        while has_next_page and page_number <= self.page_limit:
            self._check_cancelled()

            try:
                page = await self.github_client.get_items_page(
                    kind,
                    owner,
                    repo,
                    after=cursor,
                    page_size=self.page_size,
                )
            except TransientGitHubError as e:
                if not self.retry_policy.can_retry(consecutive_failures):
                    await self._emit(
                        EventType.FETCH_ABORTED,
                        kind,
                        owner,
                        repo,
                        page_number=page_number,
                        cursor=cursor,
                        error_type="RetryExhaustedError",
                        error_message=str(e),
                    )
                    raise RetryExhaustedError(
                        f"Retry limit of {self.retry_policy.max_retries} reached "
                        f"fetching {kind.collection_name} page {page_number} "
                        f"of {owner}/{repo}: {e}",
                        attempts=consecutive_failures + 1,
                        last_error=e,
                        kind=kind,
                        page_number=page_number,
                        cursor=cursor,
                    ) from e

                delay = self.retry_policy.delay_for(consecutive_failures)
                consecutive_failures += 1

                logger.warning(
                    "Failed to fetch %s page %d of %s/%s, retry %d of %d in %s seconds: %s",
                    kind.collection_name,
                    page_number,
                    owner,
                    repo,
                    consecutive_failures,
                    self.retry_policy.max_retries,
                    delay,
                    str(e),
                    extra={
                        "kind": kind.value,
                        "page_number": page_number,
                        "cursor": cursor,
                        "attempt": consecutive_failures,
                        "delay": delay,
                        "status_code": e.status_code,
                    },
                )
                await self._emit(
                    EventType.FETCH_RETRY,
                    kind,
                    owner,
                    repo,
                    page_number=page_number,
                    attempt=consecutive_failures,
                    max_retries=self.retry_policy.max_retries,
                    delay=delay,
                )

                self._check_cancelled()
                await self._sleep(delay)
                continue

            await self._check_stall(page, kind, owner, repo, cursor, page_number)

            consecutive_failures = 0
            if page_number == 1:
                total_count = page.total_count
            loaded_count += len(page.nodes)
            has_next_page = page.has_next_page
            cursor = page.end_cursor

            logger.info(
                "Loaded %d of %s %s from %s/%s (page %d). Cursor: '%s'. %s",
                loaded_count,
                total_count if total_count is not None else "?",
                kind.collection_name,
                owner,
                repo,
                page_number,
                cursor,
                "Continuing" if has_next_page and page_number < self.page_limit else "Done",
                extra={
                    "kind": kind.value,
                    "page_number": page_number,
                    "loaded_count": loaded_count,
                    "total_count": total_count,
                    "cursor": cursor,
                },
            )
            await self._emit(
                EventType.PAGE_FETCHED,
                kind,
                owner,
                repo,
                page_number=page_number,
                loaded_count=loaded_count,
                total_count=total_count,
                cursor=cursor,
            )

            page_number += 1

            for record in page.nodes:
                label = eligible(record, label_predicate)
                if label is None:
                    logger.debug(
                        "Skipping %s %s: no single applicable label",
                        kind.display_name,
                        record.item_id,
                        extra={
                            "kind": kind.value,
                            "number": record.number,
                            "has_more_labels": record.has_more_labels,
                        },
                    )
                    continue

                yielded_count += 1
                yield record, label

        if has_next_page and self.page_limit > 0:
            logger.info(
                "Page limit of %d reached for %s of %s/%s",
                self.page_limit,
                kind.collection_name,
                owner,
                repo,
            )

        logger.info(
            "Finished fetching %s of %s/%s: %d loaded, %d eligible",
            kind.collection_name,
            owner,
            repo,
            loaded_count,
            yielded_count,
            extra={
                "kind": kind.value,
                "loaded_count": loaded_count,
                "eligible_count": yielded_count,
            },
        )

    async def _check_stall(
        self,
        page: Page,
        kind: ItemKind,
        owner: str,
        repo: str,
        cursor: Optional[str],
        page_number: int,
    ) -> None:
        """Raise PagingStalledError if the page cannot move the fetch forward."""
        if page.has_next_page and page.end_cursor is None:
            reason = "more pages reported without an end cursor"
        elif not page.nodes and not page.has_next_page:
            # An empty collection answers the first request with no cursor
            return
        elif page.end_cursor == cursor:
            reason = "cursor did not advance"
        else:
            return

        await self._emit(
            EventType.FETCH_ABORTED,
            kind,
            owner,
            repo,
            page_number=page_number,
            cursor=cursor,
            error_type="PagingStalledError",
            error_message=reason,
        )
        raise PagingStalledError(
            f"Paging stalled on {kind.collection_name} page {page_number} "
            f"of {owner}/{repo} at cursor '{cursor}': {reason}",
            kind=kind,
            page_number=page_number,
            cursor=cursor,
        )
