"""GitHub API client for reading issues/pull requests and managing labels.

This module provides an async wrapper around the GitHub APIs for:
- Fetching one page of issues or pull requests (GraphQL)
- Fetching a single issue or pull request by number (GraphQL)
- Listing repository labels (GraphQL)
- Adding and removing labels (REST)

The client performs exactly one attempt per call. Failures are classified
so callers can decide what to retry: TransientGitHubError covers transport
faults, timeouts and retryable status codes; every other GitHubAPIError is
permanent. Retrying paged reads is the job of the PagedFetcher, and label
mutations are never retried.

Source:
- src/labeler/github/models.py (Issue, PullRequest, Page)
- src/labeler/github/queries.py (GraphQL query builders)
- src/labeler/config.py (github_token, github_base_url, github_graphql_url)
"""

import logging
import time
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx

from src.labeler.github.models import (
    Issue,
    ItemKind,
    Page,
    PullRequest,
    page_from_graphql,
    record_from_graphql,
)
from src.labeler.github.queries import (
    MAX_PAGE_SIZE,
    build_item_query,
    build_page_query,
)


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class TransientGitHubError(GitHubAPIError):
    """Raised for failures that may succeed when retried.

    Covers network I/O errors, request timeouts, transport-level faults and
    the retryable HTTP status codes.
    """


class RateLimitError(TransientGitHubError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class ItemNotFoundError(GitHubAPIError):
    """Raised when a requested issue, pull request or repository does not exist."""


class GitHubClient:
    """Async GitHub API client.

    Attributes:
        token: GitHub API token (PAT or GitHub App token).
        base_url: Base URL for the GitHub REST API.
        graphql_url: URL of the GitHub GraphQL endpoint.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as client:
        ...     issue = await client.get_item(ItemKind.ISSUE, "dotnet", "runtime", 1)
        ...     await client.add_label("dotnet", "runtime", 1, "area-System.Net")
    """

    # HTTP status codes that indicate a transient failure
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        graphql_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            graphql_url: GraphQL endpoint. Defaults to "{base_url}/graphql".
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.graphql_url = graphql_url or f"{self.base_url}/graphql"
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "GitHub-ML-Labeler",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(
        self,
        exc_type: Any,
        exc_val: Any,
        exc_tb: Any,
    ) -> None:
        await self.close()

    def _parse_int_header(
        self,
        headers: httpx.Headers,
        name: str,
    ) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Raise a RateLimitError built from the response headers.

        Raises:
            RateLimitError: Always.
        """
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={
                "reset_at": reset_at,
                "retry_after": retry_after,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
                "used": self._parse_int_header(response.headers, "x-ratelimit-used"),
            },
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            response_body=response.text,
            request_url=str(response.url),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Union[Dict[str, Any], List[Any]]] = None,
    ) -> httpx.Response:
        """Make a single HTTP request and classify any failure.

        Args:
            method: HTTP method (GET, POST, DELETE).
            path: API path or absolute URL.
            json_data: Optional JSON body for the request.

        Returns:
            The successful HTTP response.

        Raises:
            TransientGitHubError: On transport faults, timeouts and
                retryable status codes (including rate limiting).
            GitHubAPIError: On any other error status.
        """
        try:
            response = await self.client.request(
                method=method,
                url=path,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "GitHub API request timed out",
                extra={"path": path, "method": method, "error": str(e)},
            )
            raise TransientGitHubError(
                message=f"Request timed out: {e}",
                request_url=path,
            ) from e
        except httpx.TransportError as e:
            logger.warning(
                "GitHub API transport error",
                extra={"path": path, "method": method, "error": str(e)},
            )
            raise TransientGitHubError(
                message=f"Transport error: {e}",
                request_url=path,
            ) from e

        if response.status_code == 403:
            remaining = self._parse_int_header(response.headers, "x-ratelimit-remaining")
            if remaining == 0:
                self._raise_rate_limit(response)

        if response.status_code == 429:
            self._raise_rate_limit(response)

        if response.status_code in self.RETRYABLE_STATUS_CODES:
            logger.warning(
                "Retryable error from GitHub API",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                },
            )
            raise TransientGitHubError(
                message=f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            )

        if response.status_code >= 400:
            error_body = response.text
            logger.error(
                "GitHub API error",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            raise GitHubAPIError(
                message=f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_body=error_body,
                request_url=str(response.url),
            )

        return response

    async def graphql(
        self,
        query: str,
        variables: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Execute a GraphQL query.

        Args:
            query: The GraphQL document.
            variables: Query variables.

        Returns:
            The "data" object of the response.

        Raises:
            ItemNotFoundError: If GraphQL reports a NOT_FOUND error.
            GitHubAPIError: If GraphQL reports any other error.
            TransientGitHubError: On transient transport failures.
        """
        response = await self._request(
            method="POST",
            path=self.graphql_url,
            json_data={"query": query, "variables": variables},
        )

        try:
            payload = response.json()
        except ValueError as e:
            raise GitHubAPIError(
                message=f"Invalid JSON in GraphQL response: {e}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            ) from e

        errors = payload.get("errors") or []
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            error_class = (
                ItemNotFoundError
                if any(error.get("type") == "NOT_FOUND" for error in errors)
                else GitHubAPIError
            )
            raise error_class(
                message=f"GraphQL error: {messages}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            )

        return payload.get("data") or {}

    async def get_items_page(
        self,
        kind: ItemKind,
        owner: str,
        repo: str,
        after: Optional[str],
        page_size: int = MAX_PAGE_SIZE,
    ) -> Page:
        """Fetch one page of issues or pull requests, newest first.

        Args:
            kind: Issues or pull requests.
            owner: Repository owner (user or organization).
            repo: Repository name.
            after: Cursor to continue from, or None for the first page.
            page_size: Requested page size, capped at the server maximum.

        Returns:
            The parsed Page.
        """
        first = max(1, min(page_size, MAX_PAGE_SIZE))

        logger.debug(
            "Fetching page",
            extra={
                "kind": kind.value,
                "owner": owner,
                "repo": repo,
                "after": after,
                "page_size": first,
            },
        )

        data = await self.graphql(
            build_page_query(kind),
            {"owner": owner, "repo": repo, "after": after, "first": first},
        )
        repository = data.get("repository")
        if repository is None:
            raise ItemNotFoundError(
                message=f"Repository {owner}/{repo} not found",
                request_url=self.graphql_url,
            )

        return page_from_graphql(kind, repository.get("result") or {})

    async def get_item(
        self,
        kind: ItemKind,
        owner: str,
        repo: str,
        number: int,
    ) -> Union[Issue, PullRequest]:
        """Fetch a single issue or pull request by number.

        Args:
            kind: Issue or pull request.
            owner: Repository owner (user or organization).
            repo: Repository name.
            number: Item number.

        Returns:
            The parsed record.

        Raises:
            ItemNotFoundError: If the item does not exist.
        """
        logger.debug(
            "Getting item details",
            extra={
                "kind": kind.value,
                "owner": owner,
                "repo": repo,
                "number": number,
            },
        )

        data = await self.graphql(
            build_item_query(kind),
            {"owner": owner, "repo": repo, "number": number},
        )
        node = (data.get("repository") or {}).get("result")
        if node is None:
            raise ItemNotFoundError(
                message=f"{kind.display_name} {owner}/{repo}#{number} not found",
                request_url=self.graphql_url,
            )

        return record_from_graphql(kind, node)

    async def add_label(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        label: str,
    ) -> List[Dict[str, Any]]:
        """Add a label to an issue or pull request.

        Pull requests use the issues API for labels since PRs are a type
        of issue.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue or pull request number to label.
            label: Label name to add.

        Returns:
            List of all labels on the item after adding.

        Raises:
            GitHubAPIError: If the request fails.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/labels"

        response = await self._request(
            method="POST",
            path=path,
            json_data={"labels": [label]},
        )

        result = response.json()
        logger.info(
            "Label '%s' added to %s/%s#%s",
            label,
            owner,
            repo,
            issue_number,
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "label": label,
                "total_labels": len(result),
            },
        )

        return result

    async def remove_label(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        label: str,
    ) -> None:
        """Remove a label from an issue or pull request.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue or pull request number.
            label: Label name to remove.

        Raises:
            GitHubAPIError: If the request fails (except 404 which is ignored).
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/labels/{quote(label, safe='')}"

        try:
            await self._request(method="DELETE", path=path)
            logger.info(
                "Label '%s' removed from %s/%s#%s",
                label,
                owner,
                repo,
                issue_number,
                extra={
                    "owner": owner,
                    "repo": repo,
                    "issue_number": issue_number,
                    "label": label,
                },
            )
        except GitHubAPIError as e:
            # 404 means label wasn't on the issue - that's fine
            if e.status_code == 404:
                logger.debug(
                    "Label not found on issue (already removed)",
                    extra={
                        "owner": owner,
                        "repo": repo,
                        "issue_number": issue_number,
                        "label": label,
                    },
                )
                return
            raise
