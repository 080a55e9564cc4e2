"""Issue and pull request models for the labeler.

This module defines the records fetched from the GitHub GraphQL API and the
page envelope used while walking a paginated collection.

A record is one of two tagged variants sharing the same core fields
(number, title, body, labels). Pull requests additionally carry the paths
of the files they change, from which file and folder names are derived.

The models use Pydantic for validation, consistent with the rest of the
package.
"""

from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


GHOST_AUTHOR = "ghost"


class ItemKind(str, Enum):
    """Kinds of records the labeler works with.

    Attributes:
        ISSUE: A GitHub issue.
        PULL_REQUEST: A GitHub pull request.
    """

    ISSUE = "issue"
    PULL_REQUEST = "pull_request"

    @property
    def collection_name(self) -> str:
        """GraphQL connection name for a page of this kind."""
        return "issues" if self is ItemKind.ISSUE else "pullRequests"

    @property
    def item_name(self) -> str:
        """GraphQL field name for a single item of this kind."""
        return "issue" if self is ItemKind.ISSUE else "pullRequest"

    @property
    def display_name(self) -> str:
        return "Issue" if self is ItemKind.ISSUE else "Pull Request"


class _RecordBase(BaseModel):
    """Fields shared by issues and pull requests.

    Attributes:
        number: The item number within the repository.
        title: The item title.
        body: The item body as plain text.
        created_at: When the item was created, if known.
        author: Login of the author, or "ghost" for deleted accounts.
        labels: Names of the labels applied, in server order.
        has_more_labels: True when the server holds more labels than were
            fetched, meaning the label set cannot be trusted as complete.
    """

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=0)
    title: str = ""
    body: str = ""
    created_at: Optional[datetime] = None
    author: str = GHOST_AUTHOR
    labels: tuple[str, ...] = ()
    has_more_labels: bool = False

    @property
    def item_id(self) -> str:
        return f"#{self.number}"


class Issue(_RecordBase):
    """A GitHub issue."""

    kind: Literal[ItemKind.ISSUE] = ItemKind.ISSUE


class PullRequest(_RecordBase):
    """A GitHub pull request.

    File and folder names are derived from file_paths unless given
    explicitly, which is how rows read back from training data carry them.

    Attributes:
        file_paths: Repository-relative paths of the changed files.
        file_names: Base names of the changed files.
        folder_names: Directory components of the changed files,
            deduplicated in the order they are first seen.
    """

    kind: Literal[ItemKind.PULL_REQUEST] = ItemKind.PULL_REQUEST
    file_paths: tuple[str, ...] = ()
    file_names: tuple[str, ...] = ()
    folder_names: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def derive_file_and_folder_names(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("file_paths"):
            return data

        data = dict(data)
        paths = [PurePosixPath(path) for path in data["file_paths"]]
        if not data.get("file_names"):
            data["file_names"] = tuple(path.name for path in paths)
        if not data.get("folder_names"):
            folders: Dict[str, None] = {}
            for path in paths:
                for part in path.parent.parts:
                    folders.setdefault(part, None)
            data["folder_names"] = tuple(folders)
        return data


Record = Annotated[Union[Issue, PullRequest], Field(discriminator="kind")]


class Page(BaseModel):
    """One page of a cursor-paginated collection.

    Attributes:
        nodes: Records on this page, in server order.
        has_next_page: Whether the server reports a further page.
        end_cursor: Opaque continuation token for the next request.
        total_count: Size of the whole collection, when reported.
    """

    nodes: List[Record] = Field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None
    total_count: Optional[int] = None


def record_from_graphql(kind: ItemKind, node: Dict[str, Any]) -> Union[Issue, PullRequest]:
    """Build a record from a GraphQL issue or pull request node.

    Args:
        kind: Which variant the node represents.
        node: The node dictionary from the GraphQL response.

    Returns:
        The parsed Issue or PullRequest.
    """
    label_page = node.get("labels") or {}
    label_nodes = label_page.get("nodes") or []
    page_info = label_page.get("pageInfo") or {}
    author = node.get("author") or {}

    fields: Dict[str, Any] = {
        "number": node["number"],
        "title": node.get("title") or "",
        "body": node.get("body") or "",
        "created_at": node.get("createdAt"),
        "author": author.get("login") or GHOST_AUTHOR,
        "labels": tuple(label["name"] for label in label_nodes if label),
        "has_more_labels": bool(page_info.get("hasNextPage", False)),
    }

    if kind is ItemKind.PULL_REQUEST:
        file_nodes = (node.get("files") or {}).get("nodes") or []
        fields["file_paths"] = tuple(f["path"] for f in file_nodes if f)
        return PullRequest(**fields)

    return Issue(**fields)


def page_from_graphql(kind: ItemKind, connection: Dict[str, Any]) -> Page:
    """Build a Page from a GraphQL connection object.

    Args:
        kind: Which variant the connection's nodes represent.
        connection: The connection dictionary (nodes, pageInfo, totalCount).

    Returns:
        The parsed Page.
    """
    page_info = connection.get("pageInfo") or {}
    return Page(
        nodes=[record_from_graphql(kind, node) for node in connection.get("nodes") or [] if node],
        has_next_page=bool(page_info.get("hasNextPage", False)),
        end_cursor=page_info.get("endCursor"),
        total_count=connection.get("totalCount"),
    )
