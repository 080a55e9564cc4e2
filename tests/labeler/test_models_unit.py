"""Unit tests for issue, pull request and page models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from src.labeler.github.models import (
    GHOST_AUTHOR,
    Issue,
    ItemKind,
    PullRequest,
    Record,
    page_from_graphql,
    record_from_graphql,
)


class TestItemKind:
    def test_graphql_names(self):
        assert ItemKind.ISSUE.collection_name == "issues"
        assert ItemKind.PULL_REQUEST.collection_name == "pullRequests"
        assert ItemKind.PULL_REQUEST.item_name == "pullRequest"
        assert ItemKind.PULL_REQUEST.display_name == "Pull Request"


class TestRecords:
    def test_records_are_frozen(self):
        issue = Issue(number=1)

        with pytest.raises(ValidationError):
            issue.title = "changed"

    def test_negative_number_rejected(self):
        with pytest.raises(ValidationError):
            Issue(number=-1)

    def test_file_and_folder_names_derived_from_paths(self):
        pull = PullRequest(
            number=1,
            file_paths=("src/a/b.cs", "src/a/c.cs", "README.md", "docs/a/d.md"),
        )

        assert pull.file_names == ("b.cs", "c.cs", "README.md", "d.md")
        assert pull.folder_names == ("src", "a", "docs")

    def test_explicit_names_kept_without_paths(self):
        pull = PullRequest(number=1, file_names=("x.cs",), folder_names=("src",))

        assert pull.file_paths == ()
        assert pull.file_names == ("x.cs",)

    def test_discriminated_union(self):
        adapter = TypeAdapter(Record)

        record = adapter.validate_python({"kind": "pull_request", "number": 3})

        assert isinstance(record, PullRequest)


class TestGraphQLParsing:
    def test_deleted_author_becomes_ghost(self):
        issue = record_from_graphql(ItemKind.ISSUE, {"number": 1, "author": None})

        assert issue.author == GHOST_AUTHOR
        assert issue.labels == ()
        assert issue.has_more_labels is False

    def test_label_overflow_flag(self):
        issue = record_from_graphql(
            ItemKind.ISSUE,
            {
                "number": 1,
                "labels": {"pageInfo": {"hasNextPage": True}, "nodes": [{"name": "area-a"}]},
            },
        )

        assert issue.has_more_labels is True

    def test_page_parsing_skips_null_nodes(self):
        page = page_from_graphql(
            ItemKind.ISSUE,
            {
                "totalCount": 2,
                "pageInfo": {"hasNextPage": False, "endCursor": "xyz"},
                "nodes": [{"number": 2}, None],
            },
        )

        assert [n.number for n in page.nodes] == [2]
        assert page.end_cursor == "xyz"
        assert page.total_count == 2
