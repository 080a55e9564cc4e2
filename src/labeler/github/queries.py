"""GraphQL query builders for issues and pull requests.

Both the paged and the single-item queries select the same record fields;
pull request queries additionally select the changed file paths.
"""

from src.labeler.github.models import ItemKind


# Server-side cap on the "first" argument of a GraphQL connection
MAX_PAGE_SIZE = 100

LABELS_PER_ITEM = 25
FILES_PER_PULL_REQUEST = 100


def _record_fields(kind: ItemKind) -> str:
    files = (
        f"files (first: {FILES_PER_PULL_REQUEST}) {{ nodes {{ path }} }}"
        if kind is ItemKind.PULL_REQUEST
        else ""
    )
    return f"""
                number
                title
                body: bodyText
                createdAt
                author {{ login }}
                labels (first: {LABELS_PER_ITEM}) {{
                    nodes {{ name }}
                    pageInfo {{ hasNextPage }}
                }}
                {files}
    """


def build_page_query(kind: ItemKind) -> str:
    """Build the query for one page of issues or pull requests.

    Variables: owner, repo, after (nullable cursor), first (page size).
    Items are ordered by creation time, newest first.
    """
    return f"""
        query ($owner: String!, $repo: String!, $after: String, $first: Int!) {{
            repository (owner: $owner, name: $repo) {{
                result: {kind.collection_name} (after: $after, first: $first, orderBy: {{field: CREATED_AT, direction: DESC}}) {{
                    nodes {{ {_record_fields(kind)} }}
                    pageInfo {{
                        hasNextPage
                        endCursor
                    }}
                    totalCount
                }}
            }}
        }}
    """


def build_item_query(kind: ItemKind) -> str:
    """Build the query for a single issue or pull request by number.

    Variables: owner, repo, number.
    """
    return f"""
        query ($owner: String!, $repo: String!, $number: Int!) {{
            repository (owner: $owner, name: $repo) {{
                result: {kind.item_name} (number: $number) {{ {_record_fields(kind)} }}
            }}
        }}
    """
