"""Training data files.

Eligible records are exported as tab-separated files with a header row, one
line per record:

    Number  Label  Title  Body                              (issues)
    Number  Label  Title  Body  FileNames  FolderNames      (pull requests)

Tabs, carriage returns and newlines inside text are replaced by a space and
double quotes by a backtick, so a line can always be split on tabs. File and
folder name lists are space-joined.
"""

import logging
from pathlib import Path
from typing import IO, Iterable, Iterator, Optional, Tuple, Union

from src.labeler.github.models import Issue, ItemKind, PullRequest


logger = logging.getLogger(__name__)


ISSUE_COLUMNS = ("Number", "Label", "Title", "Body")
PULL_REQUEST_COLUMNS = ISSUE_COLUMNS + ("FileNames", "FolderNames")

FLUSH_EVERY = 100

_SANITIZE_TABLE = str.maketrans({"\r": " ", "\n": " ", "\t": " ", '"': "`"})


def sanitize_text(text: str) -> str:
    return text.translate(_SANITIZE_TABLE)


def sanitize_text_list(texts: Iterable[str]) -> str:
    return " ".join(sanitize_text(text) for text in texts)


def columns_for(kind: ItemKind) -> Tuple[str, ...]:
    return ISSUE_COLUMNS if kind is ItemKind.ISSUE else PULL_REQUEST_COLUMNS


def format_issue_record(issue: Issue, label: str) -> str:
    return "\t".join(
        [
            str(issue.number),
            sanitize_text(label),
            sanitize_text(issue.title),
            sanitize_text(issue.body),
        ]
    )


def format_pull_request_record(pull_request: PullRequest, label: str) -> str:
    return "\t".join(
        [
            str(pull_request.number),
            sanitize_text(label),
            sanitize_text(pull_request.title),
            sanitize_text(pull_request.body),
            sanitize_text_list(pull_request.file_names),
            sanitize_text_list(pull_request.folder_names),
        ]
    )


def format_record(record: Union[Issue, PullRequest], label: str) -> str:
    if isinstance(record, PullRequest):
        return format_pull_request_record(record, label)
    return format_issue_record(record, label)


class TrainingDataWriter:
    """Writes eligible records of one kind to a TSV file.

    The parent directory is created if needed and the header is written on
    open. Output is flushed every 100 rows so a long download leaves usable
    data behind if it is interrupted.

    Example:
        >>> with TrainingDataWriter(Path("data/issues.tsv"), ItemKind.ISSUE) as writer:
        ...     writer.write(issue, "area-System.Net")
    """

    def __init__(self, path: Path, kind: ItemKind):
        self.path = Path(path)
        self.kind = kind
        self.rows_written = 0
        self._file: Optional[IO[str]] = None

    def open(self) -> "TrainingDataWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("w", encoding="utf-8", newline="\n")
        self._file.write("\t".join(columns_for(self.kind)) + "\n")
        logger.info(
            "%s data path: %s",
            self.kind.display_name,
            self.path,
            extra={"kind": self.kind.value, "path": str(self.path)},
        )
        return self

    def write(self, record: Union[Issue, PullRequest], label: str) -> None:
        """Append one record.

        Raises:
            RuntimeError: If the writer is not open.
            ValueError: If the record kind does not match the file.
        """
        if self._file is None:
            raise RuntimeError("TrainingDataWriter is not open")
        if record.kind is not self.kind:
            raise ValueError(
                f"Cannot write a {record.kind.value} to a {self.kind.value} file"
            )

        self._file.write(format_record(record, label) + "\n")
        self.rows_written += 1

        if self.rows_written % FLUSH_EVERY == 0:
            self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "TrainingDataWriter":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def read_training_data(
    path: Path,
    kind: ItemKind,
    limit: Optional[int] = None,
) -> Iterator[Tuple[int, Union[Issue, PullRequest]]]:
    """Read records back from a training data file.

    Each record carries the file's label as its only label. Columns are
    located by the header row; malformed lines are logged and skipped.

    Args:
        path: The TSV file.
        kind: Which kind of records the file holds.
        limit: Maximum number of data rows to read.

    Yields:
        (row_number, record), where row_number counts data rows from 1.

    Raises:
        ValueError: If the header lacks a required column.
    """
    required = columns_for(kind)

    with Path(path).open("r", encoding="utf-8") as handle:
        header = handle.readline().rstrip("\r\n").split("\t")
        missing = [column for column in required if column not in header]
        if missing:
            raise ValueError(
                f"{path} is missing column(s) {', '.join(missing)} for {kind.value} data"
            )
        index = {column: header.index(column) for column in required}

        row_number = 0
        for line in handle:
            if limit is not None and row_number >= limit:
                break

            line = line.rstrip("\r\n")
            if not line:
                continue

            row_number += 1
            parts = line.split("\t")
            if len(parts) < len(header):
                logger.warning(
                    "Skipping malformed row %d in %s",
                    row_number,
                    path,
                    extra={"row_number": row_number, "columns": len(parts)},
                )
                continue

            try:
                number = int(parts[index["Number"]])
            except ValueError:
                number = row_number

            fields = {
                "number": number,
                "title": parts[index["Title"]],
                "body": parts[index["Body"]],
                "labels": (parts[index["Label"]],),
            }

            if kind is ItemKind.PULL_REQUEST:
                yield row_number, PullRequest(
                    file_names=tuple(parts[index["FileNames"]].split()),
                    folder_names=tuple(parts[index["FolderNames"]].split()),
                    **fields,
                )
            else:
                yield row_number, Issue(**fields)
