"""Error taxonomy for spreadsheet ingestion and snapshot fetching.

Ingestion is all-or-nothing: a schema, content or I/O problem rejects the whole
file. Individual cell values never raise; they degrade to defaults instead.
"""

from __future__ import annotations


class IngestionError(ValueError):
    """Base class for every ingestion failure."""

    kind = "ingestion"


class MissingColumnError(IngestionError):
    """A required canonical column could not be resolved from the header row."""

    kind = "missing_column"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f'Required column "{field}" (or similar) not found in spreadsheet')


class EmptyDataError(IngestionError):
    """The sheet does not hold a header row plus at least one data row."""

    kind = "empty_data"


class NoValidRowsError(EmptyDataError):
    """Every data row was skipped (blank, or no owner name)."""

    kind = "no_valid_rows"


class FileReadError(IngestionError):
    """The file could not be read or is not a spreadsheet."""

    kind = "unreadable_file"


class SnapshotFetchError(RuntimeError):
    """The snapshot API could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
