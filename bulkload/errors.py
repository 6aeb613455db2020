"""
Error taxonomy for bulk loads.

Every error is fatal to the current load and carries the operation that
failed and, for row-level failures, the 1-based record index.
"""
from typing import Optional


class LoadError(Exception):
    """Base class for all load failures."""

    def __init__(
        self,
        message: str,
        operation: str,
        record_index: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.record_index = record_index
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        text = f"{self.operation}: {self.args[0]}"
        if self.record_index is not None:
            text += f" (record {self.record_index})"
        if self.cause is not None:
            text += f": {self.cause}"
        return text


class SourceOpenError(LoadError):
    """The input stream could not be opened."""


class SourceReadError(LoadError):
    """The header is missing or the input is malformed."""


class SchemaError(LoadError):
    """The destination rejected the drop/create DDL."""


class DuplicateColumnError(SchemaError):
    """Two header cells normalize to the same column name."""


class CopyError(LoadError):
    """Failure while streaming, finalizing or committing the COPY."""
