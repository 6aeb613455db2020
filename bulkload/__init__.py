"""
High-throughput CSV bulk loader for PostgreSQL.

Streams a delimited file through COPY into a freshly created UNLOGGED
table, with session tuning scoped to the load and all-or-nothing commits.
"""

__version__ = "1.0.0"

from .errors import (
    LoadError,
    SourceOpenError,
    SourceReadError,
    SchemaError,
    DuplicateColumnError,
    CopyError,
)
from .metrics import LoadReport
from .processor import process

__all__ = [
    "LoadError",
    "SourceOpenError",
    "SourceReadError",
    "SchemaError",
    "DuplicateColumnError",
    "CopyError",
    "LoadReport",
    "process",
]
