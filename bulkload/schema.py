"""
Column naming and relation schema derived from the CSV header.
"""
from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

from .config import ON_DUPLICATE_ERROR, ON_DUPLICATE_SUFFIX
from .errors import DuplicateColumnError


def normalize_column_name(name: str) -> str:
    """Lowercase, with spaces and hyphens replaced by underscores."""
    return name.replace(" ", "_").replace("-", "_").lower()


@dataclass(frozen=True)
class Column:
    """One text column of the destination relation."""
    name: str
    normalized_name: str

    @classmethod
    def from_header(cls, name: str) -> "Column":
        return cls(name=name, normalized_name=normalize_column_name(name))


@dataclass(frozen=True)
class RelationSchema:
    """Ordered columns of the destination relation, all typed as text."""
    columns: Tuple[Column, ...]

    @property
    def column_names(self) -> List[str]:
        return [column.normalized_name for column in self.columns]

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)


def derive_schema(header: Sequence[str], on_duplicate: str = ON_DUPLICATE_ERROR) -> RelationSchema:
    """
    Build the relation schema from a header row.

    Blank header cells are named `column_<position>` (1-based). Two cells
    that normalize to the same name raise DuplicateColumnError, or with
    `on_duplicate="suffix"` the later ones become `name_2`, `name_3`, ...
    """
    columns = []
    seen = set()

    for position, raw_name in enumerate(header, start=1):
        column = Column.from_header(raw_name)
        if not column.normalized_name.strip("_"):
            column = Column(name=raw_name, normalized_name=f"column_{position}")

        if column.normalized_name in seen:
            if on_duplicate != ON_DUPLICATE_SUFFIX:
                raise DuplicateColumnError(
                    f"Header {raw_name!r} normalizes to duplicate column "
                    f"{column.normalized_name!r}",
                    operation="derive_schema",
                )
            base = column.normalized_name
            n = 2
            while f"{base}_{n}" in seen:
                n += 1
            column = Column(name=raw_name, normalized_name=f"{base}_{n}")

        seen.add(column.normalized_name)
        columns.append(column)

    return RelationSchema(columns=tuple(columns))
