"""
Record source over a delimited byte stream.
Yields one record at a time; the stream is consumed once, forward-only.
"""
import csv
import io
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, List, Optional, Union

from .errors import SourceOpenError, SourceReadError
from .logger import get_logger


class _EndOfStream:
    """Sentinel returned by `RecordSource.next_record` once input is exhausted."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"

    def __bool__(self) -> bool:
        return False


END_OF_STREAM = _EndOfStream()

_READ_ERRORS = (csv.Error, OSError, UnicodeDecodeError)


class RecordSource:
    """
    Lazy CSV reader over a binary or text stream.

    The header is read with `read_header()`; every later call to
    `next_record()` returns the next non-blank record. Field counts are not
    checked against the header.
    """

    def __init__(self, stream: IO, encoding: str = "utf-8-sig", delimiter: str = ","):
        self._wrapper: Optional[io.TextIOWrapper] = None
        if isinstance(stream, io.TextIOBase):
            text = stream
        else:
            # Binary input is decoded without taking ownership of the caller's stream
            self._wrapper = io.TextIOWrapper(stream, encoding=encoding, newline="")
            text = self._wrapper

        self._reader = csv.reader(text, delimiter=delimiter)
        self._header: Optional[List[str]] = None
        self._exhausted = False
        self.records_read = 0

    @property
    def header(self) -> Optional[List[str]]:
        return self._header

    def _next_row(self) -> Optional[List[str]]:
        """Next non-blank row, or None at end of input."""
        for row in self._reader:
            if row:
                return row
        return None

    def read_header(self) -> List[str]:
        """Consume the first record and return it as field names."""
        if self._header is not None:
            return self._header

        try:
            row = self._next_row()
        except _READ_ERRORS as e:
            raise SourceReadError("Malformed header row", operation="read_header", cause=e) from e

        if row is None:
            raise SourceReadError("Input is empty, no header row", operation="read_header")

        self._header = row
        return row

    def next_record(self):
        """
        Return the next record as a list of strings, or END_OF_STREAM.

        A failed read raises SourceReadError with `record_index` set to the
        record being read. Binary input is decoded a block at a time, so an
        undecodable byte is reported at the record in progress when its block
        is decoded, which may come before the record that holds it.
        """
        if self._header is None:
            self.read_header()
        if self._exhausted:
            return END_OF_STREAM

        try:
            row = self._next_row()
        except _READ_ERRORS as e:
            self._exhausted = True
            raise SourceReadError(
                "Failed to read record",
                operation="read",
                record_index=self.records_read + 1,
                cause=e,
            ) from e

        if row is None:
            self._exhausted = True
            return END_OF_STREAM

        self.records_read += 1
        return row

    def __iter__(self) -> Iterator[List[str]]:
        while True:
            record = self.next_record()
            if record is END_OF_STREAM:
                return
            yield record

    def close(self):
        """Release the decoder; the underlying stream is left open."""
        if self._wrapper is not None:
            try:
                self._wrapper.detach()
            except ValueError:
                # Underlying stream already closed by its owner
                pass
            self._wrapper = None


@contextmanager
def open_source(
    source: Union[str, Path, IO],
    encoding: str = "utf-8-sig",
    delimiter: str = ",",
) -> Iterator[RecordSource]:
    """
    Open a record source from a path or an already-open stream.

    Paths are opened in binary mode and closed on exit; streams passed in
    by the caller stay open.
    """
    logger = get_logger()
    owned = None

    if isinstance(source, (str, Path)):
        try:
            owned = open(source, "rb")
        except OSError as e:
            raise SourceOpenError(f"Cannot open {source}", operation="open", cause=e) from e
        logger.info("CSV opened", file=Path(source).name)
        stream = owned
    else:
        if getattr(source, "closed", False):
            raise SourceOpenError("Stream is closed", operation="open")
        stream = source

    records = RecordSource(stream, encoding=encoding, delimiter=delimiter)
    try:
        yield records
    finally:
        records.close()
        if owned is not None:
            owned.close()
