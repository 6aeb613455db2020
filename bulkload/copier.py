"""
Bulk copy engine: streams records into PostgreSQL through COPY FROM STDIN.

Records are pulled lazily by psycopg2 via a file-like adapter, so the
input is never materialized. The copy runs inside a single transaction:
either every record is committed or none is.
"""
import csv
import io
import re
import time
from typing import Callable, Iterable, List, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as Connection

from .config import DEFAULT_PROGRESS_INTERVAL, MSG_COPY_START, MSG_ROLLBACK
from .errors import CopyError, SourceReadError
from .logger import get_logger
from .metrics import LoadReport, ProgressCounter
from .relation import relation_identifier
from .schema import RelationSchema

# Server error context for a rejected row, e.g. "COPY people, line 3: ..."
_COPY_LINE_RE = re.compile(r"COPY [^,]+, line (\d+)")


class CopyStream:
    """
    File-like view over a record iterator, read by `cursor.copy_expert`.

    Each `read(size)` pulls just enough records to fill `size` characters
    of CSV. The first exception raised by the source is kept in `failure`
    because psycopg2 replaces it with its own error.
    """

    def __init__(self, records: Iterable[List[str]], counter: ProgressCounter):
        self._records = iter(records)
        self._counter = counter
        self._buffer = io.StringIO()
        # Quote everything so empty fields load as '' rather than NULL
        self._writer = csv.writer(self._buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        self._pending = ""
        self.exhausted = False
        self.failure: Optional[BaseException] = None
        self.logger = get_logger()

    @property
    def count(self) -> int:
        return self._counter.count

    def _pull(self) -> bool:
        """Encode one more record into the pending text; False at end of input."""
        try:
            record = next(self._records)
        except StopIteration:
            self.exhausted = True
            return False
        except Exception as e:
            self.failure = e
            raise

        self._writer.writerow(record)
        self._pending += self._buffer.getvalue()
        self._buffer.seek(0)
        self._buffer.truncate()

        if self._counter.increment():
            self.logger.progress(
                f"COPY: {self._counter.count:,} lines",
                rate=f"{self._counter.rate():,.0f} lines/sec",
            )
        return True

    def read(self, size: int = -1) -> str:
        if size is None or size < 0:
            while self._pull():
                pass
        else:
            while len(self._pending) < size and not self.exhausted:
                self._pull()

        if size is None or size < 0 or size >= len(self._pending):
            chunk, self._pending = self._pending, ""
        else:
            chunk, self._pending = self._pending[:size], self._pending[size:]
        return chunk


class LoadTransaction:
    """
    Single transaction around the copy.
    Commits on clean exit, rolls back on any exception.
    """

    def __init__(self, conn: Connection):
        self.conn = conn
        self.logger = get_logger()
        self.committed = False

    def __enter__(self):
        self._previous_autocommit = self.conn.autocommit
        self.conn.autocommit = False
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self.rollback()
                return False

            try:
                self.conn.commit()
            except psycopg2.Error as e:
                self.logger.error("Commit failed, rolling back", error=str(e).strip())
                self.rollback()
                raise CopyError("Commit failed", operation="commit", cause=e) from e

            self.committed = True
            return False
        finally:
            if not self.conn.closed:
                self.conn.autocommit = self._previous_autocommit

    def rollback(self):
        self.logger.warning(MSG_ROLLBACK)
        if self.conn.closed:
            # The server discards an uncommitted transaction with the connection
            return
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            self.logger.error("Rollback failed", error=str(e).strip())


def build_copy_sql(relation_name: str, schema: RelationSchema) -> sql.Composed:
    return sql.SQL("COPY {} ({}) FROM STDIN WITH (FORMAT csv)").format(
        relation_identifier(relation_name),
        sql.SQL(", ").join(sql.Identifier(name) for name in schema.column_names),
    )


def _server_record_index(error: Exception) -> Optional[int]:
    diag = getattr(error, "diag", None)
    context = getattr(diag, "context", None) or str(error)
    match = _COPY_LINE_RE.search(context)
    return int(match.group(1)) if match else None


def _copy_error(error: Exception, stream: CopyStream, relation_name: str) -> CopyError:
    """Wrap the first underlying failure of a copy."""
    if stream.failure is not None:
        failure = stream.failure
        index = failure.record_index if isinstance(failure, SourceReadError) else stream.count + 1
        return CopyError(
            f"Error reading line {index}",
            operation="read",
            record_index=index,
            cause=failure,
        )

    index = _server_record_index(error)
    if index is not None:
        return CopyError(f"Error copying line {index}", operation="copy", record_index=index, cause=error)
    if stream.exhausted:
        return CopyError(f"Error finalizing COPY into {relation_name}", operation="finalize", cause=error)
    return CopyError(f"Error copying into {relation_name}", operation="copy", cause=error)


def load(
    conn: Connection,
    relation_name: str,
    schema: RelationSchema,
    records: Iterable[List[str]],
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    chunk_size: int = 8192,
    clock: Callable[[], float] = time.perf_counter,
) -> LoadReport:
    """
    Stream every record into `relation_name` in one transaction.

    Args:
        conn: Destination connection, idle (no open transaction)
        relation_name: Target table, optionally schema-qualified
        schema: Columns to copy into, in record field order
        records: Lazy record sequence, consumed once
        progress_interval: Records between progress lines
        chunk_size: Characters handed to the server per read

    Returns:
        LoadReport with the number of records committed

    Raises:
        CopyError: on any read, copy, finalize or commit failure; nothing
            is committed in that case
    """
    logger = get_logger()
    counter = ProgressCounter(progress_interval, clock)
    stream = CopyStream(records, counter)
    copy_sql = build_copy_sql(relation_name, schema)

    logger.info(MSG_COPY_START, table=relation_name)

    try:
        with LoadTransaction(conn):
            with conn.cursor() as cur:
                cur.copy_expert(copy_sql, stream, size=chunk_size)
    except CopyError:
        raise
    except Exception as e:
        wrapped = _copy_error(e, stream, relation_name)
        logger.error(str(wrapped))
        raise wrapped from (stream.failure or e)

    report = LoadReport(
        relation_name=relation_name,
        record_count=counter.count,
        elapsed=counter.elapsed(),
    )
    logger.success(report.format_summary())
    return report
