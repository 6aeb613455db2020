"""
In-memory stand-in for a psycopg2 connection.

Models just enough of PostgreSQL for the loader: transactions with
snapshot/commit/rollback, aborted-transaction state, the DDL and COPY
statements the loader issues, and session run-time parameters (some of
which are rejected the way a real server rejects them).
"""
import copy
import csv
import io
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psycopg2
from psycopg2 import sql
import pytest

from bulkload.logger import StructuredLogger, set_logger


_IDENT = r'"(?:[^"]|"")*"(?:\."(?:[^"]|"")*")?'

DEFAULT_SETTINGS = {
    "synchronous_commit": "on",
    "wal_buffers": "4MB",
    "checkpoint_completion_target": "0.9",
    "maintenance_work_mem": "64MB",
    "work_mem": "4MB",
    "shared_buffers": "128MB",
    "effective_cache_size": "4GB",
    "fsync": "on",
}

# Parameters a session may read but not change
SERVER_LEVEL = {"wal_buffers", "shared_buffers", "fsync", "checkpoint_completion_target"}


def render(query) -> str:
    """Render a psycopg2.sql composable without a live connection."""
    if isinstance(query, str):
        return query
    if isinstance(query, sql.Composed):
        return "".join(render(part) for part in query.seq)
    if isinstance(query, sql.Identifier):
        return ".".join('"' + s.replace('"', '""') + '"' for s in query.strings)
    if isinstance(query, sql.SQL):
        return query.string
    if isinstance(query, sql.Literal):
        return repr(query.wrapped)
    raise TypeError(f"Cannot render {query!r}")


def unquote(ident: str) -> str:
    parts = re.findall(r'"((?:[^"]|"")*)"', ident)
    return ".".join(part.replace('""', '"') for part in parts)


@dataclass
class FakeTable:
    columns: List[str]
    unlogged: bool = False
    rows: List[tuple] = field(default_factory=list)


class FakeDatabase:
    """Committed server state shared by every connection."""

    def __init__(self):
        self.tables: Dict[str, FakeTable] = {}
        self.statements: List[str] = []
        self.fail_on: Dict[str, Exception] = {}
        self.fail_commit = False
        self.disconnect_on: Optional[str] = None
        self.copy_reads = 0

    def connect(self) -> "FakeConnection":
        return FakeConnection(self)

    def rows(self, name: str) -> List[tuple]:
        return self.tables[name].rows


class FakeConnection:

    def __init__(self, db: FakeDatabase):
        self.db = db
        self.closed = 0
        self.settings = dict(DEFAULT_SETTINGS)
        self._autocommit = False
        self._work: Optional[Dict[str, FakeTable]] = None
        self._aborted = False
        self.commits = 0
        self.rollbacks = 0

    @property
    def in_transaction(self) -> bool:
        return self._work is not None

    @property
    def autocommit(self) -> bool:
        return self._autocommit

    @autocommit.setter
    def autocommit(self, value: bool):
        if self.closed:
            raise psycopg2.InterfaceError("connection already closed")
        if self.in_transaction:
            raise psycopg2.ProgrammingError("set_session cannot be used inside a transaction")
        self._autocommit = value

    def cursor(self) -> "FakeCursor":
        return FakeCursor(self)

    def tables(self) -> Dict[str, FakeTable]:
        """Tables visible to this connection, opening a transaction if needed."""
        if self._autocommit:
            return self.db.tables
        if self._work is None:
            self._work = copy.deepcopy(self.db.tables)
        return self._work

    def check_usable(self):
        if self.closed:
            raise psycopg2.InterfaceError("connection already closed")
        if self._aborted:
            raise psycopg2.InternalError(
                "current transaction is aborted, commands ignored until end of transaction block"
            )

    def fail(self, error: Exception):
        if not self._autocommit:
            self._aborted = True
        raise error

    def commit(self):
        if self.db.fail_commit:
            raise psycopg2.OperationalError("could not commit: server closed the connection")
        if self._work is not None and not self._aborted:
            self.db.tables = self._work
            self.commits += 1
        self._work = None
        self._aborted = False

    def rollback(self):
        if self.closed:
            raise psycopg2.InterfaceError("connection already closed")
        self._work = None
        self._aborted = False
        self.rollbacks += 1

    def close(self):
        self._work = None
        self.closed = 1


class FakeCursor:

    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self._result = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def fetchone(self):
        return self._result

    def execute(self, query, params=None):
        conn = self.conn
        conn.check_usable()
        text = render(query)
        conn.db.statements.append(text)
        tables = conn.tables()

        if conn.db.disconnect_on and conn.db.disconnect_on in text:
            conn._work = None
            conn.closed = 2
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

        for needle, error in conn.db.fail_on.items():
            if needle in text:
                conn.fail(error)

        if text == "SELECT version()":
            self._result = ("PostgreSQL 15.4 (fake)",)
            return

        if text.startswith("SELECT current_setting("):
            name = params[0]
            if name not in conn.settings:
                conn.fail(psycopg2.ProgrammingError(f'unrecognized configuration parameter "{name}"'))
            self._result = (conn.settings[name],)
            return

        if text.startswith("SELECT set_config("):
            name, value = params[0], params[1]
            if name not in conn.settings:
                conn.fail(psycopg2.ProgrammingError(f'unrecognized configuration parameter "{name}"'))
            if name in SERVER_LEVEL:
                conn.fail(psycopg2.OperationalError(f'parameter "{name}" cannot be changed now'))
            conn.settings[name] = value
            self._result = (value,)
            return

        match = re.fullmatch(rf"DROP TABLE IF EXISTS ({_IDENT})", text)
        if match:
            tables.pop(unquote(match.group(1)), None)
            return

        match = re.fullmatch(rf"CREATE UNLOGGED TABLE ({_IDENT}) \((.*)\)", text, re.S)
        if match:
            name = unquote(match.group(1))
            columns = [unquote(c) for c in re.findall(rf"({_IDENT}) text", match.group(2))]
            if name in tables:
                conn.fail(psycopg2.ProgrammingError(f'relation "{name}" already exists'))
            for column in columns:
                if columns.count(column) > 1:
                    conn.fail(psycopg2.ProgrammingError(f'column "{column}" specified more than once'))
            tables[name] = FakeTable(columns=columns, unlogged=True)
            return

        if text == "SELECT to_regclass(%s) IS NOT NULL":
            self._result = (unquote(params[0]) in tables,)
            return

        match = re.fullmatch(rf"SELECT count\(\*\) FROM ({_IDENT})", text)
        if match:
            self._result = (len(tables[unquote(match.group(1))].rows),)
            return

        raise AssertionError(f"Unexpected statement: {text}")

    def copy_expert(self, query, file, size=8192):
        conn = self.conn
        conn.check_usable()
        text = render(query)
        conn.db.statements.append(text)
        tables = conn.tables()

        match = re.fullmatch(rf"COPY ({_IDENT}) \((.*)\) FROM STDIN WITH \(FORMAT csv\)", text)
        assert match, f"Unexpected COPY: {text}"
        name = unquote(match.group(1))
        columns = [unquote(c) for c in re.findall(_IDENT, match.group(2))]

        if name not in tables:
            conn.fail(psycopg2.ProgrammingError(f'relation "{name}" does not exist'))
        table = tables[name]

        chunks = []
        while True:
            try:
                chunk = file.read(size)
            except Exception:
                conn.fail(psycopg2.extensions.QueryCanceledError(
                    "COPY from stdin failed: error in .read() call"
                ))
            conn.db.copy_reads += 1
            assert len(chunk) <= size
            if not chunk:
                break
            chunks.append(chunk)

        for line, row in enumerate(csv.reader(io.StringIO("".join(chunks))), start=1):
            if len(row) != len(columns):
                problem = "extra data after last expected column" if len(row) > len(columns) \
                    else f'missing data for column "{columns[len(row)]}"'
                conn.fail(psycopg2.DataError(
                    f"{problem}\nCONTEXT:  COPY {name}, line {line}: \"{','.join(row)}\"\n"
                ))
            by_name = dict(zip(columns, row))
            table.rows.append(tuple(by_name.get(column) for column in table.columns))


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def conn(fake_db) -> FakeConnection:
    return fake_db.connect()


@pytest.fixture
def log_output():
    """Route the global logger into buffers; yields (stdout, stderr)."""
    out, err = io.StringIO(), io.StringIO()
    set_logger(StructuredLogger(show_timestamp=False, out=out, err=err))
    yield out, err
    set_logger(None)


@pytest.fixture(autouse=True)
def _quiet_logger(request):
    if "log_output" in request.fixturenames:
        yield
        return
    set_logger(StructuredLogger(show_timestamp=False, out=io.StringIO(), err=io.StringIO()))
    yield
    set_logger(None)
