"""
Destination relation preparation and session tuning for bulk loads.

The relation is dropped and recreated as an UNLOGGED table of text
columns. Tuning is applied per setting, best-effort, and restored when
the load session ends.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as Connection

from .config import MSG_RESTORED, MSG_TUNED, PROFILE_AGGRESSIVE, PROFILE_SESSION
from .errors import SchemaError
from .logger import get_logger
from .schema import RelationSchema


@dataclass(frozen=True)
class TuningSetting:
    """A single run-time parameter change, applied independently of the others."""
    parameter: str
    value: str


# Parameters a regular session is allowed to change
SESSION_TUNING: Tuple[TuningSetting, ...] = (
    TuningSetting("synchronous_commit", "off"),
    TuningSetting("maintenance_work_mem", "1GB"),
    TuningSetting("work_mem", "512MB"),
    TuningSetting("effective_cache_size", "2GB"),
)

# Full list; server-level parameters are rejected by PostgreSQL at session
# level and end up in TuningReport.skipped
AGGRESSIVE_TUNING: Tuple[TuningSetting, ...] = (
    TuningSetting("synchronous_commit", "off"),
    TuningSetting("wal_buffers", "128MB"),
    TuningSetting("checkpoint_segments", "64"),
    TuningSetting("checkpoint_completion_target", "0.9"),
    TuningSetting("maintenance_work_mem", "1GB"),
    TuningSetting("work_mem", "512MB"),
    TuningSetting("shared_buffers", "512MB"),
    TuningSetting("effective_cache_size", "2GB"),
    TuningSetting("fsync", "off"),
)


def tuning_for_profile(profile: str) -> Tuple[TuningSetting, ...]:
    if profile == PROFILE_AGGRESSIVE:
        return AGGRESSIVE_TUNING
    if profile == PROFILE_SESSION:
        return SESSION_TUNING
    return ()


@dataclass
class TuningReport:
    """Outcome of a tuning pass: applied settings with their prior values, and skips."""
    applied: List[Tuple[TuningSetting, str]] = field(default_factory=list)
    skipped: List[Tuple[TuningSetting, str]] = field(default_factory=list)

    @property
    def applied_parameters(self) -> List[str]:
        return [setting.parameter for setting, _ in self.applied]

    @property
    def skipped_parameters(self) -> List[str]:
        return [setting.parameter for setting, _ in self.skipped]


def relation_identifier(name: str) -> sql.Identifier:
    """Quote `table` or `schema.table` as an identifier."""
    parts = name.split(".")
    if not all(parts):
        raise ValueError(f"Invalid relation name: {name!r}")
    return sql.Identifier(*parts)


@contextmanager
def _autocommit(conn: Connection) -> Iterator[Connection]:
    """Run statements outside any transaction so one failure doesn't abort the rest."""
    previous = conn.autocommit
    conn.autocommit = True
    try:
        yield conn
    finally:
        if not conn.closed:
            conn.autocommit = previous


def _rollback(conn: Connection):
    if conn.closed:
        return
    try:
        conn.rollback()
    except psycopg2.Error as e:
        get_logger().error("Rollback failed", error=str(e).strip())


def prepare_relation(conn: Connection, name: str, schema: RelationSchema):
    """
    Drop `name` if it exists and create it as an UNLOGGED table of text columns.

    Both statements commit together before the copy transaction starts.
    Raises SchemaError if the destination rejects either one.
    """
    logger = get_logger()
    table = relation_identifier(name)

    drop_sql = sql.SQL("DROP TABLE IF EXISTS {}").format(table)
    create_sql = sql.SQL("CREATE UNLOGGED TABLE {} ({})").format(
        table,
        sql.SQL(", ").join(
            sql.SQL("{} text").format(sql.Identifier(column))
            for column in schema.column_names
        ),
    )

    logger.info("Creating UNLOGGED table", table=name, columns=len(schema))

    previous = conn.autocommit
    conn.autocommit = False
    operation = "drop"
    try:
        with conn.cursor() as cur:
            cur.execute(drop_sql)
            operation = "create"
            cur.execute(create_sql)
        conn.commit()
    except psycopg2.Error as e:
        _rollback(conn)
        logger.error(f"Error during {operation} of table", table=name, error=str(e).strip())
        raise SchemaError(f"Destination rejected {operation} of {name}", operation=operation, cause=e) from e
    finally:
        if not conn.closed:
            conn.autocommit = previous


def tune_for_bulk_load(
    conn: Connection,
    settings: Sequence[TuningSetting] = AGGRESSIVE_TUNING,
) -> TuningReport:
    """
    Apply each setting for the rest of the session, best-effort.

    A rejected setting is logged and skipped; it never fails the load.
    """
    logger = get_logger()
    report = TuningReport()
    if not settings:
        return report

    with _autocommit(conn):
        with conn.cursor() as cur:
            for setting in settings:
                try:
                    cur.execute("SELECT current_setting(%s)", (setting.parameter,))
                    prior = cur.fetchone()[0]
                    cur.execute(
                        "SELECT set_config(%s, %s, false)",
                        (setting.parameter, setting.value),
                    )
                except psycopg2.Error as e:
                    reason = str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__
                    report.skipped.append((setting, reason))
                    logger.debug("Tuning skipped", parameter=setting.parameter, reason=reason)
                    continue
                report.applied.append((setting, prior))

    logger.info(
        MSG_TUNED,
        applied=",".join(report.applied_parameters) or "-",
        skipped=len(report.skipped),
    )
    return report


def restore_settings(conn: Connection, report: TuningReport):
    """Put every applied parameter back to the value it had before tuning."""
    logger = get_logger()
    if not report.applied:
        return
    if conn.closed:
        logger.warning("Connection closed, session settings not restored")
        return

    restored = 0
    try:
        with _autocommit(conn):
            with conn.cursor() as cur:
                for setting, prior in reversed(report.applied):
                    try:
                        cur.execute(
                            "SELECT set_config(%s, %s, false)",
                            (setting.parameter, prior),
                        )
                        restored += 1
                    except psycopg2.Error as e:
                        logger.warning(
                            "Could not restore setting",
                            parameter=setting.parameter,
                            error=str(e).strip(),
                        )
    except psycopg2.Error as e:
        logger.error("Settings restore failed", error=str(e).strip())
        return

    logger.info(MSG_RESTORED, count=restored)


@contextmanager
def bulk_load_session(
    conn: Connection,
    settings: Sequence[TuningSetting] = AGGRESSIVE_TUNING,
    restore: bool = True,
) -> Iterator[TuningReport]:
    """Tune `conn` for the duration of the block, restoring prior values on exit."""
    report = tune_for_bulk_load(conn, settings)
    try:
        yield report
    finally:
        if restore:
            restore_settings(conn, report)


def relation_exists(conn: Connection, name: str) -> bool:
    with conn.cursor() as cur:
        cur.execute("SELECT to_regclass(%s) IS NOT NULL", (_regclass_name(name),))
        return bool(cur.fetchone()[0])


def count_rows(conn: Connection, name: str) -> Optional[int]:
    """Row count of `name`, or None if the relation does not exist."""
    if not relation_exists(conn, name):
        return None
    with conn.cursor() as cur:
        cur.execute(sql.SQL("SELECT count(*) FROM {}").format(relation_identifier(name)))
        return cur.fetchone()[0]


def _regclass_name(name: str) -> str:
    # to_regclass parses its argument, so each part is double-quoted to keep its case
    return ".".join('"' + part.replace('"', '""') + '"' for part in name.split("."))
