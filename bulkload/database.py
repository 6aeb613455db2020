"""
Dedicated destination connection for a single load.

Tuning changes session state, so a load gets its own connection rather
than one shared with other work.
"""
from typing import Optional

import psycopg2
from psycopg2.extensions import connection as Connection

from .config import ERR_CONNECTION_FAILED, MSG_CONNECTING_DB, LoadConfig
from .logger import get_logger


class DatabaseManager:
    """Owns one load-exclusive PostgreSQL connection."""

    def __init__(self, config: LoadConfig):
        self.config = config
        self.logger = get_logger()
        self._conn: Optional[Connection] = None

    @property
    def connection(self) -> Connection:
        """Open the connection on first use."""
        if self._conn is None or self._conn.closed:
            self.logger.debug(MSG_CONNECTING_DB)
            try:
                self._conn = psycopg2.connect(
                    self.config.database_url,
                    connect_timeout=self.config.db_connect_timeout,
                )
            except psycopg2.Error as e:
                self.logger.error(ERR_CONNECTION_FAILED, error=str(e).strip())
                raise
            self._conn.autocommit = True
        return self._conn

    def test_connection(self) -> bool:
        """Test database connection."""
        try:
            version = self.server_version()
            self.logger.info("Database connected", version=version[:50])
            return True
        except psycopg2.Error as e:
            self.logger.error("Database connection failed", error=str(e).strip())
            return False

    def server_version(self) -> str:
        with self.connection.cursor() as cur:
            cur.execute("SELECT version()")
            return cur.fetchone()[0]

    def close(self):
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            self.logger.debug("Database connection closed")
        self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
