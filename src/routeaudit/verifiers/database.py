from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from routeaudit.config import DatabaseSettings
from routeaudit.domain.models import DatabaseConnectionInfo, TableCheck
from routeaudit.domain.results import Err, Ok, Outcome

logger = logging.getLogger(__name__)


def build_engine(cfg: DatabaseSettings) -> Engine:
    url = make_url(cfg.url)
    if url.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": cfg.connect_timeout}
    else:
        connect_args = {"connect_timeout": cfg.connect_timeout}
    return create_engine(url, connect_args=connect_args)


class SQLDatabaseVerifier:
    """Connectivity and schema checks against the backend database."""

    def __init__(self, cfg: DatabaseSettings, engine: Optional[Engine] = None) -> None:
        self.cfg = cfg
        self._engine = engine

    @property
    def engine(self) -> Engine:
        # created lazily so a skipped database step never opens a connection
        if self._engine is None:
            self._engine = build_engine(self.cfg)
        return self._engine

    def verify_connection(self) -> Outcome[DatabaseConnectionInfo]:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                version = conn.dialect.server_version_info
        except SQLAlchemyError as exc:
            logger.error("Database connection failed: %s", exc)
            return Err(f"Database connection failed: {exc}")

        info = DatabaseConnectionInfo(
            connected=True,
            dialect=self.engine.dialect.name,
            database=self.engine.url.database,
            server_version=".".join(str(p) for p in version) if version else None,
        )
        logger.info("Database connection verified (%s)", info.dialect)
        return Ok(info)

    def verify_tables(self) -> Outcome[TableCheck]:
        try:
            tables = sorted(inspect(self.engine).get_table_names())
        except SQLAlchemyError as exc:
            logger.error("Table inspection failed: %s", exc)
            return Err(f"Table inspection failed: {exc}")

        expected = list(self.cfg.expected_tables)
        present = set(tables)
        check = TableCheck(
            tables=tables,
            expected=expected,
            missing=[t for t in expected if t not in present],
            extra=[t for t in tables if expected and t not in expected],
        )
        if check.missing:
            logger.warning("Missing tables: %s", ", ".join(check.missing))
        logger.info("Found %d tables", len(tables))
        return Ok(check)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
