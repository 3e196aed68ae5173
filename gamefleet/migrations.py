"""Applies pending SQL migration files to the database, in name order."""

from __future__ import annotations

import logging
import os
from contextlib import closing
from itertools import islice
from typing import Any, List, Optional

MIGRATIONS_DIR = "./migrations"
MAX_MIGRATIONS = 1024
MAX_SQL_LEN = 65535

CREATE_TABLE_SQL = (
    "CREATE TABLE IF NOT EXISTS _migrations("
    "   id            SERIAL PRIMARY KEY,"
    "   filename      TEXT NOT NULL UNIQUE,"
    "   applied_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()"
    ");"
)
IS_APPLIED_SQL = "SELECT 1 FROM _migrations WHERE filename = %s"
RECORD_SQL = "INSERT INTO _migrations (filename) VALUES (%s)"

_logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when migrations cannot be listed, applied or recorded."""


def list_migrations(directory: str = MIGRATIONS_DIR) -> List[str]:
    """Return the names of the .sql files in directory, sorted.

    At most MAX_MIGRATIONS files are taken, in the order the directory lists them.
    """
    try:
        names = os.listdir(directory)
    except OSError as exc:
        raise MigrationError(f"failed to open migrations dir: {directory}") from exc
    chosen = islice((name for name in names if name.endswith(".sql")), MAX_MIGRATIONS)
    return sorted(chosen)


def _rollback(conn: Any) -> None:
    rollback = getattr(conn, "rollback", None)
    if rollback is not None:
        rollback()


def _commit(conn: Any) -> None:
    commit = getattr(conn, "commit", None)
    if commit is not None:
        commit()


def _execute(conn: Any, sql: str, params: Optional[tuple] = None) -> None:
    with closing(conn.cursor()) as cursor:
        if params is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, params)


def _ensure_table(conn: Any, log: Any) -> None:
    try:
        _execute(conn, CREATE_TABLE_SQL)
        _commit(conn)
    except Exception as exc:
        _rollback(conn)
        log.error("failed to create migrations table: %s", exc)
        log.error("failed to ensure migrations table")
        raise MigrationError("failed to ensure migrations table") from exc


def _is_applied(conn: Any, filename: str) -> bool:
    try:
        with closing(conn.cursor()) as cursor:
            cursor.execute(IS_APPLIED_SQL, (filename,))
            return cursor.fetchone() is not None
    except Exception:
        _rollback(conn)
        return False


def _read_sql(path: str) -> str:
    with open(path, "rb") as handle:
        return handle.read(MAX_SQL_LEN).decode("utf-8", "replace")


def _apply(conn: Any, directory: str, filename: str, log: Any) -> None:
    path = os.path.join(directory, filename)
    try:
        sql = _read_sql(path)
    except OSError as exc:
        log.error("failed to open migration: %s", path)
        raise MigrationError(f"failed to open migration: {path}") from exc

    try:
        _execute(conn, sql)
    except Exception as exc:
        _rollback(conn)
        log.error("migration failed (%s): %s", filename, exc)
        raise MigrationError(f"migration failed ({filename}): {exc}") from exc

    try:
        _execute(conn, RECORD_SQL, (filename,))
        _commit(conn)
    except Exception as exc:
        _rollback(conn)
        log.error("failed to record migration (%s): %s", filename, exc)
        raise MigrationError(f"failed to record migration ({filename}): {exc}") from exc


def run_migrations(pool: Any, directory: str = MIGRATIONS_DIR, log: Any = None) -> int:
    """Apply every migration not yet recorded; return how many were applied.

    Stops at the first failing migration and raises MigrationError.
    """
    log = log if log is not None else _logger
    log.info("running database migrations...")
    with pool.connection() as conn:
        _ensure_table(conn, log)
        try:
            files = list_migrations(directory)
        except MigrationError:
            log.error("failed to open migrations dir: %s", directory)
            raise

        applied = 0
        for filename in files:
            if _is_applied(conn, filename):
                continue
            log.info("applying migration: %s", filename)
            _apply(conn, directory, filename, log)
            applied += 1

    if applied == 0:
        log.info("migrations: nothing to apply")
    else:
        log.info("migrations: applied %d migration(s)", applied)
    return applied