"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
from psycopg2 import errors, extras, pool, sql

from leadharvest.core.config import ConfigError, Settings, get_settings

logger = logging.getLogger(__name__)

RESULTS_TABLE = "business_results"
SESSIONS_TABLE = "search_sessions"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS search_sessions (
    id BIGSERIAL PRIMARY KEY,
    search_term TEXT NOT NULL,
    location TEXT NOT NULL,
    last_retrieved_count INTEGER NOT NULL DEFAULT 0,
    updated_index INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (search_term, location)
);

CREATE TABLE IF NOT EXISTS business_results (
    id BIGSERIAL PRIMARY KEY,
    business_name TEXT NOT NULL,
    company_type TEXT,
    rating NUMERIC(2, 1),
    reviews INTEGER,
    address TEXT NOT NULL,
    phone_number TEXT NOT NULL,
    website TEXT,
    url TEXT NOT NULL UNIQUE,
    email TEXT,
    instagram TEXT,
    linkedin TEXT,
    facebook TEXT,
    search_session_id BIGINT REFERENCES search_sessions (id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS business_results_session_created_idx
    ON business_results (search_session_id, created_at DESC);
"""


class StoreError(RuntimeError):
    """Raised when the durable store rejects a write for a non-duplicate reason."""


@dataclass(frozen=True)
class InsertResult:
    success: bool
    is_duplicate: bool = False
    error: Optional[str] = None
    row: Optional[Dict[str, Any]] = None


def _where_clause(filters: Dict[str, Any]) -> sql.Composable:
    if not filters:
        return sql.SQL("")
    conditions = [
        sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(column))
        for column in filters
    ]
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions)


class PostgresStore:
    """Store capability backed by a PostgreSQL connection pool.

    Each instance owns its pool; callers pass the store to the components that
    need it instead of reaching for a module-level client.
    """

    def __init__(self, connection_pool) -> None:
        self._pool = connection_pool

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        minconn: int = 1,
        maxconn: int = 5,
    ) -> "PostgresStore":
        settings = settings or get_settings()
        if not settings.database_url:
            raise ConfigError("DATABASE_URL is required for database connections")
        connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
        return cls(connection_pool)

    @contextmanager
    def connection(self):
        """Context manager yielding a pooled connection."""
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    def close(self) -> None:
        self._pool.closeall()

    def ensure_schema(self) -> None:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SCHEMA)
            conn.commit()
        logger.info("Schema ensured for %s and %s", SESSIONS_TABLE, RESULTS_TABLE)

    def insert(self, table: str, row: Dict[str, Any]) -> InsertResult:
        """Insert one row, reporting unique-constraint violations as duplicates."""
        columns = list(row)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(column) for column in columns),
            sql.SQL(", ").join(sql.Placeholder(column) for column in columns),
        )
        with self.connection() as conn:
            try:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(query, row)
                    inserted = cur.fetchone()
                conn.commit()
            except errors.UniqueViolation as exc:
                conn.rollback()
                logger.debug("Duplicate row rejected by %s: %s", table, exc)
                return InsertResult(success=False, is_duplicate=True, error=str(exc).strip())
            except psycopg2.Error as exc:
                conn.rollback()
                return InsertResult(success=False, error=str(exc).strip())

        if not inserted:
            return InsertResult(success=False, error="no row returned after insert")
        return InsertResult(success=True, row=dict(inserted))

    def select(
        self,
        table: str,
        *,
        columns: Optional[Iterable[str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        filters = filters or {}
        selected = (
            sql.SQL(", ").join(sql.Identifier(column) for column in columns)
            if columns
            else sql.SQL("*")
        )
        query = sql.SQL("SELECT {} FROM {}").format(selected, sql.Identifier(table))
        query += _where_clause(filters)
        if order_by:
            query += sql.SQL(" ORDER BY {} {}").format(
                sql.Identifier(order_by), sql.SQL("DESC" if descending else "ASC")
            )
        params = dict(filters)
        if limit is not None:
            query += sql.SQL(" LIMIT {}").format(sql.Placeholder("_limit"))
            params["_limit"] = limit

        with self.connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
            conn.commit()
        return [dict(row) for row in rows]

    def update(self, table: str, key: Dict[str, Any], patch: Dict[str, Any]) -> bool:
        if not key or not patch:
            raise ValueError("update requires both a key and a patch")

        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(f"set_{column}"))
            for column in patch
        ]
        conditions = [
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(f"key_{column}"))
            for column in key
        ]
        query = sql.SQL("UPDATE {} SET {} WHERE {}").format(
            sql.Identifier(table),
            sql.SQL(", ").join(assignments),
            sql.SQL(" AND ").join(conditions),
        )
        params = {f"set_{column}": value for column, value in patch.items()}
        params.update({f"key_{column}": value for column, value in key.items()})

        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    updated = cur.rowcount
                conn.commit()
            except psycopg2.Error as exc:
                conn.rollback()
                logger.error("Update of %s failed: %s", table, exc)
                return False
        return updated > 0
