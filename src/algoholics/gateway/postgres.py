"""PostgreSQL gateway using asyncpg.

Tables live in PostgreSQL; change notifications are delivered through a
statement-level trigger that calls ``pg_notify('<table>_changes', TG_OP)``
and a dedicated connection that LISTENs on those channels. Uniqueness is
enforced by named indexes, which are mapped back to the column that
triggered the violation.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import asyncpg
import structlog

from algoholics.config import Settings
from algoholics.errors import GatewayError, NotFoundError, UniqueConstraintError
from algoholics.gateway.base import ORDERING, ChangeCallback, Subscription

logger = structlog.get_logger()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS members (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    name text NOT NULL CHECK (length(btrim(name)) > 0),
    pin text NOT NULL CHECK (length(pin) > 0),
    created_at timestamptz NOT NULL DEFAULT now()
);
CREATE UNIQUE INDEX IF NOT EXISTS members_name_key ON members (lower(name));

CREATE TABLE IF NOT EXISTS problems (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    title text NOT NULL,
    link text NOT NULL,
    category text NOT NULL,
    created_by uuid REFERENCES members (id) ON DELETE SET NULL,
    created_at timestamptz NOT NULL DEFAULT now()
);
CREATE UNIQUE INDEX IF NOT EXISTS problems_title_key ON problems (lower(title));
CREATE UNIQUE INDEX IF NOT EXISTS problems_link_key ON problems (link);

CREATE TABLE IF NOT EXISTS submissions (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    member_id uuid NOT NULL REFERENCES members (id) ON DELETE CASCADE,
    problem_id uuid NOT NULL REFERENCES problems (id) ON DELETE CASCADE,
    is_solved boolean NOT NULL DEFAULT false,
    solution text,
    notes text,
    updated_at timestamptz NOT NULL DEFAULT now(),
    CONSTRAINT submissions_member_problem_key UNIQUE (member_id, problem_id)
);

CREATE OR REPLACE FUNCTION notify_table_change() RETURNS trigger AS $$
BEGIN
    PERFORM pg_notify(TG_TABLE_NAME || '_changes', TG_OP);
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS members_notify ON members;
CREATE TRIGGER members_notify AFTER INSERT OR UPDATE OR DELETE ON members
    FOR EACH STATEMENT EXECUTE FUNCTION notify_table_change();
DROP TRIGGER IF EXISTS problems_notify ON problems;
CREATE TRIGGER problems_notify AFTER INSERT OR UPDATE OR DELETE ON problems
    FOR EACH STATEMENT EXECUTE FUNCTION notify_table_change();
DROP TRIGGER IF EXISTS submissions_notify ON submissions;
CREATE TRIGGER submissions_notify AFTER INSERT OR UPDATE OR DELETE ON submissions
    FOR EACH STATEMENT EXECUTE FUNCTION notify_table_change();
"""

# Allowed columns per table; identifiers are never taken from callers verbatim
COLUMNS: dict[str, frozenset[str]] = {
    "members": frozenset({"id", "name", "pin", "created_at"}),
    "problems": frozenset({"id", "title", "link", "category", "created_by", "created_at"}),
    "submissions": frozenset(
        {"id", "member_id", "problem_id", "is_solved", "solution", "notes", "updated_at"}
    ),
}

# Unique index/constraint name -> column reported to callers
CONSTRAINT_COLUMNS: dict[str, str] = {
    "members_name_key": "name",
    "problems_title_key": "title",
    "problems_link_key": "link",
    "submissions_member_problem_key": "member_id,problem_id",
}

CHANNEL_SUFFIX = "_changes"


def _channel(table: str) -> str:
    return f"{table}{CHANNEL_SUFFIX}"


def _row(record: asyncpg.Record) -> dict[str, Any]:
    return {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in record.items()}


def _columns(table: str, names: Any) -> list[str]:
    allowed = COLUMNS.get(table)
    if allowed is None:
        msg = f"unknown table {table!r}"
        raise GatewayError(msg)
    columns = list(names)
    unknown = [c for c in columns if c not in allowed]
    if unknown:
        msg = f"unknown columns for {table}: {', '.join(unknown)}"
        raise GatewayError(msg)
    return columns


def _where(columns: list[str], offset: int = 0) -> str:
    if not columns:
        return ""
    return " WHERE " + " AND ".join(f"{c} = ${i + 1 + offset}" for i, c in enumerate(columns))


@contextmanager
def _translate_errors(operation: str, table: str) -> Iterator[None]:
    """Map asyncpg failures onto the gateway error taxonomy."""
    try:
        yield
    except asyncpg.UniqueViolationError as e:
        column = CONSTRAINT_COLUMNS.get(e.constraint_name or "", e.column_name or e.constraint_name or "unknown")
        raise UniqueConstraintError(column, table) from e
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
        logger.warning("gateway_operation_failed", operation=operation, table=table, error=str(e))
        msg = f"{operation} on {table} failed: {e}"
        raise GatewayError(msg) from e


class PostgresGateway:
    """Gateway backed by a PostgreSQL database."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 5) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None
        self._listen_conn: asyncpg.Connection | None = None
        self._subscriptions: dict[str, list[Subscription]] = {t: [] for t in ORDERING}

    @classmethod
    def from_settings(cls, settings: Settings) -> PostgresGateway:
        return cls(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    async def connect(self) -> None:
        """Create the connection pool and the LISTEN connection."""
        with _translate_errors("connect", "*"):
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
            )
            self._listen_conn = await asyncpg.connect(self._dsn)
        logger.info("gateway_connected", backend="postgres")

    async def apply_schema(self) -> None:
        """Create tables, unique indexes and notification triggers if missing."""
        with _translate_errors("apply_schema", "*"):
            async with self._acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        logger.info("gateway_schema_applied")

    async def close(self) -> None:
        for subs in self._subscriptions.values():
            for subscription in subs:
                subscription.active = False
            subs.clear()
        if self._listen_conn is not None:
            await self._listen_conn.close()
            self._listen_conn = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        logger.info("gateway_closed", backend="postgres")

    # --- Reads ---

    async def list(self, table: str, match: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        match = match or {}
        columns = _columns(table, match)
        order_column, descending = ORDERING[table]
        query = f"SELECT * FROM {table}{_where(columns)} ORDER BY {order_column} {'DESC' if descending else 'ASC'}"  # noqa: S608
        with _translate_errors("list", table):
            async with self._acquire() as conn:
                records = await conn.fetch(query, *match.values())
        return [_row(r) for r in records]

    # --- Writes ---

    async def insert(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        columns = _columns(table, fields)
        placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"  # noqa: S608
        with _translate_errors("insert", table):
            async with self._acquire() as conn:
                record = await conn.fetchrow(query, *fields.values())
        return _row(record)

    async def update(self, table: str, match: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
        set_columns = _columns(table, fields)
        match_columns = _columns(table, match)
        assignments = ", ".join(f"{c} = ${i + 1}" for i, c in enumerate(set_columns))
        query = f"UPDATE {table} SET {assignments}{_where(match_columns, len(set_columns))} RETURNING *"  # noqa: S608
        with _translate_errors("update", table):
            async with self._acquire() as conn:
                record = await conn.fetchrow(query, *fields.values(), *match.values())
        if record is None:
            msg = f"no {table} row matches {match}"
            raise NotFoundError(msg)
        return _row(record)

    async def upsert(self, table: str, fields: dict[str, Any], conflict: tuple[str, ...]) -> dict[str, Any]:
        columns = _columns(table, fields)
        _columns(table, conflict)
        placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c not in conflict)
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "  # noqa: S608
            f"ON CONFLICT ({', '.join(conflict)}) DO UPDATE SET {updates} RETURNING *"
        )
        with _translate_errors("upsert", table):
            async with self._acquire() as conn:
                record = await conn.fetchrow(query, *fields.values())
        return _row(record)

    async def delete(self, table: str, match: dict[str, Any]) -> None:
        columns = _columns(table, match)
        if not columns:
            msg = f"refusing to delete every row of {table}"
            raise GatewayError(msg)
        query = f"DELETE FROM {table}{_where(columns)}"  # noqa: S608
        with _translate_errors("delete", table):
            async with self._acquire() as conn:
                await conn.execute(query, *match.values())

    # --- Notifications ---

    async def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        _columns(table, ())
        if self._listen_conn is None:
            msg = "Gateway not connected. Call connect() first."
            raise GatewayError(msg)
        subscription = Subscription(table=table, callback=callback)
        if not self._subscriptions[table]:
            with _translate_errors("subscribe", table):
                await self._listen_conn.add_listener(_channel(table), self._dispatch)
        self._subscriptions[table].append(subscription)
        logger.debug("gateway_subscribed", table=table, subscription=subscription.id)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        subs = self._subscriptions.get(subscription.table, [])
        if subscription not in subs:
            return
        subs.remove(subscription)
        if not subs and self._listen_conn is not None and not self._listen_conn.is_closed():
            with _translate_errors("unsubscribe", subscription.table):
                await self._listen_conn.remove_listener(_channel(subscription.table), self._dispatch)
        logger.debug("gateway_unsubscribed", table=subscription.table, subscription=subscription.id)

    def _dispatch(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        table = channel.removesuffix(CHANNEL_SUFFIX)
        logger.debug("gateway_notification", table=table, operation=payload)
        for subscription in list(self._subscriptions.get(table, [])):
            if subscription.active:
                subscription.callback(table)

    def _acquire(self) -> Any:
        if self._pool is None:
            msg = "Gateway not connected. Call connect() first."
            raise GatewayError(msg)
        return self._pool.acquire()
