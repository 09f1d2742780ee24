"""In-process gateway backed by plain lists.

Mirrors the PostgreSQL schema closely enough for the sync controller:
case-insensitive unique names and titles, unique links, one submission
per (member, problem), foreign keys with cascading deletes, and a change
callback per touched table after every write statement.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog

from algoholics.errors import GatewayError, NotFoundError, UniqueConstraintError
from algoholics.gateway.base import ORDERING, ChangeCallback, Subscription

logger = structlog.get_logger()

# table -> list of unique keys; each key is (columns, case_insensitive)
UNIQUE_KEYS: dict[str, list[tuple[tuple[str, ...], bool]]] = {
    "members": [(("name",), True)],
    "problems": [(("title",), True), (("link",), False)],
    "submissions": [(("member_id", "problem_id"), False)],
}

DEFAULTS: dict[str, dict[str, Any]] = {
    "members": {},
    "problems": {"created_by": None},
    "submissions": {"is_solved": False, "solution": None, "notes": None},
}

TIMESTAMP_COLUMN = {"members": "created_at", "problems": "created_at", "submissions": "updated_at"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _matches(row: dict[str, Any], match: dict[str, Any] | None) -> bool:
    return not match or all(row.get(k) == v for k, v in match.items())


def _key(row: dict[str, Any], columns: tuple[str, ...], case_insensitive: bool) -> tuple[Any, ...]:
    values = tuple(row.get(c) for c in columns)
    if case_insensitive:
        values = tuple(v.lower() if isinstance(v, str) else v for v in values)
    return values


class MemoryGateway:
    """Gateway implementation holding all tables in memory."""

    def __init__(self) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {t: [] for t in ORDERING}
        self._subscriptions: dict[str, list[Subscription]] = {t: [] for t in ORDERING}
        self.calls: list[tuple[str, str]] = []

    # --- Reads ---

    async def list(self, table: str, match: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        self._record("list", table)
        column, descending = ORDERING[table]
        rows = [dict(r) for r in self._tables[table] if _matches(r, match)]
        rows.sort(key=lambda r: r[column], reverse=descending)
        return rows

    # --- Writes ---

    async def insert(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._record("insert", table)
        row = {**DEFAULTS[table], **fields}
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault(TIMESTAMP_COLUMN[table], _now())
        self._check_foreign_keys(table, row)
        self._check_unique(table, row)
        self._tables[table].append(row)
        self._notify(table)
        return dict(row)

    async def update(self, table: str, match: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
        self._record("update", table)
        for index, row in enumerate(self._tables[table]):
            if _matches(row, match):
                updated = {**row, **fields}
                self._check_foreign_keys(table, updated)
                self._check_unique(table, updated, ignore=row)
                self._tables[table][index] = updated
                self._notify(table)
                return dict(updated)
        msg = f"no {table} row matches {match}"
        raise NotFoundError(msg)

    async def upsert(self, table: str, fields: dict[str, Any], conflict: tuple[str, ...]) -> dict[str, Any]:
        match = {c: fields[c] for c in conflict}
        existing = [r for r in self._tables[table] if _matches(r, match)]
        if existing:
            return await self.update(table, match, fields)
        return await self.insert(table, fields)

    async def delete(self, table: str, match: dict[str, Any]) -> None:
        self._record("delete", table)
        removed = [r for r in self._tables[table] if _matches(r, match)]
        self._tables[table] = [r for r in self._tables[table] if not _matches(r, match)]
        touched = {table}

        removed_ids = {r["id"] for r in removed}
        if table in ("members", "problems") and removed_ids:
            column = "member_id" if table == "members" else "problem_id"
            before = len(self._tables["submissions"])
            self._tables["submissions"] = [s for s in self._tables["submissions"] if s[column] not in removed_ids]
            if len(self._tables["submissions"]) != before:
                touched.add("submissions")
        if table == "members" and removed_ids:
            for problem in self._tables["problems"]:
                if problem.get("created_by") in removed_ids:
                    problem["created_by"] = None

        for name in touched:
            self._notify(name)

    # --- Notifications ---

    async def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(table=table, callback=callback)
        self._subscriptions[table].append(subscription)
        logger.debug("memory_gateway_subscribed", table=table, subscription=subscription.id)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        subs = self._subscriptions.get(subscription.table, [])
        if subscription in subs:
            subs.remove(subscription)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions[table])

    async def close(self) -> None:
        for subs in self._subscriptions.values():
            for subscription in subs:
                subscription.active = False
            subs.clear()

    # --- Internals ---

    def _record(self, operation: str, table: str) -> None:
        if table not in self._tables:
            msg = f"unknown table {table!r}"
            raise GatewayError(msg)
        self.calls.append((operation, table))

    def _notify(self, table: str) -> None:
        for subscription in list(self._subscriptions[table]):
            if subscription.active:
                subscription.callback(table)

    def _check_unique(self, table: str, row: dict[str, Any], ignore: dict[str, Any] | None = None) -> None:
        for columns, case_insensitive in UNIQUE_KEYS[table]:
            key = _key(row, columns, case_insensitive)
            for other in self._tables[table]:
                if other is ignore:
                    continue
                if _key(other, columns, case_insensitive) == key:
                    raise UniqueConstraintError(columns[0] if len(columns) == 1 else ",".join(columns), table)

    def _check_foreign_keys(self, table: str, row: dict[str, Any]) -> None:
        references: list[tuple[str, str, bool]] = []
        if table == "submissions":
            references = [("member_id", "members", False), ("problem_id", "problems", False)]
        elif table == "problems":
            references = [("created_by", "members", True)]
        for column, target, nullable in references:
            value = row.get(column)
            if value is None and nullable:
                continue
            if not any(r["id"] == value for r in self._tables[target]):
                msg = f"{table}.{column} references missing {target} row {value!r}"
                raise GatewayError(msg)
