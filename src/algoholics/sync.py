"""Sync controller bridging the gateway and the entity store.

Startup:
  gateway --[list members | list problems]--> store (members, then problems)
          --[list submissions]-------------> store (filtered against both)

Steady state:
  gateway change notification (per table) --> refetch task
    members/problems: refetch table + submissions, apply table then submissions
    submissions:      refetch submissions

Refetch tasks run independently and may interleave with mutations. Every
write into the store re-runs the consistency filter, so an out-of-date
refetch can cost an extra round trip but never leaves a dangling
submission behind.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import TracebackType
from typing import Any

import structlog

from algoholics.errors import (
    DuplicateError,
    GatewayError,
    NotFoundError,
    UniqueConstraintError,
    ValidationError,
)
from algoholics.gateway.base import Gateway, Subscription
from algoholics.models import TABLES, Member, Problem, Snapshot, Submission, parse_rows, submission_fields
from algoholics.store import EntityStore

logger = structlog.get_logger()

SUBMISSION_KEY = ("member_id", "problem_id")
LOAD_ERROR_MESSAGE = "Failed to load data from database"

SnapshotListener = Callable[[Snapshot], None]


def _require(field: str, value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(field)
    return value


class SyncController:
    """Keeps an EntityStore in step with a Gateway and exposes the mutation API."""

    def __init__(
        self,
        gateway: Gateway,
        *,
        store: EntityStore | None = None,
        atomic_upsert: bool = True,
    ) -> None:
        self.gateway = gateway
        self.store = store or EntityStore()
        self._atomic_upsert = atomic_upsert
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._pair_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._pair_users: dict[tuple[str, str], int] = {}
        self._listeners: list[SnapshotListener] = []
        self._running = False
        self._loading = False
        self._error: str | None = None
        self._refetches = 0
        self._refetch_errors = 0

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load all collections, then subscribe to change notifications."""
        logger.info("sync_starting")
        await self.reload()

        self._running = True
        try:
            for table in TABLES:
                self._subscriptions.append(await self.gateway.subscribe(table, self._on_change))
        except Exception:
            logger.exception("sync_subscribe_failed")
            await self.stop()
            raise

        logger.info("sync_started", members=len(self.store.members), problems=len(self.store.problems))

    async def stop(self) -> None:
        """Release subscriptions and cancel in-flight refetches."""
        self._running = False

        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await self.gateway.unsubscribe(subscription)
            except GatewayError:
                logger.exception("sync_unsubscribe_failed", table=subscription.table)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        logger.info("sync_stopped", refetches=self._refetches, refetch_errors=self._refetch_errors)

    async def __aenter__(self) -> SyncController:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def reload(self) -> bool:
        """Full load of all three collections. Also the retry after a failed load.

        Returns False and records a persistent error on the snapshot when the
        load fails.
        """
        self._loading = True
        self._error = None
        self._notify()
        try:
            member_rows, problem_rows = await asyncio.gather(
                self.gateway.list("members"),
                self.gateway.list("problems"),
            )
            self.store.replace_members(parse_rows("members", member_rows))
            self.store.replace_problems(parse_rows("problems", problem_rows))

            submission_rows = await self.gateway.list("submissions")
            self.store.replace_submissions(parse_rows("submissions", submission_rows))
        except Exception:
            logger.exception("initial_load_failed")
            self._error = LOAD_ERROR_MESSAGE
            return False
        finally:
            self._loading = False
            self._notify()

        logger.info(
            "data_loaded",
            members=len(self.store.members),
            problems=len(self.store.problems),
            submissions=len(self.store.submissions),
        )
        return True

    async def drain(self) -> None:
        """Wait until every scheduled refetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Snapshot ---

    @property
    def snapshot(self) -> Snapshot:
        return self.store.snapshot(loading=self._loading, error=self._error)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every store write."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "subscriptions": len(self._subscriptions),
            "pending_refetches": len(self._tasks),
            "refetches": self._refetches,
            "refetch_errors": self._refetch_errors,
            "store_version": self.store.version,
        }

    # --- Members ---

    async def add_member(self, name: str, pin: str) -> Member:
        """Register a member. Name uniqueness is left to the gateway."""
        name = _require("name", name)
        pin = _require("pin", pin)

        try:
            row = await self.gateway.insert("members", {"name": name, "pin": pin})
        except UniqueConstraintError as e:
            logger.info("member_name_taken", name=name)
            raise DuplicateError("name") from e
        except GatewayError:
            logger.exception("member_add_failed", name=name)
            raise

        member = Member.model_validate(row)
        self.store.add_member(member)
        self._notify()
        logger.info("member_added", member_id=member.id)
        return member

    async def remove_member(self, member_id: str) -> None:
        """Delete a member's submissions, then the member itself."""
        member_id = _require("member_id", member_id)
        await self._cascade_delete("members", "member_id", member_id)
        self.store.remove_member(member_id)
        self._notify()
        logger.info("member_removed", member_id=member_id)

    # --- Problems ---

    async def add_problem(
        self,
        title: str,
        link: str,
        category: str,
        created_by: str | None = None,
    ) -> Problem:
        """Add a problem. Raises DuplicateError tagged ``title`` or ``link``."""
        fields = {
            "title": _require("title", title),
            "link": _require("link", link),
            "category": _require("category", category),
            "created_by": created_by,
        }

        try:
            row = await self.gateway.insert("problems", fields)
        except UniqueConstraintError as e:
            logger.info("problem_duplicate", field=e.column, title=fields["title"])
            raise DuplicateError(e.column) from e
        except GatewayError:
            logger.exception("problem_add_failed", title=fields["title"])
            raise

        problem = Problem.model_validate(row)
        self.store.add_problem(problem)
        self._notify()
        logger.info("problem_added", problem_id=problem.id, category=problem.category)
        return problem

    async def remove_problem(self, problem_id: str) -> None:
        """Delete a problem's submissions, then the problem itself."""
        problem_id = _require("problem_id", problem_id)
        await self._cascade_delete("problems", "problem_id", problem_id)
        self.store.remove_problem(problem_id)
        self._notify()
        logger.info("problem_removed", problem_id=problem_id)

    # --- Submissions ---

    async def upsert_submission(
        self,
        member_id: str,
        problem_id: str,
        is_solved: bool,
        solution: str = "",
        notes: str = "",
    ) -> Submission:
        """Create or overwrite the submission for (member_id, problem_id).

        Calls for the same pair are serialized locally. Across clients the
        last write wins.
        """
        member_id = _require("member_id", member_id)
        problem_id = _require("problem_id", problem_id)

        async with self._pair_lock(member_id, problem_id):
            fields = submission_fields(
                member_id,
                problem_id,
                is_solved,
                solution,
                notes,
                updated_at=datetime.now(timezone.utc),
            )
            try:
                if self._atomic_upsert:
                    row = await self.gateway.upsert("submissions", fields, SUBMISSION_KEY)
                else:
                    row = await self._select_then_write(fields)
            except (GatewayError, NotFoundError):
                logger.exception("submission_upsert_failed", member_id=member_id, problem_id=problem_id)
                raise

            submission = Submission.model_validate(row)
            if not self.store.apply_submission_upsert(submission):
                # Member or problem vanished locally; the next refetch settles it
                logger.info("submission_not_cached", member_id=member_id, problem_id=problem_id)
            self._notify()

        logger.info(
            "submission_saved",
            member_id=member_id,
            problem_id=problem_id,
            is_solved=submission.is_solved,
            solution_len=len(submission.solution),
            notes_len=len(submission.notes),
        )
        return submission

    async def _select_then_write(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Non-atomic upsert: look the pair up, then update or insert.

        Another client can write the same pair between the two calls. Both
        directions of that race resolve to last-write-wins.
        """
        match = {key: fields[key] for key in SUBMISSION_KEY}
        existing = await self.gateway.list("submissions", match)
        if existing:
            try:
                return await self.gateway.update("submissions", match, fields)
            except NotFoundError:
                logger.info("submission_vanished", **match)
        try:
            return await self.gateway.insert("submissions", fields)
        except UniqueConstraintError:
            logger.info("submission_insert_raced", **match)
        try:
            return await self.gateway.update("submissions", match, fields)
        except NotFoundError:
            # The conflicting row was deleted again before our update
            logger.info("submission_vanished", **match)
            return await self.gateway.insert("submissions", fields)

    @asynccontextmanager
    async def _pair_lock(self, member_id: str, problem_id: str) -> AsyncIterator[None]:
        """Serialize writes to one pair. The lock is dropped once nobody holds or awaits it."""
        key = (member_id, problem_id)
        lock = self._pair_locks.setdefault(key, asyncio.Lock())
        self._pair_users[key] = self._pair_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._pair_users[key] -= 1
            if not self._pair_users[key]:
                del self._pair_users[key]
                del self._pair_locks[key]

    # --- Internals ---

    async def _cascade_delete(self, table: str, column: str, entity_id: str) -> None:
        try:
            await self.gateway.delete("submissions", {column: entity_id})
        except GatewayError:
            logger.exception("cascade_delete_failed", table=table, id=entity_id, stage="submissions")
            raise

        try:
            await self.gateway.delete(table, {"id": entity_id})
        except GatewayError as e:
            # Submissions are already gone remotely; a later refetch drops them here
            logger.exception("cascade_delete_failed", table=table, id=entity_id, stage=table)
            msg = f"deleted submissions for {table} row {entity_id} but not the row itself"
            raise GatewayError(msg) from e

    def _on_change(self, table: str) -> None:
        if not self._running:
            return
        task = asyncio.get_running_loop().create_task(self._refetch(table))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refetch(self, table: str) -> None:
        try:
            if table == "submissions":
                submission_rows = await self.gateway.list("submissions")
                if not self._running:
                    return
                self.store.replace_submissions(parse_rows("submissions", submission_rows))
            else:
                rows, submission_rows = await asyncio.gather(
                    self.gateway.list(table),
                    self.gateway.list("submissions"),
                )
                if not self._running:
                    return
                if table == "members":
                    self.store.replace_members(parse_rows("members", rows))
                else:
                    self.store.replace_problems(parse_rows("problems", rows))
                self.store.replace_submissions(parse_rows("submissions", submission_rows))
        except Exception:
            self._refetch_errors += 1
            logger.exception("refetch_failed", table=table)
            return

        self._refetches += 1
        logger.debug("table_refetched", table=table, version=self.store.version)
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("snapshot_listener_failed")
