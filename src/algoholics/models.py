"""Entity schemas for the tracker tables.

Rows arrive from the gateway keyed by their column names:

    members:     id, name, pin, created_at
    problems:    id, title, link, category, created_by, created_at
    submissions: id, member_id, problem_id, is_solved, solution, notes, updated_at

``solution`` and ``notes`` are stored as NULL when empty and surface as "".
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class Member(BaseModel):
    """A pseudonymous study-group member."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    pin: str
    created_at: datetime


class Problem(BaseModel):
    """A practice problem in the shared catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    link: str
    category: str
    created_by: str | None = None
    created_at: datetime


class Submission(BaseModel):
    """A member's status on one problem."""

    model_config = ConfigDict(frozen=True)

    id: str
    member_id: str
    problem_id: str
    is_solved: bool = False
    solution: str = ""
    notes: str = ""
    updated_at: datetime

    @field_validator("solution", "notes", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def key(self) -> tuple[str, str]:
        return (self.member_id, self.problem_id)


class Snapshot(BaseModel):
    """Read-only view of the store handed to the presentation layer."""

    model_config = ConfigDict(frozen=True)

    members: tuple[Member, ...] = ()
    problems: tuple[Problem, ...] = ()
    submissions: tuple[Submission, ...] = ()
    loading: bool = False
    error: str | None = None
    version: int = 0


# Map table names to their entity model classes
TABLE_MODELS: dict[str, type[BaseModel]] = {
    "members": Member,
    "problems": Problem,
    "submissions": Submission,
}

TABLES = tuple(TABLE_MODELS)


def parse_rows(table: str, rows: list[dict[str, Any]]) -> list[Any]:
    """Validate raw gateway rows into entity models for ``table``."""
    model = TABLE_MODELS[table]
    return [model.model_validate(row) for row in rows]


def submission_fields(
    member_id: str,
    problem_id: str,
    is_solved: bool,
    solution: str,
    notes: str,
    updated_at: datetime,
) -> dict[str, Any]:
    """Column values written for a submission upsert."""
    return {
        "member_id": member_id,
        "problem_id": problem_id,
        "is_solved": is_solved,
        "solution": solution or None,
        "notes": notes or None,
        "updated_at": updated_at,
    }
