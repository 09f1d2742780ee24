"""Read-only derivations over a snapshot for the presentation layer."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from algoholics.models import Member, Problem, Snapshot, Submission

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


@dataclass(frozen=True)
class LeaderboardEntry:
    member: Member
    solved_count: int
    total_problems: int
    completion_percentage: float
    last_solved_at: datetime | None
    rank: int


@dataclass(frozen=True)
class DuplicateMatch:
    kind: Literal["exact", "similar"]
    problem: Problem
    message: str


def solved_count(submissions: Iterable[Submission], member_id: str) -> int:
    return sum(1 for s in submissions if s.member_id == member_id and s.is_solved)


def build_leaderboard(snapshot: Snapshot) -> list[LeaderboardEntry]:
    """Rank members by problems solved.

    Ties on solved count go to whoever reached it first (earlier last solve),
    then to members with any solve, then to older members.
    """
    total = len(snapshot.problems)
    rows: list[tuple[Member, int, datetime | None]] = []
    for member in snapshot.members:
        solved = [s for s in snapshot.submissions if s.member_id == member.id and s.is_solved]
        last = max((s.updated_at for s in solved), default=None)
        rows.append((member, len(solved), last))

    rows.sort(
        key=lambda row: (
            -row[1],
            row[2] is None,
            row[2] if row[2] is not None else row[0].created_at,
        )
    )

    return [
        LeaderboardEntry(
            member=member,
            solved_count=count,
            total_problems=total,
            completion_percentage=(count / total * 100) if total else 0.0,
            last_solved_at=last,
            rank=index,
        )
        for index, (member, count, last) in enumerate(rows, start=1)
    ]


def categories(problems: Iterable[Problem]) -> list[str]:
    """Distinct problem categories, sorted."""
    return sorted({p.category for p in problems})


def problems_in_category(problems: Sequence[Problem], category: str | None) -> list[Problem]:
    if not category:
        return list(problems)
    return [p for p in problems if p.category == category]


def _normalize_title(title: str) -> str:
    return _NON_ALNUM.sub("", title.lower())


def find_duplicate_problem(problems: Iterable[Problem], title: str, link: str) -> DuplicateMatch | None:
    """Advisory check before adding a problem.

    The gateway's unique indexes are authoritative; a miss here does not
    guarantee the insert will succeed.
    """
    title_key = title.strip().lower()
    link_key = link.strip()
    normalized = _normalize_title(title)
    similar: Problem | None = None

    for problem in problems:
        if problem.title.strip().lower() == title_key:
            return DuplicateMatch("exact", problem, "A problem with this title already exists")
        if link_key and problem.link.strip() == link_key:
            return DuplicateMatch("exact", problem, "This problem already exists")
        if similar is None and normalized and _normalize_title(problem.title) == normalized:
            similar = problem

    if similar is not None:
        return DuplicateMatch("similar", similar, f"A similar problem already exists: {similar.title}")
    return None
