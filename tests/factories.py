"""Entity builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from algoholics.models import Member, Problem, Submission

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_member(member_id: str, name: str | None = None, minutes: int = 0) -> Member:
    return Member(
        id=member_id,
        name=name or member_id.title(),
        pin="1234",
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


def make_problem(problem_id: str, title: str | None = None, category: str = "Array") -> Problem:
    return Problem(
        id=problem_id,
        title=title or problem_id,
        link=f"https://leetcode.com/problems/{problem_id}",
        category=category,
        created_at=BASE_TIME,
    )


def make_submission(
    member_id: str,
    problem_id: str,
    *,
    is_solved: bool = False,
    solution: str = "",
    minutes: int = 0,
    submission_id: str | None = None,
) -> Submission:
    return Submission(
        id=submission_id or f"{member_id}:{problem_id}:{minutes}",
        member_id=member_id,
        problem_id=problem_id,
        is_solved=is_solved,
        solution=solution,
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )
