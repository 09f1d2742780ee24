"""In-memory entity store for members, problems and submissions.

Every write into the member or problem collections re-runs the
consistency filter over the submissions, so a submission never outlives
the member or problem it references. Submissions dropped by the filter
are not remembered: if a later write brings the missing member or problem
back, the submissions have to be supplied again by a fresh
``replace_submissions`` (which the sync controller does after every
member/problem notification).

All operations are synchronous and complete before returning, so readers
on the event loop never observe a dangling reference.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from algoholics.models import Member, Problem, Snapshot, Submission

logger = structlog.get_logger()


def consistent_submissions(
    submissions: Iterable[Submission],
    members: Iterable[Member],
    problems: Iterable[Problem],
) -> list[Submission]:
    """Keep submissions whose member and problem both exist, one per pair.

    When several submissions share a (member, problem) pair the first one
    wins. Gateway listings are newest-first, so that is the latest write.
    """
    member_ids = {m.id for m in members}
    problem_ids = {p.id for p in problems}
    seen: set[tuple[str, str]] = set()
    result: list[Submission] = []
    for submission in submissions:
        if submission.member_id not in member_ids or submission.problem_id not in problem_ids:
            continue
        if submission.key in seen:
            continue
        seen.add(submission.key)
        result.append(submission)
    return result


class EntityStore:
    """Authoritative local cache of the three tracker collections."""

    def __init__(self) -> None:
        self._members: list[Member] = []
        self._problems: list[Problem] = []
        self._submissions: list[Submission] = []
        self._version = 0

    @property
    def members(self) -> tuple[Member, ...]:
        return tuple(self._members)

    @property
    def problems(self) -> tuple[Problem, ...]:
        return tuple(self._problems)

    @property
    def submissions(self) -> tuple[Submission, ...]:
        return tuple(self._submissions)

    @property
    def version(self) -> int:
        """Incremented on every write."""
        return self._version

    def snapshot(self, *, loading: bool = False, error: str | None = None) -> Snapshot:
        return Snapshot(
            members=self.members,
            problems=self.problems,
            submissions=self.submissions,
            loading=loading,
            error=error,
            version=self._version,
        )

    def has_member(self, member_id: str) -> bool:
        return any(m.id == member_id for m in self._members)

    def has_problem(self, problem_id: str) -> bool:
        return any(p.id == problem_id for p in self._problems)

    # --- Bulk replacement (refetch results) ---

    def replace_members(self, members: Iterable[Member]) -> None:
        self._members = list(members)
        self._refilter()

    def replace_problems(self, problems: Iterable[Problem]) -> None:
        self._problems = list(problems)
        self._refilter()

    def replace_submissions(self, submissions: Iterable[Submission]) -> None:
        """Replace submissions, filtered against the members and problems held now."""
        incoming = list(submissions)
        self._submissions = consistent_submissions(incoming, self._members, self._problems)
        dropped = len(incoming) - len(self._submissions)
        if dropped:
            logger.debug("submissions_filtered", dropped=dropped, kept=len(self._submissions))
        self._version += 1

    # --- Single-entity writes (mutation results) ---

    def add_member(self, member: Member) -> None:
        """Append a new member, or replace it if a refetch already delivered it."""
        self._members = _put(self._members, member)
        self._refilter()

    def add_problem(self, problem: Problem) -> None:
        """Append a new problem, or replace it if a refetch already delivered it."""
        self._problems = _put(self._problems, problem)
        self._refilter()

    def apply_submission_upsert(self, submission: Submission) -> bool:
        """Insert or replace the submission for its (member, problem) pair.

        A replaced submission keeps its position. Returns False, leaving the
        store untouched, when the member or problem is not in the store.
        """
        if not self.has_member(submission.member_id) or not self.has_problem(submission.problem_id):
            logger.debug(
                "submission_upsert_skipped",
                member_id=submission.member_id,
                problem_id=submission.problem_id,
            )
            return False

        for index, existing in enumerate(self._submissions):
            if existing.key == submission.key:
                self._submissions[index] = submission
                break
        else:
            self._submissions.append(submission)
        self._version += 1
        return True

    def remove_member(self, member_id: str) -> None:
        """Remove a member and every submission referencing it. Unknown ids are a no-op."""
        self._members = [m for m in self._members if m.id != member_id]
        self._submissions = [s for s in self._submissions if s.member_id != member_id]
        self._version += 1

    def remove_problem(self, problem_id: str) -> None:
        """Remove a problem and every submission referencing it. Unknown ids are a no-op."""
        self._problems = [p for p in self._problems if p.id != problem_id]
        self._submissions = [s for s in self._submissions if s.problem_id != problem_id]
        self._version += 1

    def _refilter(self) -> None:
        self._submissions = consistent_submissions(self._submissions, self._members, self._problems)
        self._version += 1


def _put(items: list, entity: Member | Problem) -> list:
    for index, existing in enumerate(items):
        if existing.id == entity.id:
            updated = list(items)
            updated[index] = entity
            return updated
    return [*items, entity]
