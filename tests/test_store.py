"""Tests for the entity store consistency rules."""

from __future__ import annotations

from factories import make_member, make_problem, make_submission

from algoholics.store import EntityStore, consistent_submissions


def _pairs(store: EntityStore) -> list[tuple[str, str]]:
    return [s.key for s in store.submissions]


def _seeded() -> EntityStore:
    store = EntityStore()
    store.replace_members([make_member("alice"), make_member("bob")])
    store.replace_problems([make_problem("p1"), make_problem("p2")])
    store.replace_submissions(
        [
            make_submission("alice", "p1"),
            make_submission("alice", "p2"),
            make_submission("bob", "p1"),
        ]
    )
    return store


class TestConsistencyFilter:
    def test_drops_unknown_member_and_problem(self) -> None:
        kept = consistent_submissions(
            [
                make_submission("alice", "p1"),
                make_submission("ghost", "p1"),
                make_submission("alice", "gone"),
            ],
            [make_member("alice")],
            [make_problem("p1")],
        )
        assert [s.key for s in kept] == [("alice", "p1")]

    def test_first_row_per_pair_wins(self) -> None:
        newest = make_submission("alice", "p1", is_solved=True, minutes=5)
        older = make_submission("alice", "p1", minutes=1)
        kept = consistent_submissions([newest, older], [make_member("alice")], [make_problem("p1")])
        assert kept == [newest]


class TestReplace:
    def test_replace_submissions_filters_against_current_collections(self) -> None:
        store = EntityStore()
        store.replace_members([make_member("alice")])
        store.replace_problems([make_problem("p1")])
        store.replace_submissions([make_submission("alice", "p1"), make_submission("bob", "p1")])
        assert _pairs(store) == [("alice", "p1")]

    def test_replace_members_refilters_submissions(self) -> None:
        store = _seeded()
        store.replace_members([make_member("bob")])
        assert _pairs(store) == [("bob", "p1")]

    def test_replace_problems_refilters_submissions(self) -> None:
        store = _seeded()
        store.replace_problems([make_problem("p2")])
        assert _pairs(store) == [("alice", "p2")]

    def test_replace_members_is_idempotent(self) -> None:
        store = _seeded()
        members = [make_member("alice"), make_member("bob")]
        store.replace_members(members)
        first = store.submissions
        store.replace_members(members)
        assert store.submissions == first

    def test_filtered_submissions_are_not_restored(self) -> None:
        """Submissions dropped for a missing problem must be re-supplied after it appears."""
        store = EntityStore()
        store.replace_members([make_member("a"), make_member("b")])
        store.replace_submissions([make_submission("a", "p1"), make_submission("b", "p1")])
        assert store.submissions == ()

        store.replace_problems([make_problem("p1")])
        assert store.submissions == ()

        store.replace_submissions([make_submission("a", "p1"), make_submission("b", "p1")])
        assert _pairs(store) == [("a", "p1"), ("b", "p1")]

    def test_version_increments_on_every_write(self) -> None:
        store = EntityStore()
        before = store.version
        store.replace_members([])
        store.replace_problems([])
        store.replace_submissions([])
        assert store.version == before + 3


class TestUpsert:
    def test_append_new_pair(self) -> None:
        store = _seeded()
        assert store.apply_submission_upsert(make_submission("bob", "p2")) is True
        assert _pairs(store)[-1] == ("bob", "p2")

    def test_replace_in_place_keeps_order(self) -> None:
        store = _seeded()
        updated = make_submission("alice", "p2", is_solved=True, solution="dp", minutes=9)
        store.apply_submission_upsert(updated)
        assert _pairs(store) == [("alice", "p1"), ("alice", "p2"), ("bob", "p1")]
        assert store.submissions[1] == updated

    def test_never_two_rows_for_one_pair(self) -> None:
        store = _seeded()
        for minute in range(5):
            store.apply_submission_upsert(make_submission("bob", "p1", minutes=minute))
        pairs = _pairs(store)
        assert len(pairs) == len(set(pairs))
        assert pairs.count(("bob", "p1")) == 1

    def test_dangling_upsert_is_skipped(self) -> None:
        store = _seeded()
        version = store.version
        assert store.apply_submission_upsert(make_submission("ghost", "p1")) is False
        assert ("ghost", "p1") not in _pairs(store)
        assert store.version == version


class TestRemove:
    def test_remove_member_cascades(self) -> None:
        store = _seeded()
        store.remove_member("alice")
        assert [m.id for m in store.members] == ["bob"]
        assert all(s.member_id != "alice" for s in store.submissions)

    def test_remove_problem_cascades(self) -> None:
        store = _seeded()
        store.remove_problem("p1")
        assert [p.id for p in store.problems] == ["p2"]
        assert _pairs(store) == [("alice", "p2")]

    def test_stale_submissions_after_remove_are_filtered(self) -> None:
        store = _seeded()
        stale = list(store.submissions)
        store.remove_member("alice")
        store.replace_submissions(stale)
        assert all(s.member_id != "alice" for s in store.submissions)

        store.remove_problem("p1")
        store.replace_submissions(stale)
        assert store.submissions == ()

    def test_remove_unknown_id_is_noop(self) -> None:
        store = _seeded()
        store.remove_member("nobody")
        store.remove_problem("nothing")
        assert len(store.members) == 2
        assert len(store.submissions) == 3


class TestAddEntity:
    def test_add_member_appends(self) -> None:
        store = EntityStore()
        store.add_member(make_member("alice"))
        store.add_member(make_member("bob"))
        assert [m.id for m in store.members] == ["alice", "bob"]

    def test_add_member_already_refetched_is_not_duplicated(self) -> None:
        store = EntityStore()
        store.replace_members([make_member("alice"), make_member("bob")])
        store.add_member(make_member("alice", name="Alice B"))
        assert [m.id for m in store.members] == ["alice", "bob"]
        assert store.members[0].name == "Alice B"

    def test_snapshot_carries_status(self) -> None:
        store = _seeded()
        snapshot = store.snapshot(loading=False, error="boom")
        assert snapshot.error == "boom"
        assert len(snapshot.submissions) == 3
        assert snapshot.version == store.version
