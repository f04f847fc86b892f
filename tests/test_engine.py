"""Tests for the relationship engine against a real (SQLite) database."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from kinfolk.models import DerivedRelationship, RelationshipKind as K
from kinfolk.services import store
from kinfolk.services.cycle_guard import RejectReason
from kinfolk.services.engine import RelationshipEngine
from kinfolk.services.exceptions import InconsistentSnapshotError, PersonNotFoundError, ReconcileError
from kinfolk.services.graph import FactRef
from kinfolk.services.infer import DerivedEdge
from kinfolk.services.reconcile import DerivedSetReconciler


async def _derived(session_maker):
    async with session_maker() as db:
        rows = await store.all_derived(db)
    return {(r.person_id, r.other_id, K(r.kind)) for r in rows}


async def _facts(session_maker):
    async with session_maker() as db:
        return await store.load_facts(db)


class TestAddParentFact:
    async def test_siblings_appear_after_second_child(self, engine, make_people, session_maker):
        ids = await make_people("Pat", "Xan", "Yul")
        p, x, y = ids["Pat"], ids["Xan"], ids["Yul"]

        assert (await engine.add_parent_fact(x, p)).ok
        assert await _derived(session_maker) == set()

        assert (await engine.add_parent_fact(y, p)).ok
        assert await _derived(session_maker) == {(x, y, K.sibling), (y, x, K.sibling)}

    async def test_grandparent_chain(self, engine, make_people, session_maker):
        ids = await make_people("G", "M", "U", "S", "C")
        for parent, child in [("G", "M"), ("G", "U"), ("M", "S"), ("U", "C")]:
            assert (await engine.add_parent_fact(ids[child], ids[parent])).ok

        derived = await _derived(session_maker)
        assert (ids["S"], ids["G"], K.grandparent) in derived
        assert (ids["G"], ids["S"], K.grandchild) in derived
        assert (ids["S"], ids["U"], K.aunt_uncle) in derived
        assert (ids["U"], ids["S"], K.niece_nephew) in derived
        assert (ids["S"], ids["C"], K.cousin) in derived
        assert (ids["C"], ids["S"], K.cousin) in derived

    async def test_cycle_rejected_and_nothing_written(self, engine, make_people, session_maker):
        ids = await make_people("P1", "P2", "P3")
        await engine.add_parent_fact(ids["P2"], ids["P1"])
        await engine.add_parent_fact(ids["P3"], ids["P2"])
        before = await _derived(session_maker)

        res = await engine.add_parent_fact(child_id=ids["P1"], parent_id=ids["P3"])

        assert not res.ok
        assert res.reason is RejectReason.CYCLE
        assert res.to_dict()["reason"] == "CYCLE"
        assert len(await _facts(session_maker)) == 2
        assert await _derived(session_maker) == before

    async def test_duplicate_and_inverse(self, engine, make_people):
        ids = await make_people("A", "B")
        assert (await engine.add_parent_fact(ids["B"], ids["A"])).ok
        assert (await engine.add_parent_fact(ids["B"], ids["A"])).reason is RejectReason.DUPLICATE
        assert (await engine.add_parent_fact(ids["A"], ids["B"])).reason is RejectReason.INVERSE_EXISTS

    async def test_unknown_person(self, engine, make_people):
        ids = await make_people("A")
        with pytest.raises(PersonNotFoundError):
            await engine.add_parent_fact(ids["A"], 4242)

    async def test_listener_notified_after_commit(self, engine, make_people):
        seen = []

        async def listener(n):
            seen.append(n)

        engine.reconciler.add_listener(listener)
        ids = await make_people("P", "X", "Y")
        await engine.add_parent_fact(ids["X"], ids["P"])
        await engine.add_parent_fact(ids["Y"], ids["P"])
        assert seen == [0, 2]

    async def test_broken_listener_does_not_undo_write(self, engine, make_people, session_maker):
        def boom(n):
            raise RuntimeError("consumer down")

        engine.reconciler.add_listener(boom)
        ids = await make_people("P", "X")
        assert (await engine.add_parent_fact(ids["X"], ids["P"])).ok
        assert await _facts(session_maker) == [FactRef(ids["P"], ids["X"])]


class TestRemoveParentFact:
    async def test_removal_rederives(self, engine, make_people, session_maker):
        ids = await make_people("P", "X", "Y")
        await engine.add_parent_fact(ids["X"], ids["P"])
        await engine.add_parent_fact(ids["Y"], ids["P"])

        assert (await engine.remove_parent_fact(ids["Y"], ids["P"])).ok
        assert await _derived(session_maker) == set()
        assert await _facts(session_maker) == [FactRef(ids["P"], ids["X"])]

    async def test_removing_absent_fact_is_ok(self, engine, make_people):
        ids = await make_people("P", "X")
        assert (await engine.remove_parent_fact(ids["X"], ids["P"])).ok


class TestFailures:
    async def test_swap_failure_rolls_back_fact(self, session_maker, make_people):
        class FailingReconciler(DerivedSetReconciler):
            async def swap(self, db, derived):
                await super().swap(db, derived)
                raise ReconcileError(original_error=OperationalError("INSERT", {}, Exception("disk full")))

        ids = await make_people("P", "X", "Y")
        good = RelationshipEngine(session_maker)
        await good.add_parent_fact(ids["X"], ids["P"])
        await good.add_parent_fact(ids["Y"], ids["P"])
        derived_before = await _derived(session_maker)

        bad = RelationshipEngine(session_maker, reconciler=FailingReconciler())
        ids2 = await make_people("Z")
        with pytest.raises(ReconcileError) as exc:
            await bad.add_parent_fact(ids2["Z"], ids["P"])

        assert exc.value.retryable
        assert len(await _facts(session_maker)) == 2
        assert await _derived(session_maker) == derived_before

    async def test_inconsistent_snapshot_aborts(self, engine, make_people, insert_raw_facts, session_maker):
        ids = await make_people("P", "X")
        await insert_raw_facts((9999, ids["X"]))

        with pytest.raises(InconsistentSnapshotError) as exc:
            await engine.add_parent_fact(ids["X"], ids["P"])

        assert exc.value.missing_ids == [9999]
        assert await _facts(session_maker) == [FactRef(9999, ids["X"])]


class TestRecompute:
    async def test_idempotent(self, engine, make_people, insert_raw_facts, session_maker):
        ids = await make_people("G", "M", "U", "S")
        await insert_raw_facts((ids["G"], ids["M"]), (ids["G"], ids["U"]), (ids["M"], ids["S"]))

        first = await engine.recompute_all()
        snapshot = await _derived(session_maker)
        second = await engine.recompute_all()

        assert first.persons_processed == 4
        assert first.relationships == second.relationships == len(snapshot)
        assert await _derived(session_maker) == snapshot
        assert (ids["S"], ids["U"], K.aunt_uncle) in snapshot

    async def test_scheduled_recompute_supersedes_pending(self, engine, make_people):
        await make_people("A")
        t1 = engine.schedule_recompute()
        t2 = engine.schedule_recompute()
        await asyncio.gather(t1, t2, return_exceptions=True)

        assert t1.cancelled()
        assert t2.result().persons_processed == 1


class TestReads:
    async def test_get_relationships_merges_explicit_and_derived(self, engine, make_people):
        ids = await make_people("G", "M", "S", "T")
        await engine.add_parent_fact(ids["M"], ids["G"])
        await engine.add_parent_fact(ids["S"], ids["M"])
        await engine.add_parent_fact(ids["T"], ids["M"])

        views = await engine.get_relationships(ids["S"])

        assert [(v.other_id, v.kind, v.is_inferred) for v in views] == [
            (ids["M"], K.parent, False),
            (ids["T"], K.sibling, True),
            (ids["G"], K.grandparent, True),
        ]

    async def test_get_relationships_unknown_person(self, engine):
        with pytest.raises(PersonNotFoundError):
            await engine.get_relationships(1)

    async def test_label_from_each_side(self, engine, make_people):
        ids = await make_people(gran="she/her", kid="he/him", mid="they/them")
        await engine.add_parent_fact(ids["mid"], ids["gran"])
        await engine.add_parent_fact(ids["kid"], ids["mid"])

        assert await engine.get_relationship_label(ids["kid"], ids["gran"]) == "grandmother"
        assert await engine.get_relationship_label(ids["kid"], ids["gran"], viewer_is_subject=False) == "grandson"
        assert await engine.get_relationship_label(ids["kid"], ids["mid"]) == "parent"
        assert await engine.get_relationship_label(ids["mid"], ids["kid"]) == "son"

    async def test_label_for_unrelated_is_none(self, engine, make_people):
        ids = await make_people("A", "B")
        assert await engine.get_relationship_label(ids["A"], ids["B"]) is None

    async def test_parents_and_children(self, engine, make_people):
        ids = await make_people("Mum", "Dad", "Kid")
        await engine.add_parent_fact(ids["Kid"], ids["Mum"])
        await engine.add_parent_fact(ids["Kid"], ids["Dad"])

        assert [p.display_name for p in await engine.get_parents(ids["Kid"])] == ["Dad", "Mum"]
        assert [p.display_name for p in await engine.get_children(ids["Mum"])] == ["Kid"]

    async def test_find_cycles_in_legacy_data(self, engine, make_people, insert_raw_facts):
        ids = await make_people("A", "B", "C")
        a, b, c = ids["A"], ids["B"], ids["C"]
        await insert_raw_facts((a, b), (b, c), (c, a))

        found = await engine.find_cycles()

        assert set(found) == {FactRef(a, b), FactRef(b, c), FactRef(c, a)}


class TestReconciler:
    async def test_reconcile_replaces_only_inferred_rows(self, make_people, session_maker):
        ids = await make_people("A", "B")
        a, b = ids["A"], ids["B"]
        async with session_maker() as db:
            async with db.begin():
                db.add(DerivedRelationship(person_id=a, other_id=b, kind=K.cousin, is_inferred=False))
        curated = (a, b, K.cousin)
        seen = []
        rec = DerivedSetReconciler()
        rec.add_listener(seen.append)

        async with session_maker() as db:
            n = await rec.reconcile(db, [DerivedEdge(a, b, K.sibling), DerivedEdge(b, a, K.sibling)])
        assert n == 2
        assert await _derived(session_maker) == {(a, b, K.sibling), (b, a, K.sibling), curated}

        async with session_maker() as db:
            await rec.reconcile(db, [])
        assert await _derived(session_maker) == {curated}

        rec.remove_listener(seen.append)
        rec.remove_listener(seen.append)
        assert seen == [2, 0]


class TestBackgroundRecompute:
    async def test_failure_is_recorded(self, engine, make_people, insert_raw_facts):
        ids = await make_people("X")
        await insert_raw_facts((31337, ids["X"]))

        with pytest.raises(InconsistentSnapshotError):
            await engine.schedule_recompute()

        assert isinstance(engine.last_background_error, InconsistentSnapshotError)

    async def test_success_clears_recorded_failure(self, engine, make_people):
        await make_people("A")
        engine.last_background_error = RuntimeError("earlier run")

        await engine.schedule_recompute()

        assert engine.last_background_error is None


class TestReadSnapshot:
    """Reads pin one committed state so facts and derived rows agree."""

    @staticmethod
    def _session(dialect: str):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = dialect
        db.connection = AsyncMock()
        return db

    async def test_postgres_reads_use_repeatable_read(self, engine):
        db = self._session("postgresql")
        await engine._read_snapshot(db)
        db.connection.assert_awaited_once_with(execution_options={"isolation_level": "REPEATABLE READ"})

    async def test_other_dialects_keep_default_isolation(self, engine):
        db = self._session("sqlite")
        await engine._read_snapshot(db)
        db.connection.assert_not_awaited()
