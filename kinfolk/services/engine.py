from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kinfolk.background import spawn
from kinfolk.models import Person, RelationshipKind
from kinfolk.services import store
from kinfolk.services.cycle_guard import RejectReason, can_add_parent_fact
from kinfolk.services.exceptions import PersonNotFoundError, ReconcileError
from kinfolk.services.graph import FactRef, build_graph, find_cycles
from kinfolk.services.infer import infer_all
from kinfolk.services.kinship import KIND_PRIORITY, closest_kind, label_for_row
from kinfolk.services.reconcile import DerivedSetReconciler

logger = logging.getLogger(__name__)

# Arbitrary constant; all fact writers across processes take this advisory lock on Postgres
FACT_SET_LOCK_KEY = 7_311_004


@dataclass
class MutationResult:
    ok: bool
    reason: Optional[RejectReason] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok}
        if not self.ok:
            out["reason"] = self.reason.value if self.reason else None
            out["message"] = self.message
        return out


@dataclass
class RelationshipView:
    other_id: int
    kind: RelationshipKind
    is_inferred: bool


@dataclass
class RecomputeResult:
    persons_processed: int
    relationships: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class RelationshipEngine:
    """
    Entry point for every fact mutation and relationship read.

    Each mutation is one critical section: validate, write the fact,
    recompute every derived relationship and swap the stored set, all in a
    single transaction. A failure anywhere rolls the fact back with it.
    """

    def __init__(self, session_maker: async_sessionmaker, reconciler: Optional[DerivedSetReconciler] = None):
        self._session_maker = session_maker
        self.reconciler = reconciler or DerivedSetReconciler()
        self._lock = asyncio.Lock()
        self.last_background_error: Optional[BaseException] = None

    # ---------------------- writes ----------------------

    async def add_parent_fact(self, child_id: int, parent_id: int) -> MutationResult:
        async with self._lock:
            async with self._session_maker() as db:
                try:
                    async with db.begin():
                        await self._serialize_writers(db)
                        person_ids = await store.load_person_ids(db)
                        _require(person_ids, child_id, parent_id)
                        facts = await store.load_facts(db)

                        verdict = can_add_parent_fact(child_id, parent_id, facts)
                        if not verdict.allowed:
                            logger.info("parent fact %s -> %s rejected: %s", parent_id, child_id, verdict.reason.value)
                            return MutationResult(False, verdict.reason, verdict.message)

                        await store.insert_fact(db, parent_id, child_id)
                        facts.append(FactRef(parent_id, child_id))
                        n = await self._recompute(db, person_ids, facts)
                except SQLAlchemyError as e:
                    raise ReconcileError("Failed to save parent relationship", original_error=e) from e
        logger.info("parent fact %s -> %s added; %s derived relationships", parent_id, child_id, n)
        await self.reconciler.notify(n)
        return MutationResult(True)

    async def remove_parent_fact(self, child_id: int, parent_id: int) -> MutationResult:
        async with self._lock:
            async with self._session_maker() as db:
                try:
                    async with db.begin():
                        await self._serialize_writers(db)
                        person_ids = await store.load_person_ids(db)
                        _require(person_ids, child_id, parent_id)
                        removed = await store.delete_fact(db, parent_id, child_id)
                        facts = await store.load_facts(db)
                        n = await self._recompute(db, person_ids, facts)
                except SQLAlchemyError as e:
                    raise ReconcileError("Failed to remove parent relationship", original_error=e) from e
        logger.info("parent fact %s -> %s removed (rows=%s); %s derived relationships", parent_id, child_id, removed, n)
        await self.reconciler.notify(n)
        return MutationResult(True)

    async def recompute_all(self) -> RecomputeResult:
        """Idempotent full rebuild, e.g. after facts were written outside the engine."""
        async with self._lock:
            async with self._session_maker() as db:
                try:
                    async with db.begin():
                        await self._serialize_writers(db)
                        person_ids = await store.load_person_ids(db)
                        facts = await store.load_facts(db)
                        n = await self._recompute(db, person_ids, facts)
                except SQLAlchemyError as e:
                    raise ReconcileError(original_error=e) from e
        logger.info("recomputed relationships for %s people; %s derived", len(person_ids), n)
        self.last_background_error = None
        await self.reconciler.notify(n)
        return RecomputeResult(persons_processed=len(person_ids), relationships=n)

    def schedule_recompute(self) -> asyncio.Task:
        """Fire-and-continue recompute; a newer request cancels one still waiting."""
        return spawn(
            self.recompute_all(),
            name="recompute_all",
            on_error=self._background_failed,
            supersede=True,
        )

    def _background_failed(self, exc: BaseException) -> None:
        # surfaced by /healthz until the next successful recompute
        self.last_background_error = exc

    async def _recompute(self, db: AsyncSession, person_ids: Set[int], facts: List[FactRef]) -> int:
        # raises InconsistentSnapshotError before anything is deleted
        derived = infer_all(person_ids, build_graph(facts), facts)
        return await self.reconciler.swap(db, derived)

    async def _serialize_writers(self, db: AsyncSession) -> None:
        # the asyncio lock covers one process; this covers every process on the same database
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": FACT_SET_LOCK_KEY})

    # ---------------------- reads ----------------------

    async def _read_snapshot(self, db: AsyncSession) -> None:
        # facts and derived rows must come from the same committed state; first statement of the transaction
        if db.get_bind().dialect.name == "postgresql":
            await db.connection(execution_options={"isolation_level": "REPEATABLE READ"})

    async def get_relationships(self, person_id: int) -> List[RelationshipView]:
        async with self._session_maker() as db:
            async with db.begin():
                await self._read_snapshot(db)
                if not await db.get(Person, person_id):
                    raise PersonNotFoundError(person_id)
                out = _explicit_views(person_id, await store.facts_touching(db, person_id))
                for row in await store.derived_for(db, person_id):
                    out.append(RelationshipView(other_id=int(row.other_id), kind=RelationshipKind(row.kind), is_inferred=bool(row.is_inferred)))
        rank = {k: i for i, k in enumerate(KIND_PRIORITY)}
        out.sort(key=lambda v: (rank[v.kind], v.other_id))
        return out

    async def get_relationship_label(self, person_id: int, other_id: int, viewer_is_subject: bool = True) -> Optional[str]:
        """
        How `other_id` relates to `person_id`, labelled from the viewer's side.
        viewer_is_subject=True labels other as seen by person; False labels person as seen by other.
        None when the two are not related.
        """
        async with self._session_maker() as db:
            async with db.begin():
                await self._read_snapshot(db)
                people = await store.load_people(db, {person_id, other_id})
                for pid in (person_id, other_id):
                    if pid not in people:
                        raise PersonNotFoundError(pid)
                kinds = {v.kind for v in _explicit_views(person_id, await store.facts_touching(db, person_id)) if v.other_id == other_id}
                kinds |= {RelationshipKind(r.kind) for r in await store.derived_for(db, person_id, other_id)}
        kind = closest_kind(kinds)
        if kind is None:
            return None
        viewer_id, labelled_id = (person_id, other_id) if viewer_is_subject else (other_id, person_id)
        return label_for_row(person_id, other_id, kind, viewer_id, people[labelled_id].pronouns)

    async def get_parents(self, person_id: int) -> List[Person]:
        return await self._neighbours(person_id, RelationshipKind.parent)

    async def get_children(self, person_id: int) -> List[Person]:
        return await self._neighbours(person_id, RelationshipKind.child)

    async def _neighbours(self, person_id: int, kind: RelationshipKind) -> List[Person]:
        async with self._session_maker() as db:
            if not await db.get(Person, person_id):
                raise PersonNotFoundError(person_id)
            ids = {v.other_id for v in _explicit_views(person_id, await store.facts_touching(db, person_id)) if v.kind == kind}
            people = await store.load_people(db, ids) if ids else {}
        return sorted(people.values(), key=lambda p: ((p.display_name or "").lower(), p.id))

    async def find_cycles(self) -> List[FactRef]:
        """Diagnostic for data imported before the guard existed."""
        async with self._session_maker() as db:
            facts = await store.load_facts(db)
        return find_cycles(facts)


def _require(person_ids: Set[int], *ids: int) -> None:
    for pid in ids:
        if pid not in person_ids:
            raise PersonNotFoundError(pid)


def _explicit_views(person_id: int, facts: List[FactRef]) -> List[RelationshipView]:
    out: List[RelationshipView] = []
    for f in facts:
        if f.child_id == person_id:
            out.append(RelationshipView(other_id=f.parent_id, kind=RelationshipKind.parent, is_inferred=False))
        elif f.parent_id == person_id:
            out.append(RelationshipView(other_id=f.child_id, kind=RelationshipKind.child, is_inferred=False))
    return out
