from __future__ import annotations

from typing import Dict, List, Optional, Set

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kinfolk.models import DerivedRelationship, ParentFact, Person
from kinfolk.services.graph import FactRef


async def load_person_ids(db: AsyncSession) -> Set[int]:
    return {int(x) for x in (await db.execute(select(Person.id))).scalars().all()}


async def load_people(db: AsyncSession, ids: Optional[Set[int]] = None) -> Dict[int, Person]:
    q = select(Person)
    if ids is not None:
        q = q.where(Person.id.in_(ids))
    rows = (await db.execute(q)).scalars().all()
    return {int(p.id): p for p in rows}


async def load_facts(db: AsyncSession) -> List[FactRef]:
    rows = await db.execute(select(ParentFact.parent_id, ParentFact.child_id).order_by(ParentFact.id))
    return [FactRef(int(p), int(c)) for p, c in rows.all()]


async def insert_fact(db: AsyncSession, parent_id: int, child_id: int) -> ParentFact:
    fact = ParentFact(parent_id=parent_id, child_id=child_id)
    db.add(fact)
    await db.flush()
    return fact


async def delete_fact(db: AsyncSession, parent_id: int, child_id: int) -> int:
    res = await db.execute(
        delete(ParentFact).where(ParentFact.parent_id == parent_id, ParentFact.child_id == child_id)
    )
    return int(res.rowcount or 0)


async def facts_touching(db: AsyncSession, person_id: int) -> List[FactRef]:
    rows = await db.execute(
        select(ParentFact.parent_id, ParentFact.child_id)
        .where(or_(ParentFact.parent_id == person_id, ParentFact.child_id == person_id))
        .order_by(ParentFact.id)
    )
    return [FactRef(int(p), int(c)) for p, c in rows.all()]


async def count_facts_touching(db: AsyncSession, person_id: int) -> int:
    return int(
        await db.scalar(
            select(func.count(ParentFact.id)).where(
                or_(ParentFact.parent_id == person_id, ParentFact.child_id == person_id)
            )
        )
        or 0
    )


async def derived_for(db: AsyncSession, person_id: int, other_id: Optional[int] = None) -> List[DerivedRelationship]:
    q = select(DerivedRelationship).where(DerivedRelationship.person_id == person_id)
    if other_id is not None:
        q = q.where(DerivedRelationship.other_id == other_id)
    return list((await db.execute(q.order_by(DerivedRelationship.id))).scalars().all())


async def all_derived(db: AsyncSession) -> List[DerivedRelationship]:
    return list((await db.execute(select(DerivedRelationship).order_by(DerivedRelationship.id))).scalars().all())
