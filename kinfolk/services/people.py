from typing import Optional, List
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from kinfolk.models import Person
from kinfolk.services.exceptions import PersonNotFoundError, PersonInUseError
from kinfolk.services import store


def _clean(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip()
    return v or None


async def get_person(db: AsyncSession, person_id: int) -> Person:
    p = await db.get(Person, person_id)
    if not p:
        raise PersonNotFoundError(person_id)
    return p


async def list_people(db: AsyncSession) -> List[Person]:
    rows = await db.execute(select(Person).order_by(func.lower(Person.display_name), Person.id))
    return list(rows.scalars().all())


async def create_person(
    db: AsyncSession,
    display_name: str,
    pronouns: Optional[str] = None,
    linked_account_id: Optional[str] = None,
) -> Person:
    name = (display_name or "").strip()
    if not name:
        raise ValueError("display_name is required")
    p = Person(
        display_name=name,
        pronouns=_clean(pronouns),
        linked_account_id=_clean(linked_account_id),
        meta={},
    )
    db.add(p)
    await db.flush()  # ensure p.id
    # caller commits
    return p


async def update_person(
    db: AsyncSession,
    person: Person,
    display_name: Optional[str] = None,
    pronouns: Optional[str] = None,
    linked_account_id: Optional[str] = None,
) -> bool:
    """Apply non-None fields. Empty strings clear pronouns/linked account. Returns True if anything changed."""
    changed = False
    if display_name is not None:
        nm = display_name.strip()
        if not nm:
            raise ValueError("display_name cannot be blank")
        if nm != person.display_name:
            person.display_name = nm
            changed = True
    if pronouns is not None and _clean(pronouns) != person.pronouns:
        person.pronouns = _clean(pronouns)
        changed = True
    if linked_account_id is not None and _clean(linked_account_id) != person.linked_account_id:
        person.linked_account_id = _clean(linked_account_id)
        changed = True
    if changed:
        await db.flush()
    return changed


async def delete_person(db: AsyncSession, person_id: int) -> None:
    """Only people with no parent facts may be deleted; derived rows follow from facts, so none exist."""
    p = await get_person(db, person_id)
    n = await store.count_facts_touching(db, person_id)
    if n:
        raise PersonInUseError(person_id, n)
    await db.delete(p)
    await db.flush()
