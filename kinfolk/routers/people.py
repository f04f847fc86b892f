from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..routes_shared import get_engine
from ..schemas import PersonCreate, PersonPatch, PersonRead
from ..services import people as people_svc
from ..services.engine import RelationshipEngine

router = APIRouter(prefix="/api/people", tags=["people"])


@router.get("", response_model=List[PersonRead])
async def api_people_list(db: AsyncSession = Depends(get_db)):
    return await people_svc.list_people(db)


@router.post("", response_model=PersonRead, status_code=201)
async def api_people_create(payload: PersonCreate, db: AsyncSession = Depends(get_db)):
    try:
        p = await people_svc.create_person(
            db, payload.display_name, pronouns=payload.pronouns, linked_account_id=payload.linked_account_id
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    await db.commit()
    return p


@router.get("/{person_id}", response_model=PersonRead)
async def api_people_get(person_id: int, db: AsyncSession = Depends(get_db)):
    return await people_svc.get_person(db, person_id)


@router.patch("/{person_id}", response_model=PersonRead)
async def api_people_patch(person_id: int, payload: PersonPatch, db: AsyncSession = Depends(get_db)):
    p = await people_svc.get_person(db, person_id)
    try:
        changed = await people_svc.update_person(
            db, p,
            display_name=payload.display_name,
            pronouns=payload.pronouns,
            linked_account_id=payload.linked_account_id,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    if changed:
        await db.commit()
    return p


@router.delete("/{person_id}")
async def api_people_delete(person_id: int, db: AsyncSession = Depends(get_db)):
    await people_svc.delete_person(db, person_id)
    await db.commit()
    return {"ok": True}


@router.get("/{person_id}/parents", response_model=List[PersonRead])
async def api_people_parents(person_id: int, engine: RelationshipEngine = Depends(get_engine)):
    return await engine.get_parents(person_id)


@router.get("/{person_id}/children", response_model=List[PersonRead])
async def api_people_children(person_id: int, engine: RelationshipEngine = Depends(get_engine)):
    return await engine.get_children(person_id)
