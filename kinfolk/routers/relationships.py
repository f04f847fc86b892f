from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..routes_shared import get_engine
from ..schemas import (
    CycleReport, FactRead, MutationRead, ParentFactCreate, RecomputeRead,
    RelationshipLabelRead, RelationshipList, RelationshipRead,
)
from ..services import store
from ..services.engine import RelationshipEngine
from ..services.kinship import label_for
from ..settings.config import settings

router = APIRouter(tags=["relationships"])


@router.post("/api/people/{child_id}/parents", response_model=MutationRead, response_model_exclude_none=True)
async def api_parent_add(child_id: int, payload: ParentFactCreate, engine: RelationshipEngine = Depends(get_engine)):
    res = await engine.add_parent_fact(child_id, payload.parent_id)
    if not res.ok:
        # validation outcome, not a fault: nothing was written
        return JSONResponse(status_code=409, content=res.to_dict())
    return res.to_dict()


@router.delete("/api/people/{child_id}/parents/{parent_id}", response_model=MutationRead, response_model_exclude_none=True)
async def api_parent_remove(child_id: int, parent_id: int, engine: RelationshipEngine = Depends(get_engine)):
    res = await engine.remove_parent_fact(child_id, parent_id)
    return res.to_dict()


@router.get("/api/people/{person_id}/relationships", response_model=RelationshipList)
async def api_relationships(person_id: int, engine: RelationshipEngine = Depends(get_engine), db: AsyncSession = Depends(get_db)):
    views = await engine.get_relationships(person_id)
    people = await store.load_people(db, {v.other_id for v in views}) if views else {}
    out = []
    for v in views:
        other = people.get(v.other_id)
        out.append(RelationshipRead(
            other_id=v.other_id,
            other_name=other.display_name if other else None,
            kind=v.kind,
            is_inferred=v.is_inferred,
            label=label_for(v.kind, True, other.pronouns if other else None),
        ))
    return RelationshipList(person_id=person_id, count=len(out), relationships=out)


@router.get("/api/people/{person_id}/relationships/{other_id}/label", response_model=RelationshipLabelRead)
async def api_relationship_label(
    person_id: int,
    other_id: int,
    viewer_is_subject: bool = Query(True),
    engine: RelationshipEngine = Depends(get_engine),
):
    label = await engine.get_relationship_label(person_id, other_id, viewer_is_subject=viewer_is_subject)
    return RelationshipLabelRead(person_id=person_id, other_id=other_id, viewer_is_subject=viewer_is_subject, label=label)


@router.post("/api/relationships/recompute", response_model=RecomputeRead)
async def api_relationships_recompute(engine: RelationshipEngine = Depends(get_engine)):
    if settings.RECOMPUTE_IN_BACKGROUND:
        engine.schedule_recompute()
        return RecomputeRead(scheduled=True)
    res = await engine.recompute_all()
    return RecomputeRead(scheduled=False, **res.to_dict())


@router.get("/api/relationships/cycles", response_model=CycleReport)
async def api_relationships_cycles(engine: RelationshipEngine = Depends(get_engine)):
    facts = await engine.find_cycles()
    return CycleReport(count=len(facts), facts=[FactRead(parent_id=f.parent_id, child_id=f.child_id) for f in facts])
