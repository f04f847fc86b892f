from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from .models import RelationshipKind


# =========================
# PERSON SCHEMAS
# =========================
class PersonBase(BaseModel):
    display_name: str = Field(min_length=1, max_length=128)
    pronouns: Optional[str] = Field(default=None, max_length=32)
    linked_account_id: Optional[str] = Field(default=None, max_length=64)

class PersonCreate(PersonBase):
    pass

class PersonPatch(BaseModel):
    display_name: Optional[str] = None
    pronouns: Optional[str] = None
    linked_account_id: Optional[str] = None

class PersonRead(PersonBase):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================
# PARENT FACT SCHEMAS
# =========================
class ParentFactCreate(BaseModel):
    parent_id: int

class FactRead(BaseModel):
    parent_id: int
    child_id: int

class MutationRead(BaseModel):
    ok: bool
    reason: Optional[str] = None
    message: Optional[str] = None


# =========================
# RELATIONSHIP SCHEMAS
# =========================
class RelationshipRead(BaseModel):
    other_id: int
    other_name: Optional[str] = None
    kind: RelationshipKind
    is_inferred: bool
    label: str

class RelationshipList(BaseModel):
    person_id: int
    count: int
    relationships: List[RelationshipRead] = []

class RelationshipLabelRead(BaseModel):
    person_id: int
    other_id: int
    viewer_is_subject: bool
    label: Optional[str] = None

class RecomputeRead(BaseModel):
    scheduled: bool = False
    persons_processed: Optional[int] = None
    relationships: Optional[int] = None

class CycleReport(BaseModel):
    count: int
    facts: List[FactRead] = []
