from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, func,
    UniqueConstraint, Index, CheckConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import Enum as SAEnum
import enum

from .database import Base

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class RelationshipKind(str, enum.Enum):
    # explicit: materialized from ParentFact rows, never stored as derived
    parent = "parent"
    child = "child"
    # derived: written only by the reconciler
    sibling = "sibling"
    grandparent = "grandparent"
    grandchild = "grandchild"
    aunt_uncle = "aunt_uncle"
    niece_nephew = "niece_nephew"
    cousin = "cousin"


EXPLICIT_KINDS = frozenset({RelationshipKind.parent, RelationshipKind.child})
DERIVED_KINDS = frozenset(set(RelationshipKind) - EXPLICIT_KINDS)


# --- People & Relationships ---

class Person(Base):
    __tablename__ = "person"
    id = Column(Integer, primary_key=True)
    display_name = Column(String(128), nullable=False)
    pronouns = Column(String(32))  # "she/her", "he/him", "they/them" ... labels only
    linked_account_id = Column(String(64), index=True, nullable=True)  # authenticated account, if any
    meta = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())


class ParentFact(Base):
    """
    Explicit, user-asserted edge: parent_id is a parent of child_id.
    The only source of truth; every other kind is derived from these rows.
    """
    __tablename__ = "parent_fact"
    id = Column(Integer, primary_key=True)
    parent_id = Column(ForeignKey("person.id", ondelete="CASCADE"), index=True, nullable=False)
    child_id = Column(ForeignKey("person.id", ondelete="CASCADE"), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        UniqueConstraint("parent_id", "child_id", name="uq_parent_fact_once"),
        CheckConstraint("parent_id <> child_id", name="ck_parent_fact_not_self"),
    )


class DerivedRelationship(Base):
    """
    `other_id` is `kind` of `person_id` (e.g. kind=grandparent: other is person's grandparent).
    Replaced wholesale on every fact change.
    """
    __tablename__ = "derived_relationship"
    id = Column(Integer, primary_key=True)
    person_id = Column(ForeignKey("person.id", ondelete="CASCADE"), nullable=False)
    other_id = Column(ForeignKey("person.id", ondelete="CASCADE"), nullable=False)
    kind = Column(SAEnum(RelationshipKind, name="relationship_kind"), nullable=False)
    is_inferred = Column(Boolean, default=True, nullable=False)
    computed_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        UniqueConstraint("person_id", "other_id", "kind", name="uq_derived_once"),
        Index("ix_derived_person_kind", "person_id", "kind"),
    )
