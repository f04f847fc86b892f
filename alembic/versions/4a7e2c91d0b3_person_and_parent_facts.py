"""person, parent facts and derived relationships

Revision ID: 4a7e2c91d0b3
Revises: 
Create Date: 2026-10-17 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "4a7e2c91d0b3"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

KINDS = ("parent", "child", "sibling", "grandparent", "grandchild", "aunt_uncle", "niece_nephew", "cousin")


def upgrade() -> None:
    op.create_table(
        "person",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("pronouns", sa.String(length=32), nullable=True),
        sa.Column("linked_account_id", sa.String(length=64), nullable=True),
        sa.Column("meta", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_person_linked_account_id", "person", ["linked_account_id"])

    op.create_table(
        "parent_fact",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("person.id", ondelete="CASCADE"), nullable=False),
        sa.Column("child_id", sa.Integer(), sa.ForeignKey("person.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("parent_id", "child_id", name="uq_parent_fact_once"),
        sa.CheckConstraint("parent_id <> child_id", name="ck_parent_fact_not_self"),
    )
    op.create_index("ix_parent_fact_parent_id", "parent_fact", ["parent_id"])
    op.create_index("ix_parent_fact_child_id", "parent_fact", ["child_id"])

    op.create_table(
        "derived_relationship",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("person.id", ondelete="CASCADE"), nullable=False),
        sa.Column("other_id", sa.Integer(), sa.ForeignKey("person.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.Enum(*KINDS, name="relationship_kind"), nullable=False),
        sa.Column("is_inferred", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("computed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("person_id", "other_id", "kind", name="uq_derived_once"),
    )
    op.create_index("ix_derived_person_kind", "derived_relationship", ["person_id", "kind"])


def downgrade() -> None:
    op.drop_index("ix_derived_person_kind", table_name="derived_relationship")
    op.drop_table("derived_relationship")
    sa.Enum(name="relationship_kind").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_parent_fact_child_id", table_name="parent_fact")
    op.drop_index("ix_parent_fact_parent_id", table_name="parent_fact")
    op.drop_table("parent_fact")
    op.drop_index("ix_person_linked_account_id", table_name="person")
    op.drop_table("person")
