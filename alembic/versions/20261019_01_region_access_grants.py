"""Region access grants, permanent assignments and effective access.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    uuid_type = sa.dialects.postgresql.UUID(as_uuid=True)

    op.create_table(
        "region_access_grants",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("subject_user_id", uuid_type, nullable=False),
        sa.Column("region", sa.String(length=128), nullable=False),
        sa.Column("access_level", sa.String(length=32), nullable=False),
        sa.Column("granted_by_user_id", uuid_type, nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by_user_id", uuid_type, nullable=True),
        sa.Column("revoked_reason", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_region_access_grants_subject_region",
        "region_access_grants",
        ["subject_user_id", "region"],
    )
    op.create_index("ix_region_access_grants_expires_at", "region_access_grants", ["expires_at"])

    op.create_table(
        "region_access_grant_expiries",
        sa.Column(
            "grant_id",
            uuid_type,
            sa.ForeignKey("region_access_grants.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "permanent_region_assignments",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("user_id", uuid_type, nullable=False),
        sa.Column("region", sa.String(length=128), nullable=False),
        sa.Column("access_level", sa.String(length=32), nullable=False),
        sa.Column("assigned_by_user_id", uuid_type, nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "region", name="uq_permanent_region_assignments_user_region"),
    )
    op.create_index(
        "ix_permanent_region_assignments_user_id",
        "permanent_region_assignments",
        ["user_id"],
    )

    op.create_table(
        "effective_region_access",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("user_id", uuid_type, nullable=False),
        sa.Column("region", sa.String(length=128), nullable=False),
        sa.Column("access_level", sa.String(length=32), nullable=False),
        sa.Column("justification", sa.String(length=64), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "region", name="uq_effective_region_access_user_region"),
    )
    op.create_index("ix_effective_region_access_user_id", "effective_region_access", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_effective_region_access_user_id", table_name="effective_region_access")
    op.drop_table("effective_region_access")
    op.drop_index("ix_permanent_region_assignments_user_id", table_name="permanent_region_assignments")
    op.drop_table("permanent_region_assignments")
    op.drop_table("region_access_grant_expiries")
    op.drop_index("ix_region_access_grants_expires_at", table_name="region_access_grants")
    op.drop_index("ix_region_access_grants_subject_region", table_name="region_access_grants")
    op.drop_table("region_access_grants")
