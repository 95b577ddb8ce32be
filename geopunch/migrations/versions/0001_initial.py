"""Initial punch engine schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

audit_actor_type = postgresql.ENUM(
    "EMPLOYEE",
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "geofences",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_meters", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("latitude >= -90 AND latitude <= 90", name="ck_geofences_valid_latitude"),
        sa.CheckConstraint("longitude >= -180 AND longitude <= 180", name="ck_geofences_valid_longitude"),
        sa.CheckConstraint("radius_meters > 0 AND radius_meters <= 10000", name="ck_geofences_valid_radius"),
    )
    op.create_index("ix_geofences_deleted_at", "geofences", ["deleted_at"], unique=False)
    op.create_index(
        "uq_geofences_name_live",
        "geofences",
        ["name"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
        sqlite_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("geofence_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["geofence_id"], ["geofences.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_employees_geofence_id", "employees", ["geofence_id"], unique=False)

    op.create_table(
        "punch_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("geofence_id", sa.Integer(), nullable=True),
        sa.Column("punch_in_ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("punch_in_lat", sa.Float(), nullable=False),
        sa.Column("punch_in_lon", sa.Float(), nullable=False),
        sa.Column("punch_in_valid_geofence", sa.Boolean(), nullable=False),
        sa.Column("punch_in_distance_m", sa.Float(), nullable=True),
        sa.Column("punch_out_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("punch_out_lat", sa.Float(), nullable=True),
        sa.Column("punch_out_lon", sa.Float(), nullable=True),
        sa.Column("punch_out_valid_geofence", sa.Boolean(), nullable=True),
        sa.Column("punch_out_distance_m", sa.Float(), nullable=True),
        sa.Column("break_start_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("break_end_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["geofence_id"], ["geofences.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_punch_sessions_employee_id", "punch_sessions", ["employee_id"], unique=False)
    op.create_index("ix_punch_sessions_geofence_id", "punch_sessions", ["geofence_id"], unique=False)
    op.create_index("ix_punch_sessions_punch_in_ts_utc", "punch_sessions", ["punch_in_ts_utc"], unique=False)
    op.create_index("ix_punch_sessions_punch_out_ts_utc", "punch_sessions", ["punch_out_ts_utc"], unique=False)
    op.create_index(
        "uq_punch_sessions_employee_open",
        "punch_sessions",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("punch_out_ts_utc IS NULL"),
        sqlite_where=sa.text("punch_out_ts_utc IS NULL"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("uq_punch_sessions_employee_open", table_name="punch_sessions")
    op.drop_index("ix_punch_sessions_punch_out_ts_utc", table_name="punch_sessions")
    op.drop_index("ix_punch_sessions_punch_in_ts_utc", table_name="punch_sessions")
    op.drop_index("ix_punch_sessions_geofence_id", table_name="punch_sessions")
    op.drop_index("ix_punch_sessions_employee_id", table_name="punch_sessions")
    op.drop_table("punch_sessions")
    op.drop_index("ix_employees_geofence_id", table_name="employees")
    op.drop_table("employees")
    op.drop_index("uq_geofences_name_live", table_name="geofences")
    op.drop_index("ix_geofences_deleted_at", table_name="geofences")
    op.drop_table("geofences")
    postgresql.ENUM(name="audit_actor_type").drop(op.get_bind(), checkfirst=True)
