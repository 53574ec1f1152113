"""Initial schema: rides and fare configs.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Enum labels are the Python member names, as SQLAlchemy stores them.
RIDE_STATUSES = (
    "SEARCHING",
    "DRIVER_ASSIGNED",
    "DRIVER_ACCEPTED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
)
VEHICLE_CLASSES = (
    "BIKE_DIRECT",
    "AUTO",
    "AUTO_PRIORITY",
    "CAB_NON_AC",
    "CAB_AC",
    "CAB_AC_SEDAN",
    "CAB_PREMIUM",
    "CAB_XL",
    "AUTO_PET",
    "SEDAN",
    "SUV",
    "HATCHBACK",
    "LUXURY",
)

ride_status = postgresql.ENUM(*RIDE_STATUSES, name="ridestatus", create_type=False)
vehicle_class = postgresql.ENUM(*VEHICLE_CLASSES, name="vehicleclass", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    ride_status.create(bind, checkfirst=True)
    vehicle_class.create(bind, checkfirst=True)

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("requester_id", sa.String(64), nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("vehicle_class", vehicle_class, nullable=False),
        sa.Column("status", ride_status, nullable=False, server_default="SEARCHING"),
        sa.Column("fare_estimate", sa.Float, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("estimated_minutes", sa.Integer, nullable=True),
        sa.Column("surge_multiplier", sa.Float, nullable=True),
        sa.Column("assigned_driver_id", sa.String(64), nullable=True),
        sa.Column("offered_to", sa.JSON, nullable=False),
        sa.Column("rejected_by", sa.JSON, nullable=False),
        sa.Column("assignment_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("search_radius_km", sa.Float, nullable=True),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_requester", "rides", ["requester_id"])
    op.create_index("idx_rides_driver", "rides", ["assigned_driver_id"])

    # ── fare_configs ──────────────────────────────────────────────────
    op.create_table(
        "fare_configs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_class", vehicle_class, nullable=False),
        sa.Column("base_fare", sa.Float, nullable=False),
        sa.Column("per_km_rate", sa.Float, nullable=False),
        sa.Column("per_minute_rate", sa.Float, nullable=False, server_default="2"),
        sa.Column("minimum_fare", sa.Float, nullable=False, server_default="50"),
        sa.Column("surge_multiplier", sa.Float, nullable=False, server_default="1"),
        sa.Column("zones", sa.JSON, nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "uq_fare_configs_active_class",
        "fare_configs",
        ["vehicle_class"],
        unique=True,
        postgresql_where=sa.text("active"),
    )


def downgrade() -> None:
    op.drop_table("fare_configs")
    op.drop_table("rides")
    op.execute("DROP TYPE IF EXISTS ridestatus")
    op.execute("DROP TYPE IF EXISTS vehicleclass")
