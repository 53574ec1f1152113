"""
SQLAlchemy ORM models.

Tables
------
* ``rides``         -- ride requests and their lifecycle state
* ``fare_configs``  -- per-vehicle-class pricing, zones stored as JSON rings

Indexes
-------
* **B-Tree** on ``status``, ``requester_id``, ``assigned_driver_id`` for the
  lifecycle and dispatch look-ups.
* **Partial unique** index on ``fare_configs(vehicle_class) WHERE active``
  enforces one active config per class on PostgreSQL.

Driver positions are not persisted here: they live in the in-memory geo
index, which is rebuilt from live location updates.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    func,
    text,
)

from .database import Base
from ridedispatch.domain.enums import RideStatus, VehicleClass


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(32), primary_key=True)
    requester_id = Column(String(64), nullable=False)

    pickup_lng = Column(Float, nullable=False)
    pickup_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)

    vehicle_class = Column(Enum(VehicleClass), nullable=False)
    status = Column(Enum(RideStatus), default=RideStatus.SEARCHING, nullable=False)

    fare_estimate = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)
    estimated_minutes = Column(Integer, nullable=True)
    surge_multiplier = Column(Float, nullable=True)

    assigned_driver_id = Column(String(64), nullable=True)
    offered_to = Column(JSON, nullable=False, default=list)
    rejected_by = Column(JSON, nullable=False, default=list)
    assignment_attempts = Column(Integer, default=0, nullable=False)
    search_radius_km = Column(Float, nullable=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    version = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_requester", "requester_id"),
        Index("idx_rides_driver", "assigned_driver_id"),
    )


class FareConfigModel(Base):
    __tablename__ = "fare_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_class = Column(Enum(VehicleClass), nullable=False)
    base_fare = Column(Float, nullable=False)
    per_km_rate = Column(Float, nullable=False)
    per_minute_rate = Column(Float, default=2.0, nullable=False)
    minimum_fare = Column(Float, default=50.0, nullable=False)
    surge_multiplier = Column(Float, default=1.0, nullable=False)
    # [{"name": str, "surge_multiplier": float, "coordinates": [[lon, lat], ...]}]
    zones = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            "uq_fare_configs_active_class",
            "vehicle_class",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active"),
        ),
    )
