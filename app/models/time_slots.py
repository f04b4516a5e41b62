"""Time slot table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Table,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    func,
)

from app.models.base import metadata

time_slots = Table(
    "time_slots",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("status", Text, nullable=False, server_default="available"),
    Column("block_reason", Text, nullable=True),
    Column("blocked_at", DateTime(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    UniqueConstraint("doctor_id", "date", "start_time", name="uq_time_slots_doctor_date_start"),
    CheckConstraint("start_time < end_time", name="time_slots_time_range_check"),
    CheckConstraint(
        "status IN ('available', 'booked', 'blocked')",
        name="time_slots_status_check",
    ),
)

Index("idx_time_slots_doctor_date", time_slots.c.doctor_id, time_slots.c.date)
Index("idx_time_slots_status", time_slots.c.status)
