"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Table,
    Text,
    Time,
    Uuid,
    false,
    func,
    text,
)

from app.models.base import metadata

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("appointment_number", String(20), nullable=False, unique=True),
    # Ownership / references
    Column(
        "patient_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "slot_id",
        Uuid,
        ForeignKey("time_slots.id", ondelete="CASCADE"),
        nullable=False,
    ),
    # Snapshot of the slot at booking time
    Column("appointment_date", Date, nullable=False),
    Column("appointment_time", Time, nullable=False),
    # Status management
    Column("status", Text, nullable=False, server_default="pending"),
    Column("payment_method", Text, nullable=False, server_default="online"),
    Column("payment_status", Text, nullable=False, server_default="pending"),
    Column("amount", Numeric(10, 2), nullable=False),
    # Details
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("reminder_sent", Boolean, nullable=False, server_default=false()),
    # Audit fields
    Column("confirmed_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'rescheduled', 'cancelled', 'completed', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "payment_status IN ('pending', 'paid', 'failed', 'refunded')",
        name="appointments_payment_status_check",
    ),
    CheckConstraint(
        "payment_method IN ('online', 'cash_at_clinic')",
        name="appointments_payment_method_check",
    ),
)

# At most one non-cancelled appointment may hold a slot
Index(
    "uq_appointments_active_slot",
    appointments.c.slot_id,
    unique=True,
    postgresql_where=text("status <> 'cancelled'"),
    sqlite_where=text("status <> 'cancelled'"),
)
Index("idx_appointments_status", appointments.c.status)
Index(
    "idx_appointments_date_status",
    appointments.c.appointment_date,
    appointments.c.status,
)
