"""Doctor model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    Uuid,
    false,
    func,
    true,
)

from app.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    ),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    Column("license_number", String(100), unique=True),
    # Practice information
    Column("consultation_fee", Numeric(10, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default="XOF"),
    Column("clinic_name", Text),
    Column("clinic_address", Text),
    # Recurring weekly schedule (bit 0 = Monday ... bit 6 = Sunday)
    Column("working_days", Integer, nullable=False),
    Column("working_start_time", Time, nullable=False),
    Column("working_end_time", Time, nullable=False),
    Column("appointment_duration", Integer, nullable=False, server_default="30"),
    # Flags
    Column("is_verified", Boolean, nullable=False, server_default=false(), index=True),
    Column("accepts_online_payment", Boolean, nullable=False, server_default=true()),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "working_start_time < working_end_time",
        name="doctors_working_hours_check",
    ),
    CheckConstraint(
        "appointment_duration > 0",
        name="doctors_appointment_duration_check",
    ),
    CheckConstraint(
        "working_days >= 0 AND working_days < 128",
        name="doctors_working_days_check",
    ),
)
