"""Doctor schemas for request/response validation."""

from datetime import datetime, time
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from app.services.slot_generator import WEEKDAY_NAMES, DoctorSchedule, Weekday

# ============================================================================
# Schedule Schemas
# ============================================================================


class ScheduleBase(BaseModel):
    """Recurring weekly availability of a doctor."""

    working_days: list[str] = Field(..., min_length=1, max_length=7)
    working_start_time: time
    working_end_time: time
    appointment_duration: int = Field(30, ge=5, le=480)

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, v: list[str]) -> list[str]:
        """Normalize day names and reject unknown ones."""
        cleaned = []
        for day in v:
            name = day.strip().lower()
            if name not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown weekday: {day}")
            if name not in cleaned:
                cleaned.append(name)
        return cleaned

    @model_validator(mode="after")
    def validate_hours(self) -> "ScheduleBase":
        """Check start < end and that at least one slot fits."""
        DoctorSchedule(
            working_days=Weekday.from_names(self.working_days),
            start_time=self.working_start_time,
            end_time=self.working_end_time,
            slot_duration_minutes=self.appointment_duration,
        )
        return self

    def working_days_mask(self) -> int:
        """Working days as the stored bitmask."""
        return int(Weekday.from_names(self.working_days))


class ScheduleUpdate(ScheduleBase):
    """Schema for replacing a doctor's schedule."""


# ============================================================================
# Doctor Schemas
# ============================================================================


class DoctorCreate(ScheduleBase):
    """Schema for creating a doctor profile."""

    user_id: UUID
    full_name: str = Field(..., min_length=1, max_length=200)
    specialization: str | None = Field(None, max_length=200)
    license_number: str | None = Field(None, max_length=100)
    consultation_fee: Decimal = Field(..., ge=0, decimal_places=2)
    currency: str = Field("XOF", min_length=3, max_length=3)
    clinic_name: str | None = None
    clinic_address: str | None = None
    accepts_online_payment: bool = True


class DoctorResponse(BaseModel):
    """Doctor response schema."""

    id: UUID
    user_id: UUID
    full_name: str
    specialization: str | None = None
    license_number: str | None = None
    consultation_fee: Decimal
    currency: str
    clinic_name: str | None = None
    clinic_address: str | None = None
    working_days: list[str]
    working_start_time: time
    working_end_time: time
    appointment_duration: int
    is_verified: bool
    accepts_online_payment: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("working_days", mode="before")
    @classmethod
    def expand_mask(cls, v: int | list[str]) -> list[str]:
        """Stored rows carry a bitmask; expose day names."""
        if isinstance(v, int):
            return Weekday(v).to_names()
        return v

    @field_serializer("consultation_fee", when_used="json")
    def serialize_decimal(self, value: Decimal) -> float:
        """Serialize Decimal to float for JSON."""
        return float(value)


class VerificationUpdate(BaseModel):
    """Admin decision on a doctor profile."""

    is_verified: bool
