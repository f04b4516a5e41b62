"""Time slot schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class SlotStatus(str, Enum):
    """Slot status enumeration."""

    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"


class SlotResponse(BaseModel):
    """Single slot."""

    id: UUID
    doctor_id: UUID
    date: date
    start_time: time
    end_time: time
    status: SlotStatus
    block_reason: str | None = None

    model_config = {"from_attributes": True}


class SlotAppointmentSummary(BaseModel):
    """Appointment currently holding a slot, as seen by the doctor."""

    id: UUID
    appointment_number: str
    patient_id: UUID
    patient_name: str | None = None
    patient_phone: str | None = None
    status: str


class DoctorSlotResponse(SlotResponse):
    """Slot with the appointment holding it, if any."""

    appointment: SlotAppointmentSummary | None = None


class SlotDay(BaseModel):
    """Slots of one date."""

    date: date
    day_name: str
    slots: list[SlotResponse]


class DoctorSlotDay(BaseModel):
    """Slots of one date, doctor view."""

    date: date
    day_name: str
    slots: list[DoctorSlotResponse]


class AvailableSlotsResponse(BaseModel):
    """Bookable slots of a doctor over a date range."""

    doctor_id: UUID
    start_date: date
    end_date: date
    total_slots: int
    days: list[SlotDay]


class DateRange(BaseModel):
    """Inclusive date range."""

    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        """End must not precede start."""
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class SlotGenerateRequest(DateRange):
    """Request to generate slots from the doctor's schedule."""

    overwrite: bool = False


class SlotGenerateResponse(BaseModel):
    """Result of a generation run."""

    generated_slots: int
    deleted_slots: int = 0
    start_date: date
    end_date: date


class SlotCreate(BaseModel):
    """Custom one-off slot."""

    date: date
    start_time: time
    end_time: time
    status: SlotStatus = SlotStatus.AVAILABLE

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: SlotStatus) -> SlotStatus:
        """Custom slots cannot be created already booked."""
        if v == SlotStatus.BOOKED:
            raise ValueError("Custom slots must be available or blocked")
        return v

    @model_validator(mode="after")
    def validate_times(self) -> "SlotCreate":
        """End time must be after start time."""
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class SlotBlockRequest(BaseModel):
    """Request to block a slot."""

    reason: str | None = Field(None, max_length=255)


class SlotStatistics(BaseModel):
    """Slot utilisation counts over a period."""

    start_date: date
    end_date: date
    total_slots: int
    available_slots: int
    booked_slots: int
    blocked_slots: int
    utilization_rate: float
    computed_at: datetime
