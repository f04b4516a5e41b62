"""Payment schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer


class PaymentRecordStatus(str, Enum):
    """Payment row status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class SettlementOutcome(str, Enum):
    """Outcome reported by the payment gateway."""

    SUCCESS = "success"
    FAILURE = "failure"


class SettlementRequest(BaseModel):
    """Settlement notification sent by the payment gateway."""

    transaction_id: str = Field(..., min_length=1, max_length=20)
    outcome: SettlementOutcome
    amount: Decimal | None = Field(None, ge=0)
    payment_method: str | None = Field(None, pattern="^(stripe|cinetpay|bank_transfer)$")
    gateway_transaction_id: str | None = None
    failure_reason: str | None = Field(None, max_length=500)
    gateway_response: dict[str, Any] | None = None


class RefundQuote(BaseModel):
    """Refund computed by the cancellation policy."""

    amount: Decimal
    note: str | None = None


class PaymentResponse(BaseModel):
    """Payment response schema."""

    id: UUID
    transaction_id: str
    appointment_id: UUID
    user_id: UUID
    amount: Decimal
    currency: str
    payment_method: str | None = None
    status: PaymentRecordStatus
    gateway_transaction_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None
    refund_amount: Decimal
    refunded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("amount", "refund_amount", when_used="json")
    def serialize_decimal(self, value: Decimal) -> float:
        """Serialize Decimal to float for JSON."""
        return float(value)


class SettlementResponse(BaseModel):
    """Result of processing a settlement notification."""

    transaction_id: str
    payment_status: PaymentRecordStatus
    appointment_id: UUID
    appointment_status: str
