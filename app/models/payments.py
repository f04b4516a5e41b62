"""Payments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from app.models.base import metadata

payments = Table(
    "payments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("transaction_id", String(20), nullable=False, unique=True),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("amount", Numeric(10, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default="XOF"),
    Column("payment_method", Text, nullable=True),
    Column("status", Text, nullable=False, server_default="pending"),
    # Gateway linkage
    Column("gateway_transaction_id", Text, nullable=True, index=True),
    Column("gateway_response", JSON, nullable=True),
    Column("metadata", JSON, nullable=True),
    # Settlement
    Column("paid_at", DateTime(timezone=True), nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("refund_amount", Numeric(10, 2), nullable=False, server_default="0"),
    Column("refunded_at", DateTime(timezone=True), nullable=True),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunded')",
        name="payments_status_check",
    ),
    CheckConstraint(
        "payment_method IN ('stripe', 'cinetpay', 'cash', 'bank_transfer')",
        name="payments_method_check",
    ),
)
