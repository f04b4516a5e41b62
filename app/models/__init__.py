"""Database models."""

from app.models.appointments import appointments
from app.models.base import metadata
from app.models.doctors import doctors
from app.models.payments import payments
from app.models.push_tokens import push_tokens
from app.models.time_slots import time_slots
from app.models.users import users

__all__ = [
    "appointments",
    "doctors",
    "metadata",
    "payments",
    "push_tokens",
    "time_slots",
    "users",
]
