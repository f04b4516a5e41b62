"""Push token schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Client platforms that can receive pushes."""

    ANDROID = "android"
    IOS = "ios"
    WEB = "web"


class PushTokenRegister(BaseModel):
    fcm_token: str = Field(..., min_length=1, description="Firebase Cloud Messaging token")
    platform: Platform


class PushTokenResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    user_id: UUID
    fcm_token: str
    platform: Platform
    is_active: bool
    last_used_at: datetime | None = None
    created_at: datetime
