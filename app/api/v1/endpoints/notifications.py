"""Push token registration."""

from fastapi import APIRouter, status

from app.dependencies import CurrentUser, DatabaseSession
from app.schemas.notifications import PushTokenRegister, PushTokenResponse
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post(
    "/register-token",
    response_model=PushTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_fcm_token(
    token_data: PushTokenRegister,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> PushTokenResponse:
    """Register or refresh the caller's FCM token.

    Booking confirmations, cancellations, reschedules and reminders are
    pushed to every active token of the recipient.
    """
    token = await NotificationService.register_token(
        db=db,
        user_id=current_user["id"],
        fcm_token=token_data.fcm_token,
        platform=token_data.platform.value,
    )
    return PushTokenResponse.model_validate(token)
