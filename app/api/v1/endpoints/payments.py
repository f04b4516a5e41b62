"""Payment settlement webhook and payment lookup."""

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import ValidationError

from app.config import settings
from app.dependencies import CurrentUser, PaymentServiceDep
from app.schemas.payments import PaymentResponse, SettlementRequest, SettlementResponse
from app.services.payment_gateway import verify_signature

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "/settlement",
    response_model=SettlementResponse,
    status_code=status.HTTP_200_OK,
    summary="Payment settlement webhook",
)
async def settle_payment(
    request: Request,
    service: PaymentServiceDep,
    x_payment_signature: str | None = Header(None, alias="X-Payment-Signature"),
) -> SettlementResponse:
    """
    Receive a settlement outcome from the payment gateway.

    The raw body must be signed with HMAC-SHA256 using the shared webhook
    secret, hex encoded in ``X-Payment-Signature``. A success confirms the
    appointment; a failure leaves it pending.
    """
    body = await request.body()

    if not verify_signature(body, x_payment_signature, settings.payment_webhook_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid payment signature",
        )

    try:
        data = SettlementRequest.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from None

    return await service.settle(data)


@router.get(
    "/{transaction_id}",
    response_model=PaymentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get payment",
)
async def get_payment(
    transaction_id: str,
    current_user: CurrentUser,
    service: PaymentServiceDep,
) -> PaymentResponse:
    """Get a payment of the authenticated user by transaction reference."""
    return await service.get_payment(transaction_id, current_user)
