"""Payment collaborator boundary."""

import hashlib
import hmac
import secrets
import string
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Protocol

import structlog

from app.core.exceptions import PaymentGatewayException

logger = structlog.get_logger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def _random_reference(prefix: str, length: int) -> str:
    return prefix + "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(length))


def new_transaction_id() -> str:
    """Generate a payment reference such as ``TXN-7K2QX9PL4M``."""
    return _random_reference("TXN-", 10)


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 signature of a webhook body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a webhook signature in constant time."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature)


class PaymentGateway(Protocol):
    """Executes refunds against the payment provider."""

    async def refund(
        self,
        payment: Mapping[str, Any],
        amount: Decimal,
        reason: str | None,
    ) -> dict[str, Any]:
        """
        Refund part or all of a captured payment.

        Args:
            payment: ``payments`` row being refunded
            amount: Amount to give back
            reason: Free-text reason forwarded to the provider

        Returns:
            Provider response; ``refund_id`` identifies the refund

        Raises:
            PaymentGatewayException: If the provider rejects the refund
        """
        ...


class LedgerPaymentGateway:
    """Gateway that only records refunds locally.

    Used when no provider integration is configured; the refund is settled
    offline by the clinic.
    """

    async def refund(
        self,
        payment: Mapping[str, Any],
        amount: Decimal,
        reason: str | None,
    ) -> dict[str, Any]:
        if amount < 0 or amount > Decimal(payment["amount"]):
            raise PaymentGatewayException("Refund amount exceeds captured amount")

        refund_id = _random_reference("RFD-", 10)
        logger.info(
            "refund_recorded",
            transaction_id=payment["transaction_id"],
            refund_id=refund_id,
            amount=str(amount),
        )
        return {"refund_id": refund_id, "amount": str(amount), "status": "succeeded"}
