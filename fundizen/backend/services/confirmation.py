from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from fundizen.core.errors import INVALID_CALLBACK, ConfirmationError

from .gateway import PaymentGatewaySession

logger = logging.getLogger("fundizen.backend.confirmation")


class ConfirmationStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class ConfirmationOutcome:
    status: ConfirmationStatus
    donation_id: Optional[str] = None
    reference: Optional[str] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ConfirmationStatus.SUCCEEDED


def _param(params: Mapping[str, Optional[str]], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class ConfirmationHandler:
    """
    Resolves a browser return from the hosted checkout.

    Works from the query parameters alone: the flow that started the checkout
    may be long gone by the time the donor comes back.
    """

    def __init__(self, gateway: PaymentGatewaySession):
        self.gateway = gateway

    async def confirm_return(self, params: Mapping[str, Optional[str]]) -> ConfirmationOutcome:
        session_id = _param(params, "session_id")
        payment_intent = _param(params, "payment_intent")
        status = _param(params, "status")

        # First present parameter wins.
        if session_id:
            reference = session_id
            payment_method_id = None
        elif payment_intent:
            reference = payment_intent
            payment_method_id = _param(params, "payment_method")
        elif status and status.lower() == "cancelled":
            logger.info("Donor cancelled the hosted checkout")
            return ConfirmationOutcome(status=ConfirmationStatus.CANCELLED)
        else:
            raise ConfirmationError(
                "Callback carries no session_id, payment_intent or cancellation status",
                kind=INVALID_CALLBACK,
            )

        result = await self.gateway.confirm_session(reference, payment_method_id)
        if result.success:
            return ConfirmationOutcome(
                status=ConfirmationStatus.SUCCEEDED,
                donation_id=result.donation_id,
                reference=reference,
                message=result.message,
            )
        logger.warning("Payment %s was not completed: %s", reference, result.message)
        return ConfirmationOutcome(
            status=ConfirmationStatus.FAILED,
            donation_id=result.donation_id,
            reference=reference,
            message=result.message or "Payment was not completed",
        )
