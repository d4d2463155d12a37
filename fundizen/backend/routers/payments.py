from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from fundizen.core.errors import FundizenError

from ..config import settings
from ..dependencies import api_for, optional_principal
from ..schemas import RefundRequest
from ..services.confirmation import ConfirmationHandler, ConfirmationStatus
from ..services.gateway import PaymentGatewaySession
from ..services.identity import Principal
from ..services.moderation import ModerationWorkflow

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = logging.getLogger("fundizen.backend.payments")


def _frontend(path: str, **params: Optional[str]) -> str:
    query = urlencode({key: value for key, value in params.items() if value})
    url = f"{settings.frontend_url}{path}"
    return f"{url}?{query}" if query else url


@router.get("/callback")
async def payment_callback(request: Request, principal: Optional[Principal] = Depends(optional_principal)):
    """Browser return from the hosted checkout; always lands on a frontend outcome view."""
    handler = ConfirmationHandler(PaymentGatewaySession(api_for(request, principal)))
    try:
        outcome = await handler.confirm_return(dict(request.query_params))
    except FundizenError as exc:
        logger.warning("Payment callback rejected (%s): %s", exc.kind, exc.message)
        return RedirectResponse(_frontend("/donation/failed", error=exc.kind), status_code=303)

    if outcome.status is ConfirmationStatus.SUCCEEDED:
        return RedirectResponse(_frontend("/donation/success", donation_id=outcome.donation_id), status_code=303)
    if outcome.status is ConfirmationStatus.CANCELLED:
        return RedirectResponse(_frontend("/donation/cancelled"), status_code=303)
    return RedirectResponse(
        _frontend("/donation/failed", donation_id=outcome.donation_id, reason=outcome.message),
        status_code=303,
    )


@router.post("/refund")
async def refund(
    req: RefundRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    workflow = ModerationWorkflow(api_for(request, principal), principal)
    result = await workflow.refund_payment(req.donation_id, amount=req.amount, reason=req.reason)
    logger.info("Refund issued for donation %s by %s", req.donation_id, principal.user_id)
    return result.model_dump(mode="json")
