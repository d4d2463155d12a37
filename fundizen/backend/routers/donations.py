from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Request

from fundizen.core.api_client import backend_error
from fundizen.core.data_models import Campaign
from fundizen.core.errors import SESSION_NOT_FOUND, ConfirmationError, FundizenError

from ..config import settings
from ..dependencies import api_for, optional_principal
from ..schemas import AmountRequest, DetailsRequest, PaymentMethodRequest, StartFlowRequest
from ..services.donation_flow import DonationOrchestrator
from ..services.fees import FeeSchedule
from ..services.gateway import PaymentGatewaySession
from ..services.identity import Principal
from ..state import lookup_flow, register_flow, touch_flow

router = APIRouter(prefix="/api/donations", tags=["donations"])
logger = logging.getLogger("fundizen.backend.donations")


def _owner(principal: Optional[Principal]) -> Optional[str]:
    return principal.user_id if principal else None


def _flow_or_404(flow_id: str, principal: Optional[Principal]) -> DonationOrchestrator:
    flow = lookup_flow(flow_id, _owner(principal))
    if flow is None:
        raise ConfirmationError("Donation flow not found or expired", kind=SESSION_NOT_FOUND, status_code=404)
    touch_flow(flow_id)
    return flow


def _view(flow_id: str, flow: DonationOrchestrator) -> Dict[str, Any]:
    return {"flow_id": flow_id, **flow.snapshot()}


@router.post("/flows")
async def start_flow(
    req: StartFlowRequest,
    request: Request,
    principal: Optional[Principal] = Depends(optional_principal),
):
    api = api_for(request, principal)
    try:
        campaign = Campaign.model_validate(await api.get_campaign(req.campaign_id))
    except httpx.HTTPError as exc:
        raise backend_error(exc) from exc

    flow = DonationOrchestrator(
        campaign=campaign,
        fees=FeeSchedule(api),
        gateway=PaymentGatewaySession(api),
    )
    await flow.start()
    flow_id = register_flow(flow, _owner(principal))
    logger.info("Donation flow %s opened for campaign %s", flow_id, campaign.id)
    return {
        **_view(flow_id, flow),
        "predefined_amounts": settings.predefined_amounts,
        "min_donation": str(flow.fees.min_donation),
        "max_donation": str(flow.fees.max_donation),
    }


@router.get("/flows/{flow_id}")
async def get_flow(flow_id: str, principal: Optional[Principal] = Depends(optional_principal)):
    return _view(flow_id, _flow_or_404(flow_id, principal))


@router.post("/flows/{flow_id}/amount")
async def set_amount(
    flow_id: str, req: AmountRequest, principal: Optional[Principal] = Depends(optional_principal)
):
    """Validate the amount, quote fees if the backend can, and optionally move on to donor details."""
    flow = _flow_or_404(flow_id, principal)
    flow.choose_amount(req.amount)
    try:
        await flow.quote_fees()
    except FundizenError as exc:
        logger.warning("Fee quote for flow %s unavailable: %s", flow_id, exc.message)
    if req.advance:
        flow.to_details()
    return _view(flow_id, flow)


@router.post("/flows/{flow_id}/details")
async def set_details(
    flow_id: str, req: DetailsRequest, principal: Optional[Principal] = Depends(optional_principal)
):
    flow = _flow_or_404(flow_id, principal)
    flow.enter_details(
        donor_name=req.donor_name,
        donor_email=req.donor_email,
        message=req.message,
        anonymous=req.anonymous,
    )
    if req.advance:
        flow.to_payment_method()
    return _view(flow_id, flow)


@router.post("/flows/{flow_id}/payment-method")
async def set_payment_method(
    flow_id: str, req: PaymentMethodRequest, principal: Optional[Principal] = Depends(optional_principal)
):
    flow = _flow_or_404(flow_id, principal)
    flow.choose_payment_method(req.method)
    return _view(flow_id, flow)


@router.post("/flows/{flow_id}/submit")
async def submit_flow(flow_id: str, principal: Optional[Principal] = Depends(optional_principal)):
    flow = _flow_or_404(flow_id, principal)
    await flow.submit()
    return _view(flow_id, flow)


@router.post("/flows/{flow_id}/back")
async def flow_back(flow_id: str, principal: Optional[Principal] = Depends(optional_principal)):
    flow = _flow_or_404(flow_id, principal)
    flow.back()
    return _view(flow_id, flow)


@router.post("/flows/{flow_id}/cancel")
async def cancel_flow(flow_id: str, principal: Optional[Principal] = Depends(optional_principal)):
    flow = _flow_or_404(flow_id, principal)
    flow.cancel()
    return _view(flow_id, flow)


@router.post("/flows/{flow_id}/retry")
async def retry_flow(flow_id: str, principal: Optional[Principal] = Depends(optional_principal)):
    flow = _flow_or_404(flow_id, principal)
    flow.retry()
    return _view(flow_id, flow)
