from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ..dependencies import api_for, optional_principal
from ..schemas import (
    BulkCampaignRequest,
    BulkFoodStatusRequest,
    BulkRefundRequest,
    BulkRequest,
    BulkRoleRequest,
    BulkVerificationRequest,
    CampaignDecisionRequest,
)
from ..services.identity import Principal
from ..services.moderation import ModerationWorkflow

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _workflow(request: Request, principal: Optional[Principal], req: Optional[BulkRequest] = None) -> ModerationWorkflow:
    confirm = (lambda prompt: req.confirmed) if req is not None else None
    return ModerationWorkflow(api_for(request, principal), principal, confirm=confirm)


# Bulk paths are declared first so "bulk" is never read as a campaign id.
@router.post("/campaigns/bulk/approve")
async def bulk_approve_campaigns(
    req: BulkCampaignRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    result = await _workflow(request, principal, req).bulk_approve_campaigns(req.campaign_ids, req.statuses)
    return result.model_dump(mode="json")


@router.post("/campaigns/bulk/reject")
async def bulk_reject_campaigns(
    req: BulkCampaignRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    result = await _workflow(request, principal, req).bulk_reject_campaigns(
        req.campaign_ids, req.reason, req.statuses
    )
    return result.model_dump(mode="json")


@router.post("/campaigns/{campaign_id}/approve")
async def approve_campaign(
    campaign_id: str,
    request: Request,
    req: Optional[CampaignDecisionRequest] = None,
    principal: Optional[Principal] = Depends(optional_principal),
):
    req = req or CampaignDecisionRequest()
    result = await _workflow(request, principal).approve_campaign(campaign_id, req.current_status)
    return {"campaign_id": campaign_id, "status": "APPROVED", "result": result}


@router.post("/campaigns/{campaign_id}/reject")
async def reject_campaign(
    campaign_id: str,
    request: Request,
    req: Optional[CampaignDecisionRequest] = None,
    principal: Optional[Principal] = Depends(optional_principal),
):
    req = req or CampaignDecisionRequest()
    result = await _workflow(request, principal).reject_campaign(campaign_id, req.reason, req.current_status)
    return {"campaign_id": campaign_id, "status": "REJECTED", "result": result}


@router.post("/users/bulk/role")
async def bulk_update_roles(
    req: BulkRoleRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    result = await _workflow(request, principal, req).bulk_update_roles(req.user_ids, req.role)
    return result.model_dump(mode="json")


@router.post("/users/bulk/verification")
async def bulk_set_verification(
    req: BulkVerificationRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    result = await _workflow(request, principal, req).bulk_set_verification(req.user_ids, req.verified)
    return result.model_dump(mode="json")


@router.post("/donations/bulk/refund")
async def bulk_refund_donations(
    req: BulkRefundRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    result = await _workflow(request, principal, req).bulk_refund_donations(req.donation_ids, req.reason)
    return result.model_dump(mode="json")


@router.post("/foodbank/bulk/status")
async def bulk_set_food_listing_status(
    req: BulkFoodStatusRequest, request: Request, principal: Optional[Principal] = Depends(optional_principal)
):
    result = await _workflow(request, principal, req).bulk_set_food_listing_status(req.listing_ids, req.status)
    return result.model_dump(mode="json")
