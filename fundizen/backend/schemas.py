from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

Amount = Union[int, float, str]


# Donation flow schemas
class StartFlowRequest(BaseModel):
    campaign_id: str


class AmountRequest(BaseModel):
    amount: Optional[Amount] = None
    advance: bool = True


class DetailsRequest(BaseModel):
    donor_name: Optional[str] = None
    donor_email: Optional[str] = None
    message: Optional[str] = None
    anonymous: bool = False
    advance: bool = True


class PaymentMethodRequest(BaseModel):
    method: str


# Payment schemas
class RefundRequest(BaseModel):
    donation_id: str
    amount: Optional[Amount] = None
    reason: str = ""


# Admin schemas
class CampaignDecisionRequest(BaseModel):
    current_status: Optional[str] = None
    reason: Optional[str] = None


class BulkRequest(BaseModel):
    # Stands in for the operator's confirmation prompt.
    confirmed: bool = False


class BulkCampaignRequest(BulkRequest):
    campaign_ids: List[str]
    statuses: Dict[str, str] = Field(default_factory=dict)
    reason: Optional[str] = None


class BulkRoleRequest(BulkRequest):
    user_ids: List[str]
    role: str


class BulkVerificationRequest(BulkRequest):
    user_ids: List[str]
    verified: bool


class BulkRefundRequest(BulkRequest):
    donation_ids: List[str]
    reason: str = ""


class BulkFoodStatusRequest(BulkRequest):
    listing_ids: List[str]
    status: str
