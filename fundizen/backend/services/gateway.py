from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from fundizen.core.api_client import (
    CheckoutSession,
    ConfirmationResult,
    FundizenAPIClient,
    backend_error,
    extract_error_message,
    gateway_error,
)
from fundizen.core.data_models import (
    Donation,
    DonationRequest,
    DonationStatus,
    RefundResult,
)
from fundizen.core.errors import (
    INVALID_CALLBACK,
    MISSING_FIELD,
    PAYMENT_REJECTED,
    SESSION_NOT_FOUND,
    BackendError,
    ConfirmationError,
    GatewayError,
    ValidationError,
)

from ..config import settings
from .fees import parse_amount

logger = logging.getLogger("fundizen.backend.gateway")

# Substituted by the payment gateway with the real checkout session id
SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def build_callback_urls(frontend_url: str, campaign_id: str) -> Dict[str, str]:
    base = frontend_url.rstrip("/")
    return {
        "successUrl": f"{base}/donation/success?session_id={SESSION_PLACEHOLDER}",
        "cancelUrl": f"{base}/campaign/{campaign_id}?donation=cancelled",
    }


class PaymentGatewaySession:
    """Hosted checkout, confirmation and refunds. Holds no flow state."""

    def __init__(self, api: FundizenAPIClient, frontend_url: str = settings.frontend_url):
        self.api = api
        self.frontend_url = frontend_url

    async def start_card_session(self, request: DonationRequest) -> CheckoutSession:
        body = {**request.to_payload(), **build_callback_urls(self.frontend_url, request.campaignId)}
        try:
            session = await self.api.create_checkout_session(body)
        except httpx.HTTPError as exc:
            logger.error("Checkout session for campaign %s failed: %s", request.campaignId, exc)
            raise gateway_error(exc, PAYMENT_REJECTED) from exc

        if not session.checkout_url:
            raise GatewayError("Payment gateway did not return a checkout URL", kind=PAYMENT_REJECTED)
        logger.info("Checkout session %s created for campaign %s", session.session_id, request.campaignId)
        return session

    async def create_donation(self, request: DonationRequest) -> Donation:
        payload = request.to_payload()
        try:
            data = await self.api.create_donation(payload)
        except httpx.HTTPError as exc:
            logger.error("Donation creation for campaign %s failed: %s", request.campaignId, exc)
            raise backend_error(exc) from exc

        if not data.get("id"):
            raise BackendError("Backend did not return a donation identifier")
        record: Dict[str, Any] = {**payload, "status": DonationStatus.PENDING.value}
        record.update({key: value for key, value in data.items() if value is not None})
        return Donation.model_validate(record)

    async def confirm_session(
        self, reference: Optional[str], payment_method_id: Optional[str] = None
    ) -> ConfirmationResult:
        """Resolve a returned session or payment intent. A decline is ``success=False``."""
        if not reference or not str(reference).strip():
            raise ConfirmationError("Payment reference is required", kind=INVALID_CALLBACK)

        try:
            result = await self.api.confirm_payment(str(reference).strip(), payment_method_id)
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            message = extract_error_message(exc)
            if status_code == 404:
                raise ConfirmationError(message, kind=SESSION_NOT_FOUND, status_code=404) from exc
            if status_code == 402:
                logger.info("Payment %s declined: %s", reference, message)
                return ConfirmationResult(success=False, message=message)
            raise backend_error(exc) from exc
        except httpx.HTTPError as exc:
            raise backend_error(exc) from exc

        logger.info("Payment %s confirmed (success=%s, donation=%s)", reference, result.success, result.donation_id)
        return result

    async def refund(
        self, donation_id: str, amount: Optional[Any] = None, reason: str = ""
    ) -> RefundResult:
        """Full refund when ``amount`` is None. The upper bound is the backend's call."""
        if not donation_id or not str(donation_id).strip():
            raise ValidationError("Donation ID is required", kind=MISSING_FIELD)
        refund_amount: Optional[Decimal] = parse_amount(amount) if amount is not None else None

        try:
            payload = await self.api.create_refund(str(donation_id), refund_amount, reason or "")
        except httpx.HTTPError as exc:
            logger.error("Refund for donation %s rejected: %s", donation_id, exc)
            raise backend_error(exc) from exc

        if payload.get("success") is False:
            raise BackendError(payload.get("error") or payload.get("message") or "Refund was not accepted")
        section = payload.get("refund") if isinstance(payload.get("refund"), dict) else payload
        return RefundResult(
            donationId=str(donation_id),
            success=True,
            refundId=section.get("refundId") or section.get("id"),
            amount=section.get("amount", refund_amount),
            status=section.get("status"),
            message=payload.get("message"),
        )
