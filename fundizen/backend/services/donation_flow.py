"""
Donation flow state machine.

AMOUNT -> DETAILS -> PAYMENT_METHOD -> PROCESSING -> {SUCCESS, FAILED}

FAILED sends the donor back to PAYMENT_METHOD with amount and details kept.
A card payment leaves the machine suspended in PROCESSING: the donor is
redirected to the hosted checkout and the confirmation handler settles the
donation on return, from callback parameters alone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

import httpx

from fundizen.core.api_client import backend_error, extract_error_message
from fundizen.core.data_models import (
    ANONYMOUS_DONOR_NAME,
    Campaign,
    Donation,
    DonationRequest,
    FeeBreakdown,
    PaymentConfig,
    PaymentMethod,
    TransferInstructions,
    normalize_payment_method,
)
from fundizen.core.errors import (
    CAMPAIGN_CLOSED,
    FIELD_TOO_LONG,
    INVALID_AMOUNT,
    INVALID_EMAIL,
    METHOD_DISABLED,
    MISSING_FIELD,
    IllegalTransitionError,
    ValidationError,
)

from ..config import TransferAccount, settings
from .fees import FeeQuoter, FeeSchedule, format_currency
from .gateway import PaymentGatewaySession

logger = logging.getLogger("fundizen.backend.donation_flow")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_NAME_LENGTH = 100
MAX_MESSAGE_LENGTH = 500


class FlowStep(str, Enum):
    AMOUNT = "AMOUNT"
    DETAILS = "DETAILS"
    PAYMENT_METHOD = "PAYMENT_METHOD"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TRANSITIONS: Dict[FlowStep, FrozenSet[FlowStep]] = {
    FlowStep.AMOUNT: frozenset({FlowStep.DETAILS, FlowStep.CANCELLED}),
    FlowStep.DETAILS: frozenset({FlowStep.PAYMENT_METHOD, FlowStep.AMOUNT, FlowStep.CANCELLED}),
    FlowStep.PAYMENT_METHOD: frozenset({FlowStep.PROCESSING, FlowStep.DETAILS, FlowStep.CANCELLED}),
    FlowStep.PROCESSING: frozenset({FlowStep.SUCCESS, FlowStep.FAILED}),
    FlowStep.FAILED: frozenset({FlowStep.PAYMENT_METHOD}),
    FlowStep.SUCCESS: frozenset(),
    FlowStep.CANCELLED: frozenset(),
}

BACK_STEPS = {
    FlowStep.DETAILS: FlowStep.AMOUNT,
    FlowStep.PAYMENT_METHOD: FlowStep.DETAILS,
}


class OutcomeKind(str, Enum):
    REDIRECT_PENDING = "REDIRECT_PENDING"
    MANUAL_TRANSFER_PENDING = "MANUAL_TRANSFER_PENDING"


@dataclass
class FlowOutcome:
    kind: OutcomeKind
    redirect_url: Optional[str] = None
    session_id: Optional[str] = None
    donation: Optional[Donation] = None
    instructions: Optional[TransferInstructions] = None


@dataclass
class DonorDetails:
    donor_name: str = ""
    donor_email: str = ""
    message: str = ""
    anonymous: bool = False


def check_donor_details(details: DonorDetails) -> None:
    """Guard for DETAILS -> PAYMENT_METHOD."""
    email = (details.donor_email or "").strip()
    if not email:
        raise ValidationError("Email address is required", kind=MISSING_FIELD)
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address", kind=INVALID_EMAIL)
    name = (details.donor_name or "").strip()
    if not name and not details.anonymous:
        raise ValidationError("Please enter your name or choose to donate anonymously", kind=MISSING_FIELD)
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name cannot exceed {MAX_NAME_LENGTH} characters", kind=FIELD_TOO_LONG)
    if len(details.message or "") > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters", kind=FIELD_TOO_LONG)


class DonationOrchestrator:
    """Drives a single donor through one donation attempt."""

    def __init__(
        self,
        campaign: Campaign,
        fees: FeeSchedule,
        gateway: PaymentGatewaySession,
        transfer_account: TransferAccount = settings.transfer_account,
    ):
        self.campaign = campaign
        self.fees = fees
        self.gateway = gateway
        self.transfer_account = transfer_account
        self.currency = fees.currency
        self.step = FlowStep.AMOUNT
        self.amount: Optional[Decimal] = None
        self.details = DonorDetails()
        self.payment_method: Optional[PaymentMethod] = None
        self.payment_config: Optional[PaymentConfig] = None
        self.last_error: Optional[str] = None
        self.fee_error: Optional[str] = None
        self.outcome: Optional[FlowOutcome] = None
        self._quoter = FeeQuoter(fees)

    # ----- state -----

    def _transition(self, target: FlowStep) -> None:
        if target not in TRANSITIONS[self.step]:
            raise IllegalTransitionError(f"Cannot move from {self.step.value} to {target.value}")
        logger.debug("Donation flow for campaign %s: %s -> %s", self.campaign.id, self.step.value, target.value)
        self.step = target

    def _require_step(self, step: FlowStep) -> None:
        if self.step is not step:
            raise IllegalTransitionError(f"Action requires step {step.value}, flow is at {self.step.value}")

    @property
    def fee_breakdown(self) -> Optional[FeeBreakdown]:
        return self._quoter.current

    # ----- AMOUNT -----

    async def start(self) -> PaymentConfig:
        """Load gateway configuration once for the lifetime of this flow."""
        if not self.campaign.accepts_donations():
            raise ValidationError("This campaign is not accepting donations", kind=CAMPAIGN_CLOSED)
        if self.payment_config is None:
            try:
                payload = await self.fees.api.get_payment_config()
            except httpx.HTTPError as exc:
                raise backend_error(exc) from exc
            self.payment_config = PaymentConfig.from_response(payload)
            logger.info(
                "Donation flow started for campaign %s (methods=%s)",
                self.campaign.id,
                [method.value for method in self.payment_config.enabledMethods],
            )
        return self.payment_config

    def choose_amount(self, amount: Any) -> Decimal:
        self._require_step(FlowStep.AMOUNT)
        value = self.fees.validate_amount(amount)
        if value != self.amount:
            self._quoter.invalidate()
            self.fee_error = None
        self.amount = value
        return value

    async def quote_fees(self) -> Optional[FeeBreakdown]:
        """Fees are display-only: a failure is recorded and re-raised but never blocks a step."""
        if self.amount is None:
            raise ValidationError("Please enter an amount", kind=INVALID_AMOUNT)
        try:
            breakdown = await self._quoter.quote(self.amount, self.currency)
        except Exception as exc:
            self.fee_error = extract_error_message(exc)
            raise
        self.fee_error = None
        return breakdown

    def to_details(self) -> None:
        self._require_step(FlowStep.AMOUNT)
        if self.amount is None:
            raise ValidationError("Please enter an amount", kind=INVALID_AMOUNT)
        self.fees.validate_amount(self.amount)
        self._transition(FlowStep.DETAILS)

    # ----- DETAILS -----

    def enter_details(
        self,
        donor_name: Optional[str] = None,
        donor_email: Optional[str] = None,
        message: Optional[str] = None,
        anonymous: bool = False,
    ) -> DonorDetails:
        self._require_step(FlowStep.DETAILS)
        self.details = DonorDetails(
            donor_name=(donor_name or "").strip(),
            donor_email=(donor_email or "").strip(),
            message=(message or "").strip(),
            anonymous=bool(anonymous),
        )
        return self.details

    def to_payment_method(self) -> None:
        self._require_step(FlowStep.DETAILS)
        check_donor_details(self.details)
        self._transition(FlowStep.PAYMENT_METHOD)

    # ----- PAYMENT_METHOD -----

    def choose_payment_method(self, method: Any) -> PaymentMethod:
        self._require_step(FlowStep.PAYMENT_METHOD)
        if self.payment_config is None:
            raise IllegalTransitionError("Flow has not been started")
        try:
            selected = normalize_payment_method(method)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment method: {method}", kind=METHOD_DISABLED) from exc
        if selected is None or not self.payment_config.is_enabled(selected):
            raise ValidationError(f"Payment method {method} is not available", kind=METHOD_DISABLED)
        self.payment_method = selected
        return selected

    def _build_request(self) -> DonationRequest:
        return DonationRequest(
            campaignId=self.campaign.id,
            amount=self.amount,
            currency=self.currency,
            donorName=ANONYMOUS_DONOR_NAME if self.details.anonymous else self.details.donor_name,
            donorEmail=self.details.donor_email,
            message=self.details.message,
            isAnonymous=self.details.anonymous,
            paymentMethod=self.payment_method,
        )

    async def submit(self) -> FlowOutcome:
        """PAYMENT_METHOD -> PROCESSING, then branch on the chosen method."""
        self._require_step(FlowStep.PAYMENT_METHOD)
        if self.payment_method is None:
            raise ValidationError("Please choose a payment method", kind=MISSING_FIELD)
        # Re-check every earlier guard; nothing leaves for the network unvalidated.
        self.fees.validate_amount(self.amount)
        check_donor_details(self.details)
        request = self._build_request()

        self._transition(FlowStep.PROCESSING)
        self.last_error = None
        try:
            if self.payment_method is PaymentMethod.GATEWAY_CARD:
                session = await self.gateway.start_card_session(request)
                self.outcome = FlowOutcome(
                    kind=OutcomeKind.REDIRECT_PENDING,
                    redirect_url=session.checkout_url,
                    session_id=session.session_id,
                )
                logger.info("Donation flow for campaign %s handed off to hosted checkout", self.campaign.id)
                return self.outcome

            donation = await self.gateway.create_donation(request)
            self.outcome = FlowOutcome(
                kind=OutcomeKind.MANUAL_TRANSFER_PENDING,
                donation=donation,
                instructions=self._transfer_instructions(donation),
            )
            self._transition(FlowStep.SUCCESS)
            logger.info("Bank transfer donation %s recorded as %s", donation.id, donation.status.value)
            return self.outcome
        except Exception as exc:
            self.last_error = extract_error_message(exc)
            self._transition(FlowStep.FAILED)
            logger.warning("Donation flow for campaign %s failed: %s", self.campaign.id, self.last_error)
            raise

    def _transfer_instructions(self, donation: Donation) -> TransferInstructions:
        return TransferInstructions(
            bankName=self.transfer_account.bank_name,
            accountName=self.transfer_account.account_name,
            accountNumber=self.transfer_account.account_number,
            reference=donation.id,
            amount=donation.amount,
            currency=donation.currency,
        )

    # ----- navigation -----

    def retry(self) -> None:
        self._require_step(FlowStep.FAILED)
        self._transition(FlowStep.PAYMENT_METHOD)

    def back(self) -> FlowStep:
        target = BACK_STEPS.get(self.step)
        if target is None:
            raise IllegalTransitionError(f"Cannot go back from {self.step.value}")
        self._transition(target)
        return self.step

    def cancel(self) -> None:
        self._transition(FlowStep.CANCELLED)
        self._quoter.invalidate()
        logger.info("Donation flow for campaign %s cancelled", self.campaign.id)

    # ----- views -----

    def snapshot(self) -> Dict[str, Any]:
        breakdown = self.fee_breakdown
        return {
            "step": self.step.value,
            "campaign_id": self.campaign.id,
            "campaign": {
                "id": self.campaign.id,
                "title": self.campaign.title,
                "completion_percentage": self.campaign.completion_percentage,
            },
            "currency": self.currency,
            "amount": str(self.amount) if self.amount is not None else None,
            "amount_display": format_currency(self.amount, self.currency) if self.amount is not None else None,
            "fees": breakdown.model_dump(mode="json") if breakdown else None,
            "fee_error": self.fee_error,
            "donor": {
                "donor_name": ANONYMOUS_DONOR_NAME if self.details.anonymous else self.details.donor_name,
                "donor_email": self.details.donor_email,
                "message": self.details.message,
                "anonymous": self.details.anonymous,
            },
            "payment_method": self.payment_method.value if self.payment_method else None,
            "enabled_methods": (
                [method.value for method in self.payment_config.enabledMethods] if self.payment_config else []
            ),
            "last_error": self.last_error,
            "outcome": _outcome_view(self.outcome),
        }


def _outcome_view(outcome: Optional[FlowOutcome]) -> Optional[Dict[str, Any]]:
    if outcome is None:
        return None
    return {
        "kind": outcome.kind.value,
        "redirect_url": outcome.redirect_url,
        "session_id": outcome.session_id,
        "donation": outcome.donation.model_dump(mode="json") if outcome.donation else None,
        "instructions": outcome.instructions.model_dump(mode="json") if outcome.instructions else None,
    }
