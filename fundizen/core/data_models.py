"""Wire models for the Backend API Gateway payloads."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

ANONYMOUS_DONOR_NAME = "Anonymous"
CENT = Decimal("0.01")


class PaymentMethod(str, Enum):
    GATEWAY_CARD = "GATEWAY_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"


class DonationStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class CampaignStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class FoodListingStatus(str, Enum):
    AVAILABLE = "available"
    TAKEN = "taken"
    EXPIRED = "expired"


# Gateway-side names the backend is known to echo back.
_METHOD_ALIASES = {
    "card": PaymentMethod.GATEWAY_CARD,
    "stripe": PaymentMethod.GATEWAY_CARD,
    "gateway_card": PaymentMethod.GATEWAY_CARD,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "manual": PaymentMethod.BANK_TRANSFER,
}
_STATUS_ALIASES = {
    "SUCCEEDED": DonationStatus.COMPLETED,
    "SUCCESS": DonationStatus.COMPLETED,
    "PAID": DonationStatus.COMPLETED,
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money_to_wire(value: Any) -> Optional[float]:
    """JSON number rounded half up to cents. The backend takes amounts as numbers."""
    if value is None:
        return None
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def normalize_payment_method(value: Any) -> Optional[PaymentMethod]:
    if value is None or isinstance(value, PaymentMethod):
        return value
    text = str(value).strip()
    if not text:
        return None
    alias = _METHOD_ALIASES.get(text.lower())
    if alias:
        return alias
    return PaymentMethod(text.upper())


class Donation(BaseModel):
    """A donation as returned by the backend. Anonymous donors never expose their name."""

    id: str
    campaignId: str
    amount: Decimal
    currency: str = "MYR"
    donorName: Optional[str] = None
    donorEmail: Optional[str] = None
    isAnonymous: bool = False
    message: Optional[str] = None
    paymentMethod: Optional[PaymentMethod] = None
    status: DonationStatus = DonationStatus.PENDING
    transactionId: Optional[str] = None
    receiptUrl: Optional[str] = None
    createdAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None

    @field_validator("id", "campaignId", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("paymentMethod", mode="before")
    @classmethod
    def _normalize_method(cls, value: Any) -> Optional[PaymentMethod]:
        return normalize_payment_method(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            upper = value.strip().upper()
            return _STATUS_ALIASES.get(upper, upper)
        return value

    @model_validator(mode="after")
    def _suppress_anonymous_name(self) -> "Donation":
        if self.isAnonymous:
            self.donorName = ANONYMOUS_DONOR_NAME
        return self


class DonationRequest(BaseModel):
    """Outgoing body shared by /payment/donate and /payment/checkout-session."""

    campaignId: str
    amount: Decimal
    currency: str = "MYR"
    donorName: Optional[str] = None
    donorEmail: str
    message: str = ""
    isAnonymous: bool = False
    paymentMethod: PaymentMethod

    def to_payload(self) -> Dict[str, Any]:
        donor_name = ANONYMOUS_DONOR_NAME if self.isAnonymous else (self.donorName or "").strip()
        return {
            "campaignId": self.campaignId,
            "amount": money_to_wire(self.amount),
            "currency": self.currency,
            "donorName": donor_name,
            "donorEmail": self.donorEmail.strip().lower(),
            "message": (self.message or "").strip(),
            "isAnonymous": self.isAnonymous,
            "paymentMethod": self.paymentMethod.value,
        }


class Campaign(BaseModel):
    id: str
    title: Optional[str] = None
    status: CampaignStatus = CampaignStatus.PENDING
    verified: bool = False
    goalAmount: Decimal = Decimal("0")
    raisedAmount: Decimal = Decimal("0")
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def accepts_donations(self, now: Optional[datetime] = None) -> bool:
        """Verified, approved, and inside the campaign window."""
        if not self.verified or self.status is not CampaignStatus.APPROVED:
            return False
        current = _as_utc(now or datetime.now(timezone.utc))
        if self.startDate and current < _as_utc(self.startDate):
            return False
        if self.endDate and current > _as_utc(self.endDate):
            return False
        return True

    @property
    def completion_percentage(self) -> float:
        if not self.goalAmount or self.goalAmount <= 0:
            return 0.0
        if not self.raisedAmount or self.raisedAmount < 0:
            return 0.0
        return min(float(self.raisedAmount / self.goalAmount * 100), 100.0)


class FeeBreakdown(BaseModel):
    """Fee quote for one candidate amount. totalAmount is always amount + processingFee."""

    donationAmount: Decimal
    processingFee: Decimal = Decimal("0")
    platformFeePercentage: Decimal = Decimal("0")
    totalAmount: Optional[Decimal] = None
    currency: str = "MYR"

    @model_validator(mode="after")
    def _derive_total(self) -> "FeeBreakdown":
        expected = (self.donationAmount + self.processingFee).quantize(CENT)
        if self.totalAmount is not None and self.totalAmount != expected:
            logger.warning(
                "Backend fee total %s disagrees with %s + %s; using %s",
                self.totalAmount,
                self.donationAmount,
                self.processingFee,
                expected,
            )
        self.totalAmount = expected
        return self


class PaymentConfig(BaseModel):
    """Enabled payment methods, fetched once per donation flow."""

    enabledMethods: List[PaymentMethod] = Field(default_factory=list)
    currency: str = "MYR"
    publishableKey: Optional[str] = None
    supportedPaymentMethods: List[str] = Field(default_factory=list)

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "PaymentConfig":
        section = payload.get("config") if isinstance(payload.get("config"), dict) else payload
        supported = [str(item) for item in section.get("supportedPaymentMethods") or []]
        enabled: List[PaymentMethod] = []
        lowered = {item.lower() for item in supported}
        if "card" in lowered or "gateway_card" in lowered or section.get("cardEnabled"):
            enabled.append(PaymentMethod.GATEWAY_CARD)
        if "bank_transfer" in lowered or section.get("bankTransferEnabled"):
            enabled.append(PaymentMethod.BANK_TRANSFER)
        return cls(
            enabledMethods=enabled,
            currency=section.get("currency") or "MYR",
            publishableKey=section.get("publishableKey"),
            supportedPaymentMethods=supported,
        )

    def is_enabled(self, method: PaymentMethod) -> bool:
        return method in self.enabledMethods


class RefundResult(BaseModel):
    donationId: str
    success: bool = True
    refundId: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    message: Optional[str] = None


class TransferInstructions(BaseModel):
    bankName: str
    accountName: str
    accountNumber: str
    reference: str
    amount: Decimal
    currency: str


class BulkActionResult(BaseModel):
    """Aggregate of one bulk invocation. Counts are derived, never assigned."""

    action: str
    totalProcessed: int
    successCount: int
    failureCount: int
    succeeded: List[str] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_outcomes(
        cls,
        action: str,
        outcomes: List["ItemOutcome"],
        context: Optional[Dict[str, Any]] = None,
    ) -> "BulkActionResult":
        succeeded = [outcome.item_id for outcome in outcomes if outcome.ok]
        failed = [outcome for outcome in outcomes if not outcome.ok]
        failures: Dict[str, str] = {}
        for outcome in failed:
            failures.setdefault(outcome.item_id, outcome.error or "Unknown error")
        return cls(
            action=action,
            totalProcessed=len(outcomes),
            successCount=len(succeeded),
            failureCount=len(failed),
            succeeded=succeeded,
            failures=failures,
            context=dict(context or {}),
        )

    @property
    def failed_ids(self) -> List[str]:
        return list(self.failures.keys())


class ItemOutcome(BaseModel):
    item_id: str
    ok: bool
    error: Optional[str] = None
    result: Any = None


BulkActionResult.model_rebuild()
