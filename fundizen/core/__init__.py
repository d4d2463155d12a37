"""Core package exposing primary interfaces for the Fundizen donation core."""

from .api_client import CheckoutSession, ConfirmationResult, FundizenAPIClient
from .data_models import (
    BulkActionResult,
    Campaign,
    Donation,
    DonationStatus,
    FeeBreakdown,
    PaymentConfig,
    PaymentMethod,
)
from .errors import FundizenError

__all__ = [
    "FundizenAPIClient",
    "CheckoutSession",
    "ConfirmationResult",
    "BulkActionResult",
    "Campaign",
    "Donation",
    "DonationStatus",
    "FeeBreakdown",
    "PaymentConfig",
    "PaymentMethod",
    "FundizenError",
]
