from __future__ import annotations

import asyncio
import logging
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any, Optional, Tuple

import httpx

from fundizen.core.api_client import FundizenAPIClient, backend_error
from fundizen.core.data_models import CENT, FeeBreakdown
from fundizen.core.errors import INVALID_AMOUNT, ValidationError

from ..config import settings

logger = logging.getLogger("fundizen.backend.fees")

CURRENCY_SYMBOLS = {"MYR": "RM", "USD": "$", "SGD": "S$"}


def _cents(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Quantize to cents with enough precision for any finite magnitude."""
    return value.quantize(CENT, rounding=rounding, context=Context(prec=max(28, value.adjusted() + 3)))


def format_currency(amount: Any, currency: str = "MYR") -> str:
    """Two-decimal fixed point, rounded half up (never truncated)."""
    try:
        value = Decimal(str(amount)) if amount is not None else Decimal("0")
    except (InvalidOperation, ValueError):
        value = Decimal("0")
    if not value.is_finite():
        value = Decimal("0")
    value = _cents(value)
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())
    return f"{symbol} {value:,.2f}"


def _to_decimal(amount: Any) -> Decimal:
    if amount is None or isinstance(amount, bool) or (isinstance(amount, str) and not amount.strip()):
        raise ValidationError("Please enter an amount", kind=INVALID_AMOUNT)
    try:
        if isinstance(amount, float):
            value = Decimal(repr(amount))
        else:
            value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Please enter a valid amount", kind=INVALID_AMOUNT) from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError("Please enter a valid amount", kind=INVALID_AMOUNT)
    return value


def _two_decimals(value: Decimal) -> Decimal:
    try:
        cents = value.quantize(CENT)
    except InvalidOperation as exc:
        raise ValidationError("Amount is too large", kind=INVALID_AMOUNT) from exc
    if value != cents:
        raise ValidationError("Amount cannot have more than 2 decimal places", kind=INVALID_AMOUNT)
    return cents


def parse_amount(amount: Any) -> Decimal:
    """Coerce user input into a finite, positive, two-decimal Decimal."""
    return _two_decimals(_to_decimal(amount))


def validate_amount(
    amount: Any,
    min_donation: Decimal = settings.min_donation,
    max_donation: Decimal = settings.max_donation,
    currency: str = settings.currency,
) -> Decimal:
    # Bounds first: comparisons work at any magnitude, quantize does not.
    value = _to_decimal(amount)
    if value < min_donation:
        raise ValidationError(
            f"Minimum donation amount is {format_currency(min_donation, currency)}",
            kind=INVALID_AMOUNT,
        )
    if value > max_donation:
        raise ValidationError(
            f"Maximum donation amount is {format_currency(max_donation, currency)}",
            kind=INVALID_AMOUNT,
        )
    return _two_decimals(value)


class FeeSchedule:
    """Validates candidate amounts and asks the backend for the fee breakdown."""

    def __init__(
        self,
        api: FundizenAPIClient,
        min_donation: Decimal = settings.min_donation,
        max_donation: Decimal = settings.max_donation,
        currency: str = settings.currency,
    ):
        self.api = api
        self.min_donation = Decimal(min_donation)
        self.max_donation = Decimal(max_donation)
        self.currency = currency

    def validate_amount(self, amount: Any) -> Decimal:
        return validate_amount(amount, self.min_donation, self.max_donation, self.currency)

    async def compute_fees(self, amount: Any, currency: Optional[str] = None) -> FeeBreakdown:
        value = self.validate_amount(amount)
        currency = currency or self.currency
        try:
            data = await self.api.calculate_fees(value, currency)
        except httpx.HTTPError as exc:
            logger.error("Fee calculation failed for %s %s: %s", value, currency, exc)
            raise backend_error(exc) from exc

        return FeeBreakdown(
            donationAmount=value,
            processingFee=data.get("processingFee") or 0,
            platformFeePercentage=data.get("platformFeePercentage") or 0,
            totalAmount=data.get("totalAmount"),
            currency=currency,
        )


class FeeQuoter:
    """Per-flow fee cache. A newer amount supersedes any quote still in flight."""

    def __init__(self, schedule: FeeSchedule):
        self._schedule = schedule
        self._generation = 0
        self._task: Optional[asyncio.Future] = None
        self._cached_key: Optional[Tuple[Decimal, str]] = None
        self._cached: Optional[FeeBreakdown] = None

    @property
    def current(self) -> Optional[FeeBreakdown]:
        return self._cached

    def invalidate(self) -> None:
        self._generation += 1
        self._cached_key = None
        self._cached = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def quote(self, amount: Decimal, currency: str) -> Optional[FeeBreakdown]:
        """Return the breakdown, or None when a newer amount superseded this one."""
        key = (amount, currency)
        if self._cached is not None and self._cached_key == key:
            return self._cached

        self.invalidate()
        generation = self._generation
        task = asyncio.ensure_future(self._schedule.compute_fees(amount, currency))
        self._task = task
        try:
            breakdown = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info("Fee quote for %s superseded before completion", amount)
                return None
            raise
        except Exception:
            if generation != self._generation:
                return None
            raise

        if generation != self._generation:
            logger.info("Discarding stale fee quote for %s", amount)
            return None
        self._cached_key = key
        self._cached = breakdown
        self._task = None
        return breakdown
