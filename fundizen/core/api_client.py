import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .data_models import money_to_wire
from .errors import (
    BACKEND_UNAVAILABLE,
    GATEWAY_UNAVAILABLE,
    TIMEOUT,
    BackendError,
    FundizenError,
    GatewayError,
)

logger = logging.getLogger(__name__)
DEFAULT_TIMEOUT_SECONDS = 30.0

# Transport failures worth another attempt on idempotent calls
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.NetworkError,
)


def _is_retryable(exc: BaseException) -> bool:
    """Retry only on transport errors and HTTP 5xx."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


# Only wrapped around side-effect-free calls; donation creation is never replayed.
api_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


def _unwrap(payload: Any, *keys: str) -> Dict[str, Any]:
    """Return the first dict found under ``keys`` (or ``data``), else the payload itself."""
    if not isinstance(payload, dict):
        return {}
    for key in (*keys, "data"):
        section = payload.get(key)
        if isinstance(section, dict):
            return section
    return payload


def extract_error_message(exc: BaseException) -> str:
    """Backend error detail, verbatim, for operator troubleshooting."""
    if isinstance(exc, FundizenError):
        return exc.message
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("error", "message", "detail"):
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value
        text = (response.text or "").strip()
        if text:
            return text
        return f"HTTP {response.status_code}"
    message = str(exc).strip()
    return message or exc.__class__.__name__


def backend_error(exc: BaseException) -> FundizenError:
    """Map a transport/HTTP failure of a backend call onto the error taxonomy."""
    if isinstance(exc, FundizenError):
        return exc
    message = extract_error_message(exc)
    if isinstance(exc, httpx.TimeoutException):
        return GatewayError(message, kind=TIMEOUT, status_code=504)
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        if status_code >= 500:
            return BackendError(message, kind=BACKEND_UNAVAILABLE, status_code=502)
        return BackendError(message, status_code=status_code)
    if isinstance(exc, httpx.RequestError):
        return BackendError(message, kind=BACKEND_UNAVAILABLE, status_code=502)
    return BackendError(message)


def gateway_error(exc: BaseException, rejected_kind: str) -> FundizenError:
    """Same as :func:`backend_error` but phrased for payment-gateway calls."""
    if isinstance(exc, FundizenError):
        return exc
    message = extract_error_message(exc)
    if isinstance(exc, httpx.TimeoutException):
        return GatewayError(message, kind=TIMEOUT, status_code=504)
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code < 500:
        return GatewayError(message, kind=rejected_kind)
    return GatewayError(message, kind=GATEWAY_UNAVAILABLE)


@dataclass
class CheckoutSession:
    checkout_url: Optional[str]
    session_id: Optional[str] = None


@dataclass
class ConfirmationResult:
    success: bool
    donation_id: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


class FundizenAPIClient:
    """Async client for the Backend API Gateway."""

    def __init__(
        self,
        api_base_url: str,
        bearer_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_base_url and http_client is None:
            raise ValueError("api_base_url is required.")

        self.api_base_url = (api_base_url or "").rstrip("/")
        self.timeout = float(timeout)
        self._token = bearer_token
        self._owns_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                base_url=self.api_base_url,
                timeout=httpx.Timeout(self.timeout, connect=5.0),
                headers={"Content-Type": "application/json"},
            )
        self._client = http_client

    def with_token(self, bearer_token: Optional[str]) -> "FundizenAPIClient":
        """Clone bound to another principal, sharing the same connection pool."""
        return FundizenAPIClient(
            self.api_base_url,
            bearer_token=bearer_token,
            timeout=self.timeout,
            http_client=self._client,
        )

    def _headers(self, public: bool) -> Dict[str, str]:
        headers = {"x-request-id": str(uuid.uuid4())}
        if self._token and not public:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        public: bool = False,
    ) -> httpx.Response:
        try:
            response = await asyncio.wait_for(
                self._client.request(method, path, json=json, headers=self._headers(public)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("%s %s timed out after %.0fs", method, path, self.timeout)
            raise httpx.ReadTimeout(f"{method} {path} timed out after {self.timeout:.0f}s") from exc
        response.raise_for_status()
        return response

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        public: bool = False,
        idempotent: bool = False,
    ) -> Dict[str, Any]:
        async def _attempt() -> Dict[str, Any]:
            response = await self._send(method, path, json=json, public=public)
            if not response.content:
                return {}
            try:
                payload = response.json()
            except ValueError:
                return {"message": response.text}
            return payload if isinstance(payload, dict) else {"data": payload}

        if idempotent:
            return await api_retry(_attempt)()
        return await _attempt()

    # ----- payment -----

    async def get_payment_config(self) -> Dict[str, Any]:
        logger.info("Fetching payment configuration from %s", self.api_base_url)
        return await self._request_json("GET", "/payment/config", public=True, idempotent=True)

    async def calculate_fees(self, amount: Decimal, currency: str) -> Dict[str, Any]:
        body = {"amount": money_to_wire(amount), "currency": currency}
        payload = await self._request_json("POST", "/payment/calculate-fees", json=body, idempotent=True)
        return _unwrap(payload, "fees", "breakdown")

    async def create_donation(self, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            "Creating donation for campaign %s (method=%s)",
            body.get("campaignId"),
            body.get("paymentMethod"),
        )
        payload = await self._request_json("POST", "/payment/donate", json=body)
        if isinstance(payload, dict) and payload.get("success") is False:
            raise BackendError(payload.get("error") or payload.get("message") or "Donation creation failed")
        return _unwrap(payload, "donation")

    async def create_checkout_session(self, body: Dict[str, Any]) -> CheckoutSession:
        logger.info("Creating checkout session for campaign %s", body.get("campaignId"))
        payload = await self._request_json("POST", "/payment/checkout-session", json=body)
        data_section = _unwrap(payload, "session")
        checkout_url = (
            payload.get("checkoutUrl")
            or payload.get("url")
            or data_section.get("checkoutUrl")
            or data_section.get("url")
        )
        session_id = payload.get("sessionId") or data_section.get("sessionId") or data_section.get("id")
        return CheckoutSession(checkout_url=checkout_url, session_id=session_id)

    async def confirm_payment(
        self, payment_intent_id: str, payment_method_id: Optional[str] = None
    ) -> ConfirmationResult:
        body = {"paymentIntentId": payment_intent_id, "paymentMethodId": payment_method_id}
        payload = await self._request_json("POST", "/payment/confirm", json=body)
        data_section = _unwrap(payload, "payment")
        donation_id = (
            payload.get("donationId")
            or data_section.get("donationId")
            or (payload.get("donation") or {}).get("id")
        )
        return ConfirmationResult(
            success=bool(payload.get("success", data_section.get("success", False))),
            donation_id=str(donation_id) if donation_id is not None else None,
            status=payload.get("status") or data_section.get("status"),
            message=payload.get("error") or payload.get("message"),
        )

    async def create_refund(
        self, donation_id: str, amount: Optional[Decimal], reason: str
    ) -> Dict[str, Any]:
        body = {"donationId": donation_id, "amount": money_to_wire(amount), "reason": reason}
        logger.info("Requesting refund for donation %s (amount=%s)", donation_id, amount if amount is not None else "full")
        return await self._request_json("POST", "/payment/refund", json=body)

    # ----- campaigns -----

    async def get_campaign(self, campaign_id: str) -> Dict[str, Any]:
        payload = await self._request_json("GET", f"/campaigns/{campaign_id}", idempotent=True)
        return _unwrap(payload, "campaign")

    async def approve_campaign(self, campaign_id: str) -> Dict[str, Any]:
        return await self._request_json("POST", f"/admin/campaigns/{campaign_id}/approve", json={})

    async def reject_campaign(self, campaign_id: str, reason: str = "") -> Dict[str, Any]:
        return await self._request_json(
            "POST", f"/admin/campaigns/{campaign_id}/reject", json={"reason": reason}
        )

    # ----- users -----

    async def promote_user(self, user_id: str) -> Dict[str, Any]:
        return await self._request_json("POST", f"/admin/users/{user_id}/promote")

    async def demote_user(self, user_id: str) -> Dict[str, Any]:
        return await self._request_json("POST", f"/admin/users/{user_id}/demote")

    async def verify_user(self, user_id: str) -> Dict[str, Any]:
        return await self._request_json("PUT", f"/admin/users/{user_id}/verify")

    async def unverify_user(self, user_id: str) -> Dict[str, Any]:
        return await self._request_json("PUT", f"/admin/users/{user_id}/unverify")

    # ----- donations / food listings -----

    async def refund_donation(self, donation_id: str, reason: str = "") -> Dict[str, Any]:
        return await self._request_json("POST", f"/donations/{donation_id}/refund", json={"reason": reason})

    async def update_food_listing_status(self, listing_id: str, status: str) -> Dict[str, Any]:
        return await self._request_json("PUT", f"/foodbank/{listing_id}/status", json={"status": status})

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
