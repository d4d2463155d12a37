from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

import httpx

from fundizen.core.api_client import FundizenAPIClient, backend_error
from fundizen.core.data_models import BulkActionResult, CampaignStatus, FoodListingStatus, RefundResult, UserRole
from fundizen.core.errors import (
    INVALID_VALUE,
    ActionCancelled,
    AuthorizationError,
    IllegalTransitionError,
    ValidationError,
)

from .bulk import BulkActionCoordinator
from .gateway import PaymentGatewaySession
from .identity import Principal

logger = logging.getLogger("fundizen.backend.moderation")

ConfirmPort = Callable[[str], Union[bool, Awaitable[bool]]]


def parse_role(role: Any) -> UserRole:
    try:
        return role if isinstance(role, UserRole) else UserRole(str(role).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {role}", kind=INVALID_VALUE) from exc


def parse_listing_status(status: Any) -> FoodListingStatus:
    try:
        if isinstance(status, FoodListingStatus):
            return status
        return FoodListingStatus(str(status).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown food listing status: {status}", kind=INVALID_VALUE) from exc


def _campaign_status(value: Any) -> Optional[CampaignStatus]:
    if value is None or value == "":
        return None
    if isinstance(value, CampaignStatus):
        return value
    return CampaignStatus(str(value).strip().upper())


class ModerationWorkflow:
    """Admin-only state changes on campaigns, users, donations and food listings."""

    def __init__(
        self,
        api: FundizenAPIClient,
        principal: Optional[Principal],
        confirm: Optional[ConfirmPort] = None,
        coordinator: Optional[BulkActionCoordinator] = None,
    ):
        self.api = api
        self.principal = principal
        self._confirm_port = confirm
        self.coordinator = coordinator or BulkActionCoordinator()

    # ----- guards -----

    def _require_admin(self) -> None:
        if self.principal is None:
            raise AuthorizationError("Authentication required", status_code=401)
        if not self.principal.is_admin:
            logger.warning("User %s attempted an admin action without the admin role", self.principal.user_id)
            raise AuthorizationError("Administrator privileges are required for this action")

    async def _confirm(self, prompt: str) -> None:
        if self._confirm_port is None:
            return
        answer = self._confirm_port(prompt)
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            logger.info("Operator declined: %s", prompt)
            raise ActionCancelled(f"Cancelled: {prompt}")

    @staticmethod
    def _check_pending(campaign_id: str, current_status: Any, target: CampaignStatus) -> None:
        try:
            status = _campaign_status(current_status)
        except ValueError as exc:
            raise ValidationError(f"Unknown campaign status: {current_status}", kind=INVALID_VALUE) from exc
        if status is not None and status is not CampaignStatus.PENDING:
            raise IllegalTransitionError(
                f"Campaign {campaign_id} is {status.value} and cannot be moved to {target.value}"
            )

    async def _call(self, label: str, coro: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return await coro
        except httpx.HTTPError as exc:
            logger.error("%s failed: %s", label, exc)
            raise backend_error(exc) from exc

    # ----- per-item operations (no guard; callers check once) -----

    async def _approve(self, campaign_id: str, current_status: Any = None) -> Dict[str, Any]:
        self._check_pending(campaign_id, current_status, CampaignStatus.APPROVED)
        return await self._call(f"Approve campaign {campaign_id}", self.api.approve_campaign(campaign_id))

    async def _reject(self, campaign_id: str, reason: Optional[str], current_status: Any = None) -> Dict[str, Any]:
        self._check_pending(campaign_id, current_status, CampaignStatus.REJECTED)
        return await self._call(
            f"Reject campaign {campaign_id}", self.api.reject_campaign(campaign_id, (reason or "").strip())
        )

    async def _set_role(self, user_id: str, role: UserRole) -> Dict[str, Any]:
        if role is UserRole.ADMIN:
            return await self._call(f"Promote user {user_id}", self.api.promote_user(user_id))
        return await self._call(f"Demote user {user_id}", self.api.demote_user(user_id))

    async def _set_verification(self, user_id: str, verified: bool) -> Dict[str, Any]:
        if verified:
            return await self._call(f"Verify user {user_id}", self.api.verify_user(user_id))
        return await self._call(f"Unverify user {user_id}", self.api.unverify_user(user_id))

    async def _refund(self, donation_id: str, reason: str) -> Dict[str, Any]:
        return await self._call(f"Refund donation {donation_id}", self.api.refund_donation(donation_id, reason))

    async def _set_listing_status(self, listing_id: str, status: FoodListingStatus) -> Dict[str, Any]:
        return await self._call(
            f"Update food listing {listing_id}", self.api.update_food_listing_status(listing_id, status.value)
        )

    # ----- single entity -----

    async def approve_campaign(self, campaign_id: str, current_status: Any = None) -> Dict[str, Any]:
        self._require_admin()
        result = await self._approve(campaign_id, current_status)
        logger.info("Campaign %s approved by %s", campaign_id, self.principal.user_id)
        return result

    async def reject_campaign(
        self, campaign_id: str, reason: Optional[str] = None, current_status: Any = None
    ) -> Dict[str, Any]:
        self._require_admin()
        result = await self._reject(campaign_id, reason, current_status)
        logger.info("Campaign %s rejected by %s", campaign_id, self.principal.user_id)
        return result

    async def set_user_role(self, user_id: str, role: Any) -> Dict[str, Any]:
        self._require_admin()
        return await self._set_role(user_id, parse_role(role))

    async def set_user_verification(self, user_id: str, verified: bool) -> Dict[str, Any]:
        self._require_admin()
        return await self._set_verification(user_id, verified)

    async def refund_donation(self, donation_id: str, reason: str = "") -> Dict[str, Any]:
        self._require_admin()
        return await self._refund(donation_id, reason or "")

    async def set_food_listing_status(self, listing_id: str, status: Any) -> Dict[str, Any]:
        self._require_admin()
        return await self._set_listing_status(listing_id, parse_listing_status(status))

    async def refund_payment(
        self, donation_id: str, amount: Optional[Any] = None, reason: str = ""
    ) -> RefundResult:
        """Gateway refund, full when ``amount`` is None."""
        self._require_admin()
        result = await PaymentGatewaySession(self.api).refund(donation_id, amount=amount, reason=reason)
        logger.info("Refund for donation %s issued by %s", donation_id, self.principal.user_id)
        return result

    # ----- bulk -----

    async def _bulk(
        self,
        ids: Iterable[Any],
        prompt: str,
        operation: Callable[[str], Awaitable[Any]],
        action: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> BulkActionResult:
        items: List[str] = [str(item) for item in ids]
        if items:
            await self._confirm(prompt.format(count=len(items)))
        result = await self.coordinator.run(items, operation, action=action, context=context)
        logger.info(
            "%s by %s: %s/%s succeeded",
            action,
            self.principal.user_id,
            result.successCount,
            result.totalProcessed,
        )
        return result

    async def bulk_approve_campaigns(
        self, campaign_ids: Iterable[Any], statuses: Optional[Mapping[str, Any]] = None
    ) -> BulkActionResult:
        self._require_admin()
        statuses = statuses or {}
        return await self._bulk(
            campaign_ids,
            "Approve {count} campaign(s)?",
            lambda campaign_id: self._approve(campaign_id, statuses.get(campaign_id)),
            action="approve_campaigns",
        )

    async def bulk_reject_campaigns(
        self,
        campaign_ids: Iterable[Any],
        reason: Optional[str] = None,
        statuses: Optional[Mapping[str, Any]] = None,
    ) -> BulkActionResult:
        self._require_admin()
        statuses = statuses or {}
        reason = (reason or "").strip()
        return await self._bulk(
            campaign_ids,
            "Reject {count} campaign(s)?",
            lambda campaign_id: self._reject(campaign_id, reason, statuses.get(campaign_id)),
            action="reject_campaigns",
            context={"reason": reason},
        )

    async def bulk_update_roles(self, user_ids: Iterable[Any], role: Any) -> BulkActionResult:
        self._require_admin()
        new_role = parse_role(role)
        return await self._bulk(
            user_ids,
            f"Change the role of {{count}} user(s) to {new_role.value}?",
            lambda user_id: self._set_role(user_id, new_role),
            action="update_roles",
            context={"newRole": new_role.value},
        )

    async def bulk_set_verification(self, user_ids: Iterable[Any], verified: bool) -> BulkActionResult:
        self._require_admin()
        verb = "Verify" if verified else "Unverify"
        return await self._bulk(
            user_ids,
            verb + " {count} user(s)?",
            lambda user_id: self._set_verification(user_id, verified),
            action="verify_users" if verified else "unverify_users",
            context={"verified": verified},
        )

    async def bulk_refund_donations(self, donation_ids: Iterable[Any], reason: str = "") -> BulkActionResult:
        self._require_admin()
        reason = (reason or "").strip()
        return await self._bulk(
            donation_ids,
            "Refund {count} donation(s)?",
            lambda donation_id: self._refund(donation_id, reason),
            action="refund_donations",
            context={"reason": reason},
        )

    async def bulk_set_food_listing_status(self, listing_ids: Iterable[Any], status: Any) -> BulkActionResult:
        self._require_admin()
        new_status = parse_listing_status(status)
        return await self._bulk(
            listing_ids,
            f"Mark {{count}} food listing(s) as {new_status.value}?",
            lambda listing_id: self._set_listing_status(listing_id, new_status),
            action="update_food_listings",
            context={"status": new_status.value},
        )
