from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from fundizen.core.api_client import FundizenAPIClient

from .services.identity import IdentityVerifier, Principal, bearer_token


def get_api(request: Request) -> FundizenAPIClient:
    return request.app.state.api


def get_identity(request: Request) -> IdentityVerifier:
    return request.app.state.identity


async def optional_principal(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> Optional[Principal]:
    """Anonymous callers get None; a present but invalid credential is rejected."""
    if authorization is None:
        return None
    token = bearer_token(authorization)
    return await get_identity(request).verify(token)


def api_for(request: Request, principal: Optional[Principal]) -> FundizenAPIClient:
    return get_api(request).with_token(principal.token if principal else None)
