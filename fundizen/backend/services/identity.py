from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import jwt

from fundizen.core.api_client import api_retry
from fundizen.core.errors import AuthorizationError

from ..config import settings

logger = logging.getLogger("fundizen.backend.identity")

RSA_JWT_ALGS = {"RS256", "RS384", "RS512"}
HMAC_JWT_ALGS = {"HS256", "HS384", "HS512"}


@dataclass
class Principal:
    user_id: str
    email: Optional[str] = None
    role: str = "user"
    is_admin: bool = False
    email_verified: bool = False
    token: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any], token: Optional[str] = None) -> "Principal":
        role = str(claims.get("role") or "user")
        return cls(
            user_id=str(claims.get("sub") or claims.get("uid") or claims.get("user_id") or ""),
            email=claims.get("email"),
            role=role,
            is_admin=claims.get("isAdmin") is True or role.lower() == "admin",
            email_verified=bool(claims.get("email_verified") or claims.get("emailVerified")),
            token=token,
        )


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityVerifier:
    """
    Turns an Identity Service bearer credential into a Principal.

    HS* tokens are checked against the shared secret, RS* tokens against the
    published JWKS. A token that cannot be verified is rejected.
    """

    def __init__(
        self,
        secret: Optional[str] = settings.identity_jwt_secret,
        jwks_url: Optional[str] = settings.identity_jwks_url,
        audience: Optional[str] = settings.identity_audience,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret = secret
        self.jwks_url = jwks_url
        self.audience = audience
        self._http_client = http_client
        self._jwks_keys: Optional[List[Dict[str, Any]]] = None

    @api_retry
    async def _get_jwks_keys(self) -> List[Dict[str, Any]]:
        if self._jwks_keys:
            return self._jwks_keys

        logger.info("Fetching JWKS from %s", self.jwks_url)
        if self._http_client is not None:
            response = await self._http_client.get(self.jwks_url)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(self.jwks_url)
        response.raise_for_status()
        self._jwks_keys = response.json().get("keys", [])
        if not self._jwks_keys:
            raise jwt.InvalidTokenError("JWKS endpoint did not return any keys.")
        return self._jwks_keys

    def invalidate_jwks_cache(self) -> None:
        self._jwks_keys = None

    async def _signing_key(self, token: str) -> tuple:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg", "")

        if alg in HMAC_JWT_ALGS:
            if not self.secret:
                raise jwt.InvalidTokenError(f"No shared secret configured for {alg} tokens.")
            return self.secret, alg

        if alg in RSA_JWT_ALGS:
            if not self.jwks_url:
                raise jwt.InvalidTokenError(f"No JWKS endpoint configured for {alg} tokens.")
            kid = header.get("kid")
            if not kid:
                raise jwt.InvalidTokenError("JWT header is missing required 'kid' for RSA algorithms.")
            try:
                jwks_keys = await self._get_jwks_keys()
            except httpx.HTTPError as exc:
                raise jwt.InvalidTokenError(f"JWKS endpoint unavailable: {exc}") from exc
            key_data = next((item for item in jwks_keys if item.get("kid") == kid), None)
            if key_data is None:
                raise jwt.InvalidTokenError(f"Unknown 'kid' {kid} in JWT header.")
            return jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(key_data)), alg

        raise jwt.InvalidTokenError(f"Unsupported JWT algorithm '{alg}'.")

    async def verify(self, token: Optional[str]) -> Principal:
        if not token:
            raise AuthorizationError("Authentication required", status_code=401)
        try:
            key, alg = await self._signing_key(token)
            claims = jwt.decode(
                token,
                key,
                algorithms=[alg],
                audience=self.audience,
                options={"verify_aud": bool(self.audience)},
            )
        except jwt.PyJWTError as exc:
            logger.warning("Bearer credential rejected: %s", exc)
            raise AuthorizationError("Invalid or expired credential", status_code=401) from exc

        principal = Principal.from_claims(claims, token=token)
        if not principal.user_id:
            raise AuthorizationError("Credential does not identify a user", status_code=401)
        return principal
