"""Shared fakes: an in-memory Backend API Gateway served through httpx.MockTransport."""
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import jwt
import pytest

from fundizen.core.api_client import FundizenAPIClient
from fundizen.core.data_models import Campaign

BACKEND_URL = "http://backend.test/api"
JWT_SECRET = "fundizen-test-secret-with-enough-length"

Responder = Callable[[httpx.Request], Any]


class FakeBackend:
    """Routes (method, path) to canned responses and records every request."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Responder] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, status: int = 200, body: Any = None, handler: Optional[Responder] = None):
        if handler is None:
            def handler(request: httpx.Request, _status=status, _body=body) -> httpx.Response:
                return httpx.Response(_status, json=_body if _body is not None else {})
        self.routes[(method.upper(), path)] = handler
        return self

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"error": f"No route for {request.method} {path}"})
        return handler(request)

    @property
    def calls(self) -> List[str]:
        return [f"{request.method} {request.url.path[len('/api'):]}" for request in self.requests]

    def body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content or b"{}")

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), base_url=BACKEND_URL)

    def client(self, token: Optional[str] = "donor-token", timeout: float = 5.0) -> FundizenAPIClient:
        return FundizenAPIClient(BACKEND_URL, bearer_token=token, timeout=timeout, http_client=self.http_client())


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


def open_campaign(**overrides: Any) -> Campaign:
    now = datetime.now(timezone.utc)
    data = {
        "id": "camp-1",
        "title": "Flood relief",
        "status": "APPROVED",
        "verified": True,
        "goalAmount": 10000,
        "raisedAmount": 2500,
        "startDate": (now - timedelta(days=1)).isoformat(),
        "endDate": (now + timedelta(days=30)).isoformat(),
    }
    data.update(overrides)
    return Campaign.model_validate(data)


def make_token(sub: str = "user-1", secret: str = JWT_SECRET, **claims: Any) -> str:
    payload = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(minutes=5), **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def fee_handler(rate: str = "0.03", fixed: str = "0.50") -> Responder:
    """Fee endpoint that charges ``amount * rate + fixed`` like the real gateway."""
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        amount = Decimal(str(body["amount"]))
        fee = (amount * Decimal(rate) + Decimal(fixed)).quantize(Decimal("0.01"))
        return httpx.Response(
            200,
            json={
                "success": True,
                "fees": {
                    "processingFee": float(fee),
                    "platformFeePercentage": float(Decimal(rate) * 100),
                    "totalAmount": float(amount + fee),
                },
            },
        )

    return handler
