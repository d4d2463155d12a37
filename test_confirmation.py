"""
Gateway return and refund tests.
The confirmation handler only ever sees the callback query parameters.
"""
import asyncio
from decimal import Decimal

import pytest

from fundizen.backend.services.confirmation import ConfirmationHandler, ConfirmationStatus
from fundizen.backend.services.gateway import PaymentGatewaySession
from fundizen.core.errors import (
    BACKEND_UNAVAILABLE,
    INVALID_CALLBACK,
    MISSING_FIELD,
    SESSION_NOT_FOUND,
    BackendError,
    ConfirmationError,
    ValidationError,
)


def _handler(backend):
    return ConfirmationHandler(PaymentGatewaySession(backend.client()))


def test_missing_parameters_is_invalid_callback(backend):
    """Scenario D: nothing to resolve, nothing sent."""
    for params in ({}, {"status": "pending"}, {"session_id": "  "}, {"foo": "bar"}):
        with pytest.raises(ConfirmationError) as excinfo:
            asyncio.run(_handler(backend).confirm_return(params))
        assert excinfo.value.kind == INVALID_CALLBACK
    assert backend.requests == []


def test_session_id_takes_precedence(backend):
    backend.on("POST", "/payment/confirm", body={"success": True, "donationId": "don-9"})

    outcome = asyncio.run(
        _handler(backend).confirm_return(
            {"session_id": "cs_1", "payment_intent": "pi_1", "status": "cancelled"}
        )
    )

    assert outcome.status is ConfirmationStatus.SUCCEEDED
    assert outcome.donation_id == "don-9"
    assert backend.body() == {"paymentIntentId": "cs_1", "paymentMethodId": None}


def test_payment_intent_with_method(backend):
    backend.on("POST", "/payment/confirm", body={"success": True, "data": {"donationId": 12}})

    outcome = asyncio.run(
        _handler(backend).confirm_return({"payment_intent": "pi_2", "payment_method": "pm_card"})
    )

    assert outcome.succeeded
    assert outcome.donation_id == "12"
    assert backend.body() == {"paymentIntentId": "pi_2", "paymentMethodId": "pm_card"}


def test_cancelled_return_makes_no_backend_call(backend):
    outcome = asyncio.run(_handler(backend).confirm_return({"status": "cancelled"}))
    assert outcome.status is ConfirmationStatus.CANCELLED
    assert backend.requests == []


def test_declined_payment_is_not_an_exception(backend):
    backend.on("POST", "/payment/confirm", status=402, body={"error": "Insufficient funds"})
    outcome = asyncio.run(_handler(backend).confirm_return({"payment_intent": "pi_3"}))
    assert outcome.status is ConfirmationStatus.FAILED
    assert outcome.message == "Insufficient funds"

    backend.on("POST", "/payment/confirm", body={"success": False, "message": "requires_payment_method"})
    outcome = asyncio.run(_handler(backend).confirm_return({"payment_intent": "pi_3"}))
    assert outcome.status is ConfirmationStatus.FAILED
    assert outcome.message == "requires_payment_method"


def test_unknown_session(backend):
    backend.on("POST", "/payment/confirm", status=404, body={"message": "Checkout session not found"})
    with pytest.raises(ConfirmationError) as excinfo:
        asyncio.run(_handler(backend).confirm_return({"session_id": "cs_missing"}))
    assert excinfo.value.kind == SESSION_NOT_FOUND
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Checkout session not found"


def test_backend_outage_during_confirmation(backend):
    backend.on("POST", "/payment/confirm", status=503, body={"error": "maintenance"})
    with pytest.raises(BackendError) as excinfo:
        asyncio.run(_handler(backend).confirm_return({"session_id": "cs_1"}))
    assert excinfo.value.kind == BACKEND_UNAVAILABLE
    assert len(backend.requests) == 1, "Confirmation is not retried"


def test_partial_refund(backend):
    backend.on(
        "POST",
        "/payment/refund",
        body={"success": True, "refund": {"id": "re_1", "amount": 20.5, "status": "succeeded"}},
    )
    result = asyncio.run(PaymentGatewaySession(backend.client()).refund("don-1", "20.50", "Duplicate charge"))

    assert result.refundId == "re_1"
    assert result.amount == Decimal("20.5")
    assert backend.body() == {"donationId": "don-1", "amount": 20.5, "reason": "Duplicate charge"}


def test_full_refund_sends_no_amount(backend):
    backend.on("POST", "/payment/refund", body={"success": True, "refundId": "re_2"})
    result = asyncio.run(PaymentGatewaySession(backend.client()).refund("don-1"))
    assert result.success
    assert backend.body()["amount"] is None


def test_refund_rejection_is_verbatim(backend):
    backend.on("POST", "/payment/refund", status=400, body={"error": "Refund exceeds original amount"})
    with pytest.raises(BackendError) as excinfo:
        asyncio.run(PaymentGatewaySession(backend.client()).refund("don-1", 999999))
    assert excinfo.value.message == "Refund exceeds original amount"
    assert excinfo.value.status_code == 400


def test_refund_input_checked_locally(backend):
    gateway = PaymentGatewaySession(backend.client())
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(gateway.refund(""))
    assert excinfo.value.kind == MISSING_FIELD
    with pytest.raises(ValidationError):
        asyncio.run(gateway.refund("don-1", -5))
    assert backend.requests == []
