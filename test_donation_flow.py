"""
Donation flow state machine tests.
Covers the bank transfer and card branches, failure and retry, navigation
rules and the guards that keep invalid input off the network.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from conftest import fee_handler, open_campaign
from fundizen.backend.config import TransferAccount
from fundizen.backend.services.donation_flow import DonationOrchestrator, FlowStep, OutcomeKind
from fundizen.backend.services.fees import FeeSchedule
from fundizen.backend.services.gateway import SESSION_PLACEHOLDER, PaymentGatewaySession
from fundizen.core.data_models import DonationStatus, PaymentMethod
from fundizen.core.errors import (
    CAMPAIGN_CLOSED,
    GATEWAY_UNAVAILABLE,
    INVALID_AMOUNT,
    INVALID_EMAIL,
    METHOD_DISABLED,
    MISSING_FIELD,
    PAYMENT_REJECTED,
    TIMEOUT,
    FIELD_TOO_LONG,
    FundizenError,
    GatewayError,
    IllegalTransitionError,
    ValidationError,
)

FRONTEND = "https://fundizen.test"
ACCOUNT = TransferAccount("Maybank", "Fundizen Berhad", "5140-1234-5678")


def _flow(backend, methods=("card", "bank_transfer"), campaign=None, timeout=5.0):
    backend.on(
        "GET",
        "/payment/config",
        body={"success": True, "config": {"supportedPaymentMethods": list(methods), "currency": "MYR"}},
    )
    backend.on("POST", "/payment/calculate-fees", handler=fee_handler())
    api = backend.client(timeout=timeout)
    return DonationOrchestrator(
        campaign or open_campaign(),
        FeeSchedule(api),
        PaymentGatewaySession(api, frontend_url=FRONTEND),
        transfer_account=ACCOUNT,
    )


async def _to_payment_method(flow, amount=50, name="Aisha", email="aisha@example.com", anonymous=False):
    await flow.start()
    flow.choose_amount(amount)
    await flow.quote_fees()
    flow.to_details()
    flow.enter_details(name, email, "Stay strong", anonymous)
    flow.to_payment_method()


def test_bank_transfer_reaches_success(backend):
    """Scenario A: 50 by bank transfer ends in SUCCESS with a PENDING donation."""
    flow = _flow(backend)
    backend.on("POST", "/payment/donate", body={"success": True, "donation": {"id": "don-42", "status": "PENDING"}})

    async def scenario():
        await _to_payment_method(flow, email="  Aisha@Example.com ")
        flow.choose_payment_method("BANK_TRANSFER")
        return await flow.submit()

    outcome = asyncio.run(scenario())

    assert flow.step is FlowStep.SUCCESS
    assert outcome.kind is OutcomeKind.MANUAL_TRANSFER_PENDING
    assert outcome.donation.id == "don-42"
    assert outcome.donation.status is DonationStatus.PENDING
    assert outcome.donation.amount == Decimal("50")
    assert outcome.instructions.reference == "don-42"
    assert outcome.instructions.accountNumber == "5140-1234-5678"
    assert flow.fee_breakdown.totalAmount == Decimal("52.00")

    body = backend.body()
    assert body["amount"] == 50.0
    assert body["donorEmail"] == "aisha@example.com"
    assert body["paymentMethod"] == "BANK_TRANSFER"
    assert backend.calls[-1] == "POST /payment/donate"


def test_amount_below_minimum_never_leaves_amount_step(backend):
    """Scenario B: amount 3 is rejected locally with no network call."""
    flow = _flow(backend)

    with pytest.raises(ValidationError) as excinfo:
        flow.choose_amount(3)
    assert excinfo.value.kind == INVALID_AMOUNT

    with pytest.raises(ValidationError):
        flow.to_details()

    assert flow.step is FlowStep.AMOUNT
    assert backend.requests == []


def test_invalid_email_blocks_payment_step(backend):
    flow = _flow(backend)

    async def scenario():
        await flow.start()
        flow.choose_amount(25)
        flow.to_details()
        flow.enter_details("Aisha", "not-an-email")

    asyncio.run(scenario())
    with pytest.raises(ValidationError) as excinfo:
        flow.to_payment_method()
    assert excinfo.value.kind == INVALID_EMAIL
    assert flow.step is FlowStep.DETAILS

    flow.enter_details("", "aisha@example.com")
    with pytest.raises(ValidationError) as excinfo:
        flow.to_payment_method()
    assert excinfo.value.kind == MISSING_FIELD

    flow.enter_details("A" * 101, "aisha@example.com")
    with pytest.raises(ValidationError) as excinfo:
        flow.to_payment_method()
    assert excinfo.value.kind == FIELD_TOO_LONG

    flow.enter_details("Aisha", "aisha@example.com", "x" * 501)
    with pytest.raises(ValidationError) as excinfo:
        flow.to_payment_method()
    assert excinfo.value.kind == FIELD_TOO_LONG
    assert flow.step is FlowStep.DETAILS


def test_card_payment_hands_off_and_stays_processing(backend):
    flow = _flow(backend)
    backend.on(
        "POST",
        "/payment/checkout-session",
        body={"success": True, "sessionId": "cs_test_1", "checkoutUrl": "https://pay.test/cs_test_1"},
    )

    async def scenario():
        await _to_payment_method(flow, name="Secret Donor", anonymous=True)
        flow.choose_payment_method("card")
        return await flow.submit()

    outcome = asyncio.run(scenario())

    assert outcome.kind is OutcomeKind.REDIRECT_PENDING
    assert outcome.redirect_url == "https://pay.test/cs_test_1"
    assert flow.step is FlowStep.PROCESSING

    body = backend.body()
    assert body["donorName"] == "Anonymous", "Anonymous donors never send their name"
    assert body["isAnonymous"] is True
    assert body["paymentMethod"] == PaymentMethod.GATEWAY_CARD.value
    assert body["successUrl"] == f"{FRONTEND}/donation/success?session_id={SESSION_PLACEHOLDER}"
    assert body["cancelUrl"] == f"{FRONTEND}/campaign/camp-1?donation=cancelled"
    assert flow.snapshot()["donor"]["donor_name"] == "Anonymous"

    with pytest.raises(IllegalTransitionError):
        flow.cancel()


def test_anonymous_donor_may_omit_name(backend):
    flow = _flow(backend)

    async def scenario():
        await _to_payment_method(flow, name="", anonymous=True)

    asyncio.run(scenario())
    assert flow.step is FlowStep.PAYMENT_METHOD


def test_gateway_rejection_fails_then_retry_keeps_data(backend):
    flow = _flow(backend)
    backend.on("POST", "/payment/checkout-session", status=402, body={"error": "Your card was declined"})

    async def first_attempt():
        await _to_payment_method(flow, amount="75.50")
        flow.choose_payment_method("GATEWAY_CARD")
        await flow.submit()

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(first_attempt())

    assert excinfo.value.kind == PAYMENT_REJECTED
    assert excinfo.value.message == "Your card was declined"
    assert flow.step is FlowStep.FAILED
    assert flow.last_error == "Your card was declined"

    flow.retry()
    assert flow.step is FlowStep.PAYMENT_METHOD
    assert flow.amount == Decimal("75.50")
    assert flow.details.donor_email == "aisha@example.com"

    backend.on("POST", "/payment/donate", body={"id": "don-7"})
    flow.choose_payment_method("BANK_TRANSFER")
    outcome = asyncio.run(flow.submit())
    assert outcome.kind is OutcomeKind.MANUAL_TRANSFER_PENDING
    assert flow.step is FlowStep.SUCCESS


def test_unreachable_gateway(backend):
    flow = _flow(backend)

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    backend.on("POST", "/payment/checkout-session", handler=refuse)

    async def scenario():
        await _to_payment_method(flow)
        flow.choose_payment_method("GATEWAY_CARD")
        await flow.submit()

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.kind == GATEWAY_UNAVAILABLE
    assert flow.step is FlowStep.FAILED
    assert backend.calls.count("POST /payment/checkout-session") == 1, "Checkout is never replayed"


def test_gateway_timeout(backend):
    flow = _flow(backend, timeout=0.2)

    async def hang(request):
        await asyncio.sleep(2)
        return httpx.Response(200, json={})

    backend.on("POST", "/payment/checkout-session", handler=hang)

    async def scenario():
        await _to_payment_method(flow)
        flow.choose_payment_method("GATEWAY_CARD")
        await flow.submit()

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.kind == TIMEOUT
    assert excinfo.value.status_code == 504
    assert flow.step is FlowStep.FAILED


def test_disabled_payment_method(backend):
    flow = _flow(backend, methods=("card",))

    asyncio.run(_to_payment_method(flow))
    for method in ("BANK_TRANSFER", "paypal"):
        with pytest.raises(ValidationError) as excinfo:
            flow.choose_payment_method(method)
        assert excinfo.value.kind == METHOD_DISABLED
    assert flow.payment_method is None


def test_back_and_cancel_rules(backend):
    flow = _flow(backend)

    async def scenario():
        await flow.start()
        flow.choose_amount(100)
        flow.to_details()

    asyncio.run(scenario())
    with pytest.raises(IllegalTransitionError):
        flow.choose_amount(200)

    assert flow.back() is FlowStep.AMOUNT
    assert flow.amount == Decimal("100.00"), "Going back keeps the amount"
    with pytest.raises(IllegalTransitionError):
        flow.back()

    flow.to_details()
    flow.enter_details("Aisha", "aisha@example.com")
    flow.to_payment_method()
    assert flow.back() is FlowStep.DETAILS
    assert flow.details.donor_name == "Aisha"

    flow.cancel()
    assert flow.step is FlowStep.CANCELLED
    with pytest.raises(IllegalTransitionError):
        flow.to_payment_method()
    with pytest.raises(IllegalTransitionError):
        flow.cancel()
    with pytest.raises(IllegalTransitionError):
        flow.retry()


def test_closed_campaign_is_refused(backend):
    ended = datetime.now(timezone.utc) - timedelta(days=1)
    for campaign in (
        open_campaign(status="PENDING"),
        open_campaign(verified=False),
        open_campaign(endDate=ended.isoformat()),
    ):
        flow = _flow(backend, campaign=campaign)
        with pytest.raises(ValidationError) as excinfo:
            asyncio.run(flow.start())
        assert excinfo.value.kind == CAMPAIGN_CLOSED
    assert backend.requests == []


def test_payment_config_is_fetched_once_and_public(backend):
    flow = _flow(backend)

    async def scenario():
        await flow.start()
        await flow.start()

    asyncio.run(scenario())
    assert backend.calls == ["GET /payment/config"]
    assert "authorization" not in backend.requests[0].headers


def test_fee_outage_is_recorded_but_not_blocking(backend):
    flow = _flow(backend)
    backend.on("POST", "/payment/calculate-fees", status=400, body={"error": "Fee service unavailable"})

    async def scenario():
        await flow.start()
        flow.choose_amount(50)
        with pytest.raises(FundizenError):
            await flow.quote_fees()
        flow.to_details()

    asyncio.run(scenario())
    assert flow.step is FlowStep.DETAILS
    assert flow.fee_breakdown is None
    assert flow.fee_error == "Fee service unavailable"
    assert flow.snapshot()["fee_error"] == "Fee service unavailable"

    flow.back()
    flow.choose_amount(60)
    assert flow.fee_error is None
