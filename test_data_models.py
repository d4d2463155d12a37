"""Wire model behaviour: anonymity, campaign progress and money encoding."""
from decimal import Decimal

from conftest import open_campaign
from fundizen.core.data_models import Donation, DonationRequest, PaymentMethod, money_to_wire


def test_anonymous_donation_hides_the_name():
    donation = Donation.model_validate(
        {"id": "d1", "campaignId": "c1", "amount": 10, "isAnonymous": True, "donorName": "Real Name"}
    )
    assert donation.donorName == "Anonymous"

    named = Donation.model_validate({"id": "d2", "campaignId": "c1", "amount": 10, "donorName": "Aisha"})
    assert named.donorName == "Aisha"


def test_completion_percentage():
    assert open_campaign().completion_percentage == 25.0
    assert open_campaign(goalAmount=0).completion_percentage == 0.0
    assert open_campaign(raisedAmount=15000).completion_percentage == 100.0


def test_money_goes_out_as_a_rounded_number():
    assert money_to_wire(Decimal("19.999")) == 20.0
    assert money_to_wire(Decimal("0.005")) == 0.01
    assert money_to_wire(None) is None

    request = DonationRequest(
        campaignId="c1",
        amount=Decimal("52.125"),
        donorEmail="Aisha@Example.com",
        paymentMethod=PaymentMethod.BANK_TRANSFER,
    )
    payload = request.to_payload()
    assert payload["amount"] == 52.13
    assert isinstance(payload["amount"], float)
    assert payload["donorEmail"] == "aisha@example.com"
