"""
Tests for the Stripe payment provider.

Stripe SDK calls are patched; no network access.
"""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
import stripe

from launch_studio.exceptions import PaymentProviderError, WebhookVerificationError
from launch_studio.services.payment_provider import (
    CHECKOUT_COMPLETED,
    CheckoutRequest,
    WebhookEvent,
)
from launch_studio.services.stripe_provider import StripeProvider


@pytest.fixture
def provider() -> StripeProvider:
    return StripeProvider(api_key="sk_test_fake_key", webhook_secret="whsec_test")


def checkout_request(credits: int = 10):
    return CheckoutRequest(
        user_id=uuid4(),
        email="maker@example.com",
        credits=credits,
        unit_amount_minor=100,
        currency="USD",
        success_url="http://localhost:3000/dashboard?success=true",
        cancel_url="http://localhost:3000/dashboard?canceled=true",
    )


def stripe_event(event_type: str, checkout: dict) -> MagicMock:
    event = MagicMock()
    event.id = "evt_123"
    event.type = event_type
    event.data.object = checkout
    return event


class TestCheckout:
    """Tests for checkout session creation."""

    def test_amount(self) -> None:
        assert checkout_request(credits=25).amount_minor == 2500

    async def test_creates_session_with_metadata(self, provider: StripeProvider) -> None:
        request = checkout_request()
        session = MagicMock(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")

        with patch.object(stripe.checkout.Session, "create", return_value=session) as create:
            result = await provider.create_checkout_session(request)

        assert result.session_id == "cs_test_1"
        assert result.url == "https://checkout.stripe.com/c/cs_test_1"

        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["metadata"] == {"user_id": str(request.user_id), "credits": "10"}
        [line_item] = kwargs["line_items"]
        assert line_item["quantity"] == 10
        assert line_item["price_data"]["unit_amount"] == 100
        assert line_item["price_data"]["currency"] == "usd"

    async def test_stripe_error_wrapped(self, provider: StripeProvider) -> None:
        with patch.object(
            stripe.checkout.Session, "create", side_effect=stripe.StripeError("card declined")
        ):
            with pytest.raises(PaymentProviderError):
                await provider.create_checkout_session(checkout_request())


class TestVerifyWebhook:
    """Tests for webhook verification and parsing."""

    async def test_paid_checkout(self, provider: StripeProvider) -> None:
        user_id = uuid4()
        event = stripe_event(
            CHECKOUT_COMPLETED,
            {
                "id": "cs_test_1",
                "payment_status": "paid",
                "metadata": {"user_id": str(user_id), "credits": "10"},
            },
        )

        with patch.object(stripe.Webhook, "construct_event", return_value=event):
            parsed = await provider.verify_webhook(b"{}", "t=1,v1=sig")

        assert parsed.session_id == "cs_test_1"
        assert parsed.user_id == user_id
        assert parsed.credits == 10
        assert parsed.is_paid_checkout

    async def test_unpaid_checkout(self, provider: StripeProvider) -> None:
        event = stripe_event(
            CHECKOUT_COMPLETED, {"id": "cs_test_1", "payment_status": "unpaid", "metadata": {}}
        )

        with patch.object(stripe.Webhook, "construct_event", return_value=event):
            parsed = await provider.verify_webhook(b"{}", "sig")

        assert not parsed.is_paid_checkout
        assert parsed.user_id is None
        assert parsed.credits is None

    async def test_garbled_metadata(self, provider: StripeProvider) -> None:
        event = stripe_event(
            CHECKOUT_COMPLETED,
            {
                "id": "cs_test_1",
                "payment_status": "paid",
                "metadata": {"user_id": "not-a-uuid", "credits": "ten"},
            },
        )

        with patch.object(stripe.Webhook, "construct_event", return_value=event):
            parsed = await provider.verify_webhook(b"{}", "sig")

        assert parsed.user_id is None
        assert parsed.credits is None

    async def test_bad_signature(self, provider: StripeProvider) -> None:
        error = stripe.SignatureVerificationError("No signatures found", "sig")

        with patch.object(stripe.Webhook, "construct_event", side_effect=error):
            with pytest.raises(WebhookVerificationError):
                await provider.verify_webhook(b"{}", "sig")

    async def test_unparseable_payload(self, provider: StripeProvider) -> None:
        with patch.object(stripe.Webhook, "construct_event", side_effect=ValueError("bad json")):
            with pytest.raises(WebhookVerificationError):
                await provider.verify_webhook(b"not json", "sig")


class TestWebhookEvent:
    """Tests for WebhookEvent.is_paid_checkout."""

    @pytest.mark.parametrize(
        ("event_type", "payment_status", "expected"),
        [
            (CHECKOUT_COMPLETED, "paid", True),
            (CHECKOUT_COMPLETED, "no_payment_required", True),
            (CHECKOUT_COMPLETED, "unpaid", False),
            ("payment_intent.succeeded", "paid", False),
        ],
    )
    def test_is_paid_checkout(self, event_type, payment_status, expected) -> None:
        event = WebhookEvent(
            event_id="evt",
            event_type=event_type,
            session_id="cs",
            payment_status=payment_status,
            user_id=uuid4(),
            credits=1,
        )
        assert event.is_paid_checkout is expected
