"""
Tests for credit purchase and the Stripe webhook.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from launch_studio.api.dependencies import get_payment_provider
from launch_studio.exceptions import (
    IdempotencyConflictError,
    PaymentProviderError,
    UserNotFoundError,
    WebhookVerificationError,
)
from launch_studio.models.api import TransactionKind
from launch_studio.models.domain import LedgerEntry
from launch_studio.services.payment_provider import (
    CHECKOUT_COMPLETED,
    CheckoutSession,
    WebhookEvent,
)


@pytest.fixture
def provider() -> MagicMock:
    provider = MagicMock()
    provider.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(session_id="cs_test_1", url="https://checkout.test/cs_test_1")
    )
    provider.verify_webhook = AsyncMock()
    return provider


def paid_event(user_id=None, credits: int | None = 10, status: str = "paid") -> WebhookEvent:
    return WebhookEvent(
        event_id="evt_1",
        event_type=CHECKOUT_COMPLETED,
        session_id="cs_test_1",
        payment_status=status,
        user_id=user_id or uuid4(),
        credits=credits,
    )


def grant_entry(user_id, balance_after: int = 12) -> LedgerEntry:
    return LedgerEntry(
        transaction_id=uuid4(),
        user_id=user_id,
        amount=10,
        kind=TransactionKind.GRANT,
        balance_after=balance_after,
        description="Purchased 10 credits",
        created_at=datetime.now(UTC),
    )


class TestPurchase:
    """Tests for POST /v1/credits/purchase."""

    def test_returns_checkout_url(self, client_factory, session_user, provider) -> None:
        client = client_factory(session_user, overrides={get_payment_provider: lambda: provider})

        response = client.post("/v1/credits/purchase", json={"credits": 10})

        assert response.status_code == 200
        assert response.json() == {
            "url": "https://checkout.test/cs_test_1",
            "session_id": "cs_test_1",
        }
        request = provider.create_checkout_session.await_args.args[0]
        assert request.user_id == session_user.user_id
        assert request.credits == 10
        assert request.success_url.endswith("/dashboard?success=true")
        assert request.cancel_url.endswith("/dashboard?canceled=true")

    def test_zero_credits_rejected(self, client_factory, session_user, provider) -> None:
        client = client_factory(session_user, overrides={get_payment_provider: lambda: provider})

        response = client.post("/v1/credits/purchase", json={"credits": 0})

        assert response.status_code == 422
        provider.create_checkout_session.assert_not_awaited()

    def test_provider_failure_is_502(self, client_factory, session_user, provider) -> None:
        provider.create_checkout_session.side_effect = PaymentProviderError("down")
        client = client_factory(session_user, overrides={get_payment_provider: lambda: provider})

        response = client.post("/v1/credits/purchase", json={"credits": 10})

        assert response.status_code == 502

    def test_unconfigured_provider_is_503(self, client_factory, session_user) -> None:
        with patch("launch_studio.api.dependencies.settings") as mock_settings:
            mock_settings.stripe_api_key = ""
            response = client_factory(session_user).post(
                "/v1/credits/purchase", json={"credits": 10}
            )

        assert response.status_code == 503


class TestStripeWebhook:
    """Tests for POST /v1/webhooks/stripe."""

    @pytest.fixture
    def client(self, client_factory, provider):
        return client_factory(overrides={get_payment_provider: lambda: provider})

    def test_paid_checkout_grants_credits(self, client, provider) -> None:
        event = paid_event()
        provider.verify_webhook.return_value = event
        with patch("launch_studio.api.billing_routes.CreditLedger") as ledger_cls:
            ledger_cls.return_value.grant = AsyncMock(return_value=grant_entry(event.user_id))
            response = client.post(
                "/v1/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"}
            )

        assert response.status_code == 200
        assert response.json() == {"status": "success", "event_id": "evt_1"}
        ledger_cls.return_value.grant.assert_awaited_once_with(
            event.user_id,
            10,
            description="Purchased 10 credits",
            idempotency_key="stripe:cs_test_1",
        )
        provider.verify_webhook.assert_awaited_once_with(b"{}", "sig")

    def test_replay_does_not_grant_twice(self, client, provider) -> None:
        provider.verify_webhook.return_value = paid_event()
        with patch("launch_studio.api.billing_routes.CreditLedger") as ledger_cls:
            ledger_cls.return_value.grant = AsyncMock(
                side_effect=IdempotencyConflictError("stripe:cs_test_1", uuid4())
            )
            response = client.post("/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    def test_bad_signature_is_400(self, client, provider) -> None:
        provider.verify_webhook.side_effect = WebhookVerificationError("bad sig")

        response = client.post("/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    def test_unpaid_checkout_ignored(self, client, provider) -> None:
        provider.verify_webhook.return_value = paid_event(status="unpaid")
        with patch("launch_studio.api.billing_routes.CreditLedger") as ledger_cls:
            response = client.post("/v1/webhooks/stripe", content=b"{}")

        assert response.json()["status"] == "ignored"
        ledger_cls.assert_not_called()

    def test_missing_metadata_is_400(self, client, provider) -> None:
        provider.verify_webhook.return_value = paid_event(credits=None)

        response = client.post("/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    def test_deleted_user_acknowledged(self, client, provider) -> None:
        event = paid_event()
        provider.verify_webhook.return_value = event
        with patch("launch_studio.api.billing_routes.CreditLedger") as ledger_cls:
            ledger_cls.return_value.grant = AsyncMock(side_effect=UserNotFoundError(event.user_id))
            response = client.post("/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
