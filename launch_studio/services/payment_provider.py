"""
Payment Provider Protocol - Provider-agnostic interface for credit purchases.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

# Event type that confirms a paid checkout
CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Provider-agnostic checkout request.

    Represents a request to buy a number of credits.
    """

    user_id: UUID
    email: str
    credits: int
    unit_amount_minor: int
    currency: str
    success_url: str
    cancel_url: str

    @property
    def amount_minor(self) -> int:
        return self.credits * self.unit_amount_minor


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout page the client is redirected to."""

    session_id: str
    url: str


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    user_id and credits come from the metadata attached at checkout and are
    None when the event carries no such metadata.
    """

    event_id: str
    event_type: str
    session_id: str | None
    payment_status: str | None
    user_id: UUID | None
    credits: int | None

    @property
    def is_paid_checkout(self) -> bool:
        return self.event_type == CHECKOUT_COMPLETED and self.payment_status in (
            "paid",
            "no_payment_required",
        )


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any payment provider must implement this interface so billing routes
    stay provider-agnostic.
    """

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse a webhook event.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
