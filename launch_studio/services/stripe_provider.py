"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

from uuid import UUID

import stripe
from structlog import get_logger

from launch_studio.exceptions import PaymentProviderError, WebhookVerificationError
from launch_studio.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    WebhookEvent,
)

logger = get_logger(__name__)


def _metadata_user_id(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def _metadata_credits(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol with Stripe Checkout.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout Session for a credit purchase.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_checkout_session",
                user_id=str(request.user_id),
                credits=request.credits,
                amount_minor=request.amount_minor,
                currency=request.currency,
            )

            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=request.email,
                line_items=[
                    {
                        "price_data": {
                            "currency": request.currency.lower(),
                            "product_data": {
                                "name": f"{request.credits} Launch Studio credits",
                            },
                            "unit_amount": request.unit_amount_minor,
                        },
                        "quantity": request.credits,
                    }
                ],
                metadata={
                    "user_id": str(request.user_id),
                    "credits": str(request.credits),
                },
                success_url=request.success_url,
                cancel_url=request.cancel_url,
            )

            logger.info(
                "stripe_checkout_session_created",
                session_id=session.id,
                user_id=str(request.user_id),
            )

            return CheckoutSession(session_id=session.id, url=session.url or "")

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        try:
            logger.info("verifying_stripe_webhook", signature_present=bool(signature))

            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )

            logger.info(
                "stripe_webhook_verified",
                event_id=event.id,
                event_type=event.type,
            )

            checkout = event.data.object
            metadata = checkout.get("metadata") or {}

            return WebhookEvent(
                event_id=event.id,
                event_type=event.type,
                session_id=checkout.get("id"),
                payment_status=checkout.get("payment_status"),
                user_id=_metadata_user_id(metadata.get("user_id")),
                credits=_metadata_credits(metadata.get("credits")),
            )

        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc
