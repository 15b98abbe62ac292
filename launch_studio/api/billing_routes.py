"""
Billing Routes - Credit purchases through Stripe Checkout.

Credits are granted only from the verified webhook, exactly once per
checkout session.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.api.dependencies import get_current_user, get_payment_provider
from launch_studio.config import settings
from launch_studio.db.session import get_db
from launch_studio.exceptions import (
    DataIntegrityError,
    IdempotencyConflictError,
    PaymentProviderError,
    UserNotFoundError,
    WebhookVerificationError,
    WriteVerificationError,
)
from launch_studio.models.api import PurchaseRequest, PurchaseResponse, WebhookResponse
from launch_studio.models.domain import SessionUser
from launch_studio.observability.metrics import metrics
from launch_studio.services.credit_ledger import CreditLedger
from launch_studio.services.payment_provider import CheckoutRequest, PaymentProvider

logger = get_logger(__name__)

router = APIRouter()


@router.post("/v1/credits/purchase", response_model=PurchaseResponse)
async def purchase_credits(
    request: PurchaseRequest,
    user: SessionUser = Depends(get_current_user),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PurchaseResponse:
    """
    Start a credit purchase.

    Returns the hosted checkout URL. Credits arrive when the provider
    confirms payment through the webhook.
    """
    if request.credits > settings.max_credits_per_purchase:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.max_credits_per_purchase} credits per purchase",
        )

    checkout = CheckoutRequest(
        user_id=user.user_id,
        email=user.email,
        credits=request.credits,
        unit_amount_minor=settings.price_per_credit_minor,
        currency=settings.credit_currency,
        success_url=f"{settings.app_url}/dashboard?success=true",
        cancel_url=f"{settings.app_url}/dashboard?canceled=true",
    )

    try:
        session = await provider.create_checkout_session(checkout)
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider error",
        ) from exc

    return PurchaseResponse(url=session.url, session_id=session.session_id)


@router.post("/v1/webhooks/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    A completed checkout grants the purchased credits. Replays of the same
    checkout session are acknowledged without granting again.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc

    logger.info(
        "stripe_webhook_received",
        event_id=event.event_id,
        event_type=event.event_type,
        session_id=event.session_id,
    )

    if not event.is_paid_checkout:
        logger.info(
            "stripe_webhook_ignored",
            event_type=event.event_type,
            event_id=event.event_id,
            payment_status=event.payment_status,
        )
        return WebhookResponse(status="ignored", event_id=event.event_id)

    if event.user_id is None or not event.credits or event.credits <= 0 or not event.session_id:
        logger.error("stripe_webhook_missing_metadata", event_id=event.event_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing purchase metadata in webhook",
        )

    try:
        entry = await CreditLedger(db).grant(
            event.user_id,
            event.credits,
            description=f"Purchased {event.credits} credits",
            idempotency_key=f"stripe:{event.session_id}",
        )

    except IdempotencyConflictError:
        logger.info(
            "stripe_webhook_duplicate",
            event_id=event.event_id,
            session_id=event.session_id,
        )
        return WebhookResponse(status="duplicate", event_id=event.event_id)

    except UserNotFoundError:
        # Account deleted after checkout; retrying will not help
        logger.error(
            "stripe_webhook_user_missing",
            event_id=event.event_id,
            user_id=str(event.user_id),
        )
        return WebhookResponse(status="ignored", event_id=event.event_id)

    except (WriteVerificationError, DataIntegrityError) as exc:
        logger.error("stripe_webhook_credit_failed", event_id=event.event_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    metrics.record_grant("purchase", event.credits)
    logger.info(
        "stripe_payment_credited",
        event_id=event.event_id,
        user_id=str(event.user_id),
        credits=event.credits,
        balance_after=entry.balance_after,
    )
    return WebhookResponse(status="success", event_id=event.event_id)
