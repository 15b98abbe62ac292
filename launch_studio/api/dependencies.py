"""
FastAPI Dependencies - Authentication, authorization and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.config import settings
from launch_studio.db.session import get_db
from launch_studio.exceptions import AuthorizationError, UserNotFoundError
from launch_studio.models.api import UserRole
from launch_studio.models.domain import SessionUser
from launch_studio.services.content_store import ContentStore
from launch_studio.services.image_generation import ImageStudio
from launch_studio.services.payment_provider import PaymentProvider
from launch_studio.services.pipeline import PipelineOrchestrator
from launch_studio.services.stripe_provider import StripeProvider
from launch_studio.services.user_auth import SessionTokens, require_role

logger = get_logger(__name__)

# Bearer token scheme; the session cookie is accepted as well
bearer_scheme = HTTPBearer(auto_error=False)


def get_session_tokens() -> SessionTokens:
    """Session token issuer/verifier from settings."""
    return SessionTokens(settings.session_jwt_secret, settings.session_expire_days)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: SessionTokens = Depends(get_session_tokens),
) -> SessionUser:
    """
    FastAPI dependency resolving the caller from a session token.

    Accepts: Authorization: Bearer {token} or the session cookie.

    Raises:
        HTTPException 401 if no token or invalid token
    """
    token = credentials.credentials if credentials else None
    if not token:
        token = request.cookies.get(settings.session_cookie_name)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = tokens.verify(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SessionUser:
    """
    Require the admin role.

    The role is re-read from the database so a demotion takes effect before
    the token expires.

    Raises:
        HTTPException 401 if the account no longer exists
        HTTPException 403 if not admin
    """
    try:
        current = await ContentStore(db).get_user(user.user_id)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account no longer exists",
        ) from exc

    try:
        require_role(current, UserRole.ADMIN)
    except AuthorizationError as exc:
        logger.warning("admin_access_denied", user_id=str(user.user_id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        ) from exc

    return SessionUser(user_id=current.user_id, email=current.email, role=current.role)


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Pipeline orchestrator built in the application lifespan."""
    orchestrator: PipelineOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_image_studio(request: Request) -> ImageStudio:
    """Image studio built in the application lifespan."""
    studio: ImageStudio = request.app.state.image_studio
    return studio


def get_payment_provider() -> PaymentProvider:
    """
    Stripe provider from settings.

    Raises:
        HTTPException 503 if Stripe is not configured
    """
    if not settings.stripe_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
