"""
Auth Routes - Registration, login, logout and the current user.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from launch_studio.api.dependencies import get_current_user, get_session_tokens
from launch_studio.config import settings
from launch_studio.db.session import get_db
from launch_studio.exceptions import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    UserNotFoundError,
    WriteVerificationError,
)
from launch_studio.models.api import AuthResponse, LoginRequest, RegisterRequest, UserResponse
from launch_studio.models.domain import SessionUser, UserData
from launch_studio.services.content_store import ContentStore
from launch_studio.services.user_auth import SessionTokens, UserAuthService

router = APIRouter()


def user_response(user: UserData) -> UserResponse:
    return UserResponse(
        id=user.user_id,
        email=user.email,
        role=user.role,
        credits=user.credits,
        created_at=user.created_at.isoformat(),
    )


def _start_session(response: Response, tokens: SessionTokens, user: UserData) -> AuthResponse:
    token = tokens.issue(user)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_expire_days * 24 * 3600,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return AuthResponse(user=user_response(user), access_token=token)


@router.post(
    "/v1/auth/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    request: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    tokens: SessionTokens = Depends(get_session_tokens),
) -> AuthResponse:
    """Create an account with the starting credit balance and log it in."""
    service = UserAuthService(db, starting_credits=settings.starting_credits)
    try:
        user = await service.register(request.email, request.password)
    except EmailAlreadyRegisteredError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        ) from exc
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    return _start_session(response, tokens, user)


@router.post("/v1/auth/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    tokens: SessionTokens = Depends(get_session_tokens),
) -> AuthResponse:
    """Log in with email and password."""
    service = UserAuthService(db, starting_credits=settings.starting_credits)
    try:
        user = await service.authenticate(request.email, request.password)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        ) from exc

    return _start_session(response, tokens, user)


@router.post("/v1/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response) -> Response:
    """Clear the session cookie."""
    response.delete_cookie(key=settings.session_cookie_name, path="/")
    response.status_code = status.HTTP_204_NO_CONTENT
    return response


@router.get("/v1/me", response_model=UserResponse)
async def get_me(
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Current user with live credit balance."""
    try:
        current = await ContentStore(db).get_user(user.user_id)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account no longer exists",
        ) from exc
    return user_response(current)
