"""
User authentication - Email/password accounts and session tokens.

Passwords are hashed with Argon2id. Sessions are HS256 JWTs carried in a
cookie or an Authorization: Bearer header.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.exceptions import AuthenticationError, AuthorizationError
from launch_studio.models.api import UserRole
from launch_studio.models.domain import SessionUser, UserData
from launch_studio.services.content_store import ContentStore, to_user_data

logger = get_logger(__name__)


def require_role(user: UserData, role: UserRole) -> None:
    """
    Check a stored user snapshot against a required role.

    Raises:
        AuthorizationError: User does not hold the role
    """
    if user.role != role:
        raise AuthorizationError(role.value)


class SessionTokens:
    """Issues and verifies session JWTs."""

    def __init__(self, secret: str, expire_days: int = 7) -> None:
        self.secret = secret
        self.expire_days = expire_days

    def issue(self, user: UserData) -> str:
        """Create session token for a user."""
        now = datetime.now(UTC)
        payload = {
            "sub": str(user.user_id),
            "email": user.email,
            "role": user.role.value,
            "iat": now,
            "exp": now + timedelta(days=self.expire_days),
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def verify(self, token: str) -> SessionUser | None:
        """Verify session token and return the caller, or None."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            logger.warning("session_token_expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning("session_token_invalid", error=str(e))
            return None

        try:
            return SessionUser(
                user_id=UUID(str(payload["sub"])),
                email=str(payload.get("email", "")),
                role=UserRole(payload.get("role", UserRole.STANDARD.value)),
            )
        except (KeyError, ValueError) as e:
            logger.warning("session_token_malformed", error=str(e))
            return None


class UserAuthService:
    """Registration and login."""

    def __init__(self, session: AsyncSession, starting_credits: int) -> None:
        self.session = session
        self.starting_credits = starting_credits
        self.password_hasher = PasswordHasher()

    async def register(self, email: str, password: str) -> UserData:
        """
        Create an account with the starting credit balance.

        Raises:
            EmailAlreadyRegisteredError: Email already taken
        """
        password_hash = self.password_hasher.hash(password)
        user = await ContentStore(self.session).create_user(
            email=email,
            password_hash=password_hash,
            credits=self.starting_credits,
        )
        logger.info("user_registered", user_id=str(user.user_id))
        return user

    async def authenticate(self, email: str, password: str) -> UserData:
        """
        Check credentials.

        Raises:
            AuthenticationError: Unknown email or wrong password
        """
        user = await ContentStore(self.session).find_user_by_email(email)
        if user is None:
            logger.info("login_failed", reason="unknown_email")
            raise AuthenticationError("Invalid credentials")

        try:
            self.password_hasher.verify(user.password_hash, password)
        except (VerifyMismatchError, InvalidHashError):
            logger.info("login_failed", reason="bad_password", user_id=str(user.id))
            raise AuthenticationError("Invalid credentials") from None

        logger.info("user_logged_in", user_id=str(user.id))
        return to_user_data(user)
