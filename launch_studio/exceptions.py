"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class StudioError(Exception):
    """Base exception for all launch studio errors."""

    pass


# ============================================================================
# Identity
# ============================================================================


class AuthenticationError(StudioError):
    """Raised when authentication fails (missing session, bad credentials)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(StudioError):
    """Raised when user lacks required role."""

    def __init__(self, required_role: str) -> None:
        self.required_role = required_role
        super().__init__(f"Authorization failed: role {required_role} required")


class EmailAlreadyRegisteredError(StudioError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email already registered: {email}")


# ============================================================================
# Lookup
# ============================================================================


class UserNotFoundError(StudioError):
    """Raised when user doesn't exist."""

    def __init__(self, user_id: UUID | str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class ProductNotFoundError(StudioError):
    """Raised when product doesn't exist or isn't visible to the caller."""

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


# ============================================================================
# Pipeline
# ============================================================================


class MissingContextError(StudioError):
    """Raised when an upstream stage output required as prompt context is null."""

    def __init__(self, stage: str, missing: list[str]) -> None:
        self.stage = stage
        self.missing = missing
        super().__init__(f"Cannot run {stage}: missing {', '.join(missing)}")


class InsufficientCreditsError(StudioError):
    """Raised when user has insufficient balance for charge."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class StageInProgressError(StudioError):
    """Raised when the same stage is already generating for a product."""

    def __init__(self, product_id: UUID, stage: str) -> None:
        self.product_id = product_id
        self.stage = stage
        super().__init__(f"Stage {stage} already in progress for product {product_id}")


class UpstreamGenerationError(StudioError):
    """Raised when the completion service fails, times out, or returns nothing usable."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.message = message
        self.retryable = retryable
        super().__init__(f"Generation failed: {message}")


class RateLimitedError(UpstreamGenerationError):
    """Raised when the image model rejects a call with a rate limit signal."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


# ============================================================================
# Upload
# ============================================================================


class UploadError(StudioError):
    """Base class for upload rejections."""

    pass


class FileTooLargeError(UploadError):
    """Raised when an uploaded file exceeds its size ceiling."""

    def __init__(self, filename: str, limit_bytes: int) -> None:
        self.filename = filename
        self.limit_bytes = limit_bytes
        super().__init__(f"{filename} exceeds {limit_bytes // (1024 * 1024)}MB limit")


class InvalidFileTypeError(UploadError):
    """Raised when an uploaded file has an unsupported extension or MIME type."""

    def __init__(self, filename: str, allowed: list[str]) -> None:
        self.filename = filename
        self.allowed = allowed
        super().__init__(f"Unsupported file type for {filename}. Allowed: {', '.join(allowed)}")


class EmptyContentError(UploadError):
    """Raised when a document yields no text after decoding."""

    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(
            f"{filename} appears to be empty or unscannable. "
            "Please upload a file containing readable text."
        )


class DocumentExtractionError(UploadError):
    """Raised when text cannot be extracted from a PDF."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"Failed to extract text from PDF file {filename}: {reason}")


# ============================================================================
# Ledger / Storage
# ============================================================================


class IdempotencyConflictError(StudioError):
    """Raised when idempotency key reused."""

    def __init__(self, idempotency_key: str, existing_id: UUID) -> None:
        self.idempotency_key = idempotency_key
        self.existing_id = existing_id
        super().__init__(f"Idempotency conflict: {idempotency_key} already applied as {existing_id}")


class WriteVerificationError(StudioError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(StudioError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(StudioError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


# ============================================================================
# Payments
# ============================================================================


class PaymentProviderError(StudioError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(StudioError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")
