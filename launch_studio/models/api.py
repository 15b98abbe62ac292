"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


class Stage(str, Enum):
    """Pipeline stage, in execution order."""

    MARKET_ANALYSIS = "market_analysis"
    PRODUCT_PAGE = "product_page"
    IMAGE_PROMPTS = "image_prompts"
    AD_COPY = "ad_copy"


class StageState(str, Enum):
    """Progress of one stage for one product."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class UserRole(str, Enum):
    """User role enumeration."""

    STANDARD = "standard"
    ADMIN = "admin"


class TransactionKind(str, Enum):
    """Credit ledger entry kind."""

    CHARGE = "charge"
    GRANT = "grant"
    ADJUSTMENT = "adjustment"


AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]

# Product names are capped below the 255-char column
PRODUCT_NAME_MAX_LENGTH = 200


# ============================================================================
# Auth Models
# ============================================================================


class RegisterRequest(BaseModel):
    """POST /v1/auth/register request body."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=256)


class LoginRequest(BaseModel):
    """POST /v1/auth/login request body."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)


class UserResponse(BaseModel):
    """Current user with live credit balance."""

    id: UUID
    email: str
    role: UserRole
    credits: int
    created_at: str


class AuthResponse(BaseModel):
    """Response for register and login."""

    user: UserResponse
    access_token: str
    token_type: str = "bearer"


# ============================================================================
# Product Models
# ============================================================================


class GeneratedImageResponse(BaseModel):
    """One generated image in a product's history."""

    data_uri: str
    prompt: str
    aspect_ratio: str
    created_at: str


class ProductSummaryResponse(BaseModel):
    """Product metadata for listings."""

    id: UUID
    name: str
    created_at: str
    updated_at: str


class ProductListResponse(BaseModel):
    """GET /v1/products response."""

    products: list[ProductSummaryResponse]


class ProductResponse(BaseModel):
    """Full product with every stage output."""

    id: UUID
    name: str
    raw_text: str
    has_image: bool
    image_mime_type: str | None
    market_analysis: str | None
    product_page_content: str | None
    image_prompts: str | None
    ad_copy: str | None
    generated_images: list[GeneratedImageResponse]
    created_at: str
    updated_at: str


class UpdateProductRequest(BaseModel):
    """PATCH /v1/products/{id} request body - only supplied fields change."""

    name: str | None = Field(None, min_length=1, max_length=PRODUCT_NAME_MAX_LENGTH)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        """Reject names that are only whitespace."""
        if v is None:
            return v
        stripped = v.strip()
        if not stripped:
            raise ValueError("name cannot be blank")
        return stripped


# ============================================================================
# Pipeline Models
# ============================================================================


class StageContentRequest(BaseModel):
    """PUT /v1/products/{id}/stages/{stage} request body (confirm-save)."""

    content: str = Field(..., min_length=1)


class StageResultResponse(BaseModel):
    """Full stage output, returned when streaming is disabled or on confirm-save."""

    product_id: UUID
    stage: Stage
    content: str
    credits_remaining: int | None = None


class StageStatusResponse(BaseModel):
    """State of a single stage."""

    stage: Stage
    state: StageState
    cost: int
    missing: list[str]


class PipelineStatusResponse(BaseModel):
    """GET /v1/products/{id}/pipeline response."""

    product_id: UUID
    stages: list[StageStatusResponse]
    next_stage: Stage | None
    credits: int


class StageChunkEvent(BaseModel):
    """NDJSON stream line carrying an incremental chunk."""

    type: Literal["chunk"] = "chunk"
    text: str


class StageFinishedEvent(BaseModel):
    """NDJSON stream line carrying the full output text."""

    type: Literal["finished"] = "finished"
    stage: Stage
    text: str


class StageErrorEvent(BaseModel):
    """NDJSON stream line for a failed generation."""

    type: Literal["error"] = "error"
    stage: Stage
    message: str
    retryable: bool


# ============================================================================
# Image Models
# ============================================================================


class OptimizePromptRequest(BaseModel):
    """POST /v1/products/{id}/images/optimize-prompt request body."""

    prompt: str = Field(..., min_length=1, max_length=10000)


class OptimizePromptResponse(BaseModel):
    """Optimized image prompt."""

    prompt: str


class GenerateImageRequest(BaseModel):
    """POST /v1/products/{id}/images request body."""

    prompt: str = Field(..., min_length=1, max_length=10000)
    aspect_ratio: AspectRatio = "1:1"


# ============================================================================
# Billing Models
# ============================================================================


class PurchaseRequest(BaseModel):
    """POST /v1/credits/purchase request body."""

    credits: int = Field(..., gt=0, le=1000, description="Number of credits to buy")


class PurchaseResponse(BaseModel):
    """Checkout session for a credit purchase."""

    url: str
    session_id: str


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment provider."""

    status: Literal["success", "duplicate", "ignored"]
    event_id: str


# ============================================================================
# Admin Models
# ============================================================================


class AdminUserResponse(BaseModel):
    """User as seen from the admin panel."""

    id: UUID
    email: str
    role: UserRole
    credits: int
    product_count: int
    created_at: str


class AdminUserListResponse(BaseModel):
    """GET /admin/users response."""

    users: list[AdminUserResponse]


class AdminUpdateUserRequest(BaseModel):
    """PATCH /admin/users/{id} request body."""

    credits: int | None = Field(None, ge=0, description="New absolute balance")
    role: UserRole | None = None


class AdminProductResponse(BaseModel):
    """Product summary with owner, as seen from the admin panel."""

    id: UUID
    name: str
    user_id: UUID
    owner_email: str | None
    created_at: str
    updated_at: str


class AdminProductListResponse(BaseModel):
    """GET /admin/products response."""

    products: list[AdminProductResponse]


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
