"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from launch_studio.models.api import Stage, StageState, TransactionKind, UserRole

# Product column holding each stage's output
STAGE_OUTPUT_FIELDS: dict[Stage, str] = {
    Stage.MARKET_ANALYSIS: "market_analysis",
    Stage.PRODUCT_PAGE: "product_page_content",
    Stage.IMAGE_PROMPTS: "image_prompts",
    Stage.AD_COPY: "ad_copy",
}


@dataclass(frozen=True)
class SessionUser:
    """Authenticated caller, as resolved from a session token."""

    user_id: UUID
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class UserData:
    """Immutable user snapshot."""

    user_id: UUID
    email: str
    role: UserRole
    credits: int
    created_at: datetime
    product_count: int = 0

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.credits < 0:
            raise ValueError(f"Credits cannot be negative: {self.credits}")


@dataclass(frozen=True)
class ReferenceImage:
    """Reference product image, stored base64 encoded."""

    data_base64: str
    mime_type: str

    @property
    def data(self) -> bytes:
        return base64.b64decode(self.data_base64)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "ReferenceImage":
        return cls(data_base64=base64.b64encode(data).decode("ascii"), mime_type=mime_type)


@dataclass(frozen=True)
class GeneratedImage:
    """Generated image artifact kept in a product's history."""

    data_uri: str
    prompt: str
    aspect_ratio: str
    created_at: str  # ISO 8601

    def to_json(self) -> dict[str, str]:
        """Serialize for the JSONB history column."""
        return {
            "data_uri": self.data_uri,
            "prompt": self.prompt,
            "aspect_ratio": self.aspect_ratio,
            "created_at": self.created_at,
        }

    @classmethod
    def from_json(cls, value: dict[str, str] | str) -> "GeneratedImage":
        # Bare data URIs are accepted for rows written before prompts were recorded
        if isinstance(value, str):
            return cls(data_uri=value, prompt="", aspect_ratio="", created_at="")
        return cls(
            data_uri=value["data_uri"],
            prompt=value.get("prompt", ""),
            aspect_ratio=value.get("aspect_ratio", ""),
            created_at=value.get("created_at", ""),
        )


@dataclass(frozen=True)
class ProductData:
    """Immutable product snapshot with every stage output."""

    product_id: UUID
    user_id: UUID
    name: str
    raw_text: str
    image: ReferenceImage | None
    market_analysis: str | None
    product_page_content: str | None
    image_prompts: str | None
    ad_copy: str | None
    generated_images: tuple[GeneratedImage, ...]
    created_at: datetime
    updated_at: datetime

    def output_for(self, stage: Stage) -> str | None:
        """Get the persisted output of a stage, or None if not run."""
        value: str | None = getattr(self, STAGE_OUTPUT_FIELDS[stage])
        return value


@dataclass(frozen=True)
class ProductSummary:
    """Product metadata without content."""

    product_id: UUID
    user_id: UUID
    name: str
    created_at: datetime
    updated_at: datetime
    owner_email: str | None = None


@dataclass(frozen=True)
class ProductPatch:
    """Partial product update. Only non-None fields are written."""

    name: str | None = None
    market_analysis: str | None = None
    product_page_content: str | None = None
    image_prompts: str | None = None
    ad_copy: str | None = None

    def changes(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (
                ("name", self.name),
                ("market_analysis", self.market_analysis),
                ("product_page_content", self.product_page_content),
                ("image_prompts", self.image_prompts),
                ("ad_copy", self.ad_copy),
            )
            if value is not None
        }


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable record of one balance mutation."""

    transaction_id: UUID
    user_id: UUID
    amount: int  # Signed: negative for charges
    kind: TransactionKind
    balance_after: int
    description: str
    created_at: datetime
    product_id: UUID | None = None
    stage: str | None = None

    def __post_init__(self) -> None:
        """Validate ledger constraints."""
        if self.balance_after < 0:
            raise ValueError(f"Balance cannot be negative: {self.balance_after}")


@dataclass(frozen=True)
class StageStatus:
    """Computed state of one stage for one product."""

    stage: Stage
    state: StageState
    cost: int
    missing: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PipelineStatus:
    """Computed pipeline progress for one product."""

    product_id: UUID
    stages: tuple[StageStatus, ...]
    next_stage: Stage | None
    credits: int

