"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Stores login credentials, role and the credit balance.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")

    # Balance
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    products: Mapped[list["Product"]] = relationship(
        back_populates="owner", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        CheckConstraint("role IN ('standard', 'admin')", name="ck_users_role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, role={self.role}, credits={self.credits})>"


class Product(Base):
    """
    ORM model for products table.

    Raw input plus one nullable output column per pipeline stage.
    """

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)

    # Reference image (base64)
    image_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_mime_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Stage outputs
    market_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_page_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_prompts: Mapped[str | None] = mapped_column(Text, nullable=True)
    ad_copy: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Newest first
    generated_images: Mapped[list[Any]] = mapped_column(JSONB, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    owner: Mapped[User] = relationship(back_populates="products")

    __table_args__ = (
        Index("idx_products_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Product(id={self.id}, user_id={self.user_id}, name={self.name})>"


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Immutable ledger of every balance mutation.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # Signed
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Charge context
    product_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    stage: Mapped[str | None] = mapped_column(String(50), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance_after >= 0", name="ck_credit_tx_balance_non_negative"),
        CheckConstraint(
            "kind IN ('charge', 'grant', 'adjustment')", name="ck_credit_tx_kind"
        ),
        UniqueConstraint("user_id", "idempotency_key", name="uq_credit_tx_idempotency"),
        Index("idx_credit_tx_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"kind={self.kind}, amount={self.amount})>"
        )
