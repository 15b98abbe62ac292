"""
Content Store - Persistence for users and products.

NO DICTIONARIES - All reads return strongly typed domain models.

Every non-admin product read or write is filtered by owner. Passing
owner_id=None is the admin bypass: the ownership filter is dropped but
existence checks still apply.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy import Delete, Select, Update, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.db.models import Product, User, utc_now
from launch_studio.exceptions import (
    DatabaseError,
    EmailAlreadyRegisteredError,
    ProductNotFoundError,
    UserNotFoundError,
    WriteVerificationError,
)
from launch_studio.models.api import Stage, UserRole
from launch_studio.models.domain import (
    STAGE_OUTPUT_FIELDS,
    GeneratedImage,
    ProductData,
    ProductPatch,
    ProductSummary,
    ReferenceImage,
    UserData,
)

logger = get_logger(__name__)

_Stmt = TypeVar("_Stmt", Select, Update, Delete)


def normalize_email(email: str) -> str:
    """Emails are stored lower-cased and trimmed."""
    return email.strip().lower()


def to_user_data(user: User, product_count: int = 0) -> UserData:
    """Convert ORM user to domain model."""
    return UserData(
        user_id=user.id,
        email=user.email,
        role=UserRole(user.role),
        credits=user.credits,
        created_at=user.created_at,
        product_count=product_count,
    )


def to_product_data(product: Product) -> ProductData:
    """Convert ORM product to domain model."""
    image = None
    if product.image_data:
        image = ReferenceImage(
            data_base64=product.image_data,
            mime_type=product.image_mime_type or "image/png",
        )
    return ProductData(
        product_id=product.id,
        user_id=product.user_id,
        name=product.name,
        raw_text=product.raw_text,
        image=image,
        market_analysis=product.market_analysis,
        product_page_content=product.product_page_content,
        image_prompts=product.image_prompts,
        ad_copy=product.ad_copy,
        generated_images=tuple(
            GeneratedImage.from_json(item) for item in (product.generated_images or [])
        ),
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


class ContentStore:
    """Product and user persistence bound to one session."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize content store with database session."""
        self.session = session

    # ========================================================================
    # Users
    # ========================================================================

    async def create_user(
        self,
        email: str,
        password_hash: str,
        credits: int,
        role: UserRole = UserRole.STANDARD,
    ) -> UserData:
        """
        Create a user with a starting balance.

        Raises:
            EmailAlreadyRegisteredError: Email already taken
        """
        email = normalize_email(email)
        user = User(
            id=uuid4(),
            email=email,
            password_hash=password_hash,
            role=role.value,
            credits=credits,
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise EmailAlreadyRegisteredError(email) from exc

        verified = await self.session.get(User, user.id)
        if verified is None:
            raise WriteVerificationError(f"User {user.id} not found after insert")

        await self.session.commit()
        logger.info("user_created", user_id=str(user.id), role=role.value, credits=credits)
        return to_user_data(verified)

    async def get_user(self, user_id: UUID) -> UserData:
        """
        Get user by ID.

        Raises:
            UserNotFoundError: User doesn't exist
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return to_user_data(user)

    async def find_user_by_email(self, email: str) -> User | None:
        """Find user row by email (includes the password hash)."""
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_users(self) -> list[UserData]:
        """List all users with product counts, newest first."""
        product_count = func.count(Product.id).label("product_count")
        stmt = (
            select(User, product_count)
            .outerjoin(Product, Product.user_id == User.id)
            .group_by(User.id)
            .order_by(User.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [to_user_data(user, count) for user, count in result.all()]

    async def update_user_role(self, user_id: UUID, role: UserRole) -> UserData:
        """
        Change a user's role.

        Raises:
            UserNotFoundError: User doesn't exist
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        previous = user.role
        user.role = role.value
        await self.session.commit()

        logger.info(
            "user_role_updated",
            user_id=str(user_id),
            previous_role=previous,
            role=role.value,
        )
        return to_user_data(user)

    async def delete_user(self, user_id: UUID) -> None:
        """
        Delete a user and, by cascade, their products.

        Raises:
            UserNotFoundError: User doesn't exist
        """
        result = await self.session.execute(
            delete(User).where(User.id == user_id).returning(User.id)
        )
        if result.scalar_one_or_none() is None:
            raise UserNotFoundError(user_id)
        await self.session.commit()
        logger.info("user_deleted", user_id=str(user_id))

    # ========================================================================
    # Products
    # ========================================================================

    async def create_product(
        self,
        owner_id: UUID,
        name: str,
        raw_text: str,
        image: ReferenceImage | None = None,
    ) -> ProductData:
        """
        Create a product with raw input and no stage outputs.

        Raises:
            DatabaseError: Insert rejected by the database
        """
        now = utc_now()
        product = Product(
            id=uuid4(),
            user_id=owner_id,
            name=name,
            raw_text=raw_text,
            image_data=image.data_base64 if image else None,
            image_mime_type=image.mime_type if image else None,
            generated_images=[],
            created_at=now,
            updated_at=now,
        )
        async with self._writing("create_product"):
            self.session.add(product)
            await self.session.flush()

            verified = await self.session.get(Product, product.id)
            if verified is None:
                raise WriteVerificationError(f"Product {product.id} not found after insert")

            await self.session.commit()
        logger.info(
            "product_created",
            product_id=str(product.id),
            user_id=str(owner_id),
            has_image=image is not None,
            raw_text_chars=len(raw_text),
        )
        return to_product_data(verified)

    async def get_product(self, product_id: UUID, owner_id: UUID | None) -> ProductData:
        """
        Get a product visible to the caller.

        Raises:
            ProductNotFoundError: Product missing or owned by someone else
        """
        product = await self._find_product(product_id, owner_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return to_product_data(product)

    async def list_products(self, owner_id: UUID) -> list[ProductSummary]:
        """List the owner's products, newest first, without content."""
        stmt = (
            select(Product.id, Product.user_id, Product.name, Product.created_at, Product.updated_at)
            .where(Product.user_id == owner_id)
            .order_by(Product.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            ProductSummary(
                product_id=row.id,
                user_id=row.user_id,
                name=row.name,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
            for row in result.all()
        ]

    async def list_all_products(self) -> list[ProductSummary]:
        """List every product with its owner's email (admin)."""
        stmt = (
            select(
                Product.id,
                Product.user_id,
                Product.name,
                Product.created_at,
                Product.updated_at,
                User.email,
            )
            .join(User, User.id == Product.user_id)
            .order_by(Product.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            ProductSummary(
                product_id=row.id,
                user_id=row.user_id,
                name=row.name,
                created_at=row.created_at,
                updated_at=row.updated_at,
                owner_email=row.email,
            )
            for row in result.all()
        ]

    async def update_product(
        self, product_id: UUID, owner_id: UUID | None, patch: ProductPatch
    ) -> ProductData:
        """
        Apply a partial update. Fields not in the patch are left untouched.

        Raises:
            ProductNotFoundError: Product missing or owned by someone else
            DatabaseError: Update rejected by the database
        """
        changes = patch.changes()
        if not changes:
            return await self.get_product(product_id, owner_id)

        stmt = self._owned(update(Product), product_id, owner_id).values(
            **changes, updated_at=utc_now()
        )
        async with self._writing("update_product"):
            result = await self.session.execute(stmt.returning(Product.id))
            if result.scalar_one_or_none() is None:
                await self.session.rollback()
                raise ProductNotFoundError(product_id)

            await self.session.commit()
        logger.info(
            "product_updated",
            product_id=str(product_id),
            fields=sorted(changes.keys()),
        )
        return await self.get_product(product_id, owner_id)

    async def save_stage_output(
        self, product_id: UUID, owner_id: UUID | None, stage: Stage, text: str
    ) -> ProductData:
        """
        Upsert one stage's output, keyed by (product, stage).

        Writing the same text twice leaves the field equal to that text.

        Raises:
            ProductNotFoundError: Product missing or owned by someone else
            DatabaseError: Update rejected by the database
        """
        patch = ProductPatch(**{STAGE_OUTPUT_FIELDS[stage]: text})
        product = await self.update_product(product_id, owner_id, patch)
        logger.info(
            "stage_output_saved",
            product_id=str(product_id),
            stage=stage.value,
            chars=len(text),
        )
        return product

    async def append_generated_image(
        self, product_id: UUID, owner_id: UUID | None, image: GeneratedImage
    ) -> ProductData:
        """
        Prepend an image to the product's history (newest first).

        Raises:
            ProductNotFoundError: Product missing or owned by someone else
        """
        stmt = self._owned(select(Product), product_id, owner_id).with_for_update()
        async with self._writing("append_generated_image"):
            result = await self.session.execute(stmt)
            product = result.scalar_one_or_none()
            if product is None:
                raise ProductNotFoundError(product_id)

            # Reassign so the JSONB column is marked dirty
            product.generated_images = [image.to_json(), *(product.generated_images or [])]
            product.updated_at = utc_now()
            await self.session.commit()

        logger.info(
            "generated_image_saved",
            product_id=str(product_id),
            history_size=len(product.generated_images),
        )
        return to_product_data(product)

    async def delete_product(self, product_id: UUID, owner_id: UUID | None) -> None:
        """
        Delete a product.

        Raises:
            ProductNotFoundError: Product missing or owned by someone else
        """
        stmt = self._owned(delete(Product), product_id, owner_id).returning(Product.id)
        async with self._writing("delete_product"):
            result = await self.session.execute(stmt)
            if result.scalar_one_or_none() is None:
                await self.session.rollback()
                raise ProductNotFoundError(product_id)
            await self.session.commit()
        logger.info(
            "product_deleted",
            product_id=str(product_id),
            by_admin=owner_id is None,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    @asynccontextmanager
    async def _writing(self, operation: str) -> AsyncIterator[None]:
        """Roll back and raise DatabaseError when a write fails in the driver."""
        try:
            yield
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "database_write_failed",
                operation=operation,
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise DatabaseError(f"{operation} failed: {type(exc).__name__}") from exc

    async def _find_product(self, product_id: UUID, owner_id: UUID | None) -> Product | None:
        stmt = self._owned(select(Product), product_id, owner_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _owned(stmt: _Stmt, product_id: UUID, owner_id: UUID | None) -> _Stmt:
        """Restrict a statement to one product, and to its owner unless admin."""
        stmt = stmt.where(Product.id == product_id)
        if owner_id is not None:
            stmt = stmt.where(Product.user_id == owner_id)
        return stmt
