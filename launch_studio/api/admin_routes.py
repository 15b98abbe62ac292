"""
Admin API routes for managing users and products.

Every route requires the admin role. Product routes bypass the ownership
filter but still 404 on missing products.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.api.dependencies import require_admin
from launch_studio.api.routes import product_response
from launch_studio.db.session import get_db
from launch_studio.exceptions import (
    DataIntegrityError,
    ProductNotFoundError,
    UserNotFoundError,
    WriteVerificationError,
)
from launch_studio.models.api import (
    AdminProductListResponse,
    AdminProductResponse,
    AdminUpdateUserRequest,
    AdminUserListResponse,
    AdminUserResponse,
    ProductResponse,
)
from launch_studio.models.domain import SessionUser, UserData
from launch_studio.observability.metrics import metrics
from launch_studio.services.content_store import ContentStore
from launch_studio.services.credit_ledger import CreditLedger

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def admin_user_response(user: UserData) -> AdminUserResponse:
    return AdminUserResponse(
        id=user.user_id,
        email=user.email,
        role=user.role,
        credits=user.credits,
        product_count=user.product_count,
        created_at=user.created_at.isoformat(),
    )


# ============================================================================
# Users
# ============================================================================


@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminUserListResponse:
    """All users with credits, role and product count."""
    users = await ContentStore(db).list_users()
    return AdminUserListResponse(users=[admin_user_response(user) for user in users])


@router.patch("/users/{user_id}", response_model=AdminUserResponse)
async def update_user(
    user_id: UUID,
    request: AdminUpdateUserRequest,
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminUserResponse:
    """Set a user's balance and/or role. The balance change is recorded in the ledger."""
    store = ContentStore(db)
    try:
        if request.credits is not None:
            entry = await CreditLedger(db).adjust_to(
                user_id,
                request.credits,
                description=f"Admin adjustment by {admin.email}",
            )
            if entry.amount > 0:
                metrics.record_grant("adjustment", entry.amount)
        if request.role is not None:
            await store.update_user_role(user_id, request.role)
        user = await store.get_user(user_id)

    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    except (WriteVerificationError, DataIntegrityError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    logger.info(
        "admin_user_updated",
        admin_id=str(admin.user_id),
        user_id=str(user_id),
        credits=request.credits,
        role=request.role.value if request.role else None,
    )
    return admin_user_response(user)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: UUID,
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a user and their products."""
    if user_id == admin.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account",
        )
    try:
        await ContentStore(db).delete_user(user_id)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc
    logger.info("admin_user_deleted", admin_id=str(admin.user_id), user_id=str(user_id))


# ============================================================================
# Products
# ============================================================================


@router.get("/products", response_model=AdminProductListResponse)
async def list_products(
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminProductListResponse:
    """Every product with its owner's email."""
    summaries = await ContentStore(db).list_all_products()
    return AdminProductListResponse(
        products=[
            AdminProductResponse(
                id=summary.product_id,
                name=summary.name,
                user_id=summary.user_id,
                owner_email=summary.owner_email,
                created_at=summary.created_at.isoformat(),
                updated_at=summary.updated_at.isoformat(),
            )
            for summary in summaries
        ]
    )


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    """Any product, regardless of owner."""
    try:
        product = await ContentStore(db).get_product(product_id, owner_id=None)
    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc
    return product_response(product)


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete any product."""
    try:
        await ContentStore(db).delete_product(product_id, owner_id=None)
    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc
    logger.info("admin_product_deleted", admin_id=str(admin.user_id), product_id=str(product_id))
