"""
Tests for Admin API routes.

Tests the admin role check and the user and product management endpoints.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import HTTPException

from launch_studio.api.dependencies import require_admin
from launch_studio.exceptions import AuthorizationError, ProductNotFoundError, UserNotFoundError
from launch_studio.models.api import TransactionKind, UserRole
from launch_studio.models.domain import LedgerEntry, ProductSummary, UserData


def user_data(role: UserRole = UserRole.STANDARD, credits: int = 2) -> UserData:
    return UserData(
        user_id=uuid4(),
        email="maker@example.com",
        role=role,
        credits=credits,
        created_at=datetime.now(UTC),
        product_count=3,
    )


@pytest.fixture
def admin_client(client_factory, admin_user):
    return client_factory(admin_user, overrides={require_admin: lambda: admin_user})


# ============================================================================
# Role Check
# ============================================================================


class TestRequireAdmin:
    """Tests for the require_admin dependency."""

    async def test_admin_allowed(self, admin_user, db_session) -> None:
        current = UserData(
            user_id=admin_user.user_id,
            email=admin_user.email,
            role=UserRole.ADMIN,
            credits=0,
            created_at=datetime.now(UTC),
        )
        with patch("launch_studio.api.dependencies.ContentStore") as store_cls:
            store_cls.return_value.get_user = AsyncMock(return_value=current)
            result = await require_admin(admin_user, db_session)

        assert result.is_admin

    async def test_demoted_admin_rejected(self, admin_user, db_session) -> None:
        """A stale admin token is rejected once the stored role changes."""
        current = UserData(
            user_id=admin_user.user_id,
            email=admin_user.email,
            role=UserRole.STANDARD,
            credits=0,
            created_at=datetime.now(UTC),
        )
        with patch("launch_studio.api.dependencies.ContentStore") as store_cls:
            store_cls.return_value.get_user = AsyncMock(return_value=current)
            with pytest.raises(HTTPException) as exc_info:
                await require_admin(admin_user, db_session)

        assert exc_info.value.status_code == 403
        assert isinstance(exc_info.value.__cause__, AuthorizationError)

    async def test_deleted_account_rejected(self, admin_user, db_session) -> None:
        with patch("launch_studio.api.dependencies.ContentStore") as store_cls:
            store_cls.return_value.get_user = AsyncMock(
                side_effect=UserNotFoundError(admin_user.user_id)
            )
            with pytest.raises(HTTPException) as exc_info:
                await require_admin(admin_user, db_session)

        assert exc_info.value.status_code == 401

    def test_standard_user_gets_403_over_http(self, client_factory, session_user) -> None:
        current = user_data(role=UserRole.STANDARD)
        with patch("launch_studio.api.dependencies.ContentStore") as store_cls:
            store_cls.return_value.get_user = AsyncMock(return_value=current)
            response = client_factory(session_user).get("/admin/users")

        assert response.status_code == 403


# ============================================================================
# Users
# ============================================================================


class TestUserManagement:
    """Tests for admin user endpoints."""

    def test_list_users(self, admin_client) -> None:
        users = [user_data(), user_data(role=UserRole.ADMIN, credits=0)]
        with patch("launch_studio.api.admin_routes.ContentStore") as store_cls:
            store_cls.return_value.list_users = AsyncMock(return_value=users)
            response = admin_client.get("/admin/users")

        assert response.status_code == 200
        body = response.json()["users"]
        assert len(body) == 2
        assert body[0]["product_count"] == 3
        assert body[1]["role"] == "admin"

    def test_set_credits_and_role(self, admin_client, admin_user) -> None:
        target = user_data(role=UserRole.ADMIN, credits=10)
        entry = LedgerEntry(
            transaction_id=uuid4(),
            user_id=target.user_id,
            amount=8,
            kind=TransactionKind.ADJUSTMENT,
            balance_after=10,
            description="Admin adjustment",
            created_at=datetime.now(UTC),
        )
        with (
            patch("launch_studio.api.admin_routes.ContentStore") as store_cls,
            patch("launch_studio.api.admin_routes.CreditLedger") as ledger_cls,
        ):
            ledger_cls.return_value.adjust_to = AsyncMock(return_value=entry)
            store_cls.return_value.update_user_role = AsyncMock(return_value=target)
            store_cls.return_value.get_user = AsyncMock(return_value=target)

            response = admin_client.patch(
                f"/admin/users/{target.user_id}", json={"credits": 10, "role": "admin"}
            )

        assert response.status_code == 200
        assert response.json()["credits"] == 10
        ledger_cls.return_value.adjust_to.assert_awaited_once_with(
            target.user_id, 10, description=f"Admin adjustment by {admin_user.email}"
        )
        store_cls.return_value.update_user_role.assert_awaited_once_with(
            target.user_id, UserRole.ADMIN
        )

    def test_role_only_leaves_credits(self, admin_client) -> None:
        target = user_data()
        with (
            patch("launch_studio.api.admin_routes.ContentStore") as store_cls,
            patch("launch_studio.api.admin_routes.CreditLedger") as ledger_cls,
        ):
            store_cls.return_value.update_user_role = AsyncMock(return_value=target)
            store_cls.return_value.get_user = AsyncMock(return_value=target)

            response = admin_client.patch(
                f"/admin/users/{target.user_id}", json={"role": "standard"}
            )

        assert response.status_code == 200
        ledger_cls.return_value.adjust_to.assert_not_called()

    def test_negative_credits_rejected(self, admin_client) -> None:
        response = admin_client.patch(f"/admin/users/{uuid4()}", json={"credits": -1})
        assert response.status_code == 422

    def test_unknown_user_is_404(self, admin_client) -> None:
        user_id = uuid4()
        with patch("launch_studio.api.admin_routes.CreditLedger") as ledger_cls:
            ledger_cls.return_value.adjust_to = AsyncMock(side_effect=UserNotFoundError(user_id))
            response = admin_client.patch(f"/admin/users/{user_id}", json={"credits": 5})

        assert response.status_code == 404

    def test_delete_user(self, admin_client) -> None:
        user_id = uuid4()
        with patch("launch_studio.api.admin_routes.ContentStore") as store_cls:
            store_cls.return_value.delete_user = AsyncMock()
            response = admin_client.delete(f"/admin/users/{user_id}")

        assert response.status_code == 204
        store_cls.return_value.delete_user.assert_awaited_once_with(user_id)

    def test_cannot_delete_self(self, admin_client, admin_user) -> None:
        with patch("launch_studio.api.admin_routes.ContentStore") as store_cls:
            response = admin_client.delete(f"/admin/users/{admin_user.user_id}")

        assert response.status_code == 400
        store_cls.assert_not_called()


# ============================================================================
# Products
# ============================================================================


class TestProductManagement:
    """Tests for admin product endpoints."""

    def test_list_all_products(self, admin_client) -> None:
        summary = ProductSummary(
            product_id=uuid4(),
            user_id=uuid4(),
            name="Earbuds",
            created_at=datetime.now(UTC),
            updated_at=datetime.now(UTC),
            owner_email="maker@example.com",
        )
        with patch("launch_studio.api.admin_routes.ContentStore") as store_cls:
            store_cls.return_value.list_all_products = AsyncMock(return_value=[summary])
            response = admin_client.get("/admin/products")

        assert response.status_code == 200
        assert response.json()["products"][0]["owner_email"] == "maker@example.com"

    def test_get_any_product(self, admin_client, product_factory) -> None:
        product = product_factory(user_id=uuid4())
        with patch("launch_studio.api.admin_routes.ContentStore") as store_cls:
            store_cls.return_value.get_product = AsyncMock(return_value=product)
            response = admin_client.get(f"/admin/products/{product.product_id}")

        assert response.status_code == 200
        store_cls.return_value.get_product.assert_awaited_once_with(
            product.product_id, owner_id=None
        )

    def test_missing_product_still_404(self, admin_client) -> None:
        product_id = uuid4()
        with patch("launch_studio.api.admin_routes.ContentStore") as store_cls:
            store_cls.return_value.delete_product = AsyncMock(
                side_effect=ProductNotFoundError(product_id)
            )
            response = admin_client.delete(f"/admin/products/{product_id}")

        assert response.status_code == 404

    def test_delete_any_product(self, admin_client) -> None:
        product_id = uuid4()
        store = MagicMock()
        store.delete_product = AsyncMock()
        with patch("launch_studio.api.admin_routes.ContentStore", return_value=store):
            response = admin_client.delete(f"/admin/products/{product_id}")

        assert response.status_code == 204
        store.delete_product.assert_awaited_once_with(product_id, owner_id=None)
