"""
Credit Ledger - Atomic balance mutations with write verification.

NO DICTIONARIES - All operations return strongly typed domain models.

Every mutation locks the user row (SELECT ... FOR UPDATE), so charges and
grants for the same user are linearizable. The CHECK constraint on
users.credits stays as the last line against a negative balance.
"""

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.db.models import CreditTransaction, User, utc_now
from launch_studio.exceptions import (
    DataIntegrityError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    UserNotFoundError,
    WriteVerificationError,
)
from launch_studio.models.api import TransactionKind
from launch_studio.models.domain import LedgerEntry

logger = get_logger(__name__)


class CreditLedger:
    """
    Credit ledger with write verification.

    All write operations follow the pattern:
    1. Lock the user row
    2. Write the ledger entry and the new balance
    3. Flush, read back and verify
    4. Commit
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize credit ledger with database session."""
        self.session = session

    async def get_balance(self, user_id: UUID) -> int:
        """
        Get current balance.

        Raises:
            UserNotFoundError: User doesn't exist
        """
        stmt = select(User.credits).where(User.id == user_id)
        result = await self.session.execute(stmt)
        balance = result.scalar_one_or_none()
        if balance is None:
            raise UserNotFoundError(user_id)
        return int(balance)

    async def charge(
        self,
        user_id: UUID,
        amount: int,
        *,
        description: str,
        product_id: UUID | None = None,
        stage: str | None = None,
    ) -> LedgerEntry:
        """
        Decrement balance by amount, only if balance >= amount.

        Raises:
            UserNotFoundError: User doesn't exist
            InsufficientCreditsError: Balance below amount, nothing mutated
        """
        if amount <= 0:
            raise ValueError(f"Charge amount must be positive: {amount}")

        user = await self._lock_user_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        if user.credits < amount:
            await self.session.rollback()
            logger.info(
                "credit_charge_rejected",
                user_id=str(user_id),
                balance=user.credits,
                required=amount,
                stage=stage,
            )
            raise InsufficientCreditsError(user.credits, amount)

        entry = await self._apply(
            user,
            delta=-amount,
            kind=TransactionKind.CHARGE,
            description=description,
            product_id=product_id,
            stage=stage,
        )

        logger.info(
            "credits_charged",
            user_id=str(user_id),
            amount=amount,
            balance_after=entry.balance_after,
            product_id=str(product_id) if product_id else None,
            stage=stage,
        )
        return entry

    async def grant(
        self,
        user_id: UUID,
        amount: int,
        *,
        description: str,
        idempotency_key: str | None = None,
    ) -> LedgerEntry:
        """
        Increment balance by amount.

        With an idempotency key the grant is applied at most once.

        Raises:
            UserNotFoundError: User doesn't exist
            IdempotencyConflictError: Key already applied
        """
        if amount <= 0:
            raise ValueError(f"Grant amount must be positive: {amount}")

        if idempotency_key:
            existing = await self._find_by_idempotency(user_id, idempotency_key)
            if existing is not None:
                raise IdempotencyConflictError(idempotency_key, existing.id)

        user = await self._lock_user_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        try:
            entry = await self._apply(
                user,
                delta=amount,
                kind=TransactionKind.GRANT,
                description=description,
                idempotency_key=idempotency_key,
            )
        except IntegrityError as exc:
            # Concurrent delivery of the same key won the race
            await self.session.rollback()
            if idempotency_key:
                existing = await self._find_by_idempotency(user_id, idempotency_key)
                if existing is not None:
                    raise IdempotencyConflictError(idempotency_key, existing.id) from exc
            raise WriteVerificationError(f"Grant failed: {exc}") from exc

        logger.info(
            "credits_granted",
            user_id=str(user_id),
            amount=amount,
            balance_after=entry.balance_after,
            idempotency_key=idempotency_key,
        )
        return entry

    async def adjust_to(self, user_id: UUID, credits: int, *, description: str) -> LedgerEntry:
        """
        Set an absolute balance (admin adjustment), recording the signed delta.

        Raises:
            UserNotFoundError: User doesn't exist
        """
        if credits < 0:
            raise ValueError(f"Balance cannot be negative: {credits}")

        user = await self._lock_user_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        entry = await self._apply(
            user,
            delta=credits - user.credits,
            kind=TransactionKind.ADJUSTMENT,
            description=description,
        )

        logger.info(
            "credits_adjusted",
            user_id=str(user_id),
            delta=entry.amount,
            balance_after=entry.balance_after,
        )
        return entry

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _apply(
        self,
        user: User,
        *,
        delta: int,
        kind: TransactionKind,
        description: str,
        product_id: UUID | None = None,
        stage: str | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEntry:
        """Write ledger row and new balance on a locked user, verify, commit."""
        balance_after = user.credits + delta
        if balance_after < 0:
            raise DataIntegrityError(f"Balance would become negative: {balance_after}")

        transaction = CreditTransaction(
            id=uuid4(),
            user_id=user.id,
            amount=delta,
            kind=kind.value,
            balance_after=balance_after,
            description=description,
            product_id=product_id,
            stage=stage,
            idempotency_key=idempotency_key,
            created_at=utc_now(),
        )
        self.session.add(transaction)
        user.credits = balance_after
        await self.session.flush()

        verified_user = await self.session.get(User, user.id)
        if verified_user is None:
            raise WriteVerificationError(f"User {user.id} disappeared after update")
        if verified_user.credits != balance_after:
            raise DataIntegrityError(
                f"Balance mismatch: expected {balance_after}, got {verified_user.credits}"
            )

        await self.session.commit()

        return LedgerEntry(
            transaction_id=transaction.id,
            user_id=user.id,
            amount=delta,
            kind=kind,
            balance_after=balance_after,
            description=description,
            created_at=transaction.created_at,
            product_id=product_id,
            stage=stage,
        )

    async def _lock_user_for_update(self, user_id: UUID) -> User | None:
        """Lock user row for update (SELECT FOR UPDATE)."""
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_by_idempotency(
        self, user_id: UUID, idempotency_key: str
    ) -> CreditTransaction | None:
        """Find ledger entry by idempotency key."""
        stmt = select(CreditTransaction).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.idempotency_key == idempotency_key,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
