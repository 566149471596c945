"""CreditsRepository: PostgreSQL implementation of CreditsRepositoryProtocol.

Balance mutations are single atomic statements (UPSERT / UPDATE ... RETURNING).
A deduct that returns 0 rows means the balance could not cover the amount.

Transaction ownership: the repository is bound to one AsyncSession and never
commits. The CALLER (CreditsLedgerService) commits or rolls back.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.errors import InsufficientBalanceError, InternalError
from src.cr_credits.domain.models import CreditLog, CreditsBalance
from src.cr_credits.infrastructure.db_models import CreditLogORM

_GET_BALANCE_SQL = text("""
    SELECT user_id, credits, last_updated
    FROM credits_balances
    WHERE user_id = :user_id
""")

_SET_BALANCE_SQL = text("""
    INSERT INTO credits_balances (user_id, credits)
    VALUES (:user_id, :credits)
    ON CONFLICT (user_id) DO UPDATE
        SET credits = EXCLUDED.credits,
            last_updated = NOW()
    RETURNING user_id, credits, last_updated
""")

_ADD_CREDITS_SQL = text("""
    INSERT INTO credits_balances (user_id, credits)
    VALUES (:user_id, :amount)
    ON CONFLICT (user_id) DO UPDATE
        SET credits = credits_balances.credits + EXCLUDED.credits,
            last_updated = NOW()
    RETURNING user_id, credits, last_updated
""")

_DEDUCT_CREDITS_SQL = text("""
    UPDATE credits_balances
    SET credits = credits - :amount,
        last_updated = NOW()
    WHERE user_id = :user_id AND credits >= :amount
    RETURNING user_id, credits, last_updated
""")

_DELETE_BALANCE_SQL = text("""
    DELETE FROM credits_balances WHERE user_id = :user_id
    RETURNING user_id
""")


def _row_to_balance(row: object) -> CreditsBalance:
    return CreditsBalance(
        user_id=row.user_id,  # type: ignore[attr-defined]
        credits=row.credits,  # type: ignore[attr-defined]
        last_updated=row.last_updated,  # type: ignore[attr-defined]
    )


class CreditsRepository:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_balance(self, user_id: str) -> CreditsBalance | None:
        result = await self._db.execute(_GET_BALANCE_SQL, {"user_id": user_id})
        row = result.fetchone()
        return _row_to_balance(row) if row else None

    async def update_balance(self, user_id: str, new_balance: int) -> CreditsBalance:
        result = await self._db.execute(
            _SET_BALANCE_SQL, {"user_id": user_id, "credits": new_balance}
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Balance upsert returned no rows: this should never happen")
        return _row_to_balance(row)

    async def add_credits(self, user_id: str, amount: int) -> CreditsBalance:
        result = await self._db.execute(
            _ADD_CREDITS_SQL, {"user_id": user_id, "amount": amount}
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Balance upsert returned no rows: this should never happen")
        return _row_to_balance(row)

    async def deduct_credits(self, user_id: str, amount: int) -> CreditsBalance:
        result = await self._db.execute(
            _DEDUCT_CREDITS_SQL, {"user_id": user_id, "amount": amount}
        )
        row = result.fetchone()
        if row is None:
            current = await self.get_balance(user_id)
            raise InsufficientBalanceError(
                required=amount, available=current.credits if current else 0
            )
        return _row_to_balance(row)

    async def delete_balance(self, user_id: str) -> bool:
        result = await self._db.execute(_DELETE_BALANCE_SQL, {"user_id": user_id})
        return result.fetchone() is not None

    async def log_transaction(self, log: CreditLog) -> None:
        # Flushed with the balance write on commit
        self._db.add(
            CreditLogORM(
                id=log.id,
                user_id=log.user_id,
                amount=log.amount,
                reason=log.reason.value,
                description=log.description,
                metadata_=log.metadata,
                reference_id=log.reference_id,
                created_at=log.timestamp,
            )
        )
