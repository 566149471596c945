"""CreditsLedgerService: write path of the credits system of record.

Each mutation runs against a session-bound repository, appends a CreditLog,
commits, and only then publishes a BalanceChanged push so subscribers never
see an uncommitted balance. A failed publish is logged and does not undo the
commit; clients converge on their next reload.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.datetime_utils import utc_now
from src.cr_common.enums import CreditLogReason
from src.cr_common.errors import AccountNotFoundError, InvalidAmountError
from src.cr_credits.application.schemas import BalanceResponse
from src.cr_credits.domain.events import BalanceChanged
from src.cr_credits.domain.models import CreditsBalance, create_credit_log
from src.cr_credits.domain.repository import CreditsRepositoryProtocol
from src.cr_credits.infrastructure.persistence import CreditsRepository

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[[AsyncSession], CreditsRepositoryProtocol]
Publisher = Callable[[BalanceChanged], Awaitable[None]]


class CreditsLedgerService:
    def __init__(
        self,
        repo_factory: RepositoryFactory | None = None,
        publisher: Publisher | None = None,
    ) -> None:
        self._repo_factory: RepositoryFactory = repo_factory or CreditsRepository
        self._publisher = publisher

    async def get_balance(self, db: AsyncSession, user_id: str) -> BalanceResponse:
        balance = await self._repo_factory(db).get_balance(user_id)
        if balance is None:
            raise AccountNotFoundError(user_id)
        return BalanceResponse.from_domain(balance)

    async def add_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: int,
        reason: CreditLogReason | None = None,
        **log_fields: Any,
    ) -> BalanceResponse:
        _check_amount(amount)
        repo = self._repo_factory(db)
        try:
            balance = await repo.add_credits(user_id, amount)
            log = create_credit_log(
                user_id, amount, reason or CreditLogReason.PURCHASE, **log_fields
            )
            await repo.log_transaction(log)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await self._publish(balance)
        return BalanceResponse.from_domain(balance)

    async def deduct_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: int,
        reason: CreditLogReason | None = None,
        **log_fields: Any,
    ) -> BalanceResponse:
        _check_amount(amount)
        repo = self._repo_factory(db)
        try:
            balance = await repo.deduct_credits(user_id, amount)
            log = create_credit_log(
                user_id, -amount, reason or CreditLogReason.USAGE, **log_fields
            )
            await repo.log_transaction(log)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await self._publish(balance)
        return BalanceResponse.from_domain(balance)

    async def set_balance(
        self,
        db: AsyncSession,
        user_id: str,
        credits: int,
        description: str | None = None,
    ) -> BalanceResponse:
        repo = self._repo_factory(db)
        try:
            previous = await repo.get_balance(user_id)
            balance = await repo.update_balance(user_id, credits)
            delta = credits - (previous.credits if previous else 0)
            await repo.log_transaction(
                create_credit_log(user_id, delta, CreditLogReason.ADMIN, description=description)
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await self._publish(balance)
        return BalanceResponse.from_domain(balance)

    async def delete_balance(self, db: AsyncSession, user_id: str) -> None:
        repo = self._repo_factory(db)
        try:
            deleted = await repo.delete_balance(user_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if not deleted:
            raise AccountNotFoundError(user_id)
        await self._emit(BalanceChanged(user_id=user_id, value=None, occurred_at=utc_now()))

    async def _publish(self, balance: CreditsBalance) -> None:
        await self._emit(
            BalanceChanged(
                user_id=balance.user_id,
                value=balance.credits,
                occurred_at=balance.last_updated,
            )
        )

    async def _emit(self, event: BalanceChanged) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher(event)
        except Exception:
            logger.warning(
                "Balance push failed after commit: user=%s value=%s",
                event.user_id,
                event.value,
                exc_info=True,
            )


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmountError(amount)
