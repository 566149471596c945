"""Ports consumed by the credits sync engine: dependency inversion for testability.

Unit tests inject mocks or fakes that conform to these Protocols.
The infrastructure layer provides the PostgreSQL and Redis implementations.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from src.cr_credits.domain.models import CreditLog, CreditsBalance


class CreditsRepositoryProtocol(Protocol):
    async def get_balance(self, user_id: str) -> CreditsBalance | None:
        """Return None when the user has no balance record. Raise only on I/O failure."""
        ...

    async def update_balance(self, user_id: str, new_balance: int) -> CreditsBalance: ...

    async def add_credits(self, user_id: str, amount: int) -> CreditsBalance: ...

    async def deduct_credits(self, user_id: str, amount: int) -> CreditsBalance:
        """Raise InsufficientBalanceError when the balance cannot cover amount."""
        ...

    async def delete_balance(self, user_id: str) -> bool: ...

    async def log_transaction(self, log: CreditLog) -> None: ...


@dataclass
class StorageResult:
    success: bool
    data: Any = None


class SnapshotCacheProtocol(Protocol):
    """Key-value storage. Every call is safe without a prior existence check."""

    async def get_item(self, key: str, default: Any = None) -> StorageResult: ...

    async def set_item(self, key: str, value: Any) -> bool: ...

    async def remove_item(self, key: str) -> bool: ...


OnBalanceUpdate = Callable[[int | None], None]
OnSubscriptionError = Callable[[Exception], None]
CancelSubscription = Callable[[], None]


class BalanceSubscriberProtocol(Protocol):
    def subscribe(
        self,
        user_id: str,
        on_update: OnBalanceUpdate,
        on_error: OnSubscriptionError,
    ) -> CancelSubscription:
        """Start pushing balance updates for user_id until the returned callable is invoked.

        on_update receives None when the user's record was deleted. Deliveries for
        one handle never overlap.
        """
        ...
