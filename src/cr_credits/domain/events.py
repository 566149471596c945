"""Domain events for cr_credits.

BalanceChanged is emitted by the system of record after every committed
balance write and fanned out to subscribers over the push channel.
value=None means the user's balance record no longer exists.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class BalanceChanged:
    user_id: str
    value: int | None
    occurred_at: datetime
