"""Domain models for cr_credits: pure dataclasses, no SQLAlchemy dependency."""

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.cr_common.datetime_utils import epoch_ms, utc_now
from src.cr_common.enums import CreditLogReason


@dataclass
class CreditsBalance:
    """A user's balance as held by the remote system of record."""

    user_id: str
    credits: int
    last_updated: datetime


def create_default_credits_balance(user_id: str) -> CreditsBalance:
    return CreditsBalance(user_id=user_id, credits=0, last_updated=utc_now())


@dataclass
class CreditLog:
    id: str
    user_id: str
    amount: int                      # positive=addition negative=deduction
    reason: CreditLogReason
    timestamp: datetime
    description: str | None = None
    metadata: dict[str, Any] | None = None
    reference_id: str | None = None  # e.g. order or payment id


def create_credit_log(
    user_id: str,
    amount: int,
    reason: CreditLogReason,
    *,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
    reference_id: str | None = None,
) -> CreditLog:
    now = utc_now()
    return CreditLog(
        id=f"{user_id}_{epoch_ms(now)}_{secrets.token_hex(3)}",
        user_id=user_id,
        amount=amount,
        reason=reason,
        timestamp=now,
        description=description,
        metadata=metadata,
        reference_id=reference_id,
    )


@dataclass
class CachedSnapshot:
    """Persisted per-device copy of the last accepted balance.

    Carries user_id so a snapshot left behind by another account is never adopted.
    """

    user_id: str
    value: int
    captured_at: datetime


@dataclass
class BalanceRecord:
    """In-memory authoritative balance, owned by ReconciliationController."""

    user_id: str | None = None
    value: int | None = None
    freshness: datetime | None = None
    loading: bool = False
    error: str | None = None
    initialized: bool = False
    # Opaque ownership token of the live subscription, if any
    subscription: Any = field(default=None, repr=False)
