"""Pydantic schemas for cr_credits: caller read projection and REST API bodies."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.cr_common.enums import CreditLogReason
from src.cr_credits.domain.models import CreditsBalance

# ---------------------------------------------------------------------------
# Read projection
# ---------------------------------------------------------------------------


class CreditsView(BaseModel):
    """Immutable snapshot of BalanceState handed to observers."""

    user_id: str | None
    value: int | None
    loading: bool
    error: str | None
    freshness: datetime | None
    initialized: bool
    subscribed: bool


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class AdjustCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Credits to add or deduct")
    reason: CreditLogReason | None = None
    description: str | None = Field(None, max_length=500)
    reference_id: str | None = Field(None, max_length=64)
    metadata: dict[str, Any] | None = None


class SetBalanceRequest(BaseModel):
    credits: int = Field(..., ge=0, description="New absolute balance")
    description: str | None = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    user_id: str
    credits: int
    last_updated: str

    @classmethod
    def from_domain(cls, balance: CreditsBalance) -> "BalanceResponse":
        return cls(
            user_id=balance.user_id,
            credits=balance.credits,
            last_updated=balance.last_updated.isoformat(),
        )
