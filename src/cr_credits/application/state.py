"""BalanceState: the in-memory authoritative credits record.

Readers get properties and change notifications. Writes come from the
ReconciliationController; the only public write path is the optimistic
mutation trio (set_value / increase / decrease), which also hands the new
value to the persist hook so the snapshot cache follows local adjustments.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from src.cr_common.datetime_utils import utc_now
from src.cr_credits.application.schemas import CreditsView
from src.cr_credits.domain.models import BalanceRecord

logger = logging.getLogger(__name__)

Listener = Callable[[CreditsView], None]


class BalanceState:
    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        on_write: Callable[[int], None] | None = None,
    ) -> None:
        self._record = BalanceRecord()
        self._clock = clock
        self._on_write = on_write
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Read projection
    # ------------------------------------------------------------------

    @property
    def record(self) -> BalanceRecord:
        """Copy of the current record; mutating it has no effect."""
        return replace(self._record)

    @property
    def user_id(self) -> str | None:
        return self._record.user_id

    @property
    def value(self) -> int | None:
        return self._record.value

    @property
    def loading(self) -> bool:
        return self._record.loading

    @property
    def error(self) -> str | None:
        return self._record.error

    @property
    def freshness(self) -> datetime | None:
        return self._record.freshness

    @property
    def initialized(self) -> bool:
        return self._record.initialized

    @property
    def subscription(self) -> Any:
        return self._record.subscription

    def view(self) -> CreditsView:
        r = self._record
        return CreditsView(
            user_id=r.user_id,
            value=r.value,
            loading=r.loading,
            error=r.error,
            freshness=r.freshness,
            initialized=r.initialized,
            subscribed=r.subscription is not None,
        )

    def listen(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unlisten() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unlisten

    # ------------------------------------------------------------------
    # Optimistic local mutation
    # ------------------------------------------------------------------

    def set_value(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"Credits balance cannot be negative, got {value}")
        self.accept(value)
        self._persist(value)

    def increase(self, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Amount must be non-negative, got {amount}")
        current = self._record.value
        if current is None:
            return
        self.accept(current + amount)
        self._persist(current + amount)

    def decrease(self, amount: int) -> None:
        """Deduct amount, clamping at zero. Over-deduction is not an error."""
        if amount < 0:
            raise ValueError(f"Amount must be non-negative, got {amount}")
        current = self._record.value
        if current is None:
            return
        new_value = max(0, current - amount)
        self.accept(new_value)
        self._persist(new_value)

    # ------------------------------------------------------------------
    # Controller-side writes
    # ------------------------------------------------------------------

    def accept(self, value: int, freshness: datetime | None = None, **changes: Any) -> None:
        """Record an accepted balance write: new value, fresh stamp, error cleared."""
        self._record.value = value
        self._record.freshness = freshness or self._clock()
        self._record.error = None
        self.update(**changes)

    def update(self, **changes: Any) -> None:
        for name, val in changes.items():
            if not hasattr(self._record, name):
                raise AttributeError(f"BalanceRecord has no field {name!r}")
            setattr(self._record, name, val)
        self._notify()

    def clear(self, value: int | None = 0) -> None:
        self._record = BalanceRecord(value=value)
        self._notify()

    def _persist(self, value: int) -> None:
        if self._on_write is not None:
            self._on_write(value)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.view()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Credits state listener failed")
