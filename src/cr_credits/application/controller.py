"""ReconciliationController: decides which credits value is authoritative.

Three tiers feed one BalanceState:
  1. the device snapshot (SnapshotStore), adopted only at cold start and only
     when it belongs to the user and is younger than the expiry window,
  2. an on-demand fetch from the system of record (CreditsRepositoryProtocol),
  3. a live push subscription (BalanceSubscriberProtocol), one per controller.

Writes are applied in completion order. A slow fetch that resolves after a
local mutation or a push overwrites it; nothing compares timestamps. Results
from a retired session (after reset() or a user switch) are dropped.

All mutation is expected from one event loop. Hosts that share a controller
across threads must serialize access themselves.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime, timedelta
from typing import Any

import redis.asyncio as aioredis

from config.settings import settings
from src.cr_common.datetime_utils import utc_now
from src.cr_common.enums import SyncPhase
from src.cr_common.errors import AppError, RemoteFetchFailedError, SubscriptionFailedError
from src.cr_credits.application.state import BalanceState
from src.cr_credits.domain.cache import is_snapshot_valid
from src.cr_credits.domain.models import CachedSnapshot
from src.cr_credits.domain.repository import (
    BalanceSubscriberProtocol,
    CancelSubscription,
    CreditsRepositoryProtocol,
)
from src.cr_credits.infrastructure.redis_storage import RedisCacheStorage
from src.cr_credits.infrastructure.snapshot_store import SnapshotStore
from src.cr_credits.infrastructure.subscription import RedisBalanceSubscriber

logger = logging.getLogger(__name__)


class SubscriptionHandle:
    """Ownership token for one live subscription."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.active = True
        self._cancel: CancelSubscription | None = None

    def bind(self, cancel: CancelSubscription) -> None:
        self._cancel = cancel

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._cancel is not None:
            self._cancel()


class ReconciliationController:
    def __init__(
        self,
        snapshot_store: SnapshotStore,
        subscriber: BalanceSubscriberProtocol,
        *,
        cache_key: str | None = None,
        cache_expiry: timedelta | None = None,
        adopt_snapshot: bool | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = snapshot_store
        self._subscriber = subscriber
        self._cache_key = cache_key or settings.CREDITS_CACHE_KEY
        self._cache_expiry = cache_expiry or timedelta(hours=settings.CREDITS_CACHE_EXPIRY_HOURS)
        self._adopt_enabled = (
            settings.CREDITS_SNAPSHOT_ADOPTION if adopt_snapshot is None else adopt_snapshot
        )
        self._clock = clock
        self.state = BalanceState(clock=clock, on_write=self._persist_in_background)
        self._phase = SyncPhase.UNINITIALIZED
        self._repository: CreditsRepositoryProtocol | None = None
        self._init_lock = asyncio.Lock()
        # Bumped whenever the record is handed to a new session
        self._session = 0
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_redis(cls, redis: aioredis.Redis, **kwargs: object) -> "ReconciliationController":
        """Controller wired to Redis for both the snapshot cache and the push channel."""
        return cls(
            SnapshotStore(RedisCacheStorage(redis)),
            RedisBalanceSubscriber(redis),
            **kwargs,  # type: ignore[arg-type]
        )

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    # ------------------------------------------------------------------
    # Caller-facing read projection
    # ------------------------------------------------------------------

    @property
    def value(self) -> int | None:
        return self.state.value

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def error(self) -> str | None:
        return self.state.error

    def check_sufficient_balance(self, required: int) -> bool:
        value = self.state.value
        return value is not None and value >= required

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, user_id: str, repository: CreditsRepositoryProtocol) -> None:
        """Cold start: snapshot first, then the system of record, then go live.

        Idempotent for a user that is already READY. A failed fetch leaves the
        session uninitialized so a later call retries.
        """
        async with self._init_lock:
            if self._phase is SyncPhase.READY and self.state.user_id == user_id:
                return
            if self.state.user_id != user_id:
                self._switch_user(user_id)
            session = self._session
            self._phase = SyncPhase.INITIALIZING
            self._repository = repository

            await self._adopt_snapshot(user_id)
            loaded = await self.load_credits(user_id, repository, use_cache=False)
            if session != self._session:
                logger.debug("Initialize for %s superseded by reset", user_id)
                return
            if not loaded:
                self._phase = SyncPhase.UNINITIALIZED
                return

            self.start_subscription(user_id)
            self.state.update(initialized=True)
            self._phase = SyncPhase.READY
            logger.info("Credits ready: user=%s value=%s", user_id, self.state.value)

    async def load_credits(
        self,
        user_id: str,
        repository: CreditsRepositoryProtocol,
        use_cache: bool = False,
    ) -> bool:
        """Load the balance, optionally short-circuiting on a valid snapshot.

        Returns True when a value was adopted. Failures never raise: they are
        reported through `error` and the last known value is kept.
        """
        if not user_id:
            self.state.update(value=0, loading=False, error=None)
            return False
        if self.state.user_id != user_id:
            self._switch_user(user_id)
        session = self._session

        if use_cache and await self._adopt_snapshot(user_id):
            return True

        self.state.update(loading=True)
        try:
            balance = await repository.get_balance(user_id)
        except Exception as exc:
            if session != self._session:
                return False
            err = RemoteFetchFailedError(user_id, str(exc) or type(exc).__name__)
            logger.warning("%s", err.message)
            self.state.update(loading=False, error=err.message)
            return False

        if session != self._session:
            logger.debug("Dropping credits fetch from retired session: user=%s", user_id)
            return False

        value = balance.credits if balance is not None else 0
        self.state.accept(value, loading=False)
        await self._write_snapshot(user_id, value, session)
        return True

    async def force_reload(self) -> bool:
        """Reload from the system of record, bypassing the snapshot."""
        user_id = self.state.user_id
        if user_id is None or self._repository is None:
            return False
        return await self.load_credits(user_id, self._repository, use_cache=False)

    def start_subscription(self, user_id: str) -> None:
        """Go live for user_id, retiring any previous subscription first."""
        self.stop_subscription()
        handle = SubscriptionHandle(user_id)

        def on_update(value: int | None) -> None:
            if handle.active and self.state.subscription is handle:
                self._apply_push(user_id, value)

        def on_error(exc: Exception) -> None:
            if not (handle.active and self.state.subscription is handle):
                return
            message = exc.message if isinstance(exc, AppError) else str(exc)
            logger.warning("Balance subscription error: user=%s err=%s", user_id, message)
            self.state.update(error=message)

        try:
            handle.bind(self._subscriber.subscribe(user_id, on_update, on_error))
        except Exception as exc:
            err = SubscriptionFailedError(user_id, str(exc))
            logger.warning("%s", err.message)
            self.state.update(error=err.message)
            return
        self.state.update(subscription=handle)

    def stop_subscription(self) -> None:
        handle = self.state.subscription
        if handle is None:
            return
        handle.cancel()
        self.state.update(subscription=None)
        logger.debug("Balance subscription stopped: user=%s", handle.user_id)

    async def reset(self) -> None:
        """Logout: go offline, forget the user, and drop the device snapshot."""
        self._session += 1
        self.stop_subscription()
        for task in list(self._background):
            task.cancel()
        self._background.clear()
        self._repository = None
        self.state.clear(value=0)
        self._phase = SyncPhase.RESET
        await self._store.remove(self._cache_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _switch_user(self, user_id: str) -> None:
        self._session += 1
        self.stop_subscription()
        self.state.clear(value=None)
        self.state.update(user_id=user_id)
        self._phase = SyncPhase.UNINITIALIZED

    async def _adopt_snapshot(self, user_id: str) -> bool:
        if not self._adopt_enabled:
            return False
        session = self._session
        snapshot = await self._store.read(self._cache_key)
        if session != self._session or snapshot is None:
            return False
        if not is_snapshot_valid(snapshot, user_id, self._clock(), self._cache_expiry):
            return False
        self.state.accept(snapshot.value, freshness=snapshot.captured_at, loading=False)
        logger.debug("Adopted credits snapshot: user=%s value=%d", user_id, snapshot.value)
        return True

    def _apply_push(self, user_id: str, value: int | None) -> None:
        if value is None:
            self.state.accept(0)
            self._spawn(self._remove_snapshot(self._session))
            return
        self.state.accept(value)
        self._spawn(self._write_snapshot(user_id, value, self._session))

    def _persist_in_background(self, value: int) -> None:
        user_id = self.state.user_id
        if user_id is None:
            return
        self._spawn(self._write_snapshot(user_id, value, self._session))

    async def _write_snapshot(self, user_id: str, value: int, session: int) -> None:
        if session != self._session:
            return
        snapshot = CachedSnapshot(user_id=user_id, value=value, captured_at=self._clock())
        await self._store.write(self._cache_key, snapshot)

    async def _remove_snapshot(self, session: int) -> None:
        if session != self._session:
            return
        await self._store.remove(self._cache_key)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping snapshot update")
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: "asyncio.Task[None]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background snapshot update failed: %s", exc)
