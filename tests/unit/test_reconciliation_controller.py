"""Unit tests for ReconciliationController against in-memory ports."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

from src.cr_common.enums import SyncPhase
from src.cr_common.errors import SubscriptionFailedError
from src.cr_credits.application.controller import ReconciliationController
from src.cr_credits.infrastructure.snapshot_store import SnapshotStore
from tests.unit.credits_fakes import (
    CACHE_KEY,
    NOW,
    FakeCache,
    FakeSubscriber,
    drain,
    gated_repo,
    make_repo,
    snapshot_payload,
)


class TestInitialize:
    async def test_snapshot_then_remote(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = snapshot_payload("u1", 100, timedelta(hours=1))
        repo, gate = gated_repo(120)
        seen: list[int | None] = []
        controller.state.listen(lambda view: seen.append(view.value))

        task = asyncio.create_task(controller.initialize("u1", repo))
        await drain()

        # Snapshot is on screen while the fetch is still outstanding
        assert controller.value == 100
        assert controller.loading is True

        gate.set()
        await task

        assert controller.value == 120
        assert controller.loading is False
        assert controller.error is None
        assert seen.index(100) < seen.index(120)

    async def test_no_snapshot_and_no_remote_record_settles_to_zero(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        repo = make_repo(credits=None)

        await controller.initialize("u1", repo)

        assert controller.value == 0
        assert controller.error is None
        assert controller.phase is SyncPhase.READY
        assert fake_cache.items[CACHE_KEY]["value"] == 0

    async def test_second_call_is_a_noop(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        repo = make_repo(50)

        await controller.initialize("u1", repo)
        await controller.initialize("u1", repo)

        assert repo.get_balance.await_count == 1
        assert len(fake_subscriber.subscriptions) == 1

    async def test_concurrent_calls_fetch_once(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        repo = make_repo(50)

        await asyncio.gather(
            controller.initialize("u1", repo),
            controller.initialize("u1", repo),
        )

        assert repo.get_balance.await_count == 1
        assert len(fake_subscriber.live) == 1

    async def test_stale_snapshot_is_ignored(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = snapshot_payload("u1", 100, timedelta(hours=25))
        repo, gate = gated_repo(120)

        task = asyncio.create_task(controller.initialize("u1", repo))
        await drain()
        assert controller.value is None

        gate.set()
        await task
        assert controller.value == 120

    async def test_other_users_snapshot_is_ignored(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = snapshot_payload("u2", 100, timedelta(minutes=5))
        repo, gate = gated_repo(7)

        task = asyncio.create_task(controller.initialize("u1", repo))
        await drain()
        assert controller.value is None

        gate.set()
        await task
        assert controller.value == 7
        assert fake_cache.items[CACHE_KEY]["user_id"] == "u1"

    async def test_snapshot_without_timezone_falls_through_to_remote(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = {
            "user_id": "u1",
            "value": 5,
            "captured_at": "2026-10-18T11:00:00",
        }
        repo = make_repo(120)

        await controller.initialize("u1", repo)

        assert controller.value == 120
        assert controller.error is None
        assert controller.phase is SyncPhase.READY
        assert repo.get_balance.await_count == 1
        # The unusable snapshot is replaced by an aware one
        assert fake_cache.items[CACHE_KEY]["value"] == 120
        assert fake_cache.items[CACHE_KEY]["captured_at"].endswith("Z")

    async def test_future_dated_snapshot_is_ignored(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = snapshot_payload("u1", 100, -timedelta(days=3))
        repo, gate = gated_repo(9)

        task = asyncio.create_task(controller.initialize("u1", repo))
        await drain()
        assert controller.value is None

        gate.set()
        await task
        assert controller.value == 9

    async def test_fetch_failure_leaves_session_retryable(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        repo = make_repo(50)
        repo.get_balance.side_effect = ConnectionError("network down")

        await controller.initialize("u1", repo)

        assert controller.phase is SyncPhase.UNINITIALIZED
        assert controller.state.initialized is False
        assert controller.loading is False
        assert controller.error is not None and "network down" in controller.error
        assert fake_subscriber.subscriptions == []

        repo.get_balance.side_effect = None
        await controller.initialize("u1", repo)

        assert controller.phase is SyncPhase.READY
        assert controller.value == 50
        assert controller.error is None
        assert len(fake_subscriber.live) == 1

    async def test_unavailable_cache_is_not_fatal(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.fail = True

        await controller.initialize("u1", make_repo(30))

        assert controller.value == 30
        assert controller.error is None
        assert controller.phase is SyncPhase.READY

    async def test_subscriber_failure_surfaces_as_error(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        fake_subscriber.subscribe = MagicMock(side_effect=RuntimeError("no channel"))  # type: ignore[method-assign]

        await controller.initialize("u1", make_repo(30))

        assert controller.value == 30
        assert controller.state.subscription is None
        assert controller.error is not None and "no channel" in controller.error

    async def test_switching_user_retires_previous_session(
        self,
        controller: ReconciliationController,
        fake_subscriber: FakeSubscriber,
    ) -> None:
        await controller.initialize("u1", make_repo(50, "u1"))
        await controller.initialize("u2", make_repo(80, "u2"))

        assert controller.value == 80
        assert controller.state.user_id == "u2"
        assert fake_subscriber.subscriptions[0].cancelled is True
        assert [s.user_id for s in fake_subscriber.live] == ["u2"]


class TestLoadCredits:
    async def test_failed_reload_keeps_last_value(
        self, controller: ReconciliationController
    ) -> None:
        repo = make_repo(42)
        await controller.initialize("u1", repo)
        repo.get_balance.side_effect = TimeoutError("upstream timeout")

        ok = await controller.force_reload()

        assert ok is False
        assert controller.value == 42
        assert controller.loading is False
        assert controller.error is not None and "upstream timeout" in controller.error

    async def test_use_cache_skips_remote(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = snapshot_payload("u1", 100, timedelta(hours=2))
        repo = make_repo(999)

        ok = await controller.load_credits("u1", repo, use_cache=True)

        assert ok is True
        assert controller.value == 100
        repo.get_balance.assert_not_awaited()

    async def test_use_cache_falls_through_when_expired(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        fake_cache.items[CACHE_KEY] = snapshot_payload("u1", 100, timedelta(days=2))
        repo = make_repo(5)

        await controller.load_credits("u1", repo, use_cache=True)

        assert controller.value == 5
        repo.get_balance.assert_awaited_once_with("u1")

    async def test_empty_user_settles_to_zero(self, controller: ReconciliationController) -> None:
        repo = make_repo(5)

        await controller.load_credits("", repo)

        assert controller.value == 0
        repo.get_balance.assert_not_awaited()

    async def test_successful_load_refreshes_snapshot(
        self, controller: ReconciliationController, fake_cache: FakeCache
    ) -> None:
        await controller.load_credits("u1", make_repo(64))

        stored = fake_cache.items[CACHE_KEY]
        assert stored["user_id"] == "u1"
        assert stored["value"] == 64

    async def test_force_reload_without_session_is_noop(
        self, controller: ReconciliationController
    ) -> None:
        assert await controller.force_reload() is False
        assert controller.value is None

    async def test_slow_fetch_overwrites_later_local_write(
        self, controller: ReconciliationController
    ) -> None:
        await controller.initialize("u1", make_repo(50))
        slow, gate = gated_repo(200)

        task = asyncio.create_task(controller.load_credits("u1", slow))
        await drain()
        controller.state.set_value(10)
        assert controller.value == 10

        gate.set()
        await task

        # Last completed write wins, not the newest timestamp
        assert controller.value == 200


class TestSubscription:
    async def test_repeated_start_keeps_one_live(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        for _ in range(4):
            controller.start_subscription("u1")

        assert len(fake_subscriber.subscriptions) == 4
        assert fake_subscriber.live == [fake_subscriber.subscriptions[-1]]

        fake_subscriber.subscriptions[0].deliver(5)
        assert controller.value is None

    async def test_push_after_local_increase_wins(
        self,
        controller: ReconciliationController,
        fake_subscriber: FakeSubscriber,
        fake_cache: FakeCache,
    ) -> None:
        await controller.initialize("u1", make_repo(50))

        controller.state.increase(10)
        assert controller.value == 60

        fake_subscriber.push(75)
        await drain()

        assert controller.value == 75
        assert fake_cache.items[CACHE_KEY]["value"] == 75

    async def test_deleted_record_push_zeroes_and_clears_cache(
        self,
        controller: ReconciliationController,
        fake_subscriber: FakeSubscriber,
        fake_cache: FakeCache,
    ) -> None:
        await controller.initialize("u1", make_repo(50))
        assert CACHE_KEY in fake_cache.items

        fake_subscriber.push(None)
        await drain()

        assert controller.value == 0
        assert CACHE_KEY not in fake_cache.items

    async def test_error_is_surfaced_and_subscription_stays_open(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        await controller.initialize("u1", make_repo(50))
        sub = fake_subscriber.live[0]

        sub.on_error(SubscriptionFailedError("u1", "socket closed"))

        assert controller.error is not None and "socket closed" in controller.error
        assert sub.cancelled is False

        sub.deliver(70)
        assert controller.value == 70
        assert controller.error is None

    async def test_plain_exception_message_is_used(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        controller.start_subscription("u1")

        fake_subscriber.live[0].on_error(RuntimeError("boom"))

        assert controller.error == "boom"

    async def test_stop_drops_in_flight_update(
        self, controller: ReconciliationController, fake_subscriber: FakeSubscriber
    ) -> None:
        await controller.initialize("u1", make_repo(50))
        sub = fake_subscriber.live[0]

        controller.stop_subscription()
        controller.stop_subscription()
        sub.deliver(99)

        assert sub.cancelled is True
        assert controller.state.subscription is None
        assert controller.value == 50


class TestReset:
    async def test_reset_clears_everything(
        self,
        controller: ReconciliationController,
        fake_subscriber: FakeSubscriber,
        fake_cache: FakeCache,
    ) -> None:
        await controller.initialize("u1", make_repo(50))
        fake_subscriber.live[0].on_error(RuntimeError("flaky"))

        await controller.reset()

        assert controller.value == 0
        assert controller.error is None
        assert controller.loading is False
        assert controller.state.initialized is False
        assert controller.state.user_id is None
        assert controller.state.subscription is None
        assert controller.phase is SyncPhase.RESET
        assert fake_subscriber.live == []
        assert CACHE_KEY not in fake_cache.items

    async def test_reset_is_idempotent(self, controller: ReconciliationController) -> None:
        await controller.reset()
        await controller.reset()

        assert controller.value == 0
        assert controller.phase is SyncPhase.RESET

    async def test_reset_during_initialize_drops_result(
        self,
        controller: ReconciliationController,
        fake_subscriber: FakeSubscriber,
        fake_cache: FakeCache,
    ) -> None:
        repo, gate = gated_repo(120)
        task = asyncio.create_task(controller.initialize("u1", repo))
        await drain()

        await controller.reset()
        gate.set()
        await task

        assert controller.value == 0
        assert controller.state.user_id is None
        assert controller.phase is SyncPhase.RESET
        assert fake_subscriber.subscriptions == []
        assert CACHE_KEY not in fake_cache.items

    async def test_initialize_after_reset(self, controller: ReconciliationController) -> None:
        repo = make_repo(50)
        await controller.initialize("u1", repo)
        await controller.reset()

        await controller.initialize("u1", repo)

        assert repo.get_balance.await_count == 2
        assert controller.phase is SyncPhase.READY
        assert controller.value == 50


class TestCheckSufficientBalance:
    def test_unset_value_is_insufficient(self, controller: ReconciliationController) -> None:
        assert controller.check_sufficient_balance(0) is False

    async def test_compares_against_current_value(
        self, controller: ReconciliationController
    ) -> None:
        await controller.initialize("u1", make_repo(50))

        assert controller.check_sufficient_balance(50) is True
        assert controller.check_sufficient_balance(51) is False


class TestSnapshotAdoptionDisabled:
    async def test_valid_snapshot_is_not_adopted(
        self, fake_cache: FakeCache, fake_subscriber: FakeSubscriber
    ) -> None:
        controller = ReconciliationController(
            SnapshotStore(fake_cache),
            fake_subscriber,
            cache_key=CACHE_KEY,
            adopt_snapshot=False,
            clock=lambda: NOW,
        )
        fake_cache.items[CACHE_KEY] = snapshot_payload("u1", 100, timedelta(minutes=1))
        repo, gate = gated_repo(120)

        task = asyncio.create_task(controller.initialize("u1", repo))
        await drain()
        assert controller.value is None

        gate.set()
        await task
        assert controller.value == 120
        # Snapshots are still written for the next cold start
        assert fake_cache.items[CACHE_KEY]["value"] == 120
