"""Balance push channel over Redis Pub/Sub.

Publisher side: the system of record publishes a BalancePushMessage to
f"{CREDITS_CHANNEL_PREFIX}:{user_id}" after every committed write.

Subscriber side: one listener task per subscription handle. Messages are
delivered one at a time, so callbacks for a handle never overlap. Listener
failures are reported through on_error and the listener resubscribes after
CREDITS_SUBSCRIBE_RETRY_SECONDS; only cancelling the handle stops it.
"""

import asyncio
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel, Field, ValidationError
from redis.asyncio.client import PubSub

from config.settings import settings
from src.cr_common.errors import SubscriptionFailedError
from src.cr_common.redis_client import get_redis
from src.cr_credits.domain.events import BalanceChanged
from src.cr_credits.domain.repository import (
    CancelSubscription,
    OnBalanceUpdate,
    OnSubscriptionError,
)

logger = logging.getLogger(__name__)


class BalancePushMessage(BaseModel):
    user_id: str
    value: int | None = Field(None, ge=0)   # None = balance record deleted
    occurred_at: datetime

    @classmethod
    def from_event(cls, event: BalanceChanged) -> "BalancePushMessage":
        return cls(user_id=event.user_id, value=event.value, occurred_at=event.occurred_at)


def channel_for(user_id: str, prefix: str | None = None) -> str:
    return f"{prefix or settings.CREDITS_CHANNEL_PREFIX}:{user_id}"


async def publish_balance(redis: aioredis.Redis, event: BalanceChanged) -> int:
    """Publish a balance change. Returns the number of receiving subscribers."""
    message = BalancePushMessage.from_event(event).model_dump_json()
    return await redis.publish(channel_for(event.user_id), message)


async def publish_balance_event(event: BalanceChanged) -> None:
    """Publisher bound to the shared Redis pool, used by the ledger API."""
    redis = await get_redis()
    receivers = await publish_balance(redis, event)
    logger.debug("Balance push: user=%s value=%s receivers=%d", event.user_id, event.value, receivers)


class RedisBalanceSubscriber:
    def __init__(
        self,
        redis: aioredis.Redis,
        channel_prefix: str | None = None,
        retry_seconds: float | None = None,
    ) -> None:
        self._redis = redis
        self._prefix = channel_prefix or settings.CREDITS_CHANNEL_PREFIX
        self._retry_seconds = (
            settings.CREDITS_SUBSCRIBE_RETRY_SECONDS if retry_seconds is None else retry_seconds
        )

    def subscribe(
        self,
        user_id: str,
        on_update: OnBalanceUpdate,
        on_error: OnSubscriptionError,
    ) -> CancelSubscription:
        task = asyncio.get_running_loop().create_task(
            self._listen(user_id, on_update, on_error),
            name=f"credits-subscription:{user_id}",
        )

        def cancel() -> None:
            if not task.done():
                task.cancel()

        return cancel

    async def _listen(
        self,
        user_id: str,
        on_update: OnBalanceUpdate,
        on_error: OnSubscriptionError,
    ) -> None:
        channel = channel_for(user_id, self._prefix)
        while True:
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            try:
                await pubsub.subscribe(channel)
                logger.debug("Subscribed to %s", channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    self._deliver(user_id, message["data"], on_update, on_error)
            except Exception as exc:
                logger.warning("Balance subscription lost: channel=%s err=%r", channel, exc)
                self._report(user_id, str(exc) or type(exc).__name__, on_error)
            finally:
                await self._close(pubsub, channel)
            await asyncio.sleep(self._retry_seconds)

    @staticmethod
    async def _close(pubsub: PubSub, channel: str) -> None:
        try:
            await pubsub.aclose()
        except Exception as exc:
            logger.debug("Closing pubsub for %s failed: %r", channel, exc)

    @staticmethod
    def _report(user_id: str, detail: str, on_error: OnSubscriptionError) -> None:
        try:
            on_error(SubscriptionFailedError(user_id, detail))
        except Exception:
            logger.exception("Balance error callback failed: user=%s", user_id)

    @classmethod
    def _deliver(
        cls,
        user_id: str,
        data: str | bytes,
        on_update: OnBalanceUpdate,
        on_error: OnSubscriptionError,
    ) -> None:
        try:
            push = BalancePushMessage.model_validate_json(data)
        except ValidationError as exc:
            cls._report(user_id, f"malformed push ({exc.error_count()} errors)", on_error)
            return
        if push.user_id != user_id:
            logger.warning("Ignoring push for %s on channel of %s", push.user_id, user_id)
            return
        try:
            on_update(push.value)
        except Exception:
            logger.exception("Balance update callback failed: user=%s", user_id)
