"""SnapshotStore: best-effort persistence of the credits cold-start snapshot.

Every failure degrades to "no snapshot" / "not written" and is logged as
CacheUnavailableError. Validity (owner + expiry) is the caller's concern,
see src.cr_credits.domain.cache.
"""

import logging
from pydantic import AwareDatetime, BaseModel, Field, ValidationError

from src.cr_common.errors import CacheUnavailableError
from src.cr_credits.domain.models import CachedSnapshot
from src.cr_credits.domain.repository import SnapshotCacheProtocol

logger = logging.getLogger(__name__)


class SnapshotPayload(BaseModel):
    """JSON shape of a snapshot inside the key-value cache."""

    user_id: str
    value: int = Field(..., ge=0)
    captured_at: AwareDatetime

    @classmethod
    def from_domain(cls, snapshot: CachedSnapshot) -> "SnapshotPayload":
        return cls(
            user_id=snapshot.user_id,
            value=snapshot.value,
            captured_at=snapshot.captured_at,
        )

    def to_domain(self) -> CachedSnapshot:
        return CachedSnapshot(
            user_id=self.user_id,
            value=self.value,
            captured_at=self.captured_at,
        )


class SnapshotStore:
    def __init__(self, cache: SnapshotCacheProtocol) -> None:
        self._cache = cache

    async def read(self, key: str) -> CachedSnapshot | None:
        try:
            result = await self._cache.get_item(key, None)
        except Exception as exc:
            logger.warning("%s", CacheUnavailableError(f"read {key}: {exc}").message)
            return None
        if not result.success or result.data is None:
            return None
        try:
            return SnapshotPayload.model_validate(result.data).to_domain()
        except ValidationError:
            logger.warning("Discarding malformed credits snapshot: key=%s", key)
            return None

    async def write(self, key: str, snapshot: CachedSnapshot) -> bool:
        payload = SnapshotPayload.from_domain(snapshot).model_dump(mode="json")
        try:
            ok = await self._cache.set_item(key, payload)
        except Exception as exc:
            logger.warning("%s", CacheUnavailableError(f"write {key}: {exc}").message)
            return False
        if not ok:
            logger.debug("Credits snapshot not written: key=%s", key)
        return ok

    async def remove(self, key: str) -> bool:
        try:
            return await self._cache.remove_item(key)
        except Exception as exc:
            logger.warning("%s", CacheUnavailableError(f"remove {key}: {exc}").message)
            return False
