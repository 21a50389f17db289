"""
Run lease: an exclusive, time-stamped claim that keeps scheduler runs from
overlapping. A lease older than its max age belongs to a crashed run and is
taken over.
"""

import json
import logging
import os
import socket
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from taskflow.core.clock import Clock, as_utc, utc_now
from taskflow.core.errors import LockContentionSkip

logger = logging.getLogger("taskflow.lease")


@dataclass
class Lease:
    name: str
    owner: str
    acquired_at: datetime

    def age(self, now: datetime) -> timedelta:
        return as_utc(now) - as_utc(self.acquired_at)

    def to_json(self) -> str:
        return json.dumps({"owner": self.owner, "acquired_at": as_utc(self.acquired_at).isoformat()})

    @classmethod
    def from_json(cls, name: str, data: str) -> "Lease":
        payload = json.loads(data)
        return cls(name=name, owner=payload["owner"], acquired_at=datetime.fromisoformat(payload["acquired_at"]))


def new_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LeaseStore(ABC):
    """Backing store for leases. `create` must be atomic create-if-absent."""

    @abstractmethod
    async def read(self, name: str) -> Optional[Lease]:
        ...

    @abstractmethod
    async def create(self, lease: Lease, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    async def delete(self, name: str, owner: Optional[str] = None) -> bool:
        """Delete the lease; when `owner` is given only if it still holds it."""


class MemoryLeaseStore(LeaseStore):
    """In-process leases for single-process deployments."""

    def __init__(self):
        self._leases: Dict[str, Lease] = {}

    async def read(self, name: str) -> Optional[Lease]:
        return self._leases.get(name)

    async def create(self, lease: Lease, ttl_seconds: int) -> bool:
        if lease.name in self._leases:
            return False
        self._leases[lease.name] = lease
        return True

    async def delete(self, name: str, owner: Optional[str] = None) -> bool:
        current = self._leases.get(name)
        if current is None or (owner is not None and current.owner != owner):
            return False
        del self._leases[name]
        return True


class RedisLeaseStore(LeaseStore):
    """Leases shared across processes through redis `SET NX`."""

    KEY_PREFIX = "lease:"

    # Compare-and-delete so a run never removes a lease it no longer owns
    _DELETE_IF_OWNER = """
local value = redis.call('get', KEYS[1])
if not value then return 0 end
if cjson.decode(value)['owner'] == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

    def __init__(self, client=None):
        self._client = client

    async def _redis(self):
        if self._client is not None:
            return self._client
        from taskflow.core.mq import MQService

        return await MQService.get_redis()

    async def read(self, name: str) -> Optional[Lease]:
        r = await self._redis()
        data = await r.get(self.KEY_PREFIX + name)
        if not data:
            return None
        try:
            return Lease.from_json(name, data)
        except (ValueError, KeyError) as e:
            logger.error(f"Corrupt lease record for {name}: {e}")
            # Unreadable records are treated as stale
            return Lease(name=name, owner="", acquired_at=datetime.min.replace(tzinfo=timezone.utc))

    async def create(self, lease: Lease, ttl_seconds: int) -> bool:
        r = await self._redis()
        # Expiry is a backstop only; staleness is judged from acquired_at
        created = await r.set(self.KEY_PREFIX + lease.name, lease.to_json(), nx=True, ex=max(ttl_seconds * 2, 1))
        return bool(created)

    async def delete(self, name: str, owner: Optional[str] = None) -> bool:
        r = await self._redis()
        key = self.KEY_PREFIX + name
        if owner is None:
            return bool(await r.delete(key))
        return bool(await r.eval(self._DELETE_IF_OWNER, 1, key, owner))


@dataclass
class LockAcquisition:
    lease: Lease
    recovered: Optional[Lease] = None  # stale lease that was removed


class RunLock:
    """Exclusive scheduler run lock on top of a LeaseStore."""

    def __init__(
        self,
        store: LeaseStore,
        name: str = "workflow-scheduler",
        max_age: timedelta = timedelta(seconds=300),
        clock: Clock = utc_now,
    ):
        self.store = store
        self.name = name
        self.max_age = max_age
        self._clock = clock

    async def current(self) -> Optional[Lease]:
        return await self.store.read(self.name)

    async def acquire(self) -> LockAcquisition:
        """Take the lease or raise LockContentionSkip if a live run holds it."""
        now = self._clock()
        recovered = None

        existing = await self.store.read(self.name)
        if existing is not None:
            age = existing.age(now)
            if age < self.max_age:
                raise LockContentionSkip(existing.owner, age.total_seconds())
            logger.warning(
                f"Removing stale run lease held by {existing.owner} for {age.total_seconds():.0f}s "
                f"(max {self.max_age.total_seconds():.0f}s)"
            )
            await self.store.delete(self.name, existing.owner or None)
            recovered = existing

        lease = Lease(name=self.name, owner=new_owner_id(), acquired_at=now)
        if not await self.store.create(lease, int(self.max_age.total_seconds())):
            # Someone else won between read and create
            holder = await self.store.read(self.name)
            owner = holder.owner if holder else "unknown"
            age = holder.age(now).total_seconds() if holder else 0.0
            raise LockContentionSkip(owner, age)

        logger.debug(f"Acquired run lease {self.name} as {lease.owner}")
        return LockAcquisition(lease=lease, recovered=recovered)

    async def release(self, lease: Lease) -> bool:
        released = await self.store.delete(lease.name, lease.owner)
        if not released:
            logger.warning(f"Run lease {lease.name} was no longer held by {lease.owner} at release")
        return released
