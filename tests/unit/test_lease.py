import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from taskflow.core.errors import LockContentionSkip
from taskflow.core.lease import Lease, MemoryLeaseStore, RedisLeaseStore, RunLock


@pytest.fixture
def lock(clock):
    return RunLock(MemoryLeaseStore(), max_age=timedelta(seconds=300), clock=clock)


async def test_acquire_and_release(lock):
    acquisition = await lock.acquire()

    assert acquisition.recovered is None
    assert (await lock.current()).owner == acquisition.lease.owner

    assert await lock.release(acquisition.lease)
    assert await lock.current() is None


async def test_live_lease_blocks_second_run(lock, clock):
    first = await lock.acquire()
    clock.advance(seconds=299)

    with pytest.raises(LockContentionSkip) as exc_info:
        await lock.acquire()

    assert exc_info.value.owner == first.lease.owner
    assert exc_info.value.age_seconds == pytest.approx(299)


async def test_stale_lease_is_taken_over(lock, clock):
    stale = await lock.acquire()
    clock.advance(seconds=301)

    acquisition = await lock.acquire()

    assert acquisition.recovered.owner == stale.lease.owner
    assert acquisition.lease.owner != stale.lease.owner
    assert (await lock.current()).owner == acquisition.lease.owner


async def test_release_does_not_remove_someone_elses_lease(lock, clock):
    stale = await lock.acquire()
    clock.advance(seconds=400)
    await lock.acquire()

    # The crashed run coming back must not delete the new holder's lease
    assert not await lock.release(stale.lease)
    assert await lock.current() is not None


async def test_redis_store_uses_set_nx(clock):
    client = AsyncMock()
    client.set.return_value = True
    store = RedisLeaseStore(client)
    lease = Lease(name="workflow-scheduler", owner="host:1:abc", acquired_at=clock())

    assert await store.create(lease, 300)

    key, value = client.set.call_args.args
    assert key == "lease:workflow-scheduler"
    assert json.loads(value)["owner"] == "host:1:abc"
    assert client.set.call_args.kwargs == {"nx": True, "ex": 600}


async def test_redis_store_owner_checked_delete(clock):
    client = AsyncMock()
    client.eval.return_value = 1
    store = RedisLeaseStore(client)

    assert await store.delete("workflow-scheduler", "host:1:abc")
    script, numkeys, key, owner = client.eval.call_args.args
    assert "cjson.decode" in script
    assert (numkeys, key, owner) == (1, "lease:workflow-scheduler", "host:1:abc")


async def test_redis_store_round_trip_and_corrupt_record(clock):
    client = AsyncMock()
    lease = Lease(name="workflow-scheduler", owner="host:1:abc", acquired_at=clock())
    client.get.return_value = lease.to_json()
    store = RedisLeaseStore(client)

    read = await store.read("workflow-scheduler")
    assert read.owner == "host:1:abc"
    assert read.acquired_at == clock()

    client.get.return_value = "not json"
    corrupt = await store.read("workflow-scheduler")
    assert corrupt.owner == ""
    assert corrupt.age(clock()) > timedelta(days=365)


async def test_corrupt_redis_lease_is_recovered(clock):
    client = AsyncMock()
    client.get.side_effect = ["garbage", None]
    client.delete.return_value = 1
    client.set.return_value = True
    lock = RunLock(RedisLeaseStore(client), clock=clock)

    acquisition = await lock.acquire()

    assert acquisition.recovered is not None
    client.delete.assert_awaited_once_with("lease:workflow-scheduler")
