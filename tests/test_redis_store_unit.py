"""Unit tests for RedisRevocationStore against a stub async client."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from sessionward.storage.errors import StoreUnavailable
from sessionward.storage.redis_store import RedisRevocationStore


class StubRedis:
    """Enough of redis.asyncio.Redis for the revocation store."""

    def __init__(self, *, getdel_supported=True):
        self.data = {}
        self.ttls = {}
        self.getdel_supported = getdel_supported
        self.scan_calls = []
        self.eval_calls = 0
        self.closed = False
        self.fail_with = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def set(self, key, value, ex=None):
        self._maybe_fail()
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        self._maybe_fail()
        return self.data.get(key)

    async def delete(self, *keys):
        self._maybe_fail()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def getdel(self, key):
        self._maybe_fail()
        if not self.getdel_supported:
            raise ResponseError("unknown command 'GETDEL'")
        return self.data.pop(key, None)

    async def eval(self, script, numkeys, *keys):
        self._maybe_fail()
        self.eval_calls += 1
        return self.data.pop(keys[0], None)

    async def scan(self, cursor=0, match=None, count=None):
        self._maybe_fail()
        self.scan_calls.append((cursor, match, count))
        prefix = match.rstrip("*").replace("\\", "")
        keys = sorted(key for key in self.data if key.startswith(prefix))
        # Two pages so the sweep has to follow the cursor
        if cursor == 0 and len(keys) > 1:
            return 7, keys[:1]
        return 0, keys

    async def aclose(self):
        self.closed = True


@pytest.fixture
def client():
    return StubRedis()


@pytest.fixture
def redis_store(client):
    return RedisRevocationStore(
        "redis://localhost:6379/0", operation_timeout=0.5, scan_batch_size=100, client=client
    )


async def test_put_sets_expiry_in_seconds(redis_store, client):
    await redis_store.put("blacklist:t", "blacklisted", 42)
    assert client.data["blacklist:t"] == "blacklisted"
    assert client.ttls["blacklist:t"] == 42


async def test_put_rejects_non_positive_ttl(redis_store):
    with pytest.raises(ValueError):
        await redis_store.put("k", "v", 0)


async def test_get_and_delete(redis_store, client):
    client.data["k"] = "v"
    assert await redis_store.get("k") == "v"
    assert await redis_store.delete("k") is True
    assert await redis_store.delete("k") is False
    assert await redis_store.get("k") is None


async def test_pop_uses_getdel(redis_store, client):
    client.data["k"] = "v"
    assert await redis_store.pop("k") == "v"
    assert await redis_store.pop("k") is None
    assert client.eval_calls == 0


async def test_pop_falls_back_to_script_without_getdel():
    client = StubRedis(getdel_supported=False)
    store = RedisRevocationStore("redis://localhost:6379/0", client=client)
    client.data["k"] = "v"

    assert await store.pop("k") == "v"
    assert await store.pop("k") is None
    assert client.eval_calls == 2


async def test_driver_errors_become_store_unavailable(redis_store, client):
    client.fail_with = RedisConnectionError("Error 111 connecting to redis://:pw@host:6379")
    with pytest.raises(StoreUnavailable) as excinfo:
        await redis_store.get("k")
    assert excinfo.value.operation == "get"
    assert "pw" not in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, RedisConnectionError)


async def test_os_errors_become_store_unavailable(redis_store, client):
    client.fail_with = ConnectionRefusedError("refused")
    with pytest.raises(StoreUnavailable):
        await redis_store.put("k", "v", 10)


async def test_slow_call_times_out_as_store_unavailable(client):
    async def slow_get(key):
        await asyncio.sleep(1)

    client.get = slow_get
    store = RedisRevocationStore(
        "redis://localhost:6379/0", operation_timeout=0.01, client=client
    )
    with pytest.raises(StoreUnavailable) as excinfo:
        await store.get("k")
    assert excinfo.value.operation == "get"


async def test_pop_connection_error_is_not_mistaken_for_missing_getdel(redis_store, client):
    client.fail_with = RedisConnectionError("down")
    with pytest.raises(StoreUnavailable):
        await redis_store.pop("k")
    assert redis_store._getdel_supported is True
    assert client.eval_calls == 0


async def test_delete_by_prefix_follows_scan_cursor(redis_store, client):
    client.data.update(
        {
            "refresh_token:u1:a": "1",
            "refresh_token:u1:b": "1",
            "refresh_token:u2:c": "1",
        }
    )

    deleted = await redis_store.delete_by_prefix("refresh_token:u1:")

    assert deleted == 2
    assert list(client.data) == ["refresh_token:u2:c"]
    assert [call[0] for call in client.scan_calls] == [0, 7]
    assert client.scan_calls[0][1] == "refresh_token:u1:*"
    assert client.scan_calls[0][2] == 100


async def test_delete_by_prefix_escapes_glob_characters(redis_store, client):
    await redis_store.delete_by_prefix("refresh_token:u[1]:")
    assert client.scan_calls[0][1] == r"refresh_token:u\[1\]:*"


async def test_close_releases_client(redis_store, client):
    await redis_store.close()
    assert client.closed is True


async def test_verify_connection_bounds_startup_ping(monkeypatch):
    from sessionward.storage import redis_store as redis_store_module

    created = {}

    class RecordingRedis:
        def __init__(self, **kwargs):
            created.update(kwargs)
            self.closed = False

        @classmethod
        def from_url(cls, url, **kwargs):
            return cls(url=url, **kwargs)

        def ping(self):
            return True

        def close(self):
            self.closed = True

    monkeypatch.setattr(redis_store_module, "Redis", RecordingRedis)
    store = RedisRevocationStore(
        "redis://localhost:6379/0", operation_timeout=0.25, client=StubRedis()
    )

    store.verify_connection()

    assert created["socket_timeout"] == 0.25
    assert created["socket_connect_timeout"] == 0.25
