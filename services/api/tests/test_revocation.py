import pytest

from idp.revocation import (
    MemoryRevocationSet,
    RedisRevocationSet,
    SqlRevocationSet,
    build_revocation_set,
)
from idp.settings import Settings


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the revocation set."""

    def __init__(self):
        self.data = {}
        self.closed = False

    async def ping(self):
        return True

    async def set(self, name, value, nx=False, exat=None):
        if nx and name in self.data:
            return None
        self.data[name] = (value, exat)
        return True

    async def exists(self, name):
        return int(name in self.data)

    async def get(self, name):
        entry = self.data.get(name)
        return entry[0] if entry else None

    async def aclose(self):
        self.closed = True


async def test_memory_add_contains_prune():
    revoked = MemoryRevocationSet(stripes=2)
    await revoked.init()
    assert await revoked.add("a", 100, 200) is True
    assert await revoked.add("a", 150, 200) is False
    assert await revoked.add("b", 100, 500) is True
    assert await revoked.contains("a")
    assert await revoked.revoked_at("a") == 100

    assert await revoked.prune(200) == 0
    assert await revoked.prune(201) == 1
    assert not await revoked.contains("a")
    assert await revoked.contains("b")
    await revoked.teardown()
    assert len(revoked) == 0


async def test_sql_set_survives_restart(tmp_path):
    dsn = f"sqlite:///{tmp_path / 'revoked.db'}"
    first = SqlRevocationSet(dsn)
    await first.init()
    assert await first.add("jti-1", 100, 200) is True
    assert await first.add("jti-1", 120, 200) is False
    assert await first.add("jti-2", 100, 900) is True
    first.health_check()
    await first.teardown()

    second = SqlRevocationSet(dsn)
    await second.init()
    assert await second.contains("jti-1")
    assert await second.revoked_at("jti-1") == 100
    assert not await second.contains("jti-3")
    assert await second.prune(201) == 1
    assert not await second.contains("jti-1")
    assert await second.contains("jti-2")
    await second.teardown()


async def test_redis_set_expires_with_token():
    client = FakeRedis()
    revoked = RedisRevocationSet(client=client, prefix="t:")
    await revoked.init()
    assert await revoked.add("jti-1", 100, 200) is True
    assert await revoked.add("jti-1", 110, 200) is False
    assert client.data["t:jti-1"] == ("100", 201)
    assert await revoked.contains("jti-1")
    assert await revoked.revoked_at("jti-1") == 100
    assert await revoked.prune(500) == 0
    await revoked.teardown()
    assert client.closed


@pytest.mark.parametrize(
    "backend, cls",
    [("memory", MemoryRevocationSet), ("sql", SqlRevocationSet), ("REDIS", RedisRevocationSet)],
)
def test_backend_selection(backend, cls):
    assert isinstance(build_revocation_set(Settings(revocation_backend=backend)), cls)


def test_unknown_backend():
    with pytest.raises(ValueError):
        build_revocation_set(Settings(revocation_backend="etcd"))
