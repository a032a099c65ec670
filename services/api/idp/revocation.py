"""Revocation set backends.

An entry only matters while its token could still validate, so every backend
stores the token's natural expiry next to the revocation time and drops the
entry once that expiry has passed.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

import redis.asyncio as aioredis
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from idp.utils import StripedLocks

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS revoked_tokens (
  jti TEXT PRIMARY KEY,
  revoked_at BIGINT NOT NULL,
  expires_at BIGINT NOT NULL
)
"""


class MemoryRevocationSet:
    def __init__(self, stripes: int = 64):
        self._entries: Dict[str, Tuple[int, int]] = {}
        self._locks = StripedLocks(stripes)

    async def init(self):
        self._entries.clear()

    async def teardown(self):
        self._entries.clear()

    async def add(self, jti: str, revoked_at: int, expires_at: int) -> bool:
        async with self._locks.for_key(jti):
            if jti in self._entries:
                return False
            self._entries[jti] = (revoked_at, expires_at)
            return True

    async def contains(self, jti: str) -> bool:
        return jti in self._entries

    async def revoked_at(self, jti: str) -> Optional[int]:
        entry = self._entries.get(jti)
        return entry[0] if entry else None

    async def prune(self, now: int) -> int:
        removed = 0
        for jti in list(self._entries):
            async with self._locks.for_key(jti):
                entry = self._entries.get(jti)
                if entry is not None and now > entry[1]:
                    del self._entries[jti]
                    removed += 1
        return removed

    def __len__(self):
        return len(self._entries)


class SqlRevocationSet:
    """Durable revocation set; survives restarts of the service."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.engine = None
        self.Session = None

    async def init(self):
        await asyncio.to_thread(self._init_db)

    def _init_db(self):
        self.engine = create_engine(self.dsn, pool_pre_ping=True)
        with self.engine.begin() as conn:
            conn.execute(text(SCHEMA_SQL))
        self.Session = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    async def teardown(self):
        if self.engine is not None:
            await asyncio.to_thread(self.engine.dispose)

    async def add(self, jti: str, revoked_at: int, expires_at: int) -> bool:
        return await asyncio.to_thread(self._add, jti, revoked_at, expires_at)

    def _add(self, jti, revoked_at, expires_at) -> bool:
        try:
            with self.Session.begin() as session:
                row = session.execute(
                    text("SELECT 1 FROM revoked_tokens WHERE jti=:j"), {"j": jti}
                ).first()
                if row:
                    return False
                session.execute(
                    text(
                        "INSERT INTO revoked_tokens (jti, revoked_at, expires_at) "
                        "VALUES (:j, :r, :e)"
                    ),
                    {"j": jti, "r": revoked_at, "e": expires_at},
                )
        except IntegrityError:
            # lost an insert race with another worker; the token is revoked either way
            return False
        return True

    async def contains(self, jti: str) -> bool:
        return await self.revoked_at(jti) is not None

    async def revoked_at(self, jti: str) -> Optional[int]:
        return await asyncio.to_thread(self._revoked_at, jti)

    def _revoked_at(self, jti):
        with self.Session() as session:
            row = session.execute(
                text("SELECT revoked_at FROM revoked_tokens WHERE jti=:j"), {"j": jti}
            ).first()
            return row[0] if row else None

    async def prune(self, now: int) -> int:
        return await asyncio.to_thread(self._prune, now)

    def _prune(self, now):
        with self.Session.begin() as session:
            result = session.execute(
                text("DELETE FROM revoked_tokens WHERE expires_at < :now"), {"now": now}
            )
            return result.rowcount or 0

    def health_check(self):
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))


class RedisRevocationSet:
    """Shared revocation set; redis drops each key after the token's expiry."""

    def __init__(self, redis_url: str = "", client=None, prefix: str = "revoked:"):
        self.redis_url = redis_url
        self.client = client
        self.prefix = prefix

    async def init(self):
        if self.client is None:
            self.client = aioredis.Redis.from_url(self.redis_url, decode_responses=True)
        await self.client.ping()

    async def teardown(self):
        if self.client is not None:
            await self.client.aclose()

    async def add(self, jti: str, revoked_at: int, expires_at: int) -> bool:
        created = await self.client.set(
            f"{self.prefix}{jti}", str(revoked_at), nx=True, exat=expires_at + 1
        )
        return bool(created)

    async def contains(self, jti: str) -> bool:
        return bool(await self.client.exists(f"{self.prefix}{jti}"))

    async def revoked_at(self, jti: str) -> Optional[int]:
        value = await self.client.get(f"{self.prefix}{jti}")
        return int(value) if value is not None else None

    async def prune(self, now: int) -> int:
        return 0


def build_revocation_set(settings):
    backend = settings.revocation_backend.lower()
    if backend == "memory":
        return MemoryRevocationSet(stripes=settings.lock_stripes)
    if backend == "sql":
        return SqlRevocationSet(settings.db_dsn)
    if backend == "redis":
        return RedisRevocationSet(settings.redis_url)
    raise ValueError(f"unknown revocation backend {settings.revocation_backend!r}")
