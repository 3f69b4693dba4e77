"""Durable checkpoints for suspended escalation chains.

Before every suspension (settling window, retry interval) the
orchestrator writes a :class:`ChainCheckpoint` holding the chain, its
state and the time it should wake up.  On startup the checkpoints are
reloaded and each chain is resumed where it stopped, so a process
restart neither drops an escalation nor replays attempts already made.

Storage is a single Redis hash (field = chain key) with transparent
failover to a process-local dict when Redis is unavailable.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Final, Protocol, runtime_checkable

import orjson
import structlog
from pydantic import ValidationError

from src.models.escalation import ChainCheckpoint

logger = structlog.get_logger(__name__)

CHECKPOINT_HASH_KEY: Final[str] = "sheshield:escalation:chains"


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class CheckpointBackend(Protocol):
    """Async hash-like storage for serialised checkpoints."""

    async def put(self, field: str, value: bytes) -> None: ...

    async def get(self, field: str) -> bytes | None: ...

    async def remove(self, field: str) -> None: ...

    async def items(self) -> dict[str, bytes]: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCheckpointBackend:
    """Redis hash backend using ``redis.asyncio`` with connection pooling."""

    __slots__ = ("_key", "_pool", "_redis")

    def __init__(
        self,
        url: str,
        *,
        key: str = CHECKPOINT_HASH_KEY,
        max_connections: int = 10,
    ) -> None:
        import redis.asyncio as aioredis

        self._key = key
        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def put(self, field: str, value: bytes) -> None:
        await self._redis.hset(self._key, field, value)

    async def get(self, field: str) -> bytes | None:
        return await self._redis.hget(self._key, field)

    async def remove(self, field: str) -> None:
        await self._redis.hdel(self._key, field)

    async def items(self) -> dict[str, bytes]:
        raw = await self._redis.hgetall(self._key)
        return {
            (k.decode() if isinstance(k, bytes) else k): v
            for k, v in raw.items()
        }

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryCheckpointBackend:
    """Dict backend; checkpoints do not survive the process."""

    __slots__ = ("_data", "_lock")

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def put(self, field: str, value: bytes) -> None:
        async with self._lock:
            self._data[field] = value

    async def get(self, field: str) -> bytes | None:
        async with self._lock:
            return self._data.get(field)

    async def remove(self, field: str) -> None:
        async with self._lock:
            self._data.pop(field, None)

    async def items(self) -> dict[str, bytes]:
        async with self._lock:
            return dict(self._data)

    @property
    def size(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# CheckpointStore  --  public API
# ---------------------------------------------------------------------------


class CheckpointStore:
    """Checkpoint facade with automatic Redis -> in-memory fallback.

    Parameters
    ----------
    redis_url:
        Redis connection string.  Pass *None* (or empty) to skip Redis.
    key:
        Name of the Redis hash holding the checkpoints.
    """

    __slots__ = (
        "_fallback",
        "_redis",
        "_redis_available",
        "_redis_checked",
    )

    def __init__(self, *, redis_url: str | None = None, key: str = CHECKPOINT_HASH_KEY) -> None:
        self._fallback = InMemoryCheckpointBackend()
        self._redis: RedisCheckpointBackend | None = None
        self._redis_available = False
        self._redis_checked = False

        if redis_url:
            try:
                self._redis = RedisCheckpointBackend(redis_url, key=key)
            except Exception:
                logger.warning("checkpoints.redis_init_failed", redis_url=redis_url)
                self._redis = None

    @property
    def durable(self) -> bool:
        """Whether checkpoints are currently going to Redis."""
        return self._redis_available

    async def _ensure_checked(self) -> None:
        if self._redis is not None and not self._redis_checked:
            self._redis_checked = True
            self._redis_available = await self._redis.ping()
            if self._redis_available:
                logger.info("checkpoints.redis_connected")
            else:
                logger.warning("checkpoints.redis_unavailable_using_inmemory")

    async def _call(self, method: str, *args: object) -> object:
        """Try Redis; on failure flip to in-memory and retry there."""
        await self._ensure_checked()
        if self._redis_available and self._redis is not None:
            try:
                return await getattr(self._redis, method)(*args)
            except Exception:
                logger.warning("checkpoints.redis_op_failed", method=method)
                self._redis_available = False
        return await getattr(self._fallback, method)(*args)

    async def save(self, checkpoint: ChainCheckpoint) -> None:
        raw = orjson.dumps(checkpoint.model_dump(mode="json"))
        await self._call("put", checkpoint.chain.key, raw)

    async def load(self, chain_key: str) -> ChainCheckpoint | None:
        raw = await self._call("get", chain_key)
        if raw is None:
            return None
        return self._decode(chain_key, raw)  # type: ignore[arg-type]

    async def delete(self, chain_key: str) -> None:
        await self._call("remove", chain_key)

    async def list_pending(self) -> list[ChainCheckpoint]:
        """All stored checkpoints, oldest wake-up first.  Corrupt entries are dropped."""
        items: dict[str, bytes] = await self._call("items")  # type: ignore[assignment]
        checkpoints = []
        for chain_key, raw in items.items():
            checkpoint = self._decode(chain_key, raw)
            if checkpoint is None:
                await self.delete(chain_key)
                continue
            checkpoints.append(checkpoint)
        return sorted(checkpoints, key=lambda c: c.wake_at)

    @staticmethod
    def _decode(chain_key: str, raw: bytes) -> ChainCheckpoint | None:
        try:
            return ChainCheckpoint.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError):
            logger.warning("checkpoints.corrupt_entry", chain_key=chain_key)
            return None

    async def close(self) -> None:
        """Cleanly shut down the Redis connection pool (if any)."""
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
