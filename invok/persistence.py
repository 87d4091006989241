"""Autoscaler state kept in Redis, one key per container pool."""

from __future__ import annotations

import asyncio
import logging
from itertools import islice
from typing import Any, Awaitable, Iterable, Iterator, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError as _RedisLibraryError

from invok.errors import InvokError, RedisError, SerializationError
from invok.records import PersistedPoolState, PersistenceConfig, PersistenceMetadata

log = logging.getLogger(__name__)

EXPIRY_SECS = 24 * 60 * 60

T = TypeVar("T")


def _batches(items: Iterable[str], size: int) -> Iterator[list[str]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class AutoscalerPersistence:
    """Saves and restores container pool state in Redis."""

    def __init__(self, config: PersistenceConfig | None = None, *, client: Any = None) -> None:
        self.config = config if config is not None else PersistenceConfig()
        if client is None:
            try:
                client = aioredis.Redis.from_url(self.config.redis_url, decode_responses=True)
            except ValueError as exc:
                log.error("Failed to create Redis client: %s", exc)
                raise RedisError(f"Failed to create Redis client: {exc}") from exc
        self._client = client

    async def __aenter__(self) -> AutoscalerPersistence:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def pool_key(self, function_key: str) -> str:
        return f"{self.config.key_prefix}:pool:{function_key}"

    def metadata_key(self) -> str:
        return f"{self.config.key_prefix}:metadata"

    @property
    def _pool_prefix(self) -> str:
        return f"{self.config.key_prefix}:pool:"

    async def _call(self, what: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except (_RedisLibraryError, OSError) as exc:
            log.error("%s: %s", what, exc)
            raise RedisError(f"{what}: {exc}") from exc

    async def save_pool_state(self, function_key: str, pool_state: PersistedPoolState) -> None:
        """Store a pool's state, expiring after a day."""
        if not self.enabled:
            return
        key = self.pool_key(function_key)
        try:
            serialized = pool_state.to_json()
        except (TypeError, ValueError) as exc:
            log.error("Failed to serialize pool state for %s: %s", function_key, exc)
            raise SerializationError(f"Failed to serialize pool state: {exc}") from exc

        await self._call("Failed to save pool state", self._client.set(key, serialized))
        await self._call("Failed to set expiration", self._client.expire(key, EXPIRY_SECS))
        log.debug(
            "Saved pool state for %s with %d containers",
            function_key, len(pool_state.containers),
        )

    async def load_pool_state(self, function_key: str) -> PersistedPoolState | None:
        """Load one pool's state, or None if nothing is stored."""
        if not self.enabled:
            return None
        raw = await self._call(
            "Failed to load pool state", self._client.get(self.pool_key(function_key))
        )
        if raw is None:
            log.debug("No pool state found for %s in Redis", function_key)
            return None
        try:
            pool_state = PersistedPoolState.from_json(_text(raw))
        except SerializationError:
            log.error("Failed to deserialize pool state for %s", function_key)
            raise
        log.debug(
            "Loaded pool state for %s with %d containers",
            function_key, len(pool_state.containers),
        )
        return pool_state

    async def get_all_pool_keys(self) -> list[str]:
        """Function keys of every stored pool."""
        if not self.enabled:
            return []
        keys = await self._call(
            "Failed to get pool keys", self._client.keys(f"{self._pool_prefix}*")
        )
        prefix = self._pool_prefix
        function_keys = [
            text[len(prefix):] for text in map(_text, keys) if text.startswith(prefix)
        ]
        log.info("Found %d persisted pool states in Redis", len(function_keys))
        return function_keys

    async def _load_or_none(self, function_key: str) -> tuple[str, PersistedPoolState] | None:
        try:
            state = await self.load_pool_state(function_key)
        except InvokError as exc:
            log.error("Failed to load pool state for %s: %s", function_key, exc)
            return None
        if state is None:
            log.warning("Pool state not found for %s", function_key)
            return None
        return function_key, state

    async def load_all_pool_states(self) -> dict[str, PersistedPoolState]:
        """Load every stored pool, in concurrent batches; unreadable ones are skipped."""
        if not self.enabled:
            return {}
        if self.config.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        function_keys = await self.get_all_pool_keys()
        if not function_keys:
            log.info("No pool states to restore from Redis")
            return {}

        log.info(
            "Loading %d pool states from Redis in batches of %d",
            len(function_keys), self.config.batch_size,
        )
        pools: dict[str, PersistedPoolState] = {}
        failed = 0
        for batch in _batches(function_keys, self.config.batch_size):
            results = await asyncio.gather(*(self._load_or_none(key) for key in batch))
            for result in results:
                if result is None:
                    failed += 1
                else:
                    key, state = result
                    pools[key] = state
            log.debug("Loaded batch of %d pools", len(batch))

        log.info(
            "Pool state loading complete: %d successful, %d failed", len(pools), failed
        )
        return pools

    async def delete_pool_state(self, function_key: str) -> None:
        if not self.enabled:
            return
        await self._call(
            "Failed to delete pool state", self._client.delete(self.pool_key(function_key))
        )
        log.debug("Deleted pool state for %s", function_key)

    async def cleanup_stale_pools(self, active_function_keys: Iterable[str]) -> None:
        """Delete stored pools whose keys are not among the active ones."""
        if not self.enabled:
            return
        active = set(active_function_keys)
        deleted = 0
        for key in await self.get_all_pool_keys():
            if key in active:
                continue
            try:
                await self.delete_pool_state(key)
            except InvokError as exc:
                log.warning("Failed to delete stale pool state for %s: %s", key, exc)
            else:
                deleted += 1
                log.debug("Deleted stale pool state for %s", key)
        if deleted:
            log.info("Cleaned up %d stale pool states from Redis", deleted)

    async def save_metadata(self, metadata: PersistenceMetadata) -> None:
        if not self.enabled:
            return
        key = self.metadata_key()
        try:
            serialized = metadata.to_json()
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Failed to serialize metadata: {exc}") from exc
        await self._call("Failed to save metadata", self._client.set(key, serialized))
        await self._call("Failed to set expiration", self._client.expire(key, EXPIRY_SECS))
        log.debug("Saved persistence metadata")

    async def load_metadata(self) -> PersistenceMetadata | None:
        if not self.enabled:
            return None
        raw = await self._call("Failed to load metadata", self._client.get(self.metadata_key()))
        if raw is None:
            log.debug("No persistence metadata found in Redis")
            return None
        metadata = PersistenceMetadata.from_json(_text(raw))
        log.debug(
            "Loaded persistence metadata (version: %s, total_pools: %d)",
            metadata.version, metadata.total_pools,
        )
        return metadata