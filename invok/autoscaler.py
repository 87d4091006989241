"""Keeps one container pool per function and grows or shrinks it with load."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any

from invok.containers import MonitoringConfig
from invok.errors import InvokError
from invok.persistence import AutoscalerPersistence
from invok.pool import ContainerPool
from invok.records import PersistenceConfig, PersistenceMetadata
from invok.runner import ContainerDetails

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoscalerConfig:
    """Pool size limits and how often pools are checked; times are in seconds."""

    monitoring: MonitoringConfig
    min_containers_per_function: int
    max_containers_per_function: int
    scale_check_interval: float


class Autoscaler:
    """Manages the container pools of all functions, keyed by function key."""

    def __init__(
        self,
        docker: Any,
        config: AutoscalerConfig,
        docker_compose_network_host: str,
        metrics_client: Any,
    ) -> None:
        self.docker = docker
        self.config = config
        self.docker_compose_network_host = docker_compose_network_host
        self.metrics_client = metrics_client
        self.persistence: AutoscalerPersistence | None = None
        self._pools: dict[str, ContainerPool] = {}
        self._task: asyncio.Task | None = None

    def with_persistence(self, persistence_config: PersistenceConfig) -> Autoscaler:
        """Store pool state in Redis when the config enables it; returns ``self``."""
        if persistence_config.enabled:
            self.persistence = AutoscalerPersistence(persistence_config)
            log.info("Autoscaler persistence enabled")
        else:
            log.info("Autoscaler persistence disabled")
        return self

    def pool_count(self) -> int:
        return len(self._pools)

    async def restore_from_redis(self) -> None:
        """Rebuild pools from Redis, keeping only those with running containers."""
        persistence = self.persistence
        if persistence is None:
            log.debug("Persistence not enabled, skipping state restoration")
            return

        try:
            metadata = await persistence.load_metadata()
        except InvokError:
            metadata = None
        if metadata is not None:
            log.info(
                "Found persistence metadata: version=%s, total_pools=%d",
                metadata.version, metadata.total_pools,
            )

        try:
            persisted_pools = await persistence.load_all_pool_states()
        except InvokError as exc:
            log.error("Failed to load pool states from Redis: %s", exc)
            raise

        if not persisted_pools:
            log.info("No pool states to restore from Redis, starting fresh")
            return

        log.info("Restoring %d pools from Redis", len(persisted_pools))
        restored = failed = 0
        for function_key, persisted in persisted_pools.items():
            try:
                pool = ContainerPool.from_persisted_state(
                    persisted,
                    self.docker,
                    self.docker_compose_network_host,
                    self.metrics_client,
                )
            except (InvokError, ValueError) as exc:
                log.error("Failed to restore pool for %s: %s", function_key, exc)
                failed += 1
                continue

            try:
                await pool.validate_and_sync_containers()
            except InvokError as exc:
                log.warning("Failed to validate containers for %s: %s", function_key, exc)

            if pool.container_count() > 0:
                self._pools[function_key] = pool
                restored += 1
                log.info(
                    "Restored pool for %s with %d containers",
                    function_key, pool.container_count(),
                )
            else:
                log.warning(
                    "Pool for %s had no valid containers after validation, "
                    "removing from Redis",
                    function_key,
                )
                try:
                    await persistence.delete_pool_state(function_key)
                except InvokError as exc:
                    log.warning(
                        "Failed to delete empty pool state for %s: %s", function_key, exc
                    )

        log.info(
            "State restoration complete: %d pools restored, %d failed", restored, failed
        )

        try:
            await persistence.save_metadata(PersistenceMetadata.create(len(self._pools)))
        except InvokError as exc:
            log.warning("Failed to update persistence metadata: %s", exc)

        try:
            await persistence.cleanup_stale_pools(list(self._pools))
        except InvokError as exc:
            log.warning("Failed to cleanup stale pools: %s", exc)

    async def _save_pool_state(self, function_key: str, pool: ContainerPool) -> None:
        if self.persistence is None:
            return
        await self.persistence.save_pool_state(function_key, pool.to_persisted_state())

    async def _save_quietly(self, function_key: str, pool: ContainerPool, when: str) -> None:
        try:
            await self._save_pool_state(function_key, pool)
        except InvokError as exc:
            log.warning("Failed to save pool state %s for %s: %s", when, function_key, exc)

    async def start(self) -> None:
        """Restore stored state, then run the periodic scaling loop in the background."""
        log.info("Starting autoscaler with config: %s", self.config)
        await self.restore_from_redis()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._scan_loop())

    async def stop(self) -> None:
        """Stop the background scaling loop."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _scan_loop(self) -> None:
        while True:
            await self._scan_once()
            await asyncio.sleep(self.config.scale_check_interval)

    async def _scan_once(self) -> None:
        log.debug("Autoscaler scan start...")
        for function_key, pool in list(self._pools.items()):
            with contextlib.suppress(InvokError):
                await pool.update_containers_metrics()
            log.info("Autoscaler state: %s", pool.get_status())

            if pool.needs_scale_up():
                try:
                    await self.scale_up_function(function_key, pool)
                except InvokError as exc:
                    log.error("Failed to scale up pool for %s: %s", function_key, exc)

            await self.check_and_scale_down_pool(function_key, pool, self.config)
        log.debug("Autoscaler scan end")

    async def get_or_create_pool(self, function_key: str) -> ContainerPool:
        """The pool for ``function_key``, created (and stored) if it does not exist."""
        pool = self._pools.get(function_key)
        if pool is not None:
            log.debug("Using existing container pool for function: %s", function_key)
            return pool

        pool = ContainerPool(
            function_key,
            self.docker,
            self.docker_compose_network_host,
            self.config.monitoring,
            self.config.min_containers_per_function,
            self.config.max_containers_per_function,
            self.metrics_client,
        )
        log.debug("Creating new container pool for function: %s", function_key)
        self._pools[function_key] = pool
        await self._save_quietly(function_key, pool, "for new pool")
        log.info("Created new container pool for function: %s", function_key)
        return pool

    async def get_container_for_invocation(self, function_key: str) -> ContainerDetails | None:
        """The container that should serve the next request, scaling up if none is free."""
        pool = await self.get_or_create_pool(function_key)

        container = pool.get_healthiest_container()
        if container is not None:
            pool.mark_container_active(container.container_id)
            await self._save_quietly(function_key, pool, "after container activation")
            return container

        if pool.container_count() >= self.config.max_containers_per_function:
            log.warning(
                "No available containers for function %s and max capacity reached",
                function_key,
            )
            return None

        try:
            container = await self.scale_up_function(function_key, pool)
        except InvokError as exc:
            log.error(
                "Failed to scale up function %s for immediate request: %s",
                function_key, exc,
            )
            return None
        pool.mark_container_active(container.container_id)
        await self._save_quietly(function_key, pool, "after scale up")
        return container

    def get_all_pool_status(self) -> dict[str, dict[str, Any]]:
        """Status of every pool, keyed by function key."""
        return {key: pool.get_status() for key, pool in self._pools.items()}

    @staticmethod
    async def check_and_scale_down_pool(
        function_key: str, pool: ContainerPool, config: AutoscalerConfig
    ) -> None:
        """Remove containers idle past their cooldown while above the pool minimum."""
        for container_id in pool.get_scaledown_candidates():
            if pool.container_count() <= config.min_containers_per_function:
                continue
            try:
                await pool.remove_container(container_id)
            except InvokError as exc:
                log.error("Failed to scale down container %s: %s", container_id, exc)
            else:
                log.info(
                    "Scaled down container %s for function %s", container_id, function_key
                )

    @staticmethod
    async def scale_up_function(function_key: str, pool: ContainerPool) -> ContainerDetails:
        """Add a new container to the pool and return its details."""
        log.info("Scaling up function: %s", function_key)
        details = await pool.add_container(function_key)
        log.info(
            "Successfully scaled up function %s with container %s",
            function_key, details.container_name,
        )
        return details