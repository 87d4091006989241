"""A pool of containers serving one function, with load-based selection."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import Any

from invok.containers import ContainerInfo, ContainerStatus, MonitoringConfig
from invok.errors import InvokError
from invok.records import PersistedContainerInfo, PersistedPoolState
from invok.runner import ContainerDetails, clean_up, runner
from invok.utils import random_container_name, random_port

log = logging.getLogger(__name__)

DEFAULT_CONTAINER_PORT = 8080


def to_container_details(info: ContainerInfo) -> ContainerDetails:
    """Describe a pooled container well enough to route a request to it."""
    return ContainerDetails(
        container_id=info.id,
        container_port=info.container_port,
        bind_port="",
        container_name=info.name,
        timeout=0,
        docker_compose_network_host="",
    )


class ContainerPool:
    """The containers running one function, and the rules for using and resizing them."""

    def __init__(
        self,
        function_name: str,
        docker: Any,
        network_host: str,
        config: MonitoringConfig,
        min_containers: int,
        max_containers: int,
        metrics_client: Any,
    ) -> None:
        self.function_name = function_name
        self.docker = docker
        self.network_host = network_host
        self.config = config
        self.min_containers = min_containers
        self.max_containers = max_containers
        self.metrics_client = metrics_client
        self._containers: dict[str, ContainerInfo] = {}

    async def add_container(self, function_key: str) -> ContainerDetails:
        """Start a new container from the ``function_key`` image and add it to the pool."""
        details = ContainerDetails(
            container_id="",
            container_port=DEFAULT_CONTAINER_PORT,
            bind_port=random_port(),
            container_name=random_container_name(),
            timeout=0,
            docker_compose_network_host=self.network_host,
        )
        container_id = await asyncio.to_thread(
            runner, self.docker, function_key, copy.copy(details)
        )
        details.container_id = container_id

        info = ContainerInfo(container_id, details.container_name, details.container_port)
        self._containers[info.id] = info
        log.info(
            "Added container %s to pool for function %s",
            details.container_name, self.function_name,
        )
        return details

    async def _refresh(self, container_id: str, info: ContainerInfo) -> None:
        cfg = self.config
        try:
            cpu = await self.metrics_client.get_container_cpu_usage(container_id)
            memory = await self.metrics_client.get_container_memory_usage(container_id)
        except (InvokError, ValueError) as exc:
            log.warning("Failed to get stats for container %s: %s", container_id, exc)
        else:
            log.debug(
                "Updating container %s with CPU: %.2f%%, Memory: %.2f%%",
                info.name, cpu, memory,
            )
            info.update_metrics(
                cpu,
                memory,
                cfg.cpu_overload_threshold,
                cfg.memory_overload_threshold,
                cfg.cooldown_cpu_threshold,
            )
        log.debug("Updating container %s with status %s", info.name, info.status.value)
        if container_id in self._containers:
            self._containers[container_id] = info

    async def update_containers_metrics(self) -> None:
        """Fetch fresh metrics for every container and update their statuses."""
        if not self._containers:
            return
        log.debug(
            "Updating metrics for %d containers in pool for function %s",
            len(self._containers), self.function_name,
        )
        snapshot = [(cid, copy.copy(info)) for cid, info in self._containers.items()]
        results = await asyncio.gather(
            *(self._refresh(cid, info) for cid, info in snapshot),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                log.error("Container-update task failed: %s", result)
        log.debug("Finished updating metrics for pool for function %s", self.function_name)

    def get_healthiest_container(self) -> ContainerDetails | None:
        """The least recently used usable container, or an overloaded one as a last resort."""
        cooldown = self.config.cooldown_duration
        usable = [
            info
            for info in self._containers.values()
            if info.status is ContainerStatus.HEALTHY
            or (info.status is ContainerStatus.IDLE and info.is_within_safe_window(cooldown))
        ]
        if not usable:
            overloaded = next(
                (
                    info
                    for info in self._containers.values()
                    if info.status is ContainerStatus.OVERLOADED
                ),
                None,
            )
            if overloaded is None:
                return None
            log.warning(
                "No healthy containers available for %s, using overloaded container",
                self.function_name,
            )
            return to_container_details(overloaded)

        oldest = min(usable, key=lambda info: info.last_active)
        return to_container_details(oldest)

    def mark_container_active(self, container_id: str) -> None:
        """Record that a container has just been given a request."""
        info = self._containers.get(container_id)
        if info is not None:
            info.mark_active()

    def needs_scale_up(self) -> bool:
        """Whether every container is overloaded and there is room for another."""
        if len(self._containers) >= self.max_containers:
            return False
        return bool(self._containers) and all(
            info.status is ContainerStatus.OVERLOADED for info in self._containers.values()
        )

    def get_scaledown_candidates(self) -> list[str]:
        """Ids of containers idle for at least the cooldown duration."""
        cooldown = self.config.cooldown_duration
        return [
            cid
            for cid, info in self._containers.items()
            if info.is_eligible_for_scaledown(cooldown)
        ]

    async def remove_container(self, container_id: str) -> None:
        """Drop a container from the pool and remove it from the engine."""
        self._containers.pop(container_id, None)
        await asyncio.to_thread(clean_up, self.docker, container_id)
        log.info(
            "Removed container %s from pool for function %s",
            container_id, self.function_name,
        )

    def container_count(self) -> int:
        return len(self._containers)

    def get_status(self) -> dict[str, Any]:
        """A summary of the pool for monitoring and debugging."""
        snapshot = list(self._containers.values())
        total = len(snapshot)
        counts = {status: 0 for status in ContainerStatus}
        for info in snapshot:
            counts[info.status] += 1
        healthy = counts[ContainerStatus.HEALTHY]
        overloaded = counts[ContainerStatus.OVERLOADED]
        idle = counts[ContainerStatus.IDLE]

        now = time.monotonic()
        details = [
            {
                "id": info.id,
                "name": info.name,
                "port": info.container_port,
                "status": info.status.value,
                "last_active_ago_secs": int(max(0.0, now - info.last_active)),
                "idle_since_secs": (
                    None
                    if info.idle_since is None
                    else int(max(0.0, now - info.idle_since))
                ),
            }
            for info in snapshot
        ]

        utilization: float | int = (
            total / self.max_containers * 100.0 if self.max_containers > 0 else 0
        )

        return {
            "function_name": self.function_name,
            "total_containers": total,
            "healthy_containers": healthy,
            "overloaded_containers": overloaded,
            "idle_containers": idle,
            "min_containers": self.min_containers,
            "max_containers": self.max_containers,
            "containers": details,
            "capacity_utilization_percentage": utilization,
            "needs_scale_up": healthy == 0 and total < self.max_containers,
            "can_scale_down": idle > 0 and total > self.min_containers,
        }

    def to_persisted_state(self) -> PersistedPoolState:
        """The pool in its storable form."""
        return PersistedPoolState(
            function_name=self.function_name,
            containers=[
                PersistedContainerInfo.from_container_info(info)
                for info in self._containers.values()
            ],
            min_containers=self.min_containers,
            max_containers=self.max_containers,
            config=self.config,
            last_updated=int(time.time()),
        )

    @classmethod
    def from_persisted_state(
        cls,
        persisted: PersistedPoolState,
        docker: Any,
        network_host: str,
        metrics_client: Any,
    ) -> ContainerPool:
        """Rebuild a pool from its stored form."""
        pool = cls(
            persisted.function_name,
            docker,
            network_host,
            persisted.config,
            persisted.min_containers,
            persisted.max_containers,
            metrics_client,
        )
        for record in persisted.containers:
            info = record.to_container_info()
            pool._containers[info.id] = info
        log.info(
            "Restored pool for %s with %d containers from persisted state",
            pool.function_name, len(pool._containers),
        )
        return pool

    async def validate_and_sync_containers(self) -> None:
        """Drop containers that are no longer running or cannot be inspected."""
        invalid: list[str] = []
        for container_id in list(self._containers):
            try:
                running = await asyncio.to_thread(self.docker.is_running, container_id)
            except (InvokError, OSError) as exc:
                log.error(
                    "Failed to inspect container %s for function %s: %s, removing from pool",
                    container_id, self.function_name, exc,
                )
                invalid.append(container_id)
                continue
            if running:
                log.debug("Container %s validated as running", container_id)
            else:
                log.warning(
                    "Container %s for function %s is not running, removing from pool",
                    container_id, self.function_name,
                )
                invalid.append(container_id)

        for container_id in invalid:
            self._containers.pop(container_id, None)
        log.info(
            "Container validation complete for %s: %d containers remain",
            self.function_name, len(self._containers),
        )