"""Serializable forms of autoscaler state kept in Redis."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

from invok.containers import ContainerInfo, ContainerStatus, MonitoringConfig
from invok.errors import SerializationError

_NANOS = 1_000_000_000


@dataclass(frozen=True)
class PersistenceConfig:
    """Where and how autoscaler state is stored."""

    enabled: bool = True
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "autoscaler"
    batch_size: int = 50


def _int(data: dict, key: str, *, minimum: int | None = 0) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{key} must be an integer")
    if minimum is not None and value < minimum:
        raise ValueError(f"{key} must be at least {minimum}")
    return value


def _number(data: dict, key: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} must be a number")
    return float(value)


def _str(data: dict, key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise TypeError(f"{what} must be an object")
    return value


def _duration_to_dict(seconds: float) -> dict[str, int]:
    secs = int(seconds)
    nanos = round((seconds - secs) * _NANOS)
    if nanos >= _NANOS:
        secs, nanos = secs + 1, nanos - _NANOS
    return {"secs": secs, "nanos": nanos}


def _duration_from_dict(value: Any) -> float:
    data = _object(value, "duration")
    return _int(data, "secs") + _int(data, "nanos") / _NANOS


def monitoring_config_to_dict(config: MonitoringConfig) -> dict[str, Any]:
    """Encode a monitoring config with durations as ``{"secs", "nanos"}``."""
    return {
        "cpu_overload_threshold": config.cpu_overload_threshold,
        "memory_overload_threshold": config.memory_overload_threshold,
        "cooldown_cpu_threshold": config.cooldown_cpu_threshold,
        "cooldown_duration": _duration_to_dict(config.cooldown_duration),
        "poll_interval": _duration_to_dict(config.poll_interval),
    }


def monitoring_config_from_dict(data: Any) -> MonitoringConfig:
    """Decode what ``monitoring_config_to_dict`` produced."""
    data = _object(data, "config")
    return MonitoringConfig(
        cpu_overload_threshold=_number(data, "cpu_overload_threshold"),
        memory_overload_threshold=_number(data, "memory_overload_threshold"),
        cooldown_cpu_threshold=_number(data, "cooldown_cpu_threshold"),
        cooldown_duration=_duration_from_dict(data["cooldown_duration"]),
        poll_interval=_duration_from_dict(data["poll_interval"]),
    )


@dataclass
class PersistedContainerInfo:
    """A container record with wall-clock (Unix seconds) times."""

    id: str
    name: str
    container_port: int
    status: ContainerStatus
    last_active_unix: int
    idle_since_unix: int | None = None

    @classmethod
    def from_container_info(cls, container: ContainerInfo) -> PersistedContainerInfo:
        now_mono = time.monotonic()
        now_unix = time.time()

        def to_unix(instant: float) -> int:
            return int(now_unix - (now_mono - instant))

        return cls(
            id=container.id,
            name=container.name,
            container_port=container.container_port,
            status=container.status,
            last_active_unix=to_unix(container.last_active),
            idle_since_unix=(
                None if container.idle_since is None else to_unix(container.idle_since)
            ),
        )

    def to_container_info(self) -> ContainerInfo:
        """Rebuild a live record; times in the future are clamped to now."""
        now_mono = time.monotonic()
        now_unix = int(time.time())

        def to_instant(unix: int) -> float:
            return now_mono - max(0, now_unix - unix)

        return ContainerInfo(
            id=self.id,
            name=self.name,
            container_port=self.container_port,
            status=self.status,
            last_active=to_instant(self.last_active_unix),
            idle_since=(
                None if self.idle_since_unix is None else to_instant(self.idle_since_unix)
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "container_port": self.container_port,
            "status": self.status.value,
            "last_active_unix": self.last_active_unix,
            "idle_since_unix": self.idle_since_unix,
        }

    @classmethod
    def from_dict(cls, data: Any) -> PersistedContainerInfo:
        data = _object(data, "container")
        idle = data.get("idle_since_unix")
        if idle is not None:
            idle = _int(data, "idle_since_unix", minimum=None)
        return cls(
            id=_str(data, "id"),
            name=_str(data, "name"),
            container_port=_int(data, "container_port"),
            status=ContainerStatus(_str(data, "status")),
            last_active_unix=_int(data, "last_active_unix", minimum=None),
            idle_since_unix=idle,
        )


@dataclass
class PersistedPoolState:
    """The stored state of one function's container pool."""

    function_name: str
    containers: list[PersistedContainerInfo]
    min_containers: int
    max_containers: int
    config: MonitoringConfig
    last_updated: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "function_name": self.function_name,
            "containers": [c.to_dict() for c in self.containers],
            "min_containers": self.min_containers,
            "max_containers": self.max_containers,
            "config": monitoring_config_to_dict(self.config),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Any) -> PersistedPoolState:
        try:
            data = _object(data, "pool state")
            containers = data["containers"]
            if not isinstance(containers, list):
                raise TypeError("containers must be a list")
            return cls(
                function_name=_str(data, "function_name"),
                containers=[PersistedContainerInfo.from_dict(c) for c in containers],
                min_containers=_int(data, "min_containers"),
                max_containers=_int(data, "max_containers"),
                config=monitoring_config_from_dict(data["config"]),
                last_updated=_int(data, "last_updated", minimum=None),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"Failed to deserialize pool state: {exc}") from exc

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> PersistedPoolState:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise SerializationError(f"Failed to deserialize pool state: {exc}") from exc
        return cls.from_dict(data)


@dataclass
class PersistenceMetadata:
    """Bookkeeping about the stored state as a whole."""

    version: str
    last_cleanup: int
    total_pools: int
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def create(cls, total_pools: int) -> PersistenceMetadata:
        return cls(version="1.0", last_cleanup=int(time.time()), total_pools=total_pools)

    def to_json(self) -> str:
        return json.dumps(
            {
                "version": self.version,
                "last_cleanup": self.last_cleanup,
                "total_pools": self.total_pools,
            }
        )

    @classmethod
    def from_json(cls, text: str) -> PersistenceMetadata:
        try:
            data = _object(json.loads(text), "metadata")
            return cls(
                version=_str(data, "version"),
                last_cleanup=_int(data, "last_cleanup", minimum=None),
                total_pools=_int(data, "total_pools"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"Failed to deserialize metadata: {exc}") from exc