"""Assembling an autoscaling runtime from settings with sensible defaults."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from invok.autoscaler import Autoscaler, AutoscalerConfig
from invok.containers import MonitoringConfig
from invok.metrics_client import MetricsClient, MetricsConfig
from invok.records import PersistenceConfig
from invok.runner import DockerClient

PROMETHEUS_URL = "http://prometheus:9090"


@dataclass
class AutoscalingRuntime:
    """The running autoscaler and its entry point."""

    autoscaler: Autoscaler

    async def start(self) -> None:
        await self.autoscaler.start()


@dataclass
class AutoscalingRuntimeBuilder:
    """Settings for an autoscaling runtime; times are in seconds, thresholds in percent."""

    docker_compose_network_host: str = "host.docker.internal"
    scale_check_interval: float = 10.0
    min_containers_per_function: int = 1
    max_containers_per_function: int = 10
    persistence_enabled: bool = True
    redis_url: str = "redis://localhost:6379"
    persistence_key_prefix: str = "autoscaler"
    persistence_batch_size: int = 50
    cpu_overload_threshold: float = 80.0
    memory_overload_threshold: float = 80.0
    cooldown_cpu_threshold: float = 0.0
    cooldown_duration: float = 60.0
    docker: Any = None

    def build(self) -> AutoscalingRuntime:
        """Create the autoscaler with its engine, metrics and persistence clients."""
        persistence_config = PersistenceConfig(
            enabled=self.persistence_enabled,
            redis_url=self.redis_url,
            key_prefix=self.persistence_key_prefix,
            batch_size=self.persistence_batch_size,
        )
        docker = self.docker if self.docker is not None else DockerClient()
        metrics_client = MetricsClient(
            MetricsConfig(
                prometheus_url=PROMETHEUS_URL,
                query_timeout=3.0,
                cache_ttl=5.0,
                max_retries=3,
            )
        )
        monitoring = MonitoringConfig(
            cpu_overload_threshold=self.cpu_overload_threshold,
            memory_overload_threshold=self.memory_overload_threshold,
            cooldown_cpu_threshold=self.cooldown_cpu_threshold,
            cooldown_duration=self.cooldown_duration,
            poll_interval=self.scale_check_interval,
        )
        config = AutoscalerConfig(
            monitoring=monitoring,
            min_containers_per_function=self.min_containers_per_function,
            max_containers_per_function=self.max_containers_per_function,
            scale_check_interval=self.scale_check_interval,
        )
        autoscaler = Autoscaler(
            docker, config, self.docker_compose_network_host, metrics_client
        ).with_persistence(persistence_config)
        return AutoscalingRuntime(autoscaler=autoscaler)