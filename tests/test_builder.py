import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from invok.autoscaler import Autoscaler, AutoscalerConfig
from invok.builder import AutoscalingRuntime, AutoscalingRuntimeBuilder
from invok.containers import MonitoringConfig
from invok.errors import RedisError
from invok.persistence import AutoscalerPersistence
from invok.records import PersistenceConfig


class FailingRedis:
    async def get(self, key):
        raise RedisConnectionError("refused")

    async def keys(self, pattern):
        raise RedisConnectionError("refused")

    async def aclose(self):
        pass


class NullMetrics:
    async def get_container_cpu_usage(self, container_id):
        return 0.0

    async def get_container_memory_usage(self, container_id):
        return 0.0


def test_builder_pattern():
    runtime = AutoscalingRuntimeBuilder(
        docker_compose_network_host="test-network",
        min_containers_per_function=2,
        max_containers_per_function=20,
    ).build()

    config = runtime.autoscaler.config
    assert config.min_containers_per_function == 2
    assert config.max_containers_per_function == 20
    assert runtime.autoscaler.docker_compose_network_host == "test-network"


def test_builder_defaults():
    runtime = AutoscalingRuntimeBuilder(persistence_enabled=False).build()
    autoscaler = runtime.autoscaler

    assert autoscaler.docker_compose_network_host == "host.docker.internal"
    assert autoscaler.config.scale_check_interval == 10.0
    assert autoscaler.config.min_containers_per_function == 1
    assert autoscaler.config.max_containers_per_function == 10
    assert autoscaler.config.monitoring == MonitoringConfig(
        cpu_overload_threshold=80.0,
        memory_overload_threshold=80.0,
        cooldown_cpu_threshold=0.0,
        cooldown_duration=60.0,
        poll_interval=10.0,
    )
    assert autoscaler.metrics_client.config.prometheus_url == "http://prometheus:9090"
    assert autoscaler.metrics_client.config.query_timeout == 3.0
    assert autoscaler.persistence is None


def test_builder_persistence_settings():
    runtime = AutoscalingRuntimeBuilder(
        redis_url="redis://localhost:6380",
        persistence_key_prefix="scaler",
        persistence_batch_size=7,
    ).build()

    persistence = runtime.autoscaler.persistence
    assert persistence.config == PersistenceConfig(
        enabled=True,
        redis_url="redis://localhost:6380",
        key_prefix="scaler",
        batch_size=7,
    )


def test_poll_interval_follows_scale_check_interval():
    runtime = AutoscalingRuntimeBuilder(
        scale_check_interval=3.5, persistence_enabled=False
    ).build()
    assert runtime.autoscaler.config.monitoring.poll_interval == 3.5


@pytest.mark.asyncio
async def test_runtime_start_propagates_restore_failure():
    config = AutoscalerConfig(
        monitoring=MonitoringConfig(),
        min_containers_per_function=1,
        max_containers_per_function=5,
        scale_check_interval=10.0,
    )
    autoscaler = Autoscaler(object(), config, "net", NullMetrics())
    autoscaler.persistence = AutoscalerPersistence(PersistenceConfig(), client=FailingRedis())
    runtime = AutoscalingRuntime(autoscaler=autoscaler)

    with pytest.raises(RedisError):
        await runtime.start()

    assert autoscaler.pool_count() == 0