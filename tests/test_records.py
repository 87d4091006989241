import json
import time

import pytest

from invok.containers import ContainerInfo, ContainerStatus, MonitoringConfig
from invok.errors import SerializationError
from invok.records import (
    PersistedContainerInfo,
    PersistedPoolState,
    PersistenceConfig,
    PersistenceMetadata,
    monitoring_config_from_dict,
    monitoring_config_to_dict,
)


def _pool_state() -> PersistedPoolState:
    return PersistedPoolState(
        function_name="test-function",
        containers=[
            PersistedContainerInfo(
                id="container-1",
                name="test-container-1",
                container_port=8080,
                status=ContainerStatus.HEALTHY,
                last_active_unix=1000,
                idle_since_unix=None,
            )
        ],
        min_containers=1,
        max_containers=5,
        config=MonitoringConfig(),
        last_updated=1703001234,
    )


def test_container_info_conversion():
    original = ContainerInfo(
        id="test-id",
        name="test-container",
        container_port=8080,
        status=ContainerStatus.HEALTHY,
        last_active=time.monotonic(),
        idle_since=None,
    )
    converted = PersistedContainerInfo.from_container_info(original).to_container_info()
    assert converted.id == original.id
    assert converted.name == original.name
    assert converted.container_port == original.container_port
    assert converted.status == original.status
    assert converted.idle_since is None


def test_container_info_conversion_with_idle():
    now = time.monotonic()
    original = ContainerInfo(
        id="test-id-idle",
        name="test-container-idle",
        container_port=3000,
        status=ContainerStatus.IDLE,
        last_active=now,
        idle_since=now,
    )
    converted = PersistedContainerInfo.from_container_info(original).to_container_info()
    assert converted.id == original.id
    assert converted.name == original.name
    assert converted.container_port == original.container_port
    assert converted.status == original.status
    assert converted.idle_since is not None
    assert abs(converted.idle_since - now) < 2.0


def test_conversion_keeps_elapsed_time():
    now = time.monotonic()
    original = ContainerInfo(
        id="a", name="b", container_port=1, status=ContainerStatus.IDLE,
        last_active=now - 100.0, idle_since=now - 40.0,
    )
    converted = PersistedContainerInfo.from_container_info(original).to_container_info()
    assert abs((time.monotonic() - converted.last_active) - 100.0) < 2.0
    assert abs((time.monotonic() - converted.idle_since) - 40.0) < 2.0


def test_future_time_clamped_to_now():
    persisted = PersistedContainerInfo(
        id="a", name="b", container_port=1, status=ContainerStatus.HEALTHY,
        last_active_unix=int(time.time()) + 10_000,
    )
    info = persisted.to_container_info()
    assert abs(time.monotonic() - info.last_active) < 1.0


def test_persistence_config_default():
    config = PersistenceConfig()
    assert config.enabled is True
    assert config.redis_url == "redis://localhost:6379"
    assert config.key_prefix == "autoscaler"
    assert config.batch_size == 50


def test_pool_state_serialization():
    serialized = _pool_state().to_json()
    assert "test-function" in serialized
    assert "container-1" in serialized

    deserialized = PersistedPoolState.from_json(serialized)
    assert deserialized.function_name == "test-function"
    assert len(deserialized.containers) == 1
    assert deserialized.containers[0].id == "container-1"
    assert deserialized.last_updated == 1703001234
    assert deserialized == _pool_state()


def test_pool_state_wire_format():
    data = json.loads(_pool_state().to_json())
    assert data["containers"][0]["status"] == "Healthy"
    assert data["containers"][0]["idle_since_unix"] is None
    assert data["config"]["cooldown_duration"] == {"secs": 30, "nanos": 0}
    assert data["config"]["poll_interval"] == {"secs": 2, "nanos": 0}


def test_monitoring_config_round_trip():
    config = MonitoringConfig(
        cpu_overload_threshold=80.0,
        memory_overload_threshold=75.0,
        cooldown_cpu_threshold=0.5,
        cooldown_duration=61.25,
        poll_interval=0.5,
    )
    encoded = monitoring_config_to_dict(config)
    assert encoded["cooldown_duration"] == {"secs": 61, "nanos": 250_000_000}
    assert monitoring_config_from_dict(encoded) == config


def test_status_names_round_trip():
    for status in ContainerStatus:
        persisted = PersistedContainerInfo("i", "n", 1, status, 5, 6)
        assert PersistedContainerInfo.from_dict(persisted.to_dict()) == persisted


def test_invalid_pool_json_raises():
    with pytest.raises(SerializationError, match="Failed to deserialize pool state"):
        PersistedPoolState.from_json("{not json")


def test_missing_field_raises():
    data = _pool_state().to_dict()
    del data["max_containers"]
    with pytest.raises(SerializationError):
        PersistedPoolState.from_dict(data)


def test_unknown_status_raises():
    data = _pool_state().to_dict()
    data["containers"][0]["status"] = "Sleeping"
    with pytest.raises(SerializationError):
        PersistedPoolState.from_dict(data)


def test_metadata_creation():
    metadata = PersistenceMetadata.create(42)
    assert metadata.version == "1.0"
    assert metadata.total_pools == 42
    assert metadata.last_cleanup > 0


def test_metadata_round_trip():
    metadata = PersistenceMetadata(version="1.0", last_cleanup=1703001234, total_pools=7)
    assert PersistenceMetadata.from_json(metadata.to_json()) == metadata


def test_metadata_invalid_raises():
    with pytest.raises(SerializationError, match="Failed to deserialize metadata"):
        PersistenceMetadata.from_json('{"version": "1.0"}')