import time

import pytest

from invok.containers import ContainerInfo, ContainerStatus, MonitoringConfig
from invok.errors import SystemFailureError
from invok.pool import ContainerPool, to_container_details
from invok.records import PersistedContainerInfo, PersistedPoolState
from invok.runner import FULL_START_MSG


class FakeDocker:
    def __init__(self, running=None, fail_remove=False):
        self.created = []
        self.networks = []
        self.started = []
        self.removed = []
        self.running = running or {}
        self.fail_remove = fail_remove

    def create_container(self, name, image, container_port, bind_port, memory, cpu_period, cpu_quota):
        self.created.append((name, image, container_port, bind_port))
        return f"id-{name}"

    def connect_network(self, network, container_id):
        self.networks.append((network, container_id))

    def start_container(self, container_id):
        self.started.append(container_id)

    def attach(self, container_id):
        return iter([FULL_START_MSG])

    def remove_container(self, container_id, force):
        if self.fail_remove:
            raise SystemFailureError("boom")
        self.removed.append((container_id, force))

    def is_running(self, container_id):
        value = self.running[container_id]
        if isinstance(value, Exception):
            raise value
        return value


class FakeMetrics:
    def __init__(self, cpu=None, memory=None):
        self.cpu = cpu or {}
        self.memory = memory or {}

    async def get_container_cpu_usage(self, container_id):
        if container_id not in self.cpu:
            raise SystemFailureError("no data")
        return self.cpu[container_id]

    async def get_container_memory_usage(self, container_id):
        if container_id not in self.memory:
            raise SystemFailureError("no data")
        return self.memory[container_id]


def info(cid, status=ContainerStatus.HEALTHY, active_ago=0.0, idle_ago=None):
    now = time.monotonic()
    return ContainerInfo(
        id=cid,
        name=f"name-{cid}",
        container_port=8080,
        status=status,
        last_active=now - active_ago,
        idle_since=None if idle_ago is None else now - idle_ago,
    )


def make_pool(infos, docker=None, metrics=None, config=None, min_containers=1, max_containers=5):
    state = PersistedPoolState(
        function_name="fn",
        containers=[PersistedContainerInfo.from_container_info(i) for i in infos],
        min_containers=min_containers,
        max_containers=max_containers,
        config=config or MonitoringConfig(),
        last_updated=0,
    )
    return ContainerPool.from_persisted_state(
        state, docker or FakeDocker(), "net", metrics or FakeMetrics()
    )


def statuses(pool):
    return {c["id"]: c["status"] for c in pool.get_status()["containers"]}


@pytest.mark.asyncio
async def test_add_container_starts_and_registers():
    docker = FakeDocker()
    pool = ContainerPool("fn", docker, "net", MonitoringConfig(), 1, 5, FakeMetrics())
    details = await pool.add_container("image-x")
    assert details.container_port == 8080
    assert 8000 <= int(details.bind_port) <= 8999
    assert details.container_name.startswith("c-")
    assert details.container_id == f"id-{details.container_name}"
    assert details.docker_compose_network_host == "net"
    assert pool.container_count() == 1
    assert docker.created[0][1] == "image-x"
    assert docker.networks == [("net", details.container_id)]


def test_to_container_details_copies_identity():
    details = to_container_details(info("abc"))
    assert details.container_id == "abc"
    assert details.container_name == "name-abc"
    assert details.container_port == 8080
    assert details.bind_port == ""
    assert details.timeout == 0


def test_healthiest_is_least_recently_active():
    pool = make_pool([info("recent", active_ago=10), info("old", active_ago=100)])
    assert pool.get_healthiest_container().container_id == "old"


def test_healthiest_includes_fresh_idle_container():
    pool = make_pool([info("idle", status=ContainerStatus.IDLE, idle_ago=0)])
    assert pool.get_healthiest_container().container_id == "idle"


def test_healthiest_falls_back_to_overloaded():
    pool = make_pool(
        [
            info("busy", status=ContainerStatus.OVERLOADED),
            info("stale", status=ContainerStatus.IDLE, idle_ago=100),
        ]
    )
    assert pool.get_healthiest_container().container_id == "busy"


def test_healthiest_none_without_usable_containers():
    assert make_pool([]).get_healthiest_container() is None
    pool = make_pool([info("stale", status=ContainerStatus.IDLE, idle_ago=100)])
    assert pool.get_healthiest_container() is None


def test_mark_container_active_wakes_idle_container():
    pool = make_pool([info("a", status=ContainerStatus.IDLE, idle_ago=100)])
    pool.mark_container_active("a")
    pool.mark_container_active("missing")
    assert statuses(pool) == {"a": "Healthy"}
    assert pool.container_count() == 1


def test_needs_scale_up_rules():
    overloaded = [info(c, status=ContainerStatus.OVERLOADED) for c in ("a", "b")]
    assert make_pool(overloaded, max_containers=5).needs_scale_up() is True
    assert make_pool(overloaded, max_containers=2).needs_scale_up() is False
    assert make_pool([]).needs_scale_up() is False
    mixed = [info("a", status=ContainerStatus.OVERLOADED), info("b")]
    assert make_pool(mixed).needs_scale_up() is False


def test_scaledown_candidates_only_long_idle():
    pool = make_pool(
        [
            info("long", status=ContainerStatus.IDLE, idle_ago=100),
            info("short", status=ContainerStatus.IDLE, idle_ago=0),
            info("busy"),
        ]
    )
    assert pool.get_scaledown_candidates() == ["long"]


@pytest.mark.asyncio
async def test_remove_container_force_removes():
    docker = FakeDocker()
    pool = make_pool([info("a"), info("b")], docker=docker)
    await pool.remove_container("a")
    assert pool.container_count() == 1
    assert docker.removed == [("a", True)]


@pytest.mark.asyncio
async def test_remove_container_failure_raises():
    pool = make_pool([info("a")], docker=FakeDocker(fail_remove=True))
    with pytest.raises(SystemFailureError, match="Failed to remove container"):
        await pool.remove_container("a")
    assert pool.container_count() == 0


@pytest.mark.asyncio
async def test_update_metrics_sets_statuses():
    metrics = FakeMetrics(cpu={"hot": 90.0, "cold": 0.0}, memory={"hot": 10.0, "cold": 10.0})
    pool = make_pool([info("hot"), info("cold"), info("unknown")], metrics=metrics)
    await pool.update_containers_metrics()
    assert statuses(pool) == {"hot": "Overloaded", "cold": "Idle", "unknown": "Healthy"}


def test_status_summary():
    pool = make_pool(
        [
            info("a"),
            info("b", status=ContainerStatus.IDLE, idle_ago=0),
            info("c", status=ContainerStatus.OVERLOADED),
        ],
        min_containers=1,
        max_containers=6,
    )
    status = pool.get_status()
    assert status["function_name"] == "fn"
    assert status["total_containers"] == 3
    assert status["healthy_containers"] == 1
    assert status["idle_containers"] == 1
    assert status["overloaded_containers"] == 1
    assert status["capacity_utilization_percentage"] == pytest.approx(50.0)
    assert status["needs_scale_up"] is False
    assert status["can_scale_down"] is True


def test_status_of_empty_pool_without_capacity():
    pool = make_pool([], max_containers=0)
    status = pool.get_status()
    assert status["capacity_utilization_percentage"] == 0
    assert status["needs_scale_up"] is False
    assert status["containers"] == []


def test_persisted_state_round_trip():
    config = MonitoringConfig(cooldown_duration=45.0)
    pool = make_pool(
        [info("a"), info("b", status=ContainerStatus.OVERLOADED)],
        config=config,
        min_containers=2,
        max_containers=7,
    )
    state = pool.to_persisted_state()
    restored = ContainerPool.from_persisted_state(state, FakeDocker(), "net", FakeMetrics())
    assert restored.function_name == "fn"
    assert restored.config == config
    assert (restored.min_containers, restored.max_containers) == (2, 7)
    assert statuses(restored) == statuses(pool)
    assert state.last_updated > 0


@pytest.mark.asyncio
async def test_validate_drops_stopped_and_broken_containers():
    docker = FakeDocker(
        running={"up": True, "down": False, "broken": SystemFailureError("gone")}
    )
    pool = make_pool([info("up"), info("down"), info("broken")], docker=docker)
    await pool.validate_and_sync_containers()
    assert pool.container_count() == 1
    assert list(statuses(pool)) == ["up"]
    assert pool.get_healthiest_container().container_id == "up"