"""Per-container state used to decide where requests go and when to scale."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

log = logging.getLogger(__name__)

SAFE_WINDOW_SECS = 5.0


class ContainerStatus(Enum):
    """Load state of a container."""

    HEALTHY = "Healthy"
    OVERLOADED = "Overloaded"
    IDLE = "Idle"


@dataclass
class ContainerInfo:
    """A running container and its load state; times are monotonic seconds."""

    id: str
    name: str
    container_port: int
    status: ContainerStatus = ContainerStatus.HEALTHY
    last_active: float = field(default_factory=time.monotonic)
    idle_since: float | None = None

    def update_metrics(
        self,
        cpu_usage: float,
        memory_usage: float,
        cpu_threshold: float,
        memory_threshold: float,
        cooldown_cpu_threshold: float,
    ) -> None:
        """Set the status from fresh CPU and memory percentages."""
        old_status = self.status
        if cpu_usage > cpu_threshold or memory_usage > memory_threshold:
            self.status = ContainerStatus.OVERLOADED
            self.idle_since = None
        elif cpu_usage <= cooldown_cpu_threshold:
            if self.status is not ContainerStatus.IDLE:
                self.idle_since = time.monotonic()
                self.status = ContainerStatus.IDLE
        else:
            self.status = ContainerStatus.HEALTHY
            self.idle_since = None

        if old_status is not self.status:
            log.debug(
                "Container %s status changed from %s to %s",
                self.name, old_status.value, self.status.value,
            )

    def mark_active(self) -> None:
        """Record that the container just handled a request."""
        self.last_active = time.monotonic()
        if self.status is ContainerStatus.IDLE:
            self.status = ContainerStatus.HEALTHY
            self.idle_since = None

    def _idle_for(self) -> float | None:
        if self.idle_since is None:
            return None
        return time.monotonic() - self.idle_since

    def is_eligible_for_scaledown(self, cooldown_duration: float) -> bool:
        """Whether the container has been idle for at least ``cooldown_duration`` seconds."""
        idle_for = self._idle_for()
        if idle_for is None:
            return False
        return self.status is ContainerStatus.IDLE and idle_for >= cooldown_duration

    def is_within_safe_window(self, cooldown_duration: float) -> bool:
        """Whether an idle container is still far enough from removal to take requests."""
        idle_for = self._idle_for()
        if idle_for is None:
            return False
        return (
            self.status is ContainerStatus.IDLE
            and idle_for <= cooldown_duration - SAFE_WINDOW_SECS
        )


@dataclass(frozen=True)
class MonitoringConfig:
    """Thresholds (percent) and timings (seconds) for container monitoring."""

    cpu_overload_threshold: float = 70.0
    memory_overload_threshold: float = 70.0
    cooldown_cpu_threshold: float = 10.0
    cooldown_duration: float = 30.0
    poll_interval: float = 2.0