"""Starting, watching and removing function containers."""

from __future__ import annotations

import math
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from invok.errors import ExecError, InvokError, SystemFailureError
from invok.utils import timeout as make_timeout

BYTES_IN_MB = 1024 * 1024
SIZE_256_MB = 256 * BYTES_IN_MB
NUM_CPUS = 2.0
FULL_START_MSG = "<<READY_TO_ACCEPT_CONN>>"
STARTUP_TIMEOUT_S = 1
EXPOSED_PORT = "8080/tcp"

T = TypeVar("T")


@dataclass
class ContainerDetails:
    """What is needed to start a container and reach it."""

    container_id: str
    container_port: int
    bind_port: str
    container_name: str
    timeout: float
    docker_compose_network_host: str


class DockerClient:
    """Drives the container engine through its command-line client."""

    def __init__(self, executable: str = "docker") -> None:
        self.executable = executable

    def _run(self, *args: str) -> str:
        try:
            result = subprocess.run(
                [self.executable, *args],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise SystemFailureError(f"cannot run {self.executable}: {exc}") from exc
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise SystemFailureError(detail or f"exit status {result.returncode}")
        return result.stdout

    def create_container(
        self,
        name: str,
        image: str,
        container_port: int,
        bind_port: str,
        memory: int,
        cpu_period: int,
        cpu_quota: int,
    ) -> str:
        """Create an auto-removing container and return its id."""
        output = self._run(
            "create",
            "--name", name,
            "--tty",
            "--attach", "stdout",
            "--attach", "stderr",
            "--expose", EXPOSED_PORT,
            "--publish", f"{bind_port}:{container_port}/tcp",
            "--memory", str(memory),
            "--cpu-period", str(cpu_period),
            "--cpu-quota", str(cpu_quota),
            "--rm",
            image,
        )
        lines = output.strip().splitlines()
        if not lines:
            raise SystemFailureError("container engine returned no container id")
        return lines[-1].strip()

    def connect_network(self, network: str, container_id: str) -> None:
        self._run("network", "connect", network, container_id)

    def start_container(self, container_id: str) -> None:
        self._run("start", container_id)

    def attach(self, container_id: str) -> Iterator[str]:
        """Stream the container's combined output as decoded lines."""
        try:
            proc = subprocess.Popen(
                [self.executable, "attach", "--no-stdin", container_id],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            raise SystemFailureError(f"cannot run {self.executable}: {exc}") from exc
        return _stream_lines(proc)

    def remove_container(self, container_id: str, force: bool) -> None:
        args = ["rm"]
        if force:
            args.append("--force")
        self._run(*args, container_id)

    def is_running(self, container_id: str) -> bool:
        """Whether the container exists and is running; raises if inspection fails."""
        output = self._run("inspect", "--format", "{{.State.Running}}", container_id)
        return output.strip().lower() == "true"

    def build_image(self, context_dir: str | Path, tag: str) -> Iterator[str]:
        """Build an image, yielding each line of build output."""
        try:
            proc = subprocess.Popen(
                [self.executable, "build", "--rm", "-t", tag, str(context_dir)],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            raise ExecError(f"Build stream error: {exc}") from exc
        tail: list[str] = []
        for line in _stream_lines(proc):
            tail = (tail + [line])[-5:]
            yield line
        if proc.returncode != 0:
            raise ExecError("Docker build error: " + " ".join(tail).strip())


def _stream_lines(proc: subprocess.Popen) -> Iterator[str]:
    assert proc.stdout is not None
    with proc.stdout:
        for raw in proc.stdout:
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")
    proc.wait()


def _wrapped(prefix: str, call: Callable[..., T], *args, **kwargs) -> T:
    try:
        return call(*args, **kwargs)
    except InvokError as exc:
        raise SystemFailureError(f"{prefix}: {exc.message}") from exc


def cpu_limits(cpus: float) -> tuple[int, int]:
    """Return ``(cpu_period, cpu_quota)`` in microseconds for ``cpus`` cores."""
    cpu_period = 100_000
    raw = cpu_period * cpus
    cpu_quota = int(math.copysign(math.floor(abs(raw) + 0.5), raw))
    return cpu_period, cpu_quota


def _watch_output(output: Iterator[str], ready: threading.Event) -> None:
    try:
        for text in output:
            print(f"Container STDOUT: >>> {text}")
            if FULL_START_MSG in text:
                ready.set()
    except (OSError, InvokError):
        return


def _timed_cleanup(docker, container_id: str, seconds: float, start_time: float) -> None:
    event, trigger = make_timeout(seconds)
    trigger()
    try:
        monitor_container_process(docker, container_id, event)
    except InvokError as exc:
        print(f"Failed to monitor child process: {exc}", file=sys.stderr)
        return
    elapsed = time.monotonic() - start_time
    print(f"Execution took {elapsed:.2f} seconds.")


def runner(docker, image_name: str, details: ContainerDetails) -> str:
    """Create, connect and start a container; return its id once it is up.

    Waits up to ``STARTUP_TIMEOUT_S`` for the ready marker in the output. When
    ``details.timeout`` is positive the container is removed after that many seconds.
    """
    docker = docker if docker is not None else DockerClient()
    start_time = time.monotonic()
    cpu_period, cpu_quota = cpu_limits(NUM_CPUS)

    container_id = _wrapped(
        "Failed to create container",
        docker.create_container,
        details.container_name,
        image_name,
        details.container_port,
        details.bind_port,
        SIZE_256_MB,
        cpu_period,
        cpu_quota,
    )
    _wrapped(
        "Failed to connect the container to the docker compose network",
        docker.connect_network,
        details.docker_compose_network_host,
        container_id,
    )
    _wrapped("Failed to start container", docker.start_container, container_id)
    output = _wrapped("Failed to attach to container", docker.attach, container_id)

    ready = threading.Event()
    threading.Thread(target=_watch_output, args=(output, ready), daemon=True).start()

    if details.timeout > 0:
        threading.Thread(
            target=_timed_cleanup,
            args=(docker, container_id, details.timeout, start_time),
            daemon=True,
        ).start()

    if not ready.wait(STARTUP_TIMEOUT_S):
        print(f"Container startup timeout after {STARTUP_TIMEOUT_S} s")

    return container_id


def monitor_container_process(docker, container_id: str, timeout_event: threading.Event) -> None:
    """Wait for the timeout signal, then remove the container."""
    timeout_event.wait()
    clean_up(docker, container_id)


def clean_up(docker, container_id: str) -> None:
    """Remove a container forcefully."""
    _wrapped("Failed to remove container", docker.remove_container, container_id, force=True)