"""Building function runner images from a directory and a Dockerfile."""

from __future__ import annotations

import tarfile
from pathlib import Path

from invok.errors import SystemFailureError
from invok.runner import DockerClient

DOCKERFILE_NAME = "Dockerfile"
CONTEXT_TAR_NAME = "context.tar"


def create_build_context(path: str | Path, dockerfile_content: str) -> bytes:
    """Write the Dockerfile into ``path`` and return the directory as tar bytes."""
    path = Path(path)
    dockerfile_path = path / DOCKERFILE_NAME
    try:
        handle = dockerfile_path.open("w", encoding="utf-8")
    except OSError as exc:
        raise SystemFailureError(f"Failed to create Dockerfile: {exc}") from exc
    try:
        with handle:
            handle.write(dockerfile_content)
    except OSError as exc:
        raise SystemFailureError(f"Failed to write Dockerfile: {exc}") from exc

    tar_path = path / CONTEXT_TAR_NAME
    try:
        archive = tarfile.open(tar_path, "w")
    except OSError as exc:
        raise SystemFailureError(f"Failed to create tar: {exc}") from exc
    try:
        with archive:
            for file in sorted(p for p in path.rglob("*") if p.is_file()):
                if file == tar_path:
                    continue
                archive.add(file, arcname=file.relative_to(path).as_posix())
    except OSError as exc:
        raise SystemFailureError(f"Failed to write build context: {exc}") from exc

    try:
        return tar_path.read_bytes()
    except OSError as exc:
        raise SystemFailureError(f"Failed to read tar file: {exc}") from exc


def provisioning(
    path: str | Path,
    runner_type: str,
    dockerfile_content: str,
    docker: DockerClient | None = None,
) -> None:
    """Build an image tagged ``runner_type`` from ``path`` and the given Dockerfile."""
    docker = docker if docker is not None else DockerClient()
    create_build_context(path, dockerfile_content)
    for line in docker.build_image(Path(path), runner_type):
        print(f"Status: {line}")
    print("Environment provisioned (Docker image built successfully).")