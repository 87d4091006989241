"""Container CPU and memory usage read from Prometheus, with a short-lived cache."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any

import httpx

from invok.errors import SystemFailureError

log = logging.getLogger(__name__)

SHORT_ID_LEN = 12


@dataclass(frozen=True)
class MetricsConfig:
    """Where Prometheus lives and how it is queried; times are in seconds."""

    prometheus_url: str = "http://prometheus:9090"
    query_timeout: float = 5.0
    cache_ttl: float = 5.0
    max_retries: int = 3


@dataclass(frozen=True)
class _CachedMetric:
    value: float
    timestamp: float


def _short_id(container_id: str) -> str:
    if len(container_id) < SHORT_ID_LEN:
        raise ValueError(
            f"container id {container_id!r} is shorter than {SHORT_ID_LEN} characters"
        )
    return container_id[:SHORT_ID_LEN]


def _cpu_query(short_id: str) -> str:
    return (
        f'rate(container_cpu_usage_seconds_total{{id=~"/docker/{short_id}.*"}}[30s]) * 100'
    )


def _memory_query(short_id: str) -> str:
    return (
        f'(container_memory_usage_bytes{{id=~"/docker/{short_id}.*"}} / '
        f'container_spec_memory_limit_bytes{{id=~"/docker/{short_id}.*"}}) * 100'
    )


def _parse_response(payload: Any) -> tuple[str, list[Any]]:
    """Check the shape of a query response and return its status and results."""
    if not isinstance(payload, dict):
        raise TypeError("response is not an object")
    status = payload["status"]
    if not isinstance(status, str):
        raise TypeError("status is not a string")
    data = payload["data"]
    if not isinstance(data, dict):
        raise TypeError("data is not an object")
    results = data["result"]
    if not isinstance(results, list):
        raise TypeError("result is not a list")
    for item in results:
        value = item["value"]
        if not (isinstance(value, list) and len(value) == 2):
            raise TypeError("value is not a [timestamp, value] pair")
        timestamp, text = value
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise TypeError("timestamp is not a number")
        if not isinstance(text, str):
            raise TypeError("metric value is not a string")
    return status, results


class MetricsClient:
    """Fetches container metrics from Prometheus."""

    def __init__(
        self,
        config: MetricsConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config if config is not None else MetricsConfig()
        self._http = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=self.config.query_timeout)
        )
        self._cpu_cache: dict[str, _CachedMetric] = {}
        self._memory_cache: dict[str, _CachedMetric] = {}

    async def __aenter__(self) -> MetricsClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    @property
    def _query_url(self) -> str:
        return f"{self.config.prometheus_url}/api/v1/query"

    async def get_container_cpu_usage(self, container_id: str) -> float:
        """CPU usage of a container in percent."""
        cached = self.cached_cpu(container_id)
        if cached is not None:
            log.debug("Using cached CPU metric for container %s", container_id)
            return cached
        result = await self._query_prometheus(_cpu_query(_short_id(container_id)))
        self.cache_cpu(container_id, result)
        log.debug("Fetched CPU usage for %s: %.2f%%", container_id, result)
        return result

    async def get_container_memory_usage(self, container_id: str) -> float:
        """Memory usage of a container as a percentage of its limit."""
        cached = self.cached_memory(container_id)
        if cached is not None:
            log.debug("Using cached memory metric for container %s", container_id)
            return cached
        result = await self._query_prometheus(_memory_query(_short_id(container_id)))
        self.cache_memory(container_id, result)
        log.debug("Fetched memory usage for %s: %.2f%%", container_id, result)
        return result

    async def _query_prometheus(self, query: str) -> float:
        retries = self.config.max_retries
        for attempt in range(1, retries + 1):
            try:
                return await self._execute_query(query)
            except SystemFailureError as exc:
                if attempt == retries:
                    raise
                log.warning(
                    "Prometheus query attempt %d failed: %s, retrying...", attempt, exc
                )
                await asyncio.sleep(0.1 * attempt)
        raise SystemFailureError("All Prometheus query attempts failed")

    async def _execute_query(self, query: str) -> float:
        try:
            response = await self._http.get(self._query_url, params={"query": query})
        except httpx.HTTPError as exc:
            raise SystemFailureError(f"Failed to query Prometheus: {exc}") from exc

        if not response.is_success:
            raise SystemFailureError(
                "Prometheus query failed with status: "
                f"{response.status_code} {response.reason_phrase}".rstrip()
            )

        try:
            status, results = _parse_response(response.json())
        except (ValueError, KeyError, TypeError) as exc:
            raise SystemFailureError(
                f"Failed to parse Prometheus response: {exc}"
            ) from exc

        if status != "success":
            raise SystemFailureError(f"Prometheus query was not successful: {status}")

        if not results:
            log.debug("No metrics found for query: %s", query)
            return 0.0

        text = results[0]["value"][1]
        try:
            value = float(text)
        except ValueError as exc:
            raise SystemFailureError(f"Failed to parse metric value: {exc}") from exc

        if math.isnan(value) or math.isinf(value):
            log.debug("Received NaN/Infinite value from Prometheus, returning 0.0")
            return 0.0
        return value

    def _lookup(self, cache: dict[str, _CachedMetric], container_id: str) -> float | None:
        cached = cache.get(container_id)
        if cached is None:
            return None
        if time.monotonic() - cached.timestamp < self.config.cache_ttl:
            return cached.value
        return None

    def cached_cpu(self, container_id: str) -> float | None:
        """The cached CPU value if it is still fresh."""
        return self._lookup(self._cpu_cache, container_id)

    def cached_memory(self, container_id: str) -> float | None:
        """The cached memory value if it is still fresh."""
        return self._lookup(self._memory_cache, container_id)

    def cache_cpu(self, container_id: str, value: float) -> None:
        self._cpu_cache[container_id] = _CachedMetric(value, time.monotonic())

    def cache_memory(self, container_id: str, value: float) -> None:
        self._memory_cache[container_id] = _CachedMetric(value, time.monotonic())

    async def health_check(self) -> bool:
        """Whether Prometheus answers a trivial query successfully."""
        try:
            response = await self._http.get(self._query_url, params={"query": "up"})
        except httpx.HTTPError:
            return False
        return response.is_success