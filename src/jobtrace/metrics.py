"""Metric histogram accumulation."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from jobtrace.models import (
    CpuStats,
    DiskSizeStats,
    DiskStats,
    MemoryStats,
    MetricHistory,
    NetworkStats,
)
from jobtrace.provider import CpuLoad, DiskUsage, IoRates, MemoryReading, SystemProvider
from jobtrace.scheduler import now_ms

logger = logging.getLogger(__name__)

MB = 1024 * 1024

T = TypeVar("T")
D = TypeVar("D")


def rate_to_mb(bytes_per_sec: float, interval_ms: int) -> int:
    """Volume in whole MB moved at ``bytes_per_sec`` during ``interval_ms``."""
    return math.floor(bytes_per_sec * (interval_ms / 1000) / 1024 / 1024)


@dataclass(slots=True)
class StatCollector(Generic[T, D]):
    """Fetch/transform pair feeding one category's history."""

    name: str
    fetch: Callable[[], D]
    transform: Callable[[D, int, int], T]
    history: list[T] = field(default_factory=list)

    def collect(self, stat_time: int, interval_ms: int) -> bool:
        """Append one sample; a failing provider call only skips this category."""
        try:
            data = self.fetch()
            self.history.append(self.transform(data, stat_time, interval_ms))
            return True
        except Exception:
            logger.warning("Unable to collect %s stats", self.name, exc_info=True)
            return False


def cpu_transform(data: CpuLoad, stat_time: int, interval_ms: int) -> CpuStats:
    return CpuStats(
        time=stat_time,
        total_load=data.total,
        user_load=data.user,
        system_load=data.system,
    )


def memory_transform(data: MemoryReading, stat_time: int, interval_ms: int) -> MemoryStats:
    return MemoryStats(
        time=stat_time,
        total_memory_mb=data.total / MB,
        active_memory_mb=data.active / MB,
        available_memory_mb=data.available / MB,
    )


def network_transform(data: IoRates, stat_time: int, interval_ms: int) -> NetworkStats:
    return NetworkStats(
        time=stat_time,
        rx_mb=rate_to_mb(data.read_per_sec, interval_ms),
        tx_mb=rate_to_mb(data.write_per_sec, interval_ms),
    )


def disk_transform(data: IoRates, stat_time: int, interval_ms: int) -> DiskStats:
    return DiskStats(
        time=stat_time,
        rx_mb=rate_to_mb(data.read_per_sec, interval_ms),
        wx_mb=rate_to_mb(data.write_per_sec, interval_ms),
    )


def disk_size_transform(data: DiskUsage, stat_time: int, interval_ms: int) -> DiskSizeStats:
    return DiskSizeStats(
        time=stat_time,
        available_size_mb=math.floor((data.total - data.used) / MB),
        used_size_mb=math.floor(data.used / MB),
    )


class MetricAccumulator:
    """
    Keeps one append-only history per metric category.

    Each ``collect()`` stamps all categories with the same time and passes the
    wall-clock interval since the previous collect (0 on the first one) to
    the rate-to-volume conversions.
    """

    def __init__(
        self,
        provider: SystemProvider,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._clock = clock
        self._last_collect_time = 0

        self.cpu: StatCollector[CpuStats, CpuLoad] = StatCollector("cpu", provider.cpu_load, cpu_transform)
        self.memory: StatCollector[MemoryStats, MemoryReading] = StatCollector(
            "memory", provider.memory, memory_transform
        )
        self.network: StatCollector[NetworkStats, IoRates] = StatCollector(
            "network", provider.network_rates, network_transform
        )
        self.disk: StatCollector[DiskStats, IoRates] = StatCollector(
            "disk", provider.disk_io_rates, disk_transform
        )
        self.disk_size: StatCollector[DiskSizeStats, DiskUsage] = StatCollector(
            "disk_size", provider.disk_sizes, disk_size_transform
        )

    @classmethod
    def from_history(
        cls,
        provider: SystemProvider,
        history: MetricHistory,
        clock: Callable[[], int] = now_ms,
    ) -> "MetricAccumulator":
        """Resume accumulating after a persisted history."""
        accumulator = cls(provider, clock=clock)
        accumulator.cpu.history = list(history.cpu)
        accumulator.memory.history = list(history.memory)
        accumulator.network.history = list(history.network)
        accumulator.disk.history = list(history.disk)
        accumulator.disk_size.history = list(history.disk_size)
        last_times = [c.history[-1].time for c in accumulator.collectors if c.history]
        accumulator._last_collect_time = max(last_times, default=0)
        return accumulator

    @property
    def collectors(self) -> tuple[StatCollector, ...]:
        return (self.cpu, self.memory, self.network, self.disk, self.disk_size)

    def collect(self, now: int | None = None) -> int:
        """Sample every category once; returns how many succeeded."""
        stat_time = self._clock() if now is None else now
        # Keep histories non-decreasing even if the wall clock steps back
        stat_time = max(stat_time, self._last_collect_time)
        interval_ms = stat_time - self._last_collect_time if self._last_collect_time else 0
        self._last_collect_time = stat_time

        succeeded = sum(1 for collector in self.collectors if collector.collect(stat_time, interval_ms))
        logger.debug("Collected %d/%d metric categories", succeeded, len(self.collectors))
        return succeeded

    def history(self) -> MetricHistory:
        return MetricHistory(
            cpu=list(self.cpu.history),
            memory=list(self.memory.history),
            network=list(self.network.history),
            disk=list(self.disk.history),
            disk_size=list(self.disk_size.history),
        )
