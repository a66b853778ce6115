"""System information provider backed by psutil."""

import logging
import time
from dataclasses import dataclass

import psutil

from jobtrace.models import ProcessInfo

logger = logging.getLogger(__name__)

# Attributes to fetch in oneshot
PROCESS_ATTRS = [
    "pid",
    "name",
    "exe",
    "cmdline",
    "create_time",
    "cpu_percent",
    "memory_percent",
]


@dataclass(slots=True, frozen=True)
class CpuLoad:
    """CPU load split in percent."""

    total: float
    user: float
    system: float


@dataclass(slots=True, frozen=True)
class MemoryReading:
    """Memory counters in bytes."""

    total: int
    active: int
    available: int


@dataclass(slots=True, frozen=True)
class IoRates:
    """Read/write throughput in bytes per second."""

    read_per_sec: float
    write_per_sec: float


@dataclass(slots=True, frozen=True)
class DiskUsage:
    """Summed filesystem capacity in bytes."""

    total: int
    used: int


class _RateMeter:
    """Turns monotonically increasing byte counters into per-second rates."""

    def __init__(self) -> None:
        self._last: tuple[float, int, int] | None = None

    def update(self, read_bytes: int, write_bytes: int, now: float) -> IoRates:
        last = self._last
        self._last = (now, read_bytes, write_bytes)
        if last is None:
            return IoRates(0.0, 0.0)

        elapsed = now - last[0]
        if elapsed <= 0:
            return IoRates(0.0, 0.0)
        # Counters can wrap or reset (interface removed); never report negative rates
        read_delta = max(0, read_bytes - last[1])
        write_delta = max(0, write_bytes - last[2])
        return IoRates(read_delta / elapsed, write_delta / elapsed)


class SystemProvider:
    """
    Supplies the current process table and raw metric readings.

    Rates for network and disk I/O are derived from the counter delta
    between two successive calls, so the first call of each returns zero.
    """

    def __init__(self) -> None:
        self._network_meter = _RateMeter()
        self._disk_meter = _RateMeter()
        # Initialize CPU percent (first call returns 0.0)
        psutil.cpu_times_percent(interval=None)

    def current_process_list(self) -> list[ProcessInfo]:
        """
        Snapshot every visible process.

        Uses psutil.process_iter() with oneshot() context manager for efficiency.
        Processes that die mid-iteration or deny access are skipped.
        """
        processes: list[ProcessInfo] = []

        for proc in psutil.process_iter(attrs=PROCESS_ATTRS):
            try:
                with proc.oneshot():
                    info = proc.info

                    cmdline = info.get("cmdline") or []
                    name = info.get("name") or "unknown"
                    command = info.get("exe") or (cmdline[0] if cmdline else name)
                    create_time = info.get("create_time")

                    processes.append(
                        ProcessInfo(
                            pid=info.get("pid") or 0,
                            name=name,
                            command=command,
                            args=" ".join(cmdline[1:]),
                            started_at=int(create_time * 1000) if create_time else None,
                            cpu_percent=info.get("cpu_percent") or 0.0,
                            mem_percent=info.get("memory_percent") or 0.0,
                        )
                    )

            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return processes

    def cpu_load(self) -> CpuLoad:
        times = psutil.cpu_times_percent(interval=None)
        return CpuLoad(
            total=max(0.0, 100.0 - times.idle),
            user=times.user,
            system=times.system,
        )

    def memory(self) -> MemoryReading:
        mem = psutil.virtual_memory()
        # 'active' is not reported on Windows
        active = getattr(mem, "active", mem.used)
        return MemoryReading(total=mem.total, active=active, available=mem.available)

    def network_rates(self) -> IoRates:
        counters = psutil.net_io_counters()
        return self._network_meter.update(
            counters.bytes_recv, counters.bytes_sent, time.monotonic()
        )

    def disk_io_rates(self) -> IoRates:
        counters = psutil.disk_io_counters()
        if counters is None:
            # No physical disks visible (some containers)
            return IoRates(0.0, 0.0)
        return self._disk_meter.update(
            counters.read_bytes, counters.write_bytes, time.monotonic()
        )

    def disk_sizes(self) -> DiskUsage:
        total = 0
        used = 0
        seen: set[str] = set()
        for partition in psutil.disk_partitions(all=False):
            if partition.device in seen:
                continue
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except OSError:
                logger.debug("Skipping unreadable mountpoint %s", partition.mountpoint)
                continue
            seen.add(partition.device)
            total += usage.total
            used += usage.used
        return DiskUsage(total=total, used=used)
