"""Data models for jobtrace.

Every persisted type round-trips through ``to_dict``/``from_dict`` using the
camelCase field names of the JSON documents written by the background
workers.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """One row of the provider's process table."""

    pid: int
    name: str
    command: str
    args: str
    started_at: int | None  # ms since epoch, None when unknown
    cpu_percent: float
    mem_percent: float


@dataclass(slots=True)
class TrackedProcess:
    """An in-flight process. Peaks are raised in place, never lowered."""

    pid: int
    name: str
    command: str
    args: str
    start_time: int
    peak_cpu_percent: float = 0.0
    peak_mem_percent: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "command": self.command,
            "args": self.args,
            "startTime": self.start_time,
            "peakCpuPercent": self.peak_cpu_percent,
            "peakMemPercent": self.peak_mem_percent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackedProcess":
        return cls(
            pid=int(data["pid"]),
            name=data.get("name") or "unknown",
            command=data.get("command") or "",
            args=data.get("args") or "",
            start_time=int(data["startTime"]),
            peak_cpu_percent=float(data.get("peakCpuPercent") or 0.0),
            peak_mem_percent=float(data.get("peakMemPercent") or 0.0),
        )


@dataclass(slots=True, frozen=True)
class CompletedProcess:
    """Immutable record of a finished process lifecycle."""

    pid: int
    name: str
    command: str
    args: str
    start_time: int
    end_time: int
    duration: int
    max_cpu: float
    max_mem: float
    forced: bool = False  # completed by job-end finalization

    @classmethod
    def from_tracked(
        cls, tracked: TrackedProcess, end_time: int, forced: bool = False
    ) -> "CompletedProcess":
        """Close a tracked process at ``end_time``."""
        return cls(
            pid=tracked.pid,
            name=tracked.name,
            command=tracked.command,
            args=tracked.args,
            start_time=tracked.start_time,
            end_time=end_time,
            duration=max(0, end_time - tracked.start_time),
            max_cpu=tracked.peak_cpu_percent,
            max_mem=tracked.peak_mem_percent,
            forced=forced,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "command": self.command,
            "args": self.args,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "maxCpu": self.max_cpu,
            "maxMem": self.max_mem,
            "forced": self.forced,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompletedProcess":
        return cls(
            pid=int(data["pid"]),
            name=data.get("name") or "unknown",
            command=data.get("command") or "",
            args=data.get("args") or "",
            start_time=int(data["startTime"]),
            end_time=int(data["endTime"]),
            duration=int(data["duration"]),
            max_cpu=float(data.get("maxCpu") or 0.0),
            max_mem=float(data.get("maxMem") or 0.0),
            forced=bool(data.get("forced", False)),
        )


@dataclass(slots=True, frozen=True)
class CpuStats:
    """CPU load point sample (percent)."""

    time: int
    total_load: float
    user_load: float
    system_load: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "totalLoad": self.total_load,
            "userLoad": self.user_load,
            "systemLoad": self.system_load,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CpuStats":
        return cls(
            time=int(data["time"]),
            total_load=float(data.get("totalLoad") or 0.0),
            user_load=float(data.get("userLoad") or 0.0),
            system_load=float(data.get("systemLoad") or 0.0),
        )


@dataclass(slots=True, frozen=True)
class MemoryStats:
    """Memory point sample (MB)."""

    time: int
    total_memory_mb: float
    active_memory_mb: float
    available_memory_mb: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "totalMemoryMb": self.total_memory_mb,
            "activeMemoryMb": self.active_memory_mb,
            "availableMemoryMb": self.available_memory_mb,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryStats":
        return cls(
            time=int(data["time"]),
            total_memory_mb=float(data.get("totalMemoryMb") or 0.0),
            active_memory_mb=float(data.get("activeMemoryMb") or 0.0),
            available_memory_mb=float(data.get("availableMemoryMb") or 0.0),
        )


@dataclass(slots=True, frozen=True)
class NetworkStats:
    """Network volume over one sampling interval (MB)."""

    time: int
    rx_mb: int
    tx_mb: int

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "rxMb": self.rx_mb, "txMb": self.tx_mb}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NetworkStats":
        return cls(
            time=int(data["time"]),
            rx_mb=int(data.get("rxMb") or 0),
            tx_mb=int(data.get("txMb") or 0),
        )


@dataclass(slots=True, frozen=True)
class DiskStats:
    """Disk I/O volume over one sampling interval (MB)."""

    time: int
    rx_mb: int
    wx_mb: int

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "rxMb": self.rx_mb, "wxMb": self.wx_mb}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiskStats":
        return cls(
            time=int(data["time"]),
            rx_mb=int(data.get("rxMb") or 0),
            wx_mb=int(data.get("wxMb") or 0),
        )


@dataclass(slots=True, frozen=True)
class DiskSizeStats:
    """Disk capacity point sample (MB)."""

    time: int
    available_size_mb: int
    used_size_mb: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "availableSizeMb": self.available_size_mb,
            "usedSizeMb": self.used_size_mb,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiskSizeStats":
        return cls(
            time=int(data["time"]),
            available_size_mb=int(data.get("availableSizeMb") or 0),
            used_size_mb=int(data.get("usedSizeMb") or 0),
        )


@dataclass(slots=True)
class ProcessState:
    """Persisted document of the process tracker."""

    tracked: list[TrackedProcess] = field(default_factory=list)
    completed: list[CompletedProcess] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tracked": [proc.to_dict() for proc in self.tracked],
            "completed": [proc.to_dict() for proc in self.completed],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessState":
        return cls(
            tracked=[TrackedProcess.from_dict(item) for item in data.get("tracked") or []],
            completed=[
                CompletedProcess.from_dict(item) for item in data.get("completed") or []
            ],
        )

    def is_empty(self) -> bool:
        return not self.tracked and not self.completed


@dataclass(slots=True)
class MetricHistory:
    """Persisted document of the metric histograms."""

    cpu: list[CpuStats] = field(default_factory=list)
    memory: list[MemoryStats] = field(default_factory=list)
    network: list[NetworkStats] = field(default_factory=list)
    disk: list[DiskStats] = field(default_factory=list)
    disk_size: list[DiskSizeStats] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu": [item.to_dict() for item in self.cpu],
            "memory": [item.to_dict() for item in self.memory],
            "network": [item.to_dict() for item in self.network],
            "disk": [item.to_dict() for item in self.disk],
            "diskSize": [item.to_dict() for item in self.disk_size],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricHistory":
        return cls(
            cpu=[CpuStats.from_dict(item) for item in data.get("cpu") or []],
            memory=[MemoryStats.from_dict(item) for item in data.get("memory") or []],
            network=[NetworkStats.from_dict(item) for item in data.get("network") or []],
            disk=[DiskStats.from_dict(item) for item in data.get("disk") or []],
            disk_size=[
                DiskSizeStats.from_dict(item) for item in data.get("diskSize") or []
            ],
        )

    def is_empty(self) -> bool:
        return not (self.cpu or self.memory or self.network or self.disk or self.disk_size)
