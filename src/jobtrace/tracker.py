"""Process lifecycle tracking from successive process-table snapshots."""

import logging
from collections.abc import Iterable

from jobtrace.models import CompletedProcess, ProcessInfo, ProcessState, TrackedProcess

logger = logging.getLogger(__name__)


class ProcessTracker:
    """
    Differencer turning process-table snapshots into completed lifecycles.

    Each PID moves absent -> tracked -> completed. A PID disappearing from a
    snapshot is completed at that observation's time; a PID number showing
    up again afterwards is a brand new tracked process.
    """

    def __init__(self) -> None:
        self._tracked: dict[int, TrackedProcess] = {}
        self._completed: list[CompletedProcess] = []

    @classmethod
    def from_state(cls, state: ProcessState) -> "ProcessTracker":
        """Resume tracking from a persisted document."""
        tracker = cls()
        for proc in state.tracked:
            tracker._tracked[proc.pid] = proc
        tracker._completed = list(state.completed)
        return tracker

    @property
    def tracked(self) -> dict[int, TrackedProcess]:
        return dict(self._tracked)

    @property
    def completed(self) -> list[CompletedProcess]:
        return list(self._completed)

    def observe(self, processes: Iterable[ProcessInfo], now: int) -> list[CompletedProcess]:
        """
        Apply one snapshot taken at ``now``.

        Returns the processes completed by this observation.
        """
        current_pids: set[int] = set()

        for proc in processes:
            if not proc.pid:
                continue
            current_pids.add(proc.pid)

            tracked = self._tracked.get(proc.pid)
            if tracked is not None:
                tracked.peak_cpu_percent = max(tracked.peak_cpu_percent, proc.cpu_percent or 0.0)
                tracked.peak_mem_percent = max(tracked.peak_mem_percent, proc.mem_percent or 0.0)
            else:
                self._tracked[proc.pid] = TrackedProcess(
                    pid=proc.pid,
                    name=proc.name or "unknown",
                    command=proc.command or "",
                    args=proc.args or "",
                    start_time=proc.started_at if proc.started_at else now,
                    peak_cpu_percent=proc.cpu_percent or 0.0,
                    peak_mem_percent=proc.mem_percent or 0.0,
                )

        finished = [pid for pid in self._tracked if pid not in current_pids]
        completed = [self._complete(pid, now) for pid in finished]
        if completed:
            logger.debug("%d processes completed at %d", len(completed), now)
        return completed

    def finalize(self, now: int) -> list[CompletedProcess]:
        """Complete every still-tracked process at ``now``."""
        completed = [self._complete(pid, now, forced=True) for pid in list(self._tracked)]
        logger.debug("Force-completed %d tracked processes", len(completed))
        return completed

    def state(self) -> ProcessState:
        """Snapshot suitable for persisting."""
        return ProcessState(
            tracked=[
                TrackedProcess(
                    pid=proc.pid,
                    name=proc.name,
                    command=proc.command,
                    args=proc.args,
                    start_time=proc.start_time,
                    peak_cpu_percent=proc.peak_cpu_percent,
                    peak_mem_percent=proc.peak_mem_percent,
                )
                for proc in self._tracked.values()
            ],
            completed=list(self._completed),
        )

    def _complete(self, pid: int, now: int, forced: bool = False) -> CompletedProcess:
        tracked = self._tracked.pop(pid)
        completed = CompletedProcess.from_tracked(tracked, now, forced=forced)
        self._completed.append(completed)
        return completed
