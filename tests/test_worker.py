"""Tests for the background workers."""

import os
import subprocess
import sys
import time

import pytest

from jobtrace.config import PROC_TRACE_FREQ_ENV
from jobtrace.models import CpuStats, MetricHistory, ProcessInfo
from jobtrace.provider import CpuLoad, DiskUsage, IoRates, MemoryReading
from jobtrace.repository import MetricHistoryRepository, ProcessStateRepository
from jobtrace.worker import (
    PROCESS_WORKER,
    BackgroundWorker,
    ProcessWorker,
    StatsWorker,
    build_worker,
    spawn_worker,
    stop_worker,
)


def info(pid, cpu=1.0, mem=1.0, started_at=None):
    return ProcessInfo(
        pid=pid, name=f"p{pid}", command=f"/bin/p{pid}", args="",
        started_at=started_at, cpu_percent=cpu, mem_percent=mem,
    )


class FakeClock:
    def __init__(self, now=10_000):
        self.now = now

    def __call__(self):
        return self.now


class SnapshotProvider:
    """Returns queued process tables, then repeats the last one."""

    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)

    def current_process_list(self):
        if len(self.snapshots) > 1:
            return self.snapshots.pop(0)
        return self.snapshots[0]


class MetricProvider:
    def cpu_load(self):
        return CpuLoad(total=25.0, user=20.0, system=5.0)

    def memory(self):
        return MemoryReading(total=4 * 1024**3, active=1024**3, available=3 * 1024**3)

    def network_rates(self):
        return IoRates(read_per_sec=0.0, write_per_sec=0.0)

    def disk_io_rates(self):
        return IoRates(read_per_sec=0.0, write_per_sec=0.0)

    def disk_sizes(self):
        return DiskUsage(total=10 * 1024**3, used=1024**3)


def wait_for(predicate, timeout=15.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestProcessWorker:
    """Tests for ProcessWorker."""

    def test_tick_saves_state(self, tmp_path):
        """Test each tick persists the tracker state."""
        repository = ProcessStateRepository(tmp_path)
        clock = FakeClock()
        worker = ProcessWorker(SnapshotProvider([info(1), info(2)], [info(1)]), repository, 1000, clock=clock)

        worker.tick()
        clock.now = 11_000
        worker.tick()

        state = repository.load()
        assert [p.pid for p in state.tracked] == [1]
        assert [(p.pid, p.end_time) for p in state.completed] == [(2, 11_000)]

    def test_flush_force_completes_survivors(self, tmp_path):
        """Test the final flush leaves nothing tracked."""
        repository = ProcessStateRepository(tmp_path)
        clock = FakeClock()
        worker = ProcessWorker(SnapshotProvider([info(1, started_at=9_000)]), repository, 1000, clock=clock)
        worker.tick()

        clock.now = 12_000
        worker.flush()

        state = repository.load()
        assert state.tracked == []
        (proc,) = state.completed
        assert proc.forced
        assert proc.duration == 3_000

    def test_flush_survives_provider_failure(self, tmp_path):
        """Test a failing final snapshot still finalizes and saves."""

        class FailingProvider:
            def current_process_list(self):
                raise OSError("proc table unavailable")

        repository = ProcessStateRepository(tmp_path)
        worker = ProcessWorker(FailingProvider(), repository, 1000, clock=FakeClock())

        worker.flush()

        assert repository.path.exists()

    def test_scheduler_interval(self, tmp_path):
        """Test the worker schedules ticks at its interval."""
        worker = ProcessWorker(SnapshotProvider([]), ProcessStateRepository(tmp_path), 250)
        assert worker.scheduler.interval_ms == 250


class TestStatsWorker:
    """Tests for StatsWorker."""

    def test_tick_appends_and_saves(self, tmp_path):
        """Test each tick appends one sample per category."""
        repository = MetricHistoryRepository(tmp_path)
        clock = FakeClock()
        worker = StatsWorker(MetricProvider(), repository, 5000, clock=clock)

        worker.tick()
        clock.now = 15_000
        worker.flush()

        history = repository.load()
        assert [s.time for s in history.cpu] == [10_000, 15_000]
        assert history.memory[0].active_memory_mb == 1024.0
        assert history.disk_size[0].used_size_mb == 1024

    def test_resumes_saved_history(self, tmp_path):
        """Test a restarted worker keeps the samples saved before it."""
        repository = MetricHistoryRepository(tmp_path)
        repository.save(MetricHistory(cpu=[CpuStats(5_000, 90.0, 80.0, 10.0)]))

        worker = StatsWorker(MetricProvider(), repository, 5000, clock=FakeClock())
        worker.tick()

        assert [s.time for s in repository.load().cpu] == [5_000, 10_000]


class TestBackgroundWorker:
    """Tests for the worker base class."""

    def test_is_abstract(self):
        """Test a worker without tick and flush cannot be created."""
        with pytest.raises(TypeError):
            BackgroundWorker(1000)

    def test_subclass_must_implement_flush(self):
        """Test tick alone is not enough."""

        class TickOnly(BackgroundWorker):
            def tick(self):
                pass

        with pytest.raises(TypeError):
            TickOnly(1000)


class TestBuildWorker:
    """Tests for building a worker from the environment."""

    def test_process_worker_from_env(self, tmp_path):
        """Test the frequency handed down by the start step is used."""
        worker = build_worker(PROCESS_WORKER, {"JOBTRACE_DATA_DIR": str(tmp_path), PROC_TRACE_FREQ_ENV: "300"})

        assert isinstance(worker, ProcessWorker)
        assert worker.scheduler.interval_ms == 300

    def test_stats_worker_from_env(self, tmp_path):
        """Test the stats worker uses the metric frequency."""
        worker = build_worker("stats", {"JOBTRACE_DATA_DIR": str(tmp_path), "INPUT_METRIC_FREQUENCY": "3"})

        assert isinstance(worker, StatsWorker)
        assert worker.scheduler.interval_ms == 3000


class TestStopWorker:
    """Tests for stopping a worker by PID."""

    def test_gone_process(self):
        """Test a PID that no longer exists counts as stopped."""
        child = subprocess.Popen([sys.executable, "-c", "pass"])
        child.wait()

        assert stop_worker(child.pid, timeout=1.0) is True

    def test_unrelated_process_is_not_signalled(self):
        """Test a reused PID belonging to something else is left alone."""
        assert stop_worker(os.getpid(), timeout=1.0) is True


@pytest.mark.skipif(os.name == "nt", reason="SIGTERM cannot be handled on Windows")
class TestDetachedWorker:
    """End-to-end start/stop of a real worker process."""

    def test_process_worker_flushes_on_stop(self, tmp_path):
        """Test the worker saves a final state with nothing left tracked."""
        env = dict(os.environ)
        env[PROC_TRACE_FREQ_ENV] = "100"
        repository = ProcessStateRepository(tmp_path)

        pid = spawn_worker(PROCESS_WORKER, tmp_path, env)
        try:
            assert wait_for(repository.path.exists)
        finally:
            stopped = stop_worker(pid, timeout=15.0)

        assert stopped is True
        state = repository.load()
        assert state.tracked == []
        assert state.completed
        assert any(proc.forced for proc in state.completed)
        assert (tmp_path / "jobtrace-process.log").exists()
