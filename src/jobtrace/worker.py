"""Detached background sampling workers.

``python -m jobtrace.worker process|stats`` keeps sampling after the start
step has exited. On SIGTERM/SIGINT the worker lets any in-flight tick
finish, runs one final tick, saves synchronously and exits, which is what
the finish step waits for before reading the documents back.
"""

import argparse
import logging
import os
import signal
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from pathlib import Path

import psutil

from jobtrace.config import DATA_DIR_ENV, load_config
from jobtrace.metrics import MetricAccumulator
from jobtrace.provider import SystemProvider
from jobtrace.repository import MetricHistoryRepository, ProcessStateRepository
from jobtrace.scheduler import DriftCorrectedScheduler, now_ms
from jobtrace.tracker import ProcessTracker

logger = logging.getLogger(__name__)

WORKER_MODULE = "jobtrace.worker"
PROCESS_WORKER = "process"
STATS_WORKER = "stats"

# How often the main thread checks for a stop request
STOP_POLL_SECONDS = 0.2


class BackgroundWorker(ABC):
    """Owns one scheduler and the state it mutates."""

    name = "worker"

    def __init__(self, interval_ms: int, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._stop_requested = False
        self.scheduler = DriftCorrectedScheduler(interval_ms, self.tick, name=self.name)

    @abstractmethod
    def tick(self) -> None:
        """One scheduled sample and save."""

    @abstractmethod
    def flush(self) -> None:
        """Final synchronous sample and save, after the scheduler stopped."""

    def request_stop(self, signum: int | None = None, frame: object = None) -> None:
        # Only flips a flag: runs inside a signal handler
        self._stop_requested = True

    def run_forever(self) -> None:
        """Sample until SIGTERM/SIGINT, then flush."""
        signal.signal(signal.SIGTERM, self.request_stop)
        signal.signal(signal.SIGINT, self.request_stop)

        self.scheduler.start()
        try:
            while not self._stop_requested:
                time.sleep(STOP_POLL_SECONDS)
        finally:
            logger.info("Stopping %s ...", self.name)
            self.scheduler.stop(timeout=None)
            self.flush()
            logger.info("Stopped %s", self.name)


class ProcessWorker(BackgroundWorker):
    """Feeds process-table snapshots to a ProcessTracker."""

    name = "ProcessTracer"

    def __init__(
        self,
        provider: SystemProvider,
        repository: ProcessStateRepository,
        interval_ms: int,
        tracker: ProcessTracker | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(interval_ms, clock)
        self._provider = provider
        self._repository = repository
        self.tracker = tracker or ProcessTracker()

    def tick(self) -> None:
        processes = self._provider.current_process_list()
        self.tracker.observe(processes, self._clock())
        self._repository.save(self.tracker.state())

    def flush(self) -> None:
        try:
            self.tracker.observe(self._provider.current_process_list(), self._clock())
        except Exception:
            logger.exception("Final process collection failed")
        # Every survivor ends now, whenever it really exited
        self.tracker.finalize(self._clock())
        self._repository.save(self.tracker.state())


class StatsWorker(BackgroundWorker):
    """Feeds metric readings to a MetricAccumulator."""

    name = "StatsCollector"

    def __init__(
        self,
        provider: SystemProvider,
        repository: MetricHistoryRepository,
        interval_ms: int,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(interval_ms, clock)
        self._repository = repository
        # Picks up where a restarted worker left off
        self.accumulator = MetricAccumulator.from_history(provider, repository.load(), clock=clock)

    def tick(self) -> None:
        self.accumulator.collect()
        self._repository.save(self.accumulator.history())

    def flush(self) -> None:
        self.tick()


def spawn_worker(kind: str, data_dir: Path, env: Mapping[str, str] | None = None) -> int:
    """Start a detached worker process and return its PID."""
    child_env = dict(os.environ if env is None else env)
    child_env[DATA_DIR_ENV] = str(data_dir)

    kwargs: dict = {}
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True

    child = subprocess.Popen(
        [sys.executable, "-m", WORKER_MODULE, kind],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        env=child_env,
        close_fds=True,
        **kwargs,
    )
    logger.debug("Spawned %s worker with pid %d", kind, child.pid)
    return child.pid


def is_worker_process(proc: psutil.Process) -> bool:
    """Guard against signalling an unrelated process that reused the PID."""
    try:
        return WORKER_MODULE in " ".join(proc.cmdline())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False


def stop_worker(pid: int, timeout: float = 30.0) -> bool:
    """
    Ask the worker to flush and exit, and wait for it.

    Returns True once the worker is gone, including when it was already
    gone. On timeout the caller proceeds with whatever was last saved.
    """
    try:
        proc = psutil.Process(pid)
    except psutil.NoSuchProcess:
        logger.info("Worker %d is not running anymore", pid)
        return True

    if not is_worker_process(proc):
        logger.warning("Process %d is not a jobtrace worker, not stopping it", pid)
        return True

    try:
        proc.terminate()
        proc.wait(timeout=timeout)
        return True
    except psutil.NoSuchProcess:
        return True
    except psutil.TimeoutExpired:
        logger.warning("Worker %d did not stop within %.0fs", pid, timeout)
        return False
    except psutil.AccessDenied:
        logger.warning("Not allowed to stop worker %d", pid)
        return False


def build_worker(kind: str, env: Mapping[str, str] | None = None) -> BackgroundWorker:
    config = load_config(env)
    provider = SystemProvider()
    if kind == PROCESS_WORKER:
        return ProcessWorker(
            provider,
            ProcessStateRepository(config.data_dir),
            config.process_tracer.frequency_ms,
        )
    return StatsWorker(
        provider,
        MetricHistoryRepository(config.data_dir),
        config.stats_collector.frequency_ms,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=WORKER_MODULE, description="jobtrace background worker")
    parser.add_argument("kind", choices=[PROCESS_WORKER, STATS_WORKER])
    args = parser.parse_args(argv)

    config = load_config()
    config.data_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=config.data_dir / f"jobtrace-{args.kind}.log",
        level=logging.INFO,
        format="%(asctime)s [jobtrace] %(levelname)s %(name)s: %(message)s",
    )

    try:
        worker = build_worker(args.kind)
        worker.run_forever()
    except Exception:
        logger.exception("%s worker crashed", args.kind)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
