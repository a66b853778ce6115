"""Start / finish / report lifecycle of the two telemetry features.

``start`` runs in the setup step and leaves a detached worker behind;
``finish`` stops that worker and waits for its final save before anything
is read, so every ``report`` sees the complete data. None of the public
methods raise: failures are logged and reported as False / None.
"""

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path

from jobtrace.charts import QuickChartClient
from jobtrace.config import PROC_TRACE_FREQ_ENV, STATS_FREQ_ENV, Config
from jobtrace.models import CompletedProcess, MetricHistory
from jobtrace.report import (
    ProcessChartGenerator,
    ProcessTableGenerator,
    build_metric_charts,
    filter_min_duration,
    format_process_report,
    format_stats_report,
)
from jobtrace.repository import (
    PROC_TRACER_STATE_FILE,
    STATS_STATE_FILE,
    MetricHistoryRepository,
    ProcessStateRepository,
    StartMarker,
)
from jobtrace.scheduler import now_ms
from jobtrace.tracker import ProcessTracker
from jobtrace.worker import PROCESS_WORKER, STATS_WORKER, spawn_worker, stop_worker

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 30.0

Spawner = Callable[[str, Path, Mapping[str, str]], int]
Stopper = Callable[[int, float], bool]


class _Feature:
    """Shared start/finish plumbing around one detached worker."""

    title = "feature"
    kind = ""

    def __init__(
        self,
        config: Config,
        marker: StartMarker,
        spawner: Spawner | None = None,
        stopper: Stopper | None = None,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ) -> None:
        self._config = config
        self._marker = marker
        self._spawner = spawner or spawn_worker
        self._stopper = stopper or stop_worker
        self._stop_timeout = stop_timeout

    @property
    def started(self) -> bool:
        return self._marker.exists()

    def worker_env(self) -> dict[str, str]:
        return {}

    def reset(self) -> None:
        """Forget the data of a previous run."""

    def start(self) -> bool:
        logger.info("Starting %s ...", self.title)
        pid = None
        try:
            self.reset()
            env = dict(os.environ)
            env.update(self.worker_env())
            pid = self._spawner(self.kind, self._config.data_dir, env)
            self._marker.mark(pid=pid)
            logger.info("Started %s (worker pid %d)", self.title, pid)
            return True
        except Exception:
            logger.exception("Unable to start %s", self.title)
            if pid is not None:
                # finish() cannot find a worker without a marker
                self._stopper(pid, self._stop_timeout)
            return False

    def finish(self) -> bool:
        logger.info("Finishing %s ...", self.title)
        if not self.started:
            logger.info("Skipped finishing %s since it didn't start", self.title)
            return False

        try:
            pid = self._marker.worker_pid
            if pid is None:
                logger.warning("No worker pid recorded for %s", self.title)
            elif not self._stopper(pid, self._stop_timeout):
                logger.warning("Reading %s data without a final flush", self.title)
            logger.info("Finished %s", self.title)
            return True
        except Exception:
            logger.exception("Unable to finish %s", self.title)
            return False


class ProcessTracer(_Feature):
    """Process lifecycle tracing."""

    title = "process tracer"
    kind = PROCESS_WORKER

    def __init__(self, config: Config, **kwargs) -> None:
        super().__init__(config, StartMarker(config.data_dir / PROC_TRACER_STATE_FILE), **kwargs)
        self._repository = ProcessStateRepository(config.data_dir)
        self._chart_generator = ProcessChartGenerator()
        self._table_generator = ProcessTableGenerator()

    def worker_env(self) -> dict[str, str]:
        return {PROC_TRACE_FREQ_ENV: str(self._config.process_tracer.frequency_ms)}

    def reset(self) -> None:
        self._repository.clear()

    def load_completed(self, now: int | None = None) -> list[CompletedProcess]:
        """
        Completed processes from the persisted state.

        Anything still tracked (the worker died before its final flush) is
        completed in this read-only copy at ``now``.
        """
        tracker = ProcessTracker.from_state(self._repository.load())
        if tracker.tracked:
            logger.info("Completing %d processes left tracked", len(tracker.tracked))
            tracker.finalize(now_ms() if now is None else now)
        return tracker.completed

    def report(self, job_name: str | None = None) -> str | None:
        logger.info("Reporting %s result ...", self.title)
        if not self.started:
            logger.info("Skipped reporting %s since it didn't start", self.title)
            return None

        try:
            completed = self.load_completed()
            if not completed:
                logger.info("No process data to report")
                return None

            config = self._config.process_tracer
            processes = filter_min_duration(completed, config.min_duration)
            job_name = job_name or self._config.report.job_name

            chart = (
                self._chart_generator.generate(processes, config.chart_max_count, job_name)
                if config.chart_show
                else ""
            )
            table = self._table_generator.generate(processes) if config.table_show else ""

            content = format_process_report(chart, table, config)
            logger.info("Reported %s result", self.title)
            return content
        except Exception:
            logger.exception("Unable to report %s result", self.title)
            return None


class StatsCollector(_Feature):
    """Host metric collection."""

    title = "stat collector"
    kind = STATS_WORKER

    def __init__(self, config: Config, chart_client: QuickChartClient | None = None, **kwargs) -> None:
        super().__init__(config, StartMarker(config.data_dir / STATS_STATE_FILE), **kwargs)
        self._repository = MetricHistoryRepository(config.data_dir)
        self._chart_client = chart_client or QuickChartClient(config.chart)

    def worker_env(self) -> dict[str, str]:
        return {STATS_FREQ_ENV: str(self._config.stats_collector.frequency_ms)}

    def reset(self) -> None:
        self._repository.clear()

    def load_history(self) -> MetricHistory:
        return self._repository.load()

    def report(self, job_name: str | None = None) -> str | None:
        logger.info("Reporting %s result ...", self.title)
        if not self.started:
            logger.info("Skipped reporting %s since it didn't start", self.title)
            return None

        try:
            history = self.load_history()
            if history.is_empty():
                logger.info("No metric data to report")
                return None

            content = format_stats_report(build_metric_charts(history, self._chart_client))
            logger.info("Reported %s result", self.title)
            return content or None
        except Exception:
            logger.exception("Unable to report %s result", self.title)
            return None
