"""Configuration values for jobtrace.

Settings come from environment variables. GitHub Actions exposes action
inputs as ``INPUT_<NAME>``; anything unparseable falls back to the default
below with a warning.
"""

import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STATS_FREQUENCY_MS = 5000
DEFAULT_PROC_TRACE_FREQUENCY_MS = 1000
DEFAULT_CHART_MAX_COUNT = 100
DEFAULT_QUICKCHART_URL = "https://quickchart.io/chart/create"

# Read by the detached workers, set by the start step
STATS_FREQ_ENV = "JOBTRACE_STAT_FREQ"
PROC_TRACE_FREQ_ENV = "JOBTRACE_PROC_TRACE_FREQ"
DATA_DIR_ENV = "JOBTRACE_DATA_DIR"


@dataclass(frozen=True)
class ProcessTracerConfig:
    """Process trace sampling and report options."""

    frequency_ms: int = DEFAULT_PROC_TRACE_FREQUENCY_MS
    min_duration: int = -1  # ms, -1 disables the filter
    chart_show: bool = True
    chart_max_count: int = DEFAULT_CHART_MAX_COUNT
    table_show: bool = False


@dataclass(frozen=True)
class StatsCollectorConfig:
    """Metric sampling options."""

    frequency_ms: int = DEFAULT_STATS_FREQUENCY_MS


@dataclass(frozen=True)
class ChartConfig:
    """Chart rendering service options."""

    api_url: str = DEFAULT_QUICKCHART_URL
    width: int = 800
    height: int = 400
    timeout: float = 10.0


@dataclass(frozen=True)
class ReportConfig:
    job_name: str = "job"
    job_summary: bool = True


@dataclass(frozen=True)
class Config:
    data_dir: Path
    process_tracer: ProcessTracerConfig = field(default_factory=ProcessTracerConfig)
    stats_collector: StatsCollectorConfig = field(default_factory=StatsCollectorConfig)
    chart: ChartConfig = field(default_factory=ChartConfig)
    report: ReportConfig = field(default_factory=ReportConfig)


def parse_int(raw: str | None, default: int, name: str = "value") -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Invalid %s %r, using default %d", name, raw, default)
        return default


def parse_positive_int(raw: str | None, default: int, name: str = "value") -> int:
    value = parse_int(raw, default, name)
    if value <= 0:
        logger.warning("%s must be positive, using default %d", name, default)
        return default
    return value


def parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() == "true"


def default_data_dir(env: Mapping[str, str]) -> Path:
    if env.get(DATA_DIR_ENV):
        return Path(env[DATA_DIR_ENV])
    base = env.get("RUNNER_TEMP") or tempfile.gettempdir()
    return Path(base) / "jobtrace"


def load_config(env: Mapping[str, str] | None = None) -> Config:
    """Build the configuration from ``env`` (defaults to ``os.environ``)."""
    env = os.environ if env is None else env

    metric_frequency_s = parse_positive_int(
        env.get("INPUT_METRIC_FREQUENCY"), DEFAULT_STATS_FREQUENCY_MS // 1000, "metric_frequency"
    )
    # The worker-side variable wins, it is what the start step handed down
    stats_frequency_ms = parse_positive_int(
        env.get(STATS_FREQ_ENV), metric_frequency_s * 1000, STATS_FREQ_ENV
    )

    process_tracer = ProcessTracerConfig(
        frequency_ms=parse_positive_int(
            env.get(PROC_TRACE_FREQ_ENV), DEFAULT_PROC_TRACE_FREQUENCY_MS, PROC_TRACE_FREQ_ENV
        ),
        min_duration=parse_int(env.get("INPUT_PROC_TRACE_MIN_DURATION"), -1, "proc_trace_min_duration"),
        chart_show=parse_bool(env.get("INPUT_PROC_TRACE_CHART_SHOW"), True),
        chart_max_count=parse_positive_int(
            env.get("INPUT_PROC_TRACE_CHART_MAX_COUNT"),
            DEFAULT_CHART_MAX_COUNT,
            "proc_trace_chart_max_count",
        ),
        table_show=parse_bool(env.get("INPUT_PROC_TRACE_TABLE_SHOW"), False),
    )

    chart = ChartConfig(api_url=env.get("JOBTRACE_QUICKCHART_URL") or DEFAULT_QUICKCHART_URL)

    report = ReportConfig(
        job_name=env.get("JOBTRACE_JOB_NAME") or env.get("GITHUB_JOB") or "job",
        job_summary=parse_bool(env.get("INPUT_JOB_SUMMARY"), True),
    )

    return Config(
        data_dir=default_data_dir(env),
        process_tracer=process_tracer,
        stats_collector=StatsCollectorConfig(frequency_ms=stats_frequency_ms),
        chart=chart,
        report=report,
    )
