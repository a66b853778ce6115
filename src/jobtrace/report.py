"""Report builder: chart/table selection and Markdown formatting."""

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from jobtrace.charts import QuickChartClient, Series
from jobtrace.config import ProcessTracerConfig
from jobtrace.models import CompletedProcess, MetricHistory

GHA_ACTIONS_PREFIX = "/home/runner/work/_actions/"
_GHA_ACTION_RE = re.compile(re.escape(GHA_ACTIONS_PREFIX) + r"([^/]+/[^/]+)")


def filter_min_duration(
    processes: Iterable[CompletedProcess], min_duration: int
) -> list[CompletedProcess]:
    """Drop processes shorter than ``min_duration`` ms; a value <= 0 keeps all."""
    if min_duration <= 0:
        return list(processes)
    return [proc for proc in processes if proc.duration >= min_duration]


def select_top_processes(
    processes: Iterable[CompletedProcess], max_count: int
) -> list[CompletedProcess]:
    """Top ``max_count`` by duration, returned in start-time order."""
    longest = sorted(processes, key=lambda proc: proc.duration, reverse=True)[:max_count]
    return sorted(longest, key=lambda proc: proc.start_time)


def escape_gantt_label(name: str) -> str:
    # ':' separates the label from the task data in Mermaid gantt rows
    return name.replace(":", "#colon;")


def action_name(proc: CompletedProcess) -> str | None:
    """``owner/repo`` of the GitHub Action a ``node`` process is running."""
    if proc.name != "node" or not proc.args:
        return None
    match = _GHA_ACTION_RE.search(proc.args)
    return match.group(1) if match else None


class ProcessChartGenerator:
    """Mermaid gantt chart of the longest-running processes."""

    def generate(self, processes: Sequence[CompletedProcess], max_count: int, job_name: str) -> str:
        lines = [
            "gantt",
            f"\ttitle {job_name}",
            "\tdateFormat x",
            "\taxisFormat %H:%M:%S",
        ]
        lines.extend(self._process_line(proc) for proc in select_top_processes(processes, max_count))
        return "\n".join(lines) + "\n"

    def _process_line(self, proc: CompletedProcess) -> str:
        label = escape_gantt_label(proc.name)
        extra = action_name(proc)
        if extra:
            label = f"{label} ({extra})"

        if proc.forced:
            # Still running when the job finished
            style = "active, "
        elif proc.duration == 0:
            style = "done, "
        else:
            style = ""

        start = min(proc.start_time, proc.end_time)
        return f"\t{label} : {style}{start}, {proc.end_time}"


class ProcessTableGenerator:
    """
    Fixed-width table of completed processes.

    NAME             PID     START TIME   DURATION (ms)  MAX CPU %  MAX MEM % COMMAND + PARAMS
    node            1234  1234567890000            5000      45.23      12.50 /usr/bin/node index.js
    """

    def generate(self, processes: Iterable[CompletedProcess]) -> str:
        rows = [
            self._format_row(
                "NAME", "PID", "START TIME", "DURATION (ms)", "MAX CPU %", "MAX MEM %", "COMMAND + PARAMS"
            )
        ]
        for proc in processes:
            rows.append(
                self._format_row(
                    proc.name,
                    proc.pid,
                    proc.start_time,
                    proc.duration,
                    f"{proc.max_cpu:.2f}",
                    f"{proc.max_mem:.2f}",
                    f"{proc.command} {proc.args}".strip(),
                )
            )
        return "\n".join(rows)

    @staticmethod
    def _format_row(name, pid, start_time, duration, max_cpu, max_mem, command) -> str:
        return (
            f"{str(name):<16} {str(pid):>7} {str(start_time):>15} {str(duration):>15} "
            f"{str(max_cpu):>10} {str(max_mem):>10} {command}"
        )


def format_process_report(chart_content: str, table_content: str, config: ProcessTracerConfig) -> str:
    items = ["", "### Process Trace"]

    if config.chart_show:
        items.extend(
            [
                "",
                f"#### Top {config.chart_max_count} processes with highest duration",
                "",
                "```mermaid\n" + chart_content + "```",
            ]
        )
    if config.table_show:
        items.extend(["", "#### All processes with detail", "", "```\n" + table_content + "\n```"])

    return "\n".join(items)


@dataclass
class MetricCharts:
    cpu_load: str | None = None
    memory_usage: str | None = None
    network_io_read: str | None = None
    network_io_write: str | None = None
    disk_io_read: str | None = None
    disk_io_write: str | None = None
    disk_size_usage: str | None = None


def points(samples: Iterable, value: Callable[[object], float | None]) -> list[dict[str, float]]:
    """Chart points from a history; missing or negative values plot as 0."""
    result = []
    for sample in samples:
        y = value(sample)
        result.append({"x": sample.time, "y": y if y and y > 0 else 0})
    return result


def build_metric_charts(history: MetricHistory, client: QuickChartClient) -> MetricCharts:
    """Render every chart the history has data for."""
    charts = MetricCharts()

    if history.cpu:
        charts.cpu_load = client.stacked_area_graph(
            "CPU Load (%)",
            [
                Series("User Load", "#e41a1c99", points(history.cpu, lambda s: s.user_load)),
                Series("System Load", "#ff7f0099", points(history.cpu, lambda s: s.system_load)),
            ],
        )
    if history.memory:
        charts.memory_usage = client.stacked_area_graph(
            "Memory Usage (MB)",
            [
                Series("Used", "#377eb899", points(history.memory, lambda s: s.active_memory_mb)),
                Series("Free", "#4daf4a99", points(history.memory, lambda s: s.available_memory_mb)),
            ],
        )
    if history.network:
        charts.network_io_read = client.line_graph(
            "Network I/O Read (MB)", Series("Read", "#be4d25", points(history.network, lambda s: s.rx_mb))
        )
        charts.network_io_write = client.line_graph(
            "Network I/O Write (MB)", Series("Write", "#6c25be", points(history.network, lambda s: s.tx_mb))
        )
    if history.disk:
        charts.disk_io_read = client.line_graph(
            "Disk I/O Read (MB)", Series("Read", "#be4d25", points(history.disk, lambda s: s.rx_mb))
        )
        charts.disk_io_write = client.line_graph(
            "Disk I/O Write (MB)", Series("Write", "#6c25be", points(history.disk, lambda s: s.wx_mb))
        )
    if history.disk_size:
        charts.disk_size_usage = client.stacked_area_graph(
            "Disk Usage (MB)",
            [
                Series("Used", "#377eb899", points(history.disk_size, lambda s: s.used_size_mb)),
                Series("Free", "#4daf4a99", points(history.disk_size, lambda s: s.available_size_mb)),
            ],
        )
    return charts


def format_stats_report(charts: MetricCharts) -> str:
    items: list[str] = []

    if charts.cpu_load:
        items.extend(["### CPU Metrics", charts.cpu_load, ""])
    if charts.memory_usage:
        items.extend(["### Memory Metrics", charts.memory_usage, ""])

    network = charts.network_io_read and charts.network_io_write
    disk = charts.disk_io_read and charts.disk_io_write
    if network or disk:
        items.extend(["### IO Metrics", "|               | Read      | Write     |", "|---            |---        |---        |"])
    if network:
        items.append(f"| Network I/O   | {charts.network_io_read}        | {charts.network_io_write}        |")
    if disk:
        items.append(f"| Disk I/O      | {charts.disk_io_read}              | {charts.disk_io_write}              |")

    if charts.disk_size_usage:
        items.extend(["### Disk Size Metrics", charts.disk_size_usage, ""])

    return "\n".join(items)
