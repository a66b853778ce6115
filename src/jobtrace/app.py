"""jobtrace viewer - Textual application over the collected data.

The viewer only reads the persisted documents; it never writes them back,
so it is safe to open while the workers are still sampling.
"""

from enum import Enum

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from jobtrace.config import Config
from jobtrace.models import CompletedProcess, MetricHistory
from jobtrace.repository import MetricHistoryRepository, ProcessStateRepository
from jobtrace.scheduler import now_ms
from jobtrace.tracker import ProcessTracker


class SortKey(Enum):
    """Sort keys for the process table."""

    DURATION = "duration"
    CPU = "cpu"
    MEM = "mem"
    START = "start"
    PID = "pid"


def format_duration(ms: int) -> str:
    """Format milliseconds as a short human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def process_row_key(proc: CompletedProcess) -> str:
    # PIDs are reused, a lifecycle is identified by pid and start time
    return f"{proc.pid}-{proc.start_time}"


class HeaderStats(Static):
    """Header widget summarising the metric histories."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._samples: int = 0
        self._peak_cpu: float = 0.0
        self._peak_memory_mb: float = 0.0
        self._network_mb: tuple[int, int] = (0, 0)
        self._disk_mb: tuple[int, int] = (0, 0)
        self._process_count: int = 0
        self._longest: CompletedProcess | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_metric_info(), id="metric-info"),
            Static(self._get_process_info(), id="process-info"),
        )

    def update_stats(self, history: MetricHistory, processes: list[CompletedProcess]) -> None:
        """Update the summary from freshly loaded data."""
        self._samples = len(history.cpu)
        self._peak_cpu = max((s.total_load for s in history.cpu), default=0.0)
        self._peak_memory_mb = max((s.active_memory_mb for s in history.memory), default=0.0)
        self._network_mb = (
            sum(s.rx_mb for s in history.network),
            sum(s.tx_mb for s in history.network),
        )
        self._disk_mb = (sum(s.rx_mb for s in history.disk), sum(s.wx_mb for s in history.disk))
        self._process_count = len(processes)
        self._longest = max(processes, key=lambda p: p.duration, default=None)
        self._refresh_display()

    def _refresh_display(self) -> None:
        try:
            self.query_one("#metric-info", Static).update(self._get_metric_info())
            self.query_one("#process-info", Static).update(self._get_process_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_metric_info(self) -> str:
        if self._samples == 0:
            return "No metric samples collected"
        return (
            f"Samples: {self._samples}\n"
            f"Peak CPU load: {self._peak_cpu:5.1f}%\n"
            f"Peak active memory: {self._peak_memory_mb:.0f} MB\n"
            f"Network read/write: {self._network_mb[0]} / {self._network_mb[1]} MB\n"
            f"Disk read/write: {self._disk_mb[0]} / {self._disk_mb[1]} MB"
        )

    def _get_process_info(self) -> str:
        if self._process_count == 0:
            return "No completed processes"
        lines = [f"Completed processes: {self._process_count}"]
        if self._longest is not None:
            lines.append(
                f"Longest: {self._longest.name} ({format_duration(self._longest.duration)})"
            )
        return "\n".join(lines)


class ProcessTable(Container):
    """Container for the completed process table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._processes: list[CompletedProcess] = []
        self._sort_key: SortKey = SortKey.DURATION
        self._sort_reverse: bool = True

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        # Usage columns read best largest first
        self._sort_reverse = self._sort_key in (SortKey.DURATION, SortKey.CPU, SortKey.MEM)
        if self._processes:
            self.update_processes(self._processes)
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("NAME", key="name", width=16)
        table.add_column("START", key="start", width=15)
        table.add_column("DURATION", key="duration", width=10)
        table.add_column("MAX CPU%", key="cpu", width=9)
        table.add_column("MAX MEM%", key="mem", width=9)
        table.add_column("Command", key="command")

    def update_processes(self, processes: list[CompletedProcess]) -> None:
        """Replace the table contents, sorted by the current key."""
        table = self.query_one("#process-table", DataTable)
        self._processes = list(processes)

        table.clear()
        seen: set[str] = set()
        for proc in self._sort_processes(self._processes):
            row_key = process_row_key(proc)
            if row_key in seen:
                continue
            seen.add(row_key)
            table.add_row(
                str(proc.pid),
                proc.name[:16],
                str(proc.start_time),
                format_duration(proc.duration),
                f"{proc.max_cpu:5.1f}",
                f"{proc.max_mem:5.1f}",
                f"{proc.command} {proc.args}".strip()[:80],
                key=row_key,
            )

    def _sort_processes(self, processes: list[CompletedProcess]) -> list[CompletedProcess]:
        key_func = {
            SortKey.DURATION: lambda p: p.duration,
            SortKey.CPU: lambda p: p.max_cpu,
            SortKey.MEM: lambda p: p.max_mem,
            SortKey.START: lambda p: p.start_time,
            SortKey.PID: lambda p: p.pid,
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)


class JobtraceApp(App):
    """Terminal viewer for collected job telemetry."""

    TITLE = "jobtrace"
    SUB_TITLE = "CI Job Telemetry"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 7;
    }

    Horizontal {
        height: auto;
    }

    #metric-info {
        width: 1fr;
        padding-right: 2;
    }

    #process-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("r", "reload", "Reload"),
    ]

    def __init__(self, config: Config) -> None:
        """Initialize the JobtraceApp."""
        super().__init__()
        self._process_repository = ProcessStateRepository(config.data_dir)
        self._history_repository = MetricHistoryRepository(config.data_dir)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        # Child tables add their columns in their own mount handlers
        self.call_after_refresh(self.action_reload)

    def load_processes(self) -> list[CompletedProcess]:
        """Completed processes; still-tracked ones are shown as ending now."""
        tracker = ProcessTracker.from_state(self._process_repository.load())
        # This copy is never saved
        tracker.finalize(now_ms())
        return tracker.completed

    def action_reload(self) -> None:
        """Reload both documents from disk."""
        try:
            processes = self.load_processes()
            history = self._history_repository.load()
            self.query_one("#header-stats", HeaderStats).update_stats(history, processes)
            self.query_one(ProcessTable).update_processes(processes)
        except Exception:
            self.notify("Unable to load collected data", severity="error")

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        try:
            new_sort_key = self.query_one(ProcessTable).cycle_sort()
            self.notify(f"Sort: {new_sort_key.value.upper()}")
        except Exception:
            pass
