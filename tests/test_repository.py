"""Tests for the JSON state repositories and the start marker."""

import json

from jobtrace.models import (
    CompletedProcess,
    CpuStats,
    DiskStats,
    MemoryStats,
    MetricHistory,
    ProcessState,
    TrackedProcess,
)
from jobtrace.repository import (
    PROC_TRACER_DATA_FILE,
    STATS_DATA_FILE,
    MetricHistoryRepository,
    ProcessStateRepository,
    StartMarker,
)


def sample_state() -> ProcessState:
    tracked = TrackedProcess(
        pid=11, name="npm", command="/usr/bin/npm", args="ci", start_time=1_000,
        peak_cpu_percent=12.5, peak_mem_percent=3.25,
    )
    completed = CompletedProcess(
        pid=12, name="tsc", command="/usr/bin/node", args="tsc -b", start_time=500,
        end_time=2_500, duration=2_000, max_cpu=99.0, max_mem=7.5,
    )
    return ProcessState(tracked=[tracked], completed=[completed])


def sample_history() -> MetricHistory:
    return MetricHistory(
        cpu=[CpuStats(1_000, 50.0, 40.0, 10.0), CpuStats(6_000, 20.0, 15.0, 5.0)],
        memory=[MemoryStats(1_000, 8192.0, 1024.5, 6000.25)],
        disk=[DiskStats(1_000, 0, 0), DiskStats(6_000, 3, 12)],
    )


class TestJsonDocumentRepository:
    """Tests for save/load."""

    def test_process_state_round_trip(self, tmp_path):
        """Test load(save(S)) == S for process state."""
        repository = ProcessStateRepository(tmp_path)

        assert repository.save(sample_state()) is True
        assert repository.load() == sample_state()

    def test_metric_history_round_trip(self, tmp_path):
        """Test load(save(S)) == S for metric histories."""
        repository = MetricHistoryRepository(tmp_path)

        repository.save(sample_history())
        assert repository.load() == sample_history()

    def test_missing_document_is_empty(self, tmp_path):
        """Test a first run with no document loads empty state."""
        assert ProcessStateRepository(tmp_path).load() == ProcessState()
        assert MetricHistoryRepository(tmp_path / "nowhere").load() == MetricHistory()

    def test_corrupt_document_is_empty(self, tmp_path, caplog):
        """Test a half-written or garbage document loads empty state with a warning."""
        (tmp_path / PROC_TRACER_DATA_FILE).write_text('{"tracked": [{"pid": 1', encoding="utf-8")

        assert ProcessStateRepository(tmp_path).load() == ProcessState()
        assert "Unable to load" in caplog.text

    def test_non_finite_number_is_empty(self, tmp_path):
        """Test an Infinity timestamp loads empty state instead of raising."""
        (tmp_path / PROC_TRACER_DATA_FILE).write_text(
            '{"tracked": [{"pid": 1, "startTime": Infinity}]}', encoding="utf-8"
        )

        assert ProcessStateRepository(tmp_path).load() == ProcessState()

    def test_deeply_nested_document_is_empty(self, tmp_path):
        """Test a document too deep to decode loads empty state instead of raising."""
        depth = 200_000
        (tmp_path / STATS_DATA_FILE).write_text(
            '{"cpu": ' + "[" * depth + "]" * depth + "}", encoding="utf-8"
        )

        assert MetricHistoryRepository(tmp_path).load() == MetricHistory()

    def test_wrong_shape_is_empty(self, tmp_path):
        """Test a valid JSON document of the wrong shape loads empty state."""
        path = tmp_path / PROC_TRACER_DATA_FILE
        path.write_text("[1, 2, 3]", encoding="utf-8")
        assert ProcessStateRepository(tmp_path).load() == ProcessState()

        path.write_text('{"completed": [{"pid": 3}]}', encoding="utf-8")
        assert ProcessStateRepository(tmp_path).load() == ProcessState()

    def test_save_overwrites_whole_document(self, tmp_path):
        """Test each save replaces the previous document."""
        repository = ProcessStateRepository(tmp_path)
        repository.save(sample_state())
        repository.save(ProcessState())

        assert json.loads(repository.path.read_text()) == {"tracked": [], "completed": []}

    def test_save_leaves_no_temp_files(self, tmp_path):
        """Test the atomic write cleans up after itself."""
        repository = ProcessStateRepository(tmp_path)
        repository.save(sample_state())
        repository.save(sample_state())

        assert [p.name for p in tmp_path.iterdir()] == [PROC_TRACER_DATA_FILE]

    def test_save_failure_returns_false(self, tmp_path):
        """Test an unwritable location is reported, not raised."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        assert ProcessStateRepository(blocker / "data").save(sample_state()) is False

    def test_clear(self, tmp_path):
        """Test clear() removes the document and tolerates absence."""
        repository = ProcessStateRepository(tmp_path)
        repository.save(sample_state())
        repository.clear()
        repository.clear()

        assert not repository.path.exists()


class TestStartMarker:
    """Tests for the lifecycle marker."""

    def test_mark_records_pid(self, tmp_path):
        """Test mark() makes the marker exist and remember the worker pid."""
        marker = StartMarker(tmp_path / "sub" / ".proc-tracer-started")
        assert not marker.exists()

        marker.mark(pid=4321, started_at=1_000)

        assert marker.exists()
        assert marker.worker_pid == 4321
        assert marker.read()["startedAt"] == 1_000

    def test_unreadable_marker(self, tmp_path):
        """Test a marker with unexpected content still counts as started."""
        path = tmp_path / ".stat-collector-started"
        path.write_text("1700000000000")
        marker = StartMarker(path)

        assert marker.exists()
        assert marker.read() == {}
        assert marker.worker_pid is None
