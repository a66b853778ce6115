"""JSON persistence shared between the background workers and the reader.

The writer always replaces the whole document; readers never write back.
Missing or corrupt documents load as empty state.
"""

import json
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

from jobtrace.models import MetricHistory, ProcessState
from jobtrace.scheduler import now_ms

logger = logging.getLogger(__name__)

PROC_TRACER_DATA_FILE = "proc-tracer-data.json"
STATS_DATA_FILE = "stats-data.json"
PROC_TRACER_STATE_FILE = ".proc-tracer-started"
STATS_STATE_FILE = ".stat-collector-started"


class Document(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


S = TypeVar("S", bound=Document)


class JsonDocumentRepository(Generic[S]):
    """Whole-document JSON store with atomic replace on save."""

    def __init__(
        self,
        path: Path,
        decode: Callable[[dict[str, Any]], S],
        empty: Callable[[], S],
    ) -> None:
        self._path = Path(path)
        self._decode = decode
        self._empty = empty

    @property
    def path(self) -> Path:
        return self._path

    def save(self, document: S) -> bool:
        """Overwrite the persisted document; False if it could not be written."""
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document.to_dict(), fh, indent=2)
            os.replace(tmp_name, self._path)
            return True
        except (OSError, TypeError, ValueError):
            logger.exception("Error saving %s", self._path)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            return False

    def load(self) -> S:
        """Last saved document, or an empty one when nothing usable exists."""
        if not self._path.exists():
            logger.debug("%s does not exist", self._path)
            return self._empty()

        try:
            with self._path.open(encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            return self._decode(data)
        except (OSError, ValueError, KeyError, TypeError, OverflowError, RecursionError):
            logger.warning("Unable to load %s, treating it as empty", self._path, exc_info=True)
            return self._empty()

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


class ProcessStateRepository(JsonDocumentRepository[ProcessState]):
    def __init__(self, data_dir: Path) -> None:
        super().__init__(Path(data_dir) / PROC_TRACER_DATA_FILE, ProcessState.from_dict, ProcessState)


class MetricHistoryRepository(JsonDocumentRepository[MetricHistory]):
    def __init__(self, data_dir: Path) -> None:
        super().__init__(Path(data_dir) / STATS_DATA_FILE, MetricHistory.from_dict, MetricHistory)


class StartMarker:
    """
    Side channel recording that sampling was started.

    The marker holds the start time and the background worker's PID so the
    finish step can tell "never started" from "started but collected
    nothing", and knows which process to stop.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def mark(self, pid: int | None = None, started_at: int | None = None) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"startedAt": started_at or now_ms(), "pid": pid}
        self._path.write_text(json.dumps(payload), encoding="utf-8")

    def read(self) -> dict[str, Any]:
        """Marker payload; empty dict if absent or unreadable."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    @property
    def worker_pid(self) -> int | None:
        pid = self.read().get("pid")
        return pid if isinstance(pid, int) and pid > 0 else None

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
