# streamer.py
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Protocol

from .errors import UnknownStepError
from .model import State
from .sequence import Sequence

log = logging.getLogger(__name__)


class StepWriter(Protocol):
    def write(self, data: bytes | str) -> int: ...

    def close(self) -> None: ...


class Streamer(Protocol):
    def stream(self, state: State, name: str) -> StepWriter: ...


# ----------------------------------------------------------------------
# Backing store
# ----------------------------------------------------------------------

class JSONLinesWriter:
    """
    Append-only JSON lines file shared by every step of a run.

    add() is serialised with a lock so loggers of concurrently running
    steps never interleave partial records.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._fh: Optional[IO[str]] = None

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")

    def add(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False)
        with self._lock:
            if self._fh is None:
                raise OSError(f"log store {self.path} is not open")
            self._fh.write(line + "\n")
            self._fh.flush()

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None


def read_records(path: str | Path) -> List[Dict[str, Any]]:
    """Read every record of a JSON lines log file."""
    records = []
    with Path(path).open("r", encoding="utf-8") as fh:
        for raw in fh:
            raw = raw.strip()
            if raw:
                records.append(json.loads(raw))
    return records


def byte_len(data: bytes | str) -> int:
    """Number of input bytes a sink consumes for `data`."""
    return len(data) if isinstance(data, bytes) else len(data.encode("utf-8"))


def split_lines(data: bytes | str) -> List[str]:
    """Split output into lines; one trailing newline does not make an empty record."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if data.endswith("\n"):
        data = data[:-1]
    return [part[:-1] if part.endswith("\r") else part for part in data.split("\n")]


# ----------------------------------------------------------------------
# Per-step sink
# ----------------------------------------------------------------------

class JSONLogger:
    """Write sink for one step: every line becomes one record in the store."""

    def __init__(self, writer: JSONLinesWriter, number: int, name: str, stream_id: int = 0):
        self.writer = writer
        self.number = number
        self.name = name
        self.stream_id = stream_id
        # per-line ordinal, owned by this logger only
        self.pos = 0

    def write(self, data: bytes | str) -> int:
        for part in split_lines(data):
            self.pos += 1
            self.writer.add(
                {
                    "stepNumber": self.number,
                    "stepName": self.name,
                    "pos": self.pos,
                    "line": part,
                }
            )
        return byte_len(data)

    def close(self) -> None:
        log.debug("closing log stream %d for step %s", self.stream_id, self.name)


class JSONFileStreamer:
    """Opens one JSON lines file per pipeline run and hands out step loggers."""

    def __init__(self, pipeline_id: str, logs_dir: str | Path):
        self.log_file = Path(logs_dir) / f"{pipeline_id}.log"
        self.writer = JSONLinesWriter(self.log_file)
        self.writer.open()
        # labels each stream handed out, in request order
        self.col = Sequence()
        log.debug("writing step logs to %s", self.log_file)

    def stream(self, state: State, name: str) -> JSONLogger:
        step = state.stage.find(name)
        if step is None:
            raise UnknownStepError(name, where=f"stage '{state.stage.name}' roster")
        return JSONLogger(self.writer, step.number, step.name, stream_id=self.col.next())

    def close(self) -> None:
        self.writer.close()


# ----------------------------------------------------------------------
# Fan-out
# ----------------------------------------------------------------------

class _MultiWriter:
    def __init__(self, writers: List[StepWriter]):
        self.writers = writers

    def write(self, data: bytes | str) -> int:
        for w in self.writers:
            w.write(data)
        return byte_len(data)

    def close(self) -> None:
        for w in self.writers:
            w.close()


class MultiStreamer:
    """Sends every step's output to several streamers (file + console)."""

    def __init__(self, *streamers: Streamer):
        self.streamers = list(streamers)

    def stream(self, state: State, name: str) -> _MultiWriter:
        return _MultiWriter([s.stream(state, name) for s in self.streamers])
