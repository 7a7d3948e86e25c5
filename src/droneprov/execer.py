# execer.py
# Reference runtime: executes the selected steps of a compiled spec as host
# shell scripts. The step image is metadata only here; no container starts.

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .errors import ExecutionError
from .model import RunPolicy, Spec, StageStep, State, Status, Step
from .streamer import Streamer
from .ui.console import Console, get_console

log = logging.getLogger(__name__)


def build_script(commands: List[str]) -> str:
    """Shell script that echoes and runs each command, stopping at the first failure."""
    lines = ["set -e"]
    for cmd in commands:
        lines.append(f"echo {shlex.quote('+ ' + cmd)}")
        lines.append(cmd)
    return "\n".join(lines) + "\n"


def _terminate(proc: subprocess.Popen) -> None:
    """Terminate the step shell and everything it started."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        pass


def _build_graph(steps: List[Step], spec: Spec) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Dependency graph of the steps that run.

    With no depends_on anywhere, steps run serially in declared order.
    Dependencies on skipped steps count as satisfied.
    """
    names = [s.name for s in steps]
    adj: Dict[str, Set[str]] = {n: set() for n in names}   # dep -> dependents
    indeg: Dict[str, int] = {n: 0 for n in names}

    if not any(s.depends_on for s in steps):
        for prev, nxt in zip(names, names[1:]):
            adj[prev].add(nxt)
            indeg[nxt] += 1
        return adj, indeg

    for s in steps:
        for d in s.depends_on:
            if spec.step(d) is None:
                raise ExecutionError(f"step '{s.name}' depends on missing step '{d}'")
            if d not in adj:
                continue
            adj[d].add(s.name)
            indeg[s.name] += 1
    return adj, indeg


class Execer:
    """Runs a spec against a state, streaming every output line to `streamer`."""

    def __init__(
        self,
        streamer: Streamer,
        *,
        procs: int = 1,
        workdir: str | Path = ".",
        console: Optional[Console] = None,
    ):
        self.streamer = streamer
        self.procs = max(1, procs)
        self.workdir = Path(workdir).resolve()
        self.console = console or get_console()
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._running: Dict[str, subprocess.Popen] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop scheduling and terminate every running step."""
        self._cancelled.set()
        with self._lock:
            running = list(self._running.items())
        for name, proc in running:
            log.info("terminating step %s", name)
            _terminate(proc)

    # ------------------------------------------------------------------
    # single step
    # ------------------------------------------------------------------

    def _stream_output(self, proc: subprocess.Popen, state: State, step: Step) -> None:
        writer = self.streamer.stream(state, step.name)
        broken = False
        try:
            for line in proc.stdout or ():
                if broken:
                    continue
                try:
                    writer.write(line)
                except OSError as e:
                    # logging is best-effort, the step keeps running
                    log.warning("log stream for step %s failed: %s", step.name, e)
                    broken = True
        finally:
            writer.close()

    def _run_step(self, step: Step, entry: StageStep, state: State) -> Status:
        entry.status = Status.RUNNING
        self.console.print_step(step.name)

        if not step.commands:
            entry.exit_code = 0
            return Status.SUCCESS

        cwd = (self.workdir / (step.cwd or ".")).resolve()
        env = os.environ.copy()
        env.update(step.environment)

        try:
            proc = subprocess.Popen(
                build_script(step.commands),
                shell=True,
                cwd=str(cwd),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            log.error("step %s could not start: %s", step.name, e)
            entry.exit_code = 255
            return Status.ERROR

        with self._lock:
            self._running[step.name] = proc
        if self.cancelled:
            _terminate(proc)
        try:
            self._stream_output(proc, state, step)
            code = proc.wait()
        finally:
            with self._lock:
                self._running.pop(step.name, None)

        entry.exit_code = code
        if self.cancelled:
            return Status.KILLED
        return Status.SUCCESS if code == 0 else Status.FAILURE

    # ------------------------------------------------------------------
    # stage
    # ------------------------------------------------------------------

    def exec(self, spec: Spec, state: State) -> None:
        """
        Execute every step with RunPolicy.ALWAYS and record statuses on
        `state.stage`. A step failure is recorded, not raised; after one
        (unless the step ignores errors) nothing new is scheduled.

        Raises:
            ExecutionError: if the step graph cannot be built
        """
        steps = [s for s in spec.steps if s.run_policy is RunPolicy.ALWAYS]
        entries: Dict[str, StageStep] = {}
        for s in steps:
            entry = state.stage.find(s.name)
            if entry is None:
                raise ExecutionError(f"step '{s.name}' is missing from the stage roster")
            entries[s.name] = entry

        by_name = {s.name: s for s in steps}
        adj, indeg = _build_graph(steps, spec)
        ready: List[str] = [s.name for s in steps if indeg[s.name] == 0]
        in_flight: Dict = {}
        failed = False

        state.stage.status = Status.RUNNING

        with ThreadPoolExecutor(max_workers=self.procs) as pool:
            while ready or in_flight:
                while ready and not failed and not self.cancelled:
                    name = ready.pop(0)
                    fut = pool.submit(self._run_step, by_name[name], entries[name], state)
                    in_flight[fut] = name

                if not in_flight:
                    break

                fut = next(as_completed(list(in_flight.keys())))
                name = in_flight.pop(fut)
                entry = entries[name]
                status = fut.result()
                entry.status = status
                self.console.print_step_status(name, status.value, entry.exit_code)

                ok = status is Status.SUCCESS or (status in (Status.FAILURE, Status.ERROR) and entry.err_ignore)
                if ok:
                    for nxt in sorted(adj[name], key=lambda n: by_name[n].number):
                        indeg[nxt] -= 1
                        if indeg[nxt] == 0:
                            ready.append(nxt)
                else:
                    failed = True

        for entry in entries.values():
            if entry.status is Status.PENDING:
                entry.status = Status.SKIPPED

        if self.cancelled:
            state.stage.status = Status.KILLED
        elif failed:
            state.stage.status = Status.FAILURE
        else:
            state.stage.status = Status.SUCCESS
        log.debug("stage %s finished: %s", state.stage.name, state.stage.status.value)
