import threading

import pytest

from droneprov.compiler import Compiler
from droneprov.dsl import pipeline, step
from droneprov.errors import ExecutionError
from droneprov.execer import Execer, build_script
from droneprov.model import Build, State, Status
from droneprov.selection import apply_selection, stage_roster
from droneprov.streamer import JSONFileStreamer, read_records
from droneprov.ui.console import Console


def _run(tmp_path, p, procs=1, **selection):
    spec = Compiler().compile(p, Build(id=1))
    spec.steps = apply_selection(spec.steps, **selection)
    state = State(build=Build(id=1), stage=stage_roster(p.name, spec.steps))
    streamer = JSONFileStreamer("run", tmp_path / "logs")
    execer = Execer(streamer, procs=procs, workdir=tmp_path, console=Console())
    try:
        execer.exec(spec, state)
    finally:
        streamer.close()
    return state, read_records(streamer.log_file)


def _statuses(state):
    return {s.name: s.status for s in state.stage.steps}


def test_build_script_echoes_commands():
    script = build_script(["echo hi", "make test"])
    assert script.splitlines() == ["set -e", "echo '+ echo hi'", "echo hi", "echo '+ make test'", "make test"]


def test_successful_stage_streams_output(tmp_path):
    p = pipeline(
        "default",
        step("build", "alpine", "echo compiling"),
        step("test", "alpine", "echo testing", "echo $DRONE_STEP_NAME"),
    )

    state, records = _run(tmp_path, p)

    assert state.stage.status is Status.SUCCESS
    assert _statuses(state) == {"build": Status.SUCCESS, "test": Status.SUCCESS}
    test_lines = [r["line"] for r in records if r["stepName"] == "test"]
    assert test_lines == ["+ echo testing", "testing", "+ echo $DRONE_STEP_NAME", "test"]
    assert [r["pos"] for r in records if r["stepName"] == "test"] == [1, 2, 3, 4]
    assert {r["stepNumber"] for r in records if r["stepName"] == "test"} == {2}


def test_failure_skips_remaining_steps(tmp_path):
    p = pipeline(
        "default",
        step("build", "alpine", "exit 3"),
        step("test", "alpine", "echo never"),
    )

    state, records = _run(tmp_path, p)

    assert state.stage.status is Status.FAILURE
    assert _statuses(state) == {"build": Status.FAILURE, "test": Status.SKIPPED}
    assert state.stage.find("build").exit_code == 3
    assert not [r for r in records if r["stepName"] == "test"]


def test_ignored_failure_does_not_fail_stage(tmp_path):
    p = pipeline(
        "default",
        step("lint", "alpine", "false", ignore_errors=True),
        step("test", "alpine", "true"),
    )

    state, _ = _run(tmp_path, p)

    assert state.stage.status is Status.SUCCESS
    assert _statuses(state) == {"lint": Status.FAILURE, "test": Status.SUCCESS}


def test_skipped_steps_do_not_run_and_are_not_on_roster(tmp_path):
    p = pipeline(
        "default",
        step("build", "alpine", "echo build"),
        step("test", "alpine", "echo test"),
    )

    state, records = _run(tmp_path, p, exclude=["test"])

    assert [s.name for s in state.stage.steps] == ["build"]
    assert {r["stepName"] for r in records} == {"build"}


def test_depends_on_runs_as_graph(tmp_path):
    p = pipeline(
        "default",
        step("a", "alpine", "echo a"),
        step("b", "alpine", "echo b", depends_on=["a"]),
        step("c", "alpine", "echo c", depends_on=["a"]),
        step("d", "alpine", "echo d", depends_on=["b", "c"]),
    )

    state, records = _run(tmp_path, p, procs=2)

    assert state.stage.status is Status.SUCCESS
    order = [r["stepName"] for r in records if not r["line"].startswith("+")]
    assert order[0] == "a"
    assert order[-1] == "d"


def test_dependency_on_skipped_step_is_satisfied(tmp_path):
    p = pipeline(
        "default",
        step("a", "alpine", "echo a"),
        step("b", "alpine", "echo b", depends_on=["a"]),
    )

    state, _ = _run(tmp_path, p, exclude=["a"])

    assert _statuses(state) == {"b": Status.SUCCESS}


def test_missing_dependency_is_an_execution_error(tmp_path):
    p = pipeline("default", step("a", "alpine", "true", depends_on=["ghost"]))

    with pytest.raises(ExecutionError):
        _run(tmp_path, p)


def test_cancel_kills_stage(tmp_path):
    p = pipeline(
        "default",
        step("slow", "alpine", "sleep 30"),
        step("after", "alpine", "true"),
    )
    spec = Compiler().compile(p, Build())
    state = State(build=Build(), stage=stage_roster(p.name, spec.steps))
    streamer = JSONFileStreamer("run", tmp_path)
    execer = Execer(streamer, workdir=tmp_path, console=Console())

    timer = threading.Timer(0.5, execer.cancel)
    timer.start()
    try:
        execer.exec(spec, state)
    finally:
        timer.cancel()
        streamer.close()

    assert state.stage.status is Status.KILLED
    assert _statuses(state) == {"slow": Status.KILLED, "after": Status.SKIPPED}


def test_step_that_cannot_start_honours_ignore_errors(tmp_path):
    p = pipeline(
        "default",
        step("lint", "alpine", "true", ignore_errors=True, cwd="missing-dir"),
        step("test", "alpine", "true"),
    )

    state, _ = _run(tmp_path, p)

    assert state.stage.status is Status.SUCCESS
    assert _statuses(state) == {"lint": Status.ERROR, "test": Status.SUCCESS}
    assert state.stage.find("lint").exit_code == 255


def test_step_that_cannot_start_fails_stage(tmp_path):
    p = pipeline(
        "default",
        step("lint", "alpine", "true", cwd="missing-dir"),
        step("test", "alpine", "true"),
    )

    state, _ = _run(tmp_path, p)

    assert state.stage.status is Status.FAILURE
    assert _statuses(state) == {"lint": Status.ERROR, "test": Status.SKIPPED}
