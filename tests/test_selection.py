import pytest

from conftest import make_steps
from droneprov.errors import UnknownStepError
from droneprov.model import ErrPolicy, RunPolicy
from droneprov.selection import apply_selection, plan_selection, stage_roster


def _policies(steps):
    return {s.name: s.run_policy for s in steps}


def test_include_keeps_clone_and_listed_steps():
    steps = apply_selection(make_steps("clone", "build", "test"), include=["build"])
    assert _policies(steps) == {
        "clone": RunPolicy.ALWAYS,
        "build": RunPolicy.ALWAYS,
        "test": RunPolicy.NEVER,
    }


def test_exclude_skips_listed_steps():
    steps = apply_selection(make_steps("clone", "build", "test"), exclude=["test"])
    assert _policies(steps) == {
        "clone": RunPolicy.ALWAYS,
        "build": RunPolicy.ALWAYS,
        "test": RunPolicy.NEVER,
    }


def test_clone_is_never_excluded():
    steps = apply_selection(make_steps("clone", "build"), exclude=["clone", "build"])
    assert _policies(steps) == {"clone": RunPolicy.ALWAYS, "build": RunPolicy.NEVER}


def test_resume_at_with_exclude():
    steps = apply_selection(
        make_steps("clone", "build", "test", "deploy"),
        exclude=["build"],
        resume_at="test",
    )
    assert _policies(steps) == {
        "clone": RunPolicy.ALWAYS,
        "build": RunPolicy.NEVER,
        "test": RunPolicy.ALWAYS,
        "deploy": RunPolicy.ALWAYS,
    }


def test_exclude_wins_over_include():
    steps = apply_selection(make_steps("clone", "build", "test"), include=["build", "test"], exclude=["build"])
    assert _policies(steps)["build"] is RunPolicy.NEVER
    assert _policies(steps)["test"] is RunPolicy.ALWAYS


def test_no_directives_runs_everything():
    decisions = plan_selection(make_steps("clone", "build", "test"))
    assert set(decisions.values()) == {RunPolicy.ALWAYS}


def test_unknown_resume_at_is_an_error():
    with pytest.raises(UnknownStepError):
        apply_selection(make_steps("clone", "build"), resume_at="deploy")


def test_selection_keeps_order_and_does_not_touch_input():
    original = make_steps("clone", "build", "test")
    selected = apply_selection(original, include=["build"])

    assert [s.name for s in selected] == ["clone", "build", "test"]
    assert all(s.run_policy is RunPolicy.ALWAYS for s in original)
    assert selected[2] is not original[2]


def test_stage_roster_numbers_surviving_steps_from_one():
    steps = make_steps("clone", "build", "test", "deploy")
    steps[3].err_policy = ErrPolicy.IGNORE
    selected = apply_selection(steps, exclude=["build"])

    stage = stage_roster("default", selected)

    assert [(s.number, s.name) for s in stage.steps] == [(1, "clone"), (2, "test"), (3, "deploy")]
    assert stage.find("deploy").err_ignore is True
    assert stage.find("build") is None
