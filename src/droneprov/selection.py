# selection.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .errors import UnknownStepError
from .model import CLONE_STEP, ErrPolicy, RunPolicy, Stage, StageStep, Step

log = logging.getLogger(__name__)


def plan_selection(
    steps: List[Step],
    *,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    resume_at: Optional[str] = None,
) -> Dict[str, RunPolicy]:
    """
    Decide the run policy of every step.

    Phases run in a fixed order, each over the full list:
      1. include:   non-clone steps missing from `include` are skipped
      2. exclude:   non-clone steps listed in `exclude` are skipped
      3. resume-at: non-clone steps before `resume_at` that are listed in
                    `exclude` are skipped; the scan stops at `resume_at`

    A step matching both include and exclude ends up skipped. Policies the
    compiler already set to NEVER stay NEVER.

    Raises:
        UnknownStepError: if `resume_at` names no step in the list
    """
    include_set = set(include)
    exclude_set = set(exclude)
    names = [s.name for s in steps]

    if resume_at and resume_at not in names:
        raise UnknownStepError(resume_at, where="compiled steps (resume-at)")

    decisions: Dict[str, RunPolicy] = {s.name: s.run_policy for s in steps}

    # ---- include ----
    if include_set:
        for name in names:
            if name == CLONE_STEP:
                continue
            if name not in include_set:
                decisions[name] = RunPolicy.NEVER

    # ---- exclude ----
    if exclude_set:
        for name in names:
            if name == CLONE_STEP:
                continue
            if name in exclude_set:
                decisions[name] = RunPolicy.NEVER

    # ---- resume at ----
    if resume_at:
        for name in names:
            if name == resume_at:
                break
            if name == CLONE_STEP:
                continue
            if name in exclude_set:
                decisions[name] = RunPolicy.NEVER

    return decisions


def apply_selection(
    steps: List[Step],
    *,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    resume_at: Optional[str] = None,
) -> List[Step]:
    """
    Return copies of `steps` with the selected run policy applied.

    Order and length are unchanged: skipped steps stay in place with
    RunPolicy.NEVER so provenance and labels still see the whole list.
    """
    decisions = plan_selection(steps, include=include, exclude=exclude, resume_at=resume_at)
    selected = [replace(s, run_policy=decisions[s.name]) for s in steps]
    for s in selected:
        log.debug("step %s: %s", s.name, s.run_policy.value)
    return selected


def stage_roster(name: str, steps: List[Step]) -> Stage:
    """Build the stage roster from the steps that will run, numbered from 1."""
    stage = Stage(name=name)
    for step in steps:
        if step.run_policy is RunPolicy.NEVER:
            continue
        stage.steps.append(
            StageStep(
                number=len(stage.steps) + 1,
                name=step.name,
                err_ignore=step.err_policy is ErrPolicy.IGNORE,
            )
        )
    return stage
