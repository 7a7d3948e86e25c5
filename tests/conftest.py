from __future__ import annotations

import logging

import pytest

from droneprov.model import Build, Stage, StageStep, State, Step


def make_steps(*names: str, image: str = "alpine:3.19") -> list[Step]:
    return [Step(name=n, image=image, number=i) for i, n in enumerate(names)]


@pytest.fixture
def state() -> State:
    stage = Stage(
        name="default",
        steps=[StageStep(number=1, name="build"), StageStep(number=2, name="test")],
    )
    return State(build=Build(id=7), stage=stage)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger("droneprov")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)
