# dsl.py
from __future__ import annotations

from typing import Dict, List, Optional

from .model import ErrPolicy, Pipeline, Service, Step


def step(
    name: str,
    image: str,
    *commands: str,
    depends_on: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    ignore_errors: bool = False,
    cwd: str | None = None,
) -> Step:
    """step("test", "python:3.12", "pip install -e .", "pytest -q")"""
    return Step(
        name=name,
        image=image,
        commands=list(commands),
        depends_on=list(depends_on or []),
        # force values to str, they end up in a process environment
        environment={k: str(v) for k, v in (env or {}).items()},
        err_policy=ErrPolicy.IGNORE if ignore_errors else ErrPolicy.FAIL,
        cwd=cwd,
    )


def service(name: str, image: str) -> Service:
    return Service(name=name, image=image)


def pipeline(
    name: str,
    *steps: Step,
    services: Optional[List[Service]] = None,
    env: Optional[Dict[str, str]] = None,
    kind: str = "pipeline",
    type: str = "docker",
) -> Pipeline:
    if not steps:
        raise ValueError(f"pipeline({name!r}) must have at least one step")

    names = [s.name for s in steps]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"pipeline({name!r}) has duplicate step names: {dupes}")

    return Pipeline(
        name=name,
        steps=list(steps),
        services=list(services or []),
        environment={k: str(v) for k, v in (env or {}).items()},
        kind=kind,
        type=type,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class PipelineBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._services: list[Service] = []
        self._env: dict[str, str] = {}
        self._kind = "pipeline"
        self._type = "docker"

    def define_step(self, name: str, image: str, *commands: str, **kwargs):
        self._steps.append(step(name, image, *commands, **kwargs))
        return self

    def define_service(self, name: str, image: str):
        self._services.append(service(name, image))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def of_type(self, type: str, kind: str = "pipeline"):
        self._type = type
        self._kind = kind
        return self

    def build(self) -> Pipeline:
        return pipeline(
            self.name,
            *self._steps,
            services=self._services,
            env=self._env,
            kind=self._kind,
            type=self._type,
        )


def pipelines(*items: Pipeline) -> List[Pipeline]:
    """
    Pipeline file helper:

        from droneprov import pipelines, pipeline, step

        def define():
            return pipelines(pipeline("default", step(...)))
    """
    return list(items)
