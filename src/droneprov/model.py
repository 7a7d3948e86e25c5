# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# the checkout step, never filtered by include/exclude
CLONE_STEP = "clone"


class RunPolicy(str, Enum):
    ALWAYS = "always"
    NEVER = "never"


class ErrPolicy(str, Enum):
    FAIL = "fail"
    IGNORE = "ignore"


class Status(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    KILLED = "killed"
    SKIPPED = "skipped"

    @property
    def failing(self) -> bool:
        return self in (Status.FAILURE, Status.ERROR, Status.KILLED)


@dataclass
class Step:
    """A single compiled step of a stage (conventionally one container)."""
    name: str
    image: str = ""
    commands: List[str] = field(default_factory=list)

    # zero-based ordinal assigned by the compiler
    number: int = 0

    environment: Dict[str, str] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    run_policy: RunPolicy = RunPolicy.ALWAYS
    err_policy: ErrPolicy = ErrPolicy.FAIL
    cwd: str | None = None

    @property
    def skipped(self) -> bool:
        return self.run_policy is RunPolicy.NEVER

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "number": self.number,
            "image": self.image,
            "commands": list(self.commands),
            "environment": dict(self.environment),
            "depends_on": list(self.depends_on),
            "labels": dict(self.labels),
            "run_policy": self.run_policy.value,
            "err_policy": self.err_policy.value,
        }
        if self.cwd is not None:
            d["cwd"] = self.cwd
        return d


@dataclass(frozen=True)
class Service:
    """A long-running side-car declared on the pipeline."""
    name: str
    image: str = ""


@dataclass
class Pipeline:
    """
    A pipeline resource as declared in the pipeline file.

    kind/type make up the provenance build type ("pipeline/docker").
    """
    name: str
    steps: List[Step] = field(default_factory=list)
    services: List[Service] = field(default_factory=list)
    kind: str = "pipeline"
    type: str = "docker"
    environment: Dict[str, str] = field(default_factory=dict)


@dataclass
class Spec:
    """Compiled, ordered step list for one stage."""
    steps: List[Step] = field(default_factory=list)

    def step(self, name: str) -> Optional[Step]:
        for s in self.steps:
            if s.name == name:
                return s
        return None


@dataclass
class StageStep:
    """One entry of the stage's step roster (steps that will actually run)."""
    number: int
    name: str
    status: Status = Status.PENDING
    err_ignore: bool = False
    exit_code: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "status": self.status.value,
            "err_ignore": self.err_ignore,
            "exit_code": self.exit_code,
        }


@dataclass
class Stage:
    name: str
    steps: List[StageStep] = field(default_factory=list)
    status: Status = Status.PENDING

    def find(self, name: str) -> Optional[StageStep]:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass
class Build:
    id: int = 1
    params: Dict[str, str] = field(default_factory=dict)


@dataclass
class State:
    """What the runtime mutates while executing a stage."""
    build: Build
    stage: Stage
    system: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "build": {"id": self.build.id, "params": dict(self.build.params)},
            "stage": self.stage.to_dict(),
            "system": dict(self.system),
        }
