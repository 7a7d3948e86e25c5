# compiler.py
from __future__ import annotations

import logging
import runpy
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import StageNotFoundError
from .log import TRACE
from .model import Build, Pipeline, Spec

log = logging.getLogger(__name__)

# labels used to look up step containers by name
LABEL_PIPELINE_FILE = "io.drone.desktop.pipeline.file"
LABEL_INCLUDES = "io.drone.desktop.pipeline.includes"
LABEL_EXCLUDES = "io.drone.desktop.pipeline.excludes"
LABEL_STAGE_NAME = "io.drone.stage.name"
LABEL_STEP_NAME = "io.drone.step.name"
LABEL_STEP_NUMBER = "io.drone.step.number"
LABEL_SERVICE = "io.drone.desktop.pipeline.service"

DEFAULT_STAGE = "default"


# ----------------------------------------------------------------------
# Pipeline loading (local python file)
# ----------------------------------------------------------------------

def load_pipelines(path: str | Path) -> List[Pipeline]:
    """
    Load pipelines from a python file.

    The file must define either:
      - define() -> List[Pipeline]
      - PIPELINES = [Pipeline, ...]
    """
    src = Path(path).expanduser().resolve()
    if not src.exists():
        raise FileNotFoundError(f"Pipeline file not found: {src}")

    globals_dict = runpy.run_path(str(src), run_name=f"droneprov_pipeline_{src.stem.lstrip('.')}")

    items = None
    if "define" in globals_dict and callable(globals_dict["define"]):
        items = globals_dict["define"]()
    elif "PIPELINES" in globals_dict:
        items = globals_dict["PIPELINES"]

    if isinstance(items, Pipeline):
        items = [items]
    if not isinstance(items, list) or not all(isinstance(p, Pipeline) for p in items):
        raise TypeError(
            "Pipeline file must return/define a List[Pipeline]. "
            "Define define() -> List[Pipeline] or PIPELINES = [Pipeline, ...]."
        )
    return items


def lookup(name: str, items: List[Pipeline]) -> Pipeline:
    for p in items:
        if p.name == name:
            return p
    raise StageNotFoundError(name, [p.name for p in items])


# ----------------------------------------------------------------------
# Compile
# ----------------------------------------------------------------------

class Compiler:
    """
    Turns a declared pipeline into the ordered step list the runtime executes.

    Steps are copied, so selection and labelling never touch the declaration.
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None, labels: Optional[Dict[str, str]] = None):
        self.environ = dict(environ or {})
        self.labels = dict(labels or {})

    def compile(self, pipeline: Pipeline, build: Build) -> Spec:
        spec = Spec()
        for i, declared in enumerate(pipeline.steps):
            env = {
                "CI": "true",
                "DRONE": "true",
                "DRONE_BUILD_NUMBER": str(build.id),
                "DRONE_STAGE_NAME": pipeline.name,
                "DRONE_STAGE_KIND": pipeline.kind,
                "DRONE_STAGE_TYPE": pipeline.type,
                "DRONE_STEP_NAME": declared.name,
                "DRONE_STEP_NUMBER": str(i),
            }
            env.update(build.params)
            env.update(self.environ)
            env.update(pipeline.environment)
            env.update(declared.environment)

            spec.steps.append(
                replace(
                    declared,
                    number=i,
                    commands=list(declared.commands),
                    depends_on=list(declared.depends_on),
                    environment=env,
                    labels={**self.labels, **declared.labels},
                )
            )
        log.debug("compiled %d step(s) for stage %s", len(spec.steps), pipeline.name)
        return spec


def label_steps(
    spec: Spec,
    pipeline: Pipeline,
    *,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> None:
    """Add the stage/step/selection/service labels to every compiled step."""
    include = list(include)
    exclude = list(exclude)
    services = {svc.name for svc in pipeline.services}

    for i, step in enumerate(spec.steps):
        extra = {
            LABEL_STAGE_NAME: pipeline.name.strip(),
            LABEL_STEP_NAME: step.name.strip(),
            LABEL_STEP_NUMBER: str(i),
        }
        if include:
            extra[LABEL_INCLUDES] = ",".join(include)
        if exclude:
            extra[LABEL_EXCLUDES] = ",".join(exclude)
        if step.name in services:
            log.log(TRACE, "%s Service == Step %s", step.name, step.name)
            extra[LABEL_SERVICE] = "true"

        step.labels = {**step.labels, **extra}
        log.log(TRACE, "Step %s, Labels: %r", step.name, step.labels)
