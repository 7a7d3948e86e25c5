__version__ = "0.1.0"

from .dsl import step, service, pipeline, pipelines, PipelineBuilder
from .model import Build, ErrPolicy, Pipeline, RunPolicy, Service, Spec, Stage, State, Status, Step
from .provenance import ProvenanceStatement, assemble, generate_statement
from .selection import apply_selection, plan_selection
from .sequence import Sequence

__all__ = [
    "step", "service", "pipeline", "pipelines", "PipelineBuilder",
    "Build", "ErrPolicy", "Pipeline", "RunPolicy", "Service", "Spec", "Stage", "State", "Status", "Step",
    "ProvenanceStatement", "assemble", "generate_statement",
    "apply_selection", "plan_selection", "Sequence",
]
