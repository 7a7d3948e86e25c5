# provenance.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .model import Build, Pipeline, Step
from .registry import DigestResolver

log = logging.getLogger(__name__)

STATEMENT_INTOTO_V01 = "https://in-toto.io/Statement/v0.1"
PREDICATE_SLSA_PROVENANCE = "https://slsa.dev/provenance/v0.2"
BUILDER_ID = "https://harness.drone.io/Attestations/DockerRunner"
DIGEST_ALGORITHM = "sha256"


@dataclass(frozen=True)
class Material:
    uri: str
    digest: str  # hex, "" when unresolved

    def to_dict(self) -> Dict[str, Any]:
        return {"uri": self.uri, "digest": {DIGEST_ALGORITHM: self.digest}}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Material:
        return cls(uri=data["uri"], digest=(data.get("digest") or {}).get(DIGEST_ALGORITHM, ""))


@dataclass(frozen=True)
class ProvenanceStatement:
    """An in-toto statement carrying a SLSA v0.2 provenance predicate."""
    build_type: str
    build_invocation_id: str
    parameters: Dict[str, str]
    steps: List[Dict[str, Any]]
    materials: List[Material]
    builder_id: str = BUILDER_ID
    statement_type: str = STATEMENT_INTOTO_V01
    predicate_type: str = PREDICATE_SLSA_PROVENANCE
    # output artifacts are not tracked yet
    subject: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statementType": self.statement_type,
            "predicateType": self.predicate_type,
            "subject": list(self.subject),
            "predicate": {
                "buildType": self.build_type,
                "builder": {"id": self.builder_id},
                "metadata": {"buildInvocationId": self.build_invocation_id},
                "invocation": {"parameters": dict(self.parameters)},
                "buildConfig": {"steps": list(self.steps)},
                "materials": [m.to_dict() for m in self.materials],
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProvenanceStatement:
        predicate = data["predicate"]
        return cls(
            build_type=predicate["buildType"],
            build_invocation_id=predicate.get("metadata", {}).get("buildInvocationId", ""),
            parameters=predicate.get("invocation", {}).get("parameters") or {},
            steps=predicate.get("buildConfig", {}).get("steps") or [],
            materials=[Material.from_dict(m) for m in predicate.get("materials") or []],
            builder_id=predicate["builder"]["id"],
            statement_type=data["statementType"],
            predicate_type=data["predicateType"],
            subject=data.get("subject") or [],
        )

    @classmethod
    def from_json(cls, text: str) -> ProvenanceStatement:
        return cls.from_dict(json.loads(text))


def material_uri(image: str, digest: str) -> str:
    if digest:
        return f"pkg:{image}@{DIGEST_ALGORITHM}:{digest}"
    return f"pkg:{image}"


def materials(steps: List[Step], resolver: DigestResolver) -> List[Material]:
    """One material per step, in declared order. Lookup failures give an empty digest."""
    out: List[Material] = []
    for step in steps:
        try:
            dig = resolver.digest(step.image)
        except Exception as e:
            log.warning("could not resolve digest for step %s (%s): %s", step.name, step.image, e)
            dig = ""
        out.append(Material(uri=material_uri(step.image, dig), digest=dig))
    return out


def assemble(
    pipeline: Pipeline,
    build: Build,
    steps: List[Step],
    resolver: DigestResolver,
) -> ProvenanceStatement:
    """
    Build the statement over the full compiled step list.

    Skipped steps are part of `steps` and therefore of the materials: the
    statement records what was compiled, not only what ran.
    """
    return ProvenanceStatement(
        build_type=f"{pipeline.kind}/{pipeline.type}",
        build_invocation_id=str(build.id),
        parameters=dict(build.params),
        steps=[s.to_dict() for s in steps],
        materials=materials(steps, resolver),
    )


def provenance_path(source: str | Path) -> Path:
    """`dir/.drone.py` -> `dir/.drone.py-provenance.json`."""
    source = Path(source)
    return source.parent / f"{source.name}-provenance.json"


def write_statement(statement: ProvenanceStatement, path: str | Path) -> Path:
    path = Path(path)
    path.write_text(statement.to_json() + "\n", encoding="utf-8")
    return path


def generate_statement(
    source: str | Path,
    pipeline: Pipeline,
    build: Build,
    steps: List[Step],
    resolver: DigestResolver,
) -> Optional[ProvenanceStatement]:
    """
    Assemble the statement and write it next to the pipeline file.

    Never raises: provenance is produced after the build already ran, so
    failures are logged and the build result stands.
    """
    try:
        statement = assemble(pipeline, build, steps, resolver)
    except Exception as e:
        log.error("Error generating attestation, %s", e)
        return None

    fp = provenance_path(source)
    try:
        write_statement(statement, fp)
    except OSError as e:
        log.error("Error writing attestation to %s, %s", fp, e)
        return statement

    log.info("provenance written to %s", fp)
    return statement
