# config.py
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

DEFAULT_PIPELINE_FILE = ".drone.py"
DEFAULT_HOME = "~/.droneci"
ENV_HOME = "DRONE_CI_HOME"
ENV_LOGS_DIR = "DRONE_CI_LOGS_DIR"


def lookup_env_or(name: str, default: str) -> str:
    """Value of environment variable `name`, or `default` when unset."""
    return os.environ.get(name, default)


def md5_of(value: str) -> str:
    # only used for stable, filesystem-safe names
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def parse_pairs(items: Iterable[str], what: str = "value") -> Dict[str, str]:
    """["A=1", "B=x=y"] -> {"A": "1", "B": "x=y"}"""
    out: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"invalid {what} {item!r}, expected KEY=VALUE")
        out[key] = value
    return out


@dataclass
class ExecConfig:
    """
    Everything one `exec` run needs. Created once per run and handed to
    each component; nothing here is process-global.
    """
    source: Path
    stage: str = "default"
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    resume_at: Optional[str] = None

    timeout: float = 3600.0
    procs: int = 1

    build_id: int = 1
    params: Dict[str, str] = field(default_factory=dict)
    environ: Dict[str, str] = field(default_factory=dict)

    home: Path = field(default_factory=lambda: Path(lookup_env_or(ENV_HOME, DEFAULT_HOME)).expanduser())
    logs_dir: Optional[Path] = None
    pipeline_id: Optional[str] = None

    provenance: bool = True
    echo: bool = True
    debug: bool = False
    trace: bool = False

    def __post_init__(self) -> None:
        self.source = Path(self.source)
        if self.logs_dir is None:
            env_logs = os.environ.get(ENV_LOGS_DIR)
            self.logs_dir = Path(env_logs).expanduser() if env_logs else self.home / "logs"
        if not self.pipeline_id:
            self.pipeline_id = md5_of(f"{self.source.resolve()}:{self.stage}")

    @property
    def log_level(self) -> str:
        if self.trace:
            return "trace"
        if self.debug:
            return "debug"
        return "info"

    @property
    def workdir(self) -> Path:
        return self.source.resolve().parent
