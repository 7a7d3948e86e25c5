# errors.py
from __future__ import annotations


class DroneProvError(Exception):
    """Base class for errors raised by droneprov."""


class StageNotFoundError(DroneProvError):
    """Raised when the requested stage is not declared in the pipeline file."""

    def __init__(self, name: str, known: list[str]):
        self.name = name
        self.known = known
        super().__init__(f"stage '{name}' not found in build file (known: {', '.join(known) or 'none'})")


class UnknownStepError(DroneProvError):
    """Raised when a step name is not part of the compiled step list or roster."""

    def __init__(self, name: str, where: str = "steps"):
        self.name = name
        super().__init__(f"step '{name}' not found in {where}")


class RegistryError(DroneProvError):
    """Raised when an image digest cannot be resolved."""


class ExecutionError(DroneProvError):
    """Raised when the runtime cannot execute the stage at all."""

