"""Console output formatting utilities for droneprov."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, List, Optional

from ..streamer import byte_len, split_lines

if TYPE_CHECKING:
    from ..model import Stage, State, Step


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # step output arrives from several threads
        self._lock = threading.Lock()

    def _print(self, *args, **kwargs) -> None:
        with self._lock:
            print(*args, **kwargs)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}")
        self._print("-" * len(title))

    def print_run_started(
        self,
        source: str,
        stage: str,
        step_count: int,
        build_id: int,
    ) -> None:
        """Print run start information."""
        self._print("\nRUN STARTED")
        self._print(f"Pipeline file: {source}")
        self._print(f"Stage: {stage}")
        self._print(f"Build: {build_id}")
        self._print(f"Steps: {step_count}")
        self._print()

    def print_plan(self, steps: List["Step"]) -> None:
        """Print which compiled steps will run."""
        self.print_header("PLAN")
        for step in steps:
            if step.skipped:
                self._print(f"  ⏭ {step.name} (skipped)")
            else:
                self._print(f"  ✓ {step.name}")

    def print_step(self, name: str) -> None:
        """Print step start message."""
        self._print(f"STEP: {name}")

    def print_step_status(self, name: str, status: str, exit_code: Optional[int] = None) -> None:
        if exit_code:
            self._print(f"STEP {status.upper()}: {name} (exit={exit_code})")
        else:
            self._print(f"STEP {status.upper()}: {name}")

    def print_log_line(self, step: str, line: str) -> None:
        self._print(f"[{step}] {line}")

    def print_results(self, stage: "Stage") -> None:
        """Print final results summary."""
        self._print("\n" + "=" * 40)
        self._print(f"RESULTS ({stage.name}: {stage.status.value.upper()})")
        self._print("=" * 40)
        for step in stage.steps:
            self._print(f"  {step.number}. {step.name}: {step.status.value.upper()}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


class _ConsoleWriter:
    def __init__(self, console: Console, name: str):
        self.console = console
        self.name = name

    def write(self, data: bytes | str) -> int:
        for line in split_lines(data):
            self.console.print_log_line(self.name, line)
        return byte_len(data)

    def close(self) -> None:
        pass


class ConsoleStreamer:
    """Echoes step output to the console, one prefixed line at a time."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()

    def stream(self, state: "State", name: str) -> _ConsoleWriter:
        return _ConsoleWriter(self.console, name)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
