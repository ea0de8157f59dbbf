"""Console output formatting utilities for shipci."""

from __future__ import annotations

import sys
import threading
from typing import Callable, Dict, List, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, redact: Optional[Callable[[str], str]] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            redact: Applied to every line before printing (secret masking)
        """
        self.debug = debug
        self.redact = redact or (lambda text: text)
        self._lock = threading.Lock()

    def _out(self, text: str, *, err: bool = False) -> None:
        # Jobs print from worker threads; keep each line whole.
        with self._lock:
            print(self.redact(text), file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        ref: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Workflow: {workflow}")
        self._out(f"Event: {event} {ref}")
        self._out(f"Jobs: {job_count}")
        self._out("")

    def print_trigger(self, run: bool, reason: str) -> None:
        self._out(f"TRIGGER: {'run' if run else 'ignored'} ({reason})")

    def print_job_start(self, name: str, runs_on: str | None = None) -> None:
        """Print job start message."""
        suffix = f" [{runs_on}]" if runs_on else ""
        self._out(f"\nJOB STARTED: {name}{suffix}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str) -> None:
        self._out(f"[{job}] STEP SKIPPED: {name}")

    def print_success(self, name: str) -> None:
        """Print success message."""
        self._out(f"[{name}] STATUS: success")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            output: Optional tail of the step's output
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        self._out(f"{prefix}: {name}")
        if exit_code is not None:
            self._out(f"Exit code: {exit_code}")
        if self.debug:
            self._out(f"Error details: {reason}")
        else:
            # Show first line of error for non-debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            self._out(f"Error: {error_line}")
        if output:
            for line in output.rstrip().splitlines():
                self._out(f"  | {line}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._out(f"\nJOB SKIPPED: {name} ({reason})")

    def print_plan_stage(self, index: int, jobs: List[str]) -> None:
        """Print one stage of the execution plan."""
        self._out(f"=== Stage {index}: {', '.join(jobs)} ===")

    def print_plan_job(self, name: str, detail: str) -> None:
        """Print job selection plan."""
        self._out(f"  {name} ({detail})")

    def print_results(self, results: Dict[str, str]) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for job, status in results.items():
            self._out(f"  {job}: {status}")

    def print_outputs(self, outputs: Dict[str, Dict[str, str]]) -> None:
        if not outputs:
            return
        self._out("\nOUTPUTS")
        for job, values in outputs.items():
            for key, value in values.items():
                self._out(f"  {job}.{key} = {value}")

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
        self._out(f"\nERROR: {title}", err=True)
        self._out(f"{message}", err=True)
        if details:
            for detail in details:
                self._out(f"  {detail}", err=True)
        if suggestion:
            self._out(f"\n{suggestion}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


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
