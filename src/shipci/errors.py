# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class ShipCIError(Exception):
    """Base class for every error raised by shipci."""


@dataclass
class DefinitionError(ShipCIError):
    """
    The pipeline definition itself is invalid.

    Raised before any job starts: cycles in `needs`, unknown jobs,
    bad matrices, malformed expressions.
    """
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [self.message]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class ExpressionError(ShipCIError):
    """A `${{ }}` expression could not be parsed or resolved."""
    expression: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (in expression: {self.expression!r})"


@dataclass
class StepFailure(ShipCIError):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class StepTimeout(ShipCIError):
    job: str
    step: str
    timeout: float

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' exceeded the job timeout of {self.timeout:g}s"


class CancellationError(ShipCIError):
    """The run was cancelled while a job was executing."""
