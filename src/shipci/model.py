# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Step:
    """
    A single unit inside a job: either a shell command (`run`) or an
    action invocation (`uses` + `with_` inputs).
    """
    name: str
    run: str | None = None
    uses: str | None = None
    id: str | None = None
    with_: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    condition: str | None = None
    cwd: str | None = None

    @property
    def kind(self) -> str:
        return "action" if self.uses else "shell"

    @property
    def display(self) -> str:
        return self.run if self.run is not None else (self.uses or "")


@dataclass(frozen=True)
class Matrix:
    """
    Matrix strategy of a job.

    axes:    {"os": ["ubuntu", "macos"], "toolchain": ["stable"]}
    include: extra combinations, or extra keys merged into matching ones
    exclude: combinations removed from the product
    """
    axes: Dict[str, List[Any]] = field(default_factory=dict)
    include: List[Dict[str, Any]] = field(default_factory=list)
    exclude: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Job:
    """
    A job template: steps + dependencies + run condition.

    A job with a matrix is expanded into one JobInstance per combination;
    without one it yields exactly one instance.
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    runs_on: str = "local"
    matrix: Optional[Matrix] = None
    condition: str | None = None        # `if:`; None means success()
    outputs: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    timeout: float | None = None        # seconds; None means no timeout
    display_name: str | None = None


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


@dataclass(frozen=True)
class Event:
    """The triggering event: push, pull_request, or any other event name."""
    kind: str
    ref: str
    sha: str = ""
    base_ref: str | None = None


@dataclass
class Pipeline:
    """
    A whole workflow: triggers + job templates.

    triggers is a trigger.TriggerConfig; None means every push and
    pull_request starts a run.
    """
    name: str
    jobs: list[Job]
    triggers: Any = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class JobInstance:
    """One runtime instantiation of a Job for one matrix combination."""
    id: int
    template: str
    name: str
    job: Job
    matrix: Dict[str, Any] = field(default_factory=dict)
    runs_on: str = "local"
    display: str | None = None
    status: JobStatus = JobStatus.PENDING
    reason: str | None = None
    outputs: Dict[str, str] = field(default_factory=dict)
    step_results: Dict[str, str] = field(default_factory=dict)  # step name -> outcome
