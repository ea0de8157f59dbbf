# runner.py
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from . import trigger as triggers
from .actions import ActionRegistry, UnknownAction
from .dag import build_dag, topo_levels
from .errors import CancellationError, DefinitionError, ExpressionError, StepFailure, StepTimeout
from .executor import JobContext, run_job
from .expr import STATUS_KEY, Lenient, StatusView, check, context_keys, evaluate_condition, interpolate, uses_status_function
from .matrix import aggregate_status, expand_all, is_resolved
from .model import Event, Job, JobInstance, JobStatus, Pipeline
from .outputs import OutputContext
from .secret_store import Secrets
from .ui.console import Console, get_console

# event (trigger) ---> validate ---> expand ---> schedule ---> steps ---> outputs

# Expression contexts available per field.
PIPELINE_CONTEXTS = {"github", "trigger", "secrets", "env"}
JOB_CONTEXTS = {"github", "trigger", "needs", "secrets", "env", "matrix"}
STEP_CONTEXTS = JOB_CONTEXTS | {"steps"}

_RESULT_NAMES = {
    JobStatus.SUCCEEDED: "success",
    JobStatus.FAILED: "failure",
    JobStatus.SKIPPED: "skipped",
}


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def _check(job: Job, where: str, text: Optional[str], contexts: Set[str], *, bare: bool = False) -> None:
    if not text:
        return
    try:
        check(text, contexts, bare=bare)
        unknown_needs = context_keys(text, "needs", bare=bare) - set(job.needs)
    except ExpressionError as e:
        raise DefinitionError(f"Job '{job.name}' {where}: {e}") from e
    if unknown_needs:
        raise DefinitionError(
            f"Job '{job.name}' {where} reads needs it does not declare",
            {"needs": sorted(unknown_needs)},
        )


def _check_job_expressions(job: Job) -> None:
    _check(job, "if", job.condition, JOB_CONTEXTS, bare=True)
    _check(job, "runs-on", job.runs_on, {"matrix"})
    _check(job, "name", job.display_name, {"matrix"})
    for key, value in job.env.items():
        _check(job, f"env.{key}", str(value), JOB_CONTEXTS)

    step_ids: Set[str] = set()
    for step in job.steps:
        if (step.run is None) == (step.uses is None):
            raise DefinitionError(f"Job '{job.name}' step '{step.name}' needs exactly one of run/uses")
        fields = {"name": step.name, "run": step.run, "working-directory": step.cwd}
        fields.update({f"with.{k}": str(v) for k, v in step.with_.items()})
        fields.update({f"env.{k}": str(v) for k, v in step.env.items()})
        for where, text in fields.items():
            _check(job, f"step '{step.name}' {where}", text, STEP_CONTEXTS)
        _check(job, f"step '{step.name}' if", step.condition, STEP_CONTEXTS, bare=True)

        referenced: Set[str] = set()
        for text in fields.values():
            if text:
                referenced |= context_keys(text, "steps")
        if step.condition:
            referenced |= context_keys(step.condition, "steps", bare=True)
        unknown = referenced - step_ids
        if unknown:
            raise DefinitionError(
                f"Job '{job.name}' step '{step.name}' reads steps that have not run yet",
                {"steps": sorted(unknown)},
            )
        if step.id:
            if step.id in step_ids:
                raise DefinitionError(f"Job '{job.name}' has two steps with id '{step.id}'")
            step_ids.add(step.id)

    for key, value in job.outputs.items():
        _check(job, f"outputs.{key}", str(value), STEP_CONTEXTS)
        unknown = context_keys(str(value), "steps") - step_ids
        if unknown:
            raise DefinitionError(
                f"Job '{job.name}' output '{key}' reads unknown steps",
                {"steps": sorted(unknown)},
            )


def validate_pipeline(pipeline: Pipeline) -> Tuple[List[List[str]], List[JobInstance], Dict[str, List[int]]]:
    """
    Reject an invalid definition before anything runs.

    Returns (stages, arena, {template: [instance ids]}).
    Raises DefinitionError.
    """
    if not pipeline.jobs:
        raise DefinitionError(f"Pipeline '{pipeline.name}' has no jobs")
    adj, indeg = build_dag(pipeline.jobs)
    levels = topo_levels(adj, indeg)
    for key, value in pipeline.env.items():
        try:
            check(str(value), PIPELINE_CONTEXTS)
        except ExpressionError as e:
            raise DefinitionError(f"Pipeline '{pipeline.name}' env.{key}: {e}") from e
    for job in pipeline.jobs:
        if not job.steps:
            raise DefinitionError(f"Job '{job.name}' has no steps")
        _check_job_expressions(job)
    arena, by_template = expand_all(pipeline.jobs)
    return levels, arena, by_template


def plan(pipeline: Pipeline) -> List[List[str]]:
    """Stages of instance names; jobs in one stage may run concurrently."""
    levels, arena, by_template = validate_pipeline(pipeline)
    return [[arena[i].name for name in level for i in by_template[name]] for level in levels]


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class RunResult:
    triggered: bool
    reason: str
    instances: List[JobInstance]
    jobs: Dict[str, JobStatus]
    outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not any(s is JobStatus.FAILED for s in self.jobs.values())

    def status(self, name: str) -> JobStatus:
        """Status of a template (aggregated) or of a single instance."""
        if name in self.jobs:
            return self.jobs[name]
        for inst in self.instances:
            if inst.name == name:
                return inst.status
        raise KeyError(name)

    def summary(self) -> Dict[str, str]:
        return {inst.name: inst.status.value for inst in self.instances}


# ----------------------------------------------------------------------
# Run
# ----------------------------------------------------------------------

class PipelineRun:
    """
    One instantiation of a pipeline for one event.

    Construction validates the definition (DefinitionError before any job
    starts). execute() schedules instances on a thread pool as soon as all
    of their template's `needs` are terminal.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        event: Event,
        *,
        actions: Optional[ActionRegistry] = None,
        secrets: Optional[Secrets] = None,
        repo_root: str | Path = ".",
        max_workers: Optional[int] = None,
        fail_fast: bool = False,
        job_timeout: Optional[float] = None,
        console: Optional[Console] = None,
    ):
        self.pipeline = pipeline
        self.event = event
        self.actions = actions or ActionRegistry()
        self.secrets = secrets or Secrets()
        self.repo_root = Path(repo_root).resolve()
        self.fail_fast = fail_fast
        self.job_timeout = job_timeout
        self.console = console or get_console()

        config = pipeline.triggers or triggers.TriggerConfig.any_event()
        self.decision = triggers.evaluate(config, event)
        self.context = self.decision.context

        self.levels, self.instances, self.by_template = validate_pipeline(pipeline)
        self.jobs: Dict[str, Job] = {j.name: j for j in pipeline.jobs}
        self.outputs = OutputContext()
        self.max_workers = max_workers or max(1, len(self.instances))

        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._failed = False

    # ---- state ----

    def cancel(self) -> None:
        """Request cancellation: nothing new starts, running jobs are interrupted."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def instances_of(self, template: str) -> List[JobInstance]:
        return [self.instances[i] for i in self.by_template[template]]

    def template_status(self, template: str) -> JobStatus:
        return aggregate_status(i.status for i in self.instances_of(template))

    def _set(self, inst: JobInstance, status: JobStatus, reason: str | None = None) -> None:
        with self._lock:
            inst.status = status
            inst.reason = reason
            if status is JobStatus.FAILED:
                self._failed = True

    # ---- expression contexts ----

    def _base_expressions(self) -> Dict[str, Any]:
        return {
            "github": self.context.as_github(),
            "trigger": self.context.as_trigger(),
            "secrets": self.secrets,
            "env": {},
            "matrix": {},
            "needs": {},
        }

    def _needs_context(self, job: Job) -> Tuple[Dict[str, Any], StatusView]:
        snapshot = self.outputs.snapshot()
        needs: Dict[str, Any] = {}
        statuses = []
        for need in job.needs:
            status = self.template_status(need)
            statuses.append(status)
            needs[need] = {
                "result": _RESULT_NAMES.get(status, status.value),
                "outputs": Lenient(snapshot.get(need, {})),
            }
        view = StatusView(
            success=all(s is JobStatus.SUCCEEDED for s in statuses),
            failure=any(s is JobStatus.FAILED for s in statuses),
            cancelled=self.cancelled,
        )
        return needs, view

    def _base_env(self) -> Dict[str, str]:
        env = {
            "CI": "true",
            "GITHUB_EVENT_NAME": self.context.event_name,
            "GITHUB_REF": self.context.ref,
            "GITHUB_REF_NAME": triggers.ref_name(self.context.ref),
            "GITHUB_SHA": self.context.sha,
        }
        ctx = self._base_expressions()
        ctx["env"] = dict(env)
        env.update({k: interpolate(str(v), ctx) for k, v in self.pipeline.env.items()})
        return env

    # ---- scheduling ----

    def _skip_all(self, template: str, reason: str) -> None:
        for inst in self.instances_of(template):
            if not inst.status.terminal:
                self._set(inst, JobStatus.SKIPPED, reason)
        self.console.print_job_skipped(template, reason)

    def _activate(
        self,
        template: str,
        pool: ThreadPoolExecutor,
        in_flight: Dict[Future, int],
        base_env: Dict[str, str],
    ) -> None:
        """All needs of `template` are terminal: evaluate its condition per instance and submit."""
        job = self.jobs[template]
        if self.cancelled:
            self._skip_all(template, "run cancelled")
            return
        if self.fail_fast and self._failed:
            self._skip_all(template, "fail-fast: an earlier job failed")
            return

        needs, view = self._needs_context(job)
        expressions = self._base_expressions()
        expressions["needs"] = needs
        expressions[STATUS_KEY] = view

        for inst in self.instances_of(template):
            ctx = dict(expressions)
            ctx["matrix"] = inst.matrix
            ctx["env"] = base_env
            try:
                run_it = evaluate_condition(job.condition, ctx)
            except ExpressionError as e:
                self._set(inst, JobStatus.FAILED, f"configuration error: {e}")
                self.console.print_failure(inst.name, str(e), is_job=True)
                continue

            if not run_it:
                if not view.success and not uses_status_function(job.condition):
                    bad = [n for n in job.needs if self.template_status(n) is not JobStatus.SUCCEEDED]
                    reason = f"needs did not succeed: {', '.join(bad)}"
                else:
                    reason = f"condition is false: {job.condition}"
                self._set(inst, JobStatus.SKIPPED, reason)
                self.console.print_job_skipped(inst.name, reason)
                continue

            job_ctx = JobContext(
                expressions=ctx,
                actions=self.actions,
                repo_root=self.repo_root,
                base_env=dict(base_env),
                cancel=self._cancel,
                timeout=job.timeout if job.timeout is not None else self.job_timeout,
                console=self.console,
            )
            fut = pool.submit(self._run_instance, inst, job_ctx)
            in_flight[fut] = inst.id

    def _run_instance(self, inst: JobInstance, job_ctx: JobContext) -> Dict[str, str]:
        with self._lock:
            if self._cancel.is_set():
                raise CancellationError(f"[{inst.name}] cancelled before start")
            if self.fail_fast and self._failed:
                raise CancellationError(f"[{inst.name}] fail-fast: an earlier job failed")
            inst.status = JobStatus.RUNNING
        self.console.print_job_start(inst.display or inst.name, inst.runs_on)
        try:
            return run_job(inst, job_ctx)
        except CancellationError:
            raise
        except Exception:
            # queued instances check this before starting
            with self._lock:
                self._failed = True
            raise

    def _finish(self, inst: JobInstance, fut: Future) -> None:
        try:
            outputs = fut.result()
        except CancellationError as e:
            self._set(inst, JobStatus.SKIPPED, f"cancelled: {e}")
            self.console.print_job_skipped(inst.name, "cancelled")
        except StepFailure as e:
            self._set(inst, JobStatus.FAILED, str(e))
            self.console.print_failure(inst.name, str(e), exit_code=e.exit_code, output=e.stderr or e.stdout, is_job=True)
        except (ExpressionError, UnknownAction) as e:
            self._set(inst, JobStatus.FAILED, f"configuration error: {e}")
            self.console.print_failure(inst.name, str(e), is_job=True)
        except StepTimeout as e:
            self._set(inst, JobStatus.FAILED, str(e))
            self.console.print_failure(inst.name, str(e), is_job=True)
        except Exception as e:
            self._set(inst, JobStatus.FAILED, str(e))
            self.console.print_failure(inst.name, str(e), is_job=True)
        else:
            # Publish the whole output set before the job counts as succeeded.
            self.outputs.publish(inst.template, outputs)
            inst.outputs = dict(outputs)
            self._set(inst, JobStatus.SUCCEEDED)
            self.console.print_success(inst.name)

    def _result(self) -> RunResult:
        return RunResult(
            triggered=self.decision.run,
            reason=self.decision.reason,
            instances=list(self.instances),
            jobs={name: self.template_status(name) for name in self.by_template},
            outputs={job: dict(values) for job, values in self.outputs.snapshot().items()},
            cancelled=self.cancelled,
        )

    def execute(self) -> RunResult:
        self.console.print_trigger(self.decision.run, self.decision.reason)
        if not self.decision.run:
            for inst in self.instances:
                self._set(inst, JobStatus.SKIPPED, f"not triggered: {self.decision.reason}")
            return self._result()

        adj, indeg = build_dag(self.pipeline.jobs)
        for inst in self.instances:
            if self.jobs[inst.template].needs:
                inst.status = JobStatus.BLOCKED

        try:
            base_env = self._base_env()
        except ExpressionError as e:
            reason = f"configuration error: pipeline env: {e}"
            self.console.print_failure(self.pipeline.name, str(e))
            for inst in self.instances:
                self._set(inst, JobStatus.FAILED, reason)
            return self._result()

        ready: List[str] = sorted(name for name, deg in indeg.items() if deg == 0)
        in_flight: Dict[Future, int] = {}

        def resolve(name: str) -> None:
            # unlock dependents once every instance of `name` is terminal
            for nxt in sorted(adj[name]):
                indeg[nxt] -= 1
                if indeg[nxt] == 0:
                    ready.append(nxt)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while ready or in_flight:
                try:
                    # schedule all currently ready
                    while ready:
                        name = ready.pop(0)
                        self._activate(name, pool, in_flight, base_env)
                        if is_resolved(i.status for i in self.instances_of(name)):
                            resolve(name)

                    if not in_flight:
                        break

                    # wait for one completion, then loop to schedule newly-ready jobs
                    fut = next(as_completed(list(in_flight.keys())))
                    inst = self.instances[in_flight.pop(fut)]
                    self._finish(inst, fut)
                    if is_resolved(i.status for i in self.instances_of(inst.template)):
                        resolve(inst.template)
                except KeyboardInterrupt:
                    if self.cancelled:
                        raise
                    self.console.print_info("\nCancelling run...")
                    self.cancel()

        for inst in self.instances:
            if not inst.status.terminal:
                self._set(inst, JobStatus.SKIPPED, "run ended before the job could start")
        return self._result()


def run_pipeline(pipeline: Pipeline, event: Event, **kwargs: Any) -> RunResult:
    """Validate, trigger-check and execute `pipeline` for `event`."""
    return PipelineRun(pipeline, event, **kwargs).execute()


def results_table(instances: Iterable[JobInstance]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for inst in instances:
        status = inst.status.value.upper()
        out[inst.name] = f"{status} ({inst.reason})" if inst.reason else status
    return out
