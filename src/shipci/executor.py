# executor.py
from __future__ import annotations

import os
import re
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .actions import ActionRegistry
from .errors import CancellationError, StepFailure, StepTimeout
from .expr import STATUS_KEY, Lenient, StatusView, evaluate_condition, interpolate
from .model import JobInstance, Step
from .ui.console import Console, get_console

# How often a running shell step checks for cancellation / timeout.
POLL_INTERVAL = 0.1
OUTPUT_TAIL = 4000

_SET_OUTPUT_RE = re.compile(r"^::set-output name=([^:]+)::(.*)$")


@dataclass
class JobContext:
    """Everything a job instance needs from its run, fixed at start time."""
    expressions: Mapping[str, Any]           # github, trigger, secrets, needs, ...
    actions: ActionRegistry
    repo_root: Path = Path(".")
    base_env: Dict[str, str] = field(default_factory=dict)
    cancel: threading.Event = field(default_factory=threading.Event)
    timeout: Optional[float] = None
    console: Optional[Console] = None


# ----------------------------------------------------------------------
# Step outputs
# ----------------------------------------------------------------------

def parse_output_file(text: str) -> Dict[str, str]:
    """
    Parse a step output file:

        key=value
        key<<DELIM
        multi
        line
        DELIM
    """
    outputs: Dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        heredoc = line.find("<<")
        equals = line.find("=")
        if heredoc != -1 and (equals == -1 or heredoc < equals):
            key, delim = line[:heredoc], line[heredoc + 2:]
            body = []
            i += 1
            while i < len(lines) and lines[i] != delim:
                body.append(lines[i])
                i += 1
            outputs[key] = "\n".join(body)
        elif equals != -1:
            outputs[line[:equals]] = line[equals + 1:]
        i += 1
    return outputs


def parse_set_output(stdout: str) -> Dict[str, str]:
    """Legacy `::set-output name=key::value` workflow commands on stdout."""
    outputs: Dict[str, str] = {}
    for line in stdout.splitlines():
        m = _SET_OUTPUT_RE.match(line.strip())
        if m:
            outputs[m.group(1)] = m.group(2)
    return outputs


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_shell(
    job_name: str,
    step_name: str,
    cmd: str,
    cwd: Path,
    env: Dict[str, str],
    cancel: threading.Event,
    deadline: Optional[float],
    timeout: Optional[float],
    console: Console,
) -> Dict[str, str]:
    if not cwd.exists():
        raise FileNotFoundError(f"[{job_name}] step '{step_name}' cwd not found: {cwd}")

    with tempfile.TemporaryDirectory(prefix="shipci-") as tmp:
        output_file = Path(tmp) / "output"
        output_file.touch()

        proc_env = os.environ.copy()
        proc_env.update(env)
        proc_env["GITHUB_OUTPUT"] = str(output_file)

        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=proc_env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel.is_set():
                    proc.kill()
                    proc.communicate()
                    raise CancellationError(f"[{job_name}] step '{step_name}' interrupted by cancellation")
                if deadline is not None and time.monotonic() >= deadline:
                    proc.kill()
                    proc.communicate()
                    raise StepTimeout(job=job_name, step=step_name, timeout=timeout or 0.0)

        for line in stdout.splitlines():
            console.print_debug(f"[{job_name}] {line}")

        if proc.returncode != 0:
            raise StepFailure(
                job=job_name,
                step=step_name,
                cmd=cmd,
                exit_code=proc.returncode,
                stdout=stdout[-OUTPUT_TAIL:],
                stderr=stderr[-OUTPUT_TAIL:],
            )

        outputs = parse_set_output(stdout)
        outputs.update(parse_output_file(output_file.read_text(encoding="utf-8")))
        return outputs


def _step_context(base: Mapping[str, Any], env: Dict[str, str], steps: Dict[str, Any]) -> Dict[str, Any]:
    ctx = dict(base)
    ctx["env"] = env
    ctx["steps"] = steps
    return ctx


def run_step(
    instance: JobInstance,
    step: Step,
    ctx: Dict[str, Any],
    job: JobContext,
    deadline: Optional[float],
) -> Dict[str, str]:
    """Run one step and return its outputs. Raises on failure."""
    console = job.console or get_console()
    name = interpolate(step.name, ctx)

    if step.uses:
        inputs = {k: interpolate(str(v), ctx) for k, v in step.with_.items()}
        result = job.actions.invoke(step.uses, inputs, env=ctx["env"])
        if result.exit_status != 0:
            raise StepFailure(job=instance.name, step=name, cmd=step.uses, exit_code=result.exit_status)
        return dict(result.outputs)

    cmd = interpolate(step.run or "", ctx)
    cwd = (job.repo_root / interpolate(step.cwd or ".", ctx)).resolve()
    return _run_shell(
        instance.name, name, cmd, cwd, ctx["env"], job.cancel, deadline, job.timeout, console
    )


def run_job(instance: JobInstance, job: JobContext) -> Dict[str, str]:
    """
    Run an instance's steps in order and return the job's outputs.

    The first failing step raises and the remaining steps never run.
    Step outputs are visible to later steps through `steps.<id>.outputs`;
    the returned mapping is every step output overlaid with the evaluated
    job-level `outputs:`.
    """
    console = job.console or get_console()
    template = instance.job
    deadline = time.monotonic() + job.timeout if job.timeout else None

    base = dict(job.expressions)
    base["matrix"] = instance.matrix
    # Inside a job, success() means "no earlier step failed", which holds
    # whenever a step is reached.
    base[STATUS_KEY] = StatusView()
    steps_ctx: Dict[str, Any] = {}

    job_env = dict(job.base_env)
    env_ctx = _step_context(base, dict(job_env), steps_ctx)
    job_env.update({k: interpolate(str(v), env_ctx) for k, v in template.env.items()})

    collected: Dict[str, str] = {}
    for step in template.steps:
        if job.cancel.is_set():
            raise CancellationError(f"[{instance.name}] cancelled before step '{step.name}'")
        if deadline is not None and time.monotonic() >= deadline:
            raise StepTimeout(job=instance.name, step=step.name, timeout=job.timeout or 0.0)

        ctx = _step_context(base, job_env, steps_ctx)
        if step.condition is not None and not evaluate_condition(step.condition, ctx):
            console.print_step_skipped(instance.name, step.name)
            instance.step_results[step.name] = "skipped"
            if step.id:
                steps_ctx[step.id] = {"outputs": Lenient(), "outcome": "skipped", "conclusion": "skipped"}
            continue

        step_env = dict(job_env)
        step_env.update({k: interpolate(str(v), ctx) for k, v in step.env.items()})
        ctx = _step_context(base, step_env, steps_ctx)

        console.print_step(instance.name, interpolate(step.name, ctx))
        try:
            outputs = run_step(instance, step, ctx, job, deadline)
        except Exception:
            instance.step_results[step.name] = "failure"
            raise
        instance.step_results[step.name] = "success"
        if step.id:
            steps_ctx[step.id] = {"outputs": Lenient(outputs), "outcome": "success", "conclusion": "success"}
        collected.update(outputs)

    final_ctx = _step_context(base, job_env, steps_ctx)
    for key, expression in template.outputs.items():
        collected[key] = interpolate(str(expression), final_ctx)
    return collected
