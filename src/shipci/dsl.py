# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .model import Job, Matrix, Pipeline, Step
from .trigger import TriggerConfig, TriggerFilter


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    id: str | None = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    if_: str | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, id=id, cwd=cwd, env=env or {}, condition=if_)


def uses(
    ref: str,
    name: str | None = None,
    *,
    id: str | None = None,
    env: Optional[Dict[str, str]] = None,
    if_: str | None = None,
    **inputs: Any,
) -> Step:
    """
    Create an action step.

        uses("actions/checkout@v4", fetch_depth="0")

    Keyword inputs are passed as `with:`; underscores become dashes.
    """
    with_ = {k.replace("_", "-"): str(v) for k, v in inputs.items()}
    return Step(name=name or ref, uses=ref, id=id, with_=with_, env=env or {}, condition=if_)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    runs_on: str = "local",
    matrix: Optional[Matrix] = None,
    if_: str | None = None,
    outputs: Optional[Dict[str, str]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    display_name: str | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None or s.uses else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        runs_on=runs_on,
        matrix=matrix,
        condition=if_,
        outputs=dict(outputs or {}),
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        display_name=display_name,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._outputs: dict[str, str] = {}
        self._runs_on = "local"
        self._matrix: Optional[Matrix] = None
        self._condition: str | None = None
        self._timeout: float | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def when(self, condition: str):
        self._condition = condition
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, id: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd, id=id))
        return self

    def use_action(self, ref: str, name: str | None = None, id: str | None = None, **inputs: Any):
        self._steps.append(uses(ref, name, id=id, **inputs))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_matrix(self, m: Matrix):
        self._matrix = m
        return self

    def with_outputs(self, **outputs: str):
        self._outputs.update(outputs)
        return self

    def timeout_after(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            runs_on=self._runs_on,
            matrix=self._matrix,
            condition=self._condition,
            outputs=dict(self._outputs),
            env=dict(self._env),
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(
    axes: Optional[Dict[str, Iterable[Any]]] = None,
    *,
    include: Optional[List[Dict[str, Any]]] = None,
    exclude: Optional[List[Dict[str, Any]]] = None,
    **more_axes: Iterable[Any],
) -> Matrix:
    """
    Example:
        matrix(python=["3.11", "3.12"], os=["ubuntu", "macos"])
        matrix(include=[{"os": "windows", "suffix": ".exe"}])
    """
    all_axes = dict(axes or {})
    all_axes.update(more_axes)
    return Matrix(
        axes={k: list(v) for k, v in all_axes.items()},
        include=list(include or []),
        exclude=list(exclude or []),
    )


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def on_push(*, branches: Optional[List[str]] = None, tags: Optional[List[str]] = None) -> Dict[str, TriggerFilter]:
    return {"push": TriggerFilter(branches=list(branches or []), tags=list(tags or []))}


def on_pull_request(*, branches: Optional[List[str]] = None) -> Dict[str, TriggerFilter]:
    return {"pull_request": TriggerFilter(branches=list(branches or []))}


# ---------------------------------------------------------------------
# Workflow helpers (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job) -> List[Job]:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(job(...), job(...)).
    """
    return list(jobs)


def pipeline(name: str, *jobs: Job, on: Optional[List[Dict[str, TriggerFilter]]] = None, env=None) -> Pipeline:
    """
    Full pipeline with triggers:

        PIPELINE = pipeline(
            "main",
            job(...),
            on=[on_push(branches=["main"], tags=["*"]), on_pull_request()],
        )
    """
    triggers = None
    if on is not None:
        events: Dict[str, TriggerFilter] = {}
        for part in on:
            events.update(part)
        triggers = TriggerConfig(events=events)
    return Pipeline(name=name, jobs=list(jobs), triggers=triggers, env=dict(env or {}))


workflow = wf  # backward-compat alias (avoid naming your function workflow if you use it)
