# matrix.py
from __future__ import annotations

import itertools
from typing import Any, Dict, Iterable, List, Tuple

from .errors import DefinitionError, ExpressionError
from .expr import interpolate, to_str
from .model import Job, JobInstance, JobStatus, Matrix

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Job templates are expanded once per run into an arena: a flat list of
# JobInstance indexed by instance id, plus {template name: [ids]}.
# Parent (template) status is never stored; it is computed from the
# children every time it is asked for.
# ---------------------------------------------------------------------


def _matches(combo: Dict[str, Any], pattern: Dict[str, Any]) -> bool:
    return all(k in combo and combo[k] == v for k, v in pattern.items())


def combinations(job_name: str, matrix: Matrix) -> List[Dict[str, Any]]:
    """
    Cartesian product of the axes, minus `exclude`, plus `include`.

    An include entry is merged into every product combination whose axis
    values it does not contradict; if it fits none, it becomes a new
    combination of its own.
    """
    if not matrix.axes and not matrix.include:
        raise DefinitionError(f"Job '{job_name}' has a matrix with no axes")

    for key, values in matrix.axes.items():
        if not isinstance(values, (list, tuple)) or len(values) == 0:
            raise DefinitionError(f"Job '{job_name}' matrix axis '{key}' has no values")

    for ex in matrix.exclude:
        unknown = sorted(set(ex) - set(matrix.axes))
        if unknown:
            raise DefinitionError(
                f"Job '{job_name}' matrix exclude refers to unknown axes",
                {"axes": unknown},
            )

    keys = list(matrix.axes)
    base: List[Dict[str, Any]] = []
    if keys:
        for values in itertools.product(*(matrix.axes[k] for k in keys)):
            combo = dict(zip(keys, values))
            if not any(_matches(combo, ex) for ex in matrix.exclude):
                base.append(combo)

    extra: List[Dict[str, Any]] = []
    for inc in matrix.include:
        merged = False
        for combo in base:
            if all(combo[k] == v for k, v in inc.items() if k in matrix.axes):
                combo.update({k: v for k, v in inc.items() if k not in matrix.axes})
                merged = True
        if not merged:
            extra.append(dict(inc))

    result = base + extra
    if not result:
        raise DefinitionError(f"Job '{job_name}' matrix expands to zero combinations")
    return result


def instance_name(job_name: str, combo: Dict[str, Any]) -> str:
    if not combo:
        return job_name
    return f"{job_name} ({', '.join(to_str(v) for v in combo.values())})"


def expand_job(job: Job, start_id: int = 0) -> List[JobInstance]:
    """Turn one template into its concrete instances."""
    combos: List[Dict[str, Any]] = combinations(job.name, job.matrix) if job.matrix else [{}]

    instances: List[JobInstance] = []
    for offset, combo in enumerate(combos):
        ctx = {"matrix": combo}
        try:
            runs_on = interpolate(job.runs_on, ctx)
            display = interpolate(job.display_name, ctx) if job.display_name else None
        except ExpressionError as e:
            raise DefinitionError(f"Job '{job.name}' runs-on/name cannot be resolved: {e}") from e
        instances.append(
            JobInstance(
                id=start_id + offset,
                template=job.name,
                name=instance_name(job.name, combo),
                job=job,
                matrix=dict(combo),
                runs_on=runs_on,
                display=display,
            )
        )
    return instances


def expand_all(jobs: Iterable[Job]) -> Tuple[List[JobInstance], Dict[str, List[int]]]:
    """
    Expand every template. Returns (arena, {template: [instance ids]}).

    Raises DefinitionError if two instances end up with the same name.
    """
    arena: List[JobInstance] = []
    by_template: Dict[str, List[int]] = {}
    for job in jobs:
        instances = expand_job(job, start_id=len(arena))
        arena.extend(instances)
        by_template[job.name] = [i.id for i in instances]

    seen: Dict[str, str] = {}
    for inst in arena:
        if inst.name in seen:
            raise DefinitionError(
                f"Two job instances share the name '{inst.name}'",
                {"templates": sorted({seen[inst.name], inst.template})},
            )
        seen[inst.name] = inst.template
    return arena, by_template


_PROGRESS = (JobStatus.RUNNING, JobStatus.BLOCKED, JobStatus.PENDING)


def aggregate_status(statuses: Iterable[JobStatus]) -> JobStatus:
    """
    Fan-in: the status of a template given its instances' statuses.

      any FAILED           -> FAILED
      all SUCCEEDED        -> SUCCEEDED
      some still in flight -> the most advanced in-flight state
      otherwise            -> SKIPPED
    """
    statuses = list(statuses)
    if any(s is JobStatus.FAILED for s in statuses):
        return JobStatus.FAILED
    if statuses and all(s is JobStatus.SUCCEEDED for s in statuses):
        return JobStatus.SUCCEEDED
    for state in _PROGRESS:
        if state in statuses:
            return state
    return JobStatus.SKIPPED


def is_resolved(statuses: Iterable[JobStatus]) -> bool:
    return all(s.terminal for s in statuses)
