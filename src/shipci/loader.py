# loader.py
from __future__ import annotations

import runpy
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import DefinitionError
from .model import Job, Matrix, Pipeline, Step
from .trigger import TriggerConfig, TriggerFilter

YAML_SUFFIXES = (".yml", ".yaml")


# ----------------------------------------------------------------------
# YAML definitions
# ----------------------------------------------------------------------

def _str_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise DefinitionError(f"{where} must be a string or a list of strings")


def _str_map(value: Any, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise DefinitionError(f"{where} must be a mapping")
    return {str(k): _scalar(v) for k, v in value.items()}


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_triggers(on: Any) -> TriggerConfig:
    """
    `on:` may be an event name, a list of event names, or a mapping of
    event name -> filters (branches, branches-ignore, tags, tags-ignore).
    """
    if on is None:
        return TriggerConfig.any_event()
    if isinstance(on, (str, list)):
        return TriggerConfig(events={name: TriggerFilter() for name in _str_list(on, "on")})
    if not isinstance(on, Mapping):
        raise DefinitionError("'on' must be a string, a list or a mapping")

    events: Dict[str, TriggerFilter] = {}
    for name, spec in on.items():
        spec = spec or {}
        if not isinstance(spec, Mapping):
            raise DefinitionError(f"'on.{name}' must be a mapping")
        events[str(name)] = TriggerFilter(
            branches=_str_list(spec.get("branches"), f"on.{name}.branches"),
            branches_ignore=_str_list(spec.get("branches-ignore"), f"on.{name}.branches-ignore"),
            tags=_str_list(spec.get("tags"), f"on.{name}.tags"),
            tags_ignore=_str_list(spec.get("tags-ignore"), f"on.{name}.tags-ignore"),
        )
    return TriggerConfig(events=events)


def _parse_matrix(job_name: str, strategy: Any) -> Matrix | None:
    if not strategy:
        return None
    if not isinstance(strategy, Mapping):
        raise DefinitionError(f"Job '{job_name}' strategy must be a mapping")
    spec = strategy.get("matrix")
    if spec is None:
        return None
    if not isinstance(spec, Mapping):
        raise DefinitionError(f"Job '{job_name}' strategy.matrix must be a mapping")

    include = spec.get("include") or []
    exclude = spec.get("exclude") or []
    for label, entries in (("include", include), ("exclude", exclude)):
        if not isinstance(entries, list) or not all(isinstance(e, Mapping) for e in entries):
            raise DefinitionError(f"Job '{job_name}' matrix {label} must be a list of mappings")

    axes = {str(k): v for k, v in spec.items() if k not in ("include", "exclude")}
    return Matrix(
        axes=axes,
        include=[dict(e) for e in include],
        exclude=[dict(e) for e in exclude],
    )


def _parse_step(job_name: str, index: int, raw: Any) -> Step:
    if not isinstance(raw, Mapping):
        raise DefinitionError(f"Job '{job_name}' step #{index + 1} must be a mapping")
    uses = raw.get("uses")
    run = raw.get("run")
    if (uses is None) == (run is None):
        raise DefinitionError(f"Job '{job_name}' step #{index + 1} needs exactly one of 'uses' or 'run'")
    first_line = (str(run).strip().splitlines() or [""])[0] if run is not None else ""
    name = raw.get("name") or (str(uses) if uses else f"Run {first_line}")
    condition = raw.get("if")
    return Step(
        name=str(name),
        run=str(run) if run is not None else None,
        uses=str(uses) if uses is not None else None,
        id=str(raw["id"]) if raw.get("id") is not None else None,
        with_=_str_map(raw.get("with"), f"{job_name}.steps[{index}].with"),
        env=_str_map(raw.get("env"), f"{job_name}.steps[{index}].env"),
        condition=_scalar(condition) if condition is not None else None,
        cwd=raw.get("working-directory"),
    )


def _parse_job(name: str, raw: Any) -> Job:
    if not isinstance(raw, Mapping):
        raise DefinitionError(f"Job '{name}' must be a mapping")
    steps_raw = raw.get("steps") or []
    if not isinstance(steps_raw, list):
        raise DefinitionError(f"Job '{name}' steps must be a list")

    timeout = raw.get("timeout-minutes")
    condition = raw.get("if")
    return Job(
        name=name,
        steps=[_parse_step(name, i, s) for i, s in enumerate(steps_raw)],
        needs=_str_list(raw.get("needs"), f"{name}.needs"),
        runs_on=_scalar(raw.get("runs-on", "local")),
        matrix=_parse_matrix(name, raw.get("strategy")),
        condition=_scalar(condition) if condition is not None else None,
        outputs=_str_map(raw.get("outputs"), f"{name}.outputs"),
        env=_str_map(raw.get("env"), f"{name}.env"),
        timeout=float(timeout) * 60 if timeout is not None else None,
        display_name=str(raw["name"]) if raw.get("name") is not None else None,
    )


def pipeline_from_dict(data: Mapping[str, Any], *, default_name: str = "pipeline") -> Pipeline:
    # YAML 1.1 reads a bare `on:` key as boolean True.
    on = data.get("on", data.get(True))
    jobs_raw = data.get("jobs")
    if not isinstance(jobs_raw, Mapping) or not jobs_raw:
        raise DefinitionError("Pipeline must define a non-empty 'jobs' mapping")
    return Pipeline(
        name=str(data.get("name") or default_name),
        jobs=[_parse_job(str(name), raw) for name, raw in jobs_raw.items()],
        triggers=parse_triggers(on),
        env=_str_map(data.get("env"), "env"),
    )


def load_yaml(path: str | Path) -> Pipeline:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise DefinitionError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise DefinitionError(f"Workflow file must contain a YAML mapping: {path}")
    return pipeline_from_dict(data, default_name=path.stem)


# ----------------------------------------------------------------------
# Python definitions
# ----------------------------------------------------------------------

def load_python(path: str | Path) -> Pipeline:
    """
    Load a workflow from a python file path.

    The file must define one of:
      - PIPELINE = Pipeline(...)
      - workflow() -> Pipeline | List[Job]
      - JOBS = [Job, ...]
    """
    wf_path = Path(path)
    module_name = f"shipci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found: Any = None
    if "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]
    elif "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            found = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from shipci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "JOBS" in globals_dict:
        found = globals_dict["JOBS"]

    if isinstance(found, Pipeline):
        return found
    if isinstance(found, list) and all(isinstance(j, Job) for j in found):
        return Pipeline(name=wf_path.stem, jobs=found)
    raise TypeError(
        "Workflow must define PIPELINE = Pipeline(...), workflow() -> Pipeline | List[Job], "
        "or JOBS = [Job, ...]."
    )


def load_workflow(path: str | Path) -> Pipeline:
    """Load a pipeline from a .py, .yml or .yaml file."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml(wf_path)
    if wf_path.suffix == ".py":
        return load_python(wf_path)
    raise ValueError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")
