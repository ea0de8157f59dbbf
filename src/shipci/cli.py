# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from shipci import settings
from shipci.actions import ActionRegistry, load_actions
from shipci.errors import DefinitionError
from shipci.git_facts.git import current_ref, head_sha
from shipci.loader import load_workflow
from shipci.model import Event, Pipeline
from shipci.runner import PipelineRun, plan as plan_stages, results_table
from shipci.secret_store import Secrets
from shipci.trigger import TriggerConfig, evaluate as evaluate_trigger
from shipci.ui.console import Console, get_console, set_console


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found = [current_dir / name for name in settings.DEFAULT_WORKFLOWS if (current_dir / name).exists()]
    for pattern in ("*_workflow.py", "*_workflow.yml", "*_workflow.yaml"):
        for path in current_dir.glob(pattern):
            if path not in found:
                found.append(path)
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, SHIPCI_WORKFLOW, or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()
    workflow_arg = workflow_arg or settings.WORKFLOW

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  shipci run --workflow release.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *(f"  {n}" for n in settings.DEFAULT_WORKFLOWS), "  *_workflow.{py,yml,yaml}"],
            suggestion="Create a workflow file or specify one explicitly:\n  shipci run --workflow release.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  shipci run --workflow shipci_workflow.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(ctx, workflow: str | None) -> tuple[Path, Pipeline]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except DefinitionError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


def _event(kind: str, ref: str | None, sha: str | None, base_ref: str | None) -> Event:
    console = get_console()
    if ref is None:
        try:
            ref = current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref specified and the current directory is not a git checkout.",
                suggestion="Specify the event ref explicitly:\n  shipci run --ref refs/tags/v1.2.3",
            )
            sys.exit(1)
    if sha is None:
        try:
            sha = head_sha()
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = ""
    return Event(kind=kind, ref=ref, sha=sha, base_ref=base_ref)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and step output)",
)
@click.pass_context
def cli(ctx, debug):
    """shipci: release pipeline orchestration engine."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


event_options = [
    click.option("--event", "event_kind", default="push", show_default=True, help="Event kind (push, pull_request, ...)"),
    click.option("--ref", default=None, help="Event ref, e.g. refs/tags/v1.2.3 (defaults to the local checkout)"),
    click.option("--sha", default=None, help="Commit SHA (defaults to local HEAD)"),
    click.option("--base-ref", default=None, help="Base branch ref for pull_request events"),
]


def with_event_options(fn):
    for option in reversed(event_options):
        fn = option(fn)
    return fn


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py/.yml); defaults to SHIPCI_WORKFLOW or discovery")
@with_event_options
@click.option("--secret", "secret_specs", multiple=True, help="NAME=VALUE, or NAME to read from the environment")
@click.option("--actions", "actions_file", default=settings.ACTIONS, help="Python file registering actions")
@click.option("--stub-actions/--no-stub-actions", default=False, help="Treat unregistered actions as no-op successes")
@click.option("--workers", default=settings.WORKERS, type=int, help="Number of parallel workers")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop scheduling new jobs after first failure")
@click.option("--job-timeout", default=settings.JOB_TIMEOUT, type=float, help="Per-job timeout in seconds")
@click.option("--repo-root", default=".", show_default=True, help="Working directory for shell steps")
@click.pass_context
def run(ctx, workflow, event_kind, ref, sha, base_ref, secret_specs, actions_file, stub_actions,
        workers, fail_fast, job_timeout, repo_root):
    """Run a workflow for one event."""
    debug = ctx.obj.get("debug", False)

    try:
        secrets = Secrets.from_specs(secret_specs)
    except KeyError as e:
        get_console().print_error("Missing secret", str(e).strip("'\""))
        sys.exit(1)
    set_console(Console(debug=debug, redact=secrets.redact))
    console = get_console()

    workflow_path, pipeline = _load(ctx, workflow)
    event = _event(event_kind, ref, sha, base_ref)

    registry = ActionRegistry(stub_unknown=stub_actions)
    if actions_file:
        try:
            load_actions(actions_file, registry)
        except Exception as e:
            console.print_error("Failed to load actions", f"Could not load actions from {actions_file}", details=[str(e)])
            sys.exit(1)

    try:
        pipeline_run = PipelineRun(
            pipeline,
            event,
            actions=registry,
            secrets=secrets,
            repo_root=repo_root,
            max_workers=workers,
            fail_fast=fail_fast,
            job_timeout=job_timeout,
            console=console,
        )
    except DefinitionError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)

    console.print_run_started(
        workflow=workflow_path.name,
        event=event.kind,
        ref=event.ref,
        job_count=len(pipeline_run.instances),
    )

    try:
        result = pipeline_run.execute()
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(results_table(result.instances))
    console.print_outputs(result.outputs)

    if result.cancelled:
        sys.exit(130)
    if not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py/.yml)")
@click.pass_context
def plan(ctx, workflow):
    """Show the execution stages without running anything."""
    console = get_console()
    _path, pipeline = _load(ctx, workflow)
    try:
        stages = plan_stages(pipeline)
    except DefinitionError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)
    for index, stage in enumerate(stages, start=1):
        console.print_plan_stage(index, stage)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py/.yml)")
@click.pass_context
def validate(ctx, workflow):
    """Check a workflow definition (graph, matrices, expressions)."""
    console = get_console()
    path, pipeline = _load(ctx, workflow)
    try:
        stages = plan_stages(pipeline)
    except DefinitionError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)
    count = sum(len(s) for s in stages)
    console.print_info(f"{path.name}: OK ({len(pipeline.jobs)} jobs, {count} instances, {len(stages)} stages)")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py/.yml)")
@with_event_options
@click.pass_context
def trigger(ctx, workflow, event_kind, ref, sha, base_ref):
    """Show whether an event would start a run, and the parsed trigger context."""
    console = get_console()
    _path, pipeline = _load(ctx, workflow)
    event = _event(event_kind, ref, sha, base_ref)
    decision = evaluate_trigger(pipeline.triggers or TriggerConfig.any_event(), event)
    console.print_trigger(decision.run, decision.reason)
    for key, value in decision.context.as_trigger().items():
        console.print_plan_job(key, str(value))
    if not decision.run:
        sys.exit(1)


if __name__ == "__main__":
    cli()
