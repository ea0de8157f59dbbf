from .actions import ActionRegistry, ActionResult
from .runner import PipelineRun, RunResult, run_pipeline, plan
from .model import Event, Job, JobInstance, JobStatus, Matrix, Pipeline, Step
from .errors import DefinitionError, ExpressionError, StepFailure, CancellationError
from .dsl import job, sh, uses, matrix, wf, workflow, pipeline, on_push, on_pull_request, JobBuilder, build

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "workflow", "pipeline", "on_push", "on_pull_request",
    "JobBuilder", "build",
    "ActionRegistry", "ActionResult",
    "PipelineRun", "RunResult", "run_pipeline", "plan",
    "Event", "Job", "JobInstance", "JobStatus", "Matrix", "Pipeline", "Step",
    "DefinitionError", "ExpressionError", "StepFailure", "CancellationError",
]
