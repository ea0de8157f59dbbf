from __future__ import annotations
import os

# Environment defaults; every one of these can be overridden by a CLI flag.
WORKFLOW = os.environ.get("SHIPCI_WORKFLOW")
ACTIONS = os.environ.get("SHIPCI_ACTIONS")
WORKERS = int(os.environ["SHIPCI_WORKERS"]) if os.environ.get("SHIPCI_WORKERS") else None
JOB_TIMEOUT = float(os.environ["SHIPCI_JOB_TIMEOUT"]) if os.environ.get("SHIPCI_JOB_TIMEOUT") else None

# Files looked for (in order) when no workflow is given.
DEFAULT_WORKFLOWS = (
    "shipci_workflow.py",
    "shipci_workflow.yml",
    "shipci_workflow.yaml",
)
