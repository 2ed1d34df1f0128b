"""
Job graph model, naming rules and the safe-output registry.

The builder depends on the engine and MCP layers and is imported from
agentic.jobs.builder directly.
"""

from .graph import DEFAULT_RUNNER, Job, JobGraph
from .names import sanitize_job_name
from .safe_outputs import SAFE_OUTPUT_KINDS, SafeOutputKind, get_kind

__all__ = [
    "DEFAULT_RUNNER",
    "Job",
    "JobGraph",
    "sanitize_job_name",
    "SAFE_OUTPUT_KINDS",
    "SafeOutputKind",
    "get_kind",
]
