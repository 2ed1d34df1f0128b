"""
names.py - Fixed job names and job-name sanitization.
"""

from __future__ import annotations

import re

PRE_ACTIVATION = "pre_activation"
ACTIVATION = "activation"
AGENT = "agent"
DETECTION = "detection"
SAFE_OUTPUTS = "safe_outputs"
CONCLUSION = "conclusion"
PUSH_REPO_MEMORY = "push_repo_memory"
UPDATE_CACHE_MEMORY = "update_cache_memory"

# Jobs a pre-activation custom job must not depend on
ACTIVATION_PHASE_JOBS = (ACTIVATION, AGENT, DETECTION)

EMPTY_NAME_FALLBACK = "workflow-job"
DIGIT_PREFIX = "workflow-"

_QUOTES_RE = re.compile(r"[\"'`]")
_INVALID_RE = re.compile(r"[^a-z0-9_-]+")
_HYPHENS_RE = re.compile(r"-{2,}")


def sanitize_job_name(name: str) -> str:
    """Turn an arbitrary string into a valid job identifier.

    Examples:
        >>> sanitize_job_name("Test:Workflow.Name,Here/There")
        'test-workflow-name-here-there'
        >>> sanitize_job_name("it's done")
        'its-done'
        >>> sanitize_job_name("2nd pass")
        'workflow-2nd-pass'
    """
    result = _QUOTES_RE.sub("", name.lower())
    result = _INVALID_RE.sub("-", result)
    result = _HYPHENS_RE.sub("-", result).strip("-")
    if not result:
        return EMPTY_NAME_FALLBACK
    if result[0].isdigit():
        return DIGIT_PREFIX + result
    return result
