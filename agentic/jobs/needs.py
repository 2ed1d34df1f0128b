"""
needs.py - ``needs.<job>.outputs.<name>`` expressions visible to activation.

The activation job may only reference outputs of jobs that run before it:
pre_activation (when it exists) and custom jobs classified as
pre-activation. Any other ``needs.*`` reference found in user content is
dropped rather than emitted as a reference that can never resolve.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Mapping, Optional, Sequence

from .names import PRE_ACTIVATION

logger = logging.getLogger(__name__)

NEEDS_REF_RE = re.compile(r"\bneeds\.([A-Za-z0-9_-]+)\.")

DEFAULT_CUSTOM_JOB_OUTPUT = "output"


def _normalize(part: str) -> str:
    return re.sub(r"[^A-Z0-9_]", "", part.upper().replace("-", "_"))


def needs_env_var(job: str, output: str) -> str:
    """``GH_AW_NEEDS_<JOB>_OUTPUTS_<OUTPUT>``."""
    return f"GH_AW_NEEDS_{_normalize(job)}_OUTPUTS_{_normalize(output)}"


def needs_expression(job: str, output: str) -> str:
    return f"${{{{ needs.{job}.outputs.{output} }}}}"


def known_needs_expressions(
    has_pre_activation: bool,
    has_command: bool = False,
    pre_activation_jobs: Optional[Mapping[str, Sequence[str]]] = None,
) -> Dict[str, str]:
    """Env var -> expression for every needs output activation may use.

    ``pre_activation_jobs`` maps each pre-activation custom job to its
    declared output names; a job without outputs exposes ``output``.
    """
    known: Dict[str, str] = {}
    if has_pre_activation:
        known[needs_env_var(PRE_ACTIVATION, "activated")] = needs_expression(PRE_ACTIVATION, "activated")
        if has_command:
            known[needs_env_var(PRE_ACTIVATION, "matched_command")] = needs_expression(
                PRE_ACTIVATION, "matched_command"
            )
    for job in sorted(pre_activation_jobs or {}):
        outputs = list(pre_activation_jobs[job]) or [DEFAULT_CUSTOM_JOB_OUTPUT]
        for output in sorted(outputs):
            known[needs_env_var(job, output)] = needs_expression(job, output)
    return known


def referenced_jobs(expression: str) -> Iterable[str]:
    return [m.group(1) for m in NEEDS_REF_RE.finditer(expression)]


def filter_activation_expressions(
    mapping: Mapping[str, str],
    visible_jobs: Iterable[str],
) -> Dict[str, str]:
    """Drop expressions that reference jobs activation cannot see."""
    visible = set(visible_jobs)
    kept: Dict[str, str] = {}
    for env_var, expression in mapping.items():
        hidden = [job for job in referenced_jobs(expression) if job not in visible]
        if hidden:
            logger.debug("Filtering %s: references jobs %s not visible to activation", env_var, hidden)
            continue
        kept[env_var] = expression
    return kept
