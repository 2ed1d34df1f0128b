"""
safe_outputs.py - Static registry of safe-output mutation types.

Each SafeOutputKind describes one typed mutation request: the job that
executes it, the permissions that job needs, the outputs it publishes and
the other kinds whose created entities it may reference. The registry is an
ordered tuple; job emission follows its order, never declaration order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from agentic.workflow.frontmatter import SafeOutputsConfig, SafeOutputSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafeOutputKind:
    """One safe-output type."""

    key: str
    job_name: str
    title: str
    permissions: Mapping[str, str]
    outputs: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    # Env var prefix for the kind's bounds, e.g. GH_AW_ISSUE
    env_prefix: str = ""
    # output name -> env var, for kinds that reference the created entity
    reference_env: Mapping[str, str] = field(default_factory=dict)


def _perms(**scopes: str) -> Mapping[str, str]:
    return MappingProxyType({k.replace("_", "-"): v for k, v in scopes.items()})


SAFE_OUTPUT_KINDS: Tuple[SafeOutputKind, ...] = (
    SafeOutputKind(
        key="create-issue",
        job_name="create_issue",
        title="Create Output Issue",
        permissions=_perms(contents="read", issues="write"),
        outputs=("issue_number", "issue_url", "temporary_id_map"),
        aliases=("create-issues",),
        env_prefix="GH_AW_ISSUE",
        reference_env=MappingProxyType(
            {
                "issue_url": "GH_AW_CREATED_ISSUE_URL",
                "issue_number": "GH_AW_CREATED_ISSUE_NUMBER",
                "temporary_id_map": "GH_AW_TEMPORARY_ID_MAP",
            }
        ),
    ),
    SafeOutputKind(
        key="create-discussion",
        job_name="create_discussion",
        title="Create Output Discussion",
        permissions=_perms(contents="read", discussions="write"),
        outputs=("discussion_number", "discussion_url"),
        aliases=("create-discussions",),
        env_prefix="GH_AW_DISCUSSION",
        reference_env=MappingProxyType(
            {
                "discussion_url": "GH_AW_CREATED_DISCUSSION_URL",
                "discussion_number": "GH_AW_CREATED_DISCUSSION_NUMBER",
            }
        ),
    ),
    SafeOutputKind(
        key="create-pull-request",
        job_name="create_pull_request",
        title="Create Pull Request",
        permissions=_perms(contents="write", issues="write", pull_requests="write"),
        outputs=("branch_name", "pull_request_number", "pull_request_url"),
        aliases=("create-pull-requests",),
        env_prefix="GH_AW_PR",
        reference_env=MappingProxyType(
            {
                "pull_request_url": "GH_AW_CREATED_PULL_REQUEST_URL",
                "pull_request_number": "GH_AW_CREATED_PULL_REQUEST_NUMBER",
            }
        ),
    ),
    SafeOutputKind(
        key="add-comment",
        job_name="add_comment",
        title="Add Issue Comment",
        permissions=_perms(
            contents="read", issues="write", pull_requests="write", discussions="write"
        ),
        outputs=("comment_id", "comment_url"),
        depends_on=("create-issue", "create-discussion", "create-pull-request"),
        aliases=("add-comments",),
        env_prefix="GH_AW_COMMENT",
    ),
    SafeOutputKind(
        key="add-labels",
        job_name="add_labels",
        title="Add Labels",
        permissions=_perms(contents="read", issues="write", pull_requests="write"),
        outputs=("labels_added",),
        aliases=("add-label",),
        env_prefix="GH_AW_LABELS",
    ),
    SafeOutputKind(
        key="update-issue",
        job_name="update_issue",
        title="Update Issue",
        permissions=_perms(contents="read", issues="write"),
        outputs=("issue_number", "issue_url"),
        aliases=("update-issues",),
        env_prefix="GH_AW_UPDATE",
    ),
    SafeOutputKind(
        key="push-to-pull-request-branch",
        job_name="push_to_pull_request_branch",
        title="Push to Branch",
        permissions=_perms(contents="write", issues="read", pull_requests="read"),
        outputs=("branch_name", "commit_sha", "push_url"),
        env_prefix="GH_AW_PUSH",
    ),
    SafeOutputKind(
        key="close-issue",
        job_name="close_issue",
        title="Close Issue",
        permissions=_perms(contents="read", issues="write"),
        outputs=("issue_number", "issue_url"),
        aliases=("close-issues",),
        env_prefix="GH_AW_CLOSE_ISSUE",
    ),
    SafeOutputKind(
        key="create-pull-request-review-comment",
        job_name="create_pr_review_comment",
        title="Create PR Review Comment",
        permissions=_perms(contents="read", pull_requests="write"),
        outputs=("review_comment_id", "review_comment_url"),
        aliases=("create-pull-request-review-comments",),
        env_prefix="GH_AW_PR_REVIEW_COMMENT",
    ),
    SafeOutputKind(
        key="missing-tool",
        job_name="missing_tool",
        title="Record Missing Tool",
        permissions=_perms(contents="read"),
        outputs=("tools_reported", "total_count"),
        env_prefix="GH_AW_MISSING_TOOL",
    ),
    SafeOutputKind(
        key="noop",
        job_name="noop",
        title="Process No-Op Messages",
        permissions=_perms(contents="read"),
        outputs=("noop_message",),
        env_prefix="GH_AW_NOOP",
    ),
)

_BY_NAME: Dict[str, SafeOutputKind] = {}
for _kind in SAFE_OUTPUT_KINDS:
    _BY_NAME[_kind.key] = _kind
    for _alias in _kind.aliases:
        _BY_NAME[_alias] = _kind


def get_kind(key: str) -> Optional[SafeOutputKind]:
    """Look up a kind by key or alias."""
    return _BY_NAME.get(key)


def declared_kinds(config: SafeOutputsConfig) -> List[SafeOutputKind]:
    """Declared kinds in registry order."""
    keys = {k.key for k in (get_kind(name) for name in config.outputs) if k is not None}
    return [kind for kind in SAFE_OUTPUT_KINDS if kind.key in keys]


def unknown_output_keys(config: SafeOutputsConfig) -> List[str]:
    return sorted(name for name in config.outputs if get_kind(name) is None)


def settings_for(config: SafeOutputsConfig, kind: SafeOutputKind) -> SafeOutputSettings:
    """The declared settings of a kind, whichever spelling was used."""
    for name in (kind.key,) + kind.aliases:
        if name in config.outputs:
            return config.outputs[name]
    return SafeOutputSettings()


def kind_dependencies(kind: SafeOutputKind, declared: List[SafeOutputKind]) -> List[SafeOutputKind]:
    """Declared kinds whose created entities ``kind`` may reference."""
    declared_keys = {k.key for k in declared}
    return [get_kind(dep) for dep in kind.depends_on if dep in declared_keys]  # type: ignore[misc]
