"""
Test fixtures and helpers for the workflow compiler tests.

Provides a small injected ecosystem table (so domain tests do not depend on
the bundled data), workflow-file writers and helpers that run the parse
and compile phases over frontmatter given as a dict.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import yaml

from agentic.caches import ActionReferenceCache
from agentic.config.ecosystems import ecosystem_table_from_dict
from agentic.workflow.compiler import WorkflowCompiler, build_workflow_spec
from agentic.workflow.types import WorkflowSpec

# ============================================================================
# Ecosystem Table
# ============================================================================

SMALL_ECOSYSTEMS = {
    "defaults": ["json-schema.org", "archive.ubuntu.com"],
    "github": ["*.githubusercontent.com", "codeload.github.com"],
    "python": ["pypi.org", "*.pythonhosted.org", "files.pythonhosted.org"],
    "node": ["registry.npmjs.org", "nodejs.org", "cdn.jsdelivr.net"],
    "node-cdns": ["cdn.jsdelivr.net", "unpkg.com"],
    "containers": ["ghcr.io", "registry.hub.docker.com"],
}


@pytest.fixture
def table():
    """Small ecosystem table; node and node-cdns share cdn.jsdelivr.net."""
    return ecosystem_table_from_dict(SMALL_ECOSYSTEMS)


# ============================================================================
# Spec Helpers
# ============================================================================


def make_spec(
    frontmatter: Optional[Dict[str, Any]] = None,
    markdown: str = "# Test Workflow\n\nDo the thing.\n",
    workflow_id: str = "test-workflow",
    strict: Optional[bool] = None,
    base_dir: Optional[Path] = None,
) -> WorkflowSpec:
    """Run the parse phase over a frontmatter dict (``on`` defaults to issues)."""
    data = {"on": "issues"}
    data.update(frontmatter or {})
    return build_workflow_spec(
        data, markdown, workflow_id, strict=strict, base_dir=base_dir
    )


def compile_spec(
    frontmatter: Optional[Dict[str, Any]] = None,
    markdown: str = "# Test Workflow\n\nDo the thing.\n",
    table=None,
    fail_fast: bool = False,
    **kwargs,
) -> WorkflowSpec:
    """Parse and compile; uses a fresh action cache so pins never leak in."""
    spec = make_spec(frontmatter, markdown, **kwargs)
    compiler = WorkflowCompiler(
        table=table, action_cache=ActionReferenceCache(), fail_fast=fail_fast
    )
    return compiler.compile(spec)


def workflow_text(frontmatter: Dict[str, Any], markdown: str = "# Test Workflow\n\nDo the thing.\n") -> str:
    """Render a workflow document: YAML frontmatter plus markdown body."""
    body = yaml.safe_dump(frontmatter, sort_keys=False)
    return f"---\n{body}---\n\n{markdown}"


# ============================================================================
# Workflow File Fixtures
# ============================================================================


@pytest.fixture
def write_workflow(tmp_path):
    """Write workflow files into a temporary workflows directory.

    Returns a callable ``(name, content) -> Path``; ``content`` may be raw
    text or a frontmatter dict.
    """
    workflows = tmp_path / "workflows"
    workflows.mkdir()

    def _write(name: str, content: Any, markdown: str = "# Test Workflow\n\nDo the thing.\n") -> Path:
        path = workflows / name
        text = content if isinstance(content, str) else workflow_text(content, markdown)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
