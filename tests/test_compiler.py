"""
Tests for the compilation pipeline: frontmatter parsing, imports, the
compile phases and YAML emission.
"""

import pytest
import yaml

from agentic.caches import ActionReferenceCache
from agentic.errors import (
    JobGraphError,
    McpConfigError,
    UnknownEngineError,
    WorkflowError,
    WorkflowParseError,
)
from agentic.workflow.compiler import (
    WorkflowCompiler,
    build_workflow_spec,
    parse_workflow_file,
    render_on,
    render_workflow_yaml,
    split_frontmatter,
)

from conftest import compile_spec, make_spec

# ============================================================================
# Frontmatter
# ============================================================================


class TestSplitFrontmatter:
    """Frontmatter block extraction."""

    def test_basic(self):
        data, body = split_frontmatter("---\non: push\nname: X\n---\n\n# Body\n")
        assert data == {"on": "push", "name": "X"}
        assert body == "# Body\n"

    def test_bare_on_key_read_as_on(self):
        data, _ = split_frontmatter("---\non:\n  issues:\n    types: [opened]\n---\n")
        assert "on" in data
        assert True not in data

    def test_missing_block(self):
        with pytest.raises(WorkflowParseError, match="missing frontmatter"):
            split_frontmatter("# Just markdown\n", "wf.md")

    def test_malformed_yaml(self):
        with pytest.raises(WorkflowParseError, match="invalid YAML frontmatter"):
            split_frontmatter("---\non: [unclosed\n---\n", "wf.md")

    def test_non_mapping(self):
        with pytest.raises(WorkflowParseError, match="must be a mapping"):
            split_frontmatter("---\n- a\n- b\n---\n", "wf.md")


class TestBuildWorkflowSpec:
    """Parse phase."""

    def test_missing_on(self):
        with pytest.raises(WorkflowParseError, match="missing required 'on'"):
            build_workflow_spec({"name": "x"}, "", "wf")

    def test_name_from_frontmatter_heading_or_id(self):
        assert make_spec({"name": "Explicit"}).name == "Explicit"
        assert make_spec(markdown="intro\n# From Heading\n").name == "From Heading"
        assert make_spec(markdown="no heading", workflow_id="wf-id").name == "wf-id"

    def test_invalid_section_is_parse_error(self):
        with pytest.raises(WorkflowParseError, match="invalid frontmatter"):
            make_spec({"jobs": {"deploy": {"uses": "x@main", "secrets": {"T": "plaintext"}}}})

    def test_declarations(self):
        spec = make_spec(
            {
                "engine": {"id": "claude", "model": "sonnet"},
                "tracker-id": "triage-01",
                "runtimes": {"node": {"version": "22"}, "python": None},
                "env": {"LEVEL": 3},
                "concurrency": "group-1",
            }
        )
        assert spec.engine.id == "claude"
        assert spec.tracker_id == "triage-01"
        assert spec.runtimes == ["node", "python"]
        assert spec.env == {"LEVEL": "3"}
        assert spec.passthrough == {"concurrency": "group-1"}
        assert not spec.strict

    def test_strict_override(self):
        assert make_spec({"strict": True}).strict
        assert not make_spec({"strict": True}, strict=False).strict
        assert make_spec(strict=True).strict


# ============================================================================
# Imports
# ============================================================================


class TestImports:
    """Imported jobs, steps and services."""

    def test_imports_merged(self, tmp_path):
        (tmp_path / "shared.md").write_text(
            "---\n"
            "jobs:\n  lint:\n    steps:\n      - run: make lint\n"
            "steps:\n  - name: Setup\n    run: make setup\n"
            "services:\n  redis:\n    image: redis\n"
            "---\n\nShared instructions.\n"
        )
        spec = make_spec(
            {"imports": ["shared.md"], "steps": [{"name": "Local", "run": "make"}]},
            base_dir=tmp_path,
        )
        assert "lint" in spec.custom_jobs
        assert [s["name"] for s in spec.steps] == ["Setup", "Local"]
        assert spec.services == {"redis": {"image": "redis"}}

    def test_missing_import_is_error(self, tmp_path):
        with pytest.raises(WorkflowParseError, match="cannot read import"):
            make_spec({"imports": "nope.md"}, base_dir=tmp_path)

    def test_malformed_import_skipped(self, tmp_path):
        (tmp_path / "bad.yml").write_text("jobs: [unclosed\n")
        spec = make_spec({"imports": ["bad.yml"]}, base_dir=tmp_path)
        assert spec.custom_jobs == {}


# ============================================================================
# Compile Phases
# ============================================================================


class TestCompile:
    """The compile phases over a parsed spec."""

    def test_derived_fields_populated(self):
        spec = compile_spec({"network": {"allowed": ["python"], "blocked": ["pypi.org"]}})
        assert "pypi.org" not in spec.allowed_domains
        assert spec.blocked_domains == ["pypi.org"]
        assert spec.firewall_enabled
        assert spec.mcp_config.servers == ("github",)
        assert spec.job_graph is not None

    def test_unknown_engine_aborts(self):
        with pytest.raises(UnknownEngineError):
            compile_spec({"engine": "gpt-pilot"})

    def test_runtime_domains_added(self, table):
        spec = compile_spec({"runtimes": {"python": None}, "network": {"allowed": []}}, table=table)
        assert "pypi.org" in spec.allowed_domains

    def test_engine_warnings(self):
        spec = compile_spec({"engine": {"id": "gemini", "max-turns": 5}, "tools": {"web-search": None}})
        locations = {w.location for w in spec.diagnostics.warnings}
        assert {"engine", "engine.max-turns", "tools.web-search"} <= locations

    def test_mcp_error_collected_with_strict_errors(self):
        with pytest.raises(WorkflowError) as exc_info:
            compile_spec(
                {
                    "strict": True,
                    "permissions": "write-all",
                    "mcp-servers": {"bad": {"command": "node", "bogus": 1}},
                }
            )
        msg = str(exc_info.value)
        assert msg.startswith("test-workflow: found 2 errors:")
        assert "unknown property 'bogus'" in msg
        assert "contents: write" in msg

    def test_fail_fast_stops_at_mcp_error(self):
        with pytest.raises(McpConfigError):
            compile_spec(
                {"strict": True, "permissions": "write-all", "mcp-servers": {"bad": {"command": "node", "bogus": 1}}},
                fail_fast=True,
            )

    def test_derived_fields_written_once(self):
        spec = compile_spec()
        with pytest.raises(WorkflowError, match="already written"):
            spec.set_derived("job_graph", None)

    def test_declaration_fields_not_derived(self):
        spec = make_spec()
        with pytest.raises(WorkflowError, match="not a derived"):
            spec.set_derived("name", "Other")

    def test_compile_file(self, write_workflow):
        path = write_workflow("daily-report.md", {"on": {"schedule": [{"cron": "0 9 * * *"}]}})
        spec = parse_workflow_file(path)
        assert spec.workflow_id == "daily-report"
        assert spec.source_path == str(path)

    def test_compile_file_missing(self, tmp_path):
        with pytest.raises(WorkflowParseError, match="cannot read workflow"):
            WorkflowCompiler().compile_file(tmp_path / "missing.md")


# ============================================================================
# Emission
# ============================================================================


class TestRenderOn:
    """Runner trigger section."""

    def test_trigger_only_keys_removed(self):
        spec = make_spec({"on": {"issues": {"types": ["opened"]}, "reaction": "eyes", "stop-after": "+1d"}})
        assert render_on(spec) == {"issues": {"types": ["opened"]}}

    def test_command_events_added(self):
        spec = make_spec({"on": {"slash_command": {"name": "fix"}}})
        rendered = render_on(spec)
        assert rendered["issue_comment"] == {"types": ["created", "edited"]}
        assert "slash_command" not in rendered

    def test_list_form(self):
        assert render_on(make_spec({"on": ["push", "pull_request"]})) == {"push": None, "pull_request": None}


class TestRenderWorkflowYaml:
    """Generated document."""

    def test_document_shape(self):
        spec = compile_spec(
            {"name": "Triage", "tracker-id": "t-1", "run-name": "Triage run", "safe-outputs": {"create-issue": None}}
        )
        text = render_workflow_yaml(spec)
        lines = text.splitlines()
        assert lines[0] == "# Generated from test-workflow. Do not edit."
        assert lines[1] == "# tracker-id: t-1"

        data = yaml.safe_load(text)
        assert list(data) == ["name", "on", "permissions", "run-name", "jobs"]
        assert data["permissions"] == {}
        assert list(data["jobs"]) == ["activation", "agent", "detection", "create_issue", "conclusion"]

    def test_multiline_strings_literal(self):
        spec = compile_spec(markdown="# T\n\nline one\nline two\n")
        text = render_workflow_yaml(spec)
        assert "run: |" in text

    def test_round_trips_through_yaml(self):
        spec = compile_spec(markdown="# T\n\nActor ${{ github.actor }}\n")
        data = yaml.safe_load(render_workflow_yaml(spec))
        create = data["jobs"]["activation"]["steps"]
        prompt = next(s for s in create if s["name"] == "Create prompt")
        assert "Actor __GH_AW_GITHUB_ACTOR__" in prompt["run"]
        assert data["jobs"]["agent"]["needs"] == "activation"

    def test_requires_compiled_spec(self):
        with pytest.raises(JobGraphError, match="compile it first"):
            render_workflow_yaml(make_spec())

    def test_deterministic(self):
        first = render_workflow_yaml(compile_spec({"safe-outputs": {"add-comment": None, "create-issue": None}}))
        second = render_workflow_yaml(compile_spec({"safe-outputs": {"create-issue": None, "add-comment": None}}))
        assert first == second

    def test_independent_compilers_share_nothing(self):
        cache = ActionReferenceCache()
        compiler = WorkflowCompiler(action_cache=cache)
        a = compiler.compile(make_spec({"name": "A"}))
        b = compiler.compile(make_spec({"name": "B"}))
        assert a.job_graph is not b.job_graph
        assert len(cache) == 0
