"""
Tests for the job graph builder.

Covers phase ordering (pre_activation -> activation -> agent -> detection
-> safe outputs -> memory -> conclusion), custom job placement, activation
expression filtering, the engine step and the MCP setup step.
"""

from agentic.caches import ActionReferenceCache
from agentic.jobs.builder import FIREWALL_COMMAND, JobGraphBuilder, is_pre_activation_job
from agentic.workflow.compiler import WorkflowCompiler
from agentic.workflow.frontmatter import CustomJobSettings

from conftest import compile_spec, make_spec


def _step(job, name):
    for step in job.steps:
        if step.get("name") == name:
            return step
    raise AssertionError(f"no step named {name!r} in job {job.name}")


def _step_by_id(job, step_id):
    for step in job.steps:
        if step.get("id") == step_id:
            return step
    raise AssertionError(f"no step with id {step_id!r} in job {job.name}")


# ============================================================================
# Core Phases
# ============================================================================


class TestCorePhases:
    """Jobs present for a minimal workflow."""

    def test_minimal_workflow(self):
        spec = compile_spec()
        graph = spec.job_graph
        assert graph.topological_order() == ["activation", "agent"]
        assert graph.get_job("agent").needs == ["activation"]
        assert graph.get_job("activation").needs == []
        assert graph.get_job("activation").if_ == ""

    def test_agent_defaults(self):
        spec = compile_spec(
            {"services": {"db": {"image": "postgres"}}, "env": {"MODE": "ci"}, "timeout-minutes": 15}
        )
        agent = spec.job_graph.get_job("agent")
        assert agent.permissions == {"contents": "read"}
        assert agent.services == {"db": {"image": "postgres"}}
        assert agent.env == {"MODE": "ci"}
        assert agent.timeout_minutes == 15
        assert _step_by_id(agent, "agentic_execution")["timeout-minutes"] == 15

    def test_user_steps_run_before_engine(self):
        spec = compile_spec(
            {"steps": [{"name": "Install", "run": "make deps"}], "post-steps": [{"name": "Report", "run": "cat log"}]}
        )
        names = [s.get("name") for s in spec.job_graph.get_job("agent").steps]
        assert names.index("Install") < names.index("Execute GitHub Copilot CLI") < names.index("Report")
        assert names.index("Report") < names.index("Redact secrets in logs")

    def test_user_if_joins_activation_condition(self):
        spec = compile_spec({"if": "github.actor != 'bot'"})
        assert spec.job_graph.get_job("activation").if_ == "(github.actor != 'bot')"

    def test_runs_on_passthrough(self):
        spec = compile_spec({"runs-on": "self-hosted"})
        assert all(job.runs_on == "self-hosted" for job in spec.job_graph)


# ============================================================================
# Pre-activation
# ============================================================================


class TestPreActivation:
    """Pre-activation bookkeeping."""

    def test_role_check(self):
        spec = compile_spec({"roles": ["admin", "maintainer"]})
        graph = spec.job_graph
        pre = graph.get_job("pre_activation")
        assert pre.outputs["activated"] == "${{ steps.check_membership.outputs.is_team_member == 'true' }}"
        assert _step_by_id(pre, "check_membership")["env"] == {"GH_AW_REQUIRED_ROLES": "admin,maintainer"}

        activation = graph.get_job("activation")
        assert activation.needs == ["pre_activation"]
        assert activation.if_ == "needs.pre_activation.outputs.activated == 'true'"

    def test_roles_all_skips_pre_activation(self):
        spec = compile_spec({"roles": "all"})
        assert "pre_activation" not in spec.job_graph

    def test_checks_joined_with_and(self):
        spec = compile_spec({"on": {"issues": None, "stop-after": "+48h", "skip-if-match": "is:open label:bot"}})
        activated = spec.job_graph.get_job("pre_activation").outputs["activated"]
        assert activated == (
            "${{ steps.check_stop_time.outputs.stop_time_ok == 'true' && "
            "steps.check_skip_if_match.outputs.skip_check_ok == 'true' }}"
        )

    def test_command_trigger_exposes_matched_command(self):
        spec = compile_spec({"on": {"slash_command": {"name": "fix"}}})
        pre = spec.job_graph.get_job("pre_activation")
        assert pre.outputs["matched_command"] == "${{ steps.check_command_position.outputs.matched_command }}"
        assert "GH_AW_NEEDS_PRE_ACTIVATION_OUTPUTS_MATCHED_COMMAND" in spec.expressions

    def test_reaction(self):
        spec = compile_spec(
            {"on": {"issues": {"types": ["opened"]}, "reaction": "eyes"}, "safe-outputs": {"add-comment": None}}
        )
        graph = spec.job_graph
        pre = graph.get_job("pre_activation")
        assert pre.outputs == {"activated": "true"}

        activation = graph.get_job("activation")
        assert activation.permissions["issues"] == "write"
        assert activation.outputs["comment_id"] == "${{ steps.react.outputs.comment_id }}"
        assert _step_by_id(activation, "react")["env"] == {"GH_AW_REACTION": "eyes"}

        conclusion = graph.get_job("conclusion")
        assert conclusion.needs[0] == "activation"
        assert _step(conclusion, "Handle agent completion")["env"]["GH_AW_COMMENT_ID"] == (
            "${{ needs.activation.outputs.comment_id }}"
        )


# ============================================================================
# Custom Jobs
# ============================================================================


def test_is_pre_activation_job():
    assert is_pre_activation_job(CustomJobSettings(needs=["pre_activation"]))
    assert not is_pre_activation_job(CustomJobSettings(needs=["pre_activation", "agent"]))
    assert not is_pre_activation_job(CustomJobSettings())


class TestCustomJobs:
    """Placement of user-declared jobs."""

    JOBS = {
        "gate": {
            "needs": "pre_activation",
            "outputs": {"ok": "${{ steps.g.outputs.ok }}"},
            "steps": [{"id": "g", "run": "echo ok=true >> $GITHUB_OUTPUT"}],
        },
        "report": {"steps": [{"run": "echo report"}]},
        "late": {"needs": ["gate"], "steps": [{"run": "echo late"}]},
    }

    def test_default_needs_activation(self):
        spec = compile_spec({"jobs": self.JOBS})
        assert spec.job_graph.get_job("report").needs == ["activation"]

    def test_pre_activation_job_runs_before_activation(self):
        spec = compile_spec({"jobs": self.JOBS})
        graph = spec.job_graph
        assert graph.get_job("gate").needs == ["pre_activation"]
        assert graph.get_job("activation").needs == ["pre_activation", "gate"]
        assert graph.get_job("pre_activation").outputs == {"activated": "true"}

    def test_activation_may_reference_pre_activation_outputs(self):
        spec = compile_spec({"jobs": self.JOBS}, markdown="Gate said ${{ needs.gate.outputs.ok }}\n")
        assert spec.expressions["GH_AW_NEEDS_GATE_OUTPUTS_OK"] == "${{ needs.gate.outputs.ok }}"
        run = _step(spec.job_graph.get_job("activation"), "Create prompt")["run"]
        assert "Gate said __GH_AW_NEEDS_GATE_OUTPUTS_OK__" in run

    def test_chain_anchored_after_activation(self):
        spec = compile_spec({"jobs": self.JOBS})
        graph = spec.job_graph
        assert graph.get_job("late").needs == ["gate", "activation"]
        assert graph.depends_on("late", "activation")

    def test_job_after_agent_not_anchored_twice(self):
        spec = compile_spec({"jobs": {"post": {"needs": ["agent"], "steps": [{"run": "x"}]}}})
        assert spec.job_graph.get_job("post").needs == ["agent"]

    def test_reusable_workflow_job(self):
        spec = compile_spec(
            {
                "jobs": {
                    "deploy": {
                        "uses": "org/repo/.github/workflows/deploy.yml@main",
                        "secrets": {"TOKEN": "${{ secrets.DEPLOY_TOKEN }}"},
                    }
                }
            }
        )
        data = spec.job_graph.get_job("deploy").to_dict()
        assert data["uses"] == "org/repo/.github/workflows/deploy.yml@main"
        assert data["secrets"] == {"TOKEN": "${{ secrets.DEPLOY_TOKEN }}"}
        assert "runs-on" not in data


# ============================================================================
# Prompt & Expressions
# ============================================================================


class TestPrompt:
    """Prompt creation in the activation job."""

    MARKDOWN = (
        "# Triage\n\n"
        "Actor: ${{ github.actor }}\n"
        "Issue: ${{ needs.activation.outputs.text }}\n"
        "Hidden: ${{ needs.agent.outputs.output }}\n"
        "Done.\n"
    )

    def test_expressions_replaced_by_placeholders(self):
        spec = compile_spec(markdown=self.MARKDOWN)
        step = _step(spec.job_graph.get_job("activation"), "Create prompt")
        assert "Actor: __GH_AW_GITHUB_ACTOR__" in step["run"]
        assert "Issue: __GH_AW_STEPS_SANITIZED_OUTPUTS_TEXT__" in step["run"]
        assert "${{" not in step["run"]
        assert step["env"]["GH_AW_GITHUB_ACTOR"] == "${{ github.actor }}"

    def test_invisible_job_reference_dropped(self):
        spec = compile_spec(markdown=self.MARKDOWN)
        assert not any("needs.agent" in expr for expr in spec.expressions.values())
        run = _step(spec.job_graph.get_job("activation"), "Create prompt")["run"]
        assert "Hidden: \nDone." in run

    def test_quoted_heredoc(self):
        spec = compile_spec()
        run = _step(spec.job_graph.get_job("activation"), "Create prompt")["run"]
        assert "cat << 'PROMPT_EOF' > \"$GH_AW_PROMPT\"" in run
        assert run.endswith("\nPROMPT_EOF")

    def test_expressions_sorted(self):
        builder = JobGraphBuilder(make_spec(markdown="${{ github.sha }} ${{ github.actor }}"), None)
        assert list(builder.activation_expressions()) == ["GH_AW_GITHUB_ACTOR", "GH_AW_GITHUB_SHA"]


# ============================================================================
# Engine & MCP Steps
# ============================================================================


class TestEngineStep:
    """The step that runs the engine CLI."""

    def test_copilot_wrapped_in_firewall(self):
        spec = compile_spec({"network": {"allowed": ["python"]}})
        step = _step_by_id(spec.job_graph.get_job("agent"), "agentic_execution")
        last = step["run"].splitlines()[-1]
        assert last.startswith(f"{FIREWALL_COMMAND} --allow-domains ")
        assert "pypi.org" in last
        assert step["run"].startswith("# Copilot CLI tool arguments (sorted):")
        assert step["env"]["COPILOT_GITHUB_TOKEN"] == "${{ secrets.COPILOT_GITHUB_TOKEN }}"

    def test_firewall_disabled(self):
        spec = compile_spec({"network": {"allowed": ["python"], "firewall": False}})
        run = _step_by_id(spec.job_graph.get_job("agent"), "agentic_execution")["run"]
        assert FIREWALL_COMMAND not in run

    def test_claude_runs_directly(self):
        spec = compile_spec({"engine": "claude"})
        step = _step_by_id(spec.job_graph.get_job("agent"), "agentic_execution")
        assert step["name"] == "Execute Claude Code"
        assert step["run"].startswith("claude --print")
        assert step["env"]["ANTHROPIC_API_KEY"] == "${{ secrets.ANTHROPIC_API_KEY }}"

    def test_engine_env_and_safe_outputs(self):
        spec = compile_spec({"engine": {"id": "codex", "env": {"DEBUG": "1"}}, "safe-outputs": {"noop": None}})
        env = _step_by_id(spec.job_graph.get_job("agent"), "agentic_execution")["env"]
        assert env["DEBUG"] == "1"
        assert env["GH_AW_SAFE_OUTPUTS"] == "/tmp/gh-aw/safeoutputs/outputs.jsonl"
        assert env["GH_AW_MCP_CONFIG"] == "/tmp/gh-aw/mcp-config/config.toml"


class TestSetupMcps:
    """MCP configuration hand-off."""

    def test_secrets_only_in_step_env(self):
        spec = compile_spec(
            {"mcp-servers": {"api": {"url": "https://api.example.com", "headers": {"Key": "${{ secrets.API }}"}}}}
        )
        step = _step(spec.job_graph.get_job("agent"), "Setup MCPs")
        assert "${{" not in step["run"]
        assert "<< GH_AW_MCP_CONFIG_EOF" in step["run"]
        assert step["env"]["API"] == "${{ secrets.API }}"
        assert all(value.startswith("${{") for value in step["env"].values())

    def test_secret_names_redacted(self):
        spec = compile_spec(
            {"mcp-servers": {"api": {"url": "https://api.example.com", "headers": {"Key": "${{ secrets.API }}"}}}}
        )
        redact = _step(spec.job_graph.get_job("agent"), "Redact secrets in logs")
        names = redact["env"]["GH_AW_SECRET_NAMES"].split(",")
        assert "API" in names
        assert "COPILOT_GITHUB_TOKEN" in names
        assert redact["if"] == "always()"

    def test_copilot_keeps_references_literal(self):
        spec = compile_spec(
            {
                "mcp-servers": {"api": {"url": "https://api.example.com", "headers": {"Key": "${{ secrets.API }}"}}},
                "safe-outputs": {"create-issue": None},
            }
        )
        run = _step(spec.job_graph.get_job("agent"), "Setup MCPs")["run"]
        assert '"Key": "\\${API}"' in run
        assert ":${GH_AW_SAFE_OUTPUTS_PORT}" in run
        assert "\\${GH_AW_SAFE_OUTPUTS_PORT}" not in run

    def test_claude_references_expand(self):
        spec = compile_spec(
            {
                "engine": "claude",
                "mcp-servers": {"api": {"url": "https://api.example.com", "headers": {"Key": "${{ secrets.API }}"}}},
            }
        )
        run = _step(spec.job_graph.get_job("agent"), "Setup MCPs")["run"]
        assert '"Key": "${API}"' in run
        assert "\\${API}" not in run

    def test_backslashes_survive_heredoc(self):
        spec = compile_spec(
            {"engine": "claude", "mcp-servers": {"grep": {"container": "img", "args": ["--pattern", "\\d+"]}}}
        )
        run = _step(spec.job_graph.get_job("agent"), "Setup MCPs")["run"]
        # JSON "\\d+" doubled once more for the shell
        assert '"\\\\\\\\d+"' in run

    def test_no_servers_no_step(self):
        spec = compile_spec({"tools": {"github": False}})
        names = [s.get("name") for s in spec.job_graph.get_job("agent").steps]
        assert "Setup MCPs" not in names


# ============================================================================
# Safe Outputs
# ============================================================================


class TestSafeOutputJobs:
    """Detection, per-kind jobs, consolidation and conclusion."""

    def test_single_kind(self):
        spec = compile_spec({"safe-outputs": {"create-issue": {"max": 2, "title-prefix": "[ai] "}}})
        graph = spec.job_graph
        assert graph.topological_order() == ["activation", "agent", "detection", "create_issue", "conclusion"]

        job = graph.get_job("create_issue")
        assert job.needs == ["agent", "detection"]
        assert job.permissions == {"contents": "read", "issues": "write"}
        assert job.timeout_minutes == 10
        assert "contains(needs.agent.outputs.output_types, 'create_issue')" in job.if_
        assert job.if_.endswith("needs.detection.outputs.success == 'true'")

        step = _step_by_id(job, "create_issue")
        assert step["env"]["GH_AW_ISSUE_MAX"] == "2"
        assert step["env"]["GH_AW_ISSUE_TITLE_PREFIX"] == "[ai] "
        assert step["with"]["github-token"] == "${{ secrets.GH_AW_GITHUB_TOKEN || secrets.GITHUB_TOKEN }}"

    def test_agent_outputs(self):
        spec = compile_spec({"safe-outputs": {"noop": None}})
        agent = spec.job_graph.get_job("agent")
        assert set(agent.outputs) == {"has_patch", "output", "output_types"}
        assert _step(agent, "Upload agent output")["if"] == "always()"

    def test_no_detection(self):
        spec = compile_spec({"safe-outputs": {"create-issue": None, "threat-detection": False}})
        graph = spec.job_graph
        assert "detection" not in graph
        job = graph.get_job("create_issue")
        assert job.needs == ["agent"]
        assert "detection" not in job.if_

    def test_dependency_and_consolidation(self):
        spec = compile_spec({"safe-outputs": {"add-comment": None, "create-issue": None, "staged": True}})
        graph = spec.job_graph

        comment = graph.get_job("add_comment")
        assert comment.needs == ["agent", "detection", "create_issue"]
        env = _step_by_id(comment, "add_comment")["env"]
        assert env["GH_AW_CREATED_ISSUE_URL"] == "${{ needs.create_issue.outputs.issue_url }}"
        assert env["GH_AW_SAFE_OUTPUTS_STAGED"] == "true"

        summary = graph.get_job("safe_outputs")
        assert summary.needs == ["agent", "create_issue", "add_comment"]
        assert graph.get_job("conclusion").needs == ["agent", "create_issue", "add_comment", "safe_outputs"]

    def test_user_safe_job(self):
        spec = compile_spec(
            {"safe-outputs": {"jobs": {"Notify Team": {"steps": [{"run": "curl $HOOK"}], "env": {"HOOK": "x"}}}}}
        )
        job = spec.job_graph.get_job("notify-team")
        assert job.needs == ["agent", "detection"]
        assert job.env == {"GH_AW_AGENT_OUTPUT": "/tmp/gh-aw/safeoutputs/agent_output.json", "HOOK": "x"}
        assert job.steps[-1] == {"run": "curl $HOOK"}

    def test_unknown_kind_warns(self):
        spec = compile_spec({"safe-outputs": {"launch-rocket": None, "noop": None}})
        locations = [w.location for w in spec.diagnostics.warnings]
        assert "safe-outputs.launch-rocket" in locations


# ============================================================================
# Memory
# ============================================================================


def test_memory_jobs():
    spec = compile_spec(
        {"tools": {"repo-memory": True, "cache-memory": True}, "safe-outputs": {"create-issue": None}}
    )
    graph = spec.job_graph
    assert graph.get_job("push_repo_memory").needs == ["agent", "detection"]
    assert graph.get_job("update_cache_memory").needs == ["agent", "detection"]
    assert graph.get_job("conclusion").needs == ["agent", "create_issue", "push_repo_memory", "update_cache_memory"]

    agent = graph.get_job("agent")
    assert _step(agent, "Upload cache memory default")["with"]["path"] == "/tmp/gh-aw/cache-memory"
    assert _step(agent, "Upload repo memory")["with"]["name"] == "repo-memory"


def test_named_cache_memory_entries():
    spec = compile_spec({"tools": {"cache-memory": [{"id": "notes", "key": "notes-v1"}]}})
    job = spec.job_graph.get_job("update_cache_memory")
    save = _step(job, "Save cache memory notes")
    assert save["with"] == {"key": "notes-v1", "path": "/tmp/gh-aw/cache-memory-notes"}
    assert job.needs == ["agent"]


# ============================================================================
# Action Pinning
# ============================================================================


def test_pinned_action_references():
    cache = ActionReferenceCache()
    cache.set("actions/checkout", "v5", "0123abcd")
    spec = WorkflowCompiler(action_cache=cache).compile(make_spec())
    checkout = spec.job_graph.get_job("activation").steps[0]
    assert checkout["uses"] == "actions/checkout@0123abcd # v5"
    upload = _step(spec.job_graph.get_job("activation"), "Upload prompt")
    assert upload["uses"] == "actions/upload-artifact@v4"
