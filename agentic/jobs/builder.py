"""
builder.py - Assembles the job graph of one compiled workflow.

Phase order is fixed:

    pre_activation -> activation -> agent -> detection
        -> {safe-output jobs} -> safe_outputs (consolidation)
        -> memory jobs -> conclusion

Custom jobs are placed by their ``needs``:
- none declared: the job needs activation
- needs pre_activation but none of activation/agent/detection: the job is
  a pre-activation job, runs before activation, and activation may
  reference its outputs
- anything else: as declared, with activation added when the declared
  chain would otherwise let the job run before activation
"""

from __future__ import annotations

import logging
import shlex
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from agentic.caches import ActionReferenceCache, get_action_cache
from agentic.domains import format_domains
from agentic.engines.base import EngineAdapter
from agentic.expressions import (
    EXPRESSION_RE,
    PLACEHOLDER_REF,
    extract,
    heredoc_text,
    redaction_names,
    substitute,
    transform_activation_outputs,
)
from agentic.workflow.frontmatter import CustomJobSettings, SafeJobSettings
from agentic.workflow.types import WorkflowSpec

from .graph import DEFAULT_RUNNER, Job, JobGraph
from .names import (
    ACTIVATION,
    ACTIVATION_PHASE_JOBS,
    AGENT,
    CONCLUSION,
    DETECTION,
    PRE_ACTIVATION,
    PUSH_REPO_MEMORY,
    SAFE_OUTPUTS,
    UPDATE_CACHE_MEMORY,
    sanitize_job_name,
)
from .needs import filter_activation_expressions, known_needs_expressions, needs_expression
from .safe_outputs import (
    SafeOutputKind,
    declared_kinds,
    kind_dependencies,
    settings_for,
    unknown_output_keys,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

CHECKOUT_ACTION = ("actions/checkout", "v5")
GITHUB_SCRIPT_ACTION = ("actions/github-script", "v8")
UPLOAD_ARTIFACT_ACTION = ("actions/upload-artifact", "v4")
DOWNLOAD_ARTIFACT_ACTION = ("actions/download-artifact", "v5")
CACHE_SAVE_ACTION = ("actions/cache/save", "v4")

ACTIONS_DIR = "/tmp/gh-aw/actions"
PROMPT_PATH = "/tmp/gh-aw/aw-prompts/prompt.txt"
SAFE_OUTPUTS_FILE = "/tmp/gh-aw/safeoutputs/outputs.jsonl"
AGENT_OUTPUT_DIR = "/tmp/gh-aw/safeoutputs/"
AGENT_OUTPUT_FILE = "/tmp/gh-aw/safeoutputs/agent_output.json"
REPO_MEMORY_DIR = "/tmp/gh-aw/repo-memory"

PROMPT_ARTIFACT = "prompt"
AGENT_OUTPUT_ARTIFACT = "agent_output.json"
REPO_MEMORY_ARTIFACT = "repo-memory"

DEFAULT_SAFE_OUTPUT_TOKEN = "${{ secrets.GH_AW_GITHUB_TOKEN || secrets.GITHUB_TOKEN }}"
FIREWALL_COMMAND = "sudo -E awf --env-all"

READ_CONTENTS = {"contents": "read"}


def _expr(body: str) -> str:
    return f"${{{{ {body} }}}}"


def is_pre_activation_job(job: CustomJobSettings) -> bool:
    """Explicitly needs pre_activation and nothing from the activation phase on."""
    return PRE_ACTIVATION in job.needs and not any(n in ACTIVATION_PHASE_JOBS for n in job.needs)


class JobGraphBuilder:
    """Builds the JobGraph for one WorkflowSpec and engine."""

    def __init__(
        self,
        spec: WorkflowSpec,
        engine: EngineAdapter,
        action_cache: Optional[ActionReferenceCache] = None,
    ):
        self.spec = spec
        self.engine = engine
        self.actions = action_cache if action_cache is not None else get_action_cache()

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def pre_activation_custom_jobs(self) -> Dict[str, CustomJobSettings]:
        return {
            name: job
            for name, job in self.spec.custom_jobs.items()
            if name not in (PRE_ACTIVATION, "pre-activation") and is_pre_activation_job(job)
        }

    def has_pre_activation(self) -> bool:
        if self.spec.triggers.needs_pre_activation:
            return True
        return any(PRE_ACTIVATION in job.needs for job in self.spec.custom_jobs.values())

    def has_detection(self) -> bool:
        return self.spec.safe_outputs.enabled and self.spec.safe_outputs.threat_detection

    def activation_visible_jobs(self) -> List[str]:
        visible = [PRE_ACTIVATION] if self.has_pre_activation() else []
        return visible + sorted(self.pre_activation_custom_jobs())

    def activation_expressions(self) -> Dict[str, str]:
        """Expressions the activation job exports: user content plus known needs.

        User expressions that reference jobs activation cannot see are
        dropped.
        """
        user = extract(self.spec.markdown)
        visible = filter_activation_expressions(user, self.activation_visible_jobs())
        known = known_needs_expressions(
            self.has_pre_activation(),
            has_command=bool(self.spec.triggers.command),
            pre_activation_jobs={
                name: list(job.outputs) for name, job in self.pre_activation_custom_jobs().items()
            },
        )
        merged = dict(visible)
        merged.update(known)
        return dict(sorted(merged.items()))

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(self) -> JobGraph:
        spec = self.spec
        logger.info("Building jobs for workflow %s", spec.workflow_id)
        graph = JobGraph()
        pre_custom = self.pre_activation_custom_jobs()

        if self.has_pre_activation():
            graph.add_job(self._pre_activation_job())
        for name in sorted(pre_custom):
            graph.add_job(self._custom_job(name, pre_custom[name], []))

        graph.add_job(self._activation_job(sorted(pre_custom)))
        graph.add_job(self._agent_job())

        for key in unknown_output_keys(spec.safe_outputs):
            spec.diagnostics.add_warning(
                "safe-outputs", f"safe-outputs.{key}", "is not a known safe output type and was ignored"
            )

        detection = self.has_detection()
        if detection:
            graph.add_job(self._detection_job())
        upstream = [AGENT, DETECTION] if detection else [AGENT]

        safe_jobs: List[str] = []
        kinds = declared_kinds(spec.safe_outputs)
        for kind in kinds:
            job = self._safe_output_job(kind, kinds, upstream)
            graph.add_job(job)
            safe_jobs.append(job.name)
        for name in sorted(spec.safe_outputs.jobs):
            job = self._safe_job(name, spec.safe_outputs.jobs[name], upstream)
            graph.add_job(job)
            safe_jobs.append(job.name)
        if len(safe_jobs) > 1:
            graph.add_job(self._consolidation_job(safe_jobs))
            safe_jobs.append(SAFE_OUTPUTS)

        memory_jobs: List[str] = []
        if spec.tools.repo_memory:
            graph.add_job(self._push_repo_memory_job(upstream))
            memory_jobs.append(PUSH_REPO_MEMORY)
        if spec.tools.cache_memory:
            graph.add_job(self._update_cache_memory_job(upstream))
            memory_jobs.append(UPDATE_CACHE_MEMORY)

        if spec.safe_outputs.enabled:
            conclusion_needs = [ACTIVATION] if spec.triggers.reaction else []
            graph.add_job(self._conclusion_job(conclusion_needs + [AGENT] + safe_jobs + memory_jobs))

        for name in sorted(spec.custom_jobs):
            if name in pre_custom:
                continue
            if name in (PRE_ACTIVATION, "pre-activation"):
                logger.debug("Skipping custom job %s: reserved for pre-activation bookkeeping", name)
                continue
            graph.add_job(self._custom_job(name, spec.custom_jobs[name], [ACTIVATION]))

        self._anchor_custom_jobs(graph, pre_custom)
        graph.validate()
        logger.info("Built %d jobs for workflow %s", len(graph), spec.workflow_id)
        return graph

    def _anchor_custom_jobs(self, graph: JobGraph, pre_custom: Mapping[str, Any]) -> None:
        """Make every non-pre-activation custom job run after activation."""
        for name in graph.topological_order():
            if name not in self.spec.custom_jobs or name in pre_custom:
                continue
            job = graph.get_job(name)
            if ACTIVATION not in graph.ancestors(name):
                logger.debug("Custom job %s does not follow activation; adding dependency", name)
                job.needs.append(ACTIVATION)

    # -------------------------------------------------------------------------
    # Step helpers
    # -------------------------------------------------------------------------

    def _action(self, action: Tuple[str, str]) -> str:
        return self.actions.format_reference(*action)

    def _script_step(
        self,
        name: str,
        script: str,
        step_id: str = "",
        env: Optional[Mapping[str, str]] = None,
        github_token: str = "",
        if_: str = "",
    ) -> Dict[str, Any]:
        step: Dict[str, Any] = {"name": name}
        if step_id:
            step["id"] = step_id
        if if_:
            step["if"] = if_
        step["uses"] = self._action(GITHUB_SCRIPT_ACTION)
        if env:
            step["env"] = dict(env)
        with_: Dict[str, Any] = {}
        if github_token:
            with_["github-token"] = github_token
        with_["script"] = (
            f"const {{ main }} = require('{ACTIONS_DIR}/{script}.cjs');\nawait main();"
        )
        step["with"] = with_
        return step

    def _download_agent_output(self) -> Dict[str, Any]:
        return {
            "name": "Download agent output artifact",
            "continue-on-error": True,
            "uses": self._action(DOWNLOAD_ARTIFACT_ACTION),
            "with": {"name": AGENT_OUTPUT_ARTIFACT, "path": AGENT_OUTPUT_DIR},
        }

    def _runs_on(self) -> Any:
        return self.spec.passthrough.get("runs-on", DEFAULT_RUNNER)

    # -------------------------------------------------------------------------
    # pre_activation / activation
    # -------------------------------------------------------------------------

    def _pre_activation_job(self) -> Job:
        triggers = self.spec.triggers
        steps: List[Dict[str, Any]] = []
        checks: List[str] = []

        def check(name: str, step_id: str, script: str, output: str, env: Dict[str, str]) -> None:
            steps.append(self._script_step(name, script, step_id=step_id, env=env))
            checks.append(f"steps.{step_id}.outputs.{output} == 'true'")

        if triggers.needs_role_check:
            check(
                "Check team membership for workflow",
                "check_membership",
                "check_membership",
                "is_team_member",
                {"GH_AW_REQUIRED_ROLES": ",".join(triggers.roles)},
            )
        if triggers.skip_roles:
            check(
                "Check skip roles",
                "check_skip_roles",
                "check_skip_roles",
                "skip_roles_ok",
                {"GH_AW_SKIP_ROLES": ",".join(triggers.skip_roles)},
            )
        if triggers.stop_after:
            check(
                "Check stop-time limit",
                "check_stop_time",
                "check_stop_time",
                "stop_time_ok",
                {"GH_AW_STOP_TIME": triggers.stop_after, "GH_AW_WORKFLOW_NAME": self.spec.name},
            )
        if triggers.skip_if_match is not None:
            check(
                "Check skip-if-match query",
                "check_skip_if_match",
                "check_skip_if_match",
                "skip_check_ok",
                {"GH_AW_SKIP_QUERY": triggers.skip_if_match},
            )
        if triggers.skip_if_no_match is not None:
            check(
                "Check skip-if-no-match query",
                "check_skip_if_no_match",
                "check_skip_if_no_match",
                "skip_no_match_check_ok",
                {"GH_AW_SKIP_QUERY": triggers.skip_if_no_match},
            )
        if triggers.rate_limit is not None:
            env = {f"GH_AW_RATE_LIMIT_{k.upper().replace('-', '_')}": str(v) for k, v in triggers.rate_limit.items()}
            check("Check rate limit", "check_rate_limit", "check_rate_limit", "rate_limit_ok", env)

        outputs: Dict[str, str] = {}
        if triggers.command:
            check(
                "Check command position",
                "check_command_position",
                "check_command_position",
                "command_position_ok",
                {"GH_AW_COMMANDS": ",".join(triggers.command)},
            )
            outputs["matched_command"] = _expr("steps.check_command_position.outputs.matched_command")

        outputs["activated"] = _expr(" && ".join(checks)) if checks else "true"
        return Job(
            name=PRE_ACTIVATION,
            runs_on=self._runs_on(),
            permissions=dict(READ_CONTENTS),
            outputs=dict(sorted(outputs.items())),
            steps=steps or [{"name": "Record activation", "run": "echo \"activated\""}],
        )

    def _prompt_steps(self, expressions: Mapping[str, str]) -> List[Dict[str, Any]]:
        text = substitute(transform_activation_outputs(self.spec.markdown), expressions, PLACEHOLDER_REF)
        # References to jobs activation cannot see were filtered; drop them here too
        text = EXPRESSION_RE.sub("", text)
        run = (
            f"mkdir -p \"$(dirname \"$GH_AW_PROMPT\")\"\n"
            f"cat << 'PROMPT_EOF' > \"$GH_AW_PROMPT\"\n{text.rstrip()}\nPROMPT_EOF"
        )
        env = {"GH_AW_PROMPT": PROMPT_PATH}
        env.update(expressions)
        return [
            {"name": "Create prompt", "env": env, "run": run},
            self._script_step(
                "Interpolate variables and render templates", "interpolate_prompt", env=env
            ),
            {
                "name": "Upload prompt",
                "uses": self._action(UPLOAD_ARTIFACT_ACTION),
                "with": {"name": PROMPT_ARTIFACT, "path": PROMPT_PATH},
            },
        ]

    def _activation_job(self, pre_custom: Sequence[str]) -> Job:
        spec = self.spec
        has_pre = self.has_pre_activation()
        needs = ([PRE_ACTIVATION] if has_pre else []) + list(pre_custom)

        conditions = []
        if has_pre:
            conditions.append("needs.pre_activation.outputs.activated == 'true'")
        user_if = spec.passthrough.get("if")
        if user_if:
            conditions.append(f"({str(user_if).strip()})")

        permissions: Dict[str, str] = dict(READ_CONTENTS)
        outputs = {
            "body": _expr("steps.sanitized.outputs.body"),
            "text": _expr("steps.sanitized.outputs.text"),
            "title": _expr("steps.sanitized.outputs.title"),
        }
        steps: List[Dict[str, Any]] = [
            {
                "name": "Checkout .github folder",
                "uses": self._action(CHECKOUT_ACTION),
                "with": {"sparse-checkout": ".github", "persist-credentials": False},
            },
            self._script_step(
                "Check workflow file timestamps",
                "check_workflow_timestamp",
                env={"GH_AW_WORKFLOW_FILE": f"{spec.workflow_id}.lock.yml"},
            ),
            self._script_step("Compute current body text", "compute_text", step_id="sanitized"),
        ]
        if spec.triggers.reaction:
            permissions.update({"discussions": "write", "issues": "write", "pull-requests": "write"})
            steps.append(
                self._script_step(
                    f"Add {spec.triggers.reaction} reaction to the triggering item",
                    "add_reaction",
                    step_id="react",
                    env={"GH_AW_REACTION": spec.triggers.reaction},
                )
            )
            outputs["comment_id"] = _expr("steps.react.outputs.comment_id")

        expressions = spec.expressions if spec.expressions is not None else self.activation_expressions()
        steps.extend(self._prompt_steps(expressions))

        return Job(
            name=ACTIVATION,
            needs=needs,
            if_=" && ".join(conditions),
            runs_on=self._runs_on(),
            permissions=permissions,
            outputs=outputs,
            steps=steps,
        )

    # -------------------------------------------------------------------------
    # agent / detection
    # -------------------------------------------------------------------------

    def _engine_step(self) -> Dict[str, Any]:
        spec = self.spec
        safe_outputs = spec.safe_outputs.enabled
        command = self.engine.command_line(
            spec.tools, spec.engine, safe_outputs=safe_outputs, safe_inputs=spec.safe_inputs_enabled
        )
        if spec.firewall_enabled and spec.allowed_domains is not None:
            command = (
                f"{FIREWALL_COMMAND} --allow-domains {shlex.quote(format_domains(spec.allowed_domains))} "
                f"--log-level info -- {shlex.quote(command)}"
            )
        comment = self.engine.tool_arguments_comment(
            self.engine.tool_arguments(spec.tools, safe_outputs, spec.safe_inputs_enabled)
        )
        run = f"{comment}\n{command}" if comment else command

        env: Dict[str, str] = {
            "GH_AW_PROMPT": PROMPT_PATH,
            "GH_AW_MCP_CONFIG": self.engine.mcp_config_path,
        }
        for secret in self.engine.required_secret_names():
            env[secret] = _expr(f"secrets.{secret}")
        if safe_outputs:
            env["GH_AW_SAFE_OUTPUTS"] = SAFE_OUTPUTS_FILE
        env.update(spec.engine.env)
        step: Dict[str, Any] = {
            "name": f"Execute {self.engine.display_name}",
            "id": "agentic_execution",
        }
        if spec.passthrough.get("timeout-minutes") is not None:
            step["timeout-minutes"] = spec.passthrough["timeout-minutes"]
        step["env"] = env
        step["run"] = run
        return step

    def _setup_mcps_step(self) -> Optional[Dict[str, Any]]:
        rendered = self.spec.mcp_config
        if rendered is None or not rendered.servers:
            return None
        path = self.engine.mcp_config_path
        body = heredoc_text(rendered.text.rstrip(), rendered.passthrough)
        run = (
            f"mkdir -p \"$(dirname {path})\"\n"
            f"cat > {path} << GH_AW_MCP_CONFIG_EOF\n{body}\nGH_AW_MCP_CONFIG_EOF"
        )
        step: Dict[str, Any] = {"name": "Setup MCPs"}
        if rendered.env:
            step["env"] = dict(rendered.env)
        step["run"] = run
        return step

    def _agent_job(self) -> Job:
        spec = self.spec
        steps: List[Dict[str, Any]] = [
            {
                "name": "Checkout repository",
                "uses": self._action(CHECKOUT_ACTION),
                "with": {"persist-credentials": False},
            },
            {
                "name": "Download prompt artifact",
                "uses": self._action(DOWNLOAD_ARTIFACT_ACTION),
                "with": {"name": PROMPT_ARTIFACT, "path": "/tmp/gh-aw/aw-prompts"},
            },
        ]
        steps.extend(spec.steps)
        setup = self._setup_mcps_step()
        if setup is not None:
            steps.append(setup)
        steps.append(self._engine_step())
        steps.extend(spec.post_steps)

        mcp_env = spec.mcp_config.env if spec.mcp_config is not None else {}
        secret_names = redaction_names(mcp_env) + list(self.engine.required_secret_names())
        steps.append(
            self._script_step(
                "Redact secrets in logs",
                "redact_secrets",
                if_="always()",
                env={"GH_AW_SECRET_NAMES": ",".join(sorted(set(secret_names)))},
            )
        )

        outputs: Dict[str, str] = {}
        if spec.safe_outputs.enabled:
            steps.append(
                self._script_step(
                    "Ingest agent output",
                    "collect_ndjson_output",
                    step_id="collect_output",
                    env={"GH_AW_SAFE_OUTPUTS": SAFE_OUTPUTS_FILE},
                )
            )
            steps.append(
                {
                    "name": "Upload agent output",
                    "if": "always()",
                    "uses": self._action(UPLOAD_ARTIFACT_ACTION),
                    "with": {"name": AGENT_OUTPUT_ARTIFACT, "path": AGENT_OUTPUT_FILE},
                }
            )
            outputs = {
                "has_patch": _expr("steps.collect_output.outputs.has_patch"),
                "output": _expr("steps.collect_output.outputs.output"),
                "output_types": _expr("steps.collect_output.outputs.output_types"),
            }
        if spec.tools.repo_memory:
            steps.append(
                {
                    "name": "Upload repo memory",
                    "if": "always()",
                    "uses": self._action(UPLOAD_ARTIFACT_ACTION),
                    "with": {"name": REPO_MEMORY_ARTIFACT, "path": REPO_MEMORY_DIR},
                }
            )
        for entry in spec.tools.cache_memory:
            steps.append(
                {
                    "name": f"Upload cache memory {entry.id}",
                    "if": "always()",
                    "uses": self._action(UPLOAD_ARTIFACT_ACTION),
                    "with": {"name": f"cache-memory-{entry.id}", "path": _cache_dir(entry.id)},
                }
            )

        return Job(
            name=AGENT,
            needs=[ACTIVATION],
            runs_on=self._runs_on(),
            permissions=spec.permissions if spec.permissions is not None else dict(READ_CONTENTS),
            timeout_minutes=spec.passthrough.get("timeout-minutes"),
            services=dict(spec.services),
            env=dict(spec.env),
            outputs=outputs,
            steps=steps,
        )

    def _detection_job(self) -> Job:
        return Job(
            name=DETECTION,
            needs=[AGENT],
            if_="needs.agent.outputs.output_types != '' || needs.agent.outputs.has_patch == 'true'",
            runs_on=self._runs_on(),
            permissions={},
            outputs={"success": _expr("steps.parse_results.outputs.success")},
            steps=[
                self._download_agent_output(),
                self._script_step(
                    "Setup threat detection",
                    "setup_threat_detection",
                    env={"GH_AW_WORKFLOW_NAME": self.spec.name},
                ),
                self._script_step("Parse threat detection results", "parse_threat_detection_results", step_id="parse_results"),
            ],
        )

    # -------------------------------------------------------------------------
    # Safe outputs
    # -------------------------------------------------------------------------

    def _safe_output_condition(self, job_name: str, upstream: Sequence[str]) -> str:
        condition = (
            "!cancelled() && needs.agent.result != 'skipped' && "
            f"contains(needs.agent.outputs.output_types, '{job_name}')"
        )
        if DETECTION in upstream:
            condition += " && needs.detection.outputs.success == 'true'"
        return condition

    def _safe_output_job(
        self,
        kind: SafeOutputKind,
        declared: List[SafeOutputKind],
        upstream: Sequence[str],
    ) -> Job:
        settings = settings_for(self.spec.safe_outputs, kind)
        dependencies = kind_dependencies(kind, declared)

        env: Dict[str, str] = {"GH_AW_AGENT_OUTPUT": AGENT_OUTPUT_FILE, "GH_AW_WORKFLOW_NAME": self.spec.name}
        if settings.max is not None:
            env[f"{kind.env_prefix}_MAX"] = str(settings.max)
        if settings.target:
            env[f"{kind.env_prefix}_TARGET"] = settings.target
        if settings.title_prefix:
            env[f"{kind.env_prefix}_TITLE_PREFIX"] = settings.title_prefix
        if settings.labels:
            env[f"{kind.env_prefix}_LABELS"] = ",".join(settings.labels)
        if settings.required_labels:
            env[f"{kind.env_prefix}_REQUIRED_LABELS"] = ",".join(settings.required_labels)
        if self.spec.safe_outputs.staged:
            env["GH_AW_SAFE_OUTPUTS_STAGED"] = "true"
        for dep in dependencies:
            for output, var in dep.reference_env.items():
                env[var] = needs_expression(dep.job_name, output)

        return Job(
            name=kind.job_name,
            needs=list(upstream) + [dep.job_name for dep in dependencies],
            if_=self._safe_output_condition(kind.job_name, upstream),
            runs_on=self._runs_on(),
            permissions=dict(kind.permissions),
            timeout_minutes=10,
            outputs={o: _expr(f"steps.{kind.job_name}.outputs.{o}") for o in kind.outputs},
            steps=[
                self._download_agent_output(),
                self._script_step(
                    kind.title,
                    kind.job_name,
                    step_id=kind.job_name,
                    env=env,
                    github_token=settings.github_token or DEFAULT_SAFE_OUTPUT_TOKEN,
                ),
            ],
        )

    def _safe_job(self, name: str, settings: SafeJobSettings, upstream: Sequence[str]) -> Job:
        job_name = sanitize_job_name(name)
        env = {"GH_AW_AGENT_OUTPUT": AGENT_OUTPUT_FILE}
        env.update(settings.env)
        return Job(
            name=job_name,
            needs=list(upstream),
            if_=settings.if_ or self._safe_output_condition(job_name.replace("-", "_"), upstream),
            runs_on=settings.runs_on or self._runs_on(),
            permissions=settings.permissions,
            env=env,
            steps=[self._download_agent_output()] + list(settings.steps),
        )

    def _consolidation_job(self, safe_jobs: Sequence[str]) -> Job:
        env = {"GH_AW_SAFE_OUTPUT_JOBS": ",".join(safe_jobs)}
        for job in safe_jobs:
            env[f"GH_AW_RESULT_{job.upper().replace('-', '_')}"] = _expr(f"needs.{job}.result")
        return Job(
            name=SAFE_OUTPUTS,
            needs=[AGENT] + list(safe_jobs),
            if_="always() && needs.agent.result != 'skipped'",
            runs_on=self._runs_on(),
            permissions=dict(READ_CONTENTS),
            steps=[self._script_step("Summarize safe outputs", "summarize_safe_outputs", env=env)],
        )

    # -------------------------------------------------------------------------
    # Memory & conclusion
    # -------------------------------------------------------------------------

    def _push_repo_memory_job(self, upstream: Sequence[str]) -> Job:
        return Job(
            name=PUSH_REPO_MEMORY,
            needs=list(upstream),
            if_="always() && needs.agent.result == 'success'",
            runs_on=self._runs_on(),
            permissions={"contents": "write"},
            steps=[
                {
                    "name": "Checkout repository",
                    "uses": self._action(CHECKOUT_ACTION),
                    "with": {"persist-credentials": False},
                },
                {
                    "name": "Download repo memory artifact",
                    "continue-on-error": True,
                    "uses": self._action(DOWNLOAD_ARTIFACT_ACTION),
                    "with": {"name": REPO_MEMORY_ARTIFACT, "path": REPO_MEMORY_DIR},
                },
                self._script_step(
                    "Push repo memory changes",
                    "push_repo_memory",
                    env={"GH_AW_MEMORY_DIR": REPO_MEMORY_DIR},
                    github_token=DEFAULT_SAFE_OUTPUT_TOKEN,
                ),
            ],
        )

    def _update_cache_memory_job(self, upstream: Sequence[str]) -> Job:
        steps: List[Dict[str, Any]] = []
        for entry in self.spec.tools.cache_memory:
            path = _cache_dir(entry.id)
            key = entry.key or f"memory-{entry.id}-{_expr('github.workflow')}-{_expr('github.run_id')}"
            steps.append(
                {
                    "name": f"Download cache memory {entry.id}",
                    "continue-on-error": True,
                    "uses": self._action(DOWNLOAD_ARTIFACT_ACTION),
                    "with": {"name": f"cache-memory-{entry.id}", "path": path},
                }
            )
            steps.append(
                {
                    "name": f"Save cache memory {entry.id}",
                    "uses": self._action(CACHE_SAVE_ACTION),
                    "with": {"key": key, "path": path},
                }
            )
        return Job(
            name=UPDATE_CACHE_MEMORY,
            needs=list(upstream),
            if_="always() && needs.agent.result == 'success'",
            runs_on=self._runs_on(),
            permissions={},
            steps=steps,
        )

    def _conclusion_job(self, needs: Sequence[str]) -> Job:
        env = {
            "GH_AW_AGENT_CONCLUSION": _expr("needs.agent.result"),
            "GH_AW_WORKFLOW_NAME": self.spec.name,
        }
        if self.spec.triggers.reaction:
            env["GH_AW_COMMENT_ID"] = _expr("needs.activation.outputs.comment_id")
        return Job(
            name=CONCLUSION,
            needs=list(needs),
            if_="always()",
            runs_on=self._runs_on(),
            permissions={
                "contents": "read",
                "discussions": "write",
                "issues": "write",
                "pull-requests": "write",
            },
            steps=[
                self._download_agent_output(),
                self._script_step(
                    "Handle agent completion",
                    "handle_agent_completion",
                    env=env,
                    github_token=DEFAULT_SAFE_OUTPUT_TOKEN,
                ),
            ],
        )

    # -------------------------------------------------------------------------
    # Custom jobs
    # -------------------------------------------------------------------------

    def _custom_job(self, name: str, settings: CustomJobSettings, default_needs: List[str]) -> Job:
        logger.debug("Custom job %s needs %s", name, settings.needs or default_needs)
        return Job(
            name=name,
            needs=list(settings.needs) or list(default_needs),
            runs_on=settings.runs_on or self._runs_on(),
            if_=settings.if_ or "",
            permissions=settings.permissions,
            env={str(k): str(v) for k, v in settings.env.items()},
            outputs=dict(settings.outputs),
            steps=list(settings.steps),
            timeout_minutes=settings.timeout_minutes,
            uses=settings.uses,
            with_=dict(settings.with_),
            secrets=dict(settings.secrets),
        )


def _cache_dir(entry_id: str) -> str:
    return "/tmp/gh-aw/cache-memory" if entry_id == "default" else f"/tmp/gh-aw/cache-memory-{entry_id}"
