"""
compiler.py - Workflow compilation pipeline.

A workflow file is markdown with a YAML frontmatter block. Compilation
runs these phases in order, each writing its own fields of the
WorkflowSpec:

1. parse      - frontmatter is validated into typed declarations
2. engine     - the engine adapter is looked up (unknown engine aborts)
3. network    - allowed / blocked domains and firewall enablement
4. expressions- activation expressions are extracted from the markdown
5. mcp        - the MCP configuration is rendered for the engine
6. jobs       - the job graph is built
7. strict     - the strict-mode gate (and the env secret check)
8. packages   - optional advisory package lookups

Errors from phases 5 to 7 are collected so one compile reports every
independent problem; in fail-fast mode the first one aborts.

Usage:
    from agentic.workflow.compiler import parse_workflow_file, render_workflow_yaml

    spec = parse_workflow_file(Path(".github/workflows/triage.md"))
    text = render_workflow_yaml(spec)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from agentic.caches import ActionReferenceCache
from agentic.config.ecosystems import EcosystemTable
from agentic.domains import engine_allowed_domains, is_firewall_enabled, resolve_blocked_domains
from agentic.engines.base import EngineAdapter
from agentic.engines.registry import EngineRegistry, get_engine_registry
from agentic.errors import ErrorCollector, JobGraphError, McpConfigError, WorkflowParseError
from agentic.jobs.builder import JobGraphBuilder
from agentic.jobs.merge import merge_imported_jobs, merge_imported_services, merge_imported_steps
from agentic.mcp.renderer import render_mcp_config
from agentic.packages import PackageLookup, check_packages, registry_package_exists

from .frontmatter import (
    CustomJobSettings,
    EngineSettings,
    NetworkSettings,
    SandboxSettings,
    safe_outputs_from_dict,
    tools_config_from_dict,
    trigger_config_from_dict,
)
from .strict import StrictModeValidator
from .types import WorkflowSpec

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?\n)?---\s*(?:\n|$)", re.DOTALL)
HEADING_RE = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)

# Keys under ``on`` that drive pre-activation and are not runner events
TRIGGER_ONLY_KEYS = frozenset(
    {"command", "slash_command", "reaction", "stop-after", "skip-if-match", "skip-if-no-match", "roles", "skip-roles"}
)

# Events a command trigger listens to
COMMAND_EVENTS = {
    "issues": ("opened", "edited", "reopened"),
    "issue_comment": ("created", "edited"),
    "pull_request": ("opened", "edited", "reopened"),
    "pull_request_review_comment": ("created", "edited"),
}

PASSTHROUGH_KEYS = (
    "concurrency",
    "run-name",
    "timeout-minutes",
    "runs-on",
    "environment",
    "container",
    "cache",
    "if",
    "features",
)

# Passthrough keys emitted at the top level of the generated document
TOP_LEVEL_KEYS = ("run-name", "concurrency")

IMPORTED_SECTIONS = ("jobs", "steps", "services")


# =============================================================================
# Parse phase
# =============================================================================


def split_frontmatter(content: str, path: str = "<string>") -> Tuple[Dict[str, Any], str]:
    """Split a workflow document into its frontmatter mapping and markdown body.

    Raises:
        WorkflowParseError: If the frontmatter block is missing or malformed.
    """
    match = FRONTMATTER_RE.match(content)
    if not match:
        raise WorkflowParseError(path, "missing frontmatter block delimited by '---'")
    try:
        data = yaml.safe_load(match.group(1) or "") or {}
    except yaml.YAMLError as e:
        raise WorkflowParseError(path, f"invalid YAML frontmatter: {e}") from e
    if not isinstance(data, dict):
        raise WorkflowParseError(path, "frontmatter must be a mapping")
    # YAML 1.1 reads a bare ``on`` key as boolean true
    if True in data:
        data["on"] = data.pop(True)
    return data, content[match.end():].lstrip("\n")


def _import_fragments(imports: Any, base_dir: Path) -> Dict[str, List[str]]:
    """Text fragments for each importable section of the imported files.

    Raises:
        WorkflowParseError: If an imported file cannot be read.
    """
    fragments: Dict[str, List[str]] = {section: [] for section in IMPORTED_SECTIONS}
    if isinstance(imports, str):
        imports = [imports]
    for entry in imports or []:
        path = base_dir / str(entry)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise WorkflowParseError(str(path), f"cannot read import: {e}") from e
        match = FRONTMATTER_RE.match(content)
        text = (match.group(1) or "") if match else content
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            logger.debug("Skipping malformed import %s: %s", path, e)
            continue
        if not isinstance(data, dict):
            logger.debug("Skipping import %s: not a mapping", path)
            continue
        for section in IMPORTED_SECTIONS:
            if data.get(section) is not None:
                fragments[section].append(yaml.safe_dump(data[section], sort_keys=False))
    return fragments


def _workflow_name(frontmatter: Dict[str, Any], markdown: str, workflow_id: str) -> str:
    if frontmatter.get("name"):
        return str(frontmatter["name"])
    heading = HEADING_RE.search(markdown)
    return heading.group(1) if heading else workflow_id


def build_workflow_spec(
    frontmatter: Dict[str, Any],
    markdown: str,
    workflow_id: str,
    source_path: str = "",
    strict: Optional[bool] = None,
    base_dir: Optional[Path] = None,
) -> WorkflowSpec:
    """Validate a frontmatter mapping into a WorkflowSpec (parse phase).

    Args:
        strict: Overrides the frontmatter ``strict`` key when not None.
        base_dir: Directory that ``imports`` entries are relative to.

    Raises:
        WorkflowParseError: If a section fails validation.
    """
    location = source_path or workflow_id
    if "on" not in frontmatter:
        raise WorkflowParseError(location, "missing required 'on' trigger section")

    fragments = _import_fragments(frontmatter.get("imports"), base_dir or Path("."))

    try:
        engine = EngineSettings.model_validate(frontmatter.get("engine") or {})
        network = (
            NetworkSettings.model_validate(frontmatter["network"]) if "network" in frontmatter else None
        )
        sandbox = (
            SandboxSettings.model_validate(frontmatter["sandbox"]) if "sandbox" in frontmatter else None
        )
        jobs = merge_imported_jobs(frontmatter.get("jobs") or {}, fragments["jobs"])
        custom_jobs = {name: CustomJobSettings.model_validate(job) for name, job in jobs.items()}
        safe_outputs = safe_outputs_from_dict(frontmatter.get("safe-outputs"))
    except ValidationError as e:
        raise WorkflowParseError(location, f"invalid frontmatter: {e}") from e

    env = {str(k): str(v) for k, v in (frontmatter.get("env") or {}).items()}
    runtimes = frontmatter.get("runtimes") or {}
    on = frontmatter["on"]

    spec = WorkflowSpec(
        workflow_id=workflow_id,
        name=_workflow_name(frontmatter, markdown, workflow_id),
        tracker_id=str(frontmatter.get("tracker-id") or ""),
        source_path=source_path,
        markdown=markdown,
        engine=engine,
        tools=tools_config_from_dict(frontmatter.get("tools"), frontmatter.get("mcp-servers")),
        network=network,
        sandbox=sandbox,
        permissions=frontmatter.get("permissions"),
        safe_outputs=safe_outputs,
        safe_inputs=dict(frontmatter.get("safe-inputs") or {}),
        triggers=trigger_config_from_dict(on, frontmatter, workflow_id),
        custom_jobs=custom_jobs,
        steps=merge_imported_steps(frontmatter.get("steps") or [], fragments["steps"]),
        post_steps=list(frontmatter.get("post-steps") or []),
        services=merge_imported_services(frontmatter.get("services") or {}, fragments["services"]),
        runtimes=sorted(str(r) for r in runtimes),
        env=env,
        on=on,
        passthrough={k: frontmatter[k] for k in PASSTHROUGH_KEYS if k in frontmatter},
        frontmatter=frontmatter,
        strict=bool(frontmatter.get("strict", False)) if strict is None else strict,
    )
    logger.debug(
        "Parsed workflow %s: engine=%s, %d custom jobs, %d custom MCP servers",
        workflow_id, engine.id, len(custom_jobs), len(spec.tools.custom),
    )
    return spec


# =============================================================================
# Compiler
# =============================================================================


class WorkflowCompiler:
    """Runs the compilation phases over a parsed WorkflowSpec.

    The engine registry, ecosystem table and action cache default to the
    process-wide instances; tests inject their own.
    """

    def __init__(
        self,
        registry: Optional[EngineRegistry] = None,
        table: Optional[EcosystemTable] = None,
        action_cache: Optional[ActionReferenceCache] = None,
        fail_fast: bool = False,
        validate_packages: bool = False,
        package_lookup: PackageLookup = registry_package_exists,
    ):
        self.registry = registry or get_engine_registry()
        self.table = table
        self.action_cache = action_cache
        self.fail_fast = fail_fast
        self.validate_packages = validate_packages
        self.package_lookup = package_lookup

    def compile_file(self, path: Path, strict: Optional[bool] = None) -> WorkflowSpec:
        """Read, parse and compile one workflow file."""
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise WorkflowParseError(str(path), f"cannot read workflow: {e}") from e
        frontmatter, markdown = split_frontmatter(content, str(path))
        spec = build_workflow_spec(
            frontmatter,
            markdown,
            workflow_id=path.stem,
            source_path=str(path),
            strict=strict,
            base_dir=path.parent,
        )
        return self.compile(spec)

    def compile(self, spec: WorkflowSpec) -> WorkflowSpec:
        """Populate every derived field of ``spec``.

        Raises:
            WorkflowError: The first error (fail-fast) or all collected errors.
        """
        logger.info("Compiling workflow %s", spec.workflow_id)
        engine = self.registry.get_engine(spec.engine.id)
        self._engine_warnings(spec, engine)
        self._resolve_network(spec, engine)

        builder = JobGraphBuilder(spec, engine, self.action_cache)
        spec.set_derived("expressions", builder.activation_expressions())

        collector = ErrorCollector(fail_fast=self.fail_fast)
        try:
            spec.set_derived("mcp_config", render_mcp_config(spec, engine))
        except McpConfigError as e:
            collector.add(e)
        try:
            spec.set_derived("job_graph", builder.build())
        except JobGraphError as e:
            collector.add(e)
        StrictModeValidator(spec, engine, table=self.table, fail_fast=self.fail_fast).validate(collector)
        collector.raise_if_errors(spec.workflow_id)

        if self.validate_packages:
            check_packages(spec, self.package_lookup)
        logger.info(
            "Compiled workflow %s: %d jobs, %d warnings",
            spec.workflow_id, len(spec.job_graph or ()), len(spec.diagnostics.warnings),
        )
        return spec

    def _engine_warnings(self, spec: WorkflowSpec, engine: EngineAdapter) -> None:
        if engine.experimental:
            spec.diagnostics.add_warning("engine", "engine", f"'{engine.id}' is experimental")
        caps = engine.capabilities
        if spec.engine.max_turns is not None and not caps.max_turns:
            spec.diagnostics.add_warning(
                "engine", "engine.max-turns", f"is not supported by engine '{engine.id}' and is ignored"
            )
        if spec.tools.web_fetch and not caps.web_fetch:
            spec.diagnostics.add_warning(
                "engine", "tools.web-fetch", f"is not supported natively by engine '{engine.id}'"
            )
        if spec.tools.web_search and not caps.web_search:
            spec.diagnostics.add_warning(
                "engine", "tools.web-search", f"is not supported natively by engine '{engine.id}'"
            )

    def _resolve_network(self, spec: WorkflowSpec, engine: EngineAdapter) -> None:
        spec.set_derived(
            "allowed_domains",
            engine_allowed_domains(engine.profile, spec.network, spec.tools, spec.runtimes, self.table),
        )
        spec.set_derived("blocked_domains", resolve_blocked_domains(spec.network, self.table))
        spec.set_derived("firewall_enabled", is_firewall_enabled(engine.profile, spec.network, spec.sandbox))
        logger.debug(
            "Workflow %s: %d allowed domains, firewall=%s",
            spec.workflow_id, len(spec.allowed_domains or ()), spec.firewall_enabled,
        )


def parse_workflow_file(
    path: Path,
    strict: Optional[bool] = None,
    fail_fast: bool = False,
    compiler: Optional[WorkflowCompiler] = None,
) -> WorkflowSpec:
    """Run every pipeline phase over one workflow file.

    The workflow id is always the file name without its extension.

    Raises:
        WorkflowError: On any compilation error.
    """
    compiler = compiler or WorkflowCompiler(fail_fast=fail_fast)
    return compiler.compile_file(Path(path), strict=strict)


# =============================================================================
# Emission
# =============================================================================


class _WorkflowDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.Node:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_WorkflowDumper.add_representer(str, _represent_str)


def render_on(spec: WorkflowSpec) -> Dict[str, Any]:
    """Runner trigger section: trigger-only keys removed, command events added."""
    on = spec.on
    if isinstance(on, str):
        on = {on: None}
    elif isinstance(on, list):
        on = {str(e): None for e in on}
    elif not isinstance(on, dict):
        on = {}
    rendered = {k: v for k, v in on.items() if k not in TRIGGER_ONLY_KEYS}
    if spec.triggers.command:
        for event, types in COMMAND_EVENTS.items():
            rendered.setdefault(event, {"types": list(types)})
    if not rendered:
        rendered["workflow_dispatch"] = None
    return rendered


def render_workflow_yaml(spec: WorkflowSpec) -> str:
    """Emit the compiled workflow; jobs appear in topological order."""
    if spec.job_graph is None:
        raise JobGraphError(f"workflow '{spec.workflow_id}' has no job graph; compile it first")
    document: Dict[str, Any] = {"name": spec.name}
    document["on"] = render_on(spec)
    document["permissions"] = {}
    for key in TOP_LEVEL_KEYS:
        if key in spec.passthrough:
            document[key] = spec.passthrough[key]
    document["jobs"] = spec.job_graph.to_dict()

    header = f"# Generated from {Path(spec.source_path).name or spec.workflow_id}. Do not edit.\n"
    if spec.tracker_id:
        header += f"# tracker-id: {spec.tracker_id}\n"
    body = yaml.dump(document, Dumper=_WorkflowDumper, sort_keys=False, width=1000)
    return header + body
