"""
frontmatter.py - Typed parse-boundary models for workflow frontmatter.

The raw frontmatter is an arbitrary key-value document. It is validated
exactly once here and turned into typed structures so that later phases
never re-check types at their use sites:

- pydantic models for sections with a fixed shape (engine, network,
  sandbox, safe outputs, custom jobs)
- frozen dataclasses for tool declarations, whose accepted shapes vary
  per tool (null, bool, list or mapping)

Custom MCP server declarations stay raw mappings here; agentic.mcp.descriptor
normalizes and rejects them key by key.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

SECRET_EXPRESSION_RE = re.compile(r"^\$\{\{.*\}\}$", re.DOTALL)


class _Settings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# =============================================================================
# Engine
# =============================================================================


class EngineSettings(_Settings):
    """Execution engine selection and engine-specific options."""

    id: str = Field("copilot", description="Engine identifier")
    model: str = Field("", description="Model override")
    version: str = Field("", description="Engine CLI version")
    max_turns: Optional[int] = Field(None, alias="max-turns", description="Turn limit")
    command: str = Field("", description="Custom engine command")
    user_agent: str = Field("", alias="user-agent", description="User agent for API calls")
    env: Dict[str, str] = Field(default_factory=dict, description="Environment overrides")
    args: List[str] = Field(default_factory=list, description="Extra CLI arguments")

    @model_validator(mode="before")
    @classmethod
    def _accept_string(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, str):
            return {"id": data}
        return data

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value


# =============================================================================
# Network & Sandbox
# =============================================================================


class FirewallSettings(_Settings):
    """Agent firewall sub-configuration."""

    enabled: bool = True
    version: str = ""
    log_level: str = Field("", alias="log-level")
    args: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_scalar(cls, data: Any) -> Any:
        if data is None or data is True:
            return {"enabled": True}
        if data is False or data == "disable":
            return {"enabled": False}
        return data


class NetworkSettings(_Settings):
    """Network policy.

    ``allowed`` distinguishes unset (None, meaning the "defaults" ecosystem)
    from an explicit empty list (deny all).
    """

    allowed: Optional[Tuple[str, ...]] = None
    blocked: Tuple[str, ...] = ()
    firewall: Optional[FirewallSettings] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_string(cls, data: Any) -> Any:
        if data is None:
            return {}
        if data == "defaults":
            return {"allowed": ["defaults"]}
        return data

    @property
    def firewall_enabled(self) -> bool:
        return self.firewall is not None and self.firewall.enabled


class SandboxSettings(_Settings):
    """Agent sandbox selection (``sandbox.agent``)."""

    agent_disabled: bool = False
    agent_type: str = ""

    @model_validator(mode="before")
    @classmethod
    def _parse_agent(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, str):
            return {"agent_type": data}
        if not isinstance(data, dict) or "agent" not in data:
            return data if isinstance(data, dict) else {}
        agent = data["agent"]
        if agent is False:
            return {"agent_disabled": True}
        if isinstance(agent, str):
            return {"agent_type": agent}
        if isinstance(agent, dict):
            if agent.get("disabled"):
                return {"agent_disabled": True}
            return {"agent_type": str(agent.get("id") or agent.get("type") or "")}
        return {}


# =============================================================================
# Safe Outputs
# =============================================================================


class SafeOutputSettings(_Settings):
    """Bounds for one typed mutation request."""

    max: Optional[int] = None
    target: str = ""
    required_labels: List[str] = Field(default_factory=list, alias="required-labels")
    labels: List[str] = Field(default_factory=list)
    title_prefix: str = Field("", alias="title-prefix")
    github_token: str = Field("", alias="github-token")

    @model_validator(mode="before")
    @classmethod
    def _accept_null(cls, data: Any) -> Any:
        return {} if data is None or data is True else data


class SafeJobSettings(_Settings):
    """A user-declared safe-output job (``safe-outputs.jobs.<name>``)."""

    description: str = ""
    runs_on: Any = Field(None, alias="runs-on")
    if_: Optional[str] = Field(None, alias="if")
    permissions: Any = None
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    output: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_null(cls, data: Any) -> Any:
        return {} if data is None else data


@dataclass(frozen=True)
class SafeOutputsConfig:
    """Declared safe outputs, keyed by mutation type."""

    outputs: Mapping[str, SafeOutputSettings] = field(default_factory=dict)
    jobs: Mapping[str, SafeJobSettings] = field(default_factory=dict)
    threat_detection: bool = True
    staged: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.outputs) or bool(self.jobs)

    def has(self, kind: str) -> bool:
        return kind in self.outputs


# =============================================================================
# Custom Jobs
# =============================================================================


class CustomJobSettings(_Settings):
    """A user-declared job from the top-level ``jobs`` mapping."""

    needs: List[str] = Field(default_factory=list)
    runs_on: Any = Field(None, alias="runs-on")
    if_: Optional[str] = Field(None, alias="if")
    permissions: Any = None
    outputs: Dict[str, str] = Field(default_factory=dict)
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    uses: str = ""
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    secrets: Dict[str, str] = Field(default_factory=dict)
    env: Dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: Optional[int] = Field(None, alias="timeout-minutes")

    @field_validator("needs", mode="before")
    @classmethod
    def _needs_as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("outputs", mode="before")
    @classmethod
    def _string_outputs_only(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: v for k, v in value.items() if isinstance(v, str)}
        return value

    @field_validator("secrets")
    @classmethod
    def _secrets_are_expressions(cls, value: Dict[str, str]) -> Dict[str, str]:
        for name, secret in value.items():
            if not SECRET_EXPRESSION_RE.match(secret.strip()):
                raise ValueError(
                    f"secret '{name}' must be a GitHub Actions expression like "
                    f"'${{{{ secrets.{name} }}}}'"
                )
        return value

    @property
    def is_reusable_workflow(self) -> bool:
        return bool(self.uses)


# =============================================================================
# Tools
# =============================================================================

WILDCARD_COMMANDS = ("*", ":*")


@dataclass(frozen=True)
class BashTool:
    """Shell tool. ``commands`` of None allows every command."""

    commands: Optional[Tuple[str, ...]] = None

    @property
    def allows_all(self) -> bool:
        return self.commands is None or any(c in WILDCARD_COMMANDS for c in self.commands)

    @property
    def has_wildcard(self) -> bool:
        return self.commands is not None and any(c in WILDCARD_COMMANDS for c in self.commands)


@dataclass(frozen=True)
class GitHubTool:
    """The hosted GitHub API integration."""

    mode: str = "local"
    read_only: bool = False
    lockdown: bool = False
    toolsets: Tuple[str, ...] = ()
    allowed: Optional[Tuple[str, ...]] = None
    version: str = ""
    args: Tuple[str, ...] = ()
    mounts: Tuple[str, ...] = ()
    github_token: str = ""


@dataclass(frozen=True)
class PlaywrightTool:
    """Browser automation tool."""

    version: str = ""
    allowed_domains: Tuple[str, ...] = ()
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SerenaTool:
    """Code-search tool."""

    mode: str = "docker"
    languages: Tuple[str, ...] = ()
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CacheMemoryEntry:
    """One cache-memory store."""

    id: str = "default"
    key: str = ""
    scope: str = "workflow"


@dataclass(frozen=True)
class ToolsConfig:
    """All tool declarations of one workflow."""

    bash: Optional[BashTool] = None
    edit: bool = False
    web_fetch: bool = False
    web_search: bool = False
    github: Optional[GitHubTool] = None
    playwright: Optional[PlaywrightTool] = None
    serena: Optional[SerenaTool] = None
    cache_memory: Tuple[CacheMemoryEntry, ...] = ()
    repo_memory: bool = False
    custom: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    timeout: Optional[int] = None
    startup_timeout: Optional[int] = None


BUILTIN_TOOL_KEYS = frozenset(
    {
        "bash",
        "edit",
        "web-fetch",
        "web-search",
        "github",
        "playwright",
        "serena",
        "cache-memory",
        "repo-memory",
        "timeout",
        "startup-timeout",
    }
)


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(s.strip() for s in value.split(",") if s.strip())
    return tuple(str(v) for v in value)


def _optional_str_tuple(value: Any) -> Optional[Tuple[str, ...]]:
    return None if value is None else _str_tuple(value)


def bash_tool_from_value(value: Any) -> Optional[BashTool]:
    if value is False:
        return None
    if value is None or value is True:
        return BashTool(commands=None)
    return BashTool(commands=_str_tuple(value))


def github_tool_from_value(value: Any) -> Optional[GitHubTool]:
    if value is False:
        return None
    if not isinstance(value, dict):
        return GitHubTool()
    return GitHubTool(
        mode=str(value.get("mode", "local")),
        read_only=bool(value.get("read-only", False)),
        lockdown=bool(value.get("lockdown", False)),
        toolsets=_str_tuple(value.get("toolsets")),
        allowed=_optional_str_tuple(value.get("allowed")),
        version=str(value.get("version", "")),
        args=_str_tuple(value.get("args")),
        mounts=_str_tuple(value.get("mounts")),
        github_token=str(value.get("github-token", "")),
    )


def playwright_tool_from_value(value: Any) -> Optional[PlaywrightTool]:
    if value is False:
        return None
    if not isinstance(value, dict):
        return PlaywrightTool()
    return PlaywrightTool(
        version=str(value.get("version", "")),
        allowed_domains=_str_tuple(value.get("allowed_domains", value.get("allowed-domains"))),
        args=_str_tuple(value.get("args")),
    )


def serena_tool_from_value(value: Any) -> Optional[SerenaTool]:
    if value is False:
        return None
    if isinstance(value, list):
        return SerenaTool(languages=_str_tuple(value))
    if not isinstance(value, dict):
        return SerenaTool()
    languages = value.get("languages")
    if isinstance(languages, dict):
        languages = list(languages)
    return SerenaTool(
        mode=str(value.get("mode", "docker")),
        languages=_str_tuple(languages),
        args=_str_tuple(value.get("args")),
    )


def cache_memory_from_value(value: Any) -> Tuple[CacheMemoryEntry, ...]:
    if value is False:
        return ()
    if value is None or value is True:
        return (CacheMemoryEntry(),)
    items = value if isinstance(value, list) else [value]
    entries = []
    for item in items:
        if not isinstance(item, dict):
            continue
        entries.append(
            CacheMemoryEntry(
                id=str(item.get("id", "default")),
                key=str(item.get("key", "")),
                scope=str(item.get("scope", "workflow")),
            )
        )
    return tuple(entries)


def tools_config_from_dict(
    tools: Optional[Dict[str, Any]],
    mcp_servers: Optional[Dict[str, Any]] = None,
) -> ToolsConfig:
    """Build a ToolsConfig from the ``tools`` and ``mcp-servers`` sections.

    The GitHub tool is enabled by default unless ``github: false`` is given.
    Any non-builtin mapping under ``tools`` and every ``mcp-servers`` entry
    is kept as a custom MCP declaration (``mcp-servers`` wins on collision).
    """
    tools = dict(tools or {})
    custom: Dict[str, Mapping[str, Any]] = {}
    for name, value in tools.items():
        if name not in BUILTIN_TOOL_KEYS and isinstance(value, dict):
            custom[name] = MappingProxyType(dict(value))
    for name, value in (mcp_servers or {}).items():
        if isinstance(value, dict):
            custom[name] = MappingProxyType(dict(value))
        else:
            logger.debug("Ignoring non-mapping mcp-servers entry %s", name)

    def _flag(key: str) -> bool:
        return key in tools and tools[key] is not False

    return ToolsConfig(
        bash=bash_tool_from_value(tools["bash"]) if "bash" in tools else None,
        edit=_flag("edit"),
        web_fetch=_flag("web-fetch"),
        web_search=_flag("web-search"),
        github=github_tool_from_value(tools.get("github")),
        playwright=playwright_tool_from_value(tools["playwright"]) if "playwright" in tools else None,
        serena=serena_tool_from_value(tools["serena"]) if "serena" in tools else None,
        cache_memory=cache_memory_from_value(tools["cache-memory"]) if "cache-memory" in tools else (),
        repo_memory=_flag("repo-memory"),
        custom=MappingProxyType(dict(sorted(custom.items()))),
        timeout=tools.get("timeout"),
        startup_timeout=tools.get("startup-timeout"),
    )


# Keys under safe-outputs that configure the subsystem rather than declare a type
SAFE_OUTPUT_SETTINGS_KEYS = frozenset(
    {"github-token", "app", "env", "messages", "mentions", "footer", "runs-on", "max-patch-size"}
)


def safe_outputs_from_dict(data: Optional[Dict[str, Any]]) -> SafeOutputsConfig:
    """Build a SafeOutputsConfig from the ``safe-outputs`` section."""
    if not data:
        return SafeOutputsConfig()
    outputs: Dict[str, SafeOutputSettings] = {}
    jobs: Dict[str, SafeJobSettings] = {}
    threat_detection = True
    staged = False
    for key, value in data.items():
        if key == "jobs":
            for job_name, job in (value or {}).items():
                jobs[job_name] = SafeJobSettings.model_validate(job)
        elif key == "threat-detection":
            threat_detection = value is not False
        elif key == "staged":
            staged = bool(value)
        elif key in SAFE_OUTPUT_SETTINGS_KEYS:
            continue
        elif value is False:
            continue
        else:
            outputs[key] = SafeOutputSettings.model_validate(value)
    return SafeOutputsConfig(
        outputs=MappingProxyType(outputs),
        jobs=MappingProxyType(jobs),
        threat_detection=threat_detection,
        staged=staged,
    )


# =============================================================================
# Triggers
# =============================================================================


@dataclass(frozen=True)
class TriggerConfig:
    """Trigger-derived facts that decide pre-activation bookkeeping."""

    events: Tuple[str, ...] = ()
    command: Tuple[str, ...] = ()
    reaction: str = ""
    stop_after: str = ""
    skip_if_match: Optional[str] = None
    skip_if_no_match: Optional[str] = None
    roles: Tuple[str, ...] = ()
    skip_roles: Tuple[str, ...] = ()
    rate_limit: Optional[Mapping[str, Any]] = None

    @property
    def needs_role_check(self) -> bool:
        return bool(self.roles) and "all" not in self.roles

    @property
    def needs_pre_activation(self) -> bool:
        return bool(
            self.needs_role_check
            or self.command
            or self.reaction
            or self.stop_after
            or self.skip_if_match is not None
            or self.skip_if_no_match is not None
            or self.skip_roles
            or self.rate_limit is not None
        )


def _query_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, dict):
        return str(value.get("query", ""))
    return str(value)


def trigger_config_from_dict(
    on: Any, frontmatter: Dict[str, Any], workflow_id: str = ""
) -> TriggerConfig:
    """Extract trigger facts from ``on`` plus the top-level role settings."""
    if isinstance(on, str):
        on = {on: None}
    elif isinstance(on, list):
        on = {str(e): None for e in on}
    elif not isinstance(on, dict):
        on = {}

    command: Tuple[str, ...] = ()
    for key in ("command", "slash_command"):
        if key in on:
            spec = on[key]
            if isinstance(spec, dict):
                command = _str_tuple(spec.get("name"))
            elif isinstance(spec, (str, list)):
                command = _str_tuple(spec)
            if not command:
                command = (workflow_id or "command",)

    rate_limit = frontmatter.get("rate-limit")
    return TriggerConfig(
        events=tuple(sorted(str(k) for k in on)),
        command=command,
        reaction=str(on.get("reaction") or ""),
        stop_after=str(on.get("stop-after") or ""),
        skip_if_match=_query_value(on.get("skip-if-match")),
        skip_if_no_match=_query_value(on.get("skip-if-no-match")),
        roles=_str_tuple(on.get("roles", frontmatter.get("roles"))),
        skip_roles=_str_tuple(on.get("skip-roles")),
        rate_limit=MappingProxyType(dict(rate_limit)) if isinstance(rate_limit, dict) else None,
    )
