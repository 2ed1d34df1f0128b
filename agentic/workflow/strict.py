"""
strict.py - Strict-mode policy gate for compiled workflows.

Runs after the IR is fully populated. Each check is independent and
returns either None or a StrictModeError; the ErrorCollector decides
whether the first failure aborts (fail-fast) or all failures are reported
together (collect-all, the default).

Checks:
- write permission on contents / issues / pull-requests
- bare ``*`` in network.allowed
- custom container MCP servers without a top-level network allow-list
- serena ``mode: local`` and cache-memory ``scope: repo``
- deprecated frontmatter fields
- ``sandbox.agent: false``
- firewall disabled on firewall-capable engines with a restricted network

Literal domains that belong to a known ecosystem only produce a warning.
Secrets in ``env`` / ``engine.env`` are checked regardless of strict mode:
an error when strict, a warning otherwise.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from agentic.config.ecosystems import EcosystemTable
from agentic.domains import DEFAULTS_ECOSYSTEM, WILDCARD, domain_ecosystem_suggestions, is_sandbox_enabled
from agentic.engines.base import EngineAdapter
from agentic.errors import ErrorCollector, StrictModeError
from agentic.expressions import extract_secrets_from_map
from agentic.mcp.descriptor import has_mcp_config

from .types import WorkflowSpec

logger = logging.getLogger(__name__)

# =============================================================================
# Policy tables
# =============================================================================

SENSITIVE_WRITE_SCOPES = ("contents", "issues", "pull-requests")

# Dotted frontmatter path -> replacement ("" when the field was removed)
DEPRECATED_FIELDS = {
    "timeout_minutes": "timeout-minutes",
    "on.command": "on.slash_command",
    "safe-inputs.mode": "",
}

DOCS_URL = "https://github.github.com/gh-aw/reference"


def _lookup(document: Mapping[str, Any], dotted: str) -> Tuple[bool, Any]:
    current: Any = document
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current


def permission_level(permissions: Any, scope: str) -> str:
    """Effective level ("read", "write", "none" or "") granted to ``scope``."""
    if isinstance(permissions, str):
        if permissions == "write-all":
            return "write"
        if permissions == "read-all":
            return "read"
        return ""
    if isinstance(permissions, Mapping):
        return str(permissions.get(scope, "") or "")
    return ""


class StrictModeValidator:
    """Evaluates the strict-mode policy against one compiled WorkflowSpec."""

    def __init__(
        self,
        spec: WorkflowSpec,
        engine: EngineAdapter,
        table: Optional[EcosystemTable] = None,
        fail_fast: bool = False,
    ):
        self.spec = spec
        self.engine = engine
        self.table = table
        self.fail_fast = fail_fast

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def validate(self, collector: Optional[ErrorCollector] = None) -> None:
        """Run every applicable check.

        When ``collector`` is given, violations are added to it and left for
        the caller to report.

        Raises:
            StrictModeError: The single violation, or a combined WorkflowError
                listing every violation in collect-all mode.
        """
        owned = collector is None
        if collector is None:
            collector = ErrorCollector(fail_fast=self.fail_fast)
        collector.add(self.check_env_secrets())

        if self.spec.strict:
            logger.info("Running strict mode validation for %s", self.spec.workflow_id)
            checks: List[Callable[[], Optional[StrictModeError]]] = [
                self.check_permissions,
                self.check_network_wildcard,
                self.check_mcp_network,
                self.check_serena_mode,
                self.check_cache_memory_scope,
                self.check_deprecated_fields,
                self.check_sandbox_agent,
                self.check_firewall,
            ]
            for check in checks:
                collector.add(check())
            self.suggest_ecosystems()
        else:
            logger.debug("Strict mode disabled for %s", self.spec.workflow_id)

        logger.debug("Strict mode validation found %d errors", collector.count())
        if owned:
            collector.raise_if_errors("strict mode")

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def check_permissions(self) -> Optional[StrictModeError]:
        for scope in SENSITIVE_WRITE_SCOPES:
            if permission_level(self.spec.permissions, scope) == "write":
                logger.debug("Write permission refused: scope=%s", scope)
                return StrictModeError(
                    f"write permission '{scope}: write' is not allowed for security reasons. "
                    "Use 'safe-outputs.create-issue', 'safe-outputs.create-pull-request', "
                    "'safe-outputs.add-comment', or 'safe-outputs.update-issue' to perform "
                    f"write operations safely. See: {DOCS_URL}/safe-outputs/"
                )
        return None

    def check_network_wildcard(self) -> Optional[StrictModeError]:
        network = self.spec.network
        if network is None or network.allowed is None:
            return None
        if WILDCARD in network.allowed:
            return StrictModeError(
                "wildcard '*' is not allowed in network.allowed domains to prevent unrestricted "
                "internet access. Specify explicit domains or use ecosystem identifiers like "
                f"'python', 'node', 'containers'. See: {DOCS_URL}/network/"
            )
        return None

    def check_mcp_network(self) -> Optional[StrictModeError]:
        network = self.spec.network
        has_network = network is not None and bool(network.allowed)
        for name, config in self.spec.tools.custom.items():
            is_mcp, mcp_type = has_mcp_config(config)
            if not is_mcp or mcp_type != "stdio" or "container" not in config:
                continue
            if not has_network:
                return StrictModeError(
                    f"custom MCP server '{name}' with container must have top-level network "
                    "configuration for security. Add 'network: { allowed: [...] }' to the "
                    f"workflow to restrict network access. See: {DOCS_URL}/network/"
                )
        return None

    def check_serena_mode(self) -> Optional[StrictModeError]:
        serena = self.spec.tools.serena
        if serena is not None and serena.mode == "local":
            return StrictModeError(
                "serena tool with 'mode: local' is not allowed for security reasons. Local mode "
                "runs the MCP server directly on the host without containerization. Use "
                f"'mode: docker' (default) instead. See: {DOCS_URL}/tools/#serena"
            )
        return None

    def check_cache_memory_scope(self) -> Optional[StrictModeError]:
        for entry in self.spec.tools.cache_memory:
            if entry.scope == "repo":
                return StrictModeError(
                    "cache-memory with 'scope: repo' is not allowed for security reasons. Repo "
                    "scope shares the cache across all workflows in the repository. Use "
                    f"'scope: workflow' (default) instead. See: {DOCS_URL}/tools/#cache-memory"
                )
        return None

    def check_deprecated_fields(self) -> Optional[StrictModeError]:
        found = []
        for path, replacement in DEPRECATED_FIELDS.items():
            present, _ = _lookup(self.spec.frontmatter, path)
            if not present:
                continue
            message = f"Field '{path}' is deprecated"
            if replacement:
                message += f". Use '{replacement}' instead"
            found.append(message)
        if found:
            logger.debug("Deprecated fields found: %s", found)
            return StrictModeError(f"deprecated fields are not allowed. {'. '.join(found)}")
        return None

    def check_sandbox_agent(self) -> Optional[StrictModeError]:
        if not self.spec.agent_sandbox_disabled:
            return None
        if not self.engine.supports_llm_gateway:
            return StrictModeError(
                f"engine '{self.engine.id}' does not support LLM gateway and requires "
                "'sandbox.agent' to be enabled for security. Remove 'sandbox.agent: false' "
                f"or set 'strict: false'. See: {DOCS_URL}/sandbox/"
            )
        return StrictModeError(
            "'sandbox.agent: false' is not allowed because it disables the agent sandbox "
            "firewall. Remove 'sandbox.agent: false' or set 'strict: false' to disable "
            f"strict mode. See: {DOCS_URL}/sandbox/"
        )

    def check_firewall(self) -> Optional[StrictModeError]:
        if not self.engine.capabilities.firewall:
            return None
        # sandbox.agent: false is reported by check_sandbox_agent
        if self.spec.agent_sandbox_disabled:
            return None
        network = self.spec.network
        if is_sandbox_enabled(self.spec.sandbox, network):
            return None
        if network is not None and network.allowed is not None and WILDCARD in network.allowed:
            return None
        if network is not None and network.firewall is not None and not network.firewall.enabled:
            logger.debug("Firewall disabled for engine %s with restricted network", self.engine.id)
            return StrictModeError(
                f"firewall must be enabled for {self.engine.id} engine with network restrictions. "
                "Remove 'network.firewall: false' or set 'strict: false'. "
                f"See: {DOCS_URL}/network/"
            )
        return None

    # -------------------------------------------------------------------------
    # Severity-graded checks
    # -------------------------------------------------------------------------

    def suggest_ecosystems(self) -> None:
        """Warn about literal domains that belong to a known ecosystem."""
        network = self.spec.network
        if network is None or not network.allowed:
            return
        entries = [e for e in network.allowed if e != DEFAULTS_ECOSYSTEM]
        suggestions = domain_ecosystem_suggestions(entries, self.table)
        if not suggestions:
            return
        pairs = ", ".join(f"'{d}' -> '{e}'" for d, e in sorted(suggestions.items()))
        self.spec.diagnostics.add_warning(
            "strict-mode",
            "network.allowed",
            f"recommend using ecosystem identifiers instead of individual domain names: {pairs}",
        )

    def check_env_secrets(self) -> Optional[StrictModeError]:
        """Secrets in env sections leak into the agent container."""
        sections: List[Tuple[str, Mapping[str, Any], Iterable[str]]] = [
            ("env", self.spec.env, ()),
            ("engine.env", self.spec.engine.env, self.engine.required_secret_names()),
        ]
        for section, env, exempt in sections:
            values = {k: str(v) for k, v in env.items() if k not in set(exempt)}
            secrets = extract_secrets_from_map(values)
            if not secrets:
                continue
            found = ", ".join(secrets[name] for name in sorted(secrets))
            if self.spec.strict:
                return StrictModeError(
                    f"secrets detected in '{section}' section will be leaked to the agent "
                    f"container. Found: {found}. Use engine-specific secret configuration "
                    f"instead. See: {DOCS_URL}/engines/"
                )
            self.spec.diagnostics.add_warning(
                "secrets",
                section,
                f"secrets will be leaked to the agent container. Found: {found}",
            )
        return None


def validate_strict_mode(
    spec: WorkflowSpec,
    engine: EngineAdapter,
    table: Optional[EcosystemTable] = None,
    fail_fast: bool = False,
) -> None:
    StrictModeValidator(spec, engine, table=table, fail_fast=fail_fast).validate()
