"""
domains.py - Network domain resolution from the ecosystem taxonomy.

Provides:
1. Allow/block list resolution (ecosystem identifiers expand to domain sets)
2. Deterministic domain -> ecosystem lookup
3. Per-engine merged allow-lists (engine defaults, HTTP MCP hosts,
   browser-automation domains, runtime ecosystems), block list applied last
4. Firewall / sandbox predicates used by the job builder and strict mode

Every resolver accepts an optional ``table`` so tests and embedders can
inject their own EcosystemTable; by default the bundled table is used.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Optional, Sequence, Set
from urllib.parse import urlparse

from agentic.config.ecosystems import EcosystemTable, get_ecosystem_table
from agentic.config.engines import EngineProfile
from agentic.workflow.frontmatter import NetworkSettings, SandboxSettings, ToolsConfig

logger = logging.getLogger(__name__)

DEFAULTS_ECOSYSTEM = "defaults"
WILDCARD = "*"

PLAYWRIGHT_DOMAINS = ("cdn.playwright.dev", "playwright.download.prss.microsoft.com")

COPILOT_MCP_DOMAIN = "api.githubcopilot.com"

RUNTIME_TO_ECOSYSTEM = {
    "node": "node",
    "python": "python",
    "go": "go",
    "java": "java",
    "ruby": "ruby",
    "dotnet": "dotnet",
    "haskell": "haskell",
    "bun": "node",
    "deno": "node",
    "uv": "python",
    "clojure": "clojure",
    "dart": "dart",
    "elixir": "elixir",
    "kotlin": "kotlin",
    "php": "php",
    "scala": "scala",
    "swift": "swift",
    "zig": "zig",
}


def _table(table: Optional[EcosystemTable]) -> EcosystemTable:
    return table if table is not None else get_ecosystem_table()


# =============================================================================
# Matching
# =============================================================================


def matches_domain(domain: str, pattern: str) -> bool:
    """Check a domain against an exact or ``*.suffix`` pattern.

    Examples:
        >>> matches_domain("files.pythonhosted.org", "*.pythonhosted.org")
        True
        >>> matches_domain("pythonhosted.org", "*.pythonhosted.org")
        True
        >>> matches_domain("evilpythonhosted.org", "*.pythonhosted.org")
        False
    """
    if pattern.startswith("*."):
        suffix = pattern[2:]
        return domain == suffix or domain.endswith("." + suffix)
    return domain == pattern


def _expand(entries: Iterable[str], table: EcosystemTable) -> Set[str]:
    expanded: Set[str] = set()
    for entry in entries:
        if entry in table:
            domains = table.domains(entry)
            logger.debug("Expanding ecosystem %s to %d domains", entry, len(domains))
            expanded.update(domains)
        else:
            expanded.add(entry)
    return expanded


# =============================================================================
# Resolution
# =============================================================================


def resolve_allowed_domains(
    network: Optional[NetworkSettings],
    table: Optional[EcosystemTable] = None,
) -> List[str]:
    """Resolve the allow-list to a sorted, duplicate-free domain list.

    An unset allow-list (no network section, or ``allowed`` absent) yields
    the "defaults" ecosystem. An explicit empty list yields [] (deny all).
    """
    table = _table(table)
    if network is None or network.allowed is None:
        return sorted(table.domains(DEFAULTS_ECOSYSTEM))
    if not network.allowed:
        return []
    return sorted(_expand(network.allowed, table))


def resolve_blocked_domains(
    network: Optional[NetworkSettings],
    table: Optional[EcosystemTable] = None,
) -> List[str]:
    """Resolve the block-list the same way; unset or empty yields []."""
    if network is None or not network.blocked:
        return []
    return sorted(_expand(network.blocked, _table(table)))


def ecosystem_domains(ecosystem: str, table: Optional[EcosystemTable] = None) -> List[str]:
    """Domains for an ecosystem identifier, [] when unknown."""
    return list(_table(table).domains(ecosystem))


def ecosystem_of(domain: str, table: Optional[EcosystemTable] = None) -> str:
    """Return the ecosystem a domain belongs to, or "" when none.

    Ecosystems are checked in ECOSYSTEM_PRIORITY order, then any remaining
    ecosystems sorted by name, so the answer is stable for domains shared
    by several ecosystems.
    """
    table = _table(table)
    for ecosystem in table.lookup_order():
        for pattern in table.domains(ecosystem):
            if matches_domain(domain, pattern):
                return ecosystem
    return ""


def apply_blocked(domains: Iterable[str], blocked: Sequence[str]) -> List[str]:
    """Remove every domain matched by a blocked entry."""
    if not blocked:
        return sorted(set(domains))
    return sorted(
        d for d in set(domains)
        if not any(d == b or matches_domain(d, b) for b in blocked)
    )


# =============================================================================
# Tool- and runtime-derived domains
# =============================================================================


def extract_http_mcp_domains(tools: Optional[ToolsConfig]) -> List[str]:
    """Hosts of HTTP MCP servers, which must be reachable from the agent."""
    if tools is None:
        return []
    hosts: Set[str] = set()
    if tools.github is not None and tools.github.mode == "remote":
        hosts.add(COPILOT_MCP_DOMAIN)
    for name, config in tools.custom.items():
        server_type = config.get("type")
        url = config.get("url")
        if not isinstance(url, str) or not url:
            continue
        if server_type not in (None, "http"):
            continue
        host = urlparse(url).hostname
        if host:
            logger.debug("MCP server %s contributes domain %s", name, host)
            hosts.add(host)
    return sorted(hosts)


def runtime_domains(
    runtimes: Iterable[str],
    table: Optional[EcosystemTable] = None,
) -> List[str]:
    """Domains for the ecosystems of declared runtimes."""
    table = _table(table)
    domains: Set[str] = set()
    for runtime in runtimes:
        ecosystem = RUNTIME_TO_ECOSYSTEM.get(runtime)
        if ecosystem:
            domains.update(table.domains(ecosystem))
    return sorted(domains)


def engine_allowed_domains(
    engine: EngineProfile,
    network: Optional[NetworkSettings],
    tools: Optional[ToolsConfig] = None,
    runtimes: Iterable[str] = (),
    table: Optional[EcosystemTable] = None,
) -> List[str]:
    """Merge the resolved allow-list with everything the engine needs.

    The network section contributes only when it lists something; an unset
    or empty allow-list leaves just the engine defaults and tool domains.
    The block list is applied last, after full expansion.
    """
    table = _table(table)
    merged: Set[str] = set(engine.default_domains)
    if network is not None and network.allowed:
        merged.update(resolve_allowed_domains(network, table))
    merged.update(extract_http_mcp_domains(tools))
    if tools is not None and tools.playwright is not None:
        merged.update(PLAYWRIGHT_DOMAINS)
    merged.update(runtime_domains(runtimes, table))
    blocked = resolve_blocked_domains(network, table)
    result = apply_blocked(merged, blocked)
    logger.debug(
        "Engine %s allow-list: %d domains (%d blocked entries)",
        engine.id, len(result), len(blocked),
    )
    return result


def format_domains(domains: Sequence[str]) -> str:
    """Comma-join domains for the firewall ``--allow-domains`` flag."""
    return ",".join(domains)


# =============================================================================
# Firewall & Sandbox
# =============================================================================


def has_wildcard(network: Optional[NetworkSettings]) -> bool:
    return network is not None and network.allowed is not None and WILDCARD in network.allowed


def is_sandbox_enabled(
    sandbox: Optional[SandboxSettings],
    network: Optional[NetworkSettings] = None,
) -> bool:
    """Whether an alternative runtime sandbox replaces the firewall.

    ``sandbox.agent: false`` always wins. Otherwise an explicit agent
    sandbox type other than the firewall ("awf") counts as enabled.
    """
    if sandbox is None:
        return False
    if sandbox.agent_disabled:
        return False
    return bool(sandbox.agent_type) and sandbox.agent_type != "awf"


def is_firewall_enabled(
    engine: EngineProfile,
    network: Optional[NetworkSettings],
    sandbox: Optional[SandboxSettings] = None,
) -> bool:
    """Derive firewall enablement for an engine and network policy.

    The firewall is on by default for engines that support it whenever the
    network is restricted (no bare wildcard), unless explicitly disabled,
    the agent sandbox is disabled, or another sandbox is selected.
    """
    if not engine.capabilities.firewall:
        return False
    if sandbox is not None and (sandbox.agent_disabled or is_sandbox_enabled(sandbox, network)):
        return False
    if has_wildcard(network):
        return False
    if network is not None and network.firewall is not None:
        return network.firewall.enabled
    return True


def domain_ecosystem_suggestions(
    allowed: Iterable[str],
    table: Optional[EcosystemTable] = None,
) -> Mapping[str, str]:
    """Map literal allow-list domains that belong to an ecosystem to it."""
    table = _table(table)
    suggestions = {}
    for entry in allowed:
        if entry == WILDCARD or entry in table:
            continue
        ecosystem = ecosystem_of(entry, table)
        if ecosystem:
            suggestions[entry] = ecosystem
    return suggestions
