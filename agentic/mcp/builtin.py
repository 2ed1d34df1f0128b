"""
builtin.py - Descriptors for the built-in MCP servers.

Built-in servers are expressed as ordinary McpServerDescriptors so the one
renderer handles every server the same way:

- github: local container or the hosted remote endpoint
- playwright: browser automation container
- serena: code-search container, or a local http server
- safeoutputs / safeinputs: http servers started by the runner
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Dict, List, Sequence, Tuple

from agentic.workflow.frontmatter import GitHubTool, PlaywrightTool, SerenaTool, ToolsConfig

from .descriptor import DOCKER_HOST, McpServerDescriptor

logger = logging.getLogger(__name__)

# =============================================================================
# GitHub
# =============================================================================

GITHUB_MCP_IMAGE = "ghcr.io/github/github-mcp-server"
DEFAULT_GITHUB_MCP_VERSION = "v0.30.3"
GITHUB_REMOTE_URL = "https://api.githubcopilot.com/mcp/"
GITHUB_REMOTE_READONLY_URL = "https://api.githubcopilot.com/mcp-readonly/"
DEFAULT_GITHUB_TOKEN = "${{ secrets.GH_AW_GITHUB_MCP_SERVER_TOKEN || secrets.GH_AW_GITHUB_TOKEN || secrets.GITHUB_TOKEN }}"
DEFAULT_TOOLSETS = ("context", "repos", "issues", "pull_requests")
DEFAULT_USER_AGENT = "github-agentic-workflow"
GITHUB_STARTUP_TIMEOUT_SEC = 120
GITHUB_TOOL_TIMEOUT_SEC = 60


def expand_toolsets(toolsets: Sequence[str]) -> Tuple[str, ...]:
    """Expand "default" in place; empty means the default set."""
    if not toolsets:
        return DEFAULT_TOOLSETS
    expanded: List[str] = []
    for toolset in toolsets:
        for item in DEFAULT_TOOLSETS if toolset == "default" else (toolset,):
            if item not in expanded:
                expanded.append(item)
    return tuple(expanded)


def user_agent_for(workflow_name: str) -> str:
    """Sanitized workflow name used as the GitHub MCP user agent."""
    agent = re.sub(r"[^a-z0-9]+", "-", workflow_name.lower()).strip("-")
    return agent or DEFAULT_USER_AGENT


def github_server(
    tool: GitHubTool,
    workflow_name: str = "",
    flat_table: bool = False,
) -> McpServerDescriptor:
    token = tool.github_token or DEFAULT_GITHUB_TOKEN
    toolsets = ",".join(expand_toolsets(tool.toolsets))
    common = dict(
        name="github",
        allowed=tool.allowed,
        user_agent=user_agent_for(workflow_name),
        startup_timeout_sec=GITHUB_STARTUP_TIMEOUT_SEC,
        tool_timeout_sec=GITHUB_TOOL_TIMEOUT_SEC,
    )

    if tool.mode == "remote":
        headers: Dict[str, str] = {"Authorization": f"Bearer {token}"}
        if tool.read_only:
            headers["X-MCP-Readonly"] = "true"
        if tool.lockdown:
            headers["X-MCP-Lockdown"] = "true"
        headers["X-MCP-Toolsets"] = toolsets
        url = GITHUB_REMOTE_READONLY_URL if flat_table and tool.read_only else GITHUB_REMOTE_URL
        return McpServerDescriptor(type="http", url=url, headers=MappingProxyType(headers), **common)

    env: Dict[str, str] = {"GITHUB_PERSONAL_ACCESS_TOKEN": token}
    if tool.read_only:
        env["GITHUB_READ_ONLY"] = "1"
    if tool.lockdown:
        env["GITHUB_LOCKDOWN_MODE"] = "1"
    env["GITHUB_TOOLSETS"] = toolsets
    version = tool.version or DEFAULT_GITHUB_MCP_VERSION
    return McpServerDescriptor(
        type="stdio",
        container=f"{GITHUB_MCP_IMAGE}:{version}",
        mounts=tool.mounts,
        args=tool.args,
        env=MappingProxyType(env),
        **common,
    )


# =============================================================================
# Playwright & Serena
# =============================================================================

PLAYWRIGHT_IMAGE = "mcr.microsoft.com/playwright/mcp"
PLAYWRIGHT_LOG_DIR = "/tmp/gh-aw/mcp-logs/playwright"
PLAYWRIGHT_DOCKER_ARGS = (
    "--init",
    "--network",
    "host",
    "--security-opt",
    "seccomp=unconfined",
    "--ipc=host",
)
PLAYWRIGHT_DEFAULT_HOSTS = ("localhost", "localhost:*", "127.0.0.1", "127.0.0.1:*")
MCP_LOGS_MOUNT = "/tmp/gh-aw/mcp-logs:/tmp/gh-aw/mcp-logs:rw"


def playwright_server(tool: PlaywrightTool) -> McpServerDescriptor:
    hosts = ";".join(tool.allowed_domains or PLAYWRIGHT_DEFAULT_HOSTS)
    entrypoint_args = (
        "--output-dir",
        PLAYWRIGHT_LOG_DIR,
        "--allowed-hosts",
        hosts,
        "--allowed-origins",
        hosts,
    ) + tool.args
    return McpServerDescriptor(
        name="playwright",
        type="stdio",
        container=PLAYWRIGHT_IMAGE,
        entrypoint_args=entrypoint_args,
        mounts=(MCP_LOGS_MOUNT,),
        args=PLAYWRIGHT_DOCKER_ARGS,
    )


SERENA_IMAGE = "ghcr.io/github/serena-mcp-server:latest"
SERENA_LOCAL_URL = "http://localhost:${GH_AW_SERENA_PORT}"
WORKSPACE_REF = "${GITHUB_WORKSPACE}"


def serena_server(tool: SerenaTool) -> McpServerDescriptor:
    if tool.mode == "local":
        return McpServerDescriptor(name="serena", type="http", url=SERENA_LOCAL_URL)
    return McpServerDescriptor(
        name="serena",
        type="stdio",
        container=SERENA_IMAGE,
        entrypoint="serena",
        entrypoint_args=(
            "start-mcp-server",
            "--context",
            "codex",
            "--project",
            WORKSPACE_REF,
        ) + tool.args,
        mounts=(f"{WORKSPACE_REF}:{WORKSPACE_REF}:rw",),
        args=("--network", "host"),
    )


# =============================================================================
# Safe outputs & safe inputs
# =============================================================================


def _runner_http_server(name: str, port_var: str, key_var: str, agent_enabled: bool) -> McpServerDescriptor:
    host = DOCKER_HOST if agent_enabled else "localhost"
    return McpServerDescriptor(
        name=name,
        type="http",
        url=f"http://{host}:${{{port_var}}}",
        headers=MappingProxyType({"Authorization": f"${{{key_var}}}"}),
    )


def safe_outputs_server(agent_enabled: bool = True) -> McpServerDescriptor:
    return _runner_http_server(
        "safeoutputs", "GH_AW_SAFE_OUTPUTS_PORT", "GH_AW_SAFE_OUTPUTS_API_KEY", agent_enabled
    )


def safe_inputs_server(agent_enabled: bool = True) -> McpServerDescriptor:
    return _runner_http_server(
        "safeinputs", "GH_AW_SAFE_INPUTS_PORT", "GH_AW_SAFE_INPUTS_API_KEY", agent_enabled
    )


def builtin_servers(
    tools: ToolsConfig,
    safe_outputs: bool = False,
    safe_inputs: bool = False,
    agent_enabled: bool = True,
    workflow_name: str = "",
    flat_table: bool = False,
) -> List[McpServerDescriptor]:
    """Built-in servers in emission order."""
    servers: List[McpServerDescriptor] = []
    if tools.github is not None:
        servers.append(github_server(tools.github, workflow_name, flat_table))
    if tools.playwright is not None:
        servers.append(playwright_server(tools.playwright))
    if tools.serena is not None:
        servers.append(serena_server(tools.serena))
    if safe_outputs:
        servers.append(safe_outputs_server(agent_enabled))
    if safe_inputs:
        servers.append(safe_inputs_server(agent_enabled))
    logger.debug("Built-in MCP servers: %s", [s.name for s in servers])
    return servers
