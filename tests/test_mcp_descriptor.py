"""Tests for MCP server descriptor normalization and built-in servers."""

import pytest

from agentic.errors import McpConfigError, UnknownPropertyError
from agentic.mcp import (
    KIND_CONTAINERIZED_STDIO,
    KIND_REMOTE_HTTP,
    has_mcp_config,
    parse_custom_server,
    rewrite_localhost,
)
from agentic.mcp.builtin import (
    DEFAULT_GITHUB_MCP_VERSION,
    DEFAULT_TOOLSETS,
    GITHUB_REMOTE_READONLY_URL,
    GITHUB_REMOTE_URL,
    builtin_servers,
    expand_toolsets,
    github_server,
    safe_outputs_server,
    serena_server,
    user_agent_for,
)
from agentic.workflow.frontmatter import GitHubTool, SerenaTool, tools_config_from_dict

# ============================================================================
# Type Inference
# ============================================================================


@pytest.mark.parametrize(
    "config,expected",
    [
        ({"type": "local", "command": "x"}, (True, "stdio")),
        ({"type": "http", "url": "https://a"}, (True, "http")),
        ({"url": "https://a"}, (True, "http")),
        ({"container": "img"}, (True, "stdio")),
        ({"allowed": ["a"]}, (False, "")),
    ],
)
def test_has_mcp_config(config, expected):
    assert has_mcp_config(config) == expected


def test_missing_type_raises():
    with pytest.raises(McpConfigError, match="unable to determine MCP type for tool 'broken'"):
        parse_custom_server("broken", {"args": ["x"]})


def test_unknown_property_raises():
    with pytest.raises(UnknownPropertyError, match="unknown property 'tools'"):
        parse_custom_server("srv", {"command": "node", "tools": ["x"]})


def test_unsupported_type_raises():
    with pytest.raises(McpConfigError, match="unsupported MCP type 'sse'"):
        parse_custom_server("srv", {"type": "sse", "url": "https://a"})


def test_http_requires_url():
    with pytest.raises(McpConfigError, match="missing required 'url'"):
        parse_custom_server("srv", {"type": "http"})


# ============================================================================
# Normalization
# ============================================================================


class TestParseCustomServer:
    """Field extraction and container auto-provisioning."""

    def test_http_server(self):
        desc = parse_custom_server(
            "notion",
            {"url": "https://mcp.notion.com/mcp", "headers": {"Authorization": "Bearer x"}, "allowed": ["search"]},
        )
        assert desc.type == "http"
        assert desc.kind == KIND_REMOTE_HTTP
        assert desc.headers == {"Authorization": "Bearer x"}
        assert desc.allowed == ("search",)

    def test_localhost_rewritten_when_sandboxed(self):
        desc = parse_custom_server("dev", {"url": "http://localhost:8080/mcp"}, rewrite_local_urls=True)
        assert desc.url == "http://host.docker.internal:8080/mcp"

    def test_localhost_kept_without_sandbox(self):
        desc = parse_custom_server("dev", {"url": "http://127.0.0.1:8080"})
        assert desc.url == "http://127.0.0.1:8080"

    def test_npx_gets_node_container(self):
        desc = parse_custom_server("fs", {"command": "npx", "args": ["-y", "@scope/server"]})
        assert desc.kind == KIND_CONTAINERIZED_STDIO
        assert desc.container == "node:lts-alpine"
        assert desc.entrypoint == "npx"
        assert desc.entrypoint_args == ("npx", "-y", "@scope/server")
        assert desc.args == ()
        assert desc.command == ""

    def test_uvx_gets_uv_container(self):
        desc = parse_custom_server("py", {"command": "uvx", "args": ["mcp-server-time"]})
        assert desc.container == "ghcr.io/astral-sh/uv:latest"
        assert desc.is_containerized

    def test_plain_command_stays_bare(self):
        desc = parse_custom_server("local", {"command": "node", "args": ["server.js"]})
        assert desc.command == "node"
        assert desc.container == ""
        assert not desc.is_containerized

    def test_version_folded_into_container(self):
        desc = parse_custom_server("img", {"container": "ghcr.io/acme/mcp", "version": "1.2"})
        assert desc.container == "ghcr.io/acme/mcp:1.2"

    def test_allowed_absent_is_none(self):
        desc = parse_custom_server("img", {"container": "x"})
        assert desc.allowed is None


def test_rewrite_localhost_boundaries():
    assert rewrite_localhost("http://localhost") == "http://host.docker.internal"
    assert rewrite_localhost("http://localhost.example.com") == "http://localhost.example.com"


# ============================================================================
# Built-in Servers
# ============================================================================


def test_expand_toolsets():
    assert expand_toolsets(()) == DEFAULT_TOOLSETS
    assert expand_toolsets(("default", "actions", "repos")) == DEFAULT_TOOLSETS + ("actions",)


def test_user_agent_sanitized():
    assert user_agent_for("Issue Triage!") == "issue-triage"
    assert user_agent_for("!!!") == "github-agentic-workflow"


class TestGitHubServer:
    """Local and remote GitHub MCP server."""

    def test_local_defaults(self):
        desc = github_server(GitHubTool(read_only=True))
        assert desc.type == "stdio"
        assert desc.container.endswith(f":{DEFAULT_GITHUB_MCP_VERSION}")
        assert desc.env["GITHUB_READ_ONLY"] == "1"
        assert desc.env["GITHUB_TOOLSETS"] == "context,repos,issues,pull_requests"
        assert "${{ secrets." in desc.env["GITHUB_PERSONAL_ACCESS_TOKEN"]

    def test_remote_headers(self):
        desc = github_server(GitHubTool(mode="remote", lockdown=True, github_token="${{ secrets.PAT }}"))
        assert desc.url == GITHUB_REMOTE_URL
        assert desc.headers["Authorization"] == "Bearer ${{ secrets.PAT }}"
        assert desc.headers["X-MCP-Lockdown"] == "true"

    def test_remote_readonly_url_for_flat_table(self):
        desc = github_server(GitHubTool(mode="remote", read_only=True), flat_table=True)
        assert desc.url == GITHUB_REMOTE_READONLY_URL


def test_serena_local_mode_is_http():
    assert serena_server(SerenaTool(mode="local")).type == "http"
    assert serena_server(SerenaTool()).entrypoint == "serena"


def test_safe_outputs_host_depends_on_sandbox():
    assert "host.docker.internal" in safe_outputs_server(agent_enabled=True).url
    assert "localhost" in safe_outputs_server(agent_enabled=False).url


def test_builtin_order():
    tools = tools_config_from_dict({"playwright": None, "serena": ["python"]})
    servers = builtin_servers(tools, safe_outputs=True, safe_inputs=True)
    assert [s.name for s in servers] == ["github", "playwright", "serena", "safeoutputs", "safeinputs"]
