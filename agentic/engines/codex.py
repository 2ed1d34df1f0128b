"""
codex.py - OpenAI Codex CLI adapter.

Codex has no per-tool command-line allow-list. Shell access is governed by
its sandbox, and MCP tool allow-lists are rendered as ``enabled_tools`` in
the TOML configuration. A wildcard shell command lifts the sandbox.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from agentic.workflow.frontmatter import EngineSettings, ToolsConfig

from .base import EngineAdapter


class CodexEngine(EngineAdapter):
    """Codex CLI: coarse sandbox bypass, MCP filtering in config."""

    supports_allow_all = True
    cli_name = "codex"
    mcp_config_path = "/tmp/gh-aw/mcp-config/config.toml"
    prompt_flag = ""

    def base_arguments(self) -> List[str]:
        return ["exec", "--skip-git-repo-check"]

    def shell_entry(self, command: Optional[str]) -> str:
        return "shell" if command is None else f"shell({command})"

    def edit_entries(self) -> Tuple[str, ...]:
        return ("apply_patch",)

    def web_search_entries(self) -> Tuple[str, ...]:
        return ("web_search",)

    def server_entry(self, server: str) -> str:
        return server

    def server_tool_entry(self, server: str, tool: str) -> str:
        return f"{server}.{tool}"

    def tool_arguments(
        self,
        tools: ToolsConfig,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> List[str]:
        if self.allows_all_tools(tools):
            return ["--dangerously-bypass-approvals-and-sandbox"]
        args = ["--full-auto"]
        if tools.web_search:
            args += ["-c", "tools.web_search=true"]
        return args

    def execution_arguments(self, settings: EngineSettings) -> List[str]:
        args: List[str] = []
        if settings.model:
            args += ["-c", f"model={settings.model}"]
        return args + list(settings.args)
