"""
claude.py - Claude Code adapter.

Claude takes a single ``--allowed-tools`` argument with the sorted,
comma-joined permission list. Read-only tools are always granted.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from agentic.workflow.frontmatter import ToolsConfig

from .base import EngineAdapter

DEFAULT_CLAUDE_TOOLS = (
    "ExitPlanMode",
    "Glob",
    "Grep",
    "LS",
    "NotebookRead",
    "Read",
    "Task",
    "TodoWrite",
)


class ClaudeEngine(EngineAdapter):
    """Claude Code: fine-grained tool names, MCP tools as ``mcp__server__tool``."""

    cli_name = "claude"
    prompt_flag = ""

    def base_arguments(self) -> List[str]:
        return [
            "--print",
            "--mcp-config",
            self.mcp_config_path,
            "--permission-mode",
            "bypassPermissions",
            "--output-format",
            "stream-json",
        ]

    def base_entries(self) -> Tuple[str, ...]:
        return DEFAULT_CLAUDE_TOOLS

    def shell_entry(self, command: Optional[str]) -> str:
        return "Bash" if command is None else f"Bash({command})"

    def shell_extra_entries(self) -> Tuple[str, ...]:
        return ("BashOutput", "KillBash")

    def edit_entries(self) -> Tuple[str, ...]:
        return ("Edit", "MultiEdit", "NotebookEdit", "Write")

    def web_fetch_entries(self) -> Tuple[str, ...]:
        return ("WebFetch",)

    def web_search_entries(self) -> Tuple[str, ...]:
        return ("WebSearch",)

    def server_entry(self, server: str) -> str:
        return f"mcp__{server}"

    def server_tool_entry(self, server: str, tool: str) -> str:
        return f"mcp__{server}__{tool}"

    def tool_arguments(
        self,
        tools: ToolsConfig,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> List[str]:
        entries = self.permission_entries(tools, safe_outputs, safe_inputs)
        return ["--allowed-tools", ",".join(entries)]
