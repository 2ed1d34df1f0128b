"""
gemini.py - Google Gemini CLI adapter (experimental).
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from agentic.workflow.frontmatter import ToolsConfig

from .base import EngineAdapter


class GeminiEngine(EngineAdapter):
    """Gemini CLI: ``--allowed-tools`` with built-in tool names."""

    cli_name = "gemini"
    mcp_config_path = "/home/runner/.gemini/settings.json"

    def base_arguments(self) -> List[str]:
        return ["--output-format", "json"]

    def shell_entry(self, command: Optional[str]) -> str:
        return "run_shell_command" if command is None else f"run_shell_command({command})"

    def edit_entries(self) -> Tuple[str, ...]:
        return ("replace", "write_file")

    def server_entry(self, server: str) -> str:
        return server

    def server_tool_entry(self, server: str, tool: str) -> str:
        return f"{server}__{tool}"

    def tool_arguments(
        self,
        tools: ToolsConfig,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> List[str]:
        entries = self.permission_entries(tools, safe_outputs, safe_inputs)
        if not entries:
            return []
        return ["--allowed-tools", ",".join(entries)]
