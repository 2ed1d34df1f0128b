"""
copilot.py - GitHub Copilot CLI adapter.

Permissions are passed as ``--allow-tool <entry>`` pairs. A wildcard shell
command collapses everything to ``--allow-all-tools``.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from agentic.workflow.frontmatter import ToolsConfig

from .base import EngineAdapter


class CopilotEngine(EngineAdapter):
    """Copilot CLI: coarse allow-all plus discrete ``--allow-tool`` flags."""

    supports_allow_all = True
    cli_name = "copilot"
    mcp_config_path = "/home/runner/.copilot/mcp-config.json"

    def base_arguments(self) -> List[str]:
        return ["--add-dir", "/tmp/gh-aw/", "--log-level", "all", "--disable-builtin-mcps"]

    def shell_entry(self, command: Optional[str]) -> str:
        return "shell" if command is None else f"shell({command})"

    def edit_entries(self) -> Tuple[str, ...]:
        return ("write",)

    def server_entry(self, server: str) -> str:
        return server

    def server_tool_entry(self, server: str, tool: str) -> str:
        return f"{server}({tool})"

    def tool_arguments(
        self,
        tools: ToolsConfig,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> List[str]:
        if self.allows_all_tools(tools):
            args = ["--allow-all-tools"]
        else:
            args = []
            for entry in self.permission_entries(tools, safe_outputs, safe_inputs):
                args += ["--allow-tool", entry]
        if tools.edit:
            args.append("--allow-all-paths")
        return args

    def tool_arguments_comment(self, args: List[str]) -> str:
        """Commented listing of the arguments for the generated step."""
        lines = ["# Copilot CLI tool arguments (sorted):"]
        i = 0
        while i < len(args):
            if args[i] == "--allow-tool" and i + 1 < len(args):
                lines.append(f"# --allow-tool {args[i + 1]}")
                i += 2
            else:
                lines.append(f"# {args[i]}")
                i += 1
        return "\n".join(lines)
