"""
base.py - Abstract base class for engine adapters.

An adapter wraps one static EngineProfile (capabilities, gateway port,
default domains, render options) and knows how that engine spells tool
permissions. The permission algorithm itself is shared:

- shell: a wildcard command short-circuits to "allow all" on adapters that
  support it; otherwise each literal command becomes one entry
- file editing maps to the engine's write entries
- safe outputs / safe inputs each contribute one server-level entry
- github: absent allow-list means fully allowed (server entry); a wildcard
  in the list collapses to the server entry; otherwise one entry per tool
- other MCP servers: server entry plus one entry per allowed tool

Entries are returned sorted for deterministic emission.
"""

from __future__ import annotations

import logging
import shlex
from abc import ABC, abstractmethod
from typing import List, Optional, Set, Tuple

from agentic.config.engines import EngineCapabilities, EngineProfile, RenderOptions
from agentic.mcp.descriptor import has_mcp_config
from agentic.workflow.frontmatter import WILDCARD_COMMANDS, EngineSettings, ToolsConfig

logger = logging.getLogger(__name__)

SAFE_OUTPUTS_SERVER = "safeoutputs"
SAFE_INPUTS_SERVER = "safeinputs"

PROMPT_PATH_REF = "$GH_AW_PROMPT"


class EngineAdapter(ABC):
    """Base class for the per-backend configuration dialects."""

    # Whether a wildcard shell command collapses to a single allow-all flag
    supports_allow_all: bool = False
    cli_name: str = ""
    mcp_config_path: str = "/tmp/gh-aw/mcp-config/mcp-servers.json"
    # Flag preceding the prompt text, "" for a positional prompt
    prompt_flag: str = "--prompt"

    def __init__(self, profile: EngineProfile):
        self.profile = profile

    # -------------------------------------------------------------------------
    # Static facts
    # -------------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.profile.id

    @property
    def display_name(self) -> str:
        return self.profile.display_name

    @property
    def experimental(self) -> bool:
        return self.profile.experimental

    @property
    def capabilities(self) -> EngineCapabilities:
        return self.profile.capabilities

    @property
    def llm_gateway_port(self) -> int:
        return self.profile.llm_gateway_port

    @property
    def supports_llm_gateway(self) -> bool:
        return self.profile.supports_llm_gateway

    @property
    def render_options(self) -> RenderOptions:
        return self.profile.render

    def required_secret_names(self) -> Tuple[str, ...]:
        return self.profile.required_secrets

    # -------------------------------------------------------------------------
    # Permission vocabulary
    # -------------------------------------------------------------------------

    @abstractmethod
    def shell_entry(self, command: Optional[str]) -> str:
        """Entry for one shell command, or for all commands when None."""
        ...

    @abstractmethod
    def edit_entries(self) -> Tuple[str, ...]:
        ...

    @abstractmethod
    def server_entry(self, server: str) -> str:
        ...

    @abstractmethod
    def server_tool_entry(self, server: str, tool: str) -> str:
        ...

    def base_entries(self) -> Tuple[str, ...]:
        return ()

    def shell_extra_entries(self) -> Tuple[str, ...]:
        return ()

    def web_fetch_entries(self) -> Tuple[str, ...]:
        return ()

    def web_search_entries(self) -> Tuple[str, ...]:
        return ()

    # -------------------------------------------------------------------------
    # Computation
    # -------------------------------------------------------------------------

    def allows_all_tools(self, tools: ToolsConfig) -> bool:
        return (
            self.supports_allow_all
            and tools.bash is not None
            and tools.bash.has_wildcard
        )

    def permission_entries(
        self,
        tools: ToolsConfig,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> List[str]:
        """Sorted permission entries for the declared tools."""
        entries: Set[str] = set(self.base_entries())

        if tools.bash is not None:
            entries.update(self.shell_extra_entries())
            if tools.bash.commands is None:
                entries.add(self.shell_entry(None))
            else:
                for command in tools.bash.commands:
                    if command in WILDCARD_COMMANDS:
                        entries.add(self.shell_entry(None))
                    else:
                        entries.add(self.shell_entry(command))

        if tools.edit:
            entries.update(self.edit_entries())
        if tools.web_fetch:
            entries.update(self.web_fetch_entries())
        if tools.web_search:
            entries.update(self.web_search_entries())

        if safe_outputs:
            entries.add(self.server_entry(SAFE_OUTPUTS_SERVER))
        if safe_inputs:
            entries.add(self.server_entry(SAFE_INPUTS_SERVER))

        if tools.github is not None:
            allowed = tools.github.allowed
            if allowed is None or "*" in allowed:
                entries.add(self.server_entry("github"))
            else:
                entries.update(self.server_tool_entry("github", t) for t in allowed)

        if tools.playwright is not None:
            entries.add(self.server_entry("playwright"))
        if tools.serena is not None:
            entries.add(self.server_entry("serena"))

        for name, config in tools.custom.items():
            if not has_mcp_config(config)[0]:
                continue
            entries.add(self.server_entry(name))
            for tool in config.get("allowed") or ():
                if tool != "*":
                    entries.add(self.server_tool_entry(name, str(tool)))

        result = sorted(entries)
        logger.debug("Engine %s permission entries: %s", self.id, result)
        return result

    @abstractmethod
    def tool_arguments(
        self,
        tools: ToolsConfig,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> List[str]:
        """CLI arguments granting the computed permissions."""
        ...

    def execution_arguments(self, settings: EngineSettings) -> List[str]:
        """Model / turn-limit arguments derived from engine settings."""
        args: List[str] = []
        if settings.model:
            args += ["--model", settings.model]
        if settings.max_turns is not None and self.capabilities.max_turns:
            args += ["--max-turns", str(settings.max_turns)]
        return args + list(settings.args)

    # -------------------------------------------------------------------------
    # Execution step
    # -------------------------------------------------------------------------

    def base_arguments(self) -> List[str]:
        return []

    def tool_arguments_comment(self, args: List[str]) -> str:
        """Comment block documenting ``args`` in the execution step."""
        return ""

    def command_line(
        self,
        tools: ToolsConfig,
        settings: EngineSettings,
        safe_outputs: bool = False,
        safe_inputs: bool = False,
    ) -> str:
        """Shell command running the engine on the prompt file."""
        tool_args = self.tool_arguments(tools, safe_outputs, safe_inputs)
        parts = (
            [settings.command or self.cli_name]
            + self.base_arguments()
            + tool_args
            + self.execution_arguments(settings)
        )
        command = " ".join(shlex.quote(p) for p in parts)
        prompt = f'"$(cat "{PROMPT_PATH_REF}")"'
        if self.prompt_flag:
            prompt = f"{self.prompt_flag} {prompt}"
        return f"{command} {prompt}"
