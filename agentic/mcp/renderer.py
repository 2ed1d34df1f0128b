"""
renderer.py - Per-engine MCP server configuration rendering.

Every server, built-in or custom, goes through render_server(). Field order
is fixed per transport type and dialect:

    JSON stdio: type, container, entrypoint, entrypointArgs, mounts,
                command, args, tools, env, proxy-args, registry
    JSON http:  type, url, headers, tools, env
    TOML stdio: container, entrypoint, entrypointArgs, mounts, command,
                args, env, proxy_args, registry
    TOML http:  url, http_headers

Every string value passes through the expression extractor, so rendered
documents never contain a ``${{ ... }}`` expression. The returned env
mapping (variable -> original expression) is what the setup step exports.
One claimed-name table is shared across all servers of a document, so two
expressions never end up behind the same variable.

References are written as plain ``${NAME}``. For engines that read the
variables themselves at runtime (copilot) the names are listed in
``passthrough`` so the setup heredoc keeps them literal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from agentic.config.engines import RenderOptions
from agentic.expressions import SHELL_REF, replace_template_expressions

from .builtin import builtin_servers
from .descriptor import McpServerDescriptor, parse_custom_server
from .document import (
    JsonObjectBuilder,
    TomlSectionBuilder,
    render_json_document,
    render_toml_document,
)

if TYPE_CHECKING:
    from agentic.engines.base import EngineAdapter
    from agentic.workflow.types import WorkflowSpec

logger = logging.getLogger(__name__)

Block = Union[JsonObjectBuilder, TomlSectionBuilder]


@dataclass(frozen=True)
class RenderedMcpConfig:
    """A rendered configuration document plus its environment hand-off."""

    format: str
    text: str
    env: Mapping[str, str] = field(default_factory=dict)
    servers: Tuple[str, ...] = ()
    passthrough: Tuple[str, ...] = ()


class _Isolator:
    """Swaps expressions for variable references and records the mapping."""

    def __init__(self, claimed: Optional[Dict[str, str]] = None):
        self.claimed: Dict[str, str] = {} if claimed is None else claimed
        self.env: Dict[str, str] = {}

    def one(self, value: str) -> str:
        text, found = replace_template_expressions(value, SHELL_REF, self.claimed)
        self.env.update(found)
        return text

    def many(self, values: Sequence[str]) -> List[str]:
        return [self.one(v) for v in values]

    def mapping(self, values: Mapping[str, str]) -> Dict[str, str]:
        return {k: self.one(values[k]) for k in sorted(values)}


def _add_tool_filter(block: Block, desc: McpServerDescriptor, options: RenderOptions) -> None:
    if options.include_copilot_fields:
        block.add("tools", list(desc.allowed) if desc.allowed else ["*"])
    elif options.tool_filter_key and desc.allowed:
        block.add(options.tool_filter_key, list(desc.allowed))


def _render_json(desc: McpServerDescriptor, options: RenderOptions, iso: _Isolator) -> JsonObjectBuilder:
    block = JsonObjectBuilder(inline_lists=options.inline_args)
    block.add("type", desc.type, always=True)

    if desc.type == "http":
        block.add("url", iso.one(desc.url))
        before = set(iso.env)
        block.add("headers", iso.mapping(desc.headers))
        header_vars = sorted(set(iso.env) - before)
        _add_tool_filter(block, desc, options)
        if options.include_copilot_fields and header_vars:
            # Header secrets are passed through from the runner environment
            block.add("env", {v: SHELL_REF.format(name=v) for v in header_vars})
        return block

    block.add("container", iso.one(desc.container))
    block.add("entrypoint", iso.one(desc.entrypoint))
    block.add("entrypointArgs", iso.many(desc.entrypoint_args))
    block.add("mounts", iso.many(desc.mounts))
    block.add("command", iso.one(desc.command))
    block.add("args", iso.many(desc.args))
    _add_tool_filter(block, desc, options)
    block.add("env", iso.mapping(desc.env))
    block.add("proxy-args", iso.many(desc.proxy_args))
    block.add("registry", iso.one(desc.registry))
    return block


def _render_toml(desc: McpServerDescriptor, options: RenderOptions, iso: _Isolator) -> TomlSectionBuilder:
    block = TomlSectionBuilder(inline_lists=options.inline_args)
    if desc.type == "http":
        block.add("url", iso.one(desc.url))
        block.add("http_headers", iso.mapping(desc.headers))
    else:
        block.add("container", iso.one(desc.container))
        block.add("entrypoint", iso.one(desc.entrypoint))
        block.add("entrypointArgs", iso.many(desc.entrypoint_args))
        block.add("mounts", iso.many(desc.mounts))
        block.add("command", iso.one(desc.command))
        block.add("args", iso.many(desc.args))
        block.add("env", iso.mapping(desc.env))
        block.add("proxy_args", iso.many(desc.proxy_args))
        block.add("registry", iso.one(desc.registry))
    block.add("user_agent", desc.user_agent)
    block.add("startup_timeout_sec", desc.startup_timeout_sec)
    block.add("tool_timeout_sec", desc.tool_timeout_sec)
    _add_tool_filter(block, desc, options)
    return block


def render_server(
    desc: McpServerDescriptor,
    options: RenderOptions,
    claimed: Optional[Dict[str, str]] = None,
) -> Tuple[Block, Dict[str, str]]:
    """Render one server; returns the block and its extracted variables.

    ``claimed`` (variable -> expression body) is shared by the servers of
    one document.
    """
    iso = _Isolator(claimed)
    if options.format == "toml":
        block: Block = _render_toml(desc, options, iso)
    else:
        block = _render_json(desc, options, iso)
    logger.debug("Rendered MCP server %s (%s): %s", desc.name, options.format, block.keys())
    return block, iso.env


def render_servers(
    servers: Sequence[McpServerDescriptor],
    options: RenderOptions,
) -> RenderedMcpConfig:
    """Render servers in the given order into one document."""
    env: Dict[str, str] = {}
    claimed: Dict[str, str] = {}
    blocks: List[Tuple[str, Block]] = []
    for desc in servers:
        block, server_env = render_server(desc, options, claimed)
        env.update(server_env)
        blocks.append((desc.name, block))

    if options.format == "toml":
        text = render_toml_document(blocks)  # type: ignore[arg-type]
    else:
        text = render_json_document(blocks)  # type: ignore[arg-type]
    return RenderedMcpConfig(
        format=options.format,
        text=text,
        env=dict(sorted(env.items())),
        servers=tuple(name for name, _ in blocks),
        passthrough=tuple(sorted(env)) if options.include_copilot_fields else (),
    )


def collect_servers(spec: "WorkflowSpec", flat_table: bool = False) -> List[McpServerDescriptor]:
    """Built-in servers first, then custom servers sorted by name."""
    agent_enabled = spec.sandbox is None or not spec.sandbox.agent_disabled
    servers = builtin_servers(
        spec.tools,
        safe_outputs=spec.safe_outputs.enabled,
        safe_inputs=spec.safe_inputs_enabled,
        agent_enabled=agent_enabled,
        workflow_name=spec.name,
        flat_table=flat_table,
    )
    for name in sorted(spec.tools.custom):
        servers.append(
            parse_custom_server(name, spec.tools.custom[name], rewrite_local_urls=agent_enabled)
        )
    return servers


def render_mcp_config(spec: "WorkflowSpec", engine: "EngineAdapter") -> RenderedMcpConfig:
    """Render the complete MCP configuration of a workflow for an engine."""
    options = engine.render_options
    servers = collect_servers(spec, flat_table=options.format == "toml")
    logger.info(
        "Rendering %d MCP servers for engine %s (%s)", len(servers), engine.id, options.format
    )
    return render_servers(servers, options)
