"""
descriptor.py - Normalized MCP server descriptors.

A raw tool declaration (a key-value mapping from ``tools`` or
``mcp-servers``) is normalized into an McpServerDescriptor once per render
call. Normalization order:

1. reject unknown keys (hard error naming the key and the valid set)
2. infer the transport type when not given ("local" means stdio)
3. extract the type-specific fields
4. auto-provision a well-known container for bare commands
5. fold ``version`` into the container reference
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from agentic.errors import McpConfigError, UnknownPropertyError

logger = logging.getLogger(__name__)

KIND_REMOTE_HTTP = "remote-http"
KIND_CONTAINERIZED_STDIO = "containerized-stdio"

MCP_TYPES = ("stdio", "http", "local")

KNOWN_PROPERTIES = frozenset(
    {
        "type",
        "mode",
        "command",
        "container",
        "version",
        "args",
        "entrypoint",
        "entrypointArgs",
        "mounts",
        "env",
        "proxy-args",
        "url",
        "headers",
        "registry",
        "allowed",
        "toolsets",
    }
)

DOCKER_HOST = "host.docker.internal"
LOCALHOST_URL_RE = re.compile(r"^(https?://)(localhost|127\.0\.0\.1)(?=[:/?#]|$)")

STDIO_EXAMPLE = (
    "Example:\nmcp-servers:\n  {tool}:\n"
    "    command: \"node server.js\"\n"
    "    args: [\"--port\", \"3000\"]"
)
HTTP_EXAMPLE = (
    "Example:\nmcp-servers:\n  {tool}:\n"
    "    type: http\n"
    "    url: \"https://api.example.com/mcp\"\n"
    "    headers:\n"
    "      Authorization: \"Bearer ${{{{ secrets.API_KEY }}}}\""
)


@dataclass(frozen=True)
class WellKnownContainer:
    image: str
    entrypoint: str


# Bare commands that are transparently run inside a known image
WELL_KNOWN_CONTAINERS = MappingProxyType(
    {
        "npx": WellKnownContainer(image="node:lts-alpine", entrypoint="npx"),
        "uvx": WellKnownContainer(image="ghcr.io/astral-sh/uv:latest", entrypoint="uvx"),
    }
)


@dataclass(frozen=True)
class McpServerDescriptor:
    """Normalized configuration of one MCP server."""

    name: str
    type: str  # "stdio" or "http"
    command: str = ""
    container: str = ""
    entrypoint: str = ""
    entrypoint_args: Tuple[str, ...] = ()
    mounts: Tuple[str, ...] = ()
    args: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    proxy_args: Tuple[str, ...] = ()
    url: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    registry: str = ""
    allowed: Optional[Tuple[str, ...]] = None
    # Flat-table only
    user_agent: str = ""
    startup_timeout_sec: Optional[int] = None
    tool_timeout_sec: Optional[int] = None

    @property
    def kind(self) -> str:
        return KIND_REMOTE_HTTP if self.type == "http" else KIND_CONTAINERIZED_STDIO

    @property
    def is_containerized(self) -> bool:
        return self.type == "stdio" and bool(self.container)


def has_mcp_config(config: Mapping[str, Any]) -> Tuple[bool, str]:
    """Whether a declaration looks like an MCP server, and its transport type."""
    declared = config.get("type")
    if isinstance(declared, str) and declared in MCP_TYPES:
        return True, "stdio" if declared == "local" else declared
    if "url" in config:
        return True, "http"
    if "command" in config or "container" in config:
        return True, "stdio"
    return False, ""


def rewrite_localhost(url: str) -> str:
    """Point localhost / 127.0.0.1 URLs at the container host."""
    return LOCALHOST_URL_RE.sub(r"\g<1>" + DOCKER_HOST, url)


def _str(config: Mapping[str, Any], key: str) -> str:
    value = config.get(key)
    return value if isinstance(value, str) else ""


def _str_list(config: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = config.get(key)
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    return ()


def _str_map(config: Mapping[str, Any], key: str) -> Mapping[str, str]:
    value = config.get(key)
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): str(v) for k, v in value.items()})
    return MappingProxyType({})


def infer_mcp_type(name: str, config: Mapping[str, Any]) -> str:
    """Explicit ``type`` wins; else url -> http, command/container -> stdio."""
    declared = config.get("type")
    if isinstance(declared, str):
        return "stdio" if declared == "local" else declared
    if isinstance(config.get("url"), str):
        return "http"
    if isinstance(config.get("command"), str) or isinstance(config.get("container"), str):
        return "stdio"
    raise McpConfigError(
        name,
        "unable to determine MCP type",
        "missing type, url, command, or container. Must specify one of: "
        "'type' (stdio/http), 'url' (for HTTP MCP), 'command' (for command-based), "
        "or 'container' (for Docker-based). " + STDIO_EXAMPLE.format(tool=name),
    )


def parse_custom_server(
    name: str,
    config: Mapping[str, Any],
    rewrite_local_urls: bool = False,
) -> McpServerDescriptor:
    """Normalize a user-declared MCP server.

    Raises:
        UnknownPropertyError: If the declaration carries an unrecognized key.
        McpConfigError: If the type cannot be inferred, is unsupported, or an
            http server has no url.
    """
    for key in config:
        if key not in KNOWN_PROPERTIES:
            logger.debug("Unknown property %s in MCP config for %s", key, name)
            raise UnknownPropertyError(name, key, KNOWN_PROPERTIES)

    mcp_type = infer_mcp_type(name, config)
    logger.debug("MCP server %s has type %s", name, mcp_type)
    allowed = _str_list(config, "allowed") if "allowed" in config else None
    registry = _str(config, "registry")

    if mcp_type == "http":
        url = _str(config, "url")
        if not url:
            raise McpConfigError(
                name,
                "http MCP server missing required 'url' field",
                "HTTP MCP servers must specify a URL endpoint. " + HTTP_EXAMPLE.format(tool=name),
            )
        if rewrite_local_urls:
            url = rewrite_localhost(url)
        return McpServerDescriptor(
            name=name,
            type="http",
            url=url,
            headers=_str_map(config, "headers"),
            registry=registry,
            allowed=allowed,
        )

    if mcp_type != "stdio":
        raise McpConfigError(
            name,
            f"unsupported MCP type '{mcp_type}'",
            "Valid types are: stdio, http. " + STDIO_EXAMPLE.format(tool=name),
        )

    command = _str(config, "command")
    container = _str(config, "container")
    entrypoint = _str(config, "entrypoint")
    entrypoint_args = _str_list(config, "entrypointArgs")
    args = _str_list(config, "args")

    known = WELL_KNOWN_CONTAINERS.get(command) if command and not container else None
    if known is not None:
        logger.debug("Auto-assigning container %s for command %s", known.image, command)
        container = known.image
        entrypoint = known.entrypoint
        entrypoint_args = (command,) + args
        args = ()
        command = ""

    version = _str(config, "version")
    if container and version:
        container = f"{container}:{version}"

    return McpServerDescriptor(
        name=name,
        type="stdio",
        command=command,
        container=container,
        entrypoint=entrypoint,
        entrypoint_args=entrypoint_args,
        mounts=_str_list(config, "mounts"),
        args=args,
        env=_str_map(config, "env"),
        proxy_args=_str_list(config, "proxy-args"),
        registry=registry,
        allowed=allowed,
    )
