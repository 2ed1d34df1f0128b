"""
engines.py - Engine profile registry loaded from engines.yaml.

An EngineProfile is the static, immutable description of one engine
backend: capability flags, LLM gateway port, required secrets, default
network domains and MCP rendering options. Adapters in agentic.engines
wrap these profiles with behaviour.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from agentic.errors import WorkflowError

logger = logging.getLogger(__name__)

NO_LLM_GATEWAY = -1


def _get_config_path() -> Path:
    """Get the path to engines.yaml."""
    return Path(__file__).parent / "engines.yaml"


@dataclass(frozen=True)
class EngineCapabilities:
    """Static capability flags for one engine."""

    tools_allowlist: bool = False
    http_transport: bool = False
    max_turns: bool = False
    web_fetch: bool = False
    web_search: bool = False
    firewall: bool = False
    plugins: bool = False


@dataclass(frozen=True)
class RenderOptions:
    """MCP configuration dialect options."""

    format: str = "json"  # "json" or "toml"
    include_copilot_fields: bool = False
    inline_args: bool = False
    tool_filter_key: str = ""  # per-server allow-list field, "" for none


@dataclass(frozen=True)
class EngineProfile:
    """Capability record and static data for one engine backend."""

    id: str
    display_name: str
    description: str
    experimental: bool
    capabilities: EngineCapabilities
    llm_gateway_port: int
    required_secrets: Tuple[str, ...]
    default_domains: Tuple[str, ...]
    render: RenderOptions

    @property
    def supports_llm_gateway(self) -> bool:
        return self.llm_gateway_port != NO_LLM_GATEWAY


def engine_profile_from_dict(engine_id: str, data: Dict[str, Any]) -> EngineProfile:
    """Parse one engine entry from engines.yaml."""
    render = data.get("render", {}) or {}
    if render.get("format", "json") not in ("json", "toml"):
        raise WorkflowError(
            f"engine '{engine_id}' has unsupported render format '{render.get('format')}'"
        )
    return EngineProfile(
        id=engine_id,
        display_name=data.get("display_name", engine_id),
        description=data.get("description", ""),
        experimental=bool(data.get("experimental", False)),
        capabilities=EngineCapabilities(**(data.get("capabilities") or {})),
        llm_gateway_port=int(data.get("llm_gateway_port", NO_LLM_GATEWAY)),
        required_secrets=tuple(data.get("required_secrets", [])),
        default_domains=tuple(sorted(set(data.get("default_domains", [])))),
        render=RenderOptions(
            format=render.get("format", "json"),
            include_copilot_fields=bool(render.get("include_copilot_fields", False)),
            inline_args=bool(render.get("inline_args", False)),
            tool_filter_key=str(render.get("tool_filter_key") or ""),
        ),
    )


def load_engine_profiles(path: Optional[Path] = None) -> Mapping[str, EngineProfile]:
    """Load engine profiles from YAML into a read-only mapping."""
    path = path or _get_config_path()
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    profiles = {
        engine_id: engine_profile_from_dict(engine_id, entry)
        for engine_id, entry in (data.get("engines") or {}).items()
    }
    logger.debug("Loaded %d engine profiles from %s", len(profiles), path)
    return MappingProxyType(profiles)


@lru_cache(maxsize=1)
def get_engine_profiles() -> Mapping[str, EngineProfile]:
    """Get the process-wide engine profiles (loaded once)."""
    return load_engine_profiles()
