"""
document.py - Ordered key/value emitters for the two configuration dialects.

JSON dialect (one object per server, wrapped in ``{"mcpServers": {...}}``):

    "github": {
      "type": "stdio",
      "container": "ghcr.io/github/github-mcp-server:v0.30.3",
      "env": {
        "GITHUB_READ_ONLY": "1"
      }
    }

TOML dialect (one ``[mcp_servers.<name>]`` section per server):

    [mcp_servers.github]
    container = "ghcr.io/github/github-mcp-server:v0.30.3"
    env = { "GITHUB_READ_ONLY" = "1" }

Fields are emitted in insertion order. Empty values are dropped at ``add``
time unless ``always=True``, so separator bookkeeping only ever looks at
fields that are actually rendered.

Strings use JSON escaping, which is also a valid TOML basic string once
DEL is escaped. Shell quoting is left to the step that writes the document.
"""

from __future__ import annotations

import json
from typing import Any, List, Mapping, Sequence, Tuple

INDENT = "  "


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value) == 0
    return False


def quote(value: str) -> str:
    return json.dumps(str(value), ensure_ascii=False).replace("\x7f", "\\u007f")


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return quote(value)


class _Builder:
    """Shared field bookkeeping for both dialects."""

    def __init__(self, inline_lists: bool = False):
        self.inline_lists = inline_lists
        self._fields: List[Tuple[str, Any]] = []

    def add(self, key: str, value: Any, always: bool = False) -> "_Builder":
        if always or not _is_empty(value):
            self._fields.append((key, value))
        return self

    def keys(self) -> List[str]:
        return [k for k, _ in self._fields]

    def __len__(self) -> int:
        return len(self._fields)


# =============================================================================
# JSON dialect
# =============================================================================


class JsonObjectBuilder(_Builder):
    """Body of one JSON object with fixed field order."""

    def _value_lines(self, value: Any, indent: str) -> List[str]:
        if isinstance(value, Mapping):
            keys = list(value)
            lines = ["{"]
            for i, key in enumerate(keys):
                sep = "," if i < len(keys) - 1 else ""
                lines.append(f"{indent}{INDENT}{quote(key)}: {_scalar(value[key])}{sep}")
            lines.append(f"{indent}}}")
            return lines
        if isinstance(value, (list, tuple)):
            if self.inline_lists:
                return ["[" + ", ".join(_scalar(v) for v in value) + "]"]
            lines = ["["]
            for i, item in enumerate(value):
                sep = "," if i < len(value) - 1 else ""
                lines.append(f"{indent}{INDENT}{_scalar(item)}{sep}")
            lines.append(f"{indent}]")
            return lines
        return [_scalar(value)]

    def render_lines(self, level: int = 0) -> List[str]:
        indent = INDENT * level
        out: List[str] = []
        for i, (key, value) in enumerate(self._fields):
            sep = "," if i < len(self._fields) - 1 else ""
            value_lines = self._value_lines(value, indent)
            value_lines[-1] += sep
            out.append(f"{indent}{quote(key)}: {value_lines[0]}")
            out.extend(value_lines[1:])
        return out


def render_json_document(
    blocks: Sequence[Tuple[str, JsonObjectBuilder]],
    root_key: str = "mcpServers",
) -> str:
    """Wrap server objects in ``{"<root_key>": {...}}``."""
    lines = ["{", f"{INDENT}{quote(root_key)}: {{"]
    for i, (name, block) in enumerate(blocks):
        sep = "," if i < len(blocks) - 1 else ""
        lines.append(f"{INDENT * 2}{quote(name)}: {{")
        lines.extend(block.render_lines(level=3))
        lines.append(f"{INDENT * 2}}}{sep}")
    lines.append(f"{INDENT}}}")
    lines.append("}")
    return "\n".join(lines) + "\n"


# =============================================================================
# TOML dialect
# =============================================================================


class TomlSectionBuilder(_Builder):
    """One ``[<prefix>.<name>]`` table."""

    def _value(self, value: Any) -> str:
        if isinstance(value, Mapping):
            pairs = ", ".join(f"{quote(k)} = {_scalar(v)}" for k, v in value.items())
            return "{ " + pairs + " }"
        if isinstance(value, (list, tuple)):
            if self.inline_lists:
                return "[" + ", ".join(_scalar(v) for v in value) + "]"
            items = "".join(f"{INDENT}{_scalar(v)},\n" for v in value)
            return "[\n" + items + "]"
        return _scalar(value)

    def render(self, name: str, prefix: str = "mcp_servers") -> str:
        lines = [f"[{prefix}.{name}]"]
        lines.extend(f"{key} = {self._value(value)}" for key, value in self._fields)
        return "\n".join(lines) + "\n"


def render_toml_document(
    sections: Sequence[Tuple[str, TomlSectionBuilder]],
    prefix: str = "mcp_servers",
) -> str:
    return "\n".join(section.render(name, prefix) for name, section in sections)
