"""
ecosystems.py - Ecosystem domain table loader.

The table maps ecosystem identifiers ("python", "node", "containers", ...)
to sorted, deduplicated tuples of domain patterns. It is loaded once from
the bundled ecosystem_domains.yaml, validated against
ecosystem_domains.schema.json, and frozen.

Usage:
    from agentic.config.ecosystems import get_ecosystem_table

    table = get_ecosystem_table()
    table.domains("python")   # ('*.pythonhosted.org', 'anaconda.org', ...)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import jsonschema
import yaml

from agentic.errors import EcosystemDataError

logger = logging.getLogger(__name__)

# More specific sub-ecosystems come before the ecosystems that contain them
# so that ecosystem_of() is deterministic for shared domains.
ECOSYSTEM_PRIORITY: Tuple[str, ...] = (
    "node-cdns",
    "rust",
    "clojure",
    "containers",
    "dart",
    "defaults",
    "dotnet",
    "elixir",
    "fonts",
    "github",
    "github-actions",
    "go",
    "haskell",
    "java",
    "kotlin",
    "linux-distros",
    "node",
    "perl",
    "php",
    "playwright",
    "python",
    "ruby",
    "scala",
    "swift",
    "terraform",
    "zig",
)


def _get_data_path() -> Path:
    """Get the path to ecosystem_domains.yaml."""
    return Path(__file__).parent / "ecosystem_domains.yaml"


def _get_schema_path() -> Path:
    """Get the path to ecosystem_domains.schema.json."""
    return Path(__file__).parent / "ecosystem_domains.schema.json"


@dataclass(frozen=True)
class EcosystemTable:
    """Immutable ecosystem identifier -> domain patterns mapping."""

    ecosystems: Mapping[str, Tuple[str, ...]]

    def __contains__(self, ecosystem: str) -> bool:
        return ecosystem in self.ecosystems

    def domains(self, ecosystem: str) -> Tuple[str, ...]:
        """Domains for an ecosystem, or an empty tuple when unknown."""
        return self.ecosystems.get(ecosystem, ())

    def identifiers(self) -> Tuple[str, ...]:
        return tuple(sorted(self.ecosystems))

    def lookup_order(self) -> Tuple[str, ...]:
        """Ecosystems in priority order followed by the rest, sorted."""
        prioritized = [e for e in ECOSYSTEM_PRIORITY if e in self.ecosystems]
        seen = set(prioritized)
        remaining = sorted(e for e in self.ecosystems if e not in seen)
        return tuple(prioritized + remaining)


def ecosystem_table_from_dict(data: Dict[str, Any]) -> EcosystemTable:
    """Freeze a raw ecosystem mapping into an EcosystemTable."""
    frozen = {
        name: tuple(sorted(set(domains)))
        for name, domains in data.items()
    }
    return EcosystemTable(ecosystems=MappingProxyType(frozen))


def load_ecosystem_table(
    path: Optional[Path] = None,
    schema_path: Optional[Path] = None,
) -> EcosystemTable:
    """Load and validate an ecosystem table from YAML.

    Args:
        path: Data file path. Defaults to the bundled table.
        schema_path: JSON schema path. Defaults to the bundled schema.

    Returns:
        The frozen EcosystemTable.

    Raises:
        EcosystemDataError: If the file is missing, malformed or fails
            schema validation.
    """
    path = path or _get_data_path()
    schema_path = schema_path or _get_schema_path()

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
        with schema_path.open(encoding="utf-8") as f:
            schema = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise EcosystemDataError(f"failed to load ecosystem domains from {path}: {e}") from e

    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise EcosystemDataError(
            f"invalid ecosystem domains in {path} at {location}: {e.message}"
        ) from e

    table = ecosystem_table_from_dict(data)
    logger.debug("Loaded %d ecosystems from %s", len(table.ecosystems), path)
    return table


@lru_cache(maxsize=1)
def get_ecosystem_table() -> EcosystemTable:
    """Get the process-wide bundled ecosystem table (loaded once)."""
    return load_ecosystem_table()
