"""Bundled static data: ecosystem domain table and engine profiles."""

from .ecosystems import (
    ECOSYSTEM_PRIORITY,
    EcosystemTable,
    get_ecosystem_table,
    load_ecosystem_table,
)
from .engines import EngineProfile, get_engine_profiles, load_engine_profiles

__all__ = [
    "ECOSYSTEM_PRIORITY",
    "EcosystemTable",
    "EngineProfile",
    "get_ecosystem_table",
    "get_engine_profiles",
    "load_ecosystem_table",
    "load_engine_profiles",
]
