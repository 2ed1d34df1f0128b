"""
registry.py - Engine adapter registry.

Maps engine identifiers to adapter instances built from the bundled
engine profiles. A process-wide registry is built once and reused; tests
and embedders can construct their own EngineRegistry and register extra
adapters.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping, Optional, Type

from agentic.config.engines import EngineProfile, get_engine_profiles
from agentic.errors import UnknownEngineError

from .base import EngineAdapter
from .claude import ClaudeEngine
from .codex import CodexEngine
from .copilot import CopilotEngine
from .gemini import GeminiEngine

logger = logging.getLogger(__name__)

DEFAULT_ENGINE = "copilot"

ADAPTER_CLASSES: Dict[str, Type[EngineAdapter]] = {
    "copilot": CopilotEngine,
    "claude": ClaudeEngine,
    "codex": CodexEngine,
    "gemini": GeminiEngine,
}


class EngineRegistry:
    """Registry of engine adapters keyed by engine id."""

    def __init__(self, profiles: Optional[Mapping[str, EngineProfile]] = None):
        self._engines: Dict[str, EngineAdapter] = {}
        for engine_id, profile in (profiles or {}).items():
            adapter_cls = ADAPTER_CLASSES.get(engine_id)
            if adapter_cls is None:
                logger.debug("No adapter class for engine profile %s; skipping", engine_id)
                continue
            self.register(adapter_cls(profile))

    def register(self, engine: EngineAdapter) -> None:
        """Register an adapter, replacing any previous one with the same id."""
        if engine.id in self._engines:
            logger.debug("Replacing registered engine %s", engine.id)
        self._engines[engine.id] = engine

    def get_engine(self, engine_id: str) -> EngineAdapter:
        """Look up an adapter.

        Raises:
            UnknownEngineError: If no adapter is registered under engine_id.
        """
        engine = self._engines.get(engine_id)
        if engine is None:
            raise UnknownEngineError(engine_id, self._engines)
        return engine

    def get_default_engine(self) -> EngineAdapter:
        return self.get_engine(DEFAULT_ENGINE)

    def supported_engines(self) -> List[str]:
        return sorted(self._engines)

    def is_supported(self, engine_id: str) -> bool:
        return engine_id in self._engines


_registry: Optional[EngineRegistry] = None
_registry_lock = threading.Lock()


def get_engine_registry() -> EngineRegistry:
    """Get the process-wide registry, building it on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = EngineRegistry(get_engine_profiles())
            logger.debug("Engine registry initialized: %s", _registry.supported_engines())
        return _registry


def get_engine(engine_id: str) -> EngineAdapter:
    """Convenience lookup against the process-wide registry."""
    return get_engine_registry().get_engine(engine_id)
