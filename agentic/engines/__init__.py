"""
Engine adapters.

Each adapter pairs a static engine profile with the engine's spelling of
tool permissions and CLI arguments.
"""

from .base import EngineAdapter
from .claude import ClaudeEngine
from .codex import CodexEngine
from .copilot import CopilotEngine
from .gemini import GeminiEngine
from .registry import DEFAULT_ENGINE, EngineRegistry, get_engine, get_engine_registry

__all__ = [
    "EngineAdapter",
    "ClaudeEngine",
    "CodexEngine",
    "CopilotEngine",
    "GeminiEngine",
    "DEFAULT_ENGINE",
    "EngineRegistry",
    "get_engine",
    "get_engine_registry",
]
