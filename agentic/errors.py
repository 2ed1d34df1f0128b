"""
errors.py - Error types and diagnostic collectors for workflow compilation.

Two severities exist:
- errors abort compilation of the current document
- warnings are recorded on the IR and compilation continues

ErrorCollector gathers errors from independent checks either fail-fast
(raise on the first) or collect-all (combine everything into one message).
Diagnostics gathers warnings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Error Types
# =============================================================================


class WorkflowError(Exception):
    """Base exception for workflow compilation errors."""

    pass


class WorkflowParseError(WorkflowError):
    """Raised when a workflow file cannot be read or its frontmatter is invalid."""

    def __init__(self, path: str, problem: str):
        self.path = path
        self.problem = problem
        super().__init__(f"{path}: {problem}")


class EcosystemDataError(WorkflowError):
    """Raised when the bundled ecosystem domain table cannot be loaded."""

    pass


class UnknownEngineError(WorkflowError):
    """Raised when a workflow selects an engine that is not registered."""

    def __init__(self, engine_id: str, supported: Iterable[str]):
        self.engine_id = engine_id
        self.supported = sorted(supported)
        super().__init__(
            f"unknown engine: {engine_id}. Supported engines are: {', '.join(self.supported)}"
        )


class McpConfigError(WorkflowError):
    """Raised when an MCP server declaration cannot be normalized."""

    def __init__(self, tool: str, problem: str, detail: str = ""):
        self.tool = tool
        self.problem = problem
        msg = f"{problem} for tool '{tool}'"
        if detail:
            msg += f". {detail}"
        super().__init__(msg)


class UnknownPropertyError(McpConfigError):
    """Raised when a custom MCP server declaration carries an unrecognized key."""

    def __init__(self, tool: str, key: str, valid_keys: Iterable[str]):
        self.key = key
        self.valid_keys = sorted(valid_keys)
        super().__init__(
            tool,
            f"unknown property '{key}' in MCP configuration",
            f"Valid properties are: {', '.join(self.valid_keys)}. "
            f"Example:\nmcp-servers:\n  {tool}:\n"
            f"    command: \"node server.js\"\n"
            f"    args: [\"--port\", \"3000\"]",
        )


class StrictModeError(WorkflowError):
    """Raised when strict mode refuses a configuration."""

    def __init__(self, message: str):
        if not message.startswith("strict mode:"):
            message = f"strict mode: {message}"
        super().__init__(message)


class JobGraphError(WorkflowError):
    """Raised when the job graph is not a valid DAG of well-named jobs."""

    pass


# =============================================================================
# Error Collector
# =============================================================================


class ErrorCollector:
    """Accumulates errors from independent checks.

    In fail-fast mode ``add`` re-raises the first error immediately. In
    collect-all mode (the default) every error is kept and ``error()``
    combines them into a single newline-joined WorkflowError.
    """

    def __init__(self, fail_fast: bool = False):
        self.fail_fast = fail_fast
        self.errors: List[WorkflowError] = []

    def add(self, error: Optional[WorkflowError]) -> None:
        if error is None:
            return
        if self.fail_fast:
            logger.debug("Fail-fast: raising first error: %s", error)
            raise error
        self.errors.append(error)

    def count(self) -> int:
        return len(self.errors)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def error(self, context: str = "") -> Optional[WorkflowError]:
        """Return None, the single collected error, or a combined error."""
        if not self.errors:
            return None
        if len(self.errors) == 1:
            return self.errors[0]
        lines = "\n".join(str(e) for e in self.errors)
        prefix = f"{context}: " if context else ""
        return WorkflowError(f"{prefix}found {len(self.errors)} errors:\n{lines}")

    def raise_if_errors(self, context: str = "") -> None:
        err = self.error(context)
        if err is not None:
            raise err


# =============================================================================
# Warnings
# =============================================================================


@dataclass(frozen=True)
class CompileWarning:
    """A non-fatal compilation diagnostic."""

    category: str
    location: str
    message: str

    def format(self) -> str:
        return f"[WARN] {self.category}: {self.location} {self.message}"

    def sort_key(self) -> Tuple[str, str, str]:
        return (self.location, self.category, self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "location": self.location,
            "message": self.message,
        }


class Diagnostics:
    """Collects warnings produced while compiling one workflow."""

    def __init__(self):
        self.warnings: List[CompileWarning] = []

    def add_warning(self, category: str, location: str, message: str) -> None:
        """Record a warning and echo it to the log."""
        warning = CompileWarning(category, location, message)
        logger.warning("%s", warning.format())
        self.warnings.append(warning)

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def sorted_warnings(self) -> List[CompileWarning]:
        """Get warnings in deterministic order."""
        return sorted(self.warnings, key=lambda w: w.sort_key())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "warnings": [w.to_dict() for w in self.sorted_warnings()],
            "warning_count": len(self.warnings),
        }
