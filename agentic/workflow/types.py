"""
types.py - WorkflowSpec, the intermediate representation of one compilation.

The parse phase fills the declaration fields. Later phases write derived
fields through set_derived(), which refuses a second write so that every
derived field has exactly one owner. One WorkflowSpec belongs to one
compilation run and is never shared between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from agentic.errors import Diagnostics, WorkflowError

from .frontmatter import (
    CustomJobSettings,
    EngineSettings,
    NetworkSettings,
    SafeOutputsConfig,
    SandboxSettings,
    ToolsConfig,
    TriggerConfig,
)

if TYPE_CHECKING:
    from agentic.jobs.graph import JobGraph
    from agentic.mcp.renderer import RenderedMcpConfig

logger = logging.getLogger(__name__)

DERIVED_FIELDS = (
    "allowed_domains",
    "blocked_domains",
    "firewall_enabled",
    "expressions",
    "mcp_config",
    "job_graph",
)


@dataclass
class WorkflowSpec:
    """Everything known about one workflow while it is being compiled."""

    # Identity
    workflow_id: str
    name: str
    tracker_id: str = ""
    source_path: str = ""
    markdown: str = ""

    # Declarations
    engine: EngineSettings = field(default_factory=EngineSettings)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    network: Optional[NetworkSettings] = None
    sandbox: Optional[SandboxSettings] = None
    permissions: Any = None
    safe_outputs: SafeOutputsConfig = field(default_factory=SafeOutputsConfig)
    safe_inputs: Mapping[str, Any] = field(default_factory=dict)
    triggers: TriggerConfig = field(default_factory=TriggerConfig)
    custom_jobs: Mapping[str, CustomJobSettings] = field(default_factory=dict)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    post_steps: List[Dict[str, Any]] = field(default_factory=list)
    services: Dict[str, Any] = field(default_factory=dict)
    runtimes: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    on: Any = None
    # Keys copied verbatim into the generated document
    passthrough: Dict[str, Any] = field(default_factory=dict)
    frontmatter: Mapping[str, Any] = field(default_factory=dict)
    strict: bool = False

    # Derived, written once each
    allowed_domains: Optional[List[str]] = None
    blocked_domains: Optional[List[str]] = None
    firewall_enabled: Optional[bool] = None
    expressions: Optional[Dict[str, str]] = None
    mcp_config: Optional["RenderedMcpConfig"] = None
    job_graph: Optional["JobGraph"] = None

    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def safe_inputs_enabled(self) -> bool:
        return bool(self.safe_inputs)

    @property
    def agent_sandbox_disabled(self) -> bool:
        return self.sandbox is not None and self.sandbox.agent_disabled

    def set_derived(self, name: str, value: Any) -> None:
        """Write a derived field once.

        Raises:
            WorkflowError: If the field is not derived or was already written.
        """
        if name not in DERIVED_FIELDS:
            raise WorkflowError(f"'{name}' is not a derived workflow field")
        if getattr(self, name) is not None:
            raise WorkflowError(f"derived field '{name}' was already written")
        logger.debug("Workflow %s: set %s", self.workflow_id, name)
        setattr(self, name, value)
