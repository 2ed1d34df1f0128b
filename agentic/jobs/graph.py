"""
graph.py - Job and JobGraph.

A JobGraph is a set of uniquely named jobs connected by ``needs`` edges.
It must be acyclic and every job name must satisfy the runner's identifier
grammar. topological_order() is deterministic: among ready jobs, insertion
order decides.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from agentic.errors import JobGraphError

logger = logging.getLogger(__name__)

JOB_NAME_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")

DEFAULT_RUNNER = "ubuntu-latest"


@dataclass
class Job:
    """One job of the generated pipeline."""

    name: str
    needs: List[str] = field(default_factory=list)
    runs_on: Any = DEFAULT_RUNNER
    if_: str = ""
    permissions: Any = None
    env: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    timeout_minutes: Optional[int] = None
    services: Dict[str, Any] = field(default_factory=dict)
    # Reusable workflow call
    uses: str = ""
    with_: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Job body in the runner's key order, empty fields omitted."""
        data: Dict[str, Any] = {}
        if self.needs:
            data["needs"] = self.needs[0] if len(self.needs) == 1 else list(self.needs)
        if self.if_:
            data["if"] = self.if_
        if self.uses:
            data["uses"] = self.uses
            if self.with_:
                data["with"] = dict(self.with_)
            if self.secrets:
                data["secrets"] = dict(self.secrets)
            if self.permissions is not None:
                data["permissions"] = self.permissions
            return data
        data["runs-on"] = self.runs_on
        if self.permissions is not None:
            data["permissions"] = self.permissions
        if self.timeout_minutes is not None:
            data["timeout-minutes"] = self.timeout_minutes
        if self.services:
            data["services"] = dict(self.services)
        if self.env:
            data["env"] = dict(self.env)
        if self.outputs:
            data["outputs"] = dict(self.outputs)
        data["steps"] = list(self.steps)
        return data


class JobGraph:
    """Ordered collection of jobs with dependency validation."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}

    def add_job(self, job: Job) -> None:
        if not JOB_NAME_RE.match(job.name):
            raise JobGraphError(
                f"invalid job name '{job.name}': must be lowercase letters, digits, "
                f"'_' or '-', not starting with a digit"
            )
        if job.name in self._jobs:
            raise JobGraphError(f"duplicate job name '{job.name}'")
        logger.debug("Adding job %s (needs=%s)", job.name, job.needs)
        self._jobs[job.name] = job

    def get_job(self, name: str) -> Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise JobGraphError(f"unknown job '{name}'") from None

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    def names(self) -> List[str]:
        return list(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self._jobs.values())

    def ancestors(self, name: str) -> Set[str]:
        """Every job ``name`` depends on, directly or transitively."""
        seen: Set[str] = set()
        stack = list(self.get_job(name).needs)
        while stack:
            current = stack.pop()
            if current in seen or current not in self._jobs:
                continue
            seen.add(current)
            stack.extend(self._jobs[current].needs)
        return seen

    def depends_on(self, name: str, other: str) -> bool:
        return other in self.ancestors(name)

    def topological_order(self) -> List[str]:
        """Kahn's algorithm.

        Raises:
            JobGraphError: On an unknown ``needs`` target or a cycle.
        """
        indegree: Dict[str, int] = {}
        for job in self._jobs.values():
            for need in job.needs:
                if need not in self._jobs:
                    raise JobGraphError(f"job '{job.name}' needs unknown job '{need}'")
            indegree[job.name] = len(set(job.needs))

        order: List[str] = []
        ready = [name for name in self._jobs if indegree[name] == 0]
        while ready:
            current = ready.pop(0)
            order.append(current)
            for job in self._jobs.values():
                if current in job.needs:
                    indegree[job.name] -= 1
                    if indegree[job.name] == 0:
                        ready.append(job.name)

        if len(order) != len(self._jobs):
            cyclic = sorted(name for name in self._jobs if name not in order)
            raise JobGraphError(f"job dependency cycle among: {', '.join(cyclic)}")
        return order

    def validate(self) -> None:
        self.topological_order()

    def to_dict(self) -> Dict[str, Any]:
        """Jobs in topological order."""
        return {name: self._jobs[name].to_dict() for name in self.topological_order()}
