"""
packages.py - Advisory package-existence checks.

Packages referenced by custom steps (``npx``, ``pip install``, ``uv pip
install``, ``uvx``) and by ``npx`` / ``uvx`` MCP servers are looked up in
their public registries. The lookups are advisory: a missing package, a
missing registry client or any other failure becomes a warning on the IR
and never stops compilation. Each package is checked once, without retry.
"""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Callable, Dict, Iterable, List, Set

from agentic.workflow.types import WorkflowSpec

logger = logging.getLogger(__name__)

NPM = "npm"
PYPI = "pypi"

# Step command patterns, the capture group is the first package argument
STEP_PATTERNS = {
    NPM: (re.compile(r"\bnpx\s+(?:-\S+\s+)*([@A-Za-z0-9][\w@./-]*)"),),
    PYPI: (
        re.compile(r"\b(?:uv\s+)?pip3?\s+install\s+(?:-\S+\s+)*([A-Za-z0-9][\w.-]*)"),
        re.compile(r"\buvx\s+(?:-\S+\s+)*([A-Za-z0-9][\w.-]*)"),
    ),
}

MCP_COMMANDS = {"npx": NPM, "uvx": PYPI}

PackageLookup = Callable[[str, str], bool]


def _first_package_arg(args: Iterable[object]) -> str:
    for arg in args:
        text = str(arg)
        if not text.startswith("-"):
            return text
    return ""


def collect_packages(spec: WorkflowSpec) -> Dict[str, List[str]]:
    """Registry -> sorted package names referenced by the workflow."""
    found: Dict[str, Set[str]] = {NPM: set(), PYPI: set()}

    for step in list(spec.steps) + list(spec.post_steps):
        run = step.get("run") if isinstance(step, dict) else None
        if not isinstance(run, str):
            continue
        for registry, patterns in STEP_PATTERNS.items():
            for pattern in patterns:
                found[registry].update(m.group(1) for m in pattern.finditer(run))

    for name, config in spec.tools.custom.items():
        registry = MCP_COMMANDS.get(str(config.get("command", "")))
        if registry is None:
            continue
        package = _first_package_arg(config.get("args") or ())
        if package:
            logger.debug("MCP server %s references %s package %s", name, registry, package)
            found[registry].add(package)

    return {registry: sorted(names) for registry, names in found.items() if names}


def _strip_version(registry: str, package: str) -> str:
    if registry == NPM:
        # Scoped names start with "@"; a version follows the last "@"
        head, sep, _ = package.rpartition("@")
        return head if sep and head else package
    return re.split(r"[=<>!~\[]", package, maxsplit=1)[0]


def registry_package_exists(registry: str, package: str) -> bool:
    """Ask the registry client whether ``package`` exists."""
    name = _strip_version(registry, package)
    if registry == NPM:
        cmd = ["npm", "view", name, "name"]
    else:
        cmd = ["pip", "index", "versions", name]
    result = subprocess.run(cmd, capture_output=True)
    return result.returncode == 0


def check_packages(spec: WorkflowSpec, lookup: PackageLookup = registry_package_exists) -> int:
    """Check every referenced package; returns the number of warnings added."""
    packages = collect_packages(spec)
    warnings = 0
    for registry, names in packages.items():
        for package in names:
            try:
                exists = lookup(registry, package)
            except Exception as e:
                logger.debug("Package lookup failed for %s: %s", package, e)
                spec.diagnostics.add_warning(
                    "packages", f"{registry}:{package}", f"could not be verified: {e}"
                )
                warnings += 1
                continue
            if not exists:
                spec.diagnostics.add_warning(
                    "packages", f"{registry}:{package}", f"was not found in the {registry} registry"
                )
                warnings += 1
    logger.info(
        "Checked %d packages for %s (%d warnings)",
        sum(len(v) for v in packages.values()), spec.workflow_id, warnings,
    )
    return warnings
