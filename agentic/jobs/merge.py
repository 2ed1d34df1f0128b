"""
merge.py - Combine imported job/step/service fragments with local ones.

Each fragment is an independent YAML (or JSON) document. Fragments that are
malformed, empty or of the wrong shape are skipped so one bad import does
not fail the whole merge. Local declarations win on name collision, and
merging the same fragments again yields the same result.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import yaml

logger = logging.getLogger(__name__)


def _load_fragment(text: str) -> Optional[Any]:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.debug("Skipping malformed fragment: %s", e)
        return None


def _merge_named(local: Mapping[str, Any], fragments: Iterable[str], what: str) -> Dict[str, Any]:
    imported: Dict[str, Any] = {}
    for fragment in fragments:
        data = _load_fragment(fragment)
        if not isinstance(data, dict):
            if data is not None:
                logger.debug("Skipping %s fragment that is not a mapping", what)
            continue
        for name, value in data.items():
            if not isinstance(value, dict):
                logger.debug("Skipping imported %s %s: not a mapping", what, name)
                continue
            imported.setdefault(str(name), value)

    merged = dict(imported)
    for name, value in local.items():
        if name in imported:
            logger.debug("Local %s %s overrides imported definition", what, name)
        merged[name] = value
    return merged


def merge_imported_jobs(local: Mapping[str, Any], fragments: Iterable[str]) -> Dict[str, Any]:
    """Union imported jobs with local jobs; local wins."""
    return _merge_named(local, fragments, "job")


def merge_imported_services(local: Mapping[str, Any], fragments: Iterable[str]) -> Dict[str, Any]:
    """Union imported services with local services; local wins."""
    return _merge_named(local, fragments, "service")


def merge_imported_steps(local: Sequence[Any], fragments: Iterable[str]) -> List[Any]:
    """Imported steps first, then local steps, without duplicates."""
    merged: List[Any] = []
    for fragment in fragments:
        data = _load_fragment(fragment)
        if isinstance(data, dict) and "steps" in data:
            data = data["steps"]
        if not isinstance(data, list):
            if data is not None:
                logger.debug("Skipping steps fragment that is not a list")
            continue
        for step in data:
            if isinstance(step, dict) and step not in merged:
                merged.append(step)
    for step in local:
        if step not in merged:
            merged.append(step)
    return merged
