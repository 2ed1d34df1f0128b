"""
caches.py - Caches shared across a batch of compilations.

Both caches are plain key -> value maps guarded by a lock, so several
worker threads compiling independent workflows can share them. Lookup
order never changes compiled output.

- ActionReferenceCache: pinned SHAs for ``owner/repo@ref`` action references
- RepositoryFeatureCache: answers to "does repository R have feature F"
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class ActionReferenceCache:
    """Memoizes action reference -> pinned SHA resolutions."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], str] = {}

    def get(self, repo: str, ref: str) -> Optional[str]:
        with self._lock:
            return self._entries.get((repo, ref))

    def set(self, repo: str, ref: str, sha: str) -> None:
        with self._lock:
            self._entries[(repo, ref)] = sha

    def resolve(
        self,
        repo: str,
        ref: str,
        resolver: Optional[Callable[[str, str], Optional[str]]] = None,
    ) -> Optional[str]:
        """Cached SHA, else ask ``resolver`` once and remember a hit.

        The resolver runs outside the lock; concurrent misses may both call
        it, and the last answer is kept.
        """
        cached = self.get(repo, ref)
        if cached is not None or resolver is None:
            return cached
        sha = resolver(repo, ref)
        if sha:
            logger.debug("Resolved %s@%s to %s", repo, ref, sha)
            self.set(repo, ref, sha)
        return sha

    def format_reference(self, repo: str, ref: str) -> str:
        """``repo@sha # ref`` when pinned, else ``repo@ref``."""
        sha = self.get(repo, ref)
        if sha:
            return f"{repo}@{sha} # {ref}"
        return f"{repo}@{ref}"

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RepositoryFeatureCache:
    """Memoizes external "is feature enabled" queries per repository."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], bool] = {}

    def get(self, repo: str, feature: str) -> Optional[bool]:
        with self._lock:
            return self._entries.get((repo, feature))

    def set(self, repo: str, feature: str, enabled: bool) -> None:
        with self._lock:
            self._entries[(repo, feature)] = enabled

    def check(self, repo: str, feature: str, query: Callable[[str, str], bool]) -> bool:
        """Cached answer, else run ``query`` once and remember it."""
        cached = self.get(repo, feature)
        if cached is not None:
            return cached
        enabled = bool(query(repo, feature))
        logger.debug("Repository %s feature %s enabled=%s", repo, feature, enabled)
        self.set(repo, feature, enabled)
        return enabled

    def clear(self) -> None:
        """Forget every answer (test isolation)."""
        with self._lock:
            self._entries.clear()


_action_cache = ActionReferenceCache()
_feature_cache = RepositoryFeatureCache()


def get_action_cache() -> ActionReferenceCache:
    return _action_cache


def get_feature_cache() -> RepositoryFeatureCache:
    return _feature_cache
