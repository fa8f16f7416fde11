"""Persists the staged paths this tool put into the index itself."""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from .path_translator import normalize_path

logger = logging.getLogger(__name__)


def normalize_root(root: str) -> str:
    return normalize_path(os.path.normpath(os.path.abspath(root))).rstrip("/") or "/"


class StagedOwnershipTracker:
    """
    Staged-ownership allow-list, one path set per repository root.

    The document is read once by ``load()`` and rewritten wholesale after every
    mutation::

        {"repositories": {"/abs/repo": ["Assets/a.png", "Assets/a.png.meta"]}}

    Concurrent sessions against the same file are not coordinated.
    """

    def __init__(self, file_path: Path, repository_root: Optional[str] = None):
        self.file_path = Path(file_path)
        self._sets: Dict[str, Set[str]] = {}
        self._root: Optional[str] = None
        if repository_root:
            self.repository_root = repository_root

    @property
    def repository_root(self) -> Optional[str]:
        return self._root

    @repository_root.setter
    def repository_root(self, root: Optional[str]) -> None:
        self._root = normalize_root(root) if root else None

    @property
    def paths(self) -> Set[str]:
        if not self._root:
            return set()
        return set(self._sets.get(self._root, set()))

    def load(self) -> None:
        """Read the document. A missing or malformed file yields an empty set."""
        self._sets = {}
        if not self.file_path.exists():
            return

        try:
            data = json.loads(self.file_path.read_text(encoding="utf-8") or "{}")
            repositories = data.get("repositories", {})
            if not isinstance(repositories, dict):
                raise ValueError("'repositories' must be an object")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Failed to load staged allow-list %s: %s", self.file_path, e)
            return

        for root, paths in repositories.items():
            if not root or not isinstance(paths, list):
                continue
            cleaned = {normalize_path(p).strip() for p in paths if isinstance(p, str) and p.strip()}
            if cleaned:
                self._sets.setdefault(normalize_root(root), set()).update(cleaned)

    def save(self) -> None:
        """Rewrite the document; an empty allow-list removes the file."""
        repositories = {
            root: sorted(paths, key=str.casefold)
            for root, paths in sorted(self._sets.items())
            if paths
        }
        try:
            if not repositories:
                if self.file_path.exists():
                    self.file_path.unlink()
                return

            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = f"{self.file_path}.tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"repositories": repositories}, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.file_path)
        except OSError as e:
            logger.warning("Failed to save staged allow-list %s: %s", self.file_path, e)

    def contains(self, path: str) -> bool:
        return normalize_path(path).strip() in self.paths

    def add(self, paths: Iterable[str]) -> None:
        if not self._root:
            return
        current = self._sets.setdefault(self._root, set())
        before = len(current)
        current.update(p for p in self._clean(paths))
        if len(current) != before:
            self.save()

    def remove(self, paths: Iterable[str]) -> None:
        if not self._root or self._root not in self._sets:
            return
        current = self._sets[self._root]
        before = len(current)
        current.difference_update(self._clean(paths))
        if not current:
            del self._sets[self._root]
        if len(current) != before:
            self.save()

    def prune(self, currently_staged: Iterable[str]) -> List[str]:
        """Forget owned paths that are no longer staged in the index."""
        if not self._root or self._root not in self._sets:
            return []
        staged = set(self._clean(currently_staged))
        current = self._sets[self._root]
        stale = sorted(current - staged)
        if not stale:
            return []
        current.difference_update(stale)
        if not current:
            del self._sets[self._root]
        self.save()
        return stale

    def external_paths(self, currently_staged: Iterable[str]) -> List[str]:
        """Staged paths that this tool did not stage."""
        owned = self.paths
        return sorted(set(self._clean(currently_staged)) - owned)

    @staticmethod
    def _clean(paths: Iterable[str]) -> List[str]:
        return [normalize_path(p).strip() for p in paths if p and p.strip()]
