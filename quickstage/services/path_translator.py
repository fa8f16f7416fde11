"""Maps between project-relative and repository-relative paths."""

import logging
import os
from typing import Optional

from ..exceptions import PathOutsideRootError, RepositoryNotFoundError
from ..protocols.git_runner_protocol import GitRunnerProtocol

logger = logging.getLogger(__name__)

GIT_MARKER = ".git"


class RepositoryRootCache:
    """Holds the discovered repository root until the selection context changes."""

    def __init__(self, root: Optional[str] = None):
        self.root = root
        self.not_found_logged = False

    def invalidate(self) -> None:
        self.root = None


def normalize_path(path: Optional[str]) -> str:
    """Use forward slashes regardless of platform."""
    if not path:
        return ""
    return path.replace("\\", "/")


def relative_to(path: str, root: str) -> Optional[str]:
    """
    Return ``path`` relative to ``root`` using forward slashes.

    None when the resolved path is the root itself or falls outside it.
    """
    path = os.path.normpath(os.path.abspath(path))
    root = os.path.normpath(os.path.abspath(root))
    try:
        common = os.path.commonpath([os.path.normcase(path), os.path.normcase(root)])
    except ValueError:
        # Different drives
        return None
    if common != os.path.normcase(root):
        return None
    relative = path[len(root):].lstrip("\\/")
    return normalize_path(relative) or None


class PathTranslator:
    """
    Bidirectional translation between the project and repository namespaces.

    The repository root is discovered lazily and cached in a
    RepositoryRootCache. Discovery order:

    1. walk upward from the context directory looking for ``.git``
    2. walk upward from the project root
    3. ``git rev-parse --show-toplevel`` from the context directory
    4. ``git rev-parse --show-toplevel`` from the project root

    Steps 3 and 4 run git, so only ``discover_repository_root`` takes them.
    """

    def __init__(
        self,
        project_root: str,
        runner: Optional[GitRunnerProtocol] = None,
        cache: Optional[RepositoryRootCache] = None,
        sidecar_suffix: str = ".meta",
    ):
        self.project_root = os.path.normpath(os.path.abspath(project_root))
        self.runner = runner
        self.cache = cache if cache is not None else RepositoryRootCache()
        self.sidecar_suffix = sidecar_suffix
        self.context_directory: Optional[str] = None

    def for_root(self, root: str) -> "PathTranslator":
        """A translator pinned to ``root``, safe to hand to a background task."""
        pinned = PathTranslator(
            self.project_root,
            runner=None,
            cache=RepositoryRootCache(root),
            sidecar_suffix=self.sidecar_suffix,
        )
        pinned.context_directory = self.context_directory
        return pinned

    def detached(self) -> "PathTranslator":
        """
        A copy with its own cache, for full root discovery on a worker thread.

        The outcome is handed back with ``remember_root`` on the loop thread.
        """
        copy = PathTranslator(
            self.project_root,
            runner=self.runner,
            cache=RepositoryRootCache(self.cache.root),
            sidecar_suffix=self.sidecar_suffix,
        )
        copy.context_directory = self.context_directory
        return copy

    def set_context(self, project_path: Optional[str]) -> None:
        """Point root discovery at the selected asset and drop the cached root."""
        self.cache.invalidate()
        if not project_path:
            self.context_directory = None
            return

        absolute = self.absolute_project_path(project_path)
        if os.path.isdir(absolute):
            self.context_directory = absolute
        else:
            self.context_directory = os.path.dirname(absolute) or absolute

    @property
    def repository_root(self) -> Optional[str]:
        """
        The cached root, or one found by looking for a ``.git`` marker.

        Never runs git, so it is safe on the event loop thread. Roots that only
        ``git rev-parse`` can find come from ``discover_repository_root``.
        """
        root = self.cache.root
        if root and os.path.isdir(root):
            return root

        for start in (self.context_directory, self.project_root):
            root = self._find_by_traversal(start)
            if root:
                self.cache.root = root
                return root
        return None

    def discover_repository_root(self) -> Optional[str]:
        """Full discovery, falling back to ``git rev-parse``. Blocking."""
        root = self.repository_root
        if root or self.runner is None:
            return root

        for start in (self.context_directory, self.project_root):
            root = self._find_by_rev_parse(start)
            if root:
                self.cache.root = root
                return root
        return None

    def remember_root(self, root: Optional[str]) -> None:
        """Record the outcome of a discovery made off the loop thread."""
        self.cache.root = root
        if root is not None:
            self.cache.not_found_logged = False
            return
        if not self.cache.not_found_logged:
            logger.warning(
                "No Git repository found for %s. Check that the project is inside a "
                "Git repository and that git is on PATH.",
                self.context_directory or self.project_root,
            )
            self.cache.not_found_logged = True

    def require_repository_root(self) -> str:
        root = self.repository_root
        if root is None:
            raise RepositoryNotFoundError([self.context_directory, self.project_root])
        return root

    @staticmethod
    def _find_by_traversal(start: Optional[str]) -> Optional[str]:
        if not start:
            return None
        directory = os.path.abspath(start)
        while True:
            if os.path.exists(os.path.join(directory, GIT_MARKER)):
                return directory
            parent = os.path.dirname(directory)
            if parent == directory:
                return None
            directory = parent

    def _find_by_rev_parse(self, start: Optional[str]) -> Optional[str]:
        if not start or not os.path.isdir(start):
            return None
        result = self.runner.run(["rev-parse", "--show-toplevel"], start, self.runner.timeout_short)
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            if line.strip():
                return os.path.normpath(os.path.abspath(line.strip()))
        return None

    def absolute_project_path(self, project_path: str) -> str:
        if os.path.isabs(project_path):
            return os.path.normpath(project_path)
        return os.path.normpath(os.path.join(self.project_root, project_path))

    def to_repo_path(self, project_path: Optional[str]) -> Optional[str]:
        if not project_path:
            return None
        root = self.repository_root
        if not root:
            return None
        return relative_to(self.absolute_project_path(project_path), root)

    def to_project_path(self, repo_path: Optional[str]) -> Optional[str]:
        if not repo_path:
            return None
        repo_path = repo_path.strip().strip('"')
        if not repo_path or "\0" in repo_path:
            logger.warning("Skipping git path with invalid characters: %r", repo_path)
            return None
        root = self.repository_root
        if not root:
            return None
        return relative_to(os.path.join(root, repo_path), self.project_root)

    def require_repo_path(self, project_path: str) -> str:
        repo_path = self.to_repo_path(project_path)
        if repo_path is None:
            raise PathOutsideRootError(project_path, self.repository_root or "<no repository>")
        return repo_path

    def is_sidecar(self, path: str) -> bool:
        return path.lower().endswith(self.sidecar_suffix.lower())

    def sidecar_path(self, path: str) -> str:
        """The sidecar file paired with ``path`` (``path`` itself for sidecars)."""
        return path if self.is_sidecar(path) else f"{path}{self.sidecar_suffix}"

    def asset_path_for_sidecar(self, path: str) -> str:
        return path[: -len(self.sidecar_suffix)] if self.is_sidecar(path) else path
