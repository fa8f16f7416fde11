"""Recovers moves that git reported as an unrelated add and delete."""

import logging
import os
import posixpath
import re
from typing import Dict, Iterable, List, Optional, Set

from ..models import ChangeEntry, ChangeKind
from ..protocols.dependency_provider import DependencyProvider
from ..protocols.git_runner_protocol import GitRunnerProtocol
from .path_translator import PathTranslator, normalize_path

logger = logging.getLogger(__name__)

IDENTITY_PATTERN = re.compile(r"^\s*guid:\s*([0-9a-fA-F]+)\s*$", re.MULTILINE)


def parse_identity_tag(content: Optional[str]) -> Optional[str]:
    """Extract the ``guid:`` identity tag from sidecar text."""
    if not content:
        return None
    match = IDENTITY_PATTERN.search(content)
    if not match:
        return None
    return match.group(1).strip() or None


class RelevanceSet:
    """
    Project paths relevant to the current selection.

    Lookups are case-insensitive. With no targets selected every path is
    relevant.
    """

    def __init__(self, targets: Iterable[str] = (), sidecar_suffix: str = ".meta"):
        self.targets: List[str] = [normalize_path(t) for t in targets if t]
        self.sidecar_suffix = sidecar_suffix
        self.folder_prefixes: List[str] = []
        self._paths: Dict[str, str] = {}

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and path.casefold() in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def add(self, path: Optional[str]) -> None:
        """Add a path together with its sidecar."""
        path = normalize_path(path)
        if not path:
            return
        self.add_exact(path)
        if not path.lower().endswith(self.sidecar_suffix.lower()):
            self.add_exact(f"{path}{self.sidecar_suffix}")

    def add_exact(self, path: str) -> None:
        path = normalize_path(path)
        self._paths.setdefault(path.casefold(), path)

    def add_ancestor_sidecars(self, path: Optional[str]) -> None:
        """Add the sidecars of every enclosing folder below the top level."""
        path = normalize_path(path)
        folder = posixpath.dirname(path)
        while "/" in folder:
            self.add_exact(f"{folder}{self.sidecar_suffix}")
            folder = posixpath.dirname(folder)

    def paths(self) -> List[str]:
        return sorted(self._paths.values(), key=str.casefold)

    def matches(self, asset_path: Optional[str], original_path: Optional[str] = None) -> bool:
        if not self.targets:
            return True

        asset_path = (asset_path or "").casefold()
        original_path = (original_path or "").casefold()
        for prefix in self.folder_prefixes:
            prefix = prefix.casefold()
            if asset_path.startswith(prefix) or original_path.startswith(prefix):
                return True

        if not self._paths:
            targets = {t.casefold() for t in self.targets}
            return asset_path in targets or original_path in targets
        return asset_path in self._paths or original_path in self._paths


class RenameResolver:
    """
    Builds the relevant-path set for the selected targets.

    Besides the dependency closure of each target, deleted entries whose file
    name matches a relevant file are treated as the old side of a move. When
    both the committed sidecar of the deleted path and the on-disk sidecars
    of the same-named relevant files carry identity tags, the tags must agree.
    Without a name match, a deleted path is still accepted when its committed
    identity tag belongs to a relevant changed file.
    """

    def __init__(
        self,
        translator: PathTranslator,
        runner: GitRunnerProtocol,
        dependency_provider: DependencyProvider,
        identity_revision: str = "HEAD",
    ):
        self.translator = translator
        self.runner = runner
        self.dependency_provider = dependency_provider
        self.identity_revision = identity_revision

    def resolve(
        self,
        targets: Iterable[str],
        changes: List[ChangeEntry],
        translator: Optional[PathTranslator] = None,
    ) -> RelevanceSet:
        translator = translator or self.translator
        relevance = RelevanceSet(targets, translator.sidecar_suffix)
        if not relevance.targets:
            return relevance

        file_names: Set[str] = set()
        file_targets: Set[str] = set()

        for target in relevance.targets:
            if self.dependency_provider.is_folder(target):
                relevance.folder_prefixes.append(target.rstrip("/") + "/")
                relevance.add(target)
                continue

            file_targets.add(target.casefold())
            relevance.add(target)
            self._add_file_name(file_names, target, translator)

            dependencies = self._dependencies(target)
            if not dependencies:
                relevance.add_ancestor_sidecars(target)
                continue
            for dependency in dependencies:
                relevance.add(dependency)
                self._add_file_name(file_names, dependency, translator)

        for path in relevance.paths():
            if not translator.is_sidecar(path):
                relevance.add_ancestor_sidecars(path)

        self._add_reverse_dependencies(relevance, changes, file_targets, translator)

        identities = self._relevant_identities(relevance, changes, translator)
        self._add_moved_deletions(relevance, changes, file_names, identities, translator)
        return relevance

    def _dependencies(self, target: str) -> List[str]:
        try:
            return [normalize_path(d) for d in self.dependency_provider.get_dependencies(target) if d]
        except Exception as e:
            logger.warning("Failed to read dependencies of %s: %s", target, e)
            return []

    @staticmethod
    def _add_file_name(file_names: Set[str], path: str, translator: PathTranslator) -> None:
        name = posixpath.basename(normalize_path(path))
        if not name:
            return
        file_names.add(name.casefold())
        if not translator.is_sidecar(name):
            file_names.add(f"{name}{translator.sidecar_suffix}".casefold())

    def _add_reverse_dependencies(
        self,
        relevance: RelevanceSet,
        changes: List[ChangeEntry],
        file_targets: Set[str],
        translator: PathTranslator,
    ) -> None:
        if not file_targets:
            return
        for entry in changes:
            path = entry.project_path
            if not path or translator.is_sidecar(path):
                continue
            if entry.change_kind == ChangeKind.DELETED or self.dependency_provider.is_folder(path):
                continue
            if any(d.casefold() in file_targets for d in self._dependencies(path)):
                relevance.add(path)

    def _relevant_identities(
        self,
        relevance: RelevanceSet,
        changes: List[ChangeEntry],
        translator: PathTranslator,
    ) -> Set[str]:
        identities: Set[str] = set()
        for entry in changes:
            path = entry.project_path
            if not path or entry.change_kind == ChangeKind.DELETED:
                continue
            if len(relevance) and path not in relevance:
                continue
            identity = self.identity_from_disk(translator.sidecar_path(path), translator)
            if identity:
                identities.add(identity.lower())
        return identities

    def _add_moved_deletions(
        self,
        relevance: RelevanceSet,
        changes: List[ChangeEntry],
        file_names: Set[str],
        identities: Set[str],
        translator: PathTranslator,
    ) -> None:
        root = translator.repository_root
        for entry in changes:
            if entry.change_kind != ChangeKind.DELETED or not entry.project_path:
                continue
            deleted = entry.project_path
            name = posixpath.basename(deleted).casefold()
            if not name:
                continue

            if name in file_names:
                matched = self._confirm_name_match(entry, relevance, root, translator)
            elif identities:
                committed = self.identity_at_revision(root, translator.sidecar_path(entry.path))
                matched = bool(committed) and committed.lower() in identities
            else:
                matched = False

            if matched:
                logger.debug("Treating deleted %s as the source of a move", deleted)
                relevance.add(deleted)
                relevance.add_ancestor_sidecars(deleted)

    def _confirm_name_match(
        self,
        entry: ChangeEntry,
        relevance: RelevanceSet,
        root: Optional[str],
        translator: PathTranslator,
    ) -> bool:
        deleted = entry.project_path.casefold()
        name = posixpath.basename(deleted)
        candidate_identities = set()
        for path in relevance.paths():
            folded = path.casefold()
            if folded == deleted or posixpath.basename(folded) != name:
                continue
            identity = self.identity_from_disk(translator.sidecar_path(path), translator)
            if identity:
                candidate_identities.add(identity.lower())
        if not candidate_identities:
            return True

        committed = self.identity_at_revision(root, translator.sidecar_path(entry.path))
        if not committed:
            return True
        return committed.lower() in candidate_identities

    def identity_from_disk(self, project_path: str, translator: PathTranslator) -> Optional[str]:
        absolute = translator.absolute_project_path(project_path)
        if not os.path.isfile(absolute):
            return None
        try:
            with open(absolute, encoding="utf-8", errors="replace") as f:
                return parse_identity_tag(f.read())
        except OSError as e:
            logger.debug("Could not read %s: %s", absolute, e)
            return None

    def identity_at_revision(self, root: Optional[str], repo_path: str) -> Optional[str]:
        """Identity tag of ``repo_path`` as committed at the configured revision."""
        if not root or not repo_path:
            return None
        spec = f"{self.identity_revision}:{normalize_path(repo_path).strip()}"
        result = self.runner.run(["show", spec], root, self.runner.timeout_short)
        if not result.ok:
            return None
        return parse_identity_tag(result.stdout)
