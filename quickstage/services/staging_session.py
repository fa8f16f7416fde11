"""One staging window: selection, change lists and the operations issued on them."""

import logging
import posixpath
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from ..exceptions import PathOutsideRootError, RepositoryNotFoundError
from ..models import (
    AssetInfo,
    ChangeEntry,
    ChangeKind,
    Notification,
    OperationKind,
    OperationRequest,
    OperationResult,
    PathRequest,
    RepositoryStatusInfo,
)
from ..protocols.dependency_provider import DependencyProvider
from .asset_types import AssetTypeClassifier, AssetTypeFilter
from .change_scanner import ChangeScanner, summarize
from .commit_history import CommitHistory
from .git_operations import GitOperations
from .operation_scheduler import DispatchStatus, OperationScheduler
from .ownership_tracker import StagedOwnershipTracker
from .path_translator import PathTranslator, normalize_path
from .rename_resolver import RelevanceSet, RenameResolver

logger = logging.getLogger(__name__)

HISTORY_DISPLAY_LIMIT = 100


@dataclass
class ScanOutcome:
    """Pure result of a background scan."""

    repository_root: Optional[str]
    entries: List[ChangeEntry] = field(default_factory=list)
    relevance: RelevanceSet = field(default_factory=RelevanceSet)


class StagingSession:
    """
    UI-facing state for one window session.

    All methods run on the event loop thread. Git work happens in background
    tasks owned by the OperationScheduler; their results are applied here in
    completion order, so shared state needs no locking.
    """

    def __init__(
        self,
        translator: PathTranslator,
        scanner: ChangeScanner,
        resolver: RenameResolver,
        tracker: StagedOwnershipTracker,
        history: CommitHistory,
        operations: GitOperations,
        classifier: AssetTypeClassifier,
        dependency_provider: DependencyProvider,
        auto_clean_external_staged: bool = True,
        debounce_seconds: float = 0.15,
        scheduler_factory: Callable[..., OperationScheduler] = OperationScheduler,
    ):
        self.translator = translator
        self.scanner = scanner
        self.resolver = resolver
        self.tracker = tracker
        self.history = history
        self.operations = operations
        self.classifier = classifier
        self.dependency_provider = dependency_provider
        self.auto_clean_external_staged = auto_clean_external_staged
        self.scheduler = scheduler_factory(
            make_scan_task=self._make_scan_task,
            operation_task=self._run_operation,
            on_scan_complete=self._apply_scan,
            on_operation_complete=self._apply_operation_result,
            on_error=self.notify,
            debounce_seconds=debounce_seconds,
        )

        self.targets: List[str] = []
        self.assets: List[AssetInfo] = []
        self.relevance = RelevanceSet()
        self.repository_root: Optional[str] = None
        self.status_message = ""
        self.initial_staged_paths: Optional[Set[str]] = None
        self.pending_confirmation: Optional[Notification] = None
        self._notifications: Deque[Notification] = deque(maxlen=50)
        self._auto_clean_done = False
        self._recapture_initial_snapshot = False

    # Lifecycle

    def open(self) -> DispatchStatus:
        """Load persisted state and start the first scan."""
        self.tracker.load()
        self.history.load()
        return self.scheduler.request_scan(clear_ui=True)

    def close(self) -> None:
        self.scheduler.shutdown()

    def tick(self) -> None:
        self.scheduler.tick()

    @property
    def is_busy(self) -> bool:
        return self.scheduler.is_busy

    @property
    def current_operation(self) -> Optional[OperationKind]:
        """Kind of the operation running right now, if any."""
        request = self.scheduler.in_flight_operation
        return request.kind if request is not None else None

    # Selection

    def set_targets(self, project_paths: Iterable[str]) -> DispatchStatus:
        targets = [normalize_path(p).strip().rstrip("/") for p in project_paths if p and p.strip()]
        self.targets = list(dict.fromkeys(targets))
        self.translator.set_context(self._common_context(self.targets))
        return self.scheduler.request_scan(clear_ui=True)

    @staticmethod
    def _common_context(targets: List[str]) -> Optional[str]:
        if not targets:
            return None
        if len(targets) == 1:
            return targets[0]
        try:
            return posixpath.commonpath(targets) or None
        except ValueError:
            return None

    def request_scan(self, clear_ui: bool = False) -> DispatchStatus:
        return self.scheduler.request_scan(clear_ui)

    # Views

    def visible_assets(
        self,
        staged: Optional[bool] = None,
        asset_type: AssetTypeFilter = AssetTypeFilter.ALL,
        change_kind: Optional[ChangeKind] = None,
    ) -> List[AssetInfo]:
        visible = []
        for info in self.assets:
            if not self.relevance.matches(info.asset_path, info.original_path):
                continue
            if staged is True and not info.is_staged:
                continue
            if staged is False and not info.is_unstaged:
                continue
            if change_kind is not None and info.change_kind != change_kind:
                continue
            if not self.classifier.matches(info.asset_path, asset_type):
                continue
            visible.append(info)
        return visible

    @property
    def status_info(self) -> RepositoryStatusInfo:
        return summarize(self.assets)

    @property
    def has_preexisting_staged(self) -> bool:
        return bool(self.initial_staged_paths)

    def asset_type(self, info: AssetInfo) -> AssetTypeFilter:
        return self.classifier.classify(info.asset_path)

    # Notifications

    def notify(self, message: str, blocking: bool = False) -> None:
        notification = Notification(message=message, blocking=blocking)
        if blocking:
            self.pending_confirmation = notification
        else:
            self._notifications.append(notification)

    def drain_notifications(self) -> List[Notification]:
        drained = list(self._notifications)
        self._notifications.clear()
        return drained

    def acknowledge(self) -> Optional[Notification]:
        confirmed, self.pending_confirmation = self.pending_confirmation, None
        return confirmed

    # Operations

    def stage(self, project_paths: Iterable[str]) -> DispatchStatus:
        root = self._require_root()
        if root is None:
            return DispatchStatus.REJECTED

        selected, unknown = self._select(project_paths, lambda a: a.is_unstaged)
        requests: List[PathRequest] = []
        for info in selected:
            requests.append(PathRequest(repo_path=info.repo_path, change_kind=info.change_kind))
            if info.is_move:
                if info.change_kind == ChangeKind.RENAMED:
                    # Stage the removal of the old location too.
                    requests.append(
                        PathRequest(repo_path=info.original_repo_path, change_kind=ChangeKind.DELETED)
                    )
                elif info.change_kind == ChangeKind.DELETED:
                    # Deleted side of a move: stage the destination as well.
                    requests.append(
                        PathRequest(repo_path=info.original_repo_path, change_kind=ChangeKind.ADDED)
                    )
        requests.extend(self._requests_for_unlisted(unknown))

        if not requests:
            self.notify("No changes to stage.")
            return DispatchStatus.REJECTED

        status = self.scheduler.request_operation(
            OperationRequest(
                kind=OperationKind.STAGE,
                repository_root=root,
                paths=[r.repo_path for r in requests],
                requests=requests,
            )
        )
        if status == DispatchStatus.REJECTED:
            self.notify("Another operation is in progress. Please wait.")
            return status

        for info in selected:
            info.is_staged = True
            info.is_unstaged = False
        return status

    def unstage(self, project_paths: Iterable[str]) -> DispatchStatus:
        root = self._require_root()
        if root is None:
            return DispatchStatus.REJECTED

        selected, _ = self._select(project_paths, lambda a: a.is_staged)
        paths: List[str] = []
        for info in selected:
            paths.append(info.repo_path)
            if info.change_kind == ChangeKind.RENAMED and info.is_move:
                paths.append(info.original_repo_path)

        if not paths:
            self.notify("No staged items to unstage.")
            return DispatchStatus.REJECTED

        status = self.scheduler.request_operation(
            OperationRequest(kind=OperationKind.UNSTAGE, repository_root=root, paths=paths)
        )
        if status == DispatchStatus.REJECTED:
            self.notify("Another operation is in progress. Please wait.")
            return status

        for info in selected:
            info.is_staged = False
            info.is_unstaged = True
        return status

    def discard(self, project_paths: Iterable[str]) -> DispatchStatus:
        """Revert the selected changes. Callers must confirm with the user first."""
        root = self._require_root()
        if root is None:
            return DispatchStatus.REJECTED

        selected, _ = self._select(project_paths, lambda a: True)
        requests: List[PathRequest] = []
        for info in selected:
            is_folder = self.dependency_provider.is_folder(info.asset_path)
            requests.append(
                PathRequest(
                    repo_path=info.repo_path,
                    change_kind=info.change_kind,
                    is_staged=info.is_staged,
                    is_folder=is_folder,
                )
            )
            companions = []
            if not self.translator.is_sidecar(info.repo_path):
                companions.append((self.translator.sidecar_path(info.repo_path), info.change_kind))
            if info.change_kind == ChangeKind.RENAMED and info.is_move:
                companions.append((info.original_repo_path, ChangeKind.DELETED))
                if not self.translator.is_sidecar(info.original_repo_path):
                    companions.append(
                        (self.translator.sidecar_path(info.original_repo_path), ChangeKind.DELETED)
                    )
            for path, kind in companions:
                requests.append(
                    PathRequest(
                        repo_path=path, change_kind=kind, is_staged=info.is_staged, primary=False
                    )
                )

        if not selected:
            self.notify("No changes to discard.")
            return DispatchStatus.REJECTED

        status = self.scheduler.request_operation(
            OperationRequest(kind=OperationKind.DISCARD, repository_root=root, requests=requests)
        )
        if status == DispatchStatus.REJECTED:
            self.notify("Another operation is in progress. Please wait.")
        return status

    def commit(self, message: str, push: bool = False) -> DispatchStatus:
        root = self._require_root()
        if root is None:
            return DispatchStatus.REJECTED
        if not message or not message.strip():
            self.notify("Commit message cannot be empty.")
            return DispatchStatus.REJECTED

        kind = OperationKind.COMMIT_AND_PUSH if push else OperationKind.COMMIT
        status = self.scheduler.request_operation(
            OperationRequest(kind=kind, repository_root=root, message=message.strip())
        )
        if status == DispatchStatus.REJECTED:
            self.notify("Another operation is in progress. Please wait.")
        return status

    def commit_history(self, include_log: bool = False) -> List[str]:
        """
        Saved commit messages, optionally followed by the current user's log.

        Reading the log runs git; call it off the event loop.
        """
        if not include_log or not self.repository_root:
            return list(self.history.entries)
        log_messages = self.operations.recent_commit_messages_for_current_user(
            self.repository_root, HISTORY_DISPLAY_LIMIT
        )
        return self.history.with_log_messages(log_messages, HISTORY_DISPLAY_LIMIT)

    # Helpers

    def _require_root(self) -> Optional[str]:
        if self.repository_root:
            return self.repository_root
        try:
            return self.translator.require_repository_root()
        except RepositoryNotFoundError as e:
            logger.info("%s", e)
            self.notify("No Git repository found.")
            return None

    def _select(self, project_paths: Iterable[str], predicate: Callable[[AssetInfo], bool]):
        wanted = {normalize_path(p).strip().casefold(): p for p in project_paths if p and p.strip()}
        selected = []
        for info in self.assets:
            key = info.asset_path.casefold()
            if key in wanted:
                wanted.pop(key)
                if predicate(info) and info.repo_path:
                    selected.append(info)
        return selected, list(wanted.values())

    def _requests_for_unlisted(self, project_paths: List[str]) -> List[PathRequest]:
        requests = []
        skipped = 0
        for path in project_paths:
            try:
                repo_path = self.translator.require_repo_path(path)
            except PathOutsideRootError as e:
                logger.warning("Not staging %s", e)
                skipped += 1
                continue
            requests.append(PathRequest(repo_path=repo_path))
        if skipped:
            self.notify(f"Skipped {skipped} paths outside the repository.")
        return requests

    def _staged_repo_paths(self) -> List[str]:
        staged = []
        for info in self.assets:
            if not info.is_staged or not info.repo_path:
                continue
            staged.append(info.repo_path)
            if info.change_kind == ChangeKind.RENAMED and info.is_move:
                staged.append(info.original_repo_path)
        return staged

    # Background tasks and their completion handlers

    def _make_scan_task(self, clear_ui: bool) -> Callable[[], ScanOutcome]:
        if clear_ui:
            self.assets = []
            self.relevance = RelevanceSet()
            self.classifier.clear()
            self.status_message = ""

        known_root = self.translator.repository_root
        finder = self.translator.detached()
        targets = list(self.targets)

        def scan() -> ScanOutcome:
            root = known_root or finder.discover_repository_root()
            if root is None:
                return ScanOutcome(repository_root=None, relevance=RelevanceSet(targets))
            pinned = finder.for_root(root)
            entries = self.scanner.scan(pinned)
            relevance = self.resolver.resolve(targets, entries, pinned)
            return ScanOutcome(repository_root=root, entries=entries, relevance=relevance)

        return scan

    def _run_operation(self, request: OperationRequest) -> OperationResult:
        root = request.repository_root
        if request.kind == OperationKind.STAGE:
            return self.operations.stage(root, request.requests)
        if request.kind == OperationKind.UNSTAGE:
            return self.operations.unstage(root, request.paths)
        if request.kind == OperationKind.DISCARD:
            return self.operations.discard(root, request.requests)
        if request.kind == OperationKind.COMMIT:
            return self.operations.commit(root, request.message)
        return self.operations.commit_and_push(root, request.message)

    def _apply_scan(self, outcome: ScanOutcome, clear_ui: bool) -> None:
        messages: List[str] = []
        self.translator.remember_root(outcome.repository_root)
        self.repository_root = outcome.repository_root
        self.relevance = outcome.relevance
        self._merge_assets(outcome.entries)
        self.classifier.clear()

        if outcome.repository_root is None:
            messages.append("No Git repository found.")
            self.status_message = "\n".join(messages)
            return

        if not outcome.entries:
            messages.append("Git detected no changes.")
        elif self.targets and not self.visible_assets(staged=False):
            messages.append("No changes related to the current selection.")

        staged = self._staged_repo_paths()
        if self.initial_staged_paths is None or self._recapture_initial_snapshot:
            self._recapture_initial_snapshot = False
            self.initial_staged_paths = {a.asset_path for a in self.assets if a.is_staged}

        self.tracker.repository_root = outcome.repository_root
        self.tracker.prune(staged)
        self._auto_clean(outcome.repository_root, staged, messages)
        self.status_message = "\n".join(messages)

    def _merge_assets(self, entries: List[ChangeEntry]) -> None:
        existing: Dict[str, AssetInfo] = {a.asset_path.casefold(): a for a in self.assets}
        updated: List[AssetInfo] = []
        for entry in entries:
            if not entry.project_path:
                continue
            last_known = self.scanner.working_tree_time(
                entry.original_project_path or entry.project_path
            )
            info = existing.pop(entry.project_path.casefold(), None)
            if info is None:
                info = AssetInfo.from_change(entry, last_known)
            else:
                info.update_from(entry, last_known)
            updated.append(info)
        updated.sort(key=lambda a: a.asset_path.casefold())
        self.assets = updated

    def _auto_clean(self, root: str, staged: List[str], messages: List[str]) -> None:
        """Unstage, once per session, whatever was staged outside this tool."""
        if not self.auto_clean_external_staged or self._auto_clean_done:
            return
        self._auto_clean_done = True

        external = self.tracker.external_paths(staged)
        if not external:
            return

        logger.info("Unstaging %d items staged outside QuickStage in %s", len(external), root)
        status = self.scheduler.request_operation(
            OperationRequest(kind=OperationKind.UNSTAGE, repository_root=root, paths=external)
        )
        if status != DispatchStatus.REJECTED:
            self._recapture_initial_snapshot = True
            messages.append(f"Unstaging {len(external)} items staged outside QuickStage.")

    def _apply_operation_result(self, request: OperationRequest, result: OperationResult) -> None:
        if result.success and request.kind in (OperationKind.STAGE, OperationKind.UNSTAGE):
            self.tracker.repository_root = request.repository_root
            if request.kind == OperationKind.STAGE:
                self.tracker.add(result.affected_paths)
            else:
                self.tracker.remove(result.affected_paths)

        if request.kind in (OperationKind.COMMIT, OperationKind.COMMIT_AND_PUSH):
            if result.commit_succeeded and result.committed_message:
                self.history.add(result.committed_message)
            self.notify(result.summary or "Done.", blocking=True)
        elif result.summary:
            self.notify(result.summary)
