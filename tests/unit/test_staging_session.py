"""Unit tests for StagingSession."""

import threading
from datetime import datetime
from unittest.mock import Mock

import pytest

from quickstage.models import ChangeEntry, ChangeKind, CommandResult, OperationKind, OperationResult
from quickstage.protocols.dependency_provider import FileSystemDependencyProvider
from quickstage.protocols.git_runner_protocol import GitRunnerProtocol
from quickstage.services.asset_types import AssetTypeClassifier, AssetTypeFilter
from quickstage.services.change_scanner import ChangeScanner
from quickstage.services.commit_history import CommitHistory
from quickstage.services.git_operations import GitOperations
from quickstage.services.operation_scheduler import DispatchStatus
from quickstage.services.ownership_tracker import StagedOwnershipTracker
from quickstage.services.path_translator import PathTranslator
from quickstage.services.rename_resolver import RelevanceSet, RenameResolver
from quickstage.services.staging_session import StagingSession

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0)


def entry(path, kind=ChangeKind.MODIFIED, staged=False, unstaged=True, original=None):
    return ChangeEntry(
        path=path,
        original_path=original,
        change_kind=kind,
        working_tree_time=FIXED_NOW,
        is_staged=staged,
        is_unstaged=unstaged,
        project_path=path,
        original_project_path=original,
    )


class TestStagingSession:
    """Test cases for StagingSession."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """Project folder at the repository root, git replaced by mocks."""
        self.root = str(tmp_path / "repo")
        (tmp_path / "repo" / ".git").mkdir(parents=True)
        self.data_dir = tmp_path / "Library"
        self.entries = []

        self.translator = PathTranslator(self.root)
        self.scanner = Mock(spec=ChangeScanner)
        self.scanner.scan.side_effect = lambda translator=None: list(self.entries)
        self.scanner.working_tree_time.return_value = FIXED_NOW
        self.resolver = Mock(spec=RenameResolver)
        self.resolver.resolve.side_effect = self._resolve
        self.operations = Mock(spec=GitOperations)
        self.operations.stage.side_effect = self._stage
        self.operations.unstage.side_effect = self._unstage
        self.tracker = StagedOwnershipTracker(self.data_dir / "allow.json")
        self.history = CommitHistory(self.data_dir / "history.json")

        self.session = StagingSession(
            translator=self.translator,
            scanner=self.scanner,
            resolver=self.resolver,
            tracker=self.tracker,
            history=self.history,
            operations=self.operations,
            classifier=AssetTypeClassifier(self.translator),
            dependency_provider=FileSystemDependencyProvider(self.root),
            debounce_seconds=0.01,
        )
        yield
        self.session.close()

    def _resolve(self, targets, changes, translator=None):
        relevance = RelevanceSet(targets)
        for target in targets:
            relevance.add(target)
        return relevance

    def _mark(self, paths, staged):
        for change in self.entries:
            if change.path in paths:
                change.is_staged = staged
                change.is_unstaged = not staged

    def _stage(self, root, requests):
        paths = [r.repo_path for r in requests]
        self._mark(paths, staged=True)
        return OperationResult(success=True, summary=f"Staged {len(paths)}/{len(paths)} items.", affected_paths=paths)

    def _unstage(self, root, paths):
        self._mark(paths, staged=False)
        return OperationResult(success=True, summary=f"Unstaged {len(paths)}/{len(paths)} items.", affected_paths=list(paths))

    async def _open(self):
        self.session.open()
        assert await self.session.scheduler.wait_idle(timeout=5)

    @pytest.mark.asyncio
    async def test_open_builds_sorted_assets(self):
        """Test the first scan populates the change list."""
        self.session.auto_clean_external_staged = False
        self.entries = [entry("b.txt"), entry("A.txt"), entry("c.txt", ChangeKind.ADDED, staged=True, unstaged=False)]

        await self._open()

        assert [a.asset_path for a in self.session.assets] == ["A.txt", "b.txt", "c.txt"]
        assert self.session.repository_root == self.root
        assert self.session.status_info.staged_count == 1
        assert self.session.status_info.unstaged_count == 2
        assert [a.asset_path for a in self.session.visible_assets(staged=True)] == ["c.txt"]
        assert self.session.initial_staged_paths == {"c.txt"}
        assert self.session.has_preexisting_staged

    @pytest.mark.asyncio
    async def test_open_without_changes(self):
        """Test the status message for a clean repository."""
        await self._open()
        assert self.session.status_message == "Git detected no changes."

    @pytest.mark.asyncio
    async def test_assets_are_updated_in_place(self):
        """Test that a rescan keeps AssetInfo identity for surviving paths."""
        self.entries = [entry("a.txt")]
        await self._open()
        first = self.session.assets[0]

        self.entries[0].is_staged = True
        self.session.request_scan()
        assert await self.session.scheduler.wait_idle(timeout=5)

        assert self.session.assets[0] is first
        assert first.is_staged

    @pytest.mark.asyncio
    async def test_auto_clean_unstages_only_external_paths(self):
        """Test that paths staged elsewhere are unstaged once and owned paths stay."""
        owner = StagedOwnershipTracker(self.data_dir / "allow.json", self.root)
        owner.add(["mine.txt"])
        self.entries = [
            entry("mine.txt", staged=True, unstaged=False),
            entry("theirs.txt", staged=True, unstaged=False),
        ]

        await self._open()

        self.operations.unstage.assert_called_once_with(self.root, ["theirs.txt"])
        assert self.tracker.paths == {"mine.txt"}
        assert self.session.initial_staged_paths == {"mine.txt"}

        self.session.request_scan()
        assert await self.session.scheduler.wait_idle(timeout=5)
        assert self.operations.unstage.call_count == 1

    @pytest.mark.asyncio
    async def test_auto_clean_disabled(self):
        """Test that external staged paths are left alone when disabled."""
        self.session.auto_clean_external_staged = False
        self.entries = [entry("theirs.txt", staged=True, unstaged=False)]

        await self._open()

        self.operations.unstage.assert_not_called()

    @pytest.mark.asyncio
    async def test_stage_includes_rename_pair_and_records_ownership(self):
        """Test staging a rename also stages its old location."""
        self.entries = [
            entry("new.txt", ChangeKind.ADDED),
            entry("Assets/b.txt", ChangeKind.RENAMED, original="Assets/a.txt"),
            entry("Assets/a.txt", ChangeKind.DELETED, original="Assets/b.txt"),
        ]
        await self._open()

        status = self.session.stage(["new.txt", "Assets/b.txt"])

        assert status == DispatchStatus.STARTED
        staged_now = {a.asset_path for a in self.session.assets if a.is_staged}
        assert staged_now == {"new.txt", "Assets/b.txt"}

        assert await self.session.scheduler.wait_idle(timeout=5)

        requests = self.operations.stage.call_args[0][1]
        assert [(r.repo_path, r.change_kind) for r in requests] == [
            ("Assets/b.txt", ChangeKind.RENAMED),
            ("Assets/a.txt", ChangeKind.DELETED),
            ("new.txt", ChangeKind.ADDED),
        ]
        assert self.tracker.paths == {"new.txt", "Assets/b.txt", "Assets/a.txt"}

    @pytest.mark.asyncio
    async def test_stage_unlisted_path_outside_repository(self):
        """Test that a path outside the repository is skipped with a message."""
        self.entries = [entry("a.txt")]
        await self._open()

        status = self.session.stage(["../../elsewhere.txt"])

        assert status == DispatchStatus.REJECTED
        messages = [n.message for n in self.session.drain_notifications()]
        assert "Skipped 1 paths outside the repository." in messages
        assert "No changes to stage." in messages

    @pytest.mark.asyncio
    async def test_unstage_renamed_includes_original(self):
        """Test unstaging a rename also unstages its old location."""
        self.entries = [
            entry("Assets/b.txt", ChangeKind.RENAMED, staged=True, unstaged=False, original="Assets/a.txt"),
        ]
        self.session.auto_clean_external_staged = False
        await self._open()

        self.session.unstage(["Assets/b.txt"])
        assert await self.session.scheduler.wait_idle(timeout=5)

        self.operations.unstage.assert_called_once_with(self.root, ["Assets/b.txt", "Assets/a.txt"])

    @pytest.mark.asyncio
    async def test_discard_adds_sidecar_companions(self):
        """Test that discarding a file also discards its sidecar."""
        self.entries = [entry("a.png", ChangeKind.MODIFIED)]
        self.operations.discard.return_value = OperationResult(success=True, summary="Discarded 1 changes.")
        await self._open()

        self.session.discard(["a.png"])
        assert await self.session.scheduler.wait_idle(timeout=5)

        requests = self.operations.discard.call_args[0][1]
        assert [(r.repo_path, r.primary) for r in requests] == [("a.png", True), ("a.png.meta", False)]
        assert [n.message for n in self.session.drain_notifications()] == ["Discarded 1 changes."]

    @pytest.mark.asyncio
    async def test_conflicting_operation_is_rejected(self):
        """Test that a different kind of operation cannot queue behind a pending one."""
        gate = threading.Event()
        self.entries = [entry("a.txt"), entry("b.txt", staged=True, unstaged=False)]
        self.session.auto_clean_external_staged = False
        await self._open()

        def slow_stage(root, requests):
            gate.wait(5)
            return self._stage(root, requests)

        self.operations.stage.side_effect = slow_stage
        try:
            assert self.session.stage(["a.txt"]) == DispatchStatus.STARTED
            assert self.session.current_operation == OperationKind.STAGE
            assert self.session.unstage(["b.txt"]) == DispatchStatus.QUEUED
            assert self.session.discard(["a.txt"]) == DispatchStatus.REJECTED
        finally:
            gate.set()
        assert await self.session.scheduler.wait_idle(timeout=5)
        assert self.session.current_operation is None

        messages = [n.message for n in self.session.drain_notifications()]
        assert "Another operation is in progress. Please wait." in messages
        self.operations.discard.assert_not_called()

    @pytest.mark.asyncio
    async def test_commit_records_history_and_needs_confirmation(self):
        """Test a successful commit."""
        self.entries = [entry("a.txt", staged=True, unstaged=False)]
        self.session.auto_clean_external_staged = False
        self.operations.commit.return_value = OperationResult(
            success=True,
            summary="Commit successful.",
            commit_succeeded=True,
            committed_message="Fix jump",
        )
        await self._open()

        assert self.session.commit("  Fix jump ") == DispatchStatus.STARTED
        assert await self.session.scheduler.wait_idle(timeout=5)

        self.operations.commit.assert_called_once_with(self.root, "Fix jump")
        assert self.history.entries == ["Fix jump"]
        assert self.session.pending_confirmation.message == "Commit successful."
        assert self.session.pending_confirmation.blocking
        assert self.session.acknowledge().message == "Commit successful."
        assert self.session.pending_confirmation is None

    @pytest.mark.asyncio
    async def test_commit_and_push(self):
        """Test that push is dispatched as one operation."""
        self.operations.commit_and_push.return_value = OperationResult(
            success=False,
            summary="Commit successful, but push failed.",
            commit_succeeded=True,
            committed_message="Fix",
        )
        await self._open()

        self.session.commit("Fix", push=True)
        assert await self.session.scheduler.wait_idle(timeout=5)

        self.operations.commit_and_push.assert_called_once_with(self.root, "Fix")
        assert self.history.entries == ["Fix"]

    @pytest.mark.asyncio
    async def test_blank_commit_is_rejected(self):
        """Test that a blank message is refused before dispatch."""
        await self._open()

        assert self.session.commit("  ") == DispatchStatus.REJECTED
        assert [n.message for n in self.session.drain_notifications()] == ["Commit message cannot be empty."]
        self.operations.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_targets_filter_visible_assets(self):
        """Test that the selection limits what is shown."""
        self.entries = [entry("a.txt"), entry("b.txt")]
        await self._open()

        self.session.set_targets(["a.txt"])
        assert await self.session.scheduler.wait_idle(timeout=5)

        assert [a.asset_path for a in self.session.visible_assets()] == ["a.txt"]
        assert [a.asset_path for a in self.session.visible_assets(change_kind=ChangeKind.ADDED)] == []
        assert [a.asset_path for a in self.session.visible_assets(asset_type=AssetTypeFilter.SCRIPT)] == []
        assert self.resolver.resolve.call_args[0][0] == ["a.txt"]

    @pytest.mark.asyncio
    async def test_no_relevant_changes_message(self):
        """Test the message when the selection has no unstaged changes."""
        self.entries = [entry("b.txt")]
        await self._open()

        self.session.set_targets(["a.txt"])
        assert await self.session.scheduler.wait_idle(timeout=5)

        assert self.session.status_message == "No changes related to the current selection."

    @pytest.mark.asyncio
    async def test_no_repository(self, tmp_path):
        """Test behaviour outside any repository."""
        lonely = tmp_path / "lonely"
        lonely.mkdir()
        self.session.translator = PathTranslator(str(lonely))

        await self._open()

        assert self.session.repository_root is None
        assert self.session.status_message == "No Git repository found."
        self.scanner.scan.assert_not_called()
        assert self.session.stage(["a.txt"]) == DispatchStatus.REJECTED

    @pytest.mark.asyncio
    async def test_commit_history_with_log(self):
        """Test saved messages come before the current user's log subjects."""
        self.history.add("Saved message")
        self.operations.recent_commit_messages_for_current_user.return_value = [
            "Saved message",
            "From the log",
        ]
        await self._open()

        assert self.session.commit_history() == ["Saved message"]
        assert self.session.commit_history(include_log=True) == ["Saved message", "From the log"]

    @pytest.mark.asyncio
    async def test_rev_parse_root_is_found_off_the_loop_thread(self, tmp_path):
        """Test that git root discovery runs on the worker and is remembered."""
        worktree = tmp_path / "worktree"
        worktree.mkdir()
        runner = Mock(spec=GitRunnerProtocol)
        runner.timeout_short = 5
        threads = []

        def rev_parse(args, cwd, timeout=None):
            threads.append(threading.current_thread())
            return CommandResult(args=list(args), exit_code=0, stdout=f"{worktree}\n")

        runner.run.side_effect = rev_parse
        self.session.translator = PathTranslator(str(worktree), runner=runner)
        self.session.auto_clean_external_staged = False
        self.entries = [entry("a.txt")]

        await self._open()

        assert self.session.repository_root == str(worktree)
        assert threads and all(t is not threading.main_thread() for t in threads)
        calls = runner.run.call_count

        assert self.session.stage(["a.txt"]) == DispatchStatus.STARTED
        assert self.session.translator.repository_root == str(worktree)
        assert runner.run.call_count == calls
        assert await self.session.scheduler.wait_idle(timeout=5)
