"""Version-control mutations: stage, unstage, discard, commit and push."""

import logging
import os
import re
import tempfile
from typing import Iterable, List, Optional

from ..models import ChangeKind, OperationResult, PathRequest
from ..protocols.git_runner_protocol import GitRunnerProtocol
from .git_runner import BatchOutcome, build_git_args

logger = logging.getLogger(__name__)

PUSH_FAILURE_HINT = (
    "The remote may contain commits you do not have locally. "
    "Pull and resolve any conflicts, then push again."
)


class GitOperations:
    """
    Mutating git commands for one repository at a time.

    Every method returns an OperationResult instead of raising; failures carry
    the CLI's stderr in the summary where there is one.
    """

    def __init__(self, runner: GitRunnerProtocol):
        self.runner = runner

    def stage(self, root: str, requests: Iterable[PathRequest]) -> OperationResult:
        add_paths: List[str] = []
        update_paths: List[str] = []
        for request in requests:
            path = (request.repo_path or "").strip()
            if not path:
                continue
            if request.change_kind == ChangeKind.DELETED:
                if path not in update_paths:
                    update_paths.append(path)
                if path in add_paths:
                    add_paths.remove(path)
            elif path not in update_paths and path not in add_paths:
                add_paths.append(path)

        total = len(add_paths) + len(update_paths)
        if total == 0:
            return OperationResult(success=False, summary="No changes to stage.")

        outcome = self.runner.run_batched(["add"], add_paths, root)
        outcome.merge(self.runner.run_batched(["add", "-u"], update_paths, root))

        summary = f"Staged {outcome.success_count}/{total} items."
        logger.info("%s (%s)", summary, root)
        return self._batch_result(outcome, summary)

    def unstage(self, root: str, paths: Iterable[str]) -> OperationResult:
        unique = list(dict.fromkeys(p.strip() for p in paths if p and p.strip()))
        if not unique:
            return OperationResult(success=False, summary="No staged items to unstage.")

        outcome = self.runner.run_batched(["reset", "HEAD"], unique, root)
        summary = f"Unstaged {outcome.success_count}/{len(unique)} items."
        logger.info("%s (%s)", summary, root)
        return self._batch_result(outcome, summary)

    @staticmethod
    def _batch_result(outcome: BatchOutcome, summary: str) -> OperationResult:
        if outcome.success_count == 0 and outcome.first_error:
            summary = f"{summary}\n{outcome.first_error}"
        return OperationResult(
            success=outcome.success_count > 0,
            summary=summary,
            affected_paths=list(outcome.succeeded),
        )

    def discard(self, root: str, requests: Iterable[PathRequest]) -> OperationResult:
        """
        Revert working-tree changes.

        Staged paths are reset first. Added paths are removed with
        ``git clean``; everything else is restored with ``git checkout``.
        Only primary requests count towards the summary.
        """
        total = succeeded = 0
        affected: List[str] = []
        for request in requests:
            if not request.repo_path:
                continue
            ok = self._discard_one(root, request)
            if not request.primary:
                continue
            total += 1
            if ok:
                succeeded += 1
                affected.append(request.repo_path)

        if total == 0:
            return OperationResult(success=False, summary="No changes to discard.")

        if succeeded == total:
            summary = f"Discarded {succeeded} changes."
        else:
            summary = f"Discarded {succeeded}/{total} changes (see the log for the rest)."
        logger.info("%s (%s)", summary, root)
        return OperationResult(success=succeeded > 0, summary=summary, affected_paths=affected)

    def _discard_one(self, root: str, request: PathRequest) -> bool:
        path = request.repo_path
        reset_ok = True
        if request.is_staged:
            reset_ok = self.runner.run(build_git_args(["reset", "-q", "HEAD"], path), root).ok

        if request.change_kind in (ChangeKind.ADDED, ChangeKind.RENAMED):
            flags = "-fd" if request.is_folder else "-f"
            clean_ok = self.runner.run(build_git_args(["clean", flags], path), root).ok
            return reset_ok and clean_ok

        checkout_ok = self.runner.run(build_git_args(["checkout"], path), root).ok
        return reset_ok and checkout_ok

    def commit(self, root: str, message: Optional[str]) -> OperationResult:
        if not message or not message.strip():
            return OperationResult(success=False, summary="Commit message cannot be empty.")
        message = message.strip()

        diff = self.runner.run(["diff", "--cached", "--name-only"], root, self.runner.timeout_short)
        if not diff.ok:
            summary = "Unable to check staged content. Please verify repository status."
            if diff.stderr.strip():
                summary = f"{summary}\n{diff.stderr.strip()}"
            return OperationResult(success=False, summary=summary)
        if not diff.stdout.strip():
            return OperationResult(success=False, summary="No staged changes to commit.")

        message_file = None
        try:
            if "\n" in message or "\r" in message:
                fd, message_file = tempfile.mkstemp(prefix="QuickStageCommitMessage_", suffix=".txt")
                with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                    f.write(message.replace("\r\n", "\n").replace("\r", "\n"))
                args = ["commit", "-F", message_file]
            else:
                args = ["commit", "-m", message]
            result = self.runner.run(args, root, self.runner.timeout_medium)
        finally:
            if message_file:
                try:
                    os.remove(message_file)
                except OSError as e:
                    logger.warning("Failed to remove commit message file %s: %s", message_file, e)

        if not result.ok:
            error = result.stderr.strip() or result.stdout.strip()
            summary = f"Commit failed: {error}" if error else "Commit failed. Check the log for git output."
            return OperationResult(success=False, summary=summary)

        logger.info("Committed in %s: %s", root, message.splitlines()[0])
        return OperationResult(
            success=True,
            summary="Commit successful.",
            commit_succeeded=True,
            committed_message=message,
        )

    def push(self, root: str) -> OperationResult:
        result = self.runner.run(["push"], root, self.runner.timeout_long)
        if not result.ok:
            summary = result.stderr.strip() or "Push failed. Check the log for git output."
            return OperationResult(success=False, summary=summary)
        logger.info("Pushed %s", root)
        return OperationResult(success=True, summary="Push successful.")

    def commit_and_push(self, root: str, message: Optional[str]) -> OperationResult:
        committed = self.commit(root, message)
        if not committed.success:
            return committed

        pushed = self.push(root)
        if pushed.success:
            return committed.model_copy(update={"summary": "Commit and push successful."})

        return committed.model_copy(
            update={
                "success": False,
                "summary": f"Commit successful, but push failed. {PUSH_FAILURE_HINT}\n{pushed.summary}",
            }
        )

    def recent_commit_messages(
        self,
        root: str,
        max_count: int,
        author_pattern: Optional[str] = None,
        exclude_merges: bool = False,
    ) -> List[str]:
        if max_count <= 0:
            return []
        args = ["log", "-n", str(max_count), "--format=%s"]
        if exclude_merges:
            args.append("--no-merges")
        if author_pattern and author_pattern.strip():
            args.append(f"--author={author_pattern.strip()}")

        result = self.runner.run(args, root, self.runner.timeout_short)
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def current_user_author_pattern(self, root: str) -> Optional[str]:
        """Author filter for the configured user: email first, then name."""
        for key in ("user.email", "user.name"):
            value = self.config_value(root, key)
            if value:
                return re.escape(value)
        return None

    def recent_commit_messages_for_current_user(self, root: str, max_count: int) -> List[str]:
        pattern = self.current_user_author_pattern(root)
        if not pattern:
            return []
        return self.recent_commit_messages(root, max_count, pattern, exclude_merges=True)

    def config_value(self, root: str, key: str) -> Optional[str]:
        result = self.runner.run(["config", "--get", key], root, self.runner.timeout_short)
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            if line.strip():
                return line.strip()
        return None
