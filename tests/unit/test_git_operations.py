"""Unit tests for GitOperations."""

import os
from unittest.mock import Mock

from quickstage.models import ChangeKind, CommandResult, PathRequest
from quickstage.protocols.git_runner_protocol import GitRunnerProtocol
from quickstage.services.git_operations import PUSH_FAILURE_HINT, GitOperations
from quickstage.services.git_runner import BatchOutcome

ROOT = "/repo"


def ok(stdout=""):
    return CommandResult(args=[], exit_code=0, stdout=stdout)


def failed(stderr="fatal: error"):
    return CommandResult(args=[], exit_code=1, stderr=stderr)


def batch(paths, succeeded=None, first_error=""):
    paths = list(paths)
    succeeded = paths if succeeded is None else succeeded
    return BatchOutcome(
        total=len(paths),
        succeeded=list(succeeded),
        failed=[p for p in paths if p not in succeeded],
        first_error=first_error,
        invocations=1,
    )


class TestGitOperations:
    """Test cases for GitOperations."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = Mock(spec=GitRunnerProtocol)
        self.runner.timeout_short = 30
        self.runner.timeout_medium = 120
        self.runner.timeout_long = 300
        self.runner.run_batched.side_effect = lambda base, paths, cwd: batch(paths)
        self.operations = GitOperations(self.runner)

    def test_stage_splits_add_and_update(self):
        """Test deleted paths use the update-tracked variant and win over adds."""
        requests = [
            PathRequest(repo_path="a.txt", change_kind=ChangeKind.ADDED),
            PathRequest(repo_path="b.txt", change_kind=ChangeKind.MODIFIED),
            PathRequest(repo_path="old.txt", change_kind=ChangeKind.ADDED),
            PathRequest(repo_path="old.txt", change_kind=ChangeKind.DELETED),
        ]

        result = self.operations.stage(ROOT, requests)

        calls = self.runner.run_batched.call_args_list
        assert calls[0][0] == (["add"], ["a.txt", "b.txt"], ROOT)
        assert calls[1][0] == (["add", "-u"], ["old.txt"], ROOT)
        assert result.success
        assert result.summary == "Staged 3/3 items."
        assert sorted(result.affected_paths) == ["a.txt", "b.txt", "old.txt"]

    def test_stage_reports_first_error_when_nothing_succeeds(self):
        """Test the summary of a fully failed stage."""
        self.runner.run_batched.side_effect = lambda base, paths, cwd: batch(
            paths, succeeded=[], first_error="fatal: pathspec did not match"
        )

        result = self.operations.stage(ROOT, [PathRequest(repo_path="gone.txt")])

        assert not result.success
        assert result.summary == "Staged 0/1 items.\nfatal: pathspec did not match"
        assert result.affected_paths == []

    def test_stage_nothing(self):
        """Test that an empty request does not run git."""
        result = self.operations.stage(ROOT, [PathRequest(repo_path="  ")])
        assert not result.success
        assert result.summary == "No changes to stage."
        self.runner.run_batched.assert_not_called()

    def test_unstage(self):
        """Test unstaging through reset."""
        result = self.operations.unstage(ROOT, ["a.txt", "a.txt", "b.txt"])

        self.runner.run_batched.assert_called_once_with(["reset", "HEAD"], ["a.txt", "b.txt"], ROOT)
        assert result.summary == "Unstaged 2/2 items."
        assert result.affected_paths == ["a.txt", "b.txt"]

    def test_discard(self):
        """Test the command used for each kind of change."""
        self.runner.run.return_value = ok()
        requests = [
            PathRequest(repo_path="new.txt", change_kind=ChangeKind.ADDED, is_staged=True),
            PathRequest(repo_path="dir", change_kind=ChangeKind.ADDED, is_folder=True),
            PathRequest(repo_path="mod.txt", change_kind=ChangeKind.MODIFIED),
            PathRequest(repo_path="mod.txt.meta", change_kind=ChangeKind.MODIFIED, primary=False),
        ]

        result = self.operations.discard(ROOT, requests)

        issued = [c[0][0] for c in self.runner.run.call_args_list]
        assert issued == [
            ["reset", "-q", "HEAD", "--", "new.txt"],
            ["clean", "-f", "--", "new.txt"],
            ["clean", "-fd", "--", "dir"],
            ["checkout", "--", "mod.txt"],
            ["checkout", "--", "mod.txt.meta"],
        ]
        assert result.success
        assert result.summary == "Discarded 3 changes."
        assert result.affected_paths == ["new.txt", "dir", "mod.txt"]

    def test_discard_partial_failure(self):
        """Test the summary when some paths could not be discarded."""
        self.runner.run.side_effect = [ok(), failed()]
        requests = [
            PathRequest(repo_path="a.txt"),
            PathRequest(repo_path="b.txt"),
        ]

        result = self.operations.discard(ROOT, requests)

        assert result.success
        assert result.summary == "Discarded 1/2 changes (see the log for the rest)."

    def test_commit_rejects_blank_message(self):
        """Test that a blank message never reaches git."""
        result = self.operations.commit(ROOT, "   ")
        assert not result.success
        assert result.summary == "Commit message cannot be empty."
        self.runner.run.assert_not_called()

    def test_commit_requires_staged_changes(self):
        """Test the staged-content pre-check."""
        self.runner.run.return_value = ok("")

        result = self.operations.commit(ROOT, "Message")

        assert not result.success
        assert result.summary == "No staged changes to commit."
        self.runner.run.assert_called_once_with(["diff", "--cached", "--name-only"], ROOT, 30)

    def test_commit_single_line(self):
        """Test a single-line message is passed inline."""
        self.runner.run.side_effect = [ok("a.txt\n"), ok()]

        result = self.operations.commit(ROOT, "  Fix jump  ")

        self.runner.run.assert_called_with(["commit", "-m", "Fix jump"], ROOT, 120)
        assert result.success
        assert result.commit_succeeded
        assert result.committed_message == "Fix jump"

    def test_commit_multi_line_uses_message_file(self):
        """Test a multi-line message goes through a temporary file that is removed."""
        seen = {}

        def run(args, cwd, timeout=None):
            if args[0] == "diff":
                return ok("a.txt\n")
            seen["args"] = args
            with open(args[2], encoding="utf-8") as f:
                seen["content"] = f.read()
            return ok()

        self.runner.run.side_effect = run

        result = self.operations.commit(ROOT, "Title\r\n\r\nBody")

        assert result.success
        assert seen["args"][:2] == ["commit", "-F"]
        assert seen["content"] == "Title\n\nBody"
        assert not os.path.exists(seen["args"][2])

    def test_commit_failure(self):
        """Test that git's error output reaches the summary."""
        self.runner.run.side_effect = [ok("a.txt\n"), failed("error: hook rejected")]

        result = self.operations.commit(ROOT, "Message")

        assert not result.success
        assert not result.commit_succeeded
        assert result.summary == "Commit failed: error: hook rejected"

    def test_commit_and_push(self):
        """Test a successful commit followed by a successful push."""
        self.runner.run.side_effect = [ok("a.txt\n"), ok(), ok()]

        result = self.operations.commit_and_push(ROOT, "Message")

        self.runner.run.assert_called_with(["push"], ROOT, 300)
        assert result.success
        assert result.summary == "Commit and push successful."

    def test_push_failure_after_commit(self):
        """Test that a rejected push still reports the commit."""
        self.runner.run.side_effect = [
            ok("a.txt\n"),
            ok(),
            failed("! [rejected] main -> main (fetch first)"),
        ]

        result = self.operations.commit_and_push(ROOT, "Message")

        assert not result.success
        assert result.commit_succeeded
        assert result.committed_message == "Message"
        assert result.summary.startswith("Commit successful, but push failed.")
        assert PUSH_FAILURE_HINT in result.summary
        assert "[rejected]" in result.summary

    def test_recent_commit_messages_for_current_user(self):
        """Test the author filter falls back from email to name."""

        def run(args, cwd, timeout=None):
            if args[:2] == ["config", "--get"]:
                return ok("dev.one@example.com\n") if args[2] == "user.email" else failed()
            return ok("Fix jump\n\nAdd enemy\n")

        self.runner.run.side_effect = run

        messages = self.operations.recent_commit_messages_for_current_user(ROOT, 5)

        assert messages == ["Fix jump", "Add enemy"]
        log_args = self.runner.run.call_args[0][0]
        assert log_args == [
            "log",
            "-n",
            "5",
            "--format=%s",
            "--no-merges",
            "--author=dev\\.one@example\\.com",
        ]

    def test_recent_commit_messages_without_identity(self):
        """Test that no configured user means no log lookup."""
        self.runner.run.return_value = failed()
        assert self.operations.recent_commit_messages_for_current_user(ROOT, 5) == []
