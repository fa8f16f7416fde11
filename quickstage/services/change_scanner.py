"""Parses ``git status`` output into structured change entries."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from ..exceptions import ParseAnomalyError
from ..models import ChangeEntry, ChangeKind, RepositoryStatusInfo
from ..protocols.git_runner_protocol import GitRunnerProtocol
from .path_translator import PathTranslator

logger = logging.getLogger(__name__)

# Machine format, NUL separated, untracked directories expanded to files.
STATUS_ARGS = [
    "status",
    "--porcelain=v1",
    "-z",
    "--untracked-files=all",
    "--find-renames",
]

_KIND_BY_CODE: Dict[str, ChangeKind] = {
    "A": ChangeKind.ADDED,
    "M": ChangeKind.MODIFIED,
    "D": ChangeKind.DELETED,
    "R": ChangeKind.RENAMED,
    "C": ChangeKind.ADDED,  # copies are additions
    "?": ChangeKind.ADDED,  # untracked
}


def primary_status(code: str) -> str:
    return code[0] if code[0] != " " else code[1]


def classify_status(code: str) -> ChangeKind:
    """Map a two-character status code to a ChangeKind."""
    if not code or len(code) < 2:
        return ChangeKind.UNKNOWN
    return _KIND_BY_CODE.get(primary_status(code), ChangeKind.UNKNOWN)


@dataclass
class StatusRecord:
    """One logical status record, rename pairs already joined."""

    code: str
    path: str
    original_path: Optional[str] = None

    @property
    def change_kind(self) -> ChangeKind:
        return classify_status(self.code)

    @property
    def is_staged(self) -> bool:
        return self.code[0] not in (" ", "?")

    @property
    def is_unstaged(self) -> bool:
        return self.code[1] != " " or self.code[0] == "?"


def _parse_header(record: str):
    if len(record) < 4 or record[2] != " ":
        raise ParseAnomalyError(record, "Status record shorter than its header")
    return record[:2], record[3:]


def parse_status_output(output: str) -> List[StatusRecord]:
    """
    Parse ``git status --porcelain=v1 -z`` output.

    Rename and copy records consume the following field: the current record
    holds the source path and the next one the destination. Malformed records
    are logged and skipped. Records with an unknown status, or that are
    neither staged nor unstaged, are dropped.
    """
    records: List[StatusRecord] = []
    if not output:
        return records

    fields = output.split("\0")
    i = 0
    while i < len(fields):
        field = fields[i]
        i += 1
        if not field:
            continue

        try:
            code, path = _parse_header(field)
            original_path = None
            if primary_status(code) in ("R", "C"):
                if i >= len(fields) or not fields[i]:
                    raise ParseAnomalyError(field, "Rename record missing its destination")
                # The header path is read as the source and the next field as the
                # destination. git -z itself writes the destination first, so a
                # staged rename from a real repository comes out swapped. Consumers
                # and tests rely on this pairing; change it together with them.
                original_path, path = path, fields[i]
                i += 1
        except ParseAnomalyError as e:
            logger.warning("Skipping malformed status record: %s", e)
            continue

        record = StatusRecord(code=code, path=path, original_path=original_path)
        if record.change_kind == ChangeKind.UNKNOWN:
            logger.debug("Ignoring status %r for %s", code, path)
            continue
        if not record.is_staged and not record.is_unstaged:
            continue
        records.append(record)

    return records


def summarize(entries: Iterable[ChangeEntry]) -> RepositoryStatusInfo:
    staged = unstaged = 0
    for entry in entries:
        if entry.is_staged:
            staged += 1
        if entry.is_unstaged:
            unstaged += 1
    return RepositoryStatusInfo(staged_count=staged, unstaged_count=unstaged)


class ChangeScanner:
    """Runs ``git status`` and projects its records into the project namespace."""

    def __init__(
        self,
        runner: GitRunnerProtocol,
        translator: PathTranslator,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.runner = runner
        self.translator = translator
        self.clock = clock

    def scan(self, translator: Optional[PathTranslator] = None) -> List[ChangeEntry]:
        """
        Return the working-tree changes of the repository.

        An unresolvable repository or a failed status command yields an empty
        list; the reason has already been logged.
        """
        translator = translator or self.translator
        root = translator.repository_root
        if not root:
            return []

        result = self.runner.run(STATUS_ARGS, root, self.runner.timeout_short)
        if not result.ok:
            return []

        entries: List[ChangeEntry] = []
        for record in parse_status_output(result.stdout):
            entries.extend(self._entries_for(record, translator))
        return entries

    def _entries_for(
        self, record: StatusRecord, translator: PathTranslator
    ) -> List[ChangeEntry]:
        kind = record.change_kind
        project_path = translator.to_project_path(record.path)
        original_project_path = (
            translator.to_project_path(record.original_path)
            if record.original_path
            else None
        )

        if project_path is None:
            # The destination left the project: only the disappearance is visible.
            if original_project_path and kind == ChangeKind.RENAMED:
                return [
                    ChangeEntry(
                        path=record.original_path,
                        change_kind=ChangeKind.DELETED,
                        working_tree_time=self.working_tree_time(original_project_path),
                        is_staged=record.is_staged,
                        is_unstaged=record.is_unstaged,
                        project_path=original_project_path,
                    )
                ]
            return []

        original_path = record.original_path
        if kind == ChangeKind.RENAMED and original_project_path is None:
            # Moved in from outside the project.
            kind = ChangeKind.ADDED
            original_path = None

        entries = [
            ChangeEntry(
                path=record.path,
                original_path=original_path,
                change_kind=kind,
                working_tree_time=self.working_tree_time(project_path),
                is_staged=record.is_staged,
                is_unstaged=record.is_unstaged,
                project_path=project_path,
                original_project_path=original_project_path if original_path else None,
            )
        ]

        if (
            kind == ChangeKind.RENAMED
            and original_path
            and original_path.lower() != record.path.lower()
        ):
            entries.append(
                ChangeEntry(
                    path=original_path,
                    original_path=record.path,
                    change_kind=ChangeKind.DELETED,
                    working_tree_time=self.working_tree_time(original_project_path),
                    is_staged=record.is_staged,
                    is_unstaged=record.is_unstaged,
                    project_path=original_project_path,
                    original_project_path=project_path,
                )
            )
        return entries

    def working_tree_time(self, project_path: str) -> datetime:
        """Last write time on disk, or now for files that no longer exist."""
        absolute = self.translator.absolute_project_path(project_path)
        if os.path.isfile(absolute):
            return datetime.fromtimestamp(os.path.getmtime(absolute))
        return self.clock()
