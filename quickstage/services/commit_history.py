"""Recently used commit messages, most recent first."""

import json
import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


def commit_subject(message: Optional[str]) -> str:
    """First line of a commit message."""
    if not message or not message.strip():
        return ""
    return message.strip().splitlines()[0].strip()


class CommitHistory:
    """Commit-message history persisted as ``{"entries": [...]}``."""

    def __init__(self, file_path: Path, max_entries: int = 20):
        self.file_path = Path(file_path)
        self.max_entries = max_entries
        self.entries: List[str] = []

    def load(self) -> None:
        self.entries = []
        if not self.file_path.exists():
            return
        try:
            data = json.loads(self.file_path.read_text(encoding="utf-8") or "{}")
            entries = data.get("entries", [])
            if not isinstance(entries, list):
                raise ValueError("'entries' must be a list")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Failed to load commit history %s: %s", self.file_path, e)
            return

        for entry in entries:
            if isinstance(entry, str) and entry.strip() and entry.strip() not in self.entries:
                self.entries.append(entry.strip())
        del self.entries[self.max_entries:]

    def save(self) -> None:
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = f"{self.file_path}.tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"entries": self.entries}, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.file_path)
        except OSError as e:
            logger.warning("Failed to save commit history %s: %s", self.file_path, e)

    def add(self, message: Optional[str]) -> None:
        """Move ``message`` to the front, dropping an exact duplicate."""
        if not message or not message.strip():
            return
        message = message.strip()
        if message in self.entries:
            self.entries.remove(message)
        self.entries.insert(0, message)
        del self.entries[self.max_entries:]
        self.save()

    def with_log_messages(self, log_messages: Iterable[str], limit: int = 100) -> List[str]:
        """Saved entries followed by log subjects not already present."""
        combined = list(self.entries)
        subjects = {commit_subject(e) for e in combined}
        for message in log_messages:
            subject = commit_subject(message)
            if subject and subject not in subjects:
                combined.append(subject)
                subjects.add(subject)
        return combined[:limit]
