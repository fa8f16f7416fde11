"""Dependency provider protocol and the file-system default."""

import os
from typing import List, Protocol, runtime_checkable


@runtime_checkable
class DependencyProvider(Protocol):
    """Protocol for the host application's asset dependency graph."""

    def get_dependencies(self, project_path: str) -> List[str]:
        """Project paths the asset depends on, recursively, including itself."""
        ...

    def is_folder(self, project_path: str) -> bool:
        """Whether the project path names a folder."""
        ...


class FileSystemDependencyProvider:
    """Treats every file as depending only on itself."""

    def __init__(self, project_root: str):
        self.project_root = project_root

    def get_dependencies(self, project_path: str) -> List[str]:
        return [project_path]

    def is_folder(self, project_path: str) -> bool:
        return os.path.isdir(os.path.join(self.project_root, project_path))
