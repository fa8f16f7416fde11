from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    PROJECT_ROOT is the host application's project folder. Project-relative
    paths handed to the API are resolved against it, and the git repository is
    discovered from it (or from the current selection context).
    """

    # Host project
    PROJECT_ROOT: str = "."
    DATA_DIR: str = ""  # Empty means <PROJECT_ROOT>/Library

    # Git CLI
    GIT_EXECUTABLE: str = "git"
    GIT_TIMEOUT_SHORT: float = 30  # status / log / config queries
    GIT_TIMEOUT_MEDIUM: float = 120  # commit, batched add / reset
    GIT_TIMEOUT_LONG: float = 300  # push
    GIT_MAX_PATHS_PER_COMMAND: int = 200
    GIT_MAX_ARGUMENTS_LENGTH: int = 30_000

    # Sidecar metadata
    SIDECAR_SUFFIX: str = ".meta"
    IDENTITY_REVISION: str = "HEAD"

    # Persisted state
    COMMIT_HISTORY_FILE_NAME: str = "QuickStageCommitHistory.json"
    COMMIT_HISTORY_MAX_ENTRIES: int = 20
    STAGED_ALLOWLIST_FILE_NAME: str = "QuickStageStagedAllowList.json"

    # Session behaviour
    AUTO_CLEAN_EXTERNAL_STAGED: bool = True
    REFRESH_DEBOUNCE_SECONDS: float = 0.15
    TICK_INTERVAL_SECONDS: float = 0.05

    # Development and debugging
    DEBUG: bool = False

    @property
    def data_dir(self) -> Path:
        if self.DATA_DIR:
            return Path(self.DATA_DIR)
        return Path(self.PROJECT_ROOT) / "Library"

    @property
    def commit_history_path(self) -> Path:
        return self.data_dir / self.COMMIT_HISTORY_FILE_NAME

    @property
    def staged_allowlist_path(self) -> Path:
        return self.data_dir / self.STAGED_ALLOWLIST_FILE_NAME


@lru_cache
def get_settings() -> Settings:
    return Settings()
