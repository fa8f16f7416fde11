from .config.settings import Settings
from .protocols.dependency_provider import FileSystemDependencyProvider
from .services.asset_types import AssetTypeClassifier
from .services.change_scanner import ChangeScanner
from .services.commit_history import CommitHistory
from .services.git_operations import GitOperations
from .services.git_runner import GitRunner
from .services.ownership_tracker import StagedOwnershipTracker
from .services.path_translator import PathTranslator
from .services.rename_resolver import RenameResolver
from .services.staging_session import StagingSession


def create_git_runner(settings: Settings) -> GitRunner:
    return GitRunner(
        executable=settings.GIT_EXECUTABLE,
        timeout_short=settings.GIT_TIMEOUT_SHORT,
        timeout_medium=settings.GIT_TIMEOUT_MEDIUM,
        timeout_long=settings.GIT_TIMEOUT_LONG,
        max_paths_per_command=settings.GIT_MAX_PATHS_PER_COMMAND,
        max_arguments_length=settings.GIT_MAX_ARGUMENTS_LENGTH,
    )


# Only this module reads Settings; every component gets plain arguments.
def create_staging_session(settings: Settings) -> StagingSession:
    runner = create_git_runner(settings)
    translator = PathTranslator(
        settings.PROJECT_ROOT, runner=runner, sidecar_suffix=settings.SIDECAR_SUFFIX
    )
    dependency_provider = FileSystemDependencyProvider(translator.project_root)
    return StagingSession(
        translator=translator,
        scanner=ChangeScanner(runner, translator),
        resolver=RenameResolver(
            translator,
            runner,
            dependency_provider,
            identity_revision=settings.IDENTITY_REVISION,
        ),
        tracker=StagedOwnershipTracker(settings.staged_allowlist_path),
        history=CommitHistory(
            settings.commit_history_path, max_entries=settings.COMMIT_HISTORY_MAX_ENTRIES
        ),
        operations=GitOperations(runner),
        classifier=AssetTypeClassifier(translator),
        dependency_provider=dependency_provider,
        auto_clean_external_staged=settings.AUTO_CLEAN_EXTERNAL_STAGED,
        debounce_seconds=settings.REFRESH_DEBOUNCE_SECONDS,
    )
