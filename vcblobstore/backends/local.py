"""
Local git working-directory backend.

Blobs are plain files at the root of a git working directory. Every
mutation runs on the location's JobSerializer as one job:
apply the file change, stage everything, commit. If any step fails the
working tree is restored to the last commit before the error is raised,
so a failed mutation never leaves uncommitted drift behind.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Optional, Set, Union

from ..context import OperationContext, check_context
from ..domain import (
    BlobInfo,
    CommitMetadata,
    validate_key,
    parse_local_commit_metadata,
    parse_structured_commit_metadata,
)
from ..domain.commit import STRUCTURED_FORMAT
from ..errors import (
    BlobNotFoundError,
    BlobStoreError,
    ConfigError,
    GitCommandError,
    IntegrityError,
    NotFoundError,
    OperationCancelled,
    RepositoryError,
    RollbackError,
    UnrecoverableError,
)
from ..infra.git_client import GitClient, COMMIT_FAILURE_TEST_COMMAND
from ..infra.job_queue import JobSerializer
from .base import commit_failure_simulated

logger = logging.getLogger(__name__)

METADATA_FORMATS = ("structured", "fuller")
FULLER_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

DIRECTORY_MODE = 0o700
FILE_MODE = 0o600


class LocalGitRepository:
    """
    Blob store kept in a local git repository.

    Example:
        repo = LocalGitRepository("/srv/blobs")
        repo.create_repository()
        repo.add_blob(BlobInfo("metro-zazie", data, modified_by="ux"))
        token = repo.get_version_for("metro-zazie")
    """

    def __init__(
        self,
        location: Union[str, Path],
        serializer: Optional[JobSerializer] = None,
        git_client: Optional[GitClient] = None,
        simulate_commit_failure: Optional[bool] = None,
        metadata_format: str = "structured",
    ):
        """
        Initialize LocalGitRepository.

        Args:
            location: Working directory of the repository
            serializer: Job serializer for mutations (shared per location if None)
            git_client: Git client to use (created for location if None)
            simulate_commit_failure: Force commit failures; None reads the environment
            metadata_format: "structured" or "fuller" (textual fallback parser)
        """
        if metadata_format not in METADATA_FORMATS:
            raise ConfigError(
                f"Unknown metadata format {metadata_format!r}, expected one of {METADATA_FORMATS}"
            )
        self.location = Path(location).expanduser()
        self.serializer = serializer or JobSerializer.for_location(self.location)
        self.git = git_client or GitClient(self.location)
        self.simulate_commit_failure = simulate_commit_failure
        self.metadata_format = metadata_format

    def __str__(self) -> str:
        return f"Local git repository at {self.location}"

    def _path_to_file(self, key: str) -> Path:
        return self.location / validate_key(key)

    def _commit_verb(self) -> str:
        simulate = self.simulate_commit_failure
        if simulate is None:
            simulate = commit_failure_simulated()
        return COMMIT_FAILURE_TEST_COMMAND if simulate else "commit"

    def _require_own_repository(self) -> None:
        """
        Check that the location is the top of its own work tree.

        git resolves an enclosing repository from any subdirectory, so
        without this check `add -A` and the rollback would act on it.

        Raises:
            RepositoryError: If the location is missing, not a repository,
                or nested inside another repository's work tree
        """
        if not self.location.is_dir():
            raise RepositoryError(f"No git repository at {self.location}, create it first")
        toplevel = self.git.toplevel()
        if toplevel is None:
            raise RepositoryError(f"Not a git repository: {self.location}")
        if toplevel.resolve() != self.location.resolve():
            raise RepositoryError(
                f"{self.location} is inside the git repository at {toplevel}, "
                f"not a repository of its own"
            )

    # Repository lifecycle

    def location_has_repo(self) -> bool:
        """
        Check whether the location holds a git repository.

        Runs `git init` as a probe rather than looking for marker files.

        Raises:
            RepositoryError: If the location is a regular file or the probe fails oddly
        """
        if not self.location.exists():
            return False
        if not self.location.is_dir():
            raise RepositoryError(f"File exists, but it is not a directory: {self.location}")

        result = self.git.probe_init()
        if result.returncode != 0:
            output = result.stderr or result.stdout
            if "not a git repository" in output:
                return False
            raise RepositoryError(
                f"Failed to probe git repository at {self.location}: {output.strip()}"
            )
        return True

    def _create_and_initialize(self) -> None:
        try:
            if self.location.exists():
                shutil.rmtree(self.location)
            self.location.mkdir(mode=DIRECTORY_MODE, parents=True)
            self.git.init()
        except (OSError, GitCommandError) as e:
            raise RepositoryError(f"Failed to create git repo at {self.location}: {e}") from e
        logger.info(f"Created git repository at {self.location}")

    def _init_maybe(self) -> None:
        if not self.location_has_repo():
            self._create_and_initialize()

    def create_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """Initialize the repository unless the location already holds one."""
        self.serializer.submit(self._init_maybe, label="create repository", ctx=ctx)

    def _remove_location(self) -> None:
        try:
            if self.location.is_dir() and not self.location.is_symlink():
                shutil.rmtree(self.location)
            elif self.location.exists() or self.location.is_symlink():
                self.location.unlink()
        except OSError as e:
            raise RepositoryError(f"Failed to delete git repo at {self.location}: {e}") from e
        logger.info(f"Deleted git repository at {self.location}")

    def delete_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """Remove the location; an absent location is not an error."""
        self.serializer.submit(self._remove_location, label="delete repository", ctx=ctx)

    def reset_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """
        Delete, then re-create the repository.

        Raises:
            UnrecoverableError: If the delete fails
        """
        try:
            self.delete_repository(ctx=ctx)
        except OperationCancelled:
            raise
        except BlobStoreError as e:
            raise UnrecoverableError(f"Failed to reset {self}: {e}") from e
        self.create_repository(ctx=ctx)

    # Mutations

    def _rollback(self, cause: BaseException) -> None:
        try:
            if self.git.has_commits():
                self.git.reset_hard()
            else:
                self.git.clear_index()
            self.git.clean()
        except GitCommandError as e:
            raise RollbackError(
                f"Failed to roll back {self} after failed operation ({cause}): {e}"
            ) from cause

    def _execute_blob_job(
        self,
        operation: Callable[[], None],
        label: str,
        commit_message: str,
        modified_by: str,
        ctx: Optional[OperationContext],
    ) -> None:
        """
        Run operation, `add -A` and commit as one serialized job.

        Any failure triggers a rollback to the last commit. BlobNotFoundError
        passes through unchanged; every other failure becomes IntegrityError.
        A location that is not its own repository raises RepositoryError
        before anything is touched.
        """
        if not modified_by:
            logger.warning(f"{label}: modifying user is not specified")

        def job() -> None:
            self._require_own_repository()
            try:
                logger.debug(f"{label}: operation starting")
                operation()
                self.git.add_all()
                self.git.commit(commit_message, modified_by, verb=self._commit_verb())
            except Exception as e:
                logger.debug(f"{label}: failed git operation: {e}")
                self._rollback(e)
                if isinstance(e, BlobNotFoundError):
                    raise
                raise IntegrityError(
                    f"Failed to {label} in git repository at {self.location}: {e}"
                ) from e
            logger.debug(f"{label}: success")

        self.serializer.submit(job, label=label, ctx=ctx)

    def add_blob(self, blob: BlobInfo, ctx: Optional[OperationContext] = None) -> None:
        path = self._path_to_file(blob.key)

        def write_blob() -> None:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(blob.content)

        self._execute_blob_job(
            write_blob,
            label="add blob file",
            commit_message="blob file version added",
            modified_by=blob.modified_by,
            ctx=ctx,
        )
        logger.info(f"Added blob {blob.key} ({len(blob.content)} bytes) to {self.location}")

    def copy_blob(
        self,
        source_key: str,
        destination_key: str,
        modified_by: str,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Copy one blob to another key in a single commit.

        Raises:
            BlobNotFoundError: If source_key does not exist
        """
        source = self._path_to_file(source_key)
        destination = self._path_to_file(destination_key)

        def copy_contents() -> None:
            try:
                src = open(source, "rb")
            except FileNotFoundError as e:
                raise BlobNotFoundError(source_key, "copy source") from e
            with src:
                fd = os.open(destination, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
                with os.fdopen(fd, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                    dst.flush()
                    os.fsync(dst.fileno())

        self._execute_blob_job(
            copy_contents,
            label="copy blob file",
            commit_message="blob file version added",
            modified_by=modified_by,
            ctx=ctx,
        )
        logger.info(f"Copied blob {source_key} to {destination_key} in {self.location}")

    def delete_blob(self, key: str, modified_by: str, ctx: Optional[OperationContext] = None) -> None:
        """
        Raises:
            BlobNotFoundError: If nothing is stored under key
        """
        path = self._path_to_file(key)

        def remove_blob() -> None:
            try:
                path.unlink()
            except FileNotFoundError as e:
                raise BlobNotFoundError(key) from e

        self._execute_blob_job(
            remove_blob,
            label=f"delete blob {key}",
            commit_message="blob deleted",
            modified_by=modified_by,
            ctx=ctx,
        )
        logger.info(f"Deleted blob {key} from {self.location}")

    # Queries

    def get_blob(self, key: str, ctx: Optional[OperationContext] = None) -> bytes:
        path = self._path_to_file(key)
        check_context(ctx, f"get blob {key}")
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e
        except IsADirectoryError as e:
            raise BlobNotFoundError(key, "not a regular file") from e

    def list_blob_keys(self, ctx: Optional[OperationContext] = None) -> Set[str]:
        check_context(ctx, "list blob keys")
        self._require_own_repository()
        if not self.git.has_commits():
            return set()
        return set(self.git.ls_tree_names())

    def get_state_id(self, ctx: Optional[OperationContext] = None) -> str:
        """
        Raises:
            NotFoundError: If the repository has no commit yet
        """
        check_context(ctx, "get state id")
        self._require_own_repository()
        if not self.git.has_commits():
            raise NotFoundError(f"No commit in {self}")
        return self.git.rev_parse_head()

    def get_version_for(self, key: str, ctx: Optional[OperationContext] = None) -> str:
        """Commit id of the last commit touching key, or "" if there is none."""
        validate_key(key)
        check_context(ctx, f"get version for {key}")
        self._require_own_repository()
        if not self.git.has_commits():
            return ""
        return self.git.last_commit_for(key)

    def get_version_metadata(self, token: str, ctx: Optional[OperationContext] = None) -> CommitMetadata:
        """
        Metadata of the current HEAD commit.

        The token only labels log and error messages; the repository's
        latest commit is inspected regardless.
        """
        check_context(ctx, f"get version metadata {token}")
        self._require_own_repository()
        if not self.git.has_commits():
            raise NotFoundError(f"No commit in {self} for version {token}")

        if self.metadata_format == "fuller":
            output = self.git.show_head("fuller", FULLER_DATE_FORMAT)
            parse = parse_local_commit_metadata
        else:
            output = self.git.show_head(STRUCTURED_FORMAT)
            parse = parse_structured_commit_metadata
        logger.debug(f"Raw metadata extracted for {token}: {output!r}")
        return parse(output)

    def check_status(self, ctx: Optional[OperationContext] = None) -> bool:
        """True if the working tree and index match HEAD exactly."""
        check_context(ctx, "check status")
        self._require_own_repository()
        return self.git.status_porcelain().strip() == ""
