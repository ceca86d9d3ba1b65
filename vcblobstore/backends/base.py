"""Unified contract implemented by every vcblobstore backend."""

import os
from typing import Optional, Protocol, Set, runtime_checkable

from ..context import OperationContext
from ..domain import BlobInfo, CommitMetadata

# Set to "true" to make every commit fail, exercising the recovery paths.
SIMULATE_COMMIT_FAILURE_ENV = "GIT_COMMIT_FAIL_INTRUSIVE_TEST"


def commit_failure_simulated() -> bool:
    return os.environ.get(SIMULATE_COMMIT_FAILURE_ENV) == "true"


@runtime_checkable
class BlobStore(Protocol):
    """
    Versioned key/value store of opaque byte blobs.

    Every mutation is recorded as one commit. Both backends behave
    identically from the caller's point of view; version tokens are only
    comparable within the backend that produced them.
    """

    def create_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """Create the repository if it does not exist yet."""
        ...

    def reset_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """
        Delete, then create the repository.

        Raises:
            UnrecoverableError: If the delete fails (not retried)
        """
        ...

    def delete_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """Delete the repository; deleting an absent repository succeeds."""
        ...

    def add_blob(self, blob: BlobInfo, ctx: Optional[OperationContext] = None) -> None:
        """Store blob.content under blob.key in one new commit."""
        ...

    def copy_blob(
        self,
        source_key: str,
        destination_key: str,
        modified_by: str,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Store a copy of one blob under another key in one new commit."""
        ...

    def delete_blob(self, key: str, modified_by: str, ctx: Optional[OperationContext] = None) -> None:
        """
        Remove a blob in one new commit.

        Raises:
            BlobNotFoundError: If nothing is stored under key
        """
        ...

    def get_blob(self, key: str, ctx: Optional[OperationContext] = None) -> bytes:
        """
        Raises:
            BlobNotFoundError: If nothing is stored under key
        """
        ...

    def list_blob_keys(self, ctx: Optional[OperationContext] = None) -> Set[str]:
        ...

    def get_state_id(self, ctx: Optional[OperationContext] = None) -> str:
        """
        Version token of the current state.

        Raises:
            NotFoundError: If nothing has been committed yet
        """
        ...

    def get_version_for(self, key: str, ctx: Optional[OperationContext] = None) -> str:
        """Token of the last version touching key, or "" if there is none."""
        ...

    def get_version_metadata(self, token: str, ctx: Optional[OperationContext] = None) -> CommitMetadata:
        ...

    def check_status(self, ctx: Optional[OperationContext] = None) -> bool:
        """True iff persisted state matches the last commit exactly."""
        ...
