"""
vcblobstore - A versioned blob store backed by git.

Blobs are opaque byte payloads stored under flat string keys. Every
change is recorded as one commit, either in a local git working
directory or in a GitLab project reached over its REST API. Both
backends implement the same BlobStore contract.

Quick Start:
    from vcblobstore import BlobInfo, LocalGitRepository

    store = LocalGitRepository("/srv/blobs")
    store.create_repository()
    store.add_blob(BlobInfo("metro-zazie", data, modified_by="ux"))

    token = store.get_version_for("metro-zazie")
    metadata = store.get_version_metadata(token)
    print(metadata.author, metadata.commit_date)

Backends:
    LocalGitRepository - Files in a git working directory, mutations serialized per location
    GitLabRepository - Files in a GitLab project, one multi-action commit per change

Domain Objects:
    BlobInfo - Key, content and modifying user
    CommitMetadata - Author, committer, dates and message of one version
"""

__version__ = "0.3.0"

from .domain import BlobInfo, CommitMetadata
from .context import OperationContext
from .errors import (
    BlobStoreError,
    InvalidKeyError,
    NotFoundError,
    BlobNotFoundError,
    ProtocolError,
    NetworkError,
    IntegrityError,
    RepositoryError,
    ConfigError,
    OperationCancelled,
    UnrecoverableError,
    RetryBudgetExceeded,
    RollbackError,
)
from .backends import (
    BlobStore,
    LocalGitRepository,
    GitLabConfig,
    GitLabRepository,
    make_blob_store,
)

__all__ = [
    '__version__',
    'BlobInfo',
    'CommitMetadata',
    'OperationContext',
    'BlobStore',
    'LocalGitRepository',
    'GitLabConfig',
    'GitLabRepository',
    'make_blob_store',
    'BlobStoreError',
    'InvalidKeyError',
    'NotFoundError',
    'BlobNotFoundError',
    'ProtocolError',
    'NetworkError',
    'IntegrityError',
    'RepositoryError',
    'ConfigError',
    'OperationCancelled',
    'UnrecoverableError',
    'RetryBudgetExceeded',
    'RollbackError',
]
