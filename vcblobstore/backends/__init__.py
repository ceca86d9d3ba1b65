"""
Storage backends for vcblobstore.

Both backends implement the BlobStore contract:
- LocalGitRepository: blobs as files in a local git working directory
- GitLabRepository: blobs as files in a GitLab project, one REST commit per change
"""

from .base import BlobStore, SIMULATE_COMMIT_FAILURE_ENV
from .local import LocalGitRepository
from .gitlab import (
    GitLabConfig,
    GitLabRepository,
    CommitAction,
    CommitActionType,
    CreationConflict,
    build_commit_body,
    classify_creation_conflict,
)
from .factory import make_blob_store

__all__ = [
    'BlobStore',
    'SIMULATE_COMMIT_FAILURE_ENV',
    'LocalGitRepository',
    'GitLabConfig',
    'GitLabRepository',
    'CommitAction',
    'CommitActionType',
    'CreationConflict',
    'build_commit_body',
    'classify_creation_conflict',
    'make_blob_store',
]
