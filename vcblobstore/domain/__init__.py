"""
Domain layer for vcblobstore.

Contains pure domain objects with no I/O or side effects:
- BlobInfo: A keyed byte payload and the user who changed it
- CommitMetadata: Provenance of one version, shared by both backends
"""

from .blob import BlobInfo, validate_key
from .commit import (
    CommitMetadata,
    parse_local_commit_metadata,
    parse_structured_commit_metadata,
)

__all__ = [
    'BlobInfo',
    'validate_key',
    'CommitMetadata',
    'parse_local_commit_metadata',
    'parse_structured_commit_metadata',
]
