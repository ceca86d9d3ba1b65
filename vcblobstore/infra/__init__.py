"""
Infrastructure layer for vcblobstore.

Contains abstractions for external systems:
- GitClient: Git command execution
- JobSerializer: One-at-a-time execution of local mutations
- ClientPool: Bounded pool of reusable HTTP sessions
- GitLabClient: GitLab API access

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import GitClient, COMMIT_FAILURE_TEST_COMMAND
from .job_queue import Job, JobSerializer
from .client_pool import ClientPool, PooledSession
from .gitlab_client import GitLabClient, RateLimitStatus, parse_rate_limit

__all__ = [
    'GitClient',
    'COMMIT_FAILURE_TEST_COMMAND',
    'Job',
    'JobSerializer',
    'ClientPool',
    'PooledSession',
    'GitLabClient',
    'RateLimitStatus',
    'parse_rate_limit',
]
