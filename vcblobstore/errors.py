"""
Exception hierarchy for vcblobstore.

Every error raised by a backend derives from BlobStoreError, so callers
can catch one type at the contract boundary and still branch on the
specific failure when they need to.
"""

from typing import Optional, Sequence


class BlobStoreError(RuntimeError):
    """Base class for all vcblobstore errors."""
    pass


class InvalidKeyError(BlobStoreError, ValueError):
    """Blob key rejected before any I/O took place."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid blob key {key!r}: {reason}")


# Absence
class NotFoundError(BlobStoreError):
    """Requested version or repository state does not exist."""
    pass


class BlobNotFoundError(NotFoundError):
    """No blob is stored under the given key."""

    def __init__(self, key: str, detail: str = ""):
        self.key = key
        message = f"Blob not found: {key}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


# Protocol errors
class ProtocolError(BlobStoreError):
    """Unexpected status code, malformed response body or unexpected encoding."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"{message}: ({status_code}) {body}".rstrip()
        super().__init__(message)


class MetadataParseError(ProtocolError):
    """Commit metadata could not be parsed into a CommitMetadata."""
    pass


class RateLimitHeaderError(ProtocolError):
    """The remaining-quota response header was not an integer."""

    def __init__(self, header: str, value: str):
        self.header = header
        self.value = value
        super().__init__(f"Failed to parse {header} header: {value!r}")


class NetworkError(BlobStoreError):
    """Transport-level failure talking to the remote service."""
    pass


# Mutation failures
class IntegrityError(BlobStoreError):
    """A step of a mutation sequence failed; nothing was committed."""
    pass


class GitCommandError(BlobStoreError):
    """The git executable exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, output: str):
        self.args_list = list(args)
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"git {' '.join(self.args_list)} failed ({returncode}): {output.strip()}"
        )


class RepositoryError(BlobStoreError):
    """Creating, probing or deleting a repository failed."""
    pass


class ConfigError(BlobStoreError):
    """Missing or invalid configuration."""
    pass


class OperationCancelled(BlobStoreError):
    """The operation context was cancelled or its deadline passed."""
    pass


# Unrecoverable conditions
class UnrecoverableError(BlobStoreError):
    """
    The store may be in a state that needs operator attention.

    The caller decides whether to terminate the process.
    """
    pass


class RetryBudgetExceeded(UnrecoverableError):
    """Retries for a transient condition were exhausted."""

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"Too many retries ({attempts}) while trying to {operation}")


class RollbackError(UnrecoverableError):
    """Restoring the last committed state failed after a failed mutation."""
    pass
