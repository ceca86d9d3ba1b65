"""
Standard exit codes for vcblobstore commands.

Following Unix/POSIX conventions for command-line tools.
"""
from typing import Type

from . import errors

# Standard POSIX exit codes
SUCCESS = 0              # Successful termination
GENERAL_ERROR = 1        # General errors
USAGE_ERROR = 2          # Misuse of shell command (wrong arguments, etc.)

# Application-specific exit codes (64-113 are typically available)
NOT_FOUND = 64           # Blob, version or repository state does not exist
API_ERROR = 65           # Unexpected response from GitLab
CONFIG_ERROR = 66        # Configuration file or setting error
INTEGRITY_ERROR = 67     # Mutation failed and was rolled back
NETWORK_ERROR = 68       # Network connection failed
CANCELLED = 69           # Operation cancelled or deadline exceeded
DATA_ERROR = 70          # Invalid blob key or unparsable data
UNRECOVERABLE = 71       # Store needs operator attention
INTERRUPTED = 130        # Terminated by Ctrl+C (SIGINT)

# Most specific classes first; the first isinstance match wins.
EXCEPTION_EXIT_CODES = [
    (errors.UnrecoverableError, UNRECOVERABLE),
    (errors.InvalidKeyError, DATA_ERROR),
    (errors.NotFoundError, NOT_FOUND),
    (errors.MetadataParseError, DATA_ERROR),
    (errors.ProtocolError, API_ERROR),
    (errors.NetworkError, NETWORK_ERROR),
    (errors.IntegrityError, INTEGRITY_ERROR),
    (errors.ConfigError, CONFIG_ERROR),
    (errors.OperationCancelled, CANCELLED),
    (KeyboardInterrupt, INTERRUPTED),
]


def get_exit_code_for_exception(exc: BaseException) -> int:
    """
    Get the appropriate exit code for an exception.

    Args:
        exc: The exception that occurred

    Returns:
        Appropriate exit code
    """
    exc_type: Type[BaseException]
    for exc_type, code in EXCEPTION_EXIT_CODES:
        if isinstance(exc, exc_type):
            return code
    return GENERAL_ERROR
