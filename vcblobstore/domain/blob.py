"""
Blob domain object for vcblobstore.

A blob is an opaque byte payload stored under a flat string key.
"""

from dataclasses import dataclass
from typing import Dict, Any

from ..errors import InvalidKeyError

# Keys map one-to-one onto file names at the repository root.
KEY_SEPARATORS = ("/", "\\")

# Names git itself interprets; compared case-insensitively for case-folding filesystems.
RESERVED_NAMES = frozenset({".", "..", ".git", ".gitignore", ".gitattributes", ".gitmodules"})


def validate_key(key: str) -> str:
    """
    Check that a key addresses a single flat entry.

    Args:
        key: Blob key

    Returns:
        The key unchanged

    Raises:
        InvalidKeyError: If the key is empty, contains a separator, or is a reserved name
    """
    if not key:
        raise InvalidKeyError(key, "empty key")
    for separator in KEY_SEPARATORS:
        if separator in key:
            raise InvalidKeyError(key, f"invalid character in key: {separator!r}")
    if key.lower() in RESERVED_NAMES:
        raise InvalidKeyError(key, "reserved name")
    return key


@dataclass(frozen=True)
class BlobInfo:
    """A blob together with the user responsible for the change."""
    key: str
    content: bytes
    modified_by: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'size': len(self.content),
            'modified_by': self.modified_by,
        }
